"""Tests for field normalization."""

from datetime import date
from decimal import Decimal

import pytest

from romaneio.domain.models import NOT_AVAILABLE, SYNTHETIC_RECIPIENT, Address, RecordStatus
from romaneio.services.extraction.normalize import FieldNormalizer


@pytest.fixture
def normalizer() -> FieldNormalizer:
    return FieldNormalizer()


class TestNormalizeAmount:
    @pytest.mark.parametrize("raw, expected", [
        ("R$ 1.234,56", Decimal("1234.56")),
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("1234.56", Decimal("1234.56")),
        ("125,5", Decimal("125.50")),
        ("1.234.567", Decimal("1234567.00")),
        ("BRL 10", Decimal("10.00")),
        (99.9, Decimal("99.90")),
        (42, Decimal("42.00")),
    ])
    def test_formats(self, normalizer, raw, expected):
        assert normalizer.normalize_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", True])
    def test_unparseable_is_none(self, normalizer, raw):
        assert normalizer.normalize_amount(raw) is None

    def test_negative_clamped_to_zero(self, normalizer):
        assert normalizer.normalize_amount("-5,00") == Decimal("0.00")

    def test_two_decimal_places(self, normalizer):
        assert normalizer.normalize_amount("10").as_tuple().exponent == -2

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf"), Decimal("NaN")])
    def test_non_finite_is_none(self, normalizer, raw):
        assert normalizer.normalize_amount(raw) is None


class TestNormalizeQuantity:
    def test_keeps_precision(self, normalizer):
        assert normalizer.normalize_quantity("10.5000") == Decimal("10.5000")

    def test_brazilian_decimal(self, normalizer):
        assert normalizer.normalize_quantity("2,5") == Decimal("2.5")

    def test_non_finite_is_none(self, normalizer):
        assert normalizer.normalize_quantity(float("nan")) is None
        assert normalizer.normalize_quantity(float("inf")) is None


class TestNormalizeDate:
    @pytest.mark.parametrize("raw", [
        "2024-01-15T10:30:00-03:00",
        "2024-01-15",
        "15/01/2024",
        "15-01-2024",
        "15/01/24",
        "15/01/2024 10:30:00",
    ])
    def test_formats(self, normalizer, raw):
        assert normalizer.normalize_date(raw) == date(2024, 1, 15)

    def test_unparseable_is_none(self, normalizer):
        assert normalizer.normalize_date("sometime") is None
        assert normalizer.normalize_date("") is None


class TestNormalizeName:
    def test_collapses_whitespace(self, normalizer):
        assert normalizer.normalize_name("  ACME   Comércio\tLtda ") == "ACME Comércio Ltda"

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "   ",
        SYNTHETIC_RECIPIENT,
        SYNTHETIC_RECIPIENT.upper(),
        "Cliente não informado",
        "N/A",
    ])
    def test_placeholders_become_sentinel(self, normalizer, raw):
        assert normalizer.normalize_name(raw) == NOT_AVAILABLE


class TestNormalizeStatus:
    @pytest.mark.parametrize("raw", ["Autorizada", "AUTORIZADO O USO DA NF-E", "100", "Authorized"])
    def test_authorized(self, normalizer, raw):
        assert normalizer.normalize_status(raw) == RecordStatus.AUTHORIZED

    def test_other_statuses_unknown(self, normalizer):
        assert normalizer.normalize_status("Cancelada") == RecordStatus.UNKNOWN

    def test_blank_is_none(self, normalizer):
        assert normalizer.normalize_status(" ") is None


class TestNormalizeAddress:
    def test_nfe_keys_flatten_without_gaps(self, normalizer):
        address = normalizer.normalize_address({
            "xLgr": "Rua A",
            "nro": "10",
            "xBairro": "",
            "xMun": "São Paulo",
            "UF": "SP",
            "CEP": "01000000",
        })

        assert address == Address(
            street="Rua A", number="10", city="São Paulo", state="SP", postal_code="01000000"
        )
        assert address.display() == "Rua A, 10, São Paulo, SP, CEP: 01000000"

    def test_registry_keys(self, normalizer):
        address = normalizer.normalize_address({"logradouro": "Av. Brasil", "municipio": "Rio de Janeiro"})
        assert str(address) == "Av. Brasil, Rio de Janeiro"

    def test_empty_is_none(self, normalizer):
        assert normalizer.normalize_address({"xLgr": " ", "CEP": None}) is None
        assert normalizer.normalize_address(None) is None


def test_normalize_tax_id(normalizer):
    assert normalizer.normalize_tax_id("14.200.166/0001-87") == "14200166000187"
    assert normalizer.normalize_tax_id("--") is None
