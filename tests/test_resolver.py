"""Tests for the resolution orchestrator."""

from decimal import Decimal

import httpx
import pytest

from conftest import ACCESS_KEY, make_nfe
from romaneio.config import ResolverConfig
from romaneio.domain.access_key import AccessKeyFields, InvalidAccessKeyError
from romaneio.domain.models import (
    NOT_AVAILABLE,
    Address,
    FailureReason,
    PartialRecord,
    SourceOutcome,
)
from romaneio.services.fallback import FALLBACK_SOURCE
from romaneio.services.resolver import (
    ResolutionOrchestrator,
    ResolutionState,
    SourceAttempt,
    build_adapters,
)
from romaneio.services.sources import SourceAdapter, SourceError

RESOLVING = PartialRecord(
    recipient_name="Cliente Real Comércio Ltda",
    total_value=Decimal("125.00"),
    note="Spy record",
)

ISSUER_ONLY = PartialRecord(
    issuer_name="FORNECEDOR EXEMPLO LTDA",
    issuer_tax_id="14200166000187",
    issuer_address=Address(street="AVENIDA PAULISTA", city="SAO PAULO", state="SP"),
    note="Issuer from registry",
)


class SpyAdapter(SourceAdapter):
    """Adapter returning a canned record (or raising) and counting calls."""

    def __init__(self, name: str, record: PartialRecord | None = None, error: Exception | None = None):
        super().__init__(ResolverConfig())
        self.name = name
        self.record = record
        self.error = error
        self.calls = 0

    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.record


class BrokenAdapter(SpyAdapter):
    """Breaks the never-raise contract of resolve()."""

    def resolve(self, access_key: str, fields: AccessKeyFields) -> SourceOutcome:
        self.calls += 1
        raise RuntimeError("adapter bug")


class TestShortCircuit:
    def test_first_success_stops_chain(self):
        first = SpyAdapter("first", RESOLVING)
        second = SpyAdapter("second", RESOLVING)

        result = ResolutionOrchestrator(adapters=[first, second]).resolve_with_trace(ACCESS_KEY)

        assert first.calls == 1
        assert second.calls == 0
        assert result.state == ResolutionState.RESOLVED
        assert result.record.source_label == "first"
        assert result.record.recipient_name == "Cliente Real Comércio Ltda"
        assert not result.record.is_synthetic
        assert [a.status for a in result.attempts] == ["resolved"]

    def test_total_alone_resolves(self):
        spy = SpyAdapter("portal", PartialRecord(total_value=Decimal("10.00")))
        record = ResolutionOrchestrator(adapters=[spy]).resolve(ACCESS_KEY)

        assert record.source_label == "portal"
        assert record.recipient_name == NOT_AVAILABLE
        assert record.total_value == Decimal("10.00")

    def test_defaults_filled_from_key(self):
        record = ResolutionOrchestrator(adapters=[SpyAdapter("qrcode", RESOLVING)]).resolve(ACCESS_KEY)

        assert record.access_key == ACCESS_KEY
        assert record.document_number == "000000001"
        assert record.series == "001"
        assert record.issue_date.year == 2024
        assert record.issuer_name == NOT_AVAILABLE
        assert record.resolution_note == "Spy record"

    def test_later_success_after_failures(self):
        failing = SpyAdapter("qrcode", error=SourceError(FailureReason.TIMEOUT, "slow"))
        empty = SpyAdapter("pdf_conversion", record=None)
        winner = SpyAdapter("soap", RESOLVING)

        result = ResolutionOrchestrator(adapters=[failing, empty, winner]).resolve_with_trace(ACCESS_KEY)

        assert result.record.source_label == "soap"
        assert [(a.source, a.status) for a in result.attempts] == [
            ("qrcode", "failed"),
            ("pdf_conversion", "failed"),
            ("soap", "resolved"),
        ]
        assert result.attempts[0].outcome.failure == FailureReason.TIMEOUT
        assert result.attempts[1].outcome.failure == FailureReason.NO_FIELDS
        assert all(a.elapsed_ms >= 0 for a in result.attempts)


class TestFallthrough:
    def test_all_failures_synthesize(self):
        spies = [
            SpyAdapter("qrcode", error=SourceError(FailureReason.HTTP_STATUS, "HTTP 503")),
            SpyAdapter("pdf_conversion", error=httpx.ConnectError("refused")),
            SpyAdapter("registry", record=None),
            SpyAdapter("portal", error=ValueError("bad markup")),
            SpyAdapter("soap", error=SourceError(FailureReason.NOT_AUTHORIZED, "cStat 217")),
        ]

        result = ResolutionOrchestrator(adapters=spies).resolve_with_trace(ACCESS_KEY)

        assert all(spy.calls == 1 for spy in spies)
        assert result.state == ResolutionState.SYNTHESIZED
        assert result.record.source_label == FALLBACK_SOURCE
        assert result.record.is_synthetic
        assert result.record.recipient_name
        assert result.record.total_value is not None
        assert [a.outcome.failure for a in result.attempts] == [
            FailureReason.HTTP_STATUS,
            FailureReason.NETWORK_ERROR,
            FailureReason.NO_FIELDS,
            FailureReason.UNPARSEABLE,
            FailureReason.NOT_AUTHORIZED,
        ]

    def test_empty_chain_synthesizes(self):
        result = ResolutionOrchestrator(adapters=[]).resolve_with_trace(ACCESS_KEY)

        assert result.state == ResolutionState.SYNTHESIZED
        assert result.attempts == []

    def test_broken_adapter_contained(self):
        broken = BrokenAdapter("qrcode")
        after = SpyAdapter("soap", RESOLVING)

        result = ResolutionOrchestrator(adapters=[broken, after]).resolve_with_trace(ACCESS_KEY)

        assert result.attempts[0].outcome.failure == FailureReason.UNEXPECTED
        assert result.record.source_label == "soap"

    def test_synthesis_is_deterministic(self):
        orchestrator = ResolutionOrchestrator(adapters=[SpyAdapter("soap")])
        assert orchestrator.resolve(ACCESS_KEY) == orchestrator.resolve(ACCESS_KEY)


class TestEnrichment:
    def test_issuer_merged_into_synthesized_record(self):
        registry = SpyAdapter("registry", ISSUER_ONLY)
        soap = SpyAdapter("soap", error=SourceError(FailureReason.NOT_AUTHORIZED, "cStat 217"))

        result = ResolutionOrchestrator(adapters=[registry, soap]).resolve_with_trace(ACCESS_KEY)
        record = result.record

        assert soap.calls == 1
        assert result.state == ResolutionState.SYNTHESIZED
        assert result.attempts[0].status == "enrichment"
        assert record.is_synthetic
        assert record.source_label == FALLBACK_SOURCE
        assert record.issuer_name == "FORNECEDOR EXEMPLO LTDA"
        assert record.issuer_address.display() == "AVENIDA PAULISTA, SAO PAULO, SP"
        assert "issuer data" in record.resolution_note

    def test_synthetic_partial_does_not_resolve(self):
        synthetic = PartialRecord(
            issuer_name="Comercial ABC Ltda.",
            total_value=Decimal("99.00"),
            document_blob="JVBERi0xLjQK",
            synthetic=True,
        )
        pdf = SpyAdapter("pdf_conversion", synthetic)
        portal = SpyAdapter("portal", error=SourceError(FailureReason.NO_FIELDS, "not_found"))

        result = ResolutionOrchestrator(adapters=[pdf, portal]).resolve_with_trace(ACCESS_KEY)
        record = result.record

        assert portal.calls == 1
        assert record.source_label == FALLBACK_SOURCE
        assert record.document_blob == "JVBERi0xLjQK"
        assert "rendered document" in record.resolution_note
        # Issuer fields from synthetic data are not trusted
        assert "issuer data" not in record.resolution_note

    def test_resolved_record_borrows_missing_issuer(self):
        registry = SpyAdapter("registry", ISSUER_ONLY)
        portal = SpyAdapter("portal", RESOLVING)

        record = ResolutionOrchestrator(adapters=[registry, portal]).resolve(ACCESS_KEY)

        assert record.source_label == "portal"
        assert record.issuer_name == "FORNECEDOR EXEMPLO LTDA"
        assert record.issuer_tax_id == "14200166000187"
        assert not record.is_synthetic

    def test_resolved_record_keeps_own_issuer(self):
        registry = SpyAdapter("registry", ISSUER_ONLY)
        portal = SpyAdapter("portal", PartialRecord(
            issuer_name="Emitente do Portal", recipient_name="Cliente", total_value=Decimal("1.00"),
        ))

        record = ResolutionOrchestrator(adapters=[registry, portal]).resolve(ACCESS_KEY)
        assert record.issuer_name == "Emitente do Portal"


class TestInvalidKey:
    @pytest.mark.parametrize("key", ["", "1234", ACCESS_KEY + "1", "A" * 44])
    def test_rejected_before_any_adapter(self, key):
        spy = SpyAdapter("qrcode", RESOLVING)

        with pytest.raises(InvalidAccessKeyError):
            ResolutionOrchestrator(adapters=[spy]).resolve(key)

        assert spy.calls == 0


class TestConfiguration:
    def test_build_adapters_respects_flags(self, failing_client):
        config = ResolverConfig(pdf_conversion_enabled=False, soap_enabled=False)
        adapters = build_adapters(config, failing_client)

        assert list(adapters) == ["qrcode", "registry", "portal"]

    def test_disabled_sources_never_invoked(self, mock_client):
        hosts = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(503)

        config = ResolverConfig(pdf_conversion_enabled=False, soap_enabled=False)
        result = ResolutionOrchestrator(config, client=mock_client(handler)).resolve_with_trace(ACCESS_KEY)

        assert result.invoked_sources == ["qrcode", "registry", "portal"]
        statuses = {a.source: a.status for a in result.attempts}
        assert statuses["pdf_conversion"] == "disabled"
        assert statuses["soap"] == "disabled"
        assert "ws.meudanfe.com" not in hosts
        assert not any(host.startswith("nfe.fazenda.sp") for host in hosts)
        assert result.state == ResolutionState.SYNTHESIZED

    def test_source_order(self, failing_client):
        config = ResolverConfig(source_order=("soap", "registry"))
        orchestrator = ResolutionOrchestrator(config, client=failing_client)

        assert [adapter.name for adapter in orchestrator.adapters] == ["soap", "registry"]
        assert orchestrator.resolve_with_trace(ACCESS_KEY).invoked_sources == ["soap", "registry"]

    def test_offline_creates_no_client(self, offline_config):
        orchestrator = ResolutionOrchestrator(offline_config)
        result = orchestrator.resolve_with_trace(ACCESS_KEY)

        assert orchestrator.adapters == []
        assert orchestrator._client is None
        assert result.invoked_sources == []
        assert result.record.is_synthetic

    def test_context_manager_closes_client(self):
        with ResolutionOrchestrator(ResolverConfig()) as orchestrator:
            client = orchestrator._client
            assert client is not None
        assert client.is_closed


class TestEndToEnd:
    def test_every_source_down(self, failing_client):
        result = ResolutionOrchestrator(ResolverConfig(), client=failing_client).resolve_with_trace(ACCESS_KEY)
        record = result.record

        assert result.invoked_sources == ["qrcode", "pdf_conversion", "registry", "portal", "soap"]
        assert all(not a.outcome.succeeded for a in result.attempts)
        assert record.source_label == FALLBACK_SOURCE
        assert record.access_key == ACCESS_KEY
        assert Decimal("10.00") <= record.total_value <= Decimal("1000.00")
        assert record.document_number == ACCESS_KEY[25:34]
        assert record.issue_date.year == 2024
        assert 1 <= record.issue_date.month <= 12
        assert 1 <= record.issue_date.day <= 28

    def test_qr_portal_answers(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("consultaQRCode.aspx"):
                return httpx.Response(200, json={"xml": make_nfe()})
            raise AssertionError(f"unexpected request to {request.url}")

        record = ResolutionOrchestrator(ResolverConfig(), client=mock_client(handler)).resolve(ACCESS_KEY)

        assert record.source_label == "qrcode"
        assert record.recipient_name == "Cliente Real Comércio Ltda"
        assert record.total_value == Decimal("125.00")
        assert not record.is_synthetic

    def test_only_pdf_service_answers(self, mock_client):
        pdf = b"%PDF-1.4 rendered"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "ws.meudanfe.com":
                return httpx.Response(200, content=pdf, headers={"content-type": "application/pdf"})
            return httpx.Response(503)

        result = ResolutionOrchestrator(ResolverConfig(), client=mock_client(handler)).resolve_with_trace(ACCESS_KEY)

        assert result.state == ResolutionState.SYNTHESIZED
        assert result.invoked_sources == ["qrcode", "pdf_conversion", "registry", "portal", "soap"]
        assert result.record.is_synthetic
        assert result.record.document_blob is not None


class TestSourceAttempt:
    def test_to_dict_failed(self):
        attempt = SourceAttempt(
            "soap",
            SourceOutcome.failed("soap", FailureReason.TIMEOUT, "read timed out"),
            elapsed_ms=1234.567,
        )

        assert attempt.to_dict() == {
            "source": "soap",
            "status": "failed",
            "failure": "timeout",
            "detail": "read timed out",
            "elapsed_ms": 1234.6,
        }

    def test_to_dict_resolved(self):
        attempt = SourceAttempt("qrcode", SourceOutcome.success("qrcode", RESOLVING), 10.0, resolved=True)

        data = attempt.to_dict()
        assert data["status"] == "resolved"
        assert data["failure"] is None
