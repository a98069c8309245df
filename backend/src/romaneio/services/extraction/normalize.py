"""
Field normalization for values scraped from invoices.

Sources disagree on almost every format: XML carries "1234.56", portals
render "R$ 1.234,56", JSON APIs send numbers or strings. This module turns
any of them into typed values:
- Monetary amounts: strip currency symbols, resolve decimal separators
- Dates: ISO timestamps and Brazilian dd/mm/yyyy into date objects
- Names: clean whitespace and collapse known placeholders to the sentinel
- Addresses: build Address values from loosely named keys

Design Decisions:
- Unparseable values become None; callers decide on the default
- Explicit placeholder list: names that upstream generators write when
  they have nothing real to say
- Negative amounts are clamped to zero and logged, never propagated
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from romaneio.domain.models import CENTS, NOT_AVAILABLE, SYNTHETIC_RECIPIENT, Address, RecordStatus

logger = logging.getLogger(__name__)


# Names that mean "no real name here"
PLACEHOLDER_NAMES = [
    SYNTHETIC_RECIPIENT,
    "Cliente não informado",
    "Destinatário não informado",
    "Empresa não encontrada",
    "N/A",
    NOT_AVAILABLE,
]

# Currency markers to strip before parsing
CURRENCY_SYMBOLS = ["R$", "BRL", "$"]

# Date format patterns to try (in order of preference)
DATE_FORMATS = [
    "%Y-%m-%d",      # ISO format: 2024-01-15
    "%d/%m/%Y",      # Brazilian: 15/01/2024
    "%d-%m-%Y",      # Brazilian with dashes
    "%d.%m.%Y",      # Brazilian with dots
    "%d/%m/%y",      # Short year: 15/01/24
]

_PLACEHOLDER_KEYS = {name.casefold() for name in PLACEHOLDER_NAMES}


class FieldNormalizer:
    """
    Normalizes raw source values into typed domain values.

    Example:
        normalizer = FieldNormalizer()
        normalizer.normalize_amount("R$ 1.234,56")
        # Decimal("1234.56")
    """

    def normalize_amount(self, value: Any) -> Decimal | None:
        """
        Parse a monetary amount.

        Handles:
        - Currency symbols (R$, BRL)
        - Brazilian and US separators (1.234,56 or 1,234.56)
        - Numbers already typed as int, float or Decimal

        Args:
            value: Raw value from XML text, JSON or HTML

        Returns:
            Decimal quantized to 2 places, or None if nothing parseable
        """
        if value is None or isinstance(value, bool):
            return None

        if isinstance(value, (int, float, Decimal)):
            cleaned = str(value)
        else:
            cleaned = self._clean_number(str(value))

        if not cleaned:
            return None

        try:
            amount = Decimal(cleaned)
        except (InvalidOperation, ValueError) as e:
            logger.warning(f"Failed to parse amount '{value}': {e}")
            return None

        # JSON sources may carry NaN or Infinity
        if not amount.is_finite():
            logger.warning(f"Non-finite amount '{value}' ignored")
            return None

        try:
            amount = amount.quantize(CENTS)
        except InvalidOperation as e:
            logger.warning(f"Amount '{value}' out of range: {e}")
            return None

        if amount < 0:
            logger.warning(f"Negative amount '{value}' clamped to zero")
            return Decimal("0.00")

        return amount

    def normalize_quantity(self, value: Any) -> Decimal | None:
        """
        Parse a quantity, keeping its original precision.

        NFe quantities carry up to four decimal places, so no quantization.
        """
        if value is None or isinstance(value, bool):
            return None

        if isinstance(value, (int, float, Decimal)):
            cleaned = str(value)
        else:
            cleaned = self._clean_number(str(value))

        if not cleaned:
            return None

        try:
            quantity = Decimal(cleaned)
        except (InvalidOperation, ValueError) as e:
            logger.warning(f"Failed to parse quantity '{value}': {e}")
            return None

        if not quantity.is_finite():
            logger.warning(f"Non-finite quantity '{value}' ignored")
            return None

        return abs(quantity)

    def normalize_date(self, value: Any) -> date | None:
        """
        Parse an issue date.

        Accepts date/datetime objects, ISO timestamps with time and offset
        (2024-01-15T10:30:00-03:00) and the formats in DATE_FORMATS.

        Args:
            value: Raw date value

        Returns:
            date, or None if no format matched
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value

        text = str(value).strip()
        if not text:
            return None

        # ISO timestamps: keep only the calendar part
        iso_match = re.match(r"(\d{4}-\d{2}-\d{2})(?:[T\s]|$)", text)
        if iso_match:
            text = iso_match.group(1)
        else:
            text = text.split()[0]

        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue

        logger.debug(f"Failed to parse date '{value}'")
        return None

    def normalize_string(self, value: Any) -> str | None:
        """
        Clean a string field.

        Removes control characters and collapses whitespace. Blank strings
        become None.
        """
        if value is None:
            return None

        cleaned = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", str(value))
        cleaned = " ".join(cleaned.split())
        return cleaned or None

    def normalize_name(self, value: Any) -> str:
        """
        Clean a party name, mapping blanks and placeholders to the sentinel.

        Args:
            value: Raw name

        Returns:
            Cleaned name, or NOT_AVAILABLE
        """
        cleaned = self.normalize_string(value)
        if cleaned is None or self.is_placeholder(cleaned):
            return NOT_AVAILABLE
        return cleaned

    def is_placeholder(self, name: str) -> bool:
        return name.strip().casefold() in _PLACEHOLDER_KEYS

    def normalize_status(self, value: Any) -> RecordStatus | None:
        """Map a status text ('Autorizada', '100 - Autorizado o uso') to RecordStatus."""
        cleaned = self.normalize_string(value)
        if cleaned is None:
            return None
        lowered = cleaned.lower()
        if "autoriz" in lowered or "authoriz" in lowered or lowered == "100":
            return RecordStatus.AUTHORIZED
        return RecordStatus.UNKNOWN

    def normalize_tax_id(self, value: Any) -> str | None:
        """Keep only the digits of a CNPJ/CPF; None if there are none."""
        if value is None:
            return None
        digits = re.sub(r"\D", "", str(value))
        return digits or None

    def normalize_address(self, data: dict[str, Any] | None) -> Address | None:
        """
        Build an Address from a mapping with NFe or registry key names.

        Recognizes the NFe names (xLgr, nro, xBairro, xMun, UF, CEP) as
        well as the lowercase names used by JSON APIs.

        Returns:
            Address, or None when every part is empty
        """
        if not data:
            return None

        def pick(*keys: str) -> str | None:
            for key in keys:
                cleaned = self.normalize_string(data.get(key))
                if cleaned:
                    return cleaned
            return None

        address = Address(
            street=pick("xLgr", "logradouro", "street", "endereco"),
            number=pick("nro", "numero", "number"),
            district=pick("xBairro", "bairro", "district"),
            city=pick("xMun", "municipio", "cidade", "city"),
            state=pick("UF", "uf", "state"),
            postal_code=pick("CEP", "cep", "postal_code"),
        )
        if address.is_empty:
            return None
        return address

    def _clean_number(self, text: str) -> str:
        """
        Reduce a formatted number to something Decimal accepts.

        Separator rules:
        - Both ',' and '.': whichever comes last is the decimal separator
        - Only ',': a single comma is decimal, several are thousands
        - Only '.': a single dot is decimal, several are thousands
        """
        cleaned = text.strip()
        for symbol in CURRENCY_SYMBOLS:
            cleaned = cleaned.replace(symbol, "")
        cleaned = re.sub(r"\s", "", cleaned)

        negative = cleaned.startswith("-")
        cleaned = re.sub(r"[^\d.,]", "", cleaned)

        if "," in cleaned and "." in cleaned:
            if cleaned.rindex(",") > cleaned.rindex("."):
                # Brazilian format: 1.234,56
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                # US format: 1,234.56
                cleaned = cleaned.replace(",", "")
        elif "," in cleaned:
            if cleaned.count(",") == 1:
                cleaned = cleaned.replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif cleaned.count(".") > 1:
            cleaned = cleaned.replace(".", "")

        if not re.search(r"\d", cleaned):
            return ""

        return f"-{cleaned}" if negative else cleaned
