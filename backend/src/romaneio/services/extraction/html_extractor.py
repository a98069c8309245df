"""
Regex extraction of invoice fields from rendered portal HTML.

Used only where a source answers with a web page instead of XML or JSON.
Every field has an ordered list of patterns: labelled patterns first,
generic fallbacks last. The first pattern whose capture normalizes to a
usable value wins.

Design Decisions:
- Failure markers (not-found text, error banner, captcha) are checked
  before any field, so an error page never yields a record built from its
  incidental text
- Patterns tolerate any run of tags between a label and its value, which
  covers table, definition-list and label/span layouts alike
- Missing names are pre-seeded with the sentinel
"""

import html
import logging
import re
from collections.abc import Callable
from typing import Any

from romaneio.domain.models import NOT_AVAILABLE, Address, PartialRecord

from .normalize import FieldNormalizer

logger = logging.getLogger(__name__)


# =============================================================================
# Regex Patterns for Portal Fields
# =============================================================================

# Any run of tags and whitespace between a label and its value
_TAGS = r"(?:\s*</?[a-zA-Z][^>]*>)*\s*"
# Text content up to the next tag
_VALUE = r"([^<>]+?)\s*<"
_NAME_LABEL = r"(?:Nome\s*(?:/\s*Raz[ãa]o\s+Social)?|Raz[ãa]o\s+Social)\s*:?"

ISSUER_PATTERNS = [
    rf"Raz[ãa]o\s+Social\s+do\s+Emitente\s*:?{_TAGS}{_VALUE}",  # Razão Social do Emitente: ACME
    rf"Emitente\s*:?{_TAGS}(?:{_NAME_LABEL}{_TAGS})?{_VALUE}",  # <legend>Emitente</legend>...Nome...ACME
    rf"id=\"[^\"]*NomeEmitente[^\"]*\"[^>]*>{_VALUE}",  # <span id="lblNomeEmitente">ACME</span>
]

RECIPIENT_PATTERNS = [
    rf"Destinat[áa]rio\s*:?{_TAGS}(?:{_NAME_LABEL}{_TAGS})?{_VALUE}",  # Destinatário ... Nome ... Cliente
    rf"id=\"[^\"]*NomeDest[^\"]*\"[^>]*>{_VALUE}",  # <span id="lblNomeDest">Cliente</span>
    rf">\s*Nome\s*:?{_TAGS}{_VALUE}",  # <td>Nome</td><td>Cliente</td>
]

TOTAL_PATTERNS = [
    rf"Valor\s+Total(?:\s+da\s+(?:Nota|NF-?e))?\s*:?{_TAGS}R\$\s*([\d.,]+)",  # Valor Total da Nota: R$ 1.234,56
    rf"Valor\s+Total(?:\s+da\s+(?:Nota|NF-?e))?\s*:?{_TAGS}([\d.,]+)",  # Valor Total 1234,56
    rf"Total{_TAGS}R\$\s*([\d.,]+)",  # <th>Total</th><td>R$ 99,90</td>
    r"R\$\s*(\d{1,3}(?:\.\d{3})*,\d{2})",  # any R$ 1.234,56 on the page
]

STATUS_PATTERNS = [
    rf"Situa[çc][ãa]o(?:\s+Atual)?\s*:?{_TAGS}{_VALUE}",  # Situação Atual: AUTORIZADA
    rf"Status\s*:?{_TAGS}{_VALUE}",  # Status: Autorizada
]

ISSUE_DATE_PATTERNS = [
    rf"Data\s+de\s+Emiss[ãa]o\s*:?{_TAGS}(\d{{2}}/\d{{2}}/\d{{4}})",  # Data de Emissão: 15/01/2024
    rf"Emiss[ãa]o\s*:?{_TAGS}(\d{{2}}/\d{{2}}/\d{{4}})",  # Emissão 15/01/2024
    r"(\d{2}/\d{2}/\d{4})",  # first date on the page
]

DOCUMENT_NUMBER_PATTERNS = [
    rf"N[úu]mero(?:\s+da\s+NF-?e)?\s*:?{_TAGS}(\d[\d.]*)",  # Número: 000.000.001
    rf"\bN[º°o]\.?\s*:?{_TAGS}(\d[\d.]*)",  # Nº 1234
]

ADDRESS_PATTERNS = [
    rf"Endere[çc]o\s*:?{_TAGS}{_VALUE}",  # Endereço: Rua A, 10 - Centro
    rf"Logradouro\s*:?{_TAGS}{_VALUE}",  # Logradouro: Rua A
]

# Failure markers, checked before any field
NOT_FOUND_MARKERS = [
    r"NF-?e\s+n[ãa]o\s+encontrada",
    r"n[ãa]o\s+(?:foi\s+)?encontrad[ao]",
    r"not\s+found",
]

ERROR_MARKERS = [
    r"class=\"[^\"]*\b(?:erro|error|alert-danger)\b",
    r"Ocorreu\s+um\s+erro",
    r"Erro\s+(?:na|ao|durante)\s+(?:a\s+)?(?:consulta|processa)",
]

CAPTCHA_MARKERS = [
    r"captcha",
]

FAILURE_MARKERS = {
    "not_found": NOT_FOUND_MARKERS,
    "error": ERROR_MARKERS,
    "captcha": CAPTCHA_MARKERS,
}


class HtmlScrapeExtractor:
    """
    Extracts a PartialRecord from a portal HTML page.

    Example:
        extractor = HtmlScrapeExtractor()
        record = extractor.extract(response.text)
    """

    def __init__(self, normalizer: FieldNormalizer | None = None) -> None:
        self.normalizer = normalizer or FieldNormalizer()

    def detect_failure(self, page: str) -> str | None:
        """
        Check the page for failure markers.

        Returns:
            Marker kind ("not_found", "error", "captcha") or None
        """
        for kind, patterns in FAILURE_MARKERS.items():
            for pattern in patterns:
                if re.search(pattern, page, re.IGNORECASE):
                    return kind
        return None

    def extract(self, page: str | None) -> PartialRecord | None:
        """
        Extract invoice fields from HTML.

        Args:
            page: Raw HTML

        Returns:
            PartialRecord if at least one field matched; None for failure
            pages or pages with nothing recognizable
        """
        if not page:
            return None

        text = html.unescape(page)

        failure = self.detect_failure(text)
        if failure:
            logger.info(f"Portal page carries '{failure}' marker, skipping extraction")
            return None

        n = self.normalizer
        issuer = self._first_match(ISSUER_PATTERNS, text, n.normalize_string)
        recipient = self._first_match(RECIPIENT_PATTERNS, text, n.normalize_string)
        total_value = self._first_match(TOTAL_PATTERNS, text, n.normalize_amount)
        status = self._first_match(STATUS_PATTERNS, text, n.normalize_status)
        issue_date = self._first_match(ISSUE_DATE_PATTERNS, text, n.normalize_date)
        number = self._first_match(DOCUMENT_NUMBER_PATTERNS, text, self._digits)
        address = self._first_match(ADDRESS_PATTERNS, text, self._address)

        found = [issuer, recipient, total_value, status, issue_date, number, address]
        if all(value is None for value in found):
            logger.debug("No recognizable field in portal page")
            return None

        return PartialRecord(
            issuer_name=n.normalize_name(issuer),
            recipient_name=n.normalize_name(recipient),
            recipient_address=address,
            total_value=total_value,
            status=status,
            issue_date=issue_date,
            document_number=number,
            note="Scraped from consultation portal HTML",
        )

    def _first_match(
        self,
        patterns: list[str],
        text: str,
        parse: Callable[[str], Any],
    ) -> Any:
        """Return the first pattern capture that parses to a non-None value."""
        for pattern in patterns:
            match = re.search(pattern, text, re.IGNORECASE)
            if not match:
                continue
            value = parse(match.group(1))
            if value is not None:
                return value
        return None

    def _digits(self, raw: str) -> str | None:
        digits = re.sub(r"\D", "", raw)
        return digits or None

    def _address(self, raw: str) -> Address | None:
        cleaned = self.normalizer.normalize_string(raw)
        if not cleaned or cleaned == NOT_AVAILABLE:
            return None
        return Address(street=cleaned)
