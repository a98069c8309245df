"""
QR code consultation portal adapter.

The national portal exposes the same URL printed in NFC-e QR codes. When
it answers with JSON we map the JSON directly; when the JSON carries the
full XML we hand it to the XML extractor instead.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import FailureReason, PartialRecord
from romaneio.services.extraction.normalize import FieldNormalizer
from romaneio.services.extraction.xml_extractor import XmlInvoiceExtractor

from .base import SourceAdapter, SourceError

logger = logging.getLogger(__name__)

QRCODE_URL = "https://www.nfe.fazenda.gov.br/portal/consultaQRCode.aspx"
QRCODE_VERSION = "100"

# Production first, then homologation
ENVIRONMENTS = (1, 2)
ENVIRONMENT_NAMES = {1: "production", 2: "homologation"}


def build_qrcode_url(access_key: str, environment: int) -> str:
    """
    Build the consultation URL for a key.

    Signature and hash parameters are sent empty; the key goes last.
    """
    params = [
        ("nVersao", QRCODE_VERSION),
        ("tpAmb", str(environment)),
        ("cDest", ""),
        ("dhEmi", ""),
        ("vNF", ""),
        ("vICMS", ""),
        ("digVal", ""),
        ("cIdToken", ""),
        ("cHashQRCode", ""),
        ("chNFe", access_key),
    ]
    return f"{QRCODE_URL}?{urlencode(params)}"


class QrCodePortalAdapter(SourceAdapter):
    """Queries the QR code portal in production, then homologation."""

    name = "qrcode"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.normalizer = FieldNormalizer()
        self.xml_extractor = XmlInvoiceExtractor(self.normalizer)

    def default_headers(self) -> dict[str, str]:
        return {
            **super().default_headers(),
            "Accept": "application/json, text/plain, */*",
            "Referer": "https://www.nfe.fazenda.gov.br/",
        }

    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        data = self._fetch_json(fields)
        xml = _embedded_xml(data)
        if xml:
            logger.debug(f"QR response for {fields.raw} embeds XML")
            record = self.xml_extractor.extract(xml, fields.raw)
            if record is not None:
                return record
        return self.record_from_json(data)

    def fetch_xml(self, fields: AccessKeyFields) -> str | None:
        """
        Return the NFe XML embedded in the portal's JSON, if any.

        Used as an XML provider by the PDF conversion adapter. Failures
        are logged and reported as None.
        """
        try:
            data = self._fetch_json(fields)
        except (SourceError, httpx.HTTPError, ValueError) as e:
            logger.debug(f"No XML from QR portal for {fields.raw}: {e}")
            return None
        return _embedded_xml(data)

    def record_from_json(self, data: dict[str, Any]) -> PartialRecord:
        """Map the portal's JSON shape onto a PartialRecord."""
        n = self.normalizer
        dest = _section(data, "dest")
        emit = _section(data, "emit")
        ide = _section(data, "ide")
        total = _section(data, "total")

        total_value = n.normalize_amount(
            total.get("vNF") or total.get("vNFe") or _section(total, "ICMSTot").get("vNF")
        )

        return PartialRecord(
            issuer_name=n.normalize_name(emit.get("xNome") or emit.get("nome")),
            issuer_tax_id=n.normalize_tax_id(emit.get("CNPJ") or emit.get("cnpj")),
            recipient_name=n.normalize_name(dest.get("nome") or dest.get("xNome")),
            recipient_tax_id=n.normalize_tax_id(
                dest.get("CNPJ") or dest.get("CPF") or dest.get("cnpj") or dest.get("cpf")
            ),
            recipient_address=n.normalize_address(_section(dest, "enderDest")),
            total_value=total_value,
            status=n.normalize_status(data.get("status")),
            issue_date=n.normalize_date(ide.get("dhEmi")),
            document_number=n.normalize_string(ide.get("nNF")),
            note="Data from the QR code consultation portal",
        )

    def _fetch_json(self, fields: AccessKeyFields) -> dict[str, Any]:
        """
        Try each environment; return the first JSON object served.

        Raises:
            SourceError: With the failure of the last environment tried
        """
        failure = SourceError(FailureReason.NO_FIELDS, "No environment answered")

        for environment in ENVIRONMENTS:
            url = build_qrcode_url(fields.raw, environment)
            label = ENVIRONMENT_NAMES[environment]
            logger.debug(f"Trying QR code {label} environment for {fields.raw}")

            try:
                response = self.get(url)
            except httpx.TimeoutException as e:
                failure = SourceError(FailureReason.TIMEOUT, f"{label}: {e}")
                continue
            except httpx.HTTPStatusError as e:
                failure = SourceError(
                    FailureReason.HTTP_STATUS, f"{label}: HTTP {e.response.status_code}"
                )
                continue
            except httpx.HTTPError as e:
                failure = SourceError(FailureReason.NETWORK_ERROR, f"{label}: {e}")
                continue

            content_type = response.headers.get("content-type", "")
            if "application/json" not in content_type:
                failure = SourceError(
                    FailureReason.UNPARSEABLE, f"{label}: unexpected content type '{content_type}'"
                )
                continue

            try:
                data = response.json()
            except ValueError as e:
                failure = SourceError(FailureReason.UNPARSEABLE, f"{label}: {e}")
                continue

            if not isinstance(data, dict):
                failure = SourceError(FailureReason.UNPARSEABLE, f"{label}: JSON is not an object")
                continue

            logger.info(f"QR code {label} environment answered for {fields.raw}")
            return data

        raise failure


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _embedded_xml(data: dict[str, Any]) -> str | None:
    xml = data.get("xml")
    if isinstance(xml, str) and xml.strip().startswith("<"):
        return xml
    return None
