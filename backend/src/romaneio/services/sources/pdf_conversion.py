"""
Invoice-to-PDF conversion adapter (MeuDanfe).

The conversion service renders a DANFE from an NFe XML. It does not tell
us anything we did not send, so invoice fields are re-read from the XML we
posted and the returned document is attached to the record.

Design Decisions:
- The XML comes from an ordered list of providers: the QR portal's real
  XML first, then a synthetic document built from the fallback generator
- The service's accepted request shape is inconsistent, so three encodings
  are tried in order (form field, multipart upload, raw body); the first
  2xx wins
- A non-2xx moves on to the next encoding; a transport error aborts the
  adapter, since the next encoding would hit the same dead host
- Records derived from synthetic XML stay flagged synthetic
"""

import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

import httpx

from romaneio.config import ResolverConfig
from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import FailureReason, PartialRecord
from romaneio.services.extraction.xml_builder import build_invoice_xml
from romaneio.services.extraction.xml_extractor import XmlInvoiceExtractor, find_embedded_xml
from romaneio.services.fallback import DeterministicFallbackGenerator

from .base import SourceAdapter, SourceError

logger = logging.getLogger(__name__)

# Request encodings, in the order they are tried
ENCODINGS = ("form", "multipart", "raw")

# JSON keys that may carry the rendered document
DOCUMENT_KEYS = ["pdf", "danfe", "base64", "data", "arquivo"]


@dataclass(frozen=True)
class XmlPayload:
    """An XML document to send, and whether it was made up."""
    xml: str
    synthetic: bool
    origin: str


XmlProvider = Callable[[AccessKeyFields], XmlPayload | None]


def synthetic_xml_provider(
    generator: DeterministicFallbackGenerator | None = None,
) -> XmlProvider:
    """Provider building XML from the fallback record, with the placeholder recipient."""
    generator = generator or DeterministicFallbackGenerator()

    def provide(fields: AccessKeyFields) -> XmlPayload:
        record = generator.generate(fields)
        return XmlPayload(
            xml=build_invoice_xml(fields, record, recipient_placeholder=True),
            synthetic=True,
            origin="synthetic",
        )

    return provide


def source_xml_provider(fetch_xml: Callable[[AccessKeyFields], str | None], origin: str) -> XmlProvider:
    """Provider wrapping an adapter's fetch_xml(), e.g. the QR portal's."""

    def provide(fields: AccessKeyFields) -> XmlPayload | None:
        xml = fetch_xml(fields)
        if not xml:
            return None
        return XmlPayload(xml=xml, synthetic=False, origin=origin)

    return provide


class PdfConversionAdapter(SourceAdapter):
    """Sends an NFe XML to the conversion service and keeps the rendered DANFE."""

    name = "pdf_conversion"

    def __init__(
        self,
        config: ResolverConfig,
        client: httpx.Client | None = None,
        timeout: float | None = None,
        providers: list[XmlProvider] | None = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            config: Resolver configuration
            client: Shared HTTP client
            timeout: Per-request timeout; defaults to config.pdf_timeout
            providers: XML providers in priority order; defaults to the
                synthetic provider alone
        """
        super().__init__(config, client, timeout if timeout is not None else config.pdf_timeout)
        self.providers = providers if providers is not None else [synthetic_xml_provider()]
        self.xml_extractor = XmlInvoiceExtractor()

    def default_headers(self) -> dict[str, str]:
        headers = {
            **super().default_headers(),
            "Accept": "application/json, application/pdf, */*",
        }
        if self.config.pdf_api_key:
            headers["Authorization"] = f"Bearer {self.config.pdf_api_key}"
        return headers

    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        payload = self.obtain_payload(fields)
        if payload is None:
            raise SourceError(FailureReason.NO_FIELDS, "No XML payload available")

        logger.info(
            f"Sending {payload.origin} XML for {fields.raw} to conversion service "
            f"({len(payload.xml)} chars)"
        )
        response = self.convert(payload.xml)

        returned_xml = find_embedded_xml(response.text) if _is_textual(response) else None
        record = None
        if returned_xml:
            record = self.xml_extractor.extract(returned_xml, fields.raw)
        if record is None:
            record = self.xml_extractor.extract(payload.xml, fields.raw)
        if record is None:
            raise SourceError(FailureReason.UNPARSEABLE, f"Sent {payload.origin} XML has no invoice node")

        note = "DANFE rendered by conversion service"
        if payload.synthetic:
            note += " from a synthesized document"

        return replace(
            record,
            document_blob=self.document_blob(response),
            synthetic=payload.synthetic,
            note=note,
        )

    def obtain_payload(self, fields: AccessKeyFields) -> XmlPayload | None:
        """Ask each provider in turn for an XML document."""
        for provider in self.providers:
            payload = provider(fields)
            if payload is not None:
                return payload
        return None

    def convert(self, xml: str) -> httpx.Response:
        """
        Post the XML with each encoding until one is accepted.

        Raises:
            SourceError: HTTP_STATUS when every encoding was rejected
            httpx.HTTPError: On transport failure
        """
        statuses: list[str] = []

        for encoding in ENCODINGS:
            response = self._send(encoding, xml)
            if response.is_success:
                logger.debug(f"Conversion service accepted '{encoding}' encoding")
                return response

            logger.debug(f"Conversion service rejected '{encoding}' encoding: HTTP {response.status_code}")
            statuses.append(f"{encoding}={response.status_code}")

        raise SourceError(FailureReason.HTTP_STATUS, f"All encodings rejected ({', '.join(statuses)})")

    def document_blob(self, response: httpx.Response) -> str:
        """
        Rendered document as base64 text.

        Binary PDFs are encoded; JSON answers are searched for a document
        key; anything else is kept as returned.
        """
        content_type = response.headers.get("content-type", "")
        if "application/pdf" in content_type or response.content.startswith(b"%PDF"):
            return base64.b64encode(response.content).decode("ascii")

        if "json" in content_type:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                for key in DOCUMENT_KEYS:
                    value = data.get(key)
                    if isinstance(value, str) and value:
                        return value

        return response.text.strip()

    def _send(self, encoding: str, xml: str) -> httpx.Response:
        url = self.config.pdf_api_url
        headers = self.default_headers()

        if encoding == "form":
            return self.client.post(url, data={"xml": xml}, headers=headers, timeout=self.timeout)
        if encoding == "multipart":
            files = {"file": ("nfe.xml", xml.encode("utf-8"), "application/xml")}
            return self.client.post(url, files=files, headers=headers, timeout=self.timeout)

        headers["Content-Type"] = "application/xml"
        return self.client.post(url, content=xml.encode("utf-8"), headers=headers, timeout=self.timeout)


def _is_textual(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return "pdf" not in content_type and not response.content.startswith(b"%PDF")
