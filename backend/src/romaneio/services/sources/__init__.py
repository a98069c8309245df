"""
Source adapters, one per external data source.

Each adapter implements resolve(access_key, fields) -> SourceOutcome and
never raises.
"""

from .base import SourceAdapter, SourceError
from .pdf_conversion import (
    PdfConversionAdapter,
    XmlPayload,
    source_xml_provider,
    synthetic_xml_provider,
)
from .portal import HtmlScrapedPortalAdapter
from .qrcode import QrCodePortalAdapter
from .registry import PublicRegistryAdapter
from .soap import SoapProtocolAdapter

__all__ = [
    "HtmlScrapedPortalAdapter",
    "PdfConversionAdapter",
    "PublicRegistryAdapter",
    "QrCodePortalAdapter",
    "SoapProtocolAdapter",
    "SourceAdapter",
    "SourceError",
    "XmlPayload",
    "source_xml_provider",
    "synthetic_xml_provider",
]
