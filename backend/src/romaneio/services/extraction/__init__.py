"""
Extraction subpackage - Turning source payloads into invoice fields.
"""

from .html_extractor import HtmlScrapeExtractor
from .normalize import FieldNormalizer
from .xml_builder import build_invoice_xml
from .xml_extractor import XmlInvoiceExtractor, find_embedded_xml, locate_invoice_node

__all__ = [
    "FieldNormalizer",
    "HtmlScrapeExtractor",
    "XmlInvoiceExtractor",
    "build_invoice_xml",
    "find_embedded_xml",
    "locate_invoice_node",
]
