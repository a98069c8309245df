"""
NFe XML extraction.

Invoices arrive in many shapes: a bare infNFe, an NFe wrapper, an nfeProc
protocol envelope, with the default namespace, with an arbitrary prefix, or
with no namespace at all. The extractor locates the infNFe node through an
ordered list of strategies and then reads every field by local name, so the
namespace never matters after the node is found.

Design Decisions:
- lxml with entity resolution and network access disabled
- Locate strategies are an explicit ordered list, each testable on its own
- Tax groups try their regime variants in priority order; first populated
  variant wins
- Malformed documents return None instead of raising
"""

import html
import json
import logging
import re
from collections.abc import Callable
from dataclasses import replace
from decimal import Decimal
from typing import Any

from lxml import etree

from romaneio.domain.access_key import InvalidAccessKeyError, parse_access_key
from romaneio.domain.hashing import derived_issue_date
from romaneio.domain.models import (
    DEFAULT_CATEGORY,
    Address,
    LineItem,
    PartialRecord,
    RecordStatus,
    TaxBreakdown,
    TaxTotals,
)

from .normalize import FieldNormalizer

logger = logging.getLogger(__name__)

AUTHORIZED_STATUS = "100"

# Tax groups under det/imposto, each with its regime variants in priority order
TAX_VARIANTS = {
    "ICMS": [
        "ICMS00", "ICMS10", "ICMS20", "ICMS30", "ICMS40", "ICMS51",
        "ICMS60", "ICMS70", "ICMS90",
        "ICMSSN101", "ICMSSN102", "ICMSSN201", "ICMSSN202", "ICMSSN500",
        "ICMSSN900",
    ],
    "IPI": ["IPITrib", "IPINT"],
    "PIS": ["PISAliq", "PISQtde", "PISNT", "PISOutr"],
    "COFINS": ["COFINSAliq", "COFINSQtde", "COFINSNT", "COFINSOutr"],
}

# Rate and amount element names per tax group
TAX_FIELDS = {
    "ICMS": ("pICMS", "vICMS"),
    "IPI": ("pIPI", "vIPI"),
    "PIS": ("pPIS", "vPIS"),
    "COFINS": ("pCOFINS", "vCOFINS"),
}

# Patterns for an NFe document embedded in some other response body
EMBEDDED_XML_PATTERNS = [
    r"<(?:[\w\-]+:)?nfeProc(?=[\s>]).*?</(?:[\w\-]+:)?nfeProc>",
    r"<(?:[\w\-]+:)?NFe(?=[\s>]).*?</(?:[\w\-]+:)?NFe>",
    r"<(?:[\w\-]+:)?nfe(?=[\s>]).*?</(?:[\w\-]+:)?nfe>",
]

# JSON keys that may carry the XML document as a string
EMBEDDED_XML_KEYS = ["xml", "nfe", "xmlNFe"]

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)

_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    remove_blank_text=True,
)


def local_name(element: Any) -> str | None:
    """Tag name without namespace; None for comments and processing instructions."""
    if not isinstance(element.tag, str):
        return None
    return etree.QName(element).localname


def find_child(node: Any, *path: str) -> Any | None:
    """Walk direct children by local name, e.g. find_child(inf, "total", "ICMSTot")."""
    current = node
    for name in path:
        if current is None:
            return None
        current = next((child for child in current if local_name(child) == name), None)
    return current


def find_children(node: Any, name: str) -> list[Any]:
    if node is None:
        return []
    return [child for child in node if local_name(child) == name]


def child_text(node: Any, *path: str) -> str | None:
    element = find_child(node, *path)
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None


def parse_xml(document: str | bytes) -> Any | None:
    """
    Parse a document into an lxml root element.

    Returns:
        Root element, or None if the document is malformed
    """
    if isinstance(document, str):
        # lxml refuses str input carrying an encoding declaration
        document = _XML_DECLARATION.sub("", document, count=1).strip().encode("utf-8")
    if not document:
        return None
    try:
        return etree.fromstring(document, parser=_PARSER)
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.debug(f"Malformed XML: {e}")
        return None


# =============================================================================
# infNFe locate strategies
# =============================================================================

def _at_root(root: Any) -> Any | None:
    return root if local_name(root) == "infNFe" else None


def _under_wrapper(root: Any) -> Any | None:
    return find_child(root, "infNFe")


def _under_envelope(root: Any) -> Any | None:
    for wrapper in root:
        found = find_child(wrapper, "infNFe")
        if found is not None:
            return found
    return None


def _by_declared_prefixes(root: Any) -> Any | None:
    namespaces: dict[str, str] = {}
    for element in root.iter():
        for prefix, uri in element.nsmap.items():
            namespaces.setdefault(prefix or "default", uri)

    for prefix, uri in namespaces.items():
        matches = root.xpath(f".//{prefix}:infNFe", namespaces={prefix: uri})
        if matches:
            return matches[0]
    return None


def _by_local_name(root: Any) -> Any | None:
    matches = root.xpath('//*[local-name()="infNFe"]')
    return matches[0] if matches else None


LOCATE_STRATEGIES: list[tuple[str, Callable[[Any], Any | None]]] = [
    ("root", _at_root),
    ("wrapper", _under_wrapper),
    ("protocol_envelope", _under_envelope),
    ("declared_prefixes", _by_declared_prefixes),
    ("local_name", _by_local_name),
]


def locate_invoice_node(root: Any) -> tuple[Any | None, str | None]:
    """
    Find the infNFe node using each strategy in turn.

    Returns:
        Tuple of (node, strategy name); (None, None) when nothing matched
    """
    for name, strategy in LOCATE_STRATEGIES:
        node = strategy(root)
        if node is not None:
            return node, name
    return None, None


def find_embedded_xml(text: str | None) -> str | None:
    """
    Recover an NFe document embedded in an arbitrary response body.

    Looks for JSON keys that commonly hold the XML, then for nfeProc or NFe
    markup (escaped or not) anywhere in the text.

    Args:
        text: Response body

    Returns:
        The XML fragment, or None
    """
    if not text:
        return None

    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if payload is not None:
        text = _xml_from_json(payload) or ""

    candidates = [text]
    if "&lt;" in text:
        candidates.append(html.unescape(text))

    for candidate in candidates:
        for pattern in EMBEDDED_XML_PATTERNS:
            match = re.search(pattern, candidate, re.DOTALL)
            if match:
                return match.group(0)

    return text if payload is not None and text else None


def _xml_from_json(payload: Any, depth: int = 0) -> str | None:
    if not isinstance(payload, dict) or depth > 2:
        return None
    for key in EMBEDDED_XML_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and "<" in value:
            return value
    for value in payload.values():
        found = _xml_from_json(value, depth + 1)
        if found:
            return found
    return None


class XmlInvoiceExtractor:
    """
    Extracts a PartialRecord from an NFe XML document.

    Example:
        extractor = XmlInvoiceExtractor()
        record = extractor.extract(xml_text)
        if record is not None:
            print(record.recipient_name, record.total_value)
    """

    def __init__(self, normalizer: FieldNormalizer | None = None) -> None:
        self.normalizer = normalizer or FieldNormalizer()

    def extract(
        self,
        document: str | bytes,
        access_key: str | None = None,
    ) -> PartialRecord | None:
        """
        Extract invoice fields from an XML document.

        Args:
            document: XML text
            access_key: Key of the invoice, used to derive a missing issue
                date; read from the document when not given

        Returns:
            PartialRecord, or None if the document is malformed or carries
            no invoice node
        """
        root = parse_xml(document)
        if root is None:
            return None

        inf_nfe, strategy = locate_invoice_node(root)
        if inf_nfe is None:
            logger.debug("No infNFe node found in document")
            return None

        logger.debug(f"Located infNFe via '{strategy}' strategy")

        n = self.normalizer
        emit = find_child(inf_nfe, "emit")
        dest = find_child(inf_nfe, "dest")
        ide = find_child(inf_nfe, "ide")
        icms_tot = find_child(inf_nfe, "total", "ICMSTot")

        total_value = n.normalize_amount(child_text(icms_tot, "vNF"))
        if total_value is None:
            total_value = n.normalize_amount(child_text(icms_tot, "vProd"))

        record = PartialRecord(
            issuer_name=n.normalize_name(
                child_text(emit, "xNome") or child_text(emit, "xFant")
            ),
            issuer_tax_id=n.normalize_tax_id(
                child_text(emit, "CNPJ") or child_text(emit, "CPF")
            ),
            issuer_address=self._address(find_child(emit, "enderEmit")),
            recipient_name=n.normalize_name(child_text(dest, "xNome")),
            recipient_tax_id=(
                n.normalize_tax_id(child_text(dest, "CNPJ") or child_text(dest, "CPF"))
                or child_text(dest, "idEstrangeiro")
            ),
            recipient_state_registration=self._state_registration(dest),
            recipient_address=self._address(find_child(dest, "enderDest")),
            total_value=total_value,
            status=self._status(root),
            issue_date=n.normalize_date(child_text(ide, "dhEmi") or child_text(ide, "dEmi")),
            document_number=child_text(ide, "nNF"),
            series=child_text(ide, "serie"),
            line_items=tuple(self._line_items(inf_nfe)),
            tax_totals=self._tax_totals(icms_tot),
            note="Extracted from NFe XML",
        )

        if record.is_empty:
            return None

        if record.issue_date is None:
            key = access_key or self._access_key(root, inf_nfe)
            if key:
                try:
                    fields = parse_access_key(key)
                except InvalidAccessKeyError:
                    logger.debug(f"Cannot derive issue date from key '{key}'")
                else:
                    record = replace(record, issue_date=derived_issue_date(fields))

        return record

    def _address(self, node: Any) -> Address | None:
        if node is None:
            return None
        return self.normalizer.normalize_address(
            {local_name(child): child.text for child in node if local_name(child)}
        )

    def _state_registration(self, dest: Any) -> str | None:
        ie = child_text(dest, "IE")
        if ie:
            return ie
        # indIEDest 2 = exempt, 9 = non-contributor
        indicator = child_text(dest, "indIEDest")
        return {"2": "ISENTO", "9": "NAO CONTRIBUINTE"}.get(indicator or "")

    def _status(self, root: Any) -> RecordStatus:
        matches = root.xpath('//*[local-name()="infProt"]/*[local-name()="cStat"]')
        if not matches or matches[0].text is None:
            return RecordStatus.AUTHORIZED
        if matches[0].text.strip() == AUTHORIZED_STATUS:
            return RecordStatus.AUTHORIZED
        return RecordStatus.UNKNOWN

    def _access_key(self, root: Any, inf_nfe: Any) -> str | None:
        id_attr = inf_nfe.get("Id") or ""
        digits = re.sub(r"\D", "", id_attr)
        if len(digits) == 44:
            return digits

        matches = root.xpath('//*[local-name()="infProt"]/*[local-name()="chNFe"]')
        if matches and matches[0].text:
            return matches[0].text.strip()
        return None

    def _tax_totals(self, icms_tot: Any) -> TaxTotals | None:
        if icms_tot is None:
            return None

        def amount(name: str) -> Decimal:
            return self.normalizer.normalize_amount(child_text(icms_tot, name)) or Decimal("0.00")

        return TaxTotals(
            icms_base=amount("vBC"),
            icms=amount("vICMS"),
            ipi=amount("vIPI"),
            pis=amount("vPIS"),
            cofins=amount("vCOFINS"),
            total_taxes=amount("vTotTrib"),
        )

    def _line_items(self, inf_nfe: Any) -> list[LineItem]:
        n = self.normalizer
        items: list[LineItem] = []

        for det in find_children(inf_nfe, "det"):
            prod = find_child(det, "prod")
            if prod is None:
                continue

            quantity = n.normalize_quantity(child_text(prod, "qCom")) or Decimal("0")
            unit_value = n.normalize_amount(child_text(prod, "vUnCom")) or Decimal("0.00")
            total_value = n.normalize_amount(child_text(prod, "vProd"))
            if total_value is None:
                total_value = (quantity * unit_value).quantize(Decimal("0.01"))

            items.append(LineItem(
                name=n.normalize_string(child_text(prod, "xProd")) or "",
                quantity=quantity,
                unit_value=unit_value,
                total_value=total_value,
                code=child_text(prod, "cProd") or det.get("nItem", ""),
                category=DEFAULT_CATEGORY,
                ncm=child_text(prod, "NCM"),
                cfop=child_text(prod, "CFOP"),
                unit=child_text(prod, "uCom"),
                taxes=tuple(self._taxes(find_child(det, "imposto"))),
            ))

        return items

    def _taxes(self, imposto: Any) -> list[TaxBreakdown]:
        """Read each tax group, taking the first populated regime variant."""
        if imposto is None:
            return []

        breakdowns: list[TaxBreakdown] = []
        for tax, variants in TAX_VARIANTS.items():
            group = find_child(imposto, tax)
            if group is None:
                continue

            for variant in variants:
                node = find_child(group, variant)
                if node is None or len(node) == 0:
                    continue

                rate_name, amount_name = TAX_FIELDS[tax]
                breakdowns.append(TaxBreakdown(
                    tax=tax,
                    variant=variant,
                    situation_code=child_text(node, "CST") or child_text(node, "CSOSN"),
                    base_value=self.normalizer.normalize_amount(child_text(node, "vBC")),
                    rate=self.normalizer.normalize_quantity(child_text(node, rate_name)),
                    amount=self.normalizer.normalize_amount(child_text(node, amount_name)),
                ))
                break

        return breakdowns
