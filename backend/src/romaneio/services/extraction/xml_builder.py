"""
Render a canonical record as an NFe-shaped XML document.

The PDF conversion service only accepts XML, so when no real document is
available one is built from whatever record we have (usually the
deterministic fallback). The shape mirrors the NFe 4.00 layout closely
enough for the service to render a DANFE; it is not signed and would not
validate against the official schema.
"""

from lxml import etree

from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import NOT_AVAILABLE, SYNTHETIC_RECIPIENT, CanonicalRecord

NFE_NAMESPACE = "http://www.portalfiscal.inf.br/nfe"
NFE_VERSION = "4.00"

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


def _add(parent: etree._Element, tag: str, text: str | None = None) -> etree._Element:
    element = etree.SubElement(parent, f"{{{NFE_NAMESPACE}}}{tag}")
    if text is not None:
        element.text = text
    return element


def build_invoice_xml(
    fields: AccessKeyFields,
    record: CanonicalRecord,
    recipient_placeholder: bool = True,
) -> str:
    """
    Build an NFe/infNFe document from a record.

    Args:
        fields: Parsed access key
        record: Record to render
        recipient_placeholder: Write SYNTHETIC_RECIPIENT instead of the
            record's recipient name, so that the extractor recognizes the
            document as synthetic when it comes back

    Returns:
        XML text with declaration
    """
    nfe = etree.Element(f"{{{NFE_NAMESPACE}}}NFe", nsmap={None: NFE_NAMESPACE})
    inf_nfe = _add(nfe, "infNFe")
    inf_nfe.set("Id", f"NFe{fields.raw}")
    inf_nfe.set("versao", NFE_VERSION)

    ide = _add(inf_nfe, "ide")
    _add(ide, "cUF", fields.state_code)
    _add(ide, "cNF", fields.numeric_code)
    _add(ide, "natOp", "VENDA")
    _add(ide, "mod", fields.model)
    _add(ide, "serie", str(int(fields.series)))
    _add(ide, "nNF", str(int(fields.number)))
    _add(ide, "dhEmi", f"{record.issue_date.isoformat()}T00:00:00-03:00")
    _add(ide, "tpNF", "1")
    _add(ide, "tpEmis", fields.emission_type)
    _add(ide, "cDV", fields.check_digit)

    emit = _add(inf_nfe, "emit")
    _add(emit, "CNPJ", record.issuer_tax_id or fields.issuer_tax_id)
    _add(emit, "xNome", record.issuer_name)
    ender_emit = _add(emit, "enderEmit")
    _add(ender_emit, "UF", fields.state or "SP")

    dest = _add(inf_nfe, "dest")
    if record.recipient_tax_id:
        _add(dest, "CNPJ", record.recipient_tax_id)
    if recipient_placeholder or record.recipient_name == NOT_AVAILABLE:
        _add(dest, "xNome", SYNTHETIC_RECIPIENT)
    else:
        _add(dest, "xNome", record.recipient_name)
    _add(dest, "indIEDest", "9")

    for index, item in enumerate(record.line_items, start=1):
        det = _add(inf_nfe, "det")
        det.set("nItem", str(index))
        prod = _add(det, "prod")
        _add(prod, "cProd", item.code)
        _add(prod, "xProd", item.name)
        _add(prod, "NCM", item.ncm or "00000000")
        _add(prod, "CFOP", item.cfop or "5102")
        _add(prod, "uCom", item.unit or "UN")
        _add(prod, "qCom", f"{item.quantity:.4f}")
        _add(prod, "vUnCom", f"{item.unit_value:.2f}")
        _add(prod, "vProd", f"{item.total_value:.2f}")

    total = _add(inf_nfe, "total")
    icms_tot = _add(total, "ICMSTot")
    _add(icms_tot, "vProd", f"{record.line_items_total or record.total_value:.2f}")
    _add(icms_tot, "vNF", f"{record.total_value:.2f}")

    body = etree.tostring(nfe, encoding="unicode", pretty_print=True)
    return XML_DECLARATION + body
