"""
SEFAZ SOAP protocol consultation adapter (NFeConsultaProtocolo4).

Posts the consSitNFe query to the state authority of the issuer. Only an
authorized answer (cStat 100) counts; any other status is "not resolved".
"""

import logging
from typing import Any

from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import FailureReason, PartialRecord, RecordStatus
from romaneio.services.extraction.normalize import FieldNormalizer
from romaneio.services.extraction.xml_extractor import (
    AUTHORIZED_STATUS,
    XmlInvoiceExtractor,
    find_embedded_xml,
    parse_xml,
)

from .base import SourceAdapter, SourceError

logger = logging.getLogger(__name__)

SOAP_ENVELOPE_NAMESPACE = "http://schemas.xmlsoap.org/soap/envelope/"
CONSULTA_NAMESPACE = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeConsultaProtocolo4"
NFE_NAMESPACE = "http://www.portalfiscal.inf.br/nfe"
SOAP_ACTION = f"{CONSULTA_NAMESPACE}/nfeConsultaNF"

DEFAULT_STATE = "SP"

SOAP_ENDPOINTS = {
    "SP": "https://nfe.fazenda.sp.gov.br/ws/nfeconsulta4.asmx",
    "RJ": "https://nfe.fazenda.rj.gov.br/ws/nfeconsulta4.asmx",
    "MG": "https://nfe.fazenda.mg.gov.br/nfe2/services/NfeConsulta4",
    "RS": "https://nfe.sefaz.rs.gov.br/ws/nfeconsulta4.asmx",
    "PR": "https://nfe.fazenda.pr.gov.br/nfe/NFeConsulta4",
    "SC": "https://nfe.svrs.rs.gov.br/ws/nfeconsulta4.asmx",
    "BA": "https://nfe.sefaz.ba.gov.br/webservices/NFeConsultaProtocolo4/NFeConsultaProtocolo4.asmx",
    "CE": "https://nfe.sefaz.ce.gov.br/nfe4/services/NFeConsultaProtocolo4",
    "GO": "https://nfe.sefaz.go.gov.br/nfe/services/NFeConsultaProtocolo4",
    "MT": "https://nfe.sefaz.mt.gov.br/nfews/services/NFeConsultaProtocolo4",
    "MS": "https://nfe.fazenda.ms.gov.br/producao/services2/NFeConsultaProtocolo4",
    "DF": "https://dec.fazenda.df.gov.br/nfe/NFeConsultaProtocolo4",
}

ENVELOPE_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope xmlns:soapenv="{soap_ns}" xmlns:nfe="{consulta_ns}">
   <soapenv:Header/>
   <soapenv:Body>
      <nfe:nfeConsultaNF>
         <nfeDadosMsg>
            <consSitNFe xmlns="{nfe_ns}" versao="4.00">
               <tpAmb>{environment}</tpAmb>
               <xServ>CONSULTAR</xServ>
               <chNFe>{access_key}</chNFe>
            </consSitNFe>
         </nfeDadosMsg>
      </nfe:nfeConsultaNF>
   </soapenv:Body>
</soapenv:Envelope>"""


def select_endpoint(fields: AccessKeyFields) -> str:
    """Endpoint for the key's state; states without one use DEFAULT_STATE."""
    state = fields.state
    if state not in SOAP_ENDPOINTS:
        logger.debug(f"No SOAP endpoint for state code {fields.state_code}, using {DEFAULT_STATE}")
        state = DEFAULT_STATE
    return SOAP_ENDPOINTS[state]


def build_envelope(access_key: str, environment: int = 2) -> str:
    return ENVELOPE_TEMPLATE.format(
        soap_ns=SOAP_ENVELOPE_NAMESPACE,
        consulta_ns=CONSULTA_NAMESPACE,
        nfe_ns=NFE_NAMESPACE,
        environment=environment,
        access_key=access_key,
    )


def _first_text(root: Any, xpath: str) -> str | None:
    matches = root.xpath(xpath)
    if not matches:
        return None
    text = matches[0].text if hasattr(matches[0], "text") else str(matches[0])
    return text.strip() if text and text.strip() else None


class SoapProtocolAdapter(SourceAdapter):
    """Queries the issuer's state authority over SOAP."""

    name = "soap"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.normalizer = FieldNormalizer()
        self.xml_extractor = XmlInvoiceExtractor(self.normalizer)

    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        endpoint = select_endpoint(fields)
        logger.debug(f"Posting consSitNFe for {fields.raw} to {endpoint}")

        response = self.post(
            endpoint,
            content=build_envelope(fields.raw, self.config.sefaz_environment).encode("utf-8"),
            headers={
                "Content-Type": "text/xml; charset=utf-8",
                "SOAPAction": SOAP_ACTION,
            },
        )
        return self.parse_response(response.text, fields)

    def parse_response(self, body: str, fields: AccessKeyFields) -> PartialRecord | None:
        """
        Read a consSitNFe answer.

        Raises:
            SourceError: UNPARSEABLE for malformed XML, NOT_AUTHORIZED for
                any status other than 100
        """
        root = parse_xml(body)
        if root is None:
            raise SourceError(FailureReason.UNPARSEABLE, "Malformed SOAP response")

        status = _first_text(root, '//*[local-name()="cStat"]')
        reason = _first_text(root, '//*[local-name()="xMotivo"]') or ""

        if status != AUTHORIZED_STATUS:
            raise SourceError(FailureReason.NOT_AUTHORIZED, f"cStat {status}: {reason}".strip())

        embedded = find_embedded_xml(body)
        if embedded:
            record = self.xml_extractor.extract(embedded, fields.raw)
            if record is not None:
                return record

        n = self.normalizer
        record = PartialRecord(
            issuer_name=n.normalize_name(
                _first_text(root, '//*[local-name()="emit"]/*[local-name()="xNome"]')
            ),
            recipient_name=n.normalize_name(
                _first_text(root, '//*[local-name()="dest"]/*[local-name()="xNome"]')
            ),
            total_value=n.normalize_amount(_first_text(
                root,
                '//*[local-name()="total"]/*[local-name()="ICMSTot"]/*[local-name()="vNF"]',
            )),
            status=RecordStatus.AUTHORIZED,
            note=f"Authorized by SEFAZ: {reason}" if reason else "Authorized by SEFAZ",
        )
        if record.is_empty:
            logger.info(f"SEFAZ authorized {fields.raw} but returned no invoice fields")
            return None
        return record
