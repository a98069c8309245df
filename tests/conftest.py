"""
Shared fixtures for the resolver test suite.

Network access is never real: every adapter gets an httpx.Client backed by
httpx.MockTransport.
"""

from collections.abc import Callable, Iterator

import httpx
import pytest

from romaneio.config import ResolverConfig
from romaneio.domain.access_key import parse_access_key

# SP, January 2024, model 55, series 001, number 000000001
ACCESS_KEY = "35240114200166000187550010000000015123456789"

NFE_NAMESPACE = "http://www.portalfiscal.inf.br/nfe"

INF_NFE_TEMPLATE = """<infNFe Id="NFe{key}" versao="4.00">
  <ide>
    <cUF>35</cUF>
    <mod>55</mod>
    <serie>1</serie>
    <nNF>1</nNF>
    {issue_date}
  </ide>
  <emit>
    <CNPJ>14200166000187</CNPJ>
    <xNome>Fornecedor Exemplo Ltda</xNome>
    <enderEmit>
      <xLgr>Avenida Paulista</xLgr>
      <nro>1000</nro>
      <xBairro>Bela Vista</xBairro>
      <xMun>São Paulo</xMun>
      <UF>SP</UF>
      <CEP>01310100</CEP>
    </enderEmit>
  </emit>
  <dest>
    <CNPJ>11222333000181</CNPJ>
    <xNome>{recipient}</xNome>
    <enderDest>
      <xLgr>Rua das Flores</xLgr>
      <nro>100</nro>
      <xMun>Campinas</xMun>
      <UF>SP</UF>
      <CEP>13010000</CEP>
    </enderDest>
    <indIEDest>9</indIEDest>
  </dest>
  <det nItem="1">
    <prod>
      <cProd>A1</cProd>
      <xProd>Parafuso sextavado</xProd>
      <NCM>73181500</NCM>
      <CFOP>5102</CFOP>
      <uCom>UN</uCom>
      <qCom>10.0000</qCom>
      <vUnCom>12.50</vUnCom>
      <vProd>125.00</vProd>
    </prod>
    <imposto>
      <ICMS>
        <ICMS00>
          <orig>0</orig>
          <CST>00</CST>
          <vBC>125.00</vBC>
          <pICMS>18.00</pICMS>
          <vICMS>22.50</vICMS>
        </ICMS00>
      </ICMS>
      <PIS>
        <PISAliq>
          <CST>01</CST>
          <vBC>125.00</vBC>
          <pPIS>1.65</pPIS>
          <vPIS>2.06</vPIS>
        </PISAliq>
      </PIS>
    </imposto>
  </det>
  <total>
    <ICMSTot>
      <vBC>125.00</vBC>
      <vICMS>22.50</vICMS>
      <vPIS>2.06</vPIS>
      <vProd>125.00</vProd>
      <vNF>125.00</vNF>
    </ICMSTot>
  </total>
</infNFe>"""


def make_inf_nfe(
    recipient: str = "Cliente Real Comércio Ltda",
    with_date: bool = True,
    key: str = ACCESS_KEY,
) -> str:
    """infNFe element without namespace declaration."""
    issue_date = "<dhEmi>2024-01-15T10:30:00-03:00</dhEmi>" if with_date else ""
    return INF_NFE_TEMPLATE.format(key=key, recipient=recipient, issue_date=issue_date)


def make_nfe(recipient: str = "Cliente Real Comércio Ltda", with_date: bool = True) -> str:
    """NFe wrapper in the default namespace."""
    return f'<NFe xmlns="{NFE_NAMESPACE}">{make_inf_nfe(recipient, with_date)}</NFe>'


def make_nfe_proc(recipient: str = "Cliente Real Comércio Ltda", status: str = "100") -> str:
    """nfeProc protocol envelope around an NFe."""
    return (
        f'<nfeProc xmlns="{NFE_NAMESPACE}" versao="4.00">'
        f"<NFe>{make_inf_nfe(recipient)}</NFe>"
        f"<protNFe><infProt><chNFe>{ACCESS_KEY}</chNFe><cStat>{status}</cStat>"
        f"<xMotivo>Autorizado o uso da NF-e</xMotivo></infProt></protNFe>"
        f"</nfeProc>"
    )


@pytest.fixture
def access_key() -> str:
    return ACCESS_KEY


@pytest.fixture
def fields():
    return parse_access_key(ACCESS_KEY)


@pytest.fixture
def config() -> ResolverConfig:
    return ResolverConfig(source_timeout=5.0, pdf_timeout=5.0)


@pytest.fixture
def offline_config() -> ResolverConfig:
    return ResolverConfig().offline()


@pytest.fixture
def mock_client() -> Iterator[Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]]:
    """Factory: httpx.Client whose every request goes to `handler`."""
    clients: list[httpx.Client] = []

    def build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield build

    for client in clients:
        client.close()


@pytest.fixture
def failing_client(mock_client) -> httpx.Client:
    """Client whose every request fails to connect."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    return mock_client(handler)
