"""
Public company registry adapter.

Looks up the issuer CNPJ embedded in the access key. Registries know
companies, not invoices, so this adapter can only ever fill issuer fields;
the orchestrator keeps its answer as enrichment.
"""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import FailureReason, PartialRecord
from romaneio.services.extraction.normalize import FieldNormalizer

from .base import SourceAdapter, SourceError

logger = logging.getLogger(__name__)

BRASILAPI_URL = "https://brasilapi.com.br/api/cnpj/v1/{cnpj}"
RECEITAWS_URL = "https://www.receitaws.com.br/v1/cnpj/{cnpj}"


class PublicRegistryAdapter(SourceAdapter):
    """Queries BrasilAPI, then ReceitaWS, for the issuer CNPJ."""

    name = "registry"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.normalizer = FieldNormalizer()
        self.registries: list[tuple[str, str, Callable[[dict[str, Any]], PartialRecord | None]]] = [
            ("brasilapi", BRASILAPI_URL, self.from_brasilapi),
            ("receitaws", RECEITAWS_URL, self.from_receitaws),
        ]

    def default_headers(self) -> dict[str, str]:
        return {**super().default_headers(), "Accept": "application/json"}

    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        cnpj = fields.issuer_tax_id
        failure = SourceError(FailureReason.NO_FIELDS, f"No registry knows CNPJ {cnpj}")

        for registry, url_template, mapper in self.registries:
            try:
                response = self.get(url_template.format(cnpj=cnpj))
                data = response.json()
            except httpx.TimeoutException as e:
                failure = SourceError(FailureReason.TIMEOUT, f"{registry}: {e}")
                continue
            except httpx.HTTPStatusError as e:
                failure = SourceError(
                    FailureReason.HTTP_STATUS, f"{registry}: HTTP {e.response.status_code}"
                )
                continue
            except httpx.HTTPError as e:
                failure = SourceError(FailureReason.NETWORK_ERROR, f"{registry}: {e}")
                continue
            except ValueError as e:
                failure = SourceError(FailureReason.UNPARSEABLE, f"{registry}: {e}")
                continue

            record = mapper(data) if isinstance(data, dict) else None
            if record is not None:
                logger.info(f"Issuer {cnpj} found in {registry}")
                return record

            logger.debug(f"{registry} has no usable data for CNPJ {cnpj}")

        raise failure

    def from_brasilapi(self, data: dict[str, Any]) -> PartialRecord | None:
        n = self.normalizer
        name = n.normalize_name(data.get("razao_social") or data.get("nome_fantasia"))
        record = PartialRecord(
            issuer_name=name,
            issuer_tax_id=n.normalize_tax_id(data.get("cnpj")),
            issuer_address=n.normalize_address({
                "logradouro": _join(data.get("descricao_tipo_de_logradouro"), data.get("logradouro")),
                "numero": data.get("numero"),
                "bairro": data.get("bairro"),
                "municipio": data.get("municipio"),
                "uf": data.get("uf"),
                "cep": data.get("cep"),
            }),
            note="Issuer from BrasilAPI CNPJ registry",
        )
        return record if record.has_issuer_fields else None

    def from_receitaws(self, data: dict[str, Any]) -> PartialRecord | None:
        if str(data.get("status", "")).upper() == "ERROR":
            return None

        n = self.normalizer
        record = PartialRecord(
            issuer_name=n.normalize_name(data.get("nome") or data.get("fantasia")),
            issuer_tax_id=n.normalize_tax_id(data.get("cnpj")),
            issuer_address=n.normalize_address({
                "logradouro": data.get("logradouro"),
                "numero": data.get("numero"),
                "bairro": data.get("bairro"),
                "municipio": data.get("municipio"),
                "uf": data.get("uf"),
                "cep": data.get("cep"),
            }),
            note="Issuer from ReceitaWS CNPJ registry",
        )
        return record if record.has_issuer_fields else None


def _join(*parts: Any) -> str | None:
    text = " ".join(str(part).strip() for part in parts if part and str(part).strip())
    return text or None
