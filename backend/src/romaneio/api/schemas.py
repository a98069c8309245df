"""
Pydantic schemas for API request/response validation.

These schemas define the contract between clients and the resolver.
All monetary values use strings to avoid floating point issues.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ResolutionStateEnum(str, Enum):
    """Final resolution state for API responses."""
    RESOLVED = "resolved"
    SYNTHESIZED = "synthesized"


# =============================================================================
# Request Schemas
# =============================================================================

class ResolveRequest(BaseModel):
    """Request to resolve one access key."""
    access_key: str = Field(
        ...,
        description="44-digit NFe access key",
        pattern=r"^\s*\d{44}\s*$",
    )
    trace: bool = Field(
        default=False,
        description="Include the per-source attempt log",
    )
    include_document: bool = Field(
        default=False,
        description="Include the rendered DANFE (base64) when one was obtained",
    )


# =============================================================================
# Response Schemas
# =============================================================================

class TaxResponse(BaseModel):
    """Tax detail for one line item."""
    tax: str
    variant: str
    situation_code: str | None = None
    base_value: str | None = None
    rate: str | None = None
    amount: str | None = None


class LineItemResponse(BaseModel):
    """Single invoice line."""
    name: str
    category: str
    quantity: str
    unit_value: str
    total_value: str
    code: str
    ncm: str | None = None
    cfop: str | None = None
    unit: str | None = None
    taxes: list[TaxResponse] = []


class TaxTotalsResponse(BaseModel):
    """Invoice-level tax totals."""
    icms_base: str
    icms: str
    ipi: str
    pis: str
    cofins: str
    total_taxes: str


class InvoiceResponse(BaseModel):
    """Resolved invoice record."""
    access_key: str
    issuer_name: str
    issuer_tax_id: str | None = None
    issuer_address: str | None = None
    recipient_name: str
    recipient_tax_id: str | None = None
    recipient_state_registration: str | None = None
    recipient_address: str
    total_value: str
    status: str
    issue_date: str = Field(description="Issue date as dd/mm/yyyy")
    document_number: str
    series: str | None = None
    line_items: list[LineItemResponse] = []
    tax_totals: TaxTotalsResponse | None = None

    # Provenance
    source_label: str
    resolution_note: str
    is_synthetic: bool
    has_document: bool = False
    document: str | None = None


class AttemptResponse(BaseModel):
    """One source attempt in the resolution trace."""
    source: str
    status: str
    failure: str | None = None
    detail: str = ""
    elapsed_ms: float = 0.0


class ResolutionResponse(BaseModel):
    """Response from invoice resolution."""
    invoice: InvoiceResponse
    state: ResolutionStateEnum
    attempts: list[AttemptResponse] | None = None


class AccessKeyResponse(BaseModel):
    """Fields decoded from an access key, without contacting any source."""
    access_key: str
    formatted: str
    state_code: str
    state: str | None = None
    year: int
    month: int
    issuer_tax_id: str
    model: str
    model_name: str | None = None
    series: str
    number: str
    emission_type: str
    numeric_code: str
    check_digit: str
    check_digit_valid: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    enabled_sources: list[str]
    sefaz_environment: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str | None = None
    code: str | None = None


def invoice_payload(record_dict: dict[str, Any], document: str | None = None) -> InvoiceResponse:
    """Build the invoice response from CanonicalRecord.to_dict()."""
    return InvoiceResponse(**record_dict, document=document)
