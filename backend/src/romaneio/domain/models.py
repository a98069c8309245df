"""
Domain models for NFe resolution.

These models represent the invoice data moving through the engine: the
partial data each source manages to recover, the outcome every source
adapter reports, and the canonical record handed back to the caller.

Design Decisions:
- Frozen dataclasses for value objects; sequences are tuples so records
  stay immutable and hashable
- Decimal for all monetary values to avoid floating-point errors
- PartialRecord keeps every field optional; only CanonicalRecord applies
  defaults, so "absent" and "defaulted" never get confused
- Source failures are values (SourceOutcome), not exceptions
"""

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from .access_key import AccessKeyFields
from .hashing import derived_issue_date

# Sentinel for names the engine could not obtain
NOT_AVAILABLE = "not available"

# Recipient written into XML documents built from synthetic records
SYNTHETIC_RECIPIENT = "Destinatário via Meu Danfe"

DEFAULT_CATEGORY = "General"

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


class RecordStatus(Enum):
    """Invoice status as far as the engine can tell."""
    AUTHORIZED = "authorized"
    UNKNOWN = "unknown"


class FailureReason(Enum):
    """Why a source adapter produced no record."""
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    UNPARSEABLE = "unparseable"
    NO_FIELDS = "no_fields"
    NOT_AUTHORIZED = "not_authorized"
    DISABLED = "disabled"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Address:
    """
    Postal address as found in the invoice.

    Flattened for display by joining only the parts that are present.
    """
    street: str | None = None
    number: str | None = None
    district: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None

    def parts(self) -> list[str]:
        parts = [
            value.strip()
            for value in (self.street, self.number, self.district, self.city, self.state)
            if value and value.strip()
        ]
        if self.postal_code and self.postal_code.strip():
            parts.append(f"CEP: {self.postal_code.strip()}")
        return parts

    @property
    def is_empty(self) -> bool:
        return not self.parts()

    def display(self) -> str:
        """Single-line address, e.g. 'Rua A, 10, Centro, São Paulo, SP, CEP: 01000000'."""
        return ", ".join(self.parts())

    def __str__(self) -> str:
        return self.display()


@dataclass(frozen=True)
class TaxBreakdown:
    """
    Tax detail for one line item and one tax category.

    `variant` records which regime node was found (ICMS00, PISAliq, ...).
    """
    tax: str
    variant: str
    situation_code: str | None = None
    base_value: Decimal | None = None
    rate: Decimal | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class TaxTotals:
    """Invoice-level tax totals (ICMSTot)."""
    icms_base: Decimal = ZERO
    icms: Decimal = ZERO
    ipi: Decimal = ZERO
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    total_taxes: Decimal = ZERO


@dataclass(frozen=True)
class LineItem:
    """A single product line of the invoice."""
    name: str
    quantity: Decimal
    unit_value: Decimal
    total_value: Decimal
    code: str
    category: str = DEFAULT_CATEGORY
    ncm: str | None = None
    cfop: str | None = None
    unit: str | None = None
    taxes: tuple[TaxBreakdown, ...] = ()

    @property
    def calculated_total(self) -> Decimal:
        """Compute expected total from quantity * unit_value."""
        return (self.quantity * self.unit_value).quantize(CENTS)

    @property
    def has_math_error(self) -> bool:
        # Allow rounding differences of a cent
        return abs(self.calculated_total - self.total_value) > CENTS


@dataclass(frozen=True)
class PartialRecord:
    """
    Whatever a single source managed to recover.

    Every field is optional. `synthetic` marks data derived from a made-up
    document rather than from the tax authority or the issuer.
    """
    issuer_name: str | None = None
    issuer_tax_id: str | None = None
    issuer_address: Address | None = None
    recipient_name: str | None = None
    recipient_tax_id: str | None = None
    recipient_state_registration: str | None = None
    recipient_address: Address | None = None
    total_value: Decimal | None = None
    status: RecordStatus | None = None
    issue_date: date | None = None
    document_number: str | None = None
    series: str | None = None
    line_items: tuple[LineItem, ...] = ()
    tax_totals: TaxTotals | None = None
    document_blob: str | None = field(default=None, repr=False)
    synthetic: bool = False
    note: str | None = None

    @property
    def has_recipient(self) -> bool:
        return bool(self.recipient_name and self.recipient_name.strip()
                    and self.recipient_name != NOT_AVAILABLE)

    @property
    def has_resolving_fields(self) -> bool:
        """
        True if the record is good enough to stop the source chain.

        Synthetic data never is, whatever fields it carries.
        """
        if self.synthetic:
            return False
        return self.has_recipient or self.total_value is not None

    @property
    def has_issuer_fields(self) -> bool:
        return bool(
            (self.issuer_name and self.issuer_name != NOT_AVAILABLE)
            or self.issuer_tax_id
            or self.issuer_address
        )

    @property
    def is_empty(self) -> bool:
        return not (self.has_recipient or self.total_value is not None
                    or self.has_issuer_fields or self.issue_date
                    or self.document_number or self.line_items)

    def with_issuer_from(self, other: "PartialRecord") -> "PartialRecord":
        """Copy issuer fields from `other` where this record has none."""
        has_name = self.issuer_name and self.issuer_name != NOT_AVAILABLE
        return replace(
            self,
            issuer_name=self.issuer_name if has_name else (other.issuer_name or self.issuer_name),
            issuer_tax_id=self.issuer_tax_id or other.issuer_tax_id,
            issuer_address=self.issuer_address or other.issuer_address,
        )

    def to_record(
        self,
        fields: AccessKeyFields,
        source_label: str,
        note: str | None = None,
    ) -> "CanonicalRecord":
        """
        Promote to a canonical record, filling every gap with its default.

        Args:
            fields: Parsed access key the record belongs to
            source_label: Name of the source that produced the data
            note: Resolution note; defaults to the record's own note

        Returns:
            CanonicalRecord
        """
        return CanonicalRecord(
            access_key=fields.raw,
            issuer_name=_name_or_sentinel(self.issuer_name),
            issuer_tax_id=self.issuer_tax_id,
            issuer_address=self.issuer_address,
            recipient_name=_name_or_sentinel(self.recipient_name),
            recipient_tax_id=self.recipient_tax_id,
            recipient_state_registration=self.recipient_state_registration,
            recipient_address=self.recipient_address,
            total_value=self.total_value if self.total_value is not None else ZERO,
            status=self.status or RecordStatus.AUTHORIZED,
            issue_date=self.issue_date or derived_issue_date(fields),
            document_number=self.document_number or fields.number,
            series=self.series or fields.series,
            line_items=self.line_items,
            tax_totals=self.tax_totals,
            source_label=source_label,
            resolution_note=note or self.note or f"Resolved via {source_label}",
            is_synthetic=self.synthetic,
            document_blob=self.document_blob,
        )


@dataclass(frozen=True)
class CanonicalRecord:
    """
    The normalized invoice handed back to the caller.

    Created once per resolution request and never mutated. Persistence is
    the caller's business.
    """
    access_key: str
    issue_date: date
    document_number: str
    source_label: str
    resolution_note: str
    issuer_name: str = NOT_AVAILABLE
    recipient_name: str = NOT_AVAILABLE
    recipient_address: Address | None = None
    total_value: Decimal = ZERO
    status: RecordStatus = RecordStatus.UNKNOWN
    line_items: tuple[LineItem, ...] = ()
    is_synthetic: bool = False
    issuer_tax_id: str | None = None
    issuer_address: Address | None = None
    recipient_tax_id: str | None = None
    recipient_state_registration: str | None = None
    series: str | None = None
    tax_totals: TaxTotals | None = None
    document_blob: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Validate the key and pin the total to two decimal places."""
        if len(self.access_key) != 44:
            raise ValueError(f"Access key must have 44 digits: {self.access_key}")
        if self.total_value < 0:
            raise ValueError(f"Total value cannot be negative: {self.total_value}")
        object.__setattr__(self, "total_value", self.total_value.quantize(CENTS))

    @property
    def issue_date_display(self) -> str:
        return self.issue_date.strftime("%d/%m/%Y")

    @property
    def recipient_address_display(self) -> str:
        if self.recipient_address is None or self.recipient_address.is_empty:
            return NOT_AVAILABLE
        return self.recipient_address.display()

    @property
    def line_items_total(self) -> Decimal:
        """Sum of all line item totals."""
        return sum((item.total_value for item in self.line_items), ZERO)

    @property
    def has_sum_mismatch(self) -> bool:
        """Check if line items sum to the invoice total."""
        if not self.line_items:
            return False
        return abs(self.line_items_total - self.total_value) > CENTS

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation; monetary values as strings."""
        return {
            "access_key": self.access_key,
            "issuer_name": self.issuer_name,
            "issuer_tax_id": self.issuer_tax_id,
            "issuer_address": self.issuer_address.display() if self.issuer_address else None,
            "recipient_name": self.recipient_name,
            "recipient_tax_id": self.recipient_tax_id,
            "recipient_state_registration": self.recipient_state_registration,
            "recipient_address": self.recipient_address_display,
            "total_value": str(self.total_value),
            "status": self.status.value,
            "issue_date": self.issue_date_display,
            "document_number": self.document_number,
            "series": self.series,
            "line_items": [_line_item_to_dict(item) for item in self.line_items],
            "tax_totals": _tax_totals_to_dict(self.tax_totals),
            "source_label": self.source_label,
            "resolution_note": self.resolution_note,
            "is_synthetic": self.is_synthetic,
            "has_document": self.document_blob is not None,
        }


@dataclass(frozen=True)
class SourceOutcome:
    """
    Result reported by a source adapter.

    Either carries a record (success) or a failure reason with detail.
    """
    source: str
    record: PartialRecord | None = None
    failure: FailureReason | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.record is not None

    @classmethod
    def success(cls, source: str, record: PartialRecord, detail: str = "") -> "SourceOutcome":
        return cls(source=source, record=record, detail=detail)

    @classmethod
    def failed(cls, source: str, reason: FailureReason, detail: str = "") -> "SourceOutcome":
        return cls(source=source, failure=reason, detail=detail)


def _name_or_sentinel(name: str | None) -> str:
    if name is None or not name.strip():
        return NOT_AVAILABLE
    return name.strip()


def _line_item_to_dict(item: LineItem) -> dict[str, Any]:
    return {
        "name": item.name,
        "category": item.category,
        "quantity": str(item.quantity),
        "unit_value": str(item.unit_value),
        "total_value": str(item.total_value),
        "code": item.code,
        "ncm": item.ncm,
        "cfop": item.cfop,
        "unit": item.unit,
        "taxes": [
            {
                "tax": tax.tax,
                "variant": tax.variant,
                "situation_code": tax.situation_code,
                "base_value": None if tax.base_value is None else str(tax.base_value),
                "rate": None if tax.rate is None else str(tax.rate),
                "amount": None if tax.amount is None else str(tax.amount),
            }
            for tax in item.taxes
        ],
    }


def _tax_totals_to_dict(totals: TaxTotals | None) -> dict[str, str] | None:
    if totals is None:
        return None
    return {
        "icms_base": str(totals.icms_base),
        "icms": str(totals.icms),
        "ipi": str(totals.ipi),
        "pis": str(totals.pis),
        "cofins": str(totals.cofins),
        "total_taxes": str(totals.total_taxes),
    }
