"""
Invoice resolution orchestrator.

Walks the configured source adapters in priority order and stops at the
first one that returns a real record. When every source fails, the
deterministic fallback generator produces the record, so a structurally
valid key always resolves.

Design Decisions:
- Strictly sequential; no two sources are ever queried at once
- Issuer-only answers (registry, an authorized SOAP reply without invoice
  fields) and synthetic answers do not stop the chain; they are kept and
  merged into the synthesized record if nothing better turns up
- Every attempt is recorded with its outcome and elapsed time
- Configuration is passed in explicitly; nothing here reads the environment
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import httpx

from romaneio.config import ResolverConfig
from romaneio.domain.access_key import AccessKeyFields, parse_access_key
from romaneio.domain.models import (
    NOT_AVAILABLE,
    CanonicalRecord,
    FailureReason,
    PartialRecord,
    SourceOutcome,
)

from .fallback import DeterministicFallbackGenerator
from .sources import (
    HtmlScrapedPortalAdapter,
    PdfConversionAdapter,
    PublicRegistryAdapter,
    QrCodePortalAdapter,
    SoapProtocolAdapter,
    SourceAdapter,
    source_xml_provider,
    synthetic_xml_provider,
)

logger = logging.getLogger(__name__)


class ResolutionState(Enum):
    """Where a resolution ended up."""
    NOT_STARTED = "not_started"
    TRYING_SOURCE = "trying_source"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"
    SYNTHESIZED = "synthesized"


@dataclass(frozen=True)
class SourceAttempt:
    """One adapter invocation (or skip) during a resolution."""
    source: str
    outcome: SourceOutcome
    elapsed_ms: float = 0.0
    resolved: bool = False

    @property
    def status(self) -> str:
        if self.resolved:
            return "resolved"
        if self.outcome.succeeded:
            return "enrichment"
        if self.outcome.failure == FailureReason.DISABLED:
            return "disabled"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation, shared by the API and the CLI."""
        return {
            "source": self.source,
            "status": self.status,
            "failure": self.outcome.failure.value if self.outcome.failure else None,
            "detail": self.outcome.detail,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


@dataclass
class ResolutionResult:
    """
    Complete result of resolving one access key.

    Carries the record plus the trail of attempts that produced it.
    """
    record: CanonicalRecord
    state: ResolutionState
    attempts: list[SourceAttempt] = field(default_factory=list)

    @property
    def resolved_by(self) -> str:
        return self.record.source_label

    @property
    def is_synthetic(self) -> bool:
        return self.record.is_synthetic

    @property
    def invoked_sources(self) -> list[str]:
        """Sources actually queried, in order."""
        return [a.source for a in self.attempts if a.outcome.failure != FailureReason.DISABLED]


def build_adapters(
    config: ResolverConfig,
    client: httpx.Client | None = None,
) -> dict[str, SourceAdapter]:
    """
    Instantiate every enabled adapter.

    The PDF conversion adapter gets the QR portal as its first XML
    provider when the QR portal is enabled, and the synthetic XML builder
    as its last.

    Args:
        config: Resolver configuration
        client: Shared HTTP client

    Returns:
        Mapping of source name to adapter, enabled sources only
    """
    qrcode = QrCodePortalAdapter(config, client)

    providers = []
    if config.qrcode_enabled:
        providers.append(source_xml_provider(qrcode.fetch_xml, "qrcode"))
    providers.append(synthetic_xml_provider())

    adapters: dict[str, SourceAdapter] = {
        "qrcode": qrcode,
        "pdf_conversion": PdfConversionAdapter(config, client, providers=providers),
        "registry": PublicRegistryAdapter(config, client),
        "portal": HtmlScrapedPortalAdapter(config, client),
        "soap": SoapProtocolAdapter(config, client),
    }
    return {name: adapter for name, adapter in adapters.items() if config.is_enabled(name)}


class ResolutionOrchestrator:
    """
    Resolves access keys through the source chain.

    Example:
        with ResolutionOrchestrator(ResolverConfig.from_settings(get_settings())) as resolver:
            record = resolver.resolve("35240114200166000187550010000000015123456789")
            print(record.source_label, record.total_value)
    """

    def __init__(
        self,
        config: ResolverConfig | None = None,
        adapters: Sequence[SourceAdapter] | None = None,
        generator: DeterministicFallbackGenerator | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            config: Resolver configuration (defaults used if None)
            adapters: Explicit adapter chain, tried in the given order;
                built from config when None
            generator: Fallback generator (created if None)
            client: Shared HTTP client for built adapters (created if None)
        """
        self.config = config or ResolverConfig()
        self.generator = generator or DeterministicFallbackGenerator()
        self._client: httpx.Client | None = None

        if adapters is not None:
            self.chain: list[tuple[str, SourceAdapter | None]] = [
                (adapter.name, adapter) for adapter in adapters
            ]
        else:
            if client is None and self.config.enabled_sources:
                client = self._client = httpx.Client(
                    timeout=self.config.source_timeout,
                    follow_redirects=True,
                    limits=httpx.Limits(max_connections=10),
                )
            built = build_adapters(self.config, client)
            self.chain = [(name, built.get(name)) for name in self.config.source_order]

    @property
    def adapters(self) -> list[SourceAdapter]:
        return [adapter for _, adapter in self.chain if adapter is not None]

    def resolve(self, access_key: str) -> CanonicalRecord:
        """
        Resolve an access key into a record.

        Raises:
            InvalidAccessKeyError: If the key is not 44 digits; no source
                is contacted in that case
        """
        return self.resolve_with_trace(access_key).record

    def resolve_with_trace(self, access_key: str) -> ResolutionResult:
        """
        Resolve an access key, keeping the attempt log.

        Args:
            access_key: 44-digit key (surrounding whitespace ignored)

        Returns:
            ResolutionResult with the record, final state and attempts

        Raises:
            InvalidAccessKeyError: If the key is malformed
        """
        fields = parse_access_key(access_key)
        logger.info(f"Resolving {fields.raw} (state {fields.state or fields.state_code})")

        attempts: list[SourceAttempt] = []
        enrichment: list[PartialRecord] = []

        for name, adapter in self.chain:
            if adapter is None:
                attempts.append(SourceAttempt(
                    source=name,
                    outcome=SourceOutcome.failed(name, FailureReason.DISABLED, "Disabled by configuration"),
                ))
                continue

            started = time.perf_counter()
            outcome = self._invoke(adapter, fields)
            elapsed_ms = (time.perf_counter() - started) * 1000

            record = outcome.record
            if record is not None and record.has_resolving_fields:
                attempts.append(SourceAttempt(name, outcome, elapsed_ms, resolved=True))
                logger.info(f"Resolved {fields.raw} via {name} in {elapsed_ms:.0f}ms")
                return ResolutionResult(
                    record=self._promote(record, fields, name, enrichment),
                    state=ResolutionState.RESOLVED,
                    attempts=attempts,
                )

            attempts.append(SourceAttempt(name, outcome, elapsed_ms))
            if record is not None:
                logger.info(f"{name} returned partial data for {fields.raw}, continuing")
                enrichment.append(record)

        logger.warning(f"All sources exhausted for {fields.raw}, synthesizing record")
        return ResolutionResult(
            record=self._synthesize(fields, enrichment),
            state=ResolutionState.SYNTHESIZED,
            attempts=attempts,
        )

    def close(self) -> None:
        """Close the HTTP client created by this orchestrator."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "ResolutionOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _invoke(self, adapter: SourceAdapter, fields: AccessKeyFields) -> SourceOutcome:
        try:
            return adapter.resolve(fields.raw, fields)
        except Exception as e:
            # Adapters report failures as outcomes; this only guards broken ones
            logger.exception(f"Adapter {adapter.name} raised for {fields.raw}: {e}")
            return SourceOutcome.failed(adapter.name, FailureReason.UNEXPECTED, str(e))

    def _promote(
        self,
        record: PartialRecord,
        fields: AccessKeyFields,
        source: str,
        enrichment: list[PartialRecord],
    ) -> CanonicalRecord:
        """Turn the winning partial into the final record, borrowing issuer data if it lacks any."""
        for partial in enrichment:
            if not partial.synthetic and partial.has_issuer_fields:
                record = record.with_issuer_from(partial)
        if record.document_blob is None:
            # A document rendered from synthetic XML does not describe a real invoice
            blob = next(
                (p.document_blob for p in enrichment if p.document_blob and not p.synthetic),
                None,
            )
            if blob is not None:
                record = replace(record, document_blob=blob)
        return record.to_record(fields, source)

    def _synthesize(self, fields: AccessKeyFields, enrichment: list[PartialRecord]) -> CanonicalRecord:
        """Run the fallback generator and merge whatever partial data was collected."""
        record = self.generator.generate(fields)
        if not enrichment:
            return record

        changes: dict[str, Any] = {}
        contributors: list[str] = []

        real_issuers = [p for p in enrichment if not p.synthetic and p.has_issuer_fields]
        if real_issuers:
            issuer = real_issuers[0]
            for other in real_issuers[1:]:
                issuer = issuer.with_issuer_from(other)
            if issuer.issuer_name and issuer.issuer_name != NOT_AVAILABLE:
                changes["issuer_name"] = issuer.issuer_name
            if issuer.issuer_tax_id:
                changes["issuer_tax_id"] = issuer.issuer_tax_id
            if issuer.issuer_address:
                changes["issuer_address"] = issuer.issuer_address
            contributors.append("issuer data")

        blob = next((p.document_blob for p in enrichment if p.document_blob), None)
        if blob is not None:
            changes["document_blob"] = blob
            contributors.append("rendered document")

        if not changes:
            return record

        note = (
            f"{record.resolution_note}; enriched with {' and '.join(contributors)} "
            f"from live sources"
        )
        return replace(record, resolution_note=note, **changes)
