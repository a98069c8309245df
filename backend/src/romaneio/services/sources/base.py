"""
Common machinery for source adapters.

Every adapter answers the same question: what does this source know about
the invoice behind this key? Subclasses implement `fetch()` and may raise
freely; `resolve()` turns every exception into a SourceOutcome so the
orchestrator never sees one.

Design Decisions:
- One httpx.Client per orchestrator, shared by its adapters; created lazily
  when none is injected
- Timeouts are passed per request, so an injected client keeps working
  with each adapter's own bound
- No retries; a failure is reported once
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from lxml import etree

from romaneio.config import ResolverConfig
from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import FailureReason, PartialRecord, SourceOutcome

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised inside an adapter to report a specific failure reason."""

    def __init__(self, reason: FailureReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class SourceAdapter(ABC):
    """
    Base class for one external data source.

    Example:
        adapter = QrCodePortalAdapter(config)
        outcome = adapter.resolve(key, parse_access_key(key))
        if outcome.succeeded:
            print(outcome.record)
    """

    name: str = "source"

    def __init__(
        self,
        config: ResolverConfig,
        client: httpx.Client | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            config: Resolver configuration
            client: Shared HTTP client; one is created on first use if None
            timeout: Per-request timeout; defaults to config.source_timeout
        """
        self.config = config
        self.timeout = timeout if timeout is not None else config.source_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        """HTTP client with lazy initialization."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                limits=httpx.Limits(max_connections=10),
            )
        return self._client

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def default_headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept-Language": "pt-BR,pt;q=0.9,en;q=0.8",
        }

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """GET with the adapter timeout; raises on non-2xx."""
        headers = {**self.default_headers(), **kwargs.pop("headers", {})}
        response = self.client.get(url, headers=headers, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def post(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST with the adapter timeout; raises on non-2xx."""
        headers = {**self.default_headers(), **kwargs.pop("headers", {})}
        response = self.client.post(url, headers=headers, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def resolve(self, access_key: str, fields: AccessKeyFields) -> SourceOutcome:
        """
        Query the source for one invoice.

        Args:
            access_key: Raw 44-digit key
            fields: The same key, parsed

        Returns:
            SourceOutcome; never raises
        """
        try:
            record = self.fetch(fields)
        except SourceError as e:
            return self._failed(access_key, e.reason, e.detail)
        except httpx.TimeoutException as e:
            return self._failed(access_key, FailureReason.TIMEOUT, str(e) or type(e).__name__)
        except httpx.HTTPStatusError as e:
            return self._failed(
                access_key, FailureReason.HTTP_STATUS, f"HTTP {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            return self._failed(access_key, FailureReason.NETWORK_ERROR, str(e) or type(e).__name__)
        except (etree.XMLSyntaxError, ValueError) as e:
            return self._failed(access_key, FailureReason.UNPARSEABLE, str(e))
        except Exception as e:
            logger.exception(f"[{self.name}] Unexpected error for {access_key}: {e}")
            return SourceOutcome.failed(self.name, FailureReason.UNEXPECTED, str(e))

        if record is None or record.is_empty:
            return self._failed(access_key, FailureReason.NO_FIELDS, "No usable fields in response")

        logger.info(f"[{self.name}] Data found for {access_key}")
        return SourceOutcome.success(self.name, record)

    @abstractmethod
    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        """
        Fetch and extract the invoice from this source.

        May raise SourceError, httpx errors or parser errors.

        Returns:
            PartialRecord, or None if the source had nothing usable
        """

    def _failed(self, access_key: str, reason: FailureReason, detail: str) -> SourceOutcome:
        logger.warning(f"[{self.name}] {reason.value} for {access_key}: {detail}")
        return SourceOutcome.failed(self.name, reason, detail)
