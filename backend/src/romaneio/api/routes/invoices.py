"""
Invoice resolution endpoints.

Resolves access keys through the source chain and decodes keys on their
own. Handlers are plain functions because the adapters block on I/O;
FastAPI runs them in its threadpool.
"""

import logging
import threading
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from romaneio.api.schemas import (
    AccessKeyResponse,
    AttemptResponse,
    ResolutionResponse,
    ResolutionStateEnum,
    ResolveRequest,
    invoice_payload,
)
from romaneio.config import ResolverConfig, get_settings
from romaneio.domain.access_key import InvalidAccessKeyError, parse_access_key
from romaneio.services.resolver import ResolutionOrchestrator, ResolutionResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])


# Shared across requests; holds only read-only config and the HTTP pool
_orchestrator: ResolutionOrchestrator | None = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> ResolutionOrchestrator:
    """Get or create the resolution orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            # Handlers run in a threadpool; build exactly one
            if _orchestrator is None:
                config = ResolverConfig.from_settings(get_settings())
                _orchestrator = ResolutionOrchestrator(config)
                logger.info(f"Resolver chain: {', '.join(config.enabled_sources) or '(fallback only)'}")
    return _orchestrator


def close_orchestrator() -> None:
    """Release the orchestrator's HTTP client, if one was created."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is not None:
            _orchestrator.close()
            _orchestrator = None


def _build_response(result: ResolutionResult, trace: bool, include_document: bool) -> ResolutionResponse:
    record = result.record
    attempts = None
    if trace:
        attempts = [AttemptResponse(**attempt.to_dict()) for attempt in result.attempts]

    return ResolutionResponse(
        invoice=invoice_payload(
            record.to_dict(),
            document=record.document_blob if include_document else None,
        ),
        state=ResolutionStateEnum(result.state.value),
        attempts=attempts,
    )


def _resolve(
    orchestrator: ResolutionOrchestrator,
    access_key: str,
    trace: bool,
    include_document: bool,
) -> ResolutionResponse:
    try:
        result = orchestrator.resolve_with_trace(access_key)
    except InvalidAccessKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    return _build_response(result, trace, include_document)


@router.post(
    "/resolve",
    response_model=ResolutionResponse,
    responses={
        422: {"description": "Malformed access key"},
    },
)
def resolve_invoice(
    request: ResolveRequest,
    orchestrator: Annotated[ResolutionOrchestrator, Depends(get_orchestrator)],
) -> ResolutionResponse:
    """
    Resolve an invoice from its access key.

    **Process:**
    1. Decode the key (rejected with 422 if malformed)
    2. Query each enabled source in priority order
    3. Stop at the first source with a recipient or a total
    4. Synthesize a deterministic record if every source fails
    """
    return _resolve(orchestrator, request.access_key, request.trace, request.include_document)


@router.get(
    "/{access_key}",
    response_model=ResolutionResponse,
    responses={
        422: {"description": "Malformed access key"},
    },
)
def get_invoice(
    access_key: str,
    orchestrator: Annotated[ResolutionOrchestrator, Depends(get_orchestrator)],
    trace: Annotated[bool, Query(description="Include the attempt log")] = False,
    include_document: Annotated[bool, Query(description="Include the rendered DANFE")] = False,
) -> ResolutionResponse:
    """Resolve an invoice from its access key (GET form)."""
    return _resolve(orchestrator, access_key, trace, include_document)


@router.get(
    "/{access_key}/fields",
    response_model=AccessKeyResponse,
    responses={
        422: {"description": "Malformed access key"},
    },
)
def decode_access_key(access_key: str) -> AccessKeyResponse:
    """Decode the fields embedded in an access key. No source is contacted."""
    try:
        fields = parse_access_key(access_key)
    except InvalidAccessKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    return AccessKeyResponse(
        access_key=fields.raw,
        formatted=fields.formatted,
        state_code=fields.state_code,
        state=fields.state,
        year=fields.full_year,
        month=int(fields.month),
        issuer_tax_id=fields.issuer_tax_id,
        model=fields.model,
        model_name=fields.model_name,
        series=fields.series,
        number=fields.number,
        emission_type=fields.emission_type,
        numeric_code=fields.numeric_code,
        check_digit=fields.check_digit,
        check_digit_valid=fields.check_digit_valid,
    )
