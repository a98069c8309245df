"""
Health check endpoint.

Provides system health status for monitoring and load balancers.
"""

from fastapi import APIRouter

from romaneio import __version__
from romaneio.api.schemas import HealthResponse
from romaneio.config import ResolverConfig, get_settings

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Check system health.

    Reports which sources the resolver will try, in order. Sources are not
    contacted here.
    """
    settings = get_settings()
    config = ResolverConfig.from_settings(settings)

    return HealthResponse(
        status="healthy",
        version=__version__,
        enabled_sources=config.enabled_sources,
        sefaz_environment=config.sefaz_environment,
    )
