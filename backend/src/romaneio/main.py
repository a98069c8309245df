"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for invoice resolution and key decoding
- Resolver lifecycle (shared HTTP connection pool)
- CORS configuration for frontend access
- Error handling and logging
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from romaneio import __version__
from romaneio.api.routes import health, invoices
from romaneio.config import ResolverConfig, get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Logs the effective source chain on startup and closes the resolver's
    HTTP client on shutdown.
    """
    settings = get_settings()
    config = ResolverConfig.from_settings(settings)

    logger.info(f"Starting Romaneio v{__version__}")
    logger.info(f"Source order: {', '.join(config.enabled_sources) or '(fallback only)'}")
    logger.info(f"SEFAZ environment: {config.sefaz_environment}")
    logger.info(f"Debug mode: {settings.debug}")

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Romaneio")
    invoices.close_orchestrator()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = get_settings()

    app = FastAPI(
        title="Romaneio API",
        description=(
            "NFe access-key resolution engine.\n\n"
            "Resolves Brazilian electronic invoices from their 44-digit access "
            "key through an ordered chain of public sources, with a "
            "deterministic fallback when none answers."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(invoices.router, prefix="/api/v1")

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")

        # Don't expose internal errors in production
        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": detail,
            },
        )

    return app


# Create the application instance
app = create_app()


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "romaneio.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
