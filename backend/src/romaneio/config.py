"""
Application configuration loaded from environment variables.

Settings are read once; the resolver receives an explicit ResolverConfig
built from them, so no adapter ever reads the environment on its own.
"""

from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Adapter names, in default priority order
KNOWN_SOURCES = ("qrcode", "pdf_conversion", "registry", "portal", "soap")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings are loaded from environment variables with the same name.
    Use .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PDF conversion service (MeuDanfe)
    meudanfe_api_url: str = Field(
        default="https://ws.meudanfe.com/api/v1/get/nfe/xmltodanfepdf/API",
        description="Endpoint converting NFe XML into a DANFE PDF"
    )
    meudanfe_api_key: str | None = Field(
        default=None,
        description="Bearer token for the conversion service (optional)"
    )
    meudanfe_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for conversion requests"
    )
    meudanfe_enabled: bool = Field(
        default=True,
        description="Try the PDF conversion service"
    )
    meudanfe_fallback_to_sefaz: bool = Field(
        default=True,
        description="Query the SEFAZ SOAP service as a last resort"
    )

    # Other sources
    qrcode_enabled: bool = Field(default=True, description="Query the QR code portal")
    registry_enabled: bool = Field(default=True, description="Query public CNPJ registries")
    portal_enabled: bool = Field(default=True, description="Scrape the public consultation portal")

    source_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for each source request"
    )
    sefaz_environment: Literal[1, 2] = Field(
        default=2,
        description="SEFAZ environment: 1 = production, 2 = homologation"
    )
    source_order: str = Field(
        default=",".join(KNOWN_SOURCES),
        description="Comma-separated adapter priority order"
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header sent to every source"
    )

    # Server
    debug: bool = Field(
        default=False,
        description="Enable debug mode with detailed error messages"
    )

    @field_validator("source_order")
    @classmethod
    def validate_source_order(cls, value: str) -> str:
        names = [name.strip() for name in value.split(",") if name.strip()]
        unknown = [name for name in names if name not in KNOWN_SOURCES]
        if unknown:
            raise ValueError(f"Unknown sources in source_order: {', '.join(unknown)}")
        return ",".join(names)

    @property
    def source_order_list(self) -> list[str]:
        return [name for name in self.source_order.split(",") if name]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once at startup and cached for subsequent calls.
    """
    return Settings()


@dataclass(frozen=True)
class ResolverConfig:
    """
    Read-only configuration handed to the resolution orchestrator.

    `source_order` lists every adapter in priority order; the enable flags
    prune it into `enabled_sources`.
    """
    source_order: tuple[str, ...] = KNOWN_SOURCES
    qrcode_enabled: bool = True
    pdf_conversion_enabled: bool = True
    registry_enabled: bool = True
    portal_enabled: bool = True
    soap_enabled: bool = True
    source_timeout: float = 30.0
    pdf_timeout: float = 30.0
    pdf_api_url: str = "https://ws.meudanfe.com/api/v1/get/nfe/xmltodanfepdf/API"
    pdf_api_key: str | None = None
    sefaz_environment: int = 2
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolverConfig":
        return cls(
            source_order=tuple(settings.source_order_list),
            qrcode_enabled=settings.qrcode_enabled,
            pdf_conversion_enabled=settings.meudanfe_enabled,
            registry_enabled=settings.registry_enabled,
            portal_enabled=settings.portal_enabled,
            soap_enabled=settings.meudanfe_fallback_to_sefaz,
            source_timeout=settings.source_timeout,
            pdf_timeout=settings.meudanfe_timeout,
            pdf_api_url=settings.meudanfe_api_url,
            pdf_api_key=settings.meudanfe_api_key,
            sefaz_environment=settings.sefaz_environment,
            user_agent=settings.user_agent,
        )

    def is_enabled(self, source: str) -> bool:
        flags = {
            "qrcode": self.qrcode_enabled,
            "pdf_conversion": self.pdf_conversion_enabled,
            "registry": self.registry_enabled,
            "portal": self.portal_enabled,
            "soap": self.soap_enabled,
        }
        return flags.get(source, False)

    @property
    def enabled_sources(self) -> list[str]:
        return [name for name in self.source_order if self.is_enabled(name)]

    def offline(self) -> "ResolverConfig":
        """Copy with every live source disabled."""
        return replace(
            self,
            qrcode_enabled=False,
            pdf_conversion_enabled=False,
            registry_enabled=False,
            portal_enabled=False,
            soap_enabled=False,
        )
