"""
Services package - Resolution logic and external integrations.

Includes the extractors, the source adapters, the fallback generator and
the orchestrator tying them together.
"""

from .extraction import FieldNormalizer, HtmlScrapeExtractor, XmlInvoiceExtractor
from .fallback import DeterministicFallbackGenerator
from .resolver import ResolutionOrchestrator, ResolutionResult, ResolutionState, SourceAttempt

__all__ = [
    "DeterministicFallbackGenerator",
    "FieldNormalizer",
    "HtmlScrapeExtractor",
    "ResolutionOrchestrator",
    "ResolutionResult",
    "ResolutionState",
    "SourceAttempt",
    "XmlInvoiceExtractor",
]
