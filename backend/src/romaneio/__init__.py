"""
Romaneio - NFe access-key resolution engine.

Resolves a Brazilian electronic invoice from its 44-digit access key by
walking an ordered chain of external sources, falling back to a
deterministic synthetic record when none of them answers.
"""

__version__ = "0.1.0"
