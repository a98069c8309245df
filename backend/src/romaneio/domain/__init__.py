"""
Domain package - Core invoice types with no external dependencies.

This package contains the access-key parser, the canonical record shapes
and the hashing helpers shared by every extractor and source adapter.
"""
