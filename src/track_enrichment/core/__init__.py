"""Core enrichment engine: cache, matching, normalization and analysis."""
