"""Data models for track enrichment."""

from .track import (
    SourceDescriptor,
    CatalogEntry,
    MatchResult,
    FeatureSet,
    MoodData,
    EnrichedTrack,
    JobState,
)

__all__ = [
    "SourceDescriptor",
    "CatalogEntry",
    "MatchResult",
    "FeatureSet",
    "MoodData",
    "EnrichedTrack",
    "JobState",
]
