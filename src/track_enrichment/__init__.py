"""Track Enrichment

Matches externally sourced tracks against a local music library and enriches
them with tags, moods and audio features, caching every expensive lookup.
"""

__version__ = "0.1.0"

# Export the engine components
from .core.metadata_cache import MetadataCache, CacheNamespace, KeyKind
from .core.matcher import LibraryMatcher, match_best
from .core.normalizer import (
    FlatKeyStrategy,
    NestedObjectStrategy,
    normalize_features,
    select_strategy
)
from .core.analysis import (
    AnalysisOrchestrator,
    AnalyzerLocator,
    EnrichmentStats
)
from .core.content_key import content_hash_key

from .models.track import (
    SourceDescriptor,
    CatalogEntry,
    MatchResult,
    FeatureSet,
    MoodData,
    EnrichedTrack,
    JobState
)
from .models.config import EnrichmentConfig, load_config

from .pipeline import EnrichmentPipeline, PipelineResult

__all__ = [
    # Core components
    "MetadataCache",
    "CacheNamespace",
    "KeyKind",
    "LibraryMatcher",
    "AnalysisOrchestrator",
    "AnalyzerLocator",
    "EnrichmentPipeline",

    # Functions
    "match_best",
    "normalize_features",
    "select_strategy",
    "content_hash_key",
    "load_config",

    # Types
    "FlatKeyStrategy",
    "NestedObjectStrategy",
    "EnrichmentStats",
    "PipelineResult",
    "EnrichmentConfig",
    "SourceDescriptor",
    "CatalogEntry",
    "MatchResult",
    "FeatureSet",
    "MoodData",
    "EnrichedTrack",
    "JobState"
]
