"""End-to-end enrichment run: match or list, add moods, analyze audio."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .core.analysis import AnalysisOrchestrator, EnrichmentStats
from .core.library import LibraryLister, file_paths_by_id
from .core.matcher import LibraryMatcher
from .core.metadata_cache import MetadataCache
from .core.mood_enrichment import MoodEnricher
from .infrastructure.external import AudioDbAdapter, LastFmAdapter, LyricsAdapter, MusicBrainzAdapter
from .models.config import EnrichmentConfig
from .models.track import CatalogEntry, EnrichedTrack, SourceDescriptor

logger = logging.getLogger(__name__)

StageProgress = Callable[[str, float], None]


@dataclass(slots=True)
class PipelineResult:
    """Tracks produced by a run and what each stage did."""
    tracks: List[EnrichedTrack] = field(default_factory=list)
    sources: int = 0
    mood_enriched: int = 0
    analysis: EnrichmentStats = field(default_factory=EnrichmentStats)
    elapsed: float = 0.0

    @property
    def with_features(self) -> int:
        return sum(1 for track in self.tracks if track.has_features)


class EnrichmentPipeline:
    """Wires the cache, remote adapters, matcher and analyzer together."""

    def __init__(self, config: EnrichmentConfig, cache: Optional[MetadataCache] = None):
        self.config = config
        self.cache = cache or MetadataCache(config.cache_path)
        self._cache_loaded = cache is not None
        self.orchestrator = AnalysisOrchestrator(config.analysis, data_dir=config.data_dir)

    def _adapters(self):
        providers = self.config.providers
        common = {"cache": self.cache, "user_agent": providers.user_agent}

        lastfm = None
        if providers.lastfm_api_key:
            lastfm = LastFmAdapter(providers.lastfm_api_key, timeout=providers.request_timeout, **common)
        audiodb = AudioDbAdapter(timeout=providers.request_timeout, **common)
        lyrics = LyricsAdapter(timeout=providers.request_timeout, **common)
        musicbrainz = None
        if providers.enable_musicbrainz:
            musicbrainz = MusicBrainzAdapter(
                timeout=providers.musicbrainz_timeout,
                request_delay=providers.musicbrainz_delay,
                **common,
            )
        return lastfm, audiodb, lyrics, musicbrainz

    async def run(
        self,
        catalog: Sequence[CatalogEntry],
        sources: Optional[Sequence[SourceDescriptor]] = None,
        mood: bool = True,
        analysis: bool = True,
        progress: Optional[StageProgress] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineResult:
        """Enrich ``catalog``, or only the catalog entries matching ``sources``.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set. Work done so
                far is kept in the persisted cache.
        """
        started = time.monotonic()
        if not self._cache_loaded:
            await asyncio.to_thread(self.cache.load)
            self._cache_loaded = True

        result = PipelineResult(sources=len(sources) if sources is not None else 0)
        lastfm, audiodb, lyrics, musicbrainz = self._adapters()
        matching = self.config.matching

        def report(stage: str) -> Optional[Callable[[float], None]]:
            if progress is None:
                return None
            return lambda percent: progress(stage, percent)

        try:
            if sources is not None:
                matcher = LibraryMatcher(lastfm, matching.enable_lyric_analysis)
                result.tracks = await matcher.match_tracks(
                    sources, catalog, matching.minimum_match_score, cancel_event, report("matching")
                )
                file_paths = file_paths_by_id(catalog)
            else:
                lister = LibraryLister(lastfm, lyrics, matching.enable_lyric_analysis)
                listing = await lister.list_tracks(catalog, cancel_event)
                result.tracks = listing.tracks
                file_paths = listing.file_paths

            if mood and result.tracks:
                enricher = MoodEnricher(
                    self.cache,
                    track_tags=lastfm,
                    moods=audiodb,
                    recording_tags=musicbrainz,
                    batch_size=self.config.providers.mood_batch_size,
                    persist_every_batches=self.config.providers.persist_every_batches,
                    track_delay=self.config.providers.lookup_delay,
                )
                result.mood_enriched = await enricher.enrich(result.tracks, cancel_event)

            if analysis and result.tracks:
                await self.orchestrator.enrich(
                    result.tracks, file_paths, self.cache, report("analysis"), cancel_event
                )
                result.analysis = self.orchestrator.get_stats()
        finally:
            for adapter in (lastfm, audiodb, lyrics, musicbrainz):
                if adapter is not None:
                    await adapter.close()
            await asyncio.to_thread(self.cache.persist)
            result.elapsed = time.monotonic() - started

        logger.info(
            f"Enrichment finished in {result.elapsed:.1f}s: {len(result.tracks)} tracks, "
            f"{result.mood_enriched} with moods, {result.with_features} with audio features"
        )
        return result
