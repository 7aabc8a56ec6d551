"""Merge mood descriptors from remote tag sources into enriched tracks."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from ..exceptions import OperationCancelledError
from ..models.track import EnrichedTrack, MoodData
from .matcher import CancelSignal
from .metadata_cache import MetadataCache

logger = logging.getLogger(__name__)

MAX_MOOD_TAGS = 6


class TrackTagProvider(Protocol):
    async def get_track_tags(self, artist: str, title: str, max_tags: int = 5) -> List[str]:
        ...


class MoodProvider(Protocol):
    async def get_track_mood(self, artist: str, title: str) -> Optional[MoodData]:
        ...


class RecordingTagProvider(Protocol):
    async def get_tags(self, artist: str, title: Optional[str] = None) -> List[str]:
        ...


def merge_tags(tags: Sequence[str], limit: int = MAX_MOOD_TAGS) -> List[str]:
    """Case-insensitive de-duplication keeping first spellings, capped at ``limit``."""
    seen = set()
    merged = []
    for tag in tags:
        key = tag.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(tag.strip())
        if len(merged) >= limit:
            break
    return merged


class MoodEnricher:
    """Collects mood tags per track from Last.fm, TheAudioDB and MusicBrainz.

    Tracks are processed in batches with a short pause between tracks to stay
    within the services' rate limits. The cache is saved every few batches so
    an interrupted run keeps most of its lookups.
    """

    def __init__(
        self,
        cache: MetadataCache,
        track_tags: Optional[TrackTagProvider] = None,
        moods: Optional[MoodProvider] = None,
        recording_tags: Optional[RecordingTagProvider] = None,
        batch_size: int = 50,
        persist_every_batches: int = 5,
        track_delay: float = 0.05,
    ):
        self.cache = cache
        self.track_tags = track_tags
        self.moods = moods
        # MusicBrainz allows one request per second, so it is opt-in
        self.recording_tags = recording_tags
        self.batch_size = max(1, batch_size)
        self.persist_every_batches = max(1, persist_every_batches)
        self.track_delay = track_delay

    async def enrich_track(self, track: EnrichedTrack) -> bool:
        """Fill in mood tags for one track; returns True if any were found."""
        if not track.artist or not track.title:
            return False

        tags: List[str] = []

        if self.track_tags is not None:
            try:
                tags.extend(await self.track_tags.get_track_tags(track.artist, track.title, 5))
            except Exception as e:
                logger.debug(f"Last.fm track tags failed for {track.display_name}: {e}")

        if self.moods is not None:
            try:
                mood = await self.moods.get_track_mood(track.artist, track.title)
            except Exception as e:
                logger.debug(f"AudioDB mood failed for {track.display_name}: {e}")
                mood = None
            if mood is not None:
                if mood.mood:
                    track.mood = mood.mood
                    tags.append(mood.mood)
                if mood.theme:
                    track.theme = mood.theme
                    tags.append(mood.theme)
                if mood.speed:
                    tags.append(mood.speed)

        if self.recording_tags is not None:
            try:
                tags.extend(await self.recording_tags.get_tags(track.artist, track.title))
            except Exception as e:
                logger.debug(f"MusicBrainz tags failed for {track.display_name}: {e}")

        if not tags:
            return False
        track.mood_tags = merge_tags(tags)
        return True

    async def enrich(
        self,
        tracks: Sequence[EnrichedTrack],
        cancel_event: Optional[CancelSignal] = None,
    ) -> int:
        """Enrich ``tracks`` in place and return how many received mood tags.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set. The cache is
                persisted first.
        """
        enriched = 0
        total = len(tracks)

        try:
            for batch_number, start in enumerate(range(0, total, self.batch_size), start=1):
                for track in tracks[start:start + self.batch_size]:
                    if cancel_event is not None and cancel_event.is_set():
                        raise OperationCancelledError(
                            f"Mood enrichment cancelled after {enriched} of {total} tracks"
                        )
                    if await self.enrich_track(track):
                        enriched += 1
                    if self.track_delay > 0:
                        await asyncio.sleep(self.track_delay)

                if batch_number % self.persist_every_batches == 0:
                    await asyncio.to_thread(self.cache.persist)
        finally:
            await asyncio.to_thread(self.cache.persist)

        logger.info(f"Mood enrichment complete: {enriched}/{total} tracks enriched")
        return enriched
