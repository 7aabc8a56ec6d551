"""Fuzzy matching of source track descriptors against the local catalog.

Each source descriptor is compared with every catalog entry using normalized
``"artist - title"`` strings. The best scoring entry wins; on equal scores the
entry seen first is kept. Genre and lyrics lookups happen only for the final
winner.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from ..exceptions import OperationCancelledError
from ..models.track import CatalogEntry, EnrichedTrack, MatchResult, SourceDescriptor
from ..utils.string_similarity import match_score, track_key
from .sidecar_lyrics import read_sidecar_lyrics

logger = logging.getLogger(__name__)


class CancelSignal(Protocol):
    def is_set(self) -> bool:
        ...


class ArtistTagProvider(Protocol):
    async def get_artist_tags(self, artist: str, max_tags: int = 3) -> List[str]:
        ...


def _check_cancelled(cancel_event: Optional[CancelSignal]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError("Matching cancelled")


def _scan_catalog(
    source: SourceDescriptor,
    catalog: Sequence[CatalogEntry],
    cancel_event: Optional[CancelSignal] = None,
    catalog_keys: Optional[Sequence[str]] = None,
) -> Optional[Tuple[int, MatchResult]]:
    """Return the index and result of the best catalog match, or None for an empty catalog.

    Args:
        source: Track to look for
        catalog: Local library snapshot
        cancel_event: Checked between catalog entries
        catalog_keys: Precomputed normalized keys, parallel to ``catalog``

    Raises:
        OperationCancelledError: If ``cancel_event`` is set during the scan.
    """
    source_key = track_key(source.artist, source.title)
    best: Optional[MatchResult] = None
    best_index = -1

    for index, entry in enumerate(catalog):
        _check_cancelled(cancel_event)
        entry_key = catalog_keys[index] if catalog_keys is not None else track_key(entry.artist, entry.title)
        score = match_score(source_key, entry_key)
        # Strictly greater keeps the first entry on ties
        if best is None or score > best.score:
            best = MatchResult(catalog_id=entry.id, score=score)
            best_index = index
            if score == 100:
                break

    if best is None:
        return None
    return best_index, best


def match_best(
    source: SourceDescriptor,
    catalog: Sequence[CatalogEntry],
    cancel_event: Optional[CancelSignal] = None,
) -> Optional[MatchResult]:
    """Return the best catalog match for ``source``, or None for an empty catalog.

    Raises:
        OperationCancelledError: If ``cancel_event`` is set during the scan.
    """
    found = _scan_catalog(source, catalog, cancel_event)
    return found[1] if found is not None else None


class LibraryMatcher:
    """Matches source tracks to the catalog and fills in genres and lyrics."""

    def __init__(
        self,
        tag_provider: Optional[ArtistTagProvider] = None,
        enable_lyric_analysis: bool = False,
    ):
        self.tag_provider = tag_provider
        self.enable_lyric_analysis = enable_lyric_analysis

    async def match_track(
        self,
        source: SourceDescriptor,
        catalog: Sequence[CatalogEntry],
        cancel_event: Optional[CancelSignal] = None,
        catalog_keys: Optional[Sequence[str]] = None,
    ) -> Optional[EnrichedTrack]:
        """Find the best entry for ``source`` and build an enriched track from it."""
        found = _scan_catalog(source, catalog, cancel_event, catalog_keys)
        if found is None:
            return None

        index, result = found
        entry = catalog[index]
        track = EnrichedTrack(
            catalog_id=entry.id,
            title=entry.title,
            artist=entry.artist,
            album=entry.album,
            genres=list(entry.genres or entry.album_genres),
            match_score=result.score,
            source=source,
        )
        if source.features is not None:
            track.apply_features(source.features)

        await self._enrich_winner(track, entry)
        return track

    async def _enrich_winner(self, track: EnrichedTrack, entry: CatalogEntry) -> None:
        try:
            if not track.genres and self.tag_provider is not None and entry.artist:
                track.genres = list(await self.tag_provider.get_artist_tags(entry.artist, 3))

            if not track.genres and self.enable_lyric_analysis:
                track.lyrics_snippet = await read_sidecar_lyrics(entry.file_path)
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to enrich match {track.display_name}: {e}")

    async def match_tracks(
        self,
        sources: Sequence[SourceDescriptor],
        catalog: Sequence[CatalogEntry],
        minimum_score: int = 80,
        cancel_event: Optional[CancelSignal] = None,
        progress: Optional[Callable[[float], None]] = None,
    ) -> List[EnrichedTrack]:
        """Match every source and keep those scoring at least ``minimum_score``.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set.
        """
        catalog_keys = [track_key(entry.artist, entry.title) for entry in catalog]
        matched: List[EnrichedTrack] = []
        total = len(sources)

        for index, source in enumerate(sources, start=1):
            _check_cancelled(cancel_event)
            track = await self.match_track(source, catalog, cancel_event, catalog_keys)

            if track is not None and track.match_score >= minimum_score:
                matched.append(track)
                logger.debug(f"Matched {source.display_name} -> {track.display_name} ({track.match_score})")
            else:
                best = track.match_score if track is not None else 0
                logger.debug(f"No match for {source.display_name} (best score {best})")

            if progress is not None and total:
                progress(index / total * 100)

        logger.info(f"Matched {len(matched)} of {total} source tracks against {len(catalog)} catalog entries")
        return matched
