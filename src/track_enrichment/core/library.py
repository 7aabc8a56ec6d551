"""Turn the whole local catalog into enriched tracks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from ..exceptions import OperationCancelledError
from ..models.track import CatalogEntry, EnrichedTrack, SourceDescriptor
from .matcher import ArtistTagProvider, CancelSignal
from .sidecar_lyrics import read_sidecar_lyrics

logger = logging.getLogger(__name__)


class LyricsProvider(Protocol):
    async def get_lyrics_snippet(self, artist: str, title: str, max_length: int = 200) -> Optional[str]:
        ...


@dataclass(slots=True)
class LibraryListing:
    """Every catalog entry as an enriched track, plus audio paths by catalog id."""
    tracks: List[EnrichedTrack] = field(default_factory=list)
    file_paths: Dict[str, str] = field(default_factory=dict)


def file_paths_by_id(catalog: Sequence[CatalogEntry]) -> Dict[str, str]:
    """Map catalog ids to audio file paths, skipping entries without one."""
    return {entry.id: entry.file_path for entry in catalog if entry.file_path}


class LibraryLister:
    """Lists the catalog with genre fallbacks and optional lyric snippets."""

    def __init__(
        self,
        tag_provider: Optional[ArtistTagProvider] = None,
        lyrics_provider: Optional[LyricsProvider] = None,
        enable_lyric_analysis: bool = False,
    ):
        self.tag_provider = tag_provider
        self.lyrics_provider = lyrics_provider
        self.enable_lyric_analysis = enable_lyric_analysis

    async def _genres(self, entry: CatalogEntry) -> List[str]:
        genres = list(entry.genres or entry.album_genres)
        if genres or self.tag_provider is None or not entry.artist:
            return genres
        try:
            return list(await self.tag_provider.get_artist_tags(entry.artist, 3))
        except Exception as e:
            logger.debug(f"Artist tag lookup failed for {entry.artist}: {e}")
            return []

    async def _lyrics(self, entry: CatalogEntry) -> Optional[str]:
        snippet = await read_sidecar_lyrics(entry.file_path)
        if snippet or self.lyrics_provider is None or not entry.artist:
            return snippet
        try:
            return await self.lyrics_provider.get_lyrics_snippet(entry.artist, entry.title, 200)
        except Exception as e:
            logger.debug(f"Lyrics lookup failed for {entry.display_name}: {e}")
            return None

    async def list_tracks(
        self,
        catalog: Sequence[CatalogEntry],
        cancel_event: Optional[CancelSignal] = None,
    ) -> LibraryListing:
        """Build an enriched track for every catalog entry.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set.
        """
        listing = LibraryListing()
        tag_lookups = 0
        tag_hits = 0

        for entry in catalog:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(f"Library listing cancelled after {len(listing.tracks)} tracks")

            if entry.file_path:
                listing.file_paths[entry.id] = entry.file_path

            needs_lookup = not (entry.genres or entry.album_genres) and self.tag_provider is not None
            genres = await self._genres(entry)
            if needs_lookup and entry.artist:
                tag_lookups += 1
                tag_hits += 1 if genres else 0

            track = EnrichedTrack(
                catalog_id=entry.id,
                title=entry.title,
                artist=entry.artist,
                album=entry.album,
                genres=genres,
                lyrics_snippet=await self._lyrics(entry) if self.enable_lyric_analysis else None,
                # Catalog tracks match themselves
                match_score=100,
                source=SourceDescriptor(title=entry.title, artist=entry.artist, album=entry.album),
            )
            listing.tracks.append(track)

        if tag_lookups:
            logger.info(f"Artist genre lookups: {tag_hits}/{tag_lookups} artists found")
        logger.info(
            f"Loaded {len(listing.tracks)} tracks with {len(listing.file_paths)} file paths from the catalog"
        )
        return listing
