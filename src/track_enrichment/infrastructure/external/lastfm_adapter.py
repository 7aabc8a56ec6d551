"""
Last.fm Adapter - top tags for artists and tracks.

Tags are filtered to those with a positive count, ordered by count, stripped
of personal-taste noise ("seen live", "favorites", ...) and title-cased.
"""

import logging
from typing import Any, List, Optional

from ...core.metadata_cache import MetadataCache
from ...exceptions import LookupFailedError
from .base import RemoteAdapter, title_case

logger = logging.getLogger(__name__)

# The only Last.fm error code that means "no such item"; every other code is a failed lookup
NOT_FOUND_ERROR = 6

SKIP_TAGS = frozenset({
    "seen live", "favorites", "favourite", "favorite", "my favorite",
    "amazing", "awesome", "love", "loved", "beautiful", "cool",
    "albums i own", "check out", "spotify", "good", "best",
})


def normalize_tag(tag: Optional[str]) -> str:
    """Title-case a tag, or return "" for blank and junk tags."""
    if not tag or not tag.strip():
        return ""
    if tag.strip().lower() in SKIP_TAGS:
        return ""
    return title_case(tag)


def extract_top_tags(data: Any, max_tags: int) -> List[str]:
    """Pull the best ``max_tags`` tags out of a ``*.gettoptags`` response."""
    if not isinstance(data, dict):
        return []
    raw_tags = (data.get("toptags") or {}).get("tag") or []
    if isinstance(raw_tags, dict):
        # A single tag comes back as an object rather than a list
        raw_tags = [raw_tags]

    counted = []
    for raw in raw_tags:
        if not isinstance(raw, dict):
            continue
        try:
            count = int(raw.get("count", 0))
        except (TypeError, ValueError):
            continue
        if count > 0:
            counted.append((count, raw.get("name") or ""))

    counted.sort(key=lambda item: item[0], reverse=True)
    tags = [normalize_tag(name) for _, name in counted[:max_tags]]
    return [tag for tag in tags if tag]


class LastFmAdapter(RemoteAdapter):
    """
    Adapter for the Last.fm API v2.0 tag methods.

    API Documentation: https://www.last.fm/api/intro
    """

    source_name = "Last.fm"

    def __init__(
        self,
        api_key: str,
        cache: Optional[MetadataCache] = None,
        base_url: str = "https://ws.audioscrobbler.com/2.0/",
        timeout: float = 10.0,
        **kwargs,
    ):
        super().__init__(cache=cache, timeout=timeout, **kwargs)
        self.api_key = api_key
        self.base_url = base_url

    def _check_error(self, data: Any) -> None:
        """Raise LookupFailedError for any Last.fm API error except item not found."""
        if not isinstance(data, dict) or "error" not in data:
            return
        if data["error"] != NOT_FOUND_ERROR:
            raise LookupFailedError(f"Last.fm error {data['error']}: {data.get('message', '')}")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def get_tags(self, artist: str, title: Optional[str] = None) -> List[str]:
        if title:
            return await self.get_track_tags(artist, title)
        return await self.get_artist_tags(artist)

    async def get_artist_tags(self, artist: str, max_tags: int = 3) -> List[str]:
        """Top tags for an artist, used as a genre fallback."""
        if not artist or not artist.strip() or not self.is_configured:
            return []

        if self.cache is not None:
            cached = self.cache.artist_genres.get(artist)
            if cached is not None:
                return cached

        try:
            data = await self._request_json(self.base_url, {
                "method": "artist.gettoptags",
                "artist": artist,
                "api_key": self.api_key,
                "format": "json",
            })
            self._check_error(data)
        except LookupFailedError as e:
            logger.debug(f"Failed to fetch Last.fm tags for artist {artist}: {e}")
            return []

        tags = extract_top_tags(data, max_tags)
        if self.cache is not None:
            self.cache.artist_genres.set(artist, tags)
        if tags:
            logger.debug(f"Last.fm tags for '{artist}': {tags}")
        return tags

    async def get_track_tags(self, artist: str, title: str, max_tags: int = 5) -> List[str]:
        """Top tags for a single track, used for mood enrichment."""
        if not artist or not artist.strip() or not title or not title.strip():
            return []
        if not self.is_configured:
            return []

        if self.cache is not None:
            cached = self.cache.track_tags.get((artist, title))
            if cached is not None:
                return cached

        try:
            data = await self._request_json(self.base_url, {
                "method": "track.gettoptags",
                "artist": artist,
                "track": title,
                "api_key": self.api_key,
                "format": "json",
            })
            self._check_error(data)
        except LookupFailedError as e:
            logger.debug(f"Failed to fetch Last.fm track tags for {artist} - {title}: {e}")
            return []

        tags = extract_top_tags(data, max_tags)
        if self.cache is not None:
            self.cache.track_tags.set((artist, title), tags)
        return tags
