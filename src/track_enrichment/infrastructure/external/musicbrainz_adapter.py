"""
MusicBrainz Adapter - community tags for recordings.

A lookup is two requests: a recording search that yields the MusicBrainz id,
then a fetch of that recording's tags. Both results are cached separately.
MusicBrainz asks clients for at most one request per second and a
descriptive User-Agent.
"""

import logging
from typing import Any, List, Optional

from ...core.metadata_cache import MetadataCache
from ...exceptions import LookupFailedError
from .base import RemoteAdapter, title_case

logger = logging.getLogger(__name__)


class MusicBrainzAdapter(RemoteAdapter):
    """Adapter for the MusicBrainz web service API."""

    source_name = "MusicBrainz"

    def __init__(
        self,
        cache: Optional[MetadataCache] = None,
        base_url: str = "https://musicbrainz.org/ws/2",
        timeout: float = 15.0,
        request_delay: float = 1.1,
        **kwargs,
    ):
        super().__init__(cache=cache, timeout=timeout, request_delay=request_delay, **kwargs)
        self.base_url = base_url

    async def get_tags(self, artist: str, title: Optional[str] = None, max_tags: int = 5) -> List[str]:
        """Tags of the best matching recording, or [] when unknown."""
        if not artist or not artist.strip() or not title or not title.strip():
            return []

        try:
            recording_id = await self.find_recording_id(artist, title)
            if not recording_id:
                return []
            return await self.get_recording_tags(recording_id, max_tags)
        except LookupFailedError as e:
            logger.debug(f"Failed to fetch MusicBrainz tags for {artist} - {title}: {e}")
            return []

    async def find_recording_id(self, artist: str, title: str) -> str:
        """Search for a recording; "" means MusicBrainz has no match.

        Raises:
            LookupFailedError: If the search could not be completed.
        """
        if self.cache is not None:
            cached = self.cache.musicbrainz_ids.get((artist, title))
            if cached is not None:
                return cached

        data = await self._request_json(f"{self.base_url}/recording", {
            "query": f'recording:"{title}" AND artist:"{artist}"',
            "limit": 1,
            "fmt": "json",
        })

        recording_id = ""
        if isinstance(data, dict):
            recordings = data.get("recordings") or []
            if recordings and isinstance(recordings[0], dict):
                recording_id = recordings[0].get("id") or ""

        if self.cache is not None:
            self.cache.musicbrainz_ids.set((artist, title), recording_id)
        return recording_id

    async def get_recording_tags(self, recording_id: str, max_tags: int = 5) -> List[str]:
        """Tags for a known recording id, most used first.

        Raises:
            LookupFailedError: If the recording could not be fetched.
        """
        if self.cache is not None:
            cached = self.cache.musicbrainz_tags.get(recording_id)
            if cached is not None:
                return cached

        data = await self._request_json(
            f"{self.base_url}/recording/{recording_id}", {"inc": "tags", "fmt": "json"}
        )
        tags = self._extract_tags(data, max_tags)

        if self.cache is not None:
            self.cache.musicbrainz_tags.set(recording_id, tags)
        if tags:
            logger.debug(f"MusicBrainz tags for {recording_id}: {tags}")
        return tags

    @staticmethod
    def _extract_tags(data: Any, max_tags: int) -> List[str]:
        if not isinstance(data, dict):
            return []
        raw_tags = [tag for tag in data.get("tags") or [] if isinstance(tag, dict)]
        raw_tags.sort(key=lambda tag: tag.get("count") or 0, reverse=True)
        tags = [title_case(tag.get("name") or "") for tag in raw_tags[:max_tags]]
        return [tag for tag in tags if tag]
