"""
TheAudioDB Adapter - mood, theme and speed descriptors for tracks.
"""

import logging
from typing import List, Optional

from ...core.metadata_cache import MetadataCache
from ...exceptions import LookupFailedError
from ...models.track import MoodData
from .base import RemoteAdapter

logger = logging.getLogger(__name__)


class AudioDbAdapter(RemoteAdapter):
    """Adapter for TheAudioDB's free track search."""

    source_name = "TheAudioDB"

    def __init__(
        self,
        cache: Optional[MetadataCache] = None,
        base_url: str = "https://theaudiodb.com/api/v1/json/2",
        timeout: float = 10.0,
        **kwargs,
    ):
        super().__init__(cache=cache, timeout=timeout, **kwargs)
        self.base_url = base_url

    async def get_tags(self, artist: str, title: Optional[str] = None) -> List[str]:
        mood = await self.get_track_mood(artist, title or "")
        if mood is None:
            return []
        return [value for value in (mood.mood, mood.theme, mood.speed) if value]

    async def get_track_mood(self, artist: str, title: str) -> Optional[MoodData]:
        """Mood data for a track.

        Returns None when the track is unknown or the lookup failed; unknown
        tracks are remembered as an empty MoodData.
        """
        if not artist or not artist.strip() or not title or not title.strip():
            return None

        if self.cache is not None and self.cache.audiodb_moods.has((artist, title)):
            cached = self.cache.audiodb_moods.get((artist, title))
            return None if cached is None or cached.is_empty else cached

        try:
            data = await self._request_json(
                f"{self.base_url}/searchtrack.php", {"s": artist, "t": title}
            )
        except LookupFailedError as e:
            logger.debug(f"Failed to fetch AudioDB mood for {artist} - {title}: {e}")
            return None

        mood = MoodData()
        tracks = data.get("track") if isinstance(data, dict) else None
        if tracks and isinstance(tracks[0], dict):
            track = tracks[0]
            mood = MoodData(
                mood=track.get("strMood") or None,
                theme=track.get("strTheme") or None,
                speed=track.get("strSpeed") or None,
            )

        if self.cache is not None:
            self.cache.audiodb_moods.set((artist, title), mood)
        if mood.is_empty:
            return None
        logger.debug(f"AudioDB mood for '{artist} - {title}': {mood.mood}, {mood.theme}")
        return mood
