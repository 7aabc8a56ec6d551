"""
Lyrics Adapter - short lyric snippets from lyrics.ovh.

Only a snippet of a few meaningful lines is kept; it gives downstream
consumers a feel for a track's subject without storing whole lyrics.
"""

import logging
import re
from typing import Optional
from urllib.parse import quote

from ...core.metadata_cache import MetadataCache
from ...exceptions import LookupFailedError
from .base import RemoteAdapter

logger = logging.getLogger(__name__)

SNIPPET_MAX_LINES = 4
SNIPPET_MIN_LINE_LENGTH = 10
SNIPPET_MAX_LENGTH = 200

_FEATURING_OPEN = re.compile(r"\((?:feat|ft)\.", re.IGNORECASE)


def clean_for_search(text: str) -> str:
    """Drop featuring credits and anything in parentheses."""
    cleaned = _FEATURING_OPEN.sub("(", text)
    paren_index = cleaned.find("(")
    if paren_index > 0:
        cleaned = cleaned[:paren_index]
    return cleaned.strip()


def extract_snippet(lyrics: str, max_length: int = SNIPPET_MAX_LENGTH) -> str:
    """First few meaningful lines, joined with " / "."""
    lines = []
    for line in lyrics.splitlines():
        trimmed = line.strip()
        # Section markers such as [Chorus] and very short lines carry little
        if not trimmed or (trimmed.startswith("[") and trimmed.endswith("]")):
            continue
        if len(trimmed) < SNIPPET_MIN_LINE_LENGTH:
            continue
        lines.append(trimmed)
        if len(lines) >= SNIPPET_MAX_LINES:
            break

    snippet = " / ".join(lines)
    if len(snippet) > max_length:
        snippet = snippet[:max_length] + "..."
    return snippet


class LyricsAdapter(RemoteAdapter):
    """Adapter for the lyrics.ovh API (no API key required)."""

    source_name = "lyrics.ovh"

    def __init__(
        self,
        cache: Optional[MetadataCache] = None,
        base_url: str = "https://api.lyrics.ovh/v1",
        timeout: float = 10.0,
        **kwargs,
    ):
        super().__init__(cache=cache, timeout=timeout, **kwargs)
        self.base_url = base_url

    async def get_lyrics_snippet(
        self, artist: str, title: str, max_length: int = SNIPPET_MAX_LENGTH
    ) -> Optional[str]:
        """Return a snippet, or None when no lyrics are available."""
        if not artist or not artist.strip() or not title or not title.strip():
            return None

        clean_artist = clean_for_search(artist)
        clean_title = clean_for_search(title)

        if self.cache is not None:
            cached = self.cache.lyrics.get((clean_artist, clean_title))
            if cached is not None:
                return cached or None

        url = f"{self.base_url}/{quote(clean_artist, safe='')}/{quote(clean_title, safe='')}"
        try:
            data = await self._request_json(url)
        except LookupFailedError as e:
            logger.debug(f"Failed to fetch lyrics for {artist} - {title}: {e}")
            return None

        lyrics = data.get("lyrics") if isinstance(data, dict) else None
        snippet = extract_snippet(lyrics, max_length) if isinstance(lyrics, str) else ""

        if self.cache is not None:
            self.cache.lyrics.set((clean_artist, clean_title), snippet)
        return snippet or None
