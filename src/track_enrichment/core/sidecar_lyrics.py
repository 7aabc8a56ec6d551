"""Lyrics read from sidecar files next to audio files."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Union

import aiofiles

logger = logging.getLogger(__name__)

SIDECAR_EXTENSIONS = (".lrc", ".txt", ".lyrics")
SIDECAR_SNIPPET_LENGTH = 150

_LRC_TIMESTAMP = re.compile(r"\[\d{2}:\d{2}(\.\d{2,3})?\]")
_LRC_METADATA = re.compile(r"\[[a-z]{2}:[^\]]*\]", re.IGNORECASE)


def clean_lrc(text: str) -> str:
    """Strip LRC timestamps and ``[ar:...]`` style tags, join lines with spaces."""
    cleaned = _LRC_TIMESTAMP.sub("", text)
    cleaned = _LRC_METADATA.sub("", cleaned)
    lines = [line.strip() for line in cleaned.splitlines()]
    return " ".join(line for line in lines if line)


async def read_sidecar_lyrics(
    audio_path: Optional[Union[str, Path]], max_length: int = SIDECAR_SNIPPET_LENGTH
) -> Optional[str]:
    """Return a lyrics snippet from ``<stem>.lrc``, ``.txt`` or ``.lyrics``.

    Unreadable sidecars are logged and skipped.
    """
    if not audio_path:
        return None

    path = Path(audio_path)
    for extension in SIDECAR_EXTENSIONS:
        sidecar = path.with_suffix(extension)
        if not sidecar.is_file():
            continue
        try:
            async with aiofiles.open(sidecar, encoding="utf-8", errors="replace") as f:
                content = await f.read()
        except OSError as e:
            logger.debug(f"Failed to read lyrics sidecar {sidecar}: {e}")
            continue

        lyrics = clean_lrc(content)
        if lyrics:
            if len(lyrics) > max_length:
                return lyrics[:max_length] + "..."
            return lyrics

    return None
