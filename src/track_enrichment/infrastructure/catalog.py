"""
Catalog providers - load the local library snapshot.

Two sources are supported: a JSON export of the library and a directory of
audio files whose tags are read with mutagen.
"""

import asyncio
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import aiofiles
from mutagen import File as MutagenFile
from mutagen import MutagenError

from ..exceptions import CatalogError
from ..models.track import CatalogEntry, FeatureSet, SourceDescriptor

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = frozenset({
    ".mp3", ".flac", ".m4a", ".mp4", ".aac", ".ogg", ".opus", ".wav", ".aiff", ".aif", ".wma", ".ape",
})


async def _read_json(path: Path) -> Any:
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
    except OSError as e:
        raise CatalogError(f"Cannot read {path}: {e}") from e
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise CatalogError(f"Invalid JSON in {path}: {e.msg} at line {e.lineno}, column {e.colno}") from e


def _rows(data: Any, path: Path) -> List[Any]:
    if isinstance(data, dict):
        data = data.get("tracks")
    if not isinstance(data, list):
        raise CatalogError(f"{path} must contain a list of tracks or an object with a 'tracks' list")
    return data


class JsonCatalogProvider:
    """Reads catalog entries from a JSON list or ``{"tracks": [...]}``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    async def load(self) -> List[CatalogEntry]:
        data = await _read_json(self.path)
        entries = []
        for index, row in enumerate(_rows(data, self.path)):
            if not isinstance(row, dict) or "id" not in row:
                logger.warning(f"Skipping catalog row {index} in {self.path}: missing id")
                continue
            entries.append(CatalogEntry.from_dict(row))
        logger.info(f"Loaded {len(entries)} catalog entries from {self.path}")
        return entries


def _first_tag(tags: Any, name: str) -> str:
    values = tags.get(name) if tags is not None else None
    if not values:
        return ""
    return str(values[0]).strip()


def _all_tags(tags: Any, name: str) -> tuple:
    values = tags.get(name) if tags is not None else None
    return tuple(str(v).strip() for v in values or () if str(v).strip())


class DirectoryCatalogProvider:
    """Walks a directory and reads title, artist, album and genre tags."""

    def __init__(self, root: Union[str, Path], extensions: Optional[Iterable[str]] = None):
        self.root = Path(root).expanduser()
        self.extensions = frozenset(e.lower() for e in extensions) if extensions else AUDIO_EXTENSIONS

    @staticmethod
    def entry_id(path: Path) -> str:
        """Stable id derived from the absolute path."""
        return hashlib.sha256(str(path.resolve()).encode("utf-8")).hexdigest()[:16]

    def read_entry(self, path: Path) -> CatalogEntry:
        tags = None
        try:
            audio = MutagenFile(path, easy=True)
            if audio is not None:
                tags = audio.tags
        except (MutagenError, OSError) as e:
            logger.debug(f"Could not read tags from {path}: {e}")

        return CatalogEntry(
            id=self.entry_id(path),
            title=_first_tag(tags, "title") or path.stem,
            artist=_first_tag(tags, "artist") or _first_tag(tags, "albumartist"),
            album=_first_tag(tags, "album"),
            genres=_all_tags(tags, "genre"),
            file_path=str(path),
        )

    def scan(self) -> List[CatalogEntry]:
        if not self.root.is_dir():
            raise CatalogError(f"Catalog directory not found: {self.root}")

        entries = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if path.suffix.lower() in self.extensions:
                    entries.append(self.read_entry(path))
        logger.info(f"Scanned {len(entries)} audio files under {self.root}")
        return entries

    async def load(self) -> List[CatalogEntry]:
        return await asyncio.to_thread(self.scan)


async def load_source_descriptors(path: Union[str, Path]) -> List[SourceDescriptor]:
    """Read source tracks to match from a JSON list or ``{"tracks": [...]}``.

    Each row needs ``title`` and ``artist``; ``album``, ``source_id`` and a
    ``features`` object are optional.
    """
    path = Path(path).expanduser()
    data = await _read_json(path)

    sources = []
    for index, row in enumerate(_rows(data, path)):
        if not isinstance(row, dict) or not row.get("title") or not row.get("artist"):
            logger.warning(f"Skipping source row {index} in {path}: title and artist are required")
            continue
        features = row.get("features")
        try:
            features = FeatureSet.from_dict(features) if isinstance(features, dict) else None
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping source row {index} in {path}: unreadable features ({e})")
            continue
        sources.append(SourceDescriptor(
            title=row["title"],
            artist=row["artist"],
            album=row.get("album") or "",
            source_id=row.get("source_id") or row.get("id") or "",
            features=features,
        ))
    logger.info(f"Loaded {len(sources)} source tracks from {path}")
    return sources
