"""Persistent metadata cache with independent namespaces.

All remote lookups and analyzer runs are remembered here so later runs can
skip them. The cache is one JSON document on disk with a top-level section
per namespace. Each section maps a normalized key to its encoded value.

An entry may be stored with an empty value ("looked up, nothing found").
Callers must use :meth:`MetadataCache.has` or compare ``get`` against
``None`` rather than testing the value's truthiness.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

from ..models.track import FeatureSet, MoodData

logger = logging.getLogger(__name__)

V = TypeVar("V")

CacheKey = Union[str, Tuple[str, str]]


class KeyKind(Enum):
    """How a namespace normalizes its keys."""
    TEXT = "text"                  # trim + lowercase
    COMPOSITE = "composite"        # "artist|title", each part trimmed + lowercased
    IDENTIFIER = "identifier"      # trim only, remote ids are case-sensitive
    CONTENT_HASH = "content_hash"  # hex digest, trim + lowercase


@dataclass(frozen=True, slots=True)
class ValueCodec(Generic[V]):
    """Converts namespace values to and from their JSON representation."""
    encode: Callable[[V], Any]
    decode: Callable[[Any], V]


def _decode_text(raw: Any) -> str:
    if not isinstance(raw, str):
        raise TypeError(f"expected string, got {type(raw).__name__}")
    return raw


def _decode_tags(raw: Any) -> List[str]:
    if not isinstance(raw, list) or not all(isinstance(tag, str) for tag in raw):
        raise TypeError("expected a list of strings")
    return list(raw)


def _decode_mapping(factory: Callable[[Dict[str, Any]], V]) -> Callable[[Any], V]:
    def decode(raw: Any) -> V:
        if not isinstance(raw, dict):
            raise TypeError(f"expected object, got {type(raw).__name__}")
        return factory(raw)
    return decode


TEXT_CODEC: ValueCodec[str] = ValueCodec(encode=str, decode=_decode_text)
TAGS_CODEC: ValueCodec[List[str]] = ValueCodec(encode=list, decode=_decode_tags)
FEATURES_CODEC: ValueCodec[FeatureSet] = ValueCodec(
    encode=lambda features: features.to_dict(),
    decode=_decode_mapping(FeatureSet.from_dict),
)
MOOD_CODEC: ValueCodec[MoodData] = ValueCodec(
    encode=lambda mood: mood.to_dict(),
    decode=_decode_mapping(MoodData.from_dict),
)


def normalize_key(key: CacheKey, kind: KeyKind) -> str:
    """Normalize ``key`` for a namespace of the given kind.

    Composite keys may be passed as an ``(artist, title)`` tuple or as an
    already joined ``"artist|title"`` string.
    """
    if kind is KeyKind.COMPOSITE:
        if isinstance(key, tuple):
            artist, title = key
        else:
            artist, _, title = (key or "").partition("|")
        artist = (artist or "").strip().lower()
        title = (title or "").strip().lower()
        if not artist and not title:
            return ""
        return f"{artist}|{title}"

    if isinstance(key, tuple):
        raise TypeError(f"{kind.value} keys must be strings")

    if kind is KeyKind.IDENTIFIER:
        return (key or "").strip()
    return (key or "").strip().lower()


class CacheNamespace(Generic[V]):
    """One independent section of the metadata cache."""

    def __init__(
        self,
        name: str,
        key_kind: KeyKind,
        codec: ValueCodec[V],
        lock: threading.Lock,
        on_change: Callable[[], None],
    ) -> None:
        self.name = name
        self.key_kind = key_kind
        self._codec = codec
        self._lock = lock
        self._on_change = on_change
        self._entries: Dict[str, Any] = {}

    def get(self, key: CacheKey) -> Optional[V]:
        """Return the cached value, or None when nothing was ever stored."""
        normalized = normalize_key(key, self.key_kind)
        if not normalized:
            return None
        with self._lock:
            raw = self._entries.get(normalized)
        if raw is None:
            return None
        return self._codec.decode(raw)

    def has(self, key: CacheKey) -> bool:
        normalized = normalize_key(key, self.key_kind)
        if not normalized:
            return False
        with self._lock:
            return normalized in self._entries

    def set(self, key: CacheKey, value: V) -> None:
        """Store ``value``. Blank keys are ignored."""
        if value is None:
            raise ValueError(f"Cannot cache None in {self.name}; store an empty value instead")
        normalized = normalize_key(key, self.key_kind)
        if not normalized:
            logger.debug(f"Ignoring blank key for cache section {self.name}")
            return
        encoded = self._codec.encode(value)
        with self._lock:
            self._entries[normalized] = encoded
            self._on_change()

    def keys(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return self.has(key)

    # Called by MetadataCache with its mutation lock already held
    def _snapshot(self) -> Dict[str, Any]:
        return dict(self._entries)

    def _replace(self, raw_section: Dict[str, Any]) -> int:
        entries: Dict[str, Any] = {}
        skipped = 0
        for raw_key, raw_value in raw_section.items():
            key = normalize_key(raw_key, self.key_kind)
            if not key or raw_value is None:
                skipped += 1
                continue
            try:
                value = self._codec.decode(raw_value)
            except (TypeError, ValueError, KeyError) as e:
                logger.debug(f"Skipping entry {raw_key!r} in {self.name}: {e}")
                skipped += 1
                continue
            entries[key] = self._codec.encode(value)
        self._entries = entries
        return skipped


class MetadataCache:
    """Thread-safe cache of enrichment lookups, persisted as one JSON file.

    One lock guards every in-memory mutation and the dirty flag. A second
    lock serializes :meth:`persist`, which holds the mutation lock only long
    enough to take a snapshot.
    """

    AUDIO_FEATURES = "audio_features"
    LYRICS = "lyrics"
    ARTIST_GENRES = "artist_genres"
    SOURCE_ARTIST_GENRES = "source_artist_genres"
    TRACK_TAGS = "track_tags"
    AUDIODB_MOODS = "audiodb_moods"
    MUSICBRAINZ_TAGS = "musicbrainz_tags"
    MUSICBRAINZ_IDS = "musicbrainz_ids"
    ANALYSIS_FEATURES = "analysis_features"

    SECTIONS: Dict[str, Tuple[KeyKind, ValueCodec]] = {
        AUDIO_FEATURES: (KeyKind.IDENTIFIER, FEATURES_CODEC),
        LYRICS: (KeyKind.COMPOSITE, TEXT_CODEC),
        ARTIST_GENRES: (KeyKind.TEXT, TAGS_CODEC),
        SOURCE_ARTIST_GENRES: (KeyKind.IDENTIFIER, TAGS_CODEC),
        TRACK_TAGS: (KeyKind.COMPOSITE, TAGS_CODEC),
        AUDIODB_MOODS: (KeyKind.COMPOSITE, MOOD_CODEC),
        MUSICBRAINZ_TAGS: (KeyKind.IDENTIFIER, TAGS_CODEC),
        MUSICBRAINZ_IDS: (KeyKind.COMPOSITE, TEXT_CODEC),
        ANALYSIS_FEATURES: (KeyKind.CONTENT_HASH, FEATURES_CODEC),
    }

    def __init__(self, cache_path: Union[str, Path]) -> None:
        self.cache_path = Path(cache_path).expanduser()
        self._lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._dirty = False
        self._generation = 0

        self._namespaces: Dict[str, CacheNamespace] = {
            name: CacheNamespace(name, kind, codec, self._lock, self._mark_dirty)
            for name, (kind, codec) in self.SECTIONS.items()
        }

        self.audio_features: CacheNamespace[FeatureSet] = self._namespaces[self.AUDIO_FEATURES]
        self.lyrics: CacheNamespace[str] = self._namespaces[self.LYRICS]
        self.artist_genres: CacheNamespace[List[str]] = self._namespaces[self.ARTIST_GENRES]
        self.source_artist_genres: CacheNamespace[List[str]] = self._namespaces[self.SOURCE_ARTIST_GENRES]
        self.track_tags: CacheNamespace[List[str]] = self._namespaces[self.TRACK_TAGS]
        self.audiodb_moods: CacheNamespace[MoodData] = self._namespaces[self.AUDIODB_MOODS]
        self.musicbrainz_tags: CacheNamespace[List[str]] = self._namespaces[self.MUSICBRAINZ_TAGS]
        self.musicbrainz_ids: CacheNamespace[str] = self._namespaces[self.MUSICBRAINZ_IDS]
        self.analysis_features: CacheNamespace[FeatureSet] = self._namespaces[self.ANALYSIS_FEATURES]

    def _mark_dirty(self) -> None:
        # Runs under self._lock
        self._dirty = True
        self._generation += 1

    @property
    def is_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def namespace(self, name: str) -> CacheNamespace:
        try:
            return self._namespaces[name]
        except KeyError:
            raise KeyError(f"Unknown cache section: {name}") from None

    def get(self, namespace: str, key: CacheKey) -> Optional[Any]:
        return self.namespace(namespace).get(key)

    def set(self, namespace: str, key: CacheKey, value: Any) -> None:
        self.namespace(namespace).set(key, value)

    def has(self, namespace: str, key: CacheKey) -> bool:
        return self.namespace(namespace).has(key)

    def load(self) -> None:
        """Load the backing file, starting empty if it is missing or malformed."""
        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info(f"No metadata cache at {self.cache_path}, starting empty")
            data = {}
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read metadata cache {self.cache_path}: {e}; starting empty")
            data = {}

        if not isinstance(data, dict):
            logger.warning(f"Metadata cache {self.cache_path} is not a JSON object; starting empty")
            data = {}

        skipped = 0
        with self._lock:
            for name, namespace in self._namespaces.items():
                section = data.get(name)
                if section is None:
                    namespace._replace({})
                    continue
                if not isinstance(section, dict):
                    logger.warning(f"Cache section {name} is not an object; ignoring it")
                    namespace._replace({})
                    continue
                skipped += namespace._replace(section)
            self._dirty = False

        if skipped:
            logger.warning(f"Skipped {skipped} undecodable cache entries in {self.cache_path}")
        logger.info(f"Loaded metadata cache: {self._summary()}")

    def persist(self) -> bool:
        """Write the cache to disk if it changed since the last write.

        Returns False only when a write was attempted and failed.
        """
        with self._persist_lock:
            with self._lock:
                if not self._dirty:
                    return True
                generation = self._generation
                snapshot = {name: ns._snapshot() for name, ns in self._namespaces.items()}

            if not self._write_atomically(snapshot):
                return False

            with self._lock:
                # A set() during the write keeps the store dirty for the next persist
                if self._generation == generation:
                    self._dirty = False

        logger.debug(f"Persisted metadata cache to {self.cache_path}")
        return True

    def _write_atomically(self, snapshot: Dict[str, Dict[str, Any]]) -> bool:
        tmp_path: Optional[str] = None
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.cache_path.name}.", suffix=".tmp", dir=self.cache_path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.cache_path)
            tmp_path = None
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist metadata cache to {self.cache_path}: {e}")
            return False
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

    def stats(self) -> Dict[str, int]:
        """Entry count per section."""
        with self._lock:
            return {name: len(ns._entries) for name, ns in self._namespaces.items()}

    def _summary(self) -> str:
        counts = self.stats()
        return ", ".join(f"{count} {name}" for name, count in counts.items() if count) or "empty"
