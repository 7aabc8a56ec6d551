"""Track models shared by matching, caching and analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _string_tuple(value: Any) -> Tuple[str, ...]:
    """A single string is one value, not a sequence of characters."""
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(value or ())


@dataclass(frozen=True, slots=True)
class SourceDescriptor:
    """A track described by an external source, matched against the catalog."""

    title: str
    artist: str
    album: str = ""
    source_id: str = ""
    features: Optional[FeatureSet] = None

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    """Read-only snapshot of one local library item taken at scan time."""

    id: str
    title: str
    artist: str
    album: str = ""
    genres: Tuple[str, ...] = ()
    file_path: Optional[str] = None
    album_genres: Tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CatalogEntry:
        """Build an entry from a plain mapping (JSON catalog row)."""
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            artist=data.get("artist") or "",
            album=data.get("album") or "",
            genres=_string_tuple(data.get("genres")),
            file_path=data.get("file_path") or data.get("filePath") or None,
            album_genres=_string_tuple(data.get("album_genres")),
        )


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Best catalog candidate for one source descriptor."""

    catalog_id: str
    score: int

    def __post_init__(self) -> None:
        if not 0 <= self.score <= 100:
            raise ValueError(f"Match score must be within 0..100, got {self.score}")


@dataclass(frozen=True, slots=True)
class FeatureSet:
    """Canonical perceptual features of a track.

    energy, valence, danceability and acousticness are in [0, 1]; tempo is in
    BPM and key is a free-form string such as "A minor".
    """

    energy: float = 0.0
    valence: float = 0.0
    danceability: float = 0.0
    acousticness: float = 0.0
    tempo: float = 0.0
    key: Optional[str] = None
    analyzed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "energy": self.energy,
            "valence": self.valence,
            "danceability": self.danceability,
            "acousticness": self.acousticness,
            "tempo": self.tempo,
            "key": self.key,
            "analyzed_at": self.analyzed_at.isoformat() if self.analyzed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FeatureSet:
        analyzed_at = data.get("analyzed_at")
        return cls(
            energy=float(data.get("energy", 0.0)),
            valence=float(data.get("valence", 0.0)),
            danceability=float(data.get("danceability", 0.0)),
            acousticness=float(data.get("acousticness", 0.0)),
            tempo=float(data.get("tempo", 0.0)),
            key=data.get("key"),
            analyzed_at=datetime.fromisoformat(analyzed_at) if analyzed_at else None,
        )

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class MoodData:
    """Mood descriptors for a track; all fields empty means "looked up, none found"."""

    mood: Optional[str] = None
    theme: Optional[str] = None
    speed: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.mood or self.theme or self.speed)

    def to_dict(self) -> Dict[str, Any]:
        return {"mood": self.mood, "theme": self.theme, "speed": self.speed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MoodData:
        return cls(mood=data.get("mood"), theme=data.get("theme"), speed=data.get("speed"))


@dataclass(slots=True)
class EnrichedTrack:
    """A catalog entry being filled in by the enrichment passes."""

    catalog_id: str
    title: str
    artist: str
    album: str = ""
    genres: List[str] = field(default_factory=list)
    lyrics_snippet: Optional[str] = None
    energy: Optional[float] = None
    valence: Optional[float] = None
    danceability: Optional[float] = None
    acousticness: Optional[float] = None
    tempo: Optional[float] = None
    key: Optional[str] = None
    mood_tags: List[str] = field(default_factory=list)
    mood: Optional[str] = None
    theme: Optional[str] = None
    match_score: int = 100
    source: Optional[SourceDescriptor] = None

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"

    @property
    def has_features(self) -> bool:
        return self.energy is not None

    def apply_features(self, features: FeatureSet) -> None:
        """Copy analyzed features onto the track."""
        self.energy = features.energy
        self.valence = features.valence
        self.danceability = features.danceability
        self.acousticness = features.acousticness
        self.tempo = features.tempo
        if features.key:
            self.key = features.key


class JobState(Enum):
    """Lifecycle of a single analysis job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
