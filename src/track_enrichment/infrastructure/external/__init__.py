"""Adapters for remote metadata services."""

from .audiodb_adapter import AudioDbAdapter
from .lastfm_adapter import LastFmAdapter
from .lyrics_adapter import LyricsAdapter
from .musicbrainz_adapter import MusicBrainzAdapter

__all__ = ["AudioDbAdapter", "LastFmAdapter", "LyricsAdapter", "MusicBrainzAdapter"]
