"""Tests for catalog matching and match side effects."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from track_enrichment.core.matcher import LibraryMatcher, match_best
from track_enrichment.exceptions import OperationCancelledError
from track_enrichment.models.track import CatalogEntry, FeatureSet, SourceDescriptor


def entry(entry_id, artist, title, genres=(), album_genres=(), file_path=None):
    return CatalogEntry(
        id=entry_id,
        title=title,
        artist=artist,
        genres=tuple(genres),
        album_genres=tuple(album_genres),
        file_path=file_path,
    )


@pytest.fixture
def catalog():
    return [
        entry("1", "Queen", "Bohemian Rhapsody", genres=["Rock"]),
        entry("2", "Beatles", "Let It Be (Remastered)", genres=["Rock", "Pop"]),
        entry("3", "Miles Davis", "So What"),
    ]


class TestMatchBest:
    """Tests for the pure best-match scan."""

    def test_bracketed_remaster_matches_by_containment(self, catalog):
        source = SourceDescriptor(title="Let It Be", artist="The Beatles")

        result = match_best(source, catalog)

        assert result is not None
        assert result.catalog_id == "2"
        assert result.score >= 85

    def test_exact_match(self, catalog):
        source = SourceDescriptor(title="So What", artist="Miles Davis")

        result = match_best(source, catalog)

        assert result.catalog_id == "3"
        assert result.score == 100

    def test_empty_catalog(self):
        assert match_best(SourceDescriptor(title="x", artist="y"), []) is None

    def test_ties_keep_first_entry(self):
        catalog = [
            entry("first", "Artist", "Song (Live)"),
            entry("second", "Artist", "Song [Demo]"),
        ]

        result = match_best(SourceDescriptor(title="Song", artist="Artist"), catalog)

        assert result.catalog_id == "first"
        assert result.score == 100

    def test_poor_match_still_reported(self, catalog):
        result = match_best(SourceDescriptor(title="Completely Unrelated", artist="Nobody"), catalog)

        assert result is not None
        assert result.score < 80

    def test_cancellation_between_entries(self, catalog):
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            match_best(SourceDescriptor(title="So What", artist="Miles Davis"), catalog, cancel)


class TestLibraryMatcher:
    """Tests for LibraryMatcher."""

    @pytest.mark.asyncio
    async def test_match_tracks_applies_minimum_score(self, catalog):
        matcher = LibraryMatcher()
        sources = [
            SourceDescriptor(title="Let It Be", artist="The Beatles"),
            SourceDescriptor(title="Completely Unrelated", artist="Nobody"),
        ]

        matched = await matcher.match_tracks(sources, catalog, minimum_score=80)

        assert [t.catalog_id for t in matched] == ["2"]
        assert matched[0].genres == ["Rock", "Pop"]
        assert matched[0].source is sources[0]

    @pytest.mark.asyncio
    async def test_matched_track_inherits_source_features(self, catalog):
        features = FeatureSet(energy=0.7, valence=0.4, danceability=0.6, acousticness=0.1, tempo=128.0)
        source = SourceDescriptor(title="Bohemian Rhapsody", artist="Queen", features=features)

        track = await LibraryMatcher().match_track(source, catalog)

        assert track.energy == 0.7
        assert track.tempo == 128.0

    @pytest.mark.asyncio
    async def test_album_genres_are_fallback(self):
        catalog = [entry("1", "Artist", "Song", album_genres=["Jazz"])]
        tags = AsyncMock()
        tags.get_artist_tags = AsyncMock(return_value=["Ignored"])

        track = await LibraryMatcher(tag_provider=tags).match_track(
            SourceDescriptor(title="Song", artist="Artist"), catalog
        )

        assert track.genres == ["Jazz"]
        tags.get_artist_tags.assert_not_called()

    @pytest.mark.asyncio
    async def test_artist_tags_only_for_final_winner(self):
        catalog = [
            entry("weak", "Artist", "Another Song"),
            entry("strong", "Artist", "Song"),
        ]
        tags = AsyncMock()
        tags.get_artist_tags = AsyncMock(return_value=["Electronic"])

        track = await LibraryMatcher(tag_provider=tags).match_track(
            SourceDescriptor(title="Song", artist="Artist"), catalog
        )

        assert track.catalog_id == "strong"
        assert track.genres == ["Electronic"]
        tags.get_artist_tags.assert_awaited_once_with("Artist", 3)

    @pytest.mark.asyncio
    async def test_side_effect_failure_is_swallowed(self, catalog):
        tags = AsyncMock()
        tags.get_artist_tags = AsyncMock(side_effect=RuntimeError("boom"))

        track = await LibraryMatcher(tag_provider=tags).match_track(
            SourceDescriptor(title="So What", artist="Miles Davis"), catalog
        )

        assert track.catalog_id == "3"
        assert track.genres == []

    @pytest.mark.asyncio
    async def test_sidecar_lyrics_when_no_genres(self, tmp_path):
        audio = tmp_path / "song.flac"
        audio.write_bytes(b"")
        (tmp_path / "song.lrc").write_text(
            "[ar:Artist]\n[ti:Song]\n[00:12.34]First line of the song\n[00:15.00]Second line here\n"
        )
        catalog = [entry("1", "Artist", "Song", file_path=str(audio))]

        track = await LibraryMatcher(enable_lyric_analysis=True).match_track(
            SourceDescriptor(title="Song", artist="Artist"), catalog
        )

        assert track.lyrics_snippet == "First line of the song Second line here"

    @pytest.mark.asyncio
    async def test_no_lyrics_when_disabled(self, tmp_path):
        audio = tmp_path / "song.flac"
        audio.write_bytes(b"")
        (tmp_path / "song.txt").write_text("Some lyrics for this song\n")
        catalog = [entry("1", "Artist", "Song", file_path=str(audio))]

        track = await LibraryMatcher().match_track(SourceDescriptor(title="Song", artist="Artist"), catalog)

        assert track.lyrics_snippet is None

    @pytest.mark.asyncio
    async def test_match_tracks_cancellation(self, catalog):
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await LibraryMatcher().match_tracks(
                [SourceDescriptor(title="So What", artist="Miles Davis")], catalog, cancel_event=cancel
            )

    @pytest.mark.asyncio
    async def test_match_tracks_reports_progress(self, catalog):
        reports = []
        sources = [
            SourceDescriptor(title="So What", artist="Miles Davis"),
            SourceDescriptor(title="Bohemian Rhapsody", artist="Queen"),
        ]

        await LibraryMatcher().match_tracks(sources, catalog, progress=reports.append)

        assert reports == [50.0, 100.0]
