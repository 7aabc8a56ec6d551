"""Tests for listing the local catalog."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from track_enrichment.core.library import LibraryLister, file_paths_by_id
from track_enrichment.exceptions import OperationCancelledError
from track_enrichment.models.track import CatalogEntry


@pytest.fixture
def tags():
    provider = MagicMock()
    provider.get_artist_tags = AsyncMock(return_value=["Electronic"])
    return provider


@pytest.fixture
def lyrics():
    provider = MagicMock()
    provider.get_lyrics_snippet = AsyncMock(return_value="Remote lyric line / Another remote line")
    return provider


@pytest.fixture
def catalog(tmp_path):
    audio = tmp_path / "song.flac"
    audio.write_bytes(b"audio")
    return [
        CatalogEntry(id="1", title="Song", artist="Artist", album="Album", genres=("Rock",), file_path=str(audio)),
        CatalogEntry(id="2", title="Other", artist="Band", album_genres=("Jazz",)),
        CatalogEntry(id="3", title="Third", artist="Solo"),
    ]


def test_file_paths_by_id(catalog):
    assert file_paths_by_id(catalog) == {"1": catalog[0].file_path}


@pytest.mark.asyncio
async def test_genre_fallbacks(catalog, tags):
    listing = await LibraryLister(tags).list_tracks(catalog)

    assert [track.genres for track in listing.tracks] == [["Rock"], ["Jazz"], ["Electronic"]]
    tags.get_artist_tags.assert_awaited_once_with("Solo", 3)


@pytest.mark.asyncio
async def test_without_tag_provider(catalog):
    listing = await LibraryLister().list_tracks(catalog)
    assert listing.tracks[2].genres == []


@pytest.mark.asyncio
async def test_tag_lookup_failure(catalog, tags):
    tags.get_artist_tags.side_effect = RuntimeError("offline")

    listing = await LibraryLister(tags).list_tracks(catalog)

    assert listing.tracks[2].genres == []


@pytest.mark.asyncio
async def test_tracks_match_themselves(catalog):
    listing = await LibraryLister().list_tracks(catalog)
    track = listing.tracks[0]

    assert track.catalog_id == "1"
    assert track.album == "Album"
    assert track.match_score == 100
    assert track.source.title == "Song"
    assert track.source.artist == "Artist"
    assert listing.file_paths == {"1": catalog[0].file_path}


@pytest.mark.asyncio
async def test_lyrics_disabled(catalog, lyrics):
    listing = await LibraryLister(lyrics_provider=lyrics).list_tracks(catalog)

    assert all(track.lyrics_snippet is None for track in listing.tracks)
    lyrics.get_lyrics_snippet.assert_not_awaited()


@pytest.mark.asyncio
async def test_sidecar_lyrics_preferred(catalog, lyrics, tmp_path):
    (tmp_path / "song.txt").write_text("Words from the sidecar file\n")

    listing = await LibraryLister(lyrics_provider=lyrics, enable_lyric_analysis=True).list_tracks(catalog[:1])

    assert listing.tracks[0].lyrics_snippet == "Words from the sidecar file"
    lyrics.get_lyrics_snippet.assert_not_awaited()


@pytest.mark.asyncio
async def test_remote_lyrics_fallback(catalog, lyrics):
    listing = await LibraryLister(lyrics_provider=lyrics, enable_lyric_analysis=True).list_tracks(catalog)

    assert listing.tracks[0].lyrics_snippet == "Remote lyric line / Another remote line"
    assert lyrics.get_lyrics_snippet.await_count == 3
    lyrics.get_lyrics_snippet.assert_any_await("Band", "Other", 200)


@pytest.mark.asyncio
async def test_cancellation(catalog):
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(OperationCancelledError):
        await LibraryLister().list_tracks(catalog, cancel_event)
