"""Tests for the persistent metadata cache."""

import json
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from track_enrichment.core.metadata_cache import KeyKind, MetadataCache, normalize_key
from track_enrichment.models.track import FeatureSet, MoodData


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "cache" / "metadata_cache.json"


@pytest.fixture
def cache(cache_path):
    store = MetadataCache(cache_path)
    store.load()
    return store


@pytest.fixture
def features():
    return FeatureSet(
        energy=0.8,
        valence=0.35,
        danceability=0.6,
        acousticness=0.2,
        tempo=124.0,
        key="A minor",
        analyzed_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


class TestKeyNormalization:
    """Tests for key normalization per key kind."""

    def test_text_keys_ignore_case_and_whitespace(self):
        assert normalize_key("  Daft Punk ", KeyKind.TEXT) == "daft punk"

    def test_composite_keys(self):
        assert normalize_key((" Daft Punk", "One More Time "), KeyKind.COMPOSITE) == "daft punk|one more time"
        assert normalize_key("Daft Punk|One More Time", KeyKind.COMPOSITE) == "daft punk|one more time"

    def test_identifier_keys_keep_case(self):
        assert normalize_key(" 4uLU6hMCjMI75M1A2tKUQC ", KeyKind.IDENTIFIER) == "4uLU6hMCjMI75M1A2tKUQC"

    def test_blank_keys(self):
        assert normalize_key("   ", KeyKind.TEXT) == ""
        assert normalize_key(("", " "), KeyKind.COMPOSITE) == ""


class TestMetadataCache:
    """Tests for MetadataCache."""

    def test_missing_file_starts_empty(self, cache):
        assert all(count == 0 for count in cache.stats().values())
        assert not cache.is_dirty

    def test_has_distinguishes_empty_from_absent(self, cache):
        assert not cache.artist_genres.has("Unknown Artist")
        assert cache.artist_genres.get("Unknown Artist") is None

        cache.artist_genres.set("Unknown Artist", [])

        assert cache.artist_genres.has("Unknown Artist")
        assert cache.artist_genres.get("unknown artist  ") == []

    def test_set_marks_dirty(self, cache):
        cache.lyrics.set(("Artist", "Title"), "snippet")
        assert cache.is_dirty

    def test_blank_key_is_ignored(self, cache):
        cache.artist_genres.set("   ", ["Rock"])
        assert not cache.is_dirty
        assert cache.stats()["artist_genres"] == 0

    def test_none_value_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.lyrics.set(("Artist", "Title"), None)

    def test_generic_accessors(self, cache):
        cache.set(MetadataCache.TRACK_TAGS, ("Artist", "Title"), ["Chill"])

        assert cache.has(MetadataCache.TRACK_TAGS, ("artist", "title"))
        assert cache.get(MetadataCache.TRACK_TAGS, "ARTIST|TITLE") == ["Chill"]

    def test_unknown_section(self, cache):
        with pytest.raises(KeyError):
            cache.get("no_such_section", "key")

    def test_returned_lists_are_copies(self, cache):
        cache.artist_genres.set("Artist", ["Rock"])
        cache.artist_genres.get("Artist").append("Pop")
        assert cache.artist_genres.get("Artist") == ["Rock"]

    def test_round_trip(self, cache, cache_path, features):
        cache.analysis_features.set("ABCDEF0123", features)
        cache.audio_features.set("TrackId42", features)
        cache.audiodb_moods.set(("Artist", "Title"), MoodData(mood="Happy", theme="Love"))
        cache.audiodb_moods.set(("Nobody", "Nothing"), MoodData())
        cache.musicbrainz_ids.set(("Artist", "Title"), "")
        cache.source_artist_genres.set("SpotifyArtistId", ["Synthpop"])

        assert cache.persist()
        assert not cache.is_dirty

        fresh = MetadataCache(cache_path)
        fresh.load()

        assert fresh.analysis_features.get("abcdef0123") == features
        assert fresh.audio_features.get("TrackId42") == features
        assert fresh.audio_features.get("trackid42") is None
        assert fresh.audiodb_moods.get(("artist", "title")) == MoodData(mood="Happy", theme="Love")
        assert fresh.audiodb_moods.get(("Nobody", "Nothing")).is_empty
        assert fresh.musicbrainz_ids.has(("Artist", "Title"))
        assert fresh.musicbrainz_ids.get(("Artist", "Title")) == ""
        assert fresh.source_artist_genres.get("SpotifyArtistId") == ["Synthpop"]

    def test_file_layout(self, cache, cache_path):
        cache.artist_genres.set("Daft Punk", ["French House"])
        cache.persist()

        data = json.loads(cache_path.read_text())

        assert data["artist_genres"] == {"daft punk": ["French House"]}
        assert set(data) == set(MetadataCache.SECTIONS)

    def test_persist_only_when_dirty(self, cache, cache_path):
        assert cache.persist()
        assert not cache_path.exists()

    def test_persist_leaves_no_temp_files(self, cache, cache_path):
        cache.lyrics.set(("A", "B"), "words")
        cache.persist()

        assert [p.name for p in cache_path.parent.iterdir()] == [cache_path.name]

    def test_failed_write_keeps_dirty(self, cache, cache_path):
        cache.lyrics.set(("A", "B"), "words")

        with patch("track_enrichment.core.metadata_cache.os.replace", side_effect=OSError("disk full")):
            assert cache.persist() is False

        assert cache.is_dirty
        assert not cache_path.exists()
        assert list(cache_path.parent.iterdir()) == []

    def test_set_during_write_keeps_dirty(self, cache):
        cache.lyrics.set(("A", "B"), "words")
        original = cache._write_atomically

        def write_and_mutate(snapshot):
            # Another worker stores a result while the file is being written
            cache.lyrics.set(("C", "D"), "more words")
            return original(snapshot)

        with patch.object(cache, "_write_atomically", side_effect=write_and_mutate):
            assert cache.persist()

        assert cache.is_dirty
        assert cache.persist()
        assert not cache.is_dirty

    def test_malformed_file_loads_empty(self, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text("{not json")

        store = MetadataCache(cache_path)
        store.load()

        assert sum(store.stats().values()) == 0

    def test_non_object_root_loads_empty(self, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text("[1, 2, 3]")

        store = MetadataCache(cache_path)
        store.load()

        assert sum(store.stats().values()) == 0

    def test_bad_entries_are_skipped(self, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text(json.dumps({
            "artist_genres": {"good": ["Rock"], "bad": "not a list", "worse": [1, 2]},
            "analysis_features": {"abc": {"energy": "high"}},
            "lyrics": ["not", "an", "object"],
            "unknown_section": {"x": 1},
        }))

        store = MetadataCache(cache_path)
        store.load()

        assert store.artist_genres.get("good") == ["Rock"]
        assert not store.artist_genres.has("bad")
        assert not store.artist_genres.has("worse")
        assert not store.analysis_features.has("abc")
        assert store.stats()["lyrics"] == 0

    def test_concurrent_sets(self, cache):
        def worker(n):
            for i in range(200):
                cache.track_tags.set((f"artist{n}", f"title{i}"), [str(i)])

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.stats()["track_tags"] == 800
