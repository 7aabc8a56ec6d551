"""Tests for the end-to-end enrichment pipeline."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from track_enrichment.core.metadata_cache import MetadataCache
from track_enrichment.exceptions import OperationCancelledError
from track_enrichment.models.config import AnalysisConfig, EnrichmentConfig
from track_enrichment.models.track import CatalogEntry, FeatureSet, MoodData, SourceDescriptor
from track_enrichment.pipeline import EnrichmentPipeline

FEATURES = FeatureSet(energy=0.9, valence=0.6, danceability=0.8, acousticness=0.05, tempo=123.0, key="F minor")


def make_adapter(**methods):
    adapter = MagicMock()
    for name, value in methods.items():
        setattr(adapter, name, AsyncMock(return_value=value))
    adapter.close = AsyncMock()
    return adapter


@pytest.fixture
def config(tmp_path):
    stub = tmp_path / "analyzer"
    stub.write_text("stub")
    work = tmp_path / "work"
    work.mkdir()
    config = EnrichmentConfig(
        cache_path=tmp_path / "cache" / "metadata_cache.json",
        data_dir=tmp_path / "data",
        analysis=AnalysisConfig(binary_path=str(stub), temp_dir=work),
    )
    config.providers.lookup_delay = 0
    return config


@pytest.fixture
def catalog(tmp_path):
    music = tmp_path / "music"
    music.mkdir()
    entries = []
    for i, (artist, title) in enumerate([("Daft Punk", "One More Time"), ("Queen", "Bohemian Rhapsody")]):
        audio = music / f"{i}.flac"
        audio.write_bytes(b"audio" * (i + 1))
        entries.append(CatalogEntry(id=str(i), title=title, artist=artist, file_path=str(audio)))
    return entries


@pytest.fixture
def adapters():
    lastfm = make_adapter(get_artist_tags=["Electronic"], get_track_tags=["Dance"])
    audiodb = make_adapter(get_track_mood=MoodData(mood="Happy"))
    lyrics = make_adapter(get_lyrics_snippet=None)
    return lastfm, audiodb, lyrics


@pytest.fixture
def pipeline(config, adapters):
    pipeline = EnrichmentPipeline(config)
    lastfm, audiodb, lyrics = adapters
    pipeline._adapters = lambda: (lastfm, audiodb, lyrics, None)

    async def fake_analyze(file_path, executable, cancel_event=None):
        return FEATURES

    pipeline.orchestrator.analyze_file = fake_analyze
    return pipeline


@pytest.mark.asyncio
async def test_whole_catalog(pipeline, catalog, adapters, config):
    stages = []

    result = await pipeline.run(catalog, progress=lambda stage, percent: stages.append(stage))

    assert [track.catalog_id for track in result.tracks] == ["0", "1"]
    assert all(track.genres == ["Electronic"] for track in result.tracks)
    assert all(track.mood_tags == ["Dance", "Happy"] for track in result.tracks)
    assert result.mood_enriched == 2
    assert result.analysis.analyzed == 2
    assert result.with_features == 2
    assert result.tracks[0].key == "F minor"
    assert "analysis" in stages
    for adapter in adapters:
        adapter.close.assert_awaited_once()

    stored = MetadataCache(config.cache_path)
    stored.load()
    assert stored.stats()["analysis_features"] == 2


@pytest.mark.asyncio
async def test_matching_sources(pipeline, catalog):
    sources = [
        SourceDescriptor(title="One More Time (Radio Edit)", artist="Daft Punk", source_id="sp1"),
        SourceDescriptor(title="Completely Different", artist="Nobody"),
    ]
    stages = []

    result = await pipeline.run(catalog, sources, progress=lambda stage, percent: stages.append(stage))

    assert result.sources == 2
    assert [track.catalog_id for track in result.tracks] == ["0"]
    assert result.tracks[0].match_score == 100
    assert result.tracks[0].source.source_id == "sp1"
    assert result.tracks[0].has_features
    assert stages[0] == "matching"


@pytest.mark.asyncio
async def test_cached_analysis_on_second_run(pipeline, catalog):
    await pipeline.run(catalog, mood=False)

    calls = []

    async def fake_analyze(file_path, executable, cancel_event=None):
        calls.append(file_path)
        return FEATURES

    pipeline.orchestrator.analyze_file = fake_analyze
    result = await pipeline.run(catalog, mood=False)

    assert calls == []
    assert result.analysis.cached == 2
    assert result.with_features == 2


@pytest.mark.asyncio
async def test_stages_can_be_skipped(pipeline, catalog, adapters):
    _, audiodb, _ = adapters

    result = await pipeline.run(catalog, mood=False, analysis=False)

    assert len(result.tracks) == 2
    assert result.mood_enriched == 0
    assert result.with_features == 0
    audiodb.get_track_mood.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancellation_closes_adapters(pipeline, catalog, adapters):
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(OperationCancelledError):
        await pipeline.run(catalog, cancel_event=cancel_event)

    for adapter in adapters:
        adapter.close.assert_awaited_once()


def test_optional_adapters(config):
    pipeline = EnrichmentPipeline(config)

    lastfm, audiodb, lyrics, musicbrainz = pipeline._adapters()
    assert lastfm is None
    assert musicbrainz is None
    assert audiodb is not None
    assert lyrics is not None

    config.providers.lastfm_api_key = "key"
    config.providers.enable_musicbrainz = True
    lastfm, _, _, musicbrainz = pipeline._adapters()
    assert lastfm.api_key == "key"
    assert musicbrainz.request_delay == config.providers.musicbrainz_delay
