"""Tests for content-hash keys."""

import hashlib
import os

from track_enrichment.core.content_key import KEY_LENGTH, content_hash_key


def test_key_is_stable_for_unchanged_file(tmp_path):
    audio = tmp_path / "song.flac"
    audio.write_bytes(b"x" * 100)

    assert content_hash_key(audio) == content_hash_key(str(audio))
    assert len(content_hash_key(audio)) == KEY_LENGTH


def test_key_changes_with_mtime(tmp_path):
    audio = tmp_path / "song.flac"
    audio.write_bytes(b"x" * 100)
    stat = audio.stat()
    before = content_hash_key(audio)

    os.utime(audio, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

    assert content_hash_key(audio) != before


def test_key_changes_with_size(tmp_path):
    audio = tmp_path / "song.flac"
    audio.write_bytes(b"x" * 100)
    stat = audio.stat()
    before = content_hash_key(audio)

    audio.write_bytes(b"x" * 200)
    os.utime(audio, ns=(stat.st_atime_ns, stat.st_mtime_ns))

    assert content_hash_key(audio) != before


def test_access_time_does_not_matter(tmp_path):
    audio = tmp_path / "song.flac"
    audio.write_bytes(b"x" * 100)
    stat = audio.stat()
    before = content_hash_key(audio)

    os.utime(audio, ns=(stat.st_atime_ns + 5_000_000_000, stat.st_mtime_ns))

    assert content_hash_key(audio) == before


def test_different_paths_differ(tmp_path):
    first = tmp_path / "a.flac"
    second = tmp_path / "b.flac"
    for path in (first, second):
        path.write_bytes(b"same")
    os.utime(second, ns=(first.stat().st_atime_ns, first.stat().st_mtime_ns))

    assert content_hash_key(first) != content_hash_key(second)


def test_missing_file_hashes_path(tmp_path):
    missing = str(tmp_path / "missing.flac")
    expected = hashlib.sha256(missing.encode("utf-8")).hexdigest()[:KEY_LENGTH]

    assert content_hash_key(missing) == expected
