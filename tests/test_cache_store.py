import asyncio
import json
from datetime import datetime, timezone

import pytest

from mdblist_ratings.cache_store import (
    MdbListCacheStore,
    decode_cache_filename,
    encode_cache_filename,
    make_cache_key,
)
from mdblist_ratings.mdblist_models import CacheEnvelope, MdbListTitleResponse


@pytest.fixture
def envelope():
    """Provides a cache entry for The Matrix."""
    return CacheEnvelope(
        cached_at_utc=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        data=MdbListTitleResponse.model_validate({
            "type": "movie",
            "ids": {"tmdb": 603, "imdb": "tt0133093"},
            "ratings": [{"source": "imdb", "value": 8.7}, {"source": "metacritic", "score": 73}],
        }),
        raw_json='{"type":"movie","extra":"kept"}'
    )


def test_make_cache_key():
    assert make_cache_key(" movie ", "603 ") == "movie:603"


def test_filename_encoding_is_reversible_and_safe():
    filename = encode_cache_filename("show:1399")
    assert filename.endswith(".json")
    assert "/" not in filename and ":" not in filename and "=" not in filename
    assert decode_cache_filename(filename) == "show:1399"


def test_filename_encoding_is_case_insensitive():
    assert encode_cache_filename("MOVIE:603") == encode_cache_filename("movie:603")


def test_filename_encoding_distinguishes_keys():
    assert encode_cache_filename("movie:603") != encode_cache_filename("show:603")


@pytest.mark.asyncio
async def test_put_then_get_round_trip(tmp_path, envelope):
    store = MdbListCacheStore(tmp_path / "cache")

    assert await store.put("movie:603", envelope) is True
    cached = await store.get("movie:603")

    assert cached == envelope


@pytest.mark.asyncio
async def test_get_after_restart_reads_disk(tmp_path, envelope):
    """Tests the round trip survives a cleared in-memory layer."""
    store = MdbListCacheStore(tmp_path)
    await store.put("movie:603", envelope)

    store.clear_memory()
    restarted = MdbListCacheStore(tmp_path)

    cached = await restarted.get("MOVIE:603")
    assert cached is not None
    assert cached.cached_at_utc == envelope.cached_at_utc
    assert cached.data.model_dump() == envelope.data.model_dump()
    assert cached.raw_json == envelope.raw_json


@pytest.mark.asyncio
async def test_file_format_on_disk(tmp_path, envelope):
    store = MdbListCacheStore(tmp_path)
    await store.put("movie:603", envelope)

    path = store.path_for("movie:603")
    document = json.loads(path.read_text(encoding="utf-8"))

    assert set(document) == {"cachedAtUtc", "data", "rawJson"}
    assert document["data"]["ids"]["tmdb"] == 603
    assert not path.with_name(path.name + ".tmp").exists()


@pytest.mark.asyncio
async def test_missing_entry_returns_none(tmp_path):
    store = MdbListCacheStore(tmp_path)
    assert await store.get("movie:1") is None


@pytest.mark.asyncio
async def test_corrupt_file_is_treated_as_miss(tmp_path):
    store = MdbListCacheStore(tmp_path)
    store.path_for("movie:603").write_text("{not json", encoding="utf-8")

    assert await store.get("movie:603") is None


@pytest.mark.asyncio
async def test_invalid_document_is_treated_as_miss(tmp_path):
    store = MdbListCacheStore(tmp_path)
    store.path_for("movie:603").write_text(json.dumps({"data": {}}), encoding="utf-8")

    assert await store.get("movie:603") is None


@pytest.mark.asyncio
async def test_failed_write_keeps_memory_value(tmp_path, envelope, mocker):
    """Tests that readers see a new value even when the durable write fails."""
    store = MdbListCacheStore(tmp_path)
    mocker.patch("mdblist_ratings.cache_store.write_json_atomic", side_effect=OSError("disk full"))

    assert await store.put("movie:603", envelope) is False
    assert await store.get("movie:603") == envelope
    assert not store.path_for("movie:603").exists()


@pytest.mark.asyncio
async def test_put_overwrites_previous_entry(tmp_path, envelope):
    store = MdbListCacheStore(tmp_path)
    await store.put("movie:603", envelope)

    newer = envelope.model_copy(update={"cached_at_utc": datetime(2024, 6, 1, tzinfo=timezone.utc)})
    await store.put("movie:603", newer)
    store.clear_memory()

    cached = await store.get("movie:603")
    assert cached.cached_at_utc == datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_disk_read_does_not_replace_concurrent_put(tmp_path, envelope):
    store = MdbListCacheStore(tmp_path / "cache")
    await store.put("movie:603", envelope)
    store.clear_memory()
    newer = envelope.model_copy(update={"cached_at_utc": datetime(2024, 5, 3, 12, 0, tzinfo=timezone.utc)})

    await asyncio.gather(store.get("movie:603"), store.put("movie:603", newer))

    cached = await store.get("movie:603")
    assert cached.cached_at_utc == newer.cached_at_utc
    store.clear_memory()
    assert (await store.get("movie:603")).cached_at_utc == newer.cached_at_utc
