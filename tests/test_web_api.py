from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from mdblist_ratings.config_models import AppConfig, StorageConfig
from mdblist_ratings.mdblist_models import CacheEnvelope, MdbListTitleResponse
from mdblist_ratings.web_api import RatingsService, create_app


@pytest.fixture
def service(tmp_path):
    """Provides a RatingsService whose data lives in a temporary directory."""
    config = AppConfig(storage=StorageConfig(data_dir=str(tmp_path)))
    return RatingsService(config)


@pytest.fixture
def seeded_service(service):
    envelope = CacheEnvelope.model_validate({
        "cachedAtUtc": "2024-05-01T12:00:00+00:00",
        "data": MdbListTitleResponse.model_validate({
            "type": "show",
            "ids": {"tmdb": 1399, "imdb": "tt0944947"},
            "ratings": [{"source": "tmdb", "value": 8.4, "score": 84, "votes": 22000}],
        }).model_dump(),
        "rawJson": None,
    })
    service.cache_store.path_for("show:1399").write_text(envelope.to_json(), encoding="utf-8")
    return service


def test_cached_by_tmdb_returns_cached_ratings(seeded_service):
    with TestClient(create_app(seeded_service)) as client:
        response = client.get("/Plugins/MdbListRatings/CachedByTmdb", params={"type": "SHOW", "tmdbId": " 1399 "})

    assert response.status_code == 200
    body = response.json()
    assert body["hasCache"] is True
    assert body["cachedAtUtc"].startswith("2024-05-01T12:00:00")
    assert body["ids"] == {"tmdb": 1399, "imdb": "tt0944947"}
    assert body["ratings"][0]["source"] == "tmdb"
    assert body["ratings"][0]["score"] == 84


def test_cached_by_tmdb_miss(service):
    with TestClient(create_app(service)) as client:
        response = client.get("/Plugins/MdbListRatings/CachedByTmdb", params={"type": "movie", "tmdbId": "603"})

    assert response.status_code == 200
    assert response.json() == {"hasCache": False, "cachedAtUtc": None, "ids": None, "ratings": []}


@pytest.mark.parametrize("params", [
    {},
    {"type": "movie"},
    {"tmdbId": "603"},
    {"type": " ", "tmdbId": "603"},
    {"type": "episode", "tmdbId": "603"},
])
def test_cached_by_tmdb_rejects_bad_requests(service, params):
    with TestClient(create_app(service)) as client:
        response = client.get("/Plugins/MdbListRatings/CachedByTmdb", params=params)

    assert response.status_code == 400


def test_health_reports_cooldown_and_quota(service):
    service.rate_limit.path.write_text(
        '{"notBeforeUtc": "2999-01-01T00:00:00Z", "lastLimit": 1000, "lastRemaining": 0, '
        '"lastResetUtc": null, "updatedAtUtc": "2024-05-01T12:00:00Z"}',
        encoding="utf-8"
    )

    with TestClient(create_app(service)) as client:
        body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["cooldown_until"].startswith("2999-01-01")
    assert body["quota"] == {"limit": 1000, "remaining": 0, "reset_utc": None}


def test_lifespan_opens_and_closes_session(service):
    with TestClient(create_app(service)):
        assert service.session is not None
        assert service.client.session is service.session

    assert service.session is None


def test_create_updater_shares_service_components(service):
    item_store = MagicMock()

    updater = service.create_updater(item_store)

    assert updater.client is service.client
    assert updater.cache_store is service.cache_store
    assert updater.rate_limit is service.rate_limit
    assert updater.item_store is item_store


def test_create_updater_requires_item_store(service):
    with pytest.raises(ValueError):
        service.create_updater(None)
