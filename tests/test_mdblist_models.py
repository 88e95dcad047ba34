import json
from datetime import datetime, timedelta, timezone

import pytest

from mdblist_ratings.mdblist_models import (
    CacheEnvelope,
    MdbListTitleResponse,
    parse_lenient_float,
    parse_lenient_int,
    parse_lenient_str,
)


@pytest.mark.parametrize("raw, expected", [
    (7.6, 7.6),
    (81, 81.0),
    ("81", 81.0),
    (" 7.3 ", 7.3),
    ("1,234", 1234.0),
    ("N/A", None),
    ("na", None),
    ("", None),
    ("abc", None),
    (True, None),
    (None, None),
    ({"x": 1}, None),
    (10 ** 400, None),
])
def test_parse_lenient_float(raw, expected):
    assert parse_lenient_float(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    (12, 12),
    ("123", 123),
    ("123.0", 123),
    (12.5, 13),
    ("N/A", None),
    (False, None),
    (10 ** 400, 10 ** 400),
])
def test_parse_lenient_int(raw, expected):
    assert parse_lenient_int(raw) == expected


def test_parse_lenient_str():
    assert parse_lenient_str("x") == "x"
    assert parse_lenient_str(42) == "42"
    assert parse_lenient_str(True) == "true"
    assert parse_lenient_str(None) is None


def test_title_response_parses_mixed_types():
    """Tests that a realistic, loosely typed MDBList body parses without errors."""
    body = {
        "title": "The Matrix",
        "type": "movie",
        "ids": {"tmdb": "603", "imdb": "tt0133093", "trakt": 481},
        "ratings": [
            {"source": "imdb", "value": 8.7, "score": 87, "votes": "2,000,000", "url": "tt0133093"},
            {"source": "metacritic", "value": "N/A", "score": None, "votes": None, "url": None},
            {"source": "letterboxd", "value": "4.2", "score": "84", "votes": 1000, "url": 12345},
        ],
    }

    data = MdbListTitleResponse.model_validate(body)

    assert data.type == "movie"
    assert data.ids.tmdb == 603
    assert data.ids.imdb == "tt0133093"
    assert len(data.ratings) == 3
    assert data.ratings[0].votes == 2000000
    assert data.ratings[1].value is None
    assert data.ratings[2].score == 84.0
    assert data.ratings[2].url == "12345"


def test_title_response_tolerates_bad_ratings_shape():
    assert MdbListTitleResponse.model_validate({"ratings": None}).ratings == []
    assert MdbListTitleResponse.model_validate({"ratings": "oops"}).ratings == []

    data = MdbListTitleResponse.model_validate({"ratings": [None, 5, {"source": "tmdb", "score": 70}]})
    assert len(data.ratings) == 1
    assert data.ratings[0].source == "tmdb"


def test_title_response_ignores_non_object_ids():
    assert MdbListTitleResponse.model_validate({"ids": "603"}).ids is None


def test_cache_envelope_uses_on_disk_names():
    cached_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    envelope = CacheEnvelope(
        cached_at_utc=cached_at,
        data=MdbListTitleResponse.model_validate({"type": "show", "ratings": [{"source": "tmdb", "score": 77}]}),
        raw_json='{"type": "show"}'
    )

    document = json.loads(envelope.to_json())

    assert set(document) == {"cachedAtUtc", "data", "rawJson"}
    assert document["rawJson"] == '{"type": "show"}'
    assert document["data"]["ratings"][0]["score"] == 77


def test_cache_envelope_normalizes_timestamps_to_utc():
    naive = CacheEnvelope.model_validate({"cachedAtUtc": "2024-05-01T12:00:00", "data": {}})
    assert naive.cached_at_utc.tzinfo == timezone.utc

    offset = CacheEnvelope.model_validate({"cachedAtUtc": "2024-05-01T14:00:00+02:00", "data": {}})
    assert offset.cached_at_utc == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert offset.cached_at_utc.utcoffset() == timedelta(0)
