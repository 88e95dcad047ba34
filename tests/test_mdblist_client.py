import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from mdblist_ratings.mdblist_client import MdbListClient, parse_int_header, parse_reset_header


MATRIX_BODY = json.dumps({
    "type": "movie",
    "ids": {"tmdb": 603, "imdb": "tt0133093"},
    "ratings": [
        {"source": "imdb", "value": 7.6},
        {"source": "metacritic", "score": 81},
    ],
})

HEALTHY_HEADERS = {
    "X-RateLimit-Limit": "1000",
    "X-RateLimit-Remaining": "998",
    "X-RateLimit-Reset": "1714564800",
}


def mock_session(status=200, headers=None, body="", reason="OK"):
    """Provides an aiohttp session mock whose get() yields one response."""
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}
    response.text = AsyncMock(return_value=body)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get.return_value = context
    return session


@pytest.fixture
def client():
    return MdbListClient(base_url="https://api.mdblist.com/", request_timeout=5)


@pytest.mark.parametrize("raw, expected", [("1000", 1000), (" 12 ", 12), ("-1", -1), ("abc", None), ("1.5", None), (None, None)])
def test_parse_int_header(raw, expected):
    assert parse_int_header(raw) == expected


def test_parse_reset_header():
    assert parse_reset_header("1714564800") == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_reset_header("0") is None
    assert parse_reset_header("-5") is None
    assert parse_reset_header("soon") is None
    assert parse_reset_header(None) is None
    assert parse_reset_header("99999999999999999999") is None


def test_build_url_escapes_parts(client):
    url = client.build_url("movie", "60 3", "k/y&")
    assert url == "https://api.mdblist.com/tmdb/movie/60%203?apikey=k%2Fy%26"


@pytest.mark.asyncio
@pytest.mark.parametrize("content_type, tmdb_id, api_key", [
    ("", "603", "key"),
    ("movie", " ", "key"),
    ("movie", "603", ""),
    (None, "603", "key"),
])
async def test_blank_input_short_circuits(client, content_type, tmdb_id, api_key):
    session = mock_session()
    client.initialize(session)

    result = await client.get_by_tmdb(content_type, tmdb_id, api_key)

    assert result.data is None
    assert result.rate_limit_remaining is None
    session.get.assert_not_called()


@pytest.mark.asyncio
async def test_successful_lookup(client):
    session = mock_session(headers=HEALTHY_HEADERS, body=MATRIX_BODY)
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "secret")

    called_url = session.get.call_args.args[0]
    assert called_url == "https://api.mdblist.com/tmdb/movie/603?apikey=secret"
    assert isinstance(session.get.call_args.kwargs["timeout"], aiohttp.ClientTimeout)
    assert result.is_rate_limited is False
    assert result.rate_limit_limit == 1000
    assert result.rate_limit_remaining == 998
    assert result.rate_limit_reset_utc == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert result.data.ids.tmdb == 603
    assert [r.source for r in result.data.ratings] == ["imdb", "metacritic"]
    assert result.raw_json == MATRIX_BODY


@pytest.mark.asyncio
async def test_rate_limited_response(client):
    session = mock_session(status=429, headers={"X-RateLimit-Remaining": "0"}, reason="Too Many Requests")
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "secret")

    assert result.is_rate_limited is True
    assert result.rate_limit_remaining == 0
    assert result.rate_limit_reset_utc is None
    assert result.data is None


@pytest.mark.asyncio
async def test_error_status_keeps_headers(client):
    session = mock_session(status=503, headers=HEALTHY_HEADERS, reason="Service Unavailable")
    client.initialize(session)

    result = await client.get_by_tmdb("show", "1399", "secret")

    assert result.is_rate_limited is False
    assert result.data is None
    assert result.rate_limit_remaining == 998


@pytest.mark.asyncio
async def test_bad_headers_do_not_fail_the_call(client):
    headers = {"X-RateLimit-Limit": "lots", "X-RateLimit-Remaining": "7", "X-RateLimit-Reset": "tomorrow"}
    session = mock_session(headers=headers, body=MATRIX_BODY)
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "secret")

    assert result.data is not None
    assert result.rate_limit_limit is None
    assert result.rate_limit_remaining == 7
    assert result.rate_limit_reset_utc is None


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["not json", "[1, 2]", "null"])
async def test_invalid_body_yields_empty_result(client, body):
    session = mock_session(headers=HEALTHY_HEADERS, body=body)
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "secret")

    assert result.data is None
    assert result.raw_json is None
    assert result.rate_limit_remaining is None


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()])
async def test_network_errors_yield_empty_result(client, error):
    session = MagicMock()
    session.get.side_effect = error
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "secret")

    assert result.data is None
    assert result.is_rate_limited is False
    assert result.rate_limit_limit is None


@pytest.mark.asyncio
async def test_cancellation_propagates(client):
    session = MagicMock()
    session.get.side_effect = asyncio.CancelledError()
    client.initialize(session)

    with pytest.raises(asyncio.CancelledError):
        await client.get_by_tmdb("movie", "603", "secret")


@pytest.mark.asyncio
async def test_api_key_is_masked_in_logs(client, caplog):
    session = mock_session(status=500, reason="Server Error")
    client.initialize(session)

    with caplog.at_level("WARNING", logger="mdblist_ratings.client"):
        await client.get_by_tmdb("movie", "603", "supersecret")

    assert "supersecret" not in caplog.text
    assert "apikey=***" in caplog.text


@pytest.mark.asyncio
async def test_uninitialized_client_returns_empty_result():
    result = await MdbListClient().get_by_tmdb("movie", "603", "secret")
    assert result.data is None


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["value", "score"])
async def test_oversized_rating_number_is_dropped(client, field):
    body = '{"ratings": [{"source": "imdb", "%s": %s}]}' % (field, "9" * 400)
    session = mock_session(headers=HEALTHY_HEADERS, body=body)
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "secret")

    assert result.data is not None
    assert result.data.ratings[0].source == "imdb"
    assert getattr(result.data.ratings[0], field) is None
    assert result.rate_limit_remaining == 998


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 429, 500])
async def test_result_url_has_masked_api_key(client, status):
    session = mock_session(status=status, headers=HEALTHY_HEADERS, body=MATRIX_BODY)
    client.initialize(session)

    result = await client.get_by_tmdb("movie", "603", "supersecret")

    assert "supersecret" not in result.url
    assert result.url.endswith("apikey=***")
