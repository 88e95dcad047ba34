#!/usr/bin/env python3
"""
MDBList API Client Module

This module wraps the single MDBList endpoint the rating pipeline needs,
`GET /tmdb/{type}/{tmdbId}?apikey={key}`, and turns every response into a uniform
MdbListApiResult: the parsed payload (if any), the raw body, and the X-RateLimit-*
headers. The client is stateless apart from the shared aiohttp session.

Network problems, unexpected status codes and malformed bodies never raise out of
this module; they yield a result without data so the caller can fall back to cached
ratings. Task cancellation is the exception and always propagates.

Classes:
    MdbListClient: Async client for MDBList lookups by TMDb id

Functions:
    parse_int_header: Parse an integer rate-limit header value
    parse_reset_header: Parse an epoch-seconds reset header into a UTC datetime

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from .mdblist_models import MdbListApiResult, MdbListTitleResponse
from .utils import get_logger, mask_api_key


DEFAULT_BASE_URL = "https://api.mdblist.com"
HTTP_TOO_MANY_REQUESTS = 429


def parse_int_header(value: Optional[str]) -> Optional[int]:
    """Parse an integer header; anything unparseable yields None."""
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_reset_header(value: Optional[str]) -> Optional[datetime]:
    """
    Parse X-RateLimit-Reset.

    MDBList sends the reset moment as Unix epoch seconds.

    Args:
        value (Optional[str]): Raw header value

    Returns:
        Optional[datetime]: Aware UTC datetime, or None for missing, non-numeric,
        non-positive or out-of-range values
    """
    seconds = parse_int_header(value)
    if seconds is None or seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class MdbListClient:
    """
    Async client for MDBList title lookups.

    **Rate Limit Headers:**
    Every MDBList response, including errors, carries the daily quota:
    - X-RateLimit-Limit: requests allowed per day
    - X-RateLimit-Remaining: requests left today
    - X-RateLimit-Reset: when the quota resets (epoch seconds)

    Each header is parsed on its own, so one malformed value only loses that value.

    **Error Handling:**
    - HTTP 429: is_rate_limited=True, headers kept, no data
    - Other non-2xx: headers kept, no data
    - 2xx with a body that is not a valid title object: empty result
    - Connection errors and timeouts: empty result
    - asyncio.CancelledError: propagates

    Attributes:
        base_url (str): API root, without trailing slash
        request_timeout (float): Total timeout per request in seconds
        session (Optional[aiohttp.ClientSession]): Shared HTTP session
        logger (logging.Logger): Logger for API operations

    Example:
        ```python
        client = MdbListClient()
        async with aiohttp.ClientSession() as session:
            client.initialize(session)
            result = await client.get_by_tmdb("movie", "603", api_key)
            if result.data:
                for rating in result.data.ratings:
                    print(rating.source, rating.score)
        ```
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, request_timeout: float = 15.0):
        self.base_url = base_url.rstrip('/')
        self.request_timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger("mdblist_ratings.client")

    def initialize(self, session: aiohttp.ClientSession) -> None:
        """Attach the shared HTTP session."""
        self.session = session

    def build_url(self, content_type: str, tmdb_id: str, api_key: str) -> str:
        """Build the lookup URL with every variable part escaped."""
        return (
            f"{self.base_url}/tmdb/{quote(content_type, safe='')}/{quote(tmdb_id, safe='')}"
            f"?apikey={quote(api_key, safe='')}"
        )

    async def get_by_tmdb(self, content_type: str, tmdb_id: str, api_key: str) -> MdbListApiResult:
        """
        Fetch MDBList data for a title by TMDb id.

        Args:
            content_type (str): "movie" or "show"
            tmdb_id (str): TMDb id
            api_key (str): MDBList API key

        Returns:
            MdbListApiResult: Uniform result; never raises except on cancellation
        """
        if not content_type or not content_type.strip() \
                or not tmdb_id or not tmdb_id.strip() \
                or not api_key or not api_key.strip():
            return MdbListApiResult()

        if self.session is None:
            self.logger.warning("MDBList client used before initialize(); no HTTP session available")
            return MdbListApiResult()

        content_type = content_type.strip()
        tmdb_id = tmdb_id.strip()
        api_key = api_key.strip()

        url = self.build_url(content_type, tmdb_id, api_key)
        safe_url = mask_api_key(url, quote(api_key, safe=''))

        try:
            self.logger.debug(f"Requesting {safe_url}")
            async with self.session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            ) as response:
                limit = parse_int_header(response.headers.get("X-RateLimit-Limit"))
                remaining = parse_int_header(response.headers.get("X-RateLimit-Remaining"))
                reset_utc = parse_reset_header(response.headers.get("X-RateLimit-Reset"))

                if response.status == HTTP_TOO_MANY_REQUESTS:
                    self.logger.warning(
                        f"MDBList rate limited for {safe_url}. "
                        f"Remaining={remaining}, ResetUtc={reset_utc.isoformat() if reset_utc else None}"
                    )
                    return MdbListApiResult(
                        url=safe_url,
                        rate_limit_limit=limit,
                        rate_limit_remaining=remaining,
                        rate_limit_reset_utc=reset_utc,
                        is_rate_limited=True
                    )

                if response.status < 200 or response.status >= 300:
                    self.logger.warning(
                        f"MDBList request failed: {response.status} {response.reason} for {safe_url}"
                    )
                    return MdbListApiResult(
                        url=safe_url,
                        rate_limit_limit=limit,
                        rate_limit_remaining=remaining,
                        rate_limit_reset_utc=reset_utc
                    )

                raw = await response.text()

            data = self._parse_body(raw, safe_url)
            if data is None:
                return MdbListApiResult(url=safe_url)

            return MdbListApiResult(
                url=safe_url,
                rate_limit_limit=limit,
                rate_limit_remaining=remaining,
                rate_limit_reset_utc=reset_utc,
                data=data,
                raw_json=raw
            )

        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            self.logger.warning(f"MDBList request error for {safe_url}: {type(e).__name__}: {e}")
            return MdbListApiResult(url=safe_url)

    def _parse_body(self, raw: str, safe_url: str) -> Optional[MdbListTitleResponse]:
        """Decode a response body; invalid JSON or a non-object yields None."""
        try:
            document = json.loads(raw)
        except ValueError as e:
            self.logger.warning(f"MDBList returned invalid JSON for {safe_url}: {e}")
            return None

        if not isinstance(document, dict):
            self.logger.warning(f"MDBList returned unexpected body type {type(document).__name__} for {safe_url}")
            return None

        try:
            return MdbListTitleResponse.model_validate(document)
        except (ValidationError, OverflowError) as e:
            self.logger.warning(f"MDBList response failed validation for {safe_url}: {e}")
            return None
