#!/usr/bin/env python3
"""
MDBList Data Models

This module contains the Pydantic models for MDBList API responses and the dataclasses
wrapping a single API call and a cached response. MDBList is loose about types: numbers
arrive as JSON numbers, numeric strings, empty strings or the literal "N/A". Every
numeric field is therefore parsed leniently and falls back to None instead of failing
validation, so one odd rating never discards the whole response.

Classes:
    MdbListIds: External identifiers attached to a title
    MdbListRating: One rating source entry (imdb, tmdb, metacritic, ...)
    MdbListTitleResponse: Parsed body of GET /tmdb/{type}/{id}
    CacheEnvelope: Cached response with its fetch timestamp and raw body
    MdbListApiResult: Outcome of a single API call including rate-limit headers

Functions:
    parse_lenient_float: Parse a number-ish value into a float or None
    parse_lenient_int: Parse a number-ish value into an int or None
    parse_lenient_str: Render scalars as strings, None stays None

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


_MISSING_MARKERS = {"", "n/a", "na"}


def _clean_numeric_string(value: str) -> Optional[str]:
    text = value.strip()
    if text.lower() in _MISSING_MARKERS:
        return None
    # Vote counts sometimes come with thousands separators ("1,234")
    return text.replace(",", "")


def parse_lenient_float(value: Any) -> Optional[float]:
    """
    Parse a loosely typed numeric value.

    Args:
        value (Any): JSON value (number, string, None or anything else)

    Returns:
        Optional[float]: Parsed value, or None for missing, "N/A" or unparseable input

    Example:
        ```python
        parse_lenient_float(7.6)     # 7.6
        parse_lenient_float("81")    # 81.0
        parse_lenient_float("N/A")   # None
        parse_lenient_float(True)    # None
        ```
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            # JSON integers wider than a double
            return None
    if isinstance(value, str):
        text = _clean_numeric_string(value)
        if text is None:
            return None
        try:
            return float(text)
        except ValueError:
            return None
    return None


def parse_lenient_int(value: Any) -> Optional[int]:
    """
    Parse a loosely typed integer value.

    Fractional input such as "123.0" or 12.5 is rounded half away from zero.

    Args:
        value (Any): JSON value

    Returns:
        Optional[int]: Parsed integer or None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    number = parse_lenient_float(value)
    if number is None or not math.isfinite(number):
        return None
    return int(Decimal(str(number)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_lenient_str(value: Any) -> Optional[str]:
    """Render numbers and booleans as strings; None stays None."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MdbListIds(BaseModel):
    """External identifiers MDBList attaches to a title."""
    model_config = ConfigDict(extra='ignore')

    tmdb: Optional[int] = None
    imdb: Optional[str] = None

    # noinspection PyDecorator
    @field_validator('tmdb', mode='before')
    @classmethod
    def parse_tmdb(cls, v: Any) -> Optional[int]:
        return parse_lenient_int(v)

    # noinspection PyDecorator
    @field_validator('imdb', mode='before')
    @classmethod
    def parse_imdb(cls, v: Any) -> Optional[str]:
        return parse_lenient_str(v)


class MdbListRating(BaseModel):
    """
    One rating source entry from an MDBList response.

    Attributes:
        source (Optional[str]): Source key such as "imdb", "tmdb", "metacritic"
        value (Optional[float]): Provider-native value, 0-10 or 0-100 depending on source
        score (Optional[float]): MDBList-normalized 0-100 score, authoritative when present
        votes (Optional[int]): Vote count
        url (Optional[str]): Link or id on the provider site
    """
    model_config = ConfigDict(extra='ignore')

    source: Optional[str] = None
    value: Optional[float] = None
    score: Optional[float] = None
    votes: Optional[int] = None
    url: Optional[str] = None

    # noinspection PyDecorator
    @field_validator('value', 'score', mode='before')
    @classmethod
    def parse_number(cls, v: Any) -> Optional[float]:
        return parse_lenient_float(v)

    # noinspection PyDecorator
    @field_validator('votes', mode='before')
    @classmethod
    def parse_votes(cls, v: Any) -> Optional[int]:
        return parse_lenient_int(v)

    # noinspection PyDecorator
    @field_validator('source', 'url', mode='before')
    @classmethod
    def parse_text(cls, v: Any) -> Optional[str]:
        return parse_lenient_str(v)


class MdbListTitleResponse(BaseModel):
    """
    Parsed body of `GET /tmdb/{type}/{tmdbId}`.

    Only the fields the rating pipeline needs are modelled. Everything else MDBList
    returns is ignored here and survives in CacheEnvelope.raw_json.
    """
    model_config = ConfigDict(extra='ignore')

    type: Optional[str] = None
    ids: Optional[MdbListIds] = None
    ratings: List[MdbListRating] = Field(default_factory=list)

    # noinspection PyDecorator
    @field_validator('type', mode='before')
    @classmethod
    def parse_type(cls, v: Any) -> Optional[str]:
        return parse_lenient_str(v)

    # noinspection PyDecorator
    @field_validator('ids', mode='before')
    @classmethod
    def parse_ids(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, MdbListIds)) else None

    # noinspection PyDecorator
    @field_validator('ratings', mode='before')
    @classmethod
    def parse_ratings(cls, v: Any) -> List[Any]:
        if not isinstance(v, list):
            return []
        return [r for r in v if isinstance(r, (dict, MdbListRating))]


class CacheEnvelope(BaseModel):
    """
    A cached MDBList response.

    Serialized to disk as `{"cachedAtUtc", "data", "rawJson"}`. The raw body is kept
    so fields added to the API later can be recovered without refetching.
    """
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    cached_at_utc: datetime = Field(alias="cachedAtUtc")
    data: MdbListTitleResponse = Field(default_factory=MdbListTitleResponse)
    raw_json: Optional[str] = Field(default=None, alias="rawJson")

    # noinspection PyDecorator
    @field_validator('cached_at_utc')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    def to_json(self) -> str:
        """Serialize with the on-disk field names."""
        return self.model_dump_json(by_alias=True)


@dataclass(slots=True)
class MdbListApiResult:
    """
    Result of one MDBList request.

    Every field is optional except the flag: a failed call yields an instance with
    data=None and no rate-limit values rather than an exception.

    Attributes:
        url (str): Requested URL with the API key masked
        rate_limit_limit (Optional[int]): X-RateLimit-Limit header
        rate_limit_remaining (Optional[int]): X-RateLimit-Remaining header
        rate_limit_reset_utc (Optional[datetime]): X-RateLimit-Reset as UTC datetime
        is_rate_limited (bool): True exactly when the response status was 429
        data (Optional[MdbListTitleResponse]): Parsed body on success
        raw_json (Optional[str]): Body text on success
    """
    url: str = ""
    rate_limit_limit: Optional[int] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset_utc: Optional[datetime] = None
    is_rate_limited: bool = False
    data: Optional[MdbListTitleResponse] = None
    raw_json: Optional[str] = None
