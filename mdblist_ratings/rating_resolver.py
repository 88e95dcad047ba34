#!/usr/bin/env python3
"""
MDBList Rating Resolver Module

Pure functions that turn an MDBList payload into the two rating fields Jellyfin
stores: CommunityRating (0-10, one decimal) and CriticRating (0-100, integer).

**Score Selection:**
Each MDBList rating entry may carry a normalized `score` (0-100) and a native `value`.
The score is authoritative. When it is missing the value is converted, and since
MDBList does not say which scale a value uses, the conversion is threshold based:
- value <= 0 or not finite: unusable
- 0 < value <= 10: 10-point scale, multiplied by 10
- 10 < value <= 100: already 0-100
- value > 100: unusable

**Source Fallback:**
A configured primary source is tried first. The fallback source is consulted only
when the primary yields nothing, and only if it is set, not "none", and different
from the primary.

Classes:
    ResolvedScore: A 0-100 score with the source that produced it

Functions:
    normalize_source: Trim and lower-case a source name
    normalize_score_from_value: Convert a native value to the 0-100 scale
    try_get_score_0_to_100: Usable 0-100 score for one source
    resolve_score: Primary/fallback resolution
    extract_community_rating: Score as a 0-10 community rating
    extract_critic_rating: Score as a 0-100 integer critic rating

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from .mdblist_models import MdbListRating, MdbListTitleResponse


NO_SOURCE = "none"


@dataclass(frozen=True, slots=True)
class ResolvedScore:
    """A 0-100 score and the (normalized) source name it came from."""
    score: float
    used_source: str


def normalize_source(source: Optional[str]) -> str:
    return (source or "").strip().lower()


def _is_disabled(source: str) -> bool:
    return not source or source == NO_SOURCE


def round_half_away_from_zero(value: float, digits: int = 0) -> float:
    """Round like MidpointRounding.AwayFromZero; float round() uses banker's rounding."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def normalize_score_from_value(value: Optional[float]) -> Optional[float]:
    """
    Convert a provider-native value to the 0-100 scale.

    Args:
        value (Optional[float]): Native rating value

    Returns:
        Optional[float]: 0-100 score or None when the value is unusable

    Example:
        ```python
        normalize_score_from_value(7.6)   # 76.0
        normalize_score_from_value(81)    # 81
        normalize_score_from_value(150)   # None
        ```
    """
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    if value <= 10.0:
        return value * 10.0
    if value <= 100.0:
        return value
    return None


def find_rating(data: MdbListTitleResponse, source: str) -> Optional[MdbListRating]:
    """First rating entry whose source matches case-insensitively."""
    wanted = normalize_source(source)
    for rating in data.ratings:
        if normalize_source(rating.source) == wanted:
            return rating
    return None


def try_get_score_0_to_100(data: MdbListTitleResponse, source: Optional[str]) -> Optional[float]:
    """
    Usable 0-100 score for one source.

    Args:
        data (MdbListTitleResponse): Provider payload
        source (Optional[str]): Source name; blank or "none" never matches

    Returns:
        Optional[float]: Positive finite score, or None
    """
    normalized = normalize_source(source)
    if _is_disabled(normalized):
        return None

    rating = find_rating(data, normalized)
    if rating is None:
        return None

    score = rating.score if rating.score is not None else normalize_score_from_value(rating.value)
    if score is None or not math.isfinite(score) or score <= 0:
        return None
    return score


def resolve_score(
        data: MdbListTitleResponse,
        primary_source: Optional[str],
        fallback_source: Optional[str]
) -> Optional[ResolvedScore]:
    """
    Resolve a 0-100 score using a primary source and an optional fallback.

    Args:
        data (MdbListTitleResponse): Provider payload
        primary_source (Optional[str]): Preferred source
        fallback_source (Optional[str]): Source used when the primary has no score

    Returns:
        Optional[ResolvedScore]: Score and the normalized source actually used
    """
    primary = normalize_source(primary_source)
    fallback = normalize_source(fallback_source)

    score = try_get_score_0_to_100(data, primary)
    if score is not None:
        return ResolvedScore(score=score, used_source=primary)

    if not _is_disabled(fallback) and fallback != primary:
        score = try_get_score_0_to_100(data, fallback)
        if score is not None:
            return ResolvedScore(score=score, used_source=fallback)

    return None


def extract_community_rating(
        data: MdbListTitleResponse,
        primary_source: Optional[str],
        fallback_source: Optional[str]
) -> Tuple[Optional[float], Optional[str]]:
    """
    Community rating (0-10, one decimal) and its source.

    Returns:
        Tuple[Optional[float], Optional[str]]: (rating, used source), or (None, None)
        when nothing usable was found or the rating rounds to zero
    """
    resolved = resolve_score(data, primary_source, fallback_source)
    if resolved is None:
        return None, None

    value = round_half_away_from_zero(_clamp(resolved.score) / 10.0, 1)
    if value <= 0:
        return None, None
    return value, resolved.used_source


def extract_critic_rating(
        data: MdbListTitleResponse,
        primary_source: Optional[str],
        fallback_source: Optional[str]
) -> Tuple[Optional[int], Optional[str]]:
    """
    Critic rating (0-100 integer) and its source.

    Returns:
        Tuple[Optional[int], Optional[str]]: (rating, used source), or (None, None)
    """
    resolved = resolve_score(data, primary_source, fallback_source)
    if resolved is None:
        return None, None

    value = int(round_half_away_from_zero(_clamp(resolved.score)))
    if value <= 0:
        return None, None
    return value, resolved.used_source
