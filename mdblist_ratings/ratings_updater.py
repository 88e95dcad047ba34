#!/usr/bin/env python3
"""
MDBList Ratings Updater Module

This module contains the per-item orchestration of the rating pipeline. For each
Jellyfin item it decides whether cached MDBList data is good enough, whether a
network request is allowed by the rate-limit tracker, resolves the configured
rating sources into Jellyfin's CommunityRating and CriticRating, and writes the item
back only when something actually changed.

**Outcomes:**
Every call ends with one UpdateOutcome so the batch driver can decide what to do
next. RATE_LIMITED is the only outcome that stops a batch; it is also returned after
a successful update when the response reported the daily quota as used up, so the
batch halts right after the last item the quota allowed.

Classes:
    UpdateOutcome: Result of one item update
    FetchResult: Payload chosen for an item plus the outcome of obtaining it
    RatingsUpdater: Cache/rate-limit/fetch/resolve orchestration

Functions:
    get_ttl: Cache time-to-live from configuration
    lookup_cached_envelope: Read-only cache lookup by content type and TMDb id
    find_override_for_item: Per-library override matching an item's libraries

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, List, Optional

from .cache_store import MdbListCacheStore, make_cache_key
from .config_models import AppConfig, LibraryRatingOverride, SourceMapping
from .mdblist_client import MdbListClient
from .mdblist_models import CacheEnvelope, MdbListTitleResponse
from .media_models import MediaItem
from .rate_limit import RateLimitStateStore
from .rating_resolver import NO_SOURCE, extract_community_rating, extract_critic_rating, normalize_source
from .utils import get_logger, utc_now


PROVIDER_ID_COMMUNITY_SOURCE = "MdbListCommunitySource"
PROVIDER_ID_CRITIC_SOURCE = "MdbListCriticSource"

COMMUNITY_RATING_TOLERANCE = 0.01

CACHE_INTERVALS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


class UpdateOutcome(Enum):
    SKIPPED = "skipped"
    UPDATED = "updated"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult:
    """
    Payload selected for one item.

    Attributes:
        data (Optional[MdbListTitleResponse]): Fresh, cached or stale payload
        outcome (UpdateOutcome): SKIPPED when data was obtained (or nothing was needed),
            RATE_LIMITED or FAILED when the item cannot proceed
        stop_after_this (bool): Quota reached zero on this request
    """
    data: Optional[MdbListTitleResponse] = None
    outcome: UpdateOutcome = UpdateOutcome.SKIPPED
    stop_after_this: bool = False


def get_ttl(config: AppConfig) -> timedelta:
    """
    Cache time-to-live.

    The interval preset wins. Configurations that predate presets only carry
    `cache_hours`, which is snapped to the nearest preset at or below it
    (anything under a week is one day, non-positive hours mean 24).

    Args:
        config (AppConfig): Application configuration

    Returns:
        timedelta: One day, one week or thirty days
    """
    interval = config.cache.interval
    if interval in CACHE_INTERVALS:
        return CACHE_INTERVALS[interval]

    hours = config.cache.cache_hours if config.cache.cache_hours > 0 else 24
    if hours >= 24 * 30:
        return CACHE_INTERVALS["month"]
    if hours >= 24 * 7:
        return CACHE_INTERVALS["week"]
    return CACHE_INTERVALS["day"]


def _parse_guid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


async def lookup_cached_envelope(
        cache_store: MdbListCacheStore,
        content_type: Optional[str],
        tmdb_id: Optional[str]
) -> Optional[CacheEnvelope]:
    """Cache entry for a title, fresh or stale; None for blank input or a miss."""
    if not content_type or not content_type.strip() or not tmdb_id or not tmdb_id.strip():
        return None
    return await cache_store.get(make_cache_key(content_type, tmdb_id))


def find_override_for_item(item: MediaItem, overrides: List[LibraryRatingOverride]) -> Optional[LibraryRatingOverride]:
    """
    Find the first enabled override matching one of the item's libraries.

    An override's match key is its `library_id`, or its `library_name` when the id
    is blank. A key that parses as a GUID matches folder ids only (dashed or
    dashless forms compare equal). Any other key is compared case-insensitively
    with the folder id text and the folder name.

    Args:
        item (MediaItem): Item with its library folders
        overrides (List[LibraryRatingOverride]): Configured overrides, in priority order

    Returns:
        Optional[LibraryRatingOverride]: Matching override, or None
    """
    if not overrides or not item.libraries:
        return None

    for override in overrides:
        if override is None or not override.enabled:
            continue

        key = override.match_key
        if not key:
            continue

        override_guid = _parse_guid(key)
        if override_guid is not None:
            for folder in item.libraries:
                if _parse_guid(folder.id or "") == override_guid:
                    return override
            continue

        for folder in item.libraries:
            folder_id = (folder.id or "").strip()
            folder_name = (folder.name or "").strip()
            if folder_id and key.lower() in (folder_id.lower(), folder_id.replace("-", "").lower()):
                return override
            if folder_name and key.lower() == folder_name.lower():
                return override

    return None


class RatingsUpdater:
    """
    Orchestrates rating enrichment for a single item at a time.

    All collaborators are injected, so one process can run several updaters against
    different configurations, and tests can replace any of them.

    **Per-Item Flow:**
        1. Guard clauses: API key, supported type, TMDb id, "only when empty"
        2. Fresh cache entry (age <= TTL) is used without touching the network
        3. Active cooldown: stale cache if present, otherwise RATE_LIMITED
        4. Optional fixed delay, request, rate-limit bookkeeping, cache write
        5. Resolve community (and for movies critic) rating from the effective mapping
        6. Write the item only when a rating or provenance tag changed

    **Degrading Gracefully:**
    A failed or rate-limited request falls back to a stale cache entry whenever one
    exists. Override lookup problems mean "no override". Item store failures turn
    into FAILED. Only cancellation propagates.

    Attributes:
        config (AppConfig): Application configuration
        client (MdbListClient): MDBList API client
        cache_store (MdbListCacheStore): Response cache
        rate_limit (RateLimitStateStore): Cooldown tracker
        item_store (Any): Object with `async update_item(item)` persisting rating changes;
            required, a ValueError is raised when it is None
        logger (logging.Logger): Logger for update operations

    Example:
        ```python
        updater = RatingsUpdater(config, client, cache_store, rate_limit, item_store)
        await updater.initialize()

        outcome = await updater.update_item_ratings(item)
        if outcome is UpdateOutcome.RATE_LIMITED:
            ...  # stop the batch
        ```
    """

    def __init__(
            self,
            config: AppConfig,
            client: MdbListClient,
            cache_store: MdbListCacheStore,
            rate_limit: RateLimitStateStore,
            item_store: Any
    ):
        if item_store is None:
            raise ValueError("RatingsUpdater requires an item store to persist rating changes")

        self.config = config
        self.client = client
        self.cache_store = cache_store
        self.rate_limit = rate_limit
        self.item_store = item_store
        self.logger = get_logger("mdblist_ratings.updater")

    async def initialize(self) -> None:
        """Load persisted rate-limit state; safe to call any number of times."""
        await self.rate_limit.load()

    async def update_item_ratings(self, item: MediaItem) -> UpdateOutcome:
        """
        Update one item's ratings from MDBList.

        Args:
            item (MediaItem): Item to enrich; its rating fields and provider ids
                are modified in place when a change is applied

        Returns:
            UpdateOutcome: SKIPPED, UPDATED, RATE_LIMITED (stop the batch) or FAILED
        """
        await self.initialize()

        api_key = self.config.mdblist.api_key
        if not api_key or not api_key.strip():
            return UpdateOutcome.SKIPPED

        content_type = item.content_type
        if content_type is None:
            return UpdateOutcome.SKIPPED
        is_movie = item.is_movie

        tmdb_id = item.tmdb_id
        if not tmdb_id:
            return UpdateOutcome.SKIPPED

        allow_community = True
        allow_critic = True
        if self.config.update_only_when_empty:
            allow_community = not _has_rating(item.community_rating)
            allow_critic = not _has_rating(item.critic_rating)
            if not allow_community and (not is_movie or not allow_critic):
                return UpdateOutcome.SKIPPED

        fetch = await self._get_cached_or_fetch(content_type, tmdb_id)
        if fetch.outcome is UpdateOutcome.RATE_LIMITED:
            return UpdateOutcome.RATE_LIMITED

        data = fetch.data
        if data is None or not data.ratings:
            return UpdateOutcome.FAILED if fetch.outcome is UpdateOutcome.FAILED else UpdateOutcome.SKIPPED

        mapping = self.get_effective_mapping(item)
        if is_movie:
            new_community, community_source = extract_community_rating(
                data, mapping.movie_community_source, mapping.movie_community_fallback_source)
            new_critic, critic_source = extract_critic_rating(
                data, mapping.movie_critic_source, mapping.movie_critic_fallback_source)
        else:
            new_community, community_source = extract_community_rating(
                data, mapping.show_community_source, mapping.show_community_fallback_source)
            new_critic, critic_source = None, None

        changed = False

        if allow_community and new_community is not None:
            rating_changed = item.community_rating is None \
                or abs(item.community_rating - new_community) > COMMUNITY_RATING_TOLERANCE
            if rating_changed:
                item.community_rating = new_community
            source_changed = set_source_tag(item, PROVIDER_ID_COMMUNITY_SOURCE, community_source)
            changed = changed or rating_changed or source_changed

        if is_movie and allow_critic and new_critic is not None:
            rating_changed = item.critic_rating is None or item.critic_rating != new_critic
            if rating_changed:
                item.critic_rating = new_critic
            source_changed = set_source_tag(item, PROVIDER_ID_CRITIC_SOURCE, critic_source)
            changed = changed or rating_changed or source_changed

        if not changed:
            return UpdateOutcome.RATE_LIMITED if fetch.stop_after_this else UpdateOutcome.SKIPPED

        try:
            await self.item_store.update_item(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Failed to save item after rating update: {item.name} (TMDb {tmdb_id}): {e}")
            return UpdateOutcome.RATE_LIMITED if fetch.stop_after_this else UpdateOutcome.FAILED

        self.logger.info(f"Updated ratings from MDBList: {item.name} (TMDb {tmdb_id})")
        return UpdateOutcome.RATE_LIMITED if fetch.stop_after_this else UpdateOutcome.UPDATED

    def get_effective_mapping(self, item: MediaItem) -> SourceMapping:
        """Global mapping merged with the item's library override, if any."""
        try:
            override = find_override_for_item(item, self.config.library_overrides)
        except Exception as e:
            self.logger.warning(f"Library override lookup failed for {item.name}: {e}")
            override = None
        return self.config.mapping.merged_with(override)

    async def get_cached_envelope(self, content_type: str, tmdb_id: str) -> Optional[CacheEnvelope]:
        """
        Cached entry for a title, fresh or stale, without any network request.

        Args:
            content_type (str): "movie" or "show"
            tmdb_id (str): TMDb id

        Returns:
            Optional[CacheEnvelope]: Cache entry, or None for blank input or a miss
        """
        await self.initialize()
        return await lookup_cached_envelope(self.cache_store, content_type, tmdb_id)

    async def _get_cached_or_fetch(self, content_type: str, tmdb_id: str) -> FetchResult:
        """Choose between fresh cache, stale cache and a network request."""
        cache_key = make_cache_key(content_type, tmdb_id)
        now = utc_now()

        cached = await self.cache_store.get(cache_key)
        if cached is not None and now - cached.cached_at_utc <= get_ttl(self.config):
            self.logger.debug(f"Using cached MDBList data for {cache_key}")
            return FetchResult(data=cached.data)

        cooldown_until = self.rate_limit.active_cooldown_until(now)
        if cooldown_until is not None:
            if cached is not None:
                self.logger.debug(f"Cooldown active, using stale cache for {cache_key}")
                return FetchResult(data=cached.data)

            self.logger.warning(
                f"MDBList rate limit cooldown is active until {cooldown_until.isoformat()}. Stopping the task."
            )
            return FetchResult(outcome=UpdateOutcome.RATE_LIMITED)

        delay_ms = self.config.mdblist.request_delay_ms
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)

        api = await self.client.get_by_tmdb(content_type, tmdb_id, self.config.mdblist.api_key)

        quota_exhausted = api.rate_limit_remaining is not None and api.rate_limit_remaining <= 0
        await self.rate_limit.update(
            api.rate_limit_limit,
            api.rate_limit_remaining,
            api.rate_limit_reset_utc,
            api.is_rate_limited or quota_exhausted
        )

        if api.is_rate_limited:
            if cached is not None:
                self.logger.warning(f"MDBList rate limit reached. Using stale cache for {cache_key}.")
                return FetchResult(data=cached.data)

            resume_at = api.rate_limit_reset_utc or self.rate_limit.not_before_utc
            self.logger.warning(
                f"MDBList rate limit reached. Will continue after {_format_time(resume_at)}."
            )
            return FetchResult(outcome=UpdateOutcome.RATE_LIMITED)

        if api.data is None:
            if cached is not None:
                self.logger.debug(f"MDBList request failed, using stale cache for {cache_key}")
                return FetchResult(data=cached.data)
            return FetchResult(outcome=UpdateOutcome.FAILED)

        envelope = CacheEnvelope(cached_at_utc=now, data=api.data, raw_json=api.raw_json)
        if not await self.cache_store.put(cache_key, envelope):
            self.logger.warning(f"Fetched MDBList data for {cache_key} could not be persisted")

        if quota_exhausted:
            self.logger.info(f"MDBList daily quota used up after {cache_key}; stopping after this item")
        return FetchResult(data=api.data, stop_after_this=quota_exhausted)


def _has_rating(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _format_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else "unknown"


def set_source_tag(item: MediaItem, key: str, source: Optional[str]) -> bool:
    """
    Record which rating source was applied, in the item's provider ids.

    Args:
        item (MediaItem): Item to tag
        key (str): Provider id key
        source (Optional[str]): Source actually used; blank or "none" removes the tag

    Returns:
        bool: True when the stored tag changed
    """
    value = normalize_source(source)
    existing = item.get_provider_id(key)

    if not value or value == NO_SOURCE:
        if not any(k.lower() == key.lower() for k in item.provider_ids):
            return False
        item.set_provider_id(key, None)
        return True

    if existing is not None and existing.lower() == value:
        return False

    item.set_provider_id(key, value)
    return True
