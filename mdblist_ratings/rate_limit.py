#!/usr/bin/env python3
"""
MDBList Rate Limit State Module

This module tracks the MDBList daily quota across restarts. The API reports its quota
in X-RateLimit-* headers on every response; once the quota is exhausted (HTTP 429, or
a successful response whose remaining counter hit zero) no request should be sent
until the provider's reset time. That deadline is persisted to a small JSON file so
a restarted service does not burn requests that are guaranteed to fail.

Classes:
    RateLimitState: Persisted cooldown deadline and last-seen quota counters
    RateLimitStateStore: Durable two-state (Clear / Cooldown) tracker

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .utils import get_logger, read_json_file, utc_now, write_json_atomic


DEFAULT_COOLDOWN = timedelta(hours=24)


class RateLimitState(BaseModel):
    """
    Persisted rate-limit state.

    Serialized as `{"notBeforeUtc", "lastLimit", "lastRemaining", "lastResetUtc",
    "updatedAtUtc"}`.

    Attributes:
        not_before_utc (Optional[datetime]): No requests before this instant. A value
            in the past means the cooldown is over; it is not erased eagerly.
        last_limit (Optional[int]): Last seen X-RateLimit-Limit
        last_remaining (Optional[int]): Last seen X-RateLimit-Remaining
        last_reset_utc (Optional[datetime]): Last seen X-RateLimit-Reset
        updated_at_utc (datetime): When the state was last changed
    """
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    not_before_utc: Optional[datetime] = Field(default=None, alias="notBeforeUtc")
    last_limit: Optional[int] = Field(default=None, alias="lastLimit")
    last_remaining: Optional[int] = Field(default=None, alias="lastRemaining")
    last_reset_utc: Optional[datetime] = Field(default=None, alias="lastResetUtc")
    updated_at_utc: datetime = Field(default_factory=utc_now, alias="updatedAtUtc")

    # noinspection PyDecorator
    @field_validator('not_before_utc', 'last_reset_utc', 'updated_at_utc')
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class RateLimitStateStore:
    """
    Durable cooldown tracker for the MDBList API.

    **States:**
    - Clear: requests may be sent
    - Cooldown(until): no requests until `until`

    Clear -> Cooldown happens in update() when the response was rate limited. The
    deadline is the provider's reset time when one was reported, otherwise 24 hours
    from now. Cooldown -> Clear happens lazily: every read compares the deadline with
    the current time, and the next non-limited update persists the cleared value.

    **Partial Updates:**
    Each quota counter is replaced only when the new response carries a value, so a
    response without headers never erases what was seen before.

    **Loading:**
    load() reads the state file once per process. Repeated calls are no-ops, and
    concurrent first calls are serialized by a lock with a double-checked flag.

    Attributes:
        path (Path): State file location
        state (RateLimitState): Current in-memory state
        logger (logging.Logger): Logger for rate limit operations
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.logger = get_logger("mdblist_ratings.ratelimit")
        self.state = RateLimitState()
        self._io_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def not_before_utc(self) -> Optional[datetime]:
        """Raw persisted deadline, which may already be in the past."""
        return self.state.not_before_utc

    def active_cooldown_until(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        Return the cooldown deadline if it is still in the future.

        Args:
            now (Optional[datetime]): Reference time, defaults to the current UTC time

        Returns:
            Optional[datetime]: Deadline while cooling down, None when Clear
        """
        now = now or utc_now()
        deadline = self.state.not_before_utc
        if deadline is not None and deadline > now:
            return deadline
        return None

    def is_cooling_down(self, now: Optional[datetime] = None) -> bool:
        return self.active_cooldown_until(now) is not None

    async def load(self) -> None:
        """
        Load persisted state exactly once.

        A missing file leaves the tracker Clear. An unreadable or corrupt file is
        logged and also leaves it Clear with no quota history.
        """
        if self._loaded:
            return

        async with self._init_lock:
            if self._loaded:
                return

            if self.path.exists():
                try:
                    async with self._io_lock:
                        document = await read_json_file(self.path)
                    self.state = RateLimitState.model_validate(document)
                    self.logger.debug(f"Loaded rate-limit state: cooldown until {self.state.not_before_utc}")
                except (OSError, ValueError, ValidationError) as e:
                    self.logger.warning(f"Failed to read rate-limit state file {self.path}: {e}")

            self._loaded = True

    async def update(
            self,
            limit: Optional[int],
            remaining: Optional[int],
            reset_utc: Optional[datetime],
            rate_limited: bool,
            now: Optional[datetime] = None
    ) -> None:
        """
        Record the rate-limit information of one response and persist it.

        Args:
            limit (Optional[int]): X-RateLimit-Limit, None if absent
            remaining (Optional[int]): X-RateLimit-Remaining, None if absent
            reset_utc (Optional[datetime]): X-RateLimit-Reset, None if absent
            rate_limited (bool): Whether this response exhausted the quota
            now (Optional[datetime]): Reference time, defaults to the current UTC time
        """
        now = now or utc_now()
        state = self.state

        if rate_limited:
            # Cooldown never ends before now; a stale reset header falls back to the default
            if reset_utc is not None and reset_utc > now:
                state.not_before_utc = reset_utc
            else:
                state.not_before_utc = now + DEFAULT_COOLDOWN
            self.logger.warning(f"MDBList quota exhausted, cooldown until {state.not_before_utc.isoformat()}")
        elif state.not_before_utc is not None and state.not_before_utc <= now:
            state.not_before_utc = None

        if limit is not None:
            state.last_limit = limit
        if remaining is not None:
            state.last_remaining = remaining
        if reset_utc is not None:
            state.last_reset_utc = reset_utc
        state.updated_at_utc = now

        try:
            async with self._io_lock:
                await write_json_atomic(self.path, state.model_dump_json(by_alias=True))
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to write rate-limit state file {self.path}: {e}")
