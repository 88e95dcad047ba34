#!/usr/bin/env python3
"""
MDBList Ratings Web API

FastAPI application exposing the cached MDBList data to the Jellyfin web client.
The lookup is strictly read-only: it never calls MDBList, and it happily returns
stale entries, since the UI only uses it to show every rating the last fetch saw.

Classes:
    RatingsService: Owns the HTTP session and the rating pipeline components

Functions:
    create_app: Build the FastAPI application around a RatingsService

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import aiohttp
from fastapi import FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from .cache_store import MdbListCacheStore
from .config_models import AppConfig
from .mdblist_client import MdbListClient
from .mdblist_models import CacheEnvelope, MdbListRating
from .rate_limit import RateLimitStateStore
from .ratings_updater import RatingsUpdater, lookup_cached_envelope
from .utils import get_logger, utc_now


VALID_CONTENT_TYPES = ("movie", "show")


class RatingsService:
    """
    Service container for the rating pipeline.

    Builds the client, cache and rate-limit tracker from configuration. The lookup
    endpoints read the cache directly; batch runs get a RatingsUpdater bound to an
    item store through create_updater(). The shared aiohttp session is created in
    start() and closed in stop(), mirroring the application lifespan.

    Attributes:
        config (AppConfig): Application configuration
        client (MdbListClient): MDBList API client
        cache_store (MdbListCacheStore): Response cache
        rate_limit (RateLimitStateStore): Cooldown tracker
        session (Optional[aiohttp.ClientSession]): Shared HTTP session while running
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self.logger = get_logger("mdblist_ratings.service")

        self.client = MdbListClient(
            base_url=config.mdblist.base_url,
            request_timeout=config.mdblist.request_timeout_seconds
        )
        self.cache_store = MdbListCacheStore(config.storage.resolved_cache_dir)
        self.rate_limit = RateLimitStateStore(config.storage.resolved_state_file)
        self.session: Optional[aiohttp.ClientSession] = None
        self.started_at: Optional[datetime] = None

    async def start(self) -> None:
        """Open the HTTP session and load persisted rate-limit state."""
        if self.session is None:
            self.session = aiohttp.ClientSession(headers={"User-Agent": "mdblist-ratings/1.0.0"})
            self.client.initialize(self.session)

        await self.rate_limit.load()
        self.started_at = utc_now()

        cooldown = self.rate_limit.active_cooldown_until()
        if cooldown is not None:
            self.logger.warning(f"MDBList cooldown active until {cooldown.isoformat()}")
        self.logger.info(f"Ratings service started (cache: {self.cache_store.cache_dir})")

    def create_updater(self, item_store: Any) -> RatingsUpdater:
        """
        Build an updater sharing this service's client, cache and rate-limit tracker.

        Args:
            item_store (Any): Object with `async update_item(item)` persisting rating changes

        Returns:
            RatingsUpdater: Orchestrator for batch runs

        Raises:
            ValueError: If item_store is None
        """
        return RatingsUpdater(self.config, self.client, self.cache_store, self.rate_limit, item_store)

    async def get_cached_envelope(self, content_type: str, tmdb_id: str) -> Optional[CacheEnvelope]:
        """Cached entry for a title, without any network request."""
        return await lookup_cached_envelope(self.cache_store, content_type, tmdb_id)

    async def stop(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
        self.logger.info("Ratings service stopped")


def _rating_to_json(rating: MdbListRating) -> Dict[str, Any]:
    return rating.model_dump(mode='json')


def create_app(service: RatingsService) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service (RatingsService): Service whose cache the endpoints read

    Returns:
        FastAPI: Application with lifespan hooks starting and stopping the service
    """
    logger = get_logger("mdblist_ratings.web")

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(
        title="MDBList Ratings",
        description="Cached MDBList ratings lookup",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.ratings_service = service

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        cooldown = service.rate_limit.active_cooldown_until()
        state = service.rate_limit.state
        return {
            "status": "healthy",
            "cooldown_until": cooldown.isoformat() if cooldown else None,
            "quota": {
                "limit": state.last_limit,
                "remaining": state.last_remaining,
                "reset_utc": state.last_reset_utc.isoformat() if state.last_reset_utc else None,
            },
        }

    @app.get("/Plugins/MdbListRatings/CachedByTmdb")
    async def cached_by_tmdb(
            request: Request,
            content_type: Optional[str] = Query(default=None, alias="type"),
            tmdb_id: Optional[str] = Query(default=None, alias="tmdbId")
    ):
        """Cached MDBList ratings for a TMDb id, without any network request."""
        if not content_type or not content_type.strip() or not tmdb_id or not tmdb_id.strip():
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Missing required query parameters: type, tmdbId"}
            )

        content_type = content_type.strip().lower()
        if content_type not in VALID_CONTENT_TYPES:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Invalid type. Expected: movie|show"}
            )

        envelope = await service.get_cached_envelope(content_type, tmdb_id.strip())
        if envelope is None or envelope.data is None:
            logger.debug(f"No cached MDBList data for {content_type}:{tmdb_id} ({request.client.host if request.client else 'unknown'})")
            return {"hasCache": False, "cachedAtUtc": None, "ids": None, "ratings": []}

        data = envelope.data
        return {
            "hasCache": True,
            "cachedAtUtc": envelope.cached_at_utc.isoformat(),
            "ids": data.ids.model_dump(mode='json') if data.ids else None,
            "ratings": [_rating_to_json(r) for r in data.ratings],
        }

    return app
