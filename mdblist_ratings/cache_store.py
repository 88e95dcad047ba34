#!/usr/bin/env python3
"""
MDBList Response Cache Module

This module stores MDBList responses on disk, one JSON file per title, with an
in-memory read-through layer in front. The cache is what lets the daily task stay
within the API quota: a title is only refetched once its entry is older than the
configured TTL, and stale entries remain usable while a cooldown is active.

Classes:
    MdbListCacheStore: Durable key/value store for CacheEnvelope objects

Functions:
    encode_cache_filename: Map a cache key to a filesystem-safe file name
    decode_cache_filename: Recover the cache key from a file name
    make_cache_key: Build the "{content_type}:{tmdb_id}" key

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import asyncio
import base64
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError

from .mdblist_models import CacheEnvelope
from .utils import get_logger, read_json_file, write_json_atomic


def make_cache_key(content_type: str, tmdb_id: str) -> str:
    """Build the logical cache key for a title."""
    return f"{content_type.strip()}:{tmdb_id.strip()}"


def _normalize_key(key: str) -> str:
    return key.strip().lower()


def encode_cache_filename(key: str) -> str:
    """
    Encode a cache key into a file name.

    Keys contain a colon and provider-supplied id text, so they are encoded as
    URL-safe base64 without padding. The mapping is deterministic and reversible.

    Args:
        key (str): Cache key such as "movie:603"

    Returns:
        str: File name such as "bW92aWU6NjAz.json"
    """
    encoded = base64.urlsafe_b64encode(_normalize_key(key).encode("utf-8")).decode("ascii")
    return encoded.rstrip("=") + ".json"


def decode_cache_filename(filename: str) -> str:
    """Reverse encode_cache_filename()."""
    stem = filename[:-len(".json")] if filename.endswith(".json") else filename
    padded = stem + "=" * (-len(stem) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


class MdbListCacheStore:
    """
    Persistent cache of MDBList responses keyed by content type and TMDb id.

    **Read Path:**
    get() consults the in-memory dictionary first. On a miss it loads the entry file
    (if any) and remembers it in memory before returning it.

    **Write Path:**
    put() updates memory immediately so concurrent readers see the new value even if
    the disk write fails or is still running, then writes the file through a temp
    file and an atomic rename.

    **Concurrency:**
    File I/O for both paths goes through one asyncio.Lock. The in-memory dictionary
    is read without the lock, so a lookup never waits behind an unrelated write.

    **Failure Policy:**
    Unreadable, corrupt or unwritable files are logged and treated as a cache miss.
    The caller then simply refetches. Cancellation is never swallowed.

    Attributes:
        cache_dir (Path): Directory holding one JSON file per key
        logger (logging.Logger): Logger for cache operations

    Example:
        ```python
        store = MdbListCacheStore("/app/data/cache")
        await store.put("movie:603", envelope)
        cached = await store.get("MOVIE:603")  # keys are case-insensitive
        ```
    """

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)
        self.logger = get_logger("mdblist_ratings.cache")
        self._memory: Dict[str, CacheEnvelope] = {}
        self._io_lock = asyncio.Lock()

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.logger.debug(f"Ensured cache directory exists: {self.cache_dir}")

    def path_for(self, key: str) -> Path:
        """Return the file that stores the given key."""
        return self.cache_dir / encode_cache_filename(key)

    async def get(self, key: str) -> Optional[CacheEnvelope]:
        """
        Look up a cached response.

        Args:
            key (str): Cache key, compared case-insensitively

        Returns:
            Optional[CacheEnvelope]: Cached envelope (possibly stale) or None
        """
        normalized = _normalize_key(key)
        cached = self._memory.get(normalized)
        if cached is not None:
            return cached

        path = self.path_for(normalized)
        if not path.exists():
            return None

        try:
            async with self._io_lock:
                document = await read_json_file(path)
                loaded = CacheEnvelope.model_validate(document)
                # A put that ran during the read already holds the newer entry
                loaded = self._memory.setdefault(normalized, loaded)
        except (OSError, ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            self.logger.warning(f"Failed to read MDBList cache entry {key}: {e}")
            return self._memory.get(normalized)

        self.logger.debug(f"Loaded cache entry from disk: {key}")
        return loaded

    async def put(self, key: str, envelope: CacheEnvelope) -> bool:
        """
        Store a response in memory and on disk.

        Args:
            key (str): Cache key
            envelope (CacheEnvelope): Entry to store

        Returns:
            bool: True when the durable write succeeded, False otherwise
        """
        normalized = _normalize_key(key)
        self._memory[normalized] = envelope

        try:
            async with self._io_lock:
                await write_json_atomic(self.path_for(normalized), envelope.to_json())
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to write MDBList cache entry {key}: {e}")
            return False

        self.logger.debug(f"Cached MDBList response: {key}")
        return True

    def clear_memory(self) -> None:
        """Drop the in-memory layer; entries are reloaded from disk on demand."""
        self._memory.clear()
