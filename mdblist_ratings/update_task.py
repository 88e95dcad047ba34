#!/usr/bin/env python3
"""
MDBList Ratings Update Task

Batch driver that walks a list of library items and updates each one through the
RatingsUpdater, strictly one at a time. The MDBList quota is per day and shared by
the whole batch, so the task stops as soon as an item reports RATE_LIMITED; the
remaining items are picked up by the next scheduled run.

Classes:
    UpdateRunStats: Counters for one task run
    UpdateRatingsTask: Serial batch driver with progress reporting

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .media_models import MediaItem
from .ratings_updater import RatingsUpdater, UpdateOutcome
from .utils import get_logger


ProgressCallback = Callable[[float], None]


@dataclass(slots=True)
class UpdateRunStats:
    """Per-run counters; `stopped_by_rate_limit` is set when the batch ended early."""
    total: int = 0
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: int = 0
    stopped_by_rate_limit: bool = False
    duration_seconds: float = 0.0


class UpdateRatingsTask:
    """
    Scheduled task updating ratings for every supported item.

    **Stopping Rules:**
    - RATE_LIMITED from the updater ends the run after that item
    - An unexpected exception for one item is logged and the run continues
    - Cancellation (service shutdown) propagates immediately

    Progress is reported as a percentage (0-100) after every item through an
    optional callback, so a web UI or a console display can follow long runs.

    Attributes:
        updater (RatingsUpdater): Per-item orchestrator
        logger (logging.Logger): Logger for task progress

    Example:
        ```python
        task = UpdateRatingsTask(updater)
        stats = await task.run(items, progress=lambda pct: print(f"{pct:.0f}%"))
        if stats.stopped_by_rate_limit:
            print("Quota exhausted, continuing tomorrow")
        ```
    """

    name = "Update ratings from MDBList"

    def __init__(self, updater: RatingsUpdater):
        self.updater = updater
        self.logger = get_logger("mdblist_ratings.task")

    async def run(self, items: Iterable[MediaItem], progress: Optional[ProgressCallback] = None) -> UpdateRunStats:
        """
        Process items serially.

        Args:
            items (Iterable[MediaItem]): Items to update; only Movies and Series are
                processed
            progress (Optional[ProgressCallback]): Receives percent complete

        Returns:
            UpdateRunStats: Counters for the run

        Raises:
            asyncio.CancelledError: When the run is cancelled
        """
        item_list = [item for item in items if item.content_type is not None]
        stats = UpdateRunStats(total=len(item_list))
        start_time = time.monotonic()

        api_key = self.updater.config.mdblist.api_key
        if not api_key or not api_key.strip():
            self.logger.warning(f"{self.name}: MDBList API key is empty, nothing to do")
            return stats

        await self.updater.initialize()
        self.logger.info(f"{self.name}: starting run over {stats.total} items")

        for index, item in enumerate(item_list, start=1):
            try:
                outcome = await self.updater.update_item_ratings(item)
            except asyncio.CancelledError:
                self.logger.info(f"{self.name}: cancelled after {stats.processed} items")
                raise
            except Exception as e:
                stats.errors += 1
                self.logger.warning(f"{self.name}: failed to update {item.name} ({item.item_id}): {e}")
                outcome = None

            stats.processed = index
            if outcome is UpdateOutcome.UPDATED:
                stats.updated += 1
            elif outcome is UpdateOutcome.SKIPPED:
                stats.skipped += 1
            elif outcome is UpdateOutcome.FAILED:
                stats.failed += 1

            self._report(progress, index * 100.0 / stats.total)

            if outcome is UpdateOutcome.RATE_LIMITED:
                stats.stopped_by_rate_limit = True
                self.logger.warning(
                    f"{self.name}: MDBList rate limit reached, stopping after {index}/{stats.total} items"
                )
                break

        if not stats.stopped_by_rate_limit:
            self._report(progress, 100.0)

        stats.duration_seconds = time.monotonic() - start_time
        self.logger.info(
            f"{self.name}: finished - processed={stats.processed}, updated={stats.updated}, "
            f"skipped={stats.skipped}, failed={stats.failed}, errors={stats.errors} "
            f"in {stats.duration_seconds:.1f}s"
        )
        return stats

    def _report(self, progress: Optional[ProgressCallback], percent: float) -> None:
        if progress is None:
            return
        try:
            progress(percent)
        except Exception as e:
            self.logger.debug(f"Progress callback failed: {e}")
