"""
Activity tracker for sync history and stats.

Keeps the most recent sync, webhook and error records in a bounded
in-memory ring buffer (oldest evicted first). State resets on restart.
"""

import logging
import secrets
from collections import deque
from datetime import UTC, datetime, timedelta
from typing import Deque

from app.api.v1.schemas.sync_schemas import (
    ActivityRecord,
    ActivityStats,
    ActivityType,
    AllTimeStats,
    Last24HoursStats,
)
from app.core.config import get_settings

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10


class ActivityTracker:
    """
    Append-only ring buffer of ActivityRecord.

    Mutations never await, so the buffer is safe under the event loop's
    cooperative scheduling without a lock.
    """

    def __init__(self, max_records: int | None = None):
        self.max_records = max_records or get_settings().ACTIVITY_MAX_RECORDS
        self._records: Deque[ActivityRecord] = deque(maxlen=self.max_records)
        self.start_time = datetime.now(UTC)
        self.total_syncs = 0
        self.total_orders_processed = 0

    @staticmethod
    def _generate_id() -> str:
        return secrets.token_hex(4)

    def _append(self, record: ActivityRecord) -> ActivityRecord:
        self._records.append(record)
        return record

    def record_sync(
        self,
        success: bool,
        orders_processed: int,
        orders_failed: int,
        duration: float,
        message: str | None = None,
    ) -> ActivityRecord:
        """Record a completed sync run (duration in milliseconds)."""
        self.total_syncs += 1
        self.total_orders_processed += orders_processed

        return self._append(
            ActivityRecord(
                id=self._generate_id(),
                timestamp=datetime.now(UTC),
                type=ActivityType.SYNC,
                success=success,
                orders_processed=orders_processed,
                orders_failed=orders_failed,
                duration=duration,
                message=message,
            )
        )

    def record_webhook(self, success: bool, message: str | None = None) -> ActivityRecord:
        """Record a processed webhook; counts as one order processed or failed."""
        return self._append(
            ActivityRecord(
                id=self._generate_id(),
                timestamp=datetime.now(UTC),
                type=ActivityType.WEBHOOK,
                success=success,
                orders_processed=1 if success else 0,
                orders_failed=0 if success else 1,
                duration=0,
                message=message,
            )
        )

    def record_error(self, message: str) -> ActivityRecord:
        return self._append(
            ActivityRecord(
                id=self._generate_id(),
                timestamp=datetime.now(UTC),
                type=ActivityType.ERROR,
                success=False,
                message=message,
            )
        )

    def get_recent(self, limit: int = RECENT_ACTIVITY_LIMIT) -> list[ActivityRecord]:
        """Most recent records first."""
        return list(reversed(self._records))[:limit]

    def get_stats(self, now: datetime | None = None) -> ActivityStats:
        """
        Summarize sync activity.

        Returns:
            ActivityStats: Last-24h sync totals, all-time totals and the ten
            most recent records (newest first)
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(hours=24)

        # Newest first, so the first sync found is the last one run
        syncs = [r for r in reversed(self._records) if r.type == ActivityType.SYNC and r.timestamp >= cutoff]

        return ActivityStats(
            last_24_hours=Last24HoursStats(
                total_syncs=len(syncs),
                successful_syncs=sum(1 for r in syncs if r.success),
                failed_syncs=sum(1 for r in syncs if not r.success),
                orders_processed=sum(r.orders_processed for r in syncs),
                orders_failed=sum(r.orders_failed for r in syncs),
                last_sync_time=syncs[0].timestamp if syncs else None,
            ),
            all_time=AllTimeStats(
                total_syncs=self.total_syncs,
                orders_processed=self.total_orders_processed,
                start_time=self.start_time,
            ),
            recent_activity=self.get_recent(),
        )

    def clear(self) -> None:
        self._records.clear()
        self.total_syncs = 0
        self.total_orders_processed = 0
        self.start_time = datetime.now(UTC)

    def __len__(self) -> int:
        return len(self._records)


# Global tracker instance
_activity_tracker: ActivityTracker | None = None


def get_activity_tracker() -> ActivityTracker:
    """
    Get the global activity tracker.

    Returns:
        ActivityTracker: Shared instance
    """
    global _activity_tracker
    if _activity_tracker is None:
        _activity_tracker = ActivityTracker()
    return _activity_tracker
