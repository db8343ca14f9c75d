"""
Processed-event registry for inbound webhook deduplication.

Providers deliver events at least once. An event ID is *claimed* before
dispatch so that concurrent redeliveries cannot both pass, then either
*marked processed* on success or *released* on failure so a later
redelivery can retry it.
"""

import threading
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from outreach.config import get_settings
from outreach.shared.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessedEventRegistry:
    """Bounded, age-pruned record of processed event IDs."""

    def __init__(
        self,
        retention: timedelta = timedelta(hours=1),
        max_entries: int = 10_000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._retention = retention
        self._max_entries = max_entries
        self._clock = clock
        self._processed: OrderedDict[str, datetime] = OrderedDict()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def try_claim(self, event_id: str) -> bool:
        """Reserve an event for processing.

        Returns:
            False if the event was already processed or is being processed.
        """
        with self._lock:
            if event_id in self._processed or event_id in self._in_flight:
                return False
            self._in_flight.add(event_id)
            return True

    def mark_processed(self, event_id: str) -> None:
        with self._lock:
            self._in_flight.discard(event_id)
            self._processed[event_id] = self._clock()
            self._processed.move_to_end(event_id)
            while len(self._processed) > self._max_entries:
                self._processed.popitem(last=False)

    def release(self, event_id: str) -> None:
        """Give up a claim without recording the event."""
        with self._lock:
            self._in_flight.discard(event_id)

    def is_processed(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._processed

    def prune(self) -> int:
        """Forget events processed longer ago than the retention window.

        Returns:
            Number of entries removed.
        """
        cutoff = self._clock() - self._retention
        removed = 0
        with self._lock:
            # Insertion order is processing order.
            while self._processed:
                oldest_id, processed_at = next(iter(self._processed.items()))
                if processed_at >= cutoff:
                    break
                del self._processed[oldest_id]
                removed += 1
        if removed:
            logger.info("Pruned processed events", extra={"removed": removed})
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._processed)


@lru_cache(maxsize=1)
def get_event_registry() -> ProcessedEventRegistry:
    """Process-wide event registry sized from settings."""
    settings = get_settings()
    return ProcessedEventRegistry(
        retention=timedelta(seconds=settings.event_dedup_retention_seconds),
        max_entries=settings.event_dedup_max_entries,
    )
