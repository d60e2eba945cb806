"""
Analytics event ingestion, querying and per-user erasure.

Ingestion is idempotent on the client-generated eventId: the first
payload seen for an id is stored and every later one is dropped, even
if its contents differ.
"""

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from app.clock import Clock, MonotonicClock, ensure_utc
from app.entities import AnalyticsEvent
from app.metrics import record_analytics_deletion, record_analytics_ingestion
from app.schemas import AnalyticsEventPayload
from app.storage import EntityMap

logger = logging.getLogger(__name__)


class IngestResult(BaseModel):
    """Outcome of one ingestion batch."""
    model_config = ConfigDict(frozen=True)

    received: int
    ingested: int
    duplicates: int


class AnalyticsStore:
    """Owns the analytics event map. All calls are serialized by one lock."""

    def __init__(self, events: EntityMap[AnalyticsEvent], clock: Optional[Clock] = None):
        self.events = events
        self.clock = clock or MonotonicClock()
        self._lock = threading.RLock()

    def ingest(self, batch: Iterable[AnalyticsEventPayload]) -> IngestResult:
        """
        Store each event whose eventId has not been seen before.

        Args:
            batch: Validated event payloads; an empty batch is a no-op

        Returns:
            IngestResult with counts of stored and skipped events
        """
        received = ingested = duplicates = 0
        with self._lock:
            now = self.clock()
            for payload in batch:
                received += 1
                if payload.event_id in self.events:
                    logger.info(f"Skipping duplicate analytics event: {payload.event_id}")
                    duplicates += 1
                    continue
                self.events.put(self._to_record(payload, now))
                ingested += 1

        record_analytics_ingestion(ingested, duplicates)
        logger.info(f"Analytics batch processed: received={received}, ingested={ingested}, duplicates={duplicates}")
        return IngestResult(received=received, ingested=ingested, duplicates=duplicates)

    def query(
        self,
        user_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        event_names: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> list[AnalyticsEvent]:
        """
        Events recorded for a user, newest first.

        Filters are independent predicates applied in order: inclusive
        start_date, inclusive end_date, event name allow-list (ignored when
        empty). An inverted date range simply matches nothing.
        """
        with self._lock:
            results = [event for event in self.events.values() if event.user_id == user_id]

        if start_date is not None:
            start_date = ensure_utc(start_date)
            results = [event for event in results if event.timestamp >= start_date]
            logger.debug(f"Applied start_date filter: {start_date.isoformat()}")

        if end_date is not None:
            end_date = ensure_utc(end_date)
            results = [event for event in results if event.timestamp <= end_date]
            logger.debug(f"Applied end_date filter: {end_date.isoformat()}")

        if event_names:
            allowed = set(event_names)
            results = [event for event in results if event.event_name in allowed]
            logger.debug(f"Applied event_names filter: {sorted(allowed)}")

        results.sort(key=lambda event: (event.timestamp, event.id), reverse=True)

        if limit is not None and limit > 0:
            results = results[:limit]

        return results

    def delete_for_user(self, user_id: str) -> int:
        """Erase every event recorded for a user. Returns the number removed."""
        with self._lock:
            doomed = [event.id for event in self.events.values() if event.user_id == user_id]
            removed = self.events.delete_many(doomed)

        record_analytics_deletion(removed)
        logger.info(f"Deleted {removed} analytics events for user {user_id}")
        return removed

    @staticmethod
    def _to_record(payload: AnalyticsEventPayload, created_at: datetime) -> AnalyticsEvent:
        identity = payload.identity
        return AnalyticsEvent(
            id=payload.event_id,
            user_id=identity.user_id or None,
            event_name=payload.event_name,
            event_properties=payload.properties,
            timestamp=ensure_utc(payload.timestamp),
            session_id=identity.session_id or None,
            device_id=identity.device_id or None,
            platform=payload.platform or None,
            app_version=payload.app_version or None,
            created_at=created_at,
        )
