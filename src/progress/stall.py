"""Stall detector: read-only sweep for active engagements with no recent progress.

Activity is read from the ledger (latest entry per engagement), falling back
to the engagement's creation time when it has no entries yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infra.clock import Clock, elapsed_seconds, ensure_utc, utc_now
from src.progress.events import EngagementStalled, EventSink
from src.progress.models import EngagementRecord, ProgressEntryRecord

logger = structlog.get_logger()

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class StalledEngagement:
    engagement_id: str
    current_milestone: int
    last_activity_at: datetime
    total_history_count: int


class StallDetector:
    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        event_sink: EventSink,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._db_factory = db_session_factory
        self._event_sink = event_sink
        self._clock = clock

    async def find_stalled(self, threshold_days: int) -> list[StalledEngagement]:
        """Active, non-completed engagements idle for longer than threshold_days.

        Ordered by last activity, oldest first.
        """
        if threshold_days <= 0:
            raise ValueError(f"threshold_days must be positive, got {threshold_days}")

        cutoff = self._clock() - timedelta(days=threshold_days)
        activity = (
            select(
                ProgressEntryRecord.engagement_id,
                func.max(ProgressEntryRecord.created_at).label("last_entry_at"),
                func.count(ProgressEntryRecord.id).label("entry_count"),
            )
            .group_by(ProgressEntryRecord.engagement_id)
            .subquery()
        )
        last_activity = func.coalesce(activity.c.last_entry_at, EngagementRecord.created_at)
        stmt = (
            select(
                EngagementRecord.id,
                EngagementRecord.current_milestone,
                last_activity.label("last_activity_at"),
                func.coalesce(activity.c.entry_count, 0).label("total_history_count"),
            )
            .outerjoin(activity, activity.c.engagement_id == EngagementRecord.id)
            .where(
                EngagementRecord.is_active.is_(True),
                EngagementRecord.completed.is_(False),
                last_activity < cutoff,
            )
            .order_by(last_activity, EngagementRecord.id)
        )

        async with self._db_factory() as db:
            rows = (await db.execute(stmt)).all()

        stalled = [
            StalledEngagement(
                engagement_id=row.id,
                current_milestone=row.current_milestone,
                last_activity_at=ensure_utc(row.last_activity_at),
                total_history_count=row.total_history_count,
            )
            for row in rows
        ]
        logger.info(
            "stalled_engagements_found",
            threshold_days=threshold_days,
            count=len(stalled),
        )
        return stalled

    async def sweep(self, threshold_days: int) -> list[StalledEngagement]:
        """Find stalled engagements and publish one EngagementStalled event each.

        Publishing is best-effort; a failing sink does not stop the sweep.
        """
        stalled = await self.find_stalled(threshold_days)
        now = self._clock()
        for item in stalled:
            event = EngagementStalled(
                engagement_id=item.engagement_id,
                current_milestone=item.current_milestone,
                last_activity_at=item.last_activity_at,
                idle_days=elapsed_seconds(item.last_activity_at, now) // _SECONDS_PER_DAY,
            )
            try:
                await self._event_sink.publish(event)
            except Exception:
                logger.exception("stall_event_failed", engagement_id=item.engagement_id)
        return stalled
