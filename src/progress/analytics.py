"""Per-engagement progress analytics derived from the ledger."""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infra.clock import Clock, elapsed_seconds, utc_now
from src.infra.errors import AccessDenied, EngagementNotFound
from src.progress.contracts import Engagement, MilestoneTiming, ProgressEntry
from src.progress.ledger import build_timeline
from src.progress.models import EngagementRecord

if TYPE_CHECKING:
    from src.milestones.registry import MilestoneRegistry
    from src.progress.ledger import ProgressLedger


@dataclass(frozen=True)
class ProgressAnalytics:
    current_milestone: int
    completed: bool
    completed_at: datetime | None
    start_date: datetime
    total_duration_s: int | None
    total_updates: int
    average_time_per_milestone: dict[str, int] = field(default_factory=dict)
    timeline: list[MilestoneTiming] = field(default_factory=list)

    def client_view(self) -> ClientProgressView:
        return ClientProgressView(
            current_milestone=self.current_milestone,
            completed=self.completed,
            start_date=self.start_date,
            completed_at=self.completed_at,
            timeline=[
                ClientMilestone(t.milestone, t.label, t.reached_at) for t in self.timeline
            ],
        )


@dataclass(frozen=True)
class ClientMilestone:
    milestone: int
    label: str
    reached_at: datetime


@dataclass(frozen=True)
class ClientProgressView:
    """What a client sees of its own engagement: no durations or update counts."""

    current_milestone: int
    completed: bool
    start_date: datetime
    completed_at: datetime | None
    timeline: list[ClientMilestone] = field(default_factory=list)


def build_analytics(
    engagement: Engagement,
    entries: Sequence[ProgressEntry],
    registry: MilestoneRegistry,
    now: datetime,
) -> ProgressAnalytics:
    """Summarize oldest-first ledger entries for one engagement.

    Time at a milestone is measured to the following entry, so the latest
    entry does not contribute to the averages. Averages round half up.
    """
    durations: dict[int, list[int]] = defaultdict(list)
    for entry, following in zip(entries, entries[1:]):
        durations[entry.to_value].append(elapsed_seconds(entry.created_at, following.created_at))

    averages = {
        registry.label(value): math.floor(sum(times) / len(times) + 0.5)
        for value, times in sorted(durations.items())
    }

    total_duration: int | None = None
    if engagement.completed and engagement.completed_at is not None:
        total_duration = elapsed_seconds(engagement.start_date, engagement.completed_at)

    return ProgressAnalytics(
        current_milestone=engagement.current_milestone,
        completed=engagement.completed,
        completed_at=engagement.completed_at,
        start_date=engagement.start_date,
        total_duration_s=total_duration,
        total_updates=len(entries),
        average_time_per_milestone=averages,
        timeline=build_timeline(entries, registry, now),
    )


class ProgressAnalyticsReader:
    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        ledger: ProgressLedger,
        registry: MilestoneRegistry,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._db_factory = db_session_factory
        self._ledger = ledger
        self._registry = registry
        self._clock = clock

    async def get_analytics(self, engagement_id: str) -> ProgressAnalytics:
        async with self._db_factory() as db:
            record = await db.get(EngagementRecord, engagement_id)
            if record is None:
                raise EngagementNotFound(engagement_id)
            engagement = Engagement.from_record(record)
            entries = await self._ledger.entries(engagement_id, db=db)
        return build_analytics(engagement, entries, self._registry, self._clock())

    async def get_client_progress(self, engagement_id: str, client_id: str) -> ClientProgressView:
        """Client-facing projection of get_analytics.

        Raises:
            EngagementNotFound: unknown engagement.
            AccessDenied: the engagement belongs to another client.
        """
        async with self._db_factory() as db:
            record = await db.get(EngagementRecord, engagement_id)
            if record is None:
                raise EngagementNotFound(engagement_id)
            if record.client_id != client_id:
                raise AccessDenied(
                    "You do not have access to this engagement", code="NOT_ENGAGEMENT_CLIENT"
                )
            engagement = Engagement.from_record(record)
            entries = await self._ledger.entries(engagement_id, db=db)
        analytics = build_analytics(engagement, entries, self._registry, self._clock())
        return analytics.client_view()
