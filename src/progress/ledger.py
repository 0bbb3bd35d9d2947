"""Progress ledger: append-only audit trail of accepted milestone transitions.

The ledger is the source of truth for history. Reads may join the caller's
unit of work (pass db=) or open their own short session. append() never
commits; the orchestrator commits the entry together with the engagement
mutation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infra.clock import Clock, elapsed_seconds, ensure_utc, utc_now
from src.infra.errors import InvalidRequest
from src.progress.contracts import MilestoneTiming, ProgressEntry
from src.progress.models import ProgressEntryRecord

if TYPE_CHECKING:
    from src.config.settings import ProgressSettings
    from src.milestones.registry import MilestoneRegistry

logger = structlog.get_logger()


def build_timeline(
    entries: Sequence[ProgressEntry],
    registry: MilestoneRegistry,
    now: datetime,
) -> list[MilestoneTiming]:
    """Annotate oldest-first entries with time held until the next entry.

    The last entry runs until now, unless it reached the terminal milestone.
    """
    timeline: list[MilestoneTiming] = []
    for index, entry in enumerate(entries):
        if index + 1 < len(entries):
            time_spent: int | None = elapsed_seconds(entry.created_at, entries[index + 1].created_at)
        elif registry.is_terminal(entry.to_value):
            time_spent = None
        else:
            time_spent = elapsed_seconds(entry.created_at, now)
        timeline.append(
            MilestoneTiming(
                milestone=entry.to_value,
                label=registry.label(entry.to_value),
                reached_at=entry.created_at,
                time_spent_s=time_spent,
            )
        )
    return timeline


class ProgressLedger:
    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        registry: MilestoneRegistry,
        settings: ProgressSettings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._db_factory = db_session_factory
        self._registry = registry
        self._settings = settings
        self._clock = clock

    @asynccontextmanager
    async def _reader(self, db: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        if db is not None:
            yield db
            return
        async with self._db_factory() as own:
            yield own

    def append(self, db: AsyncSession, entry: ProgressEntryRecord) -> None:
        """Stage a new entry in the caller's transaction. Committed by the caller."""
        db.add(entry)
        logger.debug(
            "ledger_entry_staged",
            engagement_id=entry.engagement_id,
            seq=entry.seq,
            from_value=entry.from_value,
            to_value=entry.to_value,
        )

    async def entries(
        self, engagement_id: str, *, db: AsyncSession | None = None
    ) -> list[ProgressEntry]:
        """All entries for an engagement, oldest first."""
        async with self._reader(db) as session:
            result = await session.execute(
                select(ProgressEntryRecord)
                .where(ProgressEntryRecord.engagement_id == engagement_id)
                .order_by(ProgressEntryRecord.seq)
            )
            return [ProgressEntry.from_record(r) for r in result.scalars().all()]

    async def history(
        self,
        engagement_id: str,
        limit: int | None = None,
        *,
        db: AsyncSession | None = None,
    ) -> list[ProgressEntry]:
        """Most recent entries first, bounded by the configured max limit."""
        if limit is None:
            limit = self._settings.history_default_limit
        if not 0 < limit <= self._settings.history_max_limit:
            raise InvalidRequest(
                f"History limit must be between 1 and {self._settings.history_max_limit} "
                f"(got {limit})"
            )
        async with self._reader(db) as session:
            result = await session.execute(
                select(ProgressEntryRecord)
                .where(ProgressEntryRecord.engagement_id == engagement_id)
                .order_by(ProgressEntryRecord.seq.desc())
                .limit(limit)
            )
            return [ProgressEntry.from_record(r) for r in result.scalars().all()]

    async def timeline(
        self, engagement_id: str, *, db: AsyncSession | None = None
    ) -> list[MilestoneTiming]:
        entries = await self.entries(engagement_id, db=db)
        return build_timeline(entries, self._registry, self._clock())

    async def time_at_milestone(
        self,
        engagement_id: str,
        milestone: int,
        *,
        db: AsyncSession | None = None,
    ) -> int | None:
        """Seconds held at a milestone, or None if it was never reached.

        Measured from the first entry that reached the milestone to the next
        entry leaving it; runs until now while the engagement still sits there.
        """
        async with self._reader(db) as session:
            reached = (
                await session.execute(
                    select(ProgressEntryRecord.seq, ProgressEntryRecord.created_at)
                    .where(
                        ProgressEntryRecord.engagement_id == engagement_id,
                        ProgressEntryRecord.to_value == milestone,
                    )
                    .order_by(ProgressEntryRecord.seq)
                    .limit(1)
                )
            ).one_or_none()
            if reached is None:
                return None

            left_at = (
                await session.execute(
                    select(ProgressEntryRecord.created_at)
                    .where(
                        ProgressEntryRecord.engagement_id == engagement_id,
                        ProgressEntryRecord.from_value == milestone,
                        ProgressEntryRecord.seq > reached.seq,
                    )
                    .order_by(ProgressEntryRecord.seq)
                    .limit(1)
                )
            ).scalar_one_or_none()

        end = ensure_utc(left_at) if left_at is not None else self._clock()
        return elapsed_seconds(reached.created_at, end)
