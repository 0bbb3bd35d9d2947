"""Tests for ProgressLedger reads and the append-only guarantee."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import select

from src.infra.errors import InvalidRequest
from src.progress.contracts import ProgressEntry
from src.progress.ledger import build_timeline
from src.progress.models import ProgressEntryRecord


@pytest_asyncio.fixture
async def walked(orchestrator, clock):
    """e1: created at T0, 20 after 1h, 30 after 3h; clock left at 3h30m."""
    await orchestrator.create_engagement("e1", "client-1", "admin-1")
    clock.advance(hours=1)
    await orchestrator.update_progress("e1", 20, "admin-1")
    clock.advance(hours=2)
    await orchestrator.update_progress("e1", 30, "admin-1")
    clock.advance(minutes=30)
    return "e1"


class TestHistory:
    @pytest.mark.asyncio
    async def test_newest_first(self, ledger, walked) -> None:
        history = await ledger.history(walked)
        assert [e.to_value for e in history] == [30, 20, 10]
        assert [e.seq for e in history] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_limit(self, ledger, walked) -> None:
        history = await ledger.history(walked, limit=2)
        assert [e.to_value for e in history] == [30, 20]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, 501])
    async def test_limit_out_of_range(self, ledger, walked, limit: int) -> None:
        with pytest.raises(InvalidRequest, match="between 1 and 500"):
            await ledger.history(walked, limit=limit)

    @pytest.mark.asyncio
    async def test_unknown_engagement_is_empty(self, ledger) -> None:
        assert await ledger.history("missing") == []

    @pytest.mark.asyncio
    async def test_entries_oldest_first(self, ledger, walked) -> None:
        entries = await ledger.entries(walked)
        assert [e.to_value for e in entries] == [10, 20, 30]
        assert all(isinstance(e, ProgressEntry) for e in entries)


class TestTimeline:
    @pytest.mark.asyncio
    async def test_time_spent_per_milestone(self, ledger, walked, registry) -> None:
        timeline = await ledger.timeline(walked)

        assert [(t.milestone, t.time_spent_s) for t in timeline] == [
            (10, 3600),
            (20, 7200),
            (30, 1800),
        ]
        assert timeline[1].label == registry.label(20)

    @pytest.mark.asyncio
    async def test_terminal_has_no_running_time(self, orchestrator, ledger, clock) -> None:
        await orchestrator.create_engagement("e1", "client-1", "admin-1", initial_value=90)
        clock.advance(hours=1)
        await orchestrator.update_progress("e1", 100, "admin-1")
        clock.advance(days=3)

        timeline = await ledger.timeline("e1")
        assert [(t.milestone, t.time_spent_s) for t in timeline] == [(90, 3600), (100, None)]

    def test_build_timeline_empty(self, registry, clock) -> None:
        assert build_timeline([], registry, clock()) == []


class TestTimeAtMilestone:
    @pytest.mark.asyncio
    async def test_completed_stay(self, ledger, walked) -> None:
        assert await ledger.time_at_milestone(walked, 10) == 3600
        assert await ledger.time_at_milestone(walked, 20) == 7200

    @pytest.mark.asyncio
    async def test_current_stay_runs_until_now(self, ledger, walked, clock) -> None:
        assert await ledger.time_at_milestone(walked, 30) == 1800
        clock.advance(seconds=90)
        assert await ledger.time_at_milestone(walked, 30) == 1890

    @pytest.mark.asyncio
    async def test_never_reached(self, ledger, walked) -> None:
        assert await ledger.time_at_milestone(walked, 50) is None

    @pytest.mark.asyncio
    async def test_fractional_seconds_floored(self, orchestrator, ledger, clock) -> None:
        await orchestrator.create_engagement("e1", "client-1", "admin-1")
        clock.advance(seconds=59, milliseconds=999)
        assert await ledger.time_at_milestone("e1", 10) == 59


class TestAppendOnly:
    @pytest.mark.asyncio
    async def test_update_refused(self, session_factory, walked) -> None:
        async with session_factory() as db:
            record = (await db.execute(select(ProgressEntryRecord).limit(1))).scalar_one()
            record.note = "rewritten"
            with pytest.raises(RuntimeError, match="append-only"):
                await db.commit()

    @pytest.mark.asyncio
    async def test_delete_refused(self, session_factory, walked) -> None:
        async with session_factory() as db:
            record = (await db.execute(select(ProgressEntryRecord).limit(1))).scalar_one()
            await db.delete(record)
            with pytest.raises(RuntimeError, match="append-only"):
                await db.commit()
