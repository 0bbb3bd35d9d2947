"""Tests for progress analytics built from the ledger."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.infra.errors import AccessDenied, EngagementNotFound
from src.progress.analytics import ProgressAnalyticsReader, build_analytics
from src.progress.contracts import ActorKind, Engagement, ProgressEntry


@pytest.fixture
def reader(session_factory, ledger, registry, clock) -> ProgressAnalyticsReader:
    return ProgressAnalyticsReader(session_factory, ledger, registry, clock=clock)


def _entry(seq: int, to_value: int, at) -> ProgressEntry:
    return ProgressEntry(
        id=f"entry-{seq}",
        engagement_id="e1",
        seq=seq,
        actor_id="admin-1",
        actor_kind=ActorKind.operator,
        from_value=None,
        to_value=to_value,
        time_at_prior_milestone_s=None,
        note=None,
        automatic=False,
        snapshot=None,
        created_at=at,
    )


class TestGetAnalytics:
    @pytest.mark.asyncio
    async def test_completed_engagement(self, reader, orchestrator, clock) -> None:
        start = clock()
        await orchestrator.create_engagement("e1", "client-1", "admin-1", initial_value=80)
        clock.advance(hours=5)
        await orchestrator.update_progress("e1", 90, "admin-1")
        clock.advance(hours=3)
        await orchestrator.update_progress("e1", 100, "admin-1")
        clock.advance(days=1)

        analytics = await reader.get_analytics("e1")

        assert analytics.current_milestone == 100
        assert analytics.completed is True
        assert analytics.start_date == start
        assert analytics.completed_at == start + timedelta(hours=8)
        assert analytics.total_duration_s == 8 * 3600
        assert analytics.total_updates == 3
        assert analytics.average_time_per_milestone == {
            "Almost Done": 5 * 3600,
            "Final Stage": 3 * 3600,
        }
        assert [t.milestone for t in analytics.timeline] == [80, 90, 100]
        assert analytics.timeline[-1].time_spent_s is None

    @pytest.mark.asyncio
    async def test_in_progress_has_no_duration(self, reader, orchestrator, clock) -> None:
        await orchestrator.create_engagement("e1", "client-1", "admin-1")
        clock.advance(minutes=10)

        analytics = await reader.get_analytics("e1")

        assert analytics.total_duration_s is None
        assert analytics.total_updates == 1
        assert analytics.average_time_per_milestone == {}
        assert analytics.timeline[0].time_spent_s == 600

    @pytest.mark.asyncio
    async def test_unknown_engagement(self, reader) -> None:
        with pytest.raises(EngagementNotFound):
            await reader.get_analytics("missing")


class TestClientProgress:
    @pytest.mark.asyncio
    async def test_omits_durations(self, reader, orchestrator, clock) -> None:
        start = clock()
        await orchestrator.create_engagement("e1", "client-1", "admin-1", initial_value=80)
        clock.advance(hours=5)
        await orchestrator.update_progress("e1", 90, "admin-1")

        view = await reader.get_client_progress("e1", "client-1")

        assert view.current_milestone == 90
        assert view.completed is False
        assert view.start_date == start
        assert view.completed_at is None
        assert [(m.milestone, m.reached_at) for m in view.timeline] == [
            (80, start),
            (90, start + timedelta(hours=5)),
        ]
        assert not hasattr(view.timeline[0], "time_spent_s")

    @pytest.mark.asyncio
    async def test_other_client_denied(self, reader, orchestrator) -> None:
        await orchestrator.create_engagement("e1", "client-1", "admin-1")

        with pytest.raises(AccessDenied) as exc_info:
            await reader.get_client_progress("e1", "client-2")

        assert exc_info.value.code == "NOT_ENGAGEMENT_CLIENT"

    @pytest.mark.asyncio
    async def test_unknown_engagement(self, reader) -> None:
        with pytest.raises(EngagementNotFound):
            await reader.get_client_progress("missing", "client-1")


class TestBuildAnalytics:
    def test_averages_repeated_milestones_round_half_up(self, registry, clock) -> None:
        t0 = clock()
        engagement = Engagement(
            id="e1",
            client_id="client-1",
            current_milestone=30,
            completed=False,
            completed_at=None,
            messaging_allowed=True,
            is_active=True,
            start_date=t0,
            created_at=t0,
            updated_at=t0,
        )
        # Two stays recorded at 20 (e.g. imported history): 3s and 4s
        entries = [
            _entry(0, 20, t0),
            _entry(1, 20, t0 + timedelta(seconds=3)),
            _entry(2, 30, t0 + timedelta(seconds=7)),
        ]

        analytics = build_analytics(engagement, entries, registry, t0 + timedelta(seconds=10))

        assert analytics.average_time_per_milestone == {"Early Progress": 4}
        assert analytics.total_updates == 3
