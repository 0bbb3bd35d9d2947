"""Tests for the EngagementCore facade and create_core wiring (SQLite backend)."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from src.completion.gate import AccessMode
from src.config.settings import DatabaseSettings, LoggingSettings, Settings
from src.core import EngagementCore, create_core
from src.infra.errors import InvalidRequest
from src.progress.events import EngagementCompleted, LoggingEventSink


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(
            driver="sqlite+aiosqlite", sqlite_path=tmp_path / "data" / "core.db"
        ),
        logging=LoggingSettings(json_output=False, level="WARNING"),
    )


@pytest.fixture
def feedback() -> AsyncMock:
    lookup = AsyncMock()
    lookup.has_feedback = AsyncMock(return_value=False)
    return lookup


@pytest_asyncio.fixture
async def core(settings, feedback, event_sink, clock):
    with patch("src.core.setup_logging") as setup:
        engine_core = await create_core(
            settings, feedback=feedback, event_sink=event_sink, clock=clock
        )
    setup.assert_called_once_with(json_output=False, log_level="WARNING")
    yield engine_core
    await engine_core.close()


class TestCreateCore:
    @pytest.mark.asyncio
    async def test_creates_sqlite_file(self, core: EngagementCore, settings: Settings) -> None:
        assert settings.database.sqlite_path.exists()
        assert core.registry.terminal_value == 100

    @pytest.mark.asyncio
    async def test_default_sink_is_logging(self, settings, feedback) -> None:
        with patch("src.core.setup_logging", MagicMock()):
            engine_core = await create_core(settings, feedback=feedback)
        try:
            assert isinstance(engine_core.stall_detector._event_sink, LoggingEventSink)
        finally:
            await engine_core.close()


class TestFacadeFlow:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, core: EngagementCore, feedback, event_sink, clock) -> None:
        await core.create_engagement("e1", "client-1", "admin-1")
        assert await core.is_messaging_allowed("e1") is True
        assert (await core.get_access_mode("e1")).mode is AccessMode.full

        for value in (25, 50, 75, 90):
            clock.advance(days=1)
            await core.update_progress("e1", value, "admin-1", note=f"reached {value}")
        clock.advance(days=1)
        engagement = await core.update_progress("e1", 100, "admin-1")

        assert engagement.completed is True
        assert isinstance(event_sink.publish.await_args.args[0], EngagementCompleted)
        assert await core.is_messaging_allowed("e1") is False
        assert await core.can_access("e1", "client-1") is False
        assert (await core.get_access_mode("e1")).mode is AccessMode.feedback_required
        assert [e.id for e in await core.find_needing_feedback()] == ["e1"]

        feedback.has_feedback.return_value = True
        assert (await core.get_access_mode("e1")).mode is AccessMode.read_only
        assert await core.can_access("e1", "client-1") is True
        status = await core.get_completion_status("e1")
        assert status.has_feedback is True

        history = await core.get_history("e1", limit=2)
        assert [e.to_value for e in history] == [100, 90]
        timeline = await core.get_timeline("e1")
        assert [t.time_spent_s for t in timeline] == [86400] * 5 + [None]

        analytics = await core.get_analytics("e1")
        assert analytics.total_duration_s == 5 * 86400
        assert analytics.total_updates == 6
        view = await core.get_client_progress("e1", "client-1")
        assert view.completed is True
        assert [m.milestone for m in view.timeline] == [10, 25, 50, 75, 90, 100]

        assert await core.reconcile_cache("e1") is False

    @pytest.mark.asyncio
    async def test_find_stalled_uses_configured_threshold(
        self, core: EngagementCore, clock
    ) -> None:
        await core.create_engagement("e1", "client-1", "admin-1")
        clock.advance(days=6)
        assert await core.find_stalled() == []
        clock.advance(days=2)
        assert [s.engagement_id for s in await core.find_stalled()] == ["e1"]
        assert await core.find_stalled(threshold_days=30) == []

    @pytest.mark.asyncio
    async def test_sweep_publishes(self, core: EngagementCore, event_sink, clock) -> None:
        await core.create_engagement("e1", "client-1", "admin-1")
        clock.advance(days=8)
        stalled = await core.sweep_stalled()
        assert len(stalled) == 1
        event_sink.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_history_limit_enforced(self, core: EngagementCore) -> None:
        await core.create_engagement("e1", "client-1", "admin-1")
        with pytest.raises(InvalidRequest):
            await core.get_history("e1", limit=10_000)

    @pytest.mark.asyncio
    async def test_create_options_forwarded(self, core: EngagementCore, clock) -> None:
        start = clock() - timedelta(days=3)
        engagement = await core.create_engagement(
            "e1",
            "client-1",
            "admin-1",
            initial_value=25,
            start_date=start,
            messaging_allowed=False,
            note="migrated",
        )

        assert engagement.current_milestone == 25
        assert engagement.start_date == start
        assert engagement.messaging_allowed is False
        assert (await core.get_history("e1"))[0].note == "migrated"
