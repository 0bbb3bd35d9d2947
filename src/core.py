"""EngagementCore: the single entry point callers use.

create_core() builds the engine, ensures the schema and wires every
component. Callers perform actor authorization before update_progress.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from src.completion.gate import AccessDecision, CompletionGate, CompletionStatus, FeedbackLookup
from src.config.settings import Settings
from src.infra.clock import Clock, utc_now
from src.infra.logging import setup_logging
from src.milestones.registry import MilestoneRegistry, build_default_registry
from src.milestones.validator import TransitionValidator
from src.progress.analytics import ClientProgressView, ProgressAnalytics, ProgressAnalyticsReader
from src.progress.contracts import Engagement, MilestoneTiming, ProgressEntry
from src.progress.database import create_db_engine, ensure_schema, make_session_factory
from src.progress.events import EventSink, LoggingEventSink
from src.progress.ledger import ProgressLedger
from src.progress.orchestrator import ProgressOrchestrator
from src.progress.stall import StallDetector, StalledEngagement
from src.progress.unit_of_work import sqlalchemy_uow_factory

logger = structlog.get_logger()


@dataclass
class EngagementCore:
    settings: Settings
    engine: AsyncEngine
    registry: MilestoneRegistry
    orchestrator: ProgressOrchestrator
    ledger: ProgressLedger
    gate: CompletionGate
    stall_detector: StallDetector
    analytics: ProgressAnalyticsReader

    async def create_engagement(
        self,
        engagement_id: str,
        client_id: str,
        actor_id: str,
        *,
        initial_value: int | None = None,
        start_date: datetime | None = None,
        messaging_allowed: bool = True,
        note: str | None = None,
    ) -> Engagement:
        return await self.orchestrator.create_engagement(
            engagement_id,
            client_id,
            actor_id,
            initial_value=initial_value,
            start_date=start_date,
            messaging_allowed=messaging_allowed,
            note=note,
        )

    async def get_engagement(self, engagement_id: str) -> Engagement:
        return await self.orchestrator.get_engagement(engagement_id)

    async def update_progress(
        self,
        engagement_id: str,
        new_value: int,
        actor_id: str,
        note: str | None = None,
        automatic: bool = False,
    ) -> Engagement:
        return await self.orchestrator.update_progress(
            engagement_id, new_value, actor_id, note=note, automatic=automatic
        )

    async def get_history(
        self, engagement_id: str, limit: int | None = None
    ) -> list[ProgressEntry]:
        return await self.ledger.history(engagement_id, limit)

    async def get_timeline(self, engagement_id: str) -> list[MilestoneTiming]:
        return await self.ledger.timeline(engagement_id)

    async def get_analytics(self, engagement_id: str) -> ProgressAnalytics:
        return await self.analytics.get_analytics(engagement_id)

    async def get_client_progress(
        self, engagement_id: str, client_id: str
    ) -> ClientProgressView:
        return await self.analytics.get_client_progress(engagement_id, client_id)

    async def reconcile_cache(self, engagement_id: str) -> bool:
        return await self.orchestrator.reconcile_cache(engagement_id)

    async def get_completion_status(self, engagement_id: str) -> CompletionStatus:
        return await self.gate.get_completion_status(engagement_id)

    async def get_access_mode(self, engagement_id: str) -> AccessDecision:
        return await self.gate.get_access_mode(engagement_id)

    async def can_access(self, engagement_id: str, actor_id: str) -> bool:
        return await self.gate.can_access(engagement_id, actor_id)

    async def is_messaging_allowed(self, engagement_id: str) -> bool:
        return await self.gate.is_messaging_allowed(engagement_id)

    async def find_needing_feedback(self) -> list[Engagement]:
        return await self.gate.find_needing_feedback()

    async def find_stalled(self, threshold_days: int | None = None) -> list[StalledEngagement]:
        if threshold_days is None:
            threshold_days = self.settings.stall.threshold_days
        return await self.stall_detector.find_stalled(threshold_days)

    async def sweep_stalled(self, threshold_days: int | None = None) -> list[StalledEngagement]:
        if threshold_days is None:
            threshold_days = self.settings.stall.threshold_days
        return await self.stall_detector.sweep(threshold_days)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("db_engine_disposed")


async def create_core(
    settings: Settings,
    *,
    feedback: FeedbackLookup,
    event_sink: EventSink | None = None,
    clock: Clock | None = None,
) -> EngagementCore:
    """Build a fully wired EngagementCore. Call close() on shutdown."""
    setup_logging(
        json_output=settings.logging.json_output,
        log_level=settings.logging.level,
    )
    clock = clock or utc_now
    sink = event_sink or LoggingEventSink()

    engine = await create_db_engine(settings.database)
    await ensure_schema(engine, settings.database.schema_)
    db_session_factory = make_session_factory(engine)
    logger.info("db_connected")

    registry = build_default_registry()
    ledger = ProgressLedger(db_session_factory, registry, settings.progress, clock=clock)
    orchestrator = ProgressOrchestrator(
        sqlalchemy_uow_factory(db_session_factory),
        registry,
        TransitionValidator(registry),
        ledger,
        settings.progress,
        event_sink=sink,
        clock=clock,
    )

    return EngagementCore(
        settings=settings,
        engine=engine,
        registry=registry,
        orchestrator=orchestrator,
        ledger=ledger,
        gate=CompletionGate(db_session_factory, feedback),
        stall_detector=StallDetector(db_session_factory, sink, clock=clock),
        analytics=ProgressAnalyticsReader(db_session_factory, ledger, registry, clock=clock),
    )
