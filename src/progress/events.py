"""Outbound progress events and the notification sink contract.

The core never sends notifications itself. It publishes events to an
EventSink after commit; delivery is best-effort and failures never roll
back progress.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class EngagementCompleted:
    engagement_id: str
    client_id: str
    completed_at: datetime
    actor_id: str


@dataclass(frozen=True)
class EngagementStalled:
    engagement_id: str
    current_milestone: int
    last_activity_at: datetime
    idle_days: int


ProgressEvent = EngagementCompleted | EngagementStalled


class EventSink(Protocol):
    async def publish(self, event: ProgressEvent) -> None: ...


class LoggingEventSink:
    """Default sink when no notification collaborator is wired: log the event."""

    async def publish(self, event: ProgressEvent) -> None:
        if isinstance(event, EngagementCompleted):
            logger.info(
                "engagement_completed_event",
                engagement_id=event.engagement_id,
                client_id=event.client_id,
                completed_at=event.completed_at.isoformat(),
                actor_id=event.actor_id,
            )
        else:
            logger.warning(
                "engagement_stalled_event",
                engagement_id=event.engagement_id,
                current_milestone=event.current_milestone,
                last_activity_at=event.last_activity_at.isoformat(),
                idle_days=event.idle_days,
            )
