"""Completion/access gate: what a client may do, derived from completion state.

Access mode is never stored. It is derived on demand from the engagement's
completed flag and whether feedback exists (answered by a FeedbackLookup
collaborator), so it cannot drift from the progress state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infra.errors import AccessDenied, EngagementNotFound, NotCompleted
from src.progress.contracts import Engagement
from src.progress.models import EngagementRecord

logger = structlog.get_logger()


class AccessMode(StrEnum):
    full = "full"
    feedback_required = "feedback-required"
    read_only = "read-only"


class Operation(StrEnum):
    read = "read"
    write = "write"
    submit_feedback = "submit_feedback"
    view_feedback = "view_feedback"


class FeedbackLookup(Protocol):
    async def has_feedback(self, engagement_id: str) -> bool: ...


_MODE_MESSAGES: dict[AccessMode, str] = {
    AccessMode.full: "Full engagement access",
    AccessMode.feedback_required: "Please submit your feedback to continue",
    AccessMode.read_only: "Engagement completed - read-only access",
}

_ALLOWED_OPERATIONS: dict[AccessMode, frozenset[Operation]] = {
    AccessMode.full: frozenset(Operation),
    AccessMode.feedback_required: frozenset({Operation.submit_feedback}),
    AccessMode.read_only: frozenset({Operation.read, Operation.view_feedback}),
}


def derive_access_mode(completed: bool, has_feedback: bool) -> AccessMode:
    if not completed:
        return AccessMode.full
    if not has_feedback:
        return AccessMode.feedback_required
    return AccessMode.read_only


@dataclass(frozen=True)
class CompletionStatus:
    completed: bool
    has_feedback: bool
    can_access: bool
    access_mode: AccessMode
    completed_at: datetime | None = None


@dataclass(frozen=True)
class AccessDecision:
    mode: AccessMode
    message: str


class CompletionGate:
    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        feedback: FeedbackLookup,
    ) -> None:
        self._db_factory = db_session_factory
        self._feedback = feedback

    async def _load(self, engagement_id: str) -> Engagement | None:
        async with self._db_factory() as db:
            record = await db.get(EngagementRecord, engagement_id)
            return Engagement.from_record(record) if record is not None else None

    async def _require(self, engagement_id: str) -> Engagement:
        engagement = await self._load(engagement_id)
        if engagement is None:
            raise EngagementNotFound(engagement_id)
        return engagement

    async def _mode_for(self, engagement: Engagement) -> tuple[AccessMode, bool]:
        # Feedback is irrelevant before completion; skip the lookup
        if not engagement.completed:
            return AccessMode.full, False
        has_feedback = await self._feedback.has_feedback(engagement.id)
        return derive_access_mode(True, has_feedback), has_feedback

    async def get_completion_status(self, engagement_id: str) -> CompletionStatus:
        engagement = await self._require(engagement_id)
        has_feedback = await self._feedback.has_feedback(engagement_id)
        mode = derive_access_mode(engagement.completed, has_feedback)
        return CompletionStatus(
            completed=engagement.completed,
            has_feedback=has_feedback,
            can_access=mode is not AccessMode.feedback_required,
            access_mode=mode,
            completed_at=engagement.completed_at,
        )

    async def get_access_mode(self, engagement_id: str) -> AccessDecision:
        engagement = await self._require(engagement_id)
        mode, _ = await self._mode_for(engagement)
        return AccessDecision(mode=mode, message=_MODE_MESSAGES[mode])

    async def can_access(self, engagement_id: str, actor_id: str) -> bool:
        """Whether the client may open the engagement dashboard.

        Unknown engagements and other clients' engagements are simply denied.
        """
        engagement = await self._load(engagement_id)
        if engagement is None or engagement.client_id != actor_id:
            return False
        mode, _ = await self._mode_for(engagement)
        return mode is not AccessMode.feedback_required

    async def is_messaging_allowed(self, engagement_id: str) -> bool:
        engagement = await self._load(engagement_id)
        if engagement is None:
            return False
        return not engagement.completed and engagement.messaging_allowed

    async def check_operation(self, engagement_id: str, operation: Operation | str) -> None:
        """Raise AccessDenied if the engagement's access mode forbids the operation."""
        operation = Operation(operation)
        engagement = await self._require(engagement_id)
        mode, _ = await self._mode_for(engagement)
        if operation in _ALLOWED_OPERATIONS[mode]:
            return

        logger.info(
            "operation_denied",
            engagement_id=engagement_id,
            operation=operation.value,
            access_mode=mode.value,
        )
        if mode is AccessMode.feedback_required:
            raise AccessDenied("Feedback required to continue", code="FEEDBACK_REQUIRED")
        raise AccessDenied("Engagement is in read-only mode", code="READ_ONLY")

    async def require_messaging_allowed(self, engagement_id: str) -> None:
        if not await self.is_messaging_allowed(engagement_id):
            raise AccessDenied(
                "Messaging is disabled for this engagement", code="MESSAGING_DISABLED"
            )

    async def require_completed(self, engagement_id: str) -> Engagement:
        """Guard for feedback submission: the engagement must be completed."""
        engagement = await self._require(engagement_id)
        if not engagement.completed:
            raise NotCompleted(engagement_id)
        return engagement

    async def find_needing_feedback(self) -> list[Engagement]:
        """Completed engagements still waiting for client feedback, oldest completion first."""
        async with self._db_factory() as db:
            result = await db.execute(
                select(EngagementRecord)
                .where(EngagementRecord.completed.is_(True))
                .order_by(EngagementRecord.completed_at, EngagementRecord.id)
            )
            completed = [Engagement.from_record(r) for r in result.scalars().all()]

        return [e for e in completed if not await self._feedback.has_feedback(e.id)]
