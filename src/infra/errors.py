"""Custom exception hierarchy for the engagement progress core.

All application-specific exceptions inherit from EngagementCoreError,
which carries an error code, an HTTP-equivalent status for the calling
layer, and whether the caller may safely retry.
"""

from __future__ import annotations

from collections.abc import Iterable


class EngagementCoreError(Exception):
    """Base exception for all engagement core errors."""

    http_status = 500
    retryable = False

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class EngagementNotFound(EngagementCoreError):
    http_status = 404

    def __init__(self, engagement_id: str) -> None:
        super().__init__(f"Engagement not found: {engagement_id}", code="ENGAGEMENT_NOT_FOUND")
        self.engagement_id = engagement_id


class EngagementExists(EngagementCoreError):
    http_status = 409

    def __init__(self, engagement_id: str) -> None:
        super().__init__(f"Engagement already exists: {engagement_id}", code="ENGAGEMENT_EXISTS")
        self.engagement_id = engagement_id


class InvalidRequest(EngagementCoreError):
    """Malformed input that the caller must correct (bad note, bad limit)."""

    http_status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_REQUEST")


class InvalidTransition(EngagementCoreError):
    """A requested milestone change was rejected by the transition rules.

    Raised before any mutation; safe to retry with corrected input.
    """

    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        code: str = "INVALID_TRANSITION",
        current: int | None = None,
        requested: object = None,
        allowed_next: Iterable[int] = (),
    ) -> None:
        super().__init__(message, code=code)
        self.current = current
        self.requested = requested
        self.allowed_next = tuple(allowed_next)


class InvalidMilestoneValue(InvalidTransition):
    def __init__(self, message: str, **kwargs: object) -> None:
        super().__init__(message, code="INVALID_MILESTONE_VALUE", **kwargs)


class RegressionNotAllowed(InvalidTransition):
    def __init__(self, message: str, **kwargs: object) -> None:
        super().__init__(message, code="REGRESSION_NOT_ALLOWED", **kwargs)


class MustReachFinalStageFirst(InvalidTransition):
    def __init__(self, message: str, **kwargs: object) -> None:
        super().__init__(message, code="MUST_REACH_FINAL_STAGE_FIRST", **kwargs)


class TransactionAborted(EngagementCoreError):
    """The unit of work was rolled back; no partial state exists."""

    retryable = True

    def __init__(self, message: str = "Progress transaction aborted") -> None:
        super().__init__(message, code="TRANSACTION_ABORTED")


class NotCompleted(EngagementCoreError):
    """Feedback-gated operation requested for an engagement that is still in progress."""

    http_status = 409

    def __init__(self, engagement_id: str) -> None:
        super().__init__(
            f"Engagement {engagement_id} is not completed yet", code="NOT_COMPLETED"
        )
        self.engagement_id = engagement_id


class AccessDenied(EngagementCoreError):
    """Operation blocked by the completion gate (feedback, read-only, messaging)."""

    http_status = 403

    def __init__(self, message: str, *, code: str) -> None:
        super().__init__(message, code=code)
