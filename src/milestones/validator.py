"""Transition validator: decides whether a requested milestone change is legal.

Pure computation with no side effects. The orchestrator turns a rejected
result into the matching InvalidTransition subclass.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from src.infra.errors import (
    InvalidMilestoneValue,
    InvalidTransition,
    MustReachFinalStageFirst,
    RegressionNotAllowed,
)
from src.milestones.registry import MilestoneRegistry


class TransitionRejection(StrEnum):
    invalid_value = "invalid_value"
    regression = "regression"
    final_stage_required = "final_stage_required"


_ERRORS: dict[TransitionRejection, type[InvalidTransition]] = {
    TransitionRejection.invalid_value: InvalidMilestoneValue,
    TransitionRejection.regression: RegressionNotAllowed,
    TransitionRejection.final_stage_required: MustReachFinalStageFirst,
}


@dataclass(frozen=True)
class TransitionResult:
    allowed: bool
    reason: str = ""
    rejection: TransitionRejection | None = None
    allowed_next: tuple[int, ...] = ()
    noop: bool = False  # requested == current

    def to_error(self, current: int, requested: object) -> InvalidTransition:
        if self.allowed or self.rejection is None:
            raise ValueError("Cannot build an error from an accepted transition")
        return _ERRORS[self.rejection](
            self.reason,
            current=current,
            requested=requested,
            allowed_next=self.allowed_next,
        )


class TransitionValidator:
    """Checks requested milestone changes against the registry rules.

    Rules, in order:
    1. Requested value must be a registry member
    2. Progress never decreases
    3. The terminal milestone requires being at the penultimate one
    4. Same-value requests pass as a no-op
    """

    def __init__(self, registry: MilestoneRegistry) -> None:
        self._registry = registry

    def validate(self, current: int, requested: object) -> TransitionResult:
        registry = self._registry
        if isinstance(requested, int) and registry.is_valid(requested):
            return self._check_move(current, requested)

        allowed = ", ".join(str(v) for v in registry.values)
        return TransitionResult(
            allowed=False,
            reason=f"Invalid milestone value. Allowed values: {allowed}",
            rejection=TransitionRejection.invalid_value,
            allowed_next=registry.values,
        )

    def _check_move(self, current: int, requested: int) -> TransitionResult:
        registry = self._registry

        if requested < current:
            return TransitionResult(
                allowed=False,
                reason="Progress cannot be decreased. Milestones must move forward.",
                rejection=TransitionRejection.regression,
                allowed_next=registry.greater_than(current),
            )

        terminal = registry.terminal_value
        penultimate = registry.penultimate_value
        if requested == terminal and current != penultimate:
            return TransitionResult(
                allowed=False,
                reason=f"Cannot skip to {terminal}%. Must reach {penultimate}% first.",
                rejection=TransitionRejection.final_stage_required,
                allowed_next=(penultimate,),
            )

        if requested == current:
            return TransitionResult(allowed=True, reason="Already at this milestone", noop=True)

        return TransitionResult(allowed=True)
