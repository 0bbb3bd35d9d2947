"""Milestone registry: the fixed, ordered progress scale and its transition graph.

The graph is hand-declared rather than computed. Every non-terminal milestone
may skip forward to several larger values, but the terminal milestone is
reachable only from the single penultimate one. Construct the registry once at
startup (build_default_registry) and inject it; it is immutable.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum


class MilestoneCategory(StrEnum):
    early = "early"
    mid = "mid"
    late = "late"
    completion = "completion"


@dataclass(frozen=True)
class Milestone:
    """Immutable catalogue entry for one progress value."""

    value: int
    label: str
    description: str
    category: MilestoneCategory
    transitions: frozenset[int]
    automatic: bool = False  # set by the system rather than an operator


class MilestoneRegistry:
    """Read-only lookup over a validated milestone catalogue."""

    def __init__(self, milestones: Iterable[Milestone]) -> None:
        by_value: dict[int, Milestone] = {}
        for milestone in milestones:
            if milestone.value in by_value:
                raise ValueError(f"Duplicate milestone value: {milestone.value}")
            by_value[milestone.value] = milestone
        if len(by_value) < 2:
            raise ValueError("Registry needs at least a starting and a terminal milestone")

        self._by_value = by_value
        self._values: tuple[int, ...] = tuple(sorted(by_value))
        self._validate_graph()

    def _validate_graph(self) -> None:
        terminal = self.terminal_value
        penultimate = self.penultimate_value
        for milestone in self._by_value.values():
            for target in milestone.transitions:
                if target not in self._by_value:
                    raise ValueError(
                        f"Milestone {milestone.value} declares unknown target {target}"
                    )
                if target <= milestone.value:
                    raise ValueError(
                        f"Milestone {milestone.value} declares non-forward target {target}"
                    )
                if target == terminal and milestone.value != penultimate:
                    raise ValueError(
                        f"Terminal milestone {terminal} must only be reachable from "
                        f"{penultimate}, not {milestone.value}"
                    )
        if self._by_value[terminal].transitions:
            raise ValueError(f"Terminal milestone {terminal} must not declare transitions")
        if terminal not in self._by_value[penultimate].transitions:
            raise ValueError(f"Milestone {penultimate} must lead to terminal {terminal}")

    @property
    def values(self) -> tuple[int, ...]:
        """All milestone values in ascending order."""
        return self._values

    @property
    def default_value(self) -> int:
        return self._values[0]

    @property
    def terminal_value(self) -> int:
        return self._values[-1]

    @property
    def penultimate_value(self) -> int:
        return self._values[-2]

    def is_valid(self, value: object) -> bool:
        # bool is an int subclass; True must not pass as a milestone
        return isinstance(value, int) and not isinstance(value, bool) and value in self._by_value

    def is_terminal(self, value: int) -> bool:
        return value == self.terminal_value

    def get(self, value: int) -> Milestone:
        try:
            return self._by_value[value]
        except KeyError:
            raise KeyError(f"Unknown milestone value: {value}") from None

    def label(self, value: int) -> str:
        return self.get(value).label

    def description(self, value: int) -> str:
        return self.get(value).description

    def category(self, value: int) -> MilestoneCategory:
        return self.get(value).category

    def allowed_next(self, current: int) -> frozenset[int]:
        return self.get(current).transitions

    def next_recommended(self, current: int) -> int | None:
        """Smallest declared next milestone, or None at the terminal milestone."""
        allowed = self.allowed_next(current)
        return min(allowed) if allowed else None

    def greater_than(self, value: int) -> tuple[int, ...]:
        return tuple(v for v in self._values if v > value)


def _entry(
    value: int,
    label: str,
    description: str,
    category: MilestoneCategory,
    transitions: Iterable[int],
    *,
    automatic: bool = False,
) -> Milestone:
    return Milestone(
        value=value,
        label=label,
        description=description,
        category=category,
        transitions=frozenset(transitions),
        automatic=automatic,
    )


_DEFAULT_CATALOGUE: tuple[Milestone, ...] = (
    _entry(
        10, "Engagement Started",
        "Engagement has been created and initial setup is complete",
        MilestoneCategory.early, (20, 25, 30), automatic=True,
    ),
    _entry(
        20, "Early Progress",
        "Initial discussions and information gathering",
        MilestoneCategory.early, (25, 30, 40),
    ),
    _entry(
        25, "Quarter Way",
        "First quarter of the work is complete",
        MilestoneCategory.early, (30, 40, 50),
    ),
    _entry(
        30, "One Third Complete",
        "One third of the deliverables are complete",
        MilestoneCategory.early, (40, 50, 60),
    ),
    _entry(
        40, "Mid Progress",
        "Project is progressing well into the middle phase",
        MilestoneCategory.mid, (50, 60, 70),
    ),
    _entry(
        50, "Halfway There",
        "Half of the work is complete",
        MilestoneCategory.mid, (60, 70, 75),
    ),
    _entry(
        60, "Advanced Stage",
        "Advanced stage - core deliverables are taking shape",
        MilestoneCategory.mid, (70, 75, 80),
    ),
    _entry(
        70, "Near Complete",
        "Most work is done, entering final review phase",
        MilestoneCategory.late, (75, 80, 90),
    ),
    _entry(
        75, "Three Quarters",
        "Three quarters of the work is complete",
        MilestoneCategory.late, (80, 90),
    ),
    _entry(
        80, "Almost Done",
        "Final touches and refinements",
        MilestoneCategory.late, (90,),
    ),
    _entry(
        90, "Final Stage",
        "Final review and approval pending",
        MilestoneCategory.late, (100,),
    ),
    _entry(
        100, "Completed",
        "All work completed and delivered",
        MilestoneCategory.completion, (),
    ),
)


def build_default_registry() -> MilestoneRegistry:
    """Build the standard 10..100 engagement milestone registry."""
    return MilestoneRegistry(_DEFAULT_CATALOGUE)
