"""Milestone module: progress scale catalogue and transition rules."""

from src.milestones.registry import (
    Milestone,
    MilestoneCategory,
    MilestoneRegistry,
    build_default_registry,
)
from src.milestones.validator import TransitionRejection, TransitionResult, TransitionValidator

__all__ = [
    "Milestone",
    "MilestoneCategory",
    "MilestoneRegistry",
    "TransitionRejection",
    "TransitionResult",
    "TransitionValidator",
    "build_default_registry",
]
