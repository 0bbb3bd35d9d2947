"""Completion module: access mode derivation and completion guards."""

from src.completion.gate import (
    AccessDecision,
    AccessMode,
    CompletionGate,
    CompletionStatus,
    FeedbackLookup,
    Operation,
    derive_access_mode,
)

__all__ = [
    "AccessDecision",
    "AccessMode",
    "CompletionGate",
    "CompletionStatus",
    "FeedbackLookup",
    "Operation",
    "derive_access_mode",
]
