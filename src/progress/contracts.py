"""Progress-side shared contract types.

Read models handed to collaborators (gate, stall detector, analytics, callers).
ORM records never leave the progress package; they are mapped here at the
boundary. The snapshot and cache item are explicit, versioned structs stored
as JSON rather than open-ended dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from src.constants import SNAPSHOT_SCHEMA_VERSION
from src.infra.clock import ensure_utc
from src.progress.models import EngagementRecord, ProgressEntryRecord


class ActorKind(StrEnum):
    operator = "operator"
    system = "system"


def _iso(value: datetime | None) -> str | None:
    return ensure_utc(value).isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return ensure_utc(datetime.fromisoformat(value)) if value is not None else None


def _utc_or_none(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


@dataclass(frozen=True)
class ProgressCacheItem:
    """One entry of the engagement's embedded progress cache."""

    entry_id: str
    seq: int
    value: int
    updated_at: datetime
    updated_by: str
    note: str | None = None

    @classmethod
    def from_entry(cls, entry: ProgressEntry) -> ProgressCacheItem:
        return cls(
            entry_id=entry.id,
            seq=entry.seq,
            value=entry.to_value,
            updated_at=entry.created_at,
            updated_by=entry.actor_id,
            note=entry.note,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "seq": self.seq,
            "value": self.value,
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressCacheItem:
        return cls(
            entry_id=data["entry_id"],
            seq=data["seq"],
            value=data["value"],
            updated_at=_parse(data["updated_at"]),
            updated_by=data["updated_by"],
            note=data.get("note"),
        )


@dataclass(frozen=True)
class EngagementSnapshot:
    """Full engagement state captured immediately before a transition."""

    engagement_id: str
    client_id: str
    current_milestone: int
    completed: bool
    completed_at: datetime | None
    messaging_allowed: bool
    is_active: bool
    start_date: datetime
    updated_at: datetime
    progress_cache: tuple[ProgressCacheItem, ...] = ()
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    @classmethod
    def from_record(cls, record: EngagementRecord) -> EngagementSnapshot:
        return cls(
            engagement_id=record.id,
            client_id=record.client_id,
            current_milestone=record.current_milestone,
            completed=record.completed,
            completed_at=_utc_or_none(record.completed_at),
            messaging_allowed=record.messaging_allowed,
            is_active=record.is_active,
            start_date=ensure_utc(record.start_date),
            updated_at=ensure_utc(record.updated_at),
            progress_cache=tuple(
                ProgressCacheItem.from_dict(item) for item in record.progress_cache or []
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "engagement_id": self.engagement_id,
            "client_id": self.client_id,
            "current_milestone": self.current_milestone,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "messaging_allowed": self.messaging_allowed,
            "is_active": self.is_active,
            "start_date": _iso(self.start_date),
            "updated_at": _iso(self.updated_at),
            "progress_cache": [item.to_dict() for item in self.progress_cache],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngagementSnapshot:
        version = data.get("schema_version")
        if version != SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported engagement snapshot schema_version: {version!r}")
        return cls(
            engagement_id=data["engagement_id"],
            client_id=data["client_id"],
            current_milestone=data["current_milestone"],
            completed=data["completed"],
            completed_at=_parse(data["completed_at"]),
            messaging_allowed=data["messaging_allowed"],
            is_active=data["is_active"],
            start_date=_parse(data["start_date"]),
            updated_at=_parse(data["updated_at"]),
            progress_cache=tuple(
                ProgressCacheItem.from_dict(item) for item in data["progress_cache"]
            ),
        )


@dataclass(frozen=True)
class Engagement:
    """Engagement read model."""

    id: str
    client_id: str
    current_milestone: int
    completed: bool
    completed_at: datetime | None
    messaging_allowed: bool
    is_active: bool
    start_date: datetime
    created_at: datetime
    updated_at: datetime
    progress_cache: tuple[ProgressCacheItem, ...] = field(default_factory=tuple)

    @classmethod
    def from_record(cls, record: EngagementRecord) -> Engagement:
        return cls(
            id=record.id,
            client_id=record.client_id,
            current_milestone=record.current_milestone,
            completed=record.completed,
            completed_at=_utc_or_none(record.completed_at),
            messaging_allowed=record.messaging_allowed,
            is_active=record.is_active,
            start_date=ensure_utc(record.start_date),
            created_at=ensure_utc(record.created_at),
            updated_at=ensure_utc(record.updated_at),
            progress_cache=tuple(
                ProgressCacheItem.from_dict(item) for item in record.progress_cache or []
            ),
        )


@dataclass(frozen=True)
class ProgressEntry:
    """Ledger entry read model."""

    id: str
    engagement_id: str
    seq: int
    actor_id: str
    actor_kind: ActorKind
    from_value: int | None
    to_value: int
    time_at_prior_milestone_s: int | None
    note: str | None
    automatic: bool
    snapshot: EngagementSnapshot | None
    created_at: datetime

    @classmethod
    def from_record(cls, record: ProgressEntryRecord) -> ProgressEntry:
        return cls(
            id=record.id,
            engagement_id=record.engagement_id,
            seq=record.seq,
            actor_id=record.actor_id,
            actor_kind=ActorKind(record.actor_kind),
            from_value=record.from_value,
            to_value=record.to_value,
            time_at_prior_milestone_s=record.time_at_prior_milestone_s,
            note=record.note,
            automatic=record.automatic,
            snapshot=(
                EngagementSnapshot.from_dict(record.snapshot)
                if record.snapshot is not None
                else None
            ),
            created_at=ensure_utc(record.created_at),
        )


@dataclass(frozen=True)
class MilestoneTiming:
    """One timeline point: when a milestone was reached and how long it was held."""

    milestone: int
    label: str
    reached_at: datetime
    time_spent_s: int | None
