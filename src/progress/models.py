"""SQLAlchemy 2.0 async models for engagement progress persistence.

Includes:
- EngagementRecord: current state plus the embedded progress cache
- ProgressEntryRecord: append-only progress ledger (source of truth for history)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in dev/tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class EngagementRecord(Base):
    """Engagement state owned by the progress core.

    completed is one-way: once set, completed cannot be cleared and
    messaging_allowed cannot be re-enabled (ORM validator + CHECK constraint).
    """

    __tablename__ = "engagements"
    __table_args__ = (
        CheckConstraint(
            "NOT completed OR NOT messaging_allowed",
            name="ck_engagements_completed_messaging_locked",
        ),
        Index("idx_engagements_active_completed", "is_active", "completed"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), index=True)
    current_milestone: Mapped[int] = mapped_column(Integer)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    messaging_allowed: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    next_seq: Mapped[int] = mapped_column(Integer, default=0)
    # Materialized view of the ledger; rebuilt from progress_entries on divergence
    progress_cache: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    @validates("completed")
    def _validate_completed(self, key: str, value: bool) -> bool:
        if self.completed and not value:
            raise ValueError(f"Engagement {self.id} is completed; completion cannot be undone")
        return value

    @validates("messaging_allowed")
    def _validate_messaging_allowed(self, key: str, value: bool) -> bool:
        if value and self.completed:
            raise ValueError(f"Engagement {self.id} is completed; messaging stays disabled")
        return value


class ProgressEntryRecord(Base):
    """Append-only audit row for one accepted transition (or engagement creation).

    from_value and snapshot are NULL on the creation row.
    """

    __tablename__ = "progress_entries"
    __table_args__ = (
        UniqueConstraint("engagement_id", "seq", name="uq_progress_entries_engagement_seq"),
        Index("idx_progress_entries_engagement_created", "engagement_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    engagement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("engagements.id"), index=True
    )
    seq: Mapped[int] = mapped_column(Integer)
    actor_id: Mapped[str] = mapped_column(String(64))
    actor_kind: Mapped[str] = mapped_column(String(16))  # operator | system
    from_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    to_value: Mapped[int] = mapped_column(Integer, index=True)
    time_at_prior_milestone_s: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    automatic: Mapped[bool] = mapped_column(Boolean, default=False)
    snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


@event.listens_for(ProgressEntryRecord, "before_update")
def _refuse_ledger_update(mapper: Any, connection: Any, target: ProgressEntryRecord) -> None:
    raise RuntimeError(f"progress entry {target.id} is append-only and cannot be updated")


@event.listens_for(ProgressEntryRecord, "before_delete")
def _refuse_ledger_delete(mapper: Any, connection: Any, target: ProgressEntryRecord) -> None:
    raise RuntimeError(f"progress entry {target.id} is append-only and cannot be deleted")
