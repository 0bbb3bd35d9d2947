"""Progress orchestrator: the transactional progress-update use case.

Validate → snapshot → mutate → complete → ledger append → cache append,
all in one unit of work. Completion notifications go out only after commit
and never roll back an accepted transition.

Same-engagement serialization:
- PostgreSQL: SELECT ... FOR UPDATE on the engagement row, so a second
  caller validates against the first caller's committed state.
- Everywhere: UNIQUE(engagement_id, seq) fences concurrent writers; a seq
  conflict rolls the whole unit of work back and it is retried from the
  load step, up to max_commit_attempts.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.infra.clock import Clock, utc_now
from src.infra.errors import (
    EngagementExists,
    EngagementNotFound,
    InvalidMilestoneValue,
    InvalidRequest,
    TransactionAborted,
)
from src.progress.contracts import (
    ActorKind,
    Engagement,
    EngagementSnapshot,
    ProgressCacheItem,
    ProgressEntry,
)
from src.progress.events import EngagementCompleted, EventSink
from src.progress.models import EngagementRecord, ProgressEntryRecord

if TYPE_CHECKING:
    from src.config.settings import ProgressSettings
    from src.milestones.registry import MilestoneRegistry
    from src.milestones.validator import TransitionValidator
    from src.progress.ledger import ProgressLedger
    from src.progress.unit_of_work import UnitOfWorkFactory

logger = structlog.get_logger()


class ProgressOrchestrator:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        registry: MilestoneRegistry,
        validator: TransitionValidator,
        ledger: ProgressLedger,
        settings: ProgressSettings,
        *,
        event_sink: EventSink,
        clock: Clock = utc_now,
    ) -> None:
        self._uow_factory = uow_factory
        self._registry = registry
        self._validator = validator
        self._ledger = ledger
        self._settings = settings
        self._event_sink = event_sink
        self._clock = clock

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
        """Create an engagement at its starting milestone with a 'created' ledger entry."""
        value = self._registry.default_value if initial_value is None else initial_value
        if not self._registry.is_valid(value) or self._registry.is_terminal(value):
            raise InvalidMilestoneValue(
                f"Engagements cannot start at milestone {value!r}",
                requested=value,
                allowed_next=self._registry.values[:-1],
            )
        note = self._clean_note(note) or "Engagement created"
        self._require_actor(actor_id)

        try:
            async with self._uow_factory() as uow:
                async with asyncio.timeout(self._settings.commit_timeout_s):
                    db = uow.session
                    if await db.get(EngagementRecord, engagement_id) is not None:
                        raise EngagementExists(engagement_id)

                    now = self._clock()
                    record = EngagementRecord(
                        id=engagement_id,
                        client_id=client_id,
                        current_milestone=value,
                        completed=False,
                        completed_at=None,
                        messaging_allowed=messaging_allowed,
                        is_active=True,
                        next_seq=1,
                        progress_cache=[],
                        start_date=start_date or now,
                        created_at=now,
                        updated_at=now,
                    )
                    db.add(record)
                    # Engagement row must exist before its first ledger row (FK)
                    await db.flush()

                    entry = ProgressEntryRecord(
                        id=str(uuid.uuid4()),
                        engagement_id=engagement_id,
                        seq=0,
                        actor_id=actor_id,
                        actor_kind=ActorKind.system.value,
                        from_value=None,
                        to_value=value,
                        time_at_prior_milestone_s=None,
                        note=note,
                        automatic=True,
                        snapshot=None,
                        created_at=now,
                    )
                    self._ledger.append(db, entry)
                    self._append_cache(record, entry)
                    await db.flush()
                # Commit runs outside the timeout; a started commit is never cancelled
                await uow.commit()
        except IntegrityError as exc:
            # Lost a creation race on the primary key
            raise EngagementExists(engagement_id) from exc
        except (SQLAlchemyError, TimeoutError) as exc:
            logger.exception("engagement_create_aborted", engagement_id=engagement_id)
            raise TransactionAborted(f"Creating engagement {engagement_id} aborted") from exc

        logger.info(
            "engagement_created",
            engagement_id=engagement_id,
            client_id=client_id,
            milestone=value,
        )
        return Engagement.from_record(record)

    async def update_progress(
        self,
        engagement_id: str,
        requested_value: int,
        actor_id: str,
        *,
        note: str | None = None,
        automatic: bool = False,
    ) -> Engagement:
        """Apply a milestone transition atomically.

        Raises:
            EngagementNotFound: unknown engagement.
            InvalidTransition: rejected by the transition rules (subclass per rule).
            InvalidRequest: malformed note or actor.
            TransactionAborted: commit failed, or the pre-commit steps timed out;
                nothing was persisted.
        """
        note = self._clean_note(note)
        self._require_actor(actor_id)

        attempts = self._settings.max_commit_attempts
        for attempt in range(1, attempts + 1):
            try:
                engagement, completion = await self._apply_transition(
                    engagement_id, requested_value, actor_id, note, automatic
                )
            except IntegrityError as exc:
                if attempt < attempts:
                    logger.warning(
                        "progress_commit_conflict",
                        engagement_id=engagement_id,
                        attempt=attempt,
                        max_attempts=attempts,
                    )
                    continue
                logger.error(
                    "progress_commit_aborted",
                    engagement_id=engagement_id,
                    reason="seq_conflict",
                    attempts=attempts,
                )
                raise TransactionAborted(
                    f"Progress update for {engagement_id} kept conflicting "
                    f"after {attempts} attempts"
                ) from exc
            except (SQLAlchemyError, TimeoutError) as exc:
                logger.exception("progress_commit_aborted", engagement_id=engagement_id)
                raise TransactionAborted(
                    f"Progress update for {engagement_id} aborted"
                ) from exc

            if completion is not None:
                await self._publish_completion(completion)
            return engagement

        raise TransactionAborted(f"Progress update for {engagement_id} aborted")

    async def _apply_transition(
        self,
        engagement_id: str,
        requested_value: int,
        actor_id: str,
        note: str | None,
        automatic: bool,
    ) -> tuple[Engagement, EngagementCompleted | None]:
        async with self._uow_factory() as uow:
            db = uow.session
            async with asyncio.timeout(self._settings.commit_timeout_s):
                record = await db.get(EngagementRecord, engagement_id, with_for_update=True)
                if record is None:
                    raise EngagementNotFound(engagement_id)

                current = record.current_milestone
                result = self._validator.validate(current, requested_value)
                if not result.allowed:
                    raise result.to_error(current, requested_value)
                if result.noop:
                    logger.info("progress_noop", engagement_id=engagement_id, milestone=current)
                    return Engagement.from_record(record), None

                time_at_prior = await self._ledger.time_at_milestone(
                    engagement_id, current, db=db
                )
                snapshot = EngagementSnapshot.from_record(record)
                now = self._clock()

                record.current_milestone = requested_value
                record.updated_at = now

                completion: EngagementCompleted | None = None
                if self._registry.is_terminal(requested_value) and not record.completed:
                    record.completed = True
                    record.completed_at = now
                    record.messaging_allowed = False
                    completion = EngagementCompleted(
                        engagement_id=engagement_id,
                        client_id=record.client_id,
                        completed_at=now,
                        actor_id=actor_id,
                    )

                seq = record.next_seq
                record.next_seq = seq + 1
                entry = ProgressEntryRecord(
                    id=str(uuid.uuid4()),
                    engagement_id=engagement_id,
                    seq=seq,
                    actor_id=actor_id,
                    actor_kind=(ActorKind.system if automatic else ActorKind.operator).value,
                    from_value=current,
                    to_value=requested_value,
                    time_at_prior_milestone_s=time_at_prior,
                    note=note,
                    automatic=automatic,
                    snapshot=snapshot.to_dict(),
                    created_at=now,
                )
                self._ledger.append(db, entry)
                self._append_cache(record, entry)
                # Seq conflicts surface here, before commit
                await db.flush()
            # Commit runs outside the timeout; a started commit is never cancelled
            await uow.commit()

        logger.info(
            "progress_updated",
            engagement_id=engagement_id,
            from_value=current,
            to_value=requested_value,
            seq=seq,
            automatic=automatic,
            completed=completion is not None,
        )
        return Engagement.from_record(record), completion

    def _append_cache(self, record: EngagementRecord, entry: ProgressEntryRecord) -> None:
        """Append the denormalized cache item; same transaction as the ledger entry."""
        item = ProgressCacheItem.from_entry(ProgressEntry.from_record(entry))
        # Reassign rather than mutate in place so the JSON column is marked dirty
        record.progress_cache = [*(record.progress_cache or []), item.to_dict()]

    async def _publish_completion(self, event: EngagementCompleted) -> None:
        logger.info(
            "engagement_completed",
            engagement_id=event.engagement_id,
            completed_at=event.completed_at.isoformat(),
        )
        try:
            await self._event_sink.publish(event)
        except Exception:
            logger.exception(
                "completion_event_failed",
                engagement_id=event.engagement_id,
                msg="Notification failed; progress commit is kept",
            )

    async def get_engagement(self, engagement_id: str) -> Engagement:
        async with self._uow_factory() as uow:
            record = await uow.session.get(EngagementRecord, engagement_id)
            if record is None:
                raise EngagementNotFound(engagement_id)
            return Engagement.from_record(record)

    async def reconcile_cache(self, engagement_id: str) -> bool:
        """Rebuild the embedded progress cache from the ledger if they diverge.

        The ledger wins. Returns True when the cache was rewritten.
        """
        async with self._uow_factory() as uow:
            db = uow.session
            record = await db.get(EngagementRecord, engagement_id, with_for_update=True)
            if record is None:
                raise EngagementNotFound(engagement_id)

            entries = await self._ledger.entries(engagement_id, db=db)
            expected = [ProgressCacheItem.from_entry(e).to_dict() for e in entries]
            cached = record.progress_cache or []
            if cached == expected:
                return False

            record.progress_cache = expected
            await uow.commit()

        logger.warning(
            "progress_cache_rebuilt",
            engagement_id=engagement_id,
            cached_items=len(cached),
            ledger_entries=len(expected),
        )
        return True

    def _clean_note(self, note: str | None) -> str | None:
        if note is None:
            return None
        note = note.strip()
        if len(note) > self._settings.note_max_length:
            raise InvalidRequest(
                f"Note cannot exceed {self._settings.note_max_length} characters"
            )
        return note or None

    @staticmethod
    def _require_actor(actor_id: str) -> None:
        if not actor_id or not actor_id.strip():
            raise InvalidRequest("actor_id is required")
