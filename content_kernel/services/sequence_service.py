"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing numbers for content
    versions (one sequence per content item), workflow definition
    versions (one per campaign) and the notify-event outbox.  Uses a
    dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``) to guarantee uniqueness and ordering
    under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by VersionStore, WorkflowRegistry and NotificationOutbox.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth
      for the next value.  An aggregate max-plus-one query is never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value, so committed
      numbers stay contiguous.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from content_kernel.logging_config import get_logger
from content_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        seq = SequenceService(session).next_value(
            SequenceService.content_version(content_id)
        )
    """

    NOTIFY_EVENT = "notify_event"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def content_version(content_id: UUID) -> str:
        return f"content_version:{content_id}"

    @staticmethod
    def workflow_definition(campaign_id: str) -> str:
        return f"workflow_definition:{campaign_id}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Locks the sequence row (creating it on first use), increments it
        and returns the new value.  The counter row stays locked until the
        caller's transaction completes.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another transaction may create the row at the same
            # time; the savepoint keeps the caller's other work intact.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value
