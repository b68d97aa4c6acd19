"""
NotificationOutbox -- transactional persistence of notify-events.

Responsibility:
    Writes notify-events in the caller's transaction so that an event
    exists iff the transition that produced it committed, and tracks
    delivery bookkeeping for the relay.

Architecture position:
    Kernel > Services.  May import from domain/, models/.
    Delivery itself (calling a NotifierGateway) lives in
    content_services.notifications.

Invariants enforced:
    - Total order: each event takes the next ``notify_event`` sequence.
    - Bounded retry: an event whose attempts reach ``max_attempts`` is
      marked failed and no longer offered for delivery.

Failure modes:
    None beyond database errors; events are plain inserts.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from content_kernel.domain.clock import Clock, SystemClock
from content_kernel.domain.workflow import NotifyEvent
from content_kernel.logging_config import get_logger
from content_kernel.models.notification import DeliveryStatus, NotifyEventModel
from content_kernel.services.sequence_service import SequenceService

logger = get_logger("services.notification_outbox")


class NotificationOutbox:
    """Outbox writer and delivery ledger."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def enqueue(self, events: Iterable[NotifyEvent]) -> list[NotifyEvent]:
        """Persist events in order; returns them with id and sequence set."""
        now = self._clock.now()
        stored: list[NotifyEventModel] = []
        for ev in events:
            model = NotifyEventModel(
                event_id=uuid4(),
                sequence=self._sequences.next_value(SequenceService.NOTIFY_EVENT),
                request_id=ev.request_id,
                content_id=ev.content_id,
                stage_number=ev.stage_number,
                kind=ev.kind.value,
                recipient_role=ev.recipient_role,
                recipient_id=ev.recipient_id,
                version_number=ev.version_number,
                feedback=ev.feedback,
                created_at=now,
                status=DeliveryStatus.PENDING,
                attempts=0,
            )
            self._session.add(model)
            stored.append(model)

        if stored:
            self._session.flush()
            logger.info(
                "notify_events_enqueued",
                extra={
                    "count": len(stored),
                    "kinds": [m.kind for m in stored],
                    "first_sequence": stored[0].sequence,
                },
            )
        return [m.to_dto() for m in stored]

    def claim_pending(self, limit: int = 100) -> list[NotifyEvent]:
        """Lock and return the oldest undelivered events, in sequence order."""
        models = self._session.execute(
            select(NotifyEventModel)
            .where(NotifyEventModel.status == DeliveryStatus.PENDING)
            .order_by(NotifyEventModel.sequence)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def mark_dispatched(self, event_id: UUID) -> None:
        model = self._load(event_id)
        model.status = DeliveryStatus.DISPATCHED
        model.attempts += 1
        model.dispatched_at = self._clock.now()
        model.last_error = None
        self._session.flush()

    def record_failure(self, event_id: UUID, error: str, max_attempts: int) -> str:
        """Count a failed delivery attempt; returns the resulting status."""
        model = self._load(event_id)
        model.attempts += 1
        model.last_error = error[:2000]
        if model.attempts >= max_attempts:
            model.status = DeliveryStatus.FAILED
        self._session.flush()
        return model.status

    def status_counts(self) -> dict[str, int]:
        rows = self._session.execute(
            select(NotifyEventModel.status, func.count())
            .group_by(NotifyEventModel.status)
        ).all()
        return {status: count for status, count in rows}

    def list_for_request(self, request_id: UUID) -> list[NotifyEvent]:
        models = self._session.execute(
            select(NotifyEventModel)
            .where(NotifyEventModel.request_id == request_id)
            .order_by(NotifyEventModel.sequence)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def _load(self, event_id: UUID) -> NotifyEventModel:
        return self._session.execute(
            select(NotifyEventModel).where(NotifyEventModel.event_id == event_id)
        ).scalar_one()
