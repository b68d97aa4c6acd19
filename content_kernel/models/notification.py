"""
Module: content_kernel.models.notification
Responsibility: Transactional outbox for notify-events.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - An event row is written in the same transaction as the state
      transition that produced it; it exists iff the transition committed.
    - ``sequence`` is unique and monotonic (allocated from the
      ``notify_event`` counter), giving a total delivery order.
    - Event content is immutable; only the delivery bookkeeping columns
      (status, attempts, last_error, dispatched_at) may change.

Failure modes:
    - ImmutabilityViolationError when an event's content columns change.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from content_kernel.db.base import Base, UUIDString
from content_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from content_kernel.domain.workflow import NotifyEvent


class DeliveryStatus:
    """Outbox delivery states."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"


_DELIVERY_COLUMNS = frozenset({"status", "attempts", "last_error", "dispatched_at"})


class NotifyEventModel(Base):
    """Persistent notify-event awaiting (or past) delivery."""

    __tablename__ = "notify_events"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'dispatched', 'failed')",
            name="ck_notify_events_valid_status",
        ),
        Index("ix_notify_events_status_sequence", "status", "sequence"),
        Index("ix_notify_events_request_id", "request_id"),
    )

    event_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    sequence: Mapped[int] = mapped_column(nullable=False, unique=True)
    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    content_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    recipient_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<NotifyEvent #{self.sequence} {self.kind} "
            f"request={self.request_id} status={self.status}>"
        )

    def to_dto(self) -> NotifyEvent:
        """Convert ORM model to frozen domain DTO."""
        from content_kernel.domain.workflow import NotifyEvent, NotifyEventKind

        return NotifyEvent(
            request_id=self.request_id,
            content_id=self.content_id,
            stage_number=self.stage_number,
            kind=NotifyEventKind(self.kind),
            version_number=self.version_number,
            recipient_role=self.recipient_role,
            recipient_id=self.recipient_id,
            feedback=self.feedback,
            event_id=self.event_id,
            sequence=self.sequence,
            created_at=self.created_at,
        )


@event.listens_for(NotifyEventModel, "before_update")
def prevent_event_content_update(mapper, connection, target):
    """Only delivery bookkeeping may change on an outbox row."""
    for attr in inspect(target).attrs:
        if attr.key in _DELIVERY_COLUMNS:
            continue
        if attr.history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="NotifyEvent",
                entity_id=str(target.event_id),
                reason=f"Cannot modify field '{attr.key}' of a notify-event",
            )
