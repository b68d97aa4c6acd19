"""
Module: content_kernel.models.approval
Responsibility: ORM persistence for approval requests and the actions
    recorded against them.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One active request per content item: a partial unique index on
      content_id WHERE status = 'pending' backs the service pre-check.
    - Optimistic concurrency: ``row_version`` is the mapper's version
      counter; a flush against a row changed by another transaction
      raises StaleDataError.
    - Terminal freeze: once approved, rejected or cancelled, no column of
      the request may change (ORM guard below).
    - One decision per approver per stage: partial unique index on
      (request_id, stage_number, approver_id) WHERE action is approve or
      reject.  request_changes may recur.
    - Actions are append-only.

Failure modes:
    - IntegrityError on a second pending request for the same content.
    - IntegrityError on a duplicate approve/reject by one approver.
    - StaleDataError on a concurrent request update.
    - ImmutabilityViolationError on action UPDATE/DELETE, on modification
      of a terminal request, or on request deletion.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.orm.attributes import get_history

from content_kernel.db.base import Base, UUIDString
from content_kernel.exceptions import ImmutabilityViolationError
from content_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from content_kernel.domain.workflow import (
        ApprovalActionRecord,
        ApprovalRequest,
    )

logger = get_logger("models.approval")

_TERMINAL_STATUS_VALUES = frozenset({"approved", "rejected", "cancelled"})


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status transitions are driven by the approval engine; the service
        persists its output.  Terminal rows are frozen.

    Guarantees:
        - No two pending requests for one content_id.
        - ``row_version`` increments on every UPDATE.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "current_stage >= 1",
            name="ck_approval_requests_stage_positive",
        ),
        Index(
            "ix_approval_requests_one_pending",
            "content_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index(
            "ix_approval_requests_content_submitted",
            "content_id", "submitted_at",
        ),
        Index(
            "ix_approval_requests_status_stage_entered",
            "status", "stage_entered_at",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    content_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.workflow_id"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    submitted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    stage_entered_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} content={self.content_id} "
            f"stage={self.current_stage} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from content_kernel.domain.workflow import (
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
        )

        return ApprovalRequestDTO(
            request_id=self.request_id,
            content_id=self.content_id,
            workflow_id=self.workflow_id,
            version_number=self.version_number,
            current_stage=self.current_stage,
            submitted_by=self.submitted_by,
            status=ApprovalStatus(self.status),
            submitted_at=self.submitted_at,
            stage_entered_at=self.stage_entered_at,
            resolved_at=self.resolved_at,
        )


class ApprovalActionModel(Base):
    """Persistent approval action record. Append-only."""

    __tablename__ = "approval_actions"

    __table_args__ = (
        CheckConstraint(
            "action IN ('approve', 'reject', 'request_changes', 'skip')",
            name="ck_approval_actions_valid_action",
        ),
        Index("ix_approval_actions_request_id", "request_id", "created_at"),
        Index(
            "ix_approval_actions_one_decision",
            "request_id", "stage_number", "approver_id",
            unique=True,
            sqlite_where=text("action IN ('approve', 'reject')"),
            postgresql_where=text("action IN ('approve', 'reject')"),
        ),
    )

    action_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approver_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalAction {self.action_id} request={self.request_id} "
            f"stage={self.stage_number} action={self.action}>"
        )

    def to_dto(self) -> ApprovalActionRecord:
        """Convert ORM model to frozen domain DTO."""
        from content_kernel.domain.workflow import (
            ApprovalActionKind,
            ApprovalActionRecord as ActionDTO,
        )

        return ActionDTO(
            action_id=self.action_id,
            request_id=self.request_id,
            stage_number=self.stage_number,
            approver_id=self.approver_id,
            action=ApprovalActionKind(self.action),
            approver_role=self.approver_role,
            feedback=self.feedback,
            created_at=self.created_at,
        )


# =============================================================================
# Terminal-request freeze
# =============================================================================


@event.listens_for(ApprovalRequestModel, "before_update")
def prevent_terminal_request_update(mapper, connection, target):
    """Block changes to a request that was already terminal.

    The transition INTO a terminal status is allowed; anything after it
    is not.
    """
    status_history = get_history(target, "status")

    if status_history.deleted:
        was_terminal = status_history.deleted[0] in _TERMINAL_STATUS_VALUES
    elif not status_history.added:
        was_terminal = target.status in _TERMINAL_STATUS_VALUES
    else:
        was_terminal = False

    if not was_terminal:
        return

    for attr in inspect(target).attrs:
        if attr.key == "row_version":
            continue
        if attr.history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "ApprovalRequest",
                    "entity_id": str(target.request_id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type="ApprovalRequest",
                entity_id=str(target.request_id),
                reason=f"Cannot modify field '{attr.key}' on a terminal request",
            )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Approval requests are part of the review history."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.request_id),
        reason="Approval requests cannot be deleted",
    )


# =============================================================================
# Actions are append-only
# =============================================================================


@event.listens_for(ApprovalActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    """Prevent updates to approval action records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.action_id),
        reason="Approval actions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    """Prevent deletion of approval action records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.action_id),
        reason="Approval actions are immutable -- cannot delete",
    )
