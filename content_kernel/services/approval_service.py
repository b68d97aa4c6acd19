"""
content_kernel.services.approval_service -- Approval request persistence.

Responsibility:
    Persists approval requests, the actions recorded against them and the
    notify-events each transition produces.  Transition *decisions* come
    from the pure approval engine (content_engines.approval) via the
    workflow executor; this service stores them atomically and guards the
    storage-level invariants.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Never commits; the caller owns the transaction.

Invariants enforced:
    - Lifecycle state machine: REQUEST_TRANSITIONS checked before any
      status change is persisted.
    - One active request per content: pending pre-check plus the partial
      unique index, inside the caller's transaction.
    - Per-request serialization: ``lock_request`` loads the row with
      ``SELECT ... FOR UPDATE``; the ``row_version`` counter catches any
      writer that bypassed the lock.
    - Decision uniqueness: one approve/reject per (request, stage,
      approver), pre-checked and backed by a partial unique index.
    - Outbox atomicity: events are written in the same transaction as the
      transition.

Failure modes:
    - RequestNotFoundError if request_id not found.
    - DuplicateActiveRequestError on a second pending request.
    - DuplicateActionError on a repeated approve/reject.
    - RequestTerminalError on a transition out of a terminal status.
    - StageConflictError (retryable) when the row changed under the caller.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from content_kernel.domain.clock import Clock, SystemClock
from content_kernel.domain.workflow import (
    DECISION_ACTIONS,
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    Actor,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
    NotifyEvent,
    WorkflowTransition,
)
from content_kernel.exceptions import (
    DuplicateActionError,
    DuplicateActiveRequestError,
    RequestNotFoundError,
    RequestTerminalError,
    StageConflictError,
)
from content_kernel.logging_config import get_logger
from content_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from content_kernel.services.notification_outbox import NotificationOutbox

logger = get_logger("services.approval")


class ApprovalService:
    """Stores approval requests, actions and their notify-events."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        outbox: NotificationOutbox | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._outbox = outbox or NotificationOutbox(session, self._clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self._load_request_model(request_id).to_dto()

    def lock_request(self, request_id: UUID) -> ApprovalRequest:
        """Load the request row FOR UPDATE, refreshing any cached state."""
        return self._load_request_model(request_id, lock=True).to_dto()

    def find_pending(self, content_id: UUID) -> ApprovalRequest | None:
        model = self._pending_model(content_id)
        return model.to_dto() if model is not None else None

    def latest_for_content(self, content_id: UUID) -> ApprovalRequest | None:
        """The pending request if any, else the most recently submitted."""
        model = self._pending_model(content_id)
        if model is None:
            model = self._session.execute(
                select(ApprovalRequestModel)
                .where(ApprovalRequestModel.content_id == content_id)
                .order_by(
                    ApprovalRequestModel.submitted_at.desc(),
                    ApprovalRequestModel.resolved_at.desc(),
                    ApprovalRequestModel.id.desc(),
                )
                .limit(1)
            ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_actions(self, request_id: UUID) -> list[ApprovalActionRecord]:
        self._load_request_model(request_id)
        models = self._session.execute(
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.created_at, ApprovalActionModel.stage_number)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def pending_entered_before(self, cutoff: datetime) -> list[ApprovalRequest]:
        """Pending requests whose current stage was entered at or before ``cutoff``."""
        models = self._session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                ApprovalRequestModel.stage_entered_at <= cutoff,
            )
            .order_by(ApprovalRequestModel.stage_entered_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_request(
        self,
        *,
        request_id: UUID,
        content_id: UUID,
        workflow_id: UUID,
        version_number: int,
        submitted_by: UUID,
        transition: WorkflowTransition,
    ) -> ApprovalRequest:
        """Insert a new pending request and its initial notify-events."""
        existing = self._pending_model(content_id)
        if existing is not None:
            raise DuplicateActiveRequestError(
                str(content_id), str(existing.request_id),
            )

        now = self._clock.now()
        model = ApprovalRequestModel(
            request_id=request_id,
            content_id=content_id,
            workflow_id=workflow_id,
            version_number=version_number,
            current_stage=transition.current_stage,
            status=transition.status.value,
            submitted_by=submitted_by,
            submitted_at=now,
            stage_entered_at=now,
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateActiveRequestError(str(content_id))

        self._outbox.enqueue(transition.events)

        logger.info(
            "approval_submitted",
            extra={
                "request_id": str(request_id),
                "content_id": str(content_id),
                "workflow_id": str(workflow_id),
                "version_number": version_number,
                "submitted_by": str(submitted_by),
            },
        )
        return model.to_dto()

    def apply_transition(
        self,
        request_id: UUID,
        actor: Actor,
        transition: WorkflowTransition,
        feedback: str | None = None,
    ) -> ApprovalRequest:
        """Persist an engine-planned transition of a locked request.

        Redundant transitions change nothing and record nothing.
        """
        model = self._load_request_model(request_id)
        current_status = ApprovalStatus(model.status)

        if transition.redundant:
            logger.info(
                "approval_action_redundant",
                extra={
                    "request_id": str(request_id),
                    "actor_id": str(actor.actor_id),
                    "current_stage": model.current_stage,
                    "reason": transition.reason,
                },
            )
            return model.to_dto()

        allowed = REQUEST_TRANSITIONS.get(current_status, frozenset())
        if transition.status not in allowed:
            raise RequestTerminalError(str(request_id), current_status.value)

        now = self._clock.now()

        if transition.recorded_action is not None:
            self._check_duplicate_decision(request_id, actor, transition)

        savepoint = self._session.begin_nested()
        try:
            if transition.recorded_action is not None:
                self._session.add(ApprovalActionModel(
                    action_id=uuid4(),
                    request_id=request_id,
                    stage_number=transition.acted_stage,
                    approver_id=actor.actor_id,
                    approver_role=actor.primary_role,
                    action=transition.recorded_action.value,
                    feedback=feedback,
                    created_at=now,
                ))

            status_changed = transition.status != current_status
            if status_changed:
                model.status = transition.status.value
            if transition.current_stage != model.current_stage:
                model.current_stage = transition.current_stage
                model.stage_entered_at = now
            if transition.status in TERMINAL_STATUSES:
                model.resolved_at = now

            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateActionError(
                str(request_id), transition.acted_stage, str(actor.actor_id),
            )
        except StaleDataError:
            savepoint.rollback()
            logger.warning(
                "approval_row_version_conflict",
                extra={"request_id": str(request_id)},
            )
            raise StageConflictError(str(request_id))

        self._outbox.enqueue(transition.events)

        logger.info(
            "approval_action_recorded",
            extra={
                "request_id": str(request_id),
                "actor_id": str(actor.actor_id),
                "action": (
                    transition.recorded_action.value
                    if transition.recorded_action is not None
                    else None
                ),
                "acted_stage": transition.acted_stage,
                "status": transition.status.value,
                "current_stage": transition.current_stage,
                "advanced": transition.advanced,
            },
        )
        return model.to_dto()

    def enqueue_events(self, events: tuple[NotifyEvent, ...]) -> list[NotifyEvent]:
        """Write events that accompany no state change (e.g. supersede)."""
        return self._outbox.enqueue(events)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_duplicate_decision(
        self,
        request_id: UUID,
        actor: Actor,
        transition: WorkflowTransition,
    ) -> None:
        if transition.recorded_action not in DECISION_ACTIONS:
            return
        existing = self._session.execute(
            select(ApprovalActionModel.id).where(
                ApprovalActionModel.request_id == request_id,
                ApprovalActionModel.stage_number == transition.acted_stage,
                ApprovalActionModel.approver_id == actor.actor_id,
                ApprovalActionModel.action.in_(
                    [a.value for a in DECISION_ACTIONS]
                ),
            )
        ).first()
        if existing is not None:
            raise DuplicateActionError(
                str(request_id), transition.acted_stage, str(actor.actor_id),
            )

    def _pending_model(self, content_id: UUID) -> ApprovalRequestModel | None:
        return self._session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.content_id == content_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            )
        ).scalar_one_or_none()

    def _load_request_model(
        self, request_id: UUID, lock: bool = False,
    ) -> ApprovalRequestModel:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.request_id == request_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model
