"""
content_engines.approval -- Pure approval workflow state machine.

Responsibility:
    Decide, for one approval request and one attempted action, what the
    request becomes and who must be told.  The output is a
    ``WorkflowTransition`` that the approval service persists atomically;
    nothing here reads or writes storage.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import content_kernel/domain/ types and exceptions.

Invariants enforced:
    - Stage gating: an action aimed at a stage beyond ``current_stage``
      fails with StageNotReachedError, and stage k+1 approvers are only
      addressed once stage k is approved or skipped.
    - Single advance: an approve aimed at a stage the request has already
      left is a redundant no-op, never a second advance.
    - Terminal states accept nothing.
    - Purity: no clock access, no I/O, no database.

Failure modes (checked in this order):
    - RequestTerminalError if the request is not pending.
    - StageNotReachedError if the targeted stage is later than current.
    - NotEligibleApproverError if the actor does not fit the stage slot.
    - FeedbackRequiredError if a reject carries no feedback.
    - StageAlreadyPassedError for reject/request_changes aimed at a stage
      the request has already left.
    - StageNotSkippableError when skipping a required stage.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from uuid import UUID

from content_engines.tracer import traced_engine
from content_kernel.domain.workflow import (
    Actor,
    ApprovalActionKind,
    ApprovalRequest,
    ApprovalStage,
    ApprovalStatus,
    ApprovalWorkflowDefinition,
    NotifyEvent,
    NotifyEventKind,
    WorkflowTransition,
)
from content_kernel.exceptions import (
    FeedbackRequiredError,
    NotEligibleApproverError,
    RequestTerminalError,
    StageAlreadyPassedError,
    StageNotReachedError,
    StageNotSkippableError,
    ValidationError,
)

_STAGE_ACTIONS = frozenset({
    ApprovalActionKind.APPROVE,
    ApprovalActionKind.REJECT,
    ApprovalActionKind.REQUEST_CHANGES,
})


def is_eligible(stage: ApprovalStage, actor: Actor) -> bool:
    """True if ``actor`` may act at ``stage``.

    A specific approver_id, when set, takes precedence over the role.
    """
    if stage.approver_id is not None:
        return actor.actor_id == stage.approver_id
    return actor.has_role(stage.approver_role)


def stage_recipients(
    stage: ApprovalStage,
    *,
    request_id: UUID,
    content_id: UUID,
    version_number: int,
    kind: NotifyEventKind = NotifyEventKind.APPROVAL_REQUESTED,
) -> tuple[NotifyEvent, ...]:
    """Events addressed to whoever may act at ``stage``."""
    if stage.approver_id is not None:
        return (
            NotifyEvent(
                request_id=request_id,
                content_id=content_id,
                stage_number=stage.stage_number,
                kind=kind,
                version_number=version_number,
                recipient_id=stage.approver_id,
            ),
        )
    return (
        NotifyEvent(
            request_id=request_id,
            content_id=content_id,
            stage_number=stage.stage_number,
            kind=kind,
            version_number=version_number,
            recipient_role=stage.approver_role,
        ),
    )


def _submitter_event(
    request: ApprovalRequest,
    kind: NotifyEventKind,
    stage_number: int,
    feedback: str | None = None,
) -> NotifyEvent:
    return NotifyEvent(
        request_id=request.request_id,
        content_id=request.content_id,
        stage_number=stage_number,
        kind=kind,
        version_number=request.version_number,
        recipient_id=request.submitted_by,
        feedback=feedback,
    )


def _advance(
    request: ApprovalRequest,
    definition: ApprovalWorkflowDefinition,
    recorded_action: ApprovalActionKind,
    reason: str,
) -> WorkflowTransition:
    """Move past the current stage: next stage, or approved after the last."""
    stage_number = request.current_stage
    if definition.is_last(stage_number):
        return WorkflowTransition(
            status=ApprovalStatus.APPROVED,
            current_stage=stage_number,
            recorded_action=recorded_action,
            acted_stage=stage_number,
            events=(_submitter_event(request, NotifyEventKind.APPROVED, stage_number),),
            advanced=True,
            reason=f"{reason}; final stage complete",
        )

    next_stage = definition.stage(stage_number + 1)
    return WorkflowTransition(
        status=ApprovalStatus.PENDING,
        current_stage=next_stage.stage_number,
        recorded_action=recorded_action,
        acted_stage=stage_number,
        events=stage_recipients(
            next_stage,
            request_id=request.request_id,
            content_id=request.content_id,
            version_number=request.version_number,
        ),
        advanced=True,
        reason=f"{reason}; advanced to stage {next_stage.stage_number}",
    )


def _require_pending(request: ApprovalRequest) -> None:
    if request.is_terminal:
        raise RequestTerminalError(str(request.request_id), request.status.value)


def plan_submission(
    definition: ApprovalWorkflowDefinition,
    *,
    request_id: UUID,
    content_id: UUID,
    version_number: int,
) -> WorkflowTransition:
    """Initial state of a new request: pending at stage 1, stage 1 notified."""
    first = definition.stage(1)
    return WorkflowTransition(
        status=ApprovalStatus.PENDING,
        current_stage=first.stage_number,
        events=stage_recipients(
            first,
            request_id=request_id,
            content_id=content_id,
            version_number=version_number,
        ),
        reason="submitted",
    )


@traced_engine(
    "approval", "1.0",
    fingerprint_fields=("action", "stage_number"),
)
def plan_action(
    request: ApprovalRequest,
    definition: ApprovalWorkflowDefinition,
    actor: Actor,
    action: ApprovalActionKind,
    feedback: str | None = None,
    stage_number: int | None = None,
) -> WorkflowTransition:
    """Apply an approver's action to ``request``.

    ``stage_number`` is the stage the actor believes they are acting on;
    it defaults to the request's current stage.
    """
    action = ApprovalActionKind(action)
    if action not in _STAGE_ACTIONS:
        raise ValidationError(f"'{action.value}' is not an approver action")

    _require_pending(request)

    target = request.current_stage if stage_number is None else stage_number
    if target < 1:
        raise ValidationError(f"Stage number must be >= 1, got {target}")
    if target > request.current_stage:
        raise StageNotReachedError(
            str(request.request_id), target, request.current_stage,
        )

    stage = definition.stage(target)
    if not is_eligible(stage, actor):
        raise NotEligibleApproverError(
            str(request.request_id),
            str(actor.actor_id),
            target,
            stage.describe_slot(),
        )

    if action == ApprovalActionKind.REJECT and not (feedback and feedback.strip()):
        raise FeedbackRequiredError(str(request.request_id), target)

    if target < request.current_stage:
        if action == ApprovalActionKind.APPROVE:
            return WorkflowTransition(
                status=request.status,
                current_stage=request.current_stage,
                redundant=True,
                reason=f"stage {target} already approved",
            )
        raise StageAlreadyPassedError(
            str(request.request_id), target, request.current_stage,
        )

    if action == ApprovalActionKind.APPROVE:
        return _advance(
            request, definition, ApprovalActionKind.APPROVE,
            f"stage {target} approved",
        )

    if action == ApprovalActionKind.REJECT:
        return WorkflowTransition(
            status=ApprovalStatus.REJECTED,
            current_stage=target,
            recorded_action=ApprovalActionKind.REJECT,
            acted_stage=target,
            events=(
                _submitter_event(request, NotifyEventKind.REJECTED, target, feedback),
            ),
            reason=f"stage {target} rejected",
        )

    return WorkflowTransition(
        status=request.status,
        current_stage=target,
        recorded_action=ApprovalActionKind.REQUEST_CHANGES,
        acted_stage=target,
        events=(
            _submitter_event(
                request, NotifyEventKind.CHANGES_REQUESTED, target, feedback,
            ),
        ),
        reason=f"changes requested at stage {target}",
    )


def plan_cancel(
    request: ApprovalRequest,
    definition: ApprovalWorkflowDefinition,
) -> WorkflowTransition:
    """Cancel a pending request; current-stage approvers are told to stop."""
    _require_pending(request)
    stage = definition.stage(request.current_stage)
    return WorkflowTransition(
        status=ApprovalStatus.CANCELLED,
        current_stage=request.current_stage,
        events=stage_recipients(
            stage,
            request_id=request.request_id,
            content_id=request.content_id,
            version_number=request.version_number,
            kind=NotifyEventKind.CANCELLED,
        ),
        reason="cancelled",
    )


def plan_skip(
    request: ApprovalRequest,
    definition: ApprovalWorkflowDefinition,
) -> WorkflowTransition:
    """Pass over the current stage if it is optional.

    Skipping the last stage approves the request.
    """
    _require_pending(request)
    stage = definition.stage(request.current_stage)
    if stage.required:
        raise StageNotSkippableError(str(request.request_id), stage.stage_number)
    return _advance(
        request, definition, ApprovalActionKind.SKIP,
        f"optional stage {stage.stage_number} skipped",
    )


def plan_supersede(
    request: ApprovalRequest,
    definition: ApprovalWorkflowDefinition,
    new_version_number: int,
) -> tuple[NotifyEvent, ...]:
    """Tell current-stage approvers the pinned version is no longer latest.

    The request itself is unchanged; returns no events for terminal
    requests or when the pin is still current.
    """
    if request.is_terminal or new_version_number == request.version_number:
        return ()
    stage = definition.stage(request.current_stage)
    return stage_recipients(
        stage,
        request_id=request.request_id,
        content_id=request.content_id,
        version_number=new_version_number,
        kind=NotifyEventKind.VERSION_SUPERSEDED,
    )


def expand_recipients(
    events: Sequence[NotifyEvent],
    role_members: Mapping[str, Sequence[UUID]],
) -> tuple[NotifyEvent, ...]:
    """Fan role-addressed events out to each member of the role.

    Events for a role with no known members stay role-addressed so the
    gateway can still route them.
    """
    expanded: list[NotifyEvent] = []
    for ev in events:
        if ev.recipient_id is not None or ev.recipient_role is None:
            expanded.append(ev)
            continue
        members = role_members.get(ev.recipient_role) or ()
        if not members:
            expanded.append(ev)
            continue
        for user_id in sorted(set(members), key=str):
            expanded.append(
                NotifyEvent(
                    request_id=ev.request_id,
                    content_id=ev.content_id,
                    stage_number=ev.stage_number,
                    kind=ev.kind,
                    version_number=ev.version_number,
                    recipient_role=ev.recipient_role,
                    recipient_id=user_id,
                    feedback=ev.feedback,
                )
            )
    return tuple(expanded)
