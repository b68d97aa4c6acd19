"""
content_services.workflow_executor -- Approval workflow coordinator.

Responsibility:
    Runs each approval operation as read -> plan -> persist inside the
    caller's transaction: loads (and locks) the request through
    ApprovalService, asks the pure engine in content_engines.approval
    what the transition is, fans role-addressed events out through the
    ApproverDirectory, and hands the result back to ApprovalService.

Architecture position:
    Services -- thin coordinator.  Delegates every decision to the
    engine and every write to kernel services.  Owns no transaction.

Invariants enforced:
    - Read-then-transition is one unit: the request row is locked before
      planning and the plan is persisted in the same transaction.
    - Staleness is derived on every read from the version store.
    - A superseded pin never fails a request; it only notifies.

Failure modes:
    - ContentNotFoundError, UnknownWorkflowError, VersionNotFoundError,
      DuplicateActiveRequestError on submit.
    - Any engine error (RequestTerminalError, StageNotReachedError,
      NotEligibleApproverError, FeedbackRequiredError, ...) unchanged.
    - CancellationNotPermittedError when the authority refuses a cancel
      or manual skip.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from content_engines.approval import (
    expand_recipients,
    plan_action,
    plan_cancel,
    plan_skip,
    plan_submission,
    plan_supersede,
)
from content_kernel.domain.workflow import (
    Actor,
    ApprovalActionKind,
    ApprovalRequest,
    ApproverDirectory,
    ContentCatalog,
    NotifyEvent,
    RequestAuthority,
    RoleBasedRequestAuthority,
)
from content_kernel.exceptions import (
    CancellationNotPermittedError,
    ContentNotFoundError,
    VersionNotFoundError,
)
from content_kernel.logging_config import get_logger
from content_kernel.services.approval_service import ApprovalService
from content_kernel.services.version_store import VersionStore
from content_kernel.services.workflow_registry import WorkflowRegistry

logger = get_logger("services.workflow_executor")


class ApprovalWorkflowExecutor:
    """Coordinates engine planning with kernel persistence for one session."""

    def __init__(
        self,
        approvals: ApprovalService,
        registry: WorkflowRegistry,
        versions: VersionStore,
        directory: ApproverDirectory | None = None,
        catalog: ContentCatalog | None = None,
        authority: RequestAuthority | None = None,
    ) -> None:
        self._approvals = approvals
        self._registry = registry
        self._versions = versions
        self._directory = directory
        self._catalog = catalog
        self._authority = authority or RoleBasedRequestAuthority()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(
        self,
        content_id: UUID,
        version_number: int,
        workflow_id: UUID,
        actor: Actor,
    ) -> ApprovalRequest:
        if self._catalog is not None and not self._catalog.exists(content_id):
            raise ContentNotFoundError(str(content_id))
        definition = self._registry.get(workflow_id)
        if not self._versions.exists(content_id, version_number):
            raise VersionNotFoundError(str(content_id), version_number)

        request_id = uuid4()
        transition = plan_submission(
            definition,
            request_id=request_id,
            content_id=content_id,
            version_number=version_number,
        )
        transition = replace(transition, events=self._expand(transition.events))
        request = self._approvals.create_request(
            request_id=request_id,
            content_id=content_id,
            workflow_id=workflow_id,
            version_number=version_number,
            submitted_by=actor.actor_id,
            transition=transition,
        )
        return self._with_staleness(request)

    def record_action(
        self,
        request_id: UUID,
        actor: Actor,
        action: ApprovalActionKind | str,
        feedback: str | None = None,
        stage_number: int | None = None,
    ) -> ApprovalRequest:
        request = self._approvals.lock_request(request_id)
        definition = self._registry.get(request.workflow_id)
        transition = plan_action(
            request,
            definition,
            actor,
            action=ApprovalActionKind(action),
            feedback=feedback,
            stage_number=stage_number,
        )
        transition = replace(transition, events=self._expand(transition.events))
        updated = self._approvals.apply_transition(
            request_id, actor, transition, feedback=feedback,
        )
        return self._with_staleness(updated)

    def cancel(self, request_id: UUID, actor: Actor) -> ApprovalRequest:
        request = self._approvals.lock_request(request_id)
        definition = self._registry.get(request.workflow_id)
        # Terminal check first so a finished request reports its state.
        transition = plan_cancel(request, definition)
        if not self._authority.can_cancel(actor, request):
            raise CancellationNotPermittedError(str(request_id), str(actor.actor_id))
        transition = replace(transition, events=self._expand(transition.events))
        updated = self._approvals.apply_transition(request_id, actor, transition)
        logger.info(
            "approval_cancelled",
            extra={"request_id": str(request_id), "actor_id": str(actor.actor_id)},
        )
        return self._with_staleness(updated)

    def skip_optional_stage(
        self,
        request_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> ApprovalRequest:
        request = self._approvals.lock_request(request_id)
        definition = self._registry.get(request.workflow_id)
        transition = plan_skip(request, definition)
        if not self._authority.can_skip(actor, request):
            raise CancellationNotPermittedError(
                str(request_id), str(actor.actor_id), operation="skip a stage of",
            )
        return self._apply_skip(request, actor, transition, reason)

    def skip_overdue_optional_stages(
        self,
        as_of: datetime,
        window: timedelta,
        actor: Actor,
    ) -> list[ApprovalRequest]:
        """Skip optional current stages that have waited at least ``window``.

        Required stages are never touched.  Each skipped stage is recorded
        as a ``skip`` action by ``actor`` (the scheduler's identity).
        """
        cutoff = as_of - window
        skipped: list[ApprovalRequest] = []
        for candidate in self._approvals.pending_entered_before(cutoff):
            request = self._approvals.lock_request(candidate.request_id)
            if not request.is_active or request.stage_entered_at > cutoff:
                continue
            definition = self._registry.get(request.workflow_id)
            if definition.stage(request.current_stage).required:
                continue
            transition = plan_skip(request, definition)
            skipped.append(
                self._apply_skip(request, actor, transition, "policy window elapsed")
            )

        logger.info(
            "overdue_optional_stages_skipped",
            extra={
                "cutoff": cutoff.isoformat(),
                "window_seconds": window.total_seconds(),
                "skipped": len(skipped),
            },
        )
        return skipped

    def note_new_version(
        self, content_id: UUID, version_number: int,
    ) -> list[NotifyEvent]:
        """Notify current-stage approvers when a pending pin goes stale."""
        pending = self._approvals.find_pending(content_id)
        if pending is None:
            return []
        definition = self._registry.get(pending.workflow_id)
        events = self._expand(plan_supersede(pending, definition, version_number))
        if not events:
            return []
        stored = self._approvals.enqueue_events(events)
        logger.info(
            "approval_pin_superseded",
            extra={
                "request_id": str(pending.request_id),
                "content_id": str(content_id),
                "pinned_version": pending.version_number,
                "latest_version": version_number,
            },
        )
        return stored

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, content_id: UUID) -> ApprovalRequest | None:
        request = self._approvals.latest_for_content(content_id)
        if request is None:
            return None
        return self._with_staleness(request)

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self._with_staleness(self._approvals.get_request(request_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_skip(self, request, actor, transition, reason):
        transition = replace(transition, events=self._expand(transition.events))
        updated = self._approvals.apply_transition(
            request.request_id, actor, transition, feedback=reason,
        )
        logger.info(
            "optional_stage_skipped",
            extra={
                "request_id": str(request.request_id),
                "stage_number": transition.acted_stage,
                "actor_id": str(actor.actor_id),
                "reason": reason,
            },
        )
        return self._with_staleness(updated)

    def _expand(self, events: tuple[NotifyEvent, ...]) -> tuple[NotifyEvent, ...]:
        if self._directory is None:
            return tuple(events)
        roles = {
            ev.recipient_role
            for ev in events
            if ev.recipient_id is None and ev.recipient_role is not None
        }
        members = {role: tuple(self._directory.users_with_role(role)) for role in roles}
        return expand_recipients(events, members)

    def _with_staleness(self, request: ApprovalRequest) -> ApprovalRequest:
        latest = self._versions.latest_version_number(request.content_id)
        return replace(
            request,
            latest_version_number=latest,
            is_stale=latest is not None and latest != request.version_number,
        )
