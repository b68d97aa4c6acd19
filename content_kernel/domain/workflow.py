"""
Approval workflow domain types (``content_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for multi-stage content approval: the request
lifecycle state machine, data-driven stage definitions, the action
audit record, notify-events, and the protocols through which the core
talks to its external collaborators.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``models/``, or outer layers.  May import
only from ``content_kernel.exceptions``.

Invariants enforced
-------------------
* Lifecycle state machine -- ``REQUEST_TRANSITIONS`` defines the only
  valid status transitions.  Terminal states have no outgoing edges.
* Stage layout -- stage numbers of a definition are unique and form the
  contiguous range 1..N with N >= 1; every stage names an approver role
  or a specific approver.
* Definition snapshot -- a request references the exact workflow
  definition it was submitted against; definitions are never edited.
* Version pin -- a request references the version number under review.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID

from content_kernel.exceptions import MalformedWorkflowError


# =========================================================================
# Request Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


REQUEST_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


class ApprovalActionKind(str, Enum):
    """What an actor did at a stage.

    ``skip`` records an optional stage being passed over.
    """

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    SKIP = "skip"


# One approve/reject per (request, stage, approver); request_changes recurs.
DECISION_ACTIONS: frozenset[ApprovalActionKind] = frozenset({
    ApprovalActionKind.APPROVE,
    ApprovalActionKind.REJECT,
})


class NotifyEventKind(str, Enum):
    """Reason a collaborator should be notified."""

    APPROVAL_REQUESTED = "approval_requested"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    VERSION_SUPERSEDED = "version_superseded"


# =========================================================================
# Workflow Definition
# =========================================================================


@dataclass(frozen=True)
class ApprovalStage:
    """One ordered step of an approval chain.

    When ``approver_id`` is set only that person may act; otherwise any
    actor holding ``approver_role`` may.
    """

    stage_number: int
    approver_role: str | None = None
    approver_id: UUID | None = None
    required: bool = True

    def describe_slot(self) -> str:
        if self.approver_id is not None:
            return f"approver {self.approver_id}"
        return f"role '{self.approver_role}'"


def validate_stages(name: str, stages: tuple[ApprovalStage, ...]) -> None:
    """Check the stage layout rules, raising MalformedWorkflowError."""
    if not stages:
        raise MalformedWorkflowError(name, "a workflow needs at least one stage")

    numbers = [s.stage_number for s in stages]
    if len(set(numbers)) != len(numbers):
        raise MalformedWorkflowError(name, f"duplicate stage numbers {numbers}")
    if sorted(numbers) != list(range(1, len(numbers) + 1)):
        raise MalformedWorkflowError(
            name, f"stage numbers must be contiguous from 1, got {sorted(numbers)}"
        )

    for stage in stages:
        if not stage.approver_role and stage.approver_id is None:
            raise MalformedWorkflowError(
                name,
                f"stage {stage.stage_number} names neither a role nor an approver",
            )


@dataclass(frozen=True)
class ApprovalWorkflowDefinition:
    """Immutable, data-driven description of a campaign's approval chain.

    ``workflow_id`` and ``version`` are assigned on registration; a
    revised chain is registered as a new definition.
    """

    campaign_id: str
    name: str
    stages: tuple[ApprovalStage, ...]
    workflow_id: UUID | None = None
    version: int = 0
    definition_hash: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        validate_stages(self.name, self.stages)
        ordered = tuple(sorted(self.stages, key=lambda s: s.stage_number))
        if ordered != self.stages:
            object.__setattr__(self, "stages", ordered)

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    def stage(self, stage_number: int) -> ApprovalStage:
        return self.stages[stage_number - 1]

    def is_last(self, stage_number: int) -> bool:
        return stage_number == self.stage_count


# =========================================================================
# Actors
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """Authenticated identity plus roles, supplied by the auth collaborator."""

    actor_id: UUID
    roles: tuple[str, ...] = ()

    def has_role(self, role: str | None) -> bool:
        return role is not None and role in self.roles

    @property
    def primary_role(self) -> str | None:
        return self.roles[0] if self.roles else None


# =========================================================================
# Request and Action Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalActionRecord:
    """Record of one action taken at a stage. Immutable."""

    action_id: UUID
    request_id: UUID
    stage_number: int
    approver_id: UUID
    action: ApprovalActionKind
    approver_role: str | None = None
    feedback: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Snapshot of an approval request.

    ``current_stage`` stays at the last stage reached once the request is
    terminal.  ``latest_version_number`` and ``is_stale`` are derived at
    read time from the version store.
    """

    request_id: UUID
    content_id: UUID
    workflow_id: UUID
    version_number: int
    current_stage: int
    submitted_by: UUID
    status: ApprovalStatus = ApprovalStatus.PENDING
    submitted_at: datetime | None = None
    stage_entered_at: datetime | None = None
    resolved_at: datetime | None = None
    latest_version_number: int | None = None
    is_stale: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# =========================================================================
# Notify Events
# =========================================================================


@dataclass(frozen=True)
class NotifyEvent:
    """Decision to notify someone; delivery belongs to the gateway.

    Exactly one of ``recipient_id`` / ``recipient_role`` identifies the
    addressee, except for directory-expanded role events which carry both.
    """

    request_id: UUID
    content_id: UUID
    stage_number: int
    kind: NotifyEventKind
    version_number: int
    recipient_role: str | None = None
    recipient_id: UUID | None = None
    feedback: str | None = None
    event_id: UUID | None = None
    sequence: int | None = None
    created_at: datetime | None = None


# =========================================================================
# Transition Result
# =========================================================================


@dataclass(frozen=True)
class WorkflowTransition:
    """Outcome of applying one action to a request (pure engine output).

    ``recorded_action`` is None for redundant no-ops and for cancellation.
    """

    status: ApprovalStatus
    current_stage: int
    recorded_action: ApprovalActionKind | None = None
    acted_stage: int | None = None
    events: tuple[NotifyEvent, ...] = ()
    advanced: bool = False
    redundant: bool = False
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# =========================================================================
# Collaborator Protocols
# =========================================================================


class ApproverDirectory(Protocol):
    """Who holds a role (user management collaborator)."""

    def users_with_role(self, role: str) -> tuple[UUID, ...]:
        """Return the ids of every user holding ``role``."""
        ...


class ContentCatalog(Protocol):
    """Content existence check (content management collaborator)."""

    def exists(self, content_id: UUID) -> bool:
        ...


class RequestAuthority(Protocol):
    """Decides administrative rights over a request."""

    def can_cancel(self, actor: Actor, request: ApprovalRequest) -> bool:
        ...

    def can_skip(self, actor: Actor, request: ApprovalRequest) -> bool:
        ...


class NotifierGateway(Protocol):
    """Delivery transport for notify-events."""

    def publish(self, event: NotifyEvent) -> None:
        ...


@dataclass(frozen=True)
class RoleBasedRequestAuthority:
    """Default authority: the submitter, or anyone holding an admin role."""

    admin_roles: frozenset[str] = field(default_factory=lambda: frozenset({"admin"}))

    def _is_admin(self, actor: Actor) -> bool:
        return any(role in self.admin_roles for role in actor.roles)

    def can_cancel(self, actor: Actor, request: ApprovalRequest) -> bool:
        return actor.actor_id == request.submitted_by or self._is_admin(actor)

    def can_skip(self, actor: Actor, request: ApprovalRequest) -> bool:
        return actor.actor_id == request.submitted_by or self._is_admin(actor)
