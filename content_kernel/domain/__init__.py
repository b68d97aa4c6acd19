"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from content_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from content_kernel.domain.versioning import (
    RETENTION_FLOOR_DAYS,
    ContentVersion,
    LineChange,
    LineChangeKind,
    VersionDiff,
    revert_summary,
)
from content_kernel.domain.workflow import (
    DECISION_ACTIONS,
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    Actor,
    ApprovalActionKind,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStage,
    ApprovalStatus,
    ApprovalWorkflowDefinition,
    ApproverDirectory,
    ContentCatalog,
    NotifierGateway,
    NotifyEvent,
    NotifyEventKind,
    RequestAuthority,
    RoleBasedRequestAuthority,
    WorkflowTransition,
    validate_stages,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "RETENTION_FLOOR_DAYS",
    "ContentVersion",
    "LineChange",
    "LineChangeKind",
    "VersionDiff",
    "revert_summary",
    "DECISION_ACTIONS",
    "REQUEST_TRANSITIONS",
    "TERMINAL_STATUSES",
    "Actor",
    "ApprovalActionKind",
    "ApprovalActionRecord",
    "ApprovalRequest",
    "ApprovalStage",
    "ApprovalStatus",
    "ApprovalWorkflowDefinition",
    "ApproverDirectory",
    "ContentCatalog",
    "NotifierGateway",
    "NotifyEvent",
    "NotifyEventKind",
    "RequestAuthority",
    "RoleBasedRequestAuthority",
    "WorkflowTransition",
    "validate_stages",
]
