"""
Workflow compiler (``content_config.compiler``).

Responsibility
--------------
Turns source ``WorkflowDef`` entries into kernel
``ApprovalWorkflowDefinition`` objects, validating stage layout and
fingerprinting each definition so registration can be idempotent.
Also validates ``CoreSettings`` values.

Architecture position
---------------------
**Config layer** -- bridges config into kernel domain types.  The kernel
never imports this package.

Failure modes
-------------
* ``MalformedWorkflowError`` for bad stage numbering, empty stage slots,
  unparseable approver ids, or duplicate workflow names in one set.
* ``ValueError`` for out-of-range settings.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from content_config.schema import CoreSettings, WorkflowConfigSet, WorkflowDef
from content_kernel.domain.versioning import RETENTION_FLOOR_DAYS
from content_kernel.domain.workflow import (
    ApprovalStage,
    ApprovalWorkflowDefinition,
)
from content_kernel.exceptions import MalformedWorkflowError
from content_kernel.utils.hashing import hash_workflow_definition


def _parse_approver_id(workflow_name: str, stage: int, raw: str | None) -> UUID | None:
    if raw is None:
        return None
    try:
        return UUID(raw)
    except ValueError:
        raise MalformedWorkflowError(
            workflow_name, f"stage {stage} approver_id {raw!r} is not a UUID",
        ) from None


def compile_workflow(source: WorkflowDef) -> ApprovalWorkflowDefinition:
    """Validate and hash one workflow definition."""
    stages = tuple(
        ApprovalStage(
            stage_number=s.stage,
            approver_role=s.role,
            approver_id=_parse_approver_id(source.name, s.stage, s.approver_id),
            required=s.required,
        )
        for s in source.stages
    )
    definition = ApprovalWorkflowDefinition(
        campaign_id=source.campaign_id,
        name=source.name,
        stages=stages,
    )
    return replace(definition, definition_hash=hash_workflow_definition(definition))


def compile_workflow_set(
    config_set: WorkflowConfigSet,
) -> tuple[ApprovalWorkflowDefinition, ...]:
    """Compile every workflow; names must be unique per campaign."""
    seen: set[tuple[str, str]] = set()
    compiled: list[ApprovalWorkflowDefinition] = []
    for source in config_set.workflows:
        key = (source.campaign_id, source.name)
        if key in seen:
            raise MalformedWorkflowError(
                source.name,
                f"defined twice for campaign '{source.campaign_id}'",
            )
        seen.add(key)
        compiled.append(compile_workflow(source))
    return tuple(compiled)


def validate_settings(settings: CoreSettings) -> CoreSettings:
    """Reject settings that would break core invariants."""
    if settings.retention_days < RETENTION_FLOOR_DAYS:
        raise ValueError(
            f"retention_days must be >= {RETENTION_FLOOR_DAYS}, "
            f"got {settings.retention_days}"
        )
    if settings.max_retries < 1:
        raise ValueError(f"max_retries must be >= 1, got {settings.max_retries}")
    if settings.retry_backoff_seconds < 0:
        raise ValueError("retry_backoff_seconds must not be negative")
    if settings.notification_max_attempts < 1:
        raise ValueError("notification_max_attempts must be >= 1")
    if settings.notification_batch_size < 1:
        raise ValueError("notification_batch_size must be >= 1")
    return settings
