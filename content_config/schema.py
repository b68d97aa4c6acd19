"""
Content core configuration schema.

Human-authored YAML is parsed by the loader into these frozen types.
Workflow definitions here are the *source* form; the compiler turns them
into kernel ``ApprovalWorkflowDefinition`` objects ready to register.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageDef:
    """One stage as written in YAML (approver_id still a string)."""

    stage: int
    role: str | None = None
    approver_id: str | None = None
    required: bool = True


@dataclass(frozen=True)
class WorkflowDef:
    """A campaign's approval chain as written in YAML."""

    name: str
    campaign_id: str
    stages: tuple[StageDef, ...]
    description: str = ""


@dataclass(frozen=True)
class WorkflowConfigSet:
    """All workflow definitions from one file plus its checksum."""

    workflows: tuple[WorkflowDef, ...]
    checksum: str = ""
    source: str = ""


# ---------------------------------------------------------------------------
# Core settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CoreSettings:
    """Runtime settings for ContentWorkflowCore and the maintenance CLI."""

    database_url: str = "sqlite:///content_core.db"
    retention_days: int = 90
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    admin_roles: tuple[str, ...] = ("admin",)
    notification_max_attempts: int = 5
    notification_batch_size: int = 100
    log_level: str = "INFO"
