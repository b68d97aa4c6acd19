"""
Configuration Loader (``content_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into typed ``content_config.schema``
dataclass instances.  Runtime callers go through
``content_config.get_settings()`` and
``content_config.load_workflow_definitions()`` instead.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on kernel,
engines or services.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` is a deterministic SHA-256 over the parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from content_config.schema import CoreSettings, StageDef, WorkflowConfigSet, WorkflowDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"'{field}' must be true or false, got {value!r}")


def parse_stage(data: dict[str, Any]) -> StageDef:
    """Parse one stage entry; ``stage`` is required."""
    stage = data["stage"]
    if not isinstance(stage, int) or isinstance(stage, bool):
        raise ValueError(f"'stage' must be an integer, got {stage!r}")
    approver_id = data.get("approver_id")
    return StageDef(
        stage=stage,
        role=data.get("role"),
        approver_id=str(approver_id) if approver_id is not None else None,
        required=_parse_bool(data.get("required", True), "required"),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDef:
    """Parse one workflow entry; ``name``, ``campaign_id`` and ``stages`` are required."""
    stages_raw = data["stages"]
    if not isinstance(stages_raw, list):
        raise ValueError(f"workflow '{data.get('name')}': 'stages' must be a list")
    return WorkflowDef(
        name=data["name"],
        campaign_id=str(data["campaign_id"]),
        stages=tuple(parse_stage(s) for s in stages_raw),
        description=data.get("description", ""),
    )


def parse_workflow_file(path: Path) -> WorkflowConfigSet:
    """Parse a ``workflows:`` file into a WorkflowConfigSet."""
    data = load_yaml_file(path)
    workflows = tuple(parse_workflow(w) for w in data.get("workflows", []))
    return WorkflowConfigSet(
        workflows=workflows,
        checksum=compute_checksum(data),
        source=str(path),
    )


def parse_settings(data: dict[str, Any]) -> CoreSettings:
    """Parse the ``core:`` mapping; absent keys keep their defaults."""
    core = data.get("core", data)
    defaults = CoreSettings()
    admin_roles = core.get("admin_roles", defaults.admin_roles)
    if isinstance(admin_roles, str):
        admin_roles = [r.strip() for r in admin_roles.split(",") if r.strip()]
    return CoreSettings(
        database_url=str(core.get("database_url", defaults.database_url)),
        retention_days=int(core.get("retention_days", defaults.retention_days)),
        max_retries=int(core.get("max_retries", defaults.max_retries)),
        retry_backoff_seconds=float(
            core.get("retry_backoff_seconds", defaults.retry_backoff_seconds)
        ),
        admin_roles=tuple(admin_roles),
        notification_max_attempts=int(
            core.get("notification_max_attempts", defaults.notification_max_attempts)
        ),
        notification_batch_size=int(
            core.get("notification_batch_size", defaults.notification_batch_size)
        ),
        log_level=str(core.get("log_level", defaults.log_level)).upper(),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of parsed YAML data."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
