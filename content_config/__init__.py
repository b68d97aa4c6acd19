"""
content_config -- public entrypoint for content core configuration.

Responsibility:
    ``get_settings()`` returns validated ``CoreSettings`` from
    ``sets/core.yaml`` (or a given file) with ``CONTENT_CORE_*``
    environment overrides.  ``load_workflow_definitions()`` returns the
    compiled workflow definitions from ``sets/workflows.yaml`` (or a
    given file), ready for ``WorkflowRegistry.register``.

Architecture position:
    Configuration -- sits above ``content_kernel`` and ``content_engines``
    and below ``content_services``.  The kernel MUST NEVER import from
    ``content_config``.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``ValueError`` / ``KeyError`` -- schema or range violations.
    - ``MalformedWorkflowError`` -- invalid workflow stage layout.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

from content_config.compiler import compile_workflow_set, validate_settings
from content_config.loader import load_yaml_file, parse_settings, parse_workflow_file
from content_config.schema import CoreSettings, StageDef, WorkflowConfigSet, WorkflowDef
from content_kernel.domain.workflow import ApprovalWorkflowDefinition

_logger = logging.getLogger("content_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_SETTINGS_PATH = _DEFAULT_CONFIG_DIR / "core.yaml"
DEFAULT_WORKFLOWS_PATH = _DEFAULT_CONFIG_DIR / "workflows.yaml"

ENV_PREFIX = "CONTENT_CORE_"

_ENV_PARSERS = {
    "database_url": str,
    "retention_days": int,
    "max_retries": int,
    "retry_backoff_seconds": float,
    "admin_roles": lambda v: tuple(r.strip() for r in v.split(",") if r.strip()),
    "notification_max_attempts": int,
    "notification_batch_size": int,
    "log_level": lambda v: v.upper(),
}


def _apply_env_overrides(
    settings: CoreSettings, environ: Mapping[str, str],
) -> CoreSettings:
    overrides = {}
    for field, parse in _ENV_PARSERS.items():
        raw = environ.get(f"{ENV_PREFIX}{field.upper()}")
        if raw is None or raw == "":
            continue
        try:
            overrides[field] = parse(raw)
        except ValueError as exc:
            raise ValueError(
                f"{ENV_PREFIX}{field.upper()}={raw!r} is invalid: {exc}"
            ) from exc
    return replace(settings, **overrides) if overrides else settings


def get_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> CoreSettings:
    """Load, override and validate core settings."""
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    settings = parse_settings(load_yaml_file(settings_path))
    settings = _apply_env_overrides(
        settings, os.environ if environ is None else environ,
    )
    validate_settings(settings)

    _logger.info(
        "CONTENT_CONFIG_TRACE",
        extra={
            "trace_type": "CONTENT_CONFIG_TRACE",
            "source": str(settings_path),
            "retention_days": settings.retention_days,
            "max_retries": settings.max_retries,
            "admin_roles": list(settings.admin_roles),
        },
    )
    return settings


def load_workflow_definitions(
    path: Path | str | None = None,
) -> tuple[ApprovalWorkflowDefinition, ...]:
    """Parse and compile every workflow in a workflows file."""
    workflows_path = Path(path) if path is not None else DEFAULT_WORKFLOWS_PATH
    config_set = parse_workflow_file(workflows_path)
    compiled = compile_workflow_set(config_set)

    _logger.info(
        "CONTENT_CONFIG_TRACE",
        extra={
            "trace_type": "CONTENT_CONFIG_TRACE",
            "source": str(workflows_path),
            "checksum": config_set.checksum,
            "workflow_count": len(compiled),
        },
    )
    return compiled


__all__ = [
    "CoreSettings",
    "DEFAULT_SETTINGS_PATH",
    "DEFAULT_WORKFLOWS_PATH",
    "ENV_PREFIX",
    "StageDef",
    "WorkflowConfigSet",
    "WorkflowDef",
    "get_settings",
    "load_workflow_definitions",
]
