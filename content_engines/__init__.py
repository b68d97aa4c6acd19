"""
Module: content_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    engine sub-modules.  This is the canonical import surface for
    content_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import content_kernel/domain types and exceptions (and
    sibling engine modules).  MUST NOT import content_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Timestamps are the
      caller's concern.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from content_engines.approval import plan_action, plan_submission
    from content_engines.diff import diff_bodies
"""

from content_engines.approval import (
    expand_recipients,
    is_eligible,
    plan_action,
    plan_cancel,
    plan_skip,
    plan_submission,
    plan_supersede,
    stage_recipients,
)
from content_engines.diff import diff_bodies
from content_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "compute_input_fingerprint",
    "diff_bodies",
    "expand_recipients",
    "is_eligible",
    "plan_action",
    "plan_cancel",
    "plan_skip",
    "plan_submission",
    "plan_supersede",
    "stage_recipients",
    "traced_engine",
]
