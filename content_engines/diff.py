"""
content_engines.diff -- Line-level comparison of two content bodies.

Responsibility:
    Compute the set of added and removed lines between two stored
    bodies of the same content item.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import content_kernel/domain/ types.

Invariants enforced:
    - Identity: diff_bodies(x, x) is empty for every x.
    - Line numbers are 1-based: new-body numbering for additions,
      old-body numbering for removals.
    - Lines keep their terminators, so bodies differing only in a
      trailing newline still produce changes.
    - Applying the removals to the old body and the additions to the new
      body's positions, then joining, reproduces the new body exactly.

Failure modes:
    None.  Any two strings can be compared.
"""

from __future__ import annotations

import difflib

from content_engines.tracer import traced_engine
from content_kernel.domain.versioning import LineChange, LineChangeKind


@traced_engine("diff", "1.1")
def diff_bodies(old_body: str, new_body: str) -> tuple[LineChange, ...]:
    """Return the line changes that turn ``old_body`` into ``new_body``.

    Removals precede additions within each changed block.
    """
    if old_body == new_body:
        return ()

    old_lines = old_body.splitlines(keepends=True)
    new_lines = new_body.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)

    changes: list[LineChange] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        if tag in ("replace", "delete"):
            changes.extend(
                LineChange(LineChangeKind.REMOVED, i + 1, old_lines[i])
                for i in range(i1, i2)
            )
        if tag in ("replace", "insert"):
            changes.extend(
                LineChange(LineChangeKind.ADDED, j + 1, new_lines[j])
                for j in range(j1, j2)
            )
    return tuple(changes)

