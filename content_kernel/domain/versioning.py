"""
Content version domain types (``content_kernel.domain.versioning``).

Responsibility
--------------
Pure value objects for the append-only version history of a content
item and for line-level comparisons between two stored bodies.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``models/``, or outer layers.

Invariants
----------
* ``version_number`` is >= 1, strictly increasing and contiguous per
  ``content_id`` (allocated by the version store, never by callers).
* A ``ContentVersion`` is never modified after creation; reverts append.
* Versions younger than ``RETENTION_FLOOR_DAYS`` are never purged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

RETENTION_FLOOR_DAYS = 90


@dataclass(frozen=True)
class ContentVersion:
    """Immutable snapshot of one body revision.

    ``body`` is ``None`` when a listing elides bodies.
    """

    content_id: UUID
    version_number: int
    author_id: UUID
    created_at: datetime
    body: str | None = None
    change_summary: str | None = None

    @property
    def has_body(self) -> bool:
        return self.body is not None


class LineChangeKind(str, Enum):
    """Direction of a single line change."""

    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class LineChange:
    """One added or removed line.

    ``line_number`` is 1-based in the *new* body for additions and in the
    *old* body for removals.  ``text`` is the line as stored, including its
    terminator when it has one.
    """

    kind: LineChangeKind
    line_number: int
    text: str


@dataclass(frozen=True)
class VersionDiff:
    """Line-level edit set between two versions of the same content."""

    content_id: UUID
    from_version: int
    to_version: int
    changes: tuple[LineChange, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def additions(self) -> tuple[LineChange, ...]:
        return tuple(c for c in self.changes if c.kind == LineChangeKind.ADDED)

    @property
    def deletions(self) -> tuple[LineChange, ...]:
        return tuple(c for c in self.changes if c.kind == LineChangeKind.REMOVED)


def revert_summary(target_version: int) -> str:
    """Change summary recorded on a version produced by a revert."""
    return f"Reverted to version {target_version}"
