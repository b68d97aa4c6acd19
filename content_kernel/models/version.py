"""
Module: content_kernel.models.version
Responsibility: ORM persistence for content version history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Contiguous numbering: UNIQUE(content_id, version_number) backs the
      locked-counter allocation in VersionStore; a racing insert fails
      with IntegrityError instead of creating a duplicate.
    - Append-only: ORM UPDATE/DELETE of a version row raises
      ImmutabilityViolationError.  Retention purges go through a bulk
      Core DELETE in VersionStore.purge_expired, which is the only
      sanctioned removal path.

Failure modes:
    - IntegrityError on duplicate (content_id, version_number).
    - ImmutabilityViolationError on ORM update/delete.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from content_kernel.db.base import Base, UUIDString
from content_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from content_kernel.domain.versioning import ContentVersion


class ContentVersionModel(Base):
    """Persistent content version. Append-only."""

    __tablename__ = "content_versions"

    __table_args__ = (
        UniqueConstraint(
            "content_id", "version_number",
            name="uq_content_versions_number",
        ),
        CheckConstraint(
            "version_number >= 1",
            name="ck_content_versions_positive_number",
        ),
        Index("ix_content_versions_created_at", "created_at"),
    )

    content_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    change_summary: Mapped[str | None] = mapped_column(
        String(500), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ContentVersion {self.content_id} v{self.version_number}>"

    def to_dto(self, include_body: bool = True) -> ContentVersion:
        """Convert ORM model to frozen domain DTO."""
        from content_kernel.domain.versioning import ContentVersion

        return ContentVersion(
            content_id=self.content_id,
            version_number=self.version_number,
            author_id=self.author_id,
            created_at=self.created_at,
            body=self.body if include_body else None,
            change_summary=self.change_summary,
        )


@event.listens_for(ContentVersionModel, "before_update")
def prevent_version_update(mapper, connection, target):
    """Prevent updates to content versions."""
    raise ImmutabilityViolationError(
        entity_type="ContentVersion",
        entity_id=f"{target.content_id}/v{target.version_number}",
        reason="Content versions are immutable -- append a new version instead",
    )


@event.listens_for(ContentVersionModel, "before_delete")
def prevent_version_delete(mapper, connection, target):
    """Prevent ORM deletion of content versions."""
    raise ImmutabilityViolationError(
        entity_type="ContentVersion",
        entity_id=f"{target.content_id}/v{target.version_number}",
        reason="Content versions are immutable -- cannot delete",
    )
