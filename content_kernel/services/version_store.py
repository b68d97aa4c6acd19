"""
VersionStore -- append-only ledger of content bodies.

Responsibility:
    Durably and immutably records every body-text change to a content
    item, lists and pages through its history, reverts by appending, and
    purges versions past the retention window.

Architecture position:
    Kernel > Services -- imperative shell.  May import from domain/,
    models/, db/, services/sequence_service.  Never commits; the caller
    owns the transaction.

Invariants enforced:
    - Contiguous numbering: the next number comes from the locked
      ``content_version:<id>`` counter row, and the insert is guarded by
      UNIQUE(content_id, version_number).  Numbers are 1..N with no gaps
      among committed versions.
    - Append-only: no method updates a stored version.  ``revert`` reads
      the target body and appends it.
    - Retention floor: ``purge_expired`` refuses windows shorter than
      RETENTION_FLOOR_DAYS, and never removes a content item's latest
      version or a version pinned by a pending approval request.

Failure modes:
    - ConcurrentVersionConflictError (retryable) when the insert loses a
      race for its version number.
    - VersionNotFoundError for an unknown (content_id, version_number).
    - RetentionPolicyError for a purge window below the floor.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from content_kernel.domain.clock import Clock, SystemClock
from content_kernel.domain.versioning import (
    RETENTION_FLOOR_DAYS,
    ContentVersion,
    revert_summary,
)
from content_kernel.exceptions import (
    ConcurrentVersionConflictError,
    RetentionPolicyError,
    VersionNotFoundError,
)
from content_kernel.logging_config import get_logger
from content_kernel.models.approval import ApprovalRequestModel
from content_kernel.models.version import ContentVersionModel
from content_kernel.services.sequence_service import SequenceService

logger = get_logger("services.version_store")


class VersionStore:
    """Append-only version history, one sequence per content item."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        content_id: UUID,
        body: str,
        author_id: UUID,
        change_summary: str | None = None,
    ) -> ContentVersion:
        """Append a new version; the number is allocated, never supplied."""
        version_number = self._sequences.next_value(
            SequenceService.content_version(content_id)
        )
        model = ContentVersionModel(
            content_id=content_id,
            version_number=version_number,
            body=body,
            author_id=author_id,
            change_summary=change_summary,
            created_at=self._clock.now(),
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "version_append_conflict",
                extra={
                    "content_id": str(content_id),
                    "version_number": version_number,
                },
            )
            raise ConcurrentVersionConflictError(str(content_id), version_number)

        logger.info(
            "version_appended",
            extra={
                "content_id": str(content_id),
                "version_number": version_number,
                "author_id": str(author_id),
                "body_length": len(body),
            },
        )
        return model.to_dto()

    def revert(
        self,
        content_id: UUID,
        target_version: int,
        author_id: UUID,
    ) -> ContentVersion:
        """Append a copy of ``target_version``'s body as the newest version."""
        target = self.get(content_id, target_version)
        reverted = self.append(
            content_id,
            target.body or "",
            author_id,
            change_summary=revert_summary(target_version),
        )
        logger.info(
            "version_reverted",
            extra={
                "content_id": str(content_id),
                "target_version": target_version,
                "new_version": reverted.version_number,
            },
        )
        return reverted

    def purge_expired(
        self,
        as_of: datetime,
        retention_days: int = RETENTION_FLOOR_DAYS,
        content_id: UUID | None = None,
    ) -> int:
        """Bulk-delete versions created before ``as_of - retention_days``.

        Returns the number of versions removed.
        """
        if retention_days < RETENTION_FLOOR_DAYS:
            raise RetentionPolicyError(retention_days, RETENTION_FLOOR_DAYS)

        cutoff = as_of - timedelta(days=retention_days)
        versions = ContentVersionModel.__table__
        newer = aliased(ContentVersionModel)
        requests = ApprovalRequestModel.__table__

        has_newer = (
            select(newer.id)
            .where(
                newer.content_id == versions.c.content_id,
                newer.version_number > versions.c.version_number,
            )
            .exists()
        )
        is_pinned = (
            select(requests.c.id)
            .where(
                requests.c.content_id == versions.c.content_id,
                requests.c.version_number == versions.c.version_number,
                requests.c.status == "pending",
            )
            .exists()
        )

        stmt = delete(versions).where(
            versions.c.created_at < cutoff,
            has_newer,
            ~is_pinned,
        )
        if content_id is not None:
            stmt = stmt.where(versions.c.content_id == content_id)

        result = self._session.execute(stmt)
        purged = result.rowcount or 0

        logger.info(
            "versions_purged",
            extra={
                "cutoff": cutoff.isoformat(),
                "retention_days": retention_days,
                "content_id": str(content_id) if content_id else None,
                "purged": purged,
            },
        )
        return purged

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, content_id: UUID, version_number: int) -> ContentVersion:
        model = self._session.execute(
            select(ContentVersionModel).where(
                ContentVersionModel.content_id == content_id,
                ContentVersionModel.version_number == version_number,
            )
        ).scalar_one_or_none()
        if model is None:
            raise VersionNotFoundError(str(content_id), version_number)
        return model.to_dto()

    def exists(self, content_id: UUID, version_number: int) -> bool:
        return self._session.execute(
            select(
                exists().where(
                    ContentVersionModel.content_id == content_id,
                    ContentVersionModel.version_number == version_number,
                )
            )
        ).scalar_one()

    def latest_version_number(self, content_id: UUID) -> int | None:
        """Highest stored version number, or None for unknown content."""
        return self._session.execute(
            select(func.max(ContentVersionModel.version_number)).where(
                ContentVersionModel.content_id == content_id,
            )
        ).scalar_one_or_none()

    def list(
        self,
        content_id: UUID,
        include_body: bool = False,
        after_version: int = 0,
        limit: int | None = None,
    ) -> list[ContentVersion]:
        """Versions oldest first, starting after ``after_version``."""
        stmt = (
            select(ContentVersionModel)
            .where(
                ContentVersionModel.content_id == content_id,
                ContentVersionModel.version_number > after_version,
            )
            .order_by(ContentVersionModel.version_number)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        models = self._session.execute(stmt).scalars().all()
        return [m.to_dto(include_body=include_body) for m in models]

    def iter_versions(
        self,
        content_id: UUID,
        batch_size: int = 100,
        include_body: bool = False,
        after_version: int = 0,
    ) -> Iterator[ContentVersion]:
        """Page through the history; resume by passing the last number seen."""
        cursor = after_version
        while True:
            page = self.list(
                content_id,
                include_body=include_body,
                after_version=cursor,
                limit=batch_size,
            )
            yield from page
            if len(page) < batch_size:
                return
            cursor = page[-1].version_number
