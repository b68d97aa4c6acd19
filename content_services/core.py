"""
content_services.core -- ContentWorkflowCore, the public operation contract.

Responsibility:
    One entry point for every content approval and version-history
    operation.  Each call runs as a single transaction on its own
    session, serialized per content item or request inside the process,
    retried on transient conflicts, and followed by a best-effort
    notification relay once the transaction has committed.

Architecture position:
    Services -- outermost layer.  Wires content_kernel services,
    content_engines and content_config together.  Nothing imports this
    module except callers of the core and the maintenance CLI.

Invariants enforced:
    - Atomicity: an operation's writes (version row, request row, action
      row, notify-events) commit together or not at all.
    - Delivery never affects outcome: relay failures are logged after
      commit and never raised to the caller.
    - Every log line of an operation carries a shared correlation_id and
      the operation name.

Failure modes:
    - Any ContentCoreError raised by a kernel service or engine, after
      retries for the ones flagged retryable.
    - OperationalError once retries are exhausted.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from contextlib import nullcontext
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from content_config import get_settings, load_workflow_definitions
from content_config.schema import CoreSettings
from content_engines.diff import diff_bodies
from content_kernel.db.engine import (
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from content_kernel.domain.clock import Clock, SystemClock
from content_kernel.domain.versioning import ContentVersion, VersionDiff
from content_kernel.domain.workflow import (
    Actor,
    ApprovalActionKind,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalWorkflowDefinition,
    ApproverDirectory,
    ContentCatalog,
    NotifierGateway,
    NotifyEvent,
    RequestAuthority,
    RoleBasedRequestAuthority,
)
from content_kernel.logging_config import LogContext, get_logger
from content_kernel.services.approval_service import ApprovalService
from content_kernel.services.notification_outbox import NotificationOutbox
from content_kernel.services.version_store import VersionStore
from content_kernel.services.workflow_registry import WorkflowRegistry
from content_kernel.utils.locks import KeyedLock
from content_services.notifications import NotificationRelay, RelayResult
from content_services.retry import RetryPolicy, run_with_retry
from content_services.workflow_executor import ApprovalWorkflowExecutor

logger = get_logger("services.core")

T = TypeVar("T")

SCHEDULER_ROLE = "scheduler"


class ContentWorkflowCore:
    """Content approval workflow plus append-only version history."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Clock | None = None,
        directory: ApproverDirectory | None = None,
        catalog: ContentCatalog | None = None,
        authority: RequestAuthority | None = None,
        gateway: NotifierGateway | None = None,
        settings: CoreSettings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or CoreSettings()
        self._directory = directory
        self._catalog = catalog
        self._authority = authority or RoleBasedRequestAuthority(
            admin_roles=frozenset(self._settings.admin_roles),
        )
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=self._settings.max_retries,
            backoff_seconds=self._settings.retry_backoff_seconds,
        )
        self._locks = KeyedLock()
        self._relay = (
            NotificationRelay(
                session_factory,
                gateway,
                clock=self._clock,
                max_attempts=self._settings.notification_max_attempts,
                batch_size=self._settings.notification_batch_size,
            )
            if gateway is not None
            else None
        )

    @classmethod
    def from_settings(
        cls,
        settings: CoreSettings | None = None,
        **collaborators,
    ) -> ContentWorkflowCore:
        """Initialize the engine from ``settings.database_url`` and build a core."""
        settings = settings or get_settings()
        init_engine_from_url(settings.database_url)
        return cls(get_session_factory(), settings=settings, **collaborators)

    @property
    def settings(self) -> CoreSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Approval workflow
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        content_id: UUID,
        version_number: int,
        workflow_id: UUID,
        actor: Actor,
    ) -> ApprovalRequest:
        return self._run(
            "submit_for_approval",
            lambda s: self._executor(s).submit(
                content_id, version_number, workflow_id, actor,
            ),
            lock_key=("content", content_id),
            actor_id=actor.actor_id,
            content_id=content_id,
        )

    def record_approval_action(
        self,
        request_id: UUID,
        actor: Actor,
        action: ApprovalActionKind | str,
        feedback: str | None = None,
        stage_number: int | None = None,
    ) -> ApprovalRequest:
        """Record an approver's decision.

        Without ``stage_number`` the action applies to the stage the request
        was at when the call began, read before the request lock is taken.
        """
        if stage_number is None:
            stage_number = self._current_stage(request_id)
        return self._run(
            "record_approval_action",
            lambda s: self._executor(s).record_action(
                request_id, actor, action,
                feedback=feedback, stage_number=stage_number,
            ),
            lock_key=("request", request_id),
            actor_id=actor.actor_id,
            request_id=request_id,
        )

    def cancel_approval_request(
        self, request_id: UUID, actor: Actor,
    ) -> ApprovalRequest:
        return self._run(
            "cancel_approval_request",
            lambda s: self._executor(s).cancel(request_id, actor),
            lock_key=("request", request_id),
            actor_id=actor.actor_id,
            request_id=request_id,
        )

    def skip_optional_stage(
        self,
        request_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> ApprovalRequest:
        return self._run(
            "skip_optional_stage",
            lambda s: self._executor(s).skip_optional_stage(
                request_id, actor, reason=reason,
            ),
            lock_key=("request", request_id),
            actor_id=actor.actor_id,
            request_id=request_id,
        )

    def skip_overdue_optional_stages(
        self,
        as_of: datetime,
        window: timedelta,
        actor_id: UUID,
    ) -> list[ApprovalRequest]:
        """Scheduler hook: skip optional stages waiting longer than ``window``."""
        scheduler = Actor(actor_id=actor_id, roles=(SCHEDULER_ROLE,))
        return self._run(
            "skip_overdue_optional_stages",
            lambda s: self._executor(s).skip_overdue_optional_stages(
                as_of, window, scheduler,
            ),
            actor_id=actor_id,
        )

    def get_approval_status(self, content_id: UUID) -> ApprovalRequest | None:
        return self._run(
            "get_approval_status",
            lambda s: self._executor(s).get_status(content_id),
            relay=False,
            content_id=content_id,
        )

    def get_approval_request(self, request_id: UUID) -> ApprovalRequest:
        return self._run(
            "get_approval_request",
            lambda s: self._executor(s).get_request(request_id),
            relay=False,
            request_id=request_id,
        )

    def list_approval_actions(self, request_id: UUID) -> list[ApprovalActionRecord]:
        return self._run(
            "list_approval_actions",
            lambda s: ApprovalService(s, self._clock).list_actions(request_id),
            relay=False,
            request_id=request_id,
        )

    def list_notify_events(self, request_id: UUID) -> list[NotifyEvent]:
        return self._run(
            "list_notify_events",
            lambda s: NotificationOutbox(s, self._clock).list_for_request(request_id),
            relay=False,
            request_id=request_id,
        )

    # ------------------------------------------------------------------
    # Version history
    # ------------------------------------------------------------------

    def append_version(
        self,
        content_id: UUID,
        body: str,
        actor: Actor,
        summary: str | None = None,
    ) -> ContentVersion:
        def op(session: Session) -> ContentVersion:
            version = VersionStore(session, self._clock).append(
                content_id, body, actor.actor_id, change_summary=summary,
            )
            self._executor(session).note_new_version(
                content_id, version.version_number,
            )
            return version

        return self._run(
            "append_version", op,
            lock_key=("content", content_id),
            actor_id=actor.actor_id,
            content_id=content_id,
        )

    def revert_to_version(
        self,
        content_id: UUID,
        target_version: int,
        actor: Actor,
    ) -> ContentVersion:
        def op(session: Session) -> ContentVersion:
            version = VersionStore(session, self._clock).revert(
                content_id, target_version, actor.actor_id,
            )
            self._executor(session).note_new_version(
                content_id, version.version_number,
            )
            return version

        return self._run(
            "revert_to_version", op,
            lock_key=("content", content_id),
            actor_id=actor.actor_id,
            content_id=content_id,
        )

    def get_version(self, content_id: UUID, version_number: int) -> ContentVersion:
        return self._run(
            "get_version",
            lambda s: VersionStore(s, self._clock).get(content_id, version_number),
            relay=False,
            content_id=content_id,
        )

    def list_versions(
        self,
        content_id: UUID,
        include_body: bool = False,
        after_version: int = 0,
        limit: int | None = None,
    ) -> list[ContentVersion]:
        return self._run(
            "list_versions",
            lambda s: VersionStore(s, self._clock).list(
                content_id,
                include_body=include_body,
                after_version=after_version,
                limit=limit,
            ),
            relay=False,
            content_id=content_id,
        )

    def diff_versions(
        self, content_id: UUID, version_a: int, version_b: int,
    ) -> VersionDiff:
        """Line changes that turn ``version_a``'s body into ``version_b``'s."""

        def op(session: Session) -> VersionDiff:
            store = VersionStore(session, self._clock)
            old = store.get(content_id, version_a)
            new = old if version_a == version_b else store.get(content_id, version_b)
            return VersionDiff(
                content_id=content_id,
                from_version=version_a,
                to_version=version_b,
                changes=diff_bodies(old.body or "", new.body or ""),
            )

        return self._run("diff_versions", op, relay=False, content_id=content_id)

    def purge_expired_versions(
        self,
        as_of: datetime | None = None,
        retention_days: int | None = None,
        content_id: UUID | None = None,
    ) -> int:
        as_of = as_of or self._clock.now()
        days = self._settings.retention_days if retention_days is None else retention_days
        return self._run(
            "purge_expired_versions",
            lambda s: VersionStore(s, self._clock).purge_expired(
                as_of, retention_days=days, content_id=content_id,
            ),
            relay=False,
            content_id=content_id,
        )

    # ------------------------------------------------------------------
    # Workflow definitions
    # ------------------------------------------------------------------

    def register_workflow(
        self, definition: ApprovalWorkflowDefinition,
    ) -> ApprovalWorkflowDefinition:
        return self._run(
            "register_workflow",
            lambda s: WorkflowRegistry(s, self._clock).register(definition),
            lock_key=("campaign", definition.campaign_id),
            relay=False,
        )

    def load_workflows_from_config(
        self, path: Path | str | None = None,
    ) -> list[ApprovalWorkflowDefinition]:
        """Register every workflow in a YAML file; unchanged ones are reused."""
        definitions = load_workflow_definitions(path)

        def op(session: Session) -> list[ApprovalWorkflowDefinition]:
            registry = WorkflowRegistry(session, self._clock)
            return [registry.register(d) for d in definitions]

        return self._run("load_workflows_from_config", op, relay=False)

    def get_workflow(self, workflow_id: UUID) -> ApprovalWorkflowDefinition:
        return self._run(
            "get_workflow",
            lambda s: WorkflowRegistry(s, self._clock).get(workflow_id),
            relay=False,
        )

    def latest_workflow_for_campaign(
        self, campaign_id: str,
    ) -> ApprovalWorkflowDefinition | None:
        return self._run(
            "latest_workflow_for_campaign",
            lambda s: WorkflowRegistry(s, self._clock).latest_for_campaign(campaign_id),
            relay=False,
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def relay_notifications(self) -> RelayResult:
        """Deliver pending notify-events now; a no-op without a gateway."""
        if self._relay is None:
            return RelayResult()
        with LogContext.bind(
            correlation_id=uuid4(), operation="relay_notifications",
        ):
            return self._relay.drain()

    def notification_status_counts(self) -> dict[str, int]:
        return self._run(
            "notification_status_counts",
            lambda s: NotificationOutbox(s, self._clock).status_counts(),
            relay=False,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _executor(self, session: Session) -> ApprovalWorkflowExecutor:
        return ApprovalWorkflowExecutor(
            approvals=ApprovalService(session, self._clock),
            registry=WorkflowRegistry(session, self._clock),
            versions=VersionStore(session, self._clock),
            directory=self._directory,
            catalog=self._catalog,
            authority=self._authority,
        )

    def _run(
        self,
        operation_name: str,
        fn: Callable[[Session], T],
        *,
        lock_key: Hashable | None = None,
        relay: bool = True,
        **context,
    ) -> T:
        def attempt() -> T:
            with session_scope(self._session_factory) as session:
                return fn(session)

        with LogContext.bind(
            correlation_id=uuid4(), operation=operation_name, **context,
        ):
            guard = self._locks.hold(lock_key) if lock_key is not None else nullcontext()
            with guard:
                result = run_with_retry(
                    attempt, self._retry_policy, operation_name=operation_name,
                )
            if relay:
                self._relay_after_commit()
        return result

    def _current_stage(self, request_id: UUID) -> int:
        return self.get_approval_request(request_id).current_stage

    def _relay_after_commit(self) -> None:
        if self._relay is None:
            return
        try:
            self._relay.relay_pending()
        except Exception:
            # The operation has committed; the next relay pass picks events up.
            logger.warning("notification_relay_failed", exc_info=True)
