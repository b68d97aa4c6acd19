"""
Pytest fixtures for the content core test suite.

Provides:
- A fresh database per test (SQLite file in tmp_path by default)
- Deterministic clock, fake collaborators and well-known actors
- Kernel services bound to one session, and a ContentWorkflowCore
- Captured JSON logs

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead
  of a temporary SQLite file.  Tables are dropped after every test.
"""

import json
import logging
import os
import threading
from io import StringIO
from uuid import UUID, uuid4

import pytest

from content_config.schema import CoreSettings
from content_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from content_kernel.domain.clock import DeterministicClock
from content_kernel.domain.workflow import (
    Actor,
    ApprovalStage,
    ApprovalWorkflowDefinition,
    NotifyEvent,
)
from content_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from content_kernel.services import (
    ApprovalService,
    NotificationOutbox,
    VersionStore,
    WorkflowRegistry,
)
from content_services.core import ContentWorkflowCore
from content_services.retry import RetryPolicy
from content_services.workflow_executor import ApprovalWorkflowExecutor


# Well-known identities used across the suite
CREATOR_ID = UUID("00000000-0000-0000-0000-00000000c001")
EDITOR_ID = UUID("00000000-0000-0000-0000-00000000e001")
SECOND_EDITOR_ID = UUID("00000000-0000-0000-0000-00000000e002")
MARKETER_ID = UUID("00000000-0000-0000-0000-00000000a001")
LEGAL_ID = UUID("00000000-0000-0000-0000-00000000b001")
ADMIN_ID = UUID("00000000-0000-0000-0000-00000000d001")
SCHEDULER_ID = UUID("00000000-0000-0000-0000-00000000f001")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture content_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, core):
            core.append_version(...)
            logs = captured_logs()
            assert any(r["message"] == "version_appended" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("content_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'content.db'}"


@pytest.fixture
def engine(database_url):
    """Fresh schema for each test."""
    eng = init_engine_from_url(database_url, sqlite_busy_timeout=10.0)
    create_tables(eng)
    yield eng
    if eng.dialect.name != "sqlite":
        drop_tables(eng)
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A session whose work is rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock and collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


class FakeDirectory:
    """In-memory ApproverDirectory."""

    def __init__(self, members: dict[str, tuple[UUID, ...]] | None = None):
        self.members = dict(members or {})

    def users_with_role(self, role: str) -> tuple[UUID, ...]:
        return self.members.get(role, ())


class FakeCatalog:
    """In-memory ContentCatalog; content must be added before submission."""

    def __init__(self):
        self._known: set[UUID] = set()

    def add(self, content_id: UUID) -> UUID:
        self._known.add(content_id)
        return content_id

    def exists(self, content_id: UUID) -> bool:
        return content_id in self._known


class RecordingGateway:
    """NotifierGateway that records events; can be told to fail."""

    def __init__(self):
        self.published: list[NotifyEvent] = []
        self.fail_times = 0
        self._lock = threading.Lock()

    def publish(self, event: NotifyEvent) -> None:
        with self._lock:
            if self.fail_times > 0:
                self.fail_times -= 1
                raise ConnectionError("transport unavailable")
            self.published.append(event)

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.published]


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory({
        "creator": (CREATOR_ID,),
        "editor": (EDITOR_ID, SECOND_EDITOR_ID),
        "marketer": (MARKETER_ID,),
        "legal": (LEGAL_ID,),
    })


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def creator() -> Actor:
    return Actor(CREATOR_ID, ("creator",))


@pytest.fixture
def editor() -> Actor:
    return Actor(EDITOR_ID, ("editor",))


@pytest.fixture
def second_editor() -> Actor:
    return Actor(SECOND_EDITOR_ID, ("editor",))


@pytest.fixture
def marketer() -> Actor:
    return Actor(MARKETER_ID, ("marketer",))


@pytest.fixture
def legal() -> Actor:
    return Actor(LEGAL_ID, ("legal",))


@pytest.fixture
def admin() -> Actor:
    return Actor(ADMIN_ID, ("admin",))


@pytest.fixture
def outsider() -> Actor:
    return Actor(uuid4(), ("viewer",))


# =============================================================================
# Workflow definitions
# =============================================================================


def three_stage_definition(campaign_id: str = "spring-launch") -> ApprovalWorkflowDefinition:
    """creator -> editor -> marketer, all required."""
    return ApprovalWorkflowDefinition(
        campaign_id=campaign_id,
        name="standard_review",
        stages=(
            ApprovalStage(1, approver_role="creator"),
            ApprovalStage(2, approver_role="editor"),
            ApprovalStage(3, approver_role="marketer"),
        ),
    )


def optional_legal_definition(campaign_id: str = "social") -> ApprovalWorkflowDefinition:
    """editor -> legal (optional) -> marketer."""
    return ApprovalWorkflowDefinition(
        campaign_id=campaign_id,
        name="social_with_legal",
        stages=(
            ApprovalStage(1, approver_role="editor"),
            ApprovalStage(2, approver_role="legal", required=False),
            ApprovalStage(3, approver_role="marketer"),
        ),
    )


def double_edit_definition(campaign_id: str = "press-release") -> ApprovalWorkflowDefinition:
    """editor -> editor -> marketer: two consecutive editor sign-offs."""
    return ApprovalWorkflowDefinition(
        campaign_id=campaign_id,
        name="double_edit",
        stages=(
            ApprovalStage(1, approver_role="editor"),
            ApprovalStage(2, approver_role="editor"),
            ApprovalStage(3, approver_role="marketer"),
        ),
    )


@pytest.fixture
def standard_definition() -> ApprovalWorkflowDefinition:
    return three_stage_definition()


@pytest.fixture
def optional_definition() -> ApprovalWorkflowDefinition:
    return optional_legal_definition()


# =============================================================================
# Kernel services (one session)
# =============================================================================


@pytest.fixture
def version_store(session, deterministic_clock) -> VersionStore:
    return VersionStore(session, deterministic_clock)


@pytest.fixture
def workflow_registry(session, deterministic_clock) -> WorkflowRegistry:
    return WorkflowRegistry(session, deterministic_clock)


@pytest.fixture
def outbox(session, deterministic_clock) -> NotificationOutbox:
    return NotificationOutbox(session, deterministic_clock)


@pytest.fixture
def approval_service(session, deterministic_clock, outbox) -> ApprovalService:
    return ApprovalService(session, deterministic_clock, outbox)


@pytest.fixture
def executor(
    approval_service, workflow_registry, version_store, directory, catalog,
) -> ApprovalWorkflowExecutor:
    return ApprovalWorkflowExecutor(
        approvals=approval_service,
        registry=workflow_registry,
        versions=version_store,
        directory=directory,
        catalog=catalog,
    )


# =============================================================================
# ContentWorkflowCore
# =============================================================================


@pytest.fixture
def test_settings(database_url) -> CoreSettings:
    return CoreSettings(
        database_url=database_url,
        max_retries=5,
        retry_backoff_seconds=0.0,
        admin_roles=("admin",),
        notification_max_attempts=3,
    )


@pytest.fixture
def core(
    session_factory, deterministic_clock, directory, catalog, gateway, test_settings,
) -> ContentWorkflowCore:
    return ContentWorkflowCore(
        session_factory,
        clock=deterministic_clock,
        directory=directory,
        catalog=catalog,
        gateway=gateway,
        settings=test_settings,
    )


@pytest.fixture
def make_core(session_factory, deterministic_clock, directory, catalog, test_settings):
    """Build independent cores (separate in-process locks) on one database."""

    def _make(gateway=None, **overrides) -> ContentWorkflowCore:
        return ContentWorkflowCore(
            session_factory,
            clock=overrides.pop("clock", deterministic_clock),
            directory=overrides.pop("directory", directory),
            catalog=overrides.pop("catalog", catalog),
            gateway=gateway,
            settings=overrides.pop("settings", test_settings),
            retry_policy=overrides.pop(
                "retry_policy", RetryPolicy(max_attempts=10, backoff_seconds=0.0),
            ),
            **overrides,
        )

    return _make


@pytest.fixture
def new_content(catalog, core, creator):
    """Register a content id with the catalog and store its first version."""

    def _new(body: str = "Headline\nBody copy\n") -> UUID:
        content_id = catalog.add(uuid4())
        core.append_version(content_id, body, creator, summary="initial draft")
        return content_id

    return _new
