"""Services for the content kernel (write side)."""

from content_kernel.services.approval_service import ApprovalService
from content_kernel.services.notification_outbox import NotificationOutbox
from content_kernel.services.sequence_service import SequenceService
from content_kernel.services.version_store import VersionStore
from content_kernel.services.workflow_registry import WorkflowRegistry

__all__ = [
    "ApprovalService",
    "NotificationOutbox",
    "SequenceService",
    "VersionStore",
    "WorkflowRegistry",
]
