"""ORM models for the content kernel."""

from content_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from content_kernel.models.notification import DeliveryStatus, NotifyEventModel
from content_kernel.models.sequence import SequenceCounter
from content_kernel.models.version import ContentVersionModel
from content_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStageModel

__all__ = [
    "ApprovalActionModel",
    "ApprovalRequestModel",
    "ContentVersionModel",
    "DeliveryStatus",
    "NotifyEventModel",
    "SequenceCounter",
    "WorkflowDefinitionModel",
    "WorkflowStageModel",
]
