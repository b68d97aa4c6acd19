"""
Module: content_services
Responsibility:
    Orchestration layer: the ContentWorkflowCore operation contract, the
    approval workflow executor, the notification relay, the retry
    wrapper and the maintenance CLI.

Architecture position:
    Services -- outermost layer.  May import content_kernel,
    content_engines and content_config.  Nothing below imports this
    package.
"""

from content_services.core import ContentWorkflowCore
from content_services.notifications import NotificationRelay, RelayResult
from content_services.retry import RetryPolicy, is_retryable, run_with_retry
from content_services.workflow_executor import ApprovalWorkflowExecutor

__all__ = [
    "ApprovalWorkflowExecutor",
    "ContentWorkflowCore",
    "NotificationRelay",
    "RelayResult",
    "RetryPolicy",
    "is_retryable",
    "run_with_retry",
]
