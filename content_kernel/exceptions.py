"""
Typed Exception Hierarchy for the Content Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval and version operations are called concurrently by many actors.
Callers must be able to tell "try again" apart from "you may not do that"
without parsing message strings.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)
  4. Declares whether it is RETRYABLE after re-reading current state

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ContentCoreError:

    ContentCoreError (base)
    |
    +-- ValidationError
    |   +-- FeedbackRequiredError
    |   +-- MalformedWorkflowError
    |   +-- RetentionPolicyError
    |
    +-- ConflictError
    |   +-- ConcurrentVersionConflictError   (retryable)
    |   +-- StageConflictError               (retryable)
    |   +-- StageAlreadyPassedError
    |
    +-- StateError
    |   +-- RequestTerminalError
    |   +-- StageNotReachedError
    |   +-- DuplicateActiveRequestError
    |   +-- DuplicateActionError
    |   +-- StageNotSkippableError
    |
    +-- NotFoundError
    |   +-- ContentNotFoundError
    |   +-- VersionNotFoundError
    |   +-- RequestNotFoundError
    |   +-- UnknownWorkflowError
    |
    +-- AuthorizationError
    |   +-- NotEligibleApproverError
    |   +-- CancellationNotPermittedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                          | When Raised
--------------|-------------------------------|---------------------------------------
Validation    | FEEDBACK_REQUIRED             | reject without feedback
              | MALFORMED_WORKFLOW            | bad stage numbering / empty stage slot
              | RETENTION_POLICY              | purge below the retention floor
--------------|-------------------------------|---------------------------------------
Conflict      | CONCURRENT_VERSION_CONFLICT   | two appends raced for one number
              | STAGE_CONFLICT                | request row changed under the caller
              | STAGE_ALREADY_PASSED          | decision aimed at an advanced stage
--------------|-------------------------------|---------------------------------------
State         | REQUEST_TERMINAL              | action on approved/rejected/cancelled
              | STAGE_NOT_REACHED             | action aimed at a future stage
              | DUPLICATE_ACTIVE_REQUEST      | second pending request for content
              | DUPLICATE_ACTION              | same approver decided stage twice
              | STAGE_NOT_SKIPPABLE           | skip on a required stage
--------------|-------------------------------|---------------------------------------
Not found     | CONTENT_NOT_FOUND             | catalog does not know content_id
              | VERSION_NOT_FOUND             | version_number missing for content
              | REQUEST_NOT_FOUND             | request_id unknown
              | UNKNOWN_WORKFLOW              | workflow_id unknown
--------------|-------------------------------|---------------------------------------
Authorization | NOT_ELIGIBLE_APPROVER         | actor does not fit the current stage
              | CANCELLATION_NOT_PERMITTED    | actor may not cancel / skip
--------------|-------------------------------|---------------------------------------
Immutability  | IMMUTABILITY_VIOLATION        | UPDATE/DELETE of an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRY ONLY WHAT IS RETRYABLE:

    try:
        store.append(content_id, body, author_id)
    except ConflictError as e:
        if e.retryable:
            ...  # re-read and try again (see content_services.retry)
        raise

2. USE STRUCTURED DATA:

    except NotEligibleApproverError as e:
        return {"error": e.code, "stage": e.stage_number}
"""


class ContentCoreError(Exception):
    """
    Base exception for all content core errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and a ``retryable`` flag read by the retry wrapper.
    """

    code: str = "CONTENT_CORE_ERROR"
    retryable: bool = False


# Validation errors


class ValidationError(ContentCoreError):
    """Input rejected synchronously; never retried."""

    code: str = "VALIDATION_ERROR"


class FeedbackRequiredError(ValidationError):
    """A reject decision was submitted without feedback."""

    code: str = "FEEDBACK_REQUIRED"

    def __init__(self, request_id: str, stage_number: int):
        self.request_id = request_id
        self.stage_number = stage_number
        super().__init__(
            f"Feedback is required to reject request {request_id} "
            f"at stage {stage_number}"
        )


class MalformedWorkflowError(ValidationError):
    """Workflow definition violates the stage layout rules."""

    code: str = "MALFORMED_WORKFLOW"

    def __init__(self, workflow_name: str, reason: str):
        self.workflow_name = workflow_name
        self.reason = reason
        super().__init__(f"Malformed workflow '{workflow_name}': {reason}")


class RetentionPolicyError(ValidationError):
    """Purge requested with a retention window below the floor."""

    code: str = "RETENTION_POLICY"

    def __init__(self, retention_days: int, floor_days: int):
        self.retention_days = retention_days
        self.floor_days = floor_days
        super().__init__(
            f"Retention of {retention_days} days is below the "
            f"{floor_days}-day floor"
        )


# Conflict errors


class ConflictError(ContentCoreError):
    """Concurrent modification detected; re-read current state."""

    code: str = "CONFLICT_ERROR"


class ConcurrentVersionConflictError(ConflictError):
    """Two appends for the same content raced for one version number."""

    code: str = "CONCURRENT_VERSION_CONFLICT"
    retryable = True

    def __init__(self, content_id: str, version_number: int):
        self.content_id = content_id
        self.version_number = version_number
        super().__init__(
            f"Version {version_number} of content {content_id} was "
            "allocated by a concurrent append"
        )


class StageConflictError(ConflictError):
    """Approval request row was modified by another transaction."""

    code: str = "STAGE_CONFLICT"
    retryable = True

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Approval request {request_id} was modified by another "
            "transaction"
        )


class StageAlreadyPassedError(ConflictError):
    """Decision targeted a stage the request has already left."""

    code: str = "STAGE_ALREADY_PASSED"

    def __init__(self, request_id: str, stage_number: int, current_stage: int):
        self.request_id = request_id
        self.stage_number = stage_number
        self.current_stage = current_stage
        super().__init__(
            f"Request {request_id} already advanced past stage "
            f"{stage_number} (now at stage {current_stage})"
        )


# State errors


class StateError(ContentCoreError):
    """Operation not valid for the current state; definitive failure."""

    code: str = "STATE_ERROR"


class RequestTerminalError(StateError):
    """Approval request is approved, rejected or cancelled."""

    code: str = "REQUEST_TERMINAL"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is {status}; no further "
            "actions accepted"
        )


class StageNotReachedError(StateError):
    """Action targets a stage later than the request's current stage."""

    code: str = "STAGE_NOT_REACHED"

    def __init__(self, request_id: str, stage_number: int, current_stage: int):
        self.request_id = request_id
        self.stage_number = stage_number
        self.current_stage = current_stage
        super().__init__(
            f"Stage {stage_number} of request {request_id} not reached "
            f"(current stage {current_stage})"
        )


class DuplicateActiveRequestError(StateError):
    """A pending approval request already exists for the content."""

    code: str = "DUPLICATE_ACTIVE_REQUEST"

    def __init__(self, content_id: str, existing_request_id: str | None = None):
        self.content_id = content_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Content {content_id} already has a pending approval request"
            + (f" ({existing_request_id})" if existing_request_id else "")
        )


class DuplicateActionError(StateError):
    """Approver already recorded a decision at this stage."""

    code: str = "DUPLICATE_ACTION"

    def __init__(self, request_id: str, stage_number: int, approver_id: str):
        self.request_id = request_id
        self.stage_number = stage_number
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} already decided stage {stage_number} "
            f"of request {request_id}"
        )


class StageNotSkippableError(StateError):
    """Skip requested on a required stage."""

    code: str = "STAGE_NOT_SKIPPABLE"

    def __init__(self, request_id: str, stage_number: int):
        self.request_id = request_id
        self.stage_number = stage_number
        super().__init__(
            f"Stage {stage_number} of request {request_id} is required "
            "and cannot be skipped"
        )


# Not-found errors


class NotFoundError(ContentCoreError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class ContentNotFoundError(NotFoundError):
    """Content management does not know this content item."""

    code: str = "CONTENT_NOT_FOUND"

    def __init__(self, content_id: str):
        self.content_id = content_id
        super().__init__(f"Content not found: {content_id}")


class VersionNotFoundError(NotFoundError):
    """Version number does not exist for the content item."""

    code: str = "VERSION_NOT_FOUND"

    def __init__(self, content_id: str, version_number: int):
        self.content_id = content_id
        self.version_number = version_number
        super().__init__(
            f"Version {version_number} not found for content {content_id}"
        )


class RequestNotFoundError(NotFoundError):
    """Approval request id is unknown."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class UnknownWorkflowError(NotFoundError):
    """Workflow id has no matching definition."""

    code: str = "UNKNOWN_WORKFLOW"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Unknown workflow: {workflow_id}")


# Authorization errors


class AuthorizationError(ContentCoreError):
    """Actor is not permitted to perform the operation."""

    code: str = "AUTHORIZATION_ERROR"


class NotEligibleApproverError(AuthorizationError):
    """Actor does not satisfy the stage's approver role or approver id."""

    code: str = "NOT_ELIGIBLE_APPROVER"

    def __init__(
        self,
        request_id: str,
        actor_id: str,
        stage_number: int,
        expected: str,
    ):
        self.request_id = request_id
        self.actor_id = actor_id
        self.stage_number = stage_number
        self.expected = expected
        super().__init__(
            f"Actor {actor_id} is not eligible at stage {stage_number} of "
            f"request {request_id} (expects {expected})"
        )


class CancellationNotPermittedError(AuthorizationError):
    """Actor may not cancel (or administratively skip) this request."""

    code: str = "CANCELLATION_NOT_PERMITTED"

    def __init__(self, request_id: str, actor_id: str, operation: str = "cancel"):
        self.request_id = request_id
        self.actor_id = actor_id
        self.operation = operation
        super().__init__(
            f"Actor {actor_id} may not {operation} request {request_id}"
        )


# Immutability errors


class ImmutabilityError(ContentCoreError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Content versions, approval actions and workflow definitions are
    append-only; terminal approval requests are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
