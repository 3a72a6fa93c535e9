"""Error taxonomy for the assessment lifecycle engine.

Every rejected operation raises a distinct subclass of AssessmentError so a
host can react specifically (re-show a confirmation dialog, ask for a
reload, show the message verbatim). Each error carries a stable ErrorCode
and a small context dict that is safe to return to clients.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable machine-readable error codes returned to clients."""

    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    INVALID_STATE = "INVALID_STATE"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    QUESTIONS_OUTDATED = "QUESTIONS_OUTDATED"
    REORDER_MISMATCH = "REORDER_MISMATCH"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    LEAD_STATUS_SYNC_FAILED = "LEAD_STATUS_SYNC_FAILED"


class AssessmentError(Exception):
    """Base class for all engine errors.

    Attributes:
        message: Human-readable description, safe to show to users.
        error_code: Stable ErrorCode for programmatic handling.
        context: Extra identifiers describing the failure.
        status_code: Suggested HTTP status for API hosts.
        requires_confirmation: True only for gates that the caller can pass
            by explicitly acknowledging them.
    """

    error_code: ErrorCode = ErrorCode.INVALID_INPUT
    status_code: int = 400
    requires_confirmation: bool = False

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}


class ValidationError(AssessmentError):
    """Malformed or insufficient input; always user-correctable."""

    error_code = ErrorCode.INVALID_INPUT
    status_code = 400


class NotFoundError(AssessmentError):
    """The requested assessment or question does not exist."""

    error_code = ErrorCode.NOT_FOUND
    status_code = 404


class PermissionDeniedError(AssessmentError):
    """The actor's role is not allowed to perform the operation."""

    error_code = ErrorCode.INSUFFICIENT_PERMISSIONS
    status_code = 403


class InvalidStateError(AssessmentError):
    """The operation is not allowed in the assessment's current status."""

    error_code = ErrorCode.INVALID_STATE
    status_code = 409


class InvalidTransitionError(AssessmentError):
    """A status transition was attempted from a state that does not allow it."""

    error_code = ErrorCode.INVALID_STATUS_TRANSITION
    status_code = 409

    def __init__(self, current_status: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} an assessment in {current_status} status",
            context={"from": current_status, "operation": operation},
        )
        self.current_status = current_status
        self.operation = operation


class QuestionsOutdatedError(AssessmentError):
    """The question snapshot is older than the template bank.

    Not a hard failure: the caller may repeat the operation with an explicit
    acknowledgement that the old questions should be used.
    """

    error_code = ErrorCode.QUESTIONS_OUTDATED
    status_code = 409
    requires_confirmation = True

    def __init__(self, snapshot_version: int, current_version: int) -> None:
        super().__init__(
            "The question bank has changed since this assessment started. "
            "Confirm to proceed with the old questions.",
            context={
                "snapshot_version": snapshot_version,
                "current_version": current_version,
            },
        )
        self.snapshot_version = snapshot_version
        self.current_version = current_version


class ReorderMismatchError(AssessmentError):
    """The ids given to reorder are not an exact permutation of the current ids."""

    error_code = ErrorCode.REORDER_MISMATCH
    status_code = 409


class ConcurrentModificationError(AssessmentError):
    """Optimistic lock lost: the record changed since it was read.

    Recover by reloading the assessment and retrying deliberately.
    """

    error_code = ErrorCode.CONCURRENT_MODIFICATION
    status_code = 409

    def __init__(self, assessment_id: str, expected_version: int) -> None:
        super().__init__(
            "This assessment was modified by another user. Please reload and try again.",
            context={
                "assessment_id": assessment_id,
                "expected_version": expected_version,
            },
        )
        self.assessment_id = assessment_id
        self.expected_version = expected_version


class LeadStatusSyncError(AssessmentError):
    """Approval committed but the lead-status collaborator failed.

    Attributes:
        assessment: The committed, APPROVED assessment.
    """

    error_code = ErrorCode.LEAD_STATUS_SYNC_FAILED
    status_code = 502

    def __init__(self, assessment: Any, cause: Exception) -> None:
        super().__init__(
            "Assessment approved, but the lead status could not be updated.",
            context={
                "assessment_id": getattr(assessment, "id", None),
                "lead_id": getattr(assessment, "lead_id", None),
                "cause": type(cause).__name__,
            },
        )
        self.assessment = assessment
