"""Shared checks used by the snapshot store and the lifecycle service."""

from datetime import datetime, timezone

from ipo_readiness.core.domain import (
    EDITABLE_STATUSES,
    Actor,
    Assessment,
    AssessmentStatus,
    Role,
)
from ipo_readiness.core.interfaces import IAssessmentRepository
from ipo_readiness.core.preconditions import GateResult, role_gate
from ipo_readiness.errors import (
    AssessmentError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def enforce(result: GateResult, error_class: type[AssessmentError]) -> None:
    """Raise ``error_class`` with the gate's reason unless the gate passed."""
    if not result.passed:
        raise error_class(result.reason, context=dict(result.details))


async def load_assessment(repository: IAssessmentRepository, assessment_id: str) -> Assessment:
    """Fetch an assessment or raise NotFoundError."""
    assessment = await repository.get_by_id(assessment_id)
    if assessment is None:
        raise NotFoundError(
            f"Assessment {assessment_id} not found",
            context={"assessment_id": assessment_id},
        )
    return assessment


def require_role(actor: Actor, role: Role) -> None:
    enforce(role_gate(actor, role), PermissionDeniedError)


def require_assigned_assessor(actor: Actor, assessment: Assessment) -> None:
    """Only the assigned assessor (if one is assigned) may edit or submit."""
    require_role(actor, Role.ASSESSOR)
    if assessment.assessor_id is not None and assessment.assessor_id != actor.id:
        raise PermissionDeniedError(
            "You are not the assessor assigned to this assessment",
            context={"assessment_id": assessment.id},
        )


def begin_edit(assessment: Assessment) -> None:
    """Check the assessment accepts edits, resuming it if it was rejected.

    Editing a REJECTED assessment is the implicit resume edge back to DRAFT.

    Raises:
        InvalidStateError: If the assessment is SUBMITTED or APPROVED.
    """
    if assessment.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot modify an assessment in {assessment.status.value} status",
            context={"assessment_id": assessment.id, "status": assessment.status.value},
        )
    if assessment.status is AssessmentStatus.REJECTED:
        assessment.status = AssessmentStatus.DRAFT
