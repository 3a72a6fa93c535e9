"""Abstract interfaces (Protocol classes) for the assessment lifecycle engine.

Services depend on these interfaces, not on concrete implementations.
SQLAlchemy implementations live in ``adapters/repositories.py`` and
in-process ones in ``adapters/memory.py``. Notification and lead-status
collaborators are supplied by the host.
"""

from typing import Any, Protocol, runtime_checkable

from ipo_readiness.core.domain import (
    Assessment,
    AssessmentStatus,
    QuestionType,
    TemplateQuestion,
)


@runtime_checkable
class IAssessmentRepository(Protocol):
    """Persistence of Assessment records with optimistic concurrency."""

    async def create(self, assessment: Assessment) -> Assessment:
        """Insert a new assessment and return the stored copy."""
        ...

    async def get_by_id(self, assessment_id: str) -> Assessment | None:
        """Return a detached copy of the assessment, or None."""
        ...

    async def get_by_lead_id(self, lead_id: str) -> Assessment | None:
        """Return the assessment belonging to a lead, or None."""
        ...

    async def list_by_status(self, status: AssessmentStatus) -> list[Assessment]:
        """List assessments in a status, oldest submission first."""
        ...

    async def save(self, assessment: Assessment, expected_version: int) -> Assessment:
        """Write the whole record if the stored version equals expected_version.

        The stored version is incremented on success.

        Raises:
            ConcurrentModificationError: If the stored version differs.
            NotFoundError: If the assessment does not exist.
        """
        ...


@runtime_checkable
class ITemplateBank(Protocol):
    """Read-only view of the global template question bank."""

    async def list_active(self, question_type: QuestionType) -> list[TemplateQuestion]:
        """Active template questions of one type, in bank order."""
        ...

    async def current_version(self) -> int:
        """Current value of the bank's monotonic version counter."""
        ...


@runtime_checkable
class ITemplateVersionRegistry(Protocol):
    """The single monotonic version counter of the template bank."""

    async def current_version(self) -> int:
        """Return the current version."""
        ...

    async def bump(self) -> int:
        """Increment the version and return the new value."""
        ...


@runtime_checkable
class ITemplateQuestionRepository(Protocol):
    """Persistence for template questions managed by reviewers."""

    async def add(self, question: TemplateQuestion) -> TemplateQuestion:
        """Insert a template question."""
        ...

    async def get(self, question_id: str) -> TemplateQuestion | None:
        """Return one template question, or None."""
        ...

    async def update(self, question: TemplateQuestion) -> TemplateQuestion:
        """Replace a stored template question."""
        ...

    async def list(
        self,
        question_type: QuestionType | None = None,
        include_inactive: bool = False,
    ) -> list[TemplateQuestion]:
        """List template questions ordered by type then order."""
        ...


@runtime_checkable
class INotificationSink(Protocol):
    """Fire-and-forget event sink (e-mail, chat, message bus)."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver one event. Failures must not affect the caller's transition."""
        ...


@runtime_checkable
class ILeadStatusCollaborator(Protocol):
    """Host hook that advances the lead once its assessment is approved."""

    async def on_approved(self, lead_id: str) -> None:
        """Called after an APPROVED transition has been committed."""
        ...
