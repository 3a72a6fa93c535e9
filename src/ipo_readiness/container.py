"""Wiring of repositories, adapters and services."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ipo_readiness.adapters.memory import (
    InMemoryAssessmentRepository,
    InMemoryTemplateQuestionRepository,
    InMemoryVersionRegistry,
)
from ipo_readiness.adapters.notifications import LoggingLeadStatusCollaborator, LoggingNotificationSink
from ipo_readiness.adapters.repositories import (
    SqlAssessmentRepository,
    SqlTemplateQuestionRepository,
    SqlVersionRegistry,
)
from ipo_readiness.core.domain import TemplateQuestion
from ipo_readiness.core.interfaces import (
    IAssessmentRepository,
    ILeadStatusCollaborator,
    INotificationSink,
    ITemplateQuestionRepository,
    ITemplateVersionRegistry,
)
from ipo_readiness.core.services import AssessmentLifecycle, TemplateBankService
from ipo_readiness.core.snapshot import QuestionSnapshotStore
from ipo_readiness.settings import Settings


@dataclass(frozen=True)
class ServiceContainer:
    """Services shared by every request of one application instance."""

    settings: Settings
    lifecycle: AssessmentLifecycle
    snapshots: QuestionSnapshotStore
    templates: TemplateBankService


def build_container(
    settings: Settings,
    assessments: IAssessmentRepository,
    template_questions: ITemplateQuestionRepository,
    versions: ITemplateVersionRegistry,
    notifications: INotificationSink | None = None,
    lead_status: ILeadStatusCollaborator | None = None,
) -> ServiceContainer:
    """Assemble the services around the given persistence adapters.

    Args:
        settings: Validation thresholds are read from here.
        assessments: Assessment repository.
        template_questions: Template question repository.
        versions: Template bank version counter.
        notifications: Event sink; defaults to structured logging.
        lead_status: Collaborator called after approvals; defaults to logging.
    """
    templates = TemplateBankService(
        template_questions,
        versions,
        min_text_length=settings.min_question_text_length,
    )
    snapshots = QuestionSnapshotStore(
        assessments,
        templates,
        min_text_length=settings.min_question_text_length,
    )
    lifecycle = AssessmentLifecycle(
        assessments,
        snapshots,
        notifications=notifications if notifications is not None else LoggingNotificationSink(),
        lead_status=lead_status if lead_status is not None else LoggingLeadStatusCollaborator(),
        min_reject_comment_length=settings.min_reject_comment_length,
    )
    return ServiceContainer(
        settings=settings,
        lifecycle=lifecycle,
        snapshots=snapshots,
        templates=templates,
    )


def build_sql_container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    lead_status: ILeadStatusCollaborator | None = None,
) -> ServiceContainer:
    """Container backed by the SQLAlchemy repositories."""
    return build_container(
        settings,
        SqlAssessmentRepository(session_factory),
        SqlTemplateQuestionRepository(session_factory),
        SqlVersionRegistry(session_factory),
        lead_status=lead_status,
    )


def build_memory_container(
    settings: Settings,
    template_questions: list[TemplateQuestion] | None = None,
    template_version: int = 0,
    notifications: INotificationSink | None = None,
    lead_status: ILeadStatusCollaborator | None = None,
) -> ServiceContainer:
    """Container backed by in-process repositories.

    Args:
        settings: Service settings.
        template_questions: Initial template bank contents.
        template_version: Initial template bank version.
        notifications: Event sink; defaults to structured logging.
        lead_status: Collaborator called after approvals; defaults to logging.
    """
    return build_container(
        settings,
        InMemoryAssessmentRepository(),
        InMemoryTemplateQuestionRepository(template_questions),
        InMemoryVersionRegistry(version=template_version),
        notifications=notifications,
        lead_status=lead_status,
    )
