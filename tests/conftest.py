"""Test fixtures for the IPO readiness engine.

Provides actors, in-memory repositories seeded with a small template bank,
fully wired services and a manual scheduler for driving the auto-save
coordinator deterministically.
"""

import itertools
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from ipo_readiness.adapters.memory import (
    InMemoryAssessmentRepository,
    InMemoryTemplateQuestionRepository,
    InMemoryVersionRegistry,
)
from ipo_readiness.core.domain import (
    Actor,
    AnswerRecord,
    AnswerSection,
    Assessment,
    QuestionType,
    Role,
    TemplateQuestion,
)
from ipo_readiness.core.services import AssessmentLifecycle, TemplateBankService
from ipo_readiness.core.snapshot import QuestionSnapshotStore
from ipo_readiness.settings import Settings

# ---------------------------------------------------------------------------
# Manual scheduler
# ---------------------------------------------------------------------------


class ManualTimerHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when ``advance`` is called.

    Due callbacks fire synchronously, in time order, during ``advance``.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._sequence = itertools.count()
        self._timers: list[tuple[float, int, ManualTimerHandle, Callable[[], None]]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimerHandle:
        handle = ManualTimerHandle()
        self._timers.append((self._now + delay, next(self._sequence), handle, callback))
        return handle

    @property
    def pending(self) -> list[float]:
        """Due times of timers that have not fired or been cancelled."""
        return sorted(when for when, _, handle, _ in self._timers if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = sorted(
                (timer for timer in self._timers if timer[0] <= target and not timer[2].cancelled),
                key=lambda timer: (timer[0], timer[1]),
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self._now = timer[0]
            timer[3]()
        self._now = target


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


# ---------------------------------------------------------------------------
# Actors and settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture()
def assessor() -> Actor:
    return Actor(id="assessor-1", role=Role.ASSESSOR, name="Asha Assessor")


@pytest.fixture()
def other_assessor() -> Actor:
    return Actor(id="assessor-2", role=Role.ASSESSOR, name="Other Assessor")


@pytest.fixture()
def reviewer() -> Actor:
    return Actor(id="reviewer-1", role=Role.REVIEWER, name="Ravi Reviewer")


# ---------------------------------------------------------------------------
# Template bank and services
# ---------------------------------------------------------------------------


def make_template_questions() -> list[TemplateQuestion]:
    """Two active questions per type plus one inactive company question."""
    questions = []
    for question_type in QuestionType:
        prefix = question_type.value.lower()
        questions.append(
            TemplateQuestion(
                id=f"{prefix}_1",
                type=question_type,
                text=f"First {prefix} readiness question",
                order=1,
            )
        )
        questions.append(
            TemplateQuestion(
                id=f"{prefix}_2",
                type=question_type,
                text=f"Second {prefix} readiness question",
                order=2,
                help_text="Consider the last three financial years",
            )
        )
    questions.append(
        TemplateQuestion(
            id="company_retired",
            type=QuestionType.COMPANY,
            text="Retired company readiness question",
            order=3,
            is_active=False,
        )
    )
    return questions


@pytest.fixture()
def repository() -> InMemoryAssessmentRepository:
    return InMemoryAssessmentRepository()


@pytest.fixture()
def template_repository() -> InMemoryTemplateQuestionRepository:
    return InMemoryTemplateQuestionRepository(make_template_questions())


@pytest.fixture()
def versions() -> InMemoryVersionRegistry:
    return InMemoryVersionRegistry(version=1)


@pytest.fixture()
def templates(
    template_repository: InMemoryTemplateQuestionRepository,
    versions: InMemoryVersionRegistry,
) -> TemplateBankService:
    return TemplateBankService(template_repository, versions)


@pytest.fixture()
def snapshots(
    repository: InMemoryAssessmentRepository,
    templates: TemplateBankService,
) -> QuestionSnapshotStore:
    return QuestionSnapshotStore(repository, templates)


@pytest.fixture()
def notifications() -> AsyncMock:
    """Mock INotificationSink."""
    return AsyncMock()


@pytest.fixture()
def lead_status() -> AsyncMock:
    """Mock ILeadStatusCollaborator."""
    return AsyncMock()


@pytest.fixture()
def lifecycle(
    repository: InMemoryAssessmentRepository,
    snapshots: QuestionSnapshotStore,
    notifications: AsyncMock,
    lead_status: AsyncMock,
) -> AssessmentLifecycle:
    return AssessmentLifecycle(
        repository,
        snapshots,
        notifications=notifications,
        lead_status=lead_status,
    )


@pytest_asyncio.fixture()
async def draft(lifecycle: AssessmentLifecycle, assessor: Actor) -> Assessment:
    """A fresh DRAFT assessment assigned to ``assessor``."""
    return await lifecycle.create_assessment(lead_id="lead-1", assessor_id=assessor.id)


def scored_sections() -> dict[AnswerSection, dict[str, AnswerRecord]]:
    """One scored answer per section, keyed by template question ids."""
    return {
        AnswerSection.COMPANY: {"company_1": AnswerRecord(score=2, remark="Strong board")},
        AnswerSection.FINANCIAL: {"financial_1": AnswerRecord(score=1)},
        AnswerSection.SECTOR: {"sector_2": AnswerRecord(score=-1)},
    }


@pytest_asyncio.fixture()
async def submitted(
    lifecycle: AssessmentLifecycle,
    assessor: Actor,
    draft: Assessment,
) -> Assessment:
    """The ``draft`` assessment answered in every section and submitted."""
    await lifecycle.save_answers(assessor, draft.id, scored_sections())
    return await lifecycle.submit(assessor, draft.id)
