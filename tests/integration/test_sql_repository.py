"""Integration tests for the SQLAlchemy repositories on in-memory SQLite."""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ipo_readiness.adapters.repositories import (
    SqlAssessmentRepository,
    SqlTemplateQuestionRepository,
    SqlVersionRegistry,
)
from ipo_readiness.core.domain import (
    Actor,
    AnswerRecord,
    Assessment,
    AssessmentStatus,
    PresetAnswers,
    QuestionType,
    Rating,
    ReviewAction,
    ReviewEntry,
    Role,
    SnapshotQuestion,
    TemplateQuestion,
    empty_snapshot,
)
from ipo_readiness.core.models import TemplateBankStateRow
from ipo_readiness.core.services import AssessmentLifecycle, TemplateBankService
from ipo_readiness.core.snapshot import QuestionSnapshotStore
from ipo_readiness.database import init_database
from ipo_readiness.errors import ConcurrentModificationError, NotFoundError, ValidationError
from tests.conftest import make_template_questions, scored_sections


@pytest_asyncio.fixture()
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine, factory = await init_database("sqlite+aiosqlite:///:memory:")
    yield factory
    await engine.dispose()


def _assessment(lead_id: str = "lead-1") -> Assessment:
    snapshot = empty_snapshot()
    snapshot[QuestionType.COMPANY] = [
        SnapshotQuestion(
            id="company_1",
            type=QuestionType.COMPANY,
            text="Is the board independent?",
            order=1,
            is_custom=False,
            source_question_id="company_1",
        ),
        SnapshotQuestion(
            id="custom_abc",
            type=QuestionType.COMPANY,
            text="Any pending litigation?",
            order=2,
            is_custom=True,
            help_text="Include tax disputes",
        ),
    ]
    return Assessment(
        id=f"assessment-{lead_id}",
        lead_id=lead_id,
        assessor_id="assessor-1",
        preset=PresetAnswers(has_investment_plan=True, turnover=(3.0, 2.0, None)),
        company_answers={"company_1": AnswerRecord(score=2, remark="ok", evidence_link="https://x")},
        question_snapshot=snapshot,
        question_snapshot_version=4,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class TestSqlAssessmentRepository:
    @pytest.mark.asyncio()
    async def test_create_and_read_back(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repository = SqlAssessmentRepository(session_factory)
        original = _assessment()

        created = await repository.create(original)
        loaded = await repository.get_by_id(original.id)

        assert created.version == 0
        assert loaded is not None
        assert loaded.preset == original.preset
        assert loaded.company_answers == original.company_answers
        assert loaded.question_snapshot == original.question_snapshot
        assert loaded.question_snapshot_version == 4
        assert loaded.created_at == original.created_at
        assert (await repository.get_by_lead_id("lead-1")).id == original.id
        assert await repository.get_by_id("missing") is None

    @pytest.mark.asyncio()
    async def test_one_assessment_per_lead(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repository = SqlAssessmentRepository(session_factory)
        await repository.create(_assessment())
        duplicate = _assessment()
        duplicate.id = "another-id"

        with pytest.raises(ValidationError):
            await repository.create(duplicate)

    @pytest.mark.asyncio()
    async def test_save_is_compare_and_swap(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repository = SqlAssessmentRepository(session_factory)
        await repository.create(_assessment())
        first = await repository.get_by_id("assessment-lead-1")
        second = await repository.get_by_id("assessment-lead-1")

        first.status = AssessmentStatus.SUBMITTED
        first.rating = Rating.IPO_READY
        first.score_breakdown = {"q1_investment_plan": 5.0}
        first.review_history = (
            ReviewEntry(
                reviewed_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
                action=ReviewAction.REJECTED,
                comments="Needs audited statements",
                reviewer_id="reviewer-1",
                reviewer_name="Ravi",
            ),
        )
        saved = await repository.save(first, expected_version=0)
        assert saved.version == 1
        assert saved.rating is Rating.IPO_READY
        assert saved.review_history == first.review_history

        second.current_step = 2
        with pytest.raises(ConcurrentModificationError):
            await repository.save(second, expected_version=0)
        assert (await repository.get_by_id(second.id)).current_step == 1

    @pytest.mark.asyncio()
    async def test_save_unknown_assessment(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        with pytest.raises(NotFoundError):
            await SqlAssessmentRepository(session_factory).save(_assessment(), expected_version=0)

    @pytest.mark.asyncio()
    async def test_list_by_status(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repository = SqlAssessmentRepository(session_factory)
        await repository.create(_assessment("lead-1"))
        submitted = await repository.create(_assessment("lead-2"))
        submitted.status = AssessmentStatus.SUBMITTED
        submitted.submitted_at = datetime(2024, 3, 1, tzinfo=timezone.utc)
        await repository.save(submitted, expected_version=0)

        pending = await repository.list_by_status(AssessmentStatus.SUBMITTED)
        assert [a.lead_id for a in pending] == ["lead-2"]
        assert pending[0].submitted_at == submitted.submitted_at


class TestSqlTemplateBank:
    @pytest.mark.asyncio()
    async def test_version_registry_starts_at_zero(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        registry = SqlVersionRegistry(session_factory)
        assert await registry.current_version() == 0
        assert await registry.bump() == 1
        assert await registry.bump() == 2
        assert await registry.current_version() == 2

    @pytest.mark.asyncio()
    async def test_state_row_is_seeded_so_first_bump_only_updates(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as session:
            rows = (await session.execute(select(TemplateBankStateRow))).scalars().all()
        assert [(row.id, row.version) for row in rows] == [(1, 0)]

        assert await SqlVersionRegistry(session_factory).bump() == 1

    @pytest.mark.asyncio()
    async def test_bump_retries_after_losing_the_insert_race(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        registry = SqlVersionRegistry(session_factory)
        duplicate = IntegrityError("INSERT INTO ira_template_bank_state", {}, Exception("UNIQUE"))
        increment = AsyncMock(side_effect=[duplicate, 2])

        with patch.object(registry, "_increment", increment):
            assert await registry.bump() == 2
        assert increment.await_count == 2

    @pytest.mark.asyncio()
    async def test_bump_recreates_missing_state_row(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as session, session.begin():
            await session.execute(delete(TemplateBankStateRow))
        registry = SqlVersionRegistry(session_factory)

        assert await registry.current_version() == 0
        assert await registry.bump() == 1
        assert await registry.bump() == 2

    @pytest.mark.asyncio()
    async def test_init_database_keeps_existing_version(self, tmp_path: Path) -> None:
        url = f"sqlite+aiosqlite:///{tmp_path / 'bank.db'}"
        engine, factory = await init_database(url)
        await SqlVersionRegistry(factory).bump()
        await engine.dispose()

        engine, factory = await init_database(url)
        try:
            assert await SqlVersionRegistry(factory).current_version() == 1
        finally:
            await engine.dispose()

    @pytest.mark.asyncio()
    async def test_question_repository(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repository = SqlTemplateQuestionRepository(session_factory)
        for question in make_template_questions():
            await repository.add(question)

        active_company = await repository.list(QuestionType.COMPANY)
        assert [q.id for q in active_company] == ["company_1", "company_2"]
        everything = await repository.list(include_inactive=True)
        assert everything[0].type is QuestionType.ELIGIBILITY
        assert len(everything) == 9

        updated = TemplateQuestion(
            id="company_1", type=QuestionType.COMPANY, text="Updated text here", order=5, is_active=False
        )
        await repository.update(updated)
        assert await repository.get("company_1") == updated
        with pytest.raises(NotFoundError):
            await repository.update(
                TemplateQuestion(id="missing", type=QuestionType.COMPANY, text="x", order=1)
            )


@pytest.mark.asyncio()
async def test_lifecycle_end_to_end_on_sqlite(session_factory: async_sessionmaker[AsyncSession]) -> None:
    question_repository = SqlTemplateQuestionRepository(session_factory)
    for question in make_template_questions():
        await question_repository.add(question)
    templates = TemplateBankService(question_repository, SqlVersionRegistry(session_factory))
    repository = SqlAssessmentRepository(session_factory)
    lifecycle = AssessmentLifecycle(repository, QuestionSnapshotStore(repository, templates))
    assessor = Actor(id="assessor-1", role=Role.ASSESSOR, name="Asha")
    reviewer = Actor(id="reviewer-1", role=Role.REVIEWER, name="Ravi")

    draft = await lifecycle.create_assessment("lead-1", assessor_id=assessor.id)
    await lifecycle.save_answers(assessor, draft.id, scored_sections())
    await lifecycle.submit(assessor, draft.id)
    approved = await lifecycle.approve(reviewer, draft.id, comments="Ready to list")

    stored = await repository.get_by_id(draft.id)
    assert stored.status is AssessmentStatus.APPROVED
    assert stored.version == approved.version == 3
    assert stored.review_history[0].comments == "Ready to list"
    assert stored.rating is Rating.NOT_READY
