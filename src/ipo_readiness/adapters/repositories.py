"""SQLAlchemy repositories for the IPO readiness engine.

Implements the repository protocols from ``core/interfaces.py`` using the
SQLAlchemy 2.0 async ORM. Each call runs in its own session and
transaction. Assessment writes are compare-and-swap updates conditioned on
the version the caller read, so a lost race surfaces as
ConcurrentModificationError instead of a silent overwrite.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ipo_readiness.core.domain import (
    AnswerRecord,
    Assessment,
    AssessmentStatus,
    PresetAnswers,
    QuestionSnapshot,
    QuestionType,
    Rating,
    SnapshotQuestion,
    TemplateQuestion,
    empty_snapshot,
)
from ipo_readiness.core.guards import utcnow
from ipo_readiness.core.models import (
    TEMPLATE_BANK_STATE_ID,
    AssessmentRow,
    TemplateBankStateRow,
    TemplateQuestionRow,
)
from ipo_readiness.core.review_ledger import ReviewLedger
from ipo_readiness.errors import ConcurrentModificationError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Domain <-> row mapping
# ---------------------------------------------------------------------------


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _answers_to_json(answers: dict[str, AnswerRecord]) -> dict[str, Any]:
    return {question_id: asdict(record) for question_id, record in answers.items()}


def _answers_from_json(data: dict[str, Any] | None) -> dict[str, AnswerRecord]:
    return {question_id: AnswerRecord(**record) for question_id, record in (data or {}).items()}


def _snapshot_to_json(snapshot: QuestionSnapshot) -> dict[str, Any]:
    return {
        question_type.value: [
            {**asdict(question), "type": question.type.value} for question in questions
        ]
        for question_type, questions in snapshot.items()
    }


def _snapshot_from_json(data: dict[str, Any] | None) -> QuestionSnapshot:
    snapshot = empty_snapshot()
    for type_value, questions in (data or {}).items():
        snapshot[QuestionType(type_value)] = [
            SnapshotQuestion(**{**question, "type": QuestionType(question["type"])})
            for question in questions
        ]
    return snapshot


def _preset_to_json(preset: PresetAnswers) -> dict[str, Any]:
    data = asdict(preset)
    data["turnover"] = list(preset.turnover)
    data["ebitda"] = list(preset.ebitda)
    return data


def _preset_from_json(data: dict[str, Any] | None) -> PresetAnswers:
    data = dict(data or {})
    for series in ("turnover", "ebitda"):
        if series in data:
            data[series] = tuple(data[series])
    return PresetAnswers(**data)


def assessment_to_values(assessment: Assessment) -> dict[str, Any]:
    """Column values for an assessment, excluding ``version`` and timestamps."""
    return {
        "id": assessment.id,
        "lead_id": assessment.lead_id,
        "assessor_id": assessment.assessor_id,
        "status": assessment.status.value,
        "current_step": assessment.current_step,
        "company_verified": assessment.company_verified,
        "company_verified_at": assessment.company_verified_at,
        "financial_verified": assessment.financial_verified,
        "financial_verified_at": assessment.financial_verified_at,
        "preset_answers": _preset_to_json(assessment.preset),
        "company_answers": _answers_to_json(assessment.company_answers),
        "financial_answers": _answers_to_json(assessment.financial_answers),
        "sector_answers": _answers_to_json(assessment.sector_answers),
        "question_snapshot": _snapshot_to_json(assessment.question_snapshot),
        "question_snapshot_version": assessment.question_snapshot_version,
        "total_score": assessment.total_score,
        "max_score": assessment.max_score,
        "percentage": assessment.percentage,
        "rating": assessment.rating.value if assessment.rating else None,
        "score_breakdown": dict(assessment.score_breakdown) if assessment.score_breakdown else None,
        "review_history": ReviewLedger(assessment.review_history).to_records(),
        "submitted_at": assessment.submitted_at,
        "reviewed_at": assessment.reviewed_at,
    }


def assessment_from_row(row: AssessmentRow) -> Assessment:
    """Build a detached domain Assessment from an ORM row."""
    return Assessment(
        id=row.id,
        lead_id=row.lead_id,
        assessor_id=row.assessor_id,
        status=AssessmentStatus(row.status),
        current_step=row.current_step,
        company_verified=row.company_verified,
        company_verified_at=_aware(row.company_verified_at),
        financial_verified=row.financial_verified,
        financial_verified_at=_aware(row.financial_verified_at),
        preset=_preset_from_json(row.preset_answers),
        company_answers=_answers_from_json(row.company_answers),
        financial_answers=_answers_from_json(row.financial_answers),
        sector_answers=_answers_from_json(row.sector_answers),
        question_snapshot=_snapshot_from_json(row.question_snapshot),
        question_snapshot_version=row.question_snapshot_version,
        total_score=row.total_score,
        max_score=row.max_score,
        percentage=row.percentage,
        rating=Rating(row.rating) if row.rating else None,
        score_breakdown=dict(row.score_breakdown) if row.score_breakdown is not None else None,
        review_history=ReviewLedger.from_records(row.review_history).entries,
        submitted_at=_aware(row.submitted_at),
        reviewed_at=_aware(row.reviewed_at),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _template_from_row(row: TemplateQuestionRow) -> TemplateQuestion:
    return TemplateQuestion(
        id=row.id,
        type=QuestionType(row.type),
        text=row.text,
        order=row.order,
        help_text=row.help_text,
        is_active=row.is_active,
    )


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


class SqlAssessmentRepository:
    """IAssessmentRepository over the ira_assessments table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialise with an async session factory.

        Args:
            session_factory: Factory producing sessions bound to the engine.
        """
        self._session_factory = session_factory

    async def create(self, assessment: Assessment) -> Assessment:
        """Insert a new assessment at version 0.

        Raises:
            ValidationError: If the lead already has an assessment.
        """
        now = utcnow()
        row = AssessmentRow(
            **assessment_to_values(assessment),
            version=0,
            created_at=assessment.created_at or now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
                await session.flush()
                await session.refresh(row)
                created = assessment_from_row(row)
        except IntegrityError as exc:
            raise ValidationError(
                "Assessment already exists for this lead",
                context={"lead_id": assessment.lead_id},
            ) from exc

        logger.debug("Assessment row inserted", assessment_id=created.id, lead_id=created.lead_id)
        return created

    async def get_by_id(self, assessment_id: str) -> Assessment | None:
        async with self._session_factory() as session:
            row = await session.get(AssessmentRow, assessment_id)
            return assessment_from_row(row) if row is not None else None

    async def get_by_lead_id(self, lead_id: str) -> Assessment | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(AssessmentRow).where(AssessmentRow.lead_id == lead_id))
            return assessment_from_row(row) if row is not None else None

    async def list_by_status(self, status: AssessmentStatus) -> list[Assessment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AssessmentRow)
                .where(AssessmentRow.status == status.value)
                .order_by(AssessmentRow.submitted_at, AssessmentRow.created_at)
            )
            return [assessment_from_row(row) for row in result.scalars().all()]

    async def save(self, assessment: Assessment, expected_version: int) -> Assessment:
        """Write the record if its stored version still equals ``expected_version``.

        Raises:
            ConcurrentModificationError: If another writer committed first.
            NotFoundError: If the assessment does not exist.
        """
        values = assessment_to_values(assessment)
        values.pop("id")
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(AssessmentRow)
                .where(
                    AssessmentRow.id == assessment.id,
                    AssessmentRow.version == expected_version,
                )
                .values(**values, version=expected_version + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                exists = await session.scalar(
                    select(AssessmentRow.id).where(AssessmentRow.id == assessment.id)
                )
                if exists is None:
                    raise NotFoundError(
                        f"Assessment {assessment.id} not found",
                        context={"assessment_id": assessment.id},
                    )
                logger.info(
                    "Optimistic lock lost",
                    assessment_id=assessment.id,
                    expected_version=expected_version,
                )
                raise ConcurrentModificationError(assessment.id, expected_version)

            row = await session.get(AssessmentRow, assessment.id, populate_existing=True)
            return assessment_from_row(row)


# ---------------------------------------------------------------------------
# Template bank
# ---------------------------------------------------------------------------


class SqlTemplateQuestionRepository:
    """ITemplateQuestionRepository over the ira_template_questions table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, question: TemplateQuestion) -> TemplateQuestion:
        async with self._session_factory() as session, session.begin():
            session.add(
                TemplateQuestionRow(
                    id=question.id,
                    type=question.type.value,
                    text=question.text,
                    help_text=question.help_text,
                    order=question.order,
                    is_active=question.is_active,
                )
            )
        return question

    async def get(self, question_id: str) -> TemplateQuestion | None:
        async with self._session_factory() as session:
            row = await session.get(TemplateQuestionRow, question_id)
            return _template_from_row(row) if row is not None else None

    async def update(self, question: TemplateQuestion) -> TemplateQuestion:
        async with self._session_factory() as session, session.begin():
            row = await session.get(TemplateQuestionRow, question.id)
            if row is None:
                raise NotFoundError(
                    "Template question not found",
                    context={"question_id": question.id},
                )
            row.type = question.type.value
            row.text = question.text
            row.help_text = question.help_text
            row.order = question.order
            row.is_active = question.is_active
        return question

    async def list(
        self,
        question_type: QuestionType | None = None,
        include_inactive: bool = False,
    ) -> list[TemplateQuestion]:
        query = select(TemplateQuestionRow)
        if question_type is not None:
            query = query.where(TemplateQuestionRow.type == question_type.value)
        if not include_inactive:
            query = query.where(TemplateQuestionRow.is_active.is_(True))
        async with self._session_factory() as session:
            result = await session.execute(query)
            questions = [_template_from_row(row) for row in result.scalars().all()]
        type_order = list(QuestionType)
        return sorted(questions, key=lambda q: (type_order.index(q.type), q.order))


class SqlVersionRegistry:
    """ITemplateVersionRegistry stored in the single ira_template_bank_state row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def current_version(self) -> int:
        async with self._session_factory() as session:
            version = await session.scalar(
                select(TemplateBankStateRow.version).where(TemplateBankStateRow.id == TEMPLATE_BANK_STATE_ID)
            )
            return version or 0

    async def bump(self) -> int:
        try:
            version = await self._increment()
        except IntegrityError:
            # A concurrent first bump inserted the state row; update it instead.
            version = await self._increment()
        logger.debug("Template bank version bumped", template_version=version)
        return version

    async def _increment(self) -> int:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(TemplateBankStateRow)
                .where(TemplateBankStateRow.id == TEMPLATE_BANK_STATE_ID)
                .values(version=TemplateBankStateRow.version + 1)
            )
            if result.rowcount == 0:
                session.add(TemplateBankStateRow(id=TEMPLATE_BANK_STATE_ID, version=1))
                await session.flush()
            return await session.scalar(
                select(TemplateBankStateRow.version).where(TemplateBankStateRow.id == TEMPLATE_BANK_STATE_ID)
            )
