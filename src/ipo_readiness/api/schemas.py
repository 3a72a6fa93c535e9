"""Pydantic request/response schemas for the IPO readiness API.

All API inputs and outputs are strictly typed Pydantic v2 models. Response
models are built from domain objects with ``from_domain``.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ipo_readiness.core.answers import SectionSummary
from ipo_readiness.core.domain import (
    AnswerRecord,
    AnswerSection,
    Assessment,
    QuestionType,
    SnapshotQuestion,
    TemplateQuestion,
)
from ipo_readiness.core.preconditions import VersionCheck

# ---------------------------------------------------------------------------
# Shared value objects
# ---------------------------------------------------------------------------


class AnswerRecordSchema(BaseModel):
    """One answer in a company, financial or sector section.

    Attributes:
        score: -1, 0, 1 or 2. Zero means not yet scored.
        remark: Optional assessor remark.
        evidence_link: Optional URL to supporting evidence.
    """

    score: int = Field(..., ge=-1, le=2)
    remark: str | None = None
    evidence_link: str | None = None

    def to_domain(self) -> AnswerRecord:
        return AnswerRecord(score=self.score, remark=self.remark, evidence_link=self.evidence_link)

    @classmethod
    def from_domain(cls, record: AnswerRecord) -> "AnswerRecordSchema":
        return cls(score=record.score, remark=record.remark, evidence_link=record.evidence_link)


class SnapshotQuestionSchema(BaseModel):
    """A question copy owned by one assessment."""

    id: str
    type: QuestionType
    text: str
    help_text: str | None
    order: int
    is_custom: bool
    source_question_id: str | None

    @classmethod
    def from_domain(cls, question: SnapshotQuestion) -> "SnapshotQuestionSchema":
        return cls(
            id=question.id,
            type=question.type,
            text=question.text,
            help_text=question.help_text,
            order=question.order,
            is_custom=question.is_custom,
            source_question_id=question.source_question_id,
        )


class TemplateQuestionSchema(BaseModel):
    """A question in the global template bank."""

    id: str
    type: QuestionType
    text: str
    help_text: str | None
    order: int
    is_active: bool

    @classmethod
    def from_domain(cls, question: TemplateQuestion) -> "TemplateQuestionSchema":
        return cls(
            id=question.id,
            type=question.type,
            text=question.text,
            help_text=question.help_text,
            order=question.order,
            is_active=question.is_active,
        )


class ReviewEntrySchema(BaseModel):
    reviewed_at: datetime
    action: str
    comments: str
    reviewer_id: str
    reviewer_name: str


class PresetAnswersSchema(BaseModel):
    """The 11 fixed questions. Monetary values in crores, series latest year first.

    Used both as a response and as a partial-update request: only fields
    present in the request body are changed.
    """

    has_investment_plan: bool | None = None
    governance_plan: bool | None = None
    financial_reporting: bool | None = None
    control_systems: bool | None = None
    shareholding_clear: bool | None = None
    senior_management: bool | None = None
    independent_board: bool | None = None
    mid_management: bool | None = None
    key_personnel: bool | None = None
    paid_up_capital: float | None = None
    outstanding_shares: float | None = None
    net_worth: float | None = None
    borrowings: float | None = None
    debt_equity_ratio: float | None = None
    turnover: list[float | None] | None = Field(default=None, min_length=3, max_length=3)
    ebitda: list[float | None] | None = Field(default=None, min_length=3, max_length=3)
    eps: float | None = None


class AssessmentResponse(BaseModel):
    """Full assessment state returned by every assessment endpoint."""

    id: str
    lead_id: str
    assessor_id: str | None
    status: str
    current_step: int
    company_verified: bool
    company_verified_at: datetime | None
    financial_verified: bool
    financial_verified_at: datetime | None
    preset: PresetAnswersSchema
    company_answers: dict[str, AnswerRecordSchema]
    financial_answers: dict[str, AnswerRecordSchema]
    sector_answers: dict[str, AnswerRecordSchema]
    question_snapshot: dict[QuestionType, list[SnapshotQuestionSchema]]
    question_snapshot_version: int
    total_score: float | None
    max_score: float | None
    percentage: float | None
    rating: str | None
    score_breakdown: dict[str, float] | None
    review_history: list[ReviewEntrySchema]
    submitted_at: datetime | None
    reviewed_at: datetime | None
    version: int
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_domain(cls, assessment: Assessment) -> "AssessmentResponse":
        preset = assessment.preset
        return cls(
            id=assessment.id,
            lead_id=assessment.lead_id,
            assessor_id=assessment.assessor_id,
            status=assessment.status.value,
            current_step=assessment.current_step,
            company_verified=assessment.company_verified,
            company_verified_at=assessment.company_verified_at,
            financial_verified=assessment.financial_verified,
            financial_verified_at=assessment.financial_verified_at,
            preset=PresetAnswersSchema(
                **{
                    **{name: getattr(preset, name) for name in PresetAnswersSchema.model_fields},
                    "turnover": list(preset.turnover),
                    "ebitda": list(preset.ebitda),
                }
            ),
            company_answers=_answers(assessment.company_answers),
            financial_answers=_answers(assessment.financial_answers),
            sector_answers=_answers(assessment.sector_answers),
            question_snapshot={
                question_type: [
                    SnapshotQuestionSchema.from_domain(q)
                    for q in assessment.questions_for(question_type)
                ]
                for question_type in QuestionType
            },
            question_snapshot_version=assessment.question_snapshot_version,
            total_score=assessment.total_score,
            max_score=assessment.max_score,
            percentage=assessment.percentage,
            rating=assessment.rating.value if assessment.rating else None,
            score_breakdown=assessment.score_breakdown,
            review_history=[
                ReviewEntrySchema(
                    reviewed_at=entry.reviewed_at,
                    action=entry.action.value,
                    comments=entry.comments,
                    reviewer_id=entry.reviewer_id,
                    reviewer_name=entry.reviewer_name,
                )
                for entry in assessment.review_history
            ],
            submitted_at=assessment.submitted_at,
            reviewed_at=assessment.reviewed_at,
            version=assessment.version,
            created_at=assessment.created_at,
            updated_at=assessment.updated_at,
        )


def _answers(answers: dict[str, AnswerRecord]) -> dict[str, AnswerRecordSchema]:
    return {question_id: AnswerRecordSchema.from_domain(record) for question_id, record in answers.items()}


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateAssessmentRequest(BaseModel):
    lead_id: str = Field(..., min_length=1, max_length=64)
    assessor_id: str | None = Field(default=None, max_length=64)


class SaveAnswersRequest(BaseModel):
    """Dirty answer sections from the auto-save; omitted sections are untouched.

    Attributes:
        company: Full company answer map, if changed.
        financial: Full financial answer map, if changed.
        sector: Full sector answer map, if changed.
        expected_version: Record version the client last saw.
    """

    company: dict[str, AnswerRecordSchema] | None = None
    financial: dict[str, AnswerRecordSchema] | None = None
    sector: dict[str, AnswerRecordSchema] | None = None
    expected_version: int | None = None

    def sections(self) -> dict[AnswerSection, dict[str, AnswerRecord]]:
        result: dict[AnswerSection, dict[str, AnswerRecord]] = {}
        for section in AnswerSection:
            answers = getattr(self, section.value)
            if answers is not None:
                result[section] = {qid: record.to_domain() for qid, record in answers.items()}
        return result


class GoToStepRequest(BaseModel):
    step: int = Field(..., ge=1, le=3)


class SubmitRequest(BaseModel):
    confirm_old_questions: bool = False


class ApproveRequest(BaseModel):
    comments: str | None = None
    confirm_old_questions: bool = False


class RejectRequest(BaseModel):
    comments: str = Field(..., description="Reason for rejection, at least 10 characters")


class AddQuestionRequest(BaseModel):
    type: QuestionType
    text: str
    help_text: str | None = None
    source_question_id: str | None = None


class AddTemplateQuestionRequest(BaseModel):
    type: QuestionType
    text: str
    help_text: str | None = None


class UpdateQuestionRequest(BaseModel):
    text: str | None = None
    help_text: str | None = None


class ReorderRequest(BaseModel):
    type: QuestionType
    ordered_ids: list[str]


# ---------------------------------------------------------------------------
# Other responses
# ---------------------------------------------------------------------------


class VersionCheckResponse(BaseModel):
    snapshot_version: int
    current_version: int
    is_outdated: bool

    @classmethod
    def from_domain(cls, check: VersionCheck) -> "VersionCheckResponse":
        return cls(
            snapshot_version=check.snapshot_version,
            current_version=check.current_version,
            is_outdated=check.is_outdated,
        )


class SectionSummarySchema(BaseModel):
    section: AnswerSection
    total_questions: int
    answered: int
    score_sum: int
    orphaned_answers: int

    @classmethod
    def from_domain(cls, summary: SectionSummary) -> "SectionSummarySchema":
        return cls(
            section=summary.section,
            total_questions=summary.total_questions,
            answered=summary.answered,
            score_sum=summary.score_sum,
            orphaned_answers=summary.orphaned_answers,
        )


class TemplateBankVersionResponse(BaseModel):
    version: int
    active_counts: dict[QuestionType, int]


class ErrorResponse(BaseModel):
    """Body returned for every engine error.

    Attributes:
        error: Human-readable message.
        code: Stable error code.
        context: Identifiers describing the failure.
        requires_confirmation: True when repeating the call with an explicit
            acknowledgement will succeed.
    """

    error: str
    code: str
    context: dict[str, Any] = Field(default_factory=dict)
    requires_confirmation: bool = False
