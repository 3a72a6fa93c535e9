"""Domain types for the assessment lifecycle engine.

Plain dataclasses and enums with no persistence or framework imports. The
repositories translate these to and from storage; services and the
auto-save coordinator work exclusively with them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ipo_readiness.errors import ValidationError


class AssessmentStatus(str, Enum):
    """Lifecycle status of an assessment."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Rating(str, Enum):
    """Coarse readiness classification derived from the percentage score."""

    IPO_READY = "IPO_READY"
    NEEDS_IMPROVEMENT = "NEEDS_IMPROVEMENT"
    NOT_READY = "NOT_READY"


class QuestionType(str, Enum):
    """Question bank categories held in every snapshot."""

    ELIGIBILITY = "ELIGIBILITY"
    COMPANY = "COMPANY"
    FINANCIAL = "FINANCIAL"
    SECTOR = "SECTOR"


class AnswerSection(str, Enum):
    """Free-form answer maps persisted on an assessment."""

    COMPANY = "company"
    FINANCIAL = "financial"
    SECTOR = "sector"

    @property
    def question_type(self) -> QuestionType:
        """The snapshot question type whose ids key this section."""
        return QuestionType(self.value.upper())


class ReviewAction(str, Enum):
    """Reviewer decisions recorded in the review history."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Role(str, Enum):
    """Actor roles recognised by the engine."""

    ASSESSOR = "ASSESSOR"
    REVIEWER = "REVIEWER"


VALID_ANSWER_SCORES: frozenset[int] = frozenset({-1, 0, 1, 2})

# Statuses in which the assessor may still change answers and questions.
EDITABLE_STATUSES: frozenset[AssessmentStatus] = frozenset(
    {AssessmentStatus.DRAFT, AssessmentStatus.REJECTED}
)


@dataclass(frozen=True)
class Actor:
    """Identity of the caller, supplied by the host's auth layer.

    Attributes:
        id: User identifier.
        role: ASSESSOR or REVIEWER.
        name: Display name recorded in the review history.
    """

    id: str
    role: Role
    name: str = ""


@dataclass(frozen=True)
class AnswerRecord:
    """One answer in a company, financial or sector answer map.

    Attributes:
        score: One of -1, 0, 1, 2. Zero means "not yet scored".
        remark: Optional assessor remark.
        evidence_link: Optional URL to supporting evidence.

    Raises:
        ValidationError: If score is outside the allowed set or is not an int.
    """

    score: int
    remark: str | None = None
    evidence_link: str | None = None

    def __post_init__(self) -> None:
        if type(self.score) is not int or self.score not in VALID_ANSWER_SCORES:
            raise ValidationError(
                f"Answer score must be one of {sorted(VALID_ANSWER_SCORES)}, got {self.score!r}",
                context={"score": self.score},
            )


@dataclass(frozen=True)
class SnapshotQuestion:
    """A question copy owned by exactly one assessment.

    Attributes:
        id: Identifier used as the key in the answer maps.
        type: Question category.
        text: Question text as shown to the assessor.
        order: 1-based position within its type.
        is_custom: True when added by the assessor rather than copied from
            the template bank.
        help_text: Optional guidance text.
        source_question_id: Template question this copy came from, if any.
    """

    id: str
    type: QuestionType
    text: str
    order: int
    is_custom: bool
    help_text: str | None = None
    source_question_id: str | None = None


@dataclass(frozen=True)
class TemplateQuestion:
    """A question in the global, reviewer-managed template bank."""

    id: str
    type: QuestionType
    text: str
    order: int
    help_text: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ReviewEntry:
    """One immutable reviewer decision.

    Attributes:
        reviewed_at: UTC timestamp of the decision.
        action: APPROVED or REJECTED.
        comments: Reviewer comments (may be empty for approvals).
        reviewer_id: Reviewer user id.
        reviewer_name: Reviewer display name at decision time.
    """

    reviewed_at: datetime
    action: ReviewAction
    comments: str
    reviewer_id: str
    reviewer_name: str


@dataclass(frozen=True)
class PresetAnswers:
    """Answers to the 11 fixed financial and governance questions.

    Monetary values are in crores. Three-year series are ordered latest
    year first. Any field may be None while the assessment is in progress.
    """

    has_investment_plan: bool | None = None
    # Q2 corporate governance
    governance_plan: bool | None = None
    financial_reporting: bool | None = None
    control_systems: bool | None = None
    shareholding_clear: bool | None = None
    # Q3 team
    senior_management: bool | None = None
    independent_board: bool | None = None
    mid_management: bool | None = None
    key_personnel: bool | None = None
    paid_up_capital: float | None = None
    outstanding_shares: float | None = None
    net_worth: float | None = None
    borrowings: float | None = None
    debt_equity_ratio: float | None = None
    turnover: tuple[float | None, float | None, float | None] = (None, None, None)
    ebitda: tuple[float | None, float | None, float | None] = (None, None, None)
    eps: float | None = None


QuestionSnapshot = dict[QuestionType, list[SnapshotQuestion]]


def empty_snapshot() -> QuestionSnapshot:
    """Return a snapshot with an empty list for every question type."""
    return {question_type: [] for question_type in QuestionType}


@dataclass
class Assessment:
    """The persisted assessment record, one per lead.

    ``version`` is the optimistic-concurrency counter; repositories only
    accept a write whose expected version matches the stored one.
    """

    id: str
    lead_id: str
    assessor_id: str | None = None
    status: AssessmentStatus = AssessmentStatus.DRAFT
    current_step: int = 1
    company_verified: bool = False
    company_verified_at: datetime | None = None
    financial_verified: bool = False
    financial_verified_at: datetime | None = None
    preset: PresetAnswers = field(default_factory=PresetAnswers)
    company_answers: dict[str, AnswerRecord] = field(default_factory=dict)
    financial_answers: dict[str, AnswerRecord] = field(default_factory=dict)
    sector_answers: dict[str, AnswerRecord] = field(default_factory=dict)
    question_snapshot: QuestionSnapshot = field(default_factory=empty_snapshot)
    question_snapshot_version: int = 0
    total_score: float | None = None
    max_score: float | None = None
    percentage: float | None = None
    rating: Rating | None = None
    score_breakdown: dict[str, float] | None = None
    review_history: tuple[ReviewEntry, ...] = ()
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def answers_for(self, section: AnswerSection) -> dict[str, AnswerRecord]:
        """Return the answer map backing a section."""
        return {
            AnswerSection.COMPANY: self.company_answers,
            AnswerSection.FINANCIAL: self.financial_answers,
            AnswerSection.SECTOR: self.sector_answers,
        }[section]

    def set_answers(self, section: AnswerSection, answers: dict[str, AnswerRecord]) -> None:
        """Replace the answer map backing a section."""
        setattr(self, f"{section.value}_answers", dict(answers))

    def questions_for(self, question_type: QuestionType) -> list[SnapshotQuestion]:
        """Return this assessment's questions of one type, in display order."""
        return sorted(
            self.question_snapshot.get(question_type, []),
            key=lambda question: question.order,
        )
