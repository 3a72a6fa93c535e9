"""Pure answer-state transitions and snapshot-aware answer reads.

The reducer functions never mutate their input; they return a new
AnswerState. Reads filter answers against the assessment's snapshot so that
answers left behind by deleted questions (kept for audit) are ignored.
"""

from dataclasses import dataclass, field, replace

from ipo_readiness.core.domain import AnswerRecord, AnswerSection, Assessment


@dataclass(frozen=True)
class AnswerState:
    """In-progress answers for the three free-form sections."""

    company: dict[str, AnswerRecord] = field(default_factory=dict)
    financial: dict[str, AnswerRecord] = field(default_factory=dict)
    sector: dict[str, AnswerRecord] = field(default_factory=dict)

    def section(self, section: AnswerSection) -> dict[str, AnswerRecord]:
        """Return a copy of one section's answers."""
        return dict(getattr(self, section.value))

    @classmethod
    def from_assessment(cls, assessment: Assessment) -> "AnswerState":
        """Seed the state from a persisted assessment."""
        return cls(
            company=dict(assessment.company_answers),
            financial=dict(assessment.financial_answers),
            sector=dict(assessment.sector_answers),
        )


def apply_answer(
    state: AnswerState,
    section: AnswerSection,
    question_id: str,
    record: AnswerRecord,
) -> AnswerState:
    """Return a new state with one answer set."""
    answers = state.section(section)
    answers[question_id] = record
    return replace(state, **{section.value: answers})


def clear_answer(state: AnswerState, section: AnswerSection, question_id: str) -> AnswerState:
    """Return a new state without the answer for ``question_id``."""
    answers = state.section(section)
    answers.pop(question_id, None)
    return replace(state, **{section.value: answers})


def valid_answers(assessment: Assessment, section: AnswerSection) -> dict[str, AnswerRecord]:
    """Answers of a section whose question is still in the snapshot.

    Args:
        assessment: The assessment to read.
        section: Which answer map to read.

    Returns:
        The subset of the section's answers keyed by a current question id.
    """
    question_ids = {
        question.id for question in assessment.questions_for(section.question_type)
    }
    return {
        question_id: record
        for question_id, record in assessment.answers_for(section).items()
        if question_id in question_ids
    }


@dataclass(frozen=True)
class SectionSummary:
    """Progress and raw score totals of one answer section."""

    section: AnswerSection
    total_questions: int
    answered: int
    score_sum: int
    orphaned_answers: int


def section_summary(assessment: Assessment) -> dict[AnswerSection, SectionSummary]:
    """Summarise every section, excluding orphaned answers from the totals."""
    summaries: dict[AnswerSection, SectionSummary] = {}
    for section in AnswerSection:
        current = valid_answers(assessment, section)
        summaries[section] = SectionSummary(
            section=section,
            total_questions=len(assessment.questions_for(section.question_type)),
            answered=sum(1 for record in current.values() if record.score != 0),
            score_sum=sum(record.score for record in current.values()),
            orphaned_answers=len(assessment.answers_for(section)) - len(current),
        )
    return summaries
