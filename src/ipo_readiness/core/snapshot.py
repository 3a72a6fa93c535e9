"""Per-assessment question snapshots.

Every assessment owns a private copy of the template question bank taken
when it started. Assessors may add, edit, delete and reorder questions in
that copy without affecting the bank or any other assessment. The snapshot
records the bank version it was copied from so drift can be detected; it is
never migrated implicitly.
"""

import uuid
from dataclasses import replace

import structlog

from ipo_readiness.core.domain import (
    Actor,
    Assessment,
    AssessmentStatus,
    QuestionSnapshot,
    QuestionType,
    SnapshotQuestion,
    empty_snapshot,
)
from ipo_readiness.core.guards import (
    begin_edit,
    load_assessment,
    require_assigned_assessor,
)
from ipo_readiness.core.interfaces import IAssessmentRepository, ITemplateBank
from ipo_readiness.core.preconditions import VersionCheck, check_version
from ipo_readiness.errors import (
    InvalidStateError,
    NotFoundError,
    ReorderMismatchError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


class QuestionSnapshotStore:
    """Manages the question snapshot held on each assessment.

    Args:
        repository: Assessment persistence.
        template_bank: Read-only template bank with its version counter.
        min_text_length: Minimum stripped length of question text.
    """

    def __init__(
        self,
        repository: IAssessmentRepository,
        template_bank: ITemplateBank,
        min_text_length: int = 10,
    ) -> None:
        self._repository = repository
        self._template_bank = template_bank
        self._min_text_length = min_text_length

    # ---------------------------------------------------------------------------
    # Snapshot creation and drift
    # ---------------------------------------------------------------------------

    async def build_snapshot(self) -> tuple[QuestionSnapshot, int]:
        """Copy the active template bank into a new, unshared snapshot.

        Template copies keep the template id as their own id so that answers
        can be traced back to the bank question.

        Returns:
            Tuple of (snapshot, template bank version it was taken at).
        """
        version = await self._template_bank.current_version()
        snapshot = empty_snapshot()
        for question_type in QuestionType:
            templates = await self._template_bank.list_active(question_type)
            snapshot[question_type] = [
                SnapshotQuestion(
                    id=template.id,
                    type=question_type,
                    text=template.text,
                    order=position,
                    is_custom=False,
                    help_text=template.help_text,
                    source_question_id=template.id,
                )
                for position, template in enumerate(
                    sorted(templates, key=lambda template: template.order), start=1
                )
            ]
        return snapshot, version

    async def check_version(self, snapshot_version: int) -> VersionCheck:
        """Compare a stored snapshot version with the current bank version.

        Only reports drift; acting on it is up to the caller.
        """
        return check_version(snapshot_version, await self._template_bank.current_version())

    async def restart_with_new_questions(self, actor: Actor, assessment_id: str) -> Assessment:
        """Replace the snapshot with a fresh bank copy and discard answers.

        Clears the company, financial and sector answers, resets the wizard to
        step 1 and clears any previous score so no stale result is shown
        before the next submission.

        Raises:
            InvalidStateError: Unless the assessment is DRAFT.
        """
        assessment = await load_assessment(self._repository, assessment_id)
        require_assigned_assessor(actor, assessment)
        if assessment.status is not AssessmentStatus.DRAFT:
            raise InvalidStateError(
                "Only draft assessments can be restarted with new questions",
                context={"assessment_id": assessment_id, "status": assessment.status.value},
            )

        expected_version = assessment.version
        snapshot, template_version = await self.build_snapshot()
        previous_version = assessment.question_snapshot_version

        assessment.question_snapshot = snapshot
        assessment.question_snapshot_version = template_version
        assessment.company_answers = {}
        assessment.financial_answers = {}
        assessment.sector_answers = {}
        assessment.current_step = 1
        assessment.score_breakdown = None
        assessment.rating = None
        assessment.total_score = None
        assessment.max_score = None
        assessment.percentage = None

        saved = await self._repository.save(assessment, expected_version)
        logger.info(
            "Assessment restarted with new questions",
            assessment_id=assessment_id,
            previous_snapshot_version=previous_version,
            snapshot_version=template_version,
        )
        return saved

    # ---------------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------------

    async def get_questions(
        self,
        assessment_id: str,
        question_type: QuestionType | None = None,
    ) -> dict[QuestionType, list[SnapshotQuestion]]:
        """Return the assessment's questions, in order, optionally for one type."""
        assessment = await load_assessment(self._repository, assessment_id)
        types = [question_type] if question_type else list(QuestionType)
        return {qt: assessment.questions_for(qt) for qt in types}

    # ---------------------------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------------------------

    async def add(
        self,
        actor: Actor,
        assessment_id: str,
        question_type: QuestionType,
        text: str,
        help_text: str | None = None,
        source_question_id: str | None = None,
    ) -> SnapshotQuestion:
        """Append a question to one type of the assessment's snapshot.

        Args:
            actor: The assigned assessor.
            assessment_id: Target assessment.
            question_type: Which list to append to.
            text: Question text, at least ``min_text_length`` characters.
            help_text: Optional guidance.
            source_question_id: Template question being copied; when absent
                the question is marked custom.

        Returns:
            The new SnapshotQuestion, ordered after the existing ones.
        """
        text = self._validate_text(text)
        assessment = await self._load_for_edit(actor, assessment_id)
        expected_version = assessment.version

        existing = assessment.question_snapshot.get(question_type, [])
        prefix = "custom" if source_question_id is None else "copy"
        question = SnapshotQuestion(
            id=f"{prefix}_{uuid.uuid4().hex[:12]}",
            type=question_type,
            text=text,
            order=max((q.order for q in existing), default=0) + 1,
            is_custom=source_question_id is None,
            help_text=help_text,
            source_question_id=source_question_id,
        )
        assessment.question_snapshot[question_type] = [*existing, question]

        await self._repository.save(assessment, expected_version)
        logger.info(
            "Snapshot question added",
            assessment_id=assessment_id,
            question_id=question.id,
            question_type=question_type.value,
            is_custom=question.is_custom,
        )
        return question

    async def update(
        self,
        actor: Actor,
        assessment_id: str,
        question_id: str,
        text: str | None = None,
        help_text: str | None = None,
    ) -> SnapshotQuestion:
        """Edit this assessment's copy of a question.

        The template bank and other assessments are never affected.
        """
        if text is not None:
            text = self._validate_text(text)
        assessment = await self._load_for_edit(actor, assessment_id)
        expected_version = assessment.version

        question_type, index = self._locate(assessment, question_id)
        questions = list(assessment.question_snapshot[question_type])
        current = questions[index]
        updated = replace(
            current,
            text=text if text is not None else current.text,
            help_text=help_text if help_text is not None else current.help_text,
        )
        questions[index] = updated
        assessment.question_snapshot[question_type] = questions

        await self._repository.save(assessment, expected_version)
        logger.info(
            "Snapshot question updated",
            assessment_id=assessment_id,
            question_id=question_id,
        )
        return updated

    async def delete(self, actor: Actor, assessment_id: str, question_id: str) -> None:
        """Remove a question from the snapshot.

        Answers already recorded for the question are kept for the audit
        trail; reads ignore them because the id is no longer in the snapshot.
        """
        assessment = await self._load_for_edit(actor, assessment_id)
        expected_version = assessment.version

        question_type, index = self._locate(assessment, question_id)
        questions = list(assessment.question_snapshot[question_type])
        del questions[index]
        assessment.question_snapshot[question_type] = questions

        await self._repository.save(assessment, expected_version)
        logger.info(
            "Snapshot question deleted",
            assessment_id=assessment_id,
            question_id=question_id,
            question_type=question_type.value,
        )

    async def reorder(
        self,
        actor: Actor,
        assessment_id: str,
        question_type: QuestionType,
        ordered_ids: list[str],
    ) -> list[SnapshotQuestion]:
        """Rewrite the order of one type to match ``ordered_ids``.

        Raises:
            ReorderMismatchError: If ``ordered_ids`` is not an exact
                permutation of the type's current ids. Nothing is written.
        """
        assessment = await self._load_for_edit(actor, assessment_id)
        expected_version = assessment.version

        by_id = {q.id: q for q in assessment.question_snapshot.get(question_type, [])}
        if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != set(by_id):
            raise ReorderMismatchError(
                "Question list is out of date. Please reload and try again.",
                context={
                    "assessment_id": assessment_id,
                    "question_type": question_type.value,
                    "expected_count": len(by_id),
                    "received_count": len(ordered_ids),
                },
            )

        reordered = [
            replace(by_id[question_id], order=position)
            for position, question_id in enumerate(ordered_ids, start=1)
        ]
        assessment.question_snapshot[question_type] = reordered

        await self._repository.save(assessment, expected_version)
        logger.info(
            "Snapshot questions reordered",
            assessment_id=assessment_id,
            question_type=question_type.value,
            count=len(reordered),
        )
        return reordered

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    def _validate_text(self, text: str) -> str:
        stripped = (text or "").strip()
        if len(stripped) < self._min_text_length:
            raise ValidationError(
                f"Question text must be at least {self._min_text_length} characters",
                context={"min_length": self._min_text_length},
            )
        return stripped

    async def _load_for_edit(self, actor: Actor, assessment_id: str) -> Assessment:
        assessment = await load_assessment(self._repository, assessment_id)
        require_assigned_assessor(actor, assessment)
        begin_edit(assessment)
        return assessment

    @staticmethod
    def _locate(assessment: Assessment, question_id: str) -> tuple[QuestionType, int]:
        for question_type, questions in assessment.question_snapshot.items():
            for index, question in enumerate(questions):
                if question.id == question_id:
                    return question_type, index
        raise NotFoundError(
            "Question not found in assessment",
            context={"assessment_id": assessment.id, "question_id": question_id},
        )
