"""Service layer for the assessment lifecycle.

Implements the submit / review / approve state machine and the assessor's
wizard around it:
    1. create_assessment()        one assessment per lead, snapshot copied
    2. verify_company/financial   wizard steps 1 and 2
    3. save_answers()             persists dirty answer sections (auto-save)
    4. submit()                   coverage and drift gates, then scoring
    5. approve() / reject()       reviewer decisions, recorded in the ledger

Every write is a compare-and-swap on the record version, so of two racing
transitions exactly one wins and the other raises
ConcurrentModificationError. No SQLAlchemy or FastAPI imports belong here.
"""

import asyncio
import uuid
from dataclasses import fields, replace
from typing import Any

import structlog

from ipo_readiness.core.answers import SectionSummary, section_summary
from ipo_readiness.core.domain import (
    Actor,
    AnswerRecord,
    AnswerSection,
    Assessment,
    AssessmentStatus,
    PresetAnswers,
    ReviewAction,
    ReviewEntry,
    Role,
)
from ipo_readiness.core.guards import (
    begin_edit,
    enforce,
    load_assessment,
    require_assigned_assessor,
    require_role,
    utcnow,
)
from ipo_readiness.core.interfaces import (
    IAssessmentRepository,
    ILeadStatusCollaborator,
    INotificationSink,
)
from ipo_readiness.core.preconditions import (
    VersionCheck,
    comment_length_gate,
    old_questions_gate,
    section_coverage_gate,
)
from ipo_readiness.core.review_ledger import ReviewLedger
from ipo_readiness.core.scoring import ScoreCalculator
from ipo_readiness.core.snapshot import QuestionSnapshotStore
from ipo_readiness.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    LeadStatusSyncError,
    QuestionsOutdatedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# operation -> (allowed source statuses, target status)
TRANSITIONS: dict[str, tuple[frozenset[AssessmentStatus], AssessmentStatus]] = {
    "submit": (
        frozenset({AssessmentStatus.DRAFT, AssessmentStatus.REJECTED}),
        AssessmentStatus.SUBMITTED,
    ),
    "approve": (frozenset({AssessmentStatus.SUBMITTED}), AssessmentStatus.APPROVED),
    "reject": (frozenset({AssessmentStatus.SUBMITTED}), AssessmentStatus.REJECTED),
    "resume": (frozenset({AssessmentStatus.REJECTED}), AssessmentStatus.DRAFT),
}

WIZARD_STEPS: range = range(1, 4)

_PRESET_FIELDS: frozenset[str] = frozenset(f.name for f in fields(PresetAnswers))
_PRESET_SERIES_FIELDS: frozenset[str] = frozenset({"turnover", "ebitda"})


def _transition(assessment: Assessment, operation: str) -> AssessmentStatus:
    """Return the target status of ``operation`` or raise InvalidTransitionError."""
    sources, target = TRANSITIONS[operation]
    if assessment.status not in sources:
        raise InvalidTransitionError(assessment.status.value, operation)
    return target


class AssessmentLifecycle:
    """Orchestrates the assessment state machine.

    Depends on protocol instances injected at construction time and
    contains no framework-specific code.

    Args:
        repository: Assessment persistence with compare-and-swap saves.
        snapshots: Question snapshot store (also the drift checker).
        notifications: Optional fire-and-forget event sink.
        lead_status: Optional collaborator called after an approval commits.
        calculator: Score calculator; defaults to the standard rubric.
        min_reject_comment_length: Minimum stripped length of reject comments.
    """

    def __init__(
        self,
        repository: IAssessmentRepository,
        snapshots: QuestionSnapshotStore,
        notifications: INotificationSink | None = None,
        lead_status: ILeadStatusCollaborator | None = None,
        calculator: ScoreCalculator | None = None,
        min_reject_comment_length: int = 10,
    ) -> None:
        self._repository = repository
        self._snapshots = snapshots
        self._notifications = notifications
        self._lead_status = lead_status
        self._calculator = calculator or ScoreCalculator()
        self._min_reject_comment_length = min_reject_comment_length
        self._pending_notifications: set[asyncio.Task[None]] = set()

    # ---------------------------------------------------------------------------
    # Creation and reads
    # ---------------------------------------------------------------------------

    async def create_assessment(self, lead_id: str, assessor_id: str | None = None) -> Assessment:
        """Create the assessment for a lead with a fresh question snapshot.

        Args:
            lead_id: Lead being assessed. Each lead has at most one assessment.
            assessor_id: Assessor assigned to the lead, if any.

        Returns:
            The stored DRAFT assessment.

        Raises:
            ValidationError: If the lead already has an assessment.
        """
        existing = await self._repository.get_by_lead_id(lead_id)
        if existing is not None:
            raise ValidationError(
                "Assessment already exists for this lead",
                context={"lead_id": lead_id, "assessment_id": existing.id},
            )

        snapshot, snapshot_version = await self._snapshots.build_snapshot()
        now = utcnow()
        assessment = Assessment(
            id=str(uuid.uuid4()),
            lead_id=lead_id,
            assessor_id=assessor_id,
            question_snapshot=snapshot,
            question_snapshot_version=snapshot_version,
            created_at=now,
            updated_at=now,
        )
        created = await self._repository.create(assessment)

        logger.info(
            "Assessment created",
            assessment_id=created.id,
            lead_id=lead_id,
            assessor_id=assessor_id,
            snapshot_version=snapshot_version,
        )
        return created

    async def get_assessment(self, assessment_id: str) -> Assessment:
        """Return an assessment or raise NotFoundError."""
        return await load_assessment(self._repository, assessment_id)

    async def list_pending_reviews(self, actor: Actor) -> list[Assessment]:
        """SUBMITTED assessments awaiting a reviewer, oldest first."""
        require_role(actor, Role.REVIEWER)
        return await self._repository.list_by_status(AssessmentStatus.SUBMITTED)

    async def check_version(self, assessment_id: str) -> VersionCheck:
        """Report whether the assessment's snapshot is behind the template bank."""
        assessment = await load_assessment(self._repository, assessment_id)
        return await self._snapshots.check_version(assessment.question_snapshot_version)

    async def section_summary(self, assessment_id: str) -> dict[AnswerSection, SectionSummary]:
        """Per-section progress with orphaned answers excluded."""
        assessment = await load_assessment(self._repository, assessment_id)
        return section_summary(assessment)

    # ---------------------------------------------------------------------------
    # Wizard (assessor)
    # ---------------------------------------------------------------------------

    async def verify_company(self, actor: Actor, assessment_id: str) -> Assessment:
        """Mark company details verified and advance to step 2."""
        assessment = await self._load_for_edit(actor, assessment_id)
        expected_version = assessment.version

        assessment.company_verified = True
        assessment.company_verified_at = utcnow()
        assessment.current_step = max(assessment.current_step, 2)

        saved = await self._repository.save(assessment, expected_version)
        logger.info("Company details verified", assessment_id=assessment_id)
        return saved

    async def verify_financial(self, actor: Actor, assessment_id: str) -> Assessment:
        """Mark financial details verified and advance to step 3.

        Raises:
            ValidationError: If company details have not been verified yet.
        """
        assessment = await self._load_for_edit(actor, assessment_id)
        if not assessment.company_verified:
            raise ValidationError(
                "Please verify company details first",
                context={"assessment_id": assessment_id},
            )
        expected_version = assessment.version

        assessment.financial_verified = True
        assessment.financial_verified_at = utcnow()
        assessment.current_step = 3

        saved = await self._repository.save(assessment, expected_version)
        logger.info("Financial details verified", assessment_id=assessment_id)
        return saved

    async def go_to_step(self, actor: Actor, assessment_id: str, step: int) -> Assessment:
        """Move the wizard to ``step``.

        Step 2 requires verified company details, step 3 verified financials.
        """
        if step not in WIZARD_STEPS:
            raise ValidationError(
                f"Step must be between {WIZARD_STEPS.start} and {WIZARD_STEPS.stop - 1}",
                context={"step": step},
            )
        assessment = await self._load_for_edit(actor, assessment_id)
        if step >= 2 and not assessment.company_verified:
            raise ValidationError(
                "Please verify company details first",
                context={"assessment_id": assessment_id, "step": step},
            )
        if step == 3 and not assessment.financial_verified:
            raise ValidationError(
                "Please verify financial details first",
                context={"assessment_id": assessment_id, "step": step},
            )
        expected_version = assessment.version
        assessment.current_step = step
        return await self._repository.save(assessment, expected_version)

    async def update_preset_answers(
        self,
        actor: Actor,
        assessment_id: str,
        changes: dict[str, Any],
    ) -> Assessment:
        """Partially update the 11 fixed financial and governance answers.

        Args:
            actor: The assigned assessor.
            assessment_id: Target assessment.
            changes: PresetAnswers field names mapped to new values. Turnover
                and EBITDA take three values, latest year first.

        Raises:
            ValidationError: On an unknown field or a malformed series, or
                before financial details have been verified.
        """
        unknown = sorted(set(changes) - _PRESET_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown preset answer fields: {', '.join(unknown)}",
                context={"fields": unknown},
            )
        normalised = dict(changes)
        for name in _PRESET_SERIES_FIELDS & set(changes):
            series = tuple(changes[name]) if changes[name] is not None else (None, None, None)
            if len(series) != 3:
                raise ValidationError(
                    f"{name} requires exactly three yearly values",
                    context={"field": name, "received": len(series)},
                )
            normalised[name] = series

        assessment = await self._load_for_edit(actor, assessment_id)
        if not assessment.financial_verified:
            raise ValidationError(
                "Please verify financial details first",
                context={"assessment_id": assessment_id},
            )
        expected_version = assessment.version
        assessment.preset = replace(assessment.preset, **normalised)

        saved = await self._repository.save(assessment, expected_version)
        logger.debug(
            "Preset answers updated",
            assessment_id=assessment_id,
            fields=sorted(changes),
        )
        return saved

    async def save_answers(
        self,
        actor: Actor,
        assessment_id: str,
        sections: dict[AnswerSection, dict[str, AnswerRecord]],
        expected_version: int | None = None,
    ) -> Assessment:
        """Replace the given answer sections in one write.

        Sections absent from ``sections`` are left untouched, which is what
        lets the auto-save send only the sections that changed.

        Args:
            actor: The assigned assessor.
            assessment_id: Target assessment.
            sections: Section -> full answer map for that section.
            expected_version: Version the client last saw. When given, a
                mismatch raises ConcurrentModificationError before writing.

        Returns:
            The saved assessment with its new version.
        """
        assessment = await self._load_for_edit(actor, assessment_id)
        if expected_version is not None and expected_version != assessment.version:
            raise ConcurrentModificationError(assessment_id, expected_version)

        cas_version = assessment.version
        for section, answers in sections.items():
            assessment.set_answers(section, answers)

        saved = await self._repository.save(assessment, cas_version)
        logger.debug(
            "Answers saved",
            assessment_id=assessment_id,
            sections=sorted(section.value for section in sections),
            version=saved.version,
        )
        return saved

    async def restart_with_new_questions(self, actor: Actor, assessment_id: str) -> Assessment:
        """Discard answers and take a fresh snapshot (DRAFT only)."""
        return await self._snapshots.restart_with_new_questions(actor, assessment_id)

    # ---------------------------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------------------------

    async def submit(
        self,
        actor: Actor,
        assessment_id: str,
        confirm_old_questions: bool = False,
    ) -> Assessment:
        """Score the assessment and submit it for review.

        Args:
            actor: The assigned assessor.
            assessment_id: Assessment to submit (DRAFT or REJECTED).
            confirm_old_questions: Explicit acknowledgement to proceed with an
                outdated question snapshot.

        Returns:
            The SUBMITTED assessment with its score persisted.

        Raises:
            InvalidTransitionError: If the assessment is SUBMITTED or APPROVED.
            ValidationError: If any section has no scored answer.
            QuestionsOutdatedError: If the snapshot is outdated and not confirmed.
        """
        assessment = await load_assessment(self._repository, assessment_id)
        require_assigned_assessor(actor, assessment)
        target = _transition(assessment, "submit")
        enforce(section_coverage_gate(assessment), ValidationError)
        await self._require_current_questions(assessment, confirm_old_questions)

        expected_version = assessment.version
        result = self._calculator.compute(assessment.preset)
        assessment.score_breakdown = dict(result.breakdown)
        assessment.total_score = result.total_score
        assessment.max_score = result.max_score
        assessment.percentage = result.percentage
        assessment.rating = result.rating
        assessment.status = target
        assessment.submitted_at = utcnow()

        saved = await self._repository.save(assessment, expected_version)
        logger.info(
            "Assessment submitted",
            assessment_id=assessment_id,
            total_score=result.total_score,
            percentage=result.percentage,
            rating=result.rating.value,
        )
        self._notify(
            "assessment.submitted",
            saved,
            total_score=result.total_score,
            rating=result.rating.value,
        )
        return saved

    async def approve(
        self,
        actor: Actor,
        assessment_id: str,
        comments: str | None = None,
        confirm_old_questions: bool = False,
    ) -> Assessment:
        """Approve a submitted assessment and notify the lead-status collaborator.

        Raises:
            InvalidTransitionError: Unless the assessment is SUBMITTED.
            QuestionsOutdatedError: If the snapshot is outdated and not confirmed.
            ConcurrentModificationError: If another decision committed first.
            LeadStatusSyncError: If the approval committed but the lead-status
                collaborator failed; the committed assessment is attached.
        """
        require_role(actor, Role.REVIEWER)
        assessment = await load_assessment(self._repository, assessment_id)
        target = _transition(assessment, "approve")
        await self._require_current_questions(assessment, confirm_old_questions)

        saved = await self._record_decision(
            assessment, actor, ReviewAction.APPROVED, (comments or "").strip(), target
        )
        self._notify("assessment.approved", saved, reviewer_id=actor.id)

        if self._lead_status is not None:
            try:
                await self._lead_status.on_approved(saved.lead_id)
            except Exception as exc:
                logger.error(
                    "Lead status update failed after approval",
                    assessment_id=assessment_id,
                    lead_id=saved.lead_id,
                    error=str(exc),
                )
                raise LeadStatusSyncError(saved, exc) from exc
        return saved

    async def reject(self, actor: Actor, assessment_id: str, comments: str) -> Assessment:
        """Send a submitted assessment back to the assessor.

        Raises:
            InvalidTransitionError: Unless the assessment is SUBMITTED.
            ValidationError: If the comments are too short.
        """
        require_role(actor, Role.REVIEWER)
        assessment = await load_assessment(self._repository, assessment_id)
        target = _transition(assessment, "reject")
        enforce(
            comment_length_gate(comments, self._min_reject_comment_length),
            ValidationError,
        )

        saved = await self._record_decision(
            assessment, actor, ReviewAction.REJECTED, comments.strip(), target
        )
        self._notify("assessment.rejected", saved, reviewer_id=actor.id, comments=comments.strip())
        return saved

    async def resume(self, actor: Actor, assessment_id: str) -> Assessment:
        """Return a rejected assessment to DRAFT for rework."""
        assessment = await load_assessment(self._repository, assessment_id)
        require_assigned_assessor(actor, assessment)
        target = _transition(assessment, "resume")

        expected_version = assessment.version
        assessment.status = target
        saved = await self._repository.save(assessment, expected_version)
        logger.info("Assessment resumed", assessment_id=assessment_id)
        return saved

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    async def _load_for_edit(self, actor: Actor, assessment_id: str) -> Assessment:
        assessment = await load_assessment(self._repository, assessment_id)
        require_assigned_assessor(actor, assessment)
        begin_edit(assessment)
        return assessment

    async def _require_current_questions(
        self,
        assessment: Assessment,
        confirm_old_questions: bool,
    ) -> None:
        version_check = await self._snapshots.check_version(assessment.question_snapshot_version)
        if not old_questions_gate(version_check, confirm_old_questions).passed:
            raise QuestionsOutdatedError(
                version_check.snapshot_version, version_check.current_version
            )
        if version_check.is_outdated:
            logger.info(
                "Proceeding with outdated questions",
                assessment_id=assessment.id,
                snapshot_version=version_check.snapshot_version,
                current_version=version_check.current_version,
            )

    async def _record_decision(
        self,
        assessment: Assessment,
        actor: Actor,
        action: ReviewAction,
        comments: str,
        target: AssessmentStatus,
    ) -> Assessment:
        expected_version = assessment.version
        now = utcnow()
        ledger = ReviewLedger(assessment.review_history).append(
            ReviewEntry(
                reviewed_at=now,
                action=action,
                comments=comments,
                reviewer_id=actor.id,
                reviewer_name=actor.name,
            )
        )
        assessment.review_history = ledger.entries
        assessment.status = target
        assessment.reviewed_at = now

        saved = await self._repository.save(assessment, expected_version)
        logger.info(
            "Assessment reviewed",
            assessment_id=assessment.id,
            action=action.value,
            reviewer_id=actor.id,
            review_count=len(ledger),
        )
        return saved

    async def wait_for_notifications(self) -> None:
        """Wait until every notification scheduled so far has been delivered."""
        while self._pending_notifications:
            await asyncio.gather(*self._pending_notifications, return_exceptions=True)

    def _notify(self, event: str, assessment: Assessment, **extra: Any) -> None:
        """Schedule a notification in the background.

        The transition has already committed; delivery neither delays the
        caller nor propagates failures, which are logged.
        """
        if self._notifications is None:
            return
        payload: dict[str, Any] = {
            "assessment_id": assessment.id,
            "lead_id": assessment.lead_id,
            "assessor_id": assessment.assessor_id,
            "status": assessment.status.value,
            **extra,
        }
        task = asyncio.create_task(self._notifications.notify(event, payload))
        self._pending_notifications.add(task)
        task.add_done_callback(
            lambda done: self._notification_done(done, event, assessment.id)
        )

    def _notification_done(self, task: asyncio.Task[None], event: str, assessment_id: str) -> None:
        self._pending_notifications.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Notification delivery failed",
                notification_event=event,
                assessment_id=assessment_id,
                error=str(exc),
            )
