"""Unit tests for QuestionSnapshotStore."""

import pytest

from ipo_readiness.adapters.memory import InMemoryVersionRegistry
from ipo_readiness.core.domain import Actor, Assessment, AssessmentStatus, QuestionType
from ipo_readiness.core.services import AssessmentLifecycle, TemplateBankService
from ipo_readiness.core.snapshot import QuestionSnapshotStore
from ipo_readiness.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ReorderMismatchError,
    ValidationError,
)

NEW_QUESTION = "Does the company have an internal audit function?"


class TestBuildSnapshot:
    @pytest.mark.asyncio()
    async def test_copies_active_questions_in_bank_order(self, snapshots: QuestionSnapshotStore) -> None:
        snapshot, version = await snapshots.build_snapshot()

        assert version == 1
        assert set(snapshot) == set(QuestionType)
        assert [q.order for q in snapshot[QuestionType.COMPANY]] == [1, 2]
        assert "company_retired" not in {q.id for q in snapshot[QuestionType.COMPANY]}

    @pytest.mark.asyncio()
    async def test_snapshots_are_independent_of_later_bank_edits(
        self,
        snapshots: QuestionSnapshotStore,
        templates: TemplateBankService,
        reviewer: Actor,
        draft: Assessment,
    ) -> None:
        await templates.update(reviewer, "company_1", text="Rewritten company question text")

        questions = await snapshots.get_questions(draft.id, QuestionType.COMPANY)
        assert questions[QuestionType.COMPANY][0].text == "First company readiness question"


class TestMutations:
    @pytest.mark.asyncio()
    async def test_add_custom_question_goes_last(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, draft: Assessment
    ) -> None:
        question = await snapshots.add(assessor, draft.id, QuestionType.SECTOR, f"  {NEW_QUESTION}  ")

        assert question.is_custom
        assert question.id.startswith("custom_")
        assert question.order == 3
        assert question.text == NEW_QUESTION
        questions = (await snapshots.get_questions(draft.id))[QuestionType.SECTOR]
        assert questions[-1] == question

    @pytest.mark.asyncio()
    async def test_add_copy_of_template_question(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, draft: Assessment
    ) -> None:
        question = await snapshots.add(
            assessor, draft.id, QuestionType.COMPANY, NEW_QUESTION, source_question_id="company_retired"
        )
        assert not question.is_custom
        assert question.source_question_id == "company_retired"

    @pytest.mark.asyncio()
    async def test_text_must_be_long_enough(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, draft: Assessment
    ) -> None:
        with pytest.raises(ValidationError):
            await snapshots.add(assessor, draft.id, QuestionType.SECTOR, "   short   ")
        with pytest.raises(ValidationError):
            await snapshots.update(assessor, draft.id, "sector_1", text="tiny")

    @pytest.mark.asyncio()
    async def test_update_changes_only_this_assessment(
        self,
        lifecycle: AssessmentLifecycle,
        snapshots: QuestionSnapshotStore,
        assessor: Actor,
        draft: Assessment,
    ) -> None:
        other = await lifecycle.create_assessment(lead_id="lead-2", assessor_id=assessor.id)

        updated = await snapshots.update(assessor, draft.id, "company_2", text=NEW_QUESTION)

        assert updated.text == NEW_QUESTION
        assert updated.help_text == "Consider the last three financial years"
        untouched = (await snapshots.get_questions(other.id))[QuestionType.COMPANY]
        assert untouched[1].text == "Second company readiness question"

    @pytest.mark.asyncio()
    async def test_delete_keeps_other_orders(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, draft: Assessment
    ) -> None:
        await snapshots.add(assessor, draft.id, QuestionType.FINANCIAL, NEW_QUESTION)
        await snapshots.delete(assessor, draft.id, "financial_1")

        remaining = (await snapshots.get_questions(draft.id))[QuestionType.FINANCIAL]
        assert [q.order for q in remaining] == [2, 3]

    @pytest.mark.asyncio()
    async def test_unknown_question(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, draft: Assessment
    ) -> None:
        with pytest.raises(NotFoundError):
            await snapshots.delete(assessor, draft.id, "missing")

    @pytest.mark.asyncio()
    async def test_reviewers_cannot_edit_snapshots(
        self, snapshots: QuestionSnapshotStore, reviewer: Actor, draft: Assessment
    ) -> None:
        with pytest.raises(PermissionDeniedError):
            await snapshots.add(reviewer, draft.id, QuestionType.SECTOR, NEW_QUESTION)

    @pytest.mark.asyncio()
    async def test_submitted_snapshot_is_frozen(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, submitted: Assessment
    ) -> None:
        with pytest.raises(InvalidStateError):
            await snapshots.delete(assessor, submitted.id, "company_1")

    @pytest.mark.asyncio()
    async def test_editing_rejected_snapshot_resumes_draft(
        self,
        lifecycle: AssessmentLifecycle,
        snapshots: QuestionSnapshotStore,
        assessor: Actor,
        reviewer: Actor,
        submitted: Assessment,
    ) -> None:
        await lifecycle.reject(reviewer, submitted.id, "Please add sector specific questions")
        await snapshots.add(assessor, submitted.id, QuestionType.SECTOR, NEW_QUESTION)

        stored = await lifecycle.get_assessment(submitted.id)
        assert stored.status is AssessmentStatus.DRAFT


class TestReorder:
    @pytest.mark.asyncio()
    async def test_reorder_changes_only_order(
        self, snapshots: QuestionSnapshotStore, assessor: Actor, draft: Assessment
    ) -> None:
        before = {q.id: q for q in (await snapshots.get_questions(draft.id))[QuestionType.COMPANY]}

        reordered = await snapshots.reorder(assessor, draft.id, QuestionType.COMPANY, ["company_2", "company_1"])

        assert [(q.id, q.order) for q in reordered] == [("company_2", 1), ("company_1", 2)]
        for question in reordered:
            original = before[question.id]
            assert (question.text, question.help_text, question.is_custom) == (
                original.text,
                original.help_text,
                original.is_custom,
            )
        stored = (await snapshots.get_questions(draft.id))[QuestionType.COMPANY]
        assert [q.id for q in stored] == ["company_2", "company_1"]

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        "ordered_ids",
        [
            ["company_1"],
            ["company_1", "company_2", "company_3"],
            ["company_1", "company_1"],
            ["company_1", "sector_1"],
        ],
    )
    async def test_mismatch_leaves_order_untouched(
        self,
        snapshots: QuestionSnapshotStore,
        assessor: Actor,
        draft: Assessment,
        ordered_ids: list[str],
    ) -> None:
        with pytest.raises(ReorderMismatchError):
            await snapshots.reorder(assessor, draft.id, QuestionType.COMPANY, ordered_ids)

        stored = (await snapshots.get_questions(draft.id))[QuestionType.COMPANY]
        assert [(q.id, q.order) for q in stored] == [("company_1", 1), ("company_2", 2)]


class TestVersion:
    @pytest.mark.asyncio()
    async def test_check_version_only_reports(
        self,
        snapshots: QuestionSnapshotStore,
        versions: InMemoryVersionRegistry,
        draft: Assessment,
    ) -> None:
        await versions.bump()
        check = await snapshots.check_version(draft.question_snapshot_version)

        assert check.is_outdated
        stored = await snapshots.get_questions(draft.id)
        assert stored == {qt: draft.questions_for(qt) for qt in QuestionType}

    @pytest.mark.asyncio()
    async def test_restart_takes_fresh_bank_copy(
        self,
        snapshots: QuestionSnapshotStore,
        templates: TemplateBankService,
        assessor: Actor,
        reviewer: Actor,
        draft: Assessment,
    ) -> None:
        added = await templates.add(reviewer, QuestionType.SECTOR, NEW_QUESTION)

        restarted = await snapshots.restart_with_new_questions(assessor, draft.id)

        assert restarted.question_snapshot_version == 2
        assert added.id in {q.id for q in restarted.questions_for(QuestionType.SECTOR)}
