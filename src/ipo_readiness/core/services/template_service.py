"""Reviewer management of the global template question bank.

Every change to the bank (add, edit, delete, restore, reorder) bumps the
single version counter. Assessments compare their snapshot version against
that counter to detect drift. Deletes are soft so answers and history that
refer to a question stay resolvable.
"""

import uuid
from dataclasses import replace

import structlog

from ipo_readiness.core.domain import Actor, QuestionType, Role, TemplateQuestion
from ipo_readiness.core.guards import require_role
from ipo_readiness.core.interfaces import ITemplateQuestionRepository, ITemplateVersionRegistry
from ipo_readiness.errors import NotFoundError, ReorderMismatchError, ValidationError

logger = structlog.get_logger(__name__)


class TemplateBankService:
    """Reviewer-only CRUD over template questions; also an ITemplateBank.

    Args:
        repository: Template question persistence.
        versions: The bank's monotonic version counter.
        min_text_length: Minimum stripped length of question text.
    """

    def __init__(
        self,
        repository: ITemplateQuestionRepository,
        versions: ITemplateVersionRegistry,
        min_text_length: int = 10,
    ) -> None:
        self._repository = repository
        self._versions = versions
        self._min_text_length = min_text_length

    # -- ITemplateBank --------------------------------------------------------

    async def list_active(self, question_type: QuestionType) -> list[TemplateQuestion]:
        questions = await self._repository.list(question_type=question_type)
        return sorted((q for q in questions if q.is_active), key=lambda q: q.order)

    async def current_version(self) -> int:
        return await self._versions.current_version()

    # -- reads ----------------------------------------------------------------

    async def list_questions(
        self,
        question_type: QuestionType | None = None,
        include_inactive: bool = False,
    ) -> list[TemplateQuestion]:
        """List bank questions ordered by type then order."""
        return await self._repository.list(
            question_type=question_type, include_inactive=include_inactive
        )

    async def active_counts(self) -> dict[QuestionType, int]:
        """Number of active questions per type."""
        questions = await self._repository.list()
        counts = {question_type: 0 for question_type in QuestionType}
        for question in questions:
            if question.is_active:
                counts[question.type] += 1
        return counts

    # -- mutations ------------------------------------------------------------

    async def add(
        self,
        actor: Actor,
        question_type: QuestionType,
        text: str,
        help_text: str | None = None,
    ) -> TemplateQuestion:
        """Append a question to the bank after the existing ones of its type."""
        require_role(actor, Role.REVIEWER)
        text = self._validate_text(text)
        existing = await self._repository.list(question_type=question_type, include_inactive=True)
        question = TemplateQuestion(
            id=f"tpl_{uuid.uuid4().hex[:12]}",
            type=question_type,
            text=text,
            order=max((q.order for q in existing), default=0) + 1,
            help_text=help_text,
        )
        await self._repository.add(question)
        version = await self._versions.bump()
        logger.info(
            "Template question added",
            question_id=question.id,
            question_type=question_type.value,
            template_version=version,
        )
        return question

    async def update(
        self,
        actor: Actor,
        question_id: str,
        text: str | None = None,
        help_text: str | None = None,
    ) -> TemplateQuestion:
        require_role(actor, Role.REVIEWER)
        if text is not None:
            text = self._validate_text(text)
        current = await self._get(question_id)
        updated = replace(
            current,
            text=text if text is not None else current.text,
            help_text=help_text if help_text is not None else current.help_text,
        )
        await self._repository.update(updated)
        version = await self._versions.bump()
        logger.info("Template question updated", question_id=question_id, template_version=version)
        return updated

    async def delete(self, actor: Actor, question_id: str) -> TemplateQuestion:
        """Soft-delete: the question is deactivated, never removed."""
        return await self._set_active(actor, question_id, False)

    async def restore(self, actor: Actor, question_id: str) -> TemplateQuestion:
        return await self._set_active(actor, question_id, True)

    async def reorder(
        self,
        actor: Actor,
        question_type: QuestionType,
        ordered_ids: list[str],
    ) -> list[TemplateQuestion]:
        """Rewrite the order of the active questions of one type.

        Raises:
            ReorderMismatchError: If ``ordered_ids`` is not an exact
                permutation of the type's active ids.
        """
        require_role(actor, Role.REVIEWER)
        by_id = {q.id: q for q in await self.list_active(question_type)}
        if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != set(by_id):
            raise ReorderMismatchError(
                "Question list is out of date. Please reload and try again.",
                context={
                    "question_type": question_type.value,
                    "expected_count": len(by_id),
                    "received_count": len(ordered_ids),
                },
            )
        reordered = []
        for position, question_id in enumerate(ordered_ids, start=1):
            question = replace(by_id[question_id], order=position)
            await self._repository.update(question)
            reordered.append(question)
        version = await self._versions.bump()
        logger.info(
            "Template questions reordered",
            question_type=question_type.value,
            count=len(reordered),
            template_version=version,
        )
        return reordered

    # -- helpers --------------------------------------------------------------

    async def _get(self, question_id: str) -> TemplateQuestion:
        question = await self._repository.get(question_id)
        if question is None:
            raise NotFoundError(
                "Template question not found",
                context={"question_id": question_id},
            )
        return question

    async def _set_active(self, actor: Actor, question_id: str, active: bool) -> TemplateQuestion:
        require_role(actor, Role.REVIEWER)
        question = replace(await self._get(question_id), is_active=active)
        await self._repository.update(question)
        version = await self._versions.bump()
        logger.info(
            "Template question restored" if active else "Template question deleted",
            question_id=question_id,
            template_version=version,
        )
        return question

    def _validate_text(self, text: str) -> str:
        stripped = (text or "").strip()
        if len(stripped) < self._min_text_length:
            raise ValidationError(
                f"Question text must be at least {self._min_text_length} characters",
                context={"min_length": self._min_text_length},
            )
        return stripped
