"""In-process implementations of the repository protocols.

Used by tests and by hosts that embed the engine without a database. Stored
objects are deep-copied on the way in and out so callers can never mutate
shared state, mirroring the detached rows returned by the SQL adapters.
"""

import asyncio
import copy
from datetime import datetime, timezone

from ipo_readiness.core.domain import Assessment, AssessmentStatus, QuestionType, TemplateQuestion
from ipo_readiness.core.guards import utcnow
from ipo_readiness.errors import ConcurrentModificationError, NotFoundError, ValidationError

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryAssessmentRepository:
    """IAssessmentRepository holding assessments in a dict.

    The version check and write in ``save`` happen atomically under a lock.
    ``get_by_id`` yields to the event loop after reading, so concurrent
    callers interleave as they would against a real database.
    """

    def __init__(self) -> None:
        self._rows: dict[str, Assessment] = {}
        self._lock = asyncio.Lock()

    async def create(self, assessment: Assessment) -> Assessment:
        async with self._lock:
            if assessment.id in self._rows:
                raise ValidationError(
                    "Assessment already exists",
                    context={"assessment_id": assessment.id},
                )
            if any(row.lead_id == assessment.lead_id for row in self._rows.values()):
                raise ValidationError(
                    "Assessment already exists for this lead",
                    context={"lead_id": assessment.lead_id},
                )
            stored = copy.deepcopy(assessment)
            stored.version = 0
            self._rows[stored.id] = stored
            return copy.deepcopy(stored)

    async def get_by_id(self, assessment_id: str) -> Assessment | None:
        row = self._rows.get(assessment_id)
        result = copy.deepcopy(row) if row is not None else None
        await asyncio.sleep(0)
        return result

    async def get_by_lead_id(self, lead_id: str) -> Assessment | None:
        for row in self._rows.values():
            if row.lead_id == lead_id:
                return copy.deepcopy(row)
        return None

    async def list_by_status(self, status: AssessmentStatus) -> list[Assessment]:
        rows = [row for row in self._rows.values() if row.status is status]
        rows.sort(key=lambda row: row.submitted_at or row.created_at or _EPOCH)
        return [copy.deepcopy(row) for row in rows]

    async def save(self, assessment: Assessment, expected_version: int) -> Assessment:
        async with self._lock:
            current = self._rows.get(assessment.id)
            if current is None:
                raise NotFoundError(
                    f"Assessment {assessment.id} not found",
                    context={"assessment_id": assessment.id},
                )
            if current.version != expected_version:
                raise ConcurrentModificationError(assessment.id, expected_version)
            stored = copy.deepcopy(assessment)
            stored.version = expected_version + 1
            stored.updated_at = utcnow()
            self._rows[stored.id] = stored
            return copy.deepcopy(stored)


class InMemoryTemplateQuestionRepository:
    """ITemplateQuestionRepository backed by a dict of frozen questions."""

    def __init__(self, questions: list[TemplateQuestion] | None = None) -> None:
        self._questions: dict[str, TemplateQuestion] = {q.id: q for q in questions or []}

    async def add(self, question: TemplateQuestion) -> TemplateQuestion:
        if question.id in self._questions:
            raise ValidationError(
                "Template question already exists",
                context={"question_id": question.id},
            )
        self._questions[question.id] = question
        return question

    async def get(self, question_id: str) -> TemplateQuestion | None:
        return self._questions.get(question_id)

    async def update(self, question: TemplateQuestion) -> TemplateQuestion:
        if question.id not in self._questions:
            raise NotFoundError(
                "Template question not found",
                context={"question_id": question.id},
            )
        self._questions[question.id] = question
        return question

    async def list(
        self,
        question_type: QuestionType | None = None,
        include_inactive: bool = False,
    ) -> list[TemplateQuestion]:
        type_order = list(QuestionType)
        questions = [
            q
            for q in self._questions.values()
            if (question_type is None or q.type is question_type)
            and (include_inactive or q.is_active)
        ]
        return sorted(questions, key=lambda q: (type_order.index(q.type), q.order))


class InMemoryVersionRegistry:
    """ITemplateVersionRegistry holding the counter in memory."""

    def __init__(self, version: int = 0) -> None:
        self._version = version
        self._lock = asyncio.Lock()

    async def current_version(self) -> int:
        return self._version

    async def bump(self) -> int:
        async with self._lock:
            self._version += 1
            return self._version
