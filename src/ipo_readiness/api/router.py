"""FastAPI routers for the IPO readiness engine.

All routes are thin: they parse inputs, resolve the acting user, delegate
to the services on the application container and serialise responses. No
business logic lives here; engine errors are mapped to HTTP by the
exception handler registered in ``main.py``.

API prefix: /api/v1
Auth: the host's gateway supplies the actor in X-Actor-Id / X-Actor-Role /
X-Actor-Name headers. Hosts may override ``get_actor``.
"""

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status

from ipo_readiness.api.schemas import (
    AddQuestionRequest,
    AddTemplateQuestionRequest,
    ApproveRequest,
    AssessmentResponse,
    CreateAssessmentRequest,
    GoToStepRequest,
    PresetAnswersSchema,
    RejectRequest,
    ReorderRequest,
    SaveAnswersRequest,
    SectionSummarySchema,
    SnapshotQuestionSchema,
    SubmitRequest,
    TemplateBankVersionResponse,
    TemplateQuestionSchema,
    UpdateQuestionRequest,
    VersionCheckResponse,
)
from ipo_readiness.container import ServiceContainer
from ipo_readiness.core.domain import Actor, QuestionType, Role

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/assessments", tags=["Assessments"])
template_router = APIRouter(prefix="/template-questions", tags=["Template bank"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_container(request: Request) -> ServiceContainer:
    """Return the service container attached to the application."""
    return request.app.state.container


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
) -> Actor:
    """Build the acting user from gateway headers.

    Raises:
        HTTPException: 401 when the identity headers are missing or invalid.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor identity headers",
        )
    try:
        role = Role(x_actor_role.upper())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown actor role: {x_actor_role}",
        ) from exc
    return Actor(id=x_actor_id, role=role, name=x_actor_name or "")


# ---------------------------------------------------------------------------
# Assessments: creation and reads
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=AssessmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create the assessment for a lead",
)
async def create_assessment(
    body: CreateAssessmentRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    """Create a DRAFT assessment with a snapshot of the current template bank."""
    assessment = await container.lifecycle.create_assessment(
        lead_id=body.lead_id,
        assessor_id=body.assessor_id,
    )
    logger.info("Assessment created via API", assessment_id=assessment.id, actor_id=actor.id)
    return AssessmentResponse.from_domain(assessment)


@router.get(
    "/pending-reviews",
    response_model=list[AssessmentResponse],
    summary="List submitted assessments awaiting review",
)
async def list_pending_reviews(
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> list[AssessmentResponse]:
    assessments = await container.lifecycle.list_pending_reviews(actor)
    return [AssessmentResponse.from_domain(a) for a in assessments]


@router.get("/{assessment_id}", response_model=AssessmentResponse, summary="Get an assessment")
async def get_assessment(
    assessment_id: str,
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(await container.lifecycle.get_assessment(assessment_id))


@router.get(
    "/{assessment_id}/summary",
    response_model=list[SectionSummarySchema],
    summary="Per-section answer progress",
)
async def get_section_summary(
    assessment_id: str,
    container: ServiceContainer = Depends(get_container),
) -> list[SectionSummarySchema]:
    summaries = await container.lifecycle.section_summary(assessment_id)
    return [SectionSummarySchema.from_domain(summary) for summary in summaries.values()]


@router.get(
    "/{assessment_id}/version-check",
    response_model=VersionCheckResponse,
    summary="Compare the question snapshot with the template bank",
)
async def check_version(
    assessment_id: str,
    container: ServiceContainer = Depends(get_container),
) -> VersionCheckResponse:
    return VersionCheckResponse.from_domain(await container.lifecycle.check_version(assessment_id))


# ---------------------------------------------------------------------------
# Assessments: wizard and answers
# ---------------------------------------------------------------------------


@router.post("/{assessment_id}/verify-company", response_model=AssessmentResponse)
async def verify_company(
    assessment_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(
        await container.lifecycle.verify_company(actor, assessment_id)
    )


@router.post("/{assessment_id}/verify-financial", response_model=AssessmentResponse)
async def verify_financial(
    assessment_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(
        await container.lifecycle.verify_financial(actor, assessment_id)
    )


@router.post("/{assessment_id}/step", response_model=AssessmentResponse)
async def go_to_step(
    assessment_id: str,
    body: GoToStepRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(
        await container.lifecycle.go_to_step(actor, assessment_id, body.step)
    )


@router.patch(
    "/{assessment_id}/preset-answers",
    response_model=AssessmentResponse,
    summary="Partially update the fixed financial and governance answers",
)
async def update_preset_answers(
    assessment_id: str,
    body: PresetAnswersSchema,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    assessment = await container.lifecycle.update_preset_answers(
        actor, assessment_id, body.model_dump(exclude_unset=True)
    )
    return AssessmentResponse.from_domain(assessment)


@router.put(
    "/{assessment_id}/answers",
    response_model=AssessmentResponse,
    summary="Save dirty answer sections (auto-save target)",
)
async def save_answers(
    assessment_id: str,
    body: SaveAnswersRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    assessment = await container.lifecycle.save_answers(
        actor,
        assessment_id,
        body.sections(),
        expected_version=body.expected_version,
    )
    return AssessmentResponse.from_domain(assessment)


# ---------------------------------------------------------------------------
# Assessments: transitions
# ---------------------------------------------------------------------------


@router.post("/{assessment_id}/submit", response_model=AssessmentResponse)
async def submit_assessment(
    assessment_id: str,
    body: SubmitRequest | None = None,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    """Score and submit. Answers 409 with requires_confirmation on drift."""
    body = body or SubmitRequest()
    assessment = await container.lifecycle.submit(
        actor, assessment_id, confirm_old_questions=body.confirm_old_questions
    )
    return AssessmentResponse.from_domain(assessment)


@router.post("/{assessment_id}/approve", response_model=AssessmentResponse)
async def approve_assessment(
    assessment_id: str,
    body: ApproveRequest | None = None,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    body = body or ApproveRequest()
    assessment = await container.lifecycle.approve(
        actor,
        assessment_id,
        comments=body.comments,
        confirm_old_questions=body.confirm_old_questions,
    )
    return AssessmentResponse.from_domain(assessment)


@router.post("/{assessment_id}/reject", response_model=AssessmentResponse)
async def reject_assessment(
    assessment_id: str,
    body: RejectRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(
        await container.lifecycle.reject(actor, assessment_id, body.comments)
    )


@router.post("/{assessment_id}/resume", response_model=AssessmentResponse)
async def resume_assessment(
    assessment_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(await container.lifecycle.resume(actor, assessment_id))


@router.post(
    "/{assessment_id}/restart",
    response_model=AssessmentResponse,
    summary="Replace the question snapshot and discard answers",
)
async def restart_with_new_questions(
    assessment_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> AssessmentResponse:
    return AssessmentResponse.from_domain(
        await container.lifecycle.restart_with_new_questions(actor, assessment_id)
    )


# ---------------------------------------------------------------------------
# Assessments: question snapshot
# ---------------------------------------------------------------------------


@router.get("/{assessment_id}/questions", response_model=dict[QuestionType, list[SnapshotQuestionSchema]])
async def get_questions(
    assessment_id: str,
    question_type: QuestionType | None = Query(default=None, alias="type"),
    container: ServiceContainer = Depends(get_container),
) -> dict[QuestionType, list[SnapshotQuestionSchema]]:
    questions = await container.snapshots.get_questions(assessment_id, question_type)
    return {
        qt: [SnapshotQuestionSchema.from_domain(q) for q in items]
        for qt, items in questions.items()
    }


@router.post(
    "/{assessment_id}/questions",
    response_model=SnapshotQuestionSchema,
    status_code=status.HTTP_201_CREATED,
)
async def add_question(
    assessment_id: str,
    body: AddQuestionRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> SnapshotQuestionSchema:
    question = await container.snapshots.add(
        actor,
        assessment_id,
        body.type,
        body.text,
        help_text=body.help_text,
        source_question_id=body.source_question_id,
    )
    return SnapshotQuestionSchema.from_domain(question)


@router.put("/{assessment_id}/questions/order", response_model=list[SnapshotQuestionSchema])
async def reorder_questions(
    assessment_id: str,
    body: ReorderRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> list[SnapshotQuestionSchema]:
    questions = await container.snapshots.reorder(actor, assessment_id, body.type, body.ordered_ids)
    return [SnapshotQuestionSchema.from_domain(q) for q in questions]


@router.patch("/{assessment_id}/questions/{question_id}", response_model=SnapshotQuestionSchema)
async def update_question(
    assessment_id: str,
    question_id: str,
    body: UpdateQuestionRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> SnapshotQuestionSchema:
    question = await container.snapshots.update(
        actor, assessment_id, question_id, text=body.text, help_text=body.help_text
    )
    return SnapshotQuestionSchema.from_domain(question)


@router.delete("/{assessment_id}/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(
    assessment_id: str,
    question_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    await container.snapshots.delete(actor, assessment_id, question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Template bank (reviewers)
# ---------------------------------------------------------------------------


@template_router.get("", response_model=list[TemplateQuestionSchema])
async def list_template_questions(
    question_type: QuestionType | None = Query(default=None, alias="type"),
    include_inactive: bool = False,
    container: ServiceContainer = Depends(get_container),
) -> list[TemplateQuestionSchema]:
    questions = await container.templates.list_questions(question_type, include_inactive)
    return [TemplateQuestionSchema.from_domain(q) for q in questions]


@template_router.get("/version", response_model=TemplateBankVersionResponse)
async def get_template_version(
    container: ServiceContainer = Depends(get_container),
) -> TemplateBankVersionResponse:
    return TemplateBankVersionResponse(
        version=await container.templates.current_version(),
        active_counts=await container.templates.active_counts(),
    )


@template_router.post("", response_model=TemplateQuestionSchema, status_code=status.HTTP_201_CREATED)
async def add_template_question(
    body: AddTemplateQuestionRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> TemplateQuestionSchema:
    question = await container.templates.add(actor, body.type, body.text, help_text=body.help_text)
    return TemplateQuestionSchema.from_domain(question)


@template_router.put("/order", response_model=list[TemplateQuestionSchema])
async def reorder_template_questions(
    body: ReorderRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> list[TemplateQuestionSchema]:
    questions = await container.templates.reorder(actor, body.type, body.ordered_ids)
    return [TemplateQuestionSchema.from_domain(q) for q in questions]


@template_router.patch("/{question_id}", response_model=TemplateQuestionSchema)
async def update_template_question(
    question_id: str,
    body: UpdateQuestionRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> TemplateQuestionSchema:
    question = await container.templates.update(
        actor, question_id, text=body.text, help_text=body.help_text
    )
    return TemplateQuestionSchema.from_domain(question)


@template_router.delete("/{question_id}", response_model=TemplateQuestionSchema)
async def delete_template_question(
    question_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> TemplateQuestionSchema:
    return TemplateQuestionSchema.from_domain(await container.templates.delete(actor, question_id))


@template_router.post("/{question_id}/restore", response_model=TemplateQuestionSchema)
async def restore_template_question(
    question_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
) -> TemplateQuestionSchema:
    return TemplateQuestionSchema.from_domain(await container.templates.restore(actor, question_id))
