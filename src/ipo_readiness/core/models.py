"""SQLAlchemy ORM models for the IPO readiness engine.

Structured assessment fields (preset answers, answer maps, the question
snapshot, score breakdown and review history) are stored as JSON documents
on the assessment row. JSON maps to JSONB on PostgreSQL.

Tables:
    ira_assessments          one row per lead, with the optimistic-lock version
    ira_template_questions   the reviewer-managed template question bank
    ira_template_bank_state  single-row template bank version counter
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for IPO readiness ORM models."""


class AssessmentRow(Base):
    """Persisted assessment for one lead.

    ``version`` is incremented on every write; updates are conditional on
    the version the writer read.

    Table: ira_assessments
    """

    __tablename__ = "ira_assessments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="Assessment UUID")
    lead_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="Lead being assessed (one assessment per lead)",
    )
    assessor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="DRAFT",
        index=True,
        comment="DRAFT | SUBMITTED | APPROVED | REJECTED",
    )
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    company_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    company_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    financial_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    financial_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    preset_answers: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
        comment="Answers to the 11 fixed financial and governance questions",
    )
    company_answers: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    financial_answers: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    sector_answers: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    question_snapshot: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
        comment="Question type -> ordered question copies owned by this assessment",
    )
    question_snapshot_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    rating: Mapped[str | None] = mapped_column(String(30), nullable=True)
    score_breakdown: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    review_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Append-only reviewer decisions",
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Optimistic concurrency counter",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class TemplateQuestionRow(Base):
    """A question in the global template bank. Deletes are soft.

    Table: ira_template_questions
    """

    __tablename__ = "ira_template_questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="ELIGIBILITY | COMPANY | FINANCIAL | SECTOR",
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column("order", Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


TEMPLATE_BANK_STATE_ID = 1


class TemplateBankStateRow(Base):
    """Single row holding the template bank's monotonic version.

    Table: ira_template_bank_state
    """

    __tablename__ = "ira_template_bank_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=TEMPLATE_BANK_STATE_ID)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
