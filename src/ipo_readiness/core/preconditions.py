"""Lifecycle preconditions expressed as functions returning tagged results.

Business rules such as "an outdated snapshot needs explicit acknowledgement"
live here rather than in UI handlers. Each check returns a GateResult; the
lifecycle service turns a blocked gate into the matching error.
"""

from dataclasses import dataclass, field
from enum import Enum

from ipo_readiness.core.answers import valid_answers
from ipo_readiness.core.domain import Actor, AnswerSection, Assessment, Role


class Gate(str, Enum):
    """Outcome tag of a precondition check."""

    PASSED = "PASSED"
    NEEDS_CONFIRMATION = "NEEDS_CONFIRMATION"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class VersionCheck:
    """Comparison of a snapshot version with the template bank version."""

    snapshot_version: int
    current_version: int

    @property
    def is_outdated(self) -> bool:
        return self.snapshot_version < self.current_version


@dataclass(frozen=True)
class GateResult:
    """Tagged result of a precondition.

    Attributes:
        gate: PASSED, NEEDS_CONFIRMATION or BLOCKED.
        reason: Human-readable explanation when not PASSED.
        details: Structured data about the failure (e.g. missing sections).
    """

    gate: Gate
    reason: str = ""
    details: dict[str, object] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.gate is Gate.PASSED


PASSED = GateResult(Gate.PASSED)


def check_version(snapshot_version: int, current_version: int) -> VersionCheck:
    """Compare a stored snapshot version with the current bank version."""
    return VersionCheck(snapshot_version=snapshot_version, current_version=current_version)


def old_questions_gate(version_check: VersionCheck, confirm_old_questions: bool) -> GateResult:
    """Require explicit acknowledgement before acting on an outdated snapshot.

    Args:
        version_check: Result of check_version for the assessment.
        confirm_old_questions: True only when the caller explicitly accepted
            proceeding with the old questions.

    Returns:
        PASSED when the snapshot is current or the caller confirmed,
        NEEDS_CONFIRMATION otherwise.
    """
    if not version_check.is_outdated or confirm_old_questions is True:
        return PASSED
    return GateResult(
        Gate.NEEDS_CONFIRMATION,
        reason="Question snapshot is older than the template bank",
        details={
            "snapshot_version": version_check.snapshot_version,
            "current_version": version_check.current_version,
        },
    )


def section_coverage_gate(assessment: Assessment) -> GateResult:
    """Require at least one scored answer in each answer section.

    Only answers whose question is still in the snapshot and whose score is
    non-zero count.
    """
    missing = [
        section.value
        for section in AnswerSection
        if not any(
            record.score != 0
            for record in valid_answers(assessment, section).values()
        )
    ]
    if not missing:
        return PASSED
    return GateResult(
        Gate.BLOCKED,
        reason=(
            "Please answer at least one question in each section before submitting "
            f"(missing: {', '.join(missing)})"
        ),
        details={"missing_sections": missing},
    )


def comment_length_gate(comments: str | None, min_length: int) -> GateResult:
    """Require reviewer comments of at least ``min_length`` characters."""
    if comments is not None and len(comments.strip()) >= min_length:
        return PASSED
    return GateResult(
        Gate.BLOCKED,
        reason=f"Comments must be at least {min_length} characters",
        details={"min_length": min_length},
    )


def role_gate(actor: Actor, role: Role) -> GateResult:
    """Require the actor to hold ``role``."""
    if actor.role is role:
        return PASSED
    return GateResult(
        Gate.BLOCKED,
        reason=f"This action requires the {role.value} role",
        details={"required_role": role.value, "actor_role": actor.role.value},
    )
