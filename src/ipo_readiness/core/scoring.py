"""IPO readiness scoring algorithm.

Scores the 11 fixed financial and governance questions against hard-coded
point tables. Ascending tiers reward larger values, descending tiers
(borrowings, debt/equity ratio) reward smaller ones. Every tier threshold is
inclusive on its lower bound. A missing answer scores zero for its line item
and never fails the computation.

This module is intentionally independent of persistence and services so the
rubric can be unit-tested on its own.
"""

from dataclasses import dataclass

import structlog

from ipo_readiness.core.domain import PresetAnswers, Rating

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Point tables
# ---------------------------------------------------------------------------

INVESTMENT_PLAN_POINTS: float = 5.0
GOVERNANCE_POINTS_PER_FLAG: float = 2.5
TEAM_POINTS_PER_FLAG: float = 2.5

# (inclusive lower bound, points), highest tier first. Values in crores.
PAID_UP_CAPITAL_TIERS: list[tuple[float, float]] = [
    (10.0, 10.0),
    (5.0, 7.5),
    (3.0, 5.0),
    (1.0, 2.5),
]
NET_WORTH_TIERS: list[tuple[float, float]] = [
    (10.0, 10.0),
    (5.0, 7.5),
    (3.0, 5.0),
    (1.0, 2.5),
]
OUTSTANDING_SHARES_TIERS: list[tuple[float, float]] = [
    (1_000_000, 5.0),
    (500_000, 3.75),
    (100_000, 2.5),
    (10_000, 1.25),
]
EPS_TIERS: list[tuple[float, float]] = [
    (10.0, 5.0),
    (5.0, 3.75),
    (2.0, 2.5),
    (1.0, 1.25),
]

# Descending tables: (exclusive upper bound, points), best tier first.
BORROWINGS_DEBT_FREE_POINTS: float = 5.0
BORROWINGS_TIERS: list[tuple[float, float]] = [
    (1.0, 3.75),
    (5.0, 2.5),
    (10.0, 1.25),
]
DEBT_EQUITY_TIERS: list[tuple[float, float]] = [
    (0.5, 7.5),
    (1.0, 5.625),
    (2.0, 3.75),
    (3.0, 1.875),
]

# Three-year trend (turnover, EBITDA)
TREND_ALL_POSITIVE_POINTS: float = 2.5
TREND_GROWTH_STEP_POINTS: float = 2.5

MAX_SCORES: dict[str, float] = {
    "q1_investment_plan": INVESTMENT_PLAN_POINTS,
    "q2_governance": 4 * GOVERNANCE_POINTS_PER_FLAG,
    "q3_team": 4 * TEAM_POINTS_PER_FLAG,
    "q4_paid_up_capital": PAID_UP_CAPITAL_TIERS[0][1],
    "q5_outstanding_shares": OUTSTANDING_SHARES_TIERS[0][1],
    "q6_net_worth": NET_WORTH_TIERS[0][1],
    "q7_borrowings": BORROWINGS_DEBT_FREE_POINTS,
    "q8_debt_equity_ratio": DEBT_EQUITY_TIERS[0][1],
    "q9_turnover": TREND_ALL_POSITIVE_POINTS + 2 * TREND_GROWTH_STEP_POINTS,
    "q10_ebitda": TREND_ALL_POSITIVE_POINTS + 2 * TREND_GROWTH_STEP_POINTS,
    "q11_eps": EPS_TIERS[0][1],
}

# Sum of every line item's maximum: 82.5
MAX_POSSIBLE_SCORE: float = sum(MAX_SCORES.values())

# Rating boundaries on the percentage score (inclusive lower bound).
_RATING_THRESHOLDS: list[tuple[float, Rating]] = [
    (65.0, Rating.IPO_READY),
    (45.0, Rating.NEEDS_IMPROVEMENT),
]


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one set of preset answers.

    Attributes:
        breakdown: Points per line item, keyed q1_investment_plan .. q11_eps.
        total_score: Sum of the breakdown.
        max_score: MAX_POSSIBLE_SCORE.
        percentage: total_score / max_score * 100.
        rating: Readiness bucket for the percentage.
    """

    breakdown: dict[str, float]
    total_score: float
    max_score: float
    percentage: float
    rating: Rating


def rating_for(percentage: float) -> Rating:
    """Map a percentage score to its readiness rating.

    Args:
        percentage: Score percentage in the range 0-100.

    Returns:
        IPO_READY at 65 and above, NEEDS_IMPROVEMENT at 45 and above,
        NOT_READY otherwise.
    """
    for threshold, rating in _RATING_THRESHOLDS:
        if percentage >= threshold:
            return rating
    return Rating.NOT_READY


def _ascending_tier(value: float | None, tiers: list[tuple[float, float]]) -> float:
    if value is None:
        return 0.0
    for lower_bound, points in tiers:
        if value >= lower_bound:
            return points
    return 0.0


def _descending_tier(value: float, tiers: list[tuple[float, float]]) -> float:
    for upper_bound, points in tiers:
        if value < upper_bound:
            return points
    return 0.0


def _count_true(*flags: bool | None) -> int:
    return sum(1 for flag in flags if flag is True)


class ScoreCalculator:
    """Fixed-weight rubric for the 11 preset questions.

    Stateless; a single instance can be shared across requests.
    """

    max_score: float = MAX_POSSIBLE_SCORE

    def score_investment_plan(self, has_plan: bool | None) -> float:
        """Q1: an investment plan earns the full 5 points."""
        return INVESTMENT_PLAN_POINTS if has_plan is True else 0.0

    def score_governance(self, answers: PresetAnswers) -> float:
        """Q2: 2.5 points per governance flag answered yes."""
        return GOVERNANCE_POINTS_PER_FLAG * _count_true(
            answers.governance_plan,
            answers.financial_reporting,
            answers.control_systems,
            answers.shareholding_clear,
        )

    def score_team(self, answers: PresetAnswers) -> float:
        """Q3: 2.5 points per team flag answered yes."""
        return TEAM_POINTS_PER_FLAG * _count_true(
            answers.senior_management,
            answers.independent_board,
            answers.mid_management,
            answers.key_personnel,
        )

    def score_paid_up_capital(self, value: float | None) -> float:
        return _ascending_tier(value, PAID_UP_CAPITAL_TIERS)

    def score_outstanding_shares(self, value: float | None) -> float:
        return _ascending_tier(value, OUTSTANDING_SHARES_TIERS)

    def score_net_worth(self, value: float | None) -> float:
        return _ascending_tier(value, NET_WORTH_TIERS)

    def score_borrowings(self, value: float | None) -> float:
        """Q7: lower borrowings score higher; debt-free earns the maximum."""
        if value is None:
            return 0.0
        if value <= 0:
            return BORROWINGS_DEBT_FREE_POINTS
        return _descending_tier(value, BORROWINGS_TIERS)

    def score_debt_equity_ratio(self, value: float | None) -> float:
        """Q8: lower leverage scores higher."""
        if value is None:
            return 0.0
        return _descending_tier(max(value, 0.0), DEBT_EQUITY_TIERS)

    def score_trend(
        self,
        series: tuple[float | None, float | None, float | None],
    ) -> float:
        """Q9/Q10: reward three positive years and year-on-year growth.

        Args:
            series: Values for the last three years, latest first.

        Returns:
            2.5 if all three years are positive, plus 2.5 for each
            year-on-year increase between two positive years (max 7.5).
        """
        latest, previous, earliest = series
        positive = [value is not None and value > 0 for value in series]

        score = TREND_ALL_POSITIVE_POINTS if all(positive) else 0.0
        if positive[1] and positive[2] and previous > earliest:  # type: ignore[operator]
            score += TREND_GROWTH_STEP_POINTS
        if positive[0] and positive[1] and latest > previous:  # type: ignore[operator]
            score += TREND_GROWTH_STEP_POINTS
        return score

    def score_eps(self, value: float | None) -> float:
        return _ascending_tier(value, EPS_TIERS)

    def breakdown(self, answers: PresetAnswers) -> dict[str, float]:
        """Compute the points for every line item.

        Args:
            answers: Preset answers, possibly incomplete.

        Returns:
            Ordered dict of line item key to points.
        """
        return {
            "q1_investment_plan": self.score_investment_plan(answers.has_investment_plan),
            "q2_governance": self.score_governance(answers),
            "q3_team": self.score_team(answers),
            "q4_paid_up_capital": self.score_paid_up_capital(answers.paid_up_capital),
            "q5_outstanding_shares": self.score_outstanding_shares(answers.outstanding_shares),
            "q6_net_worth": self.score_net_worth(answers.net_worth),
            "q7_borrowings": self.score_borrowings(answers.borrowings),
            "q8_debt_equity_ratio": self.score_debt_equity_ratio(answers.debt_equity_ratio),
            "q9_turnover": self.score_trend(answers.turnover),
            "q10_ebitda": self.score_trend(answers.ebitda),
            "q11_eps": self.score_eps(answers.eps),
        }

    def compute(self, answers: PresetAnswers) -> ScoreResult:
        """Run the full rubric.

        Args:
            answers: Preset answers, possibly incomplete.

        Returns:
            ScoreResult whose total equals the sum of its breakdown and whose
            percentage is total / MAX_POSSIBLE_SCORE * 100.
        """
        breakdown = self.breakdown(answers)
        total_score = sum(breakdown.values())
        percentage = total_score / self.max_score * 100
        rating = rating_for(percentage)

        logger.debug(
            "Preset answers scored",
            total_score=total_score,
            max_score=self.max_score,
            percentage=percentage,
            rating=rating.value,
        )

        return ScoreResult(
            breakdown=breakdown,
            total_score=total_score,
            max_score=self.max_score,
            percentage=percentage,
            rating=rating,
        )
