"""
Risk score calculation: weighted mean of signal scores plus thresholds.
Fast, configurable, and explainable scoring.
"""

from typing import Iterable, Optional, Tuple

from ...utils.rounding import round_half_up
from ..models import RiskDecision, RiskSignal, RiskThresholds


def compute_weighted_score(signals: Iterable[RiskSignal]) -> int:
    """
    Weighted mean of signal scores, capped at 100 and rounded half up.

    0 when there are no signals or every weight is zero.
    """
    total_weighted = 0.0
    total_weight = 0.0
    for signal in signals:
        total_weighted += signal.score * signal.weight
        total_weight += signal.weight

    if total_weight == 0:
        return 0
    return round_half_up(min(100.0, total_weighted / total_weight))


def decide(score: int, allow_threshold: int, block_threshold: int) -> RiskDecision:
    """Both thresholds are inclusive; allow wins if they overlap."""
    if score <= allow_threshold:
        return RiskDecision.ALLOW
    if score >= block_threshold:
        return RiskDecision.BLOCK
    return RiskDecision.REVIEW


class RiskScorer:
    """Scores a list of signals against configured thresholds."""

    def __init__(self, thresholds: Optional[RiskThresholds] = None):
        self.thresholds = thresholds or RiskThresholds()

    def score(
        self,
        signals: Iterable[RiskSignal],
        allow_threshold: Optional[int] = None,
        block_threshold: Optional[int] = None,
    ) -> Tuple[int, RiskDecision]:
        """Per-call thresholds override the configured ones."""
        total = compute_weighted_score(signals)
        decision = decide(
            total,
            self.thresholds.allow_threshold if allow_threshold is None else allow_threshold,
            self.thresholds.block_threshold if block_threshold is None else block_threshold,
        )
        return total, decision
