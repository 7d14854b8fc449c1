"""
Quality classification for persisted parlay candidates.

For every candidate:

    penalty       = strategy.apply(legs, combined_prob)
    adjusted_prob = combined_prob − penalty
    composite     = Π leg.decimal_odds
    edge_pct      = edge(adjusted_prob, 1 / composite) × 100
    tradable      = edge_pct ≥ edge_floor_pct AND combined_prob ≥ prob_floor

Candidates are then scored 0–100 and ranked.  The score weights edge (35),
adjusted probability (25), mean model agreement (20), match diversity (10)
and mean leg risk (10).
"""

import logging
from collections import defaultdict
from statistics import mean
from typing import Dict, Iterable, List, Optional

from edge_engine.core.odds_math import composite_odds, edge, fair_odds, implied_prob, parlay_risk_level
from edge_engine.core.penalty import CorrelationPenaltyStrategy, TagOverlapPenalty
from edge_engine.core.scoring_policy import ScoringPolicy
from edge_engine.services.parlay_engine import ParlayCandidate, QualityFlags

logger = logging.getLogger(__name__)

# Score weights (sum to 100)
EDGE_WEIGHT = 35.0
PROB_WEIGHT = 25.0
AGREEMENT_WEIGHT = 20.0
DIVERSITY_WEIGHT = 10.0
RISK_WEIGHT = 10.0

# Edge saturates the score at 50%
EDGE_CAP_PCT = 50.0

_LEG_RISK_SCORE = {"low": 1.0, "medium": 0.8, "high": 0.6}


def quality_flags(edge_pct: float, combined: float, policy: ScoringPolicy) -> QualityFlags:
    low_edge = edge_pct < policy.edge_floor_pct
    low_prob = combined < policy.prob_floor
    return QualityFlags(
        is_tradable=not (low_edge or low_prob),
        has_low_edge=low_edge,
        has_low_probability=low_prob,
        risk_level=parlay_risk_level(
            combined,
            low_threshold=policy.low_risk_prob,
            medium_threshold=policy.medium_risk_prob,
            high_threshold=policy.high_risk_prob,
        ),
    )


def quality_score(candidate: ParlayCandidate) -> float:
    """0–100 ranking score for a classified candidate."""
    adjusted = candidate.adjusted_prob or 0.0
    edge_part = max(0.0, min(candidate.edge_pct, EDGE_CAP_PCT)) / EDGE_CAP_PCT * EDGE_WEIGHT
    prob_part = min(adjusted * 100.0, 100.0) * (PROB_WEIGHT / 100.0)

    legs = candidate.legs
    agreement_part = (mean(leg.model_agreement for leg in legs) if legs else 0.0) * AGREEMENT_WEIGHT
    distinct = len(set(candidate.match_ids)) == len(legs)
    diversity_part = DIVERSITY_WEIGHT if distinct else DIVERSITY_WEIGHT / 2.0
    risk_part = (
        mean(_LEG_RISK_SCORE.get(leg.risk_level, 0.6) for leg in legs) if legs else 0.0
    ) * RISK_WEIGHT

    return round(edge_part + prob_part + agreement_part + diversity_part + risk_part, 2)


def quality_tier(score: float) -> str:
    if score >= 70:
        return "excellent"
    if score >= 50:
        return "good"
    if score >= 30:
        return "fair"
    return "poor"


def classify_candidate(
    candidate: ParlayCandidate,
    *,
    policy: Optional[ScoringPolicy] = None,
    strategy: Optional[CorrelationPenaltyStrategy] = None,
) -> ParlayCandidate:
    """
    Fill the penalty, edge, flags and score fields of ``candidate`` in place.

    Returns:
        The same candidate, for chaining.
    """
    policy = policy or ScoringPolicy.default()
    strategy = strategy or TagOverlapPenalty()

    penalty, adjusted = strategy.apply(candidate.legs, candidate.combined_prob)
    candidate.correlation_penalty = penalty
    candidate.adjusted_prob = adjusted
    candidate.implied_odds = fair_odds(adjusted)

    composite = composite_odds(leg.decimal_odds for leg in candidate.legs)
    candidate.edge_pct = edge(adjusted, implied_prob(composite)) * 100.0
    candidate.quality_flags = quality_flags(candidate.edge_pct, candidate.combined_prob, policy)
    candidate.quality_score = quality_score(candidate)
    return candidate


def classify_candidates(
    candidates: Iterable[ParlayCandidate],
    *,
    policy: Optional[ScoringPolicy] = None,
    strategy: Optional[CorrelationPenaltyStrategy] = None,
) -> List[ParlayCandidate]:
    """
    Classify and rank a batch of candidates.

    Args:
        candidates: Output of the parlay combiner.
        policy: Scoring policy (floors and per-leg-count cut).
        strategy: Correlation-penalty strategy; ``TagOverlapPenalty`` when
            omitted.

    Returns:
        Candidates ordered by quality score, then edge, keeping at most
        ``policy.max_results_per_leg_count`` per leg count.

    Raises:
        TypeError: If ``strategy`` is not a ``CorrelationPenaltyStrategy``.
    """
    policy = policy or ScoringPolicy.default()
    strategy = strategy or TagOverlapPenalty()
    if not isinstance(strategy, CorrelationPenaltyStrategy):
        raise TypeError(
            f"strategy must be a CorrelationPenaltyStrategy, got {type(strategy).__name__}"
        )

    classified = [classify_candidate(c, policy=policy, strategy=strategy) for c in candidates]
    classified.sort(key=lambda c: (c.quality_score, c.edge_pct), reverse=True)

    kept: List[ParlayCandidate] = []
    per_count: Dict[int, int] = defaultdict(int)
    for c in classified:
        if per_count[c.leg_count] >= policy.max_results_per_leg_count:
            continue
        per_count[c.leg_count] += 1
        kept.append(c)

    tradable = sum(1 for c in kept if c.quality_flags.is_tradable)
    logger.info(
        "Classified %d candidates with %s: kept %d, %d tradable",
        len(classified), strategy.name, len(kept), tradable,
    )
    return kept
