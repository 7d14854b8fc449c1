"""
Parlay builder for the consensus edge engine.

Combines qualifying single-outcome legs into 2- and 3-leg parlay candidates,
either within one match (single-game) or across matches (multi-game).

The combined probability is the product of leg probabilities.  Legs are
NOT guaranteed to be statistically independent, so every candidate carries
``independence_assumed=True`` and is scored downstream with a correlation
penalty; the raw product must never be presented as exact.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from edge_engine.core.odds_math import combined_prob as _combined_prob, fair_odds
from edge_engine.core.scoring_policy import ScoringPolicy
from edge_engine.services.leg_selector import ParlayLeg

logger = logging.getLogger(__name__)

PARLAY_SINGLE_GAME = "single_game"
PARLAY_MULTI_GAME = "multi_game"

TIER_HIGH = "high"
TIER_MEDIUM = "medium"
TIER_LOW = "low"


@dataclass
class QualityFlags:
    """Tradability verdict with explicit reasons."""

    is_tradable: bool = False
    has_low_edge: bool = False
    has_low_probability: bool = False
    risk_level: str = "very_high"


@dataclass
class ParlayCandidate:
    """An ordered set of ≥2 legs with derived pricing and quality fields."""

    legs: List[ParlayLeg]
    parlay_type: str
    combined_prob: float
    fair_odds: Optional[float]
    confidence_tier: str
    independence_assumed: bool = True

    # Filled by the quality classifier
    correlation_penalty: float = 0.0
    adjusted_prob: Optional[float] = None
    implied_odds: Optional[float] = None
    edge_pct: float = 0.0
    quality_score: float = 0.0
    quality_flags: QualityFlags = field(default_factory=QualityFlags)

    @property
    def leg_count(self) -> int:
        return len(self.legs)

    @property
    def match_ids(self) -> List[str]:
        return [leg.match_id for leg in self.legs]

    @property
    def identity(self) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        """Order-independent identity: sorted match IDs + sorted outcome codes."""
        return (
            tuple(sorted(self.match_ids)),
            tuple(sorted(f"{leg.match_id}:{leg.outcome}" for leg in self.legs)),
        )

    @property
    def leg_summary(self) -> str:
        return " + ".join(leg.description or leg.outcome for leg in self.legs)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def legs_contradict(a: ParlayLeg, b: ParlayLeg) -> bool:
    """Same match, same market type and line, different subtype."""
    return (
        a.match_id == b.match_id
        and a.market_type == b.market_type
        and a.line == b.line
        and (a.market_subtype or "").upper() != (b.market_subtype or "").upper()
    )


def has_contradiction(legs: Sequence[ParlayLeg]) -> bool:
    return any(legs_contradict(a, b) for a, b in itertools.combinations(legs, 2))


def confidence_tier(combined: float, leg_count: int, policy: Optional[ScoringPolicy] = None) -> str:
    """
    Tier a candidate by combined probability.

    2-leg: ≥ high_tier_prob → high, ≥ medium_tier_prob → medium, else low.
    3+-leg: never high (extra legs compound risk); ≥ medium_tier_prob → medium.
    """
    policy = policy or ScoringPolicy.default()
    if leg_count <= 2 and combined >= policy.high_tier_prob:
        return TIER_HIGH
    if combined >= policy.medium_tier_prob:
        return TIER_MEDIUM
    return TIER_LOW


def _make_candidate(
    combo: Sequence[ParlayLeg],
    parlay_type: str,
    policy: ScoringPolicy,
) -> ParlayCandidate:
    legs = [
        ParlayLeg(**{**leg.__dict__, "order_index": i, "correlation_tags": list(leg.correlation_tags)})
        for i, leg in enumerate(combo)
    ]
    joint = _combined_prob(leg.probability for leg in legs)
    return ParlayCandidate(
        legs=legs,
        parlay_type=parlay_type,
        combined_prob=joint,
        fair_odds=fair_odds(joint),
        confidence_tier=confidence_tier(joint, len(legs), policy),
    )


def combine_legs(
    legs: Sequence[ParlayLeg],
    parlay_type: str,
    *,
    policy: Optional[ScoringPolicy] = None,
) -> List[ParlayCandidate]:
    """
    Enumerate every size-2..max subset of ``legs`` and price the survivors.

    Subsets containing a contradiction (same market type + line, different
    subtype) are rejected.  Cross-market correlation is NOT rejected here;
    it is penalised by the quality classifier.
    """
    policy = policy or ScoringPolicy.default()
    candidates: List[ParlayCandidate] = []
    rejected = 0
    for size in range(policy.min_parlay_legs, policy.max_parlay_legs + 1):
        for combo in itertools.combinations(legs, size):
            if has_contradiction(combo):
                rejected += 1
                continue
            candidates.append(_make_candidate(combo, parlay_type, policy))
    if rejected:
        logger.debug("Rejected %d contradictory combinations", rejected)
    return candidates


def _dedupe_and_rank(candidates: Iterable[ParlayCandidate]) -> List[ParlayCandidate]:
    seen = set()
    unique: List[ParlayCandidate] = []
    for c in candidates:
        if c.identity in seen:
            continue
        seen.add(c.identity)
        unique.append(c)
    unique.sort(key=lambda c: (-c.combined_prob, c.leg_count))
    return unique


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_single_game_parlays(
    legs_by_match: Mapping[str, Sequence[ParlayLeg]],
    *,
    policy: Optional[ScoringPolicy] = None,
) -> List[ParlayCandidate]:
    """
    Build single-game parlay candidates for every match.

    Args:
        legs_by_match: Capped legs per match (see ``select_legs_by_match``).
        policy: Scoring policy.

    Returns:
        Candidates sorted by combined probability (descending), ties broken
        by fewer legs first.
    """
    policy = policy or ScoringPolicy.default()
    candidates: List[ParlayCandidate] = []
    for match_id, legs in legs_by_match.items():
        if len(legs) < policy.min_parlay_legs:
            continue
        candidates.extend(combine_legs(legs, PARLAY_SINGLE_GAME, policy=policy))
    ranked = _dedupe_and_rank(candidates)
    logger.info(
        "Generated %d single-game candidates across %d matches",
        len(ranked), len(legs_by_match),
    )
    return ranked


def build_multi_match_parlays(
    legs_by_match: Mapping[str, Sequence[ParlayLeg]],
    *,
    max_legs_per_match: int = 1,
    policy: Optional[ScoringPolicy] = None,
) -> List[ParlayCandidate]:
    """
    Build cross-match parlay candidates.

    Takes at most ``max_legs_per_match`` top legs from each match and never
    places two legs from the same match in one candidate.
    """
    policy = policy or ScoringPolicy.default()
    pool: List[ParlayLeg] = []
    for legs in legs_by_match.values():
        pool.extend(sorted(legs, key=lambda l: l.probability, reverse=True)[:max_legs_per_match])

    if len({leg.match_id for leg in pool}) < policy.min_parlay_legs:
        logger.info(
            "Not enough matches for multi-game parlays (need %d, have %d)",
            policy.min_parlay_legs, len(legs_by_match),
        )
        return []

    candidates: List[ParlayCandidate] = []
    for size in range(policy.min_parlay_legs, policy.max_parlay_legs + 1):
        for combo in itertools.combinations(pool, size):
            match_ids = [leg.match_id for leg in combo]
            if len(match_ids) != len(set(match_ids)):
                continue  # cross-match only
            candidates.append(_make_candidate(combo, PARLAY_MULTI_GAME, policy))

    ranked = _dedupe_and_rank(candidates)
    logger.info(
        "Generated %d multi-game candidates from %d pooled legs",
        len(ranked), len(pool),
    )
    return ranked


def format_parlay_ticket(parlay: ParlayCandidate) -> str:
    """
    Format a parlay candidate for human-readable display.

    Always states the independence assumption behind the combined
    probability.
    """
    odds = f"{parlay.fair_odds:.2f}" if parlay.fair_odds else "n/a"
    lines = [
        f"{parlay.leg_count}-Leg {parlay.parlay_type.replace('_', '-')} Parlay @ {odds} (fair)",
        f"   Legs: {parlay.leg_summary}",
        f"   Combined Prob: {parlay.combined_prob:.2%} (assumes independent legs)",
        f"   Confidence: {parlay.confidence_tier}",
    ]
    if parlay.adjusted_prob is not None:
        lines.append(
            f"   Adjusted Prob: {parlay.adjusted_prob:.2%} "
            f"(correlation penalty {parlay.correlation_penalty:.2%})"
        )
        lines.append(f"   Edge: {parlay.edge_pct:.2f}%")
        lines.append(
            "   Tradable: "
            + ("yes" if parlay.quality_flags.is_tradable else "no")
            + f" (risk {parlay.quality_flags.risk_level})"
        )
    return "\n".join(lines)
