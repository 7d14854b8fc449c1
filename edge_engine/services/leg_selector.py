"""
Leg selection: turn a match's classified outcomes into parlay legs.

Only a fixed set of market sides is leg-eligible, each with its own
inclusive minimum probability taken from the scoring policy:

    DNB home/away, TOTALS over/under, BTTS yes/no,
    DOUBLE_CHANCE 1X/X2, WIN_TO_NIL home/away

Qualifying legs are sorted by probability and capped per match
(``policy.max_legs_per_match``) to bound the combinatorial blow-up in the
parlay combiner.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from edge_engine.core.odds_math import fair_odds
from edge_engine.core.scoring_policy import ScoringPolicy
from edge_engine.services.market_catalog import MarketOutcome, display_label

logger = logging.getLogger(__name__)

_OUTCOME_PREFIX = {
    "DNB": "DNB",
    "BTTS": "BTTS",
    "DOUBLE_CHANCE": "DC",
    "WIN_TO_NIL": "WTN",
}

_SIDE_CODE = {"HOME": "H", "AWAY": "A"}


@dataclass
class ParlayLeg:
    """A single-outcome leg owned by a parlay candidate."""

    match_id: str
    market_type: str
    market_subtype: Optional[str]
    line: Optional[float]
    probability: float
    decimal_odds: Optional[float]
    edge: float = 0.0
    order_index: int = 0
    correlation_tags: List[str] = field(default_factory=list)
    description: str = ""
    model_agreement: float = 1.0
    risk_level: str = "low"

    @property
    def outcome(self) -> str:
        """Stable outcome code, e.g. ``DNB_H``, ``UNDER_3_5``, ``BTTS_YES``."""
        side = (self.market_subtype or "").upper()
        if self.market_type == "TOTALS":
            line = "" if self.line is None else f"_{self.line:g}".replace(".", "_")
            return f"{side}{line}"
        prefix = _OUTCOME_PREFIX.get(self.market_type, self.market_type)
        return f"{prefix}_{_SIDE_CODE.get(side, side)}"


def leg_from_outcome(outcome: MarketOutcome, order_index: int = 0) -> ParlayLeg:
    """Build a leg from a catalog outcome, pricing at fair odds if unpriced."""
    return ParlayLeg(
        match_id=outcome.match_id,
        market_type=outcome.market_type,
        market_subtype=outcome.market_subtype,
        line=outcome.line,
        probability=outcome.consensus_prob,
        decimal_odds=outcome.decimal_odds or fair_odds(outcome.consensus_prob),
        edge=outcome.edge,
        order_index=order_index,
        correlation_tags=list(outcome.correlation_tags),
        description=display_label(outcome.market_type, outcome.market_subtype, outcome.line),
        model_agreement=outcome.model_agreement,
        risk_level=outcome.risk_level,
    )


def is_eligible(outcome: MarketOutcome, policy: ScoringPolicy) -> bool:
    """True when the outcome's side is leg-eligible and clears its threshold."""
    threshold = policy.min_leg_prob(outcome.market_type, outcome.market_subtype)
    if threshold is None:
        return False
    return outcome.consensus_prob > 0.0 and outcome.consensus_prob >= threshold


def select_legs(
    outcomes: Iterable[MarketOutcome],
    *,
    policy: Optional[ScoringPolicy] = None,
) -> List[ParlayLeg]:
    """
    Select the top qualifying legs for a single match.

    Args:
        outcomes: Classified outcomes of one match.
        policy: Scoring policy (thresholds and per-match cap).

    Returns:
        Up to ``policy.max_legs_per_match`` legs, probability-descending,
        with ``order_index`` set to the rank.  Ties keep input order.
    """
    policy = policy or ScoringPolicy.default()
    qualifying = [o for o in outcomes if is_eligible(o, policy)]
    qualifying.sort(key=lambda o: o.consensus_prob, reverse=True)
    capped = qualifying[: policy.max_legs_per_match]
    return [leg_from_outcome(o, i) for i, o in enumerate(capped)]


def select_legs_by_match(
    outcomes: Iterable[MarketOutcome],
    *,
    policy: Optional[ScoringPolicy] = None,
) -> Dict[str, List[ParlayLeg]]:
    """Group outcomes by match and run :func:`select_legs` on each group.

    Matches with no qualifying legs are omitted.  Match order follows first
    appearance in ``outcomes``.
    """
    grouped: "OrderedDict[str, List[MarketOutcome]]" = OrderedDict()
    for o in outcomes:
        grouped.setdefault(o.match_id, []).append(o)

    result: Dict[str, List[ParlayLeg]] = OrderedDict()
    for match_id, match_outcomes in grouped.items():
        legs = select_legs(match_outcomes, policy=policy)
        if legs:
            result[match_id] = legs
    logger.debug(
        "Selected legs for %d of %d matches", len(result), len(grouped)
    )
    return result
