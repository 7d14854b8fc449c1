"""
Market catalog: classify every market outcome of a match.

For each match the catalog is rebuilt wholesale from two inputs:

    1. 1X2 outcomes blended from the v1/v2 model snapshots.
    2. Secondary markets (DNB, BTTS, TOTALS, DOUBLE_CHANCE, WIN_TO_NIL)
       computed by the external feed (single source, fixed confidence).

Every outcome is tagged with correlation tags (shared tags between two legs
signal that the independence approximation is unsafe) and a risk tier.
The resulting :class:`MarketOutcome` records are keyed by
``(match_id, market_type, market_subtype, line)`` and are always written as
an idempotent overwrite, never an incremental patch.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from edge_engine.core.odds_math import edge, implied_prob, risk_level as _risk_level
from edge_engine.core.scoring_policy import (
    MARKET_1X2,
    MARKET_BTTS,
    MARKET_DNB,
    MARKET_DOUBLE_CHANCE,
    MARKET_TOTALS,
    MARKET_WIN_TO_NIL,
    ScoringPolicy,
)
from edge_engine.services.consensus import (
    ConsensusResult,
    ModelOutput,
    blend_model_outputs,
    external_consensus,
    as_prob,
)

logger = logging.getLogger(__name__)

SETTLE_WIN_LOSE = "WIN_LOSE"
SOURCE_MODELS = "model_consensus"
SOURCE_EXTERNAL = "additional_markets_v2"

MarketKey = Tuple[str, str, Optional[str], Optional[float]]


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class MarketOutcome:
    """One classified outcome of one market for one match."""

    match_id: str
    market_type: str
    market_subtype: Optional[str]
    line: Optional[float]
    consensus_prob: float
    consensus_confidence: float
    model_agreement: float
    correlation_tags: List[str] = field(default_factory=list)
    risk_level: str = "high"
    edge: float = 0.0
    settle_type: str = SETTLE_WIN_LOSE
    data_source: str = SOURCE_EXTERNAL

    # Per-model inputs (1X2 only; None for external markets)
    v1_prob: Optional[float] = None
    v1_confidence: Optional[float] = None
    v1_pick: Optional[str] = None
    v2_prob: Optional[float] = None
    v2_confidence: Optional[float] = None
    v2_pick: Optional[str] = None

    # Bookmaker price, when one is known
    decimal_odds: Optional[float] = None
    implied_prob: Optional[float] = None

    @property
    def key(self) -> MarketKey:
        return (self.match_id, self.market_type, self.market_subtype, self.line)


@dataclass
class SecondaryMarkets:
    """Externally computed market probabilities for one match (no confidence)."""

    dnb: Dict[str, float] = field(default_factory=dict)            # home / away
    btts: Dict[str, float] = field(default_factory=dict)           # yes / no
    totals: Dict[float, Dict[str, float]] = field(default_factory=dict)  # line -> over/under
    double_chance: Dict[str, float] = field(default_factory=dict)  # 12 / 1X / X2
    win_to_nil: Dict[str, float] = field(default_factory=dict)     # home / away

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["SecondaryMarkets"]:
        """Parse the feed's ``additional_markets_v2`` payload.

        Totals line keys use the underscore form (``"2_5"`` → 2.5).
        Malformed lines and values are skipped with a warning.
        """
        if not data:
            return None

        def _side_map(raw: Any, sides: Tuple[str, ...]) -> Dict[str, float]:
            out: Dict[str, float] = {}
            if not isinstance(raw, Mapping):
                return out
            for side in sides:
                p = as_prob(raw.get(side))
                if p is not None:
                    out[side] = p
            return out

        totals: Dict[float, Dict[str, float]] = {}
        for line_key, values in (data.get("totals") or {}).items():
            try:
                line = float(str(line_key).replace("_", "."))
            except ValueError:
                line = None
            if line is None or not math.isfinite(line) or line <= 0:
                logger.warning("Skipping malformed totals line %r", line_key)
                continue
            sides = _side_map(values, ("over", "under"))
            if sides:
                totals[line] = sides

        return cls(
            dnb=_side_map(data.get("dnb"), ("home", "away")),
            btts=_side_map(data.get("btts"), ("yes", "no")),
            totals=totals,
            double_chance=_side_map(data.get("double_chance"), ("12", "1X", "X2")),
            win_to_nil=_side_map(data.get("win_to_nil"), ("home", "away")),
        )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def risk_level(prob: float, policy: Optional[ScoringPolicy] = None) -> str:
    """Risk tier for a single outcome: low ≥ 0.20 > medium ≥ 0.10 > high."""
    policy = policy or ScoringPolicy.default()
    return _risk_level(
        prob,
        low_threshold=policy.low_risk_prob,
        medium_threshold=policy.medium_risk_prob,
    )


def correlation_tags(
    market_type: str,
    subtype: Optional[str],
    line: Optional[float],
) -> List[str]:
    """Fixed lookup of correlation tags for a market outcome.

    Examples::

        correlation_tags("TOTALS", "UNDER", 3.5) → ["TOTALS", "UNDER", "GOALS_HIGH"]
        correlation_tags("BTTS", "NO", None)     → ["BTTS", "GOALS_LOW"]
        correlation_tags("DNB", "HOME", None)    → ["MATCH_RESULT", "HOME_WIN"]
    """
    side = (subtype or "").upper()
    tags: List[str] = []

    if market_type == MARKET_TOTALS:
        tags.append("TOTALS")
        if side in {"OVER", "UNDER"}:
            tags.append(side)
        if line is not None:
            if line <= 1.5:
                tags.append("GOALS_LOW")
            if line >= 2.5:
                tags.append("GOALS_HIGH")

    elif market_type == MARKET_BTTS:
        tags.append("BTTS")
        if side == "YES":
            tags.append("GOALS_HIGH")
        elif side == "NO":
            tags.append("GOALS_LOW")

    elif market_type in {MARKET_1X2, MARKET_DNB}:
        tags.append("MATCH_RESULT")
        if side == "HOME":
            tags.append("HOME_WIN")
        elif side == "AWAY":
            tags.append("AWAY_WIN")

    elif market_type == MARKET_DOUBLE_CHANCE:
        tags.extend(["DOUBLE_CHANCE", "MATCH_RESULT"])
        if side == "1X":
            tags.append("HOME_WIN")
        elif side == "X2":
            tags.append("AWAY_WIN")

    elif market_type == MARKET_WIN_TO_NIL:
        tags.extend(["WIN_TO_NIL", "MATCH_RESULT"])
        if side == "HOME":
            tags.append("HOME_WIN")
        elif side == "AWAY":
            tags.append("AWAY_WIN")
        tags.extend(["CLEAN_SHEET", "GOALS_LOW"])

    return tags


def display_label(
    market_type: str,
    subtype: Optional[str],
    line: Optional[float],
    home_team: str = "Home",
    away_team: str = "Away",
) -> str:
    """Human-readable label for a market outcome."""
    side = (subtype or "").upper()
    if market_type == MARKET_1X2:
        return {"HOME": f"{home_team} Win", "AWAY": f"{away_team} Win", "DRAW": "Draw"}.get(side, "1X2")
    if market_type == MARKET_DNB:
        return {
            "HOME": f"{home_team} Win (DNB)",
            "AWAY": f"{away_team} Win (DNB)",
        }.get(side, "Draw No Bet")
    if market_type == MARKET_BTTS:
        return {"YES": "Both Teams to Score", "NO": "Both Teams Not to Score"}.get(side, "BTTS")
    if market_type == MARKET_TOTALS:
        if side == "OVER":
            return f"Over {line} Goals"
        if side == "UNDER":
            return f"Under {line} Goals"
        return f"Totals {line}"
    if market_type == MARKET_DOUBLE_CHANCE:
        return {
            "1X": f"{home_team} or Draw",
            "X2": f"Draw or {away_team}",
            "12": f"{home_team} or {away_team}",
        }.get(side, "Double Chance")
    if market_type == MARKET_WIN_TO_NIL:
        return {
            "HOME": f"{home_team} Win to Nil",
            "AWAY": f"{away_team} Win to Nil",
        }.get(side, "Win to Nil")
    return f"{market_type} {subtype or ''}".strip()


# ---------------------------------------------------------------------------
# Catalog construction
# ---------------------------------------------------------------------------

def _make_outcome(
    match_id: str,
    market_type: str,
    subtype: Optional[str],
    line: Optional[float],
    consensus: ConsensusResult,
    data_source: str,
    policy: ScoringPolicy,
    odds: Optional[Mapping[MarketKey, float]],
) -> MarketOutcome:
    outcome = MarketOutcome(
        match_id=match_id,
        market_type=market_type,
        market_subtype=subtype,
        line=line,
        consensus_prob=consensus.consensus_prob,
        consensus_confidence=consensus.consensus_confidence,
        model_agreement=consensus.model_agreement,
        correlation_tags=correlation_tags(market_type, subtype, line),
        risk_level=risk_level(consensus.consensus_prob, policy),
        data_source=data_source,
    )
    if odds:
        price = odds.get(outcome.key)
        if price is not None:
            outcome.decimal_odds = price
            outcome.implied_prob = implied_prob(price)
            outcome.edge = edge(outcome.consensus_prob, outcome.implied_prob)
    return outcome


def build_market_outcomes(
    match_id: str,
    v1: Optional[ModelOutput],
    v2: Optional[ModelOutput],
    secondary: Optional[SecondaryMarkets],
    *,
    policy: Optional[ScoringPolicy] = None,
    odds: Optional[Mapping[MarketKey, float]] = None,
) -> List[MarketOutcome]:
    """
    Build the complete MarketOutcome set for one match.

    Args:
        match_id: Match identifier.
        v1, v2: Model snapshots; either may be ``None``.
        secondary: External market feed for the match; may be ``None``.
        policy: Scoring policy (default constants when omitted).
        odds: Optional bookmaker decimal prices keyed like
            :attr:`MarketOutcome.key`.  Priced outcomes get an edge.

    Returns:
        List of MarketOutcome.  External probabilities ≤ 0 are skipped.
    """
    policy = policy or ScoringPolicy.default()
    outcomes: List[MarketOutcome] = []

    for side, consensus in blend_model_outputs(v1, v2, policy=policy).items():
        rec = _make_outcome(match_id, MARKET_1X2, side, None, consensus, SOURCE_MODELS, policy, odds)
        key = side.lower()
        if v1 is not None:
            rec.v1_prob = getattr(v1.probs, key)
            rec.v1_confidence = v1.confidence
            rec.v1_pick = v1.pick
        if v2 is not None:
            rec.v2_prob = getattr(v2.probs, key)
            rec.v2_confidence = v2.confidence
            rec.v2_pick = v2.pick
        outcomes.append(rec)

    if secondary is None:
        logger.debug("No secondary market feed for match %s", match_id)
        return outcomes

    def _add(market_type: str, subtype: str, line: Optional[float], prob: Optional[float]) -> None:
        if prob is None or prob <= 0.0:
            return
        outcomes.append(
            _make_outcome(
                match_id, market_type, subtype, line,
                external_consensus(prob, policy), SOURCE_EXTERNAL, policy, odds,
            )
        )

    for side in ("home", "away"):
        _add(MARKET_DNB, side.upper(), None, secondary.dnb.get(side))
    for side in ("yes", "no"):
        _add(MARKET_BTTS, side.upper(), None, secondary.btts.get(side))
    for line in sorted(secondary.totals):
        values = secondary.totals[line]
        _add(MARKET_TOTALS, "OVER", line, values.get("over"))
        _add(MARKET_TOTALS, "UNDER", line, values.get("under"))
    for side in ("12", "1X", "X2"):
        _add(MARKET_DOUBLE_CHANCE, side, None, secondary.double_chance.get(side))
    for side in ("home", "away"):
        _add(MARKET_WIN_TO_NIL, side.upper(), None, secondary.win_to_nil.get(side))

    return outcomes
