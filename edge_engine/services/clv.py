"""
Closing Line Value (CLV) calculation service.

CLV is the primary edge-validation metric: positive CLV means the entry
price beat the later composite ("closing") price, which correlates with
long-term profitability independent of win/loss outcomes.

Treating the closing implied probability as ground truth:

    entry_implied = 1 / entry_odds
    close_implied = 1 / close_odds
    clv_pct       = (close_implied / entry_implied − 1) × 100
    ev_percent    = (close_implied × entry_odds − 1) × 100
    kelly         = close_implied − (1 − close_implied) / (entry_odds − 1)
    stake         = min(0.5 × kelly, 0.05)

Either odds ≤ 0 makes the whole result "not computable": every numeric
field is ``None`` and ``is_computable`` is False.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from edge_engine.core.kelly import kelly_fraction as _kelly_fraction, recommended_stake
from edge_engine.core.odds_math import implied_prob
from edge_engine.core.scoring_policy import ScoringPolicy

logger = logging.getLogger(__name__)

WINDOW_ALL = "all"
TIME_WINDOWS = ("T-72to48", "T-48to24", "T-24to2", WINDOW_ALL)

_SELECTION_CODES = {
    "H": "H", "HOME": "H", "1": "H",
    "D": "D", "DRAW": "D", "X": "D",
    "A": "A", "AWAY": "A", "2": "A",
}


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class CLVResult:
    """All CLV metrics for a single entry/close price pair."""

    entry_odds: float
    close_odds: float

    entry_implied_prob: Optional[float] = None
    close_implied_prob: Optional[float] = None
    clv_pct: Optional[float] = None
    ev_percent: Optional[float] = None
    confidence_score: Optional[int] = None
    kelly_fraction: Optional[float] = None
    half_kelly_stake: Optional[float] = None   # before the absolute cap
    recommended_stake: Optional[float] = None  # after the absolute cap
    high_confidence_score: float = 70.0

    @property
    def is_computable(self) -> bool:
        return self.clv_pct is not None

    def is_positive(self) -> bool:
        """True when we beat the closing line."""
        return self.clv_pct is not None and self.clv_pct > 0

    def is_high_confidence(self) -> bool:
        return self.confidence_score is not None and self.confidence_score >= self.high_confidence_score

    def grade(self) -> str:
        """Human-readable CLV grade for display."""
        if self.clv_pct is None:
            return "n/a"
        if self.clv_pct >= 5:
            return "excellent"
        elif self.clv_pct >= 3:
            return "strong"
        elif self.clv_pct >= 2:
            return "good"
        elif self.clv_pct >= 1:
            return "moderate"
        return "weak"


@dataclass
class CLVOpportunity:
    """A feed item enriched with CLV metrics, scoped to a time window."""

    match_id: str
    league: Optional[str]
    home_team: Optional[str]
    away_team: Optional[str]
    outcome: str                # H / D / A
    entry_odds: float
    close_odds: float
    clv_pct: float
    ev_percent: float
    confidence_score: int
    kelly_fraction: Optional[float]
    recommended_stake: Optional[float]
    window: str
    bookmaker: Optional[str] = None
    match_date: Optional[str] = None


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------

def confidence_score(ev_percent: float, policy: Optional[ScoringPolicy] = None) -> int:
    """
    Map expected value to a 0–100 confidence score.

    Linear in EV around ``confidence_base`` (50 at zero EV) with
    ``confidence_slope`` points per EV percentage point, saturating at the
    bounds.  With the defaults an EV of +10% reaches the high-confidence
    cut-off of 70.
    """
    policy = policy or ScoringPolicy.default()
    raw = policy.confidence_base + policy.confidence_slope * ev_percent
    return int(round(max(0.0, min(raw, 100.0))))


def calculate_clv(
    entry_odds: float,
    close_odds: float,
    clv_pct: Optional[float] = None,
    *,
    policy: Optional[ScoringPolicy] = None,
) -> CLVResult:
    """
    Compute CLV metrics for one selection.

    Args:
        entry_odds: Decimal odds available at detection time.
        close_odds: Decimal composite odds at the later reference window.
        clv_pct: Pre-computed CLV percentage from an upstream feed.  Used
            as-is when given; otherwise recomputed from the odds.
        policy: Scoring policy (stake sizing and confidence curve).

    Returns:
        CLVResult.  When either odds is ≤ 0 (or missing) only the raw odds
        are populated.  When ``entry_odds == 1`` the Kelly fields are
        ``None`` but the other metrics are still computed.
    """
    policy = policy or ScoringPolicy.default()
    result = CLVResult(
        entry_odds=entry_odds,
        close_odds=close_odds,
        high_confidence_score=policy.high_confidence_score,
    )

    entry_implied = implied_prob(entry_odds)
    close_implied = implied_prob(close_odds)
    if entry_implied is None or close_implied is None:
        logger.debug("CLV not computable for entry=%s close=%s", entry_odds, close_odds)
        return result

    result.entry_implied_prob = entry_implied
    result.close_implied_prob = close_implied
    if clv_pct is None or not math.isfinite(clv_pct):
        clv_pct = (close_implied / entry_implied - 1.0) * 100.0
    result.clv_pct = clv_pct
    result.ev_percent = (close_implied * entry_odds - 1.0) * 100.0
    result.confidence_score = confidence_score(result.ev_percent, policy)

    result.kelly_fraction = _kelly_fraction(close_implied, entry_odds)
    if result.kelly_fraction is not None:
        result.half_kelly_stake = result.kelly_fraction * policy.kelly_multiplier
    result.recommended_stake = recommended_stake(
        result.kelly_fraction,
        multiplier=policy.kelly_multiplier,
        max_fraction=policy.max_stake_fraction,
    )
    return result


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------

def validate_window(window: Optional[str]) -> str:
    """Return a canonical window label, raising on unknown labels."""
    label = window or WINDOW_ALL
    if label not in TIME_WINDOWS:
        raise ValueError(
            f"Unknown time window {window!r}; expected one of {', '.join(TIME_WINDOWS)}"
        )
    return label


def _outcome_code(item: Mapping[str, Any]) -> Optional[str]:
    raw = item.get("outcome") or item.get("selection")
    if raw is None:
        return None
    return _SELECTION_CODES.get(str(raw).strip().upper())


def _as_float(value: Any) -> Optional[float]:
    try:
        number = float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
    if number is None or not math.isfinite(number):
        return None
    return number


def build_clv_opportunities(
    items: Iterable[Mapping[str, Any]],
    window: Optional[str] = WINDOW_ALL,
    league: Optional[str] = None,
    *,
    policy: Optional[ScoringPolicy] = None,
) -> List[CLVOpportunity]:
    """
    Turn raw feed items into CLV opportunities.

    Non-computable items (bad odds, unknown selection) are skipped and
    counted.  Results are filtered by league (case-insensitive) and sorted
    by ``clv_pct`` descending.

    Raises:
        ValueError: For an unknown ``window`` label.
    """
    window = validate_window(window)
    policy = policy or ScoringPolicy.default()
    league_filter = league.strip().lower() if league else None

    opportunities: List[CLVOpportunity] = []
    skipped = 0
    for item in items:
        if league_filter and str(item.get("league") or "").lower() != league_filter:
            continue
        outcome = _outcome_code(item)
        entry = _as_float(item.get("entry_odds"))
        close = _as_float(item.get("close_odds"))
        result = calculate_clv(entry, close, _as_float(item.get("clv_pct")), policy=policy)
        if outcome is None or not result.is_computable:
            skipped += 1
            continue
        opportunities.append(
            CLVOpportunity(
                match_id=str(item.get("match_id")),
                league=item.get("league"),
                home_team=item.get("home_team"),
                away_team=item.get("away_team"),
                outcome=outcome,
                entry_odds=entry,
                close_odds=close,
                clv_pct=result.clv_pct,
                ev_percent=result.ev_percent,
                confidence_score=result.confidence_score,
                kelly_fraction=result.kelly_fraction,
                recommended_stake=result.recommended_stake,
                window=window,
                bookmaker=item.get("bookmaker"),
                match_date=item.get("match_date"),
            )
        )

    if skipped:
        logger.warning("Skipped %d non-computable CLV items (window=%s)", skipped, window)
    opportunities.sort(key=lambda o: o.clv_pct, reverse=True)
    return opportunities
