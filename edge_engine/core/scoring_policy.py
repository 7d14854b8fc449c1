"""Scoring policy — every threshold and default constant in one place.

This module is the **registry** for every tunable number the engine uses.
Nowhere else in the codebase should leg thresholds, tier cut-offs, default
confidences or stake caps be hard-coded.

Architecture
------------
:class:`ScoringPolicy` is a frozen dataclass carrying all constants.  It is
injected into every service function (``policy=`` keyword) so the algorithms
stay pure and the numbers stay testable and tunable independently.

Named constructors:

* :meth:`ScoringPolicy.default` — the production constants.
* :meth:`ScoringPolicy.from_env` — production constants overridden by
  ``SCORING_<FIELD>`` environment variables (``.env`` is loaded first).

No field here should ever be ``None``.

Typical usage::

    from edge_engine.core.scoring_policy import ScoringPolicy

    policy = ScoringPolicy.default()
    legs = select_legs(outcomes, policy=policy)

    # Override a single constant for an A/B run:
    from dataclasses import replace
    strict = replace(policy, dnb_min_prob=0.60)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Final, Optional

from dotenv import load_dotenv

#: Environment-variable prefix read by :meth:`ScoringPolicy.from_env`.
ENV_PREFIX: Final[str] = "SCORING_"

# Market identifiers shared by the catalog, selector and combiner.
MARKET_1X2: Final[str] = "1X2"
MARKET_DNB: Final[str] = "DNB"
MARKET_TOTALS: Final[str] = "TOTALS"
MARKET_BTTS: Final[str] = "BTTS"
MARKET_DOUBLE_CHANCE: Final[str] = "DOUBLE_CHANCE"
MARKET_WIN_TO_NIL: Final[str] = "WIN_TO_NIL"


@dataclass(frozen=True)
class ScoringPolicy:
    """Immutable configuration bundle for consensus, parlay and CLV scoring.

    Attributes:
        --- Consensus blending ---
        default_model_confidence: Confidence assumed for a model that reports
            a probability but no confidence signal.
        external_market_confidence: Fixed confidence assigned to secondary
            markets computed by the external feed (no per-model signal).
        external_market_agreement: Agreement assigned to single-source
            external markets (there is no second opinion to disagree with).

        --- Risk tiers ---
        low_risk_prob: Inclusive lower bound of the "low" risk band.
        medium_risk_prob: Inclusive lower bound of the "medium" risk band.
        high_risk_prob: Inclusive lower bound of the parlay "high" band;
            anything below is "very_high".

        --- Leg selection (inclusive minimum probabilities) ---
        dnb_min_prob: Draw No Bet, home or away.
        totals_under_min_prob: Totals under (typically 3.5 / 4.5 lines).
        totals_over_min_prob: Totals over (typically the 2.5 line).
        btts_min_prob: Both Teams To Score, yes or no.
        double_chance_min_prob: Double chance 1X / X2.
        win_to_nil_min_prob: Win to nil, home or away.  Lower than the
            others because the market is structurally long-priced.
        max_legs_per_match: Cap on qualifying legs per match before
            combination, bounding the combinatorial blow-up.

        --- Parlay tiering ---
        high_tier_prob: 2-leg combined probability for the "high" tier.
        medium_tier_prob: Combined probability for the "medium" tier
            (2- and 3-leg).
        min_parlay_legs / max_parlay_legs: Subset sizes to enumerate.

        --- Tradability ---
        edge_floor_pct: Minimum candidate edge, in percent.
        prob_floor: Minimum candidate combined probability.
        max_results_per_leg_count: Ranking cut per leg count.

        --- CLV and stake sizing ---
        kelly_multiplier: Fractional Kelly multiplier (0.5 = half-Kelly).
        max_stake_fraction: Absolute stake cap as a bankroll fraction.
        confidence_base: Confidence score at zero expected value.
        confidence_slope: Confidence points per EV percentage point.
        high_confidence_score: Cut-off for "high confidence" CLV items.
    """

    # Consensus blending
    default_model_confidence: float = 0.5
    external_market_confidence: float = 0.7
    external_market_agreement: float = 1.0

    # Risk tiers
    low_risk_prob: float = 0.20
    medium_risk_prob: float = 0.10
    high_risk_prob: float = 0.05

    # Leg selection
    dnb_min_prob: float = 0.55
    totals_under_min_prob: float = 0.55
    totals_over_min_prob: float = 0.55
    btts_min_prob: float = 0.55
    double_chance_min_prob: float = 0.55
    win_to_nil_min_prob: float = 0.35
    max_legs_per_match: int = 3

    # Parlay tiering
    high_tier_prob: float = 0.30
    medium_tier_prob: float = 0.20
    min_parlay_legs: int = 2
    max_parlay_legs: int = 3

    # Tradability
    edge_floor_pct: float = 5.0
    prob_floor: float = 0.05
    max_results_per_leg_count: int = 20

    # CLV and stake sizing
    kelly_multiplier: float = 0.5
    max_stake_fraction: float = 0.05
    confidence_base: float = 50.0
    confidence_slope: float = 2.0
    high_confidence_score: float = 70.0

    _PROB_FIELDS = (
        "default_model_confidence",
        "external_market_confidence",
        "external_market_agreement",
        "low_risk_prob",
        "medium_risk_prob",
        "high_risk_prob",
        "dnb_min_prob",
        "totals_under_min_prob",
        "totals_over_min_prob",
        "btts_min_prob",
        "double_chance_min_prob",
        "win_to_nil_min_prob",
        "high_tier_prob",
        "medium_tier_prob",
        "prob_floor",
        "kelly_multiplier",
    )

    def __post_init__(self) -> None:
        for name in self._PROB_FIELDS:
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {value!r}.")
        if not (0.0 < self.max_stake_fraction <= 1.0):
            raise ValueError(
                f"max_stake_fraction must be in (0, 1], got {self.max_stake_fraction!r}."
            )
        if self.edge_floor_pct < 0.0:
            raise ValueError(f"edge_floor_pct must be ≥ 0, got {self.edge_floor_pct!r}.")
        if not (self.medium_risk_prob <= self.low_risk_prob):
            raise ValueError("medium_risk_prob must not exceed low_risk_prob.")
        if self.max_legs_per_match < 1:
            raise ValueError("max_legs_per_match must be ≥ 1.")
        if not (2 <= self.min_parlay_legs <= self.max_parlay_legs):
            raise ValueError("Parlay leg bounds must satisfy 2 ≤ min ≤ max.")

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def default(cls) -> ScoringPolicy:
        """Return the production scoring policy."""
        return cls()

    @classmethod
    def from_env(cls) -> ScoringPolicy:
        """Return the production policy with ``SCORING_*`` env overrides.

        Each dataclass field maps to ``SCORING_<FIELD_NAME_UPPER>``; e.g.
        ``SCORING_DNB_MIN_PROB=0.6``.  Unset variables keep their defaults.
        """
        load_dotenv()
        base = cls()
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            current = getattr(base, f.name)
            overrides[f.name] = int(raw) if isinstance(current, int) else float(raw)
        return replace(base, **overrides) if overrides else base

    # ------------------------------------------------------------------ #
    #  Convenience accessors                                               #
    # ------------------------------------------------------------------ #

    def min_leg_prob(self, market_type: str, subtype: Optional[str]) -> Optional[float]:
        """Minimum probability for a market side to qualify as a parlay leg.

        Returns ``None`` when the market/side is not leg-eligible at all
        (1X2, double chance ``12``, unknown markets).
        """
        side = (subtype or "").upper()
        if market_type == MARKET_DNB and side in {"HOME", "AWAY"}:
            return self.dnb_min_prob
        if market_type == MARKET_TOTALS:
            if side == "UNDER":
                return self.totals_under_min_prob
            if side == "OVER":
                return self.totals_over_min_prob
            return None
        if market_type == MARKET_BTTS and side in {"YES", "NO"}:
            return self.btts_min_prob
        if market_type == MARKET_DOUBLE_CHANCE and side in {"1X", "X2"}:
            return self.double_chance_min_prob
        if market_type == MARKET_WIN_TO_NIL and side in {"HOME", "AWAY"}:
            return self.win_to_nil_min_prob
        return None
