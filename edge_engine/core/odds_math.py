"""Fundamental odds mathematics — the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services.

The pillars exposed are:

1. **Odds conversion** — decimal odds ↔ implied probability, American for
   display only.
2. **Edge** — ratio by which a model probability exceeds the market's.
3. **Risk tiering** — probability-band classification of single outcomes.

Design decisions
----------------
* All arithmetic is in **decimal** odds because both the consensus catalog
  and the closing-odds feed publish decimal prices.
* Division by a zero or negative probability is never attempted.  Conversion
  helpers return ``None`` ("not computable") and :func:`edge` returns ``0.0``,
  so an unbounded or NaN value can never leak into downstream ranking.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import math
from typing import Final, Iterable, Optional

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Risk-level labels for single outcomes.
RISK_LOW: Final[str] = "low"
RISK_MEDIUM: Final[str] = "medium"
RISK_HIGH: Final[str] = "high"
RISK_VERY_HIGH: Final[str] = "very_high"

#: Default lower bound (inclusive) of the "low" risk band.
DEFAULT_LOW_RISK_PROB: Final[float] = 0.20

#: Default lower bound (inclusive) of the "medium" risk band.
DEFAULT_MEDIUM_RISK_PROB: Final[float] = 0.10


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def implied_prob(decimal_odds: Optional[float]) -> Optional[float]:
    """Raw implied probability from decimal odds.

    Examples::

        implied_prob(2.00) → 0.5000
        implied_prob(1.80) → 0.5556
        implied_prob(0.00) → None   (not computable)

    Args:
        decimal_odds: Decimal (European) odds.  ``None`` is accepted so that
            callers can pass an optional feed field straight through.

    Returns:
        ``1 / decimal_odds`` or ``None`` when ``decimal_odds`` is missing,
        non-finite, or ``≤ 0``.
    """
    if decimal_odds is None or not math.isfinite(decimal_odds) or decimal_odds <= 0.0:
        return None
    return 1.0 / decimal_odds


def fair_odds(prob: Optional[float]) -> Optional[float]:
    """Fair decimal odds ``1 / prob`` for a probability.

    Inverse of :func:`implied_prob`.  Returns ``None`` for a missing or
    non-positive probability, since zero-probability events have no price.
    """
    if prob is None or not math.isfinite(prob) or prob <= 0.0:
        return None
    return 1.0 / prob


def combined_prob(probs: Iterable[float]) -> float:
    """Product of leg probabilities (independence-assumption joint proxy).

    Legs of a parlay are not guaranteed to be statistically independent; the
    product is an approximation and must be surfaced as such by callers.
    An empty iterable returns 1.0 (the empty product).
    """
    result = 1.0
    for p in probs:
        result *= p
    return result


def composite_odds(odds: Iterable[float]) -> Optional[float]:
    """Product of leg decimal odds, or ``None`` when any leg is unpriced."""
    result = 1.0
    for o in odds:
        if o is None or o <= 0.0:
            return None
        result *= o
    return result


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds to the nearest American integer (display only).

    Raises:
        ValueError: If ``decimal_odds ≤ 1.0`` (no payout; not representable).
    """
    if decimal_odds <= 1.0:
        raise ValueError(
            f"Decimal odds {decimal_odds!r} must be > 1.0 to convert to American."
        )
    if decimal_odds >= 2.0:
        return round((decimal_odds - 1.0) * 100)
    return round(-100.0 / (decimal_odds - 1.0))


# ---------------------------------------------------------------------------
# Edge and risk
# ---------------------------------------------------------------------------


def edge(model_prob: Optional[float], implied: Optional[float]) -> float:
    """Relative edge of a model probability over a market-implied one.

    ``edge = model_prob / implied − 1``

    Guarded: returns ``0.0`` when either operand is missing or ``≤ 0``, so
    ``edge(0, 0.5) == 0`` rather than ``-1`` and ``edge(0.5, 0)`` is never
    infinite.

    Examples::

        edge(0.60, 0.50) →  0.20
        edge(0.45, 0.50) → -0.10
        edge(0.00, 0.50) →  0.00
    """
    if model_prob is None or implied is None:
        return 0.0
    if model_prob <= 0.0 or implied <= 0.0:
        return 0.0
    return model_prob / implied - 1.0


def risk_level(
    prob: float,
    *,
    low_threshold: float = DEFAULT_LOW_RISK_PROB,
    medium_threshold: float = DEFAULT_MEDIUM_RISK_PROB,
) -> str:
    """Risk tier for a single outcome probability.

    Boundaries are inclusive at the lower edge of each band::

        risk_level(0.20)   → "low"
        risk_level(0.1999) → "medium"
        risk_level(0.10)   → "medium"
        risk_level(0.0999) → "high"
    """
    if prob >= low_threshold:
        return RISK_LOW
    if prob >= medium_threshold:
        return RISK_MEDIUM
    return RISK_HIGH


def parlay_risk_level(
    prob: float,
    *,
    low_threshold: float = DEFAULT_LOW_RISK_PROB,
    medium_threshold: float = DEFAULT_MEDIUM_RISK_PROB,
    high_threshold: float = 0.05,
) -> str:
    """Four-band risk tier for a multi-leg combined probability.

    Extends :func:`risk_level` with a ``"very_high"`` band below
    ``high_threshold``; long-shot parlays need the extra distinction.
    """
    if prob >= low_threshold:
        return RISK_LOW
    if prob >= medium_threshold:
        return RISK_MEDIUM
    if prob >= high_threshold:
        return RISK_HIGH
    return RISK_VERY_HIGH
