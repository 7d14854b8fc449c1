"""Kelly criterion sizing — the single source of truth for stake math.

All functions here are **pure**: no I/O, no database, no logging.
Import from this module; never reimplement Kelly locally in services.

Two functions cover the sizing path used by the CLV feed:

1. :func:`kelly_fraction` — full Kelly for a win/loss bet, clamped to
   ``[0, 1]``.
2. :func:`recommended_stake` — fractional (half) Kelly with an absolute
   bankroll cap.

Design decisions
----------------
* **Closing probability as truth.**  For CLV sizing the win probability is
  the closing-line implied probability and the payout is the *entry* price
  we were able to take.  A bet is only sized when the entry price beats the
  close.
* **Fractional Kelly.**  Stakes use half of full Kelly (``kelly_multiplier``).
* **Absolute cap.**  Whatever the edge, no single recommendation exceeds 5%
  of bankroll.

Run tests with::

    pytest tests/test_kelly.py -v
"""

from __future__ import annotations

from typing import Final, Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Standard fractional Kelly multiplier (half-Kelly).
DEFAULT_KELLY_MULTIPLIER: Final[float] = 0.5

#: Hard cap on any single stake recommendation, as a fraction of bankroll.
MAX_STAKE_FRACTION: Final[float] = 0.05


# ---------------------------------------------------------------------------
# Standard Kelly
# ---------------------------------------------------------------------------


def kelly_fraction(win_prob: float, decimal_odds: float) -> Optional[float]:
    """Full Kelly bet size for a simple win/loss outcome, clamped to [0, 1].

    The closed-form Kelly (1956) solution is::

        f*  =  p − q / b

    where ``p`` is the win probability, ``q = 1 − p`` and ``b`` is the net
    profit per unit staked (``decimal_odds − 1``).

    Args:
        win_prob: Probability of winning, in ``[0, 1]``.
        decimal_odds: Decimal odds being taken.

    Returns:
        Kelly fraction in ``[0, 1]``.  Negative-EV bets return ``0.0``.
        Returns ``None`` when ``decimal_odds ≤ 1.0`` because the net payout is
        zero or negative and the formula has no defined value.

    Examples::

        kelly_fraction(0.5556, 2.00) → 0.1111
        kelly_fraction(0.4545, 2.00) → 0.0     (negative EV)
        kelly_fraction(0.60,   1.00) → None    (no payout)
    """
    if decimal_odds is None or decimal_odds <= 1.0:
        return None
    profit_per_unit = decimal_odds - 1.0
    full_kelly = win_prob - (1.0 - win_prob) / profit_per_unit
    return max(0.0, min(full_kelly, 1.0))


def recommended_stake(
    kelly: Optional[float],
    *,
    multiplier: float = DEFAULT_KELLY_MULTIPLIER,
    max_fraction: float = MAX_STAKE_FRACTION,
) -> Optional[float]:
    """Fractional-Kelly stake capped at ``max_fraction`` of bankroll.

    ``None`` in gives ``None`` out.

    Examples::

        recommended_stake(0.1111) → 0.05     (half-Kelly 0.0556, capped)
        recommended_stake(0.06)   → 0.03
    """
    if kelly is None:
        return None
    return min(kelly * multiplier, max_fraction)


def kelly_to_units(kelly_fraction_val: float) -> float:
    """Convert a bankroll fraction to units (1 unit = 1% of bankroll).

    Examples::

        kelly_to_units(0.025) → 2.5
        kelly_to_units(0.005) → 0.5
    """
    return kelly_fraction_val * 100.0
