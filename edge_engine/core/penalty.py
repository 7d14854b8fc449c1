"""Dependency-injection interfaces for swappable correlation penalties.

Parlay legs are priced with the independence approximation
``combined = Π p_i``.  Legs that share correlation tags (e.g. a home win and
an over 2.5 in the same match) violate that assumption, so the combined
probability is shrunk by a *correlation penalty* before edge is computed.

The exact penalty curve is a modelling choice, not a settled formula.  This
module therefore defines the contract every curve must satisfy and ships two
implementations:

* :class:`TagOverlapPenalty` — default.  Geometric shrink in the number of
  shared correlation tags across leg pairs.
* :class:`LegCountPenalty` — the fixed leg-count retention table used by the
  first production generator, kept for A/B comparison.

Contract
--------
A strategy returns a *retention factor* ``r ∈ (0, 1]``; the base class turns
it into ``penalty = combined · (1 − r)`` so that
``adjusted = combined − penalty`` always lies in ``(0, combined]`` for a
positive ``combined``.  ``r`` must be non-increasing in tag overlap.

Run tests with::

    pytest tests/test_penalty.py -v
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from itertools import combinations
from typing import TYPE_CHECKING, Dict, Final, Sequence, Tuple

if TYPE_CHECKING:
    from edge_engine.services.leg_selector import ParlayLeg


#: Tags that mark a leg as implying a home win.
_HOME_WIN_TAG: Final[str] = "HOME_WIN"


class CorrelationPenaltyStrategy(ABC):
    """Abstract contract for correlation-penalty curves."""

    name: str = "abstract"

    @abstractmethod
    def retention(self, legs: Sequence["ParlayLeg"]) -> float:
        """Fraction of the independence-product probability to keep.

        Must return a value in ``(0, 1]``; ``1.0`` means no penalty.
        """

    def apply(self, legs: Sequence["ParlayLeg"], combined: float) -> Tuple[float, float]:
        """Return ``(penalty, adjusted_prob)`` for a candidate.

        Raises:
            ValueError: If the strategy violates the ``(0, 1]`` retention
                contract.
        """
        r = self.retention(legs)
        if not (0.0 < r <= 1.0):
            raise ValueError(
                f"{type(self).__name__} returned retention {r!r}; must be in (0, 1]."
            )
        if combined <= 0.0:
            return 0.0, 0.0
        penalty = combined * (1.0 - r)
        return penalty, combined - penalty


def tag_overlap(legs: Sequence["ParlayLeg"], cross_match_weight: float = 0.25) -> float:
    """Weighted count of correlation tags shared across every leg pair.

    Pairs within the same match count each shared tag fully; pairs from
    different matches count ``cross_match_weight`` per shared tag.
    """
    overlap = 0.0
    for a, b in combinations(legs, 2):
        shared = len(set(a.correlation_tags) & set(b.correlation_tags))
        if not shared:
            continue
        overlap += shared if a.match_id == b.match_id else shared * cross_match_weight
    return overlap


class TagOverlapPenalty(CorrelationPenaltyStrategy):
    """Geometric shrink by tag overlap: ``r = max(base ** overlap, floor)``."""

    name = "tag_overlap"

    def __init__(
        self,
        base: float = 0.95,
        min_retained: float = 0.5,
        cross_match_weight: float = 0.25,
    ):
        if not (0.0 < base <= 1.0):
            raise ValueError(f"base must be in (0, 1], got {base!r}.")
        if not (0.0 < min_retained <= 1.0):
            raise ValueError(f"min_retained must be in (0, 1], got {min_retained!r}.")
        self.base = base
        self.min_retained = min_retained
        self.cross_match_weight = cross_match_weight

    def retention(self, legs: Sequence["ParlayLeg"]) -> float:
        overlap = tag_overlap(legs, self.cross_match_weight)
        return max(self.base ** overlap, self.min_retained)


def _is_home_win(leg: "ParlayLeg") -> bool:
    return _HOME_WIN_TAG in leg.correlation_tags


def _is_over_high(leg: "ParlayLeg") -> bool:
    return (
        leg.market_type == "TOTALS"
        and (leg.market_subtype or "").upper() == "OVER"
        and leg.line is not None
        and leg.line >= 2.5
    )


def _is_btts_yes(leg: "ParlayLeg") -> bool:
    return leg.market_type == "BTTS" and (leg.market_subtype or "").upper() == "YES"


def has_known_correlation(a: "ParlayLeg", b: "ParlayLeg") -> bool:
    """True for the same-match pairs known to move together.

    Home win + over 2.5, home win + BTTS yes, over 2.5 + BTTS yes.
    """
    if a.match_id != b.match_id:
        return False
    for x, y in ((a, b), (b, a)):
        if _is_home_win(x) and (_is_over_high(y) or _is_btts_yes(y)):
            return True
        if _is_over_high(x) and _is_btts_yes(y):
            return True
    return False


class LegCountPenalty(CorrelationPenaltyStrategy):
    """Fixed retention by leg count.

    Known same-match pairs cut single-game retention further. Multi-game
    parlays hold one leg per match, so no known pair can occur there.
    """

    name = "leg_count"

    SINGLE_GAME_RETENTION: Dict[int, float] = {2: 0.85, 3: 0.80, 4: 0.75, 5: 0.70}
    MULTI_GAME_RETENTION: Dict[int, float] = {2: 0.92, 3: 0.90, 4: 0.88, 5: 0.85}
    SINGLE_GAME_CORRELATED = 0.90

    def retention(self, legs: Sequence["ParlayLeg"]) -> float:
        n = len(legs)
        if n < 2:
            return 1.0
        if len({leg.match_id for leg in legs}) == n:
            return self.MULTI_GAME_RETENTION.get(n, 0.85)
        r = self.SINGLE_GAME_RETENTION.get(n, 0.70)
        if any(has_known_correlation(a, b) for a, b in combinations(legs, 2)):
            r *= self.SINGLE_GAME_CORRELATED
        return r
