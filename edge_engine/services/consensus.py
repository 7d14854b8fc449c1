"""
Consensus blending of two independent prediction models.

Each upcoming match carries up to two model snapshots ("v1" and "v2"), each
with a pick, a self-reported confidence and 1X2 outcome probabilities.  For
every outcome the two probabilities are merged into a single consensus:

    weights      w_i = conf_i / (conf_1 + conf_2)     (0.5/0.5 if both are 0)
    consensus    Σ w_i · prob_i
    confidence   mean(conf_1, conf_2)
    agreement    1 − |prob_1 − prob_2|

Missing input degrades gracefully and never raises:

    both absent   → consensus 0, confidence 0, agreement 0
    one present   → that probability, its confidence (or the policy default),
                    agreement 1.0 (no second opinion)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from edge_engine.core.scoring_policy import ScoringPolicy

logger = logging.getLogger(__name__)

OUTCOME_HOME = "HOME"
OUTCOME_DRAW = "DRAW"
OUTCOME_AWAY = "AWAY"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

def as_float(value: Any) -> Optional[float]:
    """Coerce a feed value to a finite float, or ``None`` when missing / malformed."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def as_prob(value: Any) -> Optional[float]:
    """Like :func:`as_float`, but ``None`` outside [0, 1]."""
    number = as_float(value)
    if number is None or not 0.0 <= number <= 1.0:
        return None
    return number


@dataclass
class OutcomeProbs:
    """1X2 probabilities from one model; any entry may be missing."""

    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None

    def get(self, outcome: str) -> Optional[float]:
        return {
            OUTCOME_HOME: self.home,
            OUTCOME_DRAW: self.draw,
            OUTCOME_AWAY: self.away,
        }.get(outcome)


@dataclass
class ModelOutput:
    """A single model's read-only prediction for one match."""

    pick: Optional[str] = None
    confidence: Optional[float] = None
    probs: OutcomeProbs = field(default_factory=OutcomeProbs)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ModelOutput"]:
        """Parse the upstream ``{"pick", "confidence", "probs"}`` payload."""
        if not data:
            return None
        probs = data.get("probs") or {}
        return cls(
            pick=data.get("pick"),
            confidence=as_prob(data.get("confidence")),
            probs=OutcomeProbs(
                home=as_prob(probs.get("home")),
                draw=as_prob(probs.get("draw")),
                away=as_prob(probs.get("away")),
            ),
        )


@dataclass(frozen=True)
class ConsensusResult:
    """Blended estimate for one outcome."""

    consensus_prob: float
    consensus_confidence: float
    model_agreement: float

    @property
    def has_signal(self) -> bool:
        return self.consensus_confidence > 0.0 or self.consensus_prob > 0.0


EMPTY_CONSENSUS = ConsensusResult(0.0, 0.0, 0.0)


# ---------------------------------------------------------------------------
# Blending
# ---------------------------------------------------------------------------

def blend(
    prob_1: Optional[float],
    prob_2: Optional[float],
    conf_1: Optional[float] = None,
    conf_2: Optional[float] = None,
    *,
    policy: Optional[ScoringPolicy] = None,
) -> ConsensusResult:
    """
    Merge up to two (probability, confidence) pairs for the same outcome.

    A probability is *present* when it is not ``None``; 0.0 is a valid
    estimate.  A present probability with no confidence uses
    ``policy.default_model_confidence``.

    Args:
        prob_1, prob_2: Model probabilities in [0, 1] or ``None``.
        conf_1, conf_2: Model confidences in [0, 1] or ``None``.
        policy: Scoring policy; defaults to :meth:`ScoringPolicy.default`.

    Returns:
        ConsensusResult.  Never raises on missing input.
    """
    policy = policy or ScoringPolicy.default()
    default_conf = policy.default_model_confidence

    if prob_1 is None and prob_2 is None:
        return EMPTY_CONSENSUS

    if prob_2 is None or prob_1 is None:
        prob, conf = (prob_1, conf_1) if prob_2 is None else (prob_2, conf_2)
        return ConsensusResult(
            consensus_prob=prob,
            consensus_confidence=default_conf if conf is None else conf,
            model_agreement=1.0,
        )

    c1 = default_conf if conf_1 is None else conf_1
    c2 = default_conf if conf_2 is None else conf_2
    total = c1 + c2
    if total > 0.0:
        w1, w2 = c1 / total, c2 / total
    else:
        # Both models report zero confidence: fall back to an even split.
        w1 = w2 = 0.5

    return ConsensusResult(
        consensus_prob=w1 * prob_1 + w2 * prob_2,
        consensus_confidence=(c1 + c2) / 2.0,
        model_agreement=1.0 - abs(prob_1 - prob_2),
    )


def external_consensus(prob: float, policy: Optional[ScoringPolicy] = None) -> ConsensusResult:
    """Single-source consensus for a market computed by the external feed."""
    policy = policy or ScoringPolicy.default()
    return ConsensusResult(
        consensus_prob=prob,
        consensus_confidence=policy.external_market_confidence,
        model_agreement=policy.external_market_agreement,
    )


def blend_model_outputs(
    v1: Optional[ModelOutput],
    v2: Optional[ModelOutput],
    *,
    policy: Optional[ScoringPolicy] = None,
) -> Dict[str, ConsensusResult]:
    """
    Blend both models' 1X2 probabilities outcome by outcome.

    An outcome is included only when at least one model supplies a
    probability for it.

    Returns:
        Dict keyed by ``"HOME"`` / ``"DRAW"`` / ``"AWAY"``.
    """
    results: Dict[str, ConsensusResult] = {}
    for outcome in (OUTCOME_HOME, OUTCOME_DRAW, OUTCOME_AWAY):
        p1 = v1.probs.get(outcome) if v1 else None
        p2 = v2.probs.get(outcome) if v2 else None
        if p1 is None and p2 is None:
            continue
        results[outcome] = blend(
            p1,
            p2,
            v1.confidence if v1 else None,
            v2.confidence if v2 else None,
            policy=policy,
        )
    if not results:
        logger.debug("No model probabilities available to blend")
    return results
