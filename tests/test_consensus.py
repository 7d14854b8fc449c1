"""
Tests for consensus.py

Run with: pytest tests/test_consensus.py -v
"""

import pytest
from edge_engine.core.scoring_policy import ScoringPolicy
from edge_engine.services.consensus import (
    EMPTY_CONSENSUS,
    ModelOutput,
    OutcomeProbs,
    as_prob,
    blend,
    blend_model_outputs,
    external_consensus,
)


class TestBlend:
    """Confidence-weighted blending of two models."""

    def test_confidence_zero_vs_one_collapses_weight(self):
        """The zero-confidence model gets no weight."""
        result = blend(0.30, 0.70, 0.0, 1.0)
        assert result.consensus_prob == pytest.approx(0.70)

    def test_identical_pairs_full_agreement(self):
        result = blend(0.55, 0.55, 0.6, 0.6)
        assert result.model_agreement == 1.0
        assert result.consensus_prob == pytest.approx(0.55)
        assert result.consensus_confidence == pytest.approx(0.6)

    def test_weighted_average(self):
        result = blend(0.50, 0.60, 0.25, 0.75)
        assert result.consensus_prob == pytest.approx(0.575)
        assert result.consensus_confidence == pytest.approx(0.5)
        assert result.model_agreement == pytest.approx(0.9)

    def test_both_zero_confidence_even_split(self):
        result = blend(0.40, 0.60, 0.0, 0.0)
        assert result.consensus_prob == pytest.approx(0.50)
        assert result.consensus_confidence == 0.0

    def test_both_absent(self):
        assert blend(None, None) == EMPTY_CONSENSUS
        assert not EMPTY_CONSENSUS.has_signal

    def test_single_model_keeps_its_confidence(self):
        result = blend(0.45, None, 0.8, None)
        assert result.consensus_prob == 0.45
        assert result.consensus_confidence == 0.8
        assert result.model_agreement == 1.0

    def test_single_model_default_confidence(self):
        result = blend(None, 0.62)
        assert result.consensus_prob == 0.62
        assert result.consensus_confidence == 0.5

    def test_zero_probability_counts_as_present(self):
        result = blend(0.0, None, 0.7)
        assert result.consensus_prob == 0.0
        assert result.consensus_confidence == 0.7

    def test_missing_confidence_uses_policy_default(self):
        policy = ScoringPolicy(default_model_confidence=0.25)
        result = blend(0.40, 0.80, None, 0.75, policy=policy)
        assert result.consensus_prob == pytest.approx(0.70)


def test_external_consensus_fixed_confidence():
    result = external_consensus(0.58)
    assert result.consensus_prob == 0.58
    assert result.consensus_confidence == 0.7
    assert result.model_agreement == 1.0


class TestModelOutput:

    def test_from_dict(self):
        m = ModelOutput.from_dict(
            {"pick": "home", "confidence": "0.62", "probs": {"home": 0.5, "draw": 0.3, "away": None}}
        )
        assert m.pick == "home"
        assert m.confidence == pytest.approx(0.62)
        assert m.probs.home == 0.5
        assert m.probs.away is None

    def test_empty_payload(self):
        assert ModelOutput.from_dict(None) is None
        assert ModelOutput.from_dict({}) is None

    @pytest.mark.parametrize("value, expected", [
        (0.4, 0.4), ("0.4", 0.4), (None, None), ("n/a", None), (True, None),
        (0.0, 0.0), (1.0, 1.0), ("nan", None), ("inf", None), (1.7, None), (-0.1, None),
    ])
    def test_as_prob(self, value, expected):
        assert as_prob(value) == expected


class TestBlendModelOutputs:

    def test_per_outcome_results(self):
        v1 = ModelOutput("home", 0.6, OutcomeProbs(0.50, 0.30, 0.20))
        v2 = ModelOutput("home", 0.6, OutcomeProbs(0.60, 0.20, 0.20))
        results = blend_model_outputs(v1, v2)
        assert set(results) == {"HOME", "DRAW", "AWAY"}
        assert results["HOME"].consensus_prob == pytest.approx(0.55)
        assert results["AWAY"].model_agreement == 1.0

    def test_outcome_missing_from_both_is_omitted(self):
        v1 = ModelOutput("home", 0.6, OutcomeProbs(home=0.5))
        results = blend_model_outputs(v1, None)
        assert list(results) == ["HOME"]

    def test_no_models(self):
        assert blend_model_outputs(None, None) == {}
