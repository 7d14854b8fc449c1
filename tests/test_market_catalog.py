"""
Tests for market_catalog.py

Run with: pytest tests/test_market_catalog.py -v
"""

import pytest
from edge_engine.services.consensus import ModelOutput, OutcomeProbs
from edge_engine.services.market_catalog import (
    SOURCE_EXTERNAL,
    SOURCE_MODELS,
    SecondaryMarkets,
    build_market_outcomes,
    correlation_tags,
    display_label,
    risk_level,
)


class TestCorrelationTags:
    """Fixed tag lookup."""

    @pytest.mark.parametrize("market, side, line, expected", [
        ("TOTALS", "UNDER", 3.5, ["TOTALS", "UNDER", "GOALS_HIGH"]),
        ("TOTALS", "OVER", 1.5, ["TOTALS", "OVER", "GOALS_LOW"]),
        ("TOTALS", "OVER", 2.0, ["TOTALS", "OVER"]),
        ("BTTS", "YES", None, ["BTTS", "GOALS_HIGH"]),
        ("BTTS", "NO", None, ["BTTS", "GOALS_LOW"]),
        ("1X2", "HOME", None, ["MATCH_RESULT", "HOME_WIN"]),
        ("1X2", "DRAW", None, ["MATCH_RESULT"]),
        ("DNB", "AWAY", None, ["MATCH_RESULT", "AWAY_WIN"]),
        ("DOUBLE_CHANCE", "1X", None, ["DOUBLE_CHANCE", "MATCH_RESULT", "HOME_WIN"]),
        ("DOUBLE_CHANCE", "12", None, ["DOUBLE_CHANCE", "MATCH_RESULT"]),
        ("WIN_TO_NIL", "HOME", None,
         ["WIN_TO_NIL", "MATCH_RESULT", "HOME_WIN", "CLEAN_SHEET", "GOALS_LOW"]),
    ])
    def test_table(self, market, side, line, expected):
        assert correlation_tags(market, side, line) == expected

    def test_unknown_market_has_no_tags(self):
        assert correlation_tags("CORNERS", "OVER", 9.5) == []


def test_risk_level_uses_policy_bands():
    assert risk_level(0.20) == "low"
    assert risk_level(0.1999) == "medium"
    assert risk_level(0.0999) == "high"


class TestDisplayLabel:

    def test_totals(self):
        assert display_label("TOTALS", "UNDER", 3.5) == "Under 3.5 Goals"

    def test_dnb_with_team(self):
        assert display_label("DNB", "HOME", None, home_team="Arsenal") == "Arsenal Win (DNB)"

    def test_double_chance(self):
        assert display_label("DOUBLE_CHANCE", "X2", None, away_team="Spurs") == "Draw or Spurs"


class TestSecondaryMarkets:

    def test_parses_feed_shape(self):
        s = SecondaryMarkets.from_dict({
            "dnb": {"home": 0.6, "away": 0.4},
            "btts": {"yes": "0.52", "no": 0.48},
            "totals": {"2_5": {"over": 0.55, "under": 0.45}, "3_5": {"under": 0.58}},
            "double_chance": {"1X": 0.78},
            "win_to_nil": {"home": 0.36},
        })
        assert s.dnb == {"home": 0.6, "away": 0.4}
        assert s.btts["yes"] == pytest.approx(0.52)
        assert s.totals[2.5]["over"] == 0.55
        assert s.totals[3.5] == {"under": 0.58}
        assert s.double_chance == {"1X": 0.78}

    def test_malformed_line_skipped(self):
        s = SecondaryMarkets.from_dict({"totals": {"abc": {"over": 0.5}, "1_5": {"over": 0.7}}})
        assert list(s.totals) == [1.5]

    def test_out_of_range_and_nan_values_dropped(self):
        s = SecondaryMarkets.from_dict({
            "dnb": {"home": "nan", "away": 0.4},
            "btts": {"yes": 1.7, "no": "inf"},
            "totals": {"nan": {"over": 0.5}, "2_5": {"under": -0.2}},
        })
        assert s.dnb == {"away": 0.4}
        assert s.btts == {}
        assert s.totals == {}

        outcomes = build_market_outcomes("m1", None, None, s)
        assert [o.key for o in outcomes] == [("m1", "DNB", "AWAY", None)]
        assert all(0.0 <= o.consensus_prob <= 1.0 for o in outcomes)

    def test_empty(self):
        assert SecondaryMarkets.from_dict(None) is None


class TestBuildMarketOutcomes:

    def _models(self):
        v1 = ModelOutput("home", 0.6, OutcomeProbs(0.50, 0.30, 0.20))
        v2 = ModelOutput("home", 0.4, OutcomeProbs(0.60, 0.25, 0.15))
        return v1, v2

    def test_1x2_from_models(self):
        v1, v2 = self._models()
        outcomes = build_market_outcomes("m1", v1, v2, None)
        assert [o.market_subtype for o in outcomes] == ["HOME", "DRAW", "AWAY"]
        home = outcomes[0]
        assert home.market_type == "1X2"
        assert home.consensus_prob == pytest.approx(0.54)
        assert home.v1_prob == 0.50 and home.v2_prob == 0.60
        assert home.data_source == SOURCE_MODELS
        assert home.correlation_tags == ["MATCH_RESULT", "HOME_WIN"]

    def test_secondary_markets_are_single_source(self):
        secondary = SecondaryMarkets(dnb={"home": 0.6}, totals={3.5: {"under": 0.58, "over": 0.0}})
        outcomes = build_market_outcomes("m1", None, None, secondary)
        keys = [o.key for o in outcomes]
        assert keys == [("m1", "DNB", "HOME", None), ("m1", "TOTALS", "UNDER", 3.5)]
        for o in outcomes:
            assert o.consensus_confidence == 0.7
            assert o.model_agreement == 1.0
            assert o.data_source == SOURCE_EXTERNAL
            assert o.settle_type == "WIN_LOSE"

    def test_zero_probability_secondary_skipped(self):
        outcomes = build_market_outcomes("m1", None, None, SecondaryMarkets(btts={"yes": 0.0}))
        assert outcomes == []

    def test_priced_outcome_gets_edge(self):
        secondary = SecondaryMarkets(dnb={"home": 0.6})
        odds = {("m1", "DNB", "HOME", None): 2.0}
        [dnb] = build_market_outcomes("m1", None, None, secondary, odds=odds)
        assert dnb.implied_prob == pytest.approx(0.5)
        assert dnb.edge == pytest.approx(0.2)

    def test_unpriced_outcome_zero_edge(self):
        [dnb] = build_market_outcomes("m1", None, None, SecondaryMarkets(dnb={"home": 0.6}))
        assert dnb.edge == 0.0
        assert dnb.decimal_odds is None
