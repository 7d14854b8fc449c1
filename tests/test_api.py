"""
API tests through FastAPI's TestClient against an in-memory database.

Run with: pytest tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from edge_engine.auth import verify_admin_api_key, verify_api_key
from edge_engine.main import app, get_odds_feed_client
from edge_engine.models import get_db
from edge_engine.services.odds_feed import OddsFeedError


class _FakeFeed:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error

    def get_clv_items(self, window="all"):
        if self.error:
            raise self.error
        return self.items


@pytest.fixture
def client(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def _get_test_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[verify_api_key] = lambda: "user1"
    app.dependency_overrides[verify_admin_api_key] = lambda: "user1"
    yield TestClient(app)
    app.dependency_overrides.clear()


def _sync(client, payloads):
    return client.post("/api/admin/markets/sync", json={"matches": payloads})


class TestHealth:

    def test_health_reports_db(self, client):
        body = client.get("/health").json()
        assert body["database"] == "connected"


class TestMarkets:

    def test_sync_then_list(self, client, match_payload):
        resp = _sync(client, [match_payload("a"), match_payload("b")])
        assert resp.status_code == 200
        assert resp.json()["created"] == 18
        assert resp.json()["errors"] == 0

        resp = client.get("/api/markets/a", params={"min_prob": 0.55, "min_agreement": 0.6})
        assert resp.status_code == 200
        markets = resp.json()["markets"]
        probs = [m["consensus_prob"] for m in markets]
        assert probs == sorted(probs, reverse=True)
        assert all(p >= 0.55 for p in probs)

    def test_resync_updates(self, client, match_payload):
        _sync(client, [match_payload("a")])
        resp = _sync(client, [match_payload("a", dnb_home=0.7)])
        assert resp.json()["updated"] == 9
        assert resp.json()["created"] == 0

    def test_market_type_filter(self, client, match_payload):
        _sync(client, [match_payload("a")])
        resp = client.get("/api/markets/a", params={"market_type": "TOTALS", "min_prob": 0})
        assert {m["market_type"] for m in resp.json()["markets"]} == {"TOTALS"}

    def test_unknown_match_404(self, client):
        assert client.get("/api/markets/missing").status_code == 404

    def test_invalid_snapshot_rejected(self, client):
        bad = {"match_id": "x", "v1": {"confidence": 0.5, "probs": {"home": 1.5}}}
        assert _sync(client, [bad]).status_code == 422


class TestParlays:

    def test_potential_parlays(self, client, match_payload):
        resp = client.post("/api/parlays/potential", json={"matches": [match_payload("a")]})
        assert resp.status_code == 200
        parlays = resp.json()["parlays"]
        # legs: DNB_H 0.60, UNDER_3_5 0.58, BTTS_NO 0.55
        assert len(parlays) == 4
        top = parlays[0]
        assert top["combined_prob"] == pytest.approx(0.348)
        assert top["confidence_tier"] == "high"
        assert top["independence_assumed"] is True
        assert {leg["outcome"] for leg in top["legs"]} == {"DNB_H", "UNDER_3_5"}

    def test_generate_best_and_list(self, client, match_payload):
        _sync(client, [match_payload(m) for m in ("a", "b", "c")])
        resp = client.post("/api/admin/parlays/generate-best", json={})
        assert resp.status_code == 200
        assert resp.json()["candidates"] == 4
        assert resp.json()["created"] == 4

        # regenerating refreshes, never duplicates
        client.post("/api/admin/parlays/generate-best", json={"strategy": "leg_count"})
        listed = client.get("/api/parlays").json()
        assert listed["total"] == 4
        for p in listed["parlays"]:
            assert p["parlay_type"] == "multi_game"
            assert len({leg["match_id"] for leg in p["legs"]}) == p["leg_count"]
            assert 0 < p["adjusted_prob"] <= p["combined_prob"]
            assert p["quality_flags"]["risk_level"] in {"low", "medium", "high", "very_high"}

    def test_finished_match_parlays_expire(self, client, match_payload):
        _sync(client, [match_payload(m) for m in ("a", "b", "c")])
        client.post("/api/admin/parlays/generate-best", json={})

        finished = match_payload("c")
        finished["status"] = "FINISHED"
        _sync(client, [finished])
        resp = client.post("/api/admin/parlays/generate-best", json={})
        assert resp.json()["candidates"] == 1
        assert resp.json()["expired"] == 3

        listed = client.get("/api/parlays").json()
        assert listed["total"] == 1
        assert {leg["match_id"] for leg in listed["parlays"][0]["legs"]} == {"a", "b"}

    def test_sync_reports_duplicates(self, client, match_payload):
        resp = _sync(client, [match_payload("a"), match_payload("a", dnb_home=0.7)])
        assert resp.json()["duplicates"] == 1
        assert resp.json()["created"] == 9

    def test_unknown_strategy_rejected(self, client):
        resp = client.post("/api/admin/parlays/generate-best", json={"strategy": "magic"})
        assert resp.status_code == 422


class TestCLV:

    def test_calculate(self, client):
        resp = client.post("/api/clv/calculate", json={"entry_odds": 2.0, "close_odds": 1.8})
        assert resp.status_code == 200
        body = resp.json()
        assert body["ev_percent"] == pytest.approx(11.11, abs=0.01)
        assert body["recommended_stake"] == pytest.approx(0.05)
        assert body["half_kelly_stake"] == pytest.approx(0.0556, abs=1e-3)
        assert body["is_high_confidence"] is True
        assert body["grade"] == "excellent"

    def test_calculate_rejects_bad_odds(self, client):
        resp = client.post("/api/clv/calculate", json={"entry_odds": 0, "close_odds": 1.8})
        assert resp.status_code == 422

    def test_opportunities(self, client):
        items = [
            {"match_id": 1, "league": "EPL", "selection": "H", "entry_odds": 2.0, "close_odds": 1.9},
            {"match_id": 2, "league": "EPL", "selection": "A", "entry_odds": 2.0, "close_odds": 1.7},
        ]
        app.dependency_overrides[get_odds_feed_client] = lambda: _FakeFeed(items)
        resp = client.get("/api/clv/opportunities", params={"window": "T-24to2"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["window"] == "T-24to2"
        assert [i["match_id"] for i in body["items"]] == ["2", "1"]

    def test_opportunities_feed_error_is_502(self, client):
        app.dependency_overrides[get_odds_feed_client] = lambda: _FakeFeed(error=OddsFeedError("down"))
        assert client.get("/api/clv/opportunities").status_code == 502

    def test_opportunities_unknown_window_is_400(self, client):
        app.dependency_overrides[get_odds_feed_client] = lambda: _FakeFeed()
        assert client.get("/api/clv/opportunities", params={"window": "T-1h"}).status_code == 400
