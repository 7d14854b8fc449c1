"""
Tests for market_sync.py: snapshot parsing, idempotent upserts and
partial-failure batches.

Run with: pytest tests/test_market_sync.py -v
"""

import pytest
from datetime import datetime, timedelta

from sqlalchemy.orm import sessionmaker

from edge_engine.models import MarketOutcomeRecord
from edge_engine.services import market_sync
from edge_engine.services.market_sync import (
    MarketOutcomeRepository,
    MatchSnapshot,
    compute_match_outcomes,
    parse_kickoff,
    sync_markets,
)
from edge_engine.services.leg_selector import select_legs_by_match


class TestMatchSnapshot:

    def test_from_dict(self, match_payload):
        snap = MatchSnapshot.from_dict(match_payload())
        assert snap.match_id == "m1"
        assert snap.v1.confidence == 0.6
        assert snap.secondary.totals[3.5]["under"] == 0.58

    def test_upstream_model_keys_and_id(self):
        snap = MatchSnapshot.from_dict({
            "id": 1379099,
            "models": {"v1_consensus": {"confidence": 0.7, "probs": {"home": 0.5}}},
        })
        assert snap.match_id == "1379099"
        assert snap.v1.probs.home == 0.5
        assert snap.v2 is None

    def test_prices_keyed_like_outcomes(self):
        snap = MatchSnapshot.from_dict({
            "match_id": "m1",
            "odds": [
                {"market_type": "TOTALS", "market_subtype": "UNDER", "line": "3.5", "decimal_odds": 1.7},
                {"market_type": "DNB", "market_subtype": "HOME", "decimal_odds": None},
            ],
        })
        assert snap.odds == {("m1", "TOTALS", "UNDER", 3.5): 1.7}

    def test_missing_id_raises(self):
        with pytest.raises(ValueError):
            MatchSnapshot.from_dict({"v1": {}})

    def test_kickoff_and_status(self):
        snap = MatchSnapshot.from_dict({
            "match_id": "m1", "kickoffDate": "2026-03-01T15:00:00Z", "status": "finished",
        })
        assert snap.kickoff_at == datetime(2026, 3, 1, 15, 0)
        assert snap.status == "FINISHED"
        assert MatchSnapshot.from_dict({"match_id": "m2"}).status == "UPCOMING"

    def test_malformed_odds_ignored(self):
        snap = MatchSnapshot.from_dict({
            "match_id": "m1",
            "odds": [{"market_type": "DNB", "market_subtype": "HOME", "decimal_odds": "nan"}],
        })
        assert snap.odds == {}


@pytest.mark.parametrize("value, expected", [
    ("2026-03-01T17:00:00+02:00", datetime(2026, 3, 1, 15, 0)),
    (datetime(2026, 3, 1, 15, 0), datetime(2026, 3, 1, 15, 0)),
    ("not a date", None),
    (None, None),
])
def test_parse_kickoff(value, expected):
    assert parse_kickoff(value) == expected


def test_compute_match_outcomes(match_payload):
    outcomes = compute_match_outcomes(MatchSnapshot.from_dict(match_payload()))
    # 3 x 1X2 + 2 DNB + 2 BTTS + 2 totals
    assert len(outcomes) == 9


class TestRepository:

    def test_upsert_updates_instead_of_appending(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        first = compute_match_outcomes(MatchSnapshot.from_dict(match_payload(dnb_home=0.60)))
        assert repo.upsert_many(first) == {"created": 9, "updated": 0}

        second = compute_match_outcomes(MatchSnapshot.from_dict(match_payload(dnb_home=0.66)))
        assert repo.upsert_many(second) == {"created": 0, "updated": 9}

        assert db_session.query(MarketOutcomeRecord).count() == 9
        dnb = (
            db_session.query(MarketOutcomeRecord)
            .filter_by(market_type="DNB", market_subtype="HOME")
            .one()
        )
        assert dnb.consensus_prob == pytest.approx(0.66)
        assert dnb.line is None

    def test_list_for_match_filters_and_orders(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        repo.upsert_many(compute_match_outcomes(MatchSnapshot.from_dict(match_payload())))
        rows = repo.list_for_match("m1", min_prob=0.5, min_agreement=0.6)
        probs = [r.consensus_prob for r in rows]
        assert probs == sorted(probs, reverse=True)
        assert all(p >= 0.5 for p in probs)
        assert [r.market_type for r in repo.list_for_match("m1", market_type="BTTS")] == ["BTTS", "BTTS"]
        assert repo.has_match("m1")
        assert not repo.has_match("nope")

    def test_load_outcomes_round_trip(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        original = compute_match_outcomes(MatchSnapshot.from_dict(match_payload()))
        repo.upsert_many(original)
        loaded = {o.key: o for o in repo.load_outcomes(["m1"])}
        for o in original:
            assert loaded[o.key].consensus_prob == pytest.approx(o.consensus_prob)
            assert loaded[o.key].correlation_tags == o.correlation_tags

    def test_replace_match_drops_keys_not_recomputed(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        payload = match_payload()
        payload["additional_markets_v2"]["totals"]["2_5"] = {"over": 0.62, "under": 0.38}
        first = compute_match_outcomes(MatchSnapshot.from_dict(payload))
        assert repo.replace_match("m1", first)["created"] == 11

        second = compute_match_outcomes(MatchSnapshot.from_dict(match_payload()))
        counts = repo.replace_match("m1", second)
        assert counts == {"created": 0, "updated": 9, "removed": 2}

        lines = {r.line for r in db_session.query(MarketOutcomeRecord).filter_by(market_type="TOTALS")}
        assert lines == {3.5}
        outcomes = [leg.outcome for leg in select_legs_by_match(repo.load_outcomes(["m1"])).get("m1", [])]
        assert "OVER_2_5" not in outcomes

    def test_replace_match_with_nothing_clears_match(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        repo.replace_match("m1", compute_match_outcomes(MatchSnapshot.from_dict(match_payload())))
        assert repo.replace_match("m1", [])["removed"] == 9
        assert not repo.has_match("m1")

    def test_overlapping_writers_never_duplicate_null_line_keys(self, db_engine, match_payload, monkeypatch):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
        session_a, session_b = Session(), Session()
        outcomes = compute_match_outcomes(MatchSnapshot.from_dict(match_payload()))
        repo_a = MarketOutcomeRepository(session_a)
        repo_b = MarketOutcomeRepository(session_b)
        # B read the catalog before A committed
        monkeypatch.setattr(repo_b, "_existing", lambda match_ids: {})

        repo_a.upsert_many(outcomes)
        late = compute_match_outcomes(MatchSnapshot.from_dict(match_payload(dnb_home=0.7)))
        repo_b.upsert_many(late)

        rows = session_a.query(MarketOutcomeRecord).filter_by(market_type="DNB", market_subtype="HOME").all()
        assert len(rows) == 1
        session_a.expire_all()
        assert rows[0].consensus_prob == pytest.approx(0.7)
        assert session_a.query(MarketOutcomeRecord).count() == 9
        session_a.close()
        session_b.close()

    def test_load_outcomes_upcoming_only(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        now = datetime(2026, 3, 1, 12, 0)
        for match_id, kickoff, status in [
            ("future", now + timedelta(hours=3), "UPCOMING"),
            ("started", now - timedelta(hours=1), "UPCOMING"),
            ("finished", now + timedelta(hours=3), "FINISHED"),
            ("unscheduled", None, "UPCOMING"),
        ]:
            snap = MatchSnapshot.from_dict(match_payload(match_id))
            repo.replace_match(
                match_id, compute_match_outcomes(snap), kickoff_at=kickoff, match_status=status,
            )
        loaded = {o.match_id for o in repo.load_outcomes(upcoming_only=True, now=now)}
        assert loaded == {"future", "unscheduled"}
        assert len({o.match_id for o in repo.load_outcomes()}) == 4


class TestSyncMarkets:

    def test_full_batch(self, db_session, match_payload):
        snaps = [MatchSnapshot.from_dict(match_payload(m)) for m in ("a", "b", "c")]
        summary = sync_markets(snaps, MarketOutcomeRepository(db_session), max_workers=2)
        assert summary.total == 3
        assert summary.processed == 3
        assert summary.created == 27
        assert summary.errors == 0

    def test_resync_is_idempotent(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        snaps = [MatchSnapshot.from_dict(match_payload(m)) for m in ("a", "b")]
        sync_markets(snaps, repo)
        summary = sync_markets(snaps, repo)
        assert summary.created == 0
        assert summary.updated == 18
        assert db_session.query(MarketOutcomeRecord).count() == 18

    def test_batch_continues_past_failing_match(self, db_session, match_payload, monkeypatch):
        real = market_sync.compute_match_outcomes

        def flaky(snapshot, policy=None):
            if snapshot.match_id == "bad":
                raise RuntimeError("corrupt snapshot")
            return real(snapshot, policy)

        monkeypatch.setattr(market_sync, "compute_match_outcomes", flaky)
        snaps = [MatchSnapshot.from_dict(match_payload(m)) for m in ("a", "bad", "c")]
        summary = sync_markets(snaps, MarketOutcomeRepository(db_session))

        assert summary.errors == 1
        assert summary.failed_match_ids == ["bad"]
        assert summary.processed == 2
        assert db_session.query(MarketOutcomeRecord).filter_by(match_id="c").count() == 9

    def test_write_failure_counted(self, match_payload):
        class FailingRepo:
            def replace_match(self, match_id, outcomes, **kwargs):
                raise RuntimeError("db down")

        snaps = [MatchSnapshot.from_dict(match_payload(m)) for m in ("a", "b")]
        summary = sync_markets(snaps, FailingRepo())
        assert summary.errors == 2
        assert summary.processed == 0

    def test_empty_match_skipped(self, db_session):
        summary = sync_markets([MatchSnapshot("empty")], MarketOutcomeRepository(db_session))
        assert summary.skipped == 1
        assert summary.errors == 0

    def test_resync_removes_vanished_totals_line(self, db_session, match_payload):
        repo = MarketOutcomeRepository(db_session)
        payload = match_payload()
        payload["additional_markets_v2"]["totals"]["2_5"] = {"over": 0.62, "under": 0.38}
        sync_markets([MatchSnapshot.from_dict(payload)], repo)

        summary = sync_markets([MatchSnapshot.from_dict(match_payload())], repo)
        assert summary.removed == 2
        assert db_session.query(MarketOutcomeRecord).filter_by(line=2.5).count() == 0

    def test_duplicate_snapshots_last_wins(self, db_session, match_payload):
        snaps = [
            MatchSnapshot.from_dict(match_payload("a", dnb_home=0.60)),
            MatchSnapshot.from_dict(match_payload("b")),
            MatchSnapshot.from_dict(match_payload("a", dnb_home=0.70)),
        ]
        summary = sync_markets(snaps, MarketOutcomeRepository(db_session))
        assert summary.total == 3
        assert summary.duplicates == 1
        assert summary.processed == 2
        assert summary.created == 18
        dnb = (
            db_session.query(MarketOutcomeRecord)
            .filter_by(match_id="a", market_type="DNB", market_subtype="HOME")
            .one()
        )
        assert dnb.consensus_prob == pytest.approx(0.70)

    def test_kickoff_and_status_stored(self, db_session, match_payload):
        payload = match_payload("a")
        payload.update(kickoff_at="2026-03-01T15:00:00Z", status="postponed")
        sync_markets([MatchSnapshot.from_dict(payload)], MarketOutcomeRepository(db_session))
        row = db_session.query(MarketOutcomeRecord).filter_by(match_id="a").first()
        assert row.kickoff_at == datetime(2026, 3, 1, 15, 0)
        assert row.match_status == "POSTPONED"
