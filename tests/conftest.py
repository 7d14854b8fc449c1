"""Shared fixtures: an in-memory SQLite session per test."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edge_engine.models import Base


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def match_payload():
    def _make(match_id="m1", dnb_home=0.60, under_35=0.58):
        return {
            "match_id": match_id,
            "league": "Premier League",
            "v1": {"pick": "home", "confidence": 0.6,
                   "probs": {"home": 0.50, "draw": 0.30, "away": 0.20}},
            "v2": {"pick": "home", "confidence": 0.4,
                   "probs": {"home": 0.60, "draw": 0.25, "away": 0.15}},
            "additional_markets_v2": {
                "dnb": {"home": dnb_home, "away": round(1 - dnb_home, 4)},
                "btts": {"yes": 0.45, "no": 0.55},
                "totals": {"3_5": {"over": round(1 - under_35, 4), "under": under_35}},
            },
        }
    return _make
