"""
Database models for the consensus edge engine
SQLAlchemy ORM (SQLite by default, PostgreSQL in production)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    JSON,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./edge_engine.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class MarketOutcomeRecord(Base):
    """One classified market outcome, keyed by (match, market, subtype, line)"""

    __tablename__ = "market_outcomes"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(String, nullable=False, index=True)
    market_type = Column(String, nullable=False, index=True)  # 1X2, DNB, TOTALS, ...
    market_subtype = Column(String, nullable=False, default="")  # HOME, UNDER, YES, 1X, ...
    line = Column(Float)  # Totals only
    line_key = Column(String, nullable=False, default="")  # "" when no line; NULL-free unique key

    # Match state, used to restrict parlay generation to upcoming matches
    kickoff_at = Column(DateTime, index=True)
    match_status = Column(String, nullable=False, default="UPCOMING", index=True)

    # Consensus
    consensus_prob = Column(Float, nullable=False)
    consensus_confidence = Column(Float, nullable=False)
    model_agreement = Column(Float, nullable=False)

    # Per-model inputs (1X2 only)
    v1_prob = Column(Float)
    v1_confidence = Column(Float)
    v1_pick = Column(String)
    v2_prob = Column(Float)
    v2_confidence = Column(Float)
    v2_pick = Column(String)

    # Classification
    correlation_tags = Column(JSON, default=list)
    risk_level = Column(String, nullable=False)
    edge = Column(Float, default=0.0)
    decimal_odds = Column(Float)
    implied_prob = Column(Float)
    settle_type = Column(String, default="WIN_LOSE")
    data_source = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "match_id", "market_type", "market_subtype", "line_key",
            name="_market_outcome_key_uc",
        ),
    )


class ParlayRecord(Base):
    """Persisted multi-match parlay candidate"""

    __tablename__ = "parlays"

    id = Column(Integer, primary_key=True, index=True)
    parlay_type = Column(String, nullable=False)  # "single_game" | "multi_game"
    leg_count = Column(Integer, nullable=False)
    signature = Column(String, unique=True, index=True)  # sorted leg identity

    combined_prob = Column(Float, nullable=False)
    correlation_penalty = Column(Float, default=0.0)
    adjusted_prob = Column(Float)
    fair_odds = Column(Float)
    implied_odds = Column(Float)
    edge_pct = Column(Float)
    confidence_tier = Column(String)
    quality_score = Column(Float)

    # Quality flags
    is_tradable = Column(Boolean, default=False, index=True)
    has_low_edge = Column(Boolean, default=False)
    has_low_probability = Column(Boolean, default=False)
    risk_level = Column(String)
    independence_assumed = Column(Boolean, default=True)

    status = Column(String, default="active", index=True)  # "active" | "expired"
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    legs = relationship(
        "ParlayLegRecord",
        back_populates="parlay",
        cascade="all, delete-orphan",
        order_by="ParlayLegRecord.order_index",
    )


class ParlayLegRecord(Base):
    """A leg of a persisted parlay"""

    __tablename__ = "parlay_legs"

    id = Column(Integer, primary_key=True, index=True)
    parlay_id = Column(Integer, ForeignKey("parlays.id"), nullable=False, index=True)
    order_index = Column(Integer, nullable=False)

    match_id = Column(String, nullable=False)
    market_type = Column(String, nullable=False)
    market_subtype = Column(String)
    line = Column(Float)
    outcome = Column(String)  # DNB_H, UNDER_3_5, ...
    probability = Column(Float, nullable=False)
    decimal_odds = Column(Float)
    edge = Column(Float)
    description = Column(String)

    parlay = relationship("ParlayRecord", back_populates="legs")


def init_db(bind=None):
    """Create all tables"""
    Base.metadata.create_all(bind=bind or engine)
