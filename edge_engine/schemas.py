"""
Pydantic request/response schemas for the edge engine API.

Using explicit schemas instead of raw dicts prevents mass-assignment
vulnerabilities on ORM models and generates accurate OpenAPI docs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from edge_engine.services.clv import TIME_WINDOWS


# ---------------------------------------------------------------------------
# Match snapshots (input to sync and potential parlays)
# ---------------------------------------------------------------------------

class ModelOutputIn(BaseModel):
    pick: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    probs: Dict[str, Optional[float]] = Field(default_factory=dict)

    @field_validator("probs")
    @classmethod
    def validate_probs(cls, v: Dict[str, Optional[float]]) -> Dict[str, Optional[float]]:
        for outcome, p in v.items():
            if p is not None and not (0.0 <= p <= 1.0):
                raise ValueError(f"probs[{outcome}]={p} must be in [0, 1]")
        return v


class PriceIn(BaseModel):
    market_type: str
    market_subtype: Optional[str] = None
    line: Optional[float] = None
    decimal_odds: float = Field(..., gt=1.0)


class MatchSnapshotIn(BaseModel):
    """
    One match's read-only inputs.

    ``additional_markets_v2`` uses the feed's shape, e.g.
    ``{"dnb": {"home": 0.6}, "totals": {"3_5": {"under": 0.58}}}``.
    """

    match_id: str = Field(..., min_length=1)
    league: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    v1: Optional[ModelOutputIn] = None
    v2: Optional[ModelOutputIn] = None
    additional_markets_v2: Optional[Dict[str, Any]] = None
    odds: List[PriceIn] = Field(default_factory=list)
    kickoff_at: Optional[datetime] = None
    status: str = "UPCOMING"

    model_config = {
        "json_schema_extra": {
            "example": {
                "match_id": "1379099",
                "league": "Premier League",
                "v1": {"pick": "home", "confidence": 0.62,
                       "probs": {"home": 0.52, "draw": 0.26, "away": 0.22}},
                "additional_markets_v2": {
                    "dnb": {"home": 0.60, "away": 0.40},
                    "totals": {"3_5": {"over": 0.42, "under": 0.58}},
                },
            }
        }
    }


class MarketSyncRequest(BaseModel):
    matches: List[MatchSnapshotIn] = Field(..., min_length=1)


class SyncSummaryResponse(BaseModel):
    total: int
    processed: int
    created: int
    updated: int
    removed: int = 0
    skipped: int
    duplicates: int = 0
    errors: int
    failed_match_ids: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Market catalog
# ---------------------------------------------------------------------------

class MarketOutcomeResponse(BaseModel):
    match_id: str
    market_type: str
    market_subtype: Optional[str] = None
    line: Optional[float] = None
    consensus_prob: float
    consensus_confidence: float
    model_agreement: float
    correlation_tags: List[str] = Field(default_factory=list)
    risk_level: str
    edge: Optional[float] = None
    decimal_odds: Optional[float] = None
    data_source: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MarketListResponse(BaseModel):
    match_id: str
    total: int
    markets: List[MarketOutcomeResponse]


# ---------------------------------------------------------------------------
# Parlays
# ---------------------------------------------------------------------------

class ParlayLegResponse(BaseModel):
    order_index: int
    match_id: str
    market_type: str
    market_subtype: Optional[str] = None
    line: Optional[float] = None
    outcome: str
    probability: float
    decimal_odds: Optional[float] = None
    edge: Optional[float] = None
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class QualityFlagsResponse(BaseModel):
    is_tradable: bool
    has_low_edge: bool
    has_low_probability: bool
    risk_level: str


class ParlayResponse(BaseModel):
    id: Optional[int] = None
    parlay_type: str
    leg_count: int
    legs: List[ParlayLegResponse]
    combined_prob: float
    fair_odds: Optional[float] = None
    correlation_penalty: float = 0.0
    adjusted_prob: Optional[float] = None
    implied_odds: Optional[float] = None
    edge_pct: Optional[float] = None
    confidence_tier: str
    quality_score: Optional[float] = None
    quality_tier: Optional[str] = None
    quality_flags: Optional[QualityFlagsResponse] = None
    independence_assumed: bool = True


class PotentialParlaysRequest(BaseModel):
    matches: List[MatchSnapshotIn] = Field(..., min_length=1)
    max_results: int = Field(20, ge=1, le=200)


class GenerateBestRequest(BaseModel):
    match_ids: Optional[List[str]] = Field(
        None, description="Restrict to these matches; all stored matches when omitted"
    )
    strategy: Literal["tag_overlap", "leg_count"] = "tag_overlap"
    max_legs_per_match: int = Field(1, ge=1, le=3)


class ParlayListResponse(BaseModel):
    total: int
    parlays: List[ParlayResponse]


class GenerateBestResponse(BaseModel):
    message: str
    candidates: int
    created: int
    expired: int = 0
    tradable: int


# ---------------------------------------------------------------------------
# CLV
# ---------------------------------------------------------------------------

class CLVCalculateRequest(BaseModel):
    entry_odds: float = Field(..., description="Decimal odds at detection time")
    close_odds: float = Field(..., description="Decimal composite odds at the reference window")
    clv_pct: Optional[float] = Field(None, description="Pre-computed CLV %, if the feed supplies one")

    @field_validator("entry_odds", "close_odds")
    @classmethod
    def validate_decimal_odds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Decimal odds must be positive, got {v}")
        return v


class ClosingLineRecord(BaseModel):
    entry_odds: float
    close_odds: float
    entry_implied_prob: Optional[float] = None
    close_implied_prob: Optional[float] = None
    clv_pct: Optional[float] = None
    ev_percent: Optional[float] = None
    confidence_score: Optional[int] = None
    is_high_confidence: bool = False
    kelly_fraction: Optional[float] = None
    half_kelly_stake: Optional[float] = None
    recommended_stake: Optional[float] = None
    grade: str


class CLVOpportunityResponse(BaseModel):
    match_id: str
    league: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    outcome: Literal["H", "D", "A"]
    entry_odds: float
    close_odds: float
    clv_pct: float
    ev_percent: float
    confidence_score: int
    kelly_fraction: Optional[float] = None
    recommended_stake: Optional[float] = None
    window: str
    bookmaker: Optional[str] = None
    match_date: Optional[str] = None


class CLVOpportunitiesResponse(BaseModel):
    window: str
    league: Optional[str] = None
    total: int
    items: List[CLVOpportunityResponse]

    @field_validator("window")
    @classmethod
    def validate_window(cls, v: str) -> str:
        if v not in TIME_WINDOWS:
            raise ValueError(f"window must be one of {TIME_WINDOWS}")
        return v
