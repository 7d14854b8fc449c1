"""
FastAPI application for the consensus edge engine
Includes REST API and scheduled market sync / parlay generation
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging
import os

from edge_engine.models import get_db, init_db, SessionLocal, ParlayRecord
from edge_engine.auth import verify_api_key, verify_admin_api_key
from edge_engine.core.penalty import CorrelationPenaltyStrategy, LegCountPenalty, TagOverlapPenalty
from edge_engine.core.scoring_policy import ScoringPolicy
from edge_engine.services.clv import build_clv_opportunities, calculate_clv
from edge_engine.services.leg_selector import select_legs_by_match
from edge_engine.services.market_sync import (
    MarketOutcomeRepository,
    MatchSnapshot,
    compute_match_outcomes,
    sync_markets,
)
from edge_engine.services.odds_feed import OddsFeedClient, OddsFeedError
from edge_engine.services.parlay_engine import (
    ParlayCandidate,
    build_multi_match_parlays,
    build_single_game_parlays,
)
from edge_engine.services.parlay_quality import classify_candidates, quality_tier
from edge_engine.services.parlay_store import ParlayRepository, candidate_signature
from edge_engine.schemas import (
    CLVCalculateRequest,
    CLVOpportunitiesResponse,
    CLVOpportunityResponse,
    ClosingLineRecord,
    GenerateBestRequest,
    GenerateBestResponse,
    MarketListResponse,
    MarketOutcomeResponse,
    MarketSyncRequest,
    ParlayLegResponse,
    ParlayListResponse,
    ParlayResponse,
    PotentialParlaysRequest,
    QualityFlagsResponse,
    SyncSummaryResponse,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()

_STRATEGIES = {
    TagOverlapPenalty.name: TagOverlapPenalty,
    LegCountPenalty.name: LegCountPenalty,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting consensus edge engine")
    init_db()

    sync_interval = int(os.getenv("MARKET_SYNC_INTERVAL_MIN", "30"))
    scheduler.add_job(
        _market_sync_job,
        IntervalTrigger(minutes=sync_interval),
        id="market_sync",
        name="Market Catalog Sync",
        replace_existing=True,
    )

    parlay_interval = int(os.getenv("PARLAY_GENERATION_INTERVAL_MIN", "60"))
    scheduler.add_job(
        _parlay_generation_job,
        IntervalTrigger(minutes=parlay_interval),
        id="parlay_generation",
        name="Best Parlay Generation",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: market sync every %dmin, parlay generation every %dmin",
        sync_interval, parlay_interval,
    )

    yield

    logger.info("Shutting down consensus edge engine")
    scheduler.shutdown()


app = FastAPI(
    title="Consensus Edge Engine",
    description="Probability consensus, parlay quality and closing line value",
    version="1.0",
    lifespan=lifespan,
)

# CORS (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_policy() -> ScoringPolicy:
    return ScoringPolicy.from_env()


def get_odds_feed_client() -> OddsFeedClient:
    try:
        return OddsFeedClient()
    except ValueError as exc:
        logger.error("Odds feed not configured: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))


# ============================================================================
# SCHEDULED JOBS
# ============================================================================

def _parse_snapshots(payloads) -> List[MatchSnapshot]:
    snapshots = []
    for payload in payloads:
        try:
            snapshots.append(MatchSnapshot.from_dict(payload))
        except ValueError as exc:
            logger.warning("Skipping match payload: %s", exc)
    return snapshots


def _market_sync_job():
    """Pull upcoming matches from the feed and resync their catalogs."""
    logger.info("Scheduled market sync starting")
    db = SessionLocal()
    try:
        matches = OddsFeedClient().get_upcoming_matches()
        summary = sync_markets(
            _parse_snapshots(matches),
            MarketOutcomeRepository(db),
            policy=ScoringPolicy.from_env(),
        )
        logger.info("Scheduled market sync complete: %s", summary)
    except Exception as exc:
        logger.error("Scheduled market sync failed: %s", exc, exc_info=True)
    finally:
        db.close()


def _parlay_generation_job():
    """Rebuild and persist the best multi-match parlays from the stored catalog."""
    db = SessionLocal()
    try:
        result = generate_best_parlays(db, ScoringPolicy.from_env(), TagOverlapPenalty())
        logger.info("Scheduled parlay generation complete: %s", result)
    except Exception as exc:
        logger.error("Scheduled parlay generation failed: %s", exc, exc_info=True)
    finally:
        db.close()


def generate_best_parlays(
    db: Session,
    policy: ScoringPolicy,
    strategy: CorrelationPenaltyStrategy,
    match_ids: Optional[List[str]] = None,
    max_legs_per_match: int = 1,
) -> GenerateBestResponse:
    outcomes = MarketOutcomeRepository(db).load_outcomes(match_ids, upcoming_only=True)
    legs_by_match = select_legs_by_match(outcomes, policy=policy)
    candidates = build_multi_match_parlays(
        legs_by_match, max_legs_per_match=max_legs_per_match, policy=policy
    )
    ranked = classify_candidates(candidates, policy=policy, strategy=strategy)
    store = ParlayRepository(db)
    counts = store.save_candidates(ranked)
    # A full regeneration retires every parlay it did not reproduce
    expired = 0
    if match_ids is None:
        expired = store.expire_missing(candidate_signature(c) for c in ranked)
    return GenerateBestResponse(
        message="Parlay generation complete",
        candidates=len(ranked),
        created=counts["created"],
        expired=expired,
        tradable=sum(1 for c in ranked if c.quality_flags.is_tradable),
    )


# ============================================================================
# RESPONSE HELPERS
# ============================================================================

def _candidate_response(c: ParlayCandidate, classified: bool = False) -> ParlayResponse:
    return ParlayResponse(
        parlay_type=c.parlay_type,
        leg_count=c.leg_count,
        legs=[
            ParlayLegResponse(
                order_index=leg.order_index,
                match_id=leg.match_id,
                market_type=leg.market_type,
                market_subtype=leg.market_subtype,
                line=leg.line,
                outcome=leg.outcome,
                probability=leg.probability,
                decimal_odds=leg.decimal_odds,
                edge=leg.edge,
                description=leg.description,
            )
            for leg in c.legs
        ],
        combined_prob=c.combined_prob,
        fair_odds=c.fair_odds,
        correlation_penalty=c.correlation_penalty,
        adjusted_prob=c.adjusted_prob,
        implied_odds=c.implied_odds,
        edge_pct=c.edge_pct if classified else None,
        confidence_tier=c.confidence_tier,
        quality_score=c.quality_score if classified else None,
        quality_tier=quality_tier(c.quality_score) if classified else None,
        quality_flags=QualityFlagsResponse(**c.quality_flags.__dict__) if classified else None,
        independence_assumed=c.independence_assumed,
    )


def _record_response(row: ParlayRecord) -> ParlayResponse:
    return ParlayResponse(
        id=row.id,
        parlay_type=row.parlay_type,
        leg_count=row.leg_count,
        legs=[ParlayLegResponse.model_validate(leg) for leg in row.legs],
        combined_prob=row.combined_prob,
        fair_odds=row.fair_odds,
        correlation_penalty=row.correlation_penalty or 0.0,
        adjusted_prob=row.adjusted_prob,
        implied_odds=row.implied_odds,
        edge_pct=row.edge_pct,
        confidence_tier=row.confidence_tier,
        quality_score=row.quality_score,
        quality_tier=quality_tier(row.quality_score or 0.0),
        quality_flags=QualityFlagsResponse(
            is_tradable=bool(row.is_tradable),
            has_low_edge=bool(row.has_low_edge),
            has_low_probability=bool(row.has_low_probability),
            risk_level=row.risk_level or "very_high",
        ),
        independence_assumed=bool(row.independence_assumed),
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {
        "app": "Consensus Edge Engine",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - MARKETS
# ============================================================================

@app.get("/api/markets/{match_id}", response_model=MarketListResponse)
async def get_match_markets(
    match_id: str,
    market_type: Optional[str] = None,
    min_prob: float = Query(0.50, ge=0.0, le=1.0),
    min_agreement: float = Query(0.60, ge=0.0, le=1.0),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Classified market outcomes for one match, best first."""
    repo = MarketOutcomeRepository(db)
    rows = repo.list_for_match(match_id, market_type, min_prob, min_agreement)
    if not rows and not repo.has_match(match_id):
        raise HTTPException(status_code=404, detail=f"No markets for match {match_id}")
    return MarketListResponse(
        match_id=match_id,
        total=len(rows),
        markets=[MarketOutcomeResponse.model_validate(r) for r in rows],
    )


# ============================================================================
# AUTHENTICATED ENDPOINTS - PARLAYS
# ============================================================================

@app.post("/api/parlays/potential", response_model=ParlayListResponse)
async def get_potential_parlays(
    request: PotentialParlaysRequest,
    user: str = Depends(verify_api_key),
    policy: ScoringPolicy = Depends(get_policy),
):
    """
    Generate single-game parlay candidates on demand (not persisted).

    Combined probabilities assume independent legs.
    """
    outcomes = []
    for snap in _parse_snapshots(m.model_dump() for m in request.matches):
        outcomes.extend(compute_match_outcomes(snap, policy))
    legs_by_match = select_legs_by_match(outcomes, policy=policy)
    candidates = build_single_game_parlays(legs_by_match, policy=policy)[: request.max_results]
    return ParlayListResponse(
        total=len(candidates),
        parlays=[_candidate_response(c) for c in candidates],
    )


@app.get("/api/parlays", response_model=ParlayListResponse)
async def list_parlays(
    tradable_only: bool = False,
    min_edge_pct: Optional[float] = None,
    limit: int = Query(50, ge=1, le=500),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    rows = ParlayRepository(db).list_parlays(tradable_only, min_edge_pct, limit)
    return ParlayListResponse(total=len(rows), parlays=[_record_response(r) for r in rows])


# ============================================================================
# AUTHENTICATED ENDPOINTS - CLV
# ============================================================================

@app.get("/api/clv/opportunities", response_model=CLVOpportunitiesResponse)
async def get_clv_opportunities(
    window: str = "all",
    league: Optional[str] = None,
    user: str = Depends(verify_api_key),
    client: OddsFeedClient = Depends(get_odds_feed_client),
    policy: ScoringPolicy = Depends(get_policy),
):
    """CLV opportunities for a time window, best CLV first."""
    try:
        items = client.get_clv_items(window)
        opportunities = build_clv_opportunities(items, window, league, policy=policy)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except OddsFeedError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return CLVOpportunitiesResponse(
        window=window,
        league=league,
        total=len(opportunities),
        items=[CLVOpportunityResponse(**o.__dict__) for o in opportunities],
    )


@app.post("/api/clv/calculate", response_model=ClosingLineRecord)
async def calculate_clv_endpoint(
    request: CLVCalculateRequest,
    user: str = Depends(verify_api_key),
    policy: ScoringPolicy = Depends(get_policy),
):
    result = calculate_clv(request.entry_odds, request.close_odds, request.clv_pct, policy=policy)
    return ClosingLineRecord(
        entry_odds=result.entry_odds,
        close_odds=result.close_odds,
        entry_implied_prob=result.entry_implied_prob,
        close_implied_prob=result.close_implied_prob,
        clv_pct=result.clv_pct,
        ev_percent=result.ev_percent,
        confidence_score=result.confidence_score,
        is_high_confidence=result.is_high_confidence(),
        kelly_fraction=result.kelly_fraction,
        half_kelly_stake=result.half_kelly_stake,
        recommended_stake=result.recommended_stake,
        grade=result.grade(),
    )


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/api/admin/markets/sync", response_model=SyncSummaryResponse)
async def sync_markets_endpoint(
    request: MarketSyncRequest,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
    policy: ScoringPolicy = Depends(get_policy),
):
    """Recompute and upsert the catalog for the posted match snapshots (admin only)."""
    logger.info("Manual market sync of %d matches triggered by %s", len(request.matches), user)
    snapshots = _parse_snapshots(m.model_dump() for m in request.matches)
    summary = sync_markets(snapshots, MarketOutcomeRepository(db), policy=policy)
    return SyncSummaryResponse(**summary.__dict__)


@app.post("/api/admin/parlays/generate-best", response_model=GenerateBestResponse)
async def generate_best_endpoint(
    request: GenerateBestRequest,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
    policy: ScoringPolicy = Depends(get_policy),
):
    """Build, classify and persist multi-match parlays from the stored catalog (admin only)."""
    logger.info("Parlay generation (%s) triggered by %s", request.strategy, user)
    try:
        return generate_best_parlays(
            db,
            policy,
            _STRATEGIES[request.strategy](),
            match_ids=request.match_ids,
            max_legs_per_match=request.max_legs_per_match,
        )
    except Exception as exc:
        logger.error("Parlay generation failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail=str(exc))
