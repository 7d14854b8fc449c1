"""
Batch resync of the market catalog.

Each match's MarketOutcome set is a pure function of its own snapshot, so
matches are recomputed in parallel worker threads (no DB access) and the
results are written back from the calling thread, one transaction per match.

A sync pass replaces a match's catalog wholesale: every computed outcome is
upserted with ``INSERT ... ON CONFLICT DO UPDATE`` on
``(match_id, market_type, market_subtype, line_key)`` and rows for that match
that were not recomputed are deleted. Concurrent passes over the same match
never append duplicates; the last writer wins.

A failing match is counted, logged with its match_id and skipped; the batch
always runs to completion.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from edge_engine.core.scoring_policy import ScoringPolicy
from edge_engine.models import MarketOutcomeRecord
from edge_engine.services.consensus import ModelOutput, as_float
from edge_engine.services.market_catalog import (
    MarketKey,
    MarketOutcome,
    SecondaryMarkets,
    build_market_outcomes,
)

logger = logging.getLogger(__name__)

SYNC_MAX_WORKERS = int(os.getenv("MARKET_SYNC_MAX_WORKERS", "4"))

STATUS_UPCOMING = "UPCOMING"

# Columns copied between MarketOutcome and MarketOutcomeRecord
_OUTCOME_COLUMNS = (
    "consensus_prob",
    "consensus_confidence",
    "model_agreement",
    "v1_prob",
    "v1_confidence",
    "v1_pick",
    "v2_prob",
    "v2_confidence",
    "v2_pick",
    "risk_level",
    "edge",
    "decimal_odds",
    "implied_prob",
    "settle_type",
    "data_source",
)

_KEY_COLUMNS = ("match_id", "market_type", "market_subtype", "line_key")

# Dialects with a native INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}

RowKey = Tuple[str, str, str, str]


def line_key(line: Optional[float]) -> str:
    """Non-null key form of a totals line (``""`` for markets without one)."""
    return "" if line is None else f"{line:g}"


def _row_key(outcome: MarketOutcome) -> RowKey:
    return (
        outcome.match_id,
        outcome.market_type,
        outcome.market_subtype or "",
        line_key(outcome.line),
    )


def parse_kickoff(value: Any) -> Optional[datetime]:
    """Parse a kickoff time to a naive UTC datetime, or ``None``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        kickoff = value
    else:
        try:
            kickoff = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Ignoring malformed kickoff time %r", value)
            return None
    if kickoff.tzinfo is not None:
        kickoff = kickoff.astimezone(timezone.utc).replace(tzinfo=None)
    return kickoff


@dataclass
class MatchSnapshot:
    """Read-only inputs for one match at sync time."""

    match_id: str
    v1: Optional[ModelOutput] = None
    v2: Optional[ModelOutput] = None
    secondary: Optional[SecondaryMarkets] = None
    odds: Dict[MarketKey, float] = field(default_factory=dict)
    league: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    kickoff_at: Optional[datetime] = None
    status: str = STATUS_UPCOMING

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MatchSnapshot":
        """
        Parse an upstream match payload.

        Accepts ``match_id`` or ``id``; model snapshots under ``v1``/``v2``
        or ``models.v1_consensus``/``models.v2_lightgbm``; secondary markets
        under ``additional_markets_v2``; bookmaker prices as a list of
        ``{market_type, market_subtype, line, decimal_odds}``; and the kickoff
        under ``kickoff_at``, ``kickoff_date`` or ``kickoffDate``.

        Raises:
            ValueError: If the payload has no match identifier.
        """
        match_id = data.get("match_id") or data.get("id")
        if match_id in (None, ""):
            raise ValueError("Match payload has no match_id")
        match_id = str(match_id)

        models = data.get("models") or {}
        v1 = data.get("v1") or models.get("v1_consensus")
        v2 = data.get("v2") or models.get("v2_lightgbm")

        odds: Dict[MarketKey, float] = {}
        for row in data.get("odds") or []:
            price = as_float(row.get("decimal_odds"))
            if price is None:
                continue
            line = as_float(row.get("line"))
            key = (match_id, row.get("market_type"), row.get("market_subtype"), line)
            odds[key] = price

        kickoff = data.get("kickoff_at") or data.get("kickoff_date") or data.get("kickoffDate")
        return cls(
            match_id=match_id,
            v1=ModelOutput.from_dict(v1),
            v2=ModelOutput.from_dict(v2),
            secondary=SecondaryMarkets.from_dict(data.get("additional_markets_v2")),
            odds=odds,
            league=data.get("league"),
            home_team=data.get("home_team"),
            away_team=data.get("away_team"),
            kickoff_at=parse_kickoff(kickoff),
            status=str(data.get("status") or STATUS_UPCOMING).upper(),
        )


@dataclass
class SyncSummary:
    total: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: int = 0
    failed_match_ids: List[str] = field(default_factory=list)


def compute_match_outcomes(
    snapshot: MatchSnapshot,
    policy: Optional[ScoringPolicy] = None,
) -> List[MarketOutcome]:
    """Pure recomputation of one match's catalog."""
    return build_market_outcomes(
        snapshot.match_id,
        snapshot.v1,
        snapshot.v2,
        snapshot.secondary,
        policy=policy,
        odds=snapshot.odds,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class MarketOutcomeRepository:
    """Upsert and query MarketOutcomeRecord rows through one session."""

    def __init__(self, db: Session):
        self.db = db

    def _existing(self, match_ids: Iterable[str]) -> Dict[RowKey, int]:
        rows = (
            self.db.query(
                MarketOutcomeRecord.id,
                MarketOutcomeRecord.match_id,
                MarketOutcomeRecord.market_type,
                MarketOutcomeRecord.market_subtype,
                MarketOutcomeRecord.line_key,
            )
            .filter(MarketOutcomeRecord.match_id.in_(list(match_ids)))
            .all()
        )
        return {(r.match_id, r.market_type, r.market_subtype, r.line_key): r.id for r in rows}

    def _upsert(
        self,
        outcomes: List[MarketOutcome],
        kickoff_at: Optional[datetime],
        match_status: str,
    ) -> None:
        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Catalog upsert is not supported on the {dialect!r} dialect")

        now = datetime.utcnow()
        rows = []
        for outcome in outcomes:
            row = dict(zip(_KEY_COLUMNS, _row_key(outcome)))
            row.update({col: getattr(outcome, col) for col in _OUTCOME_COLUMNS})
            row.update(
                line=outcome.line,
                correlation_tags=list(outcome.correlation_tags),
                kickoff_at=kickoff_at,
                match_status=match_status,
                created_at=now,
                updated_at=now,
            )
            rows.append(row)

        stmt = insert(MarketOutcomeRecord.__table__)
        overwrite = _OUTCOME_COLUMNS + (
            "line", "correlation_tags", "kickoff_at", "match_status", "updated_at",
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_KEY_COLUMNS),
            set_={col: stmt.excluded[col] for col in overwrite},
        )
        self.db.execute(stmt, rows)

    def upsert_many(
        self,
        outcomes: Iterable[MarketOutcome],
        *,
        kickoff_at: Optional[datetime] = None,
        match_status: str = STATUS_UPCOMING,
    ) -> Dict[str, int]:
        """
        Write outcomes in a single transaction, overwriting existing keys.

        Returns:
            ``{"created": n, "updated": m}``
        """
        outcomes = list(outcomes)
        if not outcomes:
            return {"created": 0, "updated": 0}
        try:
            existing = self._existing({o.match_id for o in outcomes})
            updated = sum(1 for o in outcomes if _row_key(o) in existing)
            self._upsert(outcomes, kickoff_at, match_status)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return {"created": len(outcomes) - updated, "updated": updated}

    def replace_match(
        self,
        match_id: str,
        outcomes: Iterable[MarketOutcome],
        *,
        kickoff_at: Optional[datetime] = None,
        match_status: str = STATUS_UPCOMING,
    ) -> Dict[str, int]:
        """
        Replace one match's catalog in a single transaction.

        Computed outcomes are upserted; stored rows for the match that were
        not recomputed are deleted.

        Returns:
            ``{"created": n, "updated": m, "removed": k}``
        """
        outcomes = [o for o in outcomes if o.match_id == match_id]
        try:
            existing = self._existing([match_id])
            fresh = {_row_key(o) for o in outcomes}
            stale_ids = [row_id for key, row_id in existing.items() if key not in fresh]
            if outcomes:
                self._upsert(outcomes, kickoff_at, match_status)
            if stale_ids:
                self.db.query(MarketOutcomeRecord).filter(
                    MarketOutcomeRecord.id.in_(stale_ids)
                ).delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        updated = len(fresh & set(existing))
        if stale_ids:
            logger.info("Removed %d stale market rows for match %s", len(stale_ids), match_id)
        return {"created": len(fresh) - updated, "updated": updated, "removed": len(stale_ids)}

    def has_match(self, match_id: str) -> bool:
        return (
            self.db.query(MarketOutcomeRecord.id)
            .filter(MarketOutcomeRecord.match_id == match_id)
            .first()
            is not None
        )

    def list_for_match(
        self,
        match_id: str,
        market_type: Optional[str] = None,
        min_prob: float = 0.0,
        min_agreement: float = 0.0,
    ) -> List[MarketOutcomeRecord]:
        q = self.db.query(MarketOutcomeRecord).filter(
            MarketOutcomeRecord.match_id == match_id,
            MarketOutcomeRecord.consensus_prob >= min_prob,
            MarketOutcomeRecord.model_agreement >= min_agreement,
        )
        if market_type:
            q = q.filter(MarketOutcomeRecord.market_type == market_type)
        return q.order_by(
            MarketOutcomeRecord.consensus_prob.desc(),
            MarketOutcomeRecord.model_agreement.desc(),
        ).all()

    def load_outcomes(
        self,
        match_ids: Optional[Iterable[str]] = None,
        *,
        upcoming_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[MarketOutcome]:
        """
        Load stored rows back into MarketOutcome objects.

        With ``upcoming_only`` only matches whose status is UPCOMING and whose
        kickoff is unknown or not yet passed are returned.
        """
        q = self.db.query(MarketOutcomeRecord)
        if match_ids is not None:
            q = q.filter(MarketOutcomeRecord.match_id.in_(list(match_ids)))
        if upcoming_only:
            now = now or datetime.utcnow()
            q = q.filter(
                MarketOutcomeRecord.match_status == STATUS_UPCOMING,
                or_(
                    MarketOutcomeRecord.kickoff_at.is_(None),
                    MarketOutcomeRecord.kickoff_at >= now,
                ),
            )
        rows = q.order_by(MarketOutcomeRecord.match_id, MarketOutcomeRecord.id).all()
        return [record_to_outcome(r) for r in rows]


def record_to_outcome(row: MarketOutcomeRecord) -> MarketOutcome:
    outcome = MarketOutcome(
        match_id=row.match_id,
        market_type=row.market_type,
        market_subtype=row.market_subtype or None,
        line=row.line,
        consensus_prob=row.consensus_prob,
        consensus_confidence=row.consensus_confidence,
        model_agreement=row.model_agreement,
        correlation_tags=list(row.correlation_tags or []),
    )
    for col in _OUTCOME_COLUMNS:
        value = getattr(row, col)
        if value is not None:
            setattr(outcome, col, value)
    return outcome


# ---------------------------------------------------------------------------
# Batch sync
# ---------------------------------------------------------------------------

def sync_markets(
    snapshots: Iterable[MatchSnapshot],
    repository: MarketOutcomeRepository,
    *,
    policy: Optional[ScoringPolicy] = None,
    max_workers: int = SYNC_MAX_WORKERS,
) -> SyncSummary:
    """
    Recompute and replace the catalog for every snapshot.

    Args:
        snapshots: Match snapshots. When a match_id repeats, the last
            snapshot wins and the others are counted as duplicates.
        repository: Writer for the computed outcomes.
        policy: Scoring policy.
        max_workers: Thread pool size for the pure computation step.

    Returns:
        SyncSummary with per-match counters.
    """
    policy = policy or ScoringPolicy.default()
    snapshots = list(snapshots)
    summary = SyncSummary(total=len(snapshots))

    unique: Dict[str, MatchSnapshot] = {}
    for snap in snapshots:
        if snap.match_id in unique:
            summary.duplicates += 1
        unique[snap.match_id] = snap
    if summary.duplicates:
        logger.warning("Dropped %d duplicate match snapshots from sync batch", summary.duplicates)
    logger.info("Starting market sync for %d matches (%d workers)", len(unique), max_workers)

    # Step 1: parallel computation (no DB access)
    computed: Dict[str, List[MarketOutcome]] = {}
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(compute_match_outcomes, snap, policy): match_id
            for match_id, snap in unique.items()
        }
        for future in as_completed(futures):
            match_id = futures[future]
            try:
                computed[match_id] = future.result()
            except Exception as exc:
                summary.errors += 1
                summary.failed_match_ids.append(match_id)
                logger.error("Market computation failed for match %s: %s", match_id, exc, exc_info=True)

    # Step 2: store results (calling thread, one transaction per match)
    for match_id, snap in unique.items():
        outcomes = computed.get(match_id)
        if outcomes is None:
            continue
        try:
            counts = repository.replace_match(
                match_id,
                outcomes,
                kickoff_at=snap.kickoff_at,
                match_status=snap.status,
            )
        except Exception as exc:
            summary.errors += 1
            summary.failed_match_ids.append(match_id)
            logger.error("Market upsert failed for match %s: %s", match_id, exc, exc_info=True)
            continue
        summary.removed += counts["removed"]
        if not outcomes:
            summary.skipped += 1
            logger.debug("No market outcomes for match %s", match_id)
            continue
        summary.processed += 1
        summary.created += counts["created"]
        summary.updated += counts["updated"]

    logger.info(
        "Market sync done: %d/%d processed, %d created, %d updated, %d removed, "
        "%d skipped, %d duplicates, %d errors",
        summary.processed, summary.total, summary.created, summary.updated,
        summary.removed, summary.skipped, summary.duplicates, summary.errors,
    )
    return summary
