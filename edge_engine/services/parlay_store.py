"""
Persistence for classified multi-match parlay candidates.

Candidates are stored by signature (sorted ``match_id:outcome`` codes), so
regenerating the same combination refreshes its metrics instead of adding
a duplicate row.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, joinedload

from edge_engine.models import ParlayLegRecord, ParlayRecord
from edge_engine.services.parlay_engine import ParlayCandidate

logger = logging.getLogger(__name__)


def candidate_signature(candidate: ParlayCandidate) -> str:
    return "|".join(candidate.identity[1])


class ParlayRepository:
    """Upsert and list ParlayRecord rows through one session."""

    def __init__(self, db: Session):
        self.db = db

    def save_candidates(self, candidates: Iterable[ParlayCandidate]) -> Dict[str, int]:
        """
        Persist classified candidates in one transaction.

        Returns:
            ``{"created": n, "updated": m}``
        """
        created = updated = 0
        try:
            for c in candidates:
                signature = candidate_signature(c)
                row = self.db.query(ParlayRecord).filter(ParlayRecord.signature == signature).first()
                if row is None:
                    row = ParlayRecord(signature=signature)
                    self.db.add(row)
                    created += 1
                else:
                    row.legs.clear()
                    updated += 1

                row.parlay_type = c.parlay_type
                row.leg_count = c.leg_count
                row.combined_prob = c.combined_prob
                row.correlation_penalty = c.correlation_penalty
                row.adjusted_prob = c.adjusted_prob
                row.fair_odds = c.fair_odds
                row.implied_odds = c.implied_odds
                row.edge_pct = c.edge_pct
                row.confidence_tier = c.confidence_tier
                row.quality_score = c.quality_score
                row.is_tradable = c.quality_flags.is_tradable
                row.has_low_edge = c.quality_flags.has_low_edge
                row.has_low_probability = c.quality_flags.has_low_probability
                row.risk_level = c.quality_flags.risk_level
                row.independence_assumed = c.independence_assumed
                row.status = "active"

                for leg in c.legs:
                    row.legs.append(
                        ParlayLegRecord(
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
                    )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Saved parlays: %d created, %d updated", created, updated)
        return {"created": created, "updated": updated}

    def expire_missing(self, keep_signatures: Iterable[str]) -> int:
        """Mark active parlays whose signature is not in ``keep_signatures`` as expired."""
        keep = set(keep_signatures)
        try:
            stale = [
                row for row in self.db.query(ParlayRecord).filter(ParlayRecord.status == "active")
                if row.signature not in keep
            ]
            for row in stale:
                row.status = "expired"
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if stale:
            logger.info("Expired %d parlays that were not regenerated", len(stale))
        return len(stale)

    def list_parlays(
        self,
        tradable_only: bool = False,
        min_edge_pct: Optional[float] = None,
        limit: int = 50,
    ) -> List[ParlayRecord]:
        q = (
            self.db.query(ParlayRecord)
            .options(joinedload(ParlayRecord.legs))
            .filter(ParlayRecord.status == "active")
        )
        if tradable_only:
            q = q.filter(ParlayRecord.is_tradable.is_(True))
        if min_edge_pct is not None:
            q = q.filter(ParlayRecord.edge_pct >= min_edge_pct)
        return (
            q.order_by(ParlayRecord.quality_score.desc(), ParlayRecord.edge_pct.desc())
            .limit(limit)
            .all()
        )
