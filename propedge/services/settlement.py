"""
Wager settlement.

Resolves each unverified wager's legs with the OutcomeMatcher and derives a
wager-level outcome.  Only ``outcome``, ``settled_at``, ``leg_outcomes``,
``legs_hit`` and ``legs_missed`` are written; legs and original metrics stay
as assembled.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propedge.core.records import (
    HIT,
    LOST,
    MISS,
    NO_DATA,
    PARTIAL,
    PENDING,
    PUSH,
    SKIPPED,
    SUCCESS,
    WON,
    BatchReport,
    ItemResult,
)
from propedge.models import WagerLog
from propedge.services.outcome_matcher import OutcomeMatcher
from propedge.services.store import legs_from_row, wagers_to_settle

logger = logging.getLogger(__name__)

WAGER_PARTIAL_POLICY = os.getenv("WAGER_PARTIAL_POLICY", PENDING)


def derive_wager_outcome(leg_outcomes: Sequence[str], partial_policy: str = WAGER_PARTIAL_POLICY) -> str:
    """
    Combine leg outcomes into a wager outcome.

      any miss                      → lost (even with unresolved legs)
      nothing resolved              → no_data
      everything resolved, no miss  → won (pushes never break a win)
      some resolved, rest pending   → ``partial_policy`` (pending | partial)
    """
    if any(o == MISS for o in leg_outcomes):
        return LOST
    resolved = [o for o in leg_outcomes if o in (HIT, PUSH)]
    if not resolved:
        return NO_DATA
    if len(resolved) == len(leg_outcomes):
        return WON
    return PARTIAL if partial_policy == PARTIAL else PENDING


def settle_wagers(
    db: Session,
    matcher: OutcomeMatcher,
    reverify: bool = False,
    wager_date=None,
    partial_policy: str = WAGER_PARTIAL_POLICY,
    now: Optional[datetime] = None,
) -> Dict:
    """Settle every open wager (or every wager when ``reverify``)."""
    now = now or datetime.utcnow()
    report = BatchReport()
    counts: Dict[str, int] = {}
    settled: List[Dict] = []

    rows = wagers_to_settle(db, reverify=reverify, wager_date=wager_date)
    logger.info("Settling %d wager(s) (reverify=%s)", len(rows), reverify)

    for row in rows:
        key = f"wager:{row.id}"
        try:
            with db.begin_nested():
                legs = legs_from_row(row)
                resolutions = matcher.resolve_all(legs, row.wager_date)
                outcomes = [r.outcome for r in resolutions]
                outcome = derive_wager_outcome(outcomes, partial_policy)

                row.outcome = outcome
                row.settled_at = now
                row.leg_outcomes = [
                    {"player": leg.player or leg.team, "stat_type": leg.stat_type, **res.to_dict()}
                    for leg, res in zip(legs, resolutions)
                ]
                row.legs_hit = outcomes.count(HIT)
                row.legs_missed = outcomes.count(MISS)
        except SQLAlchemyError as exc:
            logger.error("Error settling wager %d: %s", row.id, exc)
            report.add(ItemResult(SKIPPED, key, reason="persist_error"))
            continue

        counts[outcome] = counts.get(outcome, 0) + 1
        status = NO_DATA if outcome == NO_DATA else SUCCESS
        report.add(ItemResult(status, key, reason="no_data" if status == NO_DATA else None,
                              detail={"outcome": outcome}))
        settled.append({
            "wager_id": row.id,
            "tier": row.tier,
            "variant": row.variant,
            "outcome": outcome,
            "legs_hit": row.legs_hit,
            "legs_missed": row.legs_missed,
        })
        logger.info("Wager %d (%s/%s): %s [%d hit, %d miss]",
                    row.id, row.tier, row.variant, outcome.upper(), row.legs_hit, row.legs_missed)

    db.commit()
    return {
        "status": "success",
        "wagers_checked": len(rows),
        "outcomes": counts,
        "wagers": settled,
        **report.summary(),
        "timestamp": now.isoformat(),
    }


def variant_comparison(db: Session, wager_date=None) -> Dict[str, Dict]:
    """Settled win rates per A/B variant."""
    q = db.query(WagerLog).filter(WagerLog.outcome.in_([WON, LOST]))
    if wager_date is not None:
        q = q.filter(WagerLog.wager_date == wager_date)
    out: Dict[str, Dict] = {}
    for row in q.all():
        bucket = out.setdefault(row.variant, {"won": 0, "lost": 0})
        bucket[row.outcome] += 1
    for bucket in out.values():
        decided = bucket["won"] + bucket["lost"]
        bucket["win_rate"] = bucket["won"] / decided if decided else None
    return out
