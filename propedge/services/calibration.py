"""
Calibration metrics from settled wager legs.

Every resolved leg contributes one (predicted probability, realized result)
pair.  Pairs are grouped three ways:

    engine              originating engine name
    prop_type           canonical stat type
    probability_bucket  below_55 | 55_60 | 60_70 | 70_80 | 80_plus

For each group: accuracy = (hits + pushes) / resolved, mean predicted
probability, calibration factor = accuracy / mean predicted, and Brier
score.  Groups below the minimum sample are kept but flagged
``insufficient``.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from propedge.core.records import HIT, MISS, PUSH
from propedge.models import CalibrationMetric, WagerLog
from propedge.services.store import upsert_calibration_metric

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tuning constants
# ---------------------------------------------------------------------------

MIN_CALIBRATION_SAMPLE = int(os.getenv("MIN_CALIBRATION_SAMPLE", "10"))

DIMENSION_ENGINE = "engine"
DIMENSION_PROP_TYPE = "prop_type"
DIMENSION_BUCKET = "probability_bucket"

SAMPLE_OK = "ok"
SAMPLE_INSUFFICIENT = "insufficient"

# (label, lower bound inclusive); checked top-down
_BUCKETS: Tuple[Tuple[str, float], ...] = (
    ("80_plus", 0.80),
    ("70_80", 0.70),
    ("60_70", 0.60),
    ("55_60", 0.55),
    ("below_55", 0.0),
)


def probability_bucket(p: float) -> str:
    for label, lower in _BUCKETS:
        if p >= lower:
            return label
    return _BUCKETS[-1][0]


# ---------------------------------------------------------------------------
# Data fetching
# ---------------------------------------------------------------------------

def _fetch_resolved_legs(db: Session) -> List[Dict]:
    """Flatten every resolved leg of every settled wager."""
    records: List[Dict] = []
    rows = db.query(WagerLog).filter(WagerLog.settled_at.isnot(None)).all()
    for row in rows:
        for leg, detail in zip(row.legs or [], row.leg_outcomes or []):
            outcome = detail.get("outcome")
            if outcome not in (HIT, MISS, PUSH):
                continue
            prob = leg.get("predicted_probability")
            if prob is None:
                continue
            records.append({
                "engine": leg.get("engine") or "unknown",
                "prop_type": leg.get("stat_type") or "unknown",
                "predicted": float(prob),
                "outcome": outcome,
            })
    return records


# ---------------------------------------------------------------------------
# Aggregation (pure)
# ---------------------------------------------------------------------------

def summarize_group(records: List[Dict], min_sample: int = MIN_CALIBRATION_SAMPLE) -> Dict:
    total = len(records)
    hits = sum(1 for r in records if r["outcome"] == HIT)
    pushes = sum(1 for r in records if r["outcome"] == PUSH)
    misses = total - hits - pushes
    if total == 0:
        return {
            "total": 0, "hits": 0, "misses": 0, "pushes": 0,
            "accuracy": None, "mean_predicted": None,
            "calibration_factor": None, "brier_score": None,
            "sample_status": SAMPLE_INSUFFICIENT,
        }

    accuracy = (hits + pushes) / total
    mean_pred = sum(r["predicted"] for r in records) / total
    brier = sum(
        (r["predicted"] - (0.0 if r["outcome"] == MISS else 1.0)) ** 2 for r in records
    ) / total
    return {
        "total": total,
        "hits": hits,
        "misses": misses,
        "pushes": pushes,
        "accuracy": round(accuracy, 4),
        "mean_predicted": round(mean_pred, 4),
        "calibration_factor": round(accuracy / mean_pred, 4) if mean_pred > 0 else None,
        "brier_score": round(brier, 4),
        "sample_status": SAMPLE_OK if total >= min_sample else SAMPLE_INSUFFICIENT,
    }


def compute_calibration(
    records: List[Dict],
    min_sample: int = MIN_CALIBRATION_SAMPLE,
) -> Dict[Tuple[str, str], Dict]:
    """Group records by each dimension and summarize every group."""
    groups: Dict[Tuple[str, str], List[Dict]] = {}
    for r in records:
        for key in (
            (DIMENSION_ENGINE, r["engine"]),
            (DIMENSION_PROP_TYPE, r["prop_type"]),
            (DIMENSION_BUCKET, probability_bucket(r["predicted"])),
        ):
            groups.setdefault(key, []).append(r)
    return {key: summarize_group(recs, min_sample) for key, recs in groups.items()}


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

def run_recalibration(db: Session, min_sample: int = MIN_CALIBRATION_SAMPLE) -> Dict:
    """Re-aggregate every calibration group from settled legs and upsert the rows."""
    records = _fetch_resolved_legs(db)
    metrics = compute_calibration(records, min_sample)

    for (dimension, value), stats in metrics.items():
        with db.begin_nested():
            upsert_calibration_metric(db, dimension, value, stats)
    db.commit()

    insufficient = sum(1 for s in metrics.values() if s["sample_status"] == SAMPLE_INSUFFICIENT)
    logger.info(
        "Recalibration: %d resolved legs → %d groups (%d insufficient)",
        len(records), len(metrics), insufficient,
    )
    return {
        "status": "success",
        "legs_analyzed": len(records),
        "groups_updated": len(metrics),
        "insufficient_groups": insufficient,
        "timestamp": datetime.utcnow().isoformat(),
    }


def get_metrics(db: Session, dimension: Optional[str] = None) -> List[Dict]:
    q = db.query(CalibrationMetric)
    if dimension:
        q = q.filter(CalibrationMetric.dimension == dimension)
    rows = q.order_by(CalibrationMetric.dimension, CalibrationMetric.dimension_value).all()
    return [
        {
            "dimension": r.dimension,
            "dimension_value": r.dimension_value,
            "total": r.total,
            "hits": r.hits,
            "misses": r.misses,
            "pushes": r.pushes,
            "accuracy": r.accuracy,
            "mean_predicted": r.mean_predicted,
            "calibration_factor": r.calibration_factor,
            "brier_score": r.brier_score,
            "sample_status": r.sample_status,
        }
        for r in rows
    ]
