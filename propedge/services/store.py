"""
Natural-key persistence for lines, assessments, wagers and calibration rows.

Every write is an idempotent upsert (query by key, then update or insert).
Batch writers wrap each item in a SAVEPOINT so one bad row never rolls back
the rest of the run.
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propedge.core.records import (
    SKIPPED,
    SUCCESS,
    BatchReport,
    EdgeAssessment,
    ItemResult,
    Leg,
    PropLine,
    Wager,
)
from propedge.models import CalibrationMetric, DataFetch, EdgeRecord, LineOffer, WagerLog

logger = logging.getLogger(__name__)

_SUB_MEDIAN_FIELDS = (
    "m1_recent_form",
    "m2_matchup",
    "m3_minutes_normalized",
    "m4_per_minute",
    "m5_location",
)


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------

def upsert_prop_line(db: Session, prop: PropLine) -> LineOffer:
    """Insert a line once; repeated ingestion of the same key refreshes odds only."""
    key = dict(
        source=prop.source or "",
        event_id=prop.event_id or "",
        player=prop.player,
        stat_type=prop.stat_type,
        side=prop.side or "",
        line=prop.line,
    )
    row = db.query(LineOffer).filter_by(**key).first()
    if row is None:
        row = LineOffer(**key)
        db.add(row)
        row.odds_open = prop.odds_open if prop.odds_open is not None else prop.odds
    row.odds = prop.odds
    row.sport = prop.sport
    row.team = prop.team
    row.opponent = prop.opponent
    row.is_home = prop.is_home
    row.commence_time = prop.commence_time
    db.flush()
    return row


def line_from_row(row: LineOffer) -> PropLine:
    return PropLine(
        player=row.player,
        stat_type=row.stat_type,
        line=row.line,
        side=row.side or None,
        odds=row.odds,
        odds_open=row.odds_open,
        event_id=row.event_id or None,
        sport=row.sport or "nba",
        commence_time=row.commence_time,
        source=row.source or None,
        team=row.team,
        opponent=row.opponent,
        is_home=row.is_home,
    )


def load_active_lines(db: Session, now: Optional[datetime] = None) -> List[PropLine]:
    """Lines whose event has not started yet."""
    now = now or datetime.utcnow()
    rows = (
        db.query(LineOffer)
        .filter((LineOffer.commence_time.is_(None)) | (LineOffer.commence_time > now))
        .order_by(LineOffer.id)
        .all()
    )
    return [line_from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------

def upsert_assessment(db: Session, a: EdgeAssessment) -> EdgeRecord:
    """Supersede the previous assessment for the same natural key."""
    row = (
        db.query(EdgeRecord)
        .filter_by(player=a.player, stat_type=a.stat_type, offered_side=a.offered_side,
                   line=a.line, game_date=a.game_date)
        .first()
    )
    if row is None:
        row = EdgeRecord(player=a.player, stat_type=a.stat_type, offered_side=a.offered_side,
                         line=a.line, game_date=a.game_date)
        db.add(row)

    row.side = a.side
    row.recommendation = a.recommendation
    row.confidence_tier = a.confidence_tier
    row.confidence_flag = a.confidence_flag
    row.true_median = a.true_median
    row.edge = a.edge
    row.hit_rate = a.hit_rate
    row.volatility = a.volatility
    row.std_dev = a.std_dev
    row.games_analyzed = a.games_analyzed
    row.defense_rank = a.defense_rank
    row.alt_line_suggestion = a.alt_line_suggestion
    row.reason_summary = a.reason_summary
    row.sub_medians = {f: getattr(a, f) for f in _SUB_MEDIAN_FIELDS}
    row.adjustments = {
        **a.adjustments,
        "defense_multiplier": a.defense_multiplier,
        "is_volatile": a.is_volatile,
    }
    row.team = a.team
    row.opponent = a.opponent
    row.event_id = a.event_id
    row.source = a.source
    row.engine = a.engine
    db.flush()
    return row


def assessment_from_row(row: EdgeRecord) -> EdgeAssessment:
    subs = row.sub_medians or {}
    extra = dict(row.adjustments or {})
    multiplier = extra.pop("defense_multiplier", 1.0)
    volatile = extra.pop("is_volatile", False)
    return EdgeAssessment(
        player=row.player,
        stat_type=row.stat_type,
        side=row.side,
        line=row.line,
        game_date=row.game_date,
        recommendation=row.recommendation,
        confidence_tier=row.confidence_tier,
        true_median=row.true_median,
        edge=row.edge,
        volatility=row.volatility,
        std_dev=row.std_dev,
        hit_rate=row.hit_rate,
        games_analyzed=row.games_analyzed,
        defense_rank=row.defense_rank,
        defense_multiplier=multiplier,
        adjustments=extra,
        confidence_flag=row.confidence_flag or "NORMAL",
        alt_line_suggestion=row.alt_line_suggestion,
        reason_summary=row.reason_summary or "",
        is_volatile=bool(volatile),
        event_id=row.event_id,
        team=row.team,
        opponent=row.opponent,
        source=row.source,
        engine=row.engine or "median_edge",
        offered_side=row.offered_side or "",
        **{f: subs.get(f, 0.0) for f in _SUB_MEDIAN_FIELDS},
    )


def load_assessments(
    db: Session,
    game_date: Optional[date] = None,
    actionable_only: bool = False,
) -> List[EdgeAssessment]:
    q = db.query(EdgeRecord)
    if game_date is not None:
        q = q.filter(EdgeRecord.game_date == game_date)
    if actionable_only:
        q = q.filter(EdgeRecord.recommendation != "NO BET")
    rows = q.order_by(EdgeRecord.id).all()
    return [assessment_from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Wagers
# ---------------------------------------------------------------------------

def save_wager(db: Session, wager: Wager) -> Tuple[WagerLog, bool]:
    """
    Persist a wager once.  Returns (row, created).

    An existing row for the same key is returned untouched: legs and the
    original metrics are never rewritten.
    """
    signature = wager.leg_signature
    row = (
        db.query(WagerLog)
        .filter_by(wager_date=wager.wager_date, tier=wager.tier,
                   variant=wager.variant, leg_signature=signature)
        .first()
    )
    if row is not None:
        return row, False

    data = wager.to_dict()
    row = WagerLog(
        wager_date=wager.wager_date,
        tier=wager.tier,
        variant=wager.variant,
        leg_signature=signature,
        legs=data["legs"],
        num_legs=data["num_legs"],
        total_edge=wager.total_edge,
        combined_hit_rate=wager.combined_hit_rate,
        confidence_score=wager.confidence_score,
        duo_count=wager.duo_count,
    )
    db.add(row)
    db.flush()
    return row, True


def legs_from_row(row: WagerLog) -> List[Leg]:
    return [Leg(**leg) for leg in (row.legs or [])]


def wagers_to_settle(
    db: Session,
    reverify: bool = False,
    wager_date: Optional[date] = None,
    unresolved: Iterable[str] = ("pending", "partial", "no_data"),
) -> List[WagerLog]:
    """Unverified (or still-open) wagers; every wager when ``reverify``."""
    q = db.query(WagerLog)
    if wager_date is not None:
        q = q.filter(WagerLog.wager_date == wager_date)
    if not reverify:
        q = q.filter(WagerLog.outcome.is_(None) | WagerLog.outcome.in_(list(unresolved)))
    return q.order_by(WagerLog.wager_date, WagerLog.id).all()


# ---------------------------------------------------------------------------
# Calibration / monitoring
# ---------------------------------------------------------------------------

def upsert_calibration_metric(db: Session, dimension: str, value: str, stats: Dict) -> CalibrationMetric:
    row = (
        db.query(CalibrationMetric)
        .filter_by(dimension=dimension, dimension_value=value)
        .first()
    )
    if row is None:
        row = CalibrationMetric(dimension=dimension, dimension_value=value)
        db.add(row)
    for field_name, field_value in stats.items():
        setattr(row, field_name, field_value)
    db.flush()
    return row


def record_fetch(
    db: Session,
    source: str,
    success: bool,
    records: int = 0,
    error: Optional[str] = None,
    response_time_ms: Optional[int] = None,
) -> None:
    db.add(DataFetch(
        data_source=source,
        success=success,
        records_fetched=records,
        error_message=error[:500] if error else None,
        response_time_ms=response_time_ms,
    ))
    db.commit()


# ---------------------------------------------------------------------------
# Per-item savepoint loop
# ---------------------------------------------------------------------------

def persist_each(
    db: Session,
    items: Iterable,
    writer: Callable[[Session, object], object],
    key: Callable[[object], str],
    report: Optional[BatchReport] = None,
) -> BatchReport:
    """
    Write each item inside its own savepoint and commit once at the end.

    A database error on one item becomes a ``skipped`` entry with reason
    ``persist_error``; the remaining items are still written.
    """
    report = report if report is not None else BatchReport()
    for item in items:
        k = key(item)
        try:
            with db.begin_nested():
                writer(db, item)
            report.add(ItemResult(SUCCESS, k))
        except SQLAlchemyError as exc:
            logger.warning("Persist failed for %s: %s", k, exc)
            report.add(ItemResult(SKIPPED, k, reason="persist_error", detail={"error": str(exc)[:200]}))
    db.commit()
    return report
