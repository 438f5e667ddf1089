"""
Action dispatcher: one entry point per component.

    run_action("edge", "analyze", {...}, db=db)

Each action returns a summary dict.  A top-level ``"status": "error"`` is
returned only when the whole run failed (unreachable feed, invariant
violation, bad request); per-item gaps are reported as counts inside a
successful summary.
"""

import dataclasses
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from propedge.core.errors import PropEdgeError, ValidationError
from propedge.core.records import STRONG, SUCCESS, BatchReport, EdgeAssessment, EdgeContext, PropLine
from propedge.core.stat_config import DEFAULT_RISK_TIERS, EngineConfig
from propedge.models import SessionLocal, WagerLog
from propedge.services import calibration, ingestion, store
from propedge.services.duo_detector import detect_duo_stacks
from propedge.services.edge_engine import EdgeEngine
from propedge.services.feeds import FeedClient
from propedge.services.outcome_matcher import (
    MATCH_WINDOW_DAYS_AFTER,
    MATCH_WINDOW_DAYS_BEFORE,
    OutcomeMatcher,
)
from propedge.services.parlay_assembler import CONTROL_WEIGHTS, VARIANT_WEIGHTS, build_tiered_wagers
from propedge.services.settlement import WAGER_PARTIAL_POLICY, settle_wagers, variant_comparison

logger = logging.getLogger(__name__)

TOP_RESULTS = 10


def _parse_date(value: Any, default: Optional[date] = None) -> Optional[date]:
    if value is None or value == "":
        return default
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(f"invalid date {value!r}", reason="invalid_date") from exc


def _summary(status: str = "success", **fields) -> Dict:
    return {"status": status, **fields, "timestamp": datetime.utcnow().isoformat()}


# ---------------------------------------------------------------------------
# Edge
# ---------------------------------------------------------------------------

def _contexts_for(
    props: Sequence[PropLine],
    raw_contexts: Dict[str, Dict],
    defense: Dict[Tuple[str, str], int],
    config: EngineConfig,
) -> Dict[str, EdgeContext]:
    """Per-player context; the defense table fills in a missing rank."""
    contexts: Dict[str, EdgeContext] = {}
    for prop in props:
        key = prop.player.lower()
        if key in contexts:
            continue
        ctx = ingestion.to_edge_context(raw_contexts.get(key) or {}, prop, config)
        if ctx.defense_rank is None and ctx.defense_code is None:
            rank = ingestion.lookup_defense_rank(defense, ctx.opponent, prop.stat_type, config)
            if rank is not None:
                ctx = dataclasses.replace(ctx, defense_rank=rank)
        contexts[key] = ctx
    return contexts


def _analyze(
    db: Session,
    props: List[PropLine],
    raw_histories: Dict[str, List[Dict]],
    raw_contexts: Dict[str, Dict],
    raw_defense: List[Dict],
    as_of: Optional[date],
    config: EngineConfig,
    report: BatchReport,
) -> Dict:
    histories = {
        name.lower(): ingestion.normalize_logs(rows, player=name)
        for name, rows in raw_histories.items()
    }
    defense = ingestion.defense_table(raw_defense, config)
    contexts = _contexts_for(props, {k.lower(): v for k, v in raw_contexts.items()}, defense, config)

    engine = EdgeEngine(config)
    assessments, report = engine.analyze_batch(props, histories, contexts, as_of=as_of, report=report)

    store.persist_each(db, props, store.upsert_prop_line,
                       key=lambda p: f"line:{p.player}|{p.stat_type}|{p.line:g}")
    persisted = store.persist_each(db, assessments, store.upsert_assessment,
                                   key=lambda a: f"{a.player}|{a.stat_type}|{a.line:g}")

    actionable = sorted((a for a in assessments if a.is_actionable),
                        key=lambda a: abs(a.edge), reverse=True)
    return _summary(
        props_received=len(props),
        assessed=len(assessments),
        actionable=len(actionable),
        strong=sum(1 for a in actionable if a.tier == STRONG),
        persisted=persisted.count(SUCCESS),
        top_picks=[a.to_dict() for a in actionable[:TOP_RESULTS]],
        **report.summary(),
    )


def edge_analyze(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    """Analyze caller-supplied lines, histories and context."""
    lines, report = ingestion.normalize_lines(params.get("props") or [], config)
    return _analyze(
        db, lines,
        params.get("histories") or {},
        params.get("contexts") or {},
        params.get("defense") or [],
        _parse_date(params.get("as_of")),
        config, report,
    )


def edge_analyze_auto(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    """Pull active lines, histories and defense from the feeds, then analyze."""
    feeds = feeds or FeedClient(db=db)
    sport = params.get("sport", "nba")
    lines, report = ingestion.normalize_lines(feeds.fetch_lines(sport), config)
    now = datetime.utcnow()
    active = [p for p in lines if p.is_active(now)]
    logger.info("analyze_auto: %d lines, %d active", len(lines), len(active))

    histories = feeds.fetch_histories([p.player for p in active], games=config.form_window)
    defense = feeds.fetch_defense(sport) if feeds.defense_url else []
    return _analyze(db, active, histories, params.get("contexts") or {}, defense,
                    _parse_date(params.get("as_of")), config, report)


def edge_get_picks(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    game_date = _parse_date(params.get("game_date"))
    min_tier = str(params.get("min_tier", "LEAN")).upper()
    limit = int(params.get("limit", 50))
    picks = store.load_assessments(db, game_date=game_date, actionable_only=True)
    if min_tier == "STRONG":
        picks = [a for a in picks if a.tier == STRONG]
    picks.sort(key=lambda a: abs(a.edge), reverse=True)
    return _summary(count=len(picks), picks=[a.to_dict() for a in picks[:limit]])


# ---------------------------------------------------------------------------
# Parlays
# ---------------------------------------------------------------------------

def parlays_generate(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    """
    Build one wager per risk tier (and per weight variant) from the
    stored actionable assessments for ``game_date``.

    InvariantViolation propagates: a duplicate-player wager is a defect.
    """
    game_date = _parse_date(params.get("game_date"), date.today())
    wanted = {t.lower() for t in params.get("tiers") or []}
    tiers = [t for t in DEFAULT_RISK_TIERS if not wanted or t.name in wanted]
    weight_sets = [CONTROL_WEIGHTS]
    if params.get("include_variant", True):
        weight_sets.append(VARIANT_WEIGHTS)

    candidates: List[EdgeAssessment] = store.load_assessments(db, game_date=game_date, actionable_only=True)
    duos = detect_duo_stacks(candidates)

    results = []
    saved = 0
    for weights in weight_sets:
        for result in build_tiered_wagers(candidates, duos, tiers, weights, game_date, config):
            entry = result.to_dict()
            if result.wager is not None:
                with db.begin_nested():
                    row, created = store.save_wager(db, result.wager)
                entry["wager_id"] = row.id
                entry["created"] = created
                saved += int(created)
            results.append(entry)
    db.commit()

    return _summary(
        game_date=game_date.isoformat(),
        candidates=len(candidates),
        duo_stacks=[d.to_dict() for d in duos],
        wagers_built=sum(1 for r in results if r["wager"]),
        wagers_saved=saved,
        results=results,
    )


def parlays_get_picks(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    game_date = _parse_date(params.get("game_date"))
    q = db.query(WagerLog)
    if game_date is not None:
        q = q.filter(WagerLog.wager_date == game_date)
    rows = q.order_by(WagerLog.wager_date.desc(), WagerLog.id).all()
    return _summary(count=len(rows), wagers=[
        {
            "wager_id": r.id,
            "wager_date": r.wager_date.isoformat(),
            "tier": r.tier,
            "variant": r.variant,
            "legs": r.legs,
            "total_edge": r.total_edge,
            "combined_hit_rate": r.combined_hit_rate,
            "confidence_score": r.confidence_score,
            "outcome": r.outcome,
            "legs_hit": r.legs_hit,
            "legs_missed": r.legs_missed,
        }
        for r in rows
    ])


# ---------------------------------------------------------------------------
# Outcomes / calibration
# ---------------------------------------------------------------------------

def outcomes_verify(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    """
    Settle open wagers (all wagers with ``reverify``) and recalibrate.

    Box scores and final scores come from ``params`` when supplied,
    otherwise from the feeds for the window around the open wagers.
    """
    reverify = bool(params.get("reverify", False))
    wager_date = _parse_date(params.get("wager_date"))
    policy = params.get("partial_policy", WAGER_PARTIAL_POLICY)

    raw_logs = params.get("logs")
    raw_results = params.get("results")
    if raw_logs is None or raw_results is None:
        open_rows = store.wagers_to_settle(db, reverify=reverify, wager_date=wager_date)
        if not open_rows:
            return _summary(wagers_checked=0, outcomes={}, wagers=[])
        dates = [r.wager_date for r in open_rows]
        start = min(dates) - timedelta(days=MATCH_WINDOW_DAYS_BEFORE)
        end = max(dates) + timedelta(days=MATCH_WINDOW_DAYS_AFTER)
        feeds = feeds or FeedClient(db=db)
        if raw_logs is None:
            raw_logs = feeds.fetch_box_scores(start, end)
        if raw_results is None:
            raw_results = feeds.fetch_scores(start, end) if feeds.scores_url else []

    matcher = OutcomeMatcher(
        ingestion.normalize_logs(raw_logs),
        ingestion.normalize_results(raw_results),
        config,
    )
    summary = settle_wagers(db, matcher, reverify=reverify, wager_date=wager_date, partial_policy=policy)
    summary["calibration"] = calibration.run_recalibration(db)
    return summary


def calibration_recalibrate(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    return calibration.run_recalibration(db, int(params.get("min_sample", calibration.MIN_CALIBRATION_SAMPLE)))


def calibration_get_metrics(db: Session, params: Dict, config: EngineConfig, feeds: Optional[FeedClient] = None) -> Dict:
    metrics = calibration.get_metrics(db, params.get("dimension"))
    return _summary(count=len(metrics), metrics=metrics, variants=variant_comparison(db))


ACTIONS: Dict[Tuple[str, str], Callable[..., Dict]] = {
    ("edge", "analyze"): edge_analyze,
    ("edge", "analyze_auto"): edge_analyze_auto,
    ("edge", "get_picks"): edge_get_picks,
    ("parlays", "generate_parlays"): parlays_generate,
    ("parlays", "get_picks"): parlays_get_picks,
    ("outcomes", "verify_outcomes"): outcomes_verify,
    ("calibration", "recalibrate"): calibration_recalibrate,
    ("calibration", "get_metrics"): calibration_get_metrics,
}


def run_action(
    component: str,
    action: str,
    params: Optional[Dict] = None,
    db: Optional[Session] = None,
    config: Optional[EngineConfig] = None,
    feeds: Optional[FeedClient] = None,
) -> Dict:
    """Dispatch one request; a failed run comes back as an error summary."""
    handler = ACTIONS.get((component, action))
    if handler is None:
        return _summary(
            "error",
            error=f"unknown action {component}/{action}",
            error_type=ValidationError.__name__,
        )

    own_session = db is None
    if own_session:
        db = SessionLocal()

    logger.info("Running %s/%s", component, action)
    try:
        return handler(db, params or {}, config or EngineConfig.nba(), feeds)
    except PropEdgeError as exc:
        logger.error("%s/%s failed: %s", component, action, exc, exc_info=True)
        db.rollback()
        return _summary("error", error=str(exc), error_type=type(exc).__name__)
    finally:
        if own_session:
            db.close()
