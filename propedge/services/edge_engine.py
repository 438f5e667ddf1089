"""
Median edge engine: converts a (PropLine, history) pair into an EdgeAssessment.

Five independent sub-medians are blended into a "true median":

    M1  recency-weighted median of the last 7 games          30%
    M2  matchup median vs. the same opponent (defense-adj.)  20%
    M3  minutes-log-normalized median, last 10 games         15%
    M4  per-minute production × expected minutes             20%
    M5  home/away split median                               15%

The true median is scaled by the opponent-defense multiplier, shifted by
scalar context adjustments (blowout risk, teammate out, minutes limit) and
compared against the book line.  The raw edge is blended 80/20 toward the
5-game recency median and dampened when the stat is volatile.

Recommendation gates
--------------------
    NO BET   games analyzed < 6, or |edge| ≥ 8 (pricing / context anomaly)
    LEAN     |edge| ≥ stat lean threshold and same-direction hit-rate ≥ 60%
    STRONG   |edge| ≥ stat strong threshold, hit-rate ≥ 70%, std ≤ 3.0,
             CV ≤ stat cap, ≥ 7 games analyzed
    STRONG → LEAN when the stat is volatile and the edge is extreme
             (trap line), or when std ≥ 3.5.

The engine is a pure function of its inputs: identical (PropLine, history,
context, as_of) always produce an identical EdgeAssessment.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from propedge.core import stats_math
from propedge.core.errors import DataUnavailableError, ValidationError
from propedge.core.records import (
    LEAN,
    NO_BET,
    NO_DATA,
    STRONG,
    SKIPPED,
    SUCCESS,
    BatchReport,
    EdgeAssessment,
    EdgeContext,
    GameLog,
    ItemResult,
    PropLine,
)
from propedge.core.stat_config import SIDE_OVER, SIDE_UNDER, EngineConfig, StatDef

logger = logging.getLogger(__name__)

CONFIDENCE_HIGH = "HIGH"
CONFIDENCE_MEDIUM = "MEDIUM"
CONFIDENCE_LOW = "LOW"

JUICE_LAG_SHARP = "JUICE_LAG_SHARP"
NORMAL_FLAG = "NORMAL"


class EdgeEngine:
    """Median-blend edge engine for player props."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig.nba()

    # ------------------------------------------------------------------ #
    #  Helpers                                                             #
    # ------------------------------------------------------------------ #

    def _team_key(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        key = name.strip().lower()
        return self.config.team_aliases.get(key, name.strip()).lower()

    @staticmethod
    def _series(history: Sequence[GameLog], stat: StatDef) -> List[Tuple[GameLog, float]]:
        """(log, value) pairs, most recent first, skipping logs missing the stat."""
        ordered = sorted(history, key=lambda g: g.game_date, reverse=True)
        out = []
        for log in ordered:
            v = log.value(stat.columns)
            if v is not None:
                out.append((log, v))
        return out

    def _expected_minutes(
        self, series: List[Tuple[GameLog, float]], context: EdgeContext
    ) -> Optional[float]:
        if context.expected_minutes is not None and context.expected_minutes > 0:
            return float(context.expected_minutes)
        recent = [g.minutes for g, _ in series[: self.config.blend_window] if g.minutes and g.minutes > 0]
        return stats_math.mean(recent)

    def _minutes_normalized_median(
        self, window: List[Tuple[GameLog, float]], expected: Optional[float]
    ) -> float:
        if expected is None:
            return stats_math.median([v for _, v in window])
        scaled = []
        for log, v in window:
            factor = stats_math.safe_log2_ratio(expected, log.minutes)
            if factor is not None:
                scaled.append(v * factor)
        if not scaled:
            return stats_math.median([v for _, v in window])
        return stats_math.median(scaled)

    @staticmethod
    def _per_minute_median(
        window: List[Tuple[GameLog, float]], expected: Optional[float]
    ) -> float:
        rates = [v / log.minutes for log, v in window if log.minutes and log.minutes > 0]
        if expected is None or not rates:
            return stats_math.median([v for _, v in window])
        return stats_math.median(rates) * expected

    def _adjustments(self, context: EdgeContext) -> Dict[str, float]:
        cfg = self.config
        adj = {"blowout_risk": 0.0, "injury_boost": 0.0, "minutes_limit": 0.0}
        if context.spread is not None and abs(context.spread) >= cfg.blowout_spread:
            adj["blowout_risk"] = cfg.blowout_adjustment
        if context.injury_context == "teammate_out":
            adj["injury_boost"] = cfg.teammate_out_adjustment
        elif context.injury_context == "minutes_limit":
            adj["minutes_limit"] = cfg.minutes_limit_adjustment
        return adj

    def _confidence_flag(self, prop: PropLine) -> str:
        if prop.odds is None or prop.odds_open is None:
            return NORMAL_FLAG
        if prop.odds <= prop.odds_open - self.config.juice_lag_cents:
            return JUICE_LAG_SHARP
        return NORMAL_FLAG

    @staticmethod
    def _confidence_tier(tier: str, hit_rate: float, is_volatile: bool) -> str:
        if tier == STRONG and hit_rate >= 0.80 and not is_volatile:
            return CONFIDENCE_HIGH
        if tier in (STRONG, LEAN) and hit_rate >= 0.65:
            return CONFIDENCE_MEDIUM
        return CONFIDENCE_LOW

    # ------------------------------------------------------------------ #
    #  Recommendation                                                      #
    # ------------------------------------------------------------------ #

    def recommend(
        self,
        stat: StatDef,
        edge: float,
        hit_rate: float,
        std_dev: float,
        volatility: float,
        games_analyzed: int,
    ) -> str:
        """Return the recommendation tier (NO BET / LEAN / STRONG) without direction."""
        cfg = self.config
        abs_edge = abs(edge)

        if games_analyzed < cfg.min_games:
            return NO_BET
        if abs_edge >= cfg.anomaly_edge:
            return NO_BET
        if abs_edge < stat.lean_threshold or hit_rate < cfg.lean_hit_rate:
            return NO_BET

        tier = LEAN
        if (
            abs_edge >= stat.strong_threshold
            and hit_rate >= cfg.strong_hit_rate
            and std_dev <= cfg.strong_max_std
            and volatility <= stat.strong_volatility_cap
            and games_analyzed >= cfg.strong_min_games
        ):
            tier = STRONG

        if tier == STRONG:
            is_volatile = volatility > cfg.high_volatility_cv
            trap_line = is_volatile and abs_edge >= cfg.trap_edge_multiple * stat.strong_threshold
            if trap_line or std_dev >= cfg.downgrade_std:
                tier = LEAN
        return tier

    # ------------------------------------------------------------------ #
    #  Main entry                                                          #
    # ------------------------------------------------------------------ #

    def analyze(
        self,
        prop: PropLine,
        history: Sequence[GameLog],
        context: Optional[EdgeContext] = None,
        as_of: Optional[date] = None,
    ) -> EdgeAssessment:
        """
        Compute the EdgeAssessment for one prop.

        Raises:
            ValidationError: missing player, non-positive line, unknown stat
                type (reason ``unknown_prop``) or projected minutes below the
                workload floor (reason ``low_minutes``).
            DataUnavailableError: fewer than three usable games of history.
        """
        cfg = self.config
        context = context or EdgeContext()

        if not prop.player:
            raise ValidationError("prop has no player", reason="missing_player")
        if prop.line is None or prop.line <= 0:
            raise ValidationError(f"non-positive line {prop.line!r}", reason="invalid_line")
        stat = cfg.resolve_stat(prop.stat_type)
        if stat is None:
            raise ValidationError(f"unknown stat type {prop.stat_type!r}", reason="unknown_prop")

        series = self._series(history, stat)
        if len(series) < cfg.min_history_games:
            raise DataUnavailableError(
                f"{prop.player}: {len(series)} usable games", reason="insufficient_history"
            )

        form = series[: cfg.form_window]
        form_values = [v for _, v in form]
        games_analyzed = len(form)

        expected_minutes = self._expected_minutes(series, context)
        if expected_minutes is not None and expected_minutes < cfg.min_expected_minutes:
            raise ValidationError(
                f"{prop.player}: expected minutes {expected_minutes:.1f}", reason="low_minutes"
            )

        # Missing defense data degrades to a no-op multiplier
        defense_rank = cfg.normalize_defense_rank(context.defense_rank)
        if defense_rank is None:
            defense_rank = cfg.rank_from_defense_code(context.defense_code)
        def_mult = cfg.defense_multiplier(defense_rank)

        # M1 recent form
        recent_values = [v for _, v in series[: len(cfg.recency_weights)]]
        m1 = stats_math.weighted_median(recent_values, cfg.recency_weights)

        # M2 matchup
        opponent = self._team_key(context.opponent or prop.opponent)
        matchup_values = [
            v for log, v in series
            if opponent and self._team_key(log.opponent) == opponent
        ]
        m2 = (stats_math.median(matchup_values) if matchup_values else m1) * def_mult

        # M3 minutes-log-normalized, M4 per-minute
        m3 = self._minutes_normalized_median(form, expected_minutes)
        m4 = self._per_minute_median(form, expected_minutes)

        # M5 location split
        is_home = context.is_home if context.is_home is not None else prop.is_home
        location_values = [
            v for log, v in series
            if is_home is not None and log.is_home is not None and log.is_home == is_home
        ]
        m5 = stats_math.median(location_values) if location_values else m1

        w1, w2, w3, w4, w5 = cfg.submedian_weights
        true_median = (m1 * w1) + (m2 * w2) + (m3 * w3) + (m4 * w4) + (m5 * w5)
        true_median *= def_mult

        adjustments = self._adjustments(context)
        true_median += sum(adjustments.values())

        # Edge: blend toward short recency median, dampen when volatile
        std_dev = stats_math.population_std(form_values)
        volatility = stats_math.coefficient_of_variation(form_values)
        is_volatile = volatility > cfg.high_volatility_cv

        short_median = stats_math.median([v for _, v in series[: cfg.blend_window]])
        edge = (1.0 - cfg.blend_weight) * (true_median - prop.line) + cfg.blend_weight * (short_median - prop.line)
        if is_volatile:
            edge *= cfg.volatile_edge_dampening
        edge = round(edge, 2)

        direction = SIDE_OVER if edge >= 0 else SIDE_UNDER
        side = prop.side.upper() if prop.side else direction
        hit_rate = stats_math.hit_rate(form_values, prop.line, direction)

        tier = self.recommend(stat, edge, hit_rate, std_dev, volatility, games_analyzed)
        if tier != NO_BET and side != direction:
            # The offered side runs against the projection
            tier = NO_BET
        recommendation = NO_BET if tier == NO_BET else f"{tier} {direction}"

        alt_line = None
        if tier == NO_BET and 1.0 <= abs(edge) < 2.0:
            step = cfg.alt_line_step
            alt_line = prop.line - step if edge > 0 else prop.line + step

        reason = self._reason_summary(prop, true_median, edge, m1, m2, adjustments, def_mult)

        game_date = prop.game_date or as_of or date.today()
        assessment = EdgeAssessment(
            player=prop.player,
            stat_type=stat.key,
            side=side,
            line=float(prop.line),
            game_date=game_date,
            recommendation=recommendation,
            confidence_tier=self._confidence_tier(tier, hit_rate, is_volatile),
            true_median=round(true_median, 2),
            edge=edge,
            m1_recent_form=round(m1, 2),
            m2_matchup=round(m2, 2),
            m3_minutes_normalized=round(m3, 2),
            m4_per_minute=round(m4, 2),
            m5_location=round(m5, 2),
            volatility=round(volatility, 4),
            std_dev=round(std_dev, 2),
            hit_rate=round(hit_rate, 4),
            games_analyzed=games_analyzed,
            defense_rank=defense_rank,
            defense_multiplier=def_mult,
            adjustments=adjustments,
            confidence_flag=self._confidence_flag(prop),
            alt_line_suggestion=alt_line,
            reason_summary=reason,
            is_volatile=is_volatile,
            event_id=prop.event_id,
            team=prop.team,
            opponent=context.opponent or prop.opponent,
            source=prop.source,
            engine=cfg.engine_name,
            offered_side=prop.side.upper() if prop.side else "",
        )
        logger.debug(
            "%s %s %.1f → median=%.2f edge=%+.2f hit=%.0f%% cv=%.2f → %s",
            prop.player, stat.key, prop.line, true_median, edge,
            hit_rate * 100, volatility, recommendation,
        )
        return assessment

    @staticmethod
    def _reason_summary(
        prop: PropLine,
        true_median: float,
        edge: float,
        m1: float,
        m2: float,
        adjustments: Dict[str, float],
        def_mult: float,
    ) -> str:
        if edge > 0:
            head = f"True median of {true_median:.1f} exceeds book line of {prop.line:g} by +{edge:.1f}"
        else:
            head = f"True median of {true_median:.1f} is below book line of {prop.line:g} by {edge:.1f}"
        parts = [head]
        if m1 > prop.line:
            parts.append("recent form strong")
        if m2 > prop.line:
            parts.append("favorable matchup history")
        if def_mult < 1.0:
            parts.append("tough defensive matchup")
        elif def_mult > 1.0:
            parts.append("soft defensive matchup")
        if adjustments.get("injury_boost"):
            parts.append("teammate injury usage boost")
        if adjustments.get("blowout_risk"):
            parts.append("blowout risk adjustment")
        if adjustments.get("minutes_limit"):
            parts.append("minutes restriction")
        return "; ".join(parts) + "."

    # ------------------------------------------------------------------ #
    #  Batch                                                               #
    # ------------------------------------------------------------------ #

    def analyze_batch(
        self,
        props: Iterable[PropLine],
        histories: Dict[str, List[GameLog]],
        contexts: Optional[Dict[str, EdgeContext]] = None,
        as_of: Optional[date] = None,
        report: Optional[BatchReport] = None,
    ) -> Tuple[List[EdgeAssessment], BatchReport]:
        """
        Analyze every prop, collecting per-item results.

        ``histories`` and ``contexts`` are keyed by lower-cased player name and
        are fetched once by the caller; nothing here performs I/O.
        """
        report = report or BatchReport()
        contexts = contexts or {}
        assessments: List[EdgeAssessment] = []

        for prop in props:
            key = f"{prop.player}|{prop.stat_type}|{prop.line}"
            player_key = (prop.player or "").lower()
            try:
                assessment = self.analyze(
                    prop,
                    histories.get(player_key, []),
                    contexts.get(player_key),
                    as_of=as_of,
                )
            except ValidationError as exc:
                logger.warning("Skipping %s: %s", key, exc)
                report.add(ItemResult(SKIPPED, key, reason=exc.reason))
                continue
            except DataUnavailableError as exc:
                logger.info("No data for %s: %s", key, exc)
                report.add(ItemResult(NO_DATA, key, reason=exc.reason))
                continue

            assessments.append(assessment)
            report.add(ItemResult(
                SUCCESS, key,
                detail={"recommendation": assessment.recommendation, "edge": assessment.edge},
            ))

        logger.info(
            "Edge batch: %d assessed, %d actionable, %d skipped",
            len(assessments),
            sum(1 for a in assessments if a.is_actionable),
            report.count(SKIPPED),
        )
        return assessments, report
