"""Tests for the median edge engine."""

import dataclasses
from datetime import date, timedelta

import pytest

from propedge.core.errors import DataUnavailableError, ValidationError
from propedge.core.records import LEAN, NO_BET, NO_DATA, SKIPPED, STRONG, SUCCESS, EdgeContext, GameLog, PropLine
from propedge.core.stat_config import EngineConfig
from propedge.services.edge_engine import (
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
    JUICE_LAG_SHARP,
    NORMAL_FLAG,
    EdgeEngine,
)

SCENARIO_A = [20, 22, 19, 25, 21, 23, 24, 18, 20, 22]
STEADY = [28, 27, 29, 28, 30, 27, 28, 29, 28, 27]
GAME_DAY = date(2025, 1, 15)
HOME_34 = EdgeContext(is_home=True, expected_minutes=34)


def _history(points, player="Test Player", minutes=34.0, is_home=True, opponent=None):
    """Most recent first: points[0] is the game the day before GAME_DAY."""
    return [
        GameLog(
            player=player,
            game_date=GAME_DAY - timedelta(days=i + 1),
            opponent=opponent,
            is_home=is_home,
            minutes=minutes,
            points=float(p),
            rebounds=5.0,
            assists=4.0,
        )
        for i, p in enumerate(points)
    ]


def _prop(line=19.5, stat="points", **kw):
    return PropLine(player="Test Player", stat_type=stat, line=line, **kw)


@pytest.fixture
def engine():
    return EdgeEngine()


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

class TestScenarioA:
    def test_lean_over(self, engine):
        a = engine.analyze(_prop(), _history(SCENARIO_A), HOME_34, as_of=GAME_DAY)
        assert a.recommendation == "LEAN OVER"
        assert a.hit_rate == pytest.approx(0.8)
        assert a.m1_recent_form == pytest.approx(20.67, abs=0.01)
        assert 21.0 <= a.true_median <= 22.0
        assert a.edge == pytest.approx(1.57, abs=0.01)
        assert a.confidence_tier == CONFIDENCE_MEDIUM
        assert a.games_analyzed == 10
        assert a.game_date == GAME_DAY

    def test_unknown_location_falls_back_and_suggests_alt_line(self, engine):
        a = engine.analyze(_prop(), _history(SCENARIO_A, is_home=None),
                           EdgeContext(expected_minutes=34), as_of=GAME_DAY)
        assert a.m5_location == a.m1_recent_form
        assert a.recommendation == NO_BET
        assert a.alt_line_suggestion == pytest.approx(17.0)


def test_fewer_than_six_games_is_no_bet(engine):
    a = engine.analyze(_prop(), _history([30, 31, 29, 30, 32]), HOME_34, as_of=GAME_DAY)
    assert a.games_analyzed == 5
    assert a.recommendation == NO_BET


def test_strong_over(engine):
    a = engine.analyze(_prop(line=24.5), _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert a.recommendation == "STRONG OVER"
    assert a.edge == pytest.approx(3.5, abs=0.01)
    assert a.confidence_tier == CONFIDENCE_HIGH


@pytest.mark.parametrize("points, line", [
    (STEADY, 24.5),
    (SCENARIO_A, 19.5),
    ([10, 30, 12, 28, 15, 25, 11, 29, 14, 26], 15.5),
    ([8, 9, 7, 8, 10, 9, 8, 7, 9, 8], 12.5),
])
def test_strong_requires_all_gates(engine, points, line):
    a = engine.analyze(_prop(line=line), _history(points), HOME_34, as_of=GAME_DAY)
    if a.tier == "STRONG":
        assert a.hit_rate >= 0.70
        assert a.volatility <= engine.config.stats["points"].strong_volatility_cap
        assert a.games_analyzed >= 7


def test_anomalous_edge_is_no_bet(engine):
    a = engine.analyze(_prop(line=10.5), _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert abs(a.edge) >= 8
    assert a.recommendation == NO_BET


def test_under_direction(engine):
    a = engine.analyze(_prop(line=31.5), _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert a.edge < 0
    assert a.recommendation.endswith("UNDER")


def test_offered_side_against_projection_is_no_bet(engine):
    a = engine.analyze(_prop(line=24.5, side="UNDER"), _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert a.recommendation == NO_BET
    assert a.side == "UNDER"


def test_combo_stat_sums_columns(engine):
    a = engine.analyze(_prop(line=30.5, stat="PRA"), _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert a.stat_type == "pts_rebs_asts"
    assert a.m3_minutes_normalized == pytest.approx(28 + 5 + 4)


VOLATILE = [10, 30, 12, 28, 15, 25, 11, 29, 14, 26]


def test_volatile_history_dampens_edge(engine):
    undamped = EdgeEngine(dataclasses.replace(EngineConfig.nba(), high_volatility_cv=10.0))
    a = engine.analyze(_prop(line=15.5), _history(VOLATILE), HOME_34, as_of=GAME_DAY)
    b = undamped.analyze(_prop(line=15.5), _history(VOLATILE), HOME_34, as_of=GAME_DAY)
    assert a.is_volatile
    assert not b.is_volatile
    assert b.edge != 0
    assert a.edge == pytest.approx(b.edge * 0.75, abs=0.01)


class TestRecommend:
    def test_trap_line_downgrades_strong(self, engine):
        threes = engine.config.stats["threes"]
        # volatile but under the threes cap; edge at twice the strong threshold
        assert engine.recommend(threes, edge=2.5, hit_rate=0.8, std_dev=1.0,
                                volatility=0.45, games_analyzed=10) == LEAN
        assert engine.recommend(threes, edge=1.5, hit_rate=0.8, std_dev=1.0,
                                volatility=0.45, games_analyzed=10) == STRONG

    def test_wide_spread_downgrades_strong(self):
        engine = EdgeEngine(dataclasses.replace(EngineConfig.nba(), strong_max_std=5.0))
        points = engine.config.stats["points"]
        assert engine.recommend(points, edge=4.0, hit_rate=0.8, std_dev=3.6,
                                volatility=0.2, games_analyzed=10) == LEAN
        assert engine.recommend(points, edge=4.0, hit_rate=0.8, std_dev=3.2,
                                volatility=0.2, games_analyzed=10) == STRONG

    @pytest.mark.parametrize("edge, hit_rate, games, expected", [
        (4.0, 0.8, 5, NO_BET),
        (8.0, 0.9, 10, NO_BET),
        (1.4, 0.9, 10, NO_BET),
        (2.0, 0.55, 10, NO_BET),
        (2.0, 0.65, 10, LEAN),
        (4.0, 0.8, 6, LEAN),
    ])
    def test_gates(self, engine, edge, hit_rate, games, expected):
        points = engine.config.stats["points"]
        assert engine.recommend(points, edge=edge, hit_rate=hit_rate, std_dev=2.0,
                                volatility=0.2, games_analyzed=games) == expected


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

def test_elite_defense_lowers_projection(engine):
    base = engine.analyze(_prop(line=24.5), _history(STEADY), HOME_34, as_of=GAME_DAY)
    tough = engine.analyze(
        _prop(line=24.5), _history(STEADY),
        EdgeContext(is_home=True, expected_minutes=34, defense_rank=3), as_of=GAME_DAY,
    )
    assert tough.defense_multiplier == pytest.approx(0.92)
    assert tough.true_median < base.true_median


def test_missing_defense_is_no_op(engine):
    a = engine.analyze(_prop(line=24.5), _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert a.defense_rank is None
    assert a.defense_multiplier == 1.0


@pytest.mark.parametrize("code, multiplier", [
    (10, 1.08),
    (30, 1.04),
    (50, 1.0),
    (70, 0.96),
    (95, 0.92),
])
def test_defense_code_maps_through_rank(engine, code, multiplier):
    ctx = EdgeContext(is_home=True, expected_minutes=34, defense_code=code)
    a = engine.analyze(_prop(line=24.5), _history(STEADY), ctx, as_of=GAME_DAY)
    assert a.defense_multiplier == pytest.approx(multiplier)


def test_scalar_adjustments(engine):
    ctx = EdgeContext(is_home=True, expected_minutes=34, spread=-12.0, injury_context="teammate_out")
    a = engine.analyze(_prop(line=24.5), _history(STEADY), ctx, as_of=GAME_DAY)
    assert a.adjustments["blowout_risk"] == -1.0
    assert a.adjustments["injury_boost"] == 1.0
    assert a.adjustments["minutes_limit"] == 0.0


def test_matchup_median_uses_same_opponent(engine):
    history = _history(STEADY, opponent="Boston Celtics")
    ctx = EdgeContext(opponent="BOS", is_home=True, expected_minutes=34)
    a = engine.analyze(_prop(line=24.5), history, ctx, as_of=GAME_DAY)
    assert a.m2_matchup == pytest.approx(28.0)


@pytest.mark.parametrize("odds, odds_open, flag", [
    (-140, -110, JUICE_LAG_SHARP),
    (-120, -110, NORMAL_FLAG),
    (None, -110, NORMAL_FLAG),
])
def test_juice_lag_flag(engine, odds, odds_open, flag):
    a = engine.analyze(_prop(line=24.5, odds=odds, odds_open=odds_open),
                       _history(STEADY), HOME_34, as_of=GAME_DAY)
    assert a.confidence_flag == flag


def test_deterministic(engine):
    first = engine.analyze(_prop(), _history(SCENARIO_A), HOME_34, as_of=GAME_DAY)
    second = engine.analyze(_prop(), _history(SCENARIO_A), HOME_34, as_of=GAME_DAY)
    assert first.to_dict() == second.to_dict()


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("prop, ctx, reason", [
    (_prop(stat="dunks"), HOME_34, "unknown_prop"),
    (_prop(line=0), HOME_34, "invalid_line"),
    (PropLine(player="", stat_type="points", line=10.5), HOME_34, "missing_player"),
    (_prop(), EdgeContext(expected_minutes=10), "low_minutes"),
    (_prop(), EdgeContext(expected_minutes=20), "low_minutes"),
])
def test_validation_errors(engine, prop, ctx, reason):
    with pytest.raises(ValidationError) as exc_info:
        engine.analyze(prop, _history(SCENARIO_A), ctx, as_of=GAME_DAY)
    assert exc_info.value.reason == reason


def test_insufficient_history(engine):
    with pytest.raises(DataUnavailableError):
        engine.analyze(_prop(), _history([20, 21]), HOME_34, as_of=GAME_DAY)


def test_batch_collects_item_results(engine):
    props = [_prop(), _prop(stat="dunks"), PropLine(player="Nobody", stat_type="points", line=10.5)]
    histories = {"test player": _history(SCENARIO_A)}
    contexts = {"test player": HOME_34}
    assessments, report = engine.analyze_batch(props, histories, contexts, as_of=GAME_DAY)

    assert len(assessments) == 1
    assert report.count(SUCCESS) == 1
    assert report.count(SKIPPED) == 1
    assert report.count(NO_DATA) == 1
    assert report.skip_reasons == {"unknown_prop": 1, "insufficient_history": 1}
    assert not report.is_clean


def test_batch_skips_prop_without_line(engine):
    props = [PropLine(player="A", stat_type="points", line=None),
             PropLine(player="B", stat_type="points", line=10.5)]
    assessments, report = engine.analyze_batch(props, {})

    assert assessments == []
    assert [r.status for r in report.items] == [SKIPPED, NO_DATA]
    assert report.items[0].reason == "invalid_line"
    assert report.items[0].key == "A|points|None"
