"""Tests for leg resolution: name scoring, team resolution and outcome rules."""

from datetime import date

import pytest

from propedge.core.records import HIT, MISS, NO_DATA, PUSH, GameLog, GameResult, Leg
from propedge.core.stat_config import EngineConfig
from propedge.services.outcome_matcher import (
    BET_MONEYLINE,
    BET_PLAYER_PROP,
    BET_SPREAD,
    BET_TOTAL,
    SCORE_EXACT,
    SCORE_LAST_AND_INITIAL,
    SCORE_LAST_ONLY,
    SCORE_SUBSTRING,
    OutcomeMatcher,
    best_name_match,
    classify_bet_type,
    extract_team,
    leg_outcome,
    normalize_name,
    resolve_team,
    score_name_match,
    team_mentioned,
)

TARGET = date(2025, 1, 15)
CONFIG = EngineConfig.nba()


# ---------------------------------------------------------------------------
# Outcome rules
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("actual, line, side, expected", [
    (19.5, 19.5, "OVER", PUSH),
    (19.5, 19.5, "UNDER", PUSH),
    (20.0, 19.5, "OVER", HIT),
    (19.0, 19.5, "OVER", MISS),
    (19.0, 19.5, "UNDER", HIT),
    (21.0, 19.5, "under", MISS),
    (None, 19.5, "OVER", NO_DATA),
])
def test_leg_outcome(actual, line, side, expected):
    assert leg_outcome(actual, line, side) == expected


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw, expected", [
    ("Jaren Jackson Jr.", "jaren jackson"),
    ("Gary Trent Jr", "gary trent"),
    ("Robert Williams III", "robert williams"),
    ("De'Aaron Fox", "de aaron fox"),
    (None, ""),
])
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


@pytest.mark.parametrize("target, candidate, expected", [
    ("lebron james", "lebron james", SCORE_EXACT),
    ("james", "lebron james", SCORE_SUBSTRING),
    ("j smith", "john smith", SCORE_LAST_AND_INITIAL),
    ("mike smith", "john smith", SCORE_LAST_ONLY),
    ("john doe", "jane roe", 0.0),
])
def test_score_name_match(target, candidate, expected):
    assert score_name_match(target, candidate) == expected


def test_best_name_match_exact_after_normalizing():
    name, score = best_name_match("Jaren Jackson Jr.", ["Jackson Hayes", "Jaren Jackson"])
    assert name == "Jaren Jackson"
    assert score == SCORE_EXACT


def test_best_name_match_rejects_weak_candidates():
    assert best_name_match("Anthony Davis", ["Anthony Edwards"]) == (None, 0.0)


def test_best_name_match_prefers_higher_tier():
    name, score = best_name_match("J. Smith", ["Mike Smith", "John Smith"])
    assert name == "John Smith"
    assert score == SCORE_LAST_AND_INITIAL


# ---------------------------------------------------------------------------
# Teams / bet types
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("name, expected", [
    ("Lakers", "Los Angeles Lakers"),
    ("LAL", "Los Angeles Lakers"),
    ("Boston", "Boston Celtics"),
    ("BOS Celtics", "Boston Celtics"),
    ("Dallas", None),
    (None, None),
])
def test_resolve_team(name, expected):
    assert resolve_team(name, ["Los Angeles Lakers", "Boston Celtics"], CONFIG) == expected


@pytest.mark.parametrize("leg, expected", [
    (Leg(player="A", stat_type="points", line=1, side="OVER", predicted_probability=0.6), BET_PLAYER_PROP),
    (Leg(player=None, stat_type="game", line=0, side="OVER", predicted_probability=0.6,
         bet_type="Spread"), BET_SPREAD),
    (Leg(player=None, stat_type="game", line=-4.5, side="OVER", predicted_probability=0.6,
         description="Lakers -4.5"), BET_SPREAD),
    (Leg(player=None, stat_type="game", line=0, side="OVER", predicted_probability=0.6,
         description="Lakers ML"), BET_MONEYLINE),
    (Leg(player=None, stat_type="game", line=220.5, side="OVER", predicted_probability=0.6,
         description="Lakers/Celtics Over 220.5"), BET_TOTAL),
])
def test_classify_bet_type(leg, expected):
    assert classify_bet_type(leg) == expected


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

def _log(player, day, points):
    return GameLog(player=player, game_date=date(2025, 1, day), minutes=34.0,
                   points=points, rebounds=7.0, assists=6.0)


def _player_leg(player="LeBron James", stat="points", line=24.5, side="OVER"):
    return Leg(player=player, stat_type=stat, line=line, side=side, predicted_probability=0.7)


@pytest.fixture
def matcher():
    logs = [
        _log("LeBron James", 16, 25.0),
        _log("LeBron James", 18, 10.0),
        _log("Jaren Jackson", 15, 18.0),
        _log("Far Away", 25, 40.0),
    ]
    results = [
        GameResult("Los Angeles Lakers", "Boston Celtics", date(2025, 1, 15), 110, 105, completed=True),
        GameResult("Miami Heat", "Chicago Bulls", date(2025, 1, 15), None, None, completed=False),
    ]
    return OutcomeMatcher(logs, results, CONFIG)


def test_player_leg_uses_closest_game(matcher):
    res = matcher.resolve(_player_leg(), TARGET)
    assert res.outcome == HIT
    assert res.actual_value == 25.0
    assert res.game_date == date(2025, 1, 16)


def test_player_leg_combo_stat(matcher):
    res = matcher.resolve(_player_leg(stat="pra", line=38.0), TARGET)
    assert res.actual_value == 38.0
    assert res.outcome == PUSH


def test_player_name_with_suffix(matcher):
    res = matcher.resolve(_player_leg("Jaren Jackson Jr.", line=18.5, side="UNDER"), TARGET)
    assert res.outcome == HIT
    assert res.matched_name == "Jaren Jackson"


@pytest.mark.parametrize("leg, reason", [
    (_player_leg("Nobody Known"), "no_game_log"),
    (_player_leg("Far Away"), "no_game_log"),
    (_player_leg(stat="dunks"), "unknown_prop"),
])
def test_unresolvable_player_legs(matcher, leg, reason):
    res = matcher.resolve(leg, TARGET)
    assert res.outcome == NO_DATA
    assert res.reason == reason


def _team_leg(team, bet_type, line, side="OVER"):
    return Leg(player=None, team=team, stat_type=bet_type, line=line, side=side,
               predicted_probability=0.6, bet_type=bet_type)


@pytest.mark.parametrize("leg, expected", [
    (_team_leg("Lakers", "moneyline", 0), HIT),
    (_team_leg("Celtics", "moneyline", 0), MISS),
    (_team_leg("Celtics", "spread", 5.5), HIT),
    (_team_leg("Celtics", "spread", 5.0), PUSH),
    (_team_leg("Lakers", "spread", -6.5), MISS),
    (_team_leg("Lakers", "total", 215.5), MISS),
    (_team_leg("Lakers", "total", 215.0), PUSH),
    (_team_leg("Lakers", "total", 220.5, side="UNDER"), HIT),
])
def test_team_legs(matcher, leg, expected):
    assert matcher.resolve(leg, TARGET).outcome == expected


def test_team_leg_not_final(matcher):
    res = matcher.resolve(_team_leg("Heat", "moneyline", 0), TARGET)
    assert res.outcome == NO_DATA
    assert res.reason == "not_final"


@pytest.mark.parametrize("description, expected", [
    ("Celtics ML", "Celtics"),
    ("Boston Celtics ML vs Lakers", "Boston Celtics"),
    ("Lakers -3.5", "Lakers"),
    ("Celtics +5.5 @ Lakers", "Celtics"),
    ("Miami Heat moneyline", "Miami Heat"),
    ("Celtics vs Lakers OVER 210.5", None),
    (None, None),
])
def test_extract_team(description, expected):
    assert extract_team(description) == expected


@pytest.mark.parametrize("team, text, expected", [
    ("Los Angeles Lakers", "Celtics vs Lakers OVER 210.5", True),
    ("Boston Celtics", "boston celtics / lakers o 210", True),
    ("Miami Heat", "Celtics vs Lakers OVER 210.5", False),
    ("Los Angeles Lakers", "", False),
])
def test_team_mentioned(team, text, expected):
    assert team_mentioned(team, text) is expected


def _text_leg(description, line, side="OVER"):
    return Leg(player=None, stat_type="game", line=line, side=side,
               predicted_probability=0.6, description=description)


@pytest.mark.parametrize("leg, expected", [
    (Leg(player=None, stat_type="total", line=210.5, side="OVER",
         predicted_probability=0.6, description="Celtics vs Lakers OVER 210.5"), HIT),
    (_text_leg("Lakers/Celtics Under 220.5", 220.5, side="UNDER"), HIT),
    (_text_leg("Lakers ML", 0), HIT),
    (_text_leg("Celtics ML vs Lakers", 0), MISS),
    (_text_leg("Lakers -3.5", -3.5), HIT),
    (_text_leg("Celtics +4.5 @ Lakers", 4.5), MISS),
])
def test_text_only_team_legs(matcher, leg, expected):
    res = matcher.resolve(leg, TARGET)
    assert res.outcome == expected
    assert res.game_date == TARGET


def test_text_only_leg_without_known_team(matcher):
    res = matcher.resolve(_text_leg("Knicks vs Nets OVER 215.5", 215.5), TARGET)
    assert res.outcome == NO_DATA
    assert res.reason == "no_game"
