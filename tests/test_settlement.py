"""Tests for wager outcome derivation and the settlement batch."""

from datetime import date, datetime

import pytest

from propedge.core.records import (
    HIT, LOST, MISS, NO_DATA, PARTIAL, PENDING, PUSH, WON, GameLog, Leg, Wager,
)
from propedge.models import WagerLog
from propedge.services.outcome_matcher import OutcomeMatcher
from propedge.services.settlement import derive_wager_outcome, settle_wagers, variant_comparison
from propedge.services.store import save_wager, wagers_to_settle

GAME_DAY = date(2025, 1, 15)


@pytest.mark.parametrize("outcomes, policy, expected", [
    ([HIT, PUSH, HIT], PENDING, WON),
    ([PUSH, PUSH], PENDING, WON),
    ([HIT, MISS, NO_DATA], PENDING, LOST),
    ([MISS, NO_DATA, NO_DATA], PENDING, LOST),
    ([NO_DATA], PENDING, NO_DATA),
    ([NO_DATA, NO_DATA], PARTIAL, NO_DATA),
    ([HIT, NO_DATA], PENDING, PENDING),
    ([HIT, NO_DATA], PARTIAL, PARTIAL),
])
def test_derive_wager_outcome(outcomes, policy, expected):
    assert derive_wager_outcome(outcomes, policy) == expected


def _leg(player, stat="points", line=24.5, side="OVER"):
    return Leg(player=player, stat_type=stat, line=line, side=side, predicted_probability=0.75)


def _save(db, *legs, variant="control"):
    row, _ = save_wager(db, Wager(legs=tuple(legs), tier="balanced", wager_date=GAME_DAY, variant=variant))
    db.commit()
    return row


def _log(player, points, rebounds=8.0):
    return GameLog(player=player, game_date=date(2025, 1, 16), minutes=34.0,
                   points=points, rebounds=rebounds, assists=5.0)


def test_push_with_hits_settles_won(db):
    row = _save(db, _leg("LeBron James"), _leg("Anthony Davis", "rebounds", line=8.0))
    matcher = OutcomeMatcher([_log("LeBron James", 30.0), _log("Anthony Davis", 20.0, rebounds=8.0)])

    summary = settle_wagers(db, matcher, now=datetime(2025, 1, 17))

    db.refresh(row)
    assert row.outcome == WON
    assert row.legs_hit == 1
    assert row.legs_missed == 0
    assert [d["outcome"] for d in row.leg_outcomes] == [HIT, PUSH]
    assert row.leg_outcomes[1]["actual_value"] == 8.0
    assert summary["outcomes"] == {WON: 1}
    assert summary["clean_run"] is True


def test_missing_game_log_is_no_data_not_lost(db):
    row = _save(db, _leg("Nobody Known"))
    summary = settle_wagers(db, OutcomeMatcher([]))

    db.refresh(row)
    assert row.outcome == NO_DATA
    assert summary["no_data"] == 1
    assert summary["status"] == "success"


def test_settlement_never_touches_legs(db):
    row = _save(db, _leg("LeBron James"))
    legs_before = list(row.legs)
    edge_before = row.total_edge
    settle_wagers(db, OutcomeMatcher([_log("LeBron James", 10.0)]))

    db.refresh(row)
    assert row.outcome == LOST
    assert row.legs == legs_before
    assert row.total_edge == edge_before


def test_reverify_reprocesses_settled_wagers(db):
    row = _save(db, _leg("LeBron James"))
    settle_wagers(db, OutcomeMatcher([_log("LeBron James", 30.0)]))
    assert wagers_to_settle(db) == []
    assert wagers_to_settle(db, reverify=True) == [row]

    settle_wagers(db, OutcomeMatcher([_log("LeBron James", 20.0)]), reverify=True)
    db.refresh(row)
    assert row.outcome == LOST


def test_pending_wagers_are_rechecked(db):
    row = _save(db, _leg("LeBron James"), _leg("Late Game"))
    settle_wagers(db, OutcomeMatcher([_log("LeBron James", 30.0)]))
    db.refresh(row)
    assert row.outcome == PENDING
    assert wagers_to_settle(db) == [row]


def test_variant_comparison(db):
    _save(db, _leg("LeBron James"), variant="control")
    _save(db, _leg("LeBron James", line=35.5), variant="variant")
    settle_wagers(db, OutcomeMatcher([_log("LeBron James", 30.0)]))

    stats = variant_comparison(db)
    assert stats["control"]["win_rate"] == 1.0
    assert stats["variant"]["win_rate"] == 0.0
    assert db.query(WagerLog).count() == 2
