"""Tests for the feed client (HTTP mocked)."""

from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from propedge.core.errors import UpstreamFetchError
from propedge.models import DataFetch
from propedge.services.feeds import FeedClient, _records


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


@pytest.mark.parametrize("payload, expected", [
    ([{"a": 1}], [{"a": 1}]),
    ({"data": [{"a": 1}]}, [{"a": 1}]),
    ({"results": []}, []),
    ({"message": "ok"}, []),
    (None, []),
])
def test_records_unwraps_envelopes(payload, expected):
    assert _records(payload) == expected


def test_fetch_lines_records_success(db, session):
    session.get.return_value = _response({"data": [{"player": "A"}, {"player": "B"}]})
    client = FeedClient(db=db, line_url="http://feed/lines", api_key="k", session=session)

    rows = client.fetch_lines()

    assert len(rows) == 2
    assert session.headers["Authorization"] == "Bearer k"
    _, kwargs = session.get.call_args
    assert kwargs["params"] == {"sport": "nba"}
    fetch = db.query(DataFetch).one()
    assert fetch.data_source == "lines"
    assert fetch.success is True
    assert fetch.records_fetched == 2


def test_unreachable_feed_raises(db, session):
    session.get.side_effect = requests.exceptions.ConnectionError("refused")
    client = FeedClient(db=db, scores_url="http://feed/scores", session=session)

    with pytest.raises(UpstreamFetchError) as exc_info:
        client.fetch_scores(date(2025, 1, 14), date(2025, 1, 17))

    assert exc_info.value.source == "scores"
    fetch = db.query(DataFetch).one()
    assert fetch.success is False
    assert "refused" in fetch.error_message


def test_unconfigured_feed_raises(session):
    client = FeedClient(session=session)
    client.defense_url = None
    with pytest.raises(UpstreamFetchError):
        client.fetch_defense()
    session.get.assert_not_called()


def test_histories_are_paged_and_keyed_by_player(db, session):
    def fake_get(url, params=None, timeout=None):
        return _response([
            {"player": name, "date": "2025-01-14", "pts": 20}
            for name in params["players"].split(",")
        ])

    session.get.side_effect = fake_get
    client = FeedClient(db=db, history_url="http://feed/history", session=session)

    histories = client.fetch_histories(["Cee", "Ay", "Bee", "Ay"], page_size=2, workers=2)

    assert session.get.call_count == 2
    assert sorted(histories) == ["ay", "bee", "cee"]
    fetch = db.query(DataFetch).one()
    assert fetch.data_source == "history"
    assert fetch.records_fetched == 3


def test_histories_accept_every_player_spelling(db, session):
    session.get.return_value = _response([
        {"playerName": "Ay", "date": "2025-01-14", "pts": 20},
        {"player_name": " Bee ", "date": "2025-01-14", "pts": 18},
        {"athlete": "Cee", "date": "2025-01-14", "pts": 15},
        {"date": "2025-01-14", "pts": 9},
    ])
    client = FeedClient(db=db, history_url="http://feed/history", session=session)

    histories = client.fetch_histories(["Ay", "Bee", "Cee"])

    assert sorted(histories) == ["ay", "bee", "cee"]
    assert db.query(DataFetch).one().records_fetched == 4


def test_no_players_skips_history_fetch(session):
    client = FeedClient(history_url="http://feed/history", session=session)
    assert client.fetch_histories([]) == {}
    session.get.assert_not_called()
