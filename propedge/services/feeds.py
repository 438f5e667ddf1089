"""
HTTP feed client for the four upstream collaborators.

    LINE_FEED_URL     active prop lines
    HISTORY_FEED_URL  per-player game logs (paginated by player batch)
    DEFENSE_FEED_URL  opponent defense ranks
    SCORES_FEED_URL   final scores

Every feed is read once per run.  An unreachable feed raises
UpstreamFetchError, which aborts the run.  Each fetch is recorded as a
DataFetch row when a session is supplied.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import requests
from sqlalchemy.orm import Session

from propedge.core.errors import UpstreamFetchError
from propedge.services.ingestion import player_name
from propedge.services.store import record_fetch

logger = logging.getLogger(__name__)

LINE_FEED_URL = os.getenv("LINE_FEED_URL")
HISTORY_FEED_URL = os.getenv("HISTORY_FEED_URL")
DEFENSE_FEED_URL = os.getenv("DEFENSE_FEED_URL")
SCORES_FEED_URL = os.getenv("SCORES_FEED_URL")
FEED_API_KEY = os.getenv("FEED_API_KEY")
FEED_TIMEOUT_SECONDS = float(os.getenv("FEED_TIMEOUT_SECONDS", "15"))
HISTORY_FETCH_WORKERS = int(os.getenv("HISTORY_FETCH_WORKERS", "4"))
HISTORY_PAGE_SIZE = int(os.getenv("HISTORY_PAGE_SIZE", "50"))


def _records(payload: Any) -> List[Dict]:
    """Feeds answer with either a bare list or ``{"data": [...]}``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "results", "items"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


class FeedClient:
    """Client for the line, history, defense and score feeds"""

    def __init__(
        self,
        db: Optional[Session] = None,
        api_key: Optional[str] = None,
        line_url: Optional[str] = None,
        history_url: Optional[str] = None,
        defense_url: Optional[str] = None,
        scores_url: Optional[str] = None,
        timeout: float = FEED_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.db = db
        self.api_key = api_key or FEED_API_KEY
        self.line_url = line_url or LINE_FEED_URL
        self.history_url = history_url or HISTORY_FEED_URL
        self.defense_url = defense_url or DEFENSE_FEED_URL
        self.scores_url = scores_url or SCORES_FEED_URL
        self.timeout = timeout
        self.session = session or requests.Session()
        if self.api_key:
            self.session.headers.update({"Authorization": f"Bearer {self.api_key}"})

    def _record(self, source: str, success: bool, count: int, error: Optional[str], started: float) -> None:
        if self.db is None:
            return
        record_fetch(
            self.db, source, success, records=count, error=error,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )

    def _fetch(self, source: str, url: Optional[str], params: Optional[Dict] = None) -> List[Dict]:
        """One GET; no bookkeeping, safe to call from worker threads."""
        if not url:
            raise UpstreamFetchError(source, "feed URL not configured")
        try:
            response = self.session.get(url, params=params or {}, timeout=self.timeout)
            response.raise_for_status()
            return _records(response.json())
        except (requests.exceptions.RequestException, ValueError) as exc:
            logger.error("%s feed error: %s", source, exc)
            raise UpstreamFetchError(source, str(exc)) from exc

    def _get(self, source: str, url: Optional[str], params: Optional[Dict] = None) -> List[Dict]:
        started = time.monotonic()
        try:
            records = self._fetch(source, url, params)
        except UpstreamFetchError as exc:
            self._record(source, False, 0, str(exc), started)
            raise

        self._record(source, True, len(records), None, started)
        logger.info("%s feed: %d records", source, len(records))
        return records

    # ---- feeds ----

    def fetch_lines(self, sport: str = "nba") -> List[Dict]:
        return self._get("lines", self.line_url, {"sport": sport})

    def fetch_defense(self, sport: str = "nba") -> List[Dict]:
        return self._get("defense", self.defense_url, {"sport": sport})

    def fetch_scores(self, start: date, end: date, sport: str = "nba") -> List[Dict]:
        return self._get("scores", self.scores_url, {
            "sport": sport,
            "date_from": start.isoformat(),
            "date_to": end.isoformat(),
        })

    def fetch_box_scores(self, start: date, end: date, sport: str = "nba") -> List[Dict]:
        """Player game logs for every game in the window (for settlement)."""
        return self._get("box_scores", self.history_url, {
            "sport": sport,
            "date_from": start.isoformat(),
            "date_to": end.isoformat(),
        })

    def fetch_histories(
        self,
        players: Sequence[str],
        games: int = 10,
        page_size: int = HISTORY_PAGE_SIZE,
        workers: int = HISTORY_FETCH_WORKERS,
    ) -> Dict[str, List[Dict]]:
        """
        Fetch recent game logs for every player, keyed by lower-cased name.

        Players are split into pages fetched concurrently; pages are
        independent, so arrival order does not matter.
        """
        unique = sorted({p for p in players if p})
        pages = [unique[i:i + page_size] for i in range(0, len(unique), page_size)]
        if not pages:
            return {}

        def fetch_page(page: List[str]) -> List[Dict]:
            return self._fetch("history", self.history_url, {
                "players": ",".join(page),
                "games": games,
            })

        started = time.monotonic()
        histories: Dict[str, List[Dict]] = {}
        fetched = 0
        try:
            with ThreadPoolExecutor(max_workers=max(1, min(workers, len(pages)))) as pool:
                results = list(pool.map(fetch_page, pages))
        except UpstreamFetchError as exc:
            self._record("history", False, 0, str(exc), started)
            raise

        for rows in results:
            fetched += len(rows)
            for row in rows:
                name = player_name(row)
                if name:
                    histories.setdefault(name.lower(), []).append(row)
        self._record("history", True, fetched, None, started)
        logger.info("History: %d players across %d page(s)", len(histories), len(pages))
        return histories
