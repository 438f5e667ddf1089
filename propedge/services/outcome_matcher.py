"""
Outcome matcher: resolve wager legs against realized results.

Player legs are matched to GameLogs by a ranked name scorer; team legs
(moneyline / spread / total) are matched to GameResults through team-name
resolution.  Every leg resolves to hit, miss, push or no_data.  no_data is
never a loss.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from propedge.core.records import HIT, MISS, NO_DATA, PUSH, GameLog, GameResult, Leg
from propedge.core.stat_config import SIDE_OVER, SIDE_UNDER, EngineConfig

logger = logging.getLogger(__name__)

MATCH_WINDOW_DAYS_BEFORE = int(os.getenv("MATCH_WINDOW_DAYS_BEFORE", "1"))
MATCH_WINDOW_DAYS_AFTER = int(os.getenv("MATCH_WINDOW_DAYS_AFTER", "3"))

# ---------------------------------------------------------------------------
# Name-match scores
# ---------------------------------------------------------------------------
SCORE_EXACT = 1.0
SCORE_SUBSTRING = 0.9
SCORE_LAST_AND_INITIAL = 0.85
SCORE_LAST_ONLY = 0.7
MIN_NAME_SCORE = 0.7

MIN_SHARED_WORD_LEN = 4

BET_MONEYLINE = "moneyline"
BET_SPREAD = "spread"
BET_TOTAL = "total"
BET_PLAYER_PROP = "player_prop"

_NAME_SUFFIXES = {"jr", "sr", "ii", "iii", "iv", "v"}
_PUNCT = re.compile(r"[^a-z0-9\s]")
_SPREAD_PATTERN = re.compile(r"([+-]\d+(?:\.\d+)?)(?:\s+(?:vs\b|@)|\s*$)")
# "Celtics ML", "Lakers -3.5 vs Celtics", "Boston Celtics moneyline"
_TEAM_PICK_PATTERNS = (
    re.compile(r"^(.+?)\s+ml(?:\s+(?:vs\b|@)|\s*$)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+[+-]\d+(?:\.\d+)?(?:\s+(?:vs\b|@)|\s*$)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+moneyline", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Name resolution
# ---------------------------------------------------------------------------

def normalize_name(name: Optional[str]) -> str:
    """'Jaren Jackson Jr.' → 'jaren jackson'."""
    if not name:
        return ""
    cleaned = _PUNCT.sub(" ", name.lower())
    tokens = [t for t in cleaned.split() if t not in _NAME_SUFFIXES]
    return " ".join(tokens)


def score_name_match(target: str, candidate: str) -> float:
    """Score two *normalized* names; 0.0 when nothing matches."""
    if not target or not candidate:
        return 0.0
    if target == candidate:
        return SCORE_EXACT
    if target in candidate or candidate in target:
        return SCORE_SUBSTRING

    t_parts = target.split()
    c_parts = candidate.split()
    if t_parts[-1] != c_parts[-1]:
        return 0.0
    if len(t_parts) > 1 and len(c_parts) > 1 and t_parts[0][0] == c_parts[0][0]:
        return SCORE_LAST_AND_INITIAL
    return SCORE_LAST_ONLY


def best_name_match(target: str, candidates: Iterable[str]) -> Tuple[Optional[str], float]:
    """
    Return (best candidate, score) at or above MIN_NAME_SCORE.

    Stops on the first exact match.  Equal scores are broken by
    rapidfuzz similarity so the choice never depends on input order.
    """
    norm_target = normalize_name(target)
    best: Optional[str] = None
    best_rank = (0.0, 0.0)
    for cand in candidates:
        norm_cand = normalize_name(cand)
        score = score_name_match(norm_target, norm_cand)
        if score < MIN_NAME_SCORE:
            continue
        if score == SCORE_EXACT:
            return cand, score
        rank = (score, fuzz.ratio(norm_target, norm_cand))
        if rank > best_rank:
            best, best_rank = cand, rank
    return best, best_rank[0]


def resolve_team(name: Optional[str], candidates: Iterable[str], config: EngineConfig) -> Optional[str]:
    """
    Match a team name against the candidate team names.

    Tried in order: containment, shared nickname / last word (>3 chars),
    then the alias table.  None when nothing matches.
    """
    target = normalize_name(name)
    if not target:
        return None
    cands = [(c, normalize_name(c)) for c in candidates if c]

    for cand, norm in cands:
        if norm and (target in norm or norm in target):
            return cand

    last = target.split()[-1]
    if len(last) >= MIN_SHARED_WORD_LEN:
        for cand, norm in cands:
            if norm and norm.split()[-1] == last:
                return cand

    full = config.team_aliases.get(target)
    if full:
        norm_full = normalize_name(full)
        for cand, norm in cands:
            if norm == norm_full or config.team_aliases.get(norm) == full:
                return cand
    return None


def extract_team(description: Optional[str]) -> Optional[str]:
    """Team picked by a free-text leg ("Celtics ML", "Lakers -3.5 vs Celtics"); None for totals."""
    text = (description or "").strip()
    for pattern in _TEAM_PICK_PATTERNS:
        m = pattern.match(text)
        if m:
            return m.group(1).strip()
    return None


def team_mentioned(team: Optional[str], text: Optional[str]) -> bool:
    """True when the text names the team in full or by its nickname / last word."""
    norm_team = normalize_name(team)
    norm_text = normalize_name(text)
    if not norm_team or not norm_text:
        return False
    if norm_team in norm_text:
        return True
    last = norm_team.split()[-1]
    return len(last) >= MIN_SHARED_WORD_LEN and last in norm_text.split()


# ---------------------------------------------------------------------------
# Bet-type classification
# ---------------------------------------------------------------------------

def classify_bet_type(leg: Leg) -> str:
    """Explicit ``bet_type`` wins; otherwise parse the free-text description."""
    if leg.bet_type:
        return leg.bet_type.lower()
    if leg.player:
        return BET_PLAYER_PROP

    text = (leg.description or leg.stat_type or "").lower()
    if "moneyline" in text or re.search(r"\bml\b", text):
        return BET_MONEYLINE
    if "total" in text or re.search(r"\b(over|under|o|u)\s*\d", text):
        return BET_TOTAL
    if "spread" in text or _SPREAD_PATTERN.search(text):
        return BET_SPREAD
    return BET_MONEYLINE


# ---------------------------------------------------------------------------
# Outcome rules
# ---------------------------------------------------------------------------

def leg_outcome(actual: Optional[float], line: float, side: str) -> str:
    """push on equality, otherwise hit / miss by direction."""
    if actual is None:
        return NO_DATA
    if actual == line:
        return PUSH
    side = side.upper()
    if (side == SIDE_OVER and actual > line) or (side == SIDE_UNDER and actual < line):
        return HIT
    return MISS


@dataclass
class LegResolution:
    outcome: str
    actual_value: Optional[float] = None
    matched_name: Optional[str] = None
    match_score: float = 0.0
    game_date: Optional[date] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "actual_value": self.actual_value,
            "matched_name": self.matched_name,
            "match_score": round(self.match_score, 2),
            "game_date": self.game_date.isoformat() if self.game_date else None,
            "reason": self.reason,
        }


class OutcomeMatcher:
    """Resolves legs against the logs/results fetched once for a settlement run."""

    def __init__(
        self,
        logs: Sequence[GameLog] = (),
        results: Sequence[GameResult] = (),
        config: Optional[EngineConfig] = None,
        days_before: int = MATCH_WINDOW_DAYS_BEFORE,
        days_after: int = MATCH_WINDOW_DAYS_AFTER,
    ):
        self.config = config or EngineConfig.nba()
        self.logs = list(logs)
        self.results = list(results)
        self.days_before = days_before
        self.days_after = days_after

    def _in_window(self, when: date, target: date) -> bool:
        return target - timedelta(days=self.days_before) <= when <= target + timedelta(days=self.days_after)

    @staticmethod
    def _closest(items, target: date):
        return min(items, key=lambda x: (abs((x.game_date - target).days), x.game_date))

    # ---- player legs ----

    def resolve_player_leg(self, leg: Leg, target: date) -> LegResolution:
        stat = self.config.resolve_stat(leg.stat_type)
        if stat is None:
            return LegResolution(NO_DATA, reason="unknown_prop")

        window = [g for g in self.logs if self._in_window(g.game_date, target)]
        name, score = best_name_match(leg.player, {g.player for g in window})
        if name is None:
            logger.debug("No game log for %s near %s", leg.player, target)
            return LegResolution(NO_DATA, reason="no_game_log")

        game = self._closest([g for g in window if g.player == name], target)
        actual = game.value(stat.columns)
        if actual is None:
            return LegResolution(NO_DATA, matched_name=name, match_score=score,
                                 game_date=game.game_date, reason="missing_stat")
        return LegResolution(
            leg_outcome(actual, leg.line, leg.side),
            actual_value=actual,
            matched_name=name,
            match_score=score,
            game_date=game.game_date,
        )

    # ---- team legs ----

    def _find_result(self, team: str, target: date) -> Tuple[Optional[GameResult], Optional[bool]]:
        window = [r for r in self.results if self._in_window(r.game_date, target)]
        matches = []
        for r in window:
            hit = resolve_team(team, [r.home_team, r.away_team], self.config)
            if hit is not None:
                matches.append((r, hit == r.home_team))
        if not matches:
            return None, None
        return min(matches, key=lambda m: (abs((m[0].game_date - target).days), m[0].game_date))

    def _find_result_in_text(self, text: Optional[str], target: date) -> Tuple[Optional[GameResult], Optional[bool]]:
        """Game whose home or away team the text names; games naming both teams win."""
        matches = []
        for r in self.results:
            if not self._in_window(r.game_date, target):
                continue
            home = team_mentioned(r.home_team, text)
            away = team_mentioned(r.away_team, text)
            if home or away:
                matches.append((r, home, home + away))
        if not matches:
            return None, None
        r, home, _ = min(matches, key=lambda m: (-m[2], abs((m[0].game_date - target).days), m[0].game_date))
        return r, home

    def resolve_team_leg(self, leg: Leg, target: date) -> LegResolution:
        team = leg.team or extract_team(leg.description)
        result, is_home = (None, None) if team is None else self._find_result(team, target)
        if result is None:
            result, is_home = self._find_result_in_text(leg.description, target)
            if result is not None:
                team = result.home_team if is_home else result.away_team
        if result is None:
            return LegResolution(NO_DATA, reason="no_game")
        if not result.completed or result.home_score is None or result.away_score is None:
            return LegResolution(NO_DATA, game_date=result.game_date, reason="not_final")

        own = result.home_score if is_home else result.away_score
        other = result.away_score if is_home else result.home_score
        bet_type = classify_bet_type(leg)

        if bet_type == BET_TOTAL:
            total = float(result.home_score + result.away_score)
            outcome = leg_outcome(total, leg.line, leg.side)
            actual = total
        elif bet_type == BET_SPREAD:
            margin = own + leg.line - other
            actual = float(own - other)
            outcome = PUSH if margin == 0 else (HIT if margin > 0 else MISS)
        else:
            actual = float(own - other)
            outcome = PUSH if own == other else (HIT if own > other else MISS)
        return LegResolution(outcome, actual_value=actual, matched_name=team,
                             match_score=1.0, game_date=result.game_date)

    def resolve(self, leg: Leg, target: date) -> LegResolution:
        if classify_bet_type(leg) == BET_PLAYER_PROP:
            return self.resolve_player_leg(leg, target)
        return self.resolve_team_leg(leg, target)

    def resolve_all(self, legs: Sequence[Leg], target: date) -> List[LegResolution]:
        return [self.resolve(leg, target) for leg in legs]
