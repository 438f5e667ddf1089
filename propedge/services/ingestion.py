"""
Boundary adapter: upstream dicts → canonical records.

Feeds spell the same field many ways ("player_name", "playerName",
"athlete", ...).  Every alternate spelling is listed once here; nothing
downstream ever looks at a raw upstream record.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from propedge.core.errors import ValidationError
from propedge.core.records import (
    SKIPPED,
    SUCCESS,
    BatchReport,
    EdgeContext,
    GameLog,
    GameResult,
    ItemResult,
    PropLine,
)
from propedge.core.stat_config import SIDE_OVER, SIDE_UNDER, EngineConfig

logger = logging.getLogger(__name__)

# canonical field → accepted upstream spellings, in priority order
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "player": ("player", "player_name", "playerName", "athlete", "name", "description"),
    "stat_type": ("stat_type", "statType", "prop_type", "propType", "market", "market_key"),
    "line": ("line", "point", "points_line", "line_value", "handicap"),
    "side": ("side", "direction", "pick", "over_under"),
    "odds": ("odds", "price", "american_odds", "odds_american"),
    "odds_open": ("odds_open", "opening_odds", "open_price", "openingOdds"),
    "event_id": ("event_id", "eventId", "game_id", "gameId", "id"),
    "sport": ("sport", "sport_key", "league"),
    "commence_time": ("commence_time", "commenceTime", "start_time", "game_time", "event_time"),
    "source": ("source", "bookmaker", "book", "sportsbook"),
    "team": ("team", "team_name", "player_team"),
    "opponent": ("opponent", "opp", "opponent_team", "vs"),
    "is_home": ("is_home", "home", "isHome"),
    "game_date": ("game_date", "date", "gameDate", "played_on"),
    "minutes": ("minutes", "min", "mins", "minutes_played"),
    "points": ("points", "pts"),
    "rebounds": ("rebounds", "reb", "trb", "total_rebounds"),
    "assists": ("assists", "ast"),
    "threes_made": ("threes_made", "fg3m", "three_pointers_made", "threes", "3pm"),
    "steals": ("steals", "stl"),
    "blocks": ("blocks", "blk"),
    "turnovers": ("turnovers", "tov", "to"),
    "team_score": ("team_score", "teamScore", "pts_team"),
    "opponent_score": ("opponent_score", "opponentScore", "pts_opp"),
    "home_team": ("home_team", "homeTeam", "home"),
    "away_team": ("away_team", "awayTeam", "away"),
    "home_score": ("home_score", "homeScore"),
    "away_score": ("away_score", "awayScore"),
    "completed": ("completed", "is_final", "final", "status"),
    "defense_rank": ("defense_rank", "rank", "def_rank", "defensive_rank"),
    "defense_code": ("defense_code", "def_code", "code", "rating"),
    "expected_minutes": ("expected_minutes", "projected_minutes", "proj_minutes"),
    "spread": ("spread", "vegas_spread", "game_spread"),
    "injury_context": ("injury_context", "injury", "injury_status"),
}

_FINAL_STATUSES = {"final", "completed", "complete", "closed", "post"}


def _pick(raw: Dict[str, Any], field: str) -> Any:
    for name in _FIELD_ALIASES[field]:
        if name in raw and raw[name] not in (None, ""):
            return raw[name]
    return None


def player_name(raw: Dict[str, Any]) -> Optional[str]:
    """Player name under any of the spellings the feeds use."""
    name = _pick(raw, "player")
    return str(name).strip() if name is not None else None


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    f = _to_float(value)
    return int(f) if f is not None else None


def _to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes", "home", "h"):
            return True
        if v in ("false", "0", "no", "away", "a", "@"):
            return False
        return None
    return bool(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _to_date(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    dt = _to_datetime(value)
    return dt.date() if dt else None


def _to_side(value: Any) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip().upper()
    if v in ("OVER", "O", "MORE", "HIGHER"):
        return SIDE_OVER
    if v in ("UNDER", "U", "LESS", "LOWER"):
        return SIDE_UNDER
    return None


# ---------------------------------------------------------------------------
# Record adapters
# ---------------------------------------------------------------------------

def to_prop_line(raw: Dict[str, Any], config: Optional[EngineConfig] = None) -> PropLine:
    """
    Normalize one upstream line record.

    Raises ValidationError for a missing player, a missing or non-positive
    line, or a stat type the registry does not know.
    """
    config = config or EngineConfig.nba()
    player = _pick(raw, "player")
    if not player:
        raise ValidationError("line record has no player", reason="missing_player")
    line = _to_float(_pick(raw, "line"))
    if line is None or line <= 0:
        raise ValidationError(f"invalid line for {player}: {_pick(raw, 'line')!r}", reason="invalid_line")
    raw_stat = _pick(raw, "stat_type")
    stat_type = config.canonical_stat(raw_stat)
    if stat_type is None:
        raise ValidationError(f"unknown stat type {raw_stat!r}", reason="unknown_prop")

    return PropLine(
        player=str(player).strip(),
        stat_type=stat_type,
        line=line,
        side=_to_side(_pick(raw, "side")),
        odds=_to_int(_pick(raw, "odds")),
        odds_open=_to_int(_pick(raw, "odds_open")),
        event_id=str(_pick(raw, "event_id")) if _pick(raw, "event_id") is not None else None,
        sport=str(_pick(raw, "sport") or "nba").lower(),
        commence_time=_to_datetime(_pick(raw, "commence_time")),
        source=(str(_pick(raw, "source")).lower() if _pick(raw, "source") else None),
        team=_pick(raw, "team"),
        opponent=_pick(raw, "opponent"),
        is_home=_to_bool(_pick(raw, "is_home")),
    )


def to_game_log(raw: Dict[str, Any], player: Optional[str] = None) -> GameLog:
    name = player or _pick(raw, "player")
    if not name:
        raise ValidationError("game log has no player", reason="missing_player")
    game_date = _to_date(_pick(raw, "game_date"))
    if game_date is None:
        raise ValidationError(f"game log for {name} has no date", reason="missing_date")

    return GameLog(
        player=str(name).strip(),
        game_date=game_date,
        opponent=_pick(raw, "opponent"),
        is_home=_to_bool(_pick(raw, "is_home")),
        minutes=_to_float(_pick(raw, "minutes")),
        points=_to_float(_pick(raw, "points")),
        rebounds=_to_float(_pick(raw, "rebounds")),
        assists=_to_float(_pick(raw, "assists")),
        threes_made=_to_float(_pick(raw, "threes_made")),
        steals=_to_float(_pick(raw, "steals")),
        blocks=_to_float(_pick(raw, "blocks")),
        turnovers=_to_float(_pick(raw, "turnovers")),
        team=_pick(raw, "team"),
        team_score=_to_int(_pick(raw, "team_score")),
        opponent_score=_to_int(_pick(raw, "opponent_score")),
    )


def to_game_result(raw: Dict[str, Any]) -> GameResult:
    home = _pick(raw, "home_team")
    away = _pick(raw, "away_team")
    if not home or not away:
        raise ValidationError("score record missing teams", reason="missing_team")
    game_date = _to_date(_pick(raw, "game_date") or _pick(raw, "commence_time"))
    if game_date is None:
        raise ValidationError(f"score record {home} vs {away} has no date", reason="missing_date")

    completed = _pick(raw, "completed")
    if isinstance(completed, str):
        completed = completed.strip().lower() in _FINAL_STATUSES or completed.strip().lower() == "true"
    return GameResult(
        home_team=str(home),
        away_team=str(away),
        game_date=game_date,
        home_score=_to_int(_pick(raw, "home_score")),
        away_score=_to_int(_pick(raw, "away_score")),
        completed=bool(completed),
        event_id=str(_pick(raw, "event_id")) if _pick(raw, "event_id") is not None else None,
    )


def to_edge_context(
    raw: Dict[str, Any],
    prop: Optional[PropLine] = None,
    config: Optional[EngineConfig] = None,
) -> EdgeContext:
    """Build the per-prop context; true ranks and 0–100 defense codes stay separate."""
    config = config or EngineConfig.nba()
    injury = str(_pick(raw, "injury_context") or "none").lower()
    return EdgeContext(
        opponent=_pick(raw, "opponent") or (prop.opponent if prop else None),
        is_home=_to_bool(_pick(raw, "is_home")) if _pick(raw, "is_home") is not None
        else (prop.is_home if prop else None),
        expected_minutes=_to_float(_pick(raw, "expected_minutes")),
        defense_rank=config.normalize_defense_rank(_to_float(_pick(raw, "defense_rank"))),
        defense_code=_to_float(_pick(raw, "defense_code")),
        spread=_to_float(_pick(raw, "spread")),
        injury_context=injury if injury in ("teammate_out", "minutes_limit") else "none",
    )


# per-stat defense code columns; combination stats average their parts
_STAT_CODE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "points": ("vs_points_code", "points_code"),
    "rebounds": ("vs_rebounds_code", "rebounds_code"),
    "assists": ("vs_assists_code", "assists_code"),
}


def _stat_codes(row: Dict[str, Any], config: EngineConfig) -> Dict[str, float]:
    """Per-stat codes from a row carrying ``vs_<stat>_code`` columns."""
    base: Dict[str, float] = {}
    for column, names in _STAT_CODE_COLUMNS.items():
        for name in names:
            value = _to_float(row.get(name))
            if value is not None:
                base[column] = value
                break
    codes: Dict[str, float] = {}
    for key, stat in config.stats.items():
        parts = [base.get(c) for c in stat.columns]
        if parts and all(p is not None for p in parts):
            codes[key] = round(sum(parts) / len(parts))
    return codes


def defense_table(rows: Iterable[Dict[str, Any]], config: Optional[EngineConfig] = None) -> Dict[Tuple[str, str], int]:
    """
    Index an opponent-defense feed by (canonical team, stat type).

    A row carries either a true rank, a single 0–100 code, or per-stat
    ``vs_<stat>_code`` columns.  Rows with an unknown team or an unreadable
    value are dropped; a missing entry later means "no adjustment".
    """
    config = config or EngineConfig.nba()
    table: Dict[Tuple[str, str], int] = {}
    for row in rows:
        team = _pick(row, "team")
        if not team:
            continue
        team_key = config.team_aliases.get(str(team).strip().lower(), str(team).strip())

        for stat_key, code in _stat_codes(row, config).items():
            rank = config.rank_from_defense_code(code)
            if rank is not None:
                table[(team_key, stat_key)] = rank

        stat = config.canonical_stat(_pick(row, "stat_type")) or "all"
        rank = config.normalize_defense_rank(_to_float(_pick(row, "defense_rank")))
        if rank is None:
            rank = config.rank_from_defense_code(_to_float(_pick(row, "defense_code")))
        if rank is not None:
            table[(team_key, stat)] = rank
    return table


def lookup_defense_rank(
    table: Dict[Tuple[str, str], int],
    opponent: Optional[str],
    stat_type: str,
    config: Optional[EngineConfig] = None,
) -> Optional[int]:
    if not opponent:
        return None
    config = config or EngineConfig.nba()
    team_key = config.team_aliases.get(opponent.strip().lower(), opponent.strip())
    rank = table.get((team_key, stat_type))
    return rank if rank is not None else table.get((team_key, "all"))


# ---------------------------------------------------------------------------
# Batch helpers
# ---------------------------------------------------------------------------

def normalize_lines(
    raws: Iterable[Dict[str, Any]],
    config: Optional[EngineConfig] = None,
    report: Optional[BatchReport] = None,
) -> Tuple[List[PropLine], BatchReport]:
    """Adapt every raw line; malformed ones become skipped items."""
    report = report if report is not None else BatchReport()
    lines: List[PropLine] = []
    for i, raw in enumerate(raws):
        try:
            lines.append(to_prop_line(raw, config))
        except ValidationError as exc:
            logger.warning("Skipping line record %d: %s", i, exc)
            report.add(ItemResult(SKIPPED, f"line:{i}", reason=exc.reason))
    return lines, report


def normalize_logs(raws: Iterable[Dict[str, Any]], player: Optional[str] = None) -> List[GameLog]:
    """Adapt game logs, dropping malformed rows (logged at DEBUG)."""
    logs: List[GameLog] = []
    for raw in raws:
        try:
            logs.append(to_game_log(raw, player))
        except ValidationError as exc:
            logger.debug("Dropping game log: %s", exc)
    return logs


def normalize_results(raws: Iterable[Dict[str, Any]]) -> List[GameResult]:
    results: List[GameResult] = []
    for raw in raws:
        try:
            results.append(to_game_result(raw))
        except ValidationError as exc:
            logger.debug("Dropping score record: %s", exc)
    return results
