"""Canonical record types passed between pipeline components.

Upstream feeds deliver records in many shapes; ``services.ingestion``
converts them into these types once, at the boundary.  Every component
downstream of ingestion only ever sees the types defined here.
"""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from propedge.core.errors import InvariantViolation

# Recommendation labels
NO_BET = "NO BET"
LEAN = "LEAN"
STRONG = "STRONG"

# Leg outcomes
HIT = "hit"
MISS = "miss"
PUSH = "push"
NO_DATA = "no_data"

# Wager outcomes
WON = "won"
LOST = "lost"
PENDING = "pending"
PARTIAL = "partial"

# Item statuses
SUCCESS = "success"
SKIPPED = "skipped"


@dataclass(frozen=True)
class PropLine:
    """A bookmaker-offered line for one statistical proposition."""

    player: str
    stat_type: str
    line: float
    side: Optional[str] = None          # None → engine picks the direction
    odds: Optional[int] = None
    odds_open: Optional[int] = None
    event_id: Optional[str] = None
    sport: str = "nba"
    commence_time: Optional[datetime] = None
    source: Optional[str] = None
    team: Optional[str] = None
    opponent: Optional[str] = None
    is_home: Optional[bool] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """A line stops being active once its event has started."""
        if self.commence_time is None:
            return True
        now = now or datetime.now(timezone.utc)
        start = self.commence_time
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now < start

    @property
    def game_date(self) -> Optional[date]:
        return self.commence_time.date() if self.commence_time else None


@dataclass(frozen=True)
class GameLog:
    """Realized statistics for one player (or team) in one completed game."""

    player: str
    game_date: date
    opponent: Optional[str] = None
    is_home: Optional[bool] = None
    minutes: Optional[float] = None
    points: Optional[float] = None
    rebounds: Optional[float] = None
    assists: Optional[float] = None
    threes_made: Optional[float] = None
    steals: Optional[float] = None
    blocks: Optional[float] = None
    turnovers: Optional[float] = None
    team: Optional[str] = None
    team_score: Optional[int] = None
    opponent_score: Optional[int] = None

    def value(self, columns: Tuple[str, ...]) -> Optional[float]:
        """Sum the given stat columns; None if any constituent is missing."""
        total = 0.0
        for col in columns:
            v = getattr(self, col, None)
            if v is None:
                return None
            total += float(v)
        return total


@dataclass(frozen=True)
class GameResult:
    """Final (or in-progress) score for one game, used for team-level legs."""

    home_team: str
    away_team: str
    game_date: date
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    completed: bool = False
    event_id: Optional[str] = None


@dataclass(frozen=True)
class EdgeContext:
    """Per-prop context supplied alongside the history."""

    opponent: Optional[str] = None
    is_home: Optional[bool] = None
    expected_minutes: Optional[float] = None
    defense_rank: Optional[float] = None       # 1..league_size, 1 = best
    defense_code: Optional[float] = None       # 0–100, higher = harder defense
    spread: Optional[float] = None
    injury_context: str = "none"        # none | teammate_out | minutes_limit


@dataclass
class EdgeAssessment:
    """Engine output for one PropLine; recomputed every run."""

    player: str
    stat_type: str
    side: str
    line: float
    game_date: date
    recommendation: str
    confidence_tier: str
    true_median: float
    edge: float
    m1_recent_form: float
    m2_matchup: float
    m3_minutes_normalized: float
    m4_per_minute: float
    m5_location: float
    volatility: float
    std_dev: float
    hit_rate: float
    games_analyzed: int
    defense_rank: Optional[int] = None
    defense_multiplier: float = 1.0
    adjustments: Dict[str, float] = field(default_factory=dict)
    confidence_flag: str = "NORMAL"
    alt_line_suggestion: Optional[float] = None
    reason_summary: str = ""
    is_volatile: bool = False
    event_id: Optional[str] = None
    team: Optional[str] = None
    opponent: Optional[str] = None
    source: Optional[str] = None
    engine: str = "median_edge"
    offered_side: str = ""              # "" when the engine picked the direction

    @property
    def tier(self) -> str:
        if self.recommendation.startswith(STRONG):
            return STRONG
        if self.recommendation.startswith(LEAN):
            return LEAN
        return NO_BET

    @property
    def is_actionable(self) -> bool:
        return self.tier in (STRONG, LEAN)

    @property
    def natural_key(self) -> Tuple[str, str, str, float, date]:
        return (self.player, self.stat_type, self.offered_side, self.line, self.game_date)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["game_date"] = self.game_date.isoformat()
        return d


@dataclass(frozen=True)
class Leg:
    """One proposition inside a wager.  Immutable once created."""

    player: Optional[str]
    stat_type: str
    line: float
    side: str
    predicted_probability: float
    engine: str = "median_edge"
    edge: float = 0.0
    team: Optional[str] = None
    opponent: Optional[str] = None
    event_id: Optional[str] = None
    bet_type: Optional[str] = None      # player_prop | moneyline | spread | total
    description: Optional[str] = None

    @property
    def key(self) -> str:
        who = self.player or self.team or ""
        return f"{who.lower()}|{self.stat_type}|{self.side}|{self.line:g}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Wager:
    """An ordered, immutable set of legs with its aggregate metrics."""

    legs: Tuple[Leg, ...]
    tier: str
    wager_date: date
    variant: str = "control"
    total_edge: float = 0.0
    combined_hit_rate: float = 0.0
    confidence_score: float = 0.0
    duo_count: int = 0

    def __post_init__(self):
        players = [leg.player.lower() for leg in self.legs if leg.player]
        if len(players) != len(set(players)):
            dupes = sorted({p for p in players if players.count(p) > 1})
            raise InvariantViolation(
                f"Wager ({self.tier}/{self.variant}) contains duplicate players: {dupes}"
            )

    @property
    def stat_types(self) -> set:
        return {leg.stat_type for leg in self.legs}

    @property
    def leg_signature(self) -> str:
        keys = "||".join(sorted(leg.key for leg in self.legs))
        return hashlib.sha1(keys.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "variant": self.variant,
            "wager_date": self.wager_date.isoformat(),
            "legs": [leg.to_dict() for leg in self.legs],
            "num_legs": len(self.legs),
            "total_edge": round(self.total_edge, 3),
            "combined_hit_rate": round(self.combined_hit_rate, 4),
            "confidence_score": round(self.confidence_score, 1),
            "duo_count": self.duo_count,
            "leg_signature": self.leg_signature,
        }


@dataclass
class ItemResult:
    """Outcome of processing one item inside a batch."""

    status: str                         # success | skipped | no_data
    key: str
    reason: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchReport:
    """Run-level accumulation of per-item results."""

    items: List[ItemResult] = field(default_factory=list)

    def add(self, result: ItemResult) -> ItemResult:
        self.items.append(result)
        return result

    def count(self, status: str) -> int:
        return sum(1 for r in self.items if r.status == status)

    @property
    def skip_reasons(self) -> Dict[str, int]:
        reasons: Dict[str, int] = {}
        for r in self.items:
            if r.status != SUCCESS and r.reason:
                reasons[r.reason] = reasons.get(r.reason, 0) + 1
        return reasons

    @property
    def is_clean(self) -> bool:
        return all(r.status == SUCCESS for r in self.items)

    def summary(self) -> Dict[str, Any]:
        return {
            "processed": len(self.items),
            "succeeded": self.count(SUCCESS),
            "skipped": self.count(SKIPPED),
            "no_data": self.count(NO_DATA),
            "skip_reasons": self.skip_reasons,
            "clean_run": self.is_clean,
        }
