"""Engine configuration: every stat-specific constant in one place.

This module is the **registry** for constants that differ between stat
types or sports.  Nowhere else in the codebase should edge thresholds,
volatility caps, stat-to-column maps or team aliases be hard-coded.

Architecture
------------
:class:`EngineConfig` is a frozen dataclass carrying all per-sport constants.
The named constructor :meth:`EngineConfig.nba` returns a pre-populated
instance.  Lookup tables inside it are wrapped in ``MappingProxyType`` so a
component that receives the config cannot mutate shared state.

Typical usage::

    from propedge.core.stat_config import EngineConfig

    cfg = EngineConfig.nba()
    engine = EdgeEngine(config=cfg)

    # Override a single constant for an experiment:
    from dataclasses import replace
    custom_cfg = replace(cfg, anomaly_edge=7.0)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final, Mapping, Optional, Tuple

SPORT_ID_NBA: Final[str] = "nba"
SPORT_ID_WNBA: Final[str] = "wnba"

SIDE_OVER: Final[str] = "OVER"
SIDE_UNDER: Final[str] = "UNDER"


@dataclass(frozen=True)
class StatDef:
    """One proposition stat type and how to read it from a game log.

    Attributes:
        key: Canonical stat key (``"points"``, ``"pts_rebs_asts"``...).
        columns: GameLog column(s) summed to produce the realized value.
        lean_threshold: Minimum |edge| for a LEAN recommendation.
        strong_threshold: Minimum |edge| for a STRONG recommendation.
        strong_volatility_cap: Maximum coefficient of variation allowed
            for a STRONG recommendation.
    """

    key: str
    columns: Tuple[str, ...]
    lean_threshold: float
    strong_threshold: float
    strong_volatility_cap: float

    @property
    def is_combo(self) -> bool:
        return len(self.columns) > 1


@dataclass(frozen=True)
class RiskTier:
    """Gate configuration for one wager risk tier."""

    name: str
    min_hit_rate: float
    max_volatility: float
    min_top_confidence_legs: int
    min_edge: Optional[float] = None


CONSERVATIVE_TIER: Final[RiskTier] = RiskTier("conservative", 0.70, 0.25, 2)
BALANCED_TIER: Final[RiskTier] = RiskTier("balanced", 0.65, 0.35, 1)
VALUE_TIER: Final[RiskTier] = RiskTier("value", 0.60, 0.45, 0, min_edge=1.0)

DEFAULT_RISK_TIERS: Final[Tuple[RiskTier, ...]] = (CONSERVATIVE_TIER, BALANCED_TIER, VALUE_TIER)


# ---------------------------------------------------------------------------
# NBA tables
# ---------------------------------------------------------------------------

_NBA_STATS: Tuple[StatDef, ...] = (
    StatDef("points",        ("points",),                       1.5,  3.0,  0.32),
    StatDef("rebounds",      ("rebounds",),                     1.3,  2.5,  0.34),
    StatDef("assists",       ("assists",),                      1.2,  2.2,  0.30),
    StatDef("threes",        ("threes_made",),                  0.5,  1.0,  0.55),
    StatDef("steals",        ("steals",),                       0.5,  1.0,  0.60),
    StatDef("blocks",        ("blocks",),                       0.5,  1.0,  0.60),
    StatDef("turnovers",     ("turnovers",),                    0.5,  1.0,  0.55),
    StatDef("pts_rebs",      ("points", "rebounds"),            1.8,  3.5,  0.30),
    StatDef("pts_asts",      ("points", "assists"),             1.6,  3.0,  0.30),
    StatDef("rebs_asts",     ("rebounds", "assists"),           1.4,  2.6,  0.32),
    StatDef("pts_rebs_asts", ("points", "rebounds", "assists"), 2.0,  4.0,  0.28),
    StatDef("stls_blks",     ("steals", "blocks"),              0.75, 1.25, 0.55),
)

# Upstream spellings folded into canonical keys.  Keys are compared after
# lower-casing and replacing spaces / dashes with underscores.
_STAT_ALIASES: dict[str, str] = {
    "pts": "points", "player_points": "points",
    "reb": "rebounds", "rebs": "rebounds", "player_rebounds": "rebounds",
    "ast": "assists", "asts": "assists", "player_assists": "assists",
    "3pm": "threes", "threes_made": "threes", "three_pointers": "threes",
    "fg3m": "threes", "player_threes": "threes",
    "stl": "steals", "player_steals": "steals",
    "blk": "blocks", "player_blocks": "blocks",
    "tov": "turnovers", "player_turnovers": "turnovers",
    "pr": "pts_rebs", "p+r": "pts_rebs", "pts+reb": "pts_rebs",
    "points_rebounds": "pts_rebs", "player_points_rebounds": "pts_rebs",
    "pa": "pts_asts", "p+a": "pts_asts", "pts+ast": "pts_asts",
    "points_assists": "pts_asts", "player_points_assists": "pts_asts",
    "ra": "rebs_asts", "r+a": "rebs_asts", "reb+ast": "rebs_asts",
    "rebounds_assists": "rebs_asts", "player_rebounds_assists": "rebs_asts",
    "pra": "pts_rebs_asts", "p+r+a": "pts_rebs_asts", "pts+reb+ast": "pts_rebs_asts",
    "points_rebounds_assists": "pts_rebs_asts",
    "player_points_rebounds_assists": "pts_rebs_asts",
    "stocks": "stls_blks", "s+b": "stls_blks", "stl+blk": "stls_blks",
    "steals_blocks": "stls_blks", "player_blocks_steals": "stls_blks",
}

# (full name, primary abbreviation, extra aliases)
_NBA_TEAMS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("Atlanta Hawks", "ATL", ()),
    ("Boston Celtics", "BOS", ()),
    ("Brooklyn Nets", "BKN", ("BRK",)),
    ("Charlotte Hornets", "CHA", ("CHO",)),
    ("Chicago Bulls", "CHI", ()),
    ("Cleveland Cavaliers", "CLE", ("cavs",)),
    ("Dallas Mavericks", "DAL", ("mavs",)),
    ("Denver Nuggets", "DEN", ()),
    ("Detroit Pistons", "DET", ()),
    ("Golden State Warriors", "GSW", ("GS", "dubs")),
    ("Houston Rockets", "HOU", ()),
    ("Indiana Pacers", "IND", ()),
    ("Los Angeles Clippers", "LAC", ("LA Clippers",)),
    ("Los Angeles Lakers", "LAL", ("LA Lakers",)),
    ("Memphis Grizzlies", "MEM", ()),
    ("Miami Heat", "MIA", ()),
    ("Milwaukee Bucks", "MIL", ()),
    ("Minnesota Timberwolves", "MIN", ("wolves",)),
    ("New Orleans Pelicans", "NOP", ("NO", "pels")),
    ("New York Knicks", "NYK", ("NY",)),
    ("Oklahoma City Thunder", "OKC", ()),
    ("Orlando Magic", "ORL", ()),
    ("Philadelphia 76ers", "PHI", ("sixers",)),
    ("Phoenix Suns", "PHX", ("PHO",)),
    ("Portland Trail Blazers", "POR", ("portland", "trail blazers")),
    ("Sacramento Kings", "SAC", ()),
    ("San Antonio Spurs", "SAS", ("SA",)),
    ("Toronto Raptors", "TOR", ()),
    ("Utah Jazz", "UTA", ("UTAH",)),
    ("Washington Wizards", "WAS", ("WSH",)),
)

# Line sources ranked by liquidity (higher = preferred when the same
# player/stat is offered by more than one source).
_SOURCE_LIQUIDITY: dict[str, int] = {
    "fanduel": 100,
    "draftkings": 95,
    "betmgm": 80,
    "caesars": 75,
    "pointsbet": 60,
    "betrivers": 55,
    "prizepicks": 40,
    "underdog": 35,
}


def _build_team_aliases(teams: Tuple[Tuple[str, str, Tuple[str, ...]], ...]) -> dict[str, str]:
    """Map lower-cased city / nickname / abbreviation / full name → full name.

    Cities shared by more than one franchise (Los Angeles) are left out so
    they can never resolve to the wrong team.
    """
    aliases: dict[str, str] = {}
    city_counts: dict[str, int] = {}
    for full, _abbr, _extra in teams:
        city = full.rsplit(" ", 1)[0].lower()
        city_counts[city] = city_counts.get(city, 0) + 1

    for full, abbr, extra in teams:
        words = full.split(" ")
        city = " ".join(words[:-1]).lower()
        aliases[full.lower()] = full
        aliases[abbr.lower()] = full
        aliases[words[-1].lower()] = full
        if city_counts.get(city) == 1:
            aliases[city] = full
        for alt in extra:
            aliases[alt.lower()] = full
    return aliases


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration bundle for the edge / parlay / matcher pipeline.

    Attributes:
        sport_id: Short identifier string used in DB records.
        stats: Canonical stat key → :class:`StatDef`.
        stat_aliases: Upstream spelling → canonical stat key.
        team_aliases: Lower-cased alias → canonical team name.
        source_liquidity: Line source → liquidity rank.

        --- Sub-median construction ---
        recency_weights: Weights for the recency-weighted median, newest first.
        submedian_weights: (recent form, matchup, minutes-normalized,
            per-minute, location) weights; must sum to 1.0.
        form_window: Games used for hit-rate, volatility and the
            minutes-based sub-medians.
        blend_window: Games used for the short recency median the edge is
            blended toward.
        blend_weight: Share of the edge taken from the short recency median.

        --- Volatility ---
        high_volatility_cv: CV above which a stat is treated as volatile.
        volatile_edge_dampening: Multiplier applied to the edge when volatile.

        --- Recommendation gates ---
        min_games: Games analyzed below this → NO BET.
        strong_min_games: Games analyzed required for STRONG.
        anomaly_edge: |edge| at or above this → NO BET (pricing anomaly).
        lean_hit_rate / strong_hit_rate: Same-direction hit-rate gates.
        strong_max_std: Standard deviation cap for STRONG.
        downgrade_std: Standard deviation at which STRONG is forced to LEAN.
        trap_edge_multiple: STRONG with volatile stat and
            |edge| ≥ multiple × strong threshold is downgraded to LEAN.

        --- Context adjustments ---
        league_size: Number of teams in the defensive ranking.
        defense_multipliers: (best 5, best 10, worst 10, worst 5).
        blowout_spread / blowout_adjustment, teammate_out_adjustment,
        minutes_limit_adjustment: Scalar adjustments to the true median.
        min_expected_minutes: Props below this projected workload are skipped.
    """

    sport_id: str
    stats: Mapping[str, StatDef]
    stat_aliases: Mapping[str, str]
    team_aliases: Mapping[str, str]
    source_liquidity: Mapping[str, int]

    recency_weights: Tuple[float, ...] = (10, 5, 3, 2, 2, 1, 1)
    submedian_weights: Tuple[float, float, float, float, float] = (0.30, 0.20, 0.15, 0.20, 0.15)
    form_window: int = 10
    blend_window: int = 5
    blend_weight: float = 0.20

    high_volatility_cv: float = 0.35
    volatile_edge_dampening: float = 0.75

    min_games: int = 6
    strong_min_games: int = 7
    min_history_games: int = 3
    anomaly_edge: float = 8.0
    lean_hit_rate: float = 0.60
    strong_hit_rate: float = 0.70
    strong_max_std: float = 3.0
    downgrade_std: float = 3.5
    trap_edge_multiple: float = 2.0

    league_size: int = 30
    defense_multipliers: Tuple[float, float, float, float] = (0.92, 0.96, 1.04, 1.08)
    blowout_spread: float = 10.0
    blowout_adjustment: float = -1.0
    teammate_out_adjustment: float = 1.0
    minutes_limit_adjustment: float = -1.5
    min_expected_minutes: float = 24.0

    juice_lag_cents: int = 30
    alt_line_step: float = 2.5

    engine_name: str = field(default="median_edge")

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def nba(cls) -> EngineConfig:
        """Return the canonical NBA configuration."""
        return cls(
            sport_id=SPORT_ID_NBA,
            stats=MappingProxyType({s.key: s for s in _NBA_STATS}),
            stat_aliases=MappingProxyType(dict(_STAT_ALIASES)),
            team_aliases=MappingProxyType(_build_team_aliases(_NBA_TEAMS)),
            source_liquidity=MappingProxyType(dict(_SOURCE_LIQUIDITY)),
        )

    # ------------------------------------------------------------------ #
    #  Lookups                                                             #
    # ------------------------------------------------------------------ #

    def canonical_stat(self, stat_type: Optional[str]) -> Optional[str]:
        """Fold an upstream stat spelling into a canonical key (None if unknown)."""
        if not stat_type:
            return None
        key = stat_type.strip().lower().replace(" ", "_").replace("-", "_")
        if key in self.stats:
            return key
        return self.stat_aliases.get(key)

    def resolve_stat(self, stat_type: Optional[str]) -> Optional[StatDef]:
        key = self.canonical_stat(stat_type)
        return self.stats.get(key) if key else None

    def normalize_defense_rank(self, value: Optional[float]) -> Optional[int]:
        """Validate a 1..league_size defensive rank (1 = best); None otherwise."""
        if value is None:
            return None
        try:
            v = float(value)
        except (TypeError, ValueError):
            return None
        if v < 1 or v > self.league_size:
            return None
        return int(round(v))

    def rank_from_defense_code(self, code: Optional[float]) -> Optional[int]:
        """Map a 0–100 defense code (higher = harder defense) onto a rank.

        The code bands line up with the multiplier bands: 80+ lands in the
        best five, 60–80 in the next five, 40–60 is neutral, 20–40 in the
        worst ten and anything lower in the worst five.
        """
        if code is None:
            return None
        try:
            v = float(code)
        except (TypeError, ValueError):
            return None
        if v < 0 or v > 100:
            return None
        n = self.league_size
        bands = (
            (80.0, 100.0, 1, 5),
            (60.0, 80.0, 6, 10),
            (40.0, 60.0, 11, n - 10),
            (20.0, 40.0, n - 9, n - 5),
            (0.0, 20.0, n - 4, n),
        )
        for low, high, best, worst in bands:
            if v >= low:
                frac = (high - v) / (high - low)
                return best + int(round(frac * (worst - best)))
        return None

    def defense_multiplier(self, rank: Optional[int]) -> float:
        """Multiplier for an opponent's defensive rank; 1.0 when unknown."""
        if rank is None:
            return 1.0
        best5, best10, worst10, worst5 = self.defense_multipliers
        if rank <= 5:
            return best5
        if rank <= 10:
            return best10
        if rank > self.league_size - 5:
            return worst5
        if rank > self.league_size - 10:
            return worst10
        return 1.0

    def liquidity(self, source: Optional[str]) -> int:
        if not source:
            return 0
        return self.source_liquidity.get(source.strip().lower(), 0)

    def __repr__(self) -> str:
        return (
            f"EngineConfig(sport_id={self.sport_id!r}, "
            f"stats={len(self.stats)}, "
            f"anomaly_edge={self.anomaly_edge}, "
            f"min_games={self.min_games})"
        )
