"""
Risk-tiered parlay assembler.

Greedily selects six diversified legs from the actionable edge assessments
for each risk tier.  Correlated same-player signals (duo stacks) are
rewarded through a scoring boost, but a wager never holds two legs for the
same player.

Selection order
---------------
    1. Score every candidate:
         |edge| × hit_rate × (1 − volatility / 2)
         + defense alignment (±5) + confidence bonus (+10 HIGH / +5 MEDIUM)
         + duo boost
    2. For each duo (strongest first) try to seat its best-scoring member.
    3. Fill the remaining seats from the full sorted list.

Every candidate must pass, in order: one leg per player (so a player
never carries both a base and a combination stat), at most two legs per
stat type, and the tier's hit-rate / volatility / edge gates.  A wager
is only emitted with exactly six legs over at least three stat types and
enough top-confidence legs; otherwise the tier returns no wager (never a
partial one).
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from propedge.core.records import EdgeAssessment, Leg, Wager
from propedge.core.stat_config import (
    DEFAULT_RISK_TIERS,
    SIDE_OVER,
    EngineConfig,
    RiskTier,
)
from propedge.services.duo_detector import DuoStack
from propedge.services.edge_engine import CONFIDENCE_HIGH, CONFIDENCE_MEDIUM

logger = logging.getLogger(__name__)

LEGS_PER_WAGER = 6
MAX_LEGS_PER_STAT = 2
MIN_STAT_TYPES = 3

# Rejection reasons
REJECT_DUPLICATE_PLAYER = "duplicate_player"
REJECT_STAT_CAP = "stat_cap"
REJECT_TIER_GATE = "tier_gate"


@dataclass(frozen=True)
class AssemblerWeights:
    """Scoring / aggregate weights.  Swapped wholesale for A/B variants."""

    name: str = "control"
    defense_alignment_bonus: float = 5.0
    top_confidence_bonus: float = 10.0
    next_confidence_bonus: float = 5.0
    duo_boost_scale: float = 1.0
    # confidence-score aggregates
    tier_weights: Tuple[Tuple[str, float], ...] = (
        (CONFIDENCE_HIGH, 1.0),
        (CONFIDENCE_MEDIUM, 0.85),
    )
    low_tier_weight: float = 0.70
    duo_count_boost: float = 3.0
    favorable_matchup_boost: float = 10.0

    def tier_weight(self, confidence_tier: str) -> float:
        for label, weight in self.tier_weights:
            if label == confidence_tier:
                return weight
        return self.low_tier_weight


CONTROL_WEIGHTS = AssemblerWeights()
VARIANT_WEIGHTS = AssemblerWeights(
    name="variant",
    defense_alignment_bonus=8.0,
    duo_boost_scale=1.5,
    favorable_matchup_boost=15.0,
)


@dataclass
class Candidate:
    assessment: EdgeAssessment
    score: float
    alignment: int          # +1 favorable, 0 neutral, −1 unfavorable
    duo_boost: float = 0.0

    @property
    def player_key(self) -> str:
        return self.assessment.player.lower()

    @property
    def direction(self) -> str:
        return self.assessment.recommendation.split(" ", 1)[-1]


@dataclass
class AssemblyResult:
    tier: str
    variant: str
    wager: Optional[Wager] = None
    reason: Optional[str] = None
    rejections: Dict[str, int] = field(default_factory=dict)
    candidates_considered: int = 0

    def to_dict(self) -> Dict:
        return {
            "tier": self.tier,
            "variant": self.variant,
            "wager": self.wager.to_dict() if self.wager else None,
            "reason": self.reason,
            "rejections": dict(self.rejections),
            "candidates_considered": self.candidates_considered,
        }


# ---------------------------------------------------------------------------
# Candidate preparation
# ---------------------------------------------------------------------------

def dedupe_candidates(
    assessments: Iterable[EdgeAssessment],
    config: Optional[EngineConfig] = None,
) -> List[EdgeAssessment]:
    """
    Keep one actionable assessment per (player, stat type).

    When the same player/stat appears from several line sources the
    higher-liquidity source wins; ties go to the larger |edge|.
    """
    config = config or EngineConfig.nba()
    best: Dict[Tuple[str, str], EdgeAssessment] = {}
    for a in assessments:
        if not a.is_actionable:
            continue
        key = (a.player.lower(), a.stat_type)
        current = best.get(key)
        if current is None:
            best[key] = a
            continue
        rank_new = (config.liquidity(a.source), abs(a.edge))
        rank_cur = (config.liquidity(current.source), abs(current.edge))
        if rank_new > rank_cur:
            best[key] = a
    return list(best.values())


def defense_alignment(assessment: EdgeAssessment, league_size: int = 30) -> int:
    """+1 when the matchup favours the bet direction, −1 when it works against it."""
    rank = assessment.defense_rank
    if rank is None:
        return 0
    weak_defense = rank > league_size - 10
    strong_defense = rank <= 10
    is_over = assessment.recommendation.endswith(SIDE_OVER)
    if (is_over and weak_defense) or (not is_over and strong_defense):
        return 1
    if (is_over and strong_defense) or (not is_over and weak_defense):
        return -1
    return 0


def score_candidate(
    assessment: EdgeAssessment,
    weights: AssemblerWeights = CONTROL_WEIGHTS,
    duo_boost: float = 0.0,
    league_size: int = 30,
) -> Tuple[float, int]:
    """Return (score, defense alignment) for one assessment."""
    base = abs(assessment.edge) * assessment.hit_rate * (1.0 - assessment.volatility / 2.0)
    alignment = defense_alignment(assessment, league_size)
    score = base + alignment * weights.defense_alignment_bonus

    if assessment.confidence_tier == CONFIDENCE_HIGH:
        score += weights.top_confidence_bonus
    elif assessment.confidence_tier == CONFIDENCE_MEDIUM:
        score += weights.next_confidence_bonus

    score += duo_boost * weights.duo_boost_scale
    return score, alignment


def _duo_boosts(duos: Sequence[DuoStack]) -> Dict[Tuple[str, str], float]:
    boosts: Dict[Tuple[str, str], float] = {}
    for duo in duos:
        for a in duo.legs:
            key = (a.player.lower(), a.stat_type)
            boosts[key] = max(boosts.get(key, 0.0), duo.boost)
    return boosts


def build_candidates(
    assessments: Iterable[EdgeAssessment],
    duos: Sequence[DuoStack] = (),
    weights: AssemblerWeights = CONTROL_WEIGHTS,
    config: Optional[EngineConfig] = None,
) -> List[Candidate]:
    config = config or EngineConfig.nba()
    boosts = _duo_boosts(duos)
    candidates = []
    for a in dedupe_candidates(assessments, config):
        boost = boosts.get((a.player.lower(), a.stat_type), 0.0)
        score, alignment = score_candidate(a, weights, boost, config.league_size)
        candidates.append(Candidate(assessment=a, score=score, alignment=alignment, duo_boost=boost))
    candidates.sort(key=lambda c: (c.score, abs(c.assessment.edge)), reverse=True)
    return candidates


# ---------------------------------------------------------------------------
# Constraint checks
# ---------------------------------------------------------------------------

def _passes_tier(candidate: Candidate, tier: RiskTier) -> bool:
    a = candidate.assessment
    if a.hit_rate < tier.min_hit_rate:
        return False
    if a.volatility > tier.max_volatility:
        return False
    if tier.min_edge is not None and abs(a.edge) < tier.min_edge:
        return False
    return True


def _rejection(
    candidate: Candidate,
    selected: Sequence[Candidate],
    stat_counts: Dict[str, int],
    tier: RiskTier,
) -> Optional[str]:
    if any(s.player_key == candidate.player_key for s in selected):
        return REJECT_DUPLICATE_PLAYER
    if stat_counts.get(candidate.assessment.stat_type, 0) >= MAX_LEGS_PER_STAT:
        return REJECT_STAT_CAP
    if not _passes_tier(candidate, tier):
        return REJECT_TIER_GATE
    return None


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

def _to_leg(candidate: Candidate) -> Leg:
    a = candidate.assessment
    return Leg(
        player=a.player,
        stat_type=a.stat_type,
        line=a.line,
        side=candidate.direction,
        predicted_probability=a.hit_rate,
        engine=a.engine,
        edge=a.edge,
        team=a.team,
        opponent=a.opponent,
        event_id=a.event_id,
        bet_type="player_prop",
    )


def wager_confidence(
    selected: Sequence[Candidate],
    duo_count: int,
    weights: AssemblerWeights = CONTROL_WEIGHTS,
) -> float:
    """Tier-weighted mean hit-rate, boosted by duos and favorable matchups, in [0, 100]."""
    if not selected:
        return 0.0
    total_w = 0.0
    weighted = 0.0
    for c in selected:
        w = weights.tier_weight(c.assessment.confidence_tier)
        weighted += c.assessment.hit_rate * w
        total_w += w
    score = (weighted / total_w) * 100.0 if total_w else 0.0
    favorable_fraction = sum(1 for c in selected if c.alignment > 0) / len(selected)
    score += duo_count * weights.duo_count_boost
    score += favorable_fraction * weights.favorable_matchup_boost
    return max(0.0, min(100.0, score))


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

def assemble_wager(
    assessments: Iterable[EdgeAssessment],
    duos: Sequence[DuoStack] = (),
    tier: RiskTier = DEFAULT_RISK_TIERS[1],
    weights: AssemblerWeights = CONTROL_WEIGHTS,
    wager_date: Optional[date] = None,
    config: Optional[EngineConfig] = None,
) -> AssemblyResult:
    """
    Build one six-leg wager for ``tier``.

    Returns an AssemblyResult whose ``wager`` is None (with a ``reason``)
    when the tier cannot be filled.  Raises InvariantViolation if a
    duplicate-player wager would be constructed.
    """
    config = config or EngineConfig.nba()
    candidates = build_candidates(assessments, duos, weights, config)
    result = AssemblyResult(tier=tier.name, variant=weights.name, candidates_considered=len(candidates))

    selected: List[Candidate] = []
    stat_counts: Dict[str, int] = {}
    seated = set()

    def try_seat(candidate: Candidate) -> bool:
        reason = _rejection(candidate, selected, stat_counts, tier)
        if reason:
            result.rejections[reason] = result.rejections.get(reason, 0) + 1
            return False
        selected.append(candidate)
        seated.add(id(candidate))
        stat = candidate.assessment.stat_type
        stat_counts[stat] = stat_counts.get(stat, 0) + 1
        return True

    # Pass 1: best member of each duo
    by_key = {(c.player_key, c.assessment.stat_type): c for c in candidates}
    for duo in duos:
        if len(selected) >= LEGS_PER_WAGER:
            break
        members = [
            by_key[(a.player.lower(), a.stat_type)]
            for a in duo.legs
            if (a.player.lower(), a.stat_type) in by_key
        ]
        members.sort(key=lambda c: c.score, reverse=True)
        for member in members:
            if try_seat(member):
                break

    # Pass 2: fill from the full sorted list
    for candidate in candidates:
        if len(selected) >= LEGS_PER_WAGER:
            break
        if id(candidate) in seated:
            continue
        try_seat(candidate)

    if len(selected) < LEGS_PER_WAGER:
        result.reason = "insufficient_legs"
        logger.info(
            "No %s/%s wager: %d of %d legs qualified (rejections=%s)",
            tier.name, weights.name, len(selected), LEGS_PER_WAGER, result.rejections,
        )
        return result

    stat_types = {c.assessment.stat_type for c in selected}
    if len(stat_types) < MIN_STAT_TYPES:
        result.reason = "insufficient_diversity"
        logger.info("No %s/%s wager: only %d stat types", tier.name, weights.name, len(stat_types))
        return result

    top_count = sum(1 for c in selected if c.assessment.confidence_tier == CONFIDENCE_HIGH)
    if top_count < tier.min_top_confidence_legs:
        result.reason = "insufficient_top_confidence"
        logger.info(
            "No %s/%s wager: %d top-confidence legs, %d required",
            tier.name, weights.name, top_count, tier.min_top_confidence_legs,
        )
        return result

    selected_players = {c.player_key for c in selected}
    duo_count = sum(1 for d in duos if d.player.lower() in selected_players)

    # Wager construction enforces the one-leg-per-player invariant
    result.wager = Wager(
        legs=tuple(_to_leg(c) for c in selected),
        tier=tier.name,
        wager_date=wager_date or selected[0].assessment.game_date,
        variant=weights.name,
        total_edge=sum(abs(c.assessment.edge) for c in selected),
        combined_hit_rate=sum(c.assessment.hit_rate for c in selected) / len(selected),
        confidence_score=wager_confidence(selected, duo_count, weights),
        duo_count=duo_count,
    )
    logger.info(
        "Built %s/%s wager: edge=%.2f hit=%.1f%% confidence=%.1f duos=%d",
        tier.name, weights.name, result.wager.total_edge,
        result.wager.combined_hit_rate * 100, result.wager.confidence_score, duo_count,
    )
    return result


def build_tiered_wagers(
    assessments: Sequence[EdgeAssessment],
    duos: Sequence[DuoStack] = (),
    tiers: Sequence[RiskTier] = DEFAULT_RISK_TIERS,
    weights: AssemblerWeights = CONTROL_WEIGHTS,
    wager_date: Optional[date] = None,
    config: Optional[EngineConfig] = None,
) -> List[AssemblyResult]:
    """Run :func:`assemble_wager` once per tier over the same candidate pool."""
    return [
        assemble_wager(assessments, duos, tier, weights, wager_date, config)
        for tier in tiers
    ]


def assemble_variants(
    assessments: Sequence[EdgeAssessment],
    duos: Sequence[DuoStack] = (),
    tier: RiskTier = DEFAULT_RISK_TIERS[1],
    control: AssemblerWeights = CONTROL_WEIGHTS,
    variant: AssemblerWeights = VARIANT_WEIGHTS,
    wager_date: Optional[date] = None,
    config: Optional[EngineConfig] = None,
) -> Dict[str, AssemblyResult]:
    """Build parallel control / variant wagers with the same selection algorithm."""
    return {
        control.name: assemble_wager(assessments, duos, tier, control, wager_date, config),
        variant.name: assemble_wager(assessments, duos, tier, variant, wager_date, config),
    }


def format_wager_ticket(wager: Wager) -> str:
    """Format a wager for human-readable display."""
    lines = [
        f"{wager.tier.upper()} {len(wager.legs)}-Leg Parlay ({wager.variant})",
        f"   Total Edge: {wager.total_edge:.2f}",
        f"   Combined Hit Rate: {wager.combined_hit_rate:.1%}",
        f"   Confidence: {wager.confidence_score:.0f}/100",
    ]
    for leg in wager.legs:
        lines.append(f"   - {leg.player} {leg.side} {leg.line:g} {leg.stat_type} ({leg.predicted_probability:.0%})")
    return "\n".join(lines)
