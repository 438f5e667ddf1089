"""
Duo / stack detection.

A "duo" is two or more actionable (LEAN/STRONG) assessments for the same
player pointing in the same direction, e.g. LeBron OVER points and OVER
assists.  The correlated signal is rewarded downstream by a scoring boost,
but the assembler still emits only one leg per player.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from propedge.core.records import STRONG, EdgeAssessment

logger = logging.getLogger(__name__)

DUO_ELITE = "ELITE"
DUO_STRONG = "STRONG"
DUO_MODERATE = "MODERATE"

# confidence → (min avg hit-rate, min combined |edge|)
_DUO_GATES: Tuple[Tuple[str, float, float], ...] = (
    (DUO_ELITE, 0.80, 6.0),
    (DUO_STRONG, 0.70, 4.0),
)

DUO_BOOST_WEIGHTS: Dict[str, float] = {
    DUO_ELITE: 15.0,
    DUO_STRONG: 10.0,
    DUO_MODERATE: 5.0,
}


@dataclass
class DuoStack:
    player: str
    direction: str
    legs: List[EdgeAssessment] = field(default_factory=list)
    combined_edge: float = 0.0
    avg_hit_rate: float = 0.0
    confidence: str = DUO_MODERATE
    boost: float = 0.0

    @property
    def stat_types(self) -> List[str]:
        return [a.stat_type for a in self.legs]

    @property
    def strong_count(self) -> int:
        return sum(1 for a in self.legs if a.tier == STRONG)

    def to_dict(self) -> Dict:
        return {
            "player": self.player,
            "direction": self.direction,
            "stat_types": self.stat_types,
            "combined_edge": round(self.combined_edge, 2),
            "avg_hit_rate": round(self.avg_hit_rate, 4),
            "confidence": self.confidence,
            "boost": self.boost,
        }


def _direction(assessment: EdgeAssessment) -> str:
    return assessment.recommendation.split(" ", 1)[-1]


def classify_duo(combined_edge: float, avg_hit_rate: float) -> str:
    for label, min_hit, min_edge in _DUO_GATES:
        if avg_hit_rate >= min_hit and combined_edge >= min_edge:
            return label
    return DUO_MODERATE


def detect_duo_stacks(assessments: Iterable[EdgeAssessment]) -> List[DuoStack]:
    """
    Group actionable assessments by (player, direction) and return every
    group with two or more legs, strongest first.
    """
    groups: Dict[Tuple[str, str], List[EdgeAssessment]] = {}
    for a in assessments:
        if not a.is_actionable:
            continue
        key = (a.player.lower(), _direction(a))
        groups.setdefault(key, []).append(a)

    duos: List[DuoStack] = []
    for (_, direction), legs in groups.items():
        # One entry per stat type; the same stat at two lines is not a duo
        by_stat: Dict[str, EdgeAssessment] = {}
        for a in legs:
            best = by_stat.get(a.stat_type)
            if best is None or abs(a.edge) > abs(best.edge):
                by_stat[a.stat_type] = a
        legs = sorted(by_stat.values(), key=lambda a: abs(a.edge), reverse=True)
        if len(legs) < 2:
            continue

        combined_edge = sum(abs(a.edge) for a in legs)
        avg_hit = sum(a.hit_rate for a in legs) / len(legs)
        confidence = classify_duo(combined_edge, avg_hit)
        duos.append(DuoStack(
            player=legs[0].player,
            direction=direction,
            legs=legs,
            combined_edge=combined_edge,
            avg_hit_rate=avg_hit,
            confidence=confidence,
            boost=DUO_BOOST_WEIGHTS[confidence],
        ))

    duos.sort(key=lambda d: (d.boost, d.combined_edge), reverse=True)
    logger.info(
        "Duo detector: %d stacks (%s)",
        len(duos),
        ", ".join(f"{d.player} {d.direction} x{len(d.legs)} {d.confidence}" for d in duos[:5]) or "none",
    )
    return duos
