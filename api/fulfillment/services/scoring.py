from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

MissingPolicy = Literal["zero", "renormalize"]
ScoreBand = Literal["success", "warning", "destructive"]

DIMENSION_WEIGHTS: dict[str, float] = {
    "semantic": 0.3,
    "availability": 0.3,
    "skill_level": 0.2,
    "location": 0.2,
}
MATCH_SCORE_THRESHOLD = 0.05
_SCORE_PRECISION = 6


@dataclass(slots=True)
class ScoreBreakdown:
    semantic: float | None = None
    availability: float | None = None
    skill_level: float | None = None
    location: float | None = None

    def dimension(self, name: str) -> float | None:
        return _clamp(getattr(self, name))


@dataclass(slots=True)
class RankedCandidate:
    candidate_id: str
    score: float
    breakdown: ScoreBreakdown


def combine(breakdown: ScoreBreakdown, *, policy: MissingPolicy = "zero") -> float:
    """Combine the four sub-scores into one ranking score in [0, 1].

    With the default ``zero`` policy an unknown dimension contributes nothing
    while its weight still counts, so incomplete profiles rank lower. The
    ``renormalize`` policy drops unknown dimensions from both sides of the
    weighted mean instead. Out-of-range inputs are clamped and never raise.
    """
    terms: list[float] = []
    total_weight = 0.0
    for name, weight in DIMENSION_WEIGHTS.items():
        value = breakdown.dimension(name)
        if value is None:
            if policy == "renormalize":
                continue
            value = 0.0
        terms.append(value * weight)
        total_weight += weight

    if total_weight <= 0:
        return 0.0
    score = math.fsum(terms)
    if policy == "renormalize":
        score /= total_weight
    return round(min(1.0, max(0.0, score)), _SCORE_PRECISION)


def rank_candidates(
    candidates: Iterable[tuple[str, ScoreBreakdown]],
    *,
    policy: MissingPolicy = "zero",
    threshold: float = MATCH_SCORE_THRESHOLD,
) -> list[RankedCandidate]:
    scored = [
        RankedCandidate(candidate_id=candidate_id, score=combine(breakdown, policy=policy), breakdown=breakdown)
        for candidate_id, breakdown in candidates
    ]
    kept = [row for row in scored if row.score >= threshold]
    return sorted(kept, key=lambda row: (-row.score, row.candidate_id))


def format_score(score: float) -> str:
    return f"{round(score * 100)}%"


def score_band(score: float) -> ScoreBand:
    if score >= 0.7:
        return "success"
    if score >= 0.5:
        return "warning"
    return "destructive"


def _clamp(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return min(1.0, max(0.0, number))
