from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ScoreBreakdownIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    semantic: float | None = None
    availability: float | None = None
    skill_level: float | None = None
    location: float | None = None


class ScoreRequest(BaseModel):
    breakdown: ScoreBreakdownIn


class ScoreOut(BaseModel):
    score: float
    display: str
    band: Literal["success", "warning", "destructive"]


class RankCandidateIn(BaseModel):
    candidate_id: str = Field(min_length=1)
    breakdown: ScoreBreakdownIn


class RankRequest(BaseModel):
    candidates: list[RankCandidateIn] = Field(max_length=500)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class RankedCandidateOut(BaseModel):
    candidate_id: str
    score: float
    display: str
    band: Literal["success", "warning", "destructive"]
    breakdown: ScoreBreakdownIn
