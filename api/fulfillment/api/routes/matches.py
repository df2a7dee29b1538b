from fastapi import APIRouter, Depends

from fulfillment.api.errors import forbidden
from fulfillment.core.config import Settings, get_settings
from fulfillment.core.security import get_principal
from fulfillment.schemas.matching import (
    RankedCandidateOut,
    RankRequest,
    ScoreBreakdownIn,
    ScoreOut,
    ScoreRequest,
)
from fulfillment.services.scoring import (
    MATCH_SCORE_THRESHOLD,
    ScoreBreakdown,
    combine,
    format_score,
    rank_candidates,
    score_band,
)

router = APIRouter()


@router.post("/score", response_model=ScoreOut)
async def score_match(
    payload: ScoreRequest,
    principal=Depends(get_principal),
    settings: Settings = Depends(get_settings),
) -> ScoreOut:
    try:
        principal.require_scopes({"matches:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    score = combine(ScoreBreakdown(**payload.breakdown.model_dump()), policy=settings.score_missing_policy)
    return ScoreOut(score=score, display=format_score(score), band=score_band(score))


@router.post("/rank", response_model=list[RankedCandidateOut])
async def rank_matches(
    payload: RankRequest,
    principal=Depends(get_principal),
    settings: Settings = Depends(get_settings),
) -> list[RankedCandidateOut]:
    try:
        principal.require_scopes({"matches:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    ranked = rank_candidates(
        ((row.candidate_id, ScoreBreakdown(**row.breakdown.model_dump())) for row in payload.candidates),
        policy=settings.score_missing_policy,
        threshold=payload.threshold if payload.threshold is not None else MATCH_SCORE_THRESHOLD,
    )
    return [
        RankedCandidateOut(
            candidate_id=row.candidate_id,
            score=row.score,
            display=format_score(row.score),
            band=score_band(row.score),
            breakdown=ScoreBreakdownIn.model_validate(row.breakdown),
        )
        for row in ranked
    ]
