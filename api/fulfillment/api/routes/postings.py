from fastapi import APIRouter, Depends, status

from fulfillment.api.deps import get_coordinator
from fulfillment.api.errors import forbidden, to_http_exception
from fulfillment.core.security import get_principal
from fulfillment.schemas.applications import ApplicationOut
from fulfillment.schemas.postings import (
    PostingCreateRequest,
    PostingDetailOut,
    PostingOut,
    PostingReactivateRequest,
)
from fulfillment.services.errors import FulfillmentError

router = APIRouter()


@router.post("", response_model=PostingOut, status_code=status.HTTP_201_CREATED)
async def create_posting(
    payload: PostingCreateRequest,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> PostingOut:
    try:
        principal.require_scopes({"postings:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        posting = await coordinator.posting_created(
            creator_id=principal.user_id,
            title=payload.title,
            team_size_min=payload.team_size_min,
            team_size_max=payload.team_size_max,
            auto_accept=payload.auto_accept,
            mode=payload.mode,
            expires_at=payload.expires_at,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return PostingOut.model_validate(posting)


@router.get("/{posting_id}", response_model=PostingDetailOut)
async def get_posting(posting_id: str, coordinator=Depends(get_coordinator)) -> PostingDetailOut:
    try:
        summary = await coordinator.posting_summary(posting_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc

    posting = summary.posting
    return PostingDetailOut(
        **PostingOut.model_validate(posting).model_dump(),
        accepted_count=summary.accepted_count,
        waitlist_count=summary.waitlist_count,
        spots_left=max(0, posting.team_size_max - summary.accepted_count),
    )


@router.get("/{posting_id}/applications", response_model=list[ApplicationOut])
async def list_posting_applications(
    posting_id: str,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> list[ApplicationOut]:
    try:
        principal.require_scopes({"postings:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        rows = await coordinator.posting_applications(posting_id=posting_id, requester_id=principal.user_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return [ApplicationOut.model_validate(row) for row in rows]


@router.post("/{posting_id}/close", response_model=PostingOut)
async def close_posting(
    posting_id: str,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> PostingOut:
    try:
        principal.require_scopes({"postings:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        posting = await coordinator.posting_closed(posting_id=posting_id, actor_id=principal.user_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return PostingOut.model_validate(posting)


@router.patch("/{posting_id}/reactivate", response_model=PostingOut)
async def reactivate_posting(
    posting_id: str,
    payload: PostingReactivateRequest | None = None,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> PostingOut:
    try:
        principal.require_scopes({"postings:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        posting = await coordinator.posting_reactivated(
            posting_id=posting_id,
            actor_id=principal.user_id,
            days=payload.days if payload else None,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return PostingOut.model_validate(posting)
