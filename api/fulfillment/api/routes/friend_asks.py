from fastapi import APIRouter, Depends, status

from fulfillment.api.deps import get_coordinator
from fulfillment.api.errors import forbidden, to_http_exception
from fulfillment.core.security import get_principal
from fulfillment.schemas.friend_asks import (
    FriendAskCreateRequest,
    FriendAskOut,
    FriendAskRespondRequest,
    InviteResponseOut,
)
from fulfillment.services.errors import FulfillmentError
from fulfillment.services.invites import InviteOutcome
from fulfillment.services.repository import get_repository

router = APIRouter()


@router.get("", response_model=list[FriendAskOut])
async def list_friend_asks(
    principal=Depends(get_principal),
    repository=Depends(get_repository),
) -> list[FriendAskOut]:
    try:
        principal.require_scopes({"postings:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        rows = await repository.list_friend_asks(user_id=principal.user_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return [FriendAskOut.model_validate(row) for row in rows]


@router.post("", response_model=FriendAskOut, status_code=status.HTTP_201_CREATED)
async def create_friend_ask(
    payload: FriendAskCreateRequest,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> FriendAskOut:
    try:
        principal.require_scopes({"invites:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        outcome = await coordinator.invite_created(
            posting_id=payload.posting_id,
            requester_id=principal.user_id,
            ordered_friend_list=payload.ordered_friend_list,
            invite_mode=payload.invite_mode,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return FriendAskOut.model_validate(outcome.friend_ask)


@router.post("/{friend_ask_id}/respond", response_model=InviteResponseOut)
async def respond_to_friend_ask(
    friend_ask_id: str,
    payload: FriendAskRespondRequest,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> InviteResponseOut:
    try:
        principal.require_scopes({"invites:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        outcome = await coordinator.invite_responded(
            friend_ask_id=friend_ask_id,
            responder_id=principal.user_id,
            action=payload.action,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return invite_response(outcome)


@router.post("/{friend_ask_id}/send", response_model=FriendAskOut)
async def send_next_ask(
    friend_ask_id: str,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> FriendAskOut:
    try:
        principal.require_scopes({"invites:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        outcome = await coordinator.invite_advanced(friend_ask_id=friend_ask_id, requester_id=principal.user_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return FriendAskOut.model_validate(outcome.friend_ask)


def invite_response(outcome: InviteOutcome) -> InviteResponseOut:
    return InviteResponseOut(
        friend_ask=FriendAskOut.model_validate(outcome.friend_ask),
        participant_application_id=outcome.participant.id if outcome.participant else None,
    )
