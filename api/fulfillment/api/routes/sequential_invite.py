from fastapi import APIRouter, Depends

from fulfillment.api.deps import get_coordinator
from fulfillment.api.errors import forbidden, to_http_exception
from fulfillment.api.routes.friend_asks import invite_response
from fulfillment.core.security import get_principal
from fulfillment.schemas.friend_asks import InviteResponseOut, SequentialInviteRespondRequest
from fulfillment.services.errors import FulfillmentError

router = APIRouter()


@router.post("/respond", response_model=InviteResponseOut)
async def respond_by_posting(
    payload: SequentialInviteRespondRequest,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> InviteResponseOut:
    try:
        principal.require_scopes({"invites:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        outcome = await coordinator.invite_responded(
            posting_id=payload.posting_id,
            responder_id=principal.user_id,
            action=payload.action,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return invite_response(outcome)
