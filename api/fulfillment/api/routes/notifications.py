from fastapi import APIRouter, Depends, Query

from fulfillment.api.errors import forbidden, to_http_exception
from fulfillment.core.security import get_principal
from fulfillment.schemas.notifications import (
    NotificationOut,
    NotificationPreferencesIn,
    NotificationPreferencesOut,
)
from fulfillment.services.errors import FulfillmentError
from fulfillment.services.repository import get_repository

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    principal=Depends(get_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[NotificationOut]:
    try:
        rows = await repository.list_notifications(user_id=principal.user_id, limit=limit)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return [NotificationOut.model_validate(row) for row in rows]


@router.put("/preferences", response_model=NotificationPreferencesOut)
async def put_notification_preferences(
    payload: NotificationPreferencesIn,
    principal=Depends(get_principal),
    repository=Depends(get_repository),
) -> NotificationPreferencesOut:
    try:
        principal.require_scopes({"postings:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        stored = await repository.set_notification_preferences(principal.user_id, payload.model_dump())
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return NotificationPreferencesOut(**stored)
