from fastapi import APIRouter, Depends, status

from fulfillment.api.deps import get_coordinator
from fulfillment.api.errors import forbidden, to_http_exception
from fulfillment.core.security import get_principal
from fulfillment.schemas.applications import (
    ApplicationCreateRequest,
    ApplicationOut,
    ApplicationPatchRequest,
    ApplicationSubmittedOut,
    ApplicationUpdatedOut,
)
from fulfillment.services.errors import FulfillmentError

router = APIRouter()


@router.post("", response_model=ApplicationSubmittedOut, status_code=status.HTTP_201_CREATED)
async def submit_application(
    payload: ApplicationCreateRequest,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> ApplicationSubmittedOut:
    try:
        principal.require_scopes({"applications:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        result = await coordinator.application_submitted(
            posting_id=payload.posting_id,
            applicant_id=principal.user_id,
            cover_message=payload.cover_message,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc

    return ApplicationSubmittedOut(
        **ApplicationOut.model_validate(result.application).model_dump(),
        waitlist_position=result.waitlist_position,
    )


@router.patch("/{application_id}", response_model=ApplicationUpdatedOut)
async def patch_application(
    application_id: str,
    payload: ApplicationPatchRequest,
    principal=Depends(get_principal),
    coordinator=Depends(get_coordinator),
) -> ApplicationUpdatedOut:
    try:
        principal.require_scopes({"applications:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        result = await coordinator.application_status_changed(
            application_id=application_id,
            actor_id=principal.user_id,
            status=payload.status,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc

    return ApplicationUpdatedOut(
        **ApplicationOut.model_validate(result.application).model_dump(),
        promoted_application_id=result.promoted.id if result.promoted else None,
        offered_application_id=result.offered.id if result.offered else None,
    )
