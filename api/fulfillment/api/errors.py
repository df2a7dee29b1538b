from fastapi import HTTPException, status

from fulfillment.services.errors import (
    FulfillmentConflictError,
    FulfillmentError,
    FulfillmentForbiddenError,
    FulfillmentNotFoundError,
    FulfillmentUnavailableError,
    FulfillmentValidationError,
    PostingClosedError,
)

STATUS_BY_ERROR: tuple[tuple[type[FulfillmentError], int], ...] = (
    (FulfillmentValidationError, status.HTTP_400_BAD_REQUEST),
    (PostingClosedError, status.HTTP_400_BAD_REQUEST),
    (FulfillmentForbiddenError, status.HTTP_403_FORBIDDEN),
    (FulfillmentNotFoundError, status.HTTP_404_NOT_FOUND),
    (FulfillmentConflictError, status.HTTP_409_CONFLICT),
    (FulfillmentUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: FulfillmentError) -> HTTPException:
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    for error_type, mapped in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})


def forbidden(exc: PermissionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": FulfillmentForbiddenError.code, "message": str(exc)},
    )
