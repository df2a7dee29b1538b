class FulfillmentError(Exception):
    """Base error for posting fulfillment operations."""

    code = "INTERNAL"


class FulfillmentValidationError(FulfillmentError):
    """Raised when input is malformed or missing."""

    code = "VALIDATION"


class PostingClosedError(FulfillmentError):
    """Raised when a posting no longer accepts applications or invites."""

    code = "CLOSED"


class FulfillmentForbiddenError(FulfillmentError):
    """Raised when the actor may not perform the operation."""

    code = "FORBIDDEN"


class FulfillmentNotFoundError(FulfillmentError):
    """Raised when a posting, application or friend-ask does not exist."""

    code = "NOT_FOUND"


class FulfillmentConflictError(FulfillmentError):
    """Raised when an operation collides with existing state."""

    code = "CONFLICT"


class InvalidTransitionError(FulfillmentConflictError):
    """Raised when a status change is not allowed from the current status."""


class DuplicateApplicationError(FulfillmentConflictError):
    """Raised when the applicant already holds an application for the posting."""

    code = "DUPLICATE"


class CapacityExceededError(FulfillmentConflictError):
    """Raised when an accept is attempted and no slot is free."""

    code = "CAPACITY_EXCEEDED"


class FulfillmentUnavailableError(FulfillmentError):
    """Raised when the store is unavailable or not configured."""

    code = "INTERNAL"
