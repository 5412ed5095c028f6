"""
Error taxonomy for rent collection.

Every domain failure maps to exactly one class here. The HTTP layer renders
them uniformly as {"code": ..., "detail": ..., **extra} via
`rent_collection_error_handler`, registered in app.main.
"""
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class RentCollectionError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra: Dict[str, Any] = extra


class AuthorizationError(RentCollectionError):
    """Caller lacks entitlement or setup for their own resources. Never retried."""
    status_code = 403
    code = "authorization_error"


class PaymentValidationError(RentCollectionError):
    """Malformed input. Raised before any durable write."""
    status_code = 400
    code = "validation_error"


class NotFoundError(RentCollectionError):
    status_code = 404
    code = "not_found"


class OwnershipError(NotFoundError):
    """
    The row exists but belongs to another landlord.

    Logged as an authorization violation but never recorded, and answered
    exactly like NotFoundError so other landlords' rows stay invisible.
    """

    def __init__(self, detail: str, *, resource: str, resource_id: str, owner_id: Optional[str] = None):
        super().__init__(detail)
        self.resource = resource
        self.resource_id = resource_id
        self.owner_id = owner_id


class ProcessorRejectedError(RentCollectionError):
    """The processor declined synchronously. `detail` is the processor's reason, verbatim."""
    status_code = 402
    code = "processor_rejected"


class ProcessorUnavailableError(RentCollectionError):
    """Transport failure: the outcome of the call is unknown."""
    status_code = 504
    code = "processor_unavailable"


class InvalidTransitionError(RentCollectionError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, detail: str, *, current_status: Optional[str] = None, **extra: Any):
        super().__init__(detail, current_status=current_status, **extra)
        self.current_status = current_status


class WebhookSignatureError(RentCollectionError):
    status_code = 400
    code = "invalid_signature"


async def rent_collection_error_handler(request: Request, exc: RentCollectionError) -> JSONResponse:
    body = {"code": exc.code, "detail": exc.detail}
    body.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=body)
