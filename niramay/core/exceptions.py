import logging
from typing import Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse

# Set up our logger
logger = logging.getLogger(__name__)


class NiramayError(Exception):
    """Base class for business-rule failures that map to a user-facing message."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(NiramayError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ValidationError(NiramayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class MissingAddressError(ValidationError):
    code = "missing_address"


class InvalidAddressError(ValidationError):
    code = "invalid_address"


class InsufficientResourceError(NiramayError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_resource"


class InsufficientPointsError(InsufficientResourceError):
    code = "insufficient_points"


class InsufficientInventoryError(InsufficientResourceError):
    code = "insufficient_inventory"


class ConflictError(NiramayError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class TransactionFailedError(NiramayError):
    """A multi-step write was rolled back because one of its writes failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "transaction_failed"


class PaymentFailedError(TransactionFailedError):
    code = "payment_failed"


class InventoryUpdateFailedError(TransactionFailedError):
    code = "inventory_update_failed"


async def niramay_exception_handler(request: Request, exc: NiramayError):
    """Turns a business-rule failure into the JSON shape the dashboards display."""
    logger.warning("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    content = {"detail": exc.message, "error": exc.code}
    if exc.detail:
        content["reason"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception):
    """
    Catches ALL completely unhandled Python exceptions (500s) globally.
    Logs the full traceback securely on the server, but returns a clean JSON to the client.
    """
    logger.error(f"CRITICAL UNHANDLED ERROR processing {request.method} {request.url}: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected system error occurred. Please try again later."},
    )
