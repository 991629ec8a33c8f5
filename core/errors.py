"""
Domain errors raised by the order core.

Each error carries the HTTP status classification used by the exception
handler registered in ``main.py``. Messages are safe to show to clients.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse


class OrderError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be processed"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OrderError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidStatus(ValidationError):
    default_message = "Invalid status"


class NotFound(OrderError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class AddressNotFound(NotFound):
    default_message = "Delivery address not found"


class Forbidden(OrderError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Admin access required"


class InsufficientStock(OrderError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Insufficient stock"

    def __init__(self, message: str = "", product_id: int | None = None):
        super().__init__(message)
        self.product_id = product_id


class InvalidTransition(OrderError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Status transition not allowed"


class OrderNumberExhausted(OrderError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Failed to generate unique order number after multiple attempts"


class DeliveryFailed(Exception):
    """A single notification delivery failed. Never surfaces to API callers."""

    def __init__(self, message: str = "Notification delivery failed", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
