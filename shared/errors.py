"""Error taxonomy shared by every service.

Services raise these; each FastAPI app turns them into
``{"success": false, "error": ...}`` with the matching status code.
"""
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base exception for errors that map onto an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(AppError):
    """Missing or malformed input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(AppError):
    """Role or ownership mismatch."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    """Scarce resource already consumed (expired or exhausted coupon, duplicate key)."""

    status_code = status.HTTP_409_CONFLICT


class AvailabilityError(AppError):
    """Pleb is not eligible for a booking at assignment time."""

    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamError(AppError):
    """An external collaborator failed or could not be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY


class PaymentProviderError(UpstreamError):
    """The payment gateway rejected the request or was unreachable.

    Carries the provider's raw code; the message is safe to show to users and
    never contains card data or the provider payload.
    """

    def __init__(self, provider: str, message: str, code: Optional[str] = None):
        self.provider = provider
        self.code = code
        super().__init__(message)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
