"""Typed application errors.

Every error carries a client-safe ``message`` and an HTTP ``status_code``.
Internal detail (which key, which store call) goes in ``detail`` and is only
ever logged.
"""

from fastapi import status


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad Request"


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "User Unauthorized"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User Not Found"


class ConflictError(AppError):
    # Reported as a bad request, the way duplicate registrations always were
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "User Email Already Exists"


class StoreUnavailableError(UnauthorizedError):
    """A backing store could not confirm validity in time.

    Subclasses UnauthorizedError so that every caller fails closed.
    """

    default_message = "User Unauthorized"


class TokenError(Exception):
    """Raised by the token codec."""


class ExpiredTokenError(TokenError):
    pass


class SignatureError(TokenError):
    pass


class TokenConfigError(TokenError):
    """Key material is missing or unusable. Fatal at startup."""


class SigningError(TokenConfigError):
    pass


class KeyConfigError(TokenConfigError):
    pass
