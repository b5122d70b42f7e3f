from typing import Optional

from fastapi import HTTPException, status


class PortalError(HTTPException):
    """
    Expected, user-facing failure. The class name is the stable ``kind``
    returned to clients next to the human readable ``detail``.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request failed"
    headers: Optional[dict] = None

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail=detail or self.message,
            headers=type(self).headers,
        )

    @property
    def kind(self) -> str:
        return type(self).__name__


class _Unauthorized(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    headers = {"WWW-Authenticate": "Bearer"}


class DuplicateEmail(PortalError):
    message = "Email already registered"


class InvalidCredentials(_Unauthorized):
    message = "Invalid credentials"


class Blocked(_Unauthorized):
    message = "Your account has been blocked"


class EmailNotVerified(_Unauthorized):
    message = "Please verify your email before logging in"


class ApplicationRejected(_Unauthorized):
    message = "Your application has been rejected"


class AccountDisabled(_Unauthorized):
    message = "Your account has been disabled"


class RegistrationPending(_Unauthorized):
    message = "Registration is pending review."


class InvalidToken(_Unauthorized):
    message = "Invalid or expired session token"


class InvalidOrExpiredToken(PortalError):
    message = "Invalid or expired token"


class IncorrectCurrentPassword(PortalError):
    message = "Current password is incorrect"


class AffiliateNotActive(PortalError):
    message = "Affiliate account is not active"


class MissingAttribution(PortalError):
    message = "Affiliate slug is required"


class NotFound(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class Forbidden(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "You do not have permission to perform this action"


class RecaptchaFailed(PortalError):
    message = "reCAPTCHA verification failed"


class SlugUnavailable(PortalError):
    status_code = status.HTTP_409_CONFLICT
    message = "Could not allocate a unique affiliate slug, please retry"
