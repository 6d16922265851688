"""Error kinds raised by the IAM core.

Each error carries the HTTP status the API layer renders it with. Anything
that is not an :class:`IamError` is treated as unexpected and replaced by a
:class:`ServiceFailure` before it leaves the service layer.
"""

from __future__ import annotations


class IamError(Exception):
    """Base class for domain errors mapped to HTTP responses."""

    status_code: int = 400
    default_message: str = "Bad Request"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code


class InvalidCredentials(IamError):
    status_code = 401
    default_message = "User credentials are invalid."


class AccountNotEnabled(IamError):
    status_code = 401
    default_message = "User account is not enabled."


class EmailNotVerified(IamError):
    status_code = 401
    default_message = "User email is not verified."


class AccountNotFound(IamError):
    status_code = 404
    default_message = "User not found"


class AlreadyVerified(IamError):
    status_code = 400
    default_message = "Email is already verified."


class DuplicateAccount(IamError):
    """The (email, organization) pair is already registered."""

    status_code = 400
    default_message = "Email already exists"


class OrganizationNotFound(IamError):
    status_code = 400
    default_message = "Organization does not exist"


class InvalidOrExpiredToken(IamError):
    """Signature, audience, issuer, purpose or expiry check failed."""

    status_code = 401
    default_message = "Unauthorized: Invalid or expired token"


class TokenRevoked(IamError):
    """The token verifies but is no longer the live one in the registry."""

    status_code = 401
    default_message = "Token has been revoked or is invalid"


class Forbidden(IamError):
    status_code = 403
    default_message = "Forbidden"


class ServiceFailure(IamError):
    """Generic failure whose cause is logged but never exposed to callers."""

    status_code = 500
    default_message = "Service Error"


class SigningFailure(ServiceFailure):
    default_message = "Service Error: Failed to sign token"
