"""
Error taxonomy for the auth engine.

Every error carries the HTTP status and the machine readable code the client
sees. Messages are deliberately generic; store errors and stack traces never
reach the response body.
"""


class AuthError(Exception):
    status_code = 400
    code = "ERROR"
    message = "Request failed"

    def __init__(self, message: str = None, **extra):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


class ValidationError(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid input data"


class InvalidCredentials(AuthError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class AccountInactive(AuthError):
    status_code = 401
    code = "ACCOUNT_INACTIVE"
    message = "Account disabled"


class AccountLocked(AuthError):
    status_code = 401
    code = "ACCOUNT_LOCKED"
    message = "Account temporarily locked after too many failed attempts"


class MissingToken(AuthError):
    status_code = 401
    code = "MISSING_TOKEN"
    message = "Access token required"


class InvalidToken(AuthError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Invalid token"


class TokenExpired(AuthError):
    status_code = 401
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class InvalidSession(AuthError):
    status_code = 401
    code = "INVALID_SESSION"
    message = "Session invalid or expired"


class InsufficientPermissions(AuthError):
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"
    message = "Forbidden"


class PasswordChangeRequired(AuthError):
    status_code = 403
    code = "PASSWORD_CHANGE_REQUIRED"
    message = "Password change required"


class CSRFMismatch(AuthError):
    status_code = 403
    code = "CSRF_MISMATCH"
    message = "CSRF token invalid or missing"


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class RateLimited(AuthError):
    status_code = 429
    code = "RATE_LIMITED"
    message = "Too many requests. Try again later."

    def __init__(self, retry_after: int, message: str = None):
        super().__init__(message, retry_after_seconds=retry_after)
        self.retry_after = retry_after


class InternalError(AuthError):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"


class PasswordHashError(InternalError):
    """Hashing or verification blew up. Never treated as a match."""
