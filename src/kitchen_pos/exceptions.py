"""Custom exceptions for Kitchen POS session handling.

Every failure surfaced by the session reconciler is one of the kinds below.
Each carries a stable ``code`` and the HTTP status the API layer renders it
with.
"""


class AuthError(Exception):
    """Base class for authentication and session failures."""

    code = "auth_error"
    status_code = 401
    default_message = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentialsError(AuthError):
    """Raised when the credential store rejects an email/password pair."""

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid login credentials"


class ProfileRejectedError(AuthError):
    """A live identity exists but its profile may not hold a session."""

    code = "profile_rejected"
    status_code = 403


class EmailNotVerifiedError(ProfileRejectedError):
    """Raised when the identity's email address has not been confirmed."""

    code = "email_not_verified"
    status_code = 403
    default_message = "Please verify your email address before signing in"


class AccountPendingApprovalError(ProfileRejectedError):
    """Raised when a non-admin profile has not been activated yet."""

    code = "account_pending_approval"
    status_code = 403
    default_message = "Your account is pending approval by a Super Admin"


class ProfileNotFoundError(ProfileRejectedError):
    """Raised when no usable profile row exists for an identity."""

    code = "profile_not_found"
    status_code = 404
    default_message = "User profile not found"


class SessionFetchTimeoutError(AuthError):
    """Raised when a provider or profile call exceeds its time bound."""

    code = "session_fetch_timeout"
    status_code = 504

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s during {operation}")


class SignOutFailureError(AuthError):
    """Raised when the remote sign-out fails. Local state is already cleared."""

    code = "sign_out_failure"
    status_code = 502
    default_message = "Remote sign-out failed"
