"""Kitchen POS - session reconciliation for the restaurant admin console."""

__version__ = "0.1.0"

from kitchen_pos.exceptions import (
    AccountPendingApprovalError,
    AuthError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    ProfileNotFoundError,
    ProfileRejectedError,
    SessionFetchTimeoutError,
    SignOutFailureError,
)

__all__ = [
    "__version__",
    "AccountPendingApprovalError",
    "AuthError",
    "EmailNotVerifiedError",
    "InvalidCredentialsError",
    "ProfileNotFoundError",
    "ProfileRejectedError",
    "SessionFetchTimeoutError",
    "SignOutFailureError",
]
