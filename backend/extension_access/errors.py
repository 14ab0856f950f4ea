"""
Extension Access Errors

Every error carries a machine-readable code, a human-readable message and
the HTTP status the API layer answers with.
"""

from typing import Any, Dict, Optional

from .config import ERROR_CODES


class ExtensionAccessError(Exception):
    """Base class for errors surfaced to extension clients."""

    code = "EXTENSION_ACCESS_ERROR"
    status_code = 500
    error = "Extension access error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or ERROR_CODES.get(self.code, self.error)
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        body = {
            "error": self.error,
            "code": self.code,
            "message": self.message,
        }
        body.update(self.details)
        return body


class InvalidInputError(ExtensionAccessError):
    code = "INVALID_INPUT"
    status_code = 400
    error = "Invalid input"


class DeviceFingerprintRequiredError(InvalidInputError):
    code = "DEVICE_FINGERPRINT_REQUIRED"
    error = "Device fingerprint required"


class AuthenticationRequiredError(ExtensionAccessError):
    code = "AUTHENTICATION_REQUIRED"
    status_code = 401
    error = "Authentication required"


class EntitlementNotFoundError(ExtensionAccessError):
    code = "USER_NOT_FOUND"
    status_code = 404
    error = "User not found"


class ExtensionAccessDeniedError(ExtensionAccessError):
    code = "EXTENSION_ACCESS_DENIED"
    status_code = 403
    error = "Extension access not included"


class QuotaExceededError(ExtensionAccessError):
    """Daily ledger rejection: another subject holds today's grant on this device."""

    code = "DAILY_LIMIT_USED"
    status_code = 429
    error = "Daily limit already used"

    def __init__(self, next_reset_time: str, message: Optional[str] = None):
        self.next_reset_time = next_reset_time
        super().__init__(message, {"nextResetTime": next_reset_time})


class QuotaLedgerError(ExtensionAccessError):
    code = "ACTIVATION_ERROR"
    status_code = 500
    error = "Failed to activate daily use"


class SessionIssuanceError(ExtensionAccessError):
    code = "SESSION_START_ERROR"
    status_code = 500
    error = "Failed to start session"


class SessionRevokedError(ExtensionAccessError):
    code = "SESSION_REVOKED"
    status_code = 401
    error = "Session revoked"


class UpstreamLookupFailure(Exception):
    """
    A single entitlement source failed.

    Internal only: the resolver logs it and treats the source as absent.
    """

    def __init__(self, source: str, cause: Exception):
        self.source = source
        self.cause = cause
        super().__init__(f"Lookup failed in {source}: {cause}")
