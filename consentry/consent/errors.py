"""Exceptions raised by the consent core.

Every error carries a machine-readable ``error_code`` and optional details so
the request layer can turn it into a structured error response.
"""

from typing import Optional


class ConsentError(Exception):
    """Base consent error."""

    def __init__(
        self,
        message: str = "Consent operation failed",
        error_code: str = "consent_error",
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidConsentDataError(ConsentError):
    """Raised when a submitted consent payload cannot be turned into a record."""

    def __init__(self, message: str = "Invalid consent data", reason: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="invalid_consent_data",
            details={"reason": reason} if reason else {}
        )


class ConsentPersistenceError(ConsentError):
    """Raised when the primary storage channel rejected a consent record."""

    def __init__(
        self,
        message: str = "Consent record could not be persisted",
        channel: Optional[str] = None,
        errors: Optional[dict] = None
    ):
        details = {}
        if channel:
            details["channel"] = channel
        if errors:
            details["errors"] = errors
        super().__init__(message=message, error_code="consent_not_persisted", details=details)


class CategorizationPermissionError(ConsentError):
    """Raised when an unprivileged caller tries to categorize a cookie."""

    def __init__(self, message: str = "Permission denied", cookie_name: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="permission_denied",
            details={"cookie_name": cookie_name} if cookie_name else {}
        )


class ReferenceDatabaseError(ConsentError):
    """Raised when the external cookie reference database cannot be loaded."""

    def __init__(self, message: str = "Reference database unavailable", source: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="reference_database_unavailable",
            details={"source": source} if source else {}
        )


class ConfigurationError(ConsentError):
    """Raised for invalid consent configuration."""

    def __init__(self, message: str = "Invalid consent configuration", issues: Optional[list] = None):
        super().__init__(
            message=message,
            error_code="invalid_configuration",
            details={"issues": issues} if issues else {}
        )
