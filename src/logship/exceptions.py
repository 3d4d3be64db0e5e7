"""Custom exceptions for logship."""


class LogShipError(Exception):
    """Base exception for logship errors."""


class ConfigurationError(LogShipError):
    """Raised when configuration is invalid or missing."""


class ValidationError(LogShipError, ValueError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class CredentialIssuanceError(LogShipError):
    """Raised when no usable storage credential can be obtained."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.cause = cause
        if cause:
            message += f" ({cause})"
        super().__init__(message)


class ApiError(LogShipError):
    """Raised when a call to the upload API fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class UploadError(LogShipError):
    """Raised when a workflow produced no uploaded objects."""
