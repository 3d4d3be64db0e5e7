"""
logship: resilient batch upload of CI logs to object storage.
"""

__version__ = '0.1.0'

from logship.exceptions import (
    LogShipError,
    ConfigurationError,
    ValidationError,
    CredentialIssuanceError,
    ApiError,
    UploadError,
)
from logship.storage import (
    Credential,
    UploadTask,
    UploadResult,
    BatchOutcome,
    CredentialProvider,
    RetryPolicy,
    RetryExecutor,
    ConcurrencyPlanner,
    UploadOrchestrator,
)

__all__ = [
    '__version__',
    'LogShipError',
    'ConfigurationError',
    'ValidationError',
    'CredentialIssuanceError',
    'ApiError',
    'UploadError',
    'Credential',
    'UploadTask',
    'UploadResult',
    'BatchOutcome',
    'CredentialProvider',
    'RetryPolicy',
    'RetryExecutor',
    'ConcurrencyPlanner',
    'UploadOrchestrator',
]
