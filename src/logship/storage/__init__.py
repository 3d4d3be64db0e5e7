"""
Storage module for CI log upload.

Submodules:
- clients: S3, local filesystem and upload API clients
- pipeline: Log collection and publishing
- utils: Configuration, progress reporting, storage exceptions
"""

# Re-export commonly used classes for convenience
# Note: UploadApp not exported here to avoid loading dotenv on import
# Use: from logship.storage.app import UploadApp
from logship.storage.models import (
    Credential,
    UploadTask,
    UploadResult,
    BatchOutcome,
    TaskState,
)
from logship.storage.classifier import ErrorKind, classify
from logship.storage.credentials import CredentialProvider, NEEDS_REFRESH
from logship.storage.retry import RetryPolicy, RetryExecutor
from logship.storage.planner import ConcurrencyPlanner
from logship.storage.uploader import UploadOrchestrator
from logship.storage.clients import S3Client, LocalStorageClient, ApiClient
from logship.storage.pipeline import LogPublisher, WorkflowLogCollector
from logship.storage.utils import UploadConfig, NoSuchKeyError

__all__ = [
    # Models
    'Credential',
    'UploadTask',
    'UploadResult',
    'BatchOutcome',
    'TaskState',
    # Engine
    'ErrorKind',
    'classify',
    'CredentialProvider',
    'NEEDS_REFRESH',
    'RetryPolicy',
    'RetryExecutor',
    'ConcurrencyPlanner',
    'UploadOrchestrator',
    # Clients
    'S3Client',
    'LocalStorageClient',
    'ApiClient',
    # Pipeline
    'LogPublisher',
    'WorkflowLogCollector',
    # Utils
    'UploadConfig',
    'NoSuchKeyError',
]
