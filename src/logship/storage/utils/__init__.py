"""
Storage utilities and infrastructure.
"""

from logship.storage.utils.config import UploadConfig
from logship.storage.utils.progress import (
    ProgressObserver,
    TransferProgress,
    LoggingProgressObserver,
)
from logship.storage.utils.exceptions import NoSuchKeyError, NoSuchBucketError

__all__ = [
    'UploadConfig',
    'ProgressObserver',
    'TransferProgress',
    'LoggingProgressObserver',
    'NoSuchKeyError',
    'NoSuchBucketError',
]
