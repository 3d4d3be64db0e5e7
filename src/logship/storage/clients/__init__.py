"""
Storage and API client implementations.
"""

from logship.storage.clients.s3 import S3Client
from logship.storage.clients.local import LocalStorageClient
from logship.storage.clients.api import ApiClient

__all__ = [
    'S3Client',
    'LocalStorageClient',
    'ApiClient',
]
