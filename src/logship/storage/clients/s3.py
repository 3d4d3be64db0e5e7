import os
import threading
from pathlib import Path
from urllib.parse import quote
from typing import Dict, Any, Optional

import boto3
from botocore.config import Config

from logship.exceptions import ConfigurationError
from logship.storage.models import Credential
from logship.storage.utils.config import UploadConfig


class S3Client:
    """
    Storage client factory that returns either a boto3 S3 client bound to a
    temporary Credential or a LocalStorageClient, based on STORAGE_BACKEND.

    Environment variables:
        STORAGE_BACKEND: 'local' for filesystem, 's3' (default) for AWS S3
        LOCAL_STORAGE_PATH: Required when STORAGE_BACKEND=local, path to storage root
    """
    def __init__(self, config: Optional[UploadConfig] = None):
        self.config = config or UploadConfig()

        self._backend = os.getenv('STORAGE_BACKEND', 's3').lower()
        self._local_path = os.getenv('LOCAL_STORAGE_PATH')
        self._local_client = None

        if self._backend == 'local':
            if not self._local_path:
                raise ConfigurationError(
                    "LOCAL_STORAGE_PATH environment variable required when "
                    "STORAGE_BACKEND=local"
                )
        elif self._backend == 's3':
            self.boto_config = self._create_boto_config()
        else:
            raise ConfigurationError(f"Unknown STORAGE_BACKEND: {self._backend}")

        self._cached_key: Optional[tuple] = None
        self._cached_client = None
        self._lock = threading.Lock()

    def _create_boto_config(self) -> Config:
        """
        Create boto3 Config object from loaded configuration
        """
        client_cfg = self.config.client

        if not client_cfg:
            raise ConfigurationError("Client configuration is empty or missing")

        config_kwargs: Dict[str, Any] = {
            'region_name': client_cfg.get('region_name', 'us-east-1'),
            'max_pool_connections': client_cfg.get('max_pool_connections', 10),
        }

        if 'connect_timeout' in client_cfg:
            config_kwargs['connect_timeout'] = client_cfg['connect_timeout']

        if 'read_timeout' in client_cfg:
            config_kwargs['read_timeout'] = client_cfg['read_timeout']

        if 'retries' in client_cfg:
            retries_cfg = client_cfg['retries']
            if isinstance(retries_cfg, dict):
                config_kwargs['retries'] = {
                    'mode': retries_cfg.get('mode', 'adaptive'),
                    'total_max_attempts': retries_cfg.get('total_max_attempts', 3)
                }

        if 's3' in client_cfg:
            s3_cfg = client_cfg['s3']
            if isinstance(s3_cfg, dict):
                config_kwargs['s3'] = {}

                if 'addressing_style' in s3_cfg:
                    config_kwargs['s3']['addressing_style'] = s3_cfg['addressing_style']

                if 'payload_signing_enabled' in s3_cfg:
                    config_kwargs['s3']['payload_signing_enabled'] = s3_cfg['payload_signing_enabled']

        if 'tcp_keepalive' in client_cfg:
            config_kwargs['tcp_keepalive'] = client_cfg['tcp_keepalive']

        return Config(**config_kwargs)

    def client_for(self, credential: Credential):
        """
        Return a storage client for the given credential.

        For STORAGE_BACKEND=local: Returns the shared LocalStorageClient
        For STORAGE_BACKEND=s3 (default): Returns a boto3 S3 client signed with
        the credential; the client is reused until the credential is rotated.
        """
        if self._backend == 'local':
            if self._local_client is None:
                from logship.storage.clients.local import LocalStorageClient
                self._local_client = LocalStorageClient(self._local_path)
            return self._local_client

        key = (credential.access_id, credential.session_token)
        with self._lock:
            if self._cached_key != key:
                self._cached_client = boto3.client(
                    's3',
                    config=self.boto_config,
                    aws_access_key_id=credential.access_id,
                    aws_secret_access_key=credential.secret_key,
                    aws_session_token=credential.session_token or None
                )
                self._cached_key = key
            return self._cached_client

    @property
    def is_local(self) -> bool:
        """Return True if using local filesystem storage backend."""
        return self._backend == 'local'

    def location(self, bucket: str, key: str) -> str:
        """Public location of an uploaded object."""
        if self._backend == 'local':
            return (Path(self._local_path) / bucket / key).resolve().as_uri()
        return f"https://{bucket}.s3.amazonaws.com/{quote(key)}"
