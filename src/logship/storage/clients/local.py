"""
Local Filesystem Storage Client

Duck-typed replacement for the boto3 S3 client that stores uploaded logs on
the local filesystem. Implements the subset of boto3.client('s3') used by
LogPublisher so that STORAGE_BACKEND=local runs the same upload path.
"""

import io
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from logship.storage.utils.exceptions import NoSuchBucketError, NoSuchKeyError

READ_CHUNK = 1024 * 1024


class LocalStorageClient:
    """
    Local filesystem storage client with boto3 S3 API compatibility.

    Maps S3 operations to local filesystem:
    - Bucket becomes a top-level directory under base_path
    - Key becomes relative path under the bucket directory
    - Metadata stored in sidecar .metadata.json files

    Usage:
        client = LocalStorageClient('/path/to/storage')
        client.upload_fileobj(io.BytesIO(b'log'), 'bucket', 'logs/job.log')
        response = client.get_object(Bucket='bucket', Key='logs/job.log')
        content = response['Body'].read()
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage client.

        :param base_path: Root directory for all storage operations
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _key_to_path(self, bucket: str, key: str) -> Path:
        """Convert bucket/key to local filesystem path."""
        if not bucket:
            raise NoSuchBucketError(bucket)
        return self.base_path / bucket / key

    def _metadata_path(self, file_path: Path) -> Path:
        """Get path to metadata sidecar file."""
        return file_path.parent / f".{file_path.name}.metadata.json"

    def _save_metadata(self, file_path: Path, metadata: Dict[str, Any]):
        meta_path = self._metadata_path(file_path)
        with open(meta_path, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2)

    def _load_metadata(self, file_path: Path) -> Dict[str, Any]:
        meta_path = self._metadata_path(file_path)
        if meta_path.exists():
            try:
                with open(meta_path, 'r', encoding='utf-8') as f:
                    content = f.read().strip()
                    if not content:
                        return {}
                    return json.loads(content)
            except (json.JSONDecodeError, OSError):
                # Return empty metadata if file is corrupted
                return {}
        return {}

    @staticmethod
    def _etag(file_path: Path) -> str:
        stat = file_path.stat()
        return f'"{stat.st_mtime}-{stat.st_size}"'

    def upload_fileobj(
        self,
        Fileobj: io.IOBase,
        Bucket: str,
        Key: str,
        ExtraArgs: Optional[Dict[str, Any]] = None,
        Callback: Optional[Callable[[int], None]] = None,
        Config: Any = None
    ) -> None:
        """
        Stream a file object into local storage in chunks, reporting progress.

        :param Fileobj: Readable binary file object
        :param Bucket: Bucket name (directory under base_path)
        :param Key: Object key (becomes relative path)
        :param ExtraArgs: ContentType, Metadata, ServerSideEncryption (ACL is ignored)
        :param Callback: Called with the number of bytes written per chunk
        :param Config: TransferConfig; its multipart_chunksize sets the chunk size
        """
        extra = ExtraArgs or {}
        file_path = self._key_to_path(Bucket, Key)
        chunk_size = getattr(Config, 'multipart_chunksize', READ_CHUNK)

        with self._lock:
            file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, 'wb') as f:
            while True:
                chunk = Fileobj.read(chunk_size)
                if not chunk:
                    break
                f.write(chunk)
                if Callback is not None:
                    Callback(len(chunk))

        self._save_metadata(file_path, {
            'ContentType': extra.get('ContentType', 'application/octet-stream'),
            'ServerSideEncryption': extra.get('ServerSideEncryption'),
            'UserMetadata': extra.get('Metadata', {})
        })

    def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """
        Get object metadata without retrieving the object.

        :raises NoSuchKeyError: If key does not exist
        """
        file_path = self._key_to_path(Bucket, Key)

        if not file_path.exists():
            raise NoSuchKeyError(Bucket, Key)

        stat = file_path.stat()
        metadata = self._load_metadata(file_path)

        return {
            'ContentLength': stat.st_size,
            'ContentType': metadata.get('ContentType', 'application/octet-stream'),
            'LastModified': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            'Metadata': metadata.get('UserMetadata', {}),
            'ServerSideEncryption': metadata.get('ServerSideEncryption'),
            'ETag': self._etag(file_path)
        }

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """
        Retrieve an object from local storage.

        :raises NoSuchKeyError: If key does not exist
        """
        head = self.head_object(Bucket, Key)
        head['Body'] = io.BytesIO(self._key_to_path(Bucket, Key).read_bytes())
        return head
