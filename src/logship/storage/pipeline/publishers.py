"""
Publishing of log bodies to object storage.

One call performs one multi-part transfer through boto3's managed transfer
(upload_fileobj + TransferConfig). The blocking transfer runs in the default
executor so the event loop only suspends on its completion.
"""

import asyncio
import functools
import io
import logging
from typing import Dict, Optional

from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from logship.storage.clients.s3 import S3Client
from logship.storage.models import Content, Credential, UploadResult
from logship.storage.utils.exceptions import NoSuchKeyError
from logship.storage.utils.progress import ProgressObserver, TransferProgress

PART_SIZE = 5 * 1024 * 1024
QUEUE_SIZE = 4
CONTENT_TYPE = 'text/plain'
SERVER_SIDE_ENCRYPTION = 'AES256'
OBJECT_ACL = 'bucket-owner-full-control'


class LogPublisher:
    """
    Uploads a single log body to the credential's container.
    """

    def __init__(
        self,
        storage: S3Client,
        logger: Optional[logging.Logger] = None,
        part_size: int = PART_SIZE,
        queue_size: int = QUEUE_SIZE
    ):
        """
        Initialize log publisher.

        :param storage: S3Client factory (boto3 or local backend)
        :param logger: Logger instance
        :param part_size: Multi-part chunk size in bytes
        :param queue_size: Parts transferred concurrently within one upload
        """
        self.storage = storage
        self.logger = logger or logging.getLogger(__name__)
        self.transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=queue_size,
            use_threads=True
        )

    async def publish(
        self,
        credential: Credential,
        key: str,
        content: Content,
        metadata: Dict[str, str],
        task_name: str,
        on_progress: Optional[ProgressObserver] = None
    ) -> UploadResult:
        """
        Transfer ``content`` to ``{container}/{key}``.

        :param credential: Valid credential to sign the transfer with
        :param key: Object key
        :param content: Log body (str is encoded as UTF-8)
        :param metadata: User metadata attached to the object
        :param task_name: Task name reported to ``on_progress``
        :param on_progress: Optional observer of (task_name, percentage)
        :return: UploadResult for the stored object
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(
                self._upload, credential, key, content, metadata, task_name, on_progress
            )
        )

    def _upload(
        self,
        credential: Credential,
        key: str,
        content: Content,
        metadata: Dict[str, str],
        task_name: str,
        on_progress: Optional[ProgressObserver]
    ) -> UploadResult:
        client = self.storage.client_for(credential)
        bucket = credential.container_name

        data = content.encode('utf-8') if isinstance(content, str) else content
        body = io.BytesIO(data)
        callback = TransferProgress(task_name, len(data), on_progress) if on_progress else None

        client.upload_fileobj(
            body,
            bucket,
            key,
            ExtraArgs={
                'ContentType': CONTENT_TYPE,
                'Metadata': metadata,
                'ServerSideEncryption': SERVER_SIDE_ENCRYPTION,
                'ACL': OBJECT_ACL,
            },
            Callback=callback,
            Config=self.transfer_config
        )
        body.close()

        self.logger.debug(f"Uploaded {task_name} to {bucket}/{key}")
        return UploadResult(
            location=self.storage.location(bucket, key),
            container_name=bucket,
            object_key=key,
            integrity_tag=self._integrity_tag(client, bucket, key)
        )

    def _integrity_tag(self, client, bucket: str, key: str) -> str:
        """ETag of the stored object; empty when it cannot be read back."""
        try:
            response = client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError, NoSuchKeyError) as e:
            self.logger.warning(f"Could not read ETag for {bucket}/{key}: {e}")
            return ''
        return response.get('ETag', '')
