"""
Errors raised by LocalStorageClient.

Each carries a ``response`` dict shaped like botocore's ClientError, so the
classifier reads the error code and HTTP status the same way for both
storage backends.
"""
from logship.exceptions import LogShipError


class LocalStorageError(LogShipError):
    code = 'InternalError'
    status = 500

    def __init__(self, message: str, detail: str, **fields):
        self.response = {
            'Error': {'Code': self.code, 'Message': message, **fields},
            'ResponseMetadata': {'HTTPStatusCode': self.status},
        }
        super().__init__(f"{self.code}: {detail}")


class NoSuchKeyError(LocalStorageError):
    """Raised when a requested object key does not exist."""

    code = 'NoSuchKey'
    status = 404

    def __init__(self, bucket: str, key: str):
        self.bucket = bucket
        self.key = key
        super().__init__(
            f'The specified key does not exist: {key}', f"{bucket}/{key}",
            Key=key, BucketName=bucket
        )


class NoSuchBucketError(LocalStorageError):
    """Raised when an upload targets an empty or missing bucket name."""

    code = 'NoSuchBucket'
    status = 404

    def __init__(self, bucket: str):
        self.bucket = bucket
        super().__init__(
            f'The specified bucket does not exist: {bucket}', bucket, BucketName=bucket
        )
