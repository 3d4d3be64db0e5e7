"""
Failure classification for storage and API errors.

Maps raw exceptions into a small taxonomy that drives retry decisions:
- CREDENTIAL_EXPIRED: rotate credentials, then retry
- THROTTLED: retry with backoff (HTTP 408 / 429)
- CLIENT_REJECTED: never retried (other HTTP 4xx)
- NETWORK_FAILURE: retry with backoff (no response received)
- UNKNOWN: retried up to the attempt budget
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

import requests
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import HTTPClientError

CREDENTIAL_ERROR_MARKERS = (
    'InvalidAccessKeyId',
    'SignatureDoesNotMatch',
    'TokenRefreshRequired',
    'ExpiredToken',
    'Forbidden',
)

THROTTLE_STATUSES = (408, 429)

NETWORK_ERRORS = (
    BotoConnectionError,
    HTTPClientError,
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
)


class ErrorKind(str, Enum):
    CREDENTIAL_EXPIRED = 'credential_expired'
    THROTTLED = 'throttled'
    CLIENT_REJECTED = 'client_rejected'
    NETWORK_FAILURE = 'network_failure'
    UNKNOWN = 'unknown'

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.CLIENT_REJECTED


def _error_code(error: BaseException) -> str:
    response = getattr(error, 'response', None)
    if isinstance(response, dict):
        return str(response.get('Error', {}).get('Code', ''))
    return ''


def http_status(error: BaseException) -> Optional[int]:
    """
    Extract the HTTP status carried by an error, if any.

    Understands botocore ClientError responses, requests HTTPError responses
    and plain ``status`` / ``status_code`` attributes.
    """
    response: Any = getattr(error, 'response', None)
    if isinstance(response, dict):
        status = response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        if status is not None:
            return int(status)
    elif response is not None:
        status = getattr(response, 'status_code', None)
        if isinstance(status, int):
            return status

    for attr in ('status', 'status_code'):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    return None


def classify(error: BaseException) -> ErrorKind:
    """
    Classify a raw failure. Rules are evaluated in priority order, so a 403
    whose message names an expired token is a credential problem, not a
    client rejection.

    :param error: Exception raised by a transfer or API call
    :return: ErrorKind for the failure
    """
    message = f"{_error_code(error)} {error}"
    if any(marker in message for marker in CREDENTIAL_ERROR_MARKERS):
        return ErrorKind.CREDENTIAL_EXPIRED

    status = http_status(error)
    if status in THROTTLE_STATUSES:
        return ErrorKind.THROTTLED
    if status is not None and 400 <= status < 500:
        return ErrorKind.CLIENT_REJECTED

    if isinstance(error, NETWORK_ERRORS):
        return ErrorKind.NETWORK_FAILURE

    return ErrorKind.UNKNOWN
