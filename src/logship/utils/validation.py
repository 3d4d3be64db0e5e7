"""
Validation of user-supplied inputs before any network call is made.

Every validator returns the normalized value or raises ValidationError
naming the offending field.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from logship.exceptions import ValidationError

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 2.0
DEFAULT_PATH_PREFIX = 'logs'

_FORBIDDEN_KEY_PREFIXES = ('test', 'demo', 'sample', 'example', 'dummy', 'fake', 'placeholder')
_LOCAL_HOSTS = {'localhost', '127.0.0.1', '0.0.0.0', '::1'}
_GITHUB_TOKEN_PATTERNS = [
    re.compile(r'^gh[pous]_[A-Za-z0-9]{36}$'),
    re.compile(r'^ghr_[A-Za-z0-9]{76}$'),
]
_PATH_PREFIX_CHARS = re.compile(r'^[A-Za-z0-9_./-]+$')


@dataclass(frozen=True)
class UploadInputs:
    api_key: str
    api_endpoint: str
    github_token: str
    run_id: Optional[str] = None
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    path_prefix: str = DEFAULT_PATH_PREFIX

    @property
    def retry_delay_ms(self) -> float:
        return self.retry_delay * 1000.0


def validate_api_key(api_key: Optional[str]) -> str:
    key = (api_key or '').strip()
    if not key:
        raise ValidationError('API key is required', 'api-key')
    if len(key) < 10:
        raise ValidationError('API key appears to be too short (minimum 10 characters)', 'api-key')
    if len(key) > 500:
        raise ValidationError('API key appears to be too long (maximum 500 characters)', 'api-key')
    if key.lower().startswith(_FORBIDDEN_KEY_PREFIXES) or '123456' in key:
        raise ValidationError(
            'API key appears to be a test/dummy key. Please use a valid API key', 'api-key'
        )
    return key


def validate_api_endpoint(endpoint: Optional[str]) -> str:
    """
    Require an https URL; localhost is accepted only when LOGSHIP_ENV is
    'development' or 'test'.
    """
    url = (endpoint or '').strip()
    if not url:
        raise ValidationError('API endpoint is required', 'api-endpoint')

    parsed = urlparse(url)
    if parsed.scheme != 'https':
        raise ValidationError('API endpoint must use HTTPS', 'api-endpoint')
    if not parsed.hostname:
        raise ValidationError(f"Invalid API endpoint URL: {url}", 'api-endpoint')

    if parsed.hostname.lower() in _LOCAL_HOSTS:
        if os.getenv('LOGSHIP_ENV', '').lower() not in ('development', 'test'):
            raise ValidationError('Localhost endpoints are not allowed in production', 'api-endpoint')
    return url.rstrip('/')


def validate_github_token(token: Optional[str]) -> str:
    value = (token or '').strip()
    if not value:
        raise ValidationError('GitHub token is required', 'github-token')
    # Unknown formats are accepted as long as they are not implausibly short
    if not any(p.match(value) for p in _GITHUB_TOKEN_PATTERNS) and len(value) < 20:
        raise ValidationError(
            'GitHub token appears to be too short. Please verify the token format', 'github-token'
        )
    return value


def validate_run_id(run_id: Optional[str]) -> Optional[str]:
    """Empty means 'use GITHUB_RUN_ID'; otherwise a positive integer string."""
    if run_id is None or str(run_id).strip() == '':
        return None
    value = str(run_id).strip()
    if not value.isdigit() or int(value) <= 0:
        raise ValidationError('Workflow run ID must be a positive integer', 'run-id')
    return value


def validate_retry_attempts(attempts: Optional[int | str]) -> int:
    if attempts is None or attempts == '':
        return DEFAULT_RETRY_ATTEMPTS
    try:
        value = int(attempts)
    except (TypeError, ValueError):
        raise ValidationError('Retry attempts must be a valid number', 'retry-attempts')
    if not 1 <= value <= 10:
        raise ValidationError('Retry attempts must be between 1 and 10', 'retry-attempts')
    return value


def validate_retry_delay(delay: Optional[float | str]) -> float:
    """Retry delay in seconds."""
    if delay is None or delay == '':
        return DEFAULT_RETRY_DELAY
    try:
        value = float(delay)
    except (TypeError, ValueError):
        raise ValidationError('Retry delay must be a valid number', 'retry-delay')
    if not 0.1 <= value <= 60:
        raise ValidationError('Retry delay must be between 0.1 and 60 seconds', 'retry-delay')
    return value


def validate_path_prefix(prefix: Optional[str]) -> str:
    value = (prefix or '').strip().strip('/')
    if not value:
        return DEFAULT_PATH_PREFIX
    if '..' in value:
        raise ValidationError('Path prefix cannot contain path traversal sequences (..)', 'path-prefix')
    if not _PATH_PREFIX_CHARS.match(value):
        raise ValidationError(
            'Path prefix may only contain letters, digits, "_", ".", "/" and "-"', 'path-prefix'
        )
    if len(value) > 200:
        raise ValidationError('Path prefix cannot exceed 200 characters', 'path-prefix')
    return value


def validate_inputs(
    api_key: Optional[str],
    api_endpoint: Optional[str],
    github_token: Optional[str],
    run_id: Optional[str] = None,
    retry_attempts: Optional[int | str] = None,
    retry_delay: Optional[float | str] = None,
    path_prefix: Optional[str] = None
) -> UploadInputs:
    """
    Validate and normalize all workflow inputs.

    :raises ValidationError: On the first invalid input
    """
    return UploadInputs(
        api_key=validate_api_key(api_key),
        api_endpoint=validate_api_endpoint(api_endpoint),
        github_token=validate_github_token(github_token),
        run_id=validate_run_id(run_id),
        retry_attempts=validate_retry_attempts(retry_attempts),
        retry_delay=validate_retry_delay(retry_delay),
        path_prefix=validate_path_prefix(path_prefix),
    )
