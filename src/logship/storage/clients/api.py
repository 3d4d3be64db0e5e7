"""
Client for the upload API.

Covers the three calls the upload workflow makes against the API:
- register the CI server
- issue temporary storage credentials (the CredentialProvider's issuer)
- notify that uploads completed
"""
from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from logship.exceptions import ApiError
from logship.storage.classifier import ErrorKind, classify
from logship.storage.models import UploadResult
from logship.storage.retry import JITTER_MS, RetryPolicy

DEFAULT_TIMEOUT = 30
USER_AGENT = 'logship/1.0'
ANALYSIS_URL = 'https://app.hycos.ai/ci-analysis/{analysis_id}'

# Credential-looking responses are final for API calls
RETRYABLE_KINDS = (ErrorKind.THROTTLED, ErrorKind.NETWORK_FAILURE, ErrorKind.UNKNOWN)


class ApiClient:
    """
    Thin requests-based client authenticated with an API key.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        logger: Optional[logging.Logger] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None
    ):
        """
        :param base_url: API endpoint, e.g. https://api.hycos.ai
        :param api_key: Value of the X-API-Key header
        :param logger: Logger instance
        :param timeout: Per-request timeout in seconds
        :param session: Optional pre-configured requests session
        :param retry_policy: Attempts and backoff for transient failures
        :param sleep: Blocking sleep taking seconds, injectable for tests
        :param rng: Random source for jitter
        """
        self.base_url = base_url.rstrip('/')
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.session = session or requests.Session()
        self.session.headers.update({
            'X-API-Key': api_key,
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
        })

    def close(self):
        self.session.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Send a request, retrying transient failures under ``retry_policy``.

        HTTP 408/429, 5xx and transport errors are retried with backoff and
        jitter. Any other 4xx is raised immediately.
        """
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            try:
                response = self._send(method, path, **kwargs)
                break
            except ApiError as e:
                kind = classify(e)
                if kind not in RETRYABLE_KINDS or attempt >= policy.max_attempts:
                    raise
                delay = min(
                    policy.base_delay_ms(attempt) + self._rng.random() * JITTER_MS,
                    policy.max_delay_ms
                )
                self.logger.warning(
                    f"{method} {path} failed (attempt {attempt}/{policy.max_attempts}, "
                    f"{kind.value}), retrying in {delay:.0f}ms: {e}"
                )
                self._sleep(delay / 1000.0)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"{method} {path} returned invalid JSON", status=response.status_code) from e

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise ApiError(
                f"{method} {path} failed with HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code
            )
        return response

    def register_server(self, server_address: str, server_type: str = 'GITHUB_ACTIONS') -> Dict[str, Any]:
        """
        Register the CI server the logs come from.

        :param server_address: e.g. https://github.com
        :param server_type: Server type understood by the API
        :return: Registration response (may contain serverId)
        """
        self.logger.info(f"Registering server: {server_address} ({server_type})")
        response = self._request(
            'POST', '/build/server',
            json={'serverAddress': server_address, 'type': server_type}
        )
        if response.get('serverId'):
            self.logger.info(f"Server ID: {response['serverId']}")
        return response

    def get_cloud_credentials(self) -> Dict[str, Any]:
        """
        Issue temporary storage credentials.

        Maps the API response to the mapping consumed by CredentialProvider.
        Field validation happens in the provider.

        :return: Dict with access_id, secret_key, session_token, expires_at, container_name
        """
        self.logger.info('Requesting temporary cloud credentials')
        response = self._request('GET', '/api/upload/cloud/credentials')
        self.logger.info(
            f"Cloud credentials received (bucket configured: "
            f"{'Yes' if response.get('bucket') else 'No'})"
        )
        return {
            'access_id': response.get('accessKeyId'),
            'secret_key': response.get('secretAccessKey'),
            'session_token': response.get('sessionToken'),
            'expires_at': response.get('expiration'),
            'container_name': response.get('bucket'),
        }

    def notify_upload_complete(
        self,
        results: List[UploadResult],
        build_metadata: Dict[str, str],
        server_address: str,
        server_type: str = 'GITHUB_ACTIONS'
    ) -> Dict[str, str]:
        """
        Tell the API which objects were uploaded for a build.

        :param results: Uploaded objects
        :param build_metadata: jobName, buildNumber, repository, branch, commit,
            buildUrl, triggeredBy, buildStatus
        :param server_address: CI server address
        :param server_type: Server type understood by the API
        :return: Dict with analysis_id and analysis_url
        """
        payload = {
            'files': [
                {'filename': r.object_key, 'fileType': 'LOG', 'bucketName': r.container_name}
                for r in results
            ],
            'buildDetails': {'metadata': build_metadata},
            'serverDetails': {'serverAddress': server_address, 'type': server_type},
        }
        self.logger.info(
            f"Notifying API about {len(results)} uploaded files "
            f"for {build_metadata.get('repository', 'unknown')}"
        )
        response = self._request('POST', '/api/upload/uploaded', json=payload)

        analysis_id = str(response.get('id') or response.get('analysisId') or '')
        analysis_url = response.get('analysisUrl') or (
            ANALYSIS_URL.format(analysis_id=analysis_id) if analysis_id else ''
        )
        self.logger.info(f"Upload notification sent (analysis id: {analysis_id or 'n/a'})")
        return {'analysis_id': analysis_id, 'analysis_url': analysis_url}
