"""
Credential lifecycle for temporary storage credentials.

CredentialProvider owns the current Credential, reports when it is about to
expire, and refreshes it through an external issuer. Concurrent refreshes
are coalesced into a single in-flight issuer call.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Mapping, Optional, Union

from logship.exceptions import CredentialIssuanceError
from logship.storage.models import Credential

SAFETY_MARGIN = dt.timedelta(minutes=5)
DEFAULT_LIFETIME = dt.timedelta(hours=1)

Issuer = Callable[[], Union[Mapping[str, Any], Credential]]


class NeedsRefresh:
    """Sentinel returned by CredentialProvider.current() when no valid credential is cached."""

    def __repr__(self) -> str:
        return 'NEEDS_REFRESH'


NEEDS_REFRESH = NeedsRefresh()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _parse_expiry(value: Any, issued_at: dt.datetime) -> dt.datetime:
    if value is None or value == '':
        return issued_at + DEFAULT_LIFETIME
    if isinstance(value, dt.datetime):
        expiry = value
    else:
        expiry = dt.datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=dt.timezone.utc)
    return expiry


class CredentialProvider:
    """
    Holds the current storage credential and refreshes it on demand.

    The issuer is a blocking callable (e.g. ApiClient.get_cloud_credentials)
    returning either a Credential or a mapping with keys ``access_id``,
    ``secret_key``, ``session_token``, ``expires_at``, ``container_name``.
    It runs in the default executor so the event loop is never blocked.
    """

    def __init__(
        self,
        issuer: Issuer,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], dt.datetime] = _utcnow,
        safety_margin: dt.timedelta = SAFETY_MARGIN,
        initial: Optional[Credential] = None
    ):
        """
        :param issuer: Blocking callable that issues a fresh credential set
        :param logger: Logger instance
        :param clock: Returns the current timezone-aware time
        :param safety_margin: Credentials expiring within this margin are not used
        :param initial: Optional pre-issued credential
        """
        self._issuer = issuer
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self.safety_margin = safety_margin
        self._credential = initial
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Future] = None
        self.refresh_count = 0

    def current(self) -> Union[Credential, NeedsRefresh]:
        """Return the cached credential if it is still safely valid, else NEEDS_REFRESH."""
        credential = self._credential
        if credential is not None and credential.is_valid(self._clock(), self.safety_margin):
            return credential
        return NEEDS_REFRESH

    async def get(self) -> Credential:
        """Return a valid credential, refreshing first if required."""
        credential = self.current()
        if isinstance(credential, Credential):
            return credential
        return await self.refresh()

    async def refresh(self, stale: Optional[Credential] = None) -> Credential:
        """
        Issue a new credential and replace the cached one.

        Callers arriving while a refresh is already in flight await that same
        refresh and observe the same resulting Credential. A caller that
        names the ``stale`` credential it failed with gets the cached one
        without a new issuer call once a refresh has already replaced it.

        :param stale: Credential the caller's failed attempt used
        :raises CredentialIssuanceError: Issuer failed or returned an incomplete credential
        """
        async with self._lock:
            inflight = self._inflight
            if inflight is None or inflight.done():
                cached = self.current()
                if stale is not None and isinstance(cached, Credential) and cached is not stale:
                    self.logger.debug("Credentials already rotated, skipping refresh")
                    return cached
                inflight = asyncio.ensure_future(self._issue())
                self._inflight = inflight
        return await asyncio.shield(inflight)

    async def _issue(self) -> Credential:
        self.refresh_count += 1
        self.logger.info("Refreshing storage credentials...")
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(None, self._issuer)
        except Exception as e:
            self.logger.error(f"Credential issuer failed: {e}")
            raise CredentialIssuanceError("Failed to obtain storage credentials", cause=e) from e

        credential = self._build(raw)
        self._credential = credential

        remaining = credential.expires_at - self._clock()
        self.logger.info(
            f"Storage credentials issued for container {credential.container_name}, "
            f"expire in {int(remaining.total_seconds() // 60)} minutes"
        )
        return credential

    def _build(self, raw: Union[Mapping[str, Any], Credential]) -> Credential:
        if isinstance(raw, Credential):
            fields = {
                'access_id': raw.access_id,
                'secret_key': raw.secret_key,
                'container_name': raw.container_name,
            }
        elif isinstance(raw, Mapping):
            fields = {key: raw.get(key) for key in ('access_id', 'secret_key', 'container_name')}
        else:
            raise CredentialIssuanceError(
                f"Credential issuer returned unsupported type {type(raw).__name__}"
            )

        missing = [key for key, value in fields.items() if not value or not str(value).strip()]
        if missing:
            raise CredentialIssuanceError(
                f"Invalid credentials response: missing required fields {', '.join(missing)}"
            )

        if isinstance(raw, Credential):
            return raw

        try:
            expires_at = _parse_expiry(raw.get('expires_at'), self._clock())
        except ValueError as e:
            raise CredentialIssuanceError("Invalid credential expiry", cause=e) from e

        return Credential(
            access_id=str(raw['access_id']),
            secret_key=str(raw['secret_key']),
            session_token=str(raw.get('session_token') or ''),
            expires_at=expires_at,
            container_name=str(raw['container_name']).strip(),
        )
