"""Shared fixtures for logship tests."""

import datetime as dt

import pytest

from logship.storage.models import Credential

NOW = dt.datetime(2024, 5, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def now():
    """Fixed reference time used by clocks in tests."""
    return NOW


@pytest.fixture
def make_credential():
    """Factory for credentials expiring relative to NOW."""
    def _make(access_id='AKIAEXAMPLE1', expires_in=dt.timedelta(hours=1), container='ci-logs'):
        return Credential(
            access_id=access_id,
            secret_key=f'secret-{access_id}',
            session_token=f'token-{access_id}',
            expires_at=NOW + expires_in,
            container_name=container
        )
    return _make


@pytest.fixture
def fake_sleep():
    """Async sleep replacement recording requested durations (seconds)."""
    calls = []

    async def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep
