"""
Unit tests for storage.retry module
Tests RetryPolicy validation, backoff bounds and the RetryExecutor attempt loop
"""
import random
from unittest.mock import AsyncMock, Mock

import pytest
from botocore.exceptions import ClientError

from logship.storage.models import TaskState
from logship.storage.retry import RetryExecutor, RetryPolicy


def _client_error(code, status):
    return ClientError(
        {'Error': {'Code': code, 'Message': code}, 'ResponseMetadata': {'HTTPStatusCode': status}},
        'PutObject'
    )


def _executor(fake_sleep, seed=7):
    return RetryExecutor(logger=Mock(), sleep=fake_sleep, rng=random.Random(seed))


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.initial_delay_ms == 1000
        assert policy.max_delay_ms == 10000
        assert policy.backoff_factor == 2

    def test_base_delay_grows_and_caps(self):
        policy = RetryPolicy(max_attempts=6)
        assert [policy.base_delay_ms(a) for a in range(1, 6)] == [1000, 2000, 4000, 8000, 10000]

    @pytest.mark.parametrize('kwargs', [
        {'max_attempts': 0},
        {'initial_delay_ms': 0},
        {'initial_delay_ms': 5000, 'max_delay_ms': 1000},
        {'backoff_factor': 0.5},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestDelay:
    def test_delay_bounds(self, fake_sleep):
        """Every delay stays within [base, min(base + 1000, max)]"""
        executor = _executor(fake_sleep)
        policy = RetryPolicy(max_attempts=10)
        for attempt in range(1, 10):
            base = policy.base_delay_ms(attempt)
            for _ in range(50):
                delay = executor.delay_ms(policy, attempt)
                assert base <= delay <= min(base + 1000, policy.max_delay_ms)

    @pytest.mark.parametrize('sample, expected', [(0.0, 1000.0), (0.5, 1500.0), (0.999, 1999.0)])
    def test_jitter_below_one_second(self, fake_sleep, sample, expected):
        rng = Mock()
        rng.random.return_value = sample
        executor = RetryExecutor(logger=Mock(), sleep=fake_sleep, rng=rng)

        delay = executor.delay_ms(RetryPolicy(), 1)

        assert delay == pytest.approx(expected)
        assert delay < 2000

    def test_delay_capped_at_max(self, fake_sleep):
        executor = _executor(fake_sleep)
        policy = RetryPolicy(max_attempts=10, initial_delay_ms=9500, max_delay_ms=10000)
        assert all(executor.delay_ms(policy, 1) <= 10000 for _ in range(100))


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_first_attempt(self, fake_sleep):
        executor = _executor(fake_sleep)
        operation = AsyncMock(return_value='ok')
        states = []

        result = await executor.run(operation, RetryPolicy(), on_state=states.append)

        assert result == 'ok'
        assert operation.await_count == 1
        assert fake_sleep.calls == []
        assert states == [TaskState.UPLOADING, TaskState.SUCCEEDED]

    @pytest.mark.asyncio
    async def test_network_failures_then_success(self, fake_sleep):
        """Two network failures are retried with growing, bounded delays"""
        executor = _executor(fake_sleep)
        operation = AsyncMock(side_effect=[ConnectionError('reset'), ConnectionError('reset'), 'ok'])
        hook = AsyncMock()

        result = await executor.run(operation, RetryPolicy(), on_retryable_failure=hook)

        assert result == 'ok'
        assert operation.await_count == 3
        hook.assert_not_awaited()
        assert len(fake_sleep.calls) == 2
        assert 1.0 <= fake_sleep.calls[0] <= 2.0
        assert 2.0 <= fake_sleep.calls[1] <= 3.0

    @pytest.mark.asyncio
    async def test_client_rejection_not_retried(self, fake_sleep):
        executor = _executor(fake_sleep)
        operation = AsyncMock(side_effect=_client_error('InvalidRequest', 400))
        hook = AsyncMock()
        states = []

        with pytest.raises(ClientError):
            await executor.run(operation, RetryPolicy(), on_retryable_failure=hook, on_state=states.append)

        assert operation.await_count == 1
        hook.assert_not_awaited()
        assert fake_sleep.calls == []
        assert states[-1] is TaskState.FAILED

    @pytest.mark.asyncio
    async def test_exhausts_attempts_and_raises_last_error(self, fake_sleep):
        executor = _executor(fake_sleep)
        errors = [_client_error('InternalError', 500) for _ in range(3)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(ClientError) as exc_info:
            await executor.run(operation, RetryPolicy(max_attempts=3))

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3
        assert len(fake_sleep.calls) == 2

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, fake_sleep):
        executor = _executor(fake_sleep)
        operation = AsyncMock(side_effect=ConnectionError('reset'))

        with pytest.raises(ConnectionError):
            await executor.run(operation, RetryPolicy(max_attempts=1))

        assert operation.await_count == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_credential_failure_awaits_hook_before_next_attempt(self, fake_sleep):
        executor = _executor(fake_sleep)
        order = []

        async def operation():
            order.append('attempt')
            if len(order) == 1:
                raise _client_error('ExpiredToken', 400)
            return 'ok'

        async def hook():
            order.append('refresh')

        result = await executor.run(operation, RetryPolicy(), on_retryable_failure=hook)

        assert result == 'ok'
        assert order == ['attempt', 'refresh', 'attempt']
        assert len(fake_sleep.calls) == 1

    @pytest.mark.asyncio
    async def test_hook_failure_ends_task(self, fake_sleep):
        executor = _executor(fake_sleep)
        operation = AsyncMock(side_effect=_client_error('InvalidAccessKeyId', 403))
        hook = AsyncMock(side_effect=RuntimeError('issuer down'))
        states = []

        with pytest.raises(RuntimeError, match='issuer down'):
            await executor.run(operation, RetryPolicy(), on_retryable_failure=hook, on_state=states.append)

        assert operation.await_count == 1
        assert states[-1] is TaskState.FAILED

    @pytest.mark.asyncio
    async def test_throttled_is_retried_without_hook(self, fake_sleep):
        executor = _executor(fake_sleep)
        operation = AsyncMock(side_effect=[_client_error('SlowDown', 429), 'ok'])
        hook = AsyncMock()
        states = []

        await executor.run(operation, RetryPolicy(), on_retryable_failure=hook, on_state=states.append)

        hook.assert_not_awaited()
        assert states == [
            TaskState.UPLOADING,
            TaskState.RETRYING,
            TaskState.UPLOADING,
            TaskState.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_retry_logs_warning(self, fake_sleep):
        logger = Mock()
        executor = RetryExecutor(logger=logger, sleep=fake_sleep, rng=random.Random(1))
        operation = AsyncMock(side_effect=[ConnectionError('reset'), 'ok'])

        await executor.run(operation, RetryPolicy(), operation_name='Upload log for job "build"')

        message = logger.warning.call_args[0][0]
        assert 'Upload log for job "build"' in message
        assert 'attempt 1/3' in message
