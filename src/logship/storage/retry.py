"""
Bounded retry with exponential backoff and jitter.

The executor drives an explicit attempt loop: every failure is classified
(see classifier.py) and the resulting ErrorKind decides whether the loop
aborts, rotates credentials first, or simply backs off and tries again.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from logship.storage.classifier import ErrorKind, classify
from logship.storage.models import TaskState

T = TypeVar('T')

JITTER_MS = 1000.0

Operation = Callable[[], Awaitable[T]]
FailureHook = Callable[[], Awaitable[object]]
StateObserver = Callable[[TaskState], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration shared by every task in a run. Delays are in ms."""

    max_attempts: int = 3
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 10000.0
    backoff_factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay_ms <= 0:
            raise ValueError(f"initial_delay_ms must be > 0, got {self.initial_delay_ms}")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"initial_delay_ms ({self.initial_delay_ms})"
            )
        if self.backoff_factor < 1:
            raise ValueError(f"backoff_factor must be >= 1, got {self.backoff_factor}")

    def base_delay_ms(self, attempt: int) -> float:
        """Pre-jitter delay after the given (1-based) failed attempt."""
        return min(
            self.initial_delay_ms * self.backoff_factor ** (attempt - 1),
            self.max_delay_ms
        )


class RetryExecutor:
    """
    Runs a zero-argument coroutine factory under a RetryPolicy.

    Example:
        >>> executor = RetryExecutor()
        >>> result = await executor.run(lambda: publish(task), policy, provider.refresh)
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        classifier: Callable[[BaseException], ErrorKind] = classify
    ):
        """
        :param logger: Logger for retry warnings
        :param sleep: Coroutine taking seconds, injectable for tests
        :param rng: Random source for jitter
        :param classifier: Maps an exception to an ErrorKind
        """
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._classify = classifier

    def delay_ms(self, policy: RetryPolicy, attempt: int) -> float:
        """Backoff delay with uniform jitter, capped at the policy maximum."""
        jitter = self._rng.random() * JITTER_MS
        return min(policy.base_delay_ms(attempt) + jitter, policy.max_delay_ms)

    async def run(
        self,
        operation: Operation[T],
        policy: RetryPolicy,
        on_retryable_failure: Optional[FailureHook] = None,
        operation_name: str = 'operation',
        on_state: Optional[StateObserver] = None
    ) -> T:
        """
        Attempt ``operation`` until it succeeds, hits a non-retryable error,
        or exhausts ``policy.max_attempts``.

        :param operation: Zero-argument callable returning an awaitable
        :param policy: Retry policy
        :param on_retryable_failure: Awaited before the next attempt after a
            credential failure (typically CredentialProvider.refresh)
        :param operation_name: Label used in log lines
        :param on_state: Optional observer of task state transitions
        :return: The operation's result
        :raises: The last error once retrying stops
        """
        notify = on_state or (lambda state: None)
        attempt = 0

        while True:
            attempt += 1
            notify(TaskState.UPLOADING)
            try:
                result = await operation()
            except Exception as e:
                kind = self._classify(e)

                if not kind.retryable:
                    self.logger.error(
                        f"{operation_name} rejected ({kind.value}) on attempt "
                        f"{attempt}/{policy.max_attempts}, not retrying: {e}"
                    )
                    notify(TaskState.FAILED)
                    raise

                if attempt >= policy.max_attempts:
                    self.logger.error(
                        f"{operation_name} failed after {attempt} attempts ({kind.value}): {e}"
                    )
                    notify(TaskState.FAILED)
                    raise

                notify(TaskState.RETRYING)

                if kind is ErrorKind.CREDENTIAL_EXPIRED and on_retryable_failure is not None:
                    self.logger.warning(
                        f"Credentials error detected (attempt {attempt}), refreshing: {e}"
                    )
                    try:
                        await on_retryable_failure()
                    except Exception:
                        notify(TaskState.FAILED)
                        raise

                delay = self.delay_ms(policy, attempt)
                self.logger.warning(
                    f"{operation_name} failed (attempt {attempt}/{policy.max_attempts}, "
                    f"{kind.value}), retrying in {delay:.0f}ms..."
                )
                await self._sleep(delay / 1000.0)
            else:
                notify(TaskState.SUCCEEDED)
                return result
