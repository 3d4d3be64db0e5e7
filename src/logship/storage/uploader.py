"""
Resilient batch upload of CI logs.

UploadOrchestrator composes the credential provider, retry executor and
concurrency planner:
- upload_one: one log, retried under the RetryPolicy, credentials rotated on expiry
- upload_batch: all logs in consecutive concurrency-bounded slices; per-task
  failures are collected, never raised
- upload_consolidated: every log concatenated into a single object
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
import re
from typing import Awaitable, Callable, Dict, Optional, Sequence

from logship.storage.credentials import CredentialProvider
from logship.storage.models import (
    BatchOutcome,
    Credential,
    TaskState,
    UploadResult,
    UploadTask,
)
from logship.storage.pipeline.publishers import LogPublisher
from logship.storage.planner import ConcurrencyPlanner
from logship.storage.retry import RetryExecutor, RetryPolicy
from logship.storage.utils.progress import ProgressObserver

SLICE_PAUSE = 0.1
SEPARATOR = '=' * 80
MAX_REPORTED_FAILURES = 5

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_-]')


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def sanitize_name(name: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with '_'."""
    return _UNSAFE_CHARS.sub('_', name)


def _ascii(value: str) -> str:
    # S3 user metadata must be ASCII
    return value.encode('ascii', 'replace').decode('ascii')


class UploadOrchestrator:
    """
    Drives single, batch and consolidated log uploads.

    One instance serves one batch id (the CI run); the CredentialProvider is
    shared by every concurrent upload and refreshes are coalesced there.
    """

    def __init__(
        self,
        publisher: LogPublisher,
        credentials: CredentialProvider,
        batch_id: int | str,
        path_prefix: str = 'logs',
        workflow_name: str = '',
        planner: Optional[ConcurrencyPlanner] = None,
        retry_policy: Optional[RetryPolicy] = None,
        retry_executor: Optional[RetryExecutor] = None,
        logger: Optional[logging.Logger] = None,
        on_progress: Optional[ProgressObserver] = None,
        slice_pause: float = SLICE_PAUSE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], dt.datetime] = _utcnow
    ):
        """
        :param publisher: Performs one multi-part transfer
        :param credentials: Shared credential provider
        :param batch_id: Identifier of the run; part of every object key
        :param path_prefix: Leading object key segment
        :param workflow_name: Attached to object metadata
        :param planner: Concurrency planner (default: process memory estimator)
        :param retry_policy: Per-task retry policy (default: 3 attempts, 1s..10s, x2)
        :param retry_executor: Retry executor
        :param logger: Logger instance
        :param on_progress: Default transfer progress observer
        :param slice_pause: Pause between slices in seconds
        :param sleep: Coroutine taking seconds, injectable for tests
        :param clock: Returns the current timezone-aware time
        """
        self.publisher = publisher
        self.credentials = credentials
        self.batch_id = str(batch_id)
        self.path_prefix = path_prefix.strip('/')
        self.workflow_name = workflow_name
        self.logger = logger or logging.getLogger(__name__)
        self.planner = planner or ConcurrencyPlanner(logger=self.logger)
        self.retry_policy = retry_policy or RetryPolicy()
        self.retry_executor = retry_executor or RetryExecutor(logger=self.logger)
        self.on_progress = on_progress
        self.slice_pause = slice_pause
        self._sleep = sleep
        self._clock = clock

        self.last_concurrency: Optional[int] = None
        self._states: Dict[str, TaskState] = {}

    # ===========================
    # Keys, metadata and state
    # ===========================

    def object_key(self, task: UploadTask) -> str:
        """{prefix}/{YYYY-MM-DD}/{batch_id}/{sanitized_name}_{epoch_ms}.log"""
        created = _as_utc(task.created_at)
        epoch_ms = int(created.timestamp() * 1000)
        return (
            f"{self.path_prefix}/{created.strftime('%Y-%m-%d')}/{self.batch_id}/"
            f"{sanitize_name(task.name)}_{epoch_ms}.log"
        )

    def _metadata(self, task: UploadTask) -> Dict[str, str]:
        return {
            'batch-id': self.batch_id,
            'workflow-name': _ascii(self.workflow_name),
            'job-name': _ascii(task.name),
            'job-id': str(task.id),
            'upload-timestamp': self._clock().isoformat(),
        }

    def state_of(self, task: UploadTask) -> TaskState:
        return self._states.get(str(task.id), TaskState.PENDING)

    def _set_state(self, task: UploadTask, state: TaskState) -> None:
        self._states[str(task.id)] = state

    # ===========================
    # Upload surfaces
    # ===========================

    async def upload_one(
        self,
        task: UploadTask,
        on_progress: Optional[ProgressObserver] = None
    ) -> UploadResult:
        """
        Upload a single log, retrying under the configured policy.

        A credential failure refreshes the shared credential before the next
        attempt unless another task already replaced it; every attempt
        re-resolves a currently valid credential.

        :param task: Log to upload
        :param on_progress: Observer of (task_name, percentage); defaults to the
            orchestrator-wide observer
        :return: UploadResult of the stored object
        :raises: The last transfer error once retries stop
        """
        key = self.object_key(task)
        metadata = self._metadata(task)
        observer = on_progress or self.on_progress

        used: Dict[str, Credential] = {}

        async def attempt() -> UploadResult:
            credential = await self.credentials.get()
            used['credential'] = credential
            self.logger.debug(f"Uploading {task.name} log")
            return await self.publisher.publish(
                credential, key, task.content, metadata, task.name, observer
            )

        async def rotate() -> Credential:
            return await self.credentials.refresh(stale=used.get('credential'))

        return await self.retry_executor.run(
            attempt,
            self.retry_policy,
            on_retryable_failure=rotate,
            operation_name=f'Upload log for job "{task.name}"',
            on_state=lambda state: self._set_state(task, state)
        )

    async def upload_batch(self, tasks: Sequence[UploadTask]) -> BatchOutcome:
        """
        Upload all logs in consecutive slices of the planned concurrency level.

        Slices never overlap: slice k+1 starts only after every task of slice k
        has settled. Each settled task has its content released.

        :param tasks: Logs to upload
        :return: BatchOutcome with one entry per task
        :raises CredentialIssuanceError: No credential could be obtained before
            the first transfer
        """
        outcome = BatchOutcome()
        if not tasks:
            self.logger.warning('No logs to upload')
            return outcome

        self.logger.info(f"Starting upload of {len(tasks)} log files")

        # Fails the whole batch before any transfer when no credential is available
        await self.credentials.get()

        level = self.planner.plan(tasks)
        self.last_concurrency = level
        for task in tasks:
            self._set_state(task, TaskState.PENDING)

        slices = [tasks[i:i + level] for i in range(0, len(tasks), level)]
        for index, chunk in enumerate(slices, start=1):
            self.logger.debug(f"Starting slice {index}/{len(slices)} ({len(chunk)} logs)")
            await asyncio.gather(*(self._settle(task, outcome) for task in chunk))

            if index < len(slices):
                await self._sleep(self.slice_pause)

        self._log_outcome(outcome, len(tasks))
        return outcome

    async def _settle(self, task: UploadTask, outcome: BatchOutcome) -> None:
        try:
            result = await self.upload_one(task)
        except Exception as e:
            self._set_state(task, TaskState.FAILED)
            outcome.failures.append((task.name, str(e)))
        else:
            outcome.results.append(result)
        finally:
            task.release()

    def _log_outcome(self, outcome: BatchOutcome, total: int) -> None:
        if outcome.failures:
            self.logger.warning(f"Failed to upload {len(outcome.failures)} log files:")
            for name, message in outcome.failures[:MAX_REPORTED_FAILURES]:
                self.logger.warning(f"  - {name}: {message}")
            if len(outcome.failures) > MAX_REPORTED_FAILURES:
                self.logger.warning(
                    f"  ... and {len(outcome.failures) - MAX_REPORTED_FAILURES} more errors"
                )
        self.logger.info(f"Successfully uploaded {len(outcome.results)}/{total} log files")

    async def upload_consolidated(self, tasks: Sequence[UploadTask]) -> UploadResult:
        """
        Upload every log as one object named "consolidated".

        Each log is preceded by a separator line, a JOB / TIMESTAMP header and
        another separator, and followed by an empty line.

        :param tasks: Logs to consolidate, in order
        :return: UploadResult of the consolidated object
        """
        self.logger.info('Creating consolidated log file')
        consolidated = UploadTask(
            name='consolidated',
            id=0,
            content=consolidate(tasks),
            created_at=self._clock()
        )
        return await self.upload_one(consolidated)


def consolidate(tasks: Sequence[UploadTask]) -> str:
    """Deterministic concatenation of task contents with per-task headers."""
    sections = []
    for task in tasks:
        content = task.content
        if isinstance(content, bytes):
            content = content.decode('utf-8', errors='replace')
        sections.append('\n'.join([
            SEPARATOR,
            f"JOB: {task.name} (ID: {task.id})",
            f"TIMESTAMP: {_as_utc(task.created_at).isoformat()}",
            SEPARATOR,
            content,
            '',
        ]))
    return '\n'.join(sections)
