"""
Progress reporting for multi-part transfers.

boto3 invokes transfer callbacks with incremental byte counts from its worker
threads; TransferProgress turns them into per-task percentages for an
observer.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

ProgressObserver = Callable[[str, float], None]


class TransferProgress:
    """
    Thread-safe byte accumulator for one transfer.

    Example:
        >>> progress = TransferProgress('build', total_bytes=1024, observer=print)
        >>> progress(512)
        build 50.0
    """

    def __init__(self, task_name: str, total_bytes: int, observer: ProgressObserver):
        """
        :param task_name: Name of the task being transferred
        :param total_bytes: Size of the body in bytes
        :param observer: Called with (task_name, percentage)
        """
        self.task_name = task_name
        self.total_bytes = total_bytes
        self.observer = observer
        self.transferred = 0
        self.lock = threading.Lock()

    def __call__(self, bytes_amount: int):
        with self.lock:
            self.transferred += bytes_amount
            if self.total_bytes > 0:
                percentage = min(100.0, self.transferred * 100.0 / self.total_bytes)
            else:
                percentage = 100.0
            self.observer(self.task_name, percentage)


class LoggingProgressObserver:
    """Logs transfer progress each time a task crosses another step (default 25%)."""

    def __init__(self, logger: Optional[logging.Logger] = None, step: float = 25.0):
        self.logger = logger or logging.getLogger(__name__)
        self.step = step
        self._reported: Dict[str, int] = {}
        self._lock = threading.Lock()

    def __call__(self, task_name: str, percentage: float):
        bucket = int(percentage // self.step)
        with self._lock:
            if bucket <= self._reported.get(task_name, 0):
                return
            self._reported[task_name] = bucket
        self.logger.debug(f"Upload progress {task_name}: {percentage:.0f}%")

    def reset(self, task_name: str):
        with self._lock:
            self._reported.pop(task_name, None)
