"""
Adaptive concurrency for batch uploads.

Smaller logs run with higher concurrency, larger logs with lower, so the
number of log bodies held in memory at once stays bounded.
"""
from __future__ import annotations

import logging
import resource
import sys
from typing import Optional, Protocol, Sequence

from logship.storage.models import UploadTask

MIB = 1024 * 1024
GIB = 1024 * MIB

# Conservative estimate of the memory budget for one process
HEAP_LIMIT_ESTIMATE = int(1.4 * GIB)
FALLBACK_AVAILABLE = 512 * MIB


class MemoryEstimator(Protocol):
    def available_bytes(self) -> int:
        ...


class ProcessMemoryEstimator:
    """
    Estimates available memory as 80% of a fixed budget minus the process's
    resident set size (peak RSS from getrusage).
    """

    def __init__(self, heap_limit: int = HEAP_LIMIT_ESTIMATE):
        self.heap_limit = heap_limit

    @staticmethod
    def used_bytes() -> int:
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # Linux reports KiB, macOS reports bytes
        return rss if sys.platform == 'darwin' else rss * 1024

    def available_bytes(self) -> int:
        try:
            used = self.used_bytes()
        except (OSError, ValueError):
            return FALLBACK_AVAILABLE
        return max(0, int(self.heap_limit * 0.8) - used)


class ConcurrencyPlanner:
    """
    Picks a per-batch concurrency level from task sizes and available memory.

    Decision table (first match wins):
        mean size > 10 MiB      -> 1
        mean size > 1 MiB       -> 2
        available memory > 1 GiB -> 5
        otherwise               -> 3
    """

    LARGE_MEAN = 10 * MIB
    MEDIUM_MEAN = 1 * MIB
    HIGH_MEMORY = 1 * GIB
    DEFAULT_LEVEL = 3

    def __init__(
        self,
        memory_estimator: Optional[MemoryEstimator] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.memory_estimator = memory_estimator or ProcessMemoryEstimator()
        self.logger = logger or logging.getLogger(__name__)

    def plan(self, tasks: Sequence[UploadTask]) -> int:
        """
        :param tasks: Tasks of the whole batch
        :return: Concurrency level (>= 1)
        """
        mean_size = sum(task.size for task in tasks) / len(tasks) if tasks else 0.0

        if mean_size > self.LARGE_MEAN:
            level = 1
        elif mean_size > self.MEDIUM_MEAN:
            level = 2
        elif self.memory_estimator.available_bytes() > self.HIGH_MEMORY:
            level = 5
        else:
            level = self.DEFAULT_LEVEL

        self.logger.info(
            f"Using adaptive concurrency limit: {level} "
            f"(avg file size: {round(mean_size / 1024)}KB)"
        )
        return level
