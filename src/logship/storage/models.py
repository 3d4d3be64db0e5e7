"""Data models for log uploads."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

RELEASED_CONTENT = "[UPLOADED - Content cleared to save memory]"

Content = Union[str, bytes]


@dataclass(frozen=True)
class Credential:
    """Temporary storage credential set. Never mutated; refresh issues a new one."""

    access_id: str
    secret_key: str
    session_token: str
    expires_at: dt.datetime
    container_name: str

    def is_valid(self, now: dt.datetime, safety_margin: dt.timedelta) -> bool:
        return now < self.expires_at - safety_margin

    def __repr__(self) -> str:
        return (
            f"Credential(access_id={self.access_id!r}, secret_key='***', "
            f"session_token='***', expires_at={self.expires_at.isoformat()}, "
            f"container_name={self.container_name!r})"
        )


@dataclass
class UploadTask:
    """One named log artifact to upload."""

    name: str
    id: int | str
    content: Content
    created_at: dt.datetime = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )

    @property
    def size(self) -> int:
        return len(self.content)

    def release(self) -> None:
        """Drop the content reference once the task has settled."""
        self.content = RELEASED_CONTENT


@dataclass(frozen=True)
class UploadResult:
    """Location of one successfully uploaded object."""

    location: str
    container_name: str
    object_key: str
    integrity_tag: str


@dataclass
class BatchOutcome:
    """Aggregated results of one batch upload."""

    results: list[UploadResult] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.failures)

    @property
    def succeeded(self) -> bool:
        """Overall success: at least one object was uploaded."""
        return len(self.results) > 0

    @property
    def partial(self) -> bool:
        return bool(self.results) and bool(self.failures)


class TaskState(str, Enum):
    """Lifecycle of a single upload task."""

    PENDING = "pending"
    UPLOADING = "uploading"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)
