"""Retryable work queue port used by the outbox publisher."""
from __future__ import annotations

import abc
import dataclasses
from typing import Any, Dict, List, Optional

from app.core.config import OUTBOX_BACKOFF_DELAY_MS, OUTBOX_RETRY_ATTEMPTS


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling plus exponential backoff seeded from a fixed base delay."""

    max_attempts: int = OUTBOX_RETRY_ATTEMPTS
    backoff_delay_ms: int = OUTBOX_BACKOFF_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_delay_ms <= 0:
            raise ValueError("backoff_delay_ms must be positive")

    def delay_for(self, attempt: int) -> int:
        """Delay in ms before the attempt following failed attempt number `attempt` (1-based)."""
        return self.backoff_delay_ms * (2 ** (attempt - 1))

    def has_attempts_left(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.max_attempts,
            "backoff": {"type": "exponential", "delay": self.backoff_delay_ms},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        return cls(max_attempts=int(data["attempts"]), backoff_delay_ms=int(data["backoff"]["delay"]))


@dataclasses.dataclass
class Job:
    job_id: str
    name: str
    data: Dict[str, Any]
    retry_policy: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    attempt: int = 0  # Attempts started so far, the current one included once reserved
    failed_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "name": self.name,
            "data": self.data,
            "opts": self.retry_policy.to_dict(),
            "attemptsMade": self.attempt,
            "failedReason": self.failed_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=data["id"],
            name=data["name"],
            data=data["data"],
            retry_policy=RetryPolicy.from_dict(data["opts"]),
            attempt=int(data.get("attemptsMade", 0)),
            failed_reason=data.get("failedReason"),
        )


class JobQueue(abc.ABC):
    """
    Port: a reliable, delayed, retryable queue with id-based deduplication.

    A job id that is already queued, running or failed is never enqueued twice.
    Completing a job frees its id.
    """

    @abc.abstractmethod
    async def enqueue(self, job_id: str, name: str, data: Dict[str, Any], retry_policy: RetryPolicy) -> bool:
        """Adds one job; returns False when a job with this id already exists."""

    @abc.abstractmethod
    async def enqueue_bulk(self, jobs: List[Job]) -> int:
        """Adds several jobs in one round-trip; returns how many were new."""

    @abc.abstractmethod
    async def reserve(self) -> Optional[Job]:
        """Takes the earliest due job, or None when nothing is due."""

    @abc.abstractmethod
    async def complete(self, job: Job) -> None: ...

    @abc.abstractmethod
    async def retry(self, job: Job, delay_ms: int) -> None: ...

    @abc.abstractmethod
    async def fail(self, job: Job, reason: str) -> None: ...

    @abc.abstractmethod
    async def discard(self, job_id: str) -> None:
        """Forgets a job (typically a failed one) so its id can be scheduled again."""

    @abc.abstractmethod
    async def recover_stalled(self) -> int:
        """Puts back jobs whose worker lease expired; returns how many were recovered."""

    async def close(self) -> None:
        return None


__all__ = ["Job", "JobQueue", "RetryPolicy"]
