"""Redis-backed JobQueue."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis

from app.core.config import OUTBOX_JOB_LEASE_MS
from app.queue.job_queue import Job, JobQueue, RetryPolicy

log = logging.getLogger("queue.redis")

# KEYS[1] job key, KEYS[2] delayed set; ARGV[1] job json, ARGV[2] due ms, ARGV[3] job id
_ENQUEUE = """
if redis.call("EXISTS", KEYS[1]) == 1 then
    return 0
end
redis.call("SET", KEYS[1], ARGV[1])
redis.call("ZADD", KEYS[2], ARGV[2], ARGV[3])
return 1
"""

# KEYS[1] delayed set, KEYS[2] active set; ARGV[1] now ms, ARGV[2] lease ms, ARGV[3] job key prefix
_RESERVE = """
local ids = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1], "LIMIT", 0, 1)
if #ids == 0 then
    return false
end
local id = ids[1]
redis.call("ZREM", KEYS[1], id)
local raw = redis.call("GET", ARGV[3] .. id)
if not raw then
    return false
end
local job = cjson.decode(raw)
job["attemptsMade"] = (tonumber(job["attemptsMade"]) or 0) + 1
raw = cjson.encode(job)
redis.call("SET", ARGV[3] .. id, raw)
redis.call("ZADD", KEYS[2], tonumber(ARGV[1]) + tonumber(ARGV[2]), id)
return raw
"""

# KEYS[1] active set, KEYS[2] delayed set; ARGV[1] now ms
_RECOVER_STALLED = """
local ids = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1])
for _, id in ipairs(ids) do
    redis.call("ZREM", KEYS[1], id)
    redis.call("ZADD", KEYS[2], ARGV[1], id)
end
return #ids
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisJobQueue(JobQueue):
    """
    Job queue on plain Redis data structures.

    - ``{name}:job:{id}``  JSON job body; its existence is the dedup guard
    - ``{name}:delayed``   sorted set of waiting job ids scored by due time
    - ``{name}:active``    sorted set of reserved job ids scored by lease deadline
    - ``{name}:failed``    sorted set of failed job ids scored by failure time
    """

    def __init__(
        self,
        client: Any,
        name: str,
        lease_ms: int = OUTBOX_JOB_LEASE_MS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._client = client
        self._name = name
        self._lease_ms = lease_ms
        self._clock = clock or _now_ms

    @classmethod
    def from_url(cls, url: str, name: str, **kwargs: Any) -> "RedisJobQueue":
        return cls(aioredis.from_url(url, decode_responses=True), name, **kwargs)

    def _job_key(self, job_id: str) -> str:
        return f"{self._name}:job:{job_id}"

    @property
    def _delayed(self) -> str:
        return f"{self._name}:delayed"

    @property
    def _active(self) -> str:
        return f"{self._name}:active"

    @property
    def _failed(self) -> str:
        return f"{self._name}:failed"

    async def enqueue(self, job_id: str, name: str, data: Dict[str, Any], retry_policy: RetryPolicy) -> bool:
        job = Job(job_id=job_id, name=name, data=data, retry_policy=retry_policy)
        created = await self._client.eval(
            _ENQUEUE, 2, self._job_key(job_id), self._delayed,
            json.dumps(job.to_dict()), self._clock(), job_id,
        )
        if not created:
            log.debug(f"Job {job_id} already exists, enqueue skipped.")
        return bool(created)

    async def enqueue_bulk(self, jobs: List[Job]) -> int:
        if not jobs:
            return 0
        now = self._clock()
        async with self._client.pipeline(transaction=False) as pipe:
            for job in jobs:
                pipe.eval(
                    _ENQUEUE, 2, self._job_key(job.job_id), self._delayed,
                    json.dumps(job.to_dict()), now, job.job_id,
                )
            results = await pipe.execute()
        return sum(1 for created in results if created)

    async def reserve(self) -> Optional[Job]:
        raw = await self._client.eval(
            _RESERVE, 2, self._delayed, self._active,
            self._clock(), self._lease_ms, f"{self._name}:job:",
        )
        if not raw:
            return None
        return Job.from_dict(json.loads(raw))

    async def complete(self, job: Job) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._active, job.job_id)
            pipe.delete(self._job_key(job.job_id))
            await pipe.execute()

    async def retry(self, job: Job, delay_ms: int) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.job_id), json.dumps(job.to_dict()))
            pipe.zrem(self._active, job.job_id)
            pipe.zadd(self._delayed, {job.job_id: self._clock() + delay_ms})
            await pipe.execute()

    async def fail(self, job: Job, reason: str) -> None:
        job.failed_reason = reason
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.job_id), json.dumps(job.to_dict()))
            pipe.zrem(self._active, job.job_id)
            pipe.zadd(self._failed, {job.job_id: self._clock()})
            await pipe.execute()

    async def discard(self, job_id: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(self._job_key(job_id))
            pipe.zrem(self._delayed, job_id)
            pipe.zrem(self._active, job_id)
            pipe.zrem(self._failed, job_id)
            await pipe.execute()

    async def recover_stalled(self) -> int:
        recovered = await self._client.eval(_RECOVER_STALLED, 2, self._active, self._delayed, self._clock())
        if recovered:
            log.warning(f"Recovered {recovered} stalled job(s) on queue {self._name}.")
        return int(recovered or 0)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["RedisJobQueue"]
