"""
Step checkpointing and duplicate-job locking.

Step cache
──────────
  A retried Celery task re-runs the whole pipeline function. To avoid
  repeating side effects that already succeeded (the DB write, the vector
  upsert, commitment creation, notification fan-out), every completed
  step stores its JSON result under

      pipeline:{documentId}:{sha256(storageKey)[:16]}:{step}

  and a re-run returns the stored value instead of executing the step.
  Entries expire after `ttl_seconds` (24 h by default). The storage key
  is part of the key, so a re-upload to a new key starts fresh.

  Only JSON-safe results are cached. Raw file bytes never are: when the
  parse step is already cached the download is skipped entirely.

Job lock
────────
  SET NX on `pipeline-lock:{documentId}:{sha256(storageKey)[:16]}` guards
  against two deliveries of the same upload event running concurrently.
  The lock carries a TTL so a crashed worker cannot wedge a document.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

T = TypeVar("T")

STEP_PREFIX = "pipeline"
LOCK_PREFIX = "pipeline-lock"


def idempotency_key(document_id: str, storage_key: str) -> str:
    digest = hashlib.sha256(storage_key.encode("utf-8")).hexdigest()[:16]
    return f"{document_id}:{digest}"


# ---------------------------------------------------------------------------
# Step cache
# ---------------------------------------------------------------------------

class StepCache(Protocol):
    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any) -> None: ...


class RedisStepCache:

    def __init__(self, redis: Redis, ttl_seconds: int = 86_400) -> None:
        self._redis = redis
        self._ttl   = ttl_seconds

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(f"{STEP_PREFIX}:{key}")
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        await self._redis.set(f"{STEP_PREFIX}:{key}", json.dumps(value), ex=self._ttl)


class InMemoryStepCache:
    """Process-local cache; used when Redis is not configured and in tests."""

    def __init__(self, ttl_seconds: int = 86_400) -> None:
        self._ttl = ttl_seconds
        self._data: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Any | None:
        hit = self._data.get(key)
        if hit is None:
            return None
        expires_at, raw = hit
        if expires_at < time.monotonic():
            del self._data[key]
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = (time.monotonic() + self._ttl, json.dumps(value))


class StepRunner:
    """
    Binds a step cache to one job.

    Usage:
        steps = StepRunner(cache, idempotency_key(doc_id, storage_key))
        summary = await steps.run("update-document", write_fn, encode=..., decode=...)
    """

    def __init__(self, cache: StepCache, job_key: str) -> None:
        self._cache = cache
        self._job_key = job_key

    async def run(
        self,
        name:   str,
        fn:     Callable[[], Awaitable[T]],
        encode: Callable[[T], Any] = lambda v: v,
        decode: Callable[[Any], T] = lambda v: v,
    ) -> T:
        key = f"{self._job_key}:{name}"
        try:
            cached = await self._cache.get(key)
        except RedisError as exc:
            # an unreachable cache degrades to "run every step"
            logger.warning("Step cache read failed | step=%s error=%s", name, exc)
            cached = None

        if cached is not None:
            logger.info("Step replayed from cache | step=%s job=%s", name, self._job_key)
            return decode(cached)

        result = await fn()
        try:
            await self._cache.set(key, encode(result))
        except RedisError as exc:
            logger.warning("Step cache write failed | step=%s error=%s", name, exc)
        return result


# ---------------------------------------------------------------------------
# Job lock
# ---------------------------------------------------------------------------

class JobLock(Protocol):
    async def acquire(self, key: str) -> str | None: ...
    async def release(self, key: str, token: str) -> None: ...


# compare-and-delete so a worker never releases a lock it no longer owns
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisJobLock:

    def __init__(self, redis: Redis, ttl_seconds: int = 900) -> None:
        self._redis = redis
        self._ttl   = ttl_seconds

    async def acquire(self, key: str) -> str | None:
        """Return an ownership token, or None if another job holds the lock."""
        token = uuid.uuid4().hex
        ok = await self._redis.set(f"{LOCK_PREFIX}:{key}", token, nx=True, ex=self._ttl)
        return token if ok else None

    async def release(self, key: str, token: str) -> None:
        await self._redis.eval(_RELEASE_SCRIPT, 1, f"{LOCK_PREFIX}:{key}", token)


class InMemoryJobLock:

    def __init__(self) -> None:
        self._held: dict[str, str] = {}

    async def acquire(self, key: str) -> str | None:
        if key in self._held:
            return None
        token = uuid.uuid4().hex
        self._held[key] = token
        return token

    async def release(self, key: str, token: str) -> None:
        if self._held.get(key) == token:
            del self._held[key]
