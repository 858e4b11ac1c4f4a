"""
Batch storage between bulk-add requests.

A batch waiting for choices lives here until it is submitted or expires.
Choice commits and submissions go through ``update``, which holds a per-batch
lock across load, mutation and save: two requests on the same batch run one
after the other, and the second one sees what the first one stored.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from fastapi import HTTPException, status
import redis.asyncio as redis
from redis.exceptions import LockError

from doof.core.config import get_settings

logger = logging.getLogger(__name__)

BatchRecord = Dict[str, Any]
RecordUpdate = Callable[[BatchRecord], Awaitable[BatchRecord]]


class BatchBusyError(RuntimeError):
    """Another request kept the batch locked for longer than the lock timeout."""


class BatchRepository(ABC):
    def __init__(self, ttl_seconds: int, lock_timeout_seconds: float = 120.0) -> None:
        self.ttl_seconds = ttl_seconds
        self.lock_timeout_seconds = lock_timeout_seconds

    @abstractmethod
    async def save(self, record: BatchRecord) -> BatchRecord:
        ...

    @abstractmethod
    async def get(self, batch_id: str) -> Optional[BatchRecord]:
        ...

    @abstractmethod
    async def delete(self, batch_id: str) -> bool:
        ...

    @abstractmethod
    def lock(self, batch_id: str):
        """Async context manager holding the batch exclusively."""

    async def update(self, batch_id: str, apply: RecordUpdate) -> Optional[BatchRecord]:
        """Load, change and store one batch under its lock.

        Returns None when the batch is missing. Exceptions raised by ``apply``
        propagate and nothing is stored.
        """
        async with self.lock(batch_id):
            record = await self.get(batch_id)
            if not record:
                return None
            return await self.save(await apply(record))

    def stamp(self, payload: BatchRecord) -> BatchRecord:
        now = datetime.now(timezone.utc).isoformat()
        record: BatchRecord = dict(payload)
        record.setdefault("createdAt", now)
        record["updatedAt"] = now
        return record


class InMemoryBatchRepository(BatchRepository):
    def __init__(self, ttl_seconds: int, lock_timeout_seconds: float = 120.0) -> None:
        super().__init__(ttl_seconds, lock_timeout_seconds)
        self._records: Dict[str, BatchRecord] = {}
        self._deadlines: Dict[str, datetime] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _drop_expired(self) -> None:
        now = datetime.now(timezone.utc)
        for batch_id in [b for b, deadline in self._deadlines.items() if deadline <= now]:
            self._forget(batch_id)

    def _forget(self, batch_id: str) -> Optional[BatchRecord]:
        self._deadlines.pop(batch_id, None)
        lock = self._locks.get(batch_id)
        if lock is not None and not lock.locked():
            del self._locks[batch_id]
        return self._records.pop(batch_id, None)

    def _extend(self, batch_id: str) -> None:
        self._deadlines[batch_id] = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)

    @asynccontextmanager
    async def lock(self, batch_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(batch_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise BatchBusyError(f"batch {batch_id} is busy") from exc
        try:
            yield
        finally:
            lock.release()
            if batch_id not in self._records and not lock.locked():
                self._locks.pop(batch_id, None)

    async def save(self, record: BatchRecord) -> BatchRecord:
        self._drop_expired()
        record = self.stamp(record)
        self._records[record["batchId"]] = record
        self._extend(record["batchId"])
        return record

    async def get(self, batch_id: str) -> Optional[BatchRecord]:
        self._drop_expired()
        record = self._records.get(batch_id)
        if record:
            self._extend(batch_id)
        return record

    async def delete(self, batch_id: str) -> bool:
        return self._forget(batch_id) is not None


class RedisBatchRepository(BatchRepository):
    """Stores batches as JSON strings under ``{prefix}:{batch_id}`` with a sliding TTL.

    The batch lock is a redis lock on ``{prefix}:{batch_id}:lock`` so that
    several API workers share it.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: str,
        ttl_seconds: int,
        lock_timeout_seconds: float = 120.0,
    ) -> None:
        super().__init__(ttl_seconds, lock_timeout_seconds)
        self.client = redis_client
        self.prefix = prefix

    def _key(self, batch_id: str) -> str:
        return f"{self.prefix}:{batch_id}"

    @asynccontextmanager
    async def lock(self, batch_id: str) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"{self._key(batch_id)}:lock",
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_timeout_seconds,
        )
        if not await lock.acquire():
            raise BatchBusyError(f"batch {batch_id} is busy")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                logger.warning("Batch lock for %s expired before release: %s", batch_id, exc)

    async def save(self, record: BatchRecord) -> BatchRecord:
        record = self.stamp(record)
        await self.client.setex(self._key(record["batchId"]), self.ttl_seconds, json.dumps(record))
        return record

    async def get(self, batch_id: str) -> Optional[BatchRecord]:
        key = self._key(batch_id)
        raw = await self.client.get(key)
        if not raw:
            return None
        await self.client.expire(key, self.ttl_seconds)
        return json.loads(raw)

    async def delete(self, batch_id: str) -> bool:
        return bool(await self.client.delete(self._key(batch_id)))


def _build_redis_client(url: str) -> redis.Redis:
    try:
        return redis.from_url(url, decode_responses=True)
    except Exception as exc:  # pragma: no cover
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Redis connection failed: {exc}") from exc


_repo_instance: Optional[BatchRepository] = None


async def get_batch_repository() -> BatchRepository:
    global _repo_instance
    if _repo_instance:
        return _repo_instance

    settings = get_settings()
    ttl_seconds = settings.batch_ttl_minutes * 60
    lock_timeout = settings.batch_lock_timeout_seconds
    if settings.redis_url:
        client = _build_redis_client(settings.redis_url)
        _repo_instance = RedisBatchRepository(client, settings.redis_batch_prefix, ttl_seconds, lock_timeout)
    else:
        _repo_instance = InMemoryBatchRepository(ttl_seconds, lock_timeout)
    return _repo_instance
