"""Durable per-run step results for resumable workflows.

Every completed step stores its JSON-serialized result under
``(run_id, step_name)``. Re-running the same run id reads these back instead
of repeating the work. Two reserved names hold run metadata: ``_input`` (the
original request, so a run can be resumed without resubmitting it) and
``_status`` (the latest ``WorkflowStatus``).

Redis keys are constructed as: workflow:{run_id}:step:{name}
"""

import asyncio
from abc import ABC, abstractmethod

import redis.asyncio as redis

from config import Settings, get_settings
from utils.logging import get_logger

logger = get_logger(__name__)

INPUT_KEY = "_input"
STATUS_KEY = "_status"


class CheckpointStore(ABC):
    """Key-value store scoped by run id."""

    @abstractmethod
    async def get(self, run_id: str, name: str) -> str | None:
        ...

    @abstractmethod
    async def put(self, run_id: str, name: str, value: str) -> None:
        ...

    @abstractmethod
    async def clear(self, run_id: str) -> int:
        """Delete every checkpoint of a run; returns the number removed."""
        ...


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store for tests and the CLI. Lost on exit."""

    def __init__(self):
        self._data: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, run_id: str, name: str) -> str | None:
        return self._data.get(run_id, {}).get(name)

    async def put(self, run_id: str, name: str, value: str) -> None:
        async with self._lock:
            self._data.setdefault(run_id, {})[name] = value

    async def clear(self, run_id: str) -> int:
        async with self._lock:
            return len(self._data.pop(run_id, {}))

    def names(self, run_id: str) -> list[str]:
        """Checkpoint names recorded for a run (test helper)."""
        return list(self._data.get(run_id, {}))


class RedisCheckpointStore(CheckpointStore):
    """Redis-backed store; entries expire after ``ttl`` seconds."""

    def __init__(self, client: redis.Redis, ttl: int):
        self.redis = client
        self.ttl = ttl

    @staticmethod
    def _key(run_id: str, name: str) -> str:
        return f"workflow:{run_id}:step:{name}"

    async def get(self, run_id: str, name: str) -> str | None:
        value = await self.redis.get(self._key(run_id, name))
        if value is not None:
            logger.debug(f"Checkpoint hit: {self._key(run_id, name)}")
        return value

    async def put(self, run_id: str, name: str, value: str) -> None:
        await self.redis.setex(self._key(run_id, name), self.ttl, value)

    async def clear(self, run_id: str) -> int:
        pattern = self._key(run_id, "*")
        deleted = 0
        cursor = 0
        while True:
            cursor, keys = await self.redis.scan(cursor, match=pattern, count=100)
            if keys:
                deleted += await self.redis.delete(*keys)
            if cursor == 0:
                break
        if deleted:
            logger.info(f"Cleared {deleted} checkpoints for run {run_id}")
        return deleted


_memory_store: InMemoryCheckpointStore | None = None


def get_checkpoint_store(settings: Settings | None = None) -> CheckpointStore:
    """Return the configured checkpoint backend.

    The memory backend is a process-wide singleton so status written by a
    background run is visible to later requests.
    """
    global _memory_store
    settings = settings or get_settings()
    backend = settings.checkpoint_backend

    if backend == "redis":
        from db.redis import get_redis

        return RedisCheckpointStore(get_redis(), ttl=settings.checkpoint_ttl)
    if backend == "memory":
        if _memory_store is None:
            _memory_store = InMemoryCheckpointStore()
        return _memory_store

    raise ValueError(f"Unknown checkpoint backend: {backend}")
