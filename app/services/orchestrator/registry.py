"""Live session registry and per-session command queues.

Both are injected into the orchestrator through OrchestratorState so the
backing store can be swapped: in-memory for tests and single-process
deployments, Redis when several instances share live state.

The in-memory queue loses pending medium/low priority commands on
restart. The Redis queue survives restarts for as long as the session
state TTL.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator

import structlog

from app.db.redis import RedisClient
from app.services.orchestrator.types import Command, LiveSession

logger = structlog.get_logger(__name__)


class SessionRegistry(ABC):
    """Live sessions keyed by session id."""

    @abstractmethod
    async def get(self, session_id: str) -> LiveSession | None: ...

    @abstractmethod
    async def put(self, session: LiveSession) -> None: ...

    @abstractmethod
    async def remove(self, session_id: str) -> bool: ...

    @abstractmethod
    async def list_for_tenant(self, tenant_id: str) -> list[LiveSession]: ...

    @abstractmethod
    async def session_ids(self) -> list[str]: ...


class CommandQueue(ABC):
    """Per-session FIFO of deferred commands."""

    @abstractmethod
    async def create(self, session_id: str) -> None: ...

    @abstractmethod
    async def append(self, session_id: str, commands: list[Command]) -> None: ...

    @abstractmethod
    async def pending(self, session_id: str) -> list[Command]: ...

    @abstractmethod
    async def pop_ready(self, session_id: str, now: datetime) -> list[Command]:
        """Remove and return commands due at *now*, oldest first."""

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemorySessionRegistry(SessionRegistry):
    def __init__(self) -> None:
        self._sessions: dict[str, LiveSession] = {}

    async def get(self, session_id: str) -> LiveSession | None:
        return self._sessions.get(session_id)

    async def put(self, session: LiveSession) -> None:
        self._sessions[session.id] = session

    async def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_for_tenant(self, tenant_id: str) -> list[LiveSession]:
        return [s for s in self._sessions.values() if s.tenant_id == tenant_id]

    async def session_ids(self) -> list[str]:
        return list(self._sessions)


class InMemoryCommandQueue(CommandQueue):
    def __init__(self) -> None:
        self._queues: dict[str, list[Command]] = {}

    async def create(self, session_id: str) -> None:
        self._queues[session_id] = []

    async def append(self, session_id: str, commands: list[Command]) -> None:
        self._queues.setdefault(session_id, []).extend(commands)

    async def pending(self, session_id: str) -> list[Command]:
        return list(self._queues.get(session_id, []))

    async def pop_ready(self, session_id: str, now: datetime) -> list[Command]:
        queue = self._queues.get(session_id)
        if not queue:
            return []
        ready = [c for c in queue if c.is_ready(now)]
        self._queues[session_id] = [c for c in queue if not c.is_ready(now)]
        return ready

    async def delete(self, session_id: str) -> None:
        self._queues.pop(session_id, None)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisSessionRegistry(SessionRegistry):
    """Sessions stored as JSON with a tenant index set."""

    _ALL_KEY = "orchestrator:sessions"

    def __init__(self, redis: RedisClient, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"orchestrator:session:{session_id}"

    def _tenant_key(self, tenant_id: str) -> str:
        return f"orchestrator:tenant:{tenant_id}:sessions"

    async def get(self, session_id: str) -> LiveSession | None:
        data = await self._redis.get_json(self._key(session_id))
        if data is None:
            return None
        try:
            return LiveSession.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(
                "registry_session_decode_failed", session_id=session_id, error=str(e)
            )
            return None

    async def put(self, session: LiveSession) -> None:
        await self._redis.set_json(self._key(session.id), session.to_dict(), self._ttl)
        await self._redis.sadd(self._tenant_key(session.tenant_id), session.id)
        await self._redis.sadd(self._ALL_KEY, session.id)

    async def remove(self, session_id: str) -> bool:
        session = await self.get(session_id)
        removed = await self._redis.delete(self._key(session_id))
        await self._redis.srem(self._ALL_KEY, session_id)
        if session is not None:
            await self._redis.srem(self._tenant_key(session.tenant_id), session_id)
        return removed > 0

    async def list_for_tenant(self, tenant_id: str) -> list[LiveSession]:
        sessions: list[LiveSession] = []
        for session_id in sorted(await self._redis.smembers(self._tenant_key(tenant_id))):
            session = await self.get(session_id)
            if session is None:
                # Expired by TTL; drop the stale index entry.
                await self._redis.srem(self._tenant_key(tenant_id), session_id)
                continue
            sessions.append(session)
        return sessions

    async def session_ids(self) -> list[str]:
        live: list[str] = []
        for session_id in sorted(await self._redis.smembers(self._ALL_KEY)):
            if await self._redis.get_json(self._key(session_id)) is None:
                await self._redis.srem(self._ALL_KEY, session_id)
                continue
            live.append(session_id)
        return live


class RedisCommandQueue(CommandQueue):
    """Queue stored as one JSON list per session.

    Read-modify-write is safe because every caller holds the session's
    lock from OrchestratorState.
    """

    def __init__(self, redis: RedisClient, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"orchestrator:queue:{session_id}"

    async def _load(self, session_id: str) -> list[Command]:
        raw = await self._redis.get_json(self._key(session_id)) or []
        return [Command.from_dict(item) for item in raw]

    async def _store(self, session_id: str, commands: list[Command]) -> None:
        await self._redis.set_json(
            self._key(session_id), [c.to_dict() for c in commands], self._ttl
        )

    async def create(self, session_id: str) -> None:
        await self._store(session_id, [])

    async def append(self, session_id: str, commands: list[Command]) -> None:
        if not commands:
            return
        queue = await self._load(session_id)
        queue.extend(commands)
        await self._store(session_id, queue)

    async def pending(self, session_id: str) -> list[Command]:
        return await self._load(session_id)

    async def pop_ready(self, session_id: str, now: datetime) -> list[Command]:
        queue = await self._load(session_id)
        ready = [c for c in queue if c.is_ready(now)]
        if ready:
            await self._store(session_id, [c for c in queue if not c.is_ready(now)])
        return ready

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))


# ---------------------------------------------------------------------------
# State container
# ---------------------------------------------------------------------------


@dataclass
class OrchestratorState:
    """Everything the orchestrator mutates, owned by the hosting process.

    Locks exist only while a caller holds or waits on them, so ids that
    never resolve to a session leave nothing behind.
    """

    sessions: SessionRegistry = field(default_factory=InMemorySessionRegistry)
    queues: CommandQueue = field(default_factory=InMemoryCommandQueue)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict)
    _lock_users: dict[str, int] = field(default_factory=dict)

    @asynccontextmanager
    async def lock_for(self, session_id: str) -> AsyncIterator[None]:
        """Per-session mutex serialising work on one conversation."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    @property
    def lock_count(self) -> int:
        return len(self._locks)
