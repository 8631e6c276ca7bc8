"""Session store implementations."""
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from redis import asyncio as aioredis

from app.core.errors import SessionAlreadyExistsError, SessionMissingError
from app.services.call_session.models import CallSession

logger = logging.getLogger(__name__)

SessionMutator = Callable[[CallSession], None]


class SessionStore(ABC):
    """
    TTL-bounded key-value store of call sessions keyed by call id.

    Every write renews the expiry. ``update`` always applies the mutator to
    the latest stored value; it is not atomic across concurrent writers,
    callers serialize per call.
    """

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def create(self, session: CallSession) -> CallSession:
        """Store a new session; raises SessionAlreadyExistsError on duplicates."""
        pass

    @abstractmethod
    async def get(self, call_id: str) -> Optional[CallSession]:
        """Get the session, or None if missing or expired."""
        pass

    @abstractmethod
    async def _write(self, session: CallSession) -> None:
        pass

    @abstractmethod
    async def delete(self, call_id: str) -> None:
        pass

    @abstractmethod
    async def renew_ttl(self, call_id: str) -> bool:
        pass

    @abstractmethod
    async def list_active(self) -> List[str]:
        """Call ids of live sessions."""
        pass

    async def update(self, call_id: str, mutator: SessionMutator) -> CallSession:
        """Read the latest session, apply ``mutator`` in place, write it back."""
        session = await self.get(call_id)
        if session is None:
            raise SessionMissingError(call_id)
        mutator(session)
        await self._write(session)
        return session


class InMemorySessionStore(SessionStore):
    """Process-local store; sessions are kept serialized so reads never share objects."""

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, Tuple[str, float]] = {}

    def _expired(self, call_id: str) -> bool:
        entry = self._sessions.get(call_id)
        if entry is None:
            return True
        if entry[1] <= self._clock():
            del self._sessions[call_id]
            return True
        return False

    async def create(self, session: CallSession) -> CallSession:
        if not self._expired(session.call_id):
            raise SessionAlreadyExistsError(session.call_id)
        await self._write(session)
        return session

    async def get(self, call_id: str) -> Optional[CallSession]:
        if self._expired(call_id):
            return None
        return CallSession.model_validate_json(self._sessions[call_id][0])

    async def _write(self, session: CallSession) -> None:
        self._sessions[session.call_id] = (
            session.model_dump_json(),
            self._clock() + self.ttl_seconds,
        )

    async def delete(self, call_id: str) -> None:
        self._sessions.pop(call_id, None)

    async def renew_ttl(self, call_id: str) -> bool:
        if self._expired(call_id):
            return False
        payload, _ = self._sessions[call_id]
        self._sessions[call_id] = (payload, self._clock() + self.ttl_seconds)
        return True

    async def list_active(self) -> List[str]:
        return [call_id for call_id in list(self._sessions) if not self._expired(call_id)]


class RedisSessionStore(SessionStore):
    """Redis-backed store; one JSON string per call under ``session:<call_id>``."""

    KEY_PREFIX = "session:"

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 3600):
        super().__init__(ttl_seconds)
        self.client = client

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 3600) -> "RedisSessionStore":
        return cls(aioredis.from_url(url, decode_responses=True), ttl_seconds)

    def _key(self, call_id: str) -> str:
        return f"{self.KEY_PREFIX}{call_id}"

    async def create(self, session: CallSession) -> CallSession:
        created = await self.client.set(
            self._key(session.call_id),
            session.model_dump_json(),
            ex=self.ttl_seconds,
            nx=True,
        )
        if not created:
            raise SessionAlreadyExistsError(session.call_id)
        return session

    async def get(self, call_id: str) -> Optional[CallSession]:
        payload = await self.client.get(self._key(call_id))
        if payload is None:
            return None
        return CallSession.model_validate_json(payload)

    async def _write(self, session: CallSession) -> None:
        await self.client.set(
            self._key(session.call_id), session.model_dump_json(), ex=self.ttl_seconds
        )

    async def delete(self, call_id: str) -> None:
        await self.client.delete(self._key(call_id))

    async def renew_ttl(self, call_id: str) -> bool:
        return bool(await self.client.expire(self._key(call_id), self.ttl_seconds))

    async def list_active(self) -> List[str]:
        keys = []
        async for key in self.client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            keys.append(key[len(self.KEY_PREFIX):])
        return keys

    async def close(self) -> None:
        await self.client.aclose()


def create_session_store(redis_url: Optional[str], ttl_seconds: int) -> SessionStore:
    """Redis when configured, otherwise the in-process store."""
    if redis_url:
        logger.info("[SESSION STORE] Using Redis session store")
        return RedisSessionStore.from_url(redis_url, ttl_seconds)
    logger.info("[SESSION STORE] REDIS_URL not set, using in-memory session store")
    return InMemorySessionStore(ttl_seconds)
