"""In-memory store for pending fix sessions."""

from __future__ import annotations

import asyncio
import secrets
import threading
import time
from typing import Callable, Dict, Tuple

from fixbot.errors import FixbotError, NotFoundError
from fixbot.logger import get_logger, log_with_context

from .models import Session

logger = get_logger()

SESSION_TTL_SECONDS = 2 * 60
SWEEP_INTERVAL_SECONDS = 2.0
MAX_KEY_ATTEMPTS = 8

KeyFactory = Callable[[], str]


class SessionNotFoundError(NotFoundError):
    """Raised when a session key is unknown, consumed or expired."""


class SessionKeyCollisionError(FixbotError):
    """Raised when no unused session key could be drawn."""


def _random_key() -> str:
    return f"{secrets.randbits(64):016x}"


class SessionStore:
    """Holds sessions by opaque key, evicting them after a fixed TTL.

    The periodic sweep runs as an asyncio task owned by whoever calls
    :meth:`start`; :meth:`stop` cancels it.
    """

    def __init__(
        self,
        *,
        ttl: float = SESSION_TTL_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        key_factory: KeyFactory = _random_key,
        max_key_attempts: int = MAX_KEY_ATTEMPTS,
    ) -> None:
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._key_factory = key_factory
        self._max_key_attempts = max_key_attempts
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[Session, float]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at > self._ttl

    def put(self, session: Session) -> str:
        """Store ``session`` under a fresh key and return the key."""

        with self._lock:
            now = self._clock()
            for _ in range(self._max_key_attempts):
                key = self._key_factory()
                existing = self._sessions.get(key)
                if existing is not None and not self._expired(existing[1], now):
                    continue
                self._sessions[key] = (session, now)
                break
            else:
                raise SessionKeyCollisionError(
                    f"no unused session key after {self._max_key_attempts} attempts"
                )

        log_with_context(logger, session=key, repository=session.full_name).debug(
            f"Stored session with {len(session.findings)} finding(s)"
        )
        return key

    def get(self, key: str) -> Session:
        with self._lock:
            entry = self._sessions.get(key)
            if entry is not None and self._expired(entry[1], self._clock()):
                del self._sessions[key]
                entry = None
        if entry is None:
            raise SessionNotFoundError(f"no such key: {key!r}")
        return entry[0]

    def remove(self, key: str) -> None:
        with self._lock:
            self._sessions.pop(key, None)

    def sweep(self) -> int:
        """Evict expired sessions and return how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [key for key, (_, stored_at) in self._sessions.items() if self._expired(stored_at, now)]
            for key in expired:
                del self._sessions[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired session(s)")
        return len(expired)

    def pending(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""

        if self._sweeper is None or self._sweeper.done():
            loop = asyncio.get_running_loop()
            self._sweeper = loop.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:  # pragma: no cover - expected during shutdown
            pass
        finally:
            self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()
