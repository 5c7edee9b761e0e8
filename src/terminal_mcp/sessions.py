"""
Session pool for reusable SSH connections and the local shell session.

Each session key maps to at most one TransportHandle. Handles are evicted
after ``session_timeout`` seconds without use; eviction only bounds
resource retention, so a caller that finds no entry simply reconnects.
"""

import asyncio
import time
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, MutableMapping, Optional, Set

import asyncssh

from .config import TerminalConfig, config as default_config, logger
from .errors import ExecError


class SessionState(Enum):
    """Transport lifecycle, driven by connection callbacks."""
    PENDING = "pending"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class TransportHandle:
    """One pooled session: an SSH connection, or the local marker (transport None)."""
    key: str
    transport: Optional[asyncssh.SSHClientConnection] = None
    host: Optional[str] = None
    address: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    state: SessionState = SessionState.PENDING
    idle_timer: Optional[asyncio.TimerHandle] = None
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)

    @property
    def is_local(self) -> bool:
        return self.host is None

    def mark_connected(self) -> None:
        self.state = SessionState.CONNECTED

    def mark_closed(self) -> None:
        self.state = SessionState.CLOSED

    async def close(self) -> None:
        """Close the transport if there is one. Safe to call twice."""
        self.mark_closed()
        transport, self.transport = self.transport, None
        if transport is None:
            return
        transport.close()
        try:
            await transport.wait_closed()
        except (asyncssh.Error, OSError) as e:
            logger.debug(f"Error while closing session {self.key}: {e}")


class SessionPool:
    """Keyed table of TransportHandles with idle timers and per-key locks."""

    def __init__(self, config: Optional[TerminalConfig] = None):
        self.config = config or default_config
        self._sessions: Dict[str, TransportHandle] = {}
        # A key's lock lives only while a caller holds or waits on it.
        self._locks: MutableMapping[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._closed = False
        self._eviction_tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    @property
    def closed(self) -> bool:
        return self._closed

    def keys(self) -> List[str]:
        return list(self._sessions.keys())

    def lock(self, key: str) -> asyncio.Lock:
        """Lock guarding the lookup-or-connect decision for one key."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Optional[TransportHandle]:
        return self._sessions.get(key)

    def put(self, key: str, handle: TransportHandle) -> None:
        """Store a handle. The caller tears down any previous entry first.

        Raises ExecError once the pool is shut down; the caller still owns
        the handle and must close it.
        """
        if self._closed:
            raise ExecError(f"Session pool is shut down, not storing {key}")
        previous = self._sessions.get(key)
        if previous is not None and previous is not handle:
            self._cancel_timer(previous)
        self._sessions[key] = handle

    def remove(self, key: str, handle: Optional[TransportHandle] = None) -> Optional[TransportHandle]:
        """Clear the idle timer and drop the entry without closing its transport.

        With ``handle`` given, the entry is only dropped if it is still that
        handle, so a late callback from a replaced session is a no-op.
        """
        current = self._sessions.get(key)
        if current is None or (handle is not None and current is not handle):
            return None
        self._cancel_timer(current)
        del self._sessions[key]
        return current

    def reset_idle_timer(self, key: str) -> None:
        """(Re)start the idle timer for a stored session."""
        handle = self._sessions.get(key)
        if handle is None:
            return

        self._cancel_timer(handle)
        handle.last_used = time.time()
        loop = asyncio.get_running_loop()
        handle.idle_timer = loop.call_later(
            self.config.session_timeout, self._on_idle, key, handle
        )

    def _cancel_timer(self, handle: TransportHandle) -> None:
        if handle.idle_timer is not None:
            handle.idle_timer.cancel()
            handle.idle_timer = None

    def _on_idle(self, key: str, handle: TransportHandle) -> None:
        if self._sessions.get(key) is not handle:
            return
        logger.info(f"Session {key} timeout, disconnecting")
        task = asyncio.ensure_future(self._evict(key, handle))
        self._eviction_tasks.add(task)
        task.add_done_callback(self._eviction_tasks.discard)

    async def _evict(self, key: str, handle: TransportHandle) -> None:
        if self.remove(key, handle) is not None:
            await handle.close()

    async def close_session(self, key: str) -> None:
        """Remove a session and close its transport (timer cleared first)."""
        handle = self.remove(key)
        if handle is None:
            return
        if handle.transport is not None:
            logger.info(f"Disconnecting SSH connection for session {key}")
        await handle.close()
        logger.info(f"Disconnected session: {key}")

    async def shutdown(self) -> None:
        """Close every session and refuse new ones from now on.

        A connect still in flight when this runs finds the pool closed and
        tears its own transport down instead of storing it.
        """
        self._closed = True
        keys = self.keys()
        if keys:
            logger.info(f"Closing {len(keys)} session(s)")
        await asyncio.gather(*(self.close_session(key) for key in keys))
        self._sessions.clear()

    def snapshot(self) -> List[Dict[str, Any]]:
        """Status summary of every stored session."""
        now = time.time()
        sessions = []
        for key, handle in self._sessions.items():
            idle = now - handle.last_used
            entry: Dict[str, Any] = {
                "key": key,
                "host": handle.host or "local",
                "state": handle.state.value,
                "idle_seconds": round(idle, 1),
                "expires_in": round(max(self.config.session_timeout - idle, 0.0), 1),
            }
            if handle.address:
                entry["address"] = handle.address
            if handle.is_local:
                entry["env"] = sorted(handle.env)
            sessions.append(entry)
        return sessions


__all__ = ["SessionState", "TransportHandle", "SessionPool"]
