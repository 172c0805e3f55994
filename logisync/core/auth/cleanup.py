"""
Token Cleanup Job
=================

Periodic sweep removing used or expired reset tokens, verification
tokens and login sessions, so the stores stay bounded independent of
request traffic.

The timer is injectable: production uses threading.Timer, tests pass a
factory that records the callback and fire it by hand.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

from logisync.core.auth.guard import CredentialGuard
from logisync.core.auth.session_control import SessionManager


logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class TokenCleanupJob:
    """
    Re-arming timer over the guard's token sweeps and session cleanup.

    Usage:
        job = TokenCleanupJob(guard, sessions, interval_seconds=3600)
        job.start()
        ...
        job.stop()

    A failed sweep is logged and the job keeps its schedule.
    """

    __slots__ = (
        "_guard", "_sessions", "_interval", "_timer_factory",
        "_timer", "_running", "_lock",
    )

    def __init__(
        self,
        guard: CredentialGuard,
        sessions: Optional[SessionManager] = None,
        interval_seconds: float = 3600,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._guard = guard
        self._sessions = sessions
        self._interval = interval_seconds
        self._timer_factory = timer_factory
        self._timer: Optional[TimerHandle] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        """Start the periodic sweep. Starting twice is a no-op."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()
        logger.info("Token cleanup scheduled every %s seconds", self._interval)

    def stop(self) -> None:
        """Cancel the pending sweep."""
        with self._lock:
            self._running = False
            if self._timer:
                self._timer.cancel()
                self._timer = None

    def run_once(self) -> int:
        """Run one sweep now and return the number of records removed."""
        removed = self._guard.cleanup_expired_reset_tokens()
        removed += self._guard.cleanup_expired_verification_tokens()
        if self._sessions is not None:
            sessions_removed = self._sessions.cleanup_expired_sessions()
            logger.info("Cleaned up %d expired sessions", sessions_removed)
            removed += sessions_removed
        return removed

    def _schedule(self) -> None:
        self._timer = self._timer_factory(self._interval, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        if not self._running:
            return
        try:
            self.run_once()
        except Exception:
            logger.exception("Token cleanup failed")
        finally:
            with self._lock:
                if self._running:
                    self._schedule()
