"""Bounded operating window: the service tears its transport down after seven days."""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

SESSION_MAX_DURATION = 7 * 24 * 60 * 60


class SessionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> Any:
    return asyncio.get_running_loop().call_later(delay, callback)


class SessionManager:
    """
    Pending -> Active -> Expired.

    ``start`` is called on the transport-ready signal and arms exactly one
    deferred expiry. ``scheduler(delay, callback)`` must return a handle with
    ``cancel()``; it defaults to the running loop's ``call_later``. Tests pass a
    virtual scheduler and clock instead of waiting in real time.
    """

    def __init__(
        self,
        teardown: Callable[[], None],
        *,
        max_duration: float = SESSION_MAX_DURATION,
        clock: Callable[[], float] = time.time,
        scheduler: Callable[[float, Callable[[], None]], Any] = _loop_scheduler,
    ) -> None:
        self._teardown = teardown
        self.max_duration = max_duration
        self._clock = clock
        self._scheduler = scheduler
        self.state = SessionState.PENDING
        self.started_at: Optional[float] = None
        self._handle: Any = None

    @property
    def expires_at(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return self.started_at + self.max_duration

    def start(self) -> bool:
        if self.state is not SessionState.PENDING:
            log.debug("session already %s; ignoring ready signal", self.state.value)
            return False
        self.started_at = self._clock()
        self.state = SessionState.ACTIVE
        self._handle = self._scheduler(self.max_duration, self._expire)
        log.info("session active for %.0f hours", self.max_duration / 3600)
        return True

    def remaining(self) -> Optional[float]:
        if self.state is not SessionState.ACTIVE:
            return None
        return max(0.0, self.expires_at - self._clock())

    def _expire(self) -> None:
        if self.state is not SessionState.ACTIVE:
            return
        self.state = SessionState.EXPIRED
        self._handle = None
        log.info("session expired after %.0f days", self.max_duration / 86400)
        try:
            self._teardown()
        except Exception as exc:
            log.warning("transport teardown failed: %s", exc)

    def cancel(self) -> None:
        """Drop the pending expiry when the process is shutting down for another reason."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
