from __future__ import annotations

import threading
from typing import Any, Set

from loguru import logger

from planetradio.relay.server import RelayState


class RelayLifecycle:
    """State, liveness flag and open upstream responses of one relay.

    Once ``stop`` has run every tracked response is closed and ``alive`` stays
    false, so I/O completing afterwards is ignored by the relay loops.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._open: Set[Any] = set()
        self.state = RelayState.IDLE

    @property
    def alive(self) -> bool:
        return not self._stopped.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if the relay is still alive."""
        return not self._stopped.wait(max(0.0, seconds))

    def transition(self, state: RelayState) -> bool:
        with self._lock:
            if self.state is RelayState.STOPPED:
                return False
            if self.state is not state:
                logger.debug(f"Relay {self.state.value} -> {state.value}")
            self.state = state
            return True

    def track(self, resp: Any) -> bool:
        """Register an open upstream response; closes it at once if stopped."""
        with self._lock:
            if not self._stopped.is_set():
                self._open.add(resp)
                return True
        _close_quietly(resp)
        return False

    def release(self, resp: Any) -> None:
        with self._lock:
            self._open.discard(resp)
        _close_quietly(resp)

    def stop(self) -> bool:
        """Mark stopped and close tracked responses; False if already stopped."""
        with self._lock:
            if self._stopped.is_set():
                return False
            self._stopped.set()
            self.state = RelayState.STOPPED
            pending = list(self._open)
            self._open.clear()
        for resp in pending:
            _close_quietly(resp)
        return True


def _close_quietly(resp: Any) -> None:
    try:
        resp.close()
    except Exception as exc:
        logger.debug(f"Ignoring error while closing upstream response: {exc}")
