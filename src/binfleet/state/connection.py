"""Push-channel connection lifecycle."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import StrEnum

_logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


ConnectionObserver = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """Tracks the push subscription: connecting -> connected -> disconnected.

    Only the push channel drives transitions. Observers (status panels,
    health checks) read it; reconciliation never depends on it because the
    poll channel keeps running in every state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._observers: list[ConnectionObserver] = []

    def current(self) -> ConnectionState:
        return self._state

    def add_observer(self, observer: ConnectionObserver) -> Callable[[], None]:
        """Register ``observer(previous, current)``; returns a remover."""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def subscribe_started(self) -> None:
        self._transition(ConnectionState.CONNECTING, allowed_from=None)

    def acknowledged(self) -> None:
        """Server confirmed the subscription."""
        self._transition(ConnectionState.CONNECTED, allowed_from=ConnectionState.CONNECTING)

    def failed(self, reason: str = "") -> None:
        if reason:
            _logger.debug("Push subscription failed: %s", reason)
        self._transition(ConnectionState.DISCONNECTED, allowed_from=None)

    def closed(self) -> None:
        self._transition(ConnectionState.DISCONNECTED, allowed_from=None)

    def _transition(self, target: ConnectionState, *, allowed_from: ConnectionState | None) -> None:
        with self._lock:
            previous = self._state
            if previous == target:
                return
            if allowed_from is not None and previous != allowed_from:
                _logger.debug("Ignoring transition %s -> %s", previous, target)
                return
            self._state = target

        _logger.debug("Push connection %s -> %s", previous, target)
        for observer in list(self._observers):
            try:
                observer(previous, target)
            except Exception:
                _logger.warning("Connection observer failed", exc_info=True)
