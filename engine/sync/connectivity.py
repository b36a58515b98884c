"""
Connectivity monitor.

Holds the online/offline state the rest of the sync engine reacts to.
Whoever owns the network (the application, a health probe, tests) calls
set_state(); listeners are called synchronously on every transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


Listener = Callable[[ConnectionState], None]


class ConnectivityMonitor:
    def __init__(self, initial: ConnectionState = ConnectionState.OFFLINE) -> None:
        self._state = initial
        self._listeners: list[Listener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ConnectionState.ONLINE

    def set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Connectivity changed: %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connectivity listener failed")

    def set_online(self) -> None:
        self.set_state(ConnectionState.ONLINE)

    def set_offline(self) -> None:
        self.set_state(ConnectionState.OFFLINE)

    def subscribe(self, listener: Listener, fire_immediately: bool = False) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)
        if fire_immediately:
            listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
