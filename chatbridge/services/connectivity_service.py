import logging
from typing import Callable


logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the host believes the network is reachable.

    Only the host application reports changes. A refused connection to the
    backend says nothing about the device and never flips this flag.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def mark_online(self) -> None:
        self._set(True)

    def mark_offline(self) -> None:
        self._set(False)

    def add_listener(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set(self, online: bool) -> None:
        if online == self._online:
            return

        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)
