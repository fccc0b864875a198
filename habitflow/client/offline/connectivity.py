import logging
from typing import Callable, List

from ..errors import HabitFlowClientError, NetworkError

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Online/offline flag with listeners notified on every transition."""

    def __init__(self, api=None, online: bool = True):
        self.api = api
        self._online = online
        self._listeners: List[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, callback: Callable[[bool], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[bool], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def set_online(self, online: bool):
        if online == self._online:
            return
        self._online = online
        if online:
            logger.info("Connection restored")
        else:
            logger.info("Connection lost, working offline")
        for listener in list(self._listeners):
            listener(online)

    async def probe(self) -> bool:
        """Check the API's health endpoint and update the flag."""
        try:
            await self.api.health()
            online = True
        except NetworkError:
            online = False
        except HabitFlowClientError:
            # reachable, even if it answered with an error
            online = True
        self.set_online(online)
        return online
