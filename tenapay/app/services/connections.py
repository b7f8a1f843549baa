"""Directory of live notification sockets, keyed by account id."""

import json
import logging
from collections import defaultdict
from typing import Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionDirectory:
    """
    Process-wide registry of open WebSocket connections per user.

    Owned by the notification dispatcher; ledger code never touches it.
    Delivery is at-most-once: a failed send drops the socket.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.register(user_id, websocket)

    def register(self, user_id: str, websocket: WebSocket) -> None:
        self._connections[user_id].add(websocket)
        logger.info("User %s connected (%d live sockets)", user_id, len(self._connections[user_id]))

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        sockets = self._connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            self._connections.pop(user_id, None)
        logger.info("User %s socket disconnected", user_id)

    async def send_to_user(self, user_id: str, message: dict) -> int:
        """Send to every live socket of a user; returns how many sends succeeded."""
        sockets = list(self._connections.get(user_id, ()))
        if not sockets:
            logger.debug("User %s has no live sockets", user_id)
            return 0

        payload = json.dumps(message, default=str)
        delivered = 0
        for websocket in sockets:
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Push to user %s failed: %s", user_id, exc)
                self.disconnect(user_id, websocket)
        return delivered

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def get_online_count(self) -> int:
        return len(self._connections)


connection_directory = ConnectionDirectory()
