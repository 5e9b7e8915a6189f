"""
WebSocket Feed
===============
Operators watching the live state (dials + requests per second) connect here.
"""

import logging
from typing import Any, Dict, List

from fastapi import WebSocket

logger = logging.getLogger("mockrig")


class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    def __len__(self) -> int:
        return len(self.active_connections)

    async def connect(self, websocket: WebSocket, initial: Dict[str, Any]):
        await websocket.accept()
        self.active_connections.append(websocket)
        await websocket.send_json(initial)
        logger.debug(f"📡 Dashboard client connected ({len(self)} watching)")

    def disconnect(self, websocket: WebSocket):
        try:
            self.active_connections.remove(websocket)
        except ValueError:
            pass  # already pruned by broadcast

    async def broadcast(self, message: Dict[str, Any]):
        stale = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception:
                stale.append(connection)
        for connection in stale:
            self.disconnect(connection)
