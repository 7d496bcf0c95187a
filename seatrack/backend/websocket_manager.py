"""SeaTrack - WebSocket Connection Manager for UI clients."""

import logging

from fastapi import WebSocket

from seatrack.backend.models import WebSocketMessage

logger = logging.getLogger("seatrack.ws")


class ConnectionManager:
    """Tracks connected displays and pushes safety messages to them."""

    def __init__(self):
        self._connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._connections.append(websocket)
        logger.info("UI client connected (%d total)", len(self._connections))

    def disconnect(self, websocket: WebSocket):
        if websocket in self._connections:
            self._connections.remove(websocket)
            logger.info("UI client disconnected (%d remaining)", len(self._connections))

    async def broadcast(self, action: str, data) -> int:
        """Send one envelope to every client; returns how many received it."""
        if not self._connections:
            return 0

        payload = WebSocketMessage(action=action, data=data).model_dump_json()
        delivered = 0
        for ws in list(self._connections):
            try:
                await ws.send_text(payload)
                delivered += 1
            except Exception as e:
                logger.debug("Dropping UI client after send failure: %s", e)
                self.disconnect(ws)
        return delivered

    async def send_to(self, websocket: WebSocket, action: str, data):
        try:
            await websocket.send_text(WebSocketMessage(action=action, data=data).model_dump_json())
        except Exception as e:
            logger.debug("Send to UI client failed: %s", e)
            self.disconnect(websocket)

    @property
    def connection_count(self) -> int:
        return len(self._connections)
