import json
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)

ROOM_UPDATED = 'ROOM_UPDATED'
PONG = 'PONG'


class ConnectionManager:
    def __init__(self):
        self.active: dict[str, list[WebSocket]] = defaultdict(list)

    async def connect(self, room_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active[room_id].append(websocket)
        logger.debug('Socket joined room %s (%d open)', room_id, len(self.active[room_id]))

    def disconnect(self, room_id: str, websocket: WebSocket):
        sockets = self.active.get(room_id)
        if sockets and websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self.active.pop(room_id, None)

    def count(self, room_id: str) -> int:
        return len(self.active.get(room_id, ()))

    async def room_updated(self, room_id: str):
        # no payload, clients re-fetch the snapshot
        await self.broadcast(room_id, {'type': ROOM_UPDATED})

    async def broadcast(self, room_id: str, payload: dict):
        message = json.dumps(payload)
        stale = []
        for ws in list(self.active.get(room_id, ())):
            try:
                await ws.send_text(message)
            except Exception:
                stale.append(ws)
        for ws in stale:
            logger.info('Dropping stale socket in room %s', room_id)
            self.disconnect(room_id, ws)


manager = ConnectionManager()
