from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from fastapi import WebSocket

from app.services.notification_service import LocalNotification

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class ConnectionManager:
    """Open websockets grouped by viewer id."""

    def __init__(self) -> None:
        self.active_connections: dict[str, list[WebSocket]] = {}

    async def connect(self, viewer_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(viewer_id, []).append(websocket)
        logger.info('[WS] %s connected (%d sockets)', viewer_id, len(self.active_connections[viewer_id]))

    def disconnect(self, viewer_id: str, websocket: WebSocket) -> None:
        sockets = self.active_connections.get(viewer_id, [])
        try:
            sockets.remove(websocket)
        except ValueError:
            pass
        if not sockets:
            self.active_connections.pop(viewer_id, None)
        logger.info('[WS] %s disconnected (%d sockets)', viewer_id, len(sockets))

    def connection_count(self, viewer_id: str) -> int:
        return len(self.active_connections.get(viewer_id, []))

    async def send_to_viewer(self, viewer_id: str, message: dict[str, Any]) -> int:
        payload = _jsonable(message)
        dead = []
        sent = 0
        for websocket in list(self.active_connections.get(viewer_id, [])):
            try:
                await websocket.send_json(payload)
                sent += 1
            except Exception:
                logger.warning('[WS] Dropping dead socket for %s', viewer_id, exc_info=True)
                dead.append(websocket)

        for websocket in dead:
            self.disconnect(viewer_id, websocket)
        return sent


class WebSocketNotificationSink:
    def __init__(self, connections: ConnectionManager) -> None:
        self.connections = connections

    async def deliver(self, viewer_id: str, notification: LocalNotification) -> None:
        sent = await self.connections.send_to_viewer(
            viewer_id,
            {'type': 'notification', 'notification': notification.to_dict()},
        )
        if not sent:
            logger.info('No open sockets for %s; notification %r recorded only', viewer_id, notification.title)


manager = ConnectionManager()
