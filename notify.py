# notify.py
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Stages pushed to /ws listeners as a transaction moves along
TX_STARTED = "TX_STARTED"
MESSAGE_BUILT = "MESSAGE_BUILT"
NETWORK_SENT = "NETWORK_SENT"
NETWORK_FAIL = "NETWORK_FAIL"
TX_COMPLETED = "TX_COMPLETED"
TERMINAL_STEP = "TERMINAL_STEP"


class ConnectionManager:
    """Live event listeners. A listener with a ref only hears events for that ref."""

    def __init__(self) -> None:
        self.listeners: Dict[WebSocket, Optional[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, ref: Optional[str] = None):
        await websocket.accept()
        async with self._lock:
            self.listeners[websocket] = ref
        logger.debug("WebSocket listener connected for %s (%d active)", ref or "all events", len(self.listeners))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self.listeners.pop(websocket, None)

    def _targets(self, ref: Optional[str]):
        return [ws for ws, wanted in list(self.listeners.items()) if wanted is None or wanted == ref]

    async def broadcast(self, event: Dict[str, Any]):
        text = json.dumps(event, default=str)
        closed = []
        for ws in self._targets(event.get("ref")):
            try:
                await ws.send_text(text)
            except Exception as e:
                # a closed socket only loses its own updates
                logger.debug("Dropping WebSocket listener: %s", e)
                closed.append(ws)
        for ws in closed:
            await self.disconnect(ws)


manager = ConnectionManager()


async def emit(stage: str, ref: str, payload: Dict[str, Any] | None = None):
    """ref is a transaction record id, a terminal session id, or "form"."""
    event = {"type": "tx_event", "stage": stage, "ref": ref, **(payload or {})}
    await manager.broadcast(event)
