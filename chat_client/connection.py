import json
from typing import Any, AsyncIterator, Optional, Tuple

import websockets

from constants import SERVER_URL
from logging_config import get_logger

logger = get_logger(__name__)


class SignalingConnection:
    """Explicitly owned WebSocket connection to the relay.

    Frames are JSON objects of the form {"event": name, "data": payload}.
    """

    def __init__(self, url: str = SERVER_URL):
        self.url = url
        self._ws = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self):
        logger.info(f"Connecting to {self.url}")
        self._ws = await websockets.connect(self.url)
        logger.info(f"Connected to {self.url}")

    async def close(self):
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            logger.info(f"Closed connection to {self.url}")

    async def emit(self, event: str, data: Any = None):
        if self._ws is None:
            raise ConnectionError("Signaling connection is not open")
        await self._ws.send(json.dumps({"event": event, "data": data}))
        logger.debug(f"Emitted {event}")

    async def envelopes(self) -> AsyncIterator[Tuple[str, Any]]:
        """Yield (event, data) pairs until the server closes the connection."""
        if self._ws is None:
            raise ConnectionError("Signaling connection is not open")
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.error(f"Ignoring undecodable frame from server: {e}")
                    continue
                yield frame.get("event"), frame.get("data")
        except websockets.ConnectionClosed as e:
            logger.info(f"Connection closed by server: {e}")

    async def __aenter__(self) -> "SignalingConnection":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        await self.close()
        return None
