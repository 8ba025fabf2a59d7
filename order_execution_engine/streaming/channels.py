"""Subscriber channel adapters used by the status broadcaster."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Protocol

from fastapi.websockets import WebSocket, WebSocketState

Message = Dict[str, Any]


class Channel(Protocol):
    """Minimal transport surface the broadcaster relies on."""

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, message: Message) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class WebSocketChannel:
    """Wraps a FastAPI websocket.

    Starlette does not surface protocol level pings, so liveness uses an
    application ping frame and any inbound client frame counts as the ack.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, message: Message) -> None:
        await self._websocket.send_json(message)

    async def ping(self) -> None:
        await self._websocket.send_json({'type': 'ping', 'timestamp': datetime.now(timezone.utc).isoformat()})

    async def close(self) -> None:
        if self._websocket.application_state == WebSocketState.CONNECTED:
            await self._websocket.close()


class QueueChannel:
    """In-memory channel; every delivered message is kept on ``messages``."""

    def __init__(self) -> None:
        self.messages: List[Message] = []
        self.pings = 0
        self._queue: asyncio.Queue[Message | None] = asyncio.Queue()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def send_json(self, message: Message) -> None:
        if not self._open:
            raise ConnectionError('Channel is closed')
        self.messages.append(message)
        self._queue.put_nowait(message)

    async def ping(self) -> None:
        if not self._open:
            raise ConnectionError('Channel is closed')
        self.pings += 1

    async def close(self) -> None:
        if self._open:
            self._open = False
            self._queue.put_nowait(None)

    async def updates(self) -> AsyncIterator[Message]:
        """Yield messages until the channel is closed."""
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    @property
    def statuses(self) -> List[str]:
        return [message['status'] for message in self.messages]


__all__ = ['Channel', 'Message', 'QueueChannel', 'WebSocketChannel']
