"""
Ephemeral per-socket connection state.

A connection exists only while its WebSocket is open. Outbound frames go
through a per-connection queue drained by one writer task, so frames reach
the client in exactly the order they were sent, even when they are produced
by synchronous change callbacks.
"""

import asyncio
import orjson
from aiohttp import web, ClientError, WSCloseCode
from typing import Any, Awaitable, Dict, Optional, Set

from gridwall.logging import getLogger
from gridwall.server.auth import Identity

CLOSE_UNAUTHORIZED = 4401


class ClientConnection:
    """
    One live control-panel socket.

    identity is fixed at accept time. lastState is the last role-scoped
    snapshot this client has been brought up to (None until attached).
    """

    def __init__(self, connId: str, ws: web.WebSocketResponse, identity: Identity):
        self.connId = connId
        self.ws = ws
        self.identity = identity
        self.lastState: Optional[Dict[str, Any]] = None
        self.log = getLogger()

        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closing = False

    @property
    def role(self) -> str:
        return self.identity.role

    @property
    def isOpen(self) -> bool:
        return not self._closing and not self.ws.closed

    def start(self):
        """Start the writer task; call from inside the socket handler"""
        if self._writer is None:
            self._writer = asyncio.create_task(self._writeLoop())

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run a request alongside the read loop; cancelled when the connection stops"""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._taskDone)
        return task

    def _taskDone(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.log.error(f"[Conn {self.connId}] Request task failed: {error}", exc_info=error)

    # ------------------------------------------------------------------
    # Sending (non-blocking, no-op once closed)
    # ------------------------------------------------------------------

    def sendMessage(self, message: Dict[str, Any]) -> bool:
        """Queue a JSON message. Returns False if the socket is no longer open."""
        if not self.isOpen:
            return False
        self._outbox.put_nowait(orjson.dumps(message).decode('utf-8'))
        return True

    def sendBytes(self, data: bytes) -> bool:
        """Queue a binary frame. Returns False if the socket is no longer open."""
        if not self.isOpen:
            return False
        self._outbox.put_nowait(bytes(data))
        return True

    def respond(self, requestId: Any, data: Dict[str, Any]) -> bool:
        """Reply to a request; the reply echoes its id"""
        return self.sendMessage({**data, 'response': True, 'id': requestId})

    def sendError(self, requestId: Any, error: str, **details) -> bool:
        return self.respond(requestId, {'error': error, **details})

    async def _writeLoop(self):
        while True:
            frame = await self._outbox.get()
            if self.ws.closed:
                break
            try:
                if isinstance(frame, bytes):
                    await self.ws.send_bytes(frame)
                else:
                    await self.ws.send_str(frame)
            except (ConnectionResetError, ClientError) as e:
                self.log.warning(f"[Conn {self.connId}] Send failed, closing: {e}")
                self._closing = True
                break

    # ------------------------------------------------------------------

    async def close(self, code: int = WSCloseCode.OK, message: str = ''):
        """Close the socket; pending and future sends are dropped"""
        if self._closing and self.ws.closed:
            return
        self._closing = True
        self.log.info(f"[Conn {self.connId}] Closing: code={code} {message}".rstrip())
        await self.ws.close(code=code, message=message.encode('utf-8'))
        await self.stop()

    async def stop(self):
        """Stop in-flight requests and the writer task (socket already closed or closing)"""
        self._closing = True
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._writer is None:
            return
        if not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        self._writer = None
