"""WebSocket server that accepts agents and dispatches their requests."""

from __future__ import annotations

import asyncio
import threading
from typing import Any
from urllib.parse import urlsplit

import websockets

from . import logger
from .client import Client, Handler, _connection_options
from .protocol import TimeoutConfig


def _split_address(addr: str) -> tuple[str | None, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr!r} has no port")
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {addr!r}") from None
    host = host.strip("[]")
    return (host or None), number


def _path_matches(pattern: str, path: str) -> bool:
    if pattern.endswith("/"):
        return path.startswith(pattern)
    return path == pattern


class OperationServer:
    """Accepts agent connections under a path and answers their requests."""

    def __init__(self, addr: str, path: str) -> None:
        self.addr = addr
        self.path = path
        self.timeout = TimeoutConfig()
        self.max_pending_call = 32
        self.bound_port: int | None = None
        self.ready = asyncio.Event()
        self._clients: dict[str, Client] = {}
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()

    def register_handler(self, action: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[action] = handler

    def get_handler(self, action: str) -> Handler | None:
        with self._lock:
            return self._handlers.get(action)

    def add(self, client: Client) -> None:
        with self._lock:
            self._clients[client.id] = client

    def remove(self, client: Client) -> None:
        with self._lock:
            self._clients.pop(client.id, None)

    def get_client(self, client_id: str) -> Client | None:
        with self._lock:
            return self._clients.get(client_id)

    async def start(self) -> None:
        """Listen on the configured address until cancelled."""
        host, port = _split_address(self.addr)
        async with websockets.serve(
            self._accept, host, port, **_connection_options(self.timeout)
        ) as ws_server:
            sockets = list(ws_server.sockets)
            if sockets:
                self.bound_port = sockets[0].getsockname()[1]
            self.ready.set()
            try:
                await asyncio.Future()
            finally:
                self.ready.clear()

    async def _accept(self, connection: Any) -> None:
        request = getattr(connection, "request", None)
        raw_path = request.path if request is not None else getattr(connection, "path", "")
        path = urlsplit(raw_path).path

        if not _path_matches(self.path, path):
            await connection.close(code=1008, reason="not found")
            return

        client_id = path.split("/")[-1]
        client = Client._accepted(client_id, connection, self.max_pending_call, self.timeout)
        self.add(client)
        try:
            await client._read_loop(self)
        finally:
            self.remove(client)