"""Connection endpoint used by agents and by the server for each connected agent."""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import uuid
from datetime import datetime
from typing import Any, Callable, Protocol

import psutil
import websockets
from websockets.exceptions import ConnectionClosed

from . import logger
from .protocol import (
    MIN_COLLECT_DURATION,
    MIN_HEART_BEAT_DURATION,
    HeartBeatReq,
    HeartBeatResp,
    Message,
    MessageType,
    ProtocolError,
    StatusReq,
    TimeoutConfig,
    to_message,
)

Handler = Callable[["Client", Message], Any]
"""Answers a request; returns the response data, or None to drop the connection."""

_MB = 1024 * 1024
_GB = 1024 * 1024 * 1024


class ComsError(Exception):
    """Raised when a call cannot be carried out over the connection."""


class TooManyPendingCalls(ComsError):
    """Raised when the limit of unanswered calls has been reached."""


class _HandlerSource(Protocol):
    def get_handler(self, action: str) -> Handler | None: ...


def _jsonable(data: Any) -> Any:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        to_dict = getattr(data, "to_dict", None)
        return to_dict() if callable(to_dict) else dataclasses.asdict(data)
    return data


def _connection_options(tc: TimeoutConfig) -> dict[str, float]:
    options: dict[str, float] = {}
    if tc.ping_period > 0:
        options["ping_interval"] = tc.ping_period
    if tc.ping_wait > 0:
        options["ping_timeout"] = tc.ping_wait
    if tc.write_wait > 0:
        options["close_timeout"] = tc.write_wait
    return options


def collect() -> StatusReq:
    """Sample CPU, memory and root-disk usage of this host."""
    cpu_usage = psutil.cpu_percent(interval=None, percpu=False)
    cpu_cores = psutil.cpu_count(logical=True) or 0
    vm = psutil.virtual_memory()
    du = psutil.disk_usage("/")
    return StatusReq(
        cpu_usage=float(cpu_usage),
        cpu_cores=cpu_cores,
        mem_total=vm.total / _MB,
        mem_usage=vm.used / _MB,
        mem_percent=float(vm.percent),
        disk_total=du.total / _GB,
        disk_usage=du.used / _GB,
        disk_percent=float(du.percent),
        server_time=datetime.now().astimezone().isoformat(timespec="seconds"),
    )


class Client:
    """One end of a connection that both answers requests and makes calls."""

    def __init__(self, client_id: str, max_pending_calls: int) -> None:
        self.id = client_id
        self.max_pending_calls = max_pending_calls
        self.timeout = TimeoutConfig()
        self.collect_period = 0.0
        self.heart_beat_period = 0.0
        self.handlers: dict[str, Handler] = {}
        self.connected = False
        self._conn: Any = None
        self._pending: dict[str, asyncio.Future[Message]] = {}
        self._send_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []
        self._closing = False

    @classmethod
    def _accepted(
        cls, client_id: str, conn: Any, max_pending_calls: int, timeout: TimeoutConfig
    ) -> Client:
        logger.info("add client")
        client = cls(client_id, max_pending_calls)
        client.timeout = timeout
        client._conn = conn
        client.connected = True
        return client

    def set_timeout(self, tc: TimeoutConfig) -> None:
        self.timeout = tc

    def set_period(self, collect: float, heart_beat: float) -> None:
        """Set the status collection and heartbeat periods, in seconds."""
        self.collect_period = collect
        self.heart_beat_period = heart_beat

    def get_handler(self, action: str) -> Handler | None:
        return self.handlers.get(action)

    async def start(self, addr: str) -> None:
        """Connect to ``addr`` followed by this client's id and start the loops."""
        if self.collect_period <= MIN_COLLECT_DURATION:
            raise ValueError("collect period too small")
        if self.heart_beat_period <= MIN_HEART_BEAT_DURATION:
            raise ValueError("heart beat period too small")

        self._conn = await websockets.connect(addr + self.id, **_connection_options(self.timeout))
        self.connected = True
        self._closing = False
        self._tasks = [
            asyncio.create_task(self._read_loop(self)),
            asyncio.create_task(self._collect_status()),
            asyncio.create_task(self._heart_beat()),
        ]

    async def call(self, action: str, data: Any) -> Message:
        """Send a request and wait for the response to it."""
        if len(self._pending) >= self.max_pending_calls:
            raise TooManyPendingCalls("max pending calls exceeded")
        if not self.connected:
            raise ComsError("not connected")

        request = Message(
            id=str(uuid.uuid4()), type=MessageType.REQ, action=action, data=_jsonable(data)
        )
        payload = request.to_bytes()

        future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            await self._send_raw(payload)
            wait = self.timeout.read_wait
            try:
                response = await asyncio.wait_for(future, wait if wait > 0 else None)
            except asyncio.TimeoutError:
                raise TimeoutError("timeout") from None
            logger.infof("resp : %s", response)
            return response
        finally:
            self._pending.pop(request.id, None)

    async def close(self) -> None:
        """Stop the loops and close the connection."""
        await self._shutdown()

    async def _send_raw(self, payload: bytes) -> None:
        if self._conn is None:
            raise ComsError("not connected")
        try:
            async with self._send_lock:
                await self._conn.send(payload.decode("utf-8"))
        except ConnectionClosed as exc:
            raise ComsError(f"connection closed: {exc}") from exc
        logger.infof("send to %s", self.id)

    async def _read_loop(self, source: _HandlerSource) -> None:
        try:
            async for raw in self._conn:
                logger.infof("%s | %s", self.id, raw)
                message = to_message(raw)

                if message.type == MessageType.RESP:
                    future = self._pending.get(message.id)
                    if future is not None and not future.done():
                        future.set_result(message)
                    continue

                handler = source.get_handler(message.action)
                if handler is None:
                    break

                result = handler(self, message)
                if inspect.isawaitable(result):
                    result = await result
                if result is None:
                    break

                reply = Message(
                    id=message.id,
                    type=MessageType.RESP,
                    action=message.action,
                    data=_jsonable(result),
                )
                await self._send_raw(reply.to_bytes())
        except (ConnectionClosed, ProtocolError, ComsError) as exc:
            logger.error(exc)
        finally:
            await self._shutdown()

    async def _heart_beat(self) -> None:
        while self.connected:
            await asyncio.sleep(self.heart_beat_period)
            try:
                response = await self.call("HeartBeat", HeartBeatReq())
                beat = HeartBeatResp.from_dict(response.data)
            except (ComsError, TimeoutError, ProtocolError, TypeError):
                continue
            logger.infof("Heart Beat Status:%s", beat.ok)

    async def _collect_status(self) -> None:
        while self.connected:
            await asyncio.sleep(self.collect_period)
            try:
                stats = collect()
            except (OSError, psutil.Error):
                continue
            try:
                response = await self.call("Status", stats)
            except (ComsError, TimeoutError, ProtocolError):
                continue
            logger.infof("status resp: %s", response)

    async def _shutdown(self) -> None:
        if self._closing:
            return
        self._closing = True
        self.connected = False

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ComsError("connection closed"))

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

        if self._conn is not None:
            try:
                await self._conn.close()
            except (ConnectionClosed, OSError) as exc:
                logger.error(exc)