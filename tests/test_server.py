import asyncio
import contextlib
import json

import pytest
import websockets
from websockets.exceptions import ConnectionClosed

from coms.client import Client
from coms.server import OperationServer, _path_matches, _split_address


def _act1(client, message):
    return {"name": "test1-ack", "hi": "ack"}


@contextlib.asynccontextmanager
async def _running_server(**handlers):
    server = OperationServer("127.0.0.1:0", "/my-test/")
    for action, handler in handlers.items():
        server.register_handler(action, handler)
    task = asyncio.create_task(server.start())
    await asyncio.wait_for(server.ready.wait(), 5)
    try:
        yield server
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def _wait_for(predicate):
    for _ in range(200):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return False


def test_register_and_get_handler():
    server = OperationServer("0.0.0.0:9999", "/my-test/")
    server.register_handler("Act1", _act1)
    assert server.get_handler("Act1") is _act1
    assert server.get_handler("Act2") is None


def test_register_handler_replaces_previous():
    server = OperationServer("0.0.0.0:9999", "/my-test/")
    server.register_handler("Act1", _act1)
    replacement = lambda client, message: {"other": 1}  # noqa: E731
    server.register_handler("Act1", replacement)
    assert server.get_handler("Act1") is replacement


def test_default_pending_call_limit():
    server = OperationServer("0.0.0.0:9999", "/my-test/")
    assert server.max_pending_call == 32


def test_add_get_remove_client():
    server = OperationServer("0.0.0.0:9999", "/my-test/")
    client = Client("test1", 32)
    server.add(client)
    assert server.get_client("test1") is client
    server.remove(client)
    assert server.get_client("test1") is None


def test_remove_goes_by_id():
    server = OperationServer("0.0.0.0:9999", "/my-test/")
    first = Client("test1", 32)
    second = Client("test1", 32)
    server.add(first)
    server.add(second)
    assert server.get_client("test1") is second
    server.remove(first)
    assert server.get_client("test1") is None


@pytest.mark.parametrize(
    "addr, expected",
    [
        ("0.0.0.0:9999", ("0.0.0.0", 9999)),
        (":8080", (None, 8080)),
        ("[::1]:7000", ("::1", 7000)),
    ],
)
def test_split_address(addr, expected):
    assert _split_address(addr) == expected


def test_split_address_requires_port():
    with pytest.raises(ValueError):
        _split_address("localhost")


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        ("/my-test/", "/my-test/test1", True),
        ("/my-test/", "/other/test1", False),
        ("/exact", "/exact", True),
        ("/exact", "/exact/more", False),
    ],
)
def test_path_matching(pattern, path, expected):
    assert _path_matches(pattern, path) is expected


@pytest.mark.asyncio
async def test_server_answers_act1():
    async with _running_server(Act1=_act1) as server:
        uri = f"ws://127.0.0.1:{server.bound_port}/my-test/test1"
        conn = await websockets.connect(uri)
        try:
            assert await _wait_for(lambda: server.get_client("test1") is not None)
            assert server.get_client("test1").id == "test1"
            request = {"id": "req-1", "type": 0, "action": "Act1", "data": {"name": "x", "hi": "y"}}
            await conn.send(json.dumps(request))
            reply = json.loads(await asyncio.wait_for(conn.recv(), 5))
            assert reply == {
                "id": "req-1",
                "type": 1,
                "action": "Act1",
                "data": {"name": "test1-ack", "hi": "ack"},
            }
        finally:
            await conn.close()
        assert await _wait_for(lambda: server.get_client("test1") is None)


@pytest.mark.asyncio
async def test_server_closes_on_unknown_action():
    async with _running_server(Act1=_act1) as server:
        uri = f"ws://127.0.0.1:{server.bound_port}/my-test/test1"
        conn = await websockets.connect(uri)
        try:
            await conn.send(json.dumps({"id": "x", "type": 0, "action": "Nope", "data": None}))
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(conn.recv(), 5)
        finally:
            await conn.close()


@pytest.mark.asyncio
async def test_server_closes_when_handler_returns_none():
    async with _running_server(Drop=lambda client, message: None) as server:
        uri = f"ws://127.0.0.1:{server.bound_port}/my-test/test1"
        conn = await websockets.connect(uri)
        try:
            await conn.send(json.dumps({"id": "x", "type": 0, "action": "Drop", "data": {}}))
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(conn.recv(), 5)
        finally:
            await conn.close()


@pytest.mark.asyncio
async def test_server_closes_on_invalid_json():
    async with _running_server(Act1=_act1) as server:
        uri = f"ws://127.0.0.1:{server.bound_port}/my-test/test1"
        conn = await websockets.connect(uri)
        try:
            await conn.send("not json")
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(conn.recv(), 5)
        finally:
            await conn.close()


@pytest.mark.asyncio
async def test_server_rejects_other_paths():
    async with _running_server(Act1=_act1) as server:
        uri = f"ws://127.0.0.1:{server.bound_port}/other/test1"
        conn = await websockets.connect(uri)
        try:
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(conn.recv(), 5)
            assert server.get_client("test1") is None
        finally:
            await conn.close()


@pytest.mark.asyncio
async def test_async_handler_is_awaited():
    async def doubled(client, message):
        await asyncio.sleep(0)
        return {"value": message.data["value"] * 2}

    async with _running_server(Double=doubled) as server:
        uri = f"ws://127.0.0.1:{server.bound_port}/my-test/test1"
        conn = await websockets.connect(uri)
        try:
            await conn.send(json.dumps({"id": "d", "type": 0, "action": "Double", "data": {"value": 21}}))
            reply = json.loads(await asyncio.wait_for(conn.recv(), 5))
            assert reply["data"] == {"value": 42}
            assert reply["type"] == 1
        finally:
            await conn.close()