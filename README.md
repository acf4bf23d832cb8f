# coms

`coms` connects monitoring agents to a central operation server over
WebSocket, using asyncio. Both sides exchange small JSON messages, and
either side may send a request and wait for the matching response.

## Wire format

Every frame is a JSON object sent as a text message:

```json
{"id": "…", "type": 0, "action": "Status", "data": {"cpu_usage": 12.5}}
```

`type` is `0` for a request, `1` for a response and `2` for an error
(`coms.protocol.MessageType.REQ`, `RESP`, `ERR`). `data` may be any JSON
value and is passed through unchanged. A response carries the id of the
request it answers.

```python
from coms.protocol import to_message

msg = to_message(b'{"id": "1", "type": 0, "action": "HeartBeat", "data": {}}')
print(msg.action)      # HeartBeat
raw = msg.to_bytes()   # compact JSON bytes
```

`to_message` raises `coms.protocol.ProtocolError` (a `ValueError`) for
input that is not JSON, is not an object, or has fields of the wrong type.
A JSON `null` decodes to an empty `Message`.

## Payload types

`coms.protocol` defines dataclasses for the payloads, each with
`to_dict()` and `from_dict(data)` (unknown keys are ignored):

- `HeartBeatReq` (no fields) and `HeartBeatResp(ok)`
- `StatusReq`: `cpu_usage` (percent), `cpu_cores` (logical cores),
  `mem_total` and `mem_usage` (MB), `mem_percent`, `disk_total` and
  `disk_usage` (GB, root filesystem), `disk_percent`, and `server_time`
  (local time, RFC 3339)
- `StatusResp(ok)`
- `LoginReq(id)`
- `FileUploadReq(file_name, chunk_size)`

`TimeoutConfig(ping_wait, write_wait, read_wait, ping_period)` holds
timeouts in seconds. `MIN_COLLECT_DURATION` and `MIN_HEART_BEAT_DURATION`
are both 30 seconds.

## Server

```python
import asyncio
from coms.server import OperationServer

server = OperationServer("0.0.0.0:9999", "/my-test/")

def heart_beat(client, message):
    return {"ok": True}

def status(client, message):
    print(client.id, message.data)
    return {"ok": True}

server.register_handler("HeartBeat", heart_beat)
server.register_handler("Status", status)

asyncio.run(server.start())
```

- `addr` is `host:port`; an empty host listens on all interfaces.
- A `path` ending in `/` accepts any request path under it; otherwise the
  path must match exactly. Other paths are closed with code 1008.
- The last segment of the connection path is the agent's id.
- A handler is called with the connected `Client` and the incoming
  `Message`, and may be a plain function or a coroutine function. Its
  return value (a dataclass payload is converted to a dict) becomes the
  `data` of the response. If an action has no handler, or the handler
  returns `None`, the connection is closed.
- `start()` runs until cancelled. Once listening it sets the
  `server.ready` event and stores the actual port in `server.bound_port`.
- `get_client(client_id)` returns a connected `Client` or `None`;
  `add` and `remove` manage the registry directly. `server.timeout` and
  `server.max_pending_call` (default 32) apply to accepted connections.

The server can call an agent through the `Client` it holds:
`await server.get_client("agent-1").call("Action", data)`.

## Agent

```python
import asyncio
from coms.client import Client
from coms.protocol import TimeoutConfig

async def main():
    agent = Client("agent-1", 32)
    agent.set_period(60, 60)                # collect, heart beat (seconds)
    agent.set_timeout(TimeoutConfig(read_wait=10))
    await agent.start("ws://localhost:9999/my-test/")
    resp = await agent.call("Act1", {"name": "test1-ack", "hi": "ack"})
    print(resp.data)
    await asyncio.sleep(3600)
    await agent.close()

asyncio.run(main())
```

- `start(addr)` connects to `addr` followed by the agent's id. It raises
  `ValueError` unless both periods are longer than 30 seconds.
- After starting, the agent sends a `HeartBeat` request every heartbeat
  period and a `Status` request with `collect()` figures every collection
  period. Failed calls are skipped.
- `call(action, data)` sends a request and waits for the response with
  the same id. It raises `TooManyPendingCalls` when `max_pending_calls`
  calls are already waiting, `ComsError` when not connected or when the
  connection closes, and `TimeoutError` when no answer arrives within
  `read_wait` (with `read_wait` 0 it waits without limit).
- Requests sent by the server to the agent are answered by handlers in
  the agent's `handlers` dict (looked up with `get_handler(action)`).
- `collect()` samples this host's CPU, memory and root-disk usage into a
  `StatusReq`.
- Timeouts map onto the connection: `ping_period` as the ping interval,
  `ping_wait` as the ping timeout, `write_wait` as the close timeout.

## Logging

`coms.logger` writes to standard output at INFO level, one
tab-separated line per record: time (`YYYY/MM/DD-HH:MM:SS.hh`), coloured
level tag, `file:line` of the caller, and the message. Use `info(msg)`,
`infof(fmt, *args)` (printf-style) and `error(err)`; `init()` re-attaches
the handler to the current standard output.

## What it does not do

- There is no command-line program; the server and agent are started
  from your own Python code.
- The server has no built-in handlers. Register `HeartBeat` and `Status`
  handlers, or it will close agent connections when they first report.
- `LoginReq` and `FileUploadReq` are payload types only; there is no
  login check and no file transfer.
- Nothing is stored: status reports go only to the handlers you register.