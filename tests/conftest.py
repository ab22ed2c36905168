"""Pytest fixtures for pysiegenia tests."""

from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from pysiegenia import DeviceLink

_CLOSED = object()


class FakeTransport:
    def __init__(self, connection: FakeConnection) -> None:
        self._connection = connection

    def abort(self) -> None:
        self._connection.drop(1006, "")


class FakeConnection:
    """In-memory stand-in for a websockets client connection.

    ``responder`` is called with every decoded request; a returned dict is
    queued as the device's answer.
    """

    def __init__(self, responder=None) -> None:
        self.sent: list[dict] = []
        self.responder = responder
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.transport = FakeTransport(self)
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        request = json.loads(message)
        self.sent.append(request)
        if self.responder is not None:
            reply = self.responder(request)
            if reply is not None:
                self.push(reply)

    def push(self, message) -> None:
        if not isinstance(message, str):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        self._incoming.put_nowait(_CLOSED)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.drop(code, reason)

    def sent_commands(self) -> list[str]:
        return [request.get("command") for request in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Replaces websockets.connect and records every attempt."""

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.calls: list[tuple[str, dict]] = []
        self.failures = 0
        self.responder = None

    async def __call__(self, url: str, **kwargs) -> FakeConnection:
        self.calls.append((url, kwargs))
        if self.failures:
            self.failures -= 1
            raise OSError("Connection refused")
        connection = FakeConnection(self.responder)
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


def reply_ok(data_by_command=None, status_by_command=None):
    """Build a responder answering every request with status "ok"."""
    data_by_command = data_by_command or {}
    status_by_command = status_by_command or {}

    def responder(request):
        command = request.get("command")
        reply = {"id": request["id"], "status": status_by_command.get(command, "ok")}
        if command in data_by_command:
            reply["data"] = data_by_command[command]
        return reply

    return responder


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest_asyncio.fixture
async def make_link(connector):
    """Create DeviceLinks on the fake connector, torn down after the test."""
    links: list[DeviceLink] = []

    def factory(**kwargs) -> DeviceLink:
        options = {
            "connector": connector,
            "request_timeout": 1.0,
            "initial_heartbeat_delay": 60,
            "heartbeat_interval": 60,
            "reconnect_base_delay": 0.01,
            "reconnect_step_delay": 0.01,
            "reconnect_max_delay": 0.05,
        }
        options.update(kwargs)
        link = DeviceLink("192.168.1.10", **options)
        links.append(link)
        return link

    yield factory
    for link in links:
        await link.disconnect(force=True)


DEVICE_NAMES = {
    1: "AEROPAC",
    5: "AEROVITAL",
    6: "MHS Family",
}


class SiegeniaSimulator:
    """Minimal device speaking the Siegenia WebSocket protocol."""

    def __init__(self, device_type: int = 5) -> None:
        self.device_type = device_type
        self.custom_responses: dict[str, dict | None] = {}
        self.received: list[dict] = []
        self.clients: set = set()
        self.port: int | None = None
        self._server = None

    async def start(self) -> None:
        self._server = await serve(self._handler, "127.0.0.1", 0)
        self.port = next(iter(self._server.sockets)).getsockname()[1]

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def push(self, command: str, data: dict, status: str = "update") -> None:
        message = json.dumps({"command": command, "data": data, "status": status})
        for client in list(self.clients):
            await client.send(message)

    def commands(self) -> list[str]:
        return [request.get("command") for request in self.received]

    async def _handler(self, connection) -> None:
        self.clients.add(connection)
        try:
            async for message in connection:
                await self._handle_message(connection, message)
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(connection)

    async def _handle_message(self, connection, message) -> None:
        try:
            request = json.loads(message)
        except ValueError:
            return
        self.received.append(request)
        command = request.get("command")

        if command in self.custom_responses:
            custom = self.custom_responses[command]
            if custom is None:
                return
            await connection.send(
                json.dumps(
                    {
                        "id": request.get("id"),
                        "status": custom.get("status", "ok"),
                        "data": custom.get("data"),
                    }
                )
            )
            return

        reply = {"id": request.get("id"), "status": "ok"}
        if command == "login":
            reply["data"] = {
                "token": "test-token-12345",
                "user": request.get("user", "user"),
            }
        elif command == "logout":
            reply["status"] = "unauthorized"
        elif command == "getDeviceState":
            reply["data"] = {"deviceactive": True}
        elif command == "getDevice":
            reply["data"] = self.device_info()
        elif command == "getDeviceParams":
            reply["data"] = self.device_params()
        elif command == "getDeviceDetails":
            reply["data"] = self.device_details()
        elif command == "setDeviceParams":
            await connection.send(json.dumps(reply))
            await connection.send(
                json.dumps(
                    {
                        "command": "deviceParams",
                        "data": request.get("params"),
                        "status": "update",
                    }
                )
            )
            return
        elif command not in ("keepAlive", "rebootDevice", "resetDevice", "renewCert"):
            reply["status"] = "error"
            reply["data"] = {"message": "Unknown command"}
        await connection.send(json.dumps(reply))

    def device_info(self) -> dict:
        return {
            "devicename": f"{DEVICE_NAMES.get(self.device_type, 'Unknown')} Test Device",
            "hardwareversion": "1.0",
            "initialized": True,
            "serialnr": "TEST000001",
            "softwareversion": "1.8.1",
            "type": self.device_type,
            "variant": 0,
        }

    def device_params(self) -> dict:
        params = {
            "warnings": [],
            "airbase": {
                "temperature": {"indoor": 22, "outdoor": 6},
                "humidity": {"indoor": 67, "outdoor": 20},
            },
            "airquality": 5,
        }
        if self.device_type == 5:
            params.update(
                {
                    "fanpower": 70,
                    "fanmode": "OUT",
                    "maxfanpower": 1000,
                    "lighting": {
                        "front": "29C257",
                        "back": "29C257",
                        "history": ["123456", "345678"],
                    },
                    "clock": {
                        "hour": 17,
                        "minute": 23,
                        "year": 2019,
                        "month": 1,
                        "day": 27,
                    },
                    "timer": {
                        "activetimer": 2,
                        "remainingtime": {"hour": 5, "minute": 23},
                        "poweron_time": {"hour": 20, "minute": 0},
                    },
                }
            )
        return params

    def device_details(self) -> dict:
        return {
            "airfilterremainingterm": 178,
            "ip": "127.0.0.1",
            "mac": "c4:93:00:07:3f:c6",
            "operatinghours": 409,
            "serialnr": "TEST000001",
        }


@pytest_asyncio.fixture
async def simulator():
    sim = SiegeniaSimulator()
    await sim.start()
    yield sim
    await sim.stop()
