"""
Pytest configuration and shared fixtures.
"""

import asyncio
import json

import httpx
import pytest

from hpc_bvt.infra.config import BvtConfig, Credentials


@pytest.fixture
def credentials():
    return Credentials(hostname="head.example.com", username="alice", password="secret")


@pytest.fixture
def config(credentials):
    """Configuration with short timeouts for tests."""
    return BvtConfig(
        credentials=credentials,
        timeout_seconds=2.0,
        connect_timeout_seconds=1.0,
        invoke_timeout_seconds=1.0,
    )


class FakeWebSocket:
    """
    In-memory stand-in for a websockets client connection.

    Frames pushed with push() are yielded by async iteration. Invocations
    sent by the client are answered automatically unless auto_result is off.
    """

    def __init__(self, frames=None, auto_result=True):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.auto_result = auto_result
        self.invocation_errors = {}
        for frame in frames or []:
            self.push(frame)

    def push(self, frame):
        self.incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def server_close(self):
        self.incoming.put_nowait(None)

    async def send(self, data):
        message = json.loads(data)
        self.sent.append(message)
        if self.auto_result:
            reply = {"I": str(message["I"])}
            error = self.invocation_errors.get(message["M"])
            if error:
                reply["E"] = error
            self.push(reply)

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


INIT_FRAME = {"S": 1, "M": []}


def signalr_transport(requests, try_websockets=True, negotiate_status=200, start_body=None):
    """httpx.MockTransport answering negotiate, start and abort."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path.endswith("/negotiate"):
            if negotiate_status != 200:
                return httpx.Response(negotiate_status, text="Unauthorized")
            return httpx.Response(200, json={
                "Url": "/hpc/signalr",
                "ConnectionToken": "token/abc+1",
                "ConnectionId": "c-1",
                "KeepAliveTimeout": 20.0,
                "DisconnectTimeout": 30.0,
                "TryWebSockets": try_websockets,
                "ProtocolVersion": "1.5",
                "TransportConnectTimeout": 5.0,
            })
        if path.endswith("/start"):
            return httpx.Response(200, json=start_body or {"Response": "started"})
        if path.endswith("/abort"):
            return httpx.Response(200, text="")
        return httpx.Response(404, text="Not Found")

    return httpx.MockTransport(handler)


async def wait_until(predicate, timeout=1.0):
    """Yield to the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
