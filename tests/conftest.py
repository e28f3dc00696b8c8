import json

import fakeredis
import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import RedisBackend, get_redis_backend
from relay.heartbeat import HeartbeatMonitor
from relay.hub import RelayHub


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeWebSocket:
    """Just enough of starlette's WebSocket for the hub's send/close path."""

    def __init__(self):
        self.accepted = False
        self.sent = []
        self.close_code = None
        self.close_reason = None
        self.fail_sends = False
        # Set to an asyncio.Event to make close() block until it is set
        self.close_gate = None

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail_sends:
            raise RuntimeError("connection reset")
        self.sent.append(text)

    async def close(self, code=1000, reason=None):
        if self.close_gate is not None:
            await self.close_gate.wait()
        self.close_code = code
        self.close_reason = reason

    @property
    def closed(self):
        return self.close_code is not None

    def frames(self, type_=None):
        frames = [json.loads(text) for text in self.sent]
        if type_ is not None:
            frames = [f for f in frames if f.get("type") == type_]
        return frames


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub(clock):
    monitor = HeartbeatMonitor(check_interval=0.01, stale_after=45, keepalive_interval=60, clock=clock)
    return RelayHub(monitor=monitor)


@pytest.fixture
def make_ws():
    return FakeWebSocket


@pytest.fixture
def redis_backend():
    return RedisBackend(fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def relay_app(redis_backend):
    monitor = HeartbeatMonitor(check_interval=0.05, stale_after=30, keepalive_interval=30)
    app = create_app(RelayHub(monitor=monitor))
    app.dependency_overrides[get_redis_backend] = lambda: redis_backend
    return app


@pytest.fixture
def client(relay_app):
    # One shared portal, so every socket in a test lives on the same loop
    with TestClient(relay_app) as client:
        yield client
