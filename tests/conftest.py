"""Shared fixtures for turntable-client tests."""

import asyncio
import json
from typing import Any, Union

import pytest

from turntable_client.config import Config
from turntable_client.connect.protocol import ProtocolCodec


class FakeTransport:
    """In-memory transport recording outbound frames."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.fail_with: "Exception | None" = None

    async def send_text(self, data: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)

    @property
    def requests(self) -> list[dict[str, Any]]:
        """Outbound JSON requests, heartbeats excluded."""
        result = []
        codec = ProtocolCodec("", "")
        for frame in self.sent:
            for payload in codec.split_frame(frame):
                if payload.startswith("{"):
                    result.append(json.loads(payload))
        return result

    async def wait_for_requests(self, count: int, timeout: float = 1.0) -> list[dict[str, Any]]:
        """Wait until at least count requests were sent, or timeout elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.requests) < count and loop.time() < deadline:
            await asyncio.sleep(0.001)
        return self.requests


def frame(message: Union[dict, str]) -> str:
    """Frame a message the way the server does."""
    payload = message if isinstance(message, str) else json.dumps(message)
    return ProtocolCodec.pack(payload)


def make_config() -> Config:
    cfg = Config()
    cfg.turntable.user_id = "user-1"
    cfg.turntable.user_auth = "auth-1"
    cfg.turntable.room_id = "room-1"
    cfg.search.timeout = 0.5
    cfg.search.poll_interval = 0.01
    return cfg


@pytest.fixture
def config() -> Config:
    """Create a test configuration."""
    return make_config()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(name="frame")
def frame_fixture():
    """Server-side framing helper."""
    return frame
