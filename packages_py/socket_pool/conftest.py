"""
Shared fixtures for socket_pool tests.
"""
import asyncio
from typing import List, Optional

import pytest
from websockets.protocol import State


class FakeSocket:
    """Socket handle that records close() calls and sent messages

    ``state`` mirrors a websockets connection; set it to ``State.CLOSED`` to
    simulate the server dropping the socket.
    """

    def __init__(self, pool_key: str) -> None:
        self.pool_key = pool_key
        self.close_calls = 0
        self.close_error: Optional[Exception] = None
        self.sent: List[str] = []
        self.state = State.OPEN

    async def close(self) -> None:
        self.close_calls += 1
        self.state = State.CLOSED
        if self.close_error is not None:
            raise self.close_error

    async def send(self, message: str) -> None:
        self.sent.append(message)


class FakeSocketFactory:
    """
    Socket factory for the manager.

    Set ``gate`` to hold creations until the event is set, and
    ``failures_remaining`` with ``error`` to fail the next N creations.
    """

    def __init__(self) -> None:
        self.created: List[FakeSocket] = []
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.error: Exception = ConnectionError("connection refused")
        self.failures_remaining = 0

    @property
    def created_count(self) -> int:
        return len(self.created)

    async def __call__(self, pool_key: str) -> FakeSocket:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise self.error
        socket = FakeSocket(pool_key)
        self.created.append(socket)
        return socket


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    """Fresh fake socket factory for each test"""
    return FakeSocketFactory()
