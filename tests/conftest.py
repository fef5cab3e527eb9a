"""Shared fixtures: an in-memory Transport that answers frames by opcode."""

import time
from typing import Any

import pytest

from pyjpe_cpsc.dispatcher import Dispatcher
from pyjpe_cpsc.transport import Transport


class FakeTransport(Transport):
    """
    Replies are looked up by the opcode (first token) of each written frame.
    A reply may be bytes, an exception instance (raised on read), or a list of either
    (consumed in order). Opcodes with no reply never answer.
    """

    def __init__(self, replies: dict[str, Any] | None = None) -> None:
        self.replies: dict[str, Any] = dict(replies or {})
        self.writes: list[bytes] = []
        self.discards = 0
        self.closed = False
        self._pending: bytes | BaseException = b""

    def open(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True

    @property
    def is_open(self) -> bool:
        return not self.closed

    def write(self, data: bytes) -> None:
        self.writes.append(data)
        opcode = data.split(b" ", 1)[0].strip().decode("ascii")
        reply = self.replies.get(opcode, b"")
        if isinstance(reply, list):
            reply = reply.pop(0) if reply else b""
        self._pending = reply

    def discard_input(self) -> None:
        self.discards += 1

    def _read_chunk(self, size: int, timeout: float) -> bytes:
        if isinstance(self._pending, BaseException):
            exc, self._pending = self._pending, b""
            raise exc
        if self._pending:
            data, self._pending = self._pending[:size], self._pending[size:]
            return data
        time.sleep(min(timeout, 0.005))
        return b""


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dispatcher(fake_transport: FakeTransport) -> Dispatcher:
    return Dispatcher(fake_transport, timeout=0.2)


@pytest.fixture
def make_transport() -> type[FakeTransport]:
    """The FakeTransport class, for tests that script replies up front."""
    return FakeTransport
