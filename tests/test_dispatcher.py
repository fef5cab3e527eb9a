"""Tests for the Dispatcher: exclusivity, timeout bound, error classification, invalidation."""

import threading
import time

import pytest

from pyjpe_cpsc.dispatcher import Dispatcher
from pyjpe_cpsc.errors import (
    DeviceError,
    DispatchTimeoutError,
    FrameOverflowError,
    TransportIOError,
    UnexpectedReplyError,
    ValidationError,
)
from pyjpe_cpsc.types import Ack, Command, Slot


def test_send_returns_ack(make_transport) -> None:
    t = make_transport({"/VER": b"1.4.2\r\n"})
    d = Dispatcher(t, timeout=0.2)
    assert d.send(Command("/VER")) == Ack(values=("1.4.2",))
    assert t.writes == [b"/VER\r\n"]
    assert t.discards == 1


def test_invalid_timeout() -> None:
    with pytest.raises(ValueError):
        Dispatcher(None, timeout=0)  # type: ignore[arg-type]


def test_validation_error_before_any_io(dispatcher: Dispatcher, fake_transport) -> None:
    with pytest.raises(ValidationError):
        dispatcher.send(Command("FU", Slot.ONE, params=("bad name",)))
    assert fake_transport.writes == []
    assert fake_transport.discards == 0


def test_device_error_reply(make_transport) -> None:
    d = Dispatcher(make_transport({"GFS": b"Error 3: slot empty\r\n"}), timeout=0.2)
    with pytest.raises(DeviceError) as exc_info:
        d.send(Command("GFS", Slot.TWO))
    assert exc_info.value.code == 3
    assert exc_info.value.detail == "slot empty"
    assert exc_info.value.opcode == "GFS"
    assert d.usable


def test_timeout_not_before_bound(dispatcher: Dispatcher) -> None:
    start = time.monotonic()
    with pytest.raises(DispatchTimeoutError) as exc_info:
        dispatcher.send(Command("/VER"), timeout=0.1)
    assert time.monotonic() - start >= 0.1
    assert exc_info.value.opcode == "/VER"
    assert dispatcher.usable


def test_default_timeout_used(make_transport) -> None:
    d = Dispatcher(make_transport(), timeout=0.05)
    assert d.timeout == 0.05
    start = time.monotonic()
    with pytest.raises(DispatchTimeoutError) as exc_info:
        d.send(Command("/VER"))
    assert time.monotonic() - start >= 0.05
    assert exc_info.value.timeout == 0.05


def test_timeout_then_next_request_succeeds(make_transport) -> None:
    t = make_transport({"/VER": [b"", b"1.4.2\r\n"]})
    d = Dispatcher(t, timeout=0.05)
    with pytest.raises(DispatchTimeoutError):
        d.send(Command("/VER"))
    assert d.send(Command("/VER")).values == ("1.4.2",)
    assert t.discards == 2


def test_io_error_invalidates_transport(make_transport) -> None:
    t = make_transport({"/VER": TransportIOError("Connection closed by controller")})
    d = Dispatcher(t, timeout=0.2)
    with pytest.raises(TransportIOError) as exc_info:
        d.send(Command("/VER"))
    assert exc_info.value.opcode == "/VER"
    assert not d.usable
    assert t.closed
    with pytest.raises(TransportIOError):
        d.send(Command("/VER"))
    assert len(t.writes) == 1


def test_protocol_error_keeps_transport(make_transport) -> None:
    t = make_transport({"PGVA": b"0.1,0.2\r\n", "/VER": b"x" * 5000 + b"\r\n"})
    d = Dispatcher(t, timeout=0.2)
    with pytest.raises(UnexpectedReplyError):
        d.send(Command("PGVA", Slot.ONE, expected_values=3))
    with pytest.raises(FrameOverflowError) as exc_info:
        d.send(Command("/VER"))
    assert exc_info.value.opcode == "/VER"
    assert d.usable


def test_close(dispatcher: Dispatcher, fake_transport) -> None:
    dispatcher.close()
    assert fake_transport.closed
    assert not dispatcher.usable
    dispatcher.close()


def test_concurrent_sends_do_not_interleave(make_transport) -> None:
    """Each exchange runs write -> read to completion before another write starts."""
    events: list[tuple[str, bytes]] = []
    base = make_transport

    class RecordingTransport(base):  # type: ignore[misc, valid-type]
        def write(self, data: bytes) -> None:
            events.append(("write", data))
            time.sleep(0.002)
            super().write(data)

        def read_until(self, terminator: bytes, timeout: float, max_size: int) -> bytes:
            raw = super().read_until(terminator, timeout, max_size)
            events.append(("read", raw))
            return raw

    replies = {f"Q{i}": b"%d\r\n" % i for i in range(8)}
    d = Dispatcher(RecordingTransport(replies), timeout=1.0)
    results: dict[int, tuple[str, ...]] = {}

    def worker(i: int) -> None:
        results[i] = d.send(Command(f"Q{i}")).values

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert results == {i: (str(i),) for i in range(8)}
    assert len(events) == 16
    for write, read in zip(events[::2], events[1::2]):
        assert write[0] == "write" and read[0] == "read"
        assert write[1].strip() == b"Q" + read[1].strip()


@pytest.mark.parametrize("bad", [0, 0.0, -1.0, True, "1"])
def test_invalid_per_call_timeout_rejected_before_write(dispatcher: Dispatcher, fake_transport, bad) -> None:
    with pytest.raises(ValidationError) as exc_info:
        dispatcher.send(Command("SDC", Slot.ONE, params=(512,)), timeout=bad)
    assert exc_info.value.param == "timeout"
    assert fake_transport.writes == []
    assert fake_transport.discards == 0
