"""Tests for SerialTransport / NetworkTransport with pyserial and socket mocked."""

import socket
import time
from unittest.mock import MagicMock, PropertyMock, call, patch

import pytest
import serial

from pyjpe_cpsc.errors import ConnectError, DispatchTimeoutError, FrameOverflowError, TransportIOError
from pyjpe_cpsc.transport import (
    SERIAL_POLL_INTERVAL,
    NetworkTransport,
    SerialTransport,
    open_transport,
)
from pyjpe_cpsc.types import NetworkConfig, SerialConfig


@patch("pyjpe_cpsc.transport.serial.Serial")
def test_serial_open_uses_8n1(mock_serial_class: MagicMock) -> None:
    mock_serial_class.return_value.is_open = True
    t = SerialTransport("/dev/ttyUSB0", 115200)
    t.open()
    mock_serial_class.assert_called_once_with(
        port="/dev/ttyUSB0",
        baudrate=115200,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=0,
        write_timeout=1.0,
    )
    assert t.is_open is True
    t.close()
    mock_serial_class.return_value.close.assert_called_once()
    assert t.is_open is False


@patch("pyjpe_cpsc.transport.serial.Serial")
def test_serial_open_failure_raises_connect_error(mock_serial_class: MagicMock) -> None:
    mock_serial_class.side_effect = serial.SerialException("could not open port COM99")
    t = SerialTransport("COM99")
    with pytest.raises(ConnectError) as exc_info:
        t.open()
    assert exc_info.value.target == "COM99"
    assert isinstance(exc_info.value.cause, serial.SerialException)
    assert t.is_open is False


@patch("pyjpe_cpsc.transport.serial.Serial")
def test_serial_write_and_read(mock_serial_class: MagicMock) -> None:
    port = mock_serial_class.return_value
    port.read.side_effect = [b"1", b".2\r\n"]
    port.in_waiting = 4
    t = SerialTransport("/dev/ttyUSB0")
    t.open()
    t.write(b"/VER\r\n")
    port.write.assert_called_once_with(b"/VER\r\n")
    port.flush.assert_called_once()
    assert t.read_until(b"\r\n", 0.5, 4096) == b"1.2\r\n"


@patch("pyjpe_cpsc.transport.serial.Serial")
def test_serial_write_failure_raises_io_error(mock_serial_class: MagicMock) -> None:
    port = mock_serial_class.return_value
    port.write.side_effect = serial.SerialException("device disconnected")
    t = SerialTransport("/dev/ttyUSB0")
    t.open()
    with pytest.raises(TransportIOError):
        t.write(b"/VER\r\n")


def test_serial_not_open_raises_io_error() -> None:
    with pytest.raises(TransportIOError):
        SerialTransport("/dev/ttyUSB0").write(b"/VER\r\n")


@patch("pyjpe_cpsc.transport.socket.create_connection")
def test_network_open_and_read(mock_connect: MagicMock) -> None:
    sock = mock_connect.return_value
    sock.recv.side_effect = [b"CADM2,", b"RSM\r\n"]
    t = NetworkTransport("169.254.10.10", 2000, connect_timeout=2.0)
    t.open()
    mock_connect.assert_called_once_with(("169.254.10.10", 2000), timeout=2.0)
    t.write(b"/MODLIST\r\n")
    sock.sendall.assert_called_once_with(b"/MODLIST\r\n")
    assert t.read_until(b"\r\n", 0.5, 4096) == b"CADM2,RSM\r\n"


@patch("pyjpe_cpsc.transport.socket.create_connection")
def test_network_connect_refused(mock_connect: MagicMock) -> None:
    mock_connect.side_effect = ConnectionRefusedError("refused")
    with pytest.raises(ConnectError) as exc_info:
        NetworkTransport("10.0.0.5").open()
    assert exc_info.value.target == "10.0.0.5:2000"


@patch("pyjpe_cpsc.transport.socket.create_connection")
def test_network_peer_close_raises_io_error(mock_connect: MagicMock) -> None:
    mock_connect.return_value.recv.return_value = b""
    t = NetworkTransport("10.0.0.5")
    t.open()
    with pytest.raises(TransportIOError):
        t.read_until(b"\r\n", 0.5, 4096)


@patch("pyjpe_cpsc.transport.socket.create_connection")
def test_network_recv_timeout_becomes_dispatch_timeout(mock_connect: MagicMock) -> None:
    def slow_recv(size: int) -> bytes:
        time.sleep(0.01)
        raise socket.timeout()

    mock_connect.return_value.recv.side_effect = slow_recv
    t = NetworkTransport("10.0.0.5")
    t.open()
    with pytest.raises(DispatchTimeoutError):
        t.read_until(b"\r\n", 0.05, 4096)


@patch("pyjpe_cpsc.transport.socket.create_connection")
def test_network_discard_input_drains(mock_connect: MagicMock) -> None:
    sock = mock_connect.return_value
    sock.recv.side_effect = [b"stale\r\n", BlockingIOError()]
    t = NetworkTransport("10.0.0.5")
    t.open()
    t.discard_input()
    sock.setblocking.assert_any_call(False)
    sock.setblocking.assert_called_with(True)


def test_read_until_timeout_keeps_partial(fake_transport) -> None:
    t = fake_transport
    t._pending = b"1.2"
    start = time.monotonic()
    with pytest.raises(DispatchTimeoutError) as exc_info:
        t.read_until(b"\r\n", 0.05, 4096)
    assert time.monotonic() - start >= 0.05
    assert exc_info.value.partial == b"1.2"
    assert exc_info.value.timeout == 0.05


def test_read_until_overflow_discards_input(fake_transport) -> None:
    t = fake_transport
    t._pending = b"x" * 200
    with pytest.raises(FrameOverflowError):
        t.read_until(b"\r\n", 0.5, 100)
    assert t.discards == 1


@patch("pyjpe_cpsc.transport.serial.Serial")
def test_open_transport_serial(mock_serial_class: MagicMock) -> None:
    t = open_transport(SerialConfig("/dev/ttyUSB0", 9600))
    assert isinstance(t, SerialTransport)
    assert t.baud == 9600
    assert t.transport_type == "SerialTransport"
    mock_serial_class.assert_called_once()


@patch("pyjpe_cpsc.transport.socket.create_connection")
def test_open_transport_network(mock_connect: MagicMock) -> None:
    t = open_transport(NetworkConfig("10.0.0.5", 2001), connect_timeout=1.5)
    assert isinstance(t, NetworkTransport)
    mock_connect.assert_called_once_with(("10.0.0.5", 2001), timeout=1.5)


def test_open_transport_unknown_config() -> None:
    with pytest.raises(TypeError):
        open_transport("COM1")  # type: ignore[arg-type]


@patch("pyjpe_cpsc.transport.serial.Serial")
def test_serial_read_timeout_configured_once(mock_serial_class: MagicMock) -> None:
    port = mock_serial_class.return_value
    timeout_prop = PropertyMock(return_value=0)
    type(port).timeout = timeout_prop
    port.in_waiting = 0
    port.read.side_effect = [b"", b"", b"4", b"2", b"\r", b"\n"]
    t = SerialTransport("/dev/ttyUSB0")
    t.open()
    assert t.read_until(b"\r\n", 0.5, 4096) == b"42\r\n"
    assert port.read.call_count == 6
    assert timeout_prop.call_args_list == [call(SERIAL_POLL_INTERVAL)]
