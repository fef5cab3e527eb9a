"""Byte-level transports to the controller: serial (pyserial) and TCP (socket), one interface."""

import logging
import socket
import time
from abc import ABC, abstractmethod
from typing import Any

import serial

from .errors import ConnectError, DispatchTimeoutError, FrameOverflowError, TransportIOError
from .types import NetworkConfig, SerialConfig, TransportConfig

logger = logging.getLogger(__name__)

DEFAULT_BAUD = 115_200
TCP_PORT = 2000
DEFAULT_CONNECT_TIMEOUT = 5.0
READ_CHUNK_SIZE = 64
WRITE_TIMEOUT = 1.0
# Serial reads wait at most this long per chunk; read_until owns the overall deadline
SERIAL_POLL_INTERVAL = 0.05


class Transport(ABC):
    """
    Duplex byte channel to the controller. Exactly two implementations exist
    (SerialTransport, NetworkTransport); use open_transport() to get one.
    Not thread-safe on its own: the Dispatcher is the only caller.
    """

    @abstractmethod
    def open(self) -> None:
        """Perform the device open / socket connect. Raises ConnectError."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying handle. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write all bytes. Raises TransportIOError."""

    @abstractmethod
    def discard_input(self) -> None:
        """Drop any bytes already received but not read."""

    @abstractmethod
    def _read_chunk(self, size: int, timeout: float) -> bytes:
        """Read up to size bytes, waiting about timeout seconds (serial polls in fixed steps). b'' on timeout."""

    def read_until(self, terminator: bytes, timeout: float, max_size: int) -> bytes:
        """
        Read until the buffer ends with terminator.

        Raises DispatchTimeoutError once timeout seconds pass without a complete frame,
        FrameOverflowError when more than max_size bytes arrive, TransportIOError on I/O failure.
        """
        deadline = time.monotonic() + timeout
        buf = bytearray()
        while not buf.endswith(terminator):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise DispatchTimeoutError(timeout, partial=bytes(buf))
            chunk = self._read_chunk(READ_CHUNK_SIZE, remaining)
            buf.extend(chunk)
            if len(buf) > max_size:
                self.discard_input()
                raise FrameOverflowError(f"Reply exceeds {max_size} bytes", raw=bytes(buf))
        return bytes(buf)

    @property
    def transport_type(self) -> str:
        return self.__class__.__name__

    def __enter__(self) -> "Transport":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class SerialTransport(Transport):
    """USB / RS-422 serial link. 8 data bits, no parity, 1 stop bit."""

    def __init__(self, path: str, baud: int = DEFAULT_BAUD) -> None:
        self.path = path
        self.baud = baud
        self._serial: serial.Serial | None = None
        self._read_timeout: float | None = None

    def __repr__(self) -> str:
        return f"SerialTransport(path={self.path!r}, baud={self.baud})"

    def open(self) -> None:
        try:
            self._serial = serial.Serial(
                port=self.path,
                baudrate=self.baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0,
                write_timeout=WRITE_TIMEOUT,
            )
            self._read_timeout = 0
        except (serial.SerialException, ValueError, OSError) as e:
            self._serial = None
            raise ConnectError(f"Failed to open serial port {self.path}: {e}", target=self.path, cause=e) from e
        logger.info("Serial connected: %s @ %d", self.path, self.baud)

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except (serial.SerialException, OSError) as e:
                logger.warning("Error closing serial port %s: %s", self.path, e)
            self._serial = None
            logger.info("Serial disconnected: %s", self.path)

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def _port(self) -> serial.Serial:
        if self._serial is None:
            raise TransportIOError(f"Serial port {self.path} is not open")
        return self._serial

    def write(self, data: bytes) -> None:
        port = self._port()
        try:
            port.write(data)
            port.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Serial write failed: {e}", cause=e) from e

    def discard_input(self) -> None:
        port = self._port()
        try:
            port.reset_input_buffer()
            port.reset_output_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Serial buffer reset failed: {e}", cause=e) from e

    def _read_chunk(self, size: int, timeout: float) -> bytes:
        port = self._port()
        try:
            # pyserial reconfigures the port on every timeout assignment
            if self._read_timeout != SERIAL_POLL_INTERVAL:
                port.timeout = SERIAL_POLL_INTERVAL
                self._read_timeout = SERIAL_POLL_INTERVAL
            # Block for the first byte, then take whatever else is already buffered
            data = port.read(1)
            if data and port.in_waiting:
                data += port.read(min(size - 1, port.in_waiting))
            return data
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Serial read failed: {e}", cause=e) from e


class NetworkTransport(Transport):
    """TCP stream to the controller's LAN interface."""

    def __init__(self, host: str, port: int = TCP_PORT, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self._socket: socket.socket | None = None

    def __repr__(self) -> str:
        return f"NetworkTransport(host={self.host!r}, port={self.port})"

    def open(self) -> None:
        try:
            self._socket = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError as e:
            self._socket = None
            target = f"{self.host}:{self.port}"
            raise ConnectError(f"Failed to connect to {target}: {e}", target=target, cause=e) from e
        logger.info("Socket connected: %s:%d", self.host, self.port)

    def close(self) -> None:
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError as e:
                logger.warning("Error closing socket %s:%d: %s", self.host, self.port, e)
            self._socket = None
            logger.info("Socket disconnected: %s:%d", self.host, self.port)

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def _sock(self) -> socket.socket:
        if self._socket is None:
            raise TransportIOError(f"Socket {self.host}:{self.port} is not open")
        return self._socket

    def write(self, data: bytes) -> None:
        sock = self._sock()
        try:
            sock.settimeout(WRITE_TIMEOUT)
            sock.sendall(data)
        except OSError as e:
            raise TransportIOError(f"Socket send failed: {e}", cause=e) from e

    def discard_input(self) -> None:
        sock = self._sock()
        sock.setblocking(False)
        try:
            while True:
                try:
                    data = sock.recv(READ_CHUNK_SIZE)
                except BlockingIOError:
                    break
                if not data:
                    raise TransportIOError("Connection closed by controller")
                logger.debug("Discarded %d stale bytes", len(data))
        except OSError as e:
            raise TransportIOError(f"Socket drain failed: {e}", cause=e) from e
        finally:
            sock.setblocking(True)

    def _read_chunk(self, size: int, timeout: float) -> bytes:
        sock = self._sock()
        try:
            sock.settimeout(timeout)
            data = sock.recv(size)
        except socket.timeout:
            return b""
        except OSError as e:
            raise TransportIOError(f"Socket receive failed: {e}", cause=e) from e
        if not data:
            raise TransportIOError("Connection closed by controller")
        return data


def open_transport(config: TransportConfig, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT) -> Transport:
    """Create the transport for config and open it. Raises ConnectError."""
    if isinstance(config, SerialConfig):
        transport: Transport = SerialTransport(config.path, config.baud)
    elif isinstance(config, NetworkConfig):
        transport = NetworkTransport(config.host, config.port, connect_timeout)
    else:
        raise TypeError(f"Unknown transport config: {config!r}")
    transport.open()
    return transport
