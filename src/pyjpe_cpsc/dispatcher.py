"""Dispatcher: one outstanding request at a time over a single Transport."""

import logging
import threading

from . import codec
from .errors import DeviceError, DispatchTimeoutError, ProtocolError, TransportIOError, ValidationError
from .transport import Transport
from .types import Ack, Command, DeviceErrorReply

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 0.5


class Dispatcher:
    """
    Owns the Transport and serializes exchanges on it.

    Each send() holds a lock across discard-write-read, so concurrent callers
    never interleave frames. A TransportIOError closes the transport for good;
    timeouts, device errors and protocol errors leave it usable.
    """

    def __init__(self, transport: Transport, timeout: float = DEFAULT_TIMEOUT) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        self._transport: Transport | None = transport
        self._timeout = timeout
        self._lock = threading.Lock()

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def usable(self) -> bool:
        return self._transport is not None

    def _invalidate(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            logger.warning("Transport %r invalidated after I/O failure", transport)
            transport.close()

    def send(self, command: Command, timeout: float | None = None) -> Ack:
        """
        Write command and wait for its reply.

        Returns the Ack. Raises ValidationError (before any I/O) for a bad command or timeout,
        DeviceError for error replies, DispatchTimeoutError, TransportIOError, or ProtocolError.
        """
        frame = codec.encode(command)
        bound = self._timeout if timeout is None else timeout
        if isinstance(bound, bool) or not isinstance(bound, (int, float)) or bound <= 0:
            raise ValidationError("timeout", timeout, f"timeout must be a positive number of seconds, got {timeout!r}")
        with self._lock:
            transport = self._transport
            if transport is None:
                raise TransportIOError("Transport is closed; rebuild the controller", opcode=command.opcode)
            try:
                transport.discard_input()
                logger.debug("-> %r", frame)
                transport.write(frame)
                raw = transport.read_until(codec.TERMINATOR, bound, codec.MAX_FRAME_SIZE)
            except TransportIOError as e:
                e.opcode = command.opcode
                self._invalidate()
                raise
            except (DispatchTimeoutError, ProtocolError) as e:
                e.opcode = command.opcode
                logger.debug("%s failed: %s", command.opcode, e)
                raise
        logger.debug("<- %r", raw)

        reply = codec.decode(raw, command)
        if isinstance(reply, DeviceErrorReply):
            raise DeviceError(reply.code, reply.detail, opcode=command.opcode)
        return reply

    def close(self) -> None:
        with self._lock:
            if self._transport is not None:
                self._transport.close()
                self._transport = None
