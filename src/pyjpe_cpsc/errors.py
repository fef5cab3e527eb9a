"""Exceptions for pyjpe-cpsc: configuration, validation, connect, dispatch and protocol errors."""


class CPSCError(Exception):
    """Base exception for pyjpe-cpsc."""

    pass


class ConfigurationError(CPSCError):
    """Raised when the controller builder or environment configuration is invalid."""

    pass


class ValidationError(CPSCError, ValueError):
    """Raised when a command argument fails local validation (no I/O performed)."""

    def __init__(self, param: str, value: object, message: str | None = None) -> None:
        self.param = param
        self.value = value
        self._msg = message or f"Invalid value for {param}: {value!r}"
        super().__init__(self._msg)


class BoundError(ValidationError):
    """Raised when a numeric argument lies outside the range the controller accepts."""

    def __init__(self, param: str, value: object, lo: float, hi: float, message: str | None = None) -> None:
        self.lo = lo
        self.hi = hi
        super().__init__(param, value, message or f"{param} out of range {lo}-{hi}, got {value!r}")


class UnsupportedStageError(ValidationError):
    """Raised when a stage SKU is not in the controller's supported stage list."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__("stage", stage, f"Stage {stage!r} unsupported by controller")


class UnsupportedCommandError(ValidationError):
    """Raised when a command is not valid for the current operating mode or the module in a slot."""

    def __init__(self, opcode: str, message: str) -> None:
        self.opcode = opcode
        super().__init__("command", opcode, message)


class ConnectError(CPSCError):
    """Raised when the serial device or TCP socket cannot be opened."""

    def __init__(self, message: str, *, target: str | None = None, cause: BaseException | None = None) -> None:
        self.target = target
        self.cause = cause
        super().__init__(message)


class DispatchError(CPSCError):
    """Base for failures of a single request/reply exchange."""

    def __init__(self, message: str, *, opcode: str | None = None) -> None:
        self.opcode = opcode
        super().__init__(message)


class DispatchTimeoutError(DispatchError, TimeoutError):
    """No complete reply within the exchange timeout. The transport stays usable."""

    def __init__(self, timeout: float, *, partial: bytes = b"", opcode: str | None = None) -> None:
        self.timeout = timeout
        self.partial = partial
        super().__init__(f"No reply within {timeout:.3f}s", opcode=opcode)


class TransportIOError(DispatchError):
    """Transport-level failure. The transport is closed and the controller must be rebuilt."""

    def __init__(self, message: str, *, opcode: str | None = None, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message, opcode=opcode)


class DeviceError(DispatchError):
    """The controller answered with an error reply."""

    def __init__(self, code: int | None, detail: str, *, opcode: str | None = None) -> None:
        self.code = code
        self.detail = detail
        prefix = f"Device error {code}" if code is not None else "Device error"
        super().__init__(f"{prefix}: {detail}" if detail else prefix, opcode=opcode)


class SlotEmptyError(DeviceError):
    """The addressed slot holds no module."""


class UnknownCommandError(DeviceError):
    """The controller does not recognize the command."""


class ParameterRejectedError(DeviceError):
    """The controller rejected a command parameter."""


class StageRejectedError(DeviceError):
    """The controller rejected the stage SKU."""


class ModeRejectedError(DeviceError):
    """The command is not allowed in the controller's current operating mode."""


class ProtocolError(CPSCError):
    """Reply bytes could not be decoded. The core does not attempt to resynchronize."""

    def __init__(self, message: str, *, raw: bytes | None = None, opcode: str | None = None) -> None:
        self.raw = raw
        self.opcode = opcode
        super().__init__(message)


class FrameOverflowError(ProtocolError):
    """More bytes arrived than a single reply frame may hold."""


class UnexpectedReplyError(ProtocolError):
    """Reply was well-formed but not the shape the command expects."""
