"""pyjpe-cpsc: JPE CPSC1 controller (RSM, CADM2) over serial or TCP with typed commands."""

__version__ = "0.1.0"

from .builder import ControllerBuilder
from .client import CPSCController
from .commands import COMMANDS
from .errormap import DeviceErrorMap, get_default_error_map
from .errors import (
    BoundError,
    ConfigurationError,
    ConnectError,
    CPSCError,
    DeviceError,
    DispatchError,
    DispatchTimeoutError,
    FrameOverflowError,
    ModeRejectedError,
    ParameterRejectedError,
    ProtocolError,
    SlotEmptyError,
    StageRejectedError,
    TransportIOError,
    UnexpectedReplyError,
    UnknownCommandError,
    UnsupportedCommandError,
    UnsupportedStageError,
    ValidationError,
)
from .normalize import normalize_channel, normalize_slot
from .types import (
    ControllerOpMode,
    Direction,
    IpAddrMode,
    IpConfig,
    Module,
    ModuleChannel,
    NetworkConfig,
    SerialConfig,
    SerialInterface,
    ServodriveStatus,
    SetpointPosMode,
    Slot,
)

__all__ = [
    "__version__",
    "ControllerBuilder",
    "CPSCController",
    "COMMANDS",
    "DeviceErrorMap",
    "get_default_error_map",
    "BoundError",
    "ConfigurationError",
    "ConnectError",
    "CPSCError",
    "DeviceError",
    "DispatchError",
    "DispatchTimeoutError",
    "FrameOverflowError",
    "ModeRejectedError",
    "ParameterRejectedError",
    "ProtocolError",
    "SlotEmptyError",
    "StageRejectedError",
    "TransportIOError",
    "UnexpectedReplyError",
    "UnknownCommandError",
    "UnsupportedCommandError",
    "UnsupportedStageError",
    "ValidationError",
    "normalize_channel",
    "normalize_slot",
    "ControllerOpMode",
    "Direction",
    "IpAddrMode",
    "IpConfig",
    "Module",
    "ModuleChannel",
    "NetworkConfig",
    "SerialConfig",
    "SerialInterface",
    "ServodriveStatus",
    "SetpointPosMode",
    "Slot",
]
