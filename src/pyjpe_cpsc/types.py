"""Core data model: addressing enums, Command/Reply values, transport configs and typed replies."""

from dataclasses import dataclass
from enum import Enum


class Slot(str, Enum):
    """Module bay in the controller cabinet. Value is the wire token."""

    ONE = "1"
    TWO = "2"
    THREE = "3"
    FOUR = "4"


class ModuleChannel(str, Enum):
    """Channel (output line / sensor input) of the module in a slot."""

    ONE = "1"
    TWO = "2"
    THREE = "3"


class Module(str, Enum):
    """Module kinds reported by the controller module list."""

    CADM = "cadm"
    RSM = "rsm"
    OEM = "oem"
    PSM = "psm"
    EDM = "edm"
    EMPTY = "empty"


class ControllerOpMode(str, Enum):
    """Operating modes of the controller."""

    BASEDRIVE = "basedrive"
    SERVODRIVE = "servodrive"
    FLEXDRIVE = "flexdrive"


class Direction(str, Enum):
    """Stage movement direction."""

    POSITIVE = "1"
    NEGATIVE = "0"


class SetpointPosMode(str, Enum):
    """Setpoint interpretation in servodrive."""

    ABSOLUTE = "1"
    RELATIVE = "0"


class SerialInterface(str, Enum):
    RS422 = "RS422"
    USB = "USB"


class IpAddrMode(str, Enum):
    DHCP = "DHCP"
    STATIC = "STATIC"


class ReplyShape(str, Enum):
    """Delimiter used by an acknowledged reply."""

    COMMA = "comma"
    CR = "cr"


Param = str | int | float | Enum


@dataclass(frozen=True)
class Command:
    """
    One encoded-to-be request. Built by the command set only.
    Empty modules/modes mean the command is accepted by any module / in any mode;
    expected_values=None means the reply length is variable.
    """

    opcode: str
    slot: Slot | None = None
    channel: ModuleChannel | None = None
    params: tuple[Param, ...] = ()
    modules: frozenset[Module] = frozenset()
    modes: frozenset[ControllerOpMode] = frozenset()
    expected_values: int | None = 1

    def __post_init__(self) -> None:
        if not self.opcode or any(c.isspace() for c in self.opcode):
            raise ValueError(f"opcode must be a single token, got {self.opcode!r}")
        if self.channel is not None and self.slot is None:
            raise ValueError("channel requires a slot")
        if self.expected_values is not None and self.expected_values < 1:
            raise ValueError(f"expected_values must be >= 1, got {self.expected_values}")

    def __str__(self) -> str:
        return self.opcode


@dataclass(frozen=True)
class Ack:
    """Acknowledged reply; values are the delimited fields of the frame body."""

    values: tuple[str, ...]
    shape: ReplyShape = ReplyShape.COMMA


@dataclass(frozen=True)
class DeviceErrorReply:
    """Error reply from the controller (body starts with 'Error')."""

    code: int | None
    detail: str
    raw: str


Reply = Ack | DeviceErrorReply


@dataclass(frozen=True)
class SerialConfig:
    path: str
    baud: int = 115_200


@dataclass(frozen=True)
class NetworkConfig:
    host: str
    port: int = 2000


TransportConfig = SerialConfig | NetworkConfig


@dataclass(frozen=True)
class IpConfig:
    """LAN configuration as reported by /IPR."""

    mode: IpAddrMode
    ip_addr: str
    mask: str
    gateway: str
    mac_addr: str


@dataclass(frozen=True)
class ServodriveStatus:
    """Servodrive control loop status (FBST). Position errors are dimensionless."""

    enabled: bool
    finished: bool
    invalid_setpoints: tuple[bool, bool, bool]
    position_errors: tuple[int, int, int]
