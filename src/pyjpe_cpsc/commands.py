"""Command set: typed factories for controller, CADM2, RSM and servodrive operations.

Every operation is a factory that validates its arguments and returns a
Request, the Command to send paired with the parser for its reply. All of
them go through execute(), the single dispatch path.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from . import codec
from .dispatcher import Dispatcher
from .errormap import DeviceErrorMap, get_default_error_map
from .errors import BoundError, DeviceError, UnexpectedReplyError, ValidationError
from .normalize import (
    check_bounds,
    check_int_bounds,
    normalize_channel,
    normalize_ipv4,
    normalize_slot,
    normalize_stage,
)
from .types import (
    Ack,
    Command,
    ControllerOpMode,
    Direction,
    IpAddrMode,
    IpConfig,
    Module,
    ModuleChannel,
    SerialInterface,
    ServodriveStatus,
    SetpointPosMode,
    Slot,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BAUD_BOUNDS = (9600, 1_000_000)
DRIVE_FACTOR_BOUNDS = (0.1, 3.0)
STEP_FREQ_BOUNDS = (0, 600)
RELATIVE_STEP_SIZE_BOUNDS = (0, 100)
NUM_STEPS_BOUNDS = (0, 50_000)
TEMP_BOUNDS = (0, 300)
SCANNER_LEVEL_BOUNDS = (0, 1023)
DUTY_BOUNDS = (10, 100)

FW_UPDATE_TIMEOUT = 120.0

_CADM = frozenset({Module.CADM})
_RSM = frozenset({Module.RSM})
_BASEDRIVE = frozenset({ControllerOpMode.BASEDRIVE})
_SERVODRIVE = frozenset({ControllerOpMode.SERVODRIVE})


@dataclass(frozen=True)
class Request(Generic[T]):
    """
    A Command plus how to read its reply.
    stages lists SKUs that must be in the controller's supported-stage list;
    next_mode is the operating mode the controller enters once the command is acknowledged.
    """

    command: Command
    parse: Callable[[Ack], T]
    next_mode: ControllerOpMode | None = None
    stages: tuple[str, ...] = ()
    timeout: float | None = None


COMMANDS: dict[str, Callable[..., Request[Any]]] = {}


def _register(fn: Callable[..., Request[T]]) -> Callable[..., Request[T]]:
    COMMANDS[fn.__name__] = fn
    return fn


# ============================================================================
# Reply parsers
# ============================================================================


def _ack(ack: Ack) -> None:
    logger.debug("ack: %s", ",".join(ack.values))


def _first(ack: Ack) -> str:
    return ack.values[0]


def _values(ack: Ack) -> list[str]:
    return list(ack.values)


def _float(ack: Ack) -> float:
    return float(ack.values[0])


def _int(ack: Ack) -> int:
    return int(ack.values[0])


def _three_floats(ack: Ack) -> tuple[float, float, float]:
    a, b, c = (float(v) for v in ack.values)
    return a, b, c


def _ip_config(ack: Ack) -> IpConfig:
    mode, ip_addr, mask, gateway, mac = ack.values
    return IpConfig(IpAddrMode(mode.upper()), ip_addr, mask, gateway, mac)


def _flag(value: str) -> bool:
    n = int(value)
    if n not in (0, 1):
        raise ValueError(f"expected 0 or 1, got {value!r}")
    return bool(n)


def _servodrive_status(ack: Ack) -> ServodriveStatus:
    v = ack.values
    return ServodriveStatus(
        enabled=_flag(v[0]),
        finished=_flag(v[1]),
        invalid_setpoints=(_flag(v[2]), _flag(v[3]), _flag(v[4])),
        position_errors=(int(v[5]), int(v[6]), int(v[7])),
    )


# ============================================================================
# Argument helpers
# ============================================================================


def _enum(enum_cls: type, raw: Any, param: str) -> Any:
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls[str(raw).strip().upper()]
    except KeyError:
        raise ValidationError(param, raw, f"Invalid {param}: {raw!r}") from None


def _drive_params(step_freq: int, r_step_size: int, temp: int, drive_factor: float) -> None:
    check_int_bounds("step_freq", step_freq, *STEP_FREQ_BOUNDS)
    check_int_bounds("r_step_size", r_step_size, *RELATIVE_STEP_SIZE_BOUNDS)
    check_int_bounds("temp", temp, *TEMP_BOUNDS)
    check_bounds("drive_factor", drive_factor, *DRIVE_FACTOR_BOUNDS)


def _token(raw: str, param: str) -> str:
    if not isinstance(raw, str) or not raw.strip() or any(c.isspace() for c in raw.strip()):
        raise ValidationError(param, raw, f"{param} must be a single token, got {raw!r}")
    return raw.strip()


# ============================================================================
# Controller-level commands
# ============================================================================


@_register
def get_fw_version() -> Request[str]:
    """Firmware version of the controller."""
    return Request(Command("/VER"), _first)


@_register
def get_module_list() -> Request[list[str]]:
    """Installed module per slot, in slot order."""
    return Request(Command("/MODLIST", expected_values=None), _values)


@_register
def get_supported_stages() -> Request[list[str]]:
    """Actuator and stage SKUs the controller knows."""
    return Request(Command("/STAGES", expected_values=None), _values)


@_register
def get_ip_config() -> Request[IpConfig]:
    """LAN configuration: mode, IP address, subnet mask, gateway, MAC address."""
    return Request(Command("/IPR", expected_values=5), _ip_config)


@_register
def set_ip_config(
    addr_mode: IpAddrMode | str,
    ip_addr: str = "0.0.0.0",
    mask: str = "0.0.0.0",
    gateway: str = "0.0.0.0",
) -> Request[None]:
    """Set the LAN configuration. Addresses are ignored (sent as 0.0.0.0) for DHCP."""
    mode = _enum(IpAddrMode, addr_mode, "addr_mode")
    addrs = (
        normalize_ipv4(ip_addr, "ip_addr"),
        normalize_ipv4(mask, "mask"),
        normalize_ipv4(gateway, "gateway"),
    )
    if mode is IpAddrMode.DHCP:
        addrs = ("0.0.0.0", "0.0.0.0", "0.0.0.0")
    return Request(Command("/IPS", params=(mode, *addrs)), _ack)


@_register
def get_baud_rate(interface: SerialInterface | str) -> Request[int]:
    """Baud rate setting of the USB or RS-422 interface."""
    ifc = _enum(SerialInterface, interface, "interface")
    return Request(Command("/GBR", params=(ifc,)), _int)


@_register
def set_baud_rate(interface: SerialInterface | str, baud: int) -> Request[None]:
    """Set the baud rate of the USB or RS-422 interface."""
    ifc = _enum(SerialInterface, interface, "interface")
    check_int_bounds("baud", baud, *BAUD_BOUNDS)
    return Request(Command("/SBR", params=(ifc, baud)), _ack)


@_register
def get_mod_fw_version(slot: Slot | int | str) -> Request[str]:
    """Firmware version of the module in slot."""
    return Request(Command("FIV", normalize_slot(slot)), _first)


@_register
def start_mod_fw_update(slot: Slot | int | str, filename: str) -> Request[None]:
    """
    Update the firmware of the module in slot from a file already uploaded to the
    controller via its web interface. The controller only answers once the update
    is done, hence the long timeout.
    """
    fname = _token(filename, "filename")
    return Request(
        Command("FU", normalize_slot(slot), params=(fname,), expected_values=None),
        _ack,
        timeout=FW_UPDATE_TIMEOUT,
    )


# ============================================================================
# CADM2 commands
# ============================================================================


@_register
def get_fail_safe_state(slot: Slot | int | str) -> Request[str]:
    return Request(Command("GFS", normalize_slot(slot), modules=_CADM), _first)


@_register
def move_stage_open(
    slot: Slot | int | str,
    direction: Direction | str,
    step_freq: int,
    r_step_size: int,
    n_steps: int,
    temp: int,
    stage: str,
    drive_factor: float,
) -> Request[None]:
    """Move an actuator in open loop: n_steps at step_freq Hz, r_step_size % of max step, at temp K."""
    s = normalize_slot(slot)
    d = _enum(Direction, direction, "direction")
    _drive_params(step_freq, r_step_size, temp, drive_factor)
    check_int_bounds("n_steps", n_steps, *NUM_STEPS_BOUNDS)
    sku = normalize_stage(stage)
    cmd = Command(
        "MOV",
        s,
        params=(d, step_freq, r_step_size, n_steps, temp, sku, float(drive_factor)),
        modules=_CADM,
        modes=_BASEDRIVE,
    )
    return Request(cmd, _ack, stages=(sku,))


@_register
def stop_stage(slot: Slot | int | str) -> Request[None]:
    """Stop a MOV, leave external input mode (flexdrive) or disable scan mode."""
    cmd = Command(
        "STP",
        normalize_slot(slot),
        modules=_CADM,
        modes=frozenset({ControllerOpMode.BASEDRIVE, ControllerOpMode.FLEXDRIVE}),
    )
    return Request(cmd, _ack, next_mode=ControllerOpMode.BASEDRIVE)


@_register
def enable_scan_mode(slot: Slot | int | str, level: int) -> Request[None]:
    """
    Output a DC level instead of the drive signal (e.g. for a scanner piezo).
    level 0 is ~0 V (-30 V w.r.t. REF), 1023 is ~150 V (+120 V w.r.t. REF).
    """
    s = normalize_slot(slot)
    check_int_bounds("level", level, *SCANNER_LEVEL_BOUNDS)
    cmd = Command("SDC", s, params=(level,), modules=_CADM, modes=_BASEDRIVE)
    return Request(cmd, _ack, next_mode=ControllerOpMode.BASEDRIVE)


@_register
def enable_ext_input_mode(
    slot: Slot | int | str,
    direction: Direction | str,
    step_freq: int,
    r_step_size: int,
    temp: int,
    stage: str,
    drive_factor: float,
) -> Request[None]:
    """
    Put the CADM in external control (flexdrive). step_freq is the frequency at
    maximum absolute input; direction sets polarity of the input signal.
    """
    s = normalize_slot(slot)
    d = _enum(Direction, direction, "direction")
    _drive_params(step_freq, r_step_size, temp, drive_factor)
    sku = normalize_stage(stage)
    cmd = Command(
        "EXT",
        s,
        params=(d, step_freq, r_step_size, temp, sku, float(drive_factor)),
        modules=_CADM,
        modes=frozenset({ControllerOpMode.BASEDRIVE, ControllerOpMode.FLEXDRIVE}),
    )
    return Request(cmd, _ack, next_mode=ControllerOpMode.FLEXDRIVE, stages=(sku,))


# ============================================================================
# RSM commands
# ============================================================================


@_register
def get_current_position(slot: Slot | int | str, ch: ModuleChannel | int | str, stage: str) -> Request[float]:
    """Position in metres of the resistive linear sensor on channel ch."""
    sku = normalize_stage(stage)
    cmd = Command("PGV", normalize_slot(slot), normalize_channel(ch), params=(sku,), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _float, stages=(sku,))


@_register
def get_current_position_all(
    slot: Slot | int | str,
    stage_ch1: str,
    stage_ch2: str,
    stage_ch3: str,
) -> Request[tuple[float, float, float]]:
    """Positions in metres of all three RSM channels."""
    skus = (normalize_stage(stage_ch1), normalize_stage(stage_ch2), normalize_stage(stage_ch3))
    cmd = Command("PGVA", normalize_slot(slot), params=skus, modules=_RSM, modes=_BASEDRIVE, expected_values=3)
    return Request(cmd, _three_floats, stages=skus)


@_register
def set_neg_end_stop(slot: Slot | int | str, ch: ModuleChannel | int | str) -> Request[None]:
    """Store the current sensor position of channel ch as its negative end-stop (RLS calibration)."""
    cmd = Command("MIS", normalize_slot(slot), normalize_channel(ch), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _ack)


@_register
def set_pos_end_stop(slot: Slot | int | str, ch: ModuleChannel | int | str) -> Request[None]:
    """Store the current sensor position of channel ch as its positive end-stop (RLS calibration)."""
    cmd = Command("MAS", normalize_slot(slot), normalize_channel(ch), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _ack)


@_register
def read_neg_end_stop(slot: Slot | int | str, ch: ModuleChannel | int | str, stage: str) -> Request[float]:
    sku = normalize_stage(stage)
    cmd = Command("MIR", normalize_slot(slot), normalize_channel(ch), params=(sku,), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _float, stages=(sku,))


@_register
def read_pos_end_stop(slot: Slot | int | str, ch: ModuleChannel | int | str, stage: str) -> Request[float]:
    sku = normalize_stage(stage)
    cmd = Command("MAR", normalize_slot(slot), normalize_channel(ch), params=(sku,), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _float, stages=(sku,))


@_register
def reset_end_stops(slot: Slot | int | str, ch: ModuleChannel | int | str) -> Request[None]:
    """Restore both end-stops of channel ch from controller NV-RAM."""
    cmd = Command("MMR", normalize_slot(slot), normalize_channel(ch), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _ack)


@_register
def set_excitation_ds(slot: Slot | int | str, duty: int) -> Request[None]:
    """Sensor excitation duty cycle for all channels, in percent: 0 or 10-100."""
    check_int_bounds("duty", duty, 0, DUTY_BOUNDS[1])
    if 0 < duty < DUTY_BOUNDS[0]:
        raise BoundError("duty", duty, *DUTY_BOUNDS, f"Duty cycle must be 0 or 10-100, got {duty}")
    cmd = Command("EXS", normalize_slot(slot), params=(duty,), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _ack)


@_register
def read_excitation_ds(slot: Slot | int | str) -> Request[int]:
    cmd = Command("EXR", normalize_slot(slot), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _int)


@_register
def save_rsm_nvram(slot: Slot | int | str) -> Request[None]:
    """Persist excitation duty cycle and both end-stops of the RSM to controller NV-RAM."""
    cmd = Command("RSS", normalize_slot(slot), modules=_RSM, modes=_BASEDRIVE)
    return Request(cmd, _ack)


# ============================================================================
# Servodrive
# ============================================================================


@_register
def enable_servodrive(
    stage_1: str,
    init_step_freq_1: int,
    stage_2: str,
    init_step_freq_2: int,
    stage_3: str,
    init_step_freq_3: int,
    temp: int,
    drive_factor: float,
) -> Request[None]:
    """Start position feedback control with up to three stages."""
    for name, freq in (
        ("init_step_freq_1", init_step_freq_1),
        ("init_step_freq_2", init_step_freq_2),
        ("init_step_freq_3", init_step_freq_3),
    ):
        check_int_bounds(name, freq, *STEP_FREQ_BOUNDS)
    check_int_bounds("temp", temp, *TEMP_BOUNDS)
    check_bounds("drive_factor", drive_factor, *DRIVE_FACTOR_BOUNDS)
    skus = (normalize_stage(stage_1), normalize_stage(stage_2), normalize_stage(stage_3))
    cmd = Command(
        "FBEN",
        params=(
            skus[0],
            init_step_freq_1,
            skus[1],
            init_step_freq_2,
            skus[2],
            init_step_freq_3,
            float(drive_factor),
            temp,
        ),
    )
    return Request(cmd, _ack, next_mode=ControllerOpMode.SERVODRIVE, stages=skus)


@_register
def disable_servodrive() -> Request[None]:
    return Request(Command("FBXT", modes=_SERVODRIVE), _ack, next_mode=ControllerOpMode.BASEDRIVE)


@_register
def servodrive_em_stop() -> Request[None]:
    """Abort the control loop; actuators stop where they are."""
    return Request(Command("FBES", modes=_SERVODRIVE), _ack, next_mode=ControllerOpMode.BASEDRIVE)


@_register
def go_to_setpoint(
    set_point_1: float,
    pos_mode_1: SetpointPosMode | str,
    set_point_2: float,
    pos_mode_2: SetpointPosMode | str,
    set_point_3: float,
    pos_mode_3: SetpointPosMode | str,
) -> Request[None]:
    """
    Move to setpoints (metres for linear stages, radians for rotary). Use 0 for an
    output with nothing connected.
    """
    params: list[Any] = []
    for i, (sp, mode) in enumerate(((set_point_1, pos_mode_1), (set_point_2, pos_mode_2), (set_point_3, pos_mode_3)), 1):
        if isinstance(sp, bool) or not isinstance(sp, (int, float)) or not math.isfinite(sp):
            raise ValidationError(f"set_point_{i}", sp, f"set_point_{i} must be a finite number, got {sp!r}")
        params += [float(sp), _enum(SetpointPosMode, mode, f"pos_mode_{i}")]
    return Request(Command("FBCS", params=tuple(params), modes=_SERVODRIVE), _ack)


@_register
def get_servodrive_status() -> Request[ServodriveStatus]:
    return Request(Command("FBST", modes=_SERVODRIVE, expected_values=8), _servodrive_status)


# ============================================================================
# Dispatch path and introspection
# ============================================================================


def execute(
    dispatcher: Dispatcher,
    request: Request[T],
    *,
    timeout: float | None = None,
    error_map: DeviceErrorMap | None = None,
) -> T:
    """
    Send request.command and parse the Ack into the operation's result type.
    Device errors are re-raised as their named subclass when the error map knows them.
    """
    command = request.command
    bound = timeout if timeout is not None else request.timeout
    try:
        ack = dispatcher.send(command, timeout=bound)
    except DeviceError as e:
        mapped = (error_map if error_map is not None else get_default_error_map()).resolve(e)
        if mapped is e:
            raise
        raise mapped from e
    try:
        return request.parse(ack)
    except (ValueError, IndexError) as e:
        raise UnexpectedReplyError(
            f"Cannot parse reply to {command.opcode}: {','.join(ack.values)!r}",
            opcode=command.opcode,
        ) from e


def explain(request: Request[Any]) -> dict[str, Any]:
    """Return the wire frame and routing metadata of request without sending it."""
    cmd = request.command
    return {
        "opcode": cmd.opcode,
        "frame": codec.encode(cmd).decode("ascii"),
        "slot": cmd.slot.value if cmd.slot is not None else None,
        "channel": cmd.channel.value if cmd.channel is not None else None,
        "modules": sorted(m.value for m in cmd.modules),
        "modes": sorted(m.value for m in cmd.modes),
        "expected_values": cmd.expected_values,
        "next_mode": request.next_mode.value if request.next_mode is not None else None,
        "stages": list(request.stages),
    }
