"""CPSCController: high-level context over the Dispatcher with typed RSM / CADM2 / servodrive methods."""

import logging
import threading
from typing import Any, TypeVar

from . import commands
from .commands import Request
from .dispatcher import Dispatcher
from .errormap import DeviceErrorMap
from .errors import UnexpectedReplyError, UnsupportedCommandError, UnsupportedStageError
from .types import (
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
    TransportConfig,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SlotLike = Slot | int | str
ChannelLike = ModuleChannel | int | str

_EMPTY_MARKERS = frozenset({"", "-", "none", "empty", "n/a"})


def parse_module(entry: str) -> Module:
    """Map a /MODLIST entry (e.g. 'CADM2 v1.4', 'RSM', '-') to a Module kind."""
    s = entry.strip().lower()
    if s in _EMPTY_MARKERS:
        return Module.EMPTY
    for kind in Module:
        if kind is not Module.EMPTY and s.startswith(kind.value):
            return kind
    raise UnexpectedReplyError(f"Unknown module: {entry!r}", opcode="/MODLIST")


class CPSCController:
    """
    Session with one CPSC1 controller. Build it with ControllerBuilder; it owns the
    Dispatcher (and through it the transport) until close().

    Before each command the controller checks, without I/O, that the command is valid in
    the tracked operating mode, that the addressed slot holds a matching module (once the
    module list is known) and that any stage SKU is in the supported-stage list.
    Every public command method takes an optional keyword-only timeout in seconds.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        config: TransportConfig | None = None,
        error_map: DeviceErrorMap | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._config = config
        self._error_map = error_map
        self._state_lock = threading.RLock()
        self._op_mode = ControllerOpMode.BASEDRIVE
        self._fw_version: str | None = None
        self._modules: dict[Slot, Module] | None = None
        self._supported_stages: list[str] | None = None

    # ------------------------------------------------------------------ internals

    def _check(self, request: Request[Any], timeout: float | None = None) -> None:
        cmd = request.command
        with self._state_lock:
            mode = self._op_mode
            modules = self._modules
        if cmd.modes and mode not in cmd.modes:
            raise UnsupportedCommandError(cmd.opcode, f"Unsupported command {cmd.opcode!r} in mode {mode.value!r}")
        if cmd.modules and cmd.slot is not None and modules is not None:
            installed = modules.get(cmd.slot, Module.EMPTY)
            if installed not in cmd.modules:
                raise UnsupportedCommandError(
                    cmd.opcode,
                    f"Unsupported command {cmd.opcode!r} for module {installed.value!r} in slot {cmd.slot.value}",
                )
        if request.stages:
            supported = self._supported_stages
            if supported is None:
                supported = self.get_supported_stages(timeout=timeout)
            for stage in request.stages:
                if stage not in supported:
                    raise UnsupportedStageError(stage)

    def _execute(self, request: Request[T], timeout: float | None = None) -> T:
        self._check(request, timeout)
        result = commands.execute(self._dispatcher, request, timeout=timeout, error_map=self._error_map)
        if request.next_mode is not None:
            with self._state_lock:
                if self._op_mode is not request.next_mode:
                    logger.info("Operating mode %s -> %s", self._op_mode.value, request.next_mode.value)
                    self._op_mode = request.next_mode
        return result

    # ------------------------------------------------------------------ lifecycle

    @property
    def config(self) -> TransportConfig | None:
        return self._config

    @property
    def op_mode(self) -> ControllerOpMode:
        with self._state_lock:
            return self._op_mode

    @property
    def modules(self) -> dict[Slot, Module] | None:
        """Installed module per slot from the last module-list query, or None if never read."""
        with self._state_lock:
            return dict(self._modules) if self._modules is not None else None

    @property
    def usable(self) -> bool:
        """False once an I/O failure has invalidated the transport."""
        return self._dispatcher.usable

    def close(self) -> None:
        """Close the transport."""
        self._dispatcher.close()

    def __enter__(self) -> "CPSCController":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def explain(self, name: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        """Return the frame and routing metadata command `name` would send (for debugging)."""
        try:
            factory = commands.COMMANDS[name]
        except KeyError:
            raise UnsupportedCommandError(name, f"Unknown command: {name!r}") from None
        return commands.explain(factory(*args, **kwargs))

    # ------------------------------------------------------------------ controller

    def get_fw_version(self, *, timeout: float | None = None) -> str:
        """Firmware version of the controller; cached after the first successful read."""
        with self._state_lock:
            if self._fw_version is not None:
                return self._fw_version
        version = self._execute(commands.get_fw_version(), timeout)
        with self._state_lock:
            self._fw_version = version
        return version

    def get_mod_fw_version(self, slot: SlotLike, *, timeout: float | None = None) -> str:
        return self._execute(commands.get_mod_fw_version(slot), timeout)

    def get_module_list(self, *, timeout: float | None = None) -> list[str]:
        """Installed modules in slot order; also refreshes the module table used for command checks."""
        entries = self._execute(commands.get_module_list(), timeout)
        table = {slot: parse_module(entry) for slot, entry in zip(Slot, entries)}
        for slot in Slot:
            table.setdefault(slot, Module.EMPTY)
        with self._state_lock:
            self._modules = table
        logger.debug("Module table: %s", {s.value: m.value for s, m in table.items()})
        return entries

    def get_supported_stages(self, *, timeout: float | None = None) -> list[str]:
        """Supported actuator/stage SKUs; also refreshes the stage cache."""
        stages = self._execute(commands.get_supported_stages(), timeout)
        with self._state_lock:
            self._supported_stages = list(stages)
        return stages

    def get_ip_config(self, *, timeout: float | None = None) -> IpConfig:
        return self._execute(commands.get_ip_config(), timeout)

    def set_ip_config(
        self,
        addr_mode: IpAddrMode | str,
        ip_addr: str = "0.0.0.0",
        mask: str = "0.0.0.0",
        gateway: str = "0.0.0.0",
        *,
        timeout: float | None = None,
    ) -> None:
        self._execute(commands.set_ip_config(addr_mode, ip_addr, mask, gateway), timeout)

    def get_baud_rate(self, interface: SerialInterface | str, *, timeout: float | None = None) -> int:
        return self._execute(commands.get_baud_rate(interface), timeout)

    def set_baud_rate(self, interface: SerialInterface | str, baud: int, *, timeout: float | None = None) -> None:
        self._execute(commands.set_baud_rate(interface, baud), timeout)

    def start_mod_fw_update(self, slot: SlotLike, filename: str, *, timeout: float | None = None) -> None:
        """Blocks until the module reports the update finished (up to two minutes by default)."""
        self._execute(commands.start_mod_fw_update(slot, filename), timeout)

    # ------------------------------------------------------------------ CADM2

    def get_fail_safe_state(self, slot: SlotLike, *, timeout: float | None = None) -> str:
        return self._execute(commands.get_fail_safe_state(slot), timeout)

    def move_stage_open(
        self,
        slot: SlotLike,
        direction: Direction | str,
        step_freq: int,
        r_step_size: int,
        n_steps: int,
        temp: int,
        stage: str,
        drive_factor: float,
        *,
        timeout: float | None = None,
    ) -> None:
        self._execute(
            commands.move_stage_open(slot, direction, step_freq, r_step_size, n_steps, temp, stage, drive_factor),
            timeout,
        )

    def stop_stage(self, slot: SlotLike, *, timeout: float | None = None) -> None:
        self._execute(commands.stop_stage(slot), timeout)

    def enable_scan_mode(self, slot: SlotLike, level: int, *, timeout: float | None = None) -> None:
        self._execute(commands.enable_scan_mode(slot, level), timeout)

    def enable_ext_input_mode(
        self,
        slot: SlotLike,
        direction: Direction | str,
        step_freq: int,
        r_step_size: int,
        temp: int,
        stage: str,
        drive_factor: float,
        *,
        timeout: float | None = None,
    ) -> None:
        self._execute(
            commands.enable_ext_input_mode(slot, direction, step_freq, r_step_size, temp, stage, drive_factor),
            timeout,
        )

    # ------------------------------------------------------------------ RSM

    def get_current_position(
        self, slot: SlotLike, ch: ChannelLike, stage: str, *, timeout: float | None = None
    ) -> float:
        return self._execute(commands.get_current_position(slot, ch, stage), timeout)

    def get_current_position_all(
        self,
        slot: SlotLike,
        stage_ch1: str,
        stage_ch2: str,
        stage_ch3: str,
        *,
        timeout: float | None = None,
    ) -> tuple[float, float, float]:
        return self._execute(commands.get_current_position_all(slot, stage_ch1, stage_ch2, stage_ch3), timeout)

    def set_neg_end_stop(self, slot: SlotLike, ch: ChannelLike, *, timeout: float | None = None) -> None:
        self._execute(commands.set_neg_end_stop(slot, ch), timeout)

    def set_pos_end_stop(self, slot: SlotLike, ch: ChannelLike, *, timeout: float | None = None) -> None:
        self._execute(commands.set_pos_end_stop(slot, ch), timeout)

    def read_neg_end_stop(self, slot: SlotLike, ch: ChannelLike, stage: str, *, timeout: float | None = None) -> float:
        return self._execute(commands.read_neg_end_stop(slot, ch, stage), timeout)

    def read_pos_end_stop(self, slot: SlotLike, ch: ChannelLike, stage: str, *, timeout: float | None = None) -> float:
        return self._execute(commands.read_pos_end_stop(slot, ch, stage), timeout)

    def reset_end_stops(self, slot: SlotLike, ch: ChannelLike, *, timeout: float | None = None) -> None:
        self._execute(commands.reset_end_stops(slot, ch), timeout)

    def set_excitation_ds(self, slot: SlotLike, duty: int, *, timeout: float | None = None) -> None:
        self._execute(commands.set_excitation_ds(slot, duty), timeout)

    def read_excitation_ds(self, slot: SlotLike, *, timeout: float | None = None) -> int:
        return self._execute(commands.read_excitation_ds(slot), timeout)

    def save_rsm_nvram(self, slot: SlotLike, *, timeout: float | None = None) -> None:
        self._execute(commands.save_rsm_nvram(slot), timeout)

    # ------------------------------------------------------------------ servodrive

    def enable_servodrive(
        self,
        stage_1: str,
        init_step_freq_1: int,
        stage_2: str,
        init_step_freq_2: int,
        stage_3: str,
        init_step_freq_3: int,
        temp: int,
        drive_factor: float,
        *,
        timeout: float | None = None,
    ) -> None:
        self._execute(
            commands.enable_servodrive(
                stage_1, init_step_freq_1, stage_2, init_step_freq_2, stage_3, init_step_freq_3, temp, drive_factor
            ),
            timeout,
        )

    def disable_servodrive(self, *, timeout: float | None = None) -> None:
        self._execute(commands.disable_servodrive(), timeout)

    def servodrive_em_stop(self, *, timeout: float | None = None) -> None:
        self._execute(commands.servodrive_em_stop(), timeout)

    def go_to_setpoint(
        self,
        set_point_1: float,
        pos_mode_1: SetpointPosMode | str,
        set_point_2: float,
        pos_mode_2: SetpointPosMode | str,
        set_point_3: float,
        pos_mode_3: SetpointPosMode | str,
        *,
        timeout: float | None = None,
    ) -> None:
        self._execute(
            commands.go_to_setpoint(set_point_1, pos_mode_1, set_point_2, pos_mode_2, set_point_3, pos_mode_3),
            timeout,
        )

    def get_servodrive_status(self, *, timeout: float | None = None) -> ServodriveStatus:
        return self._execute(commands.get_servodrive_status(), timeout)
