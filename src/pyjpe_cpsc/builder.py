"""ControllerBuilder: pick exactly one transport, then build() opens it and returns a CPSCController."""

import logging
import os
from collections.abc import Mapping

from .client import CPSCController
from .dispatcher import DEFAULT_TIMEOUT, Dispatcher
from .errormap import DeviceErrorMap
from .errors import ConfigurationError, ConnectError, CPSCError, TransportIOError, ValidationError
from .normalize import parse_network_address
from .transport import DEFAULT_BAUD, DEFAULT_CONNECT_TIMEOUT, TCP_PORT, open_transport
from .types import NetworkConfig, SerialConfig, TransportConfig

logger = logging.getLogger(__name__)

BAUD_RANGE = (9600, 1_000_000)

ENV_SERIAL = "PYJPE_SERIAL"
ENV_NETWORK = "PYJPE_NETWORK"
ENV_BAUD = "PYJPE_BAUD"
ENV_TIMEOUT = "PYJPE_TIMEOUT"
ENV_CONNECT_TIMEOUT = "PYJPE_CONNECT_TIMEOUT"


def _positive(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive number of seconds, got {value!r}")
    return float(value)


class ControllerBuilder:
    """
    Usage::

        ctrl = ControllerBuilder().serial("/dev/ttyUSB0").build()
        ctrl = ControllerBuilder().network("169.254.10.10").timeout(1.0).build()

    Exactly one of serial() / network() must be chosen; build() raises
    ConfigurationError otherwise, and ConnectError if the device cannot be opened.
    """

    def __init__(self) -> None:
        self._choices: list[TransportConfig] = []
        self._timeout = DEFAULT_TIMEOUT
        self._connect_timeout = DEFAULT_CONNECT_TIMEOUT
        self._error_map: DeviceErrorMap | None = None

    def serial(self, path: str, baud: int = DEFAULT_BAUD) -> "ControllerBuilder":
        """Connect over USB or RS-422 (e.g. 'COM15', '/dev/ttyUSB0')."""
        if not isinstance(path, str) or not path.strip():
            raise ConfigurationError(f"Serial path must be a non-empty string, got {path!r}")
        if isinstance(baud, bool) or not isinstance(baud, int) or not BAUD_RANGE[0] <= baud <= BAUD_RANGE[1]:
            raise ConfigurationError(f"Baud rate out of range {BAUD_RANGE[0]}-{BAUD_RANGE[1]}, got {baud!r}")
        self._choices.append(SerialConfig(path.strip(), baud))
        return self

    def network(self, address: str) -> "ControllerBuilder":
        """Connect over TCP to 'host' (port 2000) or 'host:port'."""
        try:
            host, port = parse_network_address(address, TCP_PORT)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
        self._choices.append(NetworkConfig(host, port))
        return self

    def timeout(self, seconds: float) -> "ControllerBuilder":
        """Default reply timeout per exchange."""
        self._timeout = _positive("timeout", seconds)
        return self

    def connect_timeout(self, seconds: float) -> "ControllerBuilder":
        self._connect_timeout = _positive("connect_timeout", seconds)
        return self

    def error_map(self, error_map: DeviceErrorMap) -> "ControllerBuilder":
        """Replace the packaged device-error table."""
        self._error_map = error_map
        return self

    @property
    def config(self) -> TransportConfig:
        """The selected transport configuration. Raises ConfigurationError unless exactly one was chosen."""
        if not self._choices:
            raise ConfigurationError("No transport selected: call serial() or network() before build()")
        if len(self._choices) > 1:
            kinds = ", ".join(type(c).__name__ for c in self._choices)
            raise ConfigurationError(f"Exactly one transport must be selected, got: {kinds}")
        return self._choices[0]

    def build(self) -> CPSCController:
        """
        Open the transport and return the controller. The module list is read once so
        module checks are active from the start; a silent or erroring device only logs a
        warning, but an I/O failure closes everything and raises ConnectError.
        """
        config = self.config
        transport = open_transport(config, self._connect_timeout)
        ctrl = CPSCController(Dispatcher(transport, self._timeout), config, self._error_map)
        try:
            ctrl.get_module_list()
        except TransportIOError as e:
            ctrl.close()
            raise ConnectError(f"Connection to {config} failed during startup: {e}", target=str(config), cause=e) from e
        except CPSCError as e:
            logger.warning("Could not read module list from %s: %s", config, e)
        return ctrl

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ControllerBuilder":
        """
        Builder configured from PYJPE_SERIAL / PYJPE_NETWORK (and optional PYJPE_BAUD,
        PYJPE_TIMEOUT, PYJPE_CONNECT_TIMEOUT). Setting both or neither transport
        variable surfaces as ConfigurationError at build().
        """
        env = os.environ if environ is None else environ
        builder = cls()
        try:
            baud = int(env.get(ENV_BAUD, DEFAULT_BAUD))
            timeout = float(env.get(ENV_TIMEOUT, DEFAULT_TIMEOUT))
            connect_timeout = float(env.get(ENV_CONNECT_TIMEOUT, DEFAULT_CONNECT_TIMEOUT))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric environment value: {e}") from e
        if env.get(ENV_SERIAL):
            builder.serial(env[ENV_SERIAL], baud)
        if env.get(ENV_NETWORK):
            builder.network(env[ENV_NETWORK])
        return builder.timeout(timeout).connect_timeout(connect_timeout)
