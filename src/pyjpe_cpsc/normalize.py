"""Normalize and validate caller arguments: slots, channels, stage SKUs, addresses, bounds."""

import ipaddress
import re

from .errors import BoundError, ValidationError
from .types import ModuleChannel, Slot

_WORDS = {"one": "1", "two": "2", "three": "3", "four": "4"}

# Stage SKUs are single printable ASCII tokens; the frame is space-delimited
_STAGE_PATTERN = re.compile(r"^[\x21-\x7e]+$")

# host, or host:port (IPv4 / hostname only; the controller has no IPv6 stack)
_ADDRESS_PATTERN = re.compile(r"^(?P<host>[A-Za-z0-9.\-]+)(:(?P<port>\d{1,5}))?$")


def _token(raw: object) -> str:
    if isinstance(raw, bool):
        return ""
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, str):
        s = raw.strip().lower()
        return _WORDS.get(s, s)
    return ""


def normalize_slot(raw: Slot | int | str) -> Slot:
    """
    Accept a Slot, an int 1-4, or '1'/'one' style strings (case-insensitive).

    Raises ValidationError for anything else.
    """
    if isinstance(raw, Slot):
        return raw
    try:
        return Slot(_token(raw))
    except ValueError:
        raise ValidationError("slot", raw, f"Supported slots are 1-4 or one-four, got {raw!r}") from None


def normalize_channel(raw: ModuleChannel | int | str) -> ModuleChannel:
    """Accept a ModuleChannel, an int 1-3, or '1'/'one' style strings."""
    if isinstance(raw, ModuleChannel):
        return raw
    try:
        return ModuleChannel(_token(raw))
    except ValueError:
        raise ValidationError("channel", raw, f"Invalid channel: {raw!r}") from None


def normalize_stage(raw: str) -> str:
    """Strip a stage SKU and check it is one printable ASCII token."""
    if not isinstance(raw, str):
        raise ValidationError("stage", raw, f"Stage must be a string, got {type(raw).__name__}")
    s = raw.strip()
    if not _STAGE_PATTERN.match(s):
        raise ValidationError("stage", raw, f"Malformed stage SKU: {raw!r}")
    return s


def normalize_ipv4(raw: str, param: str = "ip_addr") -> str:
    """Return the dotted-quad form of an IPv4 address."""
    try:
        return str(ipaddress.IPv4Address(raw.strip()))
    except (ValueError, AttributeError):
        raise ValidationError(param, raw, f"Invalid IPv4 address for {param}: {raw!r}") from None


def parse_network_address(raw: str, default_port: int) -> tuple[str, int]:
    """Split 'host' or 'host:port' into (host, port)."""
    m = _ADDRESS_PATTERN.match(raw.strip()) if isinstance(raw, str) else None
    if not m:
        raise ValidationError("address", raw, f"Malformed network address: {raw!r}")
    port = int(m.group("port")) if m.group("port") else default_port
    if not 1 <= port <= 65535:
        raise BoundError("port", port, 1, 65535)
    return m.group("host"), port


def check_bounds(param: str, value: int | float, lo: int | float, hi: int | float) -> None:
    """Raise BoundError unless lo <= value <= hi (bools are rejected)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(param, value, f"{param} must be a number, got {value!r}")
    if not lo <= value <= hi:
        raise BoundError(param, value, lo, hi)


def check_int_bounds(param: str, value: int, lo: int, hi: int) -> None:
    """Like check_bounds but the value must be an int."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(param, value, f"{param} must be an integer, got {value!r}")
    check_bounds(param, value, lo, hi)
