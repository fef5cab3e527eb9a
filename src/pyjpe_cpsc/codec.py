"""Frame codec for the CPSC ASCII line protocol.

Request frame::

    <opcode> [<slot>] [<channel>] [<param> ...]\\r\\n

Tokens are separated by a single space. Controller-level opcodes carry a
leading '/' (``/VER``, ``/MODLIST``); module-level opcodes are addressed by
slot and optionally channel (``PGV 1 2 CLA2601``).

Reply frame is one of::

    Error[ <code>][:] <detail>\\r\\n       device error
    <v1>,<v2>,...\\r\\n                     comma-delimited values
    <v1>\\r<v2>\\r...\\r\\n                 carriage-return-delimited values

Decoding never raises anything but ProtocolError (or its subclasses).
"""

import math
import re
from decimal import Decimal
from enum import Enum

from .errors import ProtocolError, UnexpectedReplyError, ValidationError
from .types import Ack, Command, DeviceErrorReply, Param, Reply, ReplyShape

TERMINATOR = b"\r\n"
MAX_FRAME_SIZE = 4096

_ERROR_PREFIX = "Error"
_ERROR_PATTERN = re.compile(r"^Error\s*(?P<code>-?\d+)?\s*[:,\-]?\s*(?P<detail>.*)$", re.DOTALL)


def format_param(value: Param) -> str:
    """Render one parameter as its wire token."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError("param", value, f"Non-finite parameter: {value!r}")
        # Shortest round-trip digits in plain decimal; the controller does not parse exponents
        s = format(Decimal(repr(value)), "f")
        if "." in s:
            s = s.rstrip("0").rstrip(".")
        return "0" if s in ("", "-0") else s
    if isinstance(value, str):
        return value
    raise ValidationError("param", value, f"Unsupported parameter type: {type(value).__name__}")


def encode(command: Command) -> bytes:
    """Encode a Command into its exact wire bytes, terminator included."""
    tokens = [command.opcode]
    if command.slot is not None:
        tokens.append(command.slot.value)
    if command.channel is not None:
        tokens.append(command.channel.value)
    for p in command.params:
        tok = format_param(p)
        if not tok or any(c.isspace() for c in tok):
            raise ValidationError("param", p, f"Parameter must be a single non-empty token, got {tok!r}")
        tokens.append(tok)
    line = " ".join(tokens)
    try:
        return line.encode("ascii") + TERMINATOR
    except UnicodeEncodeError:
        raise ValidationError("param", line, f"Non-ASCII characters in command: {line!r}") from None


def _decode_error(body: str) -> DeviceErrorReply:
    m = _ERROR_PATTERN.match(body)
    if m is None:
        return DeviceErrorReply(code=None, detail=" ".join(body.split()), raw=body)
    code_str = m.group("code")
    detail = " ".join(m.group("detail").split())
    return DeviceErrorReply(code=int(code_str) if code_str else None, detail=detail, raw=body)


def decode(raw: bytes, command: Command | None = None) -> Reply:
    """
    Classify raw reply bytes (terminator included) into Ack or DeviceErrorReply.

    When command is given and declares expected_values, an Ack with a different
    value count raises UnexpectedReplyError.
    """
    opcode = command.opcode if command is not None else None
    if not isinstance(raw, (bytes, bytearray)):
        raise ProtocolError(f"Reply must be bytes, got {type(raw).__name__}", opcode=opcode)
    raw = bytes(raw)
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ProtocolError("Reply is not valid UTF-8", raw=raw, opcode=opcode) from None

    if not text.endswith(TERMINATOR.decode("ascii")):
        raise ProtocolError("Terminator not found", raw=raw, opcode=opcode)
    body = text[: -len(TERMINATOR)]
    if not body.strip():
        raise ProtocolError("Empty reply", raw=raw, opcode=opcode)

    if body.lstrip().startswith(_ERROR_PREFIX):
        return _decode_error(body.strip())

    if "\r" in body:
        values = tuple(v.strip() for v in body.split("\r") if v.strip())
        shape = ReplyShape.CR
    else:
        values = tuple(v.strip() for v in body.split(","))
        shape = ReplyShape.COMMA

    if command is not None and command.expected_values is not None and len(values) != command.expected_values:
        raise UnexpectedReplyError(
            f"Expected {command.expected_values} values for {opcode}, got {len(values)}",
            raw=raw,
            opcode=opcode,
        )
    return Ack(values=values, shape=shape)
