"""DeviceErrorMap: load packaged device-error table via importlib.resources, map replies to named errors."""

import json
import logging
from dataclasses import dataclass
from importlib import resources
from typing import Any

from .errors import (
    DeviceError,
    ModeRejectedError,
    ParameterRejectedError,
    SlotEmptyError,
    StageRejectedError,
    UnknownCommandError,
)

logger = logging.getLogger(__name__)

_RESOURCE_PKG = "pyjpe_cpsc.data"
_RESOURCE_NAME = "device_errors.json"

ERROR_CLASSES: dict[str, type[DeviceError]] = {
    "slot_empty": SlotEmptyError,
    "unknown_command": UnknownCommandError,
    "parameter_rejected": ParameterRejectedError,
    "stage_rejected": StageRejectedError,
    "mode_rejected": ModeRejectedError,
}


@dataclass(frozen=True)
class ErrorDef:
    """One named device error: the numeric codes and detail phrases that identify it."""

    name: str
    error_class: type[DeviceError]
    codes: frozenset[int]
    phrases: tuple[str, ...]


def _parse_entry(raw: dict[str, Any]) -> ErrorDef:
    """Build ErrorDef from a JSON entry (name, codes, phrases)."""
    name = raw["name"]
    try:
        error_class = ERROR_CLASSES[name]
    except KeyError:
        raise ValueError(f"Unknown device error name {name!r}") from None
    codes = frozenset(int(c) for c in raw.get("codes") or ())
    phrases = tuple(str(p).lower() for p in raw.get("phrases") or ())
    if not codes and not phrases:
        raise ValueError(f"Device error {name!r} has neither codes nor phrases")
    return ErrorDef(name=name, error_class=error_class, codes=codes, phrases=phrases)


class DeviceErrorMap:
    """
    Maps controller error replies to named DeviceError subclasses.
    A reply matches by numeric code first, then by case-insensitive detail phrase.
    """

    def __init__(self, map_override: list[dict[str, Any]] | None = None) -> None:
        if map_override is not None:
            entries = map_override
        else:
            try:
                with resources.files(_RESOURCE_PKG).joinpath(_RESOURCE_NAME).open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                raise FileNotFoundError(f"Device error resource not found: {_RESOURCE_PKG}/{_RESOURCE_NAME}") from None
            entries = data["entries"] if isinstance(data, dict) else data

        self._defs: list[ErrorDef] = []
        self._by_code: dict[int, ErrorDef] = {}
        seen: set[str] = set()
        for entry in entries:
            defn = _parse_entry(entry)
            if defn.name in seen:
                raise ValueError(f"Duplicate device error in map: {defn.name}")
            seen.add(defn.name)
            for code in defn.codes:
                if code in self._by_code:
                    raise ValueError(f"Device error code {code} mapped twice")
                self._by_code[code] = defn
            self._defs.append(defn)
        logger.debug("DeviceErrorMap loaded: %d entries", len(self._defs))

    def lookup(self, code: int | None, detail: str) -> ErrorDef | None:
        """Return the ErrorDef matching code or detail, or None."""
        if code is not None and code in self._by_code:
            return self._by_code[code]
        text = detail.lower()
        for defn in self._defs:
            if any(p in text for p in defn.phrases):
                return defn
        return None

    def resolve(self, error: DeviceError) -> DeviceError:
        """Return a named subclass instance for error, or error itself when nothing matches."""
        defn = self.lookup(error.code, error.detail)
        if defn is None or isinstance(error, defn.error_class):
            return error
        return defn.error_class(error.code, error.detail, opcode=error.opcode)

    def __len__(self) -> int:
        return len(self._defs)


_default_map: DeviceErrorMap | None = None


def get_default_error_map() -> DeviceErrorMap:
    """Load (once) and return the packaged DeviceErrorMap."""
    global _default_map
    if _default_map is None:
        _default_map = DeviceErrorMap()
    return _default_map
