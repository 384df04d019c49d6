"""Lumen VM value representation - type tags, tables, userdata and host functions."""

import math
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, Tuple

from lumen.lumen_error import LumenRuntimeError


# Pseudo-index addressing the registry table
REGISTRY_INDEX = -1001000

# Request all results from a call
MULTRET = -1

# Registry fields
REGISTRY_GLOBALS = "_G"
REGISTRY_LOADED = "_LOADED"
REGISTRY_PRELOAD = "_PRELOAD"


class LumenType(IntEnum):
    """VM type tags, numbered as in the VM's C interface."""
    NONE = -1
    NIL = 0
    BOOLEAN = 1
    LIGHTUSERDATA = 2
    NUMBER = 3
    STRING = 4
    TABLE = 5
    FUNCTION = 6
    USERDATA = 7
    THREAD = 8

    def type_name(self) -> str:
        """Return the VM's name for this type tag."""
        return _TYPE_NAMES[self]


_TYPE_NAMES = {
    LumenType.NONE: "no value",
    LumenType.NIL: "nil",
    LumenType.BOOLEAN: "boolean",
    LumenType.LIGHTUSERDATA: "userdata",
    LumenType.NUMBER: "number",
    LumenType.STRING: "string",
    LumenType.TABLE: "table",
    LumenType.FUNCTION: "function",
    LumenType.USERDATA: "userdata",
    LumenType.THREAD: "thread",
}


class LumenStatus(IntEnum):
    """Result codes of protected calls."""
    OK = 0
    YIELD = 1
    ERRRUN = 2
    ERRSYNTAX = 3
    ERRMEM = 4
    ERRERR = 5


class _MissingPayload:
    """Marker type for userdata without a host payload."""

    def __repr__(self) -> str:
        return "<missing payload>"


# Marks a userdata whose host payload was never set
MISSING_PAYLOAD = _MissingPayload()


class LumenTable:
    """
    A VM table.

    Keys are normalized so that integral floats address the same slot as the
    equal integer and booleans never collide with 0/1.  Assigning nil keeps a
    tombstone so that traversal with `next` stays valid while fields are cleared.
    """

    def __init__(self) -> None:
        self.hash: Dict[Any, Any] = {}
        self.metatable: 'LumenTable | None' = None

    @staticmethod
    def normalize_key(key: Any) -> Any:
        """
        Map a VM key to its dictionary key.

        Raises:
            LumenRuntimeError: If the key is nil or NaN
        """
        if key is None:
            raise LumenRuntimeError("index is nil")

        if isinstance(key, bool):
            return ("boolean", key)

        if isinstance(key, float):
            if math.isnan(key):
                raise LumenRuntimeError("index is NaN")

            if key.is_integer():
                return int(key)

        return key

    @staticmethod
    def denormalize_key(key: Any) -> Any:
        """Map a dictionary key back to the VM key."""
        if isinstance(key, tuple):
            return key[1]

        return key

    def get(self, key: Any) -> Any:
        """Raw read; nil and NaN keys read as absent."""
        if key is None or (isinstance(key, float) and math.isnan(key)):
            return None

        return self.hash.get(self.normalize_key(key))

    def set(self, key: Any, value: Any) -> None:
        """Raw write."""
        normalized = self.normalize_key(key)
        if value is None:
            if normalized in self.hash:
                self.hash[normalized] = None

            return

        self.hash[normalized] = value

    def length(self) -> int:
        """Return a border of the table's sequence part."""
        n = 0
        while self.hash.get(n + 1) is not None:
            n += 1

        return n

    def next(self, key: Any) -> Tuple[Any, Any] | None:
        """
        Return the entry following `key` in traversal order.

        Args:
            key: Previous key, or None to start the traversal

        Returns:
            (key, value) of the next live entry, or None at the end

        Raises:
            LumenRuntimeError: If key is not present in the table
        """
        keys = list(self.hash)
        start = 0
        if key is not None:
            normalized = self.normalize_key(key)
            try:
                start = keys.index(normalized) + 1

            except ValueError as e:
                raise LumenRuntimeError("invalid key to 'next'") from e

        for k in keys[start:]:
            value = self.hash[k]
            if value is not None:
                return self.denormalize_key(k), value

        return None

    def items(self) -> Iterator[Tuple[Any, Any]]:
        """Iterate over live entries."""
        for k, v in list(self.hash.items()):
            if v is not None:
                yield self.denormalize_key(k), v

    def __repr__(self) -> str:
        return f"LumenTable(0x{id(self):x})"


class LumenUserdata:
    """
    A foreign-value handle owning exactly one host value.

    The metatable is shared with every other handle of the same type; the user
    value slot holds the per-object caching table once one is needed.
    """

    def __init__(self, payload: Any = MISSING_PAYLOAD) -> None:
        self.payload = payload
        self.metatable: LumenTable | None = None
        self.user_value: Any = None

    def has_payload(self) -> bool:
        """Check whether a host value has been stored in this handle."""
        return self.payload is not MISSING_PAYLOAD

    def __repr__(self) -> str:
        return f"LumenUserdata(0x{id(self):x})"


class LumenHostFunction:
    """
    A host function callable from the VM.

    The implementation receives the state, reads its arguments from stack
    positions 1..n, pushes its results and returns how many it pushed.
    """

    def __init__(self, implementation: Callable[[Any], int], name: str | None = None) -> None:
        self.implementation = implementation
        self.name = name or getattr(implementation, "__name__", "?")

    def __call__(self, state: Any) -> int:
        return self.implementation(state)

    def __repr__(self) -> str:
        return f"LumenHostFunction({self.name!r})"


def value_type(value: Any) -> LumenType:
    """
    Determine the type tag of a VM value.

    Args:
        value: VM value

    Returns:
        The value's type tag

    Raises:
        TypeError: If the value is not a VM value
    """
    if value is None:
        return LumenType.NIL

    if isinstance(value, bool):
        return LumenType.BOOLEAN

    if isinstance(value, (int, float)):
        return LumenType.NUMBER

    if isinstance(value, str):
        return LumenType.STRING

    if isinstance(value, LumenTable):
        return LumenType.TABLE

    if isinstance(value, LumenHostFunction):
        return LumenType.FUNCTION

    if isinstance(value, LumenUserdata):
        return LumenType.USERDATA

    raise TypeError(f"Not a VM value: {value!r}")
