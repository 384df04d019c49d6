"""Utility functions built on the stack protocol."""

from dataclasses import dataclass
from typing import Any, Generic, List, NoReturn, TypeVar

from lumen.lumen_error import LumenPeekError, LumenRuntimeError
from lumen.lumen_peek import LumenReader
from lumen.lumen_state import LumenState
from lumen.lumen_value import LumenTable, LumenType, LumenUserdata


T = TypeVar("T")


def split_dotted(name: str) -> List[str]:
    """
    Split a dotted name into its non-empty components.

    Args:
        name: Name such as "math.sin"

    Returns:
        Components, e.g. ["math", "sin"]
    """
    return [part for part in name.split(".") if part]


def get_global_nested(state: LumenState, name: str) -> LumenType:
    """
    Push the value of a global, following nested tables.

    `get_global_nested(state, "math.sin")` pushes the field `sin` of the
    global table `math`.

    Args:
        state: VM state
        name: Dotted name

    Returns:
        Type of the pushed value
    """
    parts = split_dotted(name)
    if not parts:
        state.push_nil()
        return LumenType.NIL

    result = state.get_global(parts[0])
    for part in parts[1:]:
        result = state.get_field(-1, part)
        state.remove(-2)

    return result


def set_global_nested(state: LumenState, name: str) -> None:
    """
    Pop a value and assign it to a global, following nested tables.

    All tables except the last field must exist.

    Args:
        state: VM state
        name: Dotted name, e.g. "mypackage.version"
    """
    parts = split_dotted(name)
    if not parts:
        state.pop(1)
        return

    if len(parts) == 1:
        state.set_global(parts[0])
        return

    get_global_nested(state, ".".join(parts[:-1]))
    state.pushvalue(-2)
    state.set_field(-2, parts[-1])
    state.pop(2)


def raise_error(state: LumenState, message: Any) -> NoReturn:
    """
    Raise a VM error with the given error object.

    Args:
        state: VM state
        message: Error object; strings are the common case
    """
    push_python_value(state, message)
    state.error()


def pop_value(state: LumenState, reader: LumenReader[T]) -> T:
    """
    Read and pop the value on top of the stack.

    The value is popped even if reading fails.
    """
    try:
        return reader(state, -1)

    finally:
        state.pop(1)


@dataclass(frozen=True)
class LumenPeekOutcome(Generic[T]):
    """Result of a reader run that must not raise."""
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Check whether the reader succeeded."""
        return self.error is None


def peek_either(state: LumenState, reader: LumenReader[T], idx: int) -> LumenPeekOutcome[T]:
    """
    Run a reader and capture a failure instead of raising it.

    Args:
        state: VM state
        reader: Reader to run
        idx: Stack index

    Returns:
        Outcome holding either the value or the error message
    """
    try:
        return LumenPeekOutcome(value=reader(state, idx))

    except LumenPeekError as e:
        return LumenPeekOutcome(error=e.message)


def push_python_value(state: LumenState, value: Any) -> None:
    """
    Push a plain Python value.

    None, booleans, numbers and strings map onto the corresponding VM types;
    lists and tuples become sequences, dictionaries become tables.  VM values
    (tables, userdata, functions) are pushed unchanged.

    Raises:
        LumenRuntimeError: If the value has no VM representation
    """
    if isinstance(value, (list, tuple)):
        state.new_table()
        for i, item in enumerate(value, start=1):
            push_python_value(state, item)
            state.raw_seti(-2, i)

        return

    if isinstance(value, dict):
        state.new_table()
        for key, item in value.items():
            push_python_value(state, key)
            push_python_value(state, item)
            state.raw_set(-3)

        return

    if isinstance(value, int) and not isinstance(value, bool):
        state.push_integer(value)
        return

    try:
        state.push_value(value)

    except TypeError as e:
        raise LumenRuntimeError(f"cannot push Python value of type {type(value).__name__}") from e


def peek_python_value(state: LumenState, idx: int) -> Any:
    """
    Retrieve the value at idx as a plain Python value.

    Tables whose keys are exactly 1..n become lists, other tables become
    dictionaries; userdata yield their host payload.  Tables are converted
    recursively, without following metamethods.
    """
    return _to_python(state.value_at(idx), set())


def _to_python(value: Any, seen: set) -> Any:
    if isinstance(value, LumenUserdata):
        return value.payload

    if not isinstance(value, LumenTable):
        return value

    if id(value) in seen:
        raise LumenRuntimeError("cannot convert a table that contains itself")

    seen = seen | {id(value)}
    entries = list(value.items())
    n = value.length()
    if n == len(entries):
        return [_to_python(value.get(i), seen) for i in range(1, n + 1)]

    return {_to_python(k, seen): _to_python(v, seen) for k, v in entries}
