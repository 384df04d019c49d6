"""Lumen VM state - the stack protocol shared by host code and the VM."""

import logging
import math
from typing import Any, Callable, Iterator, List, NoReturn, Tuple

from lumen.lumen_config import LumenConfig
from lumen.lumen_error import LumenError, LumenRuntimeError, LumenStackError
from lumen.lumen_operation import BITWISE_OPERATIONS, COMPARE_OPERATIONS, LumenOperation, UNARY_OPERATIONS
from lumen.lumen_value import (
    LumenHostFunction, LumenStatus, LumenTable, LumenType, LumenUserdata, MISSING_PAYLOAD, MULTRET,
    REGISTRY_GLOBALS, REGISTRY_INDEX, REGISTRY_LOADED, REGISTRY_PRELOAD, value_type
)


# Marks a stack position above the top of the stack
_NONE: Any = object()

# Maximum length of an __index/__newindex chain
_MAX_TAG_LOOP = 2000

_INT_MASK = 0xFFFFFFFFFFFFFFFF


def _wrap_int(value: int) -> int:
    """Wrap an integer to the VM's 64-bit two's complement range."""
    value &= _INT_MASK
    if value >= 1 << 63:
        value -= 1 << 64

    return value


def number_to_string(value: int | float) -> str:
    """
    Format a number the way the VM converts numbers to strings.

    Args:
        value: Integer or float

    Returns:
        String representation, e.g. "5" for 5 and "5.0" for 5.0
    """
    if isinstance(value, int):
        return str(value)

    if math.isinf(value):
        return "inf" if value > 0 else "-inf"

    if math.isnan(value):
        return "nan" if math.copysign(1.0, value) > 0 else "-nan"

    text = f"{value:.14g}"
    if all(c in "-0123456789" for c in text):
        text += ".0"

    return text


def string_to_number(text: str) -> int | float | None:
    """
    Convert a string to a number following the VM's lexical rules.

    Args:
        text: String to convert

    Returns:
        Integer or float, or None if the string is not a numeral
    """
    stripped = text.strip()
    if not stripped:
        return None

    lowered = stripped.lower()
    if "inf" in lowered or "nan" in lowered or "_" in lowered:
        return None

    sign = 1
    body = lowered
    if body[0] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]

    if body.startswith("0x"):
        try:
            return _wrap_int(sign * int(body[2:], 16))

        except ValueError:
            try:
                return sign * float.fromhex(body)

            except ValueError:
                return None

    try:
        return sign * int(body, 10)

    except ValueError:
        pass

    try:
        return sign * float(body)

    except ValueError:
        return None


class LumenState:
    """
    A VM state: a value stack organised in call frames, plus the registry.

    Host functions run in their own frame; stack index 1 is the first
    argument of the running function, negative indices count down from the
    top, and REGISTRY_INDEX addresses the registry table.
    """

    def __init__(self, config: LumenConfig | None = None) -> None:
        """
        Initialize an empty state with a registry and a globals table.

        Args:
            config: State settings; defaults are used when omitted
        """
        self.config = config or LumenConfig()
        self._logger = logging.getLogger("LumenState")
        self._stack: List[Any] = []
        self._base = 0
        self._frames: List[int] = []

        self.registry = LumenTable()
        self.registry.set(REGISTRY_GLOBALS, LumenTable())
        self.registry.set(REGISTRY_LOADED, LumenTable())
        self.registry.set(REGISTRY_PRELOAD, LumenTable())

        self._next_function = LumenHostFunction(self._builtin_next, "next")

    # ------------------------------------------------------------------
    # Index resolution
    # ------------------------------------------------------------------

    def _position(self, idx: int) -> int:
        """
        Convert a valid stack index into a list position.

        Raises:
            LumenStackError: If the index does not address a live stack slot
        """
        if idx > 0:
            pos = self._base + idx - 1
            if pos < len(self._stack):
                return pos

        elif REGISTRY_INDEX < idx < 0:
            pos = len(self._stack) + idx
            if pos >= self._base:
                return pos

        raise LumenStackError(f"invalid stack index {idx}")

    def _value(self, idx: int) -> Any:
        """Get the value at an acceptable index, or _NONE above the top."""
        if idx == REGISTRY_INDEX:
            return self.registry

        if idx > 0 and self._base + idx - 1 >= len(self._stack):
            return _NONE

        return self._stack[self._position(idx)]

    def _checked_value(self, idx: int) -> Any:
        """Get the value at a valid index."""
        value = self._value(idx)
        if value is _NONE:
            raise LumenStackError(f"invalid stack index {idx}")

        return value

    def _push(self, value: Any) -> None:
        if len(self._stack) >= self.config.max_stack_size:
            raise LumenStackError("stack overflow")

        self._stack.append(value)

    def _pop_value(self) -> Any:
        if len(self._stack) <= self._base:
            raise LumenStackError("stack underflow")

        return self._stack.pop()

    # ------------------------------------------------------------------
    # Basic stack manipulation
    # ------------------------------------------------------------------

    def gettop(self) -> int:
        """Return the index of the top element, i.e. the number of values in the current frame."""
        return len(self._stack) - self._base

    def settop(self, idx: int) -> None:
        """
        Set the stack top, filling new slots with nil or discarding values.

        Args:
            idx: New top; negative values are relative to the current top
        """
        if idx >= 0:
            new_len = self._base + idx
            if new_len > self.config.max_stack_size:
                raise LumenStackError("stack overflow")

        else:
            new_len = len(self._stack) + idx + 1
            if new_len < self._base:
                raise LumenStackError(f"invalid new top {idx}")

        if new_len < len(self._stack):
            del self._stack[new_len:]

        else:
            self._stack.extend([None] * (new_len - len(self._stack)))

    def absindex(self, idx: int) -> int:
        """Convert a relative index into an absolute one."""
        if idx > 0 or idx <= REGISTRY_INDEX:
            return idx

        return self.gettop() + idx + 1

    def checkstack(self, n: int) -> bool:
        """Check that the stack can grow by n slots."""
        return len(self._stack) + n <= self.config.max_stack_size

    def pushvalue(self, idx: int) -> None:
        """Push a copy of the value at idx."""
        self._push(self._checked_value(idx))

    def pop(self, n: int = 1) -> None:
        """Pop n values."""
        self.settop(-n - 1)

    def rotate(self, idx: int, n: int) -> None:
        """
        Rotate the values between idx and the top by n positions towards the top.

        Args:
            idx: Start of the rotated segment
            n: Number of positions; negative values rotate towards idx
        """
        start = self._position(idx)
        segment = self._stack[start:]
        if not segment:
            return

        n %= len(segment)
        self._stack[start:] = segment[-n:] + segment[:-n] if n else segment

    def insert(self, idx: int) -> None:
        """Move the top value into position idx, shifting values above it up."""
        self.rotate(idx, 1)

    def remove(self, idx: int) -> None:
        """Remove the value at idx, shifting values above it down."""
        self.rotate(idx, -1)
        self.pop(1)

    def copy(self, from_idx: int, to_idx: int) -> None:
        """Copy the value at from_idx into to_idx."""
        value = self._checked_value(from_idx)
        self._stack[self._position(to_idx)] = value

    def replace(self, idx: int) -> None:
        """Move the top value into position idx and pop it."""
        self.copy(-1, idx)
        self.pop(1)

    # ------------------------------------------------------------------
    # Pushing values
    # ------------------------------------------------------------------

    def push_nil(self) -> None:
        """Push nil."""
        self._push(None)

    def push_boolean(self, value: bool) -> None:
        """Push a boolean."""
        self._push(bool(value))

    def push_integer(self, value: int) -> None:
        """Push an integer, wrapped to the 64-bit range."""
        self._push(_wrap_int(int(value)))

    def push_number(self, value: float) -> None:
        """Push a float."""
        self._push(float(value))

    def push_string(self, value: str) -> None:
        """Push a string."""
        self._push(str(value))

    def push_function(self, fn: 'LumenHostFunction | Callable[[LumenState], int]', name: str | None = None) -> None:
        """
        Push a host function.

        Args:
            fn: Host function, or a callable taking the state and returning the result count
            name: Name used in diagnostics when fn is a plain callable
        """
        if not isinstance(fn, LumenHostFunction):
            fn = LumenHostFunction(fn, name)

        self._push(fn)

    def new_table(self) -> LumenTable:
        """Create and push an empty table."""
        table = LumenTable()
        self._push(table)
        return table

    def create_table(self, narr: int = 0, nrec: int = 0) -> LumenTable:  # pylint: disable=unused-argument
        """Create and push an empty table; the size hints are accepted for interface compatibility."""
        return self.new_table()

    def new_userdata(self, payload: Any = MISSING_PAYLOAD) -> LumenUserdata:
        """
        Create and push a foreign-value handle.

        Args:
            payload: Host value owned by the handle

        Returns:
            The new handle
        """
        userdata = LumenUserdata(payload)
        self._push(userdata)
        return userdata

    def push_value(self, value: Any) -> None:
        """
        Push a value that already is a VM value.

        Raises:
            TypeError: If value is not a VM value
        """
        value_type(value)
        self._push(value)

    def push_global_table(self) -> None:
        """Push the globals table."""
        self._push(self.registry.get(REGISTRY_GLOBALS))

    # ------------------------------------------------------------------
    # Inspecting values
    # ------------------------------------------------------------------

    def value_at(self, idx: int) -> Any:
        """Return the VM value at idx; positions above the top read as nil."""
        value = self._value(idx)
        return None if value is _NONE else value

    def type(self, idx: int) -> LumenType:
        """Return the type tag of the value at idx; NONE for positions above the top."""
        value = self._value(idx)
        if value is _NONE:
            return LumenType.NONE

        return value_type(value)

    @staticmethod
    def typename(tp: LumenType) -> str:
        """Return the VM's name for a type tag."""
        return tp.type_name()

    def typename_at(self, idx: int) -> str:
        """
        Describe the type of the value at idx, preferring the metatable's __name.

        Args:
            idx: Stack index

        Returns:
            The __name of a userdata's or table's metatable if it is a string, else the type name
        """
        value = self._value(idx)
        if value is _NONE:
            return LumenType.NONE.type_name()

        name = self._raw_metafield(value, "__name")
        if isinstance(name, str):
            return name

        return value_type(value).type_name()

    def is_none(self, idx: int) -> bool:
        """Check whether idx is above the top."""
        return self.type(idx) == LumenType.NONE

    def is_nil(self, idx: int) -> bool:
        """Check whether the value at idx is nil."""
        return self.type(idx) == LumenType.NIL

    def is_none_or_nil(self, idx: int) -> bool:
        """Check whether idx is above the top or holds nil."""
        return self.type(idx) in (LumenType.NONE, LumenType.NIL)

    def is_boolean(self, idx: int) -> bool:
        """Check whether the value at idx is a boolean."""
        return self.type(idx) == LumenType.BOOLEAN

    def is_number(self, idx: int) -> bool:
        """Check whether the value at idx is a number or a string convertible to one."""
        return self.to_number(idx) is not None

    def is_integer(self, idx: int) -> bool:
        """Check whether the value at idx is a number of integer subtype."""
        value = self._value(idx)
        return isinstance(value, int) and not isinstance(value, bool)

    def is_string(self, idx: int) -> bool:
        """Check whether the value at idx is a string or a number."""
        return self.type(idx) in (LumenType.STRING, LumenType.NUMBER)

    def is_table(self, idx: int) -> bool:
        """Check whether the value at idx is a table."""
        return self.type(idx) == LumenType.TABLE

    def is_function(self, idx: int) -> bool:
        """Check whether the value at idx is a function."""
        return self.type(idx) == LumenType.FUNCTION

    def is_userdata(self, idx: int) -> bool:
        """Check whether the value at idx is a userdata."""
        return self.type(idx) == LumenType.USERDATA

    def to_boolean(self, idx: int) -> bool:
        """Convert the value at idx to a boolean; only nil and false are false."""
        value = self._value(idx)
        return not (value is _NONE or value is None or value is False)

    def to_number(self, idx: int) -> int | float | None:
        """Convert the value at idx to a number without modifying the stack."""
        value = self._value(idx)
        if isinstance(value, bool):
            return None

        if isinstance(value, (int, float)):
            return value

        if isinstance(value, str):
            return string_to_number(value)

        return None

    def to_integer(self, idx: int) -> int | None:
        """Convert the value at idx to an integer if it has an exact integer representation."""
        number = self.to_number(idx)
        if number is None:
            return None

        if isinstance(number, float):
            if not number.is_integer() or not -2**63 <= number < 2**63:
                return None

            return int(number)

        return number

    def to_string(self, idx: int) -> str | None:
        """Convert the value at idx to a string; numbers are formatted, other types give None."""
        value = self._value(idx)
        if isinstance(value, str):
            return value

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return number_to_string(value)

        return None

    def to_userdata(self, idx: int) -> LumenUserdata | None:
        """Get the userdata handle at idx, or None."""
        value = self._value(idx)
        if isinstance(value, LumenUserdata):
            return value

        return None

    def to_pointer(self, idx: int) -> int:
        """Return an identity for reference values at idx, 0 for other values."""
        value = self._value(idx)
        if isinstance(value, (LumenTable, LumenUserdata, LumenHostFunction)):
            return id(value)

        return 0

    # ------------------------------------------------------------------
    # Raw table access
    # ------------------------------------------------------------------

    def _table_at(self, idx: int) -> LumenTable:
        value = self._checked_value(idx)
        if not isinstance(value, LumenTable):
            raise LumenRuntimeError(f"table expected, got {value_type(value).type_name()}")

        return value

    def raw_get(self, idx: int) -> LumenType:
        """Replace the key on top with table[key], bypassing metamethods."""
        table = self._table_at(idx)
        key = self._pop_value()
        value = table.get(key)
        self._push(value)
        return value_type(value)

    def raw_geti(self, idx: int, n: int) -> LumenType:
        """Push table[n], bypassing metamethods."""
        value = self._table_at(idx).get(n)
        self._push(value)
        return value_type(value)

    def raw_set(self, idx: int) -> None:
        """Pop a value and a key and set table[key] = value, bypassing metamethods."""
        table = self._table_at(idx)
        value = self._pop_value()
        key = self._pop_value()
        table.set(key, value)

    def raw_seti(self, idx: int, n: int) -> None:
        """Pop a value and set table[n] = value, bypassing metamethods."""
        table = self._table_at(idx)
        table.set(n, self._pop_value())

    def raw_len(self, idx: int) -> int:
        """Return the raw length of a string, table or userdata."""
        value = self._checked_value(idx)
        if isinstance(value, str):
            return len(value.encode("utf-8"))

        if isinstance(value, LumenTable):
            return value.length()

        return 0

    @staticmethod
    def _raw_equal_values(a: Any, b: Any) -> bool:
        if value_type(a) != value_type(b):
            return False

        if isinstance(a, (LumenTable, LumenUserdata, LumenHostFunction)):
            return a is b

        return bool(a == b)

    def raw_equal(self, idx1: int, idx2: int) -> bool:
        """Compare two values for primitive equality, bypassing metamethods."""
        a = self._value(idx1)
        b = self._value(idx2)
        if a is _NONE or b is _NONE:
            return False

        return self._raw_equal_values(a, b)

    def next(self, idx: int) -> bool:
        """
        Pop a key and push the next key-value pair of the table at idx.

        Returns:
            True if a pair was pushed, False at the end of the traversal (nothing pushed)
        """
        table = self._table_at(idx)
        key = self._pop_value()
        entry = table.next(key)
        if entry is None:
            return False

        self._push(entry[0])
        self._push(entry[1])
        return True

    # ------------------------------------------------------------------
    # Metatables
    # ------------------------------------------------------------------

    @staticmethod
    def _metatable_of(value: Any) -> LumenTable | None:
        if isinstance(value, (LumenTable, LumenUserdata)):
            return value.metatable

        return None

    def _raw_metafield(self, value: Any, field: str) -> Any:
        metatable = self._metatable_of(value)
        if metatable is None:
            return None

        return metatable.get(field)

    def get_metatable(self, idx: int) -> bool:
        """Push the metatable of the value at idx; return False and push nothing if there is none."""
        metatable = self._metatable_of(self._checked_value(idx))
        if metatable is None:
            return False

        self._push(metatable)
        return True

    def set_metatable(self, idx: int) -> None:
        """Pop a table (or nil) and make it the metatable of the value at idx."""
        target = self._checked_value(idx)
        metatable = self._pop_value()
        if metatable is not None and not isinstance(metatable, LumenTable):
            raise LumenRuntimeError("table expected as metatable")

        if not isinstance(target, (LumenTable, LumenUserdata)):
            raise LumenRuntimeError(f"cannot set metatable of a {value_type(target).type_name()} value")

        target.metatable = metatable

    def new_metatable(self, name: str) -> bool:
        """
        Push the registry metatable for name, creating it if needed.

        A new metatable gets its __name field set to name.  Existing entries
        are returned unchanged.

        Args:
            name: Registry key

        Returns:
            True if the table was created by this call
        """
        existing = self.registry.get(name)
        if existing is not None:
            self._push(existing)
            return False

        metatable = LumenTable()
        metatable.set("__name", name)
        self.registry.set(name, metatable)
        self._push(metatable)
        self._logger.debug("Created metatable for type: %s", name)
        return True

    def get_metatable_by_name(self, name: str) -> LumenType:
        """Push the registry entry for name (nil if absent)."""
        value = self.registry.get(name)
        self._push(value)
        return value_type(value)

    def get_metafield(self, idx: int, field: str) -> LumenType:
        """
        Push a field of the metatable of the value at idx.

        Returns:
            Type of the pushed field, or NIL if there is no such field (nothing is pushed)
        """
        value = self._raw_metafield(self._checked_value(idx), field)
        if value is None:
            return LumenType.NIL

        self._push(value)
        return value_type(value)

    def test_userdata(self, idx: int, name: str) -> LumenUserdata | None:
        """
        Get the userdata at idx if its metatable is the registry metatable for name.

        Args:
            idx: Stack index
            name: Registry name of the expected type

        Returns:
            The handle, or None if the value has another type
        """
        value = self._value(idx)
        if not isinstance(value, LumenUserdata):
            return None

        expected = self.registry.get(name)
        if expected is None or value.metatable is not expected:
            return None

        return value

    def put_userdata(self, idx: int, name: str, payload: Any) -> bool:
        """
        Replace the host value owned by the userdata at idx.

        Returns:
            False if the value at idx is not a userdata of the named type
        """
        userdata = self.test_userdata(idx, name)
        if userdata is None:
            return False

        userdata.payload = payload
        return True

    def get_uservalue(self, idx: int) -> LumenType:
        """Push the user value of the userdata at idx (nil for other values)."""
        value = self._checked_value(idx)
        user_value = value.user_value if isinstance(value, LumenUserdata) else None
        self._push(user_value)
        return value_type(user_value)

    def set_uservalue(self, idx: int) -> bool:
        """Pop a value and store it as the user value of the userdata at idx."""
        target = self._checked_value(idx)
        value = self._pop_value()
        if not isinstance(target, LumenUserdata):
            return False

        target.user_value = value
        return True

    # ------------------------------------------------------------------
    # Field access with metamethods
    # ------------------------------------------------------------------

    def _index(self, obj: Any, key: Any) -> Any:
        for _ in range(_MAX_TAG_LOOP):
            if isinstance(obj, LumenTable):
                value = obj.get(key)
                if value is not None:
                    return value

                handler = self._raw_metafield(obj, "__index")
                if handler is None:
                    return None

            else:
                handler = self._raw_metafield(obj, "__index")
                if handler is None:
                    raise LumenRuntimeError(f"attempt to index a {value_type(obj).type_name()} value")

            if isinstance(handler, LumenHostFunction):
                return self.call_value(handler, [obj, key], 1)[0]

            obj = handler

        raise LumenRuntimeError("'__index' chain too long; possible loop")

    def _newindex(self, obj: Any, key: Any, value: Any) -> None:
        for _ in range(_MAX_TAG_LOOP):
            if isinstance(obj, LumenTable):
                handler = None
                if obj.get(key) is None:
                    handler = self._raw_metafield(obj, "__newindex")

                if handler is None:
                    obj.set(key, value)
                    return

            else:
                handler = self._raw_metafield(obj, "__newindex")
                if handler is None:
                    raise LumenRuntimeError(f"attempt to index a {value_type(obj).type_name()} value")

            if isinstance(handler, LumenHostFunction):
                self.call_value(handler, [obj, key, value], 0)
                return

            obj = handler

        raise LumenRuntimeError("'__newindex' chain too long; possible loop")

    def get_table(self, idx: int) -> LumenType:
        """Replace the key on top with obj[key] for the object at idx."""
        obj = self._checked_value(idx)
        key = self._pop_value()
        value = self._index(obj, key)
        self._push(value)
        return value_type(value)

    def get_field(self, idx: int, key: str) -> LumenType:
        """Push obj[key] for the object at idx."""
        value = self._index(self._checked_value(idx), key)
        self._push(value)
        return value_type(value)

    def set_table(self, idx: int) -> None:
        """Pop a value and a key and perform obj[key] = value for the object at idx."""
        obj = self._checked_value(idx)
        value = self._pop_value()
        key = self._pop_value()
        self._newindex(obj, key, value)

    def set_field(self, idx: int, key: str) -> None:
        """Pop a value and perform obj[key] = value for the object at idx."""
        obj = self._checked_value(idx)
        value = self._pop_value()
        self._newindex(obj, key, value)

    def get_global(self, name: str) -> LumenType:
        """Push the global named name."""
        value = self._index(self.registry.get(REGISTRY_GLOBALS), name)
        self._push(value)
        return value_type(value)

    def set_global(self, name: str) -> None:
        """Pop a value and assign it to the global named name."""
        value = self._pop_value()
        self._newindex(self.registry.get(REGISTRY_GLOBALS), name, value)

    # ------------------------------------------------------------------
    # Calls and errors
    # ------------------------------------------------------------------

    def call(self, nargs: int, nresults: int) -> None:
        """
        Call the function below the top nargs values.

        The function and its arguments are popped and the results pushed,
        adjusted to nresults unless nresults is MULTRET.  If the call fails the
        function, its arguments and anything it pushed are removed before the
        error propagates.

        Args:
            nargs: Number of arguments on top of the stack
            nresults: Number of results wanted, or MULTRET

        Raises:
            LumenRuntimeError: If the called value is not callable or the call fails
        """
        func_pos = len(self._stack) - nargs - 1
        if nargs < 0 or func_pos < self._base:
            raise LumenStackError("not enough elements on the stack for call")

        fn = self._stack[func_pos]
        for _ in range(_MAX_TAG_LOOP):
            if isinstance(fn, LumenHostFunction):
                break

            handler = self._raw_metafield(fn, "__call")
            if handler is None:
                del self._stack[func_pos:]
                raise LumenRuntimeError(f"attempt to call a {value_type(fn).type_name()} value")

            self._stack.insert(func_pos, handler)
            fn = handler

        if len(self._stack) + self.config.min_stack > self.config.max_stack_size:
            del self._stack[func_pos:]
            raise LumenStackError("stack overflow")

        self._frames.append(self._base)
        self._base = func_pos + 1
        try:
            count = fn(self)
            if not isinstance(count, int) or count < 0 or count > self.gettop():
                raise LumenRuntimeError(f"host function '{fn.name}' returned an invalid result count: {count!r}")

            results = self._stack[len(self._stack) - count:] if count else []

        except (LumenError, MemoryError):
            del self._stack[func_pos:]
            raise

        except Exception as e:
            del self._stack[func_pos:]
            raise LumenRuntimeError(str(e)) from e

        finally:
            self._base = self._frames.pop()

        del self._stack[func_pos:]
        if nresults != MULTRET:
            results = (results + [None] * nresults)[:nresults]

        for value in results:
            self._push(value)

    def pcall(self, nargs: int, nresults: int) -> LumenStatus:
        """
        Call a function in protected mode.

        On failure the error object replaces the function and its arguments.

        Returns:
            OK on success, ERRRUN on a VM error, ERRMEM on memory exhaustion
        """
        func_pos = len(self._stack) - nargs - 1
        try:
            self.call(nargs, nresults)
            return LumenStatus.OK

        except LumenError as e:
            self._logger.debug("Protected call failed: %s", e.message)
            del self._stack[max(func_pos, self._base):]
            self._push(e.error_object)
            return LumenStatus.ERRRUN

        except MemoryError:
            del self._stack[max(func_pos, self._base):]
            self._push("not enough memory")
            return LumenStatus.ERRMEM

    def call_value(self, fn: Any, args: List[Any], nresults: int) -> List[Any]:
        """
        Call a VM value with the given arguments and return its results.

        Args:
            fn: Function (or value with a __call metamethod)
            args: VM values passed as arguments
            nresults: Number of results wanted, or MULTRET

        Returns:
            Results, which have been removed from the stack again
        """
        top = len(self._stack)
        self._push(fn)
        for arg in args:
            self._push(arg)

        self.call(len(args), nresults)
        results = self._stack[top:]
        del self._stack[top:]
        return results

    def error(self) -> NoReturn:
        """
        Raise the value on top of the stack as a VM error.

        Raises:
            LumenRuntimeError: Always
        """
        error_object = self._pop_value() if self.gettop() > 0 else None
        if isinstance(error_object, str):
            message = error_object

        elif isinstance(error_object, (int, float)) and not isinstance(error_object, bool):
            message = number_to_string(error_object)

        else:
            message = f"(error object is a {value_type(error_object).type_name()} value)"

        raise LumenRuntimeError(message, error_object)

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def tostring_meta(self, idx: int) -> str:
        """
        Convert the value at idx to a string, honouring __tostring and __name, and push it.

        Returns:
            The string that was pushed
        """
        value = self._checked_value(idx)
        handler = self._raw_metafield(value, "__tostring")
        if handler is not None:
            result = self.call_value(handler, [value], 1)[0]
            if not isinstance(result, str):
                raise LumenRuntimeError("'__tostring' must return a string")

        elif isinstance(value, str):
            result = value

        elif isinstance(value, bool):
            result = "true" if value else "false"

        elif isinstance(value, (int, float)):
            result = number_to_string(value)

        elif value is None:
            result = "nil"

        else:
            name = self._raw_metafield(value, "__name")
            kind = name if isinstance(name, str) else value_type(value).type_name()
            if isinstance(value, LumenHostFunction):
                kind = "function: builtin"

            result = f"{kind}: 0x{id(value):08x}"

        self._push(result)
        return result

    def _arith_numbers(self, op: LumenOperation, a: int | float, b: int | float) -> int | float:
        if op in BITWISE_OPERATIONS:
            x = self._integer_operand(a)
            y = self._integer_operand(b)
            if op == LumenOperation.BAND:
                return _wrap_int(x & y)

            if op == LumenOperation.BOR:
                return _wrap_int(x | y)

            if op == LumenOperation.BXOR:
                return _wrap_int(x ^ y)

            if op == LumenOperation.BNOT:
                return _wrap_int(~x)

            if op == LumenOperation.SHR:
                y = -y

            if y <= -64 or y >= 64:
                return 0

            unsigned = x & _INT_MASK
            return _wrap_int(unsigned << y if y >= 0 else unsigned >> -y)

        if op == LumenOperation.UNM:
            return _wrap_int(-a) if isinstance(a, int) else -a

        if op in (LumenOperation.POW, LumenOperation.DIV):
            fa, fb = float(a), float(b)
            if op == LumenOperation.POW:
                try:
                    return math.pow(fa, fb)

                except OverflowError:
                    return math.inf

                except ValueError:
                    return math.nan

            if fb == 0.0:
                if fa == 0.0 or math.isnan(fa):
                    return math.nan

                return math.copysign(math.inf, fa) * math.copysign(1.0, fb)

            return fa / fb

        both_int = isinstance(a, int) and isinstance(b, int)
        if op == LumenOperation.ADD:
            return _wrap_int(a + b) if both_int else float(a) + float(b)

        if op == LumenOperation.SUB:
            return _wrap_int(a - b) if both_int else float(a) - float(b)

        if op == LumenOperation.MUL:
            return _wrap_int(a * b) if both_int else float(a) * float(b)

        if op == LumenOperation.MOD:
            if both_int:
                if b == 0:
                    raise LumenRuntimeError("attempt to perform 'n%0'")

                return a % b

            if float(b) == 0.0:
                return math.nan

            return float(a) % float(b)

        if op == LumenOperation.IDIV:
            if both_int:
                if b == 0:
                    raise LumenRuntimeError("attempt to perform 'n//0'")

                return a // b

            quotient = self._arith_numbers(LumenOperation.DIV, a, b)
            if math.isinf(quotient) or math.isnan(quotient):
                return quotient

            return float(math.floor(quotient))

        raise LumenRuntimeError(f"unsupported arithmetic operation {op.value}")

    @staticmethod
    def _integer_operand(value: int | float) -> int:
        if isinstance(value, int):
            return value

        if value.is_integer():
            return int(value)

        raise LumenRuntimeError("number has no integer representation")

    @staticmethod
    def _arith_operand(value: Any) -> int | float | None:
        if isinstance(value, bool):
            return None

        if isinstance(value, (int, float)):
            return value

        if isinstance(value, str):
            return string_to_number(value)

        return None

    def arith(self, op: LumenOperation) -> None:
        """
        Perform an arithmetic or bitwise operation on the top value(s), honouring metamethods.

        Binary operations pop two operands, unary operations (UNM, BNOT) pop one;
        the result is pushed.
        """
        b = self._pop_value()
        a = b if op in UNARY_OPERATIONS else self._pop_value()
        x = self._arith_operand(a)
        y = self._arith_operand(b)
        if x is not None and y is not None:
            self._push(self._arith_numbers(op, x, y))
            return

        handler = self._raw_metafield(a, op.value)
        if handler is None:
            handler = self._raw_metafield(b, op.value)

        if handler is None:
            culprit = b if x is not None else a
            kind = "perform bitwise operation on" if op in BITWISE_OPERATIONS else "perform arithmetic on"
            raise LumenRuntimeError(f"attempt to {kind} a {value_type(culprit).type_name()} value")

        self._push(self.call_value(handler, [a, b], 1)[0])

    def compare(self, idx1: int, idx2: int, op: LumenOperation) -> bool:
        """
        Compare two values with EQ, LT or LE, honouring metamethods.

        Returns:
            Result of the comparison; False if either index is invalid
        """
        if op not in COMPARE_OPERATIONS:
            raise LumenRuntimeError(f"invalid comparison operation {op.value}")

        a = self._value(idx1)
        b = self._value(idx2)
        if a is _NONE or b is _NONE:
            return False

        if op == LumenOperation.EQ:
            if self._raw_equal_values(a, b):
                return True

            if value_type(a) != value_type(b) or not isinstance(a, (LumenTable, LumenUserdata)):
                return False

            handler = self._raw_metafield(a, "__eq") or self._raw_metafield(b, "__eq")
            if handler is None:
                return False

            return self._truthy(self.call_value(handler, [a, b], 1)[0])

        numeric = (int, float)
        if isinstance(a, numeric) and isinstance(b, numeric) and not isinstance(a, bool) and not isinstance(b, bool):
            return a < b if op == LumenOperation.LT else a <= b

        if isinstance(a, str) and isinstance(b, str):
            return a < b if op == LumenOperation.LT else a <= b

        handler = self._raw_metafield(a, op.value) or self._raw_metafield(b, op.value)
        if handler is None:
            ta = value_type(a).type_name()
            tb = value_type(b).type_name()
            if ta == tb:
                raise LumenRuntimeError(f"attempt to compare two {ta} values")

            raise LumenRuntimeError(f"attempt to compare {ta} with {tb}")

        return self._truthy(self.call_value(handler, [a, b], 1)[0])

    @staticmethod
    def _truthy(value: Any) -> bool:
        return not (value is None or value is False)

    def length(self, idx: int) -> None:
        """Push the length of the value at idx, honouring __len."""
        value = self._checked_value(idx)
        if isinstance(value, str):
            self._push(len(value.encode("utf-8")))
            return

        handler = self._raw_metafield(value, "__len")
        if handler is not None:
            self._push(self.call_value(handler, [value], 1)[0])
            return

        if isinstance(value, LumenTable):
            self._push(value.length())
            return

        raise LumenRuntimeError(f"attempt to get length of a {value_type(value).type_name()} value")

    def concat(self, n: int) -> None:
        """Concatenate the n values on top of the stack, honouring __concat, and push the result."""
        if n == 0:
            self._push("")
            return

        for _ in range(n - 1):
            b = self._pop_value()
            a = self._pop_value()
            sa = a if isinstance(a, str) else None
            sb = b if isinstance(b, str) else None
            if isinstance(a, (int, float)) and not isinstance(a, bool):
                sa = number_to_string(a)

            if isinstance(b, (int, float)) and not isinstance(b, bool):
                sb = number_to_string(b)

            if sa is not None and sb is not None:
                self._push(sa + sb)
                continue

            handler = self._raw_metafield(a, "__concat") or self._raw_metafield(b, "__concat")
            if handler is None:
                culprit = b if sa is not None else a
                raise LumenRuntimeError(f"attempt to concatenate a {value_type(culprit).type_name()} value")

            self._push(self.call_value(handler, [a, b], 1)[0])

    # ------------------------------------------------------------------
    # Generic iteration
    # ------------------------------------------------------------------

    def _builtin_next(self, state: 'LumenState') -> int:
        state.settop(2)
        if state.next(1):
            return 2

        state.push_nil()
        return 1

    def pairs(self, idx: int) -> None:
        """
        Push the iterator triple (function, state, control) for the value at idx.

        Uses the __pairs metamethod when present, otherwise plain table traversal.
        """
        value = self._checked_value(idx)
        handler = self._raw_metafield(value, "__pairs")
        if handler is not None:
            for result in self.call_value(handler, [value], 3):
                self._push(result)

            return

        if not isinstance(value, LumenTable):
            raise LumenRuntimeError(f"table expected, got {value_type(value).type_name()}")

        self._push(self._next_function)
        self._push(value)
        self._push(None)

    def iterate(self, idx: int) -> Iterator[Tuple[Any, Any]]:
        """
        Drive the generic-for protocol over the value at idx.

        The stack is balanced between steps and restored when the iteration
        ends or the generator is closed early.

        Args:
            idx: Stack index of the iterated value

        Yields:
            (key, value) pairs as VM values
        """
        idx = self.absindex(idx)
        top = self.gettop()
        try:
            self.pairs(idx)
            while True:
                self.pushvalue(top + 1)
                self.pushvalue(top + 2)
                self.pushvalue(top + 3)
                self.call(2, 2)
                key = self._checked_value(-2)
                if key is None:
                    return

                value = self._checked_value(-1)
                self.pop(1)
                self.replace(top + 3)
                yield key, value

        finally:
            self.settop(top)
