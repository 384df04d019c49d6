"""
Readers: retrieve host values from VM stack positions.

A reader takes the state and a stack index and either returns a host value
or raises LumenPeekError naming the expected type, the type found and the
index.  Readers leave the stack as they found it, on success and on failure.
"""

from typing import Any, Callable, Dict, List, Set, Tuple, TypeVar

from lumen.lumen_error import LumenCorruptionError, LumenPeekError
from lumen.lumen_state import LumenState
from lumen.lumen_value import LumenType


T = TypeVar("T")
K = TypeVar("K")
V = TypeVar("V")

LumenReader = Callable[[LumenState, int], T]


def type_mismatch(state: LumenState, expected: str, idx: int) -> LumenPeekError:
    """
    Build the error for a value of the wrong type.

    Args:
        state: VM state
        expected: Name of the expected type
        idx: Stack index of the offending value

    Returns:
        Error naming the expected and the actual type
    """
    return LumenPeekError(expected, state.typename_at(idx), state.absindex(idx))


def peek_nil(state: LumenState, idx: int) -> None:
    """Succeed only on nil (or a missing value)."""
    if not state.is_none_or_nil(idx):
        raise type_mismatch(state, "nil", idx)


def peek_boolean(state: LumenState, idx: int) -> bool:
    """Retrieve a boolean; other types are rejected."""
    if not state.is_boolean(idx):
        raise type_mismatch(state, "boolean", idx)

    return state.to_boolean(idx)


def peek_truthy(state: LumenState, idx: int) -> bool:
    """Retrieve the truth value of any value; never fails."""
    return state.to_boolean(idx)


def peek_integer(state: LumenState, idx: int) -> int:
    """Retrieve an integer; floats with integral values and numeric strings are accepted."""
    value = state.to_integer(idx)
    if value is None:
        raise type_mismatch(state, "integer", idx)

    return value


def peek_number(state: LumenState, idx: int) -> float:
    """Retrieve a number as a float; numeric strings are accepted."""
    value = state.to_number(idx)
    if value is None:
        raise type_mismatch(state, "number", idx)

    return float(value)


def peek_string(state: LumenState, idx: int) -> str:
    """Retrieve a string; numbers are converted."""
    value = state.to_string(idx)
    if value is None:
        raise type_mismatch(state, "string", idx)

    return value


def peek_name(state: LumenState, idx: int) -> str:
    """Retrieve a field name; only actual strings are accepted."""
    if state.type(idx) != LumenType.STRING:
        raise type_mismatch(state, "string", idx)

    value = state.to_string(idx)
    assert value is not None
    return value


def peek_userdata(name: str) -> LumenReader[Any]:
    """
    Create a reader for the payload of userdata tagged with the given type name.

    Args:
        name: Registry name of the userdata type

    Returns:
        Reader returning the wrapped host value

    Raises:
        LumenCorruptionError: From the reader, if the userdata has no host value
    """
    def reader(state: LumenState, idx: int) -> Any:
        userdata = state.test_userdata(idx, name)
        if userdata is None:
            raise type_mismatch(state, name, idx)

        if not userdata.has_payload():
            raise LumenCorruptionError(f"Corrupted {name} object, host value not found.")

        return userdata.payload

    return reader


def peek_optional(reader: LumenReader[T]) -> LumenReader[T | None]:
    """
    Wrap a reader so that a missing value or nil reads as None.

    Nesting optional readers is discouraged: an absent inner value cannot be
    told apart from an absent outer value.

    Args:
        reader: Reader for present values

    Returns:
        Reader returning None for missing values
    """
    def optional_reader(state: LumenState, idx: int) -> T | None:
        if state.is_none_or_nil(idx):
            return None

        return reader(state, idx)

    return optional_reader


def peek_list(reader: LumenReader[T]) -> LumenReader[List[T]]:
    """
    Create a reader for the sequence part of a table.

    The first element that fails stops the retrieval; the error names its index.

    Args:
        reader: Reader for elements

    Returns:
        Reader returning a list
    """
    def list_reader(state: LumenState, idx: int) -> List[T]:
        if not state.is_table(idx):
            raise type_mismatch(state, "table", idx)

        idx = state.absindex(idx)
        result: List[T] = []
        for i in range(1, state.raw_len(idx) + 1):
            state.raw_geti(idx, i)
            try:
                result.append(reader(state, -1))

            except LumenPeekError as e:
                raise e.within(f"element {i}") from e

            finally:
                state.pop(1)

        return result

    return list_reader


def peek_map(key_reader: LumenReader[K], value_reader: LumenReader[V]) -> LumenReader[Dict[K, V]]:
    """
    Create a reader for all key-value pairs of a table.

    Args:
        key_reader: Reader for keys
        value_reader: Reader for values

    Returns:
        Reader returning a dictionary
    """
    def map_reader(state: LumenState, idx: int) -> Dict[K, V]:
        if not state.is_table(idx):
            raise type_mismatch(state, "table", idx)

        idx = state.absindex(idx)
        top = state.gettop()
        result: Dict[K, V] = {}
        try:
            state.push_nil()
            while state.next(idx):
                try:
                    key = key_reader(state, -2)

                except LumenPeekError as e:
                    raise e.within("key") from e

                try:
                    result[key] = value_reader(state, -1)

                except LumenPeekError as e:
                    raise e.within(f"value for key {key!r}") from e

                state.pop(1)

        finally:
            state.settop(top)

        return result

    return map_reader


def peek_set(reader: LumenReader[T]) -> LumenReader[Set[T]]:
    """
    Create a reader for a set represented as a table with truthy values.

    Args:
        reader: Reader for the elements (table keys)

    Returns:
        Reader returning a set of the keys whose value is truthy
    """
    def set_reader(state: LumenState, idx: int) -> Set[T]:
        if not state.is_table(idx):
            raise type_mismatch(state, "table", idx)

        idx = state.absindex(idx)
        top = state.gettop()
        result: Set[T] = set()
        try:
            state.push_nil()
            while state.next(idx):
                if state.to_boolean(-1):
                    try:
                        result.add(reader(state, -2))

                    except LumenPeekError as e:
                        raise e.within("key") from e

                state.pop(1)

        finally:
            state.settop(top)

        return result

    return set_reader


def peek_pair(first: LumenReader[K], second: LumenReader[V]) -> LumenReader[Tuple[K, V]]:
    """
    Create a reader for a two-element table.

    Args:
        first: Reader for element 1
        second: Reader for element 2

    Returns:
        Reader returning a tuple
    """
    def pair_reader(state: LumenState, idx: int) -> Tuple[K, V]:
        if not state.is_table(idx):
            raise type_mismatch(state, "table", idx)

        idx = state.absindex(idx)
        values: List[Any] = []
        for i, reader in ((1, first), (2, second)):
            state.raw_geti(idx, i)
            try:
                values.append(reader(state, -1))

            except LumenPeekError as e:
                raise e.within(f"element {i}") from e

            finally:
                state.pop(1)

        return values[0], values[1]

    return pair_reader


def peek_field(reader: LumenReader[T], name: str) -> LumenReader[T]:
    """
    Create a reader for a single field of a table or object, honouring metamethods.

    Args:
        reader: Reader for the field value
        name: Field name

    Returns:
        Reader returning the field's value
    """
    def field_reader(state: LumenState, idx: int) -> T:
        idx = state.absindex(idx)
        state.get_field(idx, name)
        try:
            return reader(state, -1)

        except LumenPeekError as e:
            raise e.within(f"field '{name}'") from e

        finally:
            state.pop(1)

    return field_reader


def peek_choice(*readers: LumenReader[Any]) -> LumenReader[Any]:
    """
    Create a reader that returns the result of the first reader that succeeds.

    Args:
        readers: Readers to try, in order

    Returns:
        Reader failing only if every alternative failed
    """
    def choice_reader(state: LumenState, idx: int) -> Any:
        failures: List[str] = []
        for reader in readers:
            try:
                return reader(state, idx)

            except LumenPeekError as e:
                failures.append(e.describe_mismatch())

        raise LumenPeekError(
            "one of several types",
            state.typename_at(idx),
            state.absindex(idx),
            detail="all choices failed: " + "; ".join(failures)
        )

    return choice_reader


def peek_read(parse: Callable[[str], T], expected: str) -> LumenReader[T]:
    """
    Create a reader that retrieves a string and parses it into a host value.

    Args:
        parse: Parser raising ValueError on invalid input
        expected: Name of the parsed type, for error messages

    Returns:
        Reader returning the parsed value
    """
    def read_reader(state: LumenState, idx: int) -> T:
        text = peek_string(state, idx)
        try:
            return parse(text)

        except ValueError as e:
            raise LumenPeekError(
                expected, "string", state.absindex(idx), detail=f"Could not read: {text}"
            ) from e

    return read_reader
