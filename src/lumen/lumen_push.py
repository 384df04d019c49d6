"""
Writers: push host values onto the VM stack.

A writer takes the state and a host value and pushes exactly one value,
unless documented otherwise.  Writers never fail for well-formed input.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, Set, Tuple, TypeVar

from lumen.lumen_state import LumenState


T = TypeVar("T")
K = TypeVar("K")
V = TypeVar("V")

LumenWriter = Callable[[LumenState, T], None]


def push_nil(state: LumenState, _value: Any = None) -> None:
    """Push nil, ignoring the value."""
    state.push_nil()


def push_bool(state: LumenState, value: bool) -> None:
    """Push a boolean."""
    state.push_boolean(value)


def push_integral(state: LumenState, value: int) -> None:
    """Push an integer."""
    state.push_integer(value)


def push_float(state: LumenState, value: float) -> None:
    """Push a float."""
    state.push_number(value)


def push_text(state: LumenState, value: str) -> None:
    """Push a string."""
    state.push_string(value)


def push_name(state: LumenState, value: str) -> None:
    """Push a field name."""
    state.push_string(value)


def push_optional(writer: LumenWriter[T]) -> LumenWriter[T | None]:
    """
    Wrap a writer so that None is pushed as nil.

    Args:
        writer: Writer for present values

    Returns:
        Writer accepting None
    """
    def optional_writer(state: LumenState, value: T | None) -> None:
        if value is None:
            state.push_nil()
            return

        writer(state, value)

    return optional_writer


def push_list(writer: LumenWriter[T]) -> LumenWriter[Iterable[T]]:
    """
    Create a writer that pushes a sequence as a table with keys 1..n.

    Args:
        writer: Writer for elements

    Returns:
        Writer for iterables
    """
    def list_writer(state: LumenState, values: Iterable[T]) -> None:
        state.new_table()
        for i, value in enumerate(values, start=1):
            writer(state, value)
            state.raw_seti(-2, i)

    return list_writer


def push_map(key_writer: LumenWriter[K], value_writer: LumenWriter[V]) -> LumenWriter[Dict[K, V]]:
    """
    Create a writer that pushes a dictionary as a table.

    Args:
        key_writer: Writer for keys
        value_writer: Writer for values

    Returns:
        Writer for dictionaries
    """
    def map_writer(state: LumenState, values: Dict[K, V]) -> None:
        state.new_table()
        for key, value in values.items():
            key_writer(state, key)
            value_writer(state, value)
            state.raw_set(-3)

    return map_writer


def push_set(writer: LumenWriter[T]) -> LumenWriter[Set[T]]:
    """
    Create a writer that pushes a set as a table mapping each element to true.

    Args:
        writer: Writer for elements

    Returns:
        Writer for sets
    """
    def set_writer(state: LumenState, values: Set[T]) -> None:
        state.new_table()
        for value in values:
            writer(state, value)
            state.push_boolean(True)
            state.raw_set(-3)

    return set_writer


def push_pair(first: LumenWriter[K], second: LumenWriter[V]) -> LumenWriter[Tuple[K, V]]:
    """
    Create a writer that pushes a pair as a two-element table.

    Args:
        first: Writer for the first component
        second: Writer for the second component

    Returns:
        Writer for tuples
    """
    def pair_writer(state: LumenState, value: Tuple[K, V]) -> None:
        state.new_table()
        first(state, value[0])
        state.raw_seti(-2, 1)
        second(state, value[1])
        state.raw_seti(-2, 2)

    return pair_writer


def push_iterator(state: LumenState, push_item: Callable[[LumenState, T], int], items: Iterable[T]) -> int:
    """
    Push a generic-for iterator over items.

    Pushes three values: the iterator function, and nil for both the loop
    state and the initial control value.  Each call of the iterator function
    pushes the next item using push_item; after the last item it returns nil.

    Args:
        state: VM state
        push_item: Pushes one item and returns how many values it pushed
        items: Items to iterate over

    Returns:
        Number of pushed values (always 3)
    """
    remaining: Iterator[T] = iter(items)

    def step(inner: LumenState) -> int:
        try:
            item = next(remaining)

        except StopIteration:
            inner.push_nil()
            return 1

        return push_item(inner, item)

    state.push_function(step, "iterator")
    state.push_nil()
    state.push_nil()
    return 3
