"""Tests for Lumen readers and writers."""

import pytest

from lumen import (
    LumenCorruptionError, LumenPeekError, LumenType, peek_boolean, peek_choice, peek_field, peek_integer, peek_list,
    peek_map, peek_name, peek_nil, peek_number, peek_optional, peek_pair, peek_read, peek_set, peek_string, peek_truthy,
    peek_userdata, push_bool, push_float, push_integral, push_iterator, push_list, push_map, push_nil,
    push_optional, push_pair, push_set, push_text
)


class TestScalarReaders:
    """Test readers for basic values."""

    def test_peek_integer(self, state):
        """Test reading integers, including coerced values."""
        state.push_integer(5)
        state.push_number(6.0)
        state.push_string("7")
        assert [peek_integer(state, i) for i in (1, 2, 3)] == [5, 6, 7]

    def test_peek_integer_rejects_fraction(self, state):
        """Test that a fractional number is not an integer."""
        state.push_number(1.5)
        with pytest.raises(LumenPeekError, match="expected integer, got number"):
            peek_integer(state, 1)

    def test_peek_number(self, state):
        """Test reading numbers as floats."""
        state.push_integer(2)
        value = peek_number(state, 1)
        assert value == 2.0
        assert isinstance(value, float)

    def test_peek_string_accepts_numbers(self, state):
        """Test that numbers are converted to strings."""
        state.push_integer(42)
        assert peek_string(state, 1) == "42"

    def test_peek_name_requires_string(self, state):
        """Test that names must be actual strings."""
        state.push_integer(42)
        with pytest.raises(LumenPeekError, match="expected string, got number"):
            peek_name(state, 1)

    def test_peek_boolean_is_strict(self, state):
        """Test that only booleans are accepted."""
        state.push_boolean(False)
        state.push_nil()
        assert peek_boolean(state, 1) is False
        with pytest.raises(LumenPeekError, match="expected boolean, got nil"):
            peek_boolean(state, 2)

    def test_peek_truthy_never_fails(self, state):
        """Test reading the truth value of arbitrary values."""
        state.new_table()
        state.push_nil()
        assert peek_truthy(state, 1) is True
        assert peek_truthy(state, 2) is False
        assert peek_truthy(state, 3) is False

    def test_peek_nil(self, state):
        """Test that only nil or no value is accepted."""
        state.push_nil()
        state.push_integer(0)
        assert peek_nil(state, 1) is None
        assert peek_nil(state, 5) is None
        with pytest.raises(LumenPeekError):
            peek_nil(state, 2)

    def test_error_records_index(self, state):
        """Test that errors carry the absolute stack index."""
        state.push_integer(1)
        state.new_table()
        with pytest.raises(LumenPeekError) as exc_info:
            peek_string(state, -1)

        assert exc_info.value.index == 2
        assert exc_info.value.expected == "string"
        assert exc_info.value.actual == "table"

    def test_error_uses_type_name(self, state):
        """Test that userdata are reported by their type name."""
        state.new_userdata(1)
        state.new_metatable("Thing")
        state.set_metatable(1)
        with pytest.raises(LumenPeekError, match="expected integer, got Thing"):
            peek_integer(state, 1)


class TestCompositeReaders:
    """Test readers for tables and combinations."""

    def test_peek_list(self, state):
        """Test reading a sequence."""
        push_list(push_integral)(state, [1, 2, 3])
        assert peek_list(peek_integer)(state, 1) == [1, 2, 3]
        assert state.gettop() == 1

    def test_peek_list_reports_element(self, state):
        """Test that a bad element is named in the error."""
        push_list(push_text)(state, ["1", "two"])
        with pytest.raises(LumenPeekError) as exc_info:
            peek_list(peek_integer)(state, 1)

        assert str(exc_info.value) == "expected integer, got string (while retrieving element 2)"
        assert state.gettop() == 1

    def test_peek_list_nested_context(self, state):
        """Test that context accumulates through nested readers."""
        push_list(push_list(push_text))(state, [["1"], ["2", "x"]])
        with pytest.raises(LumenPeekError) as exc_info:
            peek_list(peek_list(peek_integer))(state, 1)

        assert exc_info.value.context == ["element 2", "element 2"]

    def test_peek_list_rejects_non_table(self, state):
        """Test reading a list from a string."""
        state.push_string("abc")
        with pytest.raises(LumenPeekError, match="expected table, got string"):
            peek_list(peek_string)(state, 1)

    def test_peek_map(self, state):
        """Test reading a table as a dictionary."""
        push_map(push_text, push_integral)(state, {"a": 1, "b": 2})
        assert peek_map(peek_string, peek_integer)(state, -1) == {"a": 1, "b": 2}
        assert state.gettop() == 1

    def test_peek_map_restores_stack_on_error(self, state):
        """Test that a failed map read leaves the stack unchanged."""
        push_map(push_text, push_text)(state, {"a": "x"})
        with pytest.raises(LumenPeekError, match="value for key 'a'"):
            peek_map(peek_string, peek_integer)(state, 1)

        assert state.gettop() == 1

    def test_peek_set(self, state):
        """Test that only keys with truthy values are members."""
        state.new_table()
        state.push_boolean(True)
        state.set_field(1, "in")
        state.push_boolean(False)
        state.set_field(1, "out")
        assert peek_set(peek_string)(state, 1) == {"in"}

    def test_peek_pair(self, state):
        """Test reading a two-element table."""
        push_pair(push_text, push_integral)(state, ("a", 1))
        assert peek_pair(peek_string, peek_integer)(state, 1) == ("a", 1)

    def test_peek_optional(self, state):
        """Test that nil and missing values read as None."""
        state.push_nil()
        state.push_integer(3)
        reader = peek_optional(peek_integer)
        assert reader(state, 1) is None
        assert reader(state, 2) == 3
        assert reader(state, 3) is None

    def test_peek_field(self, state):
        """Test reading a named field."""
        state.new_table()
        state.push_integer(8)
        state.set_field(1, "size")
        assert peek_field(peek_integer, "size")(state, 1) == 8
        with pytest.raises(LumenPeekError, match="field 'name'"):
            peek_field(peek_string, "name")(state, 1)

        assert state.gettop() == 1

    def test_peek_choice(self, state):
        """Test that the first successful reader wins."""
        reader = peek_choice(peek_integer, peek_list(peek_integer))
        state.push_integer(1)
        push_list(push_integral)(state, [2])
        state.push_boolean(True)
        assert reader(state, 1) == 1
        assert reader(state, 2) == [2]
        with pytest.raises(LumenPeekError, match="all choices failed"):
            reader(state, 3)

    def test_peek_read(self, state):
        """Test parsing strings with a Python function."""
        reader = peek_read(lambda text: tuple(int(part) for part in text.split(".")), "version")
        state.push_string("1.2.3")
        state.push_string("1.x")
        assert reader(state, 1) == (1, 2, 3)
        with pytest.raises(LumenPeekError, match="Could not read: 1.x"):
            reader(state, 2)

    def test_peek_userdata(self, state):
        """Test reading the payload of a tagged userdata."""
        state.new_userdata({"k": 1})
        state.new_metatable("Box")
        state.set_metatable(1)
        assert peek_userdata("Box")(state, 1) == {"k": 1}
        with pytest.raises(LumenPeekError, match="expected Other, got Box"):
            peek_userdata("Other")(state, 1)

    def test_peek_userdata_without_payload(self, state):
        """Test that a tagged userdata without a host value is reported as corruption."""
        state.new_userdata()
        state.new_metatable("Box")
        state.set_metatable(1)
        with pytest.raises(LumenCorruptionError, match="Corrupted Box object, host value not found."):
            peek_userdata("Box")(state, 1)


class TestWriters:
    """Test writers."""

    def test_scalar_writers(self, state):
        """Test that each writer pushes exactly one value of the right type."""
        push_nil(state)
        push_bool(state, True)
        push_integral(state, 3)
        push_float(state, 3)
        push_text(state, "s")
        assert state.gettop() == 5
        assert [state.type(i) for i in range(1, 6)] == [
            LumenType.NIL, LumenType.BOOLEAN, LumenType.NUMBER, LumenType.NUMBER, LumenType.STRING
        ]
        assert state.is_integer(3)
        assert not state.is_integer(4)

    def test_push_optional(self, state):
        """Test that None becomes nil."""
        writer = push_optional(push_integral)
        writer(state, None)
        writer(state, 1)
        assert state.is_nil(1)
        assert state.to_integer(2) == 1

    def test_push_list(self, state):
        """Test that sequences get keys 1..n."""
        push_list(push_text)(state, iter(["a", "b"]))
        assert state.raw_len(1) == 2
        state.raw_geti(1, 2)
        assert state.to_string(-1) == "b"

    def test_push_set(self, state):
        """Test that set members map to true."""
        push_set(push_integral)(state, {4})
        state.raw_geti(1, 4)
        assert state.to_boolean(-1) is True

    def test_push_iterator(self, state):
        """Test iterating host items through the generic-for protocol."""
        def push_item(inner, item):
            inner.push_string(item[0])
            inner.push_integer(item[1])
            return 2

        state.new_table()
        count = push_iterator(state, push_item, [("a", 1), ("b", 2)])
        assert count == 3
        assert state.gettop() == 4
        assert state.is_function(2)

        results = []
        while True:
            state.pushvalue(2)
            state.call(0, 2)
            if state.is_nil(-2):
                break

            results.append((state.to_string(-2), state.to_integer(-1)))
            state.pop(2)

        assert results == [("a", 1), ("b", 2)]
