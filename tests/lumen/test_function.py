"""Tests for documented host functions."""

import pytest

from lumen import (
    LumenArgumentError, LumenRuntimeError, LumenStatus, defun, function_result, optional_parameter, parameter,
    peek_integer, peek_list, peek_string, push_integral, push_text
)


@pytest.fixture
def repeat():
    """Create a documented function repeating a string."""
    return defun(
        "repeat",
        lambda text, count: text * (1 if count is None else count),
        [
            parameter(peek_string, "string", "text", "text to repeat"),
            optional_parameter(peek_integer, "integer", "count", "number of repetitions"),
        ],
        [function_result(push_text, "string", "repeated text")],
        description="Repeat a string",
        since="1.0"
    )


class TestInvocation:
    """Test calling documented functions from the VM."""

    def test_call_with_all_arguments(self, state, repeat):
        """Test reading every declared parameter."""
        repeat.push(state)
        state.push_string("ab")
        state.push_integer(3)
        state.call(2, 1)
        assert state.to_string(-1) == "ababab"

    def test_missing_optional_argument(self, state, repeat):
        """Test that a missing optional argument is passed as None."""
        repeat.push(state)
        state.push_string("ab")
        state.call(1, 1)
        assert state.to_string(-1) == "ab"

    def test_nil_optional_argument(self, state, repeat):
        """Test that nil counts as a missing optional argument."""
        repeat.push(state)
        state.push_string("ab")
        state.push_nil()
        state.call(2, 1)
        assert state.to_string(-1) == "ab"

    def test_bad_argument(self, state, repeat):
        """Test that reader failures name the argument position."""
        repeat.push(state)
        state.push_string("ab")
        state.push_string("x")
        with pytest.raises(LumenArgumentError, match="bad argument #2: expected integer, got string") as exc_info:
            state.call(2, 1)

        assert exc_info.value.position == 2
        assert exc_info.value.function_name == "repeat"
        assert state.gettop() == 0

    def test_missing_required_argument(self, state, repeat):
        """Test calling without the required argument."""
        repeat.push(state)
        assert state.pcall(0, 1) == LumenStatus.ERRRUN
        assert state.to_string(-1) == "bad argument #1: expected string, got no value"

    def test_argument_error_with_context(self, state):
        """Test that nested reader context is kept in the message."""
        total = defun(
            "total",
            sum,
            [parameter(peek_list(peek_integer), "{integer,...}", "numbers", "numbers to add")],
            [function_result(push_integral, "integer", "sum")]
        )
        total.push(state)
        state.new_table()
        state.push_integer(1)
        state.raw_seti(-2, 1)
        state.push_string("two")
        state.raw_seti(-2, 2)
        assert state.pcall(1, 1) == LumenStatus.ERRRUN
        assert state.to_string(-1) == "bad argument #1: expected integer, got string (while retrieving element 2)"

    def test_extra_arguments_ignored(self, state, repeat):
        """Test that undeclared arguments are not read."""
        repeat.push(state)
        state.push_string("a")
        state.push_integer(2)
        state.new_table()
        state.call(3, 1)
        assert state.to_string(-1) == "aa"

    def test_no_results(self, state):
        """Test a function without declared results."""
        seen = []
        record = defun("record", seen.append, [parameter(peek_integer, "integer", "n", "value")])
        record.push(state)
        state.push_integer(5)
        state.call(1, 0)
        assert seen == [5]
        assert state.gettop() == 0

    def test_multiple_results(self, state):
        """Test pushing one value per declared result."""
        divmod_fn = defun(
            "divmod",
            divmod,
            [parameter(peek_integer, "integer", "a", "dividend"), parameter(peek_integer, "integer", "b", "divisor")],
            [
                function_result(push_integral, "integer", "quotient"),
                function_result(push_integral, "integer", "remainder"),
            ]
        )
        divmod_fn.push(state)
        state.push_integer(7)
        state.push_integer(2)
        state.call(2, 2)
        assert (state.to_integer(1), state.to_integer(2)) == (3, 1)

    def test_multiple_results_need_tuple(self, state):
        """Test that a function with several results must return a tuple of that size."""
        bad = defun(
            "bad",
            lambda: 1,
            [],
            [function_result(push_integral, "integer", "a"), function_result(push_integral, "integer", "b")]
        )
        bad.push(state)
        with pytest.raises(LumenRuntimeError, match="must return a tuple of 2 values"):
            state.call(0, 2)

    def test_pass_state(self, state):
        """Test giving the implementation access to the state."""
        def top_and_value(inner, value):
            return inner.gettop() * 100 + value

        fn = defun(
            "top_and_value",
            top_and_value,
            [parameter(peek_integer, "integer", "value", "a value")],
            [function_result(push_integral, "integer", "result")],
            pass_state=True
        )
        fn.push(state)
        state.push_integer(7)
        state.push_integer(8)
        state.call(2, 1)
        assert state.to_integer(-1) == 207

    def test_implementation_exception(self, state):
        """Test that a Python exception in the implementation becomes a VM error."""
        fail = defun("fail", lambda: 1 / 0)
        fail.push(state)
        assert state.pcall(0, 0) == LumenStatus.ERRRUN
        assert state.to_string(-1) == "division by zero"


class TestDeclaration:
    """Test function declarations and documentation."""

    def test_documentation(self, repeat):
        """Test the machine-readable documentation."""
        doc = repeat.documentation()
        assert doc.name == "repeat"
        assert doc.description == "Repeat a string"
        assert doc.since == "1.0"
        assert [(p.name, p.type, p.is_optional) for p in doc.parameters] == [
            ("text", "string", False), ("count", "integer", True)
        ]
        assert doc.results[0].type == "string"

    def test_required_after_optional_rejected(self):
        """Test that optional parameters must come last."""
        with pytest.raises(ValueError, match="follows an optional parameter"):
            defun(
                "bad",
                lambda a, b: None,
                [
                    optional_parameter(peek_integer, "integer", "a", "first"),
                    parameter(peek_integer, "integer", "b", "second"),
                ]
            )

    def test_with_name(self, repeat):
        """Test renaming a function."""
        renamed = repeat.with_name("rep")
        assert renamed.name == "rep"
        assert repeat.name == "repeat"
        assert renamed.to_host_function().name == "rep"
