"""Shared fixtures and sample types for Lumen tests."""

import math
from dataclasses import dataclass, replace
from types import SimpleNamespace
from typing import Any, List

import pytest

from lumen import (
    LumenConfig, LumenState, LumenUDSumType, LumenUDType, LumenVariant, defmethod, defproperty, defreadonly,
    defsumtype, deftype, defun, function_result, operation, peek_integer, peek_number, peek_string,
    push_float, push_integral, push_text, udparam, LumenOperation
)


@dataclass(frozen=True)
class Foo:
    """Host value used by the sample UD type."""
    num: int
    text: str


@dataclass(frozen=True)
class Circle:
    """Circle variant of the sample sum type."""
    radius: float


@dataclass(frozen=True)
class Rect:
    """Rectangle variant of the sample sum type."""
    width: float
    height: float


def show_foo(foo: Foo) -> str:
    """Render a Foo the way its __tostring operator does."""
    return f'Foo {foo.num} "{foo.text}"'


def make_foo_type(name: str = "Foo", cached: bool | None = None, strict_index: bool | None = None) -> LumenUDType:
    """Build the sample Foo type: a writable number, a read-only string and a show method."""
    show = defun(
        "show",
        show_foo,
        [udparam(name, "foo", "the Foo to render")],
        [function_result(push_text, "string", "stringified foo")],
        description="Render a Foo"
    )
    return deftype(
        name,
        [operation(LumenOperation.TOSTRING, show)],
        [
            defproperty("num", "some number", (push_integral, lambda foo: foo.num),
                        (peek_integer, lambda foo, n: replace(foo, num=n))),
            defreadonly("str", "some string", (push_text, lambda foo: foo.text)),
            defmethod(show),
        ],
        cached=cached,
        strict_index=strict_index
    )


def shape_tag(shape: Any) -> str:
    """Variant tag of a sample shape."""
    if isinstance(shape, Circle):
        return "circle"

    if isinstance(shape, Rect):
        return "rect"

    return type(shape).__name__.lower()


def shape_area(shape: Any) -> float:
    """Area of a sample shape."""
    if isinstance(shape, Circle):
        return math.pi * shape.radius ** 2

    return shape.width * shape.height


def convert_shape(shape: Any, kind: str) -> Any:
    """Switch a shape to another variant."""
    if kind == shape_tag(shape):
        return shape

    if kind == "rect":
        return Rect(shape.radius * 2, shape.radius * 2)

    if kind == "circle":
        return Circle(min(shape.width, shape.height) / 2)

    raise ValueError(f"unknown shape kind: {kind}")


def make_shape_type(name: str = "Shape") -> LumenUDSumType:
    """Build the sample Shape sum type with circle and rect variants."""
    area = defun(
        "area",
        shape_area,
        [udparam(name, "shape", "the shape")],
        [function_result(push_float, "number", "area of the shape")]
    )
    variants: List[LumenVariant] = [
        LumenVariant("circle", [
            defproperty("radius", "circle radius", (push_float, lambda c: c.radius),
                        (peek_number, lambda c, r: Circle(r))),
        ]),
        LumenVariant("rect", [
            defproperty("width", "rectangle width", (push_float, lambda r: r.width),
                        (peek_number, lambda r, w: replace(r, width=w))),
            defproperty("height", "rectangle height", (push_float, lambda r: r.height),
                        (peek_number, lambda r, h: replace(r, height=h))),
        ]),
    ]
    return defsumtype(
        name,
        [],
        [
            defmethod(area),
            defproperty("kind", "shape kind; assigning converts the shape", (push_text, shape_tag),
                        (peek_string, convert_shape)),
        ],
        variants,
        shape_tag
    )


@pytest.fixture
def state():
    """Create a fresh VM state for each test."""
    return LumenState()


@pytest.fixture
def state_with_config():
    """Factory for VM states with custom configuration."""
    def _create_state(**settings: Any) -> LumenState:
        return LumenState(LumenConfig(**settings))
    return _create_state


@pytest.fixture
def make_foo():
    """Constructor for Foo host values."""
    return Foo


@pytest.fixture
def foo_type():
    """Create the sample Foo type."""
    return make_foo_type()


@pytest.fixture
def foo_type_factory():
    """Factory for Foo types with custom name, caching and strictness."""
    return make_foo_type


@pytest.fixture
def shapes():
    """Constructors for Shape host values."""
    return SimpleNamespace(Circle=Circle, Rect=Rect)


@pytest.fixture
def shape_type():
    """Create the sample Shape sum type."""
    return make_shape_type()


class LumenTestHelpers:
    """Helper utilities for Lumen testing."""

    @staticmethod
    def get(state: LumenState, idx: int, key: str) -> Any:
        """Read obj[key] through the VM's field access and return it."""
        state.get_field(idx, key)
        value = state.value_at(-1)
        state.pop(1)
        return value

    @staticmethod
    def set(state: LumenState, idx: int, key: str, push_value: Any) -> None:
        """Perform obj[key] = value, pushing the value with push_value(state)."""
        idx = state.absindex(idx)
        push_value(state)
        state.set_field(idx, key)

    @staticmethod
    def protected_set(state: LumenState, idx: int, key: str, value: Any) -> Any:
        """Assign obj[key] = value in a protected call; return the error object or None."""
        idx = state.absindex(idx)

        def assign(inner: LumenState) -> int:
            inner.set_field(1, key)
            return 0

        state.push_function(assign, "assign")
        state.pushvalue(idx)
        state.push_value(value)
        status = state.pcall(2, 0)
        if status == 0:
            return None

        error = state.value_at(-1)
        state.pop(1)
        return error

    @staticmethod
    def collect_pairs(state: LumenState, idx: int) -> List[Any]:
        """Collect the (key, value) pairs produced by the generic-for protocol."""
        return list(state.iterate(idx))


@pytest.fixture
def helpers():
    """Provide test helper utilities."""
    return LumenTestHelpers
