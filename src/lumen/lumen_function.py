"""Documented host functions - host callables with declared parameters and results."""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List

from lumen.lumen_error import LumenArgumentError, LumenPeekError, LumenRuntimeError
from lumen.lumen_peek import LumenReader, peek_optional
from lumen.lumen_push import LumenWriter
from lumen.lumen_state import LumenState
from lumen.lumen_value import LumenHostFunction


@dataclass(frozen=True)
class LumenParameterDoc:
    """Documentation of a function parameter."""
    name: str
    type: str
    description: str
    is_optional: bool = False


@dataclass(frozen=True)
class LumenParameter:
    """A function parameter: how to read it, and how it is documented."""
    reader: LumenReader[Any]
    doc: LumenParameterDoc


@dataclass(frozen=True)
class LumenFunctionResultDoc:
    """Documentation of a function result."""
    type: str
    description: str


@dataclass(frozen=True)
class LumenFunctionResult:
    """A function result: how to push it, and how it is documented."""
    writer: LumenWriter[Any]
    doc: LumenFunctionResultDoc


@dataclass(frozen=True)
class LumenFunctionDoc:
    """Machine-readable documentation of a documented function."""
    name: str
    description: str
    parameters: List[LumenParameterDoc] = field(default_factory=list)
    results: List[LumenFunctionResultDoc] = field(default_factory=list)
    since: str | None = None


@dataclass(frozen=True)
class LumenDocumentedFunction:
    """
    A host function together with its parameter readers and result writers.

    When called from the VM the declared parameters are read from stack
    positions 1..n, the implementation is called with them, and each declared
    result is pushed.  With a single declared result the implementation's return
    value is pushed as is; with several results it must return a tuple holding
    one value per result.

    Optional parameters may only appear as a trailing suffix of the parameter list.
    """
    name: str
    implementation: Callable[..., Any]
    parameters: List[LumenParameter] = field(default_factory=list)
    results: List[LumenFunctionResult] = field(default_factory=list)
    description: str = ""
    since: str | None = None
    pass_state: bool = False  # Call implementation(state, *args)

    def __post_init__(self) -> None:
        seen_optional = False
        for param in self.parameters:
            if param.doc.is_optional:
                seen_optional = True

            elif seen_optional:
                raise ValueError(
                    f"Function '{self.name}': required parameter '{param.doc.name}' follows an optional parameter"
                )

    def invoke(self, state: LumenState) -> int:
        """
        Run the function against the current stack frame.

        Args:
            state: VM state whose frame holds the arguments

        Returns:
            Number of pushed results

        Raises:
            LumenArgumentError: If an argument is rejected by its reader
        """
        args: List[Any] = []
        for position, param in enumerate(self.parameters, start=1):
            try:
                args.append(param.reader(state, position))

            except LumenPeekError as e:
                logging.getLogger("LumenDocumentedFunction").debug(
                    "Bad argument #%d (%s) to %s: %s", position, param.doc.name, self.name, e.message
                )
                raise LumenArgumentError(position, e, self.name) from e

        if self.pass_state:
            value = self.implementation(state, *args)

        else:
            value = self.implementation(*args)

        return self.push_results(state, value)

    def push_results(self, state: LumenState, value: Any) -> int:
        """
        Push the declared results for a return value.

        Returns:
            Number of pushed values
        """
        if not self.results:
            return 0

        if len(self.results) == 1:
            self.results[0].writer(state, value)
            return 1

        if not isinstance(value, tuple) or len(value) != len(self.results):
            raise LumenRuntimeError(
                f"Function '{self.name}' must return a tuple of {len(self.results)} values"
            )

        for result, item in zip(self.results, value):
            result.writer(state, item)

        return len(self.results)

    def to_host_function(self) -> LumenHostFunction:
        """Create the VM-callable wrapper for this function."""
        return LumenHostFunction(self.invoke, self.name)

    def push(self, state: LumenState) -> None:
        """Push this function onto the stack."""
        state.push_function(self.to_host_function())

    def with_name(self, name: str) -> 'LumenDocumentedFunction':
        """Return a copy of this function under a different name."""
        return replace(self, name=name)

    def documentation(self) -> LumenFunctionDoc:
        """Return the function's documentation."""
        return LumenFunctionDoc(
            name=self.name,
            description=self.description,
            parameters=[p.doc for p in self.parameters],
            results=[r.doc for r in self.results],
            since=self.since
        )


def defun(
    name: str,
    implementation: Callable[..., Any],
    parameters: List[LumenParameter] | None = None,
    results: List[LumenFunctionResult] | None = None,
    description: str = "",
    since: str | None = None,
    pass_state: bool = False
) -> LumenDocumentedFunction:
    """
    Define a documented function.

    Args:
        name: Function name
        implementation: Host callable
        parameters: Declared parameters, in order
        results: Declared results, in order
        description: What the function does
        since: Version in which the function was introduced
        pass_state: Whether the implementation takes the state as first argument

    Returns:
        The documented function
    """
    return LumenDocumentedFunction(
        name=name,
        implementation=implementation,
        parameters=list(parameters or []),
        results=list(results or []),
        description=description,
        since=since,
        pass_state=pass_state
    )


def parameter(reader: LumenReader[Any], type_name: str, name: str, description: str) -> LumenParameter:
    """Declare a required parameter."""
    return LumenParameter(reader, LumenParameterDoc(name, type_name, description, False))


def optional_parameter(reader: LumenReader[Any], type_name: str, name: str, description: str) -> LumenParameter:
    """Declare an optional parameter; missing values and nil are passed as None."""
    return LumenParameter(peek_optional(reader), LumenParameterDoc(name, type_name, description, True))


def function_result(writer: LumenWriter[Any], type_name: str, description: str) -> LumenFunctionResult:
    """Declare a function result."""
    return LumenFunctionResult(writer, LumenFunctionResultDoc(type_name, description))
