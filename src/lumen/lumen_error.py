"""Exception classes for the Lumen host/VM bridge."""

from typing import Any, List


class LumenError(Exception):
    """
    Base exception for Lumen errors.

    Every Lumen error carries the VM-level error object.  For errors raised
    from Python this is the formatted message; for errors raised by scripts
    via `state.error()` it is whatever value was on top of the stack.
    """

    def __init__(self, message: str, error_object: Any = None):
        """
        Initialize error.

        Args:
            message: Core error description
            error_object: VM value to push when the error is caught by a protected call
        """
        self.message = message
        self.error_object = message if error_object is None else error_object
        super().__init__(message)


class LumenRuntimeError(LumenError):
    """Error raised inside the VM, catchable by a protected call."""


class LumenStackError(LumenRuntimeError):
    """Invalid stack index or stack overflow."""


class LumenCorruptionError(LumenRuntimeError):
    """A wrapped foreign payload is missing its internal marker."""


class LumenTypeSealedError(LumenError):
    """A type descriptor was modified after it was first used inside the VM."""


class LumenPeekError(LumenRuntimeError):
    """A reader found a VM value of the wrong shape."""

    def __init__(
        self,
        expected: str,
        actual: str,
        index: int | None = None,
        context: List[str] | None = None,
        detail: str | None = None
    ):
        """
        Initialize reader error.

        Args:
            expected: Name of the expected type
            actual: Name of the type that was found
            index: Stack position that was inspected
            context: Innermost-first list of retrieval steps (e.g. "element 3")
            detail: Replaces the default "expected X, got Y" text when given
        """
        self.expected = expected
        self.actual = actual
        self.index = index
        self.context: List[str] = list(context) if context else []
        self.detail = detail
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the mismatch together with any retrieval context."""
        message = self.detail if self.detail is not None else f"expected {self.expected}, got {self.actual}"
        if self.context:
            message += " (while retrieving " + ", in ".join(self.context) + ")"

        return message

    def describe_mismatch(self) -> str:
        """Return the message without retrieval context."""
        if self.detail is not None:
            return self.detail

        return f"expected {self.expected}, got {self.actual}"

    def within(self, step: str) -> 'LumenPeekError':
        """
        Return a copy of this error with an outer retrieval step added.

        Args:
            step: Description of the enclosing retrieval, e.g. "element 2"

        Returns:
            New error with the step appended to the context
        """
        return LumenPeekError(self.expected, self.actual, self.index, self.context + [step], self.detail)


class LumenArgumentError(LumenRuntimeError):
    """A documented function received an argument its reader rejected."""

    def __init__(self, position: int, cause: LumenPeekError, function_name: str | None = None):
        """
        Initialize argument error.

        Args:
            position: 1-based argument number
            cause: The reader failure
            function_name: Name of the called function, used in log messages only
        """
        self.position = position
        self.cause = cause
        self.function_name = function_name
        super().__init__(f"bad argument #{position}: {cause.message}")
