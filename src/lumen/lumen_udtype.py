"""
Host values as VM objects.

A UD type describes how VM code interacts with a host value wrapped in a
userdata: which properties can be read and written, which methods can be
called, and which operators are overloaded.  The type name must be unique;
once the type has been used to push or retrieve a value its behavior can no
longer be modified.

Values returned by property getters are copies: modifying them from VM code
does not change the wrapped host value.  Assigning to a property runs its
setter, which produces a new host value that replaces the wrapped one.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Tuple, Union

from lumen.lumen_cache import GETTERS_FIELD, METHODS_FIELD, cached_index, cached_newindex, invalidate_cache
from lumen.lumen_error import LumenCorruptionError, LumenRuntimeError, LumenTypeSealedError
from lumen.lumen_function import (
    LumenDocumentedFunction, LumenFunctionResult, LumenParameter, function_result, parameter
)
from lumen.lumen_operation import DISPATCH_OPERATIONS, LumenOperation, metamethod_name
from lumen.lumen_peek import LumenReader, peek_userdata, type_mismatch
from lumen.lumen_push import LumenWriter, push_iterator
from lumen.lumen_state import LumenState
from lumen.lumen_value import LumenHostFunction, LumenType


# Pushes the property value(s) of a host value, returns the number pushed
LumenGetter = Callable[[LumenState, Any], int]

# Reads a new property value from a stack index and returns the updated host value
LumenSetter = Callable[[LumenState, int, Any], Any]


@dataclass(frozen=True)
class LumenProperty:
    """A property of a UD object: getter, setter and description."""
    getter: LumenGetter
    setter: LumenSetter
    description: str


@dataclass(frozen=True)
class LumenPropertyMember:
    """Declares a property while building a type."""
    name: str
    property: LumenProperty


@dataclass(frozen=True)
class LumenMethodMember:
    """Declares a method while building a type."""
    name: str
    method: LumenDocumentedFunction


LumenMember = Union[LumenPropertyMember, LumenMethodMember]

LumenOperationDecl = Tuple['LumenOperation | str', LumenDocumentedFunction]

_DISPATCH_SLOTS = frozenset(op.value for op in DISPATCH_OPERATIONS)


def defproperty(
    name: str,
    description: str,
    push_get: Tuple[LumenWriter[Any], Callable[[Any], Any]],
    peek_set: Tuple[LumenReader[Any], Callable[[Any, Any], Any]]
) -> LumenPropertyMember:
    """
    Declare a read- and writable property.

    Args:
        name: Property name
        description: What the property holds
        push_get: Writer for the property value and a function extracting it from the host value
        peek_set: Reader for new values and a function returning the updated host value

    Returns:
        Property member
    """
    writer, get = push_get
    reader, update = peek_set

    def getter(state: LumenState, value: Any) -> int:
        writer(state, get(value))
        return 1

    def setter(state: LumenState, idx: int, value: Any) -> Any:
        return update(value, reader(state, idx))

    return LumenPropertyMember(name, LumenProperty(getter, setter, description))


def defreadonly(
    name: str,
    description: str,
    push_get: Tuple[LumenWriter[Any], Callable[[Any], Any]]
) -> LumenPropertyMember:
    """
    Declare a read-only property; assigning to it raises an error.

    Args:
        name: Property name
        description: What the property holds
        push_get: Writer for the property value and a function extracting it from the host value

    Returns:
        Property member
    """
    message = f"'{name}' is a read-only property."

    def reject(_state: LumenState, _idx: int) -> Any:
        raise LumenRuntimeError(message)

    return defproperty(name, description, push_get, (reject, lambda value, _new: value))


def defmethod(fn: LumenDocumentedFunction) -> LumenMethodMember:
    """Use a documented function as a method, under the function's name."""
    return LumenMethodMember(fn.name, fn)


def operation(op: 'LumenOperation | str', fn: LumenDocumentedFunction) -> LumenOperationDecl:
    """Declare an operator overload; the function is renamed after the metamethod slot."""
    return op, fn.with_name(metamethod_name(op))


class LumenUDType:
    """
    Descriptor of a userdata type.

    Holds the type's operators, properties and methods, and realizes the
    shared metatable the first time a value of the type is pushed.
    """

    def __init__(
        self,
        name: str,
        operations: List[LumenOperationDecl] | None = None,
        members: List[LumenMember] | None = None,
        cached: bool | None = None,
        strict_index: bool | None = None
    ) -> None:
        """
        Initialize a descriptor.

        Args:
            name: Unique type name, used as the metatable's registry key
            operations: (operation, function) pairs
            members: Properties and methods; later duplicates replace earlier ones
            cached: Cache property values per object; None uses the state's config
            strict_index: Raise "no key" on undeclared reads; None uses the state's config
        """
        self.name = name
        self.cached = cached
        self.strict_index = strict_index
        self._logger = logging.getLogger("LumenUDType")
        self._sealed = False
        self._operations: List[Tuple[str, LumenDocumentedFunction]] = []
        self._properties: Dict[str, LumenProperty] = {}
        self._methods: Dict[str, LumenDocumentedFunction] = {}
        self._method_functions: Dict[str, LumenHostFunction] = {}

        for op, fn in operations or []:
            self.add_operation(op, fn)

        for member in members or []:
            self.add_member(member)

        self._index_function = LumenHostFunction(self.index_function, f"{name}.__index")
        self._newindex_function = LumenHostFunction(self.newindex_function, f"{name}.__newindex")
        self._pairs_function = LumenHostFunction(self.pairs_function, f"{name}.__pairs")
        self._cache_writer = LumenHostFunction(cached_newindex, "cached_newindex")

    @property
    def operations(self) -> List[Tuple[str, LumenDocumentedFunction]]:
        """Declared operations as (slot name, function) pairs."""
        return list(self._operations)

    @property
    def properties(self) -> Mapping[str, LumenProperty]:
        """Read-only view of the declared properties."""
        return MappingProxyType(self._properties)

    @property
    def methods(self) -> Mapping[str, LumenDocumentedFunction]:
        """Read-only view of the declared methods."""
        return MappingProxyType(self._methods)

    @property
    def sealed(self) -> bool:
        """Whether the type has been used and can no longer change."""
        return self._sealed

    def _check_unsealed(self) -> None:
        if self._sealed:
            raise LumenTypeSealedError(f"Type '{self.name}' has already been used and cannot be modified")

    def add_operation(self, op: 'LumenOperation | str', fn: LumenDocumentedFunction) -> None:
        """
        Declare an operator overload.

        Raises:
            LumenTypeSealedError: If the type has already been used
        """
        self._check_unsealed()
        slot = metamethod_name(op)
        self._operations.append((slot, fn.with_name(slot)))

    def add_member(self, member: LumenMember) -> None:
        """
        Declare a property or method.

        Raises:
            LumenTypeSealedError: If the type has already been used
        """
        self._check_unsealed()
        if isinstance(member, LumenPropertyMember):
            self._properties[member.name] = member.property
            return

        self._methods[member.name] = member.method
        self._method_functions[member.name] = member.method.to_host_function()

    def seal(self) -> None:
        """Mark the type as used; further modification raises LumenTypeSealedError."""
        if not self._sealed:
            self._sealed = True
            self._logger.debug(
                "Sealed type %s (%d properties, %d methods, %d operations)",
                self.name, len(self._properties), len(self._methods), len(self._operations)
            )

    # ------------------------------------------------------------------
    # Member resolution; overridden by sum types
    # ------------------------------------------------------------------

    def resolve_property(self, value: Any, name: str) -> LumenProperty | None:  # pylint: disable=unused-argument
        """Find the property called name for a host value."""
        return self._properties.get(name)

    def resolve_method(self, value: Any, name: str) -> LumenHostFunction | None:  # pylint: disable=unused-argument
        """Find the VM function of the method called name for a host value."""
        return self._method_functions.get(name)

    def members_of(self, value: Any) -> List[Tuple[str, LumenProperty | LumenHostFunction]]:  # pylint: disable=unused-argument
        """
        List all members available on a host value, in ascending name order.

        Returns:
            (name, property or method function) pairs
        """
        members: Dict[str, LumenProperty | LumenHostFunction] = {}
        members.update(self._method_functions)
        members.update(self._properties)
        return sorted(members.items(), key=lambda item: item[0])

    def property_names(self) -> List[str]:
        """Names of all properties any value of this type can have."""
        return sorted(self._properties)

    def uses_cache(self, state: LumenState) -> bool:
        """Whether objects of this type cache property values in the given state."""
        cached = self.cached if self.cached is not None else state.config.cache_properties_default
        return cached and state.config.caching_enabled

    def _strict(self, state: LumenState) -> bool:
        return self.strict_index if self.strict_index is not None else state.config.strict_index_default

    # ------------------------------------------------------------------
    # Metatable
    # ------------------------------------------------------------------

    def push_metatable(self, state: LumenState) -> None:
        """
        Push the type's metatable, creating it in the registry on first use.

        An existing registry entry is reused unchanged.
        """
        self.seal()
        if not state.new_metatable(self.name):
            return

        cached = self.uses_cache(state)
        self._add_slot(state, LumenOperation.INDEX.value,
                       LumenHostFunction(cached_index, "cached_index") if cached else self._index_function)
        self._add_slot(state, LumenOperation.NEWINDEX.value, self._newindex_function)
        self._add_slot(state, LumenOperation.PAIRS.value, self._pairs_function)
        for slot, fn in self._operations:
            if slot in _DISPATCH_SLOTS:
                self._logger.debug("Type %s overrides the built-in %s handler", self.name, slot)

            self._add_slot(state, slot, fn.to_host_function())

        if cached:
            state.new_table()
            for name in self.property_names():
                state.push_function(self._make_getter(name), f"{self.name}.{name}")
                state.set_field(-2, name)

            state.set_field(-2, GETTERS_FIELD)

            state.new_table()
            for name, fn in self._method_functions.items():
                state.push_function(fn)
                state.set_field(-2, name)

            state.set_field(-2, METHODS_FIELD)

        self._logger.debug("Realized metatable for %s (cached=%s)", self.name, cached)

    @staticmethod
    def _add_slot(state: LumenState, slot: str, fn: LumenHostFunction) -> None:
        state.push_function(fn)
        state.set_field(-2, slot)

    def _make_getter(self, name: str) -> Callable[[LumenState], int]:
        def getter(state: LumenState) -> int:
            value = self.peek(state, 1)
            prop = self.resolve_property(value, name)
            if prop is None:
                state.push_nil()
                return 1

            return prop.getter(state, value)

        return getter

    # ------------------------------------------------------------------
    # Marshalling
    # ------------------------------------------------------------------

    def check_value(self, value: Any) -> None:
        """
        Reject host values this type cannot wrap.

        Runs before a value is pushed and before a setter's result replaces
        the wrapped value.

        Raises:
            LumenRuntimeError: If the value cannot be wrapped
        """

    def push(self, state: LumenState, value: Any) -> None:
        """Wrap a host value in a new userdata of this type and push it."""
        self.check_value(value)
        state.new_userdata(value)
        self.push_metatable(state)
        state.set_metatable(-2)

    def peek(self, state: LumenState, idx: int) -> Any:
        """
        Retrieve the host value wrapped by a userdata of this type.

        Raises:
            LumenPeekError: If the value at idx is not a userdata of this type
            LumenCorruptionError: If the userdata has no host value
        """
        self.seal()
        userdata = state.test_userdata(idx, self.name)
        if userdata is None:
            raise type_mismatch(state, self.name, idx)

        if not userdata.has_payload():
            self._logger.error("Corrupted %s object: no host value", self.name)
            raise LumenCorruptionError(f"Corrupted {self.name} object, host value not found.")

        return userdata.payload

    def param(self, name: str, description: str) -> LumenParameter:
        """Declare a function parameter of this type."""
        return parameter(peek_userdata(self.name), self.name, name, description)

    def result(self, description: str) -> LumenFunctionResult:
        """Declare a function result of this type."""
        return function_result(self.push, self.name, description)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _field_name(self, state: LumenState) -> str | None:
        if state.type(2) != LumenType.STRING:
            return None

        return state.to_string(2)

    def index_function(self, state: LumenState) -> int:
        """Index handler: read a property or look up a method."""
        value = self.peek(state, 1)
        name = self._field_name(state)
        if name is not None:
            prop = self.resolve_property(value, name)
            if prop is not None:
                return prop.getter(state, value)

            method = self.resolve_method(value, name)
            if method is not None:
                state.push_function(method)
                return 1

        if self._strict(state):
            raise LumenRuntimeError(f"no key {self._describe_key(state)}")

        state.push_nil()
        return 1

    def newindex_function(self, state: LumenState) -> int:
        """Newindex handler: run a property setter and replace the wrapped value."""
        value = self.peek(state, 1)
        name = self._field_name(state)
        prop = self.resolve_property(value, name) if name is not None else None
        if prop is None:
            raise LumenRuntimeError(f"no key {self._describe_key(state)}")

        new_value = prop.setter(state, 3, value)
        self.check_value(new_value)
        if not state.put_userdata(1, self.name, new_value):
            raise LumenRuntimeError("Could not set userdata value.")

        has_cache = state.get_uservalue(1) != LumenType.NIL
        state.pop(1)
        if has_cache:
            self._refresh_cache(state, name, new_value)

        return 0

    def _refresh_cache(self, state: LumenState, name: str, new_value: Any) -> None:
        """Drop the object's cache and record the property's new value in a fresh one."""
        invalidate_cache(state, 1)
        prop = self.resolve_property(new_value, name)
        if prop is None:
            return

        top = state.gettop()
        state.push_function(self._cache_writer)
        state.pushvalue(1)
        state.push_string(name)
        count = prop.getter(state, new_value)
        if count == 0:
            state.push_nil()

        else:
            state.settop(top + 4)

        state.call(3, 0)

    @staticmethod
    def _describe_key(state: LumenState) -> str:
        key = state.to_string(2)
        if key is not None:
            return key

        return state.typename_at(2)

    def pairs_function(self, state: LumenState) -> int:
        """Pairs handler: iterate over all members in ascending name order."""
        value = self.peek(state, 1)

        def push_member(inner: LumenState, item: Tuple[str, LumenProperty | LumenHostFunction]) -> int:
            name, member = item
            inner.push_string(name)
            if isinstance(member, LumenProperty):
                return 1 + member.getter(inner, value)

            inner.push_function(member)
            return 2

        return push_iterator(state, push_member, self.members_of(value))


def deftype(
    name: str,
    operations: List[LumenOperationDecl] | None = None,
    members: List[LumenMember] | None = None,
    cached: bool | None = None,
    strict_index: bool | None = None
) -> LumenUDType:
    """
    Define a new userdata type.

    Args:
        name: Unique type name
        operations: Operator overloads, usually built with `operation`
        members: Properties and methods, built with `defproperty`, `defreadonly` and `defmethod`
        cached: Cache property values per object
        strict_index: Raise "no key" when reading undeclared fields

    Returns:
        The type descriptor
    """
    return LumenUDType(name, operations, members, cached, strict_index)


def udparam(type_name: str, name: str, description: str) -> LumenParameter:
    """
    Declare a parameter reading a userdata type by name.

    Useful for functions that are part of the type they take, e.g. operators.
    """
    return parameter(peek_userdata(type_name), type_name, name, description)
