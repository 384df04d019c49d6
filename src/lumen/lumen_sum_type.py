"""
Host tagged unions as VM objects.

A sum type is a UD type whose members depend on the variant the wrapped
host value currently holds.  Every lookup first determines the variant tag
of the wrapped value, then consults that variant's members, and finally the
members shared by all variants.  Because a setter may switch the value to
another variant, the member set of an object can change after assignment.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from lumen.lumen_error import LumenPeekError, LumenRuntimeError
from lumen.lumen_push import push_text
from lumen.lumen_state import LumenState
from lumen.lumen_udtype import (
    LumenMember, LumenOperationDecl, LumenProperty, LumenPropertyMember, LumenUDType, defreadonly
)
from lumen.lumen_value import LumenHostFunction


@dataclass(frozen=True)
class LumenVariant:
    """One alternative of a sum type, with the members specific to it."""
    tag: str
    members: List[LumenMember] = field(default_factory=list)
    description: str = ""


class _VariantMembers:
    """Resolved member maps of a single variant."""

    def __init__(self, variant: LumenVariant) -> None:
        self.variant = variant
        self.properties: Dict[str, LumenProperty] = {}
        self.methods: Dict[str, LumenHostFunction] = {}
        for member in variant.members:
            if isinstance(member, LumenPropertyMember):
                self.properties[member.name] = member.property

            else:
                self.methods[member.name] = member.method.to_host_function()


class LumenUDSumType(LumenUDType):
    """
    Descriptor of a userdata type wrapping a tagged union.

    Sum types never cache property values, since the set of valid
    properties depends on the current variant.
    """

    def __init__(
        self,
        name: str,
        operations: List[LumenOperationDecl] | None,
        members: List[LumenMember] | None,
        variants: List[LumenVariant],
        tag_of: Callable[[Any], str],
        strict_index: bool | None = None,
        tag_property: str | None = "tag"
    ) -> None:
        """
        Initialize a sum type descriptor.

        Args:
            name: Unique type name
            operations: Operator overloads shared by all variants
            members: Members shared by all variants
            variants: The alternatives of the union
            tag_of: Returns the variant tag of a host value
            strict_index: Raise "no key" on undeclared reads; None uses the state's config
            tag_property: Name of an automatic read-only property holding the tag, or None
        """
        super().__init__(name, operations, members, cached=False, strict_index=strict_index)
        self._logger = logging.getLogger("LumenUDSumType")
        self.tag_of = tag_of
        self._variants: Dict[str, _VariantMembers] = {}
        for variant in variants:
            self.add_variant(variant)

        if tag_property is not None and tag_property not in self._properties:
            self.add_member(defreadonly(tag_property, "variant tag", (push_text, tag_of)))

    @property
    def variant_tags(self) -> List[str]:
        """Tags of all declared variants, in declaration order."""
        return list(self._variants)

    def add_variant(self, variant: LumenVariant) -> None:
        """
        Declare a variant; a later variant with the same tag replaces the earlier one.

        Raises:
            LumenTypeSealedError: If the type has already been used
        """
        self._check_unsealed()
        self._variants[variant.tag] = _VariantMembers(variant)

    def _variant_of(self, value: Any) -> _VariantMembers:
        tag = self.tag_of(value)
        variant = self._variants.get(tag)
        if variant is None:
            raise LumenRuntimeError(f"{self.name} value has unknown variant '{tag}'")

        return variant

    def resolve_property(self, value: Any, name: str) -> LumenProperty | None:
        prop = self._variant_of(value).properties.get(name)
        if prop is not None:
            return prop

        return self._properties.get(name)

    def resolve_method(self, value: Any, name: str) -> LumenHostFunction | None:
        method = self._variant_of(value).methods.get(name)
        if method is not None:
            return method

        return self._method_functions.get(name)

    def members_of(self, value: Any) -> List[Tuple[str, LumenProperty | LumenHostFunction]]:
        variant = self._variant_of(value)
        members: Dict[str, LumenProperty | LumenHostFunction] = {}
        members.update(self._method_functions)
        members.update(self._properties)
        members.update(variant.methods)
        members.update(variant.properties)
        return sorted(members.items(), key=lambda item: item[0])

    def property_names(self) -> List[str]:
        names = set(self._properties)
        for variant in self._variants.values():
            names.update(variant.properties)

        return sorted(names)

    def uses_cache(self, state: LumenState) -> bool:
        return False

    def check_value(self, value: Any) -> None:
        """
        Reject values whose tag is not a declared variant.

        Raises:
            LumenRuntimeError: If the value's tag is not a declared variant
        """
        self._variant_of(value)

    def peek_variant(self, state: LumenState, idx: int, tag: str) -> Any:
        """
        Retrieve the wrapped host value, requiring a specific variant.

        Raises:
            LumenPeekError: If the value is not of this type or holds another variant
        """
        value = self.peek(state, idx)
        actual = self.tag_of(value)
        if actual != tag:
            raise LumenPeekError(f"{self.name} ({tag})", f"{self.name} ({actual})", state.absindex(idx))

        return value


def defsumtype(
    name: str,
    operations: List[LumenOperationDecl] | None,
    members: List[LumenMember] | None,
    variants: List[LumenVariant],
    tag_of: Callable[[Any], str],
    strict_index: bool | None = None,
    tag_property: str | None = "tag"
) -> LumenUDSumType:
    """
    Define a new userdata type for a tagged union.

    Args:
        name: Unique type name
        operations: Operator overloads shared by all variants
        members: Members shared by all variants
        variants: The alternatives, each with its own members
        tag_of: Returns the variant tag of a host value
        strict_index: Raise "no key" when reading undeclared fields
        tag_property: Name of the automatic read-only tag property, or None

    Returns:
        The sum type descriptor
    """
    return LumenUDSumType(name, operations, members, variants, tag_of, strict_index, tag_property)
