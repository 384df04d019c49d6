"""Tests for sum type descriptors."""

import math

import pytest

from lumen import (
    LumenPeekError, LumenRuntimeError, LumenType, LumenTypeSealedError, LumenVariant, defproperty, defreadonly,
    defsumtype, peek_string, push_text
)


class TestVariantMembers:
    """Test member resolution by variant."""

    def test_variant_property(self, state, helpers, shape_type, shapes):
        """Test reading a property of the current variant."""
        shape_type.push(state, shapes.Circle(1.5))
        assert helpers.get(state, 1, "radius") == 1.5

    def test_other_variant_property_is_nil(self, state, helpers, shape_type, shapes):
        """Test that another variant's properties are not visible."""
        shape_type.push(state, shapes.Circle(1.5))
        assert helpers.get(state, 1, "width") is None

    def test_shared_members(self, state, shape_type, shapes):
        """Test that shared methods work for every variant."""
        shape_type.push(state, shapes.Rect(2.0, 3.0))
        state.get_field(1, "area")
        state.pushvalue(1)
        state.call(1, 1)
        assert state.to_number(-1) == 6.0

    def test_tag_property(self, state, helpers, shape_type, shapes):
        """Test the automatic tag property."""
        shape_type.push(state, shapes.Rect(1.0, 1.0))
        assert helpers.get(state, 1, "tag") == "rect"
        assert helpers.protected_set(state, 1, "tag", "circle") == "'tag' is a read-only property."

    def test_no_tag_property(self, state, helpers, shapes):
        """Test disabling the tag property."""
        plain = defsumtype("PlainShape", [], [], [LumenVariant("circle")], lambda _: "circle", tag_property=None)
        plain.push(state, shapes.Circle(1.0))
        assert helpers.get(state, 1, "tag") is None

    def test_declared_tag_property_kept(self, state, helpers, shapes):
        """Test that a declared tag property is not replaced."""
        own_tag = defreadonly("tag", "custom tag", (push_text, lambda _: "custom"))
        custom = defsumtype("CustomTag", [], [own_tag], [LumenVariant("circle")], lambda _: "circle")
        custom.push(state, shapes.Circle(1.0))
        assert helpers.get(state, 1, "tag") == "custom"


class TestVariantChanges:
    """Test assignments that switch the variant."""

    def test_write_variant_property(self, state, helpers, shape_type, shapes):
        """Test assigning a property of the current variant."""
        shape_type.push(state, shapes.Circle(1.0))
        helpers.set(state, 1, "radius", lambda s: s.push_number(2.5))
        assert shape_type.peek(state, 1) == shapes.Circle(2.5)

    def test_write_other_variant_property(self, state, helpers, shape_type, shapes):
        """Test that another variant's properties cannot be assigned."""
        shape_type.push(state, shapes.Circle(1.0))
        assert helpers.protected_set(state, 1, "width", 3.0) == "no key width"

    def test_assignment_switches_variant(self, state, helpers, shape_type, shapes):
        """Test that the member set follows the new variant."""
        shape_type.push(state, shapes.Circle(1.0))
        helpers.set(state, 1, "kind", lambda s: s.push_string("rect"))
        assert shape_type.peek(state, 1) == shapes.Rect(2.0, 2.0)
        assert helpers.get(state, 1, "width") == 2.0
        assert helpers.get(state, 1, "radius") is None
        assert helpers.get(state, 1, "tag") == "rect"

    def test_assignment_to_unknown_variant_rejected(self, state, helpers):
        """Test that a setter cannot install a value of an undeclared variant."""
        token_type = defsumtype(
            "Token",
            [],
            [defproperty("kind", "token kind", (push_text, lambda t: t[0]), (peek_string, lambda t, k: (k,)))],
            [LumenVariant("a"), LumenVariant("b")],
            lambda t: t[0]
        )
        token_type.push(state, ("a",))
        assert helpers.protected_set(state, 1, "kind", "zzz") == "Token value has unknown variant 'zzz'"
        assert token_type.peek(state, 1) == ("a",)
        assert helpers.get(state, 1, "kind") == "a"

        helpers.set(state, 1, "kind", lambda s: s.push_string("b"))
        assert token_type.peek(state, 1) == ("b",)

    def test_pairs_follows_variant(self, state, helpers, shape_type, shapes):
        """Test that pairs lists the current variant's members in order."""
        shape_type.push(state, shapes.Circle(1.0))
        assert [key for key, _ in state.iterate(1)] == ["area", "kind", "radius", "tag"]

        helpers.set(state, 1, "kind", lambda s: s.push_string("rect"))
        assert [key for key, _ in state.iterate(1)] == ["area", "height", "kind", "tag", "width"]


class TestSumTypeMarshalling:
    """Test pushing and retrieving sum type values."""

    def test_push_unknown_variant(self, state, shape_type):
        """Test that values of undeclared variants are rejected."""
        class Triangle:
            pass

        with pytest.raises(LumenRuntimeError, match="Shape value has unknown variant 'triangle'"):
            shape_type.push(state, Triangle())

    def test_peek_variant(self, state, shape_type, shapes):
        """Test retrieving a value of a specific variant."""
        shape_type.push(state, shapes.Circle(1.0))
        assert shape_type.peek_variant(state, 1, "circle") == shapes.Circle(1.0)
        with pytest.raises(LumenPeekError, match=r"expected Shape \(rect\), got Shape \(circle\)"):
            shape_type.peek_variant(state, 1, "rect")

    def test_area_of_circle(self, state, shape_type, shapes):
        """Test a shared method on the circle variant."""
        shape_type.push(state, shapes.Circle(1.0))
        state.get_field(1, "area")
        state.pushvalue(1)
        state.call(1, 1)
        assert state.to_number(-1) == pytest.approx(math.pi)

    def test_never_cached(self, state_with_config, shape_type, shapes):
        """Test that sum types ignore the caching default."""
        state = state_with_config(cache_properties_default=True)
        shape_type.push(state, shapes.Circle(1.0))
        assert not shape_type.uses_cache(state)
        state.get_field(1, "radius")
        state.pop(1)
        assert state.get_uservalue(1) == LumenType.NIL


class TestSumTypeDescriptor:
    """Test sum type declaration."""

    def test_variant_tags(self, shape_type):
        """Test the declared variant tags."""
        assert shape_type.variant_tags == ["circle", "rect"]

    def test_property_names(self, shape_type):
        """Test that property names cover all variants."""
        assert shape_type.property_names() == ["height", "kind", "radius", "tag", "width"]

    def test_add_variant_after_use(self, state, shape_type, shapes):
        """Test that a used sum type cannot gain variants."""
        shape_type.push(state, shapes.Circle(1.0))
        with pytest.raises(LumenTypeSealedError):
            shape_type.add_variant(LumenVariant("triangle"))
