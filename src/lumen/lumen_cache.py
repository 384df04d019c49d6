"""
Caching field access for foreign objects.

Reading a property of a foreign object calls back into host code, which can
be expensive.  The routines here keep a per-object caching table in the
userdata's user value slot, where scripts cannot see or enumerate it, and
consult it before calling a getter.  The cache is an optimization only: with
caching disabled in the state's config every read goes to the getter.
"""

import logging

from lumen.lumen_error import LumenArgumentError, LumenCorruptionError
from lumen.lumen_peek import type_mismatch
from lumen.lumen_state import LumenState
from lumen.lumen_value import LumenHostFunction, LumenType


# Metatable fields consulted by cached_index
GETTERS_FIELD = "getters"
METHODS_FIELD = "methods"

# Registry name of the metatable shared by wrapper tables
WRAPPER_METATABLE = "LumenWrappedObject"


_logger = logging.getLogger("LumenCache")


def _check_handle(state: LumenState) -> None:
    """Ensure argument 1 is a userdata that owns a host value."""
    userdata = state.to_userdata(1)
    if userdata is None:
        raise LumenArgumentError(1, type_mismatch(state, "userdata", 1))

    if not userdata.has_payload():
        _logger.error("Corrupted object of type %s: no host value", state.typename_at(1))
        raise LumenCorruptionError("Corrupted object, host value not found.")


def push_caching_table(state: LumenState, idx: int) -> None:
    """
    Push the caching table of the userdata at idx, creating it on first use.

    Args:
        state: VM state
        idx: Stack index of the userdata
    """
    idx = state.absindex(idx)
    if state.get_uservalue(idx) == LumenType.NIL:
        state.pop(1)
        state.new_table()
        state.pushvalue(-1)
        state.set_uservalue(idx)


def invalidate_cache(state: LumenState, idx: int) -> None:
    """Drop the caching table of the userdata at idx."""
    idx = state.absindex(idx)
    state.push_nil()
    state.set_uservalue(idx)


def cached_index(state: LumenState) -> int:
    """
    Index handler: obj[key] with per-object caching.

    Looks up the key in the caching table, then in the metatable's getters
    (calling the getter and caching its result), then in the metatable's
    methods.  Unknown keys give nil.
    """
    state.settop(2)
    _check_handle(state)
    use_cache = state.config.caching_enabled

    if use_cache:
        push_caching_table(state, 1)  # 3
        state.pushvalue(2)
        if state.raw_get(3) != LumenType.NIL:
            return 1

        state.pop(1)

    else:
        state.push_nil()  # keep the stack layout identical

    if state.get_metafield(1, GETTERS_FIELD) == LumenType.TABLE:  # 4
        state.pushvalue(2)
        if state.raw_get(4) != LumenType.NIL:
            state.pushvalue(1)
            state.call(1, 1)
            if use_cache:
                state.pushvalue(2)
                state.pushvalue(-2)
                state.raw_set(3)

            return 1

        state.pop(2)

    if state.get_metafield(1, METHODS_FIELD) == LumenType.TABLE:
        state.pushvalue(2)
        state.raw_get(-2)
        return 1

    state.push_nil()
    return 1


def cached_newindex(state: LumenState) -> int:
    """
    Record obj[key] = value in the object's caching table.

    Only the cache is updated; running the property setter is the job of the
    type's Newindex dispatch.
    """
    if state.is_none(3):
        raise LumenArgumentError(3, type_mismatch(state, "value", 3))

    state.settop(3)
    _check_handle(state)
    if not state.config.caching_enabled:
        return 0

    push_caching_table(state, 1)  # 4
    state.insert(2)  # obj, cache, key, value
    state.raw_set(2)
    return 0


def wrapped_index(state: LumenState) -> int:
    """
    Index handler for plain tables wrapping a userdata.

    Fields already stored in the wrapper table are returned directly;
    others are read from the wrapped userdata and memoised in the table.
    """
    if not state.is_table(1):
        raise LumenArgumentError(1, type_mismatch(state, "table", 1))

    state.settop(2)
    state.pushvalue(2)
    if state.raw_get(1) != LumenType.NIL:
        return 1

    state.pop(1)

    state.push_string(state.config.wrapped_value_key)
    if state.raw_get(1) != LumenType.USERDATA:
        _logger.error("Corrupted wrapper object: no wrapped userdata")
        raise LumenCorruptionError("Corrupted object, wrapped userdata not found.")

    state.pushvalue(2)
    if state.get_table(-2) != LumenType.NIL:
        state.pushvalue(2)
        state.pushvalue(-2)
        state.raw_set(1)
        return 1

    state.push_nil()
    return 1


def push_wrapped(state: LumenState, idx: int) -> None:
    """
    Push a table wrapping the userdata at idx.

    The wrapper reads through to the userdata via wrapped_index and keeps
    every value it has read.

    Args:
        state: VM state
        idx: Stack index of the userdata
    """
    idx = state.absindex(idx)
    state.new_table()
    state.pushvalue(idx)
    state.set_field(-2, state.config.wrapped_value_key)
    if state.new_metatable(WRAPPER_METATABLE):
        state.push_function(LumenHostFunction(wrapped_index, "wrapped_index"))
        state.set_field(-2, "__index")

    state.set_metatable(-2)
