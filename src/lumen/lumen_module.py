"""
Modules: named collections of documented functions and fields.

A module is pushed as a plain table holding its fields and functions.  It
can be made available as a global, recorded in the registry's loaded-modules
table, or registered as a loader in the preload table so that it is only
built when first required.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from lumen.lumen_function import LumenDocumentedFunction, LumenFunctionDoc
from lumen.lumen_state import LumenState
from lumen.lumen_util import set_global_nested
from lumen.lumen_value import REGISTRY_INDEX, REGISTRY_LOADED, REGISTRY_PRELOAD, LumenHostFunction, LumenType


@dataclass(frozen=True)
class LumenField:
    """A non-function value exported by a module."""
    name: str
    description: str
    push_value: Callable[[LumenState], None]


@dataclass(frozen=True)
class LumenModuleDoc:
    """Machine-readable documentation of a module."""
    name: str
    description: str
    fields: Dict[str, str] = field(default_factory=dict)
    functions: List[LumenFunctionDoc] = field(default_factory=list)


@dataclass(frozen=True)
class LumenModule:
    """A named module with fields and documented functions."""
    name: str
    description: str = ""
    fields: List[LumenField] = field(default_factory=list)
    functions: List[LumenDocumentedFunction] = field(default_factory=list)

    def documentation(self) -> LumenModuleDoc:
        """Return the module's documentation."""
        return LumenModuleDoc(
            name=self.name,
            description=self.description,
            fields={f.name: f.description for f in self.fields},
            functions=[fn.documentation() for fn in self.functions]
        )


def push_module(state: LumenState, module: LumenModule) -> None:
    """
    Push a new table holding the module's fields and functions.

    Functions are stored under their own names; a field with the same name
    as a function is overwritten by the function.
    """
    state.create_table(0, len(module.fields) + len(module.functions))
    for module_field in module.fields:
        module_field.push_value(state)
        state.set_field(-2, module_field.name)

    for fn in module.functions:
        fn.push(state)
        state.set_field(-2, fn.name)


def _push_registry_table(state: LumenState, key: str) -> None:
    state.push_string(key)
    if state.raw_get(REGISTRY_INDEX) != LumenType.TABLE:
        state.pop(1)
        state.new_table()
        state.push_string(key)
        state.pushvalue(-2)
        state.raw_set(REGISTRY_INDEX)


def register_module(state: LumenState, module: LumenModule) -> None:
    """
    Make a module available as a global and record it as loaded.

    Dotted module names are assigned as nested fields, so all but the last
    component must already exist.  The module table is left on top of the
    stack.

    Args:
        state: VM state
        module: Module to register
    """
    logger = logging.getLogger("LumenModule")
    _push_registry_table(state, REGISTRY_LOADED)
    state.get_field(-1, module.name)
    if state.type(-1) == LumenType.TABLE:
        logger.debug("Module %s already loaded", module.name)
        state.remove(-2)
        return

    state.pop(1)
    push_module(state, module)
    state.pushvalue(-1)
    state.set_field(-3, module.name)
    state.remove(-2)

    state.pushvalue(-1)
    set_global_nested(state, module.name)
    logger.debug("Registered module %s (%d functions)", module.name, len(module.functions))


def preload_module(state: LumenState, module: LumenModule) -> None:
    """
    Register a loader for the module in the preload table.

    The loader pushes a fresh module table when called.
    """
    def loader(inner: LumenState) -> int:
        push_module(inner, module)
        return 1

    _push_registry_table(state, REGISTRY_PRELOAD)
    state.push_function(LumenHostFunction(loader, f"{module.name} loader"))
    state.set_field(-2, module.name)
    state.pop(1)


def require_module(state: LumenState, name: str) -> Any:
    """
    Push a loaded module, running its preload loader on first use.

    Returns:
        The module table, which is also left on top of the stack

    Raises:
        LumenRuntimeError: If the module is neither loaded nor preloaded
    """
    _push_registry_table(state, REGISTRY_LOADED)
    if state.get_field(-1, name) != LumenType.NIL:
        state.remove(-2)
        return state.value_at(-1)

    state.pop(1)
    _push_registry_table(state, REGISTRY_PRELOAD)
    if state.get_field(-1, name) != LumenType.FUNCTION:
        state.pop(3)
        state.push_string(f"module '{name}' not found")
        state.error()

    state.remove(-2)
    state.push_string(name)
    state.call(1, 1)
    if state.is_nil(-1):
        state.pop(1)
        state.push_boolean(True)

    state.pushvalue(-1)
    state.set_field(-3, name)
    state.remove(-2)
    return state.value_at(-1)
