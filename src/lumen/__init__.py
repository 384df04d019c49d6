"""Lumen - marshalling between Python host values and a stack-based scripting VM."""

# VM state and values
from lumen.lumen_state import LumenState, number_to_string, string_to_number
from lumen.lumen_value import (
    LumenHostFunction, LumenStatus, LumenTable, LumenType, LumenUserdata, MISSING_PAYLOAD, MULTRET,
    REGISTRY_INDEX, REGISTRY_LOADED, REGISTRY_PRELOAD
)
from lumen.lumen_operation import LumenOperation, metamethod_name
from lumen.lumen_config import LumenConfig

# Exceptions
from lumen.lumen_error import (
    LumenError, LumenRuntimeError, LumenStackError, LumenCorruptionError, LumenTypeSealedError,
    LumenPeekError, LumenArgumentError
)

# Readers and writers
from lumen.lumen_peek import (
    LumenReader, type_mismatch, peek_nil, peek_boolean, peek_truthy, peek_integer, peek_number, peek_string,
    peek_name, peek_userdata, peek_optional, peek_list, peek_map, peek_set, peek_pair, peek_field,
    peek_choice, peek_read
)
from lumen.lumen_push import (
    LumenWriter, push_nil, push_bool, push_integral, push_float, push_text, push_name, push_optional,
    push_list, push_map, push_set, push_pair, push_iterator
)
from lumen.lumen_util import (
    LumenPeekOutcome, get_global_nested, set_global_nested, raise_error, pop_value, peek_either,
    push_python_value, peek_python_value
)

# Foreign objects
from lumen.lumen_cache import cached_index, cached_newindex, wrapped_index, push_wrapped
from lumen.lumen_udtype import (
    LumenUDType, LumenProperty, LumenPropertyMember, LumenMethodMember, deftype, defproperty, defreadonly,
    defmethod, operation, udparam
)
from lumen.lumen_sum_type import LumenUDSumType, LumenVariant, defsumtype

# Documented functions and modules
from lumen.lumen_function import (
    LumenDocumentedFunction, LumenParameter, LumenFunctionResult, LumenFunctionDoc, defun, parameter,
    optional_parameter, function_result
)
from lumen.lumen_module import LumenField, LumenModule, push_module, register_module, preload_module, require_module


__all__ = [
    # VM state and values
    "LumenState", "number_to_string", "string_to_number",
    "LumenHostFunction", "LumenStatus", "LumenTable", "LumenType", "LumenUserdata", "MISSING_PAYLOAD", "MULTRET",
    "REGISTRY_INDEX", "REGISTRY_LOADED", "REGISTRY_PRELOAD",
    "LumenOperation", "metamethod_name", "LumenConfig",

    # Exceptions
    "LumenError", "LumenRuntimeError", "LumenStackError", "LumenCorruptionError", "LumenTypeSealedError",
    "LumenPeekError", "LumenArgumentError",

    # Readers and writers
    "LumenReader", "type_mismatch", "peek_nil", "peek_boolean", "peek_truthy", "peek_integer", "peek_number",
    "peek_string", "peek_name", "peek_userdata", "peek_optional", "peek_list", "peek_map", "peek_set",
    "peek_pair", "peek_field", "peek_choice", "peek_read",
    "LumenWriter", "push_nil", "push_bool", "push_integral", "push_float", "push_text", "push_name",
    "push_optional", "push_list", "push_map", "push_set", "push_pair", "push_iterator",
    "LumenPeekOutcome", "get_global_nested", "set_global_nested", "raise_error", "pop_value", "peek_either",
    "push_python_value", "peek_python_value",

    # Foreign objects
    "cached_index", "cached_newindex", "wrapped_index", "push_wrapped",
    "LumenUDType", "LumenProperty", "LumenPropertyMember", "LumenMethodMember", "deftype", "defproperty",
    "defreadonly", "defmethod", "operation", "udparam",
    "LumenUDSumType", "LumenVariant", "defsumtype",

    # Documented functions and modules
    "LumenDocumentedFunction", "LumenParameter", "LumenFunctionResult", "LumenFunctionDoc", "defun", "parameter",
    "optional_parameter", "function_result",
    "LumenField", "LumenModule", "push_module", "register_module", "preload_module", "require_module"
]
