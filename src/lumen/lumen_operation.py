"""Operator kinds that can be overloaded on VM objects, and their metamethod slot names."""

from enum import Enum


class LumenOperation(Enum):
    """Overloadable operations; values are the VM's metamethod slot names."""
    ADD = "__add"
    SUB = "__sub"
    MUL = "__mul"
    DIV = "__div"
    MOD = "__mod"
    POW = "__pow"
    UNM = "__unm"
    IDIV = "__idiv"
    BAND = "__band"
    BOR = "__bor"
    BXOR = "__bxor"
    BNOT = "__bnot"
    SHL = "__shl"
    SHR = "__shr"
    CONCAT = "__concat"
    LEN = "__len"
    EQ = "__eq"
    LT = "__lt"
    LE = "__le"
    INDEX = "__index"
    NEWINDEX = "__newindex"
    CALL = "__call"
    TOSTRING = "__tostring"
    PAIRS = "__pairs"
    CLOSE = "__close"
    NAME = "__name"


# Slots the type descriptor fills itself; a declared operator for one of these replaces the built-in handler
DISPATCH_OPERATIONS = frozenset({LumenOperation.INDEX, LumenOperation.NEWINDEX, LumenOperation.PAIRS})

# Operations whose operands must have an integer representation
BITWISE_OPERATIONS = frozenset({
    LumenOperation.BAND, LumenOperation.BOR, LumenOperation.BXOR,
    LumenOperation.SHL, LumenOperation.SHR, LumenOperation.BNOT,
})

UNARY_OPERATIONS = frozenset({LumenOperation.UNM, LumenOperation.BNOT})

COMPARE_OPERATIONS = (LumenOperation.EQ, LumenOperation.LT, LumenOperation.LE)


def metamethod_name(op: 'LumenOperation | str') -> str:
    """
    Get the metatable slot name for an operation.

    Args:
        op: An operation, or the slot name of a custom operation

    Returns:
        Slot name, e.g. "__tostring"
    """
    if isinstance(op, LumenOperation):
        return op.value

    return op
