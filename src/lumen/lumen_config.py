"""Configuration for Lumen VM states."""

from dataclasses import dataclass


@dataclass
class LumenConfig:
    """Settings shared by a VM state and the descriptors realized in it."""
    max_stack_size: int = 1000000  # Total slots across all frames
    min_stack: int = 20  # Slots guaranteed to every host function call
    caching_enabled: bool = True  # Global switch for per-object read caching
    cache_properties_default: bool = False  # Used when deftype() gets cached=None
    strict_index_default: bool = False  # Raise "no key" on undeclared field reads
    wrapped_value_key: str = "_lumen_value"  # Field holding the userdata in wrapper tables
