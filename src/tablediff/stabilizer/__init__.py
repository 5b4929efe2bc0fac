"""
Hierarchical key stabilizer.

Turns object-prefixed, physically numbered entity names of configuration
trees into structure-based keys, so two documents that differ only in object
prefix and absolute rack numbering produce the same keys.
"""

from .devices import (
    DeviceAddress,
    assign_crate_ordinals,
    crate_key_for,
    parse_device_address,
    rebuild_device_keys,
    stable_device_key,
)
from .labels import normalize_entity_names, ranked_name, stable_device_name
from .names import (
    normalize_name_for_key,
    normalize_spaces,
    parse_crate_slot,
    strip_crate_slot_suffix,
    strip_name_prefix,
    strip_object_prefix,
)
from .nets import net_base_label, rebuild_net_keys

__all__ = [
    "DeviceAddress",
    "assign_crate_ordinals",
    "crate_key_for",
    "net_base_label",
    "normalize_entity_names",
    "normalize_name_for_key",
    "normalize_spaces",
    "parse_crate_slot",
    "parse_device_address",
    "ranked_name",
    "rebuild_device_keys",
    "rebuild_net_keys",
    "stable_device_key",
    "stable_device_name",
    "strip_crate_slot_suffix",
    "strip_name_prefix",
    "strip_object_prefix",
]
