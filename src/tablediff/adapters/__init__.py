"""
Backend adapters.

Concrete adapters are reached through the registry so that importing this
package does not require any optional database driver.
"""

from .base import (
    BackendAdapter,
    BatchSupport,
    FastHashSupport,
    build_key_hash_map,
    check_cancelled,
)
from .registry import AdapterRegistry, default_registry

__all__ = [
    "AdapterRegistry",
    "BackendAdapter",
    "BatchSupport",
    "FastHashSupport",
    "build_key_hash_map",
    "check_cancelled",
    "default_registry",
]
