"""
Caching layer for the catalog API.

This package contains the Valkey client configuration, the cache key
vocabulary, key-store adapters and the cache evictor.
"""

from .config import ValkeyConfig, ValkeyConnectionError
from .client import ValkeyClient
from .keys import (
    KEY_PREFIX,
    LOCALE_PLACEHOLDER,
    CacheEndpoint,
    CachePattern,
    CacheKeyBuilder,
    is_concrete_pattern,
    validate_key,
)
from .store import KeyStore, ValkeyKeyStore, InMemoryKeyStore
from .evictor import CacheEvictor, EvictionStats

__all__ = [
    # Configuration
    "ValkeyConfig",
    "ValkeyConnectionError",

    # Client
    "ValkeyClient",

    # Keys
    "KEY_PREFIX",
    "LOCALE_PLACEHOLDER",
    "CacheEndpoint",
    "CachePattern",
    "CacheKeyBuilder",
    "is_concrete_pattern",
    "validate_key",

    # Stores
    "KeyStore",
    "ValkeyKeyStore",
    "InMemoryKeyStore",

    # Eviction
    "CacheEvictor",
    "EvictionStats",
]
