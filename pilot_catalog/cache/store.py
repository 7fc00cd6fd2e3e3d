"""
Key-value store adapters used by the cache evictor.

``ValkeyKeyStore`` talks to the live cache; ``InMemoryKeyStore`` keeps
keys in a dict, matches them with Valkey's glob rules and backs local
development and the test-suite.
"""

import logging
import re
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from valkey.exceptions import ConnectionError, ReadOnlyError, TimeoutError, ValkeyError

from ..errors import CacheCommandError, CacheUnavailableError, InvalidationError
from .client import ValkeyClient
from .config import ValkeyConnectionError

logger = logging.getLogger(__name__)

# a read-only replica answers, but cannot take the DEL until failover completes
UNAVAILABLE_ERRORS = (ConnectionError, TimeoutError, ReadOnlyError, ValkeyConnectionError)


@runtime_checkable
class KeyStore(Protocol):
    """Pattern listing and bulk deletion over a key-value cache."""

    async def list_keys(self, pattern: str) -> List[str]:
        ...

    async def delete_keys(self, keys: Iterable[str]) -> int:
        ...


def _cache_error(error: Exception, action: str) -> InvalidationError:
    if isinstance(error, UNAVAILABLE_ERRORS):
        logger.warning(f"Cache unavailable while {action}: {error}")
        return CacheUnavailableError(f"Cache unreachable while {action}: {error}")
    logger.error(f"Cache rejected command while {action}: {error}")
    return CacheCommandError(f"Cache rejected command while {action}: {error}")


class ValkeyKeyStore:
    """
    KeyStore backed by a ValkeyClient.

    Every Valkey failure is raised as an InvalidationError: outages and
    read-only replicas as ``CacheUnavailableError``, any other error reply
    as ``CacheCommandError``.
    """

    def __init__(self, client: ValkeyClient):
        self.client = client

    async def list_keys(self, pattern: str) -> List[str]:
        try:
            return await self.client.scan_keys(pattern)
        except (ValkeyError, ValkeyConnectionError) as e:
            raise _cache_error(e, f"listing {pattern}") from e

    async def delete_keys(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        try:
            return await self.client.delete_keys(keys)
        except (ValkeyError, ValkeyConnectionError) as e:
            raise _cache_error(e, f"deleting {len(keys)} key(s)") from e


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """
    Compile a Valkey MATCH glob.

    Supports ``*``, ``?``, bracket classes with ``^`` negation and
    ``a-z`` ranges, and backslash escapes inside and outside classes.
    """
    parts = []
    i, n = 0, len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        elif ch == "\\" and i + 1 < n:
            i += 1
            parts.append(re.escape(pattern[i]))
        elif ch == "[":
            i += 1
            negate = i < n and pattern[i] == "^"
            if negate:
                i += 1
            members = []
            while i < n and pattern[i] != "]":
                if pattern[i] == "\\" and i + 1 < n:
                    i += 1
                    members.append(re.escape(pattern[i]))
                elif i + 2 < n and pattern[i + 1] == "-" and pattern[i + 2] != "]":
                    low, high = sorted((pattern[i], pattern[i + 2]))
                    members.append(f"{re.escape(low)}-{re.escape(high)}")
                    i += 2
                else:
                    members.append(re.escape(pattern[i]))
                i += 1
            if members:
                parts.append(("[^" if negate else "[") + "".join(members) + "]")
            else:
                # "[]" matches nothing, "[^]" any single character
                parts.append("." if negate else "(?!)")
        else:
            parts.append(re.escape(ch))
        i += 1
    return re.compile("".join(parts), re.DOTALL)


class InMemoryKeyStore:
    """Dict-backed KeyStore."""

    def __init__(self, entries: Optional[Dict[str, Any]] = None):
        self._entries: Dict[str, Any] = dict(entries or {})
        self.list_calls = 0
        self.delete_calls = 0

    def set(self, key: str, value: Any = "") -> None:
        self._entries[key] = value

    def keys(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def list_keys(self, pattern: str) -> List[str]:
        self.list_calls += 1
        matcher = glob_to_regex(pattern)
        return [key for key in self._entries if matcher.fullmatch(key)]

    async def delete_keys(self, keys: Iterable[str]) -> int:
        self.delete_calls += 1
        deleted = 0
        for key in keys:
            if key in self._entries:
                del self._entries[key]
                deleted += 1
        return deleted
