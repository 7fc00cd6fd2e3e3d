"""
Cache evictor: resolves concrete key patterns to keys and deletes them.

Each eviction lists the keys matched by every pattern, unions them and
issues at most one bulk delete. The deleted-key count is the only
success signal; per-pattern matches are logged for diagnosis.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Set, Union

from ..errors import MalformedPatternError
from .keys import CachePattern, is_concrete_pattern, validate_key
from .store import KeyStore

logger = logging.getLogger(__name__)


@dataclass
class EvictionStats:
    """Running totals across evictions."""

    evictions: int = 0
    patterns: int = 0
    keys_matched: int = 0
    keys_deleted: int = 0
    skipped_deletes: int = 0
    error_count: int = 0
    total_response_time_ms: float = 0.0
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def avg_response_time_ms(self) -> float:
        return self.total_response_time_ms / self.evictions if self.evictions > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evictions": self.evictions,
            "patterns": self.patterns,
            "keys_matched": self.keys_matched,
            "keys_deleted": self.keys_deleted,
            "skipped_deletes": self.skipped_deletes,
            "error_count": self.error_count,
            "avg_response_time_ms": self.avg_response_time_ms,
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
        }


class CacheEvictor:
    """
    Deletes every cache key matched by a set of concrete patterns.

    Eviction is idempotent: evicting an already-evicted pattern set finds no
    keys and returns zero without issuing a delete.
    """

    def __init__(self, store: KeyStore):
        self.store = store
        self.stats = EvictionStats()

    @staticmethod
    def _normalize(patterns: Iterable[Union[str, CachePattern]]) -> Set[str]:
        normalized = set()
        for pattern in patterns:
            rendered = pattern.render() if isinstance(pattern, CachePattern) else pattern
            if not validate_key(rendered):
                raise MalformedPatternError(f"Invalid cache key pattern: {rendered!r}")
            if not is_concrete_pattern(rendered):
                raise MalformedPatternError(
                    f"Pattern {rendered} has an unresolved locale and cannot be evicted"
                )
            normalized.add(rendered)
        return normalized

    async def evict(self, patterns: Iterable[Union[str, CachePattern]]) -> int:
        """
        Evict all keys matching the given patterns.

        Args:
            patterns: Concrete patterns (rendered strings or CachePattern)

        Returns:
            int: Number of keys actually deleted

        Raises:
            MalformedPatternError: If any pattern is unresolved or invalid
            CacheUnavailableError: If the store cannot be reached
        """
        pattern_set = self._normalize(patterns)
        if not pattern_set:
            return 0

        start_time = time.time()
        matched: Set[str] = set()

        try:
            for pattern in sorted(pattern_set):
                keys = await self.store.list_keys(pattern)
                logger.debug(f"Pattern {pattern} matched {len(keys)} key(s)")
                matched.update(keys)

            if not matched:
                self.stats.skipped_deletes += 1
                deleted = 0
            else:
                deleted = await self.store.delete_keys(sorted(matched))
        except Exception:
            self.stats.error_count += 1
            raise
        finally:
            self.stats.evictions += 1
            self.stats.patterns += len(pattern_set)
            self.stats.total_response_time_ms += (time.time() - start_time) * 1000

        self.stats.keys_matched += len(matched)
        self.stats.keys_deleted += deleted

        logger.info(
            f"Evicted {deleted} key(s) from {len(matched)} match(es) "
            f"across {len(pattern_set)} pattern(s)"
        )
        return deleted
