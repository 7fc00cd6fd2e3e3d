"""
Operator-triggered cache inspection and eviction by endpoint pattern.
"""

import logging
from typing import List, Optional, Sequence

from ..cache.evictor import CacheEvictor
from ..cache.keys import CacheEndpoint, CacheKeyBuilder
from ..cache.store import KeyStore
from ..errors import InvalidRequestError

logger = logging.getLogger(__name__)


class PatternTriggerService:
    """
    Lists or evicts the cached responses of one endpoint in one locale.

    An optional substring narrows the selector; without it every key of
    the endpoint and locale matches.
    """

    def __init__(self, store: KeyStore, evictor: CacheEvictor, locales: Sequence[str]):
        self.store = store
        self.evictor = evictor
        self.locales = tuple(locales)

    def build_pattern(self, endpoint: str, locale: str, pattern: Optional[str] = None) -> str:
        if locale not in self.locales:
            raise InvalidRequestError(f"Unsupported locale {locale!r}; expected one of {list(self.locales)}")
        try:
            endpoint = CacheEndpoint(endpoint)
        except ValueError as e:
            raise InvalidRequestError(f"Unknown cache endpoint {endpoint!r}") from e
        if pattern is not None and any(ch in pattern for ch in "\n\r\t "):
            raise InvalidRequestError("Pattern filter must not contain whitespace")
        return CacheKeyBuilder.build_filter_pattern(endpoint, locale, pattern)

    async def list_keys(self, endpoint: str, locale: str, pattern: Optional[str] = None) -> List[str]:
        match_pattern = self.build_pattern(endpoint, locale, pattern)
        keys = sorted(await self.store.list_keys(match_pattern))
        logger.debug(f"{match_pattern} matched {len(keys)} key(s)")
        return keys

    async def delete_keys(self, endpoint: str, locale: str, pattern: Optional[str] = None) -> int:
        match_pattern = self.build_pattern(endpoint, locale, pattern)
        deleted = await self.evictor.evict({match_pattern})
        logger.info(f"Operator eviction of {match_pattern}: {deleted} key(s) deleted")
        return deleted
