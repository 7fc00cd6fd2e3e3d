"""
Cache key naming conventions for the catalog endpoints.

Every cached response is stored under ``/{endpoint}:{selector}:{locale}``.
Invalidation works with patterns over that layout: an endpoint namespace,
a glob match expression for the selector and a locale slot that is either
a concrete locale code or the unresolved ``{locale}`` placeholder.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


KEY_PREFIX = "/"
KEY_SEPARATOR = ":"
LOCALE_PLACEHOLDER = "{locale}"


class CacheEndpoint(str, Enum):
    """Endpoint namespaces whose responses are cached."""

    BULLETIN_VIEWER = "bulletin_viewer"
    CONTACT_US = "contact_us"
    CONTENT = "content"
    DIAGRAM_GROUP = "diagram_group"
    DIAGRAM_PAGE = "diagram_page"
    DIAGRAM_PROP = "diagram_prop"
    DIAGRAM_YEAR = "diagram_year"
    GENERAL_DOC = "general_doc"
    PARTS_HOME = "parts_home"
    PRODUCT_LISTING = "product_listing"
    REDIRECT = "redirect"
    REPAIR_STORIES = "repair_stories"
    SINGLE_PRODUCT = "single_product"
    TECH_ARTICLE = "tech_article"


@dataclass(frozen=True, order=True)
class CachePattern:
    """
    A family of cache keys.

    ``locale=None`` marks an abstract pattern; it renders with the locale
    placeholder and must be expanded before eviction.
    """

    endpoint: CacheEndpoint
    match: str
    locale: Optional[str] = None

    @property
    def is_concrete(self) -> bool:
        return self.locale is not None

    def with_locale(self, locale: str) -> "CachePattern":
        return CachePattern(self.endpoint, self.match, locale)

    def render(self) -> str:
        return CacheKeyBuilder.build_pattern(
            self.endpoint, self.match, self.locale or LOCALE_PLACEHOLDER
        )

    def __str__(self) -> str:
        return self.render()


def is_concrete_pattern(pattern: str) -> bool:
    """True if a rendered pattern has no unresolved locale slot."""
    return LOCALE_PLACEHOLDER not in pattern


class CacheKeyBuilder:
    """
    Builder for consistent cache keys and key patterns.
    """

    @staticmethod
    def _endpoint_str(endpoint: Union[CacheEndpoint, str]) -> str:
        return endpoint.value if isinstance(endpoint, CacheEndpoint) else str(endpoint)

    @staticmethod
    def build_key(endpoint: Union[CacheEndpoint, str], selector: Any, locale: str) -> str:
        """
        Build the key a cached endpoint response is stored under.

        Example:
            build_key(CacheEndpoint.SINGLE_PRODUCT, 500, "en")
            # Returns: "/single_product:500:en"
        """
        endpoint_str = CacheKeyBuilder._endpoint_str(endpoint)
        return f"{KEY_PREFIX}{endpoint_str}{KEY_SEPARATOR}{selector}{KEY_SEPARATOR}{locale}"

    @staticmethod
    def build_pattern(endpoint: Union[CacheEndpoint, str], match: str, locale: str) -> str:
        """
        Build a key pattern for SCAN matching.

        Example:
            build_pattern(CacheEndpoint.PRODUCT_LISTING, "*", "fr")
            # Returns: "/product_listing:*:fr"
        """
        return CacheKeyBuilder.build_key(endpoint, match, locale)

    @staticmethod
    def build_filter_pattern(
        endpoint: Union[CacheEndpoint, str],
        locale: str,
        substring: Optional[str] = None
    ) -> str:
        """
        Build the pattern for an operator-supplied substring filter.

        No filter matches every selector of the endpoint; a filter matches
        selectors containing it anywhere.
        """
        match = "*" if not substring else f"*{substring}*"
        return CacheKeyBuilder.build_pattern(endpoint, match, locale)


def validate_key(key: str) -> bool:
    """
    Validate cache key format and length.

    Args:
        key: Cache key or pattern to validate

    Returns:
        bool: True if key is usable
    """
    if not key or not isinstance(key, str):
        return False

    if len(key) > 250:
        return False

    invalid_chars = ['\n', '\r', '\t', ' ']
    if any(char in key for char in invalid_chars):
        return False

    return True
