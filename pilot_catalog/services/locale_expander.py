"""
Locale expansion of abstract cache key patterns.
"""

from typing import Iterable, Sequence, Set, Union

from ..cache.keys import LOCALE_PLACEHOLDER, CachePattern
from ..utils.config import DEFAULT_LOCALES


class LocaleExpander:
    """
    Resolves the locale slot of abstract patterns.

    An abstract pattern expands into one concrete pattern per configured
    locale. A concrete pattern expands to itself, so expanding twice is a
    no-op.
    """

    def __init__(self, locales: Sequence[str] = DEFAULT_LOCALES):
        if not locales:
            raise ValueError("LocaleExpander requires at least one locale")
        if len(set(locales)) != len(locales):
            raise ValueError(f"Duplicate locales: {list(locales)}")
        self.locales = tuple(locales)

    def expand(self, pattern: Union[str, CachePattern]) -> Set[str]:
        """Concrete rendered patterns for one pattern."""
        if isinstance(pattern, CachePattern):
            if pattern.is_concrete:
                return {pattern.render()}
            return {pattern.with_locale(locale).render() for locale in self.locales}

        if LOCALE_PLACEHOLDER not in pattern:
            return {pattern}
        return {pattern.replace(LOCALE_PLACEHOLDER, locale) for locale in self.locales}

    def expand_all(self, patterns: Iterable[Union[str, CachePattern]]) -> Set[str]:
        expanded: Set[str] = set()
        for pattern in patterns:
            expanded.update(self.expand(pattern))
        return expanded
