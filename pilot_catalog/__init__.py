"""
Pilot Catalog: cache invalidation for a multilingual parts catalog API

Keeps cached catalog responses consistent with the relational store:
1. Pattern generation from changed products, images, notes, Q&A and stories
2. Locale expansion of every pattern
3. Valkey eviction by pattern, direct (watermarks) or staged (batch queue)

Operators can also list and evict an endpoint's cached keys by locale.
"""

__version__ = "0.1.0"
