"""
Cache key pattern generation from changed catalog entities.

Given the entities that changed, this module walks the catalog's
relationships to find every cached endpoint response that may now be
stale, and returns abstract (locale-unresolved) patterns for them:

- the product's own detail view
- the product listing of its category's ancestor at the listing depth
- every diagram page whose live product is the changed product
- diagram group and prop pages linked through group membership or
  prop housing
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cache.keys import CacheEndpoint, CachePattern
from ..database.models import (
    Category,
    Product,
    DiagramPage,
    DiagramGroupMember,
    DiagramProp,
    TRACKED_MODELS,
)
from ..errors import UpstreamQueryError
from ..models.enums import EntityKind
from ..models.invalidation import ChangeRecord, EntityRef
from .supersession import SupersessionResolver, chunked

logger = logging.getLogger(__name__)


def _pattern(endpoint: CacheEndpoint, selector: int) -> CachePattern:
    return CachePattern(endpoint=endpoint, match=str(selector))


class PatternGenerator:
    """
    Derives abstract cache key patterns from changed entities.

    Output is a set per entity, so traversal order never matters, and
    identical input over identical catalog state yields identical output.
    Entities or relationships that cannot be resolved are left out rather
    than reported as errors.
    """

    def __init__(self, session: Session, listing_depth: int = 2, max_hops: int = 50):
        """
        Args:
            session: SQLAlchemy session used for relationship queries
            listing_depth: Depth of listing categories in the tree (roots are 1)
            max_hops: Longest supersession chain followed per diagram page
        """
        if listing_depth < 1:
            raise ValueError("listing_depth must be at least 1")
        self.session = session
        self.listing_depth = listing_depth
        self.resolver = SupersessionResolver(session, max_hops=max_hops)

    def generate(
        self, changes: Iterable[Union[ChangeRecord, EntityRef]]
    ) -> Dict[EntityRef, Set[CachePattern]]:
        """
        Map each changed entity to the abstract patterns it invalidates.

        Args:
            changes: Change records or entity refs

        Returns:
            Dict of entity ref to pattern set; entities yielding nothing are omitted

        Raises:
            UpstreamQueryError: If the relational store fails
        """
        refs = {change.ref if isinstance(change, ChangeRecord) else change for change in changes}
        if not refs:
            return {}

        try:
            owners = self._resolve_owners(refs)
            product_patterns = self.patterns_for_products(
                {pid for pid in owners.values() if pid is not None}
            )
        except SQLAlchemyError as e:
            logger.error(f"Pattern generation query failed: {e}")
            raise UpstreamQueryError(f"Pattern generation failed: {e}") from e

        result: Dict[EntityRef, Set[CachePattern]] = {}
        for ref in refs:
            patterns: Set[CachePattern] = set()
            if ref.kind == EntityKind.STORY:
                patterns.add(_pattern(CacheEndpoint.REPAIR_STORIES, ref.entity_id))
            owner = owners.get(ref)
            if owner is not None:
                patterns |= product_patterns.get(owner, set())
            if patterns:
                result[ref] = patterns
            else:
                logger.debug(f"No cache patterns for {ref}")

        logger.info(
            f"Generated {sum(len(p) for p in result.values())} pattern(s) for "
            f"{len(result)} of {len(refs)} changed entities"
        )
        return result

    def _resolve_owners(self, refs: Set[EntityRef]) -> Dict[EntityRef, Optional[int]]:
        """Product owning each entity; products own themselves."""
        owners: Dict[EntityRef, Optional[int]] = {}
        by_kind: Dict[EntityKind, Set[int]] = defaultdict(set)
        for ref in refs:
            if ref.kind == EntityKind.PRODUCT:
                owners[ref] = ref.entity_id
            else:
                by_kind[ref.kind].add(ref.entity_id)

        for kind, ids in by_kind.items():
            model, pk = TRACKED_MODELS[kind]
            found = {}
            for batch in chunked(ids):
                rows = self.session.query(pk, model.product_id).filter(pk.in_(batch)).all()
                found.update({entity_id: product_id for entity_id, product_id in rows})
            for entity_id in ids:
                owners[EntityRef(kind=kind, entity_id=entity_id)] = found.get(entity_id)
        return owners

    def patterns_for_products(self, product_ids: Set[int]) -> Dict[int, Set[CachePattern]]:
        """Abstract patterns per changed product."""
        if not product_ids:
            return {}

        patterns: Dict[int, Set[CachePattern]] = {
            pid: {_pattern(CacheEndpoint.SINGLE_PRODUCT, pid)} for pid in product_ids
        }

        for pid, category_id in self._listing_categories(product_ids).items():
            patterns[pid].add(_pattern(CacheEndpoint.PRODUCT_LISTING, category_id))

        for pid, page_ids in self._affected_pages(product_ids).items():
            patterns[pid].update(_pattern(CacheEndpoint.DIAGRAM_PAGE, page) for page in page_ids)

        for pid, linked in self._diagram_links(product_ids).items():
            patterns[pid].update(linked)

        return patterns

    # Category tree

    def _category_chains(self, category_ids: Set[int]) -> Dict[int, List[int]]:
        """
        Ancestor chain (self first, root last) for each category.

        Categories on a cycle or under a missing parent get no chain.
        """
        parents: Dict[int, Optional[int]] = {}
        frontier = set(category_ids)
        while frontier:
            for batch in chunked(frontier):
                rows = (
                    self.session.query(Category.category_id, Category.parent_id)
                    .filter(Category.category_id.in_(batch))
                    .all()
                )
                parents.update({cid: parent for cid, parent in rows})
            frontier = {
                parents[cid] for cid in frontier
                if cid in parents and parents[cid] is not None and parents[cid] not in parents
            }

        chains: Dict[int, List[int]] = {}
        for category_id in category_ids:
            chain = []
            current: Optional[int] = category_id
            while current is not None:
                if current not in parents or current in chain:
                    logger.warning(f"Category {category_id} has an inconsistent ancestry at {current}")
                    chain = []
                    break
                chain.append(current)
                current = parents[current]
            if chain:
                chains[category_id] = chain
        return chains

    def _listing_categories(self, product_ids: Set[int]) -> Dict[int, int]:
        """Listing category per product, at ``listing_depth`` in the tree."""
        product_categories = {}
        for batch in chunked(product_ids):
            rows = (
                self.session.query(Product.product_id, Product.category_id)
                .filter(Product.product_id.in_(batch), Product.category_id.isnot(None))
                .all()
            )
            product_categories.update({pid: cid for pid, cid in rows})

        chains = self._category_chains(set(product_categories.values()))

        listings = {}
        for pid, category_id in product_categories.items():
            chain = chains.get(category_id)
            if not chain:
                continue
            from_root = list(reversed(chain))
            listings[pid] = from_root[min(self.listing_depth, len(from_root)) - 1]
        return listings

    # Diagrams

    def _affected_pages(self, product_ids: Set[int]) -> Dict[int, Set[int]]:
        """Diagram pages whose live product is one of ``product_ids``."""
        candidate_bases = self.resolver.predecessor_closure(product_ids)

        pages = []
        for batch in chunked(candidate_bases):
            pages.extend(
                self.session.query(DiagramPage.page_id, DiagramPage.base_product_id)
                .filter(DiagramPage.base_product_id.in_(batch))
                .all()
            )
        if not pages:
            return {}

        live = self.resolver.live_products({base for _, base in pages})

        affected: Dict[int, Set[int]] = defaultdict(set)
        for page_id, base in pages:
            live_product = live.get(base)
            if live_product is None:
                logger.debug(f"Diagram page {page_id} has no resolvable live product")
                continue
            if live_product in product_ids:
                affected[live_product].add(page_id)
        return dict(affected)

    def _diagram_links(self, product_ids: Set[int]) -> Dict[int, Set[CachePattern]]:
        """
        Diagram group and prop pages linked to each product.

        Two independent paths are unioned: the product's direct group
        memberships (the group page and every prop in it) and the props
        the product is the housing of (the prop page and its group page).
        """
        links: Dict[int, Set[CachePattern]] = defaultdict(set)

        memberships: Dict[int, Set[int]] = defaultdict(set)
        for batch in chunked(product_ids):
            rows = (
                self.session.query(DiagramGroupMember.product_id, DiagramGroupMember.group_id)
                .filter(DiagramGroupMember.product_id.in_(batch))
                .all()
            )
            for pid, group_id in rows:
                memberships[group_id].add(pid)
                links[pid].add(_pattern(CacheEndpoint.DIAGRAM_GROUP, group_id))

        for batch in chunked(memberships):
            rows = (
                self.session.query(DiagramProp.prop_id, DiagramProp.group_id)
                .filter(DiagramProp.group_id.in_(batch))
                .all()
            )
            for prop_id, group_id in rows:
                for pid in memberships[group_id]:
                    links[pid].add(_pattern(CacheEndpoint.DIAGRAM_PROP, prop_id))

        for batch in chunked(product_ids):
            rows = (
                self.session.query(
                    DiagramProp.housing_product_id, DiagramProp.prop_id, DiagramProp.group_id
                )
                .filter(DiagramProp.housing_product_id.in_(batch))
                .all()
            )
            for pid, prop_id, group_id in rows:
                links[pid].add(_pattern(CacheEndpoint.DIAGRAM_PROP, prop_id))
                if group_id is not None:
                    links[pid].add(_pattern(CacheEndpoint.DIAGRAM_GROUP, group_id))

        return dict(links)
