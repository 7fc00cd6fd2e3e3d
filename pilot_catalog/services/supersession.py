"""
Product supersession chains and live-product resolution.

Products are replaced over time: an edge ``product_id -> superseded_by``
says the first part was superseded by the second. A diagram page is
anchored on a base product, but the product it currently shows is the
"live" member of the base product's supersession chain.

Chains are walked level by level with one query per hop for all chains at
once, so no recursive SQL is needed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from ..database.models import Product, ProductSupersession

logger = logging.getLogger(__name__)

IN_CLAUSE_CHUNK = 500


def chunked(values: Iterable[int], size: int = IN_CLAUSE_CHUNK) -> Iterator[List[int]]:
    """Split ids into lists small enough for an IN clause."""
    batch: List[int] = []
    for value in sorted(values):
        batch.append(value)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


@dataclass(frozen=True)
class ChainLink:
    """One product in a supersession chain, oldest first."""
    product_id: int
    inventory: int


def choose_live_product(chain: Sequence[ChainLink]) -> Optional[int]:
    """
    Pick the live product of a supersession chain.

    The most recent product with nonzero inventory wins; when nothing in
    the chain is stocked, the most recent product is live.
    """
    if not chain:
        return None
    for link in reversed(chain):
        if link.inventory > 0:
            return link.product_id
    return chain[-1].product_id


class SupersessionResolver:
    """
    Walks supersession edges stored in ``product_supersession``.

    When a product has several outgoing edges the most recent one
    (latest ``superseded_at``, then highest successor id) is followed.
    """

    def __init__(self, session: Session, max_hops: int = 50):
        self.session = session
        self.max_hops = max_hops
        self._successors: Dict[int, Optional[int]] = {}
        self._inventory: Dict[int, int] = {}

    def _load_successors(self, product_ids: Set[int]) -> None:
        missing = {pid for pid in product_ids if pid not in self._successors}
        if not missing:
            return
        best: Dict[int, Tuple[datetime, int]] = {}
        for batch in chunked(missing):
            rows = (
                self.session.query(
                    ProductSupersession.product_id,
                    ProductSupersession.superseded_by,
                    ProductSupersession.superseded_at,
                )
                .filter(ProductSupersession.product_id.in_(batch))
                .all()
            )
            for product_id, successor, superseded_at in rows:
                candidate = (superseded_at or datetime.min, successor)
                if product_id not in best or candidate > best[product_id]:
                    best[product_id] = candidate
        for pid in missing:
            self._successors[pid] = best[pid][1] if pid in best else None

    def _load_inventory(self, product_ids: Set[int]) -> None:
        missing = {pid for pid in product_ids if pid not in self._inventory}
        for batch in chunked(missing):
            rows = (
                self.session.query(Product.product_id, Product.inventory)
                .filter(Product.product_id.in_(batch))
                .all()
            )
            for product_id, inventory in rows:
                self._inventory[product_id] = inventory or 0

    def chains(self, base_ids: Iterable[int]) -> Dict[int, List[ChainLink]]:
        """
        Supersession chains for each base product, oldest first.

        Bases that are not existing products are left out. A chain stops at
        the first missing product, at a repeated product or after
        ``max_hops`` edges.
        """
        bases = set(base_ids)
        self._load_inventory(bases)
        paths: Dict[int, List[int]] = {
            base: [base] for base in bases if base in self._inventory
        }
        visited: Dict[int, Set[int]] = {base: {base} for base in paths}
        active = set(paths)

        for _ in range(self.max_hops):
            if not active:
                break
            tails = {paths[base][-1] for base in active}
            self._load_successors(tails)
            successors = {
                self._successors[tail] for tail in tails if self._successors.get(tail) is not None
            }
            self._load_inventory(successors)

            still_active = set()
            for base in active:
                successor = self._successors.get(paths[base][-1])
                if successor is None:
                    continue
                if successor in visited[base]:
                    logger.warning(f"Supersession cycle from product {base} at product {successor}")
                    continue
                if successor not in self._inventory:
                    logger.debug(f"Supersession chain from {base} points at missing product {successor}")
                    continue
                paths[base].append(successor)
                visited[base].add(successor)
                still_active.add(base)
            active = still_active

        if active:
            logger.warning(f"{len(active)} supersession chain(s) cut at {self.max_hops} hops")

        return {
            base: [ChainLink(pid, self._inventory[pid]) for pid in path]
            for base, path in paths.items()
        }

    def live_products(self, base_ids: Iterable[int]) -> Dict[int, int]:
        """Map each resolvable base product to its live product."""
        live = {}
        for base, chain in self.chains(base_ids).items():
            product_id = choose_live_product(chain)
            if product_id is not None:
                live[base] = product_id
        return live

    def predecessor_closure(self, product_ids: Iterable[int]) -> Set[int]:
        """
        Every product whose chain can reach one of ``product_ids``.

        Includes the products themselves; bounded by ``max_hops``.
        """
        closure = set(product_ids)
        frontier = set(closure)
        for _ in range(self.max_hops):
            if not frontier:
                break
            found: Set[int] = set()
            for batch in chunked(frontier):
                rows = (
                    self.session.query(ProductSupersession.product_id)
                    .filter(ProductSupersession.superseded_by.in_(batch))
                    .all()
                )
                found.update(row[0] for row in rows)
            frontier = found - closure
            closure |= frontier
        return closure
