import logging

from tfipam.models import Allocation, Pool
from tfipam.network import (
    ValidationError,
    overlaps,
    parse_cidr,
    validate_cidrs,
    validate_prefix_length,
)
from tfipam.storage import PoolInUseError, Store

logger = logging.getLogger(__name__)

__all__ = ["IpamController", "PoolInUseError"]


class IpamController:
    """Pool and allocation lifecycle on top of a store."""

    def __init__(self, store: Store):
        self.store = store

    def create_pool(self, name: str, cidrs: list[str]) -> Pool:
        """Create a pool. Fails if the name is taken or any CIDR is malformed."""
        if not name:
            raise ValidationError("Pool name must not be empty")
        validate_cidrs(cidrs)
        pool = Pool(name=name, cidrs=list(cidrs))
        self.store.create_pool(pool)
        logger.info("Created pool %s with %d CIDR(s)", name, len(cidrs))
        return pool

    def read_pool(self, name: str) -> Pool:
        return self.store.get_pool(name)

    def list_pools(self) -> list[Pool]:
        return sorted(self.store.list_pools(), key=lambda p: p.name)

    def update_pool(self, name: str, cidrs: list[str]) -> Pool:
        """Replace a pool's CIDR list.

        Every existing allocation must still fit inside one of the new ranges.
        """
        validate_cidrs(cidrs)
        pool = Pool(name=name, cidrs=list(cidrs))
        self.store.update_pool(pool)
        logger.info("Updated pool %s", name)
        return pool

    def delete_pool(self, name: str) -> None:
        """Delete a pool that has no remaining allocations."""
        self.store.delete_unused_pool(name)
        logger.info("Deleted pool %s", name)

    def create_allocation(self, allocation_id: str, pool_name: str, prefix_length: int) -> Allocation:
        """Reserve the lowest free block of the requested size from a pool."""
        if not allocation_id:
            raise ValidationError("Allocation id must not be empty")
        validate_prefix_length(prefix_length)
        return self.store.allocate(allocation_id, pool_name, prefix_length)

    def read_allocation(self, allocation_id: str) -> Allocation:
        return self.store.get_allocation(allocation_id)

    def import_allocation(self, allocation_id: str) -> Allocation:
        """Adopt an allocation that already exists in storage."""
        allocation = self.store.get_allocation(allocation_id)
        logger.info("Imported allocation %s (%s)", allocation_id, allocation.allocated_cidr)
        return allocation

    def list_allocations(self, pool_name: str | None = None) -> list[Allocation]:
        if pool_name is None:
            allocations = self.store.list_allocations()
        else:
            allocations = self.store.list_allocations_by_pool(pool_name)
        return sorted(allocations, key=lambda a: (a.pool_name, a.id))

    def delete_allocation(self, allocation_id: str) -> None:
        self.store.delete_allocation(allocation_id)
        logger.info("Deleted allocation %s", allocation_id)

    def find_conflicts(self, pool_name: str) -> list[tuple[str, str]]:
        """Return pairs of allocation ids in a pool whose blocks overlap."""
        allocations = sorted(self.store.list_allocations_by_pool(pool_name), key=lambda a: a.id)
        blocks = []
        for alloc in allocations:
            try:
                blocks.append((alloc.id, parse_cidr(alloc.allocated_cidr)))
            except ValidationError:
                logger.warning("Allocation %s has unparsable CIDR %r", alloc.id, alloc.allocated_cidr)
        conflicts = []
        for i, (a_id, a_net) in enumerate(blocks):
            for b_id, b_net in blocks[i + 1:]:
                if overlaps(a_net, b_net):
                    conflicts.append((a_id, b_id))
        return conflicts
