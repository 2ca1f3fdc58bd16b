import copy
import logging
from abc import ABC, abstractmethod

from tfipam.locking import ReadWriteLock
from tfipam.models import Allocation, Dataset, Pool
from tfipam.network import NetworkAllocator, ValidationError, parse_cidr

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class NotFoundError(StorageError):
    pass


class BackendError(StorageError):
    pass


class PoolInUseError(StorageError):
    pass


class Store(ABC):
    """Persistent mapping of pools and allocations.

    Every read hands back a copy; nothing returned by a store aliases its
    internal state.
    """

    @abstractmethod
    def get_pool(self, name: str) -> Pool:
        """Return the named pool or raise NotFoundError."""

    @abstractmethod
    def list_pools(self) -> list[Pool]:
        """Return all pools, in no particular order."""

    @abstractmethod
    def save_pool(self, pool: Pool) -> None:
        """Insert or replace a pool by name."""

    @abstractmethod
    def delete_pool(self, name: str) -> None:
        """Remove a pool, raising NotFoundError if it does not exist."""

    @abstractmethod
    def create_pool(self, pool: Pool) -> None:
        """Insert a pool, raising ValidationError if the name is taken."""

    @abstractmethod
    def update_pool(self, pool: Pool) -> None:
        """Replace an existing pool's ranges if every allocation still fits in them."""

    @abstractmethod
    def delete_unused_pool(self, name: str) -> None:
        """Remove a pool, raising PoolInUseError while allocations reference it."""

    @abstractmethod
    def get_allocation(self, allocation_id: str) -> Allocation:
        """Return the allocation with this id or raise NotFoundError."""

    @abstractmethod
    def list_allocations(self) -> list[Allocation]:
        """Return all allocations, in no particular order."""

    @abstractmethod
    def list_allocations_by_pool(self, pool_name: str) -> list[Allocation]:
        """Return the allocations carved from one pool."""

    @abstractmethod
    def save_allocation(self, allocation: Allocation) -> None:
        """Insert or replace an allocation by id."""

    @abstractmethod
    def delete_allocation(self, allocation_id: str) -> None:
        """Remove an allocation, raising NotFoundError if it does not exist."""

    @abstractmethod
    def allocate(self, allocation_id: str, pool_name: str, prefix_length: int) -> Allocation:
        """Pick a free block from a pool and record it, as one atomic step."""

    @abstractmethod
    def close(self) -> None:
        """Release any resources held by the backend."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class DocumentStore(Store):
    """Store that keeps the dataset in memory and persists it as one JSON document.

    Subclasses only move bytes: ``_read_document`` returns the stored document
    (or None when it does not exist yet) and ``_write_document`` replaces it.
    Both must raise BackendError for any transport failure.
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._data = Dataset()
        self._closed = False
        self._load()

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable location of the document, for logs and errors."""

    @abstractmethod
    def _read_document(self) -> bytes | None:
        pass

    @abstractmethod
    def _write_document(self, data: bytes) -> None:
        pass

    def _release(self) -> None:
        """Hook for backends holding client connections."""

    def _load(self) -> None:
        with self._lock.write_locked():
            raw = self._read_document()
            if raw is None:
                logger.info("No storage document at %s, starting with an empty dataset", self.location)
                return
            try:
                self._data = Dataset.from_json(raw)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise BackendError(f"Failed to parse storage document at {self.location}: {e}") from e
            logger.debug(
                "Loaded %d pools and %d allocations from %s",
                len(self._data.pools), len(self._data.allocations), self.location,
            )

    def _persist(self) -> None:
        try:
            data = self._data.to_json()
        except (TypeError, ValueError) as e:
            raise BackendError(f"Failed to serialize storage document: {e}") from e
        self._write_document(data)
        logger.debug("Wrote %d bytes to %s", len(data), self.location)

    def _commit(self, mapping: dict, key: str, value) -> None:
        """Set (or, with value None, remove) mapping[key] and persist.

        A failed write restores the previous entry, so memory always matches
        the last document that was durably written.
        """
        missing = object()
        previous = mapping.get(key, missing)
        if value is None:
            del mapping[key]
        else:
            mapping[key] = value
        try:
            self._persist()
        except BackendError:
            if previous is missing:
                mapping.pop(key, None)
            else:
                mapping[key] = previous
            raise

    def _ensure_open(self) -> None:
        if self._closed:
            raise BackendError(f"Store for {self.location} is closed")

    def get_pool(self, name: str) -> Pool:
        with self._lock.read_locked():
            self._ensure_open()
            pool = self._data.pools.get(name)
            if pool is None:
                raise NotFoundError(f"Pool '{name}' not found")
            return copy.deepcopy(pool)

    def list_pools(self) -> list[Pool]:
        with self._lock.read_locked():
            self._ensure_open()
            return [copy.deepcopy(p) for p in self._data.pools.values()]

    def save_pool(self, pool: Pool) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            self._commit(self._data.pools, pool.name, copy.deepcopy(pool))

    def delete_pool(self, name: str) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            if name not in self._data.pools:
                raise NotFoundError(f"Pool '{name}' not found")
            self._commit(self._data.pools, name, None)

    def create_pool(self, pool: Pool) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            if pool.name in self._data.pools:
                raise ValidationError(f"Pool '{pool.name}' already exists")
            self._commit(self._data.pools, pool.name, copy.deepcopy(pool))

    def update_pool(self, pool: Pool) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            if pool.name not in self._data.pools:
                raise NotFoundError(f"Pool '{pool.name}' not found")

            networks = [parse_cidr(c) for c in pool.cidrs]
            for alloc in self._pool_allocations(pool.name):
                block = parse_cidr(alloc.allocated_cidr)
                if not any(block.version == n.version and block.subnet_of(n) for n in networks):
                    raise ValidationError(
                        f"Allocation '{alloc.id}' ({alloc.allocated_cidr}) would fall "
                        f"outside pool {pool.name}"
                    )
            self._commit(self._data.pools, pool.name, copy.deepcopy(pool))

    def delete_unused_pool(self, name: str) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            if name not in self._data.pools:
                raise NotFoundError(f"Pool '{name}' not found")
            allocations = self._pool_allocations(name)
            if allocations:
                raise PoolInUseError(
                    f"Pool {name} has {len(allocations)} active allocations. "
                    "Please delete all allocations before deleting the pool."
                )
            self._commit(self._data.pools, name, None)

    def _pool_allocations(self, pool_name: str) -> list[Allocation]:
        """Allocations carved from one pool. Caller must hold the lock."""
        return [a for a in self._data.allocations.values() if a.pool_name == pool_name]

    def get_allocation(self, allocation_id: str) -> Allocation:
        with self._lock.read_locked():
            self._ensure_open()
            allocation = self._data.allocations.get(allocation_id)
            if allocation is None:
                raise NotFoundError(f"Allocation '{allocation_id}' not found")
            return copy.deepcopy(allocation)

    def list_allocations(self) -> list[Allocation]:
        with self._lock.read_locked():
            self._ensure_open()
            return [copy.deepcopy(a) for a in self._data.allocations.values()]

    def list_allocations_by_pool(self, pool_name: str) -> list[Allocation]:
        with self._lock.read_locked():
            self._ensure_open()
            return [
                copy.deepcopy(a)
                for a in self._data.allocations.values()
                if a.pool_name == pool_name
            ]

    def save_allocation(self, allocation: Allocation) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            self._commit(self._data.allocations, allocation.id, copy.deepcopy(allocation))

    def delete_allocation(self, allocation_id: str) -> None:
        with self._lock.write_locked():
            self._ensure_open()
            if allocation_id not in self._data.allocations:
                raise NotFoundError(f"Allocation '{allocation_id}' not found")
            self._commit(self._data.allocations, allocation_id, None)

    def allocate(self, allocation_id: str, pool_name: str, prefix_length: int) -> Allocation:
        with self._lock.write_locked():
            self._ensure_open()
            pool = self._data.pools.get(pool_name)
            if pool is None:
                raise NotFoundError(f"Pool '{pool_name}' not found")

            existing = self._data.allocations.get(allocation_id)
            if existing is not None:
                if existing.pool_name == pool_name and existing.prefix_length == prefix_length:
                    return copy.deepcopy(existing)
                raise ValidationError(
                    f"Allocation '{allocation_id}' already exists as "
                    f"{existing.allocated_cidr} in pool {existing.pool_name}"
                )

            used = [a.allocated_cidr for a in self._pool_allocations(pool_name)]
            allocated_cidr = NetworkAllocator(used).allocate(pool, prefix_length)
            allocation = Allocation(
                id=allocation_id,
                pool_name=pool_name,
                allocated_cidr=allocated_cidr,
                prefix_length=prefix_length,
            )
            self._commit(self._data.allocations, allocation_id, allocation)
            logger.info("Allocated %s from pool %s as %s", allocated_cidr, pool_name, allocation_id)
            return copy.deepcopy(allocation)

    def close(self) -> None:
        with self._lock.write_locked():
            if self._closed:
                return
            self._closed = True
            self._release()
