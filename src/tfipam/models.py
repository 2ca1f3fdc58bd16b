import json
from dataclasses import dataclass, field


@dataclass
class Pool:
    """A named, ordered list of CIDR ranges that allocations are carved from."""

    name: str
    cidrs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"name": self.name, "cidrs": list(self.cidrs)}

    @classmethod
    def from_dict(cls, data: dict) -> "Pool":
        return cls(name=data["name"], cidrs=list(data.get("cidrs") or []))


@dataclass
class Allocation:
    """A block carved out of a pool, keyed by an id independent of its address."""

    id: str
    pool_name: str
    allocated_cidr: str
    prefix_length: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pool_name": self.pool_name,
            "allocated_cidr": self.allocated_cidr,
            "prefix_length": self.prefix_length,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Allocation":
        return cls(
            id=data["id"],
            pool_name=data["pool_name"],
            allocated_cidr=data["allocated_cidr"],
            prefix_length=int(data["prefix_length"]),
        )


@dataclass
class Dataset:
    """Everything a store persists, written out as one JSON document."""

    pools: dict[str, Pool] = field(default_factory=dict)
    allocations: dict[str, Allocation] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "pools": {name: self.pools[name].to_dict() for name in sorted(self.pools)},
            "allocations": {
                alloc_id: self.allocations[alloc_id].to_dict()
                for alloc_id in sorted(self.allocations)
            },
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict) -> "Dataset":
        if not isinstance(data, dict):
            raise ValueError("Storage document must be a JSON object")
        pools = data.get("pools") or {}
        allocations = data.get("allocations") or {}
        return cls(
            pools={name: Pool.from_dict(p) for name, p in pools.items()},
            allocations={
                alloc_id: Allocation.from_dict(a) for alloc_id, a in allocations.items()
            },
        )

    @classmethod
    def from_json(cls, raw: bytes) -> "Dataset":
        """Decode a storage document. Empty input or a bare null is an empty dataset."""
        if not raw.strip():
            return cls()
        data = json.loads(raw)
        if data is None:
            return cls()
        return cls.from_dict(data)
