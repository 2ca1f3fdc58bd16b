import ipaddress
import logging
import re

from tfipam.models import Pool

logger = logging.getLogger(__name__)

MAX_PREFIX_LENGTH = 128

CIDR_TEXT = re.compile(r"[0-9A-Fa-f:.]+/[0-9]{1,3}")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class NetworkError(Exception):
    pass


class ValidationError(NetworkError):
    pass


class ExhaustionError(NetworkError):
    pass


def parse_cidr(cidr: str) -> IPNetwork:
    """Parse a CIDR string, masking off any host bits in the base address.

    Only ``address/length`` with a decimal length is accepted; netmask
    notation and surrounding whitespace are rejected.
    """
    if not isinstance(cidr, str) or "/" not in cidr:
        raise ValidationError(f"CIDR '{cidr}' is not valid: missing prefix length")
    if not CIDR_TEXT.fullmatch(cidr):
        raise ValidationError(f"CIDR '{cidr}' is not valid: expected address/prefix-length")
    try:
        return ipaddress.ip_network(cidr, strict=False)
    except ValueError as e:
        raise ValidationError(f"CIDR '{cidr}' is not valid: {e}") from e


def validate_cidrs(cidrs: list[str]) -> None:
    for cidr in cidrs:
        parse_cidr(cidr)


def validate_prefix_length(prefix_length: int) -> None:
    if isinstance(prefix_length, bool) or not isinstance(prefix_length, int):
        raise ValidationError(f"Prefix length must be an integer, got {prefix_length!r}")
    if not 0 <= prefix_length <= MAX_PREFIX_LENGTH:
        raise ValidationError(
            f"Prefix length must be between 0 and {MAX_PREFIX_LENGTH}, got {prefix_length}"
        )


def block_count(pool_prefixlen: int, requested_prefixlen: int) -> int:
    """Number of /requested blocks that fit in a /pool range."""
    if requested_prefixlen < pool_prefixlen:
        raise ValidationError(
            f"Block /{requested_prefixlen} is larger than pool /{pool_prefixlen}"
        )
    return 1 << (requested_prefixlen - pool_prefixlen)


def nth_block_address(
    base: int, block_index: int, requested_prefixlen: int, total_bits: int
) -> int:
    """Return the first address of the block_index-th /requested block after base.

    Addresses are unsigned integers total_bits wide (32 for IPv4, 128 for
    IPv6). Results that do not fit in that width raise instead of wrapping.
    """
    if not 0 <= requested_prefixlen <= total_bits:
        raise ValidationError(
            f"Prefix length /{requested_prefixlen} does not fit a {total_bits}-bit address"
        )
    if block_index < 0:
        raise ValidationError(f"Block index must not be negative, got {block_index}")
    address = base + (block_index << (total_bits - requested_prefixlen))
    if address >> total_bits:
        raise ValidationError(
            f"Block {block_index} of size /{requested_prefixlen} runs past the end "
            f"of the {total_bits}-bit address space"
        )
    return address


def last_address(network: IPNetwork) -> int:
    return int(network.network_address) | int(network.hostmask)


def _contains(network: IPNetwork, address: int) -> bool:
    return int(network.network_address) <= address <= last_address(network)


def overlaps(a: IPNetwork, b: IPNetwork) -> bool:
    """True if the two prefix-aligned blocks share at least one address."""
    if a.version != b.version:
        return False
    return (
        _contains(a, int(b.network_address))
        or _contains(a, last_address(b))
        or _contains(b, int(a.network_address))
        or _contains(b, last_address(a))
    )


class NetworkAllocator:
    """Carves the lowest free block of a requested size out of a pool's ranges."""

    def __init__(self, used_subnets: list[str] | None = None):
        self.used: list[IPNetwork] = []
        for s in (used_subnets or []):
            try:
                self.used.append(parse_cidr(s))
            except ValidationError:
                logger.warning("Ignoring unparsable allocated CIDR %r", s)

    def find_block(self, pool_net: IPNetwork, prefix_length: int) -> IPNetwork | None:
        """Return the first free /prefix_length block inside pool_net, if any."""
        total_bits = pool_net.max_prefixlen
        if prefix_length > total_bits or prefix_length < pool_net.prefixlen:
            return None

        count = block_count(pool_net.prefixlen, prefix_length)
        host_bits = total_bits - prefix_length
        base = int(pool_net.network_address)
        pool_last = last_address(pool_net)
        # Only blocks touching this range can collide with a candidate.
        used = [u for u in self.used if overlaps(u, pool_net)]

        index = 0
        while index < count:
            first = nth_block_address(base, index, prefix_length, total_bits)
            candidate = type(pool_net)((first, prefix_length))
            last = last_address(candidate)

            if not (base <= first <= pool_last and base <= last <= pool_last):
                index += 1
                continue

            blocker = next((u for u in used if overlaps(candidate, u)), None)
            if blocker is None:
                return candidate

            # Every block between here and the end of the blocker collides too.
            index = max(index + 1, (last_address(blocker) + 1 - base) >> host_bits)

        return None

    def allocate(self, pool: Pool, prefix_length: int) -> str:
        """Allocate the next available block of the requested size from the pool."""
        validate_prefix_length(prefix_length)

        for cidr in pool.cidrs:
            try:
                pool_net = parse_cidr(cidr)
            except ValidationError:
                logger.warning("Skipping unparsable CIDR %r in pool %s", cidr, pool.name)
                continue

            # Can't allocate a larger block than the range itself
            if prefix_length < pool_net.prefixlen:
                continue

            candidate = self.find_block(pool_net, prefix_length)
            if candidate is not None:
                self.used.append(candidate)
                return str(candidate)

        raise ExhaustionError(
            f"No available CIDR blocks of size /{prefix_length} in pool {pool.name}"
        )
