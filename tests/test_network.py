"""Tests for address arithmetic and the allocation search."""
import ipaddress

import pytest

from tfipam.models import Pool
from tfipam.network import (
    ExhaustionError,
    NetworkAllocator,
    ValidationError,
    block_count,
    last_address,
    nth_block_address,
    overlaps,
    parse_cidr,
    validate_cidrs,
)


def net(cidr):
    return ipaddress.ip_network(cidr)


class TestArithmetic:

    def test_block_count(self):
        assert block_count(24, 24) == 1
        assert block_count(16, 27) == 2048
        assert block_count(0, 128) == 2 ** 128

    def test_block_count_rejects_larger_block(self):
        with pytest.raises(ValidationError, match="larger than pool"):
            block_count(24, 16)

    def test_nth_block_address_ipv4(self):
        base = int(ipaddress.IPv4Address("10.0.0.0"))
        addr = nth_block_address(base, 1, 27, 32)
        assert ipaddress.IPv4Address(addr) == ipaddress.IPv4Address("10.0.0.32")

    def test_nth_block_address_carries_across_bytes(self):
        base = int(ipaddress.IPv6Address("2001:db8::ff00"))
        addr = nth_block_address(base, 1, 120, 128)
        assert ipaddress.IPv6Address(addr) == ipaddress.IPv6Address("2001:db8::1:0")

    def test_nth_block_address_extreme_delta(self):
        # A /128 out of a /0: the last block is the last address of the space
        addr = nth_block_address(0, 2 ** 128 - 1, 128, 128)
        assert addr == 2 ** 128 - 1

    def test_nth_block_address_rejects_overflow(self):
        with pytest.raises(ValidationError, match="runs past the end"):
            nth_block_address(0, 2 ** 128, 128, 128)
        with pytest.raises(ValidationError):
            nth_block_address(int(ipaddress.IPv4Address("255.255.255.0")), 1, 24, 32)

    def test_last_address(self):
        assert ipaddress.IPv4Address(last_address(net("10.0.0.0/24"))) == ipaddress.IPv4Address("10.0.0.255")
        assert last_address(net("::/0")) == 2 ** 128 - 1

    def test_overlaps(self):
        assert overlaps(net("10.0.0.0/24"), net("10.0.0.128/25"))
        assert overlaps(net("10.0.0.128/25"), net("10.0.0.0/24"))
        assert overlaps(net("10.0.0.0/24"), net("10.0.0.0/24"))
        assert not overlaps(net("10.0.0.0/25"), net("10.0.0.128/25"))
        assert not overlaps(net("10.0.0.0/8"), net("::/0"))

    def test_parse_cidr_masks_host_bits(self):
        assert parse_cidr("10.0.0.5/24") == net("10.0.0.0/24")

    @pytest.mark.parametrize("cidr", [
        "10.0.0.0", "10.0.0.0/33", "not-a-cidr", "2001:db8::/129", "",
        "10.0.0.0/255.255.0.0", " 10.0.0.0/24", "10.0.0.0/24\n", "10.0.0.0/ 24", "10.0.0.0/+8",
    ])
    def test_parse_cidr_rejects_malformed(self, cidr):
        with pytest.raises(ValidationError):
            parse_cidr(cidr)

    def test_validate_cidrs_names_bad_entry(self):
        with pytest.raises(ValidationError, match="bogus"):
            validate_cidrs(["10.0.0.0/8", "bogus/8"])


class TestNetworkAllocator:

    def test_whole_range_then_exhausted(self):
        pool = Pool("a", ["10.0.0.0/24"])
        assert NetworkAllocator().allocate(pool, 24) == "10.0.0.0/24"

        with pytest.raises(ExhaustionError, match="No available CIDR blocks of size /24 in pool a"):
            NetworkAllocator(["10.0.0.0/24"]).allocate(pool, 24)

    def test_sequential_blocks(self):
        pool = Pool("b", ["10.0.0.0/16"])
        allocator = NetworkAllocator()
        assert allocator.allocate(pool, 27) == "10.0.0.0/27"
        assert allocator.allocate(pool, 27) == "10.0.0.32/27"

    def test_ipv6_block(self):
        pool = Pool("v6", ["2001:db8::/32"])
        first = NetworkAllocator().allocate(pool, 64)
        assert first == "2001:db8::/64"

        second = NetworkAllocator([first]).allocate(pool, 64)
        block = net(second)
        assert block.prefixlen == 64
        assert block.subnet_of(net("2001:db8::/32"))
        assert second == "2001:db8:0:1::/64"

    def test_fills_gap_left_by_release(self):
        pool = Pool("gap", ["10.0.0.0/24"])
        used = ["10.0.0.0/26", "10.0.0.128/26"]
        assert NetworkAllocator(used).allocate(pool, 26) == "10.0.0.64/26"

    def test_skips_past_larger_used_block(self):
        pool = Pool("big", ["10.0.0.0/8"])
        used = ["10.0.0.0/9"]
        assert NetworkAllocator(used).allocate(pool, 30) == "10.128.0.0/30"

    def test_smaller_used_block_blocks_enclosing_candidate(self):
        pool = Pool("p", ["10.0.0.0/23"])
        assert NetworkAllocator(["10.0.0.77/32"]).allocate(pool, 24) == "10.0.1.0/24"

    def test_ranges_searched_in_list_order(self):
        pool = Pool("order", ["192.168.0.0/24", "10.0.0.0/24"])
        assert NetworkAllocator().allocate(pool, 28) == "192.168.0.0/28"
        assert NetworkAllocator(["192.168.0.0/24"]).allocate(pool, 28) == "10.0.0.0/28"

    def test_skips_range_smaller_than_request(self):
        pool = Pool("mixed", ["10.0.0.0/28", "172.16.0.0/16"])
        assert NetworkAllocator().allocate(pool, 24) == "172.16.0.0/24"

    def test_request_larger_than_every_range(self):
        pool = Pool("small", ["10.0.0.0/24"])
        with pytest.raises(ExhaustionError):
            NetworkAllocator().allocate(pool, 16)

    def test_empty_pool_is_exhausted(self):
        with pytest.raises(ExhaustionError):
            NetworkAllocator().allocate(Pool("empty", []), 24)

    def test_prefix_zero_and_host_route(self):
        assert NetworkAllocator().allocate(Pool("all", ["0.0.0.0/0"]), 0) == "0.0.0.0/0"
        assert NetworkAllocator().allocate(Pool("host", ["10.1.2.3/32"]), 32) == "10.1.2.3/32"
        assert NetworkAllocator().allocate(Pool("v6all", ["::/0"]), 128) == "::/128"

    def test_ipv4_range_cannot_hold_ipv6_sized_prefix(self):
        pool = Pool("dual", ["10.0.0.0/8", "2001:db8::/48"])
        assert NetworkAllocator().allocate(pool, 64) == "2001:db8::/64"

    def test_other_family_allocations_do_not_collide(self):
        pool = Pool("v4", ["10.0.0.0/24"])
        assert NetworkAllocator(["::/0"]).allocate(pool, 24) == "10.0.0.0/24"

    def test_unparsable_entries_are_ignored(self):
        pool = Pool("junk", ["garbage", "10.0.0.0/24"])
        assert NetworkAllocator(["also-garbage"]).allocate(pool, 25) == "10.0.0.0/25"

    @pytest.mark.parametrize("prefix", [-1, 129])
    def test_rejects_out_of_range_prefix(self, prefix):
        with pytest.raises(ValidationError, match="between 0 and 128"):
            NetworkAllocator().allocate(Pool("p", ["10.0.0.0/8"]), prefix)

    def test_deterministic(self):
        pool = Pool("det", ["10.0.0.0/20", "10.1.0.0/20"])
        used = ["10.0.0.0/24", "10.0.2.0/23", "10.0.1.128/25"]
        results = {NetworkAllocator(list(used)).allocate(pool, 25) for _ in range(5)}
        assert results == {"10.0.1.0/25"}

    def test_results_never_overlap_and_stay_in_pool(self):
        pool = Pool("prop", ["10.0.0.0/22", "10.8.0.0/24"])
        ranges = [net(c) for c in pool.cidrs]
        allocator = NetworkAllocator()
        taken = []
        for prefix in [24, 26, 30, 25, 28, 24, 27, 32, 29, 24, 26, 25]:
            try:
                cidr = allocator.allocate(pool, prefix)
            except ExhaustionError:
                continue
            block = net(cidr)
            assert block.prefixlen == prefix
            assert any(block.subnet_of(r) for r in ranges)
            assert not any(overlaps(block, t) for t in taken)
            taken.append(block)
        assert len(taken) >= 10
