"""
test_reservation.py - Unit tests for the liquidity reservation guard
"""

import pytest
from decimal import Decimal

from perps import (
    PoolState, InsufficientLiquidity,
    reserved_liquidity, max_utilization, available_liquidity, utilization,
    is_within_limit, check_liquidity,
)


class TestReservation:

    def test_reserved_is_sum_of_both_sides(self):
        assert reserved_liquidity(PoolState(open_interest_long=2, open_interest_short=5)) == 7

    def test_max_utilization_is_75_percent(self):
        assert max_utilization(1_000) == 750
        assert max_utilization(1_000, max_utilization_bps=5_000) == 500

    def test_max_utilization_floors(self):
        assert max_utilization(3) == 2

    def test_available_liquidity(self):
        pool = PoolState(open_interest_long=100)
        assert available_liquidity(pool, 1_000) == 650
        assert available_liquidity(PoolState(open_interest_short=800), 1_000) == -50

    def test_boundary_is_inclusive(self):
        assert is_within_limit(PoolState(open_interest_long=750), 1_000)
        assert not is_within_limit(PoolState(open_interest_long=751), 1_000)

    def test_exact_comparison_does_not_floor(self):
        # 0.75 * 3 = 2.25: reserving 2 is fine, 3 is not
        assert is_within_limit(PoolState(open_interest_long=2), 3)
        assert not is_within_limit(PoolState(open_interest_long=3), 3)

    def test_check_liquidity_raises(self):
        check_liquidity(PoolState(open_interest_long=750), 1_000)
        with pytest.raises(InsufficientLiquidity):
            check_liquidity(PoolState(open_interest_long=751), 1_000)

    def test_empty_pool_with_no_open_interest_passes(self):
        check_liquidity(PoolState(), 0)


class TestUtilization:

    def test_fraction(self):
        assert utilization(PoolState(open_interest_long=250), 1_000) == Decimal("0.25")

    def test_empty_pool(self):
        assert utilization(PoolState(), 0) == Decimal(0)
        assert utilization(PoolState(open_interest_long=1), 0) == Decimal("Infinity")
