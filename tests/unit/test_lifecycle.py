"""
test_lifecycle.py - Unit tests for the pure position lifecycle functions

The compute_* functions are exercised against a FakeView: they must describe
the full transition in the returned PendingMutation and never touch the view.
"""

import pytest
from datetime import timedelta

from perps import (
    Position, PoolState, EventType, POOL_WALLET, SECONDS_PER_YEAR,
    compute_open, compute_increase, compute_decrease, compute_liquidation,
    InsufficientSize, InsufficientCollateral, TraderHasOpenPosition, PositionDoesNotExist,
    NoIncrease, NoDecrease, MaxLeverageExceeded, PositionNotLiquidatable, SelfLiquidationProhibited,
    ReservedAccount, SYSTEM_WALLET,
)
from tests.fake_view import FakeView
from tests.helpers import TOKENS, T0, BTC, USD, usd_price, snapshot


def long_position(size=BTC, collateral=10_000 * USD):
    return Position(size, collateral, usd_price(50_000), T0, True)


def view_with(position=None, time=T0):
    positions = {"alice": position} if position else {}
    pool = PoolState(
        open_interest_long=50_000 * USD if position else 0,
        total_collateral=position.collateral if position else 0,
    )
    return FakeView(
        tokens=TOKENS,
        positions=positions,
        pool=pool,
        balances={POOL_WALLET: {"USDC": 1_000_000 * USD + pool.total_collateral}},
        time=time,
    )


class TestComputeOpen:

    def test_describes_full_transition(self):
        view = view_with()
        pending = compute_open(view, "alice", BTC, 10_000 * USD, True, snapshot())

        assert pending.action == "open"
        assert pending.timestamp == T0
        assert pending.pool_before == PoolState()
        assert pending.pool_after == PoolState(open_interest_long=50_000 * USD, total_collateral=10_000 * USD)
        change = pending.position_changes[0]
        assert change.old is None
        assert change.new == long_position()
        transfer = pending.transfers[0]
        assert (transfer.source, transfer.dest, transfer.amount) == ("alice", POOL_WALLET, 10_000 * USD)
        assert pending.events[0].event_type == EventType.OPENED
        assert pending.check_leverage and pending.check_liquidity

    def test_does_not_touch_view(self):
        view = view_with()
        compute_open(view, "alice", BTC, 10_000 * USD, True, snapshot())
        assert view.get_position("alice") is None
        assert view.pool == PoolState()

    def test_preconditions(self):
        with pytest.raises(InsufficientSize):
            compute_open(view_with(), "alice", 0, USD, True, snapshot())
        with pytest.raises(InsufficientCollateral):
            compute_open(view_with(), "alice", BTC, 0, True, snapshot())
        with pytest.raises(TraderHasOpenPosition):
            compute_open(view_with(long_position()), "alice", BTC, USD, True, snapshot())


class TestComputeIncrease:

    def test_fee_is_charged_first(self):
        later = T0 + timedelta(seconds=SECONDS_PER_YEAR)
        view = view_with(long_position(), time=later)
        pending = compute_increase(view, "alice", BTC, 0, snapshot(when=later))

        new = pending.position_changes[0].new
        assert new.collateral == 5_000 * USD
        assert new.size == 2 * BTC
        assert new.last_updated == later
        assert pending.pool_after.total_collateral == 5_000 * USD
        assert pending.transfers == ()
        assert pending.events[0].fee == 5_000 * USD

    def test_fee_exhausting_collateral(self):
        later = T0 + timedelta(seconds=SECONDS_PER_YEAR * 3)
        view = view_with(long_position(), time=later)
        with pytest.raises(MaxLeverageExceeded):
            compute_increase(view, "alice", BTC, 0, snapshot(when=later))

    def test_preconditions(self):
        with pytest.raises(NoIncrease):
            compute_increase(view_with(long_position()), "alice", 0, 0, snapshot())
        with pytest.raises(PositionDoesNotExist):
            compute_increase(view_with(), "alice", BTC, 0, snapshot())


class TestComputeDecrease:

    def test_profit_is_paid_not_added_to_collateral(self):
        view = view_with(long_position(size=2 * BTC, collateral=20_000 * USD))
        pending = compute_decrease(view, "alice", BTC, 0, snapshot(60_000))

        new = pending.position_changes[0].new
        assert new.size == BTC
        assert new.collateral == 20_000 * USD
        assert pending.transfers[0].amount == 10_000 * USD
        assert pending.transfers[0].dest == "alice"
        assert pending.check_leverage
        assert not pending.check_liquidity

    def test_loss_reduces_collateral(self):
        view = view_with(long_position(size=2 * BTC, collateral=20_000 * USD))
        pending = compute_decrease(view, "alice", BTC, 0, snapshot(40_000))
        assert pending.position_changes[0].new.collateral == 10_000 * USD
        assert pending.transfers == ()
        assert pending.events[0].realized_pnl == -10_000 * USD

    def test_loss_truncates_toward_zero(self):
        # 3 sats lose 2 units at 49,950; a third of that truncates to 0, not -1
        position = Position(3, 1_000, usd_price(50_000), T0, True)
        view = view_with(position)
        pending = compute_decrease(view, "alice", 1, 0, snapshot(49_950))
        assert pending.events[0].realized_pnl == 0

    def test_full_close_deletes(self):
        view = view_with(long_position())
        pending = compute_decrease(view, "alice", BTC, 0, snapshot())
        assert pending.position_changes[0].new is None
        assert pending.transfers[0].amount == 10_000 * USD
        assert pending.events[0].event_type == EventType.CLOSED
        assert not pending.check_leverage

    def test_preconditions(self):
        view = view_with(long_position())
        with pytest.raises(NoDecrease):
            compute_decrease(view, "alice", 0, 0, snapshot())
        with pytest.raises(InsufficientSize):
            compute_decrease(view, "alice", BTC + 1, 0, snapshot())
        with pytest.raises(InsufficientCollateral):
            compute_decrease(view, "alice", 0, 10_000 * USD + 1, snapshot())
        with pytest.raises(MaxLeverageExceeded):
            compute_decrease(view, "alice", 0, 10_000 * USD, snapshot())
        with pytest.raises(PositionDoesNotExist):
            compute_decrease(view_with(), "alice", BTC, 0, snapshot())


class TestComputeLiquidation:

    def test_distribution(self):
        view = view_with(long_position(collateral=5_000 * USD))
        pending = compute_liquidation(view, "keeper", "alice", snapshot(46_000))

        paid = {t.dest: t.amount for t in pending.transfers}
        assert paid == {"keeper": 250 * USD, "alice": 750 * USD}
        assert pending.position_changes[0].new is None
        assert pending.pool_after.total_collateral == 0
        assert pending.pool_after.open_interest_long == 4_000 * USD
        assert not pending.check_leverage and not pending.check_liquidity

    def test_preconditions(self):
        view = view_with(long_position())
        with pytest.raises(SelfLiquidationProhibited):
            compute_liquidation(view, "alice", "alice", snapshot(10_000))
        with pytest.raises(PositionNotLiquidatable):
            compute_liquidation(view, "keeper", "alice", snapshot())
        with pytest.raises(PositionDoesNotExist):
            compute_liquidation(view_with(), "keeper", "alice", snapshot())


class TestReservedAccounts:

    @pytest.mark.parametrize("wallet", [SYSTEM_WALLET, POOL_WALLET])
    def test_open_by_reserved_wallet(self, wallet):
        with pytest.raises(ReservedAccount):
            compute_open(view_with(), wallet, BTC, 10_000 * USD, True, snapshot())

    @pytest.mark.parametrize("wallet", [SYSTEM_WALLET, POOL_WALLET])
    def test_increase_and_decrease_by_reserved_wallet(self, wallet):
        view = view_with()
        with pytest.raises(ReservedAccount):
            compute_increase(view, wallet, BTC, 0, snapshot())
        with pytest.raises(ReservedAccount):
            compute_decrease(view, wallet, BTC, 0, snapshot())

    @pytest.mark.parametrize("wallet", [SYSTEM_WALLET, POOL_WALLET])
    def test_reserved_wallet_as_liquidator(self, wallet):
        view = view_with(long_position(collateral=5_000 * USD))
        with pytest.raises(ReservedAccount):
            compute_liquidation(view, wallet, "alice", snapshot(46_000))

    def test_reserved_wallet_as_liquidated_trader(self):
        with pytest.raises(ReservedAccount):
            compute_liquidation(view_with(), "keeper", SYSTEM_WALLET, snapshot())
