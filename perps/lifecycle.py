"""
lifecycle.py - Position lifecycle: open, increase, decrease, liquidate

Each compute_* function reads state through an EngineView, takes the price
snapshot for the whole operation explicitly, checks its preconditions and
returns a PendingMutation describing the complete transition:

    - position record created / replaced / deleted
    - pool aggregates after the change
    - asset transfers (escrow in, payouts out)
    - notifications

Nothing is applied here. PerpsEngine.execute() applies the mutation
tentatively, runs the post-condition checks requested by the mutation
(leverage bound, liquidity reservation guard) and commits or discards it.

Ordering inside increase/decrease:
    1. pending borrowing fee is charged first (position and pool collateral
       drop by the fee, last_updated moves to now)
    2. size change (average price / realized PnL, open interest)
    3. collateral change

Liquidation distribution (collateral c, PnL p, pending fee f):
    reward to liquidator  r = min(c, c * liquidation_reward_bps / BPS)
    residual to trader    t = max(0, c - r + p - f)
    the pool keeps c - r - t (or pays the excess when t > c - r)
"""

from __future__ import annotations
from dataclasses import replace
from typing import List, Tuple

from .core import (
    EngineView, Position, PositionChange, PositionEvent, EventType,
    PriceSnapshot, Transfer, PendingMutation, Token,
    POOL_WALLET, BPS,
    InsufficientSize, InsufficientCollateral, TraderHasOpenPosition,
    PositionDoesNotExist, NoIncrease, NoDecrease, MaxLeverageExceeded,
    PositionNotLiquidatable, SelfLiquidationProhibited,
    build_mutation, div_toward_zero, require_account, _require_int,
)
from .conversion import convert_token
from .accrual import (
    calculate_pending_fee, calculate_average_price, calculate_pnl, value_position,
)


def _require_position(view: EngineView, trader: str) -> Position:
    position = view.get_position(trader)
    if position is None:
        raise PositionDoesNotExist(f"Trader {trader} has no open position")
    return position


def _require_delta(name: str, value: int) -> None:
    _require_int(name, value)
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")


def _size_in_collateral(view: EngineView, size: int, prices: PriceSnapshot) -> int:
    return convert_token(view.tokens, size, Token.INDEX, prices.index_price, prices.collateral_price)


def _accrue_fee(view: EngineView, position: Position, prices: PriceSnapshot) -> Tuple[int, int]:
    """Return (fee charged, collateral after fee). The fee is capped at the collateral."""
    fee = calculate_pending_fee(
        position, prices, view.current_time, view.tokens,
        view.config.borrowing_fee_rate_seconds,
    )
    fee = min(fee, position.collateral)
    return fee, position.collateral - fee


# ============================================================================
# OPEN
# ============================================================================

def compute_open(
    view: EngineView,
    trader: str,
    size: int,
    collateral: int,
    is_long: bool,
    prices: PriceSnapshot,
) -> PendingMutation:
    """
    Open a new position at the current index price.

    Preconditions:
        size > 0 (InsufficientSize), collateral > 0 (InsufficientCollateral),
        no existing position for trader (TraderHasOpenPosition),
        trader is not a custody-reserved wallet (ReservedAccount).

    Post-checks (engine): leverage bound, liquidity reservation guard.
    Collateral is escrowed from the trader only once all checks pass.
    """
    require_account(trader)
    _require_int("size", size)
    _require_int("collateral", collateral)
    if size <= 0:
        raise InsufficientSize(f"Cannot open position with size {size}")
    if collateral <= 0:
        raise InsufficientCollateral(f"Cannot open position with collateral {collateral}")
    if view.get_position(trader) is not None:
        raise TraderHasOpenPosition(f"Trader {trader} already has an open position")

    open_interest = _size_in_collateral(view, size, prices)
    pool_after = view.pool.adjust(is_long, open_interest, collateral)
    position = Position(
        size=size,
        collateral=collateral,
        average_price=prices.index_price,
        last_updated=view.current_time,
        is_long=is_long,
    )
    transfers = [Transfer(collateral, view.tokens.collateral.symbol, trader, POOL_WALLET, "escrow")]
    event = PositionEvent(
        event_type=EventType.OPENED,
        account=trader,
        size_delta=size,
        collateral_delta=collateral,
        price=prices.index_price,
        is_long=is_long,
    )
    return build_mutation(
        view, "open", trader, pool_after,
        prices=prices,
        position_changes=[PositionChange(trader, None, position)],
        transfers=transfers,
        events=[event],
        check_leverage=True,
        check_liquidity=True,
    )


# ============================================================================
# INCREASE
# ============================================================================

def compute_increase(
    view: EngineView,
    trader: str,
    size_increase: int,
    collateral_increase: int,
    prices: PriceSnapshot,
) -> PendingMutation:
    """
    Add size and/or collateral to an existing position.

    The pending borrowing fee is charged first. Added size moves the average
    price to the volume-weighted mean of the old position and the new
    tranche at the current index price.

    Post-checks (engine): leverage bound, liquidity reservation guard.
    """
    require_account(trader)
    _require_delta("size_increase", size_increase)
    _require_delta("collateral_increase", collateral_increase)
    if size_increase == 0 and collateral_increase == 0:
        raise NoIncrease("Increase requires a non-zero size or collateral delta")
    position = _require_position(view, trader)

    fee, collateral = _accrue_fee(view, position, prices)
    pool = view.pool.adjust(collateral_delta=-fee)
    size = position.size
    average_price = position.average_price
    transfers: List[Transfer] = []

    if size_increase > 0:
        average_price = calculate_average_price(size, average_price, size_increase, prices.index_price)
        size += size_increase
        pool = pool.adjust(position.is_long, _size_in_collateral(view, size_increase, prices))

    if collateral_increase > 0:
        collateral += collateral_increase
        pool = pool.adjust(collateral_delta=collateral_increase)
        transfers.append(Transfer(
            collateral_increase, view.tokens.collateral.symbol, trader, POOL_WALLET, "escrow"
        ))

    if collateral <= 0:
        raise MaxLeverageExceeded(f"Borrowing fees exhausted the collateral of {trader}")

    updated = replace(
        position,
        size=size,
        collateral=collateral,
        average_price=average_price,
        last_updated=view.current_time,
    )
    event = PositionEvent(
        event_type=EventType.INCREASED,
        account=trader,
        size_delta=size_increase,
        collateral_delta=collateral - position.collateral,
        fee=fee,
        price=prices.index_price,
        is_long=position.is_long,
    )
    return build_mutation(
        view, "increase", trader, pool,
        prices=prices,
        position_changes=[PositionChange(trader, position, updated)],
        transfers=transfers,
        events=[event],
        check_leverage=True,
        check_liquidity=True,
    )


# ============================================================================
# DECREASE
# ============================================================================

def compute_decrease(
    view: EngineView,
    trader: str,
    size_decrease: int,
    collateral_decrease: int,
    prices: PriceSnapshot,
) -> PendingMutation:
    """
    Remove size and/or collateral from a position.

    The pending borrowing fee is charged first. A size decrease realizes the
    pro-rata share of the position's PnL: profit is paid out to the trader,
    loss is taken from the position's collateral. Decreasing the full size
    closes the position and returns all remaining collateral.

    Post-checks (engine): leverage bound on the surviving position. The
    liquidity reservation guard is not applied; the pool must still be able
    to pay out the returned amount.
    """
    require_account(trader)
    _require_delta("size_decrease", size_decrease)
    _require_delta("collateral_decrease", collateral_decrease)
    if size_decrease == 0 and collateral_decrease == 0:
        raise NoDecrease("Decrease requires a non-zero size or collateral delta")
    position = _require_position(view, trader)
    if size_decrease > position.size:
        raise InsufficientSize(
            f"Cannot decrease size by {size_decrease}, position size is {position.size}"
        )

    fee, collateral = _accrue_fee(view, position, prices)
    pool = view.pool.adjust(collateral_delta=-fee)
    size = position.size
    returned = 0
    realized = 0

    if size_decrease > 0:
        pnl = calculate_pnl(size, position.average_price, position.is_long, prices, view.tokens)
        realized = div_toward_zero(pnl * size_decrease, size)
        if realized > 0:
            returned += realized
        elif realized < 0:
            loss = min(-realized, collateral)
            collateral -= loss
            pool = pool.adjust(collateral_delta=-loss)
            if loss < -realized:
                raise MaxLeverageExceeded(
                    f"Realized loss {-realized} exceeds collateral of {trader}; position must be liquidated"
                )
        size -= size_decrease
        pool = pool.adjust(position.is_long, -_size_in_collateral(view, size_decrease, prices))

    closing = size == 0
    if closing:
        returned += collateral
        pool = pool.adjust(collateral_delta=-collateral)
        collateral = 0
    elif collateral_decrease > 0:
        if collateral_decrease > collateral:
            raise InsufficientCollateral(
                f"Cannot decrease collateral by {collateral_decrease}, position collateral is {collateral}"
            )
        collateral -= collateral_decrease
        pool = pool.adjust(collateral_delta=-collateral_decrease)
        returned += collateral_decrease

    if not closing and collateral <= 0:
        raise MaxLeverageExceeded(f"Decrease would leave {trader}'s position without collateral")

    if closing:
        change = PositionChange(trader, position, None)
    else:
        change = PositionChange(trader, position, replace(
            position, size=size, collateral=collateral, last_updated=view.current_time,
        ))

    transfers = []
    if returned > 0:
        transfers.append(Transfer(returned, view.tokens.collateral.symbol, POOL_WALLET, trader, "payout"))

    event = PositionEvent(
        event_type=EventType.CLOSED if closing else EventType.DECREASED,
        account=trader,
        size_delta=-size_decrease,
        collateral_delta=collateral - position.collateral,
        amount=returned,
        realized_pnl=realized,
        fee=fee,
        price=prices.index_price,
        is_long=position.is_long,
    )
    return build_mutation(
        view, "decrease", trader, pool,
        prices=prices,
        position_changes=[change],
        transfers=transfers,
        events=[event],
        check_leverage=not closing,
        check_liquidity=False,
    )


# ============================================================================
# LIQUIDATE
# ============================================================================

def compute_liquidation(
    view: EngineView,
    liquidator: str,
    trader: str,
    prices: PriceSnapshot,
) -> PendingMutation:
    """
    Liquidate a position whose leverage exceeds the bound at current prices.

    Distribution (see module docstring): liquidator reward first, then
    whatever the trader has left after PnL and fees, the pool keeps the rest.
    The position is deleted and its open interest removed.
    """
    require_account(liquidator)
    require_account(trader)
    if liquidator == trader:
        raise SelfLiquidationProhibited(f"Trader {trader} cannot liquidate their own position")
    position = _require_position(view, trader)

    valuation = value_position(position, prices, view.current_time, view.tokens, view.config)
    if not valuation.liquidatable:
        raise PositionNotLiquidatable(
            f"Position of {trader} has leverage {valuation.leverage:.4f}, "
            f"within max {view.config.max_leverage}"
        )

    c = position.collateral
    reward = min(c, c * view.config.liquidation_reward_bps // BPS)
    residual = max(0, c - reward + valuation.pnl - valuation.pending_fee)

    pool = view.pool.adjust(
        position.is_long,
        -_size_in_collateral(view, position.size, prices),
        -c,
    )
    symbol = view.tokens.collateral.symbol
    transfers = []
    if reward > 0:
        transfers.append(Transfer(reward, symbol, POOL_WALLET, liquidator, "liquidation_reward"))
    if residual > 0:
        transfers.append(Transfer(residual, symbol, POOL_WALLET, trader, "liquidation_residual"))

    event = PositionEvent(
        event_type=EventType.LIQUIDATED,
        account=trader,
        size_delta=-position.size,
        collateral_delta=-c,
        amount=residual,
        realized_pnl=valuation.pnl,
        fee=valuation.pending_fee,
        price=prices.index_price,
        is_long=position.is_long,
        counterparty=liquidator,
    )
    return build_mutation(
        view, "liquidate", liquidator, pool,
        prices=prices,
        position_changes=[PositionChange(trader, position, None)],
        transfers=transfers,
        events=[event],
    )
