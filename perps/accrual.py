"""
accrual.py - Borrowing fees, entry price, PnL and leverage

PURE FUNCTIONS - all inputs explicit, no engine access, no hidden state.
Trivially testable and usable for what-if analysis on any price pair.

Key Formulas:
    notional_usd   = usd_value(size, index, average_price)
    borrowing_fee  = amount_in_tokens(notional_usd * elapsed / rate_seconds, collateral, collateral_price)
    new_avg_price  = (old_size * old_avg + index_price * size_increase) / (old_size + size_increase)
    current_value  = size converted to collateral at index_price
    entry_value    = size converted to collateral at average_price
    pnl            = current_value - entry_value        (long)
                   = entry_value - current_value        (short)
    remaining      = collateral + pnl - pending_fee
    leverage       = entry_value / remaining            (infinite when remaining <= 0)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext

from .core import (
    Position, PriceSnapshot, TokenPair, EngineConfig,
    BORROWING_FEE_RATE_SECONDS, MAX_LEVERAGE,
)
from .conversion import usd_value, amount_in_tokens, index_to_collateral


INFINITE_LEVERAGE = Decimal("Infinity")


@dataclass(frozen=True, slots=True)
class PositionValuation:
    """
    Immutable valuation of a position at one price snapshot and time.

    All amounts are collateral native units.
    """
    size_value: int
    pnl: int
    pending_fee: int
    remaining_collateral: int
    leverage: Decimal
    liquidatable: bool


def elapsed_seconds(last_updated: datetime, current_time: datetime) -> int:
    """Whole seconds since last_updated (0 if time has not moved forward)."""
    return max(0, int((current_time - last_updated).total_seconds()))


def calculate_borrowing_fee(
    size: int,
    average_price: int,
    elapsed: int,
    collateral_price: int,
    tokens: TokenPair,
    rate_seconds: int = BORROWING_FEE_RATE_SECONDS,
) -> int:
    """
    Borrowing fee accrued over `elapsed` seconds, in collateral native units.

    The fee accrues on the USD notional of size at the entry price, so it
    does not move with the index price.
    """
    if elapsed <= 0 or size <= 0:
        return 0
    notional_usd = usd_value(size, tokens.index, average_price)
    fee_usd = notional_usd * elapsed // rate_seconds
    return amount_in_tokens(fee_usd, tokens.collateral, collateral_price)


def calculate_pending_fee(
    position: Position,
    prices: PriceSnapshot,
    current_time: datetime,
    tokens: TokenPair,
    rate_seconds: int = BORROWING_FEE_RATE_SECONDS,
) -> int:
    """Fee accrued since position.last_updated."""
    return calculate_borrowing_fee(
        size=position.size,
        average_price=position.average_price,
        elapsed=elapsed_seconds(position.last_updated, current_time),
        collateral_price=prices.collateral_price,
        tokens=tokens,
        rate_seconds=rate_seconds,
    )


def calculate_average_price(
    old_size: int,
    old_average_price: int,
    size_increase: int,
    index_price: int,
) -> int:
    """Volume-weighted entry price after adding size_increase at index_price."""
    total = old_size + size_increase
    if total <= 0:
        raise ValueError("average price of an empty position is undefined")
    return (old_size * old_average_price + index_price * size_increase) // total


def calculate_size_value(size: int, average_price: int, collateral_price: int, tokens: TokenPair) -> int:
    """Size at entry price, in collateral native units."""
    return index_to_collateral(tokens, size, average_price, collateral_price)


def calculate_pnl(
    size: int,
    average_price: int,
    is_long: bool,
    prices: PriceSnapshot,
    tokens: TokenPair,
) -> int:
    """
    Signed profit or loss of `size` entered at average_price, valued at prices.

    Exactly 0 when prices.index_price == average_price.
    """
    current_value = index_to_collateral(tokens, size, prices.index_price, prices.collateral_price)
    entry_value = index_to_collateral(tokens, size, average_price, prices.collateral_price)
    return current_value - entry_value if is_long else entry_value - current_value


def calculate_leverage(size_value: int, remaining_collateral: int) -> Decimal:
    """size_value / remaining_collateral as Decimal; Infinity when nothing remains."""
    if remaining_collateral <= 0:
        return INFINITE_LEVERAGE
    with localcontext() as ctx:
        ctx.prec = 50
        return Decimal(size_value) / Decimal(remaining_collateral)


def exceeds_leverage(size_value: int, remaining_collateral: int, max_leverage: int = MAX_LEVERAGE) -> bool:
    """
    True when size_value / remaining_collateral > max_leverage.

    Exact integer comparison, no rounded ratio involved.
    """
    if remaining_collateral <= 0:
        return True
    return size_value > max_leverage * remaining_collateral


def value_position(
    position: Position,
    prices: PriceSnapshot,
    current_time: datetime,
    tokens: TokenPair,
    config: EngineConfig,
) -> PositionValuation:
    """
    Full valuation of a position: PnL, pending fee, remaining collateral, leverage.

    Example:
        # What would leverage be after a 10% drop?
        stressed = PriceSnapshot(prices.index_price * 9 // 10, prices.collateral_price, now)
        value_position(position, stressed, now, tokens, config).leverage
    """
    size_value = calculate_size_value(
        position.size, position.average_price, prices.collateral_price, tokens
    )
    pnl = calculate_pnl(position.size, position.average_price, position.is_long, prices, tokens)
    fee = calculate_pending_fee(
        position, prices, current_time, tokens, config.borrowing_fee_rate_seconds
    )
    remaining = position.collateral + pnl - fee
    return PositionValuation(
        size_value=size_value,
        pnl=pnl,
        pending_fee=fee,
        remaining_collateral=remaining,
        leverage=calculate_leverage(size_value, remaining),
        liquidatable=exceeds_leverage(size_value, remaining, config.max_leverage),
    )
