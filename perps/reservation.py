"""
reservation.py - Liquidity reservation guard

Open interest reserves pool liquidity. The guard keeps

    open_interest_long + open_interest_short <= max_utilization_bps / BPS * net_pool_assets

after every capacity-affecting mutation. The comparison is done in exact
integer arithmetic; max_utilization() floors only for display.
"""

from __future__ import annotations
from decimal import Decimal, localcontext

from .core import PoolState, InsufficientLiquidity, BPS, MAX_UTILIZATION_BPS


def reserved_liquidity(pool: PoolState) -> int:
    return pool.reserved_liquidity


def max_utilization(net_pool_assets: int, max_utilization_bps: int = MAX_UTILIZATION_BPS) -> int:
    """Largest reservable amount, floored to native units."""
    return net_pool_assets * max_utilization_bps // BPS


def available_liquidity(
    pool: PoolState,
    net_pool_assets: int,
    max_utilization_bps: int = MAX_UTILIZATION_BPS,
) -> int:
    """Headroom left before the guard trips (negative if already breached)."""
    return max_utilization(net_pool_assets, max_utilization_bps) - pool.reserved_liquidity


def utilization(pool: PoolState, net_pool_assets: int) -> Decimal:
    """Fraction of net pool assets reserved by open interest."""
    if net_pool_assets <= 0:
        return Decimal("Infinity") if pool.reserved_liquidity > 0 else Decimal("0")
    with localcontext() as ctx:
        ctx.prec = 50
        return Decimal(pool.reserved_liquidity) / Decimal(net_pool_assets)


def is_within_limit(
    pool: PoolState,
    net_pool_assets: int,
    max_utilization_bps: int = MAX_UTILIZATION_BPS,
) -> bool:
    return pool.reserved_liquidity * BPS <= net_pool_assets * max_utilization_bps


def check_liquidity(
    pool: PoolState,
    net_pool_assets: int,
    max_utilization_bps: int = MAX_UTILIZATION_BPS,
) -> None:
    """
    Raise InsufficientLiquidity if the pool state breaches the guard.

    Evaluated on the tentative post-mutation state.
    """
    if not is_within_limit(pool, net_pool_assets, max_utilization_bps):
        raise InsufficientLiquidity(
            f"Reserved liquidity {pool.reserved_liquidity} exceeds max utilization "
            f"{max_utilization(net_pool_assets, max_utilization_bps)} of net pool assets {net_pool_assets}"
        )
