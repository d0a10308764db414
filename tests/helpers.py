"""
helpers.py - Shared test constants and builders

- Token configurations (8-decimal WBTC index, 6-decimal USDC collateral)
- Unit helpers for native amounts and USD prices
- An engine builder with a funded pool and funded traders
- Random operation sequences for property tests
"""

from datetime import datetime, timedelta
from hypothesis import strategies as st

from perps import (
    PerpsEngine, LiquidityVault, StaticPriceFeed,
    TokenConfig, TokenPair, PriceSnapshot, EngineConfig,
    USD_PRECISION,
)


T0 = datetime(2025, 1, 1)

WBTC = TokenConfig("WBTC", decimals=8, feed_decimals=8)
USDC = TokenConfig("USDC", decimals=6, feed_decimals=8)
TOKENS = TokenPair(WBTC, USDC)

BTC = 10 ** 8
USD = 10 ** 6


def answer(dollars: int) -> int:
    """Raw 8-decimal oracle answer for a USD price."""
    return dollars * 10 ** 8


def usd_price(dollars: int) -> int:
    """USD_PRECISION price for a whole-dollar price."""
    return dollars * USD_PRECISION


def snapshot(index_dollars: int = 50_000, collateral_dollars: int = 1, when: datetime = T0) -> PriceSnapshot:
    return PriceSnapshot(usd_price(index_dollars), usd_price(collateral_dollars), when)


def make_engine(
    btc_price: int = 50_000,
    liquidity: int = 1_000_000 * USD,
    traders=("alice", "bob", "carol"),
    trader_funds: int = 100_000 * USD,
    config: EngineConfig = None,
):
    """Engine with a funded pool and funded traders. Returns (engine, vault, feed)."""
    feed = StaticPriceFeed({"WBTC": answer(btc_price), "USDC": answer(1)})
    engine = PerpsEngine("test", feed, WBTC, USDC, config=config, initial_time=T0, verbose=False)
    vault = LiquidityVault(engine)
    if liquidity:
        engine.fund("lp", liquidity)
        vault.add_liquidity("lp", liquidity)
    for trader in traders:
        engine.fund(trader, trader_funds)
    return engine, vault, feed


def state_of(engine):
    """Everything a failed mutation must leave untouched."""
    return (
        engine.pool,
        dict(engine.positions.items()),
        {w: dict(b) for w, b in engine.custody.balances.items()},
        len(engine.mutation_log),
    )


# =============================================================================
# RANDOM OPERATION SEQUENCES
# =============================================================================

TRADERS = ["alice", "bob", "carol"]

# (kind, trader index, amount in whole units, price in thousands)
operations = st.lists(
    st.tuples(
        st.sampled_from(["open_long", "open_short", "increase", "decrease", "close",
                         "liquidate", "add", "remove", "price", "time"]),
        st.integers(min_value=0, max_value=2),
        st.integers(min_value=0, max_value=40),
        st.integers(min_value=20, max_value=90),
    ),
    min_size=1,
    max_size=25,
)


def apply_operation(engine, vault, feed, op):
    """Run one generated operation. "add" expects the provider to be funded already."""
    kind, who, units, price_k = op
    trader = TRADERS[who]
    if kind == "open_long":
        engine.open_position(trader, size=units * BTC // 4, collateral=units * 2_000 * USD, is_long=True)
    elif kind == "open_short":
        engine.open_position(trader, size=units * BTC // 4, collateral=units * 2_000 * USD, is_long=False)
    elif kind == "increase":
        engine.increase_position(trader, size_increase=units * BTC // 8, collateral_increase=units * 500 * USD)
    elif kind == "decrease":
        engine.decrease_position(trader, size_decrease=units * BTC // 8, collateral_decrease=units * 100 * USD)
    elif kind == "close":
        engine.close_position(trader)
    elif kind == "liquidate":
        engine.liquidate(TRADERS[(who + 1) % 3], trader)
    elif kind == "add":
        vault.add_liquidity("lp", units * 10_000 * USD)
    elif kind == "remove":
        vault.remove_liquidity("lp", units * 20_000 * USD)
    elif kind == "price":
        feed.update_answer("WBTC", answer(price_k * 1_000))
    elif kind == "time":
        engine.advance_time(engine.current_time + timedelta(days=units * 5))
