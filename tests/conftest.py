"""
conftest.py - Shared pytest fixtures for perps tests

Provides common fixtures used across unit, functional and conformance tests:
- Price feeds at a BTC price of 50,000 USD
- Engines (empty, pool-funded with traders funded)
- A default price snapshot
"""

import pytest

from perps import PerpsEngine, StaticPriceFeed

from tests.helpers import WBTC, USDC, T0, answer, snapshot, make_engine


@pytest.fixture
def feed():
    return StaticPriceFeed({"WBTC": answer(50_000), "USDC": answer(1)})


@pytest.fixture
def empty_engine(feed):
    """Engine with no liquidity and no funded wallets."""
    return PerpsEngine("test", feed, WBTC, USDC, initial_time=T0, verbose=False)


@pytest.fixture
def market():
    """(engine, vault, feed) with 1,000,000 USDC of liquidity and three funded traders."""
    return make_engine()


@pytest.fixture
def engine(market):
    return market[0]


@pytest.fixture
def vault(market):
    return market[1]


@pytest.fixture
def prices():
    return snapshot()
