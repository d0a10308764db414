"""
conversion.py - Fixed-point price conversion between index, collateral and USD

All functions are pure and take explicit prices. Within one mutation the
engine fetches a single PriceSnapshot and threads it through every call,
so sequential conversions never see different prices.

Precision:
    price:       USD value of one whole token, USD_PRECISION (10**30)
    usd value:   USD_PRECISION
    token amount: native units (10**decimals per whole token)

Division truncates toward zero. Round trips through USD lose at most one
native unit; cross-token round trips lose at most a few.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional

from .core import (
    Token, TokenConfig, TokenPair, PriceSnapshot,
    StaleOrInvalidPrice,
    div_toward_zero,
)
from .price_feed import PriceFeed


def price(
    feed: PriceFeed,
    token: TokenConfig,
    timestamp: datetime,
    max_age: Optional[timedelta] = None,
) -> int:
    """
    Return the token's USD price at USD_PRECISION.

    The raw oracle answer is scaled by 10**(30 - feed_decimals).

    Raises:
        StaleOrInvalidPrice: if the oracle has no answer, the answer is not
            positive, or it is older than max_age.
    """
    quote = feed.latest_quote(token.symbol, timestamp)
    if quote is None:
        raise StaleOrInvalidPrice(f"No oracle answer for {token.symbol} at {timestamp}")
    if isinstance(quote.answer, bool) or not isinstance(quote.answer, int):
        raise StaleOrInvalidPrice(f"Oracle answer for {token.symbol} is not an integer: {quote.answer!r}")
    if quote.answer <= 0:
        raise StaleOrInvalidPrice(f"Oracle answer for {token.symbol} is not positive: {quote.answer}")
    if max_age is not None and quote.updated_at is not None:
        if timestamp - quote.updated_at > max_age:
            raise StaleOrInvalidPrice(
                f"Oracle answer for {token.symbol} published {quote.updated_at} is older than {max_age}"
            )
    return quote.answer * token.price_scale


def fetch_prices(
    feed: PriceFeed,
    tokens: TokenPair,
    timestamp: datetime,
    max_age: Optional[timedelta] = None,
) -> PriceSnapshot:
    """Fetch both prices once, as the snapshot for a whole mutation."""
    return PriceSnapshot(
        index_price=price(feed, tokens.index, timestamp, max_age),
        collateral_price=price(feed, tokens.collateral, timestamp, max_age),
        timestamp=timestamp,
    )


def amount_in_tokens(usd_amount: int, token: TokenConfig, token_price: int) -> int:
    """
    Convert a USD_PRECISION value to native units of the token.

    Equivalent to usd_amount * 10**30 / token_price rescaled from 30 to
    token.decimals, with a single truncation.
    """
    if token_price <= 0:
        raise StaleOrInvalidPrice(f"Price for {token.symbol} must be positive, got {token_price}")
    return div_toward_zero(usd_amount * token.native_precision, token_price)


def usd_value(token_amount: int, token: TokenConfig, token_price: int) -> int:
    """Convert native units of the token to a USD_PRECISION value."""
    return div_toward_zero(token_amount * token_price, token.native_precision)


def convert_token(
    tokens: TokenPair,
    amount: int,
    from_token: Token,
    from_price: int,
    to_price: int,
) -> int:
    """
    Convert native units of from_token into native units of the other token.

    Composition of usd_value() and amount_in_tokens(); not an exact round trip.
    """
    usd = usd_value(amount, tokens.config(from_token), from_price)
    return amount_in_tokens(usd, tokens.config(TokenPair.other(from_token)), to_price)


def index_to_collateral(tokens: TokenPair, size: int, index_price: int, collateral_price: int) -> int:
    """Index native units valued at index_price, expressed in collateral native units."""
    return convert_token(tokens, size, Token.INDEX, index_price, collateral_price)
