"""
perps - Perpetual futures accounting core

Position, collateral, fee and pool-liquidity accounting for a single
leveraged-trading market with one index token and one collateral token.

Usage:
    from perps import PerpsEngine, LiquidityVault, StaticPriceFeed, TokenConfig

    feed = StaticPriceFeed({"WBTC": 50_000 * 10**8, "USDC": 10**8})
    engine = PerpsEngine(
        "btc-usdc", feed,
        index_token=TokenConfig("WBTC", decimals=8, feed_decimals=8),
        collateral_token=TokenConfig("USDC", decimals=6, feed_decimals=8),
    )
    vault = LiquidityVault(engine)

    # Liquidity providers fund the pool
    engine.fund("lp", 1_000_000 * 10**6)
    vault.add_liquidity("lp", 1_000_000 * 10**6)

    # A trader opens a 1 BTC long with 10,000 USDC of collateral
    engine.fund("alice", 10_000 * 10**6)
    engine.open_position("alice", size=10**8, collateral=10_000 * 10**6, is_long=True)

    feed.update_answer("WBTC", 55_000 * 10**8)
    engine.value_position("alice").pnl      # 5_000 * 10**6
    engine.close_position("alice")
"""

# Core types
from .core import (
    EngineView,
    Token,
    TokenConfig,
    TokenPair,
    EngineConfig,
    Position,
    PoolState,
    PriceSnapshot,
    Transfer,
    PositionChange,
    PositionEvent,
    EventType,
    PendingMutation,
    Mutation,
    build_mutation,
    div_toward_zero,
    PerpsError,
    InsufficientSize,
    InsufficientCollateral,
    TraderHasOpenPosition,
    PositionDoesNotExist,
    NoIncrease,
    NoDecrease,
    MaxLeverageExceeded,
    InsufficientLiquidity,
    PositionNotLiquidatable,
    SelfLiquidationProhibited,
    UnsupportedOperation,
    StaleOrInvalidPrice,
    StaleState,
    InsufficientBalance,
    ReservedAccount,
    USD_DECIMALS,
    USD_PRECISION,
    BPS,
    MAX_LEVERAGE,
    MAX_UTILIZATION_BPS,
    SECONDS_PER_YEAR,
    BORROWING_FEE_RATE_SECONDS,
    LIQUIDATION_REWARD_BPS,
    SYSTEM_WALLET,
    POOL_WALLET,
    RESERVED_WALLETS,
)

# Engine
from .engine import PerpsEngine

# Price oracle
from .price_feed import (
    Quote,
    PriceFeed,
    StaticPriceFeed,
    TimeSeriesPriceFeed,
)

# Price conversion
from .conversion import (
    price,
    fetch_prices,
    amount_in_tokens,
    usd_value,
    convert_token,
    index_to_collateral,
)

# Position book and custody
from .positions import PositionBook
from .custody import AssetLedger

# Fees, PnL and leverage
from .accrual import (
    PositionValuation,
    INFINITE_LEVERAGE,
    elapsed_seconds,
    calculate_borrowing_fee,
    calculate_pending_fee,
    calculate_average_price,
    calculate_size_value,
    calculate_pnl,
    calculate_leverage,
    exceeds_leverage,
    value_position,
)

# Liquidity reservation guard
from .reservation import (
    reserved_liquidity,
    max_utilization,
    available_liquidity,
    utilization,
    is_within_limit,
    check_liquidity,
)

# Position lifecycle
from .lifecycle import (
    compute_open,
    compute_increase,
    compute_decrease,
    compute_liquidation,
)

# Liquidity provider shares
from .vault import (
    LiquidityCapability,
    LiquidityVault,
    convert_to_shares,
    convert_to_assets,
    compute_add_liquidity,
    compute_remove_liquidity,
)


__all__ = [
    # Core types
    'EngineView',
    'Token',
    'TokenConfig',
    'TokenPair',
    'EngineConfig',
    'Position',
    'PoolState',
    'PriceSnapshot',
    'Transfer',
    'PositionChange',
    'PositionEvent',
    'EventType',
    'PendingMutation',
    'Mutation',
    'build_mutation',
    'div_toward_zero',
    # Exceptions
    'PerpsError',
    'InsufficientSize',
    'InsufficientCollateral',
    'TraderHasOpenPosition',
    'PositionDoesNotExist',
    'NoIncrease',
    'NoDecrease',
    'MaxLeverageExceeded',
    'InsufficientLiquidity',
    'PositionNotLiquidatable',
    'SelfLiquidationProhibited',
    'UnsupportedOperation',
    'StaleOrInvalidPrice',
    'StaleState',
    'InsufficientBalance',
    'ReservedAccount',
    # Constants
    'USD_DECIMALS',
    'USD_PRECISION',
    'BPS',
    'MAX_LEVERAGE',
    'MAX_UTILIZATION_BPS',
    'SECONDS_PER_YEAR',
    'BORROWING_FEE_RATE_SECONDS',
    'LIQUIDATION_REWARD_BPS',
    'SYSTEM_WALLET',
    'POOL_WALLET',
    'RESERVED_WALLETS',
    # Engine
    'PerpsEngine',
    # Price oracle
    'Quote',
    'PriceFeed',
    'StaticPriceFeed',
    'TimeSeriesPriceFeed',
    # Conversion
    'price',
    'fetch_prices',
    'amount_in_tokens',
    'usd_value',
    'convert_token',
    'index_to_collateral',
    # State holders
    'PositionBook',
    'AssetLedger',
    # Accrual
    'PositionValuation',
    'INFINITE_LEVERAGE',
    'elapsed_seconds',
    'calculate_borrowing_fee',
    'calculate_pending_fee',
    'calculate_average_price',
    'calculate_size_value',
    'calculate_pnl',
    'calculate_leverage',
    'exceeds_leverage',
    'value_position',
    # Reservation
    'reserved_liquidity',
    'max_utilization',
    'available_liquidity',
    'utilization',
    'is_within_limit',
    'check_liquidity',
    # Lifecycle
    'compute_open',
    'compute_increase',
    'compute_decrease',
    'compute_liquidation',
    # Vault
    'LiquidityCapability',
    'LiquidityVault',
    'convert_to_shares',
    'convert_to_assets',
    'compute_add_liquidity',
    'compute_remove_liquidity',
]

__version__ = '1.0.0'
