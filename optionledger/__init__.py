"""
optionledger - Collateralized options on an in-process asset ledger

Writers lock collateral into call and put contracts, holders buy the right
to exercise, and offers let a holder resell that right before expiry. All
value moves through a double-entry Ledger that applies each operation
atomically and keeps a full audit trail.

Usage:
    from datetime import datetime
    from optionledger import Ledger, token, StaticOracle, OptionRegistry, OfferRegistry

    ledger = Ledger("main", datetime(2025, 1, 1))
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    ledger.register_unit(token("USDC", "USD Coin", decimals=6))
    for wallet in ("admin", "alice", "bob"):
        ledger.register_wallet(wallet)
    ledger.mint("WETH", "alice", 10**18)
    ledger.mint("USDC", "bob", 10_000 * 10**6)

    registry = OptionRegistry(ledger, quote="USDC", admin="admin")
    registry.set_oracle("admin", "WETH", StaticOracle(1500 * 10**8))
    opt = registry.create_option("alice", "call", "WETH", premium=50 * 10**6,
                                 strike_price=1600 * 10**8, quantity=10**18,
                                 expiry=datetime(2025, 3, 31))

    ledger.approve("alice", opt.address, "WETH", 10**18)
    opt.init("alice")
    ledger.approve("bob", opt.address, "USDC", 50 * 10**6)
    opt.buy("bob")
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    OptionKind,
    build_transaction,
    combine_transactions,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    token_decimals,
    to_amount,
    record_transfer_rule,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_OPTION,
    UNIT_TYPE_OFFER,
    DEFAULT_TOKEN_DECIMALS,
    # Errors
    LedgerError,
    TransferError,
    TransferFailed,
    InsufficientFunds,
    InsufficientAllowance,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    ContractError,
    AuthorizationError,
    NotWriter,
    NotHolder,
    NotSeller,
    NotAdmin,
    StateError,
    AlreadyInitialized,
    NotInited,
    AlreadyBought,
    AlreadySold,
    AlreadyExecuted,
    NoHolder,
    OfferCancelled,
    OracleNotSet,
    StaleState,
    TimingError,
    Expired,
    NotExpiredYet,
)

# Ledger
from .ledger import Ledger, Approval

# Oracles
from .pricing_source import (
    PriceOracle,
    StaticOracle,
    TimeSeriesOracle,
    DEFAULT_ORACLE_PRECISION,
)

# Black-Scholes reference pricing
from .black_scholes import call, put

# Option and offer pure functions
from .units import (
    compute_strike_value,
    option_legs,
    create_option_unit,
    compute_init,
    compute_buy,
    compute_adjust_premium,
    compute_transfer,
    compute_cancel,
    compute_exercise,
    compute_withdraw,
    get_option_status,
    get_option_intrinsic_value,
    get_option_moneyness,
    compute_fair_premium,
    create_offer_unit,
    compute_accept,
    compute_cancel_offer,
    get_offer_status,
)

# Handles and registries
from .contracts import Option, Offer
from .registry import OptionRegistry, OfferRegistry

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin',
    'OriginType', 'OptionKind', 'build_transaction', 'combine_transactions',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'token', 'token_decimals', 'to_amount', 'record_transfer_rule',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_OPTION', 'UNIT_TYPE_OFFER',
    'DEFAULT_TOKEN_DECIMALS',
    # Errors
    'LedgerError', 'TransferError', 'TransferFailed', 'InsufficientFunds',
    'InsufficientAllowance', 'BalanceConstraintViolation', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered', 'ContractError', 'AuthorizationError',
    'NotWriter', 'NotHolder', 'NotSeller', 'NotAdmin', 'StateError',
    'AlreadyInitialized', 'NotInited', 'AlreadyBought', 'AlreadySold',
    'AlreadyExecuted', 'NoHolder', 'OfferCancelled', 'OracleNotSet', 'StaleState',
    'TimingError', 'Expired', 'NotExpiredYet',
    # Ledger
    'Ledger', 'Approval',
    # Oracles
    'PriceOracle', 'StaticOracle', 'TimeSeriesOracle', 'DEFAULT_ORACLE_PRECISION',
    # Black-Scholes
    'call', 'put',
    # Options
    'compute_strike_value', 'option_legs', 'create_option_unit',
    'compute_init', 'compute_buy', 'compute_adjust_premium', 'compute_transfer',
    'compute_cancel', 'compute_exercise', 'compute_withdraw',
    'get_option_status', 'get_option_intrinsic_value', 'get_option_moneyness',
    'compute_fair_premium',
    # Offers
    'create_offer_unit', 'compute_accept', 'compute_cancel_offer', 'get_offer_status',
    # Handles and registries
    'Option', 'Offer', 'OptionRegistry', 'OfferRegistry',
]

__version__ = '1.0.0'
