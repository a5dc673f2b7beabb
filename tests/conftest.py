"""
conftest.py - Shared pytest fixtures for optionledger tests

Provides common fixtures used across unit and functional tests:
- A funded two-token market (WETH 18 decimals, USDC 6 decimals)
- Registries with a WETH oracle
- Call and put options at each stage of their lifecycle
- Helpers to collateralize and buy options through allowances
"""

import pytest
from datetime import datetime
from decimal import Decimal

from optionledger import (
    Ledger, Option, OptionRegistry, OfferRegistry, StaticOracle,
    token, option_legs,
)


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = datetime(2025, 1, 1)
EXPIRY = datetime(2025, 3, 31)

ONE_WETH = 10**18
ONE_USDC = 10**6

SPOT = 1500 * 10**8
CALL_STRIKE = 1600 * 10**8
PUT_STRIKE = 1400 * 10**8
CALL_PREMIUM = 50 * ONE_USDC
PUT_PREMIUM = 40 * ONE_USDC

WALLETS = ("admin", "alice", "bob", "carol", "dave")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_market(name: str = "test") -> Ledger:
    """Ledger with WETH/USDC and funded wallets (admin holds nothing)."""
    ledger = Ledger(name, T0, verbose=False, test_mode=True)
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    ledger.register_unit(token("USDC", "USD Coin", decimals=6))
    for wallet in WALLETS:
        ledger.register_wallet(wallet)
    for wallet in ("alice", "bob", "carol", "dave"):
        ledger.mint("WETH", wallet, 10 * ONE_WETH)
        ledger.mint("USDC", wallet, 100_000 * ONE_USDC)
    return ledger


def init_option(ledger: Ledger, option: Option) -> None:
    """Writer approves exactly the collateral and deposits it."""
    (unit, amount), _ = option_legs(option.state)
    ledger.approve(option.writer, option.address, unit, amount)
    option.init(option.writer)


def buy_option(ledger: Ledger, option: Option, buyer: str) -> None:
    """Buyer approves exactly the premium and buys."""
    ledger.approve(buyer, option.address, "USDC", option.premium)
    option.buy(buyer)


def approve_exercise(ledger: Ledger, option: Option) -> None:
    """Holder approves exactly the exercise payment."""
    _, (unit, amount) = option_legs(option.state)
    ledger.approve(option.holder, option.address, unit, amount)


def balances(ledger: Ledger, *wallets: str) -> dict:
    """Snapshot of WETH/USDC balances for the given wallets."""
    return {
        (w, u): ledger.get_balance(w, u)
        for w in wallets for u in ("WETH", "USDC")
    }


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Funded WETH/USDC ledger at 2025-01-01."""
    return make_market()


@pytest.fixture
def oracle():
    return StaticOracle(SPOT, precision=8)


@pytest.fixture
def registry(ledger, oracle):
    """OptionRegistry quoting in USDC with a WETH oracle set."""
    registry = OptionRegistry(ledger, quote="USDC", admin="admin")
    registry.set_oracle("admin", "WETH", oracle)
    return registry


@pytest.fixture
def offers(ledger):
    return OfferRegistry(ledger)


# =============================================================================
# OPTION FIXTURES
# =============================================================================

@pytest.fixture
def call_option(registry):
    """1 WETH call struck at 1600 USDC, written by alice, not yet collateralized."""
    return registry.create_option(
        "alice", "call", "WETH",
        premium=CALL_PREMIUM, strike_price=CALL_STRIKE,
        quantity=ONE_WETH, expiry=EXPIRY,
    )


@pytest.fixture
def put_option(registry):
    """1 WETH put struck at 1400 USDC, written by alice, not yet collateralized."""
    return registry.create_option(
        "alice", "put", "WETH",
        premium=PUT_PREMIUM, strike_price=PUT_STRIKE,
        quantity=ONE_WETH, expiry=EXPIRY,
    )


@pytest.fixture
def inited_call(ledger, call_option):
    init_option(ledger, call_option)
    return call_option


@pytest.fixture
def sold_call(ledger, inited_call):
    """Collateralized call held by bob."""
    buy_option(ledger, inited_call, "bob")
    return inited_call


@pytest.fixture
def inited_put(ledger, put_option):
    init_option(ledger, put_option)
    return put_option


@pytest.fixture
def sold_put(ledger, inited_put):
    """Collateralized put held by bob."""
    buy_option(ledger, inited_put, "bob")
    return inited_put
