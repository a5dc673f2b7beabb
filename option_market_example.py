"""
option_market_example.py - Step-by-Step Option Market Example

Walks one covered call through the market:
1. Setup: Create ledger, register tokens, fund wallets
2. Creation: Set an oracle and write a call through the registry
3. Collateral: Writer approves and locks the underlying
4. Sale: Buyer approves and pays the premium
5. Resale: Holder lists the option and a second buyer accepts
6. Exercise: Final holder pays the strike value and takes the underlying

Run this file directly:
    python option_market_example.py
"""

from datetime import datetime, timedelta
from decimal import Decimal

from optionledger import (
    Ledger, token,
    OptionRegistry, OfferRegistry, StaticOracle,
    option_legs,
)


ONE_WETH = 10**18
ONE_USDC = 10**6


def fmt(amount: Decimal, decimals: int) -> str:
    """Native units to a human-readable amount."""
    return f"{Decimal(amount) / Decimal(10) ** decimals:,.4f}"


def show_balances(ledger: Ledger, wallets) -> None:
    print(f"\n    {'wallet':<16} {'WETH':>14} {'USDC':>16}")
    for wallet in wallets:
        weth = fmt(ledger.get_balance(wallet, "WETH"), 18)
        usdc = fmt(ledger.get_balance(wallet, "USDC"), 6)
        print(f"    {wallet:<16} {weth:>14} {usdc:>16}")


def step(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def main():
    print("=" * 70)
    print("COVERED CALL - CREATE, SELL, RESELL, EXERCISE")
    print("=" * 70)

    # =========================================================================
    # STEP 1: SETUP
    # =========================================================================
    step("STEP 1: SETUP")
    print("""
    A ledger with two tokens:
    - WETH (18 decimals), the underlying
    - USDC (6 decimals), the quote token for premiums and strikes
    Three traders start with 5 WETH and 20,000 USDC each.
    """)

    ledger = Ledger(
        name="option_market",
        initial_time=datetime(2025, 1, 1),
        verbose=True,
    )
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    ledger.register_unit(token("USDC", "USD Coin", decimals=6))

    traders = ["alice", "bob", "carol"]
    ledger.register_wallet("admin")
    for trader in traders:
        ledger.register_wallet(trader)
        ledger.mint("WETH", trader, 5 * ONE_WETH)
        ledger.mint("USDC", trader, 20_000 * ONE_USDC)

    # =========================================================================
    # STEP 2: WRITE THE CALL
    # =========================================================================
    step("STEP 2: WRITE THE CALL")
    print("""
    The admin binds WETH to an oracle reporting prices with 8 decimals.
    Alice writes a call on 2 WETH struck at 1,800 USDC, expiring in 90 days.
    The strike value (what the holder pays on exercise) is fixed now.
    """)

    oracle = StaticOracle(1500 * 10**8, precision=8)
    registry = OptionRegistry(ledger, quote="USDC", admin="admin")
    registry.set_oracle("admin", "WETH", oracle)
    offers = OfferRegistry(ledger)

    expiry = ledger.current_time + timedelta(days=90)
    spot = 1500 * 10**8
    call = registry.create_option(
        "alice", "call", "WETH",
        premium=100 * ONE_USDC, strike_price=1800 * 10**8,
        quantity=2 * ONE_WETH, expiry=expiry,
    )
    fair = call.fair_premium(spot, Decimal("0.8"))
    print(f"\n    Strike value: {fmt(call.strike_value, 6)} USDC")
    print(f"    Black-Scholes reference premium at 80% vol: {fmt(fair, 6)} USDC")

    call.adjust_premium("alice", fair)
    print(f"    Alice re-prices to the reference: {fmt(call.premium, 6)} USDC")

    # =========================================================================
    # STEP 3: LOCK COLLATERAL
    # =========================================================================
    step("STEP 3: LOCK COLLATERAL")
    (collateral_unit, collateral), _ = option_legs(call.state)
    ledger.approve("alice", call.address, collateral_unit, collateral)
    call.init("alice")
    print(f"\n    Status: {call.status}")
    show_balances(ledger, ["alice", call.address])

    # =========================================================================
    # STEP 4: SELL
    # =========================================================================
    step("STEP 4: SELL")
    ledger.approve("bob", call.address, "USDC", call.premium)
    call.buy("bob")
    print(f"\n    Status: {call.status}, holder: {call.holder}")
    show_balances(ledger, ["alice", "bob"])

    # =========================================================================
    # STEP 5: RESELL THROUGH AN OFFER
    # =========================================================================
    step("STEP 5: RESELL THROUGH AN OFFER")
    ledger.advance_time(datetime(2025, 2, 15))
    oracle.update_price(1950 * 10**8)
    spot = 1950 * 10**8
    ask = call.fair_premium(spot, Decimal("0.8"))
    print(f"\n    WETH rallies to 1,950. Bob asks {fmt(ask, 6)} USDC.")

    offer = offers.create_offer("bob", call, ask)
    call.transfer("bob", offer.address)
    ledger.approve("carol", offer.address, "USDC", ask)
    offer.accept("carol")
    print(f"\n    Offer {offer.symbol}: {offer.status}, option holder: {call.holder}")
    show_balances(ledger, traders)

    # =========================================================================
    # STEP 6: EXERCISE
    # =========================================================================
    step("STEP 6: EXERCISE")
    ledger.advance_time(datetime(2025, 3, 20))
    spot = 2100 * 10**8
    oracle.update_price(spot)
    print(f"\n    WETH at 2,100: {call.moneyness(spot)}, "
          f"intrinsic value {fmt(call.intrinsic_value(spot), 6)} USDC")

    _, (payment_unit, payment) = option_legs(call.state)
    ledger.approve("carol", call.address, payment_unit, payment)
    call.execute("carol")
    print(f"\n    Status: {call.status}")
    show_balances(ledger, traders + [call.address])

    # =========================================================================
    # CHECKS
    # =========================================================================
    step("CONSERVATION CHECK")
    result = ledger.verify_double_entry()
    print(f"\n    Double entry valid: {result['valid']}")
    print(f"    Transactions logged: {len(ledger.transaction_log)}")


if __name__ == "__main__":
    main()
