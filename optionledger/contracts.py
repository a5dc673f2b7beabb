"""
contracts.py - Contract handles

Option and Offer are thin, stateless handles over a unit symbol in a Ledger.
Every method reads the ledger, builds a PendingTransaction with the pure
functions in optionledger.units, and submits it. The ledger either applies
the whole transaction or raises the reason it was rejected; handles keep no
state of their own, so any number of handles on the same symbol agree.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from .core import ExecuteResult, UnitState
from .ledger import Ledger
from .units import option as option_fns
from .units import offer as offer_fns


class Option:
    """
    Handle on a collateralized call or put.

    Example:
        opt = registry.create_option("alice", "call", "WETH", premium, strike, qty, expiry)
        ledger.approve("alice", opt.address, "WETH", qty)
        opt.init("alice")
        ledger.approve("bob", opt.address, "USDC", premium)
        opt.buy("bob")
    """

    def __init__(self, ledger: Ledger, symbol: str):
        self.ledger = ledger
        self.symbol = symbol

    def __repr__(self) -> str:
        return f"Option({self.symbol}, {self.status})"

    def __eq__(self, other: Any) -> bool:
        return (isinstance(other, Option) and other.ledger is self.ledger
                and other.symbol == self.symbol)

    def __hash__(self) -> int:
        return hash(self.symbol)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def state(self) -> UnitState:
        return self.ledger.get_unit_state(self.symbol)

    @property
    def address(self) -> str:
        """Custody wallet of the option: spender for its allowances, holder of collateral."""
        return self.state['wallet']

    @property
    def kind(self) -> str:
        return self.state['kind']

    @property
    def writer(self) -> str:
        return self.state['writer']

    @property
    def holder(self) -> Optional[str]:
        return self.state['holder']

    @property
    def premium(self) -> Decimal:
        return self.state['premium']

    @property
    def strike_value(self) -> Decimal:
        return self.state['strike_value']

    @property
    def expiry(self) -> datetime:
        return self.state['expiry']

    @property
    def status(self) -> str:
        return option_fns.get_option_status(self.ledger, self.symbol)

    def intrinsic_value(self, spot_price: Decimal) -> Decimal:
        return option_fns.get_option_intrinsic_value(self.ledger, self.symbol, spot_price)

    def moneyness(self, spot_price: Decimal) -> str:
        return option_fns.get_option_moneyness(self.ledger, self.symbol, spot_price)

    def fair_premium(self, spot_price: Decimal, volatility: Decimal) -> Decimal:
        return option_fns.compute_fair_premium(self.ledger, self.symbol, spot_price, volatility)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, caller: str) -> ExecuteResult:
        """Writer deposits collateral."""
        return self.ledger.submit(option_fns.compute_init(self.ledger, self.symbol, caller))

    def buy(self, caller: str) -> ExecuteResult:
        """Caller pays the premium to the writer and becomes holder."""
        return self.ledger.submit(option_fns.compute_buy(self.ledger, self.symbol, caller))

    def adjust_premium(self, caller: str, new_premium: Decimal) -> ExecuteResult:
        return self.ledger.submit(
            option_fns.compute_adjust_premium(self.ledger, self.symbol, caller, new_premium)
        )

    def transfer(self, caller: str, new_holder: str) -> ExecuteResult:
        """Hand the holder-right to another wallet (or an offer's address)."""
        return self.ledger.submit(
            option_fns.compute_transfer(self.ledger, self.symbol, caller, new_holder)
        )

    def cancel(self, caller: str) -> ExecuteResult:
        return self.ledger.submit(option_fns.compute_cancel(self.ledger, self.symbol, caller))

    def execute(self, caller: str) -> ExecuteResult:
        """Holder exercises: both settlement legs in one transaction."""
        return self.ledger.submit(option_fns.compute_exercise(self.ledger, self.symbol, caller))

    def withdraw(self, caller: str) -> ExecuteResult:
        """Writer reclaims collateral of a sold option after it lapsed."""
        return self.ledger.submit(option_fns.compute_withdraw(self.ledger, self.symbol, caller))


class Offer:
    """Handle on a fixed-ask offer for an option's holder-right."""

    def __init__(self, ledger: Ledger, symbol: str):
        self.ledger = ledger
        self.symbol = symbol

    def __repr__(self) -> str:
        return f"Offer({self.symbol}, {self.status})"

    def __eq__(self, other: Any) -> bool:
        return (isinstance(other, Offer) and other.ledger is self.ledger
                and other.symbol == self.symbol)

    def __hash__(self) -> int:
        return hash(self.symbol)

    @property
    def state(self) -> Dict[str, Any]:
        return self.ledger.get_unit_state(self.symbol)

    @property
    def address(self) -> str:
        return self.state['wallet']

    @property
    def option(self) -> Option:
        return Option(self.ledger, self.state['option'])

    @property
    def seller(self) -> str:
        return self.state['seller']

    @property
    def ask(self) -> Decimal:
        return self.state['ask']

    @property
    def buyer(self) -> Optional[str]:
        return self.state['buyer']

    @property
    def status(self) -> str:
        return offer_fns.get_offer_status(self.ledger, self.symbol)

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def accept(self, caller: str) -> ExecuteResult:
        """Pay the ask to the seller and take over the option, atomically."""
        return self.ledger.submit(offer_fns.compute_accept(self.ledger, self.symbol, caller))

    def cancel(self, caller: str) -> ExecuteResult:
        """Seller withdraws the listing; a held option goes back to the seller."""
        return self.ledger.submit(offer_fns.compute_cancel_offer(self.ledger, self.symbol, caller))
