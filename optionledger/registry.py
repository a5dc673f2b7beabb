"""
registry.py - Option and offer registries

OptionRegistry binds each underlying asset to a price oracle and creates
options quoted in one shared quote token. OfferRegistry creates and
enumerates offers. Neither holds funds or settles anything: creation
registers the new contract's custody wallet and submits a transaction that
brings its unit into the ledger.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Union

from .core import (
    OptionKind, TransactionOrigin, OriginType,
    NotAdmin, OracleNotSet, Expired, WalletNotRegistered,
    build_transaction, token_decimals,
)
from .ledger import Ledger
from .pricing_source import PriceOracle
from .contracts import Option, Offer
from .units.option import create_option_unit
from .units.offer import create_offer_unit


def _next_symbol(ledger: Ledger, prefix: str, count: int) -> str:
    """First free '{prefix}-NNNN' after count, skipping ids already on the ledger."""
    n = count + 1
    while f"{prefix}-{n:04d}" in ledger.units or ledger.is_registered(f"{prefix}-{n:04d}"):
        n += 1
    return f"{prefix}-{n:04d}"


class OptionRegistry:
    """
    Creates options on registered underlying tokens, priced in a single quote token.

    Example:
        registry = OptionRegistry(ledger, quote="USDC", admin="admin")
        registry.set_oracle("admin", "WETH", StaticOracle(1500 * 10**8))
        opt = registry.create_option("alice", "call", "WETH",
                                     premium=10**18, strike_price=1500 * 10**8,
                                     quantity=10**16, expiry=datetime(2025, 6, 30))
    """

    def __init__(self, ledger: Ledger, quote: str, admin: str):
        """
        Args:
            ledger: Ledger holding tokens, options and their custody wallets
            quote: Token symbol premiums and strike values are paid in
            admin: Wallet allowed to set oracles
        """
        token_decimals(ledger, quote)
        self.ledger = ledger
        self.quote = quote
        self.admin = admin
        self.oracles: Dict[str, PriceOracle] = {}
        self._options: List[Option] = []

    def set_oracle(self, caller: str, asset: str, oracle: PriceOracle) -> None:
        """
        Bind asset to oracle, replacing any previous binding.

        Raises:
            NotAdmin: If caller is not the registry admin
            ValueError: If asset is not a registered token or is the quote token
        """
        if caller != self.admin:
            raise NotAdmin(f"{caller} is not the registry admin")
        token_decimals(self.ledger, asset)
        if asset == self.quote:
            raise ValueError(f"{asset} is the quote token")
        self.oracles[asset] = oracle
        if self.ledger.verbose:
            print(f"🔮 Oracle set: {asset} -> {oracle!r}")

    def create_option(
        self,
        caller: str,
        kind: Union[str, OptionKind],
        asset: str,
        premium: Decimal,
        strike_price: Decimal,
        quantity: Decimal,
        expiry: datetime,
    ) -> Option:
        """
        Create an option written by caller.

        The oracle is read once for its precision (and spot at creation);
        the strike value is fixed from then on.

        Raises:
            OracleNotSet: If no oracle is bound to asset
            Expired: If expiry is not in the future
            WalletNotRegistered: If caller is not a registered wallet
            ValueError: On an unknown kind or a zero premium, strike or quantity
        """
        oracle = self.oracles.get(asset)
        if oracle is None:
            raise OracleNotSet(f"No oracle set for {asset}")
        if expiry <= self.ledger.current_time:
            raise Expired(f"expiry {expiry} is not after {self.ledger.current_time}")
        if not self.ledger.is_registered(caller):
            raise WalletNotRegistered(f"Wallet {caller} not registered")

        kind = OptionKind(kind)
        spot, precision = oracle.latest_price()
        symbol = _next_symbol(self.ledger, f"{kind.value.upper()}-{asset}", len(self._options))
        unit = create_option_unit(
            symbol=symbol,
            kind=kind,
            underlying=asset,
            quote=self.quote,
            writer=caller,
            premium=premium,
            strike_price=strike_price,
            quantity=quantity,
            expiry=expiry,
            oracle_price=spot,
            oracle_precision=precision,
            underlying_decimals=token_decimals(self.ledger, asset),
            quote_decimals=token_decimals(self.ledger, self.quote),
        )

        self.ledger.register_wallet(symbol)
        origin = TransactionOrigin(OriginType.CONTRACT, caller, symbol, "CREATE_OPTION")
        self.ledger.submit(build_transaction(self.ledger, [], origin=origin, units_to_create=(unit,)))

        option = Option(self.ledger, symbol)
        self._options.append(option)
        if self.ledger.verbose:
            state = unit.state
            print(f"🆕 {symbol}: writer={caller}, strike_value={state['strike_value']} {self.quote}, "
                  f"premium={state['premium']}, expiry={expiry}")
        return option

    def options(self) -> List[Option]:
        """Options created by this registry, oldest first."""
        return list(self._options)

    def get_option(self, symbol: str) -> Option:
        for option in self._options:
            if option.symbol == symbol:
                return option
        raise KeyError(f"No option {symbol} in this registry")


class OfferRegistry:
    """Creates and enumerates offers for options held on a ledger."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self._offers: List[Offer] = []

    def create_offer(self, caller: str, option: Union[Option, str], ask: Decimal) -> Offer:
        """
        List option for sale at ask (quote native units).

        Only the current holder can list. Listing does not move the right:
        the seller follows up with option.transfer(seller, offer.address).

        Raises:
            NotHolder, AlreadyExecuted, ValueError
        """
        option_symbol = option.symbol if isinstance(option, Option) else option
        symbol = _next_symbol(self.ledger, "OFFER", len(self._offers))
        unit = create_offer_unit(self.ledger, symbol, option_symbol, caller, ask)

        self.ledger.register_wallet(symbol)
        origin = TransactionOrigin(OriginType.CONTRACT, caller, symbol, "CREATE_OFFER")
        self.ledger.submit(build_transaction(self.ledger, [], origin=origin, units_to_create=(unit,)))

        offer = Offer(self.ledger, symbol)
        self._offers.append(offer)
        if self.ledger.verbose:
            print(f"🏷️  {symbol}: {caller} lists {option_symbol} for {unit.state['ask']}")
        return offer

    def list_offers(self) -> List[Offer]:
        """All offers in creation order, whatever their status."""
        return list(self._offers)

    def open_offers(self) -> List[Offer]:
        """Offers neither accepted nor cancelled."""
        return [offer for offer in self._offers if offer.is_open]

    def get_offer(self, symbol: str) -> Offer:
        for offer in self._offers:
            if offer.symbol == symbol:
                return offer
        raise KeyError(f"No offer {symbol} in this registry")
