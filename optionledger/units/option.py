"""
option.py - Pure Functions for Collateralized Option Contracts

A single option unit covers both calls and puts. The writer escrows
collateral in the option's own wallet; the holder buys the right to
exercise for a premium paid straight to the writer; exercise, cancellation
and post-expiry withdrawal each settle the contract exactly once.

    kind  collateral (escrowed at init)   paid by holder at exercise
    call  quantity of underlying          strike_value of quote
    put   strike_value of quote           quantity of underlying

All compute functions take a LedgerView (read-only) and the acting wallet,
check every precondition, and return a PendingTransaction carrying the
moves and the option's state change. Nothing is applied until the ledger
executes the transaction, so a failed check or a rejected transfer leaves
the option exactly as it was.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Any, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, OptionKind,
    UNIT_TYPE_OPTION,
    NotWriter, NotHolder, AlreadyInitialized, NotInited, AlreadyBought,
    AlreadySold, AlreadyExecuted, NoHolder, Expired, NotExpiredYet,
    WalletNotRegistered,
    build_transaction, record_transfer_rule, to_amount,
    _freeze_state,
)
from .. import black_scholes


STATUS_CREATED = "created"
STATUS_INITED = "inited"
STATUS_SOLD = "sold"
STATUS_CANCELLED = "cancelled"
STATUS_EXERCISED = "exercised"
STATUS_WITHDRAWN = "withdrawn"


# ============================================================================
# PRICING
# ============================================================================

def compute_strike_value(
    quantity: Decimal,
    strike_price: Decimal,
    oracle_precision: int,
    underlying_decimals: int,
    quote_decimals: int,
) -> Decimal:
    """
    Quote-asset amount exchanged at exercise, in quote native units.

        strike_value = quantity * strike_price / 10**oracle_precision
                       * 10**(quote_decimals - underlying_decimals)

    quantity is in underlying native units and strike_price is the price of
    one whole underlying unit in oracle precision. The division happens
    last and in integers, so the only rounding is the final truncation to a
    whole quote unit, whatever the size of the operands.

    Example:
        18-decimal underlying and quote, 8-decimal oracle:
        compute_strike_value(10**16, 1500 * 10**8, 8, 18, 18) == 15 * 10**18
    """
    quantity = int(to_amount(quantity, "quantity"))
    strike_price = int(to_amount(strike_price, "strike_price"))
    numerator = quantity * strike_price * 10**quote_decimals
    denominator = 10**oracle_precision * 10**underlying_decimals
    return Decimal(numerator // denominator)


def option_legs(state: Dict[str, Any]) -> Tuple[Tuple[str, Decimal], Tuple[str, Decimal]]:
    """
    Split an option into its two legs by kind.

    Returns:
        ((collateral_unit, collateral_amount), (payment_unit, payment_amount))
        where collateral is what the writer escrows and the holder receives on
        exercise, and payment is what the holder hands the writer on exercise.
    """
    underlying_leg = (state['underlying'], state['quantity'])
    quote_leg = (state['quote'], state['strike_value'])
    if state['kind'] == OptionKind.CALL.value:
        return underlying_leg, quote_leg
    return quote_leg, underlying_leg


# ============================================================================
# CREATION
# ============================================================================

def create_option_unit(
    symbol: str,
    kind: str,
    underlying: str,
    quote: str,
    writer: str,
    premium: Decimal,
    strike_price: Decimal,
    quantity: Decimal,
    expiry: datetime,
    oracle_price: Decimal,
    oracle_precision: int,
    underlying_decimals: int,
    quote_decimals: int,
) -> Unit:
    """
    Create an option unit with its strike value computed and frozen.

    Args:
        symbol: Unique identifier; also the id of the option's custody wallet
        kind: "call" or "put"
        underlying: Token the option is written on
        quote: Token premiums and strike values are paid in
        writer: Wallet that creates and collateralizes the option
        premium: Quote native units the holder pays for the right
        strike_price: Price of one whole underlying unit, oracle precision
        quantity: Underlying native units covered
        expiry: Last moment exercise is allowed
        oracle_price: Spot reported by the oracle at creation (recorded only)
        oracle_precision, underlying_decimals, quote_decimals: Precisions

    Returns:
        Unit whose state holds the terms and lifecycle flags.

    Raises:
        ValueError: On an unknown kind, a zero amount, or a strike value
                    that truncates to zero.
    """
    kind = OptionKind(kind).value
    premium = to_amount(premium, "premium")
    strike_price = to_amount(strike_price, "strike_price")
    quantity = to_amount(quantity, "quantity")

    if premium == 0:
        raise ValueError("premium must be positive")
    if strike_price == 0:
        raise ValueError("strike_price must be positive")
    if quantity == 0:
        raise ValueError("quantity must be positive")
    if underlying == quote:
        raise ValueError("underlying and quote must be different tokens")

    strike_value = compute_strike_value(
        quantity, strike_price, oracle_precision, underlying_decimals, quote_decimals
    )
    if strike_value == 0:
        raise ValueError(
            f"strike value of {quantity} x {strike_price} rounds to zero {quote} units"
        )

    return Unit(
        symbol=symbol,
        name=f"{underlying} {kind.upper()} {strike_price}e-{oracle_precision} exp {expiry.isoformat()}",
        unit_type=UNIT_TYPE_OPTION,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=record_transfer_rule,
        _frozen_state=_freeze_state({
            'kind': kind,
            'underlying': underlying,
            'quote': quote,
            'writer': writer,
            'holder': None,
            'premium': premium,
            'strike_price': strike_price,
            'quantity': quantity,
            'strike_value': strike_value,
            'expiry': expiry,
            'oracle_price': to_amount(oracle_price, "oracle_price"),
            'oracle_precision': oracle_precision,
            'underlying_decimals': underlying_decimals,
            'quote_decimals': quote_decimals,
            'wallet': symbol,
            'inited': False,
            'executed': False,
            'outcome': None,
            'version': 0,
        })
    )


# ============================================================================
# LIFECYCLE
# ============================================================================

def _transition(
    view: LedgerView,
    symbol: str,
    state: Dict[str, Any],
    updates: Dict[str, Any],
    moves: List[Move],
    caller: str,
    event: str,
) -> PendingTransaction:
    """Build the transaction for one lifecycle step, bumping the version."""
    new_state = {**state, **updates, 'version': state['version'] + 1}
    origin = TransactionOrigin(OriginType.CONTRACT, caller, symbol, event)
    changes = [UnitStateChange(unit=symbol, old_state=state, new_state=new_state)]
    return build_transaction(view, moves, changes, origin=origin)


def _require_writer(state: Dict[str, Any], symbol: str, caller: str) -> None:
    if caller != state['writer']:
        raise NotWriter(f"{caller} is not the writer of {symbol}")


def _require_holder(state: Dict[str, Any], symbol: str, caller: str) -> None:
    if state['holder'] is None or caller != state['holder']:
        raise NotHolder(f"{caller} is not the holder of {symbol}")


def compute_init(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Escrow the writer's collateral in the option wallet.

    The writer must have approved the option wallet for the collateral
    amount; the ledger rejects the transfer-from otherwise.

    Raises:
        NotWriter, AlreadyInitialized, AlreadyExecuted
    """
    state = view.get_unit_state(symbol)
    _require_writer(state, symbol, caller)
    if state['inited']:
        raise AlreadyInitialized(f"{symbol} collateral already deposited")
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")

    (collateral_unit, collateral_amount), _ = option_legs(state)
    moves = [Move(
        quantity=collateral_amount,
        unit_symbol=collateral_unit,
        source=state['writer'],
        dest=state['wallet'],
        contract_id=f'init_{symbol}_collateral',
        spender=state['wallet'],
    )]
    return _transition(view, symbol, state, {'inited': True}, moves, caller, "INIT")


def compute_buy(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Make caller the holder against payment of the premium to the writer.

    The premium goes straight to the writer (it is not escrowed); the caller
    must have approved the option wallet for it.

    Raises:
        NotInited, AlreadyBought, AlreadyExecuted, Expired, ValueError (writer buying)
    """
    state = view.get_unit_state(symbol)
    if not state['inited']:
        raise NotInited(f"{symbol} has no collateral yet")
    if state['holder'] is not None:
        raise AlreadyBought(f"{symbol} is already held by {state['holder']}")
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")
    if view.current_time > state['expiry']:
        raise Expired(f"{symbol} expired at {state['expiry']}")
    if caller == state['writer']:
        raise ValueError(f"writer {caller} cannot buy their own option")

    moves = [Move(
        quantity=state['premium'],
        unit_symbol=state['quote'],
        source=caller,
        dest=state['writer'],
        contract_id=f'buy_{symbol}_premium',
        spender=state['wallet'],
    )]
    return _transition(view, symbol, state, {'holder': caller}, moves, caller, "BUY")


def compute_adjust_premium(
    view: LedgerView, symbol: str, caller: str, new_premium: Decimal
) -> PendingTransaction:
    """
    Change the asking premium while the option is unsold.

    Raises:
        NotWriter, AlreadySold, AlreadyExecuted, ValueError (zero premium)
    """
    new_premium = to_amount(new_premium, "new_premium")
    state = view.get_unit_state(symbol)
    _require_writer(state, symbol, caller)
    if state['holder'] is not None:
        raise AlreadySold(f"{symbol} is already held by {state['holder']}")
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")
    if new_premium == 0:
        raise ValueError("premium must be positive")

    return _transition(view, symbol, state, {'premium': new_premium}, [], caller, "ADJUST_PREMIUM")


def compute_transfer(
    view: LedgerView, symbol: str, caller: str, new_holder: str
) -> PendingTransaction:
    """
    Hand the holder-right to new_holder without payment.

    This is both a gift and the primitive offers build on: listing an option
    means transferring it to the offer's wallet.

    Raises:
        NotHolder, AlreadyExecuted, WalletNotRegistered,
        ValueError (empty, unchanged or writer)
    """
    state = view.get_unit_state(symbol)
    _require_holder(state, symbol, caller)
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")
    if not new_holder or not new_holder.strip():
        raise ValueError("new holder cannot be empty")
    if new_holder not in view.list_wallets():
        raise WalletNotRegistered(f"Wallet {new_holder} not registered")
    if new_holder == state['holder']:
        raise ValueError(f"{new_holder} already holds {symbol}")
    if new_holder == state['writer']:
        raise ValueError(f"{symbol} cannot be transferred to its writer")

    return _transition(view, symbol, state, {'holder': new_holder}, [], caller, "TRANSFER")


def compute_cancel(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Unwind an unsold option and return any collateral to the writer.

    Time plays no part: an unsold option can be cancelled before or after expiry.

    Raises:
        AlreadySold (whoever calls), AlreadyExecuted, NotWriter
    """
    state = view.get_unit_state(symbol)
    if state['holder'] is not None:
        raise AlreadySold(f"{symbol} is already held by {state['holder']}")
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")
    _require_writer(state, symbol, caller)

    moves: List[Move] = []
    if state['inited']:
        (collateral_unit, collateral_amount), _ = option_legs(state)
        moves.append(Move(
            quantity=collateral_amount,
            unit_symbol=collateral_unit,
            source=state['wallet'],
            dest=state['writer'],
            contract_id=f'cancel_{symbol}_collateral',
        ))
    updates = {'executed': True, 'outcome': STATUS_CANCELLED}
    return _transition(view, symbol, state, updates, moves, caller, "CANCEL")


def compute_exercise(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Settle the option at the holder's request, on or before expiry.

    Both legs travel in one transaction:
        CALL: holder pays strike_value quote to writer; holder receives the
              escrowed underlying.
        PUT:  holder delivers quantity underlying to writer; holder receives
              the escrowed strike_value quote.

    The holder must have approved the option wallet for the payment leg.

    Raises:
        NotHolder, Expired, AlreadyExecuted
    """
    state = view.get_unit_state(symbol)
    _require_holder(state, symbol, caller)
    if view.current_time > state['expiry']:
        raise Expired(f"{symbol} expired at {state['expiry']}")
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")

    (collateral_unit, collateral_amount), (payment_unit, payment_amount) = option_legs(state)
    moves = [
        Move(
            quantity=payment_amount,
            unit_symbol=payment_unit,
            source=state['holder'],
            dest=state['writer'],
            contract_id=f'exercise_{symbol}_payment',
            spender=state['wallet'],
        ),
        Move(
            quantity=collateral_amount,
            unit_symbol=collateral_unit,
            source=state['wallet'],
            dest=state['holder'],
            contract_id=f'exercise_{symbol}_delivery',
        ),
    ]
    updates = {'executed': True, 'outcome': STATUS_EXERCISED}
    return _transition(view, symbol, state, updates, moves, caller, "EXERCISE")


def compute_withdraw(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Return the collateral of a sold option whose holder let it lapse.

    Raises:
        NotWriter, NotExpiredYet, NoHolder, AlreadyExecuted
    """
    state = view.get_unit_state(symbol)
    _require_writer(state, symbol, caller)
    if view.current_time <= state['expiry']:
        raise NotExpiredYet(f"{symbol} can be exercised until {state['expiry']}")
    if state['holder'] is None:
        raise NoHolder(f"{symbol} was never sold; cancel it instead")
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} is already {state['outcome']}")

    (collateral_unit, collateral_amount), _ = option_legs(state)
    moves = [Move(
        quantity=collateral_amount,
        unit_symbol=collateral_unit,
        source=state['wallet'],
        dest=state['writer'],
        contract_id=f'withdraw_{symbol}_collateral',
    )]
    updates = {'executed': True, 'outcome': STATUS_WITHDRAWN}
    return _transition(view, symbol, state, updates, moves, caller, "WITHDRAW")


# ============================================================================
# QUERIES
# ============================================================================

def get_option_status(view: LedgerView, symbol: str) -> str:
    """
    Lifecycle state of an option.

    created -> inited -> sold -> exercised | withdrawn
    created | inited -> cancelled
    """
    state = view.get_unit_state(symbol)
    if state['executed']:
        return state['outcome']
    if state['holder'] is not None:
        return STATUS_SOLD
    if state['inited']:
        return STATUS_INITED
    return STATUS_CREATED


def get_option_intrinsic_value(
    view: LedgerView,
    symbol: str,
    spot_price: Decimal,
) -> Decimal:
    """
    Intrinsic value of the whole contract in quote native units.

    Args:
        spot_price: Price of one whole underlying unit, in oracle precision

    For calls: max(0, spot - strike), for puts: max(0, strike - spot),
    scaled by quantity exactly like the strike value.
    """
    spot_price = to_amount(spot_price, "spot_price")
    state = view.get_unit_state(symbol)
    strike = state['strike_price']

    if state['kind'] == OptionKind.CALL.value:
        diff = max(Decimal("0"), spot_price - strike)
    else:
        diff = max(Decimal("0"), strike - spot_price)

    return compute_strike_value(
        state['quantity'], diff, state['oracle_precision'],
        state['underlying_decimals'], state['quote_decimals'],
    )


def get_option_moneyness(
    view: LedgerView,
    symbol: str,
    spot_price: Decimal,
) -> str:
    """
    'ITM', 'ATM' or 'OTM' for a spot price in oracle precision.

    ATM is determined using a tolerance of 1% of the strike price.
    """
    spot_price = to_amount(spot_price, "spot_price")
    state = view.get_unit_state(symbol)
    strike = state['strike_price']

    if abs(spot_price - strike) <= strike * Decimal("0.01"):
        return 'ATM'

    if state['kind'] == OptionKind.CALL.value:
        return 'ITM' if spot_price > strike else 'OTM'
    return 'ITM' if spot_price < strike else 'OTM'


def compute_fair_premium(
    view: LedgerView,
    symbol: str,
    spot_price: Decimal,
    volatility: Decimal,
    as_of: Optional[datetime] = None,
) -> Decimal:
    """
    Zero-rate Black-Scholes value of the whole contract, in quote native units.

    A reference for writers setting a premium and holders setting an ask;
    nothing in the settlement path depends on it. At or past expiry the
    value collapses to intrinsic value.

    Args:
        spot_price: Price of one whole underlying unit, in oracle precision
        volatility: Annualized volatility (e.g. Decimal("0.8"))
        as_of: Valuation time (default: the ledger's current time)
    """
    spot_price = to_amount(spot_price, "spot_price")
    state = view.get_unit_state(symbol)
    as_of = as_of or view.current_time
    t_in_days = Decimal(str((state['expiry'] - as_of).total_seconds())) / Decimal(86400)
    if t_in_days <= 0:
        return get_option_intrinsic_value(view, symbol, spot_price)

    scale = Decimal(10) ** state['oracle_precision']
    s = spot_price / scale
    k = state['strike_price'] / scale
    if state['kind'] == OptionKind.CALL.value:
        per_unit = black_scholes.call(s, k, t_in_days, Decimal(str(volatility)))
    else:
        per_unit = black_scholes.put(s, k, t_in_days, Decimal(str(volatility)))

    value = (
        per_unit * state['quantity'] * (Decimal(10) ** state['quote_decimals'])
        / (Decimal(10) ** state['underlying_decimals'])
    )
    return max(Decimal("0"), value).quantize(Decimal("1"), rounding=ROUND_DOWN)
