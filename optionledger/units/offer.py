"""
offer.py - Pure Functions for Reselling an Option's Holder-Right

An offer is a pass-through custodian. The holder lists the option at a
fixed ask, then transfers the holder-right to the offer's wallet. Whoever
accepts pays the ask to the seller and receives the right in the same
transaction; a cancelled offer hands the right back to the seller.

The offer never exercises or withdraws the option it holds.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, Any, List

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_OFFER,
    NotHolder, NotSeller, AlreadyExecuted, OfferCancelled,
    build_transaction, combine_transactions, record_transfer_rule, to_amount,
    _freeze_state,
)
from .option import compute_transfer


def create_offer_unit(
    view: LedgerView,
    symbol: str,
    option_symbol: str,
    seller: str,
    ask: Decimal,
) -> Unit:
    """
    Create an offer unit listing option_symbol at a fixed ask.

    The ask is denominated in the option's quote token.

    Raises:
        NotHolder: If seller does not currently hold the option
        AlreadyExecuted: If the option has already settled
        ValueError: If ask is not positive
    """
    ask = to_amount(ask, "ask")
    option = view.get_unit_state(option_symbol)
    if option['holder'] is None or option['holder'] != seller:
        raise NotHolder(f"{seller} is not the holder of {option_symbol}")
    if option['executed']:
        raise AlreadyExecuted(f"{option_symbol} is already {option['outcome']}")
    if ask == 0:
        raise ValueError("ask must be positive")

    return Unit(
        symbol=symbol,
        name=f"Offer {option_symbol} @ {ask} {option['quote']}",
        unit_type=UNIT_TYPE_OFFER,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=record_transfer_rule,
        _frozen_state=_freeze_state({
            'option': option_symbol,
            'quote': option['quote'],
            'seller': seller,
            'ask': ask,
            'buyer': None,
            'wallet': symbol,
            'executed': False,
            'cancelled': False,
            'version': 0,
        })
    )


def _check_open(state: Dict[str, Any], symbol: str) -> None:
    if state['executed']:
        raise AlreadyExecuted(f"{symbol} was accepted by {state['buyer']}")
    if state['cancelled']:
        raise OfferCancelled(f"{symbol} was cancelled")


def _offer_change(symbol: str, state: Dict[str, Any], updates: Dict[str, Any]) -> UnitStateChange:
    new_state = {**state, **updates, 'version': state['version'] + 1}
    return UnitStateChange(unit=symbol, old_state=state, new_state=new_state)


def compute_accept(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Buy the listed holder-right at the ask.

    One transaction carries the ask payment (caller to seller, drawn on the
    caller's allowance to the offer wallet), the option's holder change
    (offer wallet to caller) and the offer's own state change. Either all
    three apply or none do.

    Raises:
        AlreadyExecuted, OfferCancelled, NotHolder (offer does not hold the
        option), ValueError (seller accepting their own offer)
    """
    state = view.get_unit_state(symbol)
    _check_open(state, symbol)
    option = view.get_unit_state(state['option'])
    if option['holder'] != state['wallet']:
        raise NotHolder(f"{symbol} does not hold {state['option']}")
    if caller == state['seller']:
        raise ValueError(f"seller {caller} cannot accept their own offer")

    payment = build_transaction(view, [Move(
        quantity=state['ask'],
        unit_symbol=state['quote'],
        source=caller,
        dest=state['seller'],
        contract_id=f'accept_{symbol}_payment',
        spender=state['wallet'],
    )])
    handover = compute_transfer(view, state['option'], state['wallet'], caller)
    own = build_transaction(
        view, [], [_offer_change(symbol, state, {'executed': True, 'buyer': caller})]
    )
    origin = TransactionOrigin(OriginType.CONTRACT, caller, symbol, "ACCEPT")
    return combine_transactions(view, [payment, handover, own], origin)


def compute_cancel_offer(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Withdraw the listing, returning the holder-right to the seller if the
    offer still holds a live option.

    Raises:
        AlreadyExecuted, OfferCancelled (whoever calls), NotSeller
    """
    state = view.get_unit_state(symbol)
    _check_open(state, symbol)
    if caller != state['seller']:
        raise NotSeller(f"{caller} is not the seller of {symbol}")

    parts: List[PendingTransaction] = []
    option = view.get_unit_state(state['option'])
    if option['holder'] == state['wallet'] and not option['executed']:
        parts.append(compute_transfer(view, state['option'], state['wallet'], state['seller']))
    parts.append(build_transaction(
        view, [], [_offer_change(symbol, state, {'cancelled': True})]
    ))
    origin = TransactionOrigin(OriginType.CONTRACT, caller, symbol, "CANCEL_OFFER")
    return combine_transactions(view, parts, origin)


def get_offer_status(view: LedgerView, symbol: str) -> str:
    """'open', 'accepted' or 'cancelled'."""
    state = view.get_unit_state(symbol)
    if state['executed']:
        return "accepted"
    if state['cancelled']:
        return "cancelled"
    return "open"
