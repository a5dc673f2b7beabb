"""
Core types and pure functions for the option ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the contract error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: Pure validation functions for moves
6. Unit factories: Functions to create fungible token units

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, Sequence, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Amounts are integral native units (e.g. 10**18 per whole token). prec=50
# covers balance arithmetic on such amounts; the strike value product can
# exceed it and is computed in integers instead (units/option.py).
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_OPTION = "OPTION"
UNIT_TYPE_OFFER = "OFFER"

# Option kinds as stored in unit state.
OPTION_KIND_CALL = "call"
OPTION_KIND_PUT = "put"

# Precision of a token when none is given (ERC-20 convention).
DEFAULT_TOKEN_DECIMALS = 18

# Ledger amounts are integral native units; nothing below one unit exists.
QUANTITY_EPSILON = Decimal("1")

DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
    UNIT_TYPE_OPTION: ROUND_DOWN,
    UNIT_TYPE_OFFER: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: contract terms, lifecycle flags, etc.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Option and offer compute functions receive a LedgerView and return a
    PendingTransaction. They can inspect balances, allowances, unit state and
    the logical clock, but cannot change anything.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Return the balance of a specific unit in a wallet.

        Returns Decimal("0") if the wallet holds none of the unit.
        """
        ...

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Return how much of owner's unit the spender may still move."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (funds, allowance, balance limits,
              transfer rules or stale unit state).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Direct wallet action (transfer, approve)
    CONTRACT = "contract"                 # Option or offer operation
    SYSTEM = "system"                     # Issuance, initial setup
    EXTERNAL = "external"                 # External system integration


class OptionKind(str, Enum):
    """Kind of an option contract. Values match the strings kept in unit state."""
    CALL = OPTION_KIND_CALL
    PUT = OPTION_KIND_PUT


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferError(LedgerError):
    """An asset movement could not be carried out."""
    pass


class TransferFailed(TransferError):
    """Raised when the ledger rejects a transfer (balance, allowance or limits)."""
    pass


class InsufficientFunds(TransferFailed):
    """Raised when a move would take a wallet balance below the unit's minimum."""
    pass


class InsufficientAllowance(TransferFailed):
    """Raised when a spender moves more of an owner's unit than was approved."""
    pass


class BalanceConstraintViolation(TransferFailed):
    """Raised when a move would push a wallet balance above the unit's maximum."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class ContractError(LedgerError):
    """Base class for option and offer precondition failures."""
    pass


class AuthorizationError(ContractError):
    """The caller is not the party allowed to perform the action."""
    pass


class NotWriter(AuthorizationError):
    pass


class NotHolder(AuthorizationError):
    pass


class NotSeller(AuthorizationError):
    pass


class NotAdmin(AuthorizationError):
    pass


class StateError(ContractError):
    """The action is not valid in the contract's current lifecycle state."""
    pass


class AlreadyInitialized(StateError):
    pass


class NotInited(StateError):
    pass


class AlreadyBought(StateError):
    pass


class AlreadySold(StateError):
    pass


class AlreadyExecuted(StateError):
    pass


class NoHolder(StateError):
    pass


class OfferCancelled(StateError):
    pass


class OracleNotSet(StateError):
    pass


class StaleState(StateError):
    """Raised when a transaction was built from unit state that has since changed."""
    pass


class TimingError(ContractError):
    """The action is gated by expiry and the clock is on the wrong side of it."""
    pass


class Expired(TimingError):
    pass


class NotExpiredYet(TimingError):
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Wallet or component that triggered the transaction
        unit_symbol: Symbol of the option/offer involved (if applicable)
        event_type: Operation name (e.g., "INIT", "BUY", "EXERCISE", "ACCEPT")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change.

    Stores complete before/after snapshots. The ledger compares old_state
    against the live state at execution time and rejects the transaction on
    mismatch, and clone_at() restores old_state when unwinding.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer, in native units (positive, integral).
        unit_symbol: The symbol of the unit being transferred (e.g., "USDC", "WETH").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the contract generating this move.
        spender: Wallet moving the funds on the source's behalf. When set and
                 different from source, the move consumes source's allowance
                 for that spender (transfer-from semantics).
        metadata: Optional additional information about the move.

    This class is immutable (frozen=True) and memory-optimized (slots=True).
    All fields are validated in __post_init__.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    spender: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.quantity != self.quantity.to_integral_value():
            raise ValueError(f"Move quantity must be a whole number of native units, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    @property
    def delegated(self) -> bool:
        """True when the move is a transfer-from that draws on an allowance."""
        return self.spender is not None and self.spender != self.source

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.delegated else ""
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest}{via})"


def to_amount(value: Any, name: str = "amount") -> Decimal:
    """
    Coerce an int/str/Decimal into an integral native-unit Decimal.

    Floats are rejected: 10**18-scaled amounts do not survive a float.

    Raises:
        ValueError: If the value is a float, negative, non-finite or fractional.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"{name} must be an int or Decimal, got {type(value).__name__}")
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"{name} must be finite, got {amount}")
    if amount < 0:
        raise ValueError(f"{name} must be non-negative, got {amount}")
    if amount != amount.to_integral_value():
        raise ValueError(f"{name} must be a whole number of native units, got {amount}")
    return amount


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on moves, state changes, origin and units to create, never
    on timestamps. Used for idempotency: the same intent is applied once.
    Option and offer transitions bump a 'version' field in their state, so
    two legitimate transitions never share an intent id.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest,
                       m.contract_id, m.spender or "")
    ))

    content_parts = []

    content_parts.append(f"origin:{origin.origin_type.value}:{origin.source_id}")
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}|{m.spender or ''}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by option/offer compute functions and submitted to the ledger.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Tuple of Unit objects to register before executing moves
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves, no state deltas, and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to CONTRACT origin)
        units_to_create: Optional tuple of Unit objects to register before executing moves

    Example:
        def compute_release(view, symbol, holder):
            state = view.get_unit_state(symbol)
            moves = [Move(Decimal("100"), "USDC", symbol, holder, f"release_{symbol}")]
            new_state = {**state, "executed": True}
            changes = [UnitStateChange(unit=symbol, old_state=state, new_state=new_state)]
            return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    # Deep copy state changes to prevent mutation
    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def combine_transactions(
    view: LedgerView,
    parts: Sequence[PendingTransaction],
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Merge several pending transactions into one atomic transaction.

    Used where one operation drives another contract's transition, e.g. an
    offer's acceptance carrying the option's holder transfer. A unit may
    appear in at most one part's state changes.

    Raises:
        ValueError: If two parts change the same unit's state.
    """
    moves: List[Move] = []
    changes: List[UnitStateChange] = []
    units: List[Unit] = []
    touched: Set[str] = set()
    for part in parts:
        moves.extend(part.moves)
        units.extend(part.units_to_create)
        for sc in part.state_changes:
            if sc.unit in touched:
                raise ValueError(f"Unit {sc.unit} changed twice in one transaction")
            touched.add(sc.unit)
            changes.append(sc)
    return build_transaction(view, moves, changes, origin=origin, units_to_create=tuple(units))


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            via = f" (via {move.spender})" if move.delegated else ""
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}{via}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Type alias for transfer rule functions.
# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs, sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit registered in the ledger.

    Fungible tokens carry balances. Option and offer units are state records:
    their terms and lifecycle flags live in the unit state and nobody holds
    a balance of them.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "CALL-WETH-0001").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (TOKEN, OPTION, OFFER).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Get the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def record_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Reject every move of a record unit.

    Option and offer units exist to carry contract state; the right to
    exercise is the 'holder' field, never a balance that could be moved
    around the ledger.

    Raises:
        TransferRuleViolation: Always.
    """
    raise TransferRuleViolation(
        f"{move.unit_symbol} is a contract record and cannot be transferred"
    )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimals: int = DEFAULT_TOKEN_DECIMALS) -> Unit:
    """
    Create a fungible token unit.

    Balances are kept in native units (whole numbers; one whole token is
    10**decimals native units). Balances cannot go negative except in the
    system wallet, which is how tokens are issued.

    Args:
        symbol: Token symbol (e.g., "USDC", "WETH").
        name: Full name of the token.
        decimals: Native precision of the token (default: 18).

    Returns:
        A Unit with min_balance 0 and 'decimals' recorded in its state.
    """
    if not isinstance(decimals, int) or isinstance(decimals, bool) or decimals < 0:
        raise ValueError(f"decimals must be a non-negative int, got {decimals!r}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimal_places=0,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'decimals': decimals}),
    )


def token_decimals(view: LedgerView, unit_symbol: str) -> int:
    """
    Return the native precision of a registered token.

    Raises:
        ValueError: If the unit is not a token.
    """
    state = view.get_unit_state(unit_symbol)
    if 'decimals' not in state:
        raise ValueError(f"Unit {unit_symbol} is not a token")
    return state['decimals']
