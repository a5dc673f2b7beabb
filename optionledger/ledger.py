"""
ledger.py - Stateful Asset Ledger

The Ledger class is the central state manager for the option ledger.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Holds fungible token balances and spender allowances (approve / transfer-from)
    - Executes transactions atomically (all moves and state changes, or none)
    - Applies unit state changes before balance effects
    - Tracks logical time and provides temporal operations (clone_at, replay)
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction, TransactionOrigin, OriginType,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    build_transaction, to_amount,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientFunds, InsufficientAllowance, BalanceConstraintViolation,
    TransferRuleViolation, UnitNotRegistered, WalletNotRegistered, StaleState,
    # Helper functions
    _freeze_state,
)


AllowanceKey = Tuple[str, str, str]  # (owner, spender, unit_symbol)


@dataclass(frozen=True, slots=True)
class Approval:
    """
    Audit record of an approve() call.

    before_sequence is the sequence number the next executed transaction
    received, which orders approvals against the transaction log.
    """
    before_sequence: int
    time: datetime
    owner: str
    spender: str
    unit_symbol: str
    amount: Decimal


class Ledger:
    """
    Double-entry asset ledger with allowances, full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is validated against registration,
          transfer rules, stale unit state, allowances and balance limits.
        - Always logs: Every transaction is recorded in the audit trail, enabling
          clone_at() and replay() for historical state reconstruction.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("USDC", "USD Coin", decimals=6))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.mint("USDC", "alice", 1_000_000_000)
        ledger.transfer("USDC", "alice", "bob", 250_000_000)
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print registrations and transaction outcomes (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.allowances: Dict[AllowanceKey, Decimal] = {}
        self.approval_log: List[Approval] = []
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[LedgerError] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        # Auto-register the system wallet (used for token issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Amount of owner's unit that spender may still move."""
        return self.allowances.get((owner, spender, unit_symbol), Decimal("0"))

    allowance = get_allowance

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        unit_obj = self.units[unit_symbol]
        return self._deep_copy_state(unit_obj.state) if unit_obj.state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a specific unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Calculate total supply of a unit across all wallets, system wallet included.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Every move debits one wallet and credits another, so the sum of all
        balances of a unit (system wallet included) is always zero.

        Args:
            expected_supplies: Optional dict mapping unit symbols to expected totals.

        Returns:
            Dict with keys 'valid', 'supplies' and 'discrepancies'.
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply
            expected = Decimal("0")
            if expected_supplies and unit_symbol in expected_supplies:
                expected = Decimal(str(expected_supplies[unit_symbol]))
            if current_supply != expected:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': current_supply,
                    'difference': abs(current_supply - expected),
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This bypasses double-entry accounting and is only available
        in test mode. Use mint() / transfer() otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use mint() or transfer() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        quantity = to_amount(quantity, "quantity")
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # ASSET LEDGER INTERFACE (Mutating)
    # ========================================================================

    def approve(self, owner: str, spender: str, unit_symbol: str, amount: Any) -> None:
        """
        Allow spender to move up to amount of owner's unit.

        Overwrites any previous allowance for the same (owner, spender, unit).

        Raises:
            WalletNotRegistered / UnitNotRegistered: On unknown ids
            ValueError: If amount is negative or fractional, or owner == spender
        """
        if owner not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {owner} not registered")
        if spender not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {spender} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if owner == spender:
            raise ValueError("owner and spender must be different")
        amount = to_amount(amount)
        self._set_allowance((owner, spender, unit_symbol), amount)
        self.approval_log.append(Approval(
            before_sequence=self._next_sequence,
            time=self._current_time,
            owner=owner,
            spender=spender,
            unit_symbol=unit_symbol,
            amount=amount,
        ))
        if self.verbose:
            print(f"🔑 Approved: {spender} may move {amount} {unit_symbol} of {owner}")

    def transfer(self, unit_symbol: str, source: str, dest: str, amount: Any) -> ExecuteResult:
        """
        Move amount of a unit directly from source to dest, authorized by source.

        Raises:
            TransferFailed: If source lacks the balance
        """
        move = Move(to_amount(amount), unit_symbol, source, dest,
                    f"transfer_{self._next_sequence}")
        origin = TransactionOrigin(OriginType.USER_ACTION, source, unit_symbol, "TRANSFER")
        return self.submit(build_transaction(self, [move], origin=origin))

    def transfer_from(
        self, unit_symbol: str, spender: str, owner: str, dest: str, amount: Any
    ) -> ExecuteResult:
        """
        Move amount of owner's unit to dest on the owner's behalf.

        Raises:
            InsufficientAllowance: If owner has not approved spender for amount
            InsufficientFunds: If owner lacks the balance
        """
        move = Move(to_amount(amount), unit_symbol, owner, dest,
                    f"transfer_from_{self._next_sequence}", spender=spender)
        origin = TransactionOrigin(OriginType.USER_ACTION, spender, unit_symbol, "TRANSFER_FROM")
        return self.submit(build_transaction(self, [move], origin=origin))

    def mint(self, unit_symbol: str, dest: str, amount: Any) -> ExecuteResult:
        """Issue amount of a unit to dest out of the system wallet."""
        move = Move(to_amount(amount), unit_symbol, SYSTEM_WALLET, dest,
                    f"mint_{self._next_sequence}")
        origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, unit_symbol, "MINT")
        return self.submit(build_transaction(self, [move], origin=origin))

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def submit(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction and raise if the ledger rejects it.

        Returns:
            ExecuteResult.APPLIED or ExecuteResult.ALREADY_APPLIED

        Raises:
            LedgerError: The specific rejection (InsufficientFunds,
                         InsufficientAllowance, StaleState, ...)
        """
        result = self.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise self.last_rejection
        return result

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves and state changes succeed together or all fail together.
        Execution is idempotent: a pending transaction with the same intent_id
        will not be applied twice.

        Order of application once validation has passed:
            1. unit state changes (contract flags flip first)
            2. allowance consumption
            3. balance moves

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed (reason in last_rejection)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        # Units are registered for validation and rolled back on failure.
        newly_registered_units: List[str] = []
        for unit in pending.units_to_create:
            if unit.symbol not in self.units:
                self.units[unit.symbol] = unit
                newly_registered_units.append(unit.symbol)

        error = self._validate_pending(pending)
        if error is not None:
            for sym in newly_registered_units:
                del self.units[sym]
            self.last_rejection = error
            if self.verbose:
                print(f"✗ REJECTED: {error}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1
        exec_id = self._generate_exec_id(sequence)

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=exec_id,
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        self._apply_state_changes(tx.state_changes)
        self._consume_allowances(tx.moves)
        self._execute_moves(tx.moves)

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the boxed transaction followed by a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Optional[LedgerError]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Transfer rule enforcement
        4. Stale state (each old_state must equal the live unit state)
        5. Allowances for delegated moves, aggregated per (owner, spender, unit)
        6. Balance constraints (min/max balance limits)

        Returns:
            None if valid, otherwise the LedgerError describing the failure.
        """
        if pending.timestamp > self._current_time:
            return LedgerError("future timestamp")

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return UnitNotRegistered(f"unit not registered: {move.unit_symbol}")
            for wallet in (move.source, move.dest):
                if not self.is_registered(wallet):
                    return WalletNotRegistered(f"wallet not registered: {wallet}")
            if move.delegated and not self.is_registered(move.spender):
                return WalletNotRegistered(f"wallet not registered: {move.spender}")

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return e

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return UnitNotRegistered(f"unit not registered: {sc.unit}")
            if sc.old_state is None:
                continue
            current_state = self.units[sc.unit].state
            expected = sc.old_state if isinstance(sc.old_state, dict) else {}
            for key in set(expected.keys()) | set(current_state.keys()):
                if expected.get(key) != current_state.get(key):
                    return StaleState(
                        f"stale state for {sc.unit}.{key}: "
                        f"expected {expected.get(key)!r}, found {current_state.get(key)!r}"
                    )

        spent: Dict[AllowanceKey, Decimal] = {}
        for move in pending.moves:
            if move.delegated:
                key = (move.source, move.spender, move.unit_symbol)
                spent[key] = spent.get(key, Decimal("0")) + move.quantity
        for (owner, spender, unit_sym), amount in spent.items():
            approved = self.get_allowance(owner, spender, unit_sym)
            if amount > approved:
                return InsufficientAllowance(
                    f"{spender} may move {approved} {unit_sym} of {owner}, needs {amount}"
                )

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt from balance validation (issuance/redemption)
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                return InsufficientFunds(
                    f"{wallet} {unit_sym}: balance {current} cannot cover {-delta}"
                )
            if proposed > unit.max_balance:
                return BalanceConstraintViolation(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

        return None

    def _apply_state_changes(self, state_changes) -> None:
        """Replace each touched unit with a copy carrying its new state."""
        for sc in state_changes:
            old_unit = self.units[sc.unit]
            new_state = self._deep_copy_state(
                sc.new_state if isinstance(sc.new_state, dict) else {}
            )
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

    def _set_allowance(self, key: AllowanceKey, amount: Decimal) -> None:
        if amount > 0:
            self.allowances[key] = amount
        else:
            self.allowances.pop(key, None)

    def _consume_allowances(self, moves) -> None:
        for move in moves:
            if move.delegated:
                key = (move.source, move.spender, move.unit_symbol)
                self._set_allowance(key, self.get_allowance(*key) - move.quantity)

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Update the inverted position index after a balance change.

        Zero balances are removed from the index to keep it compact.
        """
        if abs(quantity) >= self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances and update the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    @staticmethod
    def _deep_copy_state(state: Optional[UnitState]) -> Optional[UnitState]:
        if state is None:
            return None
        return copy.deepcopy(state)

    @staticmethod
    def _rebuild_allowances(
        transactions: List[Transaction],
        approvals: List[Approval],
    ) -> Dict[AllowanceKey, Decimal]:
        """
        Recompute allowances by interleaving approvals with delegated moves.

        An approval with before_sequence == n happened after transaction n-1
        and before transaction n.
        """
        allowances: Dict[AllowanceKey, Decimal] = {}
        pending_approvals = sorted(approvals, key=lambda a: a.before_sequence)
        idx = 0

        def apply_approvals_up_to(sequence: int) -> int:
            i = idx
            while i < len(pending_approvals) and pending_approvals[i].before_sequence <= sequence:
                a = pending_approvals[i]
                allowances[(a.owner, a.spender, a.unit_symbol)] = a.amount
                i += 1
            return i

        for tx in transactions:
            idx = apply_approvals_up_to(tx.sequence_number)
            for move in tx.moves:
                if move.delegated:
                    key = (move.source, move.spender, move.unit_symbol)
                    allowances[key] = allowances.get(key, Decimal("0")) - move.quantity
        while idx < len(pending_approvals):
            a = pending_approvals[idx]
            allowances[(a.owner, a.spender, a.unit_symbol)] = a.amount
            idx += 1
        return {k: v for k, v in allowances.items() if v > 0}

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: units, wallets, balances, allowances,
        transaction log, current time and configuration.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.last_rejection = None

        cloned.units = {}
        for symbol, unit in self.units.items():
            cloned.units[symbol] = replace(
                unit, _frozen_state=_freeze_state(self._deep_copy_state(unit.state))
            )

        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned.approval_log = list(self.approval_log)
        cloned.allowances = dict(self.allowances)
        cloned._next_sequence = self._next_sequence

        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(lambda: Decimal("0"), bals)

        cloned._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in self._positions_by_unit.items():
            cloned._positions_by_unit[unit_symbol] = dict(positions)

        return cloned

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        Create a deep copy of this ledger as it existed at a specific past time.

        Unwind algorithm:
        1. Clone the current ledger state
        2. Walk backward through all transactions executed after target_time
        3. Reverse each transaction's effects (balances, unit state, created units)
        4. Rebuild allowances from the approvals and transactions kept

        Raises:
            ValueError: If target_time is in the future
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")

        cloned = self.clone()
        cloned._current_time = target_time

        cloned.transaction_log = [
            tx for tx in self.transaction_log
            if tx.execution_time <= target_time
        ]
        cloned.seen_intent_ids = {tx.intent_id for tx in cloned.transaction_log}
        cloned._next_sequence = len(cloned.transaction_log)
        cloned.approval_log = [
            a for a in self.approval_log
            if a.time <= target_time and a.before_sequence <= cloned._next_sequence
        ]
        cloned.allowances = self._rebuild_allowances(cloned.transaction_log, cloned.approval_log)

        for tx in reversed(self.transaction_log):
            if tx.execution_time <= target_time:
                break

            for move in tx.moves:
                unit = cloned.units.get(move.unit_symbol)
                if unit is None:
                    raise LedgerError(f"Cannot unwind: unit {move.unit_symbol} not found in cloned ledger")
                new_src = unit.round(
                    cloned.balances[move.source][move.unit_symbol] + move.quantity
                )
                new_dst = unit.round(
                    cloned.balances[move.dest][move.unit_symbol] - move.quantity
                )
                cloned.balances[move.source][move.unit_symbol] = new_src
                cloned.balances[move.dest][move.unit_symbol] = new_dst
                cloned._update_position_index(move.source, move.unit_symbol, new_src)
                cloned._update_position_index(move.dest, move.unit_symbol, new_dst)

            for sc in tx.state_changes:
                if sc.unit in cloned.units:
                    old_unit = cloned.units[sc.unit]
                    restored_state = self._deep_copy_state(
                        sc.old_state if isinstance(sc.old_state, dict) else {}
                    )
                    cloned.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(restored_state))

            for unit in tx.units_to_create:
                cloned.units.pop(unit.symbol, None)
                for wallet in cloned.registered_wallets:
                    cloned.balances[wallet].pop(unit.symbol, None)
                cloned._positions_by_unit.pop(unit.symbol, None)

        return cloned

    def replay(self, from_tx: int = 0) -> Ledger:
        """
        Create a new ledger by replaying the transaction log.

        Unit definitions are copied without state; unit states are rebuilt
        from the logged state changes. Approvals are re-applied at the same
        points in the sequence. Balances set via set_balance() are NOT
        replayed because they are not part of the transaction log.

        Raises:
            LedgerError: If a logged transaction is rejected during replay
        """
        new_ledger = Ledger(
            name=f"{self.name}_replayed",
            initial_time=datetime(1970, 1, 1),
            verbose=self.verbose,
            test_mode=self._test_mode
        )

        units_created_in_log = set()
        for tx in self.transaction_log[from_tx:]:
            for unit in tx.units_to_create:
                units_created_in_log.add(unit.symbol)

        first_old_states = self._first_logged_states(from_tx)
        for symbol, unit in self.units.items():
            if symbol in units_created_in_log:
                continue
            initial_state = first_old_states.get(symbol, unit.state)
            new_ledger.units[symbol] = replace(unit, _frozen_state=_freeze_state(initial_state))

        for wallet in self.registered_wallets:
            if wallet != SYSTEM_WALLET:
                new_ledger.register_wallet(wallet)

        approvals = sorted(self.approval_log, key=lambda a: a.before_sequence)
        next_approval = 0
        for tx in self.transaction_log[from_tx:]:
            while next_approval < len(approvals) and approvals[next_approval].before_sequence <= tx.sequence_number:
                a = approvals[next_approval]
                new_ledger._set_allowance((a.owner, a.spender, a.unit_symbol), a.amount)
                next_approval += 1

            if tx.timestamp > new_ledger._current_time:
                new_ledger.advance_time(tx.timestamp)

            pending = PendingTransaction(
                moves=tx.moves,
                state_changes=tx.state_changes,
                origin=tx.origin,
                timestamp=tx.timestamp,
                units_to_create=tx.units_to_create,
            )

            result = new_ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}: {new_ledger.last_rejection}")

        for a in approvals[next_approval:]:
            new_ledger._set_allowance((a.owner, a.spender, a.unit_symbol), a.amount)
        new_ledger.approval_log = list(self.approval_log)
        if self._current_time > new_ledger._current_time:
            new_ledger.advance_time(self._current_time)

        return new_ledger

    def _first_logged_states(self, from_tx: int) -> Dict[str, UnitState]:
        """State each unit had before its first logged change (from from_tx on)."""
        first: Dict[str, UnitState] = {}
        for tx in self.transaction_log[from_tx:]:
            for sc in tx.state_changes:
                if sc.unit not in first and isinstance(sc.old_state, dict):
                    first[sc.unit] = self._deep_copy_state(sc.old_state)
        return first
