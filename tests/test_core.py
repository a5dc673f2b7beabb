"""
test_core.py - Unit tests for core.py

Tests:
- Move validation and transfer-from detection
- to_amount coercion of native-unit amounts
- token() factory and token_decimals()
- Intent ids, build_transaction and combine_transactions
- record_transfer_rule and the error hierarchy
"""

import pytest
from datetime import datetime
from decimal import Decimal

from optionledger import (
    Move, UnitStateChange, TransactionOrigin, OriginType, LedgerView,
    build_transaction, combine_transactions,
    token, token_decimals, to_amount, record_transfer_rule,
    UNIT_TYPE_TOKEN, SYSTEM_WALLET,
    LedgerError, TransferError, TransferFailed, InsufficientFunds,
    InsufficientAllowance, BalanceConstraintViolation, TransferRuleViolation,
    ContractError, AuthorizationError, StateError, TimingError,
    NotWriter, NotHolder, NotSeller, NotAdmin,
    AlreadyInitialized, NotInited, AlreadyBought, AlreadySold, AlreadyExecuted,
    NoHolder, OfferCancelled, OracleNotSet, StaleState, Expired, NotExpiredYet,
)
from tests.fake_view import FakeView


class TestMove:
    """Tests for Move validation."""

    def test_valid_move(self):
        move = Move(Decimal("100"), "USDC", "alice", "bob", "tx_1")
        assert move.quantity == Decimal("100")
        assert move.spender is None
        assert not move.delegated

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            Move(Decimal("0"), "USDC", "alice", "bob", "tx_1")

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            Move(Decimal("-5"), "USDC", "alice", "bob", "tx_1")

    def test_fractional_quantity_rejected(self):
        with pytest.raises(ValueError, match="whole number"):
            Move(Decimal("1.5"), "USDC", "alice", "bob", "tx_1")

    def test_non_decimal_quantity_rejected(self):
        with pytest.raises(ValueError, match="must be Decimal"):
            Move(100, "USDC", "alice", "bob", "tx_1")

    def test_same_source_and_dest_rejected(self):
        with pytest.raises(ValueError, match="different"):
            Move(Decimal("1"), "USDC", "alice", "alice", "tx_1")

    def test_empty_fields_rejected(self):
        with pytest.raises(ValueError):
            Move(Decimal("1"), "", "alice", "bob", "tx_1")
        with pytest.raises(ValueError):
            Move(Decimal("1"), "USDC", "alice", "bob", " ")

    def test_spender_other_than_source_is_delegated(self):
        move = Move(Decimal("1"), "USDC", "alice", "bob", "tx_1", spender="CALL-WETH-0001")
        assert move.delegated
        assert "via CALL-WETH-0001" in repr(move)

    def test_spender_equal_to_source_is_direct(self):
        move = Move(Decimal("1"), "USDC", "alice", "bob", "tx_1", spender="alice")
        assert not move.delegated


class TestToAmount:
    """Tests for native-unit amount coercion."""

    def test_int_and_str_accepted(self):
        assert to_amount(10**18) == Decimal(10**18)
        assert to_amount("250") == Decimal("250")

    def test_integral_decimal_accepted(self):
        assert to_amount(Decimal("3.000")) == Decimal("3")

    def test_float_rejected(self):
        with pytest.raises(ValueError, match="int or Decimal"):
            to_amount(1.0)

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            to_amount(True)

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            to_amount(-1, "premium")

    def test_fraction_rejected(self):
        with pytest.raises(ValueError, match="whole number"):
            to_amount(Decimal("0.5"))

    def test_zero_allowed(self):
        assert to_amount(0) == Decimal("0")


class TestToken:
    """Tests for the token() factory."""

    def test_default_decimals(self):
        unit = token("WETH", "Wrapped Ether")
        assert unit.unit_type == UNIT_TYPE_TOKEN
        assert unit.state == {'decimals': 18}
        assert unit.min_balance == Decimal("0")
        assert unit.transfer_rule is None

    def test_custom_decimals(self):
        assert token("USDC", "USD Coin", decimals=6).state['decimals'] == 6

    def test_rounds_down_to_native_units(self):
        unit = token("USDC", "USD Coin", decimals=6)
        assert unit.round(Decimal("10.9")) == Decimal("10")

    @pytest.mark.parametrize("decimals", [-1, 1.5, True, "6"])
    def test_invalid_decimals_rejected(self, decimals):
        with pytest.raises(ValueError):
            token("BAD", "Bad", decimals=decimals)

    def test_token_decimals_reads_state(self):
        view = FakeView(states={'USDC': {'decimals': 6}})
        assert token_decimals(view, 'USDC') == 6

    def test_token_decimals_rejects_non_token(self):
        view = FakeView(states={'CALL-WETH-0001': {'kind': 'call'}})
        with pytest.raises(ValueError, match="not a token"):
            token_decimals(view, 'CALL-WETH-0001')


class TestTransactions:
    """Tests for intent ids and transaction building."""

    def test_fake_view_satisfies_protocol(self):
        assert isinstance(FakeView(), LedgerView)

    def test_same_content_same_intent_id(self):
        view = FakeView()
        m = Move(Decimal("5"), "USDC", "alice", "bob", "tx_1")
        assert build_transaction(view, [m]).intent_id == build_transaction(view, [m]).intent_id

    def test_spender_changes_intent_id(self):
        view = FakeView()
        direct = Move(Decimal("5"), "USDC", "alice", "bob", "tx_1")
        delegated = Move(Decimal("5"), "USDC", "alice", "bob", "tx_1", spender="carol")
        assert build_transaction(view, [direct]).intent_id != build_transaction(view, [delegated]).intent_id

    def test_state_version_changes_intent_id(self):
        view = FakeView()
        a = UnitStateChange("OPT", {'version': 0}, {'version': 1})
        b = UnitStateChange("OPT", {'version': 1}, {'version': 2})
        assert build_transaction(view, [], [a]).intent_id != build_transaction(view, [], [b]).intent_id

    def test_build_transaction_copies_state(self):
        view = FakeView()
        old = {'holder': None}
        new = {'holder': 'bob'}
        pending = build_transaction(view, [], [UnitStateChange("OPT", old, new)])
        new['holder'] = 'mallory'
        assert pending.state_changes[0].new_state == {'holder': 'bob'}

    def test_timestamp_from_view(self):
        view = FakeView(time=datetime(2025, 2, 3))
        assert build_transaction(view, []).timestamp == datetime(2025, 2, 3)

    def test_combine_merges_moves_and_changes(self):
        view = FakeView()
        p1 = build_transaction(view, [Move(Decimal("1"), "USDC", "a", "b", "x")])
        p2 = build_transaction(view, [Move(Decimal("2"), "WETH", "b", "a", "y")],
                               [UnitStateChange("OPT", {'v': 0}, {'v': 1})])
        origin = TransactionOrigin(OriginType.CONTRACT, "a", "OFFER-0001", "ACCEPT")
        combined = combine_transactions(view, [p1, p2], origin)
        assert len(combined.moves) == 2
        assert [sc.unit for sc in combined.state_changes] == ["OPT"]
        assert combined.origin == origin

    def test_combine_rejects_double_change_of_one_unit(self):
        view = FakeView()
        change = UnitStateChange("OPT", {'v': 0}, {'v': 1})
        p1 = build_transaction(view, [], [change])
        p2 = build_transaction(view, [], [change])
        origin = TransactionOrigin(OriginType.CONTRACT, "a")
        with pytest.raises(ValueError, match="changed twice"):
            combine_transactions(view, [p1, p2], origin)

    def test_changed_fields(self):
        sc = UnitStateChange("OPT", {'holder': None, 'premium': 5}, {'holder': 'bob', 'premium': 5})
        assert sc.changed_fields() == {'holder': (None, 'bob')}


class TestRecordTransferRule:

    def test_always_rejects(self):
        move = Move(Decimal("1"), "CALL-WETH-0001", "alice", "bob", "tx")
        with pytest.raises(TransferRuleViolation, match="contract record"):
            record_transfer_rule(FakeView(), move)


class TestErrorHierarchy:
    """Every error is a LedgerError, grouped by kind of failure."""

    @pytest.mark.parametrize("exc", [NotWriter, NotHolder, NotSeller, NotAdmin])
    def test_authorization_errors(self, exc):
        assert issubclass(exc, AuthorizationError)
        assert issubclass(exc, ContractError)
        assert issubclass(exc, LedgerError)

    @pytest.mark.parametrize("exc", [
        AlreadyInitialized, NotInited, AlreadyBought, AlreadySold, AlreadyExecuted,
        NoHolder, OfferCancelled, OracleNotSet, StaleState,
    ])
    def test_state_errors(self, exc):
        assert issubclass(exc, StateError)
        assert issubclass(exc, ContractError)

    @pytest.mark.parametrize("exc", [Expired, NotExpiredYet])
    def test_timing_errors(self, exc):
        assert issubclass(exc, TimingError)
        assert issubclass(exc, ContractError)

    @pytest.mark.parametrize("exc", [InsufficientFunds, InsufficientAllowance, BalanceConstraintViolation])
    def test_transfer_errors(self, exc):
        assert issubclass(exc, TransferFailed)
        assert issubclass(exc, TransferError)
        assert not issubclass(exc, ContractError)

    def test_system_wallet_name(self):
        assert SYSTEM_WALLET == "system"
