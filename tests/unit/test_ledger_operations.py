"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Transaction execution, commit and idempotency
- Contract ids and issued supply
- Savepoints
- Time travel: clone_at and replay
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from savetoken import (
    Ledger, Move, ExecuteResult, UnitStateChange, build_transaction,
    compute_issue, compute_transfer, token,
    LedgerError, TransactionRejected, WalletNotRegistered, UnitNotRegistered,
    SYSTEM_WALLET, UNIT_TYPE_WRAPPED_POSITION,
)
from tests.conftest import START, token_ledger, give


class TestLedgerCreation:
    """Tests for Ledger initialization."""

    def test_create_ledger(self):
        ledger = Ledger("test", START, verbose=False)
        assert ledger.name == "test"
        assert ledger.current_time == START
        assert SYSTEM_WALLET in ledger.list_wallets()

    def test_register_wallet_twice_rejected(self, ledger):
        ledger.register_wallet("alice")
        with pytest.raises(ValueError):
            ledger.register_wallet("alice")

    def test_ensure_wallet_is_idempotent(self, ledger):
        assert ledger.ensure_wallet("alice") == "alice"
        assert ledger.ensure_wallet("alice") == "alice"

    def test_register_unit_twice_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_unit(token("DAI", "again", "STABLE", 18))

    def test_unknown_wallet_and_unit(self, ledger):
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("nobody", "DAI")
        ledger.register_wallet("alice")
        with pytest.raises(UnitNotRegistered):
            ledger.get_balance("alice", "XYZ")

    def test_set_balance_disabled_in_production(self, ledger):
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "DAI", Decimal("1"))

    def test_time_only_moves_forward(self, ledger):
        with pytest.raises(ValueError):
            ledger.advance_time(START - timedelta(seconds=1))


class TestExecution:
    """Tests for execute / commit."""

    def test_issue_and_transfer(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        ledger.register_wallet("bob")
        ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("40"), "pay:1"))
        assert ledger.get_balance("alice", "DAI") == Decimal("60")
        assert ledger.get_balance("bob", "DAI") == Decimal("40")
        assert ledger.issued_supply("DAI") == Decimal("100")
        assert ledger.total_supply("DAI") == Decimal("0")

    def test_overdraft_rejected_with_reason(self, ledger):
        give(ledger, "alice", "DAI", Decimal("10"))
        ledger.register_wallet("bob")
        tx = build_transaction(ledger, [Move(Decimal("11"), "DAI", "alice", "bob", "pay:1")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert "alice DAI" in ledger.last_rejection
        with pytest.raises(TransactionRejected, match="min 0"):
            ledger.commit(tx)
        assert ledger.get_balance("alice", "DAI") == Decimal("10")

    def test_same_intent_applies_once(self, ledger):
        give(ledger, "alice", "DAI", Decimal("10"))
        ledger.register_wallet("bob")
        tx = build_transaction(ledger, [Move(Decimal("1"), "DAI", "alice", "bob", "pay:1")])
        assert ledger.commit(tx) == ExecuteResult.APPLIED
        assert ledger.commit(tx) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "DAI") == Decimal("1")

    def test_future_timestamp_rejected(self, ledger):
        give(ledger, "alice", "DAI", Decimal("10"))
        ledger.register_wallet("bob")
        later = ledger.clone()
        later.advance_time(START + timedelta(days=1))
        tx = build_transaction(later, [Move(Decimal("1"), "DAI", "alice", "bob", "pay:1")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "future timestamp"

    def test_state_change_applied(self, ledger):
        ledger.register_unit(token("saveDAI", "SaveDAI", UNIT_TYPE_WRAPPED_POSITION, 8, state={'paused': False}))
        old = ledger.get_unit_state("saveDAI")
        ledger.commit(build_transaction(ledger, [], [UnitStateChange("saveDAI", old, {**old, 'paused': True})]))
        assert ledger.get_unit_state("saveDAI")['paused'] is True

    def test_new_contract_id(self, ledger):
        assert ledger.new_contract_id("pay") == "pay:000001"
        assert ledger.new_contract_id("vault:deposit") == "vault:deposit:000002"
        with pytest.raises(ValueError):
            ledger.new_contract_id("")

    def test_verify_double_entry(self, ledger):
        give(ledger, "alice", "DAI", Decimal("10"))
        result = ledger.verify_double_entry({"DAI": Decimal("0"), "ETH": Decimal("0")})
        assert result['valid']
        assert result['supplies']["DAI"] == Decimal("0")


class TestSavepoint:
    """Tests for Ledger.savepoint()."""

    def test_rolls_back_every_commit_in_block(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        log_length = len(ledger.transaction_log)

        with pytest.raises(TransactionRejected):
            with ledger.savepoint():
                ledger.register_wallet("bob")
                ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("50"), "pay:1"))
                ledger.commit(build_transaction(
                    ledger, [Move(Decimal("60"), "DAI", "alice", "bob", "pay:2")]
                ))

        assert ledger.get_balance("alice", "DAI") == Decimal("100")
        assert not ledger.is_registered("bob")
        assert len(ledger.transaction_log) == log_length
        assert ledger.get_positions("DAI") == {"alice": Decimal("100")}
        # The rejection reason survives the rollback
        assert "alice DAI" in ledger.last_rejection

    def test_rolled_back_intent_can_be_applied_later(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        ledger.register_wallet("bob")
        tx = compute_transfer(ledger, "DAI", "alice", "bob", Decimal("50"), "pay:1")
        with pytest.raises(RuntimeError):
            with ledger.savepoint():
                ledger.commit(tx)
                raise RuntimeError("venue failed")
        assert ledger.commit(tx) == ExecuteResult.APPLIED

    def test_success_keeps_changes(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        with ledger.savepoint():
            ledger.register_wallet("bob")
            ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("50"), "pay:1"))
        assert ledger.get_balance("bob", "DAI") == Decimal("50")

    def test_rollback_keeps_earlier_history(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        log = ledger.transaction_log
        earlier = list(log)
        old_state = ledger.get_unit_state("DAI")
        counter = ledger.new_contract_id("pay")

        with pytest.raises(RuntimeError):
            with ledger.savepoint():
                ledger.commit(build_transaction(ledger, [], [UnitStateChange(
                    unit="DAI", old_state=old_state, new_state={**old_state, 'note': "x"},
                )]))
                ledger.new_contract_id("pay")
                ledger.advance_time(ledger.current_time + timedelta(days=1))
                raise RuntimeError("venue failed")

        assert ledger.transaction_log is log
        assert ledger.transaction_log == earlier
        assert ledger.get_unit_state("DAI") == old_state
        assert ledger.current_time == START
        assert ledger.new_contract_id("pay") == "pay:000003"
        assert counter == "pay:000002"

    def test_nested_savepoint_rolls_back_inner_only(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        ledger.register_wallet("bob")
        with ledger.savepoint():
            ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("30"), "pay:1"))
            with pytest.raises(RuntimeError):
                with ledger.savepoint():
                    ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("20"), "pay:2"))
                    raise RuntimeError("inner")
        assert ledger.get_balance("bob", "DAI") == Decimal("30")
        assert ledger.verify_double_entry()['valid']


class TestTimeTravel:
    """clone_at() and replay()."""

    def test_clone_at_unwinds_later_transactions(self, ledger):
        give(ledger, "alice", "DAI", Decimal("100"))
        ledger.register_wallet("bob")
        ledger.advance_time(START + timedelta(days=1))
        ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("30"), "pay:1"))

        past = ledger.clone_at(START)
        assert past.get_balance("alice", "DAI") == Decimal("100")
        assert past.get_balance("bob", "DAI") == Decimal("0")
        assert ledger.get_balance("bob", "DAI") == Decimal("30")

    def test_replay_reproduces_balances_and_state(self):
        ledger = token_ledger()
        ledger.register_unit(token("saveDAI", "SaveDAI", UNIT_TYPE_WRAPPED_POSITION, 8, state={'paused': False}))
        give(ledger, "alice", "DAI", Decimal("100"))
        ledger.register_wallet("bob")
        ledger.commit(compute_transfer(ledger, "DAI", "alice", "bob", Decimal("30"), "pay:1"))
        old = ledger.get_unit_state("saveDAI")
        ledger.commit(build_transaction(ledger, [], [UnitStateChange("saveDAI", old, {**old, 'paused': True})]))

        replayed = ledger.replay()
        assert replayed.get_balance("alice", "DAI") == Decimal("70")
        assert replayed.get_balance("bob", "DAI") == Decimal("30")
        assert replayed.get_unit_state("saveDAI") == {'paused': True}
        assert replayed.new_contract_id("x") == ledger.new_contract_id("x")

    def test_issue_respects_unit_precision(self, ledger):
        give(ledger, "alice", "ocDAI", Decimal("1.5"))
        ledger.commit(compute_issue(ledger, "ocDAI", "alice", Decimal("0.00000001"), "issue:dust"))
        assert ledger.get_balance("alice", "ocDAI") == Decimal("1.50000001")
