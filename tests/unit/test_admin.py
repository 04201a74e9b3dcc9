"""
test_admin.py - Unit tests for the owner role and pause switch

Tests:
- Guards: owner_of, is_paused, require_owner, require_not_paused
- compute_pause / compute_unpause
- compute_update_token_name
- compute_transfer_ownership
"""

import pytest
from savetoken import (
    compute_pause, compute_unpause, compute_update_token_name, compute_transfer_ownership,
    NotOwner, Paused, NotPaused, EmptyName,
)
from savetoken.admin import owner_of, is_paused, require_owner, require_not_paused
from tests.fake_view import FakeView


def _view(paused=False, owner="owner"):
    return FakeView(balances={}, states={
        'saveDAI': {'owner': owner, 'paused': paused, 'display_name': "SaveDAI"},
    })


def _new_state(pending):
    (change,) = pending.state_changes
    assert change.unit == "saveDAI"
    assert pending.moves == ()
    return change.new_state


class TestGuards:

    def test_owner_and_pause_flags(self):
        view = _view(paused=True)
        assert owner_of(view, "saveDAI") == "owner"
        assert is_paused(view, "saveDAI")
        assert not is_paused(_view(), "saveDAI")

    def test_missing_state_has_no_owner(self):
        view = FakeView(balances={})
        assert owner_of(view, "saveDAI") == ""
        with pytest.raises(NotOwner):
            require_owner(view, "saveDAI", "anyone")

    def test_require_not_paused(self):
        require_not_paused(_view(), "saveDAI")
        with pytest.raises(Paused):
            require_not_paused(_view(paused=True), "saveDAI")


class TestPause:

    def test_pause(self):
        pending = compute_pause(_view(), "saveDAI", "owner", "pause:000001")
        assert _new_state(pending)['paused'] is True
        assert pending.origin.event_type == "PAUSE"
        assert pending.origin.source_id == "owner"

    def test_pause_by_stranger(self):
        with pytest.raises(NotOwner):
            compute_pause(_view(), "saveDAI", "mallory", "pause:000001")

    def test_pause_twice(self):
        with pytest.raises(Paused):
            compute_pause(_view(paused=True), "saveDAI", "owner", "pause:000002")

    def test_unpause(self):
        pending = compute_unpause(_view(paused=True), "saveDAI", "owner", "unpause:000001")
        assert _new_state(pending)['paused'] is False

    def test_unpause_when_running(self):
        with pytest.raises(NotPaused):
            compute_unpause(_view(), "saveDAI", "owner", "unpause:000001")

    def test_references_keep_repeated_pauses_distinct(self):
        first = compute_pause(_view(), "saveDAI", "owner", "pause:000001")
        second = compute_pause(_view(), "saveDAI", "owner", "pause:000002")
        assert first.intent_id != second.intent_id


class TestRename:

    def test_rename_keeps_other_fields(self):
        pending = compute_update_token_name(_view(), "saveDAI", "owner", "SaveDAI v2", "rename:000001")
        state = _new_state(pending)
        assert state['display_name'] == "SaveDAI v2"
        assert state['owner'] == "owner"
        assert state['paused'] is False

    def test_rename_while_paused(self):
        pending = compute_update_token_name(_view(paused=True), "saveDAI", "owner", "x", "rename:000001")
        assert _new_state(pending)['display_name'] == "x"

    @pytest.mark.parametrize("name", ["", "   "])
    def test_empty_name(self, name):
        with pytest.raises(EmptyName):
            compute_update_token_name(_view(), "saveDAI", "owner", name, "rename:000001")

    def test_rename_by_stranger(self):
        with pytest.raises(NotOwner):
            compute_update_token_name(_view(), "saveDAI", "mallory", "x", "rename:000001")


class TestOwnership:

    def test_transfer_ownership(self):
        pending = compute_transfer_ownership(_view(), "saveDAI", "owner", "treasury", "owner:000001")
        assert _new_state(pending)['owner'] == "treasury"

    def test_empty_new_owner(self):
        with pytest.raises(ValueError):
            compute_transfer_ownership(_view(), "saveDAI", "owner", " ", "owner:000001")

    def test_only_owner(self):
        with pytest.raises(NotOwner):
            compute_transfer_ownership(_view(), "saveDAI", "mallory", "mallory", "owner:000001")

    def test_old_owner_loses_role_on_ledger(self, dep):
        ledger = dep.ledger
        ledger.commit(compute_transfer_ownership(ledger, "saveDAI", "owner", "treasury", "owner:000001"))
        assert owner_of(ledger, "saveDAI") == "treasury"
        with pytest.raises(NotOwner):
            compute_pause(ledger, "saveDAI", "owner", "pause:000001")
        ledger.commit(compute_pause(ledger, "saveDAI", "treasury", "pause:000001"))
        assert is_paused(ledger, "saveDAI")
