"""
admin.py - Owner role and pause switch of the wrapped token

The wrapped unit's state carries 'owner', 'paused' and 'display_name'.
Each compute_* function checks the caller against the owner and returns a
PendingTransaction holding a single unit state change.
"""

from __future__ import annotations

from .core import (
    LedgerView, PendingTransaction, UnitStateChange,
    TransactionOrigin, OriginType,
    NotOwner, Paused, NotPaused, EmptyName,
    build_transaction,
)


def owner_of(view: LedgerView, unit_symbol: str) -> str:
    return view.get_unit_state(unit_symbol).get('owner', '')


def is_paused(view: LedgerView, unit_symbol: str) -> bool:
    return bool(view.get_unit_state(unit_symbol).get('paused', False))


def require_owner(view: LedgerView, unit_symbol: str, caller: str) -> None:
    if caller != owner_of(view, unit_symbol):
        raise NotOwner(f"{caller} is not the owner of {unit_symbol}")


def require_not_paused(view: LedgerView, unit_symbol: str) -> None:
    if is_paused(view, unit_symbol):
        raise Paused(f"{unit_symbol} is paused")


def _state_update(view: LedgerView, unit_symbol: str, caller: str, event_type: str,
                  reference: str, **updates) -> PendingTransaction:
    old_state = view.get_unit_state(unit_symbol)
    new_state = {**old_state, **updates}
    return build_transaction(
        view,
        [],
        [UnitStateChange(unit=unit_symbol, old_state=old_state, new_state=new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, unit_symbol, event_type, reference),
    )


def compute_pause(view: LedgerView, unit_symbol: str, caller: str, reference: str) -> PendingTransaction:
    """
    Raises:
        NotOwner: If caller is not the owner
        Paused: If already paused
    """
    require_owner(view, unit_symbol, caller)
    require_not_paused(view, unit_symbol)
    return _state_update(view, unit_symbol, caller, "PAUSE", reference, paused=True)


def compute_unpause(view: LedgerView, unit_symbol: str, caller: str, reference: str) -> PendingTransaction:
    """
    Raises:
        NotOwner: If caller is not the owner
        NotPaused: If not paused
    """
    require_owner(view, unit_symbol, caller)
    if not is_paused(view, unit_symbol):
        raise NotPaused(f"{unit_symbol} is not paused")
    return _state_update(view, unit_symbol, caller, "UNPAUSE", reference, paused=False)


def compute_update_token_name(
    view: LedgerView,
    unit_symbol: str,
    caller: str,
    new_name: str,
    reference: str,
) -> PendingTransaction:
    """
    Change the display name. Allowed while paused; accounting is unaffected.

    Raises:
        NotOwner: If caller is not the owner
        EmptyName: If new_name is empty or whitespace
    """
    require_owner(view, unit_symbol, caller)
    if not new_name or not new_name.strip():
        raise EmptyName("token name cannot be empty")
    return _state_update(view, unit_symbol, caller, "RENAME", reference, display_name=new_name)


def compute_transfer_ownership(
    view: LedgerView,
    unit_symbol: str,
    caller: str,
    new_owner: str,
    reference: str,
) -> PendingTransaction:
    """
    Hand the owner role to new_owner.

    Raises:
        NotOwner: If caller is not the owner
        ValueError: If new_owner is empty
    """
    require_owner(view, unit_symbol, caller)
    if not new_owner or not new_owner.strip():
        raise ValueError("new owner cannot be empty")
    return _state_update(view, unit_symbol, caller, "TRANSFER_OWNERSHIP", reference, owner=new_owner)
