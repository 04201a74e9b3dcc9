"""
token.py - Pure Functions for Fungible Token Operations

ERC20-style issuance, transfers and allowances over ledger units.
Allowances live in the unit's state under 'allowances' as
{owner: {spender: amount}}. All functions take a LedgerView (read-only) and
return a PendingTransaction; the caller commits it.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional

from .core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    TransactionOrigin, OriginType,
    SYSTEM_WALLET, ZERO,
    InsufficientBalance, InsufficientAllowance, LedgerError,
    build_transaction, to_decimal,
)


def allowance(view: LedgerView, unit_symbol: str, owner: str, spender: str) -> Decimal:
    """Amount spender may still move out of owner's balance (0 if never approved)."""
    allowances = view.get_unit_state(unit_symbol).get('allowances', {})
    return allowances.get(owner, {}).get(spender, ZERO)


def _with_allowance(state: Dict, owner: str, spender: str, amount: Decimal) -> Dict:
    new_state = dict(state)
    allowances = {o: dict(s) for o, s in state.get('allowances', {}).items()}
    per_owner = allowances.setdefault(owner, {})
    if amount > 0:
        per_owner[spender] = amount
    else:
        per_owner.pop(spender, None)
        if not per_owner:
            allowances.pop(owner)
    new_state['allowances'] = allowances
    return new_state


def compute_approve(
    view: LedgerView,
    unit_symbol: str,
    owner: str,
    spender: str,
    amount: Decimal,
    reference: str,
) -> PendingTransaction:
    """
    Set spender's allowance over owner's balance, replacing any previous value.

    Args:
        view: Read-only ledger view
        unit_symbol: Token whose allowance is set
        owner: Holder granting the allowance
        spender: Wallet allowed to call transfer_from on owner
        amount: New allowance (0 clears it)
        reference: Operation id stamped on the origin

    Returns:
        PendingTransaction with a single unit state change.
    """
    amount = to_decimal(amount)
    old_state = view.get_unit_state(unit_symbol)
    new_state = _with_allowance(old_state, owner, spender, amount)
    return build_transaction(
        view,
        [],
        [UnitStateChange(unit=unit_symbol, old_state=old_state, new_state=new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, owner, unit_symbol, "APPROVE", reference),
    )


def transfer_moves(
    view: LedgerView,
    unit_symbol: str,
    source: str,
    dest: str,
    amount: Decimal,
    contract_id: str,
) -> List[Move]:
    """
    Moves for a plain transfer, with the balance checked up front.

    Returns an empty list for a zero amount.

    Raises:
        InsufficientBalance: If source holds less than amount
    """
    amount = to_decimal(amount)
    if amount == 0:
        return []
    if source != SYSTEM_WALLET:
        held = view.get_balance(source, unit_symbol)
        if held < amount:
            raise InsufficientBalance(
                f"{source} holds {held} {unit_symbol}, needs {amount}"
            )
    return [Move(amount, unit_symbol, source, dest, contract_id)]


def compute_transfer(
    view: LedgerView,
    unit_symbol: str,
    source: str,
    dest: str,
    amount: Decimal,
    contract_id: str,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """Transfer amount of a token from source to dest."""
    moves = transfer_moves(view, unit_symbol, source, dest, amount, contract_id)
    if origin is None:
        origin = TransactionOrigin(OriginType.USER_ACTION, source, unit_symbol, "TRANSFER", contract_id)
    return build_transaction(view, moves, origin=origin)


def spend_allowance_change(
    view: LedgerView,
    unit_symbol: str,
    owner: str,
    spender: str,
    amount: Decimal,
    error: type = InsufficientAllowance,
) -> UnitStateChange:
    """
    State change that consumes amount of spender's allowance over owner.

    Args:
        error: Exception raised when the allowance is short; the stable
            asset pull during mint reports InsufficientApproval instead.

    Raises:
        error: If the allowance is below amount
    """
    if not issubclass(error, LedgerError):
        raise TypeError(f"error must be a LedgerError subclass, got {error!r}")
    amount = to_decimal(amount)
    granted = allowance(view, unit_symbol, owner, spender)
    if granted < amount:
        raise error(
            f"{spender} may move {granted} {unit_symbol} from {owner}, needs {amount}"
        )
    old_state = view.get_unit_state(unit_symbol)
    new_state = _with_allowance(old_state, owner, spender, granted - amount)
    return UnitStateChange(unit=unit_symbol, old_state=old_state, new_state=new_state)


def compute_transfer_from(
    view: LedgerView,
    unit_symbol: str,
    spender: str,
    owner: str,
    dest: str,
    amount: Decimal,
    contract_id: str,
    error: type = InsufficientAllowance,
) -> PendingTransaction:
    """
    Move amount from owner to dest on spender's allowance.

    The allowance is checked before the balance, matching ERC20 tokens that
    revert on allowance first.

    Raises:
        InsufficientAllowance (or error): If the allowance is short
        InsufficientBalance: If owner holds less than amount
    """
    amount = to_decimal(amount)
    change = spend_allowance_change(view, unit_symbol, owner, spender, amount, error)
    moves = transfer_moves(view, unit_symbol, owner, dest, amount, contract_id)
    return build_transaction(
        view,
        moves,
        [change],
        origin=TransactionOrigin(OriginType.USER_ACTION, spender, unit_symbol, "TRANSFER_FROM", contract_id),
    )


def compute_issue(
    view: LedgerView,
    unit_symbol: str,
    dest: str,
    amount: Decimal,
    contract_id: str,
) -> PendingTransaction:
    """Issue new units from SYSTEM_WALLET into dest."""
    moves = transfer_moves(view, unit_symbol, SYSTEM_WALLET, dest, amount, contract_id)
    return build_transaction(
        view,
        moves,
        origin=TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, unit_symbol, "ISSUE", contract_id),
    )
