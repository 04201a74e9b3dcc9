"""
Core types and pure functions for the insured-savings ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the wrapped-position error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: custody enforcement for vault wallets
6. Unit factories and quantisation helpers for token units

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Token arithmetic must be deterministic. The global context is configured
# once at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
#   - prec=50: enough for 18-decimal tokens multiplied by 18-decimal rates
#   - rounding=ROUND_HALF_EVEN for intermediate results; token amounts are
#     quantised explicitly with quantize_down / quantize_up
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_STABLE = "STABLE"
UNIT_TYPE_INTEREST_BEARING = "INTEREST_BEARING"
UNIT_TYPE_OPTION_TOKEN = "OPTION_TOKEN"
UNIT_TYPE_NATIVE = "NATIVE"
UNIT_TYPE_WRAPPED_POSITION = "WRAPPED_POSITION"
UNIT_TYPE_REWARD = "REWARD"

TOKEN_UNIT_TYPES = frozenset({
    UNIT_TYPE_STABLE,
    UNIT_TYPE_INTEREST_BEARING,
    UNIT_TYPE_OPTION_TOKEN,
    UNIT_TYPE_NATIVE,
    UNIT_TYPE_WRAPPED_POSITION,
    UNIT_TYPE_REWARD,
})

# Quantities with absolute value below this threshold are treated as zero.
# Finer than the smallest 18-decimal token step.
QUANTITY_EPSILON = Decimal("1e-24")

# Token balances truncate: a holder never receives a fraction of the
# smallest unit that was not paid for.
DECIMAL_ROUNDING = {unit_type: ROUND_DOWN for unit_type in TOKEN_UNIT_TYPES}

ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (exchange rates, allowances, expiry terms, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Venues, the vault registry and the pure compute_* functions query state
    through this protocol. Functions accepting a LedgerView parameter
    declare their read-only intent. For testing, FakeView provides an
    immutable implementation.
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

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a deep copy of the unit's internal state."""
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
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent).
    REJECTED: Transaction failed validation (balance limits, transfer rules,
              unregistered wallets or units).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Holder-initiated wrapped-token operation
    CONTRACT = "contract"                 # Venue or protocol execution
    SYSTEM = "system"                     # Issuance, deployment, seeding
    EXTERNAL = "external"                 # State mirrored from a live network


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class TransactionRejected(LedgerError):
    """Raised by Ledger.commit() when a pending transaction fails validation."""
    pass


class Paused(LedgerError):
    """State-changing call while the wrapped token is paused."""
    pass


class NotPaused(LedgerError):
    """unpause() called while the wrapped token is active."""
    pass


class InsufficientBalance(LedgerError):
    """A holder lacks the balance an operation debits."""
    pass


class InsufficientVaultBalance(LedgerError):
    """A vault lacks the interest-bearing amount an operation debits."""
    pass


class InsufficientAllowance(LedgerError):
    """transfer_from spender allowance is below the requested amount."""
    pass


class InsufficientApproval(LedgerError):
    """The caller has not approved enough stable asset for a mint."""
    pass


class NoVaultForHolder(LedgerError):
    """Operation on a holder that never had a vault provisioned."""
    pass


class OptionExpired(LedgerError):
    """Unwind path that requires a live option called after expiry."""
    pass


class OutsideExerciseWindow(LedgerError):
    """Exercise attempted outside the protocol's exercise window."""
    pass


class NotOwner(LedgerError):
    """Administrative call from a caller that is not the owner."""
    pass


class EmptyName(LedgerError):
    """Token rename with an empty display name."""
    pass


class SlippageExceeded(LedgerError):
    """A swap would cost more (or return less) than the caller's limit."""
    pass


class QuoteStale(LedgerError):
    """Venue prices moved beyond the accepted drift since a quote was taken."""
    pass


class ReentrantCall(LedgerError):
    """A holder's state was re-entered while an operation on it was in flight."""
    pass


class InsufficientLiquidity(LedgerError):
    """A pool cannot deliver the requested output from its reserves."""
    pass


class ExerciseShortfall(LedgerError):
    """The listed counterparty vaults cannot absorb the exercised amount."""
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
        source_id: Identifier of the specific source (holder, venue name, ...)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific event within the source (e.g., "MINT", "REDEEM")
        reference: Operation id; separates otherwise identical intents
            (pause, unpause, pause again)
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None
    reference: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        if self.reference:
            parts.append(f"ref={self.reference}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change for the transaction log.

    Stores complete before/after snapshots so that clone_at() can restore
    old_state and replay() can re-apply new_state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Fields that differ between old and new state, as (old, new) pairs."""
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
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The symbol of the unit being transferred (e.g., "DAI").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
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
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1"; scientific notation
    is avoided.
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
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Same inputs always produce the same intent_id. Used for idempotency:
    callers that need two identical-looking operations to both apply must
    give their moves distinct contract ids (see Ledger.new_contract_id).
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")
    if origin.reference:
        content_parts.append(f"ref:{origin.reference}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

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

    Lifecycle:
    1. A venue, the registry or SaveToken builds moves + state changes
    2. intent_id is auto-computed from content (deterministic hash)
    3. Ledger.execute() validates and executes, creating a Transaction record
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(self.moves, self.state_changes, self.origin)
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves and no state deltas."""
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to CONTRACT origin)

    Returns:
        A PendingTransaction ready for execution
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
    )


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
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
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
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
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


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of an asset in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "DAI", "cDAI").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (STABLE, INTEREST_BEARING, ...).
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
        """The unit's state as a new dict (shallow; use get_unit_state for a deep copy)."""
        return _thaw_state(self._frozen_state)

    @property
    def quantum(self) -> Optional[Decimal]:
        """Smallest representable step, or None when the unit is unrounded."""
        if self.decimal_places is None:
            return None
        return Decimal(10) ** -self.decimal_places

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(self.quantum, rounding=rounding_mode)


def quantize_down(unit: Unit, value: Decimal) -> Decimal:
    """Truncate to the unit's precision (amounts a venue pays out)."""
    if unit.decimal_places is None:
        return value
    return value.quantize(unit.quantum, rounding=ROUND_DOWN)


def quantize_up(unit: Unit, value: Decimal) -> Decimal:
    """Round up to the unit's precision (amounts a venue charges)."""
    if unit.decimal_places is None:
        return value
    return value.quantize(unit.quantum, rounding=ROUND_UP)


def to_decimal(value: Any, label: str = "amount") -> Decimal:
    """
    Convert numeric input to a finite, non-negative Decimal.

    Floats go through str() so that 0.1 stays 0.1.
    """
    if not isinstance(value, Decimal):
        if isinstance(value, bool):
            raise ValueError(f"{label} must be numeric, got {value!r}")
        value = Decimal(str(value))
    if not value.is_finite():
        raise ValueError(f"{label} must be finite, got {value}")
    if value < 0:
        raise ValueError(f"{label} must be non-negative, got {value}")
    return value


# ============================================================================
# TRANSFER RULES
# ============================================================================

def custody_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Restrict who may move a unit, based on contract-id prefixes in its state.

    'custody_prefix': the wallet-id prefix of vault wallets. A move whose
        source is a vault wallet must carry a contract id issued under the
        same prefix, which only VaultRegistry produces.
    'controller_prefix': every move of the unit must carry a contract id
        under this prefix (the wrapped token only moves through SaveToken).

    Raises:
        TransferRuleViolation: If the move bypasses the owning component.
    """
    state = view.get_unit_state(move.unit_symbol)
    controller = state.get('controller_prefix')
    if controller and not move.contract_id.startswith(controller):
        raise TransferRuleViolation(
            f"{move.unit_symbol} only moves through {controller}*; got {move.contract_id}"
        )
    prefix = state.get('custody_prefix')
    if not prefix:
        return
    if move.source.startswith(prefix) and not move.contract_id.startswith(prefix):
        raise TransferRuleViolation(
            f"{move.unit_symbol}: {move.source} is a custodial vault; "
            f"{move.contract_id} is not a registry operation"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(
    symbol: str,
    name: str,
    unit_type: str,
    decimals: int,
    state: Optional[UnitState] = None,
    transfer_rule: Optional[TransferRule] = None,
) -> Unit:
    """
    Create a fungible token unit.

    Args:
        symbol: Ticker (e.g., "DAI", "cDAI", "ocDAI", "ETH", "saveDAI").
        name: Full name (e.g., "Dai Stablecoin").
        unit_type: One of the UNIT_TYPE_* token constants.
        decimals: Number of decimal places the token supports.
        state: Optional initial unit state.
        transfer_rule: Optional move validation.

    Returns:
        A Unit that can never be overdrawn (min_balance 0) and truncates to
        its decimals.
    """
    if unit_type not in TOKEN_UNIT_TYPES:
        raise ValueError(f"unknown token unit_type {unit_type!r}")
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        decimal_places=decimals,
        transfer_rule=transfer_rule,
        _frozen_state=_freeze_state(state or {}),
    )
