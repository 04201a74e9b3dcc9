"""
options.py - Option protocol for the insurance leg

The wrapped token treats the option issuer as a collaborator that reports
its expiry and exercise window and settles exercises. OTokenProtocol is a
deterministic writer-vault protocol on the ledger:

- a writer opens a vault and deposits native collateral
- the writer issues option tokens, fully collateralised at the strike
- an exerciser hands in option tokens plus the same amount of the
  underlying asset (delivered to the writer vault) and receives
  strike x amount of native collateral

Option tokens are issued from and burned back to SYSTEM_WALLET.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .core import (
    Move, TransactionOrigin, OriginType, UnitStateChange,
    SYSTEM_WALLET, ZERO,
    InsufficientBalance, ExerciseShortfall,
    build_transaction, quantize_down, to_decimal,
)
from .expiry import ExpiryState, compute_expiry_state
from .ledger import Ledger

logger = logging.getLogger(__name__)

WRITER_VAULT_PREFIX = "writer:"


@runtime_checkable
class OptionProtocol(Protocol):
    """Issuer of the option leg, as seen by the wrapped token."""
    option_symbol: str
    underlying_symbol: str
    settlement_symbol: str

    def expiry_timestamp(self) -> datetime:
        ...

    def exercise_window(self) -> Tuple[datetime, datetime]:
        """[start, end) of the exercise window."""
        ...

    def exercise(self, exerciser: str, amount: Decimal, vaults_to_exercise_from: Sequence[str]) -> Decimal:
        """Settle amount option units held by exerciser; returns settlement paid."""
        ...


class OTokenProtocol:
    """
    Writer-vault option protocol for one option token.

    Option unit state:
        strike: settlement units paid per option unit exercised
        expiry, window_start, window_end: timestamps (window_start >= expiry)
        underlying: symbol the exerciser delivers
        settlement: symbol the writer vault pays out
        writer_vaults: {writer: vault wallet id}
        writer_issued: {writer: option units outstanding against the vault}
    """

    def __init__(self, ledger: Ledger, option_symbol: str):
        self.ledger = ledger
        self.option_symbol = option_symbol
        state = ledger.get_unit_state(option_symbol)
        for key in ('strike', 'expiry', 'window_start', 'window_end', 'underlying', 'settlement'):
            if key not in state:
                raise ValueError(f"{option_symbol} state is missing {key!r}")
        # Validates the window ordering
        compute_expiry_state(state['expiry'], state['expiry'], state['window_start'], state['window_end'])
        self.underlying_symbol = state['underlying']
        self.settlement_symbol = state['settlement']

    def __repr__(self):
        return f"OTokenProtocol({self.option_symbol}, strike={self.strike()}, expiry={self.expiry_timestamp()})"

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _state(self) -> Dict:
        return self.ledger.get_unit_state(self.option_symbol)

    def strike(self) -> Decimal:
        return self._state()['strike']

    def expiry_timestamp(self) -> datetime:
        return self._state()['expiry']

    def exercise_window(self) -> Tuple[datetime, datetime]:
        state = self._state()
        return state['window_start'], state['window_end']

    def expiry_state(self, now: Optional[datetime] = None) -> ExpiryState:
        start, end = self.exercise_window()
        return compute_expiry_state(now or self.ledger.current_time, self.expiry_timestamp(), start, end)

    def vault_wallet(self, writer: str) -> Optional[str]:
        return self._state().get('writer_vaults', {}).get(writer)

    def vault_collateral(self, writer: str) -> Decimal:
        wallet = self.vault_wallet(writer)
        if wallet is None:
            return ZERO
        return self.ledger.get_balance(wallet, self.settlement_symbol)

    def vault_issued(self, writer: str) -> Decimal:
        return self._state().get('writer_issued', {}).get(writer, ZERO)

    def vault_underlying(self, writer: str) -> Decimal:
        """Underlying delivered into writer's vault by exercises."""
        wallet = self.vault_wallet(writer)
        if wallet is None:
            return ZERO
        return self.ledger.get_balance(wallet, self.underlying_symbol)

    def writers(self) -> List[str]:
        return sorted(self._state().get('writer_vaults', {}))

    # ------------------------------------------------------------------
    # Writer side
    # ------------------------------------------------------------------

    def _require_vault(self, writer: str) -> str:
        wallet = self.vault_wallet(writer)
        if wallet is None:
            raise ValueError(f"{writer} has no {self.option_symbol} writer vault")
        return wallet

    def open_vault(self, writer: str) -> str:
        """Open writer's vault; returns the existing one on repeat calls."""
        existing = self.vault_wallet(writer)
        if existing is not None:
            return existing
        wallet = self.ledger.ensure_wallet(f"{WRITER_VAULT_PREFIX}{self.option_symbol}:{writer}")
        old_state = self._state()
        new_state = dict(old_state)
        new_state['writer_vaults'] = {**old_state.get('writer_vaults', {}), writer: wallet}
        self.ledger.commit(build_transaction(
            self.ledger, [],
            [UnitStateChange(unit=self.option_symbol, old_state=old_state, new_state=new_state)],
            origin=TransactionOrigin(OriginType.CONTRACT, writer, self.option_symbol, "OPEN_VAULT",
                                     self.ledger.new_contract_id("otoken")),
        ))
        logger.info("%s opened writer vault %s", writer, wallet)
        return wallet

    def add_collateral(self, writer: str, amount: Decimal) -> None:
        amount = to_decimal(amount)
        wallet = self._require_vault(writer)
        held = self.ledger.get_balance(writer, self.settlement_symbol)
        if held < amount:
            raise InsufficientBalance(f"{writer} holds {held} {self.settlement_symbol}, needs {amount}")
        if amount == 0:
            return
        contract_id = self.ledger.new_contract_id("otoken")
        self.ledger.commit(build_transaction(
            self.ledger,
            [Move(amount, self.settlement_symbol, writer, wallet, contract_id)],
            origin=TransactionOrigin(OriginType.CONTRACT, writer, self.option_symbol, "ADD_COLLATERAL", contract_id),
        ))

    def issue_otokens(self, writer: str, amount: Decimal, receiver: str) -> None:
        """
        Issue amount option tokens against writer's vault to receiver.

        Raises:
            ValueError: If the vault collateral does not cover the strike
        """
        amount = to_decimal(amount)
        if amount == 0:
            return
        self._require_vault(writer)
        issued = self.vault_issued(writer) + amount
        required = issued * self.strike()
        collateral = self.vault_collateral(writer)
        if collateral < required:
            raise ValueError(
                f"{writer} vault holds {collateral} {self.settlement_symbol}, "
                f"{issued} {self.option_symbol} need {required}"
            )
        old_state = self._state()
        new_state = dict(old_state)
        new_state['writer_issued'] = {**old_state.get('writer_issued', {}), writer: issued}
        contract_id = self.ledger.new_contract_id("otoken")
        self.ledger.commit(build_transaction(
            self.ledger,
            [Move(amount, self.option_symbol, SYSTEM_WALLET, receiver, contract_id)],
            [UnitStateChange(unit=self.option_symbol, old_state=old_state, new_state=new_state)],
            origin=TransactionOrigin(OriginType.CONTRACT, writer, self.option_symbol, "ISSUE", contract_id),
        ))
        logger.info("%s issued %s %s to %s", writer, amount, self.option_symbol, receiver)

    # ------------------------------------------------------------------
    # Exercise
    # ------------------------------------------------------------------

    def exercise(self, exerciser: str, amount: Decimal, vaults_to_exercise_from: Sequence[str]) -> Decimal:
        """
        Exercise amount option units against the listed writer vaults, in order.

        Each vault absorbs up to its outstanding issuance. The exerciser burns
        the option units, delivers the same amount of underlying to the
        vault and receives strike x units of settlement from it.

        Returns:
            Settlement paid to the exerciser

        Raises:
            OutsideExerciseWindow: If exercise is not open
            InsufficientBalance: If exerciser lacks option or underlying units
            ExerciseShortfall: If the listed vaults cannot absorb amount
        """
        amount = to_decimal(amount)
        self.expiry_state().require_exercise_window()
        for symbol in (self.option_symbol, self.underlying_symbol):
            held = self.ledger.get_balance(exerciser, symbol)
            if held < amount:
                raise InsufficientBalance(f"{exerciser} holds {held} {symbol}, needs {amount}")
        if amount == 0:
            return ZERO

        strike = self.strike()
        settlement_unit = self.ledger.get_unit(self.settlement_symbol)
        old_state = self._state()
        issued_by_writer = dict(old_state.get('writer_issued', {}))
        contract_id = self.ledger.new_contract_id("otoken:exercise")
        moves: List[Move] = []
        remaining = amount
        paid = ZERO

        for writer in vaults_to_exercise_from:
            if remaining == 0:
                break
            wallet = self._require_vault(writer)
            take = min(remaining, issued_by_writer.get(writer, ZERO))
            if take <= 0:
                continue
            payout = quantize_down(settlement_unit, take * strike)
            moves.append(Move(take, self.option_symbol, exerciser, SYSTEM_WALLET, contract_id))
            moves.append(Move(take, self.underlying_symbol, exerciser, wallet, contract_id))
            if payout > 0:
                moves.append(Move(payout, self.settlement_symbol, wallet, exerciser, contract_id))
            issued_by_writer[writer] = issued_by_writer.get(writer, ZERO) - take
            remaining -= take
            paid += payout

        if remaining > 0:
            raise ExerciseShortfall(
                f"listed vaults absorb {amount - remaining} of {amount} {self.option_symbol}"
            )

        new_state = dict(old_state)
        new_state['writer_issued'] = issued_by_writer
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            [UnitStateChange(unit=self.option_symbol, old_state=old_state, new_state=new_state)],
            origin=TransactionOrigin(OriginType.CONTRACT, exerciser, self.option_symbol, "EXERCISE", contract_id),
        ))
        logger.info("%s exercised %s %s for %s %s", exerciser, amount, self.option_symbol,
                    paid, self.settlement_symbol)
        return paid
