"""
lending.py - Interest-bearing leg

Provides the lending market the wrapped token deposits its principal into,
and the adapter it talks to.

Classes:
- LendingMarket: Protocol for a cToken-style market
- CompoundMarket: deterministic market whose exchange rate lives in the
  interest-bearing unit's state and grows with a fixed supply rate
- LendingAdapter: mints/redeems on behalf of one custodian wallet and
  reports what actually arrived, never what the market claims

Exchange rates are quoted as stable units per interest-bearing unit.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .core import (
    Move, TransactionOrigin, OriginType, UnitStateChange,
    SYSTEM_WALLET, ZERO,
    InsufficientBalance,
    build_transaction, quantize_down, quantize_up, to_decimal,
)
from .ledger import Ledger

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)


@runtime_checkable
class LendingMarket(Protocol):
    """A cToken-style market: deposit stable, receive interest-bearing units."""
    ib_symbol: str
    underlying_symbol: str

    def exchange_rate(self) -> Decimal:
        """Stored rate, as of the last accrual."""
        ...

    def current_exchange_rate(self) -> Decimal:
        """Rate as if interest were accrued now."""
        ...

    def mint(self, payer: str, stable_amount: Decimal) -> Decimal:
        ...

    def redeem(self, holder: str, ib_amount: Decimal) -> Decimal:
        ...

    def underlying_value(self, ib_amount: Decimal) -> Decimal:
        ...

    def accrue_interest(self) -> None:
        ...

    def claim_rewards(self, holder: str) -> Decimal:
        ...


def year_fraction(start: datetime, end: datetime) -> Decimal:
    """Elapsed time as a fraction of a 365-day year (0 if end <= start)."""
    if end <= start:
        return ZERO
    return Decimal(str((end - start).total_seconds())) / SECONDS_PER_YEAR


class CompoundMarket:
    """
    Deterministic cToken market on the ledger.

    Unit state of the interest-bearing token:
        exchange_rate: stable per interest-bearing unit
        supply_rate_per_year: simple annual growth of the exchange rate
        reward_rate_per_year: reward units accrued per interest-bearing unit per year
        last_accrual: time of the last accrual
        accrued_rewards: {holder: unclaimed reward units}

    The reserve wallet receives deposits and pays redemptions. Every accrual
    issues the interest it creates into the reserve so redemptions stay
    backed. mint, redeem and claim_rewards accrue first.
    """

    def __init__(
        self,
        ledger: Ledger,
        ib_symbol: str,
        underlying_symbol: str,
        reward_symbol: Optional[str] = None,
        reserve_wallet: str = "compound",
    ):
        self.ledger = ledger
        self.ib_symbol = ib_symbol
        self.underlying_symbol = underlying_symbol
        self.reward_symbol = reward_symbol
        self.reserve_wallet = ledger.ensure_wallet(reserve_wallet)
        state = ledger.get_unit_state(ib_symbol)
        if to_decimal(state.get('exchange_rate', ZERO), "exchange_rate") <= 0:
            raise ValueError(f"{ib_symbol} has no positive exchange_rate in its state")

    def __repr__(self):
        return f"CompoundMarket({self.ib_symbol}/{self.underlying_symbol} rate={self.exchange_rate()})"

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _state(self) -> Dict:
        return self.ledger.get_unit_state(self.ib_symbol)

    def exchange_rate(self) -> Decimal:
        return self._state()['exchange_rate']

    def supply_rate_per_year(self) -> Decimal:
        return self._state().get('supply_rate_per_year', ZERO)

    def _grown_rate(self, state: Dict, now: datetime) -> Decimal:
        last = state.get('last_accrual') or now
        growth = state.get('supply_rate_per_year', ZERO) * year_fraction(last, now)
        return state['exchange_rate'] * (1 + growth)

    def current_exchange_rate(self) -> Decimal:
        return self._grown_rate(self._state(), self.ledger.current_time)

    def underlying_value(self, ib_amount: Decimal) -> Decimal:
        ib_amount = to_decimal(ib_amount)
        unit = self.ledger.get_unit(self.underlying_symbol)
        return quantize_down(unit, ib_amount * self.current_exchange_rate())

    def accrued_rewards(self, holder: str) -> Decimal:
        """Unclaimed rewards as of the last accrual."""
        return self._state().get('accrued_rewards', {}).get(holder, ZERO)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def accrue_interest(self) -> None:
        """
        Bring the exchange rate and reward balances up to the ledger clock.

        A no-op when the clock has not moved since the last accrual.
        """
        now = self.ledger.current_time
        old_state = self._state()
        last = old_state.get('last_accrual')
        if last is not None and now <= last:
            return

        new_state = dict(old_state)
        new_state['last_accrual'] = now
        moves: List[Move] = []
        contract_id = self.ledger.new_contract_id(f"market:{self.ib_symbol}")

        if last is not None:
            elapsed = year_fraction(last, now)
            new_rate = self._grown_rate(old_state, now)
            new_state['exchange_rate'] = new_rate

            outstanding = self.ledger.issued_supply(self.ib_symbol)
            interest = quantize_up(
                self.ledger.get_unit(self.underlying_symbol),
                outstanding * (new_rate - old_state['exchange_rate']),
            )
            if interest > 0:
                moves.append(Move(interest, self.underlying_symbol, SYSTEM_WALLET,
                                  self.reserve_wallet, contract_id))

            reward_rate = old_state.get('reward_rate_per_year', ZERO)
            if self.reward_symbol and reward_rate > 0:
                rewards = dict(old_state.get('accrued_rewards', {}))
                for holder, held in sorted(self.ledger.get_positions(self.ib_symbol).items()):
                    if holder == SYSTEM_WALLET or held <= 0:
                        continue
                    rewards[holder] = rewards.get(holder, ZERO) + held * reward_rate * elapsed
                new_state['accrued_rewards'] = rewards

        self.ledger.commit(build_transaction(
            self.ledger,
            moves,
            [UnitStateChange(unit=self.ib_symbol, old_state=old_state, new_state=new_state)],
            origin=TransactionOrigin(OriginType.CONTRACT, self.reserve_wallet, self.ib_symbol,
                                     "ACCRUE", contract_id),
        ))
        logger.debug("%s accrued to %s, rate %s", self.ib_symbol, now, new_state['exchange_rate'])

    def mint(self, payer: str, stable_amount: Decimal) -> Decimal:
        """
        Deposit stable_amount from payer; returns interest-bearing units issued.

        Raises:
            InsufficientBalance: If payer holds less than stable_amount
            ValueError: If stable_amount buys less than one unit step
        """
        stable_amount = to_decimal(stable_amount)
        self.accrue_interest()
        held = self.ledger.get_balance(payer, self.underlying_symbol)
        if held < stable_amount:
            raise InsufficientBalance(f"{payer} holds {held} {self.underlying_symbol}, needs {stable_amount}")
        minted = quantize_down(self.ledger.get_unit(self.ib_symbol), stable_amount / self.exchange_rate())
        if minted <= 0:
            raise ValueError(f"{stable_amount} {self.underlying_symbol} mints no {self.ib_symbol}")

        contract_id = self.ledger.new_contract_id(f"market:{self.ib_symbol}")
        self.ledger.commit(build_transaction(
            self.ledger,
            [
                Move(stable_amount, self.underlying_symbol, payer, self.reserve_wallet, contract_id),
                Move(minted, self.ib_symbol, SYSTEM_WALLET, payer, contract_id),
            ],
            origin=TransactionOrigin(OriginType.CONTRACT, self.reserve_wallet, self.ib_symbol, "MINT", contract_id),
        ))
        return minted

    def redeem(self, holder: str, ib_amount: Decimal) -> Decimal:
        """
        Burn ib_amount of holder's units; returns stable paid out.

        Raises:
            InsufficientBalance: If holder holds less than ib_amount
        """
        ib_amount = to_decimal(ib_amount)
        self.accrue_interest()
        held = self.ledger.get_balance(holder, self.ib_symbol)
        if held < ib_amount:
            raise InsufficientBalance(f"{holder} holds {held} {self.ib_symbol}, needs {ib_amount}")
        if ib_amount == 0:
            return ZERO
        paid = quantize_down(self.ledger.get_unit(self.underlying_symbol), ib_amount * self.exchange_rate())

        contract_id = self.ledger.new_contract_id(f"market:{self.ib_symbol}")
        moves = [Move(ib_amount, self.ib_symbol, holder, SYSTEM_WALLET, contract_id)]
        if paid > 0:
            moves.append(Move(paid, self.underlying_symbol, self.reserve_wallet, holder, contract_id))
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, self.reserve_wallet, self.ib_symbol, "REDEEM", contract_id),
        ))
        return paid

    def claim_rewards(self, holder: str) -> Decimal:
        """Pay holder's accrued rewards; returns the amount paid (0 without a reward token)."""
        if not self.reward_symbol:
            return ZERO
        self.accrue_interest()
        old_state = self._state()
        rewards = dict(old_state.get('accrued_rewards', {}))
        owed = quantize_down(self.ledger.get_unit(self.reward_symbol), rewards.get(holder, ZERO))
        if owed <= 0:
            return ZERO
        remainder = rewards.pop(holder) - owed
        if remainder > 0:
            rewards[holder] = remainder
        new_state = dict(old_state)
        new_state['accrued_rewards'] = rewards

        contract_id = self.ledger.new_contract_id(f"market:{self.reward_symbol}")
        self.ledger.commit(build_transaction(
            self.ledger,
            [Move(owed, self.reward_symbol, SYSTEM_WALLET, holder, contract_id)],
            [UnitStateChange(unit=self.ib_symbol, old_state=old_state, new_state=new_state)],
            origin=TransactionOrigin(OriginType.CONTRACT, self.reserve_wallet, self.reward_symbol, "CLAIM", contract_id),
        ))
        return owed


class LendingAdapter:
    """
    Interest-bearing leg operations for a single custodian wallet.

    mint and redeem results are measured from the custodian's balances
    before and after the market call.
    """

    def __init__(self, ledger: Ledger, market: LendingMarket, custodian: str):
        self.ledger = ledger
        self.market = market
        self.custodian = custodian
        self.ib_symbol = market.ib_symbol
        self.stable_symbol = market.underlying_symbol

    def exchange_rate(self) -> Decimal:
        return self.market.exchange_rate()

    def accrue(self) -> None:
        self.market.accrue_interest()

    def cost_of_interest_bearing(self, amount: Decimal) -> Decimal:
        """Stable needed for amount interest-bearing units at the stored rate, rounded up."""
        amount = to_decimal(amount)
        return quantize_up(self.ledger.get_unit(self.stable_symbol), amount * self.exchange_rate())

    def underlying_value(self, ib_amount: Decimal) -> Decimal:
        return self.market.underlying_value(ib_amount)

    def mint_interest_bearing(self, stable_amount: Decimal) -> Decimal:
        """Deposit the custodian's stable; returns the interest-bearing units that arrived."""
        before = self.ledger.get_balance(self.custodian, self.ib_symbol)
        self.market.mint(self.custodian, stable_amount)
        return self.ledger.get_balance(self.custodian, self.ib_symbol) - before

    def redeem_interest_bearing(self, ib_amount: Decimal) -> Decimal:
        """Redeem the custodian's units; returns the stable that arrived."""
        before = self.ledger.get_balance(self.custodian, self.stable_symbol)
        self.market.redeem(self.custodian, ib_amount)
        return self.ledger.get_balance(self.custodian, self.stable_symbol) - before
