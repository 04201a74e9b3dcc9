"""
save_token.py - Wrapped insured-savings position

SaveToken bundles one interest-bearing unit (held in the holder's vault)
and one option unit (held in a single pooled custody wallet) into one
fungible wrapped unit.

    mint      stable -> option leg (pooled) + interest-bearing leg (vault)
    transfer  wrapped units and the matching vault balance move together
    redeem    interest-bearing leg -> stable; option leg stays pooled
    withdraw* unwind both legs before expiry
    exercise  both legs -> option protocol -> native payout

Each operation runs inside a ledger and registry savepoint, so a failure
at any step leaves no trace. Holders with an operation in flight cannot be
the subject of another one until it finishes.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .core import (
    Move, TransactionOrigin, OriginType,
    SYSTEM_WALLET, ZERO,
    InsufficientBalance, InsufficientApproval, SlippageExceeded, ReentrantCall,
    build_transaction, quantize_down, to_decimal,
)
from .admin import (
    compute_pause, compute_unpause, compute_update_token_name, compute_transfer_ownership,
    is_paused, owner_of, require_not_paused,
)
from .exchange import OptionExchange
from .expiry import ExpiryState, compute_expiry_state
from .ledger import Ledger
from .lending import LendingAdapter
from .options import OptionProtocol
from .quotes import PositionQuote, check_quote
from .token import allowance, compute_approve, compute_transfer_from, spend_allowance_change
from .vaults import Vault, VaultRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUOTE_DRIFT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class SaveTokenEvent:
    """Record of a completed operation, in the order operations finished."""
    name: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)


class SaveToken:
    """
    The wrapped-position token.

    Args:
        ledger: Ledger holding every balance
        symbol: Wrapped unit symbol (registered, with owner/paused/display_name state)
        exchange: Venue for the option leg
        lending: Adapter for the interest-bearing leg; its custodian is this
            token's address
        registry: Vaults for the interest-bearing leg
        options: Protocol issuing the option leg
        max_quote_drift: Relative premium move tolerated between quote_mint and mint
    """

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        exchange: OptionExchange,
        lending: LendingAdapter,
        registry: VaultRegistry,
        options: OptionProtocol,
        max_quote_drift: Decimal = DEFAULT_MAX_QUOTE_DRIFT,
    ):
        if exchange.option_symbol != options.option_symbol:
            raise ValueError("exchange and option protocol trade different option units")
        if exchange.stable_symbol != lending.stable_symbol:
            raise ValueError("exchange and lending market use different stable units")
        if registry.ib_symbol != lending.ib_symbol:
            raise ValueError("vaults and lending market hold different interest-bearing units")
        self.ledger = ledger
        self.symbol = symbol
        self.exchange = exchange
        self.lending = lending
        self.registry = registry
        self.options = options
        self.address = ledger.ensure_wallet(lending.custodian)
        self.stable_symbol = lending.stable_symbol
        self.ib_symbol = lending.ib_symbol
        self.option_symbol = options.option_symbol
        self.settlement_symbol = options.settlement_symbol
        self.max_quote_drift = to_decimal(max_quote_drift, "max_quote_drift")
        self._in_flight: Set[str] = set()
        self._events: List[SaveTokenEvent] = []

    def __repr__(self):
        return f"SaveToken({self.symbol}: {self.ib_symbol} + {self.option_symbol}, supply={self.total_supply()})"

    # ========================================================================
    # VIEWS
    # ========================================================================

    def name(self) -> str:
        return self.ledger.get_unit_state(self.symbol).get('display_name', self.ledger.get_unit(self.symbol).name)

    def decimals(self) -> int:
        return self.ledger.get_unit(self.symbol).decimal_places

    def owner(self) -> str:
        return owner_of(self.ledger, self.symbol)

    def is_paused(self) -> bool:
        return is_paused(self.ledger, self.symbol)

    def balance_of(self, holder: str) -> Decimal:
        if not self.ledger.is_registered(holder):
            return ZERO
        return self.ledger.get_balance(holder, self.symbol)

    def total_supply(self) -> Decimal:
        return self.ledger.issued_supply(self.symbol)

    def allowance(self, owner: str, spender: str) -> Decimal:
        return allowance(self.ledger, self.symbol, owner, spender)

    def vault_of(self, holder: str) -> Optional[Vault]:
        """holder's vault, or None. Never provisions one."""
        return self.registry.find_vault(holder)

    def underlying_balance_of(self, holder: str) -> Decimal:
        """Current stable value of holder's vault, interest included."""
        return self.lending.underlying_value(self.registry.balance_of(holder))

    def get_cost_of_otoken(self, amount: Decimal) -> Decimal:
        return self.exchange.quote_option_cost(to_decimal(amount))

    def get_save_token_price(self, amount: Decimal) -> Decimal:
        """All-in stable price of amount wrapped units: premium plus current leg value."""
        amount = to_decimal(amount)
        return self.exchange.quote_option_cost(amount) + self.lending.underlying_value(amount)

    def quote_mint(self, amount: Decimal) -> PositionQuote:
        amount = to_decimal(amount)
        return PositionQuote(
            amount=amount,
            premium=self.exchange.quote_option_cost(amount),
            asset_cost=self.lending.cost_of_interest_bearing(amount),
            exchange_rate=self.lending.exchange_rate(),
            timestamp=self.ledger.current_time,
        )

    def expiry_state(self) -> ExpiryState:
        start, end = self.options.exercise_window()
        return compute_expiry_state(self.ledger.current_time, self.options.expiry_timestamp(), start, end)

    def option_custody(self) -> Decimal:
        """Pooled option units held for all holders."""
        return self.ledger.get_balance(self.address, self.option_symbol)

    def unbacked_option_units(self) -> Decimal:
        """Pooled option units no longer matched by wrapped supply (left behind by redeem)."""
        return self.option_custody() - self.total_supply()

    @property
    def events(self) -> Tuple[SaveTokenEvent, ...]:
        return tuple(self._events)

    def check_invariants(self) -> Dict[str, Any]:
        """
        Verify supply, holder balances, vault custody and pooled option custody.

        Returns:
            Dict with keys 'valid', 'total_supply', 'sum_balances', 'vault_total',
            'option_custody', 'discrepancies'
        """
        balances = {
            holder: qty for holder, qty in self.ledger.get_positions(self.symbol).items()
            if holder != SYSTEM_WALLET
        }
        supply = self.total_supply()
        sum_balances = sum(balances.values(), ZERO)
        vault_total = self.registry.total_custodied()
        option_custody = self.option_custody()
        discrepancies: List[Dict[str, Any]] = []

        if supply != sum_balances:
            discrepancies.append({'check': 'supply', 'expected': supply, 'actual': sum_balances})
        if sum_balances != vault_total:
            discrepancies.append({'check': 'vault_total', 'expected': sum_balances, 'actual': vault_total})
        for mismatch in self.registry.check_backing(balances):
            discrepancies.append({'check': 'vault', **mismatch})
        if option_custody < supply:
            discrepancies.append({'check': 'option_custody', 'expected': supply, 'actual': option_custody})
        for holder, qty in balances.items():
            if qty < 0:
                discrepancies.append({'check': 'negative_balance', 'holder': holder, 'actual': qty})

        return {
            'valid': not discrepancies,
            'total_supply': supply,
            'sum_balances': sum_balances,
            'vault_total': vault_total,
            'option_custody': option_custody,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # OPERATION PLUMBING
    # ========================================================================

    @contextmanager
    def _operation(self, *holders: str) -> Iterator[None]:
        """
        Guard holders against re-entry and roll everything back on failure.

        The lending market accrues first, so rewards earned so far stay with
        the vaults that held the units.
        """
        subjects = set(holders)
        busy = subjects & self._in_flight
        if busy:
            raise ReentrantCall(f"operation already in flight for {sorted(busy)}")
        self._in_flight |= subjects
        mark = len(self._events)
        try:
            with self.ledger.savepoint(), self.registry.savepoint():
                self.lending.accrue()
                yield
        except Exception:
            del self._events[mark:]
            raise
        finally:
            self._in_flight -= subjects

    def _emit(self, name: str, **data: Any) -> None:
        event = SaveTokenEvent(name=name, timestamp=self.ledger.current_time, data=data)
        self._events.append(event)
        logger.info("%s %s %s", self.symbol, name, data)

    def _ref(self, kind: str) -> str:
        return self.ledger.new_contract_id(f"{self.symbol}:{kind}")

    def _origin(self, caller: str, event_type: str, reference: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.USER_ACTION, caller, self.symbol, event_type, reference)

    def _check_amount(self, amount: Any) -> Decimal:
        amount = to_decimal(amount)
        if quantize_down(self.ledger.get_unit(self.symbol), amount) != amount:
            raise ValueError(f"{amount} has more than {self.decimals()} decimals")
        return amount

    def _require_balance(self, holder: str, amount: Decimal) -> None:
        held = self.balance_of(holder)
        if held < amount:
            raise InsufficientBalance(f"{holder} holds {held} {self.symbol}, needs {amount}")

    def _pay(self, dest: str, amounts: Dict[str, Decimal], event_type: str, reference: str) -> None:
        """Send the listed amounts from this token's address to dest."""
        moves = [
            Move(qty, symbol, self.address, dest, reference)
            for symbol, qty in amounts.items() if qty > 0
        ]
        if moves:
            self.ledger.commit(build_transaction(self.ledger, moves, origin=self._origin(dest, event_type, reference)))

    def _burn_and_release(self, holder: str, amount: Decimal, event_type: str, reference: str) -> None:
        """Burn holder's wrapped units and move the matching vault balance to this token's address."""
        moves = [
            Move(amount, self.symbol, holder, SYSTEM_WALLET, reference),
            self.registry.withdraw_move(holder, amount, self.address),
        ]
        self.ledger.commit(build_transaction(self.ledger, moves, origin=self._origin(holder, event_type, reference)))

    # ========================================================================
    # MINT
    # ========================================================================

    def mint(
        self,
        caller: str,
        amount: Decimal,
        max_stable_spend: Optional[Decimal] = None,
        quote: Optional[PositionQuote] = None,
    ) -> Decimal:
        """
        Mint amount wrapped units for caller.

        The caller must have approved this token's address for premium plus
        amount x exchange rate of the stable asset. Both legs are measured
        as they arrive; the caller is credited the smaller of the two and
        any surplus of either leg, or unspent stable, is returned.

        Args:
            caller: Holder paying and receiving the units
            amount: Wrapped units requested (0 is a no-op)
            max_stable_spend: Optional ceiling on premium + asset cost
            quote: Optional earlier quote_mint result; mint fails QuoteStale
                if the premium moved more than max_quote_drift since

        Returns:
            Wrapped units credited

        Raises:
            Paused, QuoteStale, SlippageExceeded, InsufficientApproval,
            InsufficientBalance, ReentrantCall
        """
        require_not_paused(self.ledger, self.symbol)
        amount = self._check_amount(amount)
        if amount == 0:
            return ZERO

        with self._operation(caller):
            premium = self.exchange.quote_option_cost(amount)
            if quote is not None:
                check_quote(quote, amount, premium, self.max_quote_drift)
            asset_cost = self.lending.cost_of_interest_bearing(amount)
            rate = self.lending.exchange_rate()
            total = premium + asset_cost
            if max_stable_spend is not None and total > max_stable_spend:
                raise SlippageExceeded(
                    f"minting {amount} {self.symbol} costs {total} {self.stable_symbol}, max {max_stable_spend}"
                )

            reference = self._ref("mint")
            self.ledger.commit(compute_transfer_from(
                self.ledger, self.stable_symbol, self.address, caller, self.address,
                total, reference, error=InsufficientApproval,
            ))

            option_before = self.ledger.get_balance(self.address, self.option_symbol)
            spent = self.exchange.acquire_option(self.address, amount, premium)
            option_delta = self.ledger.get_balance(self.address, self.option_symbol) - option_before
            ib_delta = self.lending.mint_interest_bearing(asset_cost)

            minted = min(option_delta, ib_delta)
            if minted <= 0:
                raise ValueError(f"mint of {amount} {self.symbol} realized no position")

            moves = [
                Move(minted, self.symbol, SYSTEM_WALLET, caller, reference),
                self.registry.deposit_move(caller, minted, self.address, reference),
            ]
            self.ledger.commit(build_transaction(
                self.ledger, moves, origin=self._origin(caller, "MINT", reference),
            ))
            self._pay(caller, {
                self.stable_symbol: total - spent - asset_cost,
                self.ib_symbol: ib_delta - minted,
                self.option_symbol: option_delta - minted,
            }, "MINT_REFUND", reference)

            self._emit("Mint", holder=caller, amount=minted, premium=spent,
                       asset_cost=asset_cost, exchange_rate=rate)
        return minted

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def _check_recipient(self, to: str) -> None:
        if not to or to in (SYSTEM_WALLET, self.address) or to.startswith(self.registry.custody_prefix):
            raise ValueError(f"cannot transfer {self.symbol} to {to!r}")

    def _transfer_moves(self, owner: str, to: str, amount: Decimal, reference: str) -> List[Move]:
        self._require_balance(owner, amount)
        self.ledger.ensure_wallet(to)
        return [
            Move(amount, self.symbol, owner, to, reference),
            self.registry.transfer_move(owner, to, amount),
        ]

    def transfer(self, caller: str, to: str, amount: Decimal) -> None:
        """
        Move amount wrapped units and the matching vault balance from caller to to.

        The pooled option leg is untouched.

        Raises:
            Paused, InsufficientBalance, ReentrantCall
            ValueError: If to is the issuer, this token or a vault wallet
        """
        require_not_paused(self.ledger, self.symbol)
        amount = self._check_amount(amount)
        self._check_recipient(to)
        self._require_balance(caller, amount)
        if amount == 0 or caller == to:
            return
        with self._operation(caller, to):
            reference = self._ref("transfer")
            moves = self._transfer_moves(caller, to, amount, reference)
            self.ledger.commit(build_transaction(
                self.ledger, moves, origin=self._origin(caller, "TRANSFER", reference),
            ))
            self._emit("Transfer", source=caller, dest=to, amount=amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: Decimal) -> None:
        """
        Move amount from owner to to on spender's allowance.

        Raises:
            Paused, InsufficientAllowance, InsufficientBalance, ReentrantCall
            ValueError: If to is the issuer, this token or a vault wallet
        """
        require_not_paused(self.ledger, self.symbol)
        amount = self._check_amount(amount)
        self._check_recipient(to)
        change = spend_allowance_change(self.ledger, self.symbol, owner, spender, amount)
        self._require_balance(owner, amount)
        if amount == 0:
            return
        with self._operation(owner, to):
            reference = self._ref("transfer_from")
            moves = [] if owner == to else self._transfer_moves(owner, to, amount, reference)
            self.ledger.commit(build_transaction(
                self.ledger, moves, [change], origin=self._origin(spender, "TRANSFER_FROM", reference),
            ))
            self._emit("Transfer", source=owner, dest=to, amount=amount, spender=spender)

    def approve(self, owner: str, spender: str, amount: Decimal) -> None:
        """Set spender's allowance over owner's wrapped units."""
        amount = self._check_amount(amount)
        self.ledger.commit(compute_approve(self.ledger, self.symbol, owner, spender, amount, self._ref("approve")))
        self._emit("Approval", owner=owner, spender=spender, amount=amount)

    # ========================================================================
    # UNWINDS
    # ========================================================================

    def redeem(self, caller: str, amount: Decimal) -> Decimal:
        """
        Burn amount wrapped units and pay out the interest-bearing leg as stable.

        The matching option units stay in pooled custody (see
        unbacked_option_units).

        Returns:
            Stable paid to caller

        Raises:
            Paused, InsufficientBalance, ReentrantCall
        """
        require_not_paused(self.ledger, self.symbol)
        amount = self._check_amount(amount)
        self._require_balance(caller, amount)
        if amount == 0:
            return ZERO
        with self._operation(caller):
            reference = self._ref("redeem")
            self._burn_and_release(caller, amount, "REDEEM", reference)
            stable = self.lending.redeem_interest_bearing(amount)
            self._pay(caller, {self.stable_symbol: stable}, "REDEEM", reference)
            self._emit("Redeem", holder=caller, amount=amount, stable=stable)
        return stable

    def _check_unwind(self, caller: str, amount: Any) -> Decimal:
        require_not_paused(self.ledger, self.symbol)
        amount = self._check_amount(amount)
        self.expiry_state().require_not_expired()
        self._require_balance(caller, amount)
        return amount

    def withdraw_for_asset(self, caller: str, amount: Decimal) -> Decimal:
        """
        Unwind into the interest-bearing asset only.

        The option leg is sold and the proceeds minted into more
        interest-bearing units; stable too small to mint one unit step is
        paid out as is.

        Returns:
            Interest-bearing units paid to caller

        Raises:
            Paused, OptionExpired, InsufficientBalance, ReentrantCall
        """
        amount = self._check_unwind(caller, amount)
        if amount == 0:
            return ZERO
        with self._operation(caller):
            reference = self._ref("withdraw_asset")
            self._burn_and_release(caller, amount, "WITHDRAW_FOR_ASSET", reference)
            proceeds = self.exchange.sell_option_leg(self.address, amount)
            extra = ZERO
            ib_step = self.ledger.get_unit(self.ib_symbol).quantum
            if proceeds >= self.lending.cost_of_interest_bearing(ib_step):
                extra = self.lending.mint_interest_bearing(proceeds)
                proceeds = ZERO
            paid = amount + extra
            self._pay(caller, {self.ib_symbol: paid, self.stable_symbol: proceeds},
                      "WITHDRAW_FOR_ASSET", reference)
            self._emit("WithdrawForAsset", holder=caller, amount=amount, asset=paid)
        return paid

    def withdraw_for_asset_and_otokens(self, caller: str, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """
        Unwind into both raw legs, with no market sale.

        Returns:
            (interest-bearing units, option units) paid to caller

        Raises:
            Paused, OptionExpired, InsufficientBalance, ReentrantCall
        """
        amount = self._check_unwind(caller, amount)
        if amount == 0:
            return ZERO, ZERO
        with self._operation(caller):
            reference = self._ref("withdraw_both")
            self._burn_and_release(caller, amount, "WITHDRAW_FOR_ASSET_AND_OTOKENS", reference)
            self._pay(caller, {self.ib_symbol: amount, self.option_symbol: amount},
                      "WITHDRAW_FOR_ASSET_AND_OTOKENS", reference)
            self._emit("WithdrawForAssetAndOTokens", holder=caller, amount=amount)
        return amount, amount

    def withdraw_for_underlying_asset(self, caller: str, amount: Decimal) -> Decimal:
        """
        Unwind into stable: redeem the interest-bearing leg and sell the option leg.

        Returns:
            Stable paid to caller

        Raises:
            Paused, OptionExpired, InsufficientBalance, ReentrantCall
        """
        amount = self._check_unwind(caller, amount)
        if amount == 0:
            return ZERO
        with self._operation(caller):
            reference = self._ref("withdraw_underlying")
            self._burn_and_release(caller, amount, "WITHDRAW_FOR_UNDERLYING", reference)
            redeemed = self.lending.redeem_interest_bearing(amount)
            sold = self.exchange.sell_option_leg(self.address, amount)
            paid = redeemed + sold
            self._pay(caller, {self.stable_symbol: paid}, "WITHDRAW_FOR_UNDERLYING", reference)
            self._emit("WithdrawForUnderlyingAsset", holder=caller, amount=amount, stable=paid)
        return paid

    def exercise_insurance(self, caller: str, amount: Decimal, vaults_to_exercise_from: Sequence[str]) -> Decimal:
        """
        Exercise the option leg of amount wrapped units.

        Both legs go to the option protocol, which settles against the listed
        writer vaults; the native payout is relayed to caller.

        Returns:
            Settlement units paid to caller

        Raises:
            Paused, OutsideExerciseWindow, InsufficientBalance,
            ExerciseShortfall, ReentrantCall
        """
        require_not_paused(self.ledger, self.symbol)
        amount = self._check_amount(amount)
        self.expiry_state().require_exercise_window()
        self._require_balance(caller, amount)
        if amount == 0:
            return ZERO
        with self._operation(caller):
            reference = self._ref("exercise")
            self._burn_and_release(caller, amount, "EXERCISE", reference)
            before = self.ledger.get_balance(self.address, self.settlement_symbol)
            self.options.exercise(self.address, amount, list(vaults_to_exercise_from))
            payout = self.ledger.get_balance(self.address, self.settlement_symbol) - before
            self._pay(caller, {self.settlement_symbol: payout}, "EXERCISE", reference)
            self._emit("ExerciseInsurance", holder=caller, amount=amount, payout=payout)
        return payout

    def harvest_rewards(self, caller: str) -> Decimal:
        """
        Send the reward tokens accrued by caller's vault to caller.

        Raises:
            Paused, NoVaultForHolder, ReentrantCall
        """
        require_not_paused(self.ledger, self.symbol)
        with self._operation(caller):
            rewards = self.registry.harvest(caller, self.lending.market, caller)
            if rewards > 0:
                self._emit("Harvest", holder=caller, rewards=rewards)
        return rewards

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def pause(self, caller: str) -> None:
        self.ledger.commit(compute_pause(self.ledger, self.symbol, caller, self._ref("pause")))
        self._emit("Paused", account=caller)

    def unpause(self, caller: str) -> None:
        self.ledger.commit(compute_unpause(self.ledger, self.symbol, caller, self._ref("unpause")))
        self._emit("Unpaused", account=caller)

    def update_token_name(self, caller: str, new_name: str) -> None:
        old_name = self.name()
        self.ledger.commit(compute_update_token_name(self.ledger, self.symbol, caller, new_name, self._ref("rename")))
        self._emit("NameChanged", old_name=old_name, new_name=new_name)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.ledger.commit(compute_transfer_ownership(self.ledger, self.symbol, caller, new_owner, self._ref("owner")))
        self._emit("OwnershipTransferred", previous_owner=caller, new_owner=new_owner)
