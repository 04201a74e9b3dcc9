"""
vaults.py - Per-holder custody of the interest-bearing leg

Each holder that ever minted or received wrapped units gets one vault: a
ledger wallet that only this registry may debit. Vault records live in an
arena indexed by a stable integer id, with a holder -> id map on the side.
Vaults are created lazily and never destroyed.

Every move out of a vault carries a contract id under the registry's
custody prefix; the interest-bearing unit's custody_transfer_rule rejects
any other debit of a vault wallet.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Dict, Iterator, List, Optional

from .core import (
    Move, TransactionOrigin, OriginType,
    ZERO,
    NoVaultForHolder, InsufficientVaultBalance,
    build_transaction, to_decimal,
)
from .ledger import Ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Vault:
    vault_id: int
    holder: str
    wallet_id: str


class VaultRegistry:
    """
    Get-or-create registry of holder vaults for one interest-bearing unit.

    Args:
        ledger: Ledger holding the vault wallets
        ib_symbol: Interest-bearing unit custodied by the vaults
        prefix: Wallet id prefix; vault wallets are "<prefix>:<id>"
        reward_symbol: Optional reward token the vaults accrue
    """

    def __init__(self, ledger: Ledger, ib_symbol: str, prefix: str = "vault",
                 reward_symbol: Optional[str] = None):
        self.ledger = ledger
        self.ib_symbol = ib_symbol
        self.reward_symbol = reward_symbol
        self.custody_prefix = f"{prefix}:"
        self._vaults: List[Vault] = []
        self._by_holder: Dict[str, int] = {}

    def __repr__(self):
        return f"VaultRegistry({self.ib_symbol}, {len(self._vaults)} vaults)"

    # ------------------------------------------------------------------
    # Lookup and provisioning
    # ------------------------------------------------------------------

    def vault_of(self, holder: str) -> Vault:
        """Return holder's vault, creating it on first use."""
        existing = self.find_vault(holder)
        if existing is not None:
            return existing
        if not holder:
            raise ValueError("holder cannot be empty")
        vault_id = len(self._vaults)
        wallet_id = self.ledger.register_wallet(f"{self.custody_prefix}{vault_id}")
        vault = Vault(vault_id=vault_id, holder=holder, wallet_id=wallet_id)
        self._vaults.append(vault)
        self._by_holder[holder] = vault_id
        logger.info("provisioned vault %d (%s) for %s", vault_id, wallet_id, holder)
        return vault

    def find_vault(self, holder: str) -> Optional[Vault]:
        vault_id = self._by_holder.get(holder)
        return self._vaults[vault_id] if vault_id is not None else None

    def get(self, vault_id: int) -> Vault:
        return self._vaults[vault_id]

    def _require(self, holder: str) -> Vault:
        vault = self.find_vault(holder)
        if vault is None:
            raise NoVaultForHolder(f"{holder} has no vault")
        return vault

    def vaults(self) -> List[Vault]:
        return list(self._vaults)

    def balance_of(self, holder: str) -> Decimal:
        """Interest-bearing units in holder's vault (0 without one)."""
        vault = self.find_vault(holder)
        if vault is None:
            return ZERO
        return self.ledger.get_balance(vault.wallet_id, self.ib_symbol)

    def total_custodied(self) -> Decimal:
        return sum(
            (self.ledger.get_balance(v.wallet_id, self.ib_symbol) for v in self._vaults),
            ZERO,
        )

    def contract_id(self, kind: str) -> str:
        """A contract id the custody rule accepts for vault debits."""
        return self.ledger.new_contract_id(f"{self.custody_prefix}{kind}")

    # ------------------------------------------------------------------
    # Move builders (bundled by the caller with other moves)
    # ------------------------------------------------------------------

    def deposit_move(self, holder: str, amount: Decimal, source: str, contract_id: str) -> Move:
        """Credit holder's vault from source, provisioning the vault first."""
        vault = self.vault_of(holder)
        return Move(to_decimal(amount), self.ib_symbol, source, vault.wallet_id, contract_id)

    def transfer_move(self, from_holder: str, to_holder: str, amount: Decimal) -> Move:
        """
        Debit from_holder's vault into to_holder's, provisioning the latter.

        Raises:
            NoVaultForHolder: If from_holder has no vault
            InsufficientVaultBalance: If from_holder's vault is short
        """
        amount = to_decimal(amount)
        source = self._checked_debit(from_holder, amount)
        dest = self.vault_of(to_holder)
        return Move(amount, self.ib_symbol, source.wallet_id, dest.wallet_id, self.contract_id("transfer"))

    def withdraw_move(self, holder: str, amount: Decimal, dest: str) -> Move:
        """
        Debit holder's vault to dest.

        Raises:
            NoVaultForHolder: If holder has no vault
            InsufficientVaultBalance: If the vault is short
        """
        amount = to_decimal(amount)
        vault = self._checked_debit(holder, amount)
        return Move(amount, self.ib_symbol, vault.wallet_id, dest, self.contract_id("withdraw"))

    def _checked_debit(self, holder: str, amount: Decimal) -> Vault:
        vault = self._require(holder)
        held = self.ledger.get_balance(vault.wallet_id, self.ib_symbol)
        if held < amount:
            raise InsufficientVaultBalance(
                f"vault {vault.vault_id} of {holder} holds {held} {self.ib_symbol}, needs {amount}"
            )
        return vault

    # ------------------------------------------------------------------
    # Standalone operations
    # ------------------------------------------------------------------

    def _commit(self, move: Move, event_type: str) -> None:
        self.ledger.commit(build_transaction(
            self.ledger, [move],
            origin=TransactionOrigin(OriginType.CONTRACT, "vaults", self.ib_symbol, event_type, move.contract_id),
        ))

    def deposit_into(self, holder: str, amount: Decimal, source: str) -> Vault:
        amount = to_decimal(amount)
        vault = self.vault_of(holder)
        if amount > 0:
            self._commit(self.deposit_move(holder, amount, source, self.contract_id("deposit")), "VAULT_DEPOSIT")
        return vault

    def move_between_vaults(self, from_holder: str, to_holder: str, amount: Decimal) -> None:
        amount = to_decimal(amount)
        if amount == 0:
            self._require(from_holder)
            self.vault_of(to_holder)
            return
        self._commit(self.transfer_move(from_holder, to_holder, amount), "VAULT_TRANSFER")

    def withdraw_from(self, holder: str, amount: Decimal, dest: str) -> Decimal:
        """Release amount from holder's vault to dest; returns the amount released."""
        amount = to_decimal(amount)
        if amount == 0:
            self._require(holder)
            return ZERO
        self._commit(self.withdraw_move(holder, amount, dest), "VAULT_WITHDRAW")
        return amount

    def harvest(self, holder: str, market, dest: str) -> Decimal:
        """
        Claim the rewards accrued by holder's vault and send them to dest.

        Returns:
            Reward units delivered to dest

        Raises:
            NoVaultForHolder: If holder has no vault
        """
        vault = self._require(holder)
        if not self.reward_symbol:
            return ZERO
        market.claim_rewards(vault.wallet_id)
        rewards = self.ledger.get_balance(vault.wallet_id, self.reward_symbol)
        if rewards <= 0:
            return ZERO
        contract_id = self.contract_id("harvest")
        self.ledger.commit(build_transaction(
            self.ledger,
            [Move(rewards, self.reward_symbol, vault.wallet_id, dest, contract_id)],
            origin=TransactionOrigin(OriginType.CONTRACT, "vaults", self.reward_symbol, "HARVEST", contract_id),
        ))
        logger.info("harvested %s %s from vault %d to %s", rewards, self.reward_symbol, vault.vault_id, dest)
        return rewards

    # ------------------------------------------------------------------
    # Savepoints
    # ------------------------------------------------------------------

    @contextmanager
    def savepoint(self) -> Iterator[VaultRegistry]:
        """Forget vaults provisioned inside the block if it raises."""
        vaults = list(self._vaults)
        by_holder = dict(self._by_holder)
        try:
            yield self
        except Exception:
            self._vaults = vaults
            self._by_holder = by_holder
            raise

    def check_backing(self, balances: Dict[str, Decimal]) -> List[Dict]:
        """
        Compare each holder's wrapped balance with their vault balance.

        Returns:
            One dict per mismatch: holder, wrapped, vault, difference
        """
        mismatches = []
        holders = set(balances) | set(self._by_holder)
        for holder in sorted(holders):
            wrapped = balances.get(holder, ZERO)
            custodied = self.balance_of(holder)
            if wrapped != custodied:
                mismatches.append({
                    'holder': holder,
                    'wrapped': wrapped,
                    'vault': custodied,
                    'difference': wrapped - custodied,
                })
        if mismatches:
            logger.warning("vault backing mismatches: %s", mismatches)
        return mismatches
