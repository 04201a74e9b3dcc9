"""
deployment.py - Wiring a complete wrapped-token system onto one ledger

deploy() registers every unit, builds the venues, the lending market, the
option protocol, the vault registry and the SaveToken, and returns them
together. The helpers below issue balances, set approvals, write options
and seed pool liquidity.

Example:
    dep = deploy(SaveTokenConfig())
    write_options(dep, "writer", Decimal("10000"), receiver="lp")
    seed_liquidity(dep, "lp", stable_pool=(Decimal("50"), Decimal("10000")),
                   option_pool=(Decimal("5"), Decimal("10000")))
    issue(dep.ledger, "DAI", "alice", Decimal("1000"))
    approve(dep.ledger, "DAI", "alice", dep.save_token.address, Decimal("1000"))
    dep.save_token.mint("alice", Decimal("100"))
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
import logging
from typing import Optional, Tuple

from .config import SaveTokenConfig
from .core import custody_transfer_rule, token, to_decimal
from .exchange import (
    ConstantProductPool, FixedPriceOptionExchange, OptionExchange, UniswapOptionExchange,
)
from .ledger import Ledger
from .lending import CompoundMarket, LendingAdapter
from .options import OTokenProtocol
from .save_token import SaveToken
from .token import compute_approve, compute_issue, compute_transfer
from .vaults import VaultRegistry

logger = logging.getLogger(__name__)

VAULT_PREFIX = "vault"


@dataclass
class Deployment:
    config: SaveTokenConfig
    ledger: Ledger
    market: CompoundMarket
    lending: LendingAdapter
    options: OTokenProtocol
    exchange: OptionExchange
    registry: VaultRegistry
    save_token: SaveToken
    stable_pool: Optional[ConstantProductPool] = None
    option_pool: Optional[ConstantProductPool] = None

    @property
    def stable(self) -> str:
        return self.config.token('stable').symbol

    @property
    def interest_bearing(self) -> str:
        return self.config.token('interest_bearing').symbol

    @property
    def option(self) -> str:
        return self.config.token('option').symbol

    @property
    def native(self) -> str:
        return self.config.token('native').symbol

    @property
    def wrapped(self) -> str:
        return self.config.token('wrapped').symbol

    @property
    def reward(self) -> str:
        return self.config.token('reward').symbol


def register_units(ledger: Ledger, config: SaveTokenConfig) -> None:
    """Register all six token units with their initial state."""
    market = config.market
    custody = {'custody_prefix': f"{VAULT_PREFIX}:"}
    expiry = config.start_time + timedelta(days=market.expiry_days)
    window_start = expiry + timedelta(days=market.window_offset_days)

    stable = config.token('stable')
    native = config.token('native')
    reward = config.token('reward')
    ib = config.token('interest_bearing')
    option = config.token('option')
    wrapped = config.token('wrapped')

    ledger.register_unit(token(stable.symbol, stable.name, stable.unit_type, stable.decimals))
    ledger.register_unit(token(native.symbol, native.name, native.unit_type, native.decimals))
    ledger.register_unit(token(reward.symbol, reward.name, reward.unit_type, reward.decimals,
                               state=dict(custody), transfer_rule=custody_transfer_rule))
    ledger.register_unit(token(ib.symbol, ib.name, ib.unit_type, ib.decimals, state={
        **custody,
        'exchange_rate': market.initial_exchange_rate,
        'supply_rate_per_year': market.supply_rate_per_year,
        'reward_rate_per_year': market.reward_rate_per_year,
        'last_accrual': config.start_time,
        'accrued_rewards': {},
    }, transfer_rule=custody_transfer_rule))
    ledger.register_unit(token(option.symbol, option.name, option.unit_type, option.decimals, state={
        'strike': market.strike,
        'expiry': expiry,
        'window_start': window_start,
        'window_end': window_start + timedelta(days=market.window_days),
        'underlying': ib.symbol,
        'settlement': native.symbol,
        'writer_vaults': {},
        'writer_issued': {},
    }))
    ledger.register_unit(token(wrapped.symbol, wrapped.name, wrapped.unit_type, wrapped.decimals, state={
        'display_name': wrapped.name,
        'owner': config.owner,
        'paused': False,
        'allowances': {},
        'controller_prefix': f"{wrapped.symbol}:",
    }, transfer_rule=custody_transfer_rule))


def deploy(
    config: Optional[SaveTokenConfig] = None,
    venue: str = "uniswap",
    option_price: Optional[Decimal] = None,
    test_mode: bool = False,
) -> Deployment:
    """
    Build a full system on a fresh ledger.

    Args:
        config: Deployment parameters (defaults to SaveTokenConfig())
        venue: "uniswap" for the two-pool venue, "fixed" for a dealer
        option_price: Dealer ask in stable per option unit (venue="fixed")
        test_mode: Passed to the Ledger (enables set_balance)
    """
    config = config or SaveTokenConfig()
    ledger = Ledger(config.ledger_name, config.start_time, verbose=config.verbose, test_mode=test_mode)
    register_units(ledger, config)
    ledger.ensure_wallet(config.owner)

    stable = config.token('stable').symbol
    native = config.token('native').symbol
    option = config.token('option').symbol
    ib = config.token('interest_bearing').symbol
    reward = config.token('reward').symbol

    market = CompoundMarket(ledger, ib, stable, reward_symbol=reward)
    options = OTokenProtocol(ledger, option)
    stable_pool = option_pool = None
    if venue == "uniswap":
        stable_pool = ConstantProductPool(ledger, stable, native, fee=config.market.pool_fee)
        option_pool = ConstantProductPool(ledger, option, native, fee=config.market.pool_fee)
        exchange = UniswapOptionExchange(ledger, stable_pool, option_pool)
    elif venue == "fixed":
        if option_price is None:
            raise ValueError("venue='fixed' needs option_price")
        exchange = FixedPriceOptionExchange(ledger, option, stable, option_price)
    else:
        raise ValueError(f"unknown venue {venue!r}")

    lending = LendingAdapter(ledger, market, config.custody_wallet)
    registry = VaultRegistry(ledger, ib, prefix=VAULT_PREFIX, reward_symbol=reward)
    save_token = SaveToken(
        ledger, config.token('wrapped').symbol, exchange, lending, registry, options,
        max_quote_drift=config.market.max_quote_drift,
    )
    logger.info("deployed %r on ledger %s", save_token, ledger.name)
    return Deployment(
        config=config, ledger=ledger, market=market, lending=lending, options=options,
        exchange=exchange, registry=registry, save_token=save_token,
        stable_pool=stable_pool, option_pool=option_pool,
    )


def issue(ledger: Ledger, unit_symbol: str, holder: str, amount: Decimal) -> None:
    """Issue amount of a unit to holder, registering the wallet if needed."""
    amount = to_decimal(amount)
    ledger.ensure_wallet(holder)
    if amount > 0:
        ledger.commit(compute_issue(ledger, unit_symbol, holder, amount, ledger.new_contract_id("issue")))


def approve(ledger: Ledger, unit_symbol: str, owner: str, spender: str, amount: Decimal) -> None:
    """Set spender's allowance over owner's balance of any token unit."""
    ledger.commit(compute_approve(ledger, unit_symbol, owner, spender, amount, ledger.new_contract_id("approve")))


def write_options(dep: Deployment, writer: str, amount: Decimal, receiver: str) -> None:
    """Collateralise a writer vault at the strike and issue amount option units to receiver."""
    amount = to_decimal(amount)
    collateral = amount * dep.options.strike()
    issue(dep.ledger, dep.native, writer, collateral)
    dep.options.open_vault(writer)
    dep.options.add_collateral(writer, collateral)
    dep.ledger.ensure_wallet(receiver)
    dep.options.issue_otokens(writer, amount, receiver)


def seed_liquidity(
    dep: Deployment,
    provider: str,
    stable_pool: Optional[Tuple[Decimal, Decimal]] = None,
    option_pool: Optional[Tuple[Decimal, Decimal]] = None,
) -> None:
    """
    Fund the venue.

    For the two-pool venue each tuple is (native, token) added to that pool;
    native and stable are issued to provider, option units must already be
    held (see write_options). For the dealer venue, option_pool's token
    amount is moved into the dealer's inventory.
    """
    if isinstance(dep.exchange, FixedPriceOptionExchange):
        if option_pool is not None:
            dep.ledger.commit(compute_transfer(
                dep.ledger, dep.option, provider, dep.exchange.dealer, option_pool[1],
                dep.ledger.new_contract_id("inventory"),
            ))
        return
    if stable_pool is not None:
        native_amount, stable_amount = stable_pool
        issue(dep.ledger, dep.native, provider, native_amount)
        issue(dep.ledger, dep.stable, provider, stable_amount)
        dep.stable_pool.add_liquidity(provider, native_amount, stable_amount)
    if option_pool is not None:
        native_amount, option_amount = option_pool
        issue(dep.ledger, dep.native, provider, native_amount)
        dep.option_pool.add_liquidity(provider, native_amount, option_amount)
