"""
conftest.py - Shared pytest fixtures for savetoken tests

Provides common fixtures used across unit, conformance and functional tests:
- Bare ledgers with token units
- Dealer-venue deployments (fixed option price, exact arithmetic)
- Uniswap-venue deployments with seeded pools
- Funded and approved holders
- Comparison utilities
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from savetoken import (
    Ledger, Deployment,
    SaveTokenConfig, MarketParams,
    token, compute_issue,
    deploy, issue, approve, write_options, seed_liquidity,
    UNIT_TYPE_STABLE, UNIT_TYPE_NATIVE, UNIT_TYPE_OPTION_TOKEN,
)


START = datetime(2020, 6, 1)
EXPIRY = START + timedelta(days=90)
WINDOW_END = EXPIRY + timedelta(days=7)

OPTION_PRICE = Decimal("0.01")
EXCHANGE_RATE = Decimal("0.0205")
STRIKE = Decimal("0.0001")

# Option units written and handed to the venue in every deployment fixture
OPTION_INVENTORY = Decimal("100000")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(dep: Deployment, holder: str, amount: Decimal, allowance: Optional[Decimal] = None) -> None:
    """Issue stable to holder and approve the wrapped token to pull it."""
    issue(dep.ledger, dep.stable, holder, amount)
    approve(dep.ledger, dep.stable, holder, dep.save_token.address,
            amount if allowance is None else allowance)


def dealer_deployment(
    config: Optional[SaveTokenConfig] = None,
    price: Decimal = OPTION_PRICE,
    holders: Optional[Dict[str, Decimal]] = None,
) -> Deployment:
    """Fixed-price venue with OPTION_INVENTORY option units in the dealer's inventory."""
    dep = deploy(config or SaveTokenConfig(start_time=START), venue="fixed", option_price=price)
    write_options(dep, "writer", OPTION_INVENTORY, receiver="lp")
    seed_liquidity(dep, "lp", option_pool=(Decimal("0"), OPTION_INVENTORY))
    for holder, amount in (holders or {}).items():
        fund(dep, holder, amount)
    return dep


def uniswap_deployment(holders: Optional[Dict[str, Decimal]] = None) -> Deployment:
    """
    Two-pool venue.

    Stable pool: 50 ETH / 10,000 DAI. Option pool: 1 ETH / 100,000 ocDAI,
    so one option unit costs roughly 0.002 DAI.
    """
    dep = deploy(SaveTokenConfig(start_time=START), venue="uniswap")
    write_options(dep, "writer", 2 * OPTION_INVENTORY, receiver="lp")
    seed_liquidity(
        dep, "lp",
        stable_pool=(Decimal("50"), Decimal("10000")),
        option_pool=(Decimal("1"), OPTION_INVENTORY),
    )
    for holder, amount in (holders or {}).items():
        fund(dep, holder, amount)
    return dep


def token_ledger(test_mode: bool = False) -> Ledger:
    """Ledger with DAI (18), ETH (18) and ocDAI (8) registered."""
    ledger = Ledger("test", START, verbose=False, test_mode=test_mode)
    ledger.register_unit(token("DAI", "Dai Stablecoin", UNIT_TYPE_STABLE, 18))
    ledger.register_unit(token("ETH", "Ether", UNIT_TYPE_NATIVE, 18))
    ledger.register_unit(token("ocDAI", "Opyn cDai Insurance", UNIT_TYPE_OPTION_TOKEN, 8))
    return ledger


def give(ledger: Ledger, holder: str, unit_symbol: str, amount: Decimal) -> None:
    """Issue amount to holder through SYSTEM_WALLET."""
    ledger.ensure_wallet(holder)
    ledger.commit(compute_issue(ledger, unit_symbol, holder, amount, ledger.new_contract_id("issue")))


def snapshot(dep: Deployment) -> Dict[str, Any]:
    """Everything a failed operation must leave untouched."""
    ledger = dep.ledger
    return {
        'balances': {w: {u: q for u, q in b.items() if q != 0} for w, b in ledger.balances.items()},
        'states': {u: ledger.get_unit_state(u) for u in ledger.units},
        'wallets': set(ledger.registered_wallets),
        'log': len(ledger.transaction_log),
        'vaults': dep.registry.vaults(),
        'events': dep.save_token.events,
    }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Bare ledger with DAI, ETH and ocDAI."""
    return token_ledger()


@pytest.fixture
def dep():
    """Dealer-venue deployment; alice holds 1,000 DAI approved to the wrapped token."""
    return dealer_deployment(holders={"alice": Decimal("1000")})


@pytest.fixture
def minted(dep):
    """dep after alice minted 100 saveDAI (cost 1 DAI premium + 2.05 DAI)."""
    dep.save_token.mint("alice", Decimal("100"))
    return dep


@pytest.fixture
def reward_dep():
    """Dealer-venue deployment whose market pays 0.5 COMP per cDAI per year."""
    config = SaveTokenConfig(start_time=START, market=MarketParams(reward_rate_per_year=Decimal("0.5")))
    return dealer_deployment(config, holders={"alice": Decimal("1000")})


@pytest.fixture
def pools():
    """Uniswap-venue deployment; alice holds 1,000 DAI approved to the wrapped token."""
    return uniswap_deployment(holders={"alice": Decimal("1000")})
