#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: saveDAI Step by Step

A walk through one insured-savings position, from an empty ledger to an
exercised insurance claim. Each step builds on the previous one. Press
Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup       - Deployment, option writers, funded holders
  4-6:   Positions   - Minting, transfers with vault backing, quotes
  7-9:   Unwinds     - Redeem, the three withdraw paths, interest accrual
  10-11: Insurance   - Expiry and exercise of the option leg
  12:    Finale      - Supply, vault and conservation checks

Run:
    python demo.py                       # Interactive mode
    python demo.py --quick               # Run all steps without pausing
    python demo.py --config config/savetoken.yaml --log-level DEBUG
"""

from datetime import timedelta
from decimal import Decimal
import sys

from savetoken import (
    Deployment, SaveTokenConfig,
    deploy, issue, approve, write_options, seed_liquidity, load_config,
    setup_logging, get_logger,
    LedgerError, OutsideExerciseWindow,
)


QUICK_MODE = "--quick" in sys.argv

logger = get_logger("demo")


def _arg(name: str, default=None):
    if name in sys.argv:
        index = sys.argv.index(name)
        if index + 1 < len(sys.argv):
            return sys.argv[index + 1]
    return default


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_holder(dep: Deployment, holder: str):
    token = dep.save_token
    ledger = dep.ledger
    print(f"{holder:>8}: {token.balance_of(holder):>14} saveDAI | "
          f"vault {dep.registry.balance_of(holder):>14} cDAI | "
          f"{ledger.get_balance(holder, dep.stable):>10} DAI")


# ============================================================================
# SETUP (Steps 1-3)
# ============================================================================

def step_01_deploy(config: SaveTokenConfig) -> Deployment:
    step_header(1, "Deploying the System",
        "One ledger holds DAI, cDAI, ocDAI, ETH, COMP and saveDAI.")

    print("""
    deploy() registers the six token units, builds a Uniswap-style venue
    for the option leg, a Compound-style market for the savings leg, the
    oToken writer-vault protocol, the holder vault registry, and the
    saveDAI token itself.
    """)
    wait_for_enter()

    dep = deploy(config)
    section_header("Units")
    for symbol in dep.ledger.list_units():
        unit = dep.ledger.get_unit(symbol)
        print(f"{symbol:>8}: {unit.name:<22} {unit.decimal_places} decimals")
    print(f"\ncDAI exchange rate: {dep.market.exchange_rate()} DAI")
    print(f"ocDAI strike:       {dep.options.strike()} ETH, expiry {dep.options.expiry_timestamp()}")
    return dep


def step_02_liquidity(dep: Deployment):
    step_header(2, "Writers and Liquidity",
        "Option units are written against ETH collateral and pooled on the venue.")

    write_options(dep, "writer", Decimal("200000"), receiver="lp")
    seed_liquidity(dep, "lp",
                   stable_pool=(Decimal("50"), Decimal("10000")),
                   option_pool=(Decimal("1"), Decimal("100000")))

    print(f"writer vault collateral: {dep.options.vault_collateral('writer')} ETH")
    print(f"stable pool: {dep.stable_pool.native_reserve()} ETH / {dep.stable_pool.token_reserve()} DAI")
    print(f"option pool: {dep.option_pool.native_reserve()} ETH / {dep.option_pool.token_reserve()} ocDAI")
    wait_for_enter()


def step_03_fund(dep: Deployment):
    step_header(3, "Funding Holders",
        "Holders approve saveDAI to pull DAI before minting.")

    for holder in ("alice", "bob"):
        issue(dep.ledger, dep.stable, holder, Decimal("1000"))
        approve(dep.ledger, dep.stable, holder, dep.save_token.address, Decimal("1000"))
        show_holder(dep, holder)
    wait_for_enter()


# ============================================================================
# POSITIONS (Steps 4-6)
# ============================================================================

def step_04_quote_and_mint(dep: Deployment):
    step_header(4, "Minting",
        "One saveDAI = one cDAI in the holder's vault + one pooled ocDAI.")

    token = dep.save_token
    quote = token.quote_mint(Decimal("100"))
    print(f"quote for 100 saveDAI: premium {quote.premium:.6f} + asset {quote.asset_cost} = {quote.total:.6f} DAI")

    minted = token.mint("alice", Decimal("100"), quote=quote)
    print(f"\nminted {minted} saveDAI for alice")
    show_holder(dep, "alice")
    print(f"pooled option custody: {token.option_custody()} ocDAI")
    wait_for_enter()


def step_05_transfer(dep: Deployment):
    step_header(5, "Transfers",
        "Wrapped units and their vault balance move together; the option pool does not.")

    dep.save_token.transfer("alice", "bob", Decimal("40"))
    for holder in ("alice", "bob"):
        show_holder(dep, holder)
    print(f"\npooled option custody: {dep.save_token.option_custody()} ocDAI")
    wait_for_enter()


def step_06_price(dep: Deployment):
    step_header(6, "Pricing",
        "The all-in price is premium plus the current value of the savings leg.")

    for amount in (Decimal("1"), Decimal("100"), Decimal("10000")):
        print(f"{amount:>8} saveDAI: {dep.save_token.get_save_token_price(amount):.6f} DAI")
    wait_for_enter()


# ============================================================================
# UNWINDS (Steps 7-9)
# ============================================================================

def step_07_interest(dep: Deployment):
    step_header(7, "Interest",
        "Thirty days pass; the cDAI exchange rate grows.")

    dep.ledger.advance_time(dep.ledger.current_time + timedelta(days=30))
    dep.market.accrue_interest()
    print(f"cDAI exchange rate: {dep.market.exchange_rate()}")
    print(f"alice's savings leg is worth {dep.save_token.underlying_balance_of('alice')} DAI")
    wait_for_enter()


def step_08_withdraw(dep: Deployment):
    step_header(8, "Withdrawing",
        "Unwind to DAI, to cDAI, or to both raw legs.")

    token = dep.save_token
    print(f"withdraw_for_underlying_asset(10): {token.withdraw_for_underlying_asset('alice', Decimal('10'))} DAI")
    print(f"withdraw_for_asset(10):            {token.withdraw_for_asset('alice', Decimal('10'))} cDAI")
    print(f"withdraw_for_asset_and_otokens(10): {token.withdraw_for_asset_and_otokens('alice', Decimal('10'))}")
    show_holder(dep, "alice")
    wait_for_enter()


def step_09_redeem(dep: Deployment):
    step_header(9, "Redeeming",
        "Redeem pays the savings leg in DAI; the option leg stays pooled.")

    paid = dep.save_token.redeem("alice", Decimal("10"))
    print(f"redeemed 10 saveDAI for {paid} DAI")
    print(f"unbacked pooled options: {dep.save_token.unbacked_option_units()} ocDAI")
    wait_for_enter()


# ============================================================================
# INSURANCE (Steps 10-11)
# ============================================================================

def step_10_expiry(dep: Deployment):
    step_header(10, "Expiry",
        "Exercise is only possible inside the window that opens at expiry.")

    try:
        dep.save_token.exercise_insurance("bob", Decimal("1"), ["writer"])
    except OutsideExerciseWindow as e:
        print(f"before expiry: {type(e).__name__}: {e}")

    dep.ledger.advance_time(dep.options.expiry_timestamp())
    print(f"\nnow {dep.ledger.current_time}: phase {dep.save_token.expiry_state().phase.name}")
    wait_for_enter()


def step_11_exercise(dep: Deployment):
    step_header(11, "Exercising the Insurance",
        "Both legs go to the writer vault; the strike is paid in ETH.")

    payout = dep.save_token.exercise_insurance("bob", Decimal("40"), ["writer"])
    print(f"bob exercised 40 saveDAI for {payout} ETH")
    print(f"writer vault now holds {dep.options.vault_underlying('writer')} cDAI")
    wait_for_enter()


# ============================================================================
# FINALE (Step 12)
# ============================================================================

def step_12_finale(dep: Deployment):
    step_header(12, "Invariants",
        "Supply, vault backing, option custody and double entry all hold.")

    report = dep.save_token.check_invariants()
    for key in ('valid', 'total_supply', 'sum_balances', 'vault_total', 'option_custody'):
        print(f"{key:>16}: {report[key]}")

    section_header("Conservation")
    for symbol in dep.ledger.list_units():
        print(f"{symbol:>8}: issued {dep.ledger.issued_supply(symbol):>22}  sum {dep.ledger.total_supply(symbol)}")

    section_header("Event log")
    for event in dep.save_token.events:
        print(f"{event.timestamp}  {event.name}")


def main():
    setup_logging(log_level=_arg("--log-level", "WARNING"), log_file=_arg("--log-file"))
    config_path = _arg("--config")
    config = load_config(config_path) if config_path else SaveTokenConfig()

    print("=" * 70)
    print("       saveDAI - INTERACTIVE TUTORIAL")
    print("=" * 70)

    try:
        dep = step_01_deploy(config)
        step_02_liquidity(dep)
        step_03_fund(dep)
        step_04_quote_and_mint(dep)
        step_05_transfer(dep)
        step_06_price(dep)
        step_07_interest(dep)
        step_08_withdraw(dep)
        step_09_redeem(dep)
        step_10_expiry(dep)
        step_11_exercise(dep)
        step_12_finale(dep)
    except LedgerError:
        logger.exception("tutorial step failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
