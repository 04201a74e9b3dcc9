"""
Conservation Law Conformance Tests

INVARIANT: For all units u, at all times t:
    Σ_{w ∈ wallets} balance(w, u, t) = 0

SYSTEM_WALLET holds the negated issued supply, so every token unit sums
to zero across the ledger. Transfers redistribute; issuance and burns
move value to and from SYSTEM_WALLET; nothing is created or destroyed.

These tests use property-based testing to verify conservation
holds for arbitrary transaction sequences, accepted or rejected.
"""

from hypothesis import given, settings, note
from hypothesis import strategies as st
from decimal import Decimal
from typing import List

from savetoken import (
    Move, ExecuteResult, SYSTEM_WALLET, build_transaction,
)
from tests.conftest import token_ledger, give


WALLETS = ["alice", "bob", "carol", "dealer"]
UNITS = ["DAI", "ETH", "ocDAI"]


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

@st.composite
def token_quantity(draw, max_value=Decimal("2000")):
    """A positive quantity on the 8-decimal grid every test unit accepts."""
    return draw(st.decimals(
        min_value=Decimal("0.00000001"),
        max_value=max_value,
        places=8,
        allow_nan=False,
        allow_infinity=False,
    ))


@st.composite
def move_sequence(draw, max_moves: int = 20) -> List[Move]:
    """Moves between funded wallets; some overdraw and must be rejected."""
    moves = []
    for i in range(draw(st.integers(min_value=1, max_value=max_moves))):
        source = draw(st.sampled_from(WALLETS))
        dest = draw(st.sampled_from([w for w in WALLETS if w != source]))
        unit = draw(st.sampled_from(UNITS))
        moves.append(Move(draw(token_quantity()), unit, source, dest, f"tx_{i}"))
    return moves


def _funded_ledger():
    ledger = token_ledger()
    for wallet in WALLETS:
        for unit in UNITS:
            give(ledger, wallet, unit, Decimal("1000"))
    return ledger


# =============================================================================
# CONSERVATION PROPERTY TESTS
# =============================================================================

class TestConservationProperties:

    @given(move_sequence())
    @settings(max_examples=100, deadline=None)
    def test_conservation_holds_for_arbitrary_sequences(self, moves):
        """
        PROPERTY: Σ balances stays zero and issued supply is unchanged,
        whichever moves are accepted.
        """
        ledger = _funded_ledger()
        issued = {u: ledger.issued_supply(u) for u in UNITS}

        for move in moves:
            result = ledger.execute(build_transaction(ledger, [move]))
            note(f"{move}: {result}")

        for unit in UNITS:
            assert ledger.total_supply(unit) == 0
            assert ledger.issued_supply(unit) == issued[unit]
            assert all(
                ledger.get_balance(w, unit) >= 0 for w in ledger.registered_wallets if w != SYSTEM_WALLET
            )

    @given(st.lists(token_quantity(max_value=Decimal("100")), min_size=2, max_size=10))
    @settings(max_examples=50, deadline=None)
    def test_multi_move_transaction_conserves(self, quantities):
        """PROPERTY: A single transaction with a chain of moves conserves."""
        ledger = token_ledger()
        wallets = [f"wallet_{i}" for i in range(len(quantities) + 1)]
        for w in wallets:
            ledger.register_wallet(w)
        give(ledger, wallets[0], "DAI", sum(quantities))

        moves = [Move(q, "DAI", wallets[i], wallets[i + 1], f"chain_{i}") for i, q in enumerate(quantities)]
        ledger.execute(build_transaction(ledger, moves))

        assert ledger.total_supply("DAI") == 0
        assert ledger.issued_supply("DAI") == sum(quantities)


# =============================================================================
# EXPLICIT CONSERVATION TESTS (Examples)
# =============================================================================

class TestConservationExamples:

    def test_issue_and_burn_balance_against_system(self, ledger):
        give(ledger, "alice", "ETH", Decimal("5"))
        assert ledger.get_balance(SYSTEM_WALLET, "ETH") == Decimal("-5")

        ledger.commit(build_transaction(ledger, [Move(Decimal("2"), "ETH", "alice", SYSTEM_WALLET, "burn:000001")]))

        assert ledger.issued_supply("ETH") == Decimal("3")
        assert ledger.total_supply("ETH") == 0

    def test_rejected_overdraft_conserves(self, ledger):
        give(ledger, "alice", "ocDAI", Decimal("10"))
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [Move(Decimal("10.00000001"), "ocDAI", "alice", "bob", "overdraft")])

        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.issued_supply("ocDAI") == Decimal("10")
        assert ledger.get_balance("alice", "ocDAI") == Decimal("10")
