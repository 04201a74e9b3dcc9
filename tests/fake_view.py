"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing the pure compute_*
functions and transfer rules without a full Ledger instance.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
import copy
from typing import Dict, Set, Optional, Any

from savetoken.core import Unit, UNIT_TYPE_STABLE, token


# Type aliases (matching core.py)
Positions = Dict[str, Decimal]
UnitState = Dict[str, Any]


class FakeView:
    """
    Minimal LedgerView implementation for testing pure functions.

    Example:
        view = FakeView(
            balances={'alice': {'DAI': Decimal("1000")}},
            states={'saveDAI': {'owner': 'owner', 'paused': False}},
            time=datetime(2020, 6, 1)
        )

        positions = view.get_positions('DAI')
        # Returns: {'alice': Decimal("1000")}
    """

    def __init__(
        self,
        balances: Dict[str, Dict[str, Decimal]],
        states: Optional[Dict[str, UnitState]] = None,
        time: Optional[datetime] = None,
        units: Optional[Dict[str, Unit]] = None
    ):
        self._balances = balances
        self._states = states or {}
        self._time = time or datetime(2020, 6, 1)
        self._units = units or {}

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        return self._balances.get(wallet, {}).get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        return copy.deepcopy(self._states.get(unit, {}))

    def get_positions(self, unit: str) -> Positions:
        return {
            w: b[unit]
            for w, b in self._balances.items()
            if unit in b and b[unit] != 0
        }

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the registered unit, or an 18-decimal stable token."""
        if symbol in self._units:
            return self._units[symbol]
        return token(symbol, symbol, UNIT_TYPE_STABLE, 18)
