"""
config.py - Deployment parameters

Frozen dataclasses describing the tokens, market parameters and the
network address book, loadable from YAML:

    ledger_name: savedai
    start_time: 2020-06-01 00:00:00
    owner: owner
    market:
      initial_exchange_rate: "0.0205"
      supply_rate_per_year: "0.04"
      strike: "0.0001"
    tokens:
      wrapped: {symbol: saveDAI, name: SaveDAI, decimals: 8}

Numbers are read through str() into Decimal, so quoting them in YAML keeps
them exact.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .core import (
    UNIT_TYPE_STABLE, UNIT_TYPE_INTEREST_BEARING, UNIT_TYPE_OPTION_TOKEN,
    UNIT_TYPE_NATIVE, UNIT_TYPE_WRAPPED_POSITION, UNIT_TYPE_REWARD,
    to_decimal,
)


def _dec(value: Any, label: str) -> Decimal:
    return to_decimal(value, label)


@dataclass(frozen=True)
class TokenSpec:
    symbol: str
    name: str
    decimals: int
    unit_type: str

    @classmethod
    def from_dict(cls, config: Dict[str, Any], default: "TokenSpec") -> "TokenSpec":
        """Override fields of default with those present in config."""
        return cls(
            symbol=config.get('symbol', default.symbol),
            name=config.get('name', default.name),
            decimals=int(config.get('decimals', default.decimals)),
            unit_type=default.unit_type,
        )


DEFAULT_TOKENS: Dict[str, TokenSpec] = {
    'stable': TokenSpec("DAI", "Dai Stablecoin", 18, UNIT_TYPE_STABLE),
    'interest_bearing': TokenSpec("cDAI", "Compound Dai", 8, UNIT_TYPE_INTEREST_BEARING),
    'option': TokenSpec("ocDAI", "Opyn cDai Insurance", 8, UNIT_TYPE_OPTION_TOKEN),
    'native': TokenSpec("ETH", "Ether", 18, UNIT_TYPE_NATIVE),
    'wrapped': TokenSpec("saveDAI", "SaveDAI", 8, UNIT_TYPE_WRAPPED_POSITION),
    'reward': TokenSpec("COMP", "Compound", 18, UNIT_TYPE_REWARD),
}


@dataclass(frozen=True)
class MarketParams:
    """
    Attributes:
        initial_exchange_rate: stable per interest-bearing unit at deployment
        supply_rate_per_year: simple annual growth of the exchange rate
        reward_rate_per_year: reward units per interest-bearing unit per year
        pool_fee: fee of each constant-product pool
        strike: native paid per option unit exercised
        expiry_days: option expiry, in days after start_time
        window_offset_days: exercise window opens this long after expiry
        window_days: length of the exercise window
        max_quote_drift: relative premium move tolerated by mint(quote=...)
    """
    initial_exchange_rate: Decimal = Decimal("0.0205")
    supply_rate_per_year: Decimal = Decimal("0.04")
    reward_rate_per_year: Decimal = Decimal("0")
    pool_fee: Decimal = Decimal("0.003")
    strike: Decimal = Decimal("0.0001")
    expiry_days: int = 90
    window_offset_days: int = 0
    window_days: int = 7
    max_quote_drift: Decimal = Decimal("0.01")

    def __post_init__(self):
        if self.initial_exchange_rate <= 0:
            raise ValueError(f"initial_exchange_rate must be positive, got {self.initial_exchange_rate}")
        if self.strike <= 0:
            raise ValueError(f"strike must be positive, got {self.strike}")
        if self.window_offset_days < 0:
            raise ValueError("the exercise window cannot open before expiry")
        if self.window_days <= 0:
            raise ValueError(f"window_days must be positive, got {self.window_days}")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "MarketParams":
        """Create MarketParams from dictionary (e.g., from YAML)."""
        defaults = cls()
        return cls(
            initial_exchange_rate=_dec(config.get('initial_exchange_rate', defaults.initial_exchange_rate), 'initial_exchange_rate'),
            supply_rate_per_year=_dec(config.get('supply_rate_per_year', defaults.supply_rate_per_year), 'supply_rate_per_year'),
            reward_rate_per_year=_dec(config.get('reward_rate_per_year', defaults.reward_rate_per_year), 'reward_rate_per_year'),
            pool_fee=_dec(config.get('pool_fee', defaults.pool_fee), 'pool_fee'),
            strike=_dec(config.get('strike', defaults.strike), 'strike'),
            expiry_days=int(config.get('expiry_days', defaults.expiry_days)),
            window_offset_days=int(config.get('window_offset_days', defaults.window_offset_days)),
            window_days=int(config.get('window_days', defaults.window_days)),
            max_quote_drift=_dec(config.get('max_quote_drift', defaults.max_quote_drift), 'max_quote_drift'),
        )


@dataclass(frozen=True)
class NetworkAddresses:
    """Live contract addresses the on-chain readers talk to."""
    name: str
    uniswap_factory: str
    cdai: str
    ocdai: str
    dai: str
    comp: Optional[str] = None
    rpc_url: Optional[str] = None


NETWORKS: Dict[str, NetworkAddresses] = {
    'mainnet': NetworkAddresses(
        name='mainnet',
        uniswap_factory='0xc0a47dFe034B400B47bDaD5FecDa2621de6c4d95',
        cdai='0x5d3a536E4D6DbD6114cc1Ead35777bAB948E3643',
        ocdai='0x98CC3BD6Af1880fcfDa17ac477B2F612980e5e33',
        dai='0x6B175474E89094C44Da98b954EedeAC495271d0F',
        comp='0xc00e94cb662c3520282e6f5717214004a7f26888',
    ),
    'rinkeby': NetworkAddresses(
        name='rinkeby',
        uniswap_factory='0xf5D915570BC477f9B8D6C0E980aA81757A3AaC36',
        cdai='0x6d7f0754ffeb405d23c51ce938289d4835be3b14',
        ocdai='0x57cC8708eFEB7f7D42E4d73ab9120BC275f1DB59',
        dai='0x95b58a6bff3d14b7db2f5cb5f0ad413dc2940658',
    ),
    'kovan': NetworkAddresses(
        name='kovan',
        uniswap_factory='0xD3E51Ef092B2845f10401a0159B2B96e8B6c3D30',
        cdai='0xe7bc397DBd069fC7d0109C0636d06888bb50668c',
        ocdai='0xd344828e67444f0921822e83d83d009B85B04454',
        dai='0x4f96fe3b7a6cf9725f59d353f723c1bdb64ca6aa',
    ),
}


def get_network(name: str) -> NetworkAddresses:
    try:
        return NETWORKS[name]
    except KeyError:
        raise ValueError(f"unknown network {name!r}; known: {sorted(NETWORKS)}") from None


@dataclass(frozen=True)
class SaveTokenConfig:
    ledger_name: str = "savedai"
    start_time: datetime = datetime(2020, 6, 1)
    owner: str = "owner"
    custody_wallet: str = "savedai"
    verbose: bool = False
    tokens: Dict[str, TokenSpec] = field(default_factory=lambda: dict(DEFAULT_TOKENS))
    market: MarketParams = field(default_factory=MarketParams)
    network: Optional[str] = None

    def token(self, role: str) -> TokenSpec:
        return self.tokens[role]

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "SaveTokenConfig":
        """Create SaveTokenConfig from dictionary (e.g., from YAML)."""
        defaults = cls()
        token_overrides = config.get('tokens', {}) or {}
        unknown = set(token_overrides) - set(DEFAULT_TOKENS)
        if unknown:
            raise ValueError(f"unknown token roles {sorted(unknown)}")
        tokens = {
            role: TokenSpec.from_dict(token_overrides.get(role, {}) or {}, spec)
            for role, spec in DEFAULT_TOKENS.items()
        }
        start_time = config.get('start_time', defaults.start_time)
        if isinstance(start_time, str):
            start_time = datetime.fromisoformat(start_time)
        network = config.get('network')
        if network is not None:
            get_network(network)
        return cls(
            ledger_name=config.get('ledger_name', defaults.ledger_name),
            start_time=start_time,
            owner=config.get('owner', defaults.owner),
            custody_wallet=config.get('custody_wallet', defaults.custody_wallet),
            verbose=bool(config.get('verbose', defaults.verbose)),
            tokens=tokens,
            market=MarketParams.from_dict(config.get('market', {}) or {}),
            network=network,
        )


def load_config(path: Union[str, Path]) -> SaveTokenConfig:
    """Read a SaveTokenConfig from a YAML file (an empty file gives the defaults)."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return SaveTokenConfig.from_dict(raw)
