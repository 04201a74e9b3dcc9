"""
On-chain readers - live prices, rates and option terms

Read-only web3 access to the contracts the deterministic venues model:
the Uniswap v1 exchanges for the stable and option tokens, the cToken and
the oToken. Nothing here signs or sends transactions.

mirror_chain_state() deploys a local system whose exchange rate, supply
rate, option terms and pool reserves are copied from a live network, so
scenarios can be replayed against real prices without touching the chain.

Embedded minimal ABIs hold only the functions called here.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_DOWN
import logging
from typing import Any, Dict, Optional, Tuple

from web3 import Web3

from .config import NetworkAddresses, SaveTokenConfig, get_network
from .deployment import Deployment, deploy, seed_liquidity, write_options

logger = logging.getLogger(__name__)

# Compound's block-based rates, ~15s blocks
BLOCKS_PER_YEAR = 2102400

UNISWAP_FACTORY_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "token", "type": "address"}],
        "name": "getExchange",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]

UNISWAP_EXCHANGE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "tokens_bought", "type": "uint256"}],
        "name": "getEthToTokenOutputPrice",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "eth_bought", "type": "uint256"}],
        "name": "getTokenToEthOutputPrice",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "tokens_sold", "type": "uint256"}],
        "name": "getTokenToEthInputPrice",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]

CTOKEN_ABI = ERC20_ABI + [
    {
        "constant": True,
        "inputs": [],
        "name": "exchangeRateStored",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "supplyRatePerBlock",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

OTOKEN_ABI = ERC20_ABI + [
    {
        "constant": True,
        "inputs": [],
        "name": "expiry",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "windowSize",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "strikePrice",
        "outputs": [
            {"name": "value", "type": "uint256"},
            {"name": "exponent", "type": "int32"},
        ],
        "type": "function",
    },
]


def from_raw(value: int, decimals: int) -> Decimal:
    """Integer token amount -> Decimal units."""
    return Decimal(int(value)).scaleb(-decimals)


def to_raw(amount: Decimal, decimals: int) -> int:
    """Decimal units -> integer token amount, truncated."""
    return int(Decimal(amount).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def _utc(timestamp: int) -> datetime:
    """Unix seconds -> naive UTC datetime, the ledger's clock convention."""
    return datetime.fromtimestamp(int(timestamp), timezone.utc).replace(tzinfo=None)


class ChainReader:
    """
    Read-only view of the live contracts of one network.

    Args:
        w3: A connected Web3 instance (or anything exposing w3.eth.contract
            and w3.eth.get_balance / get_block)
        network: Contract addresses
        stable_decimals, ib_decimals, option_decimals: token precisions
    """

    def __init__(self, w3: Any, network: NetworkAddresses,
                 stable_decimals: int = 18, ib_decimals: int = 8, option_decimals: int = 8):
        self.w3 = w3
        self.network = network
        self.stable_decimals = stable_decimals
        self.ib_decimals = ib_decimals
        self.option_decimals = option_decimals
        self._exchanges: Dict[str, Any] = {}

    @classmethod
    def connect(cls, rpc_url: str, network: str = "mainnet", timeout: int = 30) -> "ChainReader":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        if not w3.is_connected():
            raise ConnectionError(f"cannot reach {rpc_url}")
        return cls(w3, get_network(network))

    def _contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def exchange_for(self, token_address: str):
        """Uniswap v1 exchange contract listing token_address."""
        key = token_address.lower()
        if key not in self._exchanges:
            factory = self._contract(self.network.uniswap_factory, UNISWAP_FACTORY_ABI)
            address = factory.functions.getExchange(Web3.to_checksum_address(token_address)).call()
            if int(address, 16) == 0:
                raise LookupError(f"no Uniswap exchange for {token_address} on {self.network.name}")
            self._exchanges[key] = self._contract(address, UNISWAP_EXCHANGE_ABI + ERC20_ABI)
        return self._exchanges[key]

    def get_cost_of_otoken(self, amount: Decimal) -> Decimal:
        """
        Stable cost of amount option units on the live venues.

        Same two-hop path as UniswapOptionExchange: the native needed to buy
        the option units, then the stable needed to buy that native.
        """
        option_exchange = self.exchange_for(self.network.ocdai)
        stable_exchange = self.exchange_for(self.network.dai)
        eth_needed = option_exchange.functions.getEthToTokenOutputPrice(
            to_raw(amount, self.option_decimals)).call()
        stable_needed = stable_exchange.functions.getTokenToEthOutputPrice(eth_needed).call()
        return from_raw(stable_needed, self.stable_decimals)

    def exchange_rate_stored(self) -> Decimal:
        """Stable per interest-bearing unit (cToken mantissa is scaled by 1e(18 + stable - ib))."""
        mantissa = self._contract(self.network.cdai, CTOKEN_ABI).functions.exchangeRateStored().call()
        return from_raw(mantissa, 18 + self.stable_decimals - self.ib_decimals)

    def supply_rate_per_year(self) -> Decimal:
        per_block = self._contract(self.network.cdai, CTOKEN_ABI).functions.supplyRatePerBlock().call()
        return from_raw(per_block, 18) * BLOCKS_PER_YEAR

    def option_terms(self) -> Dict[str, Any]:
        """expiry (datetime), window (timedelta) and strike (native per option unit)."""
        otoken = self._contract(self.network.ocdai, OTOKEN_ABI)
        expiry = otoken.functions.expiry().call()
        window = otoken.functions.windowSize().call()
        value, exponent = otoken.functions.strikePrice().call()
        return {
            'expiry': _utc(expiry),
            'window': timedelta(seconds=window),
            'strike': Decimal(int(value)).scaleb(int(exponent)),
        }

    def pool_reserves(self, token_address: str, decimals: int) -> Tuple[Decimal, Decimal]:
        """(native, token) reserves of the token's Uniswap exchange."""
        exchange = self.exchange_for(token_address)
        native = self.w3.eth.get_balance(exchange.address)
        tokens = self._contract(token_address, ERC20_ABI).functions.balanceOf(exchange.address).call()
        return from_raw(native, 18), from_raw(tokens, decimals)

    def latest_timestamp(self) -> datetime:
        return _utc(self.w3.eth.get_block('latest')['timestamp'])


def mirror_chain_state(reader: ChainReader, config: Optional[SaveTokenConfig] = None) -> Deployment:
    """
    Deploy a local system priced like the live network.

    The live oToken's exercise window closes at expiry; locally the window
    is placed at [expiry, expiry + windowSize).
    """
    config = config or SaveTokenConfig()
    now = reader.latest_timestamp()
    market = replace(
        config.market,
        initial_exchange_rate=reader.exchange_rate_stored(),
        supply_rate_per_year=reader.supply_rate_per_year(),
    )
    dep = deploy(replace(config, start_time=now, market=market, network=reader.network.name))

    terms = reader.option_terms()
    if terms['strike'] <= 0:
        raise ValueError(f"live strike {terms['strike']} is not positive")
    dep.ledger.update_unit_state(dep.option, {
        'strike': terms['strike'],
        'expiry': terms['expiry'],
        'window_start': terms['expiry'],
        'window_end': terms['expiry'] + terms['window'],
    })

    stable_reserves = reader.pool_reserves(reader.network.dai, reader.stable_decimals)
    option_reserves = reader.pool_reserves(reader.network.ocdai, reader.option_decimals)
    write_options(dep, "mirror:writer", option_reserves[1], receiver="mirror:lp")
    seed_liquidity(dep, "mirror:lp", stable_pool=stable_reserves, option_pool=option_reserves)
    logger.info("mirrored %s at %s: rate %s, reserves %s / %s", reader.network.name, now,
                market.initial_exchange_rate, stable_reserves, option_reserves)
    return dep
