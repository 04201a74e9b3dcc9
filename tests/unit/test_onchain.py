"""
test_onchain.py - Unit tests for the web3 readers and chain mirroring

The readers are exercised against an in-memory stand-in for a Web3
instance: contracts answer from per-address handler tables, and ether
balances and the latest block come from plain dicts.
"""

import pytest
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from savetoken import get_network
from savetoken.onchain import ChainReader, from_raw, to_raw, mirror_chain_state


MAINNET = get_network('mainnet')
ZERO_ADDRESS = "0x" + "00" * 20
DAI_EXCHANGE = "0x" + "11" * 20
OCDAI_EXCHANGE = "0x" + "22" * 20

START_TS = 1590969600   # 2020-06-01 00:00 UTC
EXPIRY_TS = 1598918400  # 2020-09-01 00:00 UTC


class _Call:
    def __init__(self, handler, args):
        self.handler = handler
        self.args = args

    def call(self):
        return self.handler(*self.args)


class _Functions:
    def __init__(self, handlers):
        self._handlers = handlers

    def __getattr__(self, name):
        try:
            handler = self._handlers[name]
        except KeyError:
            raise AttributeError(name) from None
        return lambda *args: _Call(handler, args)


class FakeContract:
    def __init__(self, address, handlers):
        self.address = address
        self.functions = _Functions(handlers)


class FakeEth:
    def __init__(self, chain):
        self.chain = chain

    def contract(self, address, abi):
        return FakeContract(address, self.chain.handlers.get(address.lower(), {}))

    def get_balance(self, address):
        return self.chain.ether.get(address.lower(), 0)

    def get_block(self, block_identifier):
        assert block_identifier == 'latest'
        return {'timestamp': self.chain.timestamp}


class FakeChain:
    """Mainnet as of 2020-06-01: cDAI at 0.0205, ocDAI at 1e-5 ETH, ETH at 200 DAI."""

    def __init__(self):
        self.timestamp = START_TS
        self.calls = []
        exchanges = {MAINNET.dai.lower(): DAI_EXCHANGE, MAINNET.ocdai.lower(): OCDAI_EXCHANGE}
        self.handlers = {
            MAINNET.uniswap_factory.lower(): {
                'getExchange': self._recorded('getExchange', lambda token: exchanges.get(token.lower(), ZERO_ADDRESS)),
            },
            MAINNET.cdai.lower(): {
                'exchangeRateStored': lambda: 205 * 10 ** 24,
                'supplyRatePerBlock': lambda: 10 ** 10,
            },
            MAINNET.ocdai.lower(): {
                'expiry': lambda: EXPIRY_TS,
                'windowSize': lambda: 7 * 24 * 3600,
                'strikePrice': lambda: (1, -4),
                'balanceOf': lambda account: 100000 * 10 ** 8 if account.lower() == OCDAI_EXCHANGE else 0,
            },
            MAINNET.dai.lower(): {
                'balanceOf': lambda account: 10000 * 10 ** 18 if account.lower() == DAI_EXCHANGE else 0,
            },
            OCDAI_EXCHANGE: {
                'getEthToTokenOutputPrice': self._recorded('getEthToTokenOutputPrice', lambda tokens: 10 ** 15),
            },
            DAI_EXCHANGE: {
                'getTokenToEthOutputPrice': self._recorded('getTokenToEthOutputPrice', lambda eth: 2 * 10 ** 17),
            },
        }
        self.ether = {DAI_EXCHANGE: 50 * 10 ** 18, OCDAI_EXCHANGE: 10 ** 18}

    def _recorded(self, name, handler):
        def call(*args):
            self.calls.append((name, args))
            return handler(*args)
        return call


class FakeWeb3:
    def __init__(self, chain):
        self.eth = FakeEth(chain)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def reader(chain):
    return ChainReader(FakeWeb3(chain), MAINNET)


class TestRawAmounts:

    def test_from_raw(self):
        assert from_raw(205 * 10 ** 24, 28) == Decimal("0.0205")
        assert from_raw(1, 8) == Decimal("0.00000001")

    def test_to_raw_truncates(self):
        assert to_raw(Decimal("1.999999999"), 8) == 199999999
        assert to_raw(Decimal("100"), 8) == 10 ** 10


class TestChainReader:

    def test_exchange_rate_stored(self, reader):
        assert reader.exchange_rate_stored() == Decimal("0.0205")

    def test_supply_rate_per_year(self, reader):
        # 1e-8 per block x 2,102,400 blocks
        assert reader.supply_rate_per_year() == Decimal("0.021024")

    def test_option_terms(self, reader):
        terms = reader.option_terms()
        assert terms['expiry'] == datetime(2020, 9, 1)
        assert terms['window'] == timedelta(days=7)
        assert terms['strike'] == Decimal("0.0001")

    def test_latest_timestamp(self, reader):
        assert reader.latest_timestamp() == datetime(2020, 6, 1)

    def test_cost_of_otoken_takes_two_hops(self, reader, chain):
        assert reader.get_cost_of_otoken(Decimal("100")) == Decimal("0.2")
        priced = [(name, args) for name, args in chain.calls if name != 'getExchange']
        assert priced == [
            ('getEthToTokenOutputPrice', (10 ** 10,)),
            ('getTokenToEthOutputPrice', (10 ** 15,)),
        ]

    def test_exchanges_are_cached(self, reader, chain):
        reader.get_cost_of_otoken(Decimal("1"))
        reader.get_cost_of_otoken(Decimal("2"))
        lookups = [args for name, args in chain.calls if name == 'getExchange']
        assert len(lookups) == 2

    def test_missing_exchange(self, chain):
        network = replace(MAINNET, ocdai="0x" + "33" * 20)
        reader = ChainReader(FakeWeb3(chain), network)
        with pytest.raises(LookupError, match="no Uniswap exchange"):
            reader.exchange_for(network.ocdai)

    def test_pool_reserves(self, reader):
        assert reader.pool_reserves(MAINNET.dai, 18) == (Decimal("50"), Decimal("10000"))
        assert reader.pool_reserves(MAINNET.ocdai, 8) == (Decimal("1"), Decimal("100000"))


class TestMirrorChainState:

    @pytest.fixture
    def mirrored(self, reader):
        return mirror_chain_state(reader)

    def test_market_parameters(self, mirrored):
        assert mirrored.ledger.current_time == datetime(2020, 6, 1)
        assert mirrored.config.network == 'mainnet'
        assert mirrored.market.exchange_rate() == Decimal("0.0205")
        assert mirrored.market.supply_rate_per_year() == Decimal("0.021024")

    def test_option_window_opens_at_expiry(self, mirrored):
        assert mirrored.options.strike() == Decimal("0.0001")
        assert mirrored.options.expiry_timestamp() == datetime(2020, 9, 1)
        assert mirrored.options.exercise_window() == (datetime(2020, 9, 1), datetime(2020, 9, 8))

    def test_pools_match_live_reserves(self, mirrored):
        assert mirrored.stable_pool.native_reserve() == Decimal("50")
        assert mirrored.stable_pool.token_reserve() == Decimal("10000")
        assert mirrored.option_pool.native_reserve() == Decimal("1")
        assert mirrored.option_pool.token_reserve() == Decimal("100000")

    def test_mirrored_premium_is_live_like(self, mirrored):
        premium = mirrored.exchange.quote_option_cost(Decimal("100"))
        assert Decimal("0.19") < premium < Decimal("0.21")

    def test_option_inventory_is_fully_collateralised(self, mirrored):
        assert mirrored.options.vault_issued("mirror:writer") == Decimal("100000")
        assert mirrored.options.vault_collateral("mirror:writer") == Decimal("10")
