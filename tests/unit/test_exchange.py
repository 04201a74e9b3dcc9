"""
test_exchange.py - Unit tests for the option-leg venues

Tests:
- ConstantProductPool: Uniswap v1 input/output pricing, rounding, liquidity limits
- UniswapOptionExchange: two-hop premium, buy and sell legs, slippage
- FixedPriceOptionExchange: dealer inventory, bid/ask, repricing
"""

import pytest
from decimal import Decimal
from savetoken import (
    ConstantProductPool, UniswapOptionExchange, FixedPriceOptionExchange, OptionExchange,
    InsufficientLiquidity, InsufficientBalance, SlippageExceeded,
)
from tests.conftest import give


FEE = Decimal("0.003")


@pytest.fixture
def stable_pool(ledger):
    """50 ETH / 10,000 DAI."""
    pool = ConstantProductPool(ledger, "DAI", "ETH")
    give(ledger, "lp", "ETH", Decimal("51"))
    give(ledger, "lp", "DAI", Decimal("10000"))
    pool.add_liquidity("lp", Decimal("50"), Decimal("10000"))
    return pool


@pytest.fixture
def option_pool(ledger):
    """1 ETH / 100,000 ocDAI."""
    pool = ConstantProductPool(ledger, "ocDAI", "ETH")
    give(ledger, "lp", "ocDAI", Decimal("100000"))
    pool.add_liquidity("lp", Decimal("1"), Decimal("100000"))
    return pool


@pytest.fixture
def venue(ledger, stable_pool, option_pool):
    return UniswapOptionExchange(ledger, stable_pool, option_pool)


def _product(pool):
    return pool.native_reserve() * pool.token_reserve()


class TestConstantProductPricing:

    def test_reserves_and_wallet(self, stable_pool):
        assert stable_pool.wallet_id == "pool:DAI"
        assert stable_pool.native_reserve() == Decimal("50")
        assert stable_pool.token_reserve() == Decimal("10000")
        assert stable_pool.spot_price() == Decimal("0.005")

    def test_input_price_takes_fee_from_input(self, stable_pool):
        raw = stable_pool.get_input_price(Decimal("1"), Decimal("50"), Decimal("10000"))
        with_fee = Decimal("1") * (1 - FEE)
        assert raw == with_fee * Decimal("10000") / (Decimal("50") + with_fee)

    def test_output_price_formula(self, stable_pool):
        raw = stable_pool.get_output_price(Decimal("100"), Decimal("50"), Decimal("10000"))
        assert raw == Decimal("50") * Decimal("100") / (Decimal("9900") * (1 - FEE))

    def test_output_price_rounds_up_input_price_rounds_down(self, stable_pool):
        raw_out = stable_pool.get_output_price(Decimal("100"), Decimal("50"), Decimal("10000"))
        charged = stable_pool.eth_to_token_output_price(Decimal("100"))
        assert charged >= raw_out
        assert charged - raw_out < Decimal("1e-18")

        raw_in = stable_pool.get_input_price(Decimal("1"), Decimal("50"), Decimal("10000"))
        paid = stable_pool.eth_to_token_input_price(Decimal("1"))
        assert paid <= raw_in
        assert raw_in - paid < Decimal("1e-18")

    def test_cannot_drain_reserve(self, stable_pool):
        with pytest.raises(InsufficientLiquidity):
            stable_pool.eth_to_token_output_price(Decimal("10000"))

    def test_empty_pool(self, ledger):
        pool = ConstantProductPool(ledger, "ocDAI", "ETH", wallet_id="pool:empty")
        with pytest.raises(InsufficientLiquidity):
            pool.eth_to_token_output_price(Decimal("1"))
        with pytest.raises(InsufficientLiquidity):
            pool.spot_price()

    def test_fee_must_be_below_one(self, ledger):
        with pytest.raises(ValueError):
            ConstantProductPool(ledger, "DAI", "ETH", fee=Decimal("1"))

    def test_direct_swaps_keep_product(self, ledger, stable_pool):
        before = _product(stable_pool)
        give(ledger, "trader", "ETH", Decimal("2"))
        spent = stable_pool.eth_to_token_swap_output("trader", Decimal("100"), max_eth=Decimal("2"))
        assert ledger.get_balance("trader", "DAI") == Decimal("100")
        assert ledger.get_balance("trader", "ETH") == Decimal("2") - spent
        assert _product(stable_pool) >= before

        received = stable_pool.token_to_eth_swap_input("trader", Decimal("100"))
        assert received < spent
        assert _product(stable_pool) >= before

    def test_swap_slippage(self, ledger, stable_pool):
        give(ledger, "trader", "ETH", Decimal("2"))
        with pytest.raises(SlippageExceeded):
            stable_pool.eth_to_token_swap_output("trader", Decimal("100"), max_eth=Decimal("0.1"))
        with pytest.raises(SlippageExceeded):
            stable_pool.token_to_eth_swap_input("lp", Decimal("1"), min_eth=Decimal("1"))


class TestUniswapOptionExchange:

    def test_is_an_option_exchange(self, venue):
        assert isinstance(venue, OptionExchange)
        assert venue.option_symbol == "ocDAI"
        assert venue.stable_symbol == "DAI"

    def test_two_hop_premium(self, venue, stable_pool, option_pool):
        eth_needed = option_pool.eth_to_token_output_price(Decimal("100"))
        expected = stable_pool.token_to_eth_output_price(eth_needed)
        assert venue.quote_option_cost(Decimal("100")) == expected
        # 100 option units at ~1e-5 ETH each, ETH at ~200 DAI
        assert Decimal("0.19") < expected < Decimal("0.21")

    def test_premium_has_price_impact(self, venue):
        assert venue.quote_option_cost(Decimal("2000")) > 2 * venue.quote_option_cost(Decimal("1000"))

    def test_zero_amount(self, venue):
        assert venue.quote_option_cost(Decimal("0")) == Decimal("0")
        assert venue.acquire_option("alice", Decimal("0"), Decimal("0")) == Decimal("0")

    def test_acquire_moves_native_pool_to_pool(self, ledger, venue, stable_pool, option_pool):
        give(ledger, "alice", "DAI", Decimal("10"))
        quote = venue.quote_option_cost(Decimal("100"))
        eth_needed = option_pool.eth_to_token_output_price(Decimal("100"))
        products = _product(stable_pool), _product(option_pool)

        spent = venue.acquire_option("alice", Decimal("100"), quote)

        assert spent == quote
        assert ledger.get_balance("alice", "ocDAI") == Decimal("100")
        assert ledger.get_balance("alice", "DAI") == Decimal("10") - quote
        assert ledger.get_balance("alice", "ETH") == Decimal("0")
        assert stable_pool.native_reserve() == Decimal("50") - eth_needed
        assert option_pool.native_reserve() == Decimal("1") + eth_needed
        assert _product(stable_pool) >= products[0]
        assert _product(option_pool) >= products[1]

    def test_acquire_over_limit(self, ledger, venue):
        give(ledger, "alice", "DAI", Decimal("10"))
        quote = venue.quote_option_cost(Decimal("100"))
        with pytest.raises(SlippageExceeded):
            venue.acquire_option("alice", Decimal("100"), quote - Decimal("1e-18"))
        assert ledger.get_balance("alice", "DAI") == Decimal("10")

    def test_acquire_without_funds(self, ledger, venue):
        ledger.register_wallet("alice")
        with pytest.raises(InsufficientBalance):
            venue.acquire_option("alice", Decimal("100"), Decimal("1000"))

    def test_sell_leg(self, ledger, venue):
        give(ledger, "alice", "DAI", Decimal("10"))
        cost = venue.acquire_option("alice", Decimal("100"), Decimal("10"))
        received = venue.sell_option_leg("alice", Decimal("100"))
        assert Decimal("0") < received < cost
        assert ledger.get_balance("alice", "ocDAI") == Decimal("0")
        assert ledger.get_balance("alice", "DAI") == Decimal("10") - cost + received

    def test_sell_below_minimum(self, ledger, venue):
        give(ledger, "alice", "ocDAI", Decimal("100"))
        with pytest.raises(SlippageExceeded):
            venue.sell_option_leg("alice", Decimal("100"), min_stable_out=Decimal("1"))
        assert ledger.get_balance("alice", "ocDAI") == Decimal("100")

    def test_pools_must_share_native(self, ledger, stable_pool):
        other = ConstantProductPool(ledger, "ocDAI", "DAI", wallet_id="pool:odd")
        with pytest.raises(ValueError):
            UniswapOptionExchange(ledger, stable_pool, other)


class TestFixedPriceOptionExchange:

    @pytest.fixture
    def dealer(self, ledger):
        give(ledger, "dealer", "ocDAI", Decimal("1000"))
        return FixedPriceOptionExchange(ledger, "ocDAI", "DAI", Decimal("0.01"))

    def test_quote_rounds_up_at_stable_precision(self, dealer):
        assert dealer.quote_option_cost(Decimal("100")) == Decimal("1")
        assert dealer.quote_option_cost(Decimal("0.00000001")) == Decimal("1E-10")

    def test_acquire_and_sell(self, ledger, dealer):
        give(ledger, "alice", "DAI", Decimal("5"))
        assert dealer.acquire_option("alice", Decimal("100"), Decimal("1")) == Decimal("1")
        assert ledger.get_balance("alice", "ocDAI") == Decimal("100")
        assert ledger.get_balance("dealer", "DAI") == Decimal("1")

        dealer.set_price(Decimal("0.02"), bid_price=Decimal("0.005"))
        assert dealer.sell_option_leg("alice", Decimal("100")) == Decimal("0.5")
        assert ledger.get_balance("alice", "DAI") == Decimal("4.5")

    def test_inventory_limit(self, ledger, dealer):
        give(ledger, "alice", "DAI", Decimal("100"))
        with pytest.raises(InsufficientLiquidity):
            dealer.acquire_option("alice", Decimal("1001"), Decimal("100"))

    def test_slippage(self, ledger, dealer):
        give(ledger, "alice", "DAI", Decimal("5"))
        with pytest.raises(SlippageExceeded):
            dealer.acquire_option("alice", Decimal("100"), Decimal("0.99"))

    def test_negative_price_rejected(self, ledger):
        with pytest.raises(ValueError):
            FixedPriceOptionExchange(ledger, "ocDAI", "DAI", Decimal("-1"))
