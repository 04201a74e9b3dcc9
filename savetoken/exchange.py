"""
exchange.py - Option-leg venues

Provides the venue through which the wrapped token buys and sells its
option leg.

Classes:
- OptionExchange: Protocol the wrapped token depends on
- ConstantProductPool: Uniswap-v1 style native/token pool held in a ledger wallet
- UniswapOptionExchange: two-hop stable -> native -> option venue over two pools
- FixedPriceOptionExchange: dealer quoting a fixed stable price per option unit

All prices are denominated in the stable asset.
"""

from __future__ import annotations
from decimal import Decimal
import logging
from typing import List, Optional, Protocol, runtime_checkable

from .core import (
    Move, TransactionOrigin, OriginType,
    InsufficientLiquidity, SlippageExceeded, InsufficientBalance,
    build_transaction, quantize_down, quantize_up, to_decimal,
)
from .ledger import Ledger

logger = logging.getLogger(__name__)

# Uniswap v1 charges 0.3% on the input side of every swap
DEFAULT_POOL_FEE = Decimal("0.003")


@runtime_checkable
class OptionExchange(Protocol):
    """
    Venue for the option leg, priced in the stable asset.

    quote_option_cost must be a pure function of venue state; acquire and
    sell execute against the ledger and return the stable amount that moved.
    """
    option_symbol: str
    stable_symbol: str

    def quote_option_cost(self, amount: Decimal) -> Decimal:
        """Stable needed to buy amount option units right now."""
        ...

    def acquire_option(self, buyer: str, amount: Decimal, max_stable_spend: Decimal) -> Decimal:
        """Buy amount option units for buyer, paying at most max_stable_spend."""
        ...

    def sell_option_leg(self, seller: str, amount: Decimal, min_stable_out: Decimal = Decimal("0")) -> Decimal:
        """Sell amount option units from seller, receiving at least min_stable_out."""
        ...


class ConstantProductPool:
    """
    Native/token constant-product pool whose reserves are a ledger wallet.

    Pricing follows Uniswap v1: the fee is taken from the input amount and
    x * y is preserved on the remainder. Output prices round up at the
    input unit's precision; input prices round down at the output unit's.
    """

    def __init__(
        self,
        ledger: Ledger,
        token_symbol: str,
        native_symbol: str = "ETH",
        wallet_id: Optional[str] = None,
        fee: Decimal = DEFAULT_POOL_FEE,
    ):
        fee = to_decimal(fee, "fee")
        if fee >= 1:
            raise ValueError(f"fee must be below 1, got {fee}")
        self.ledger = ledger
        self.token_symbol = token_symbol
        self.native_symbol = native_symbol
        self.wallet_id = ledger.ensure_wallet(wallet_id or f"pool:{token_symbol}")
        self.fee = fee

    def __repr__(self):
        return f"ConstantProductPool({self.native_symbol}/{self.token_symbol} @ {self.wallet_id})"

    # ------------------------------------------------------------------
    # Reserves and pricing
    # ------------------------------------------------------------------

    def native_reserve(self) -> Decimal:
        return self.ledger.get_balance(self.wallet_id, self.native_symbol)

    def token_reserve(self) -> Decimal:
        return self.ledger.get_balance(self.wallet_id, self.token_symbol)

    def spot_price(self) -> Decimal:
        """Native per token at the current reserves, before fees."""
        tokens = self.token_reserve()
        if tokens == 0:
            raise InsufficientLiquidity(f"{self.wallet_id} holds no {self.token_symbol}")
        return self.native_reserve() / tokens

    def get_input_price(self, input_amount: Decimal, input_reserve: Decimal, output_reserve: Decimal) -> Decimal:
        """Output received for selling input_amount into the pool (unrounded)."""
        if input_reserve <= 0 or output_reserve <= 0:
            raise InsufficientLiquidity(f"{self.wallet_id} has an empty reserve")
        input_with_fee = input_amount * (1 - self.fee)
        return input_with_fee * output_reserve / (input_reserve + input_with_fee)

    def get_output_price(self, output_amount: Decimal, input_reserve: Decimal, output_reserve: Decimal) -> Decimal:
        """Input needed to take output_amount out of the pool (unrounded)."""
        if input_reserve <= 0 or output_reserve <= 0:
            raise InsufficientLiquidity(f"{self.wallet_id} has an empty reserve")
        if output_amount >= output_reserve:
            raise InsufficientLiquidity(
                f"{self.wallet_id}: cannot take {output_amount} of reserve {output_reserve}"
            )
        return input_reserve * output_amount / ((output_reserve - output_amount) * (1 - self.fee))

    def _native_unit(self):
        return self.ledger.get_unit(self.native_symbol)

    def _token_unit(self):
        return self.ledger.get_unit(self.token_symbol)

    def eth_to_token_output_price(self, tokens_bought: Decimal) -> Decimal:
        """Native needed to buy tokens_bought tokens."""
        raw = self.get_output_price(tokens_bought, self.native_reserve(), self.token_reserve())
        return quantize_up(self._native_unit(), raw)

    def token_to_eth_output_price(self, eth_bought: Decimal) -> Decimal:
        """Tokens needed to buy eth_bought native."""
        raw = self.get_output_price(eth_bought, self.token_reserve(), self.native_reserve())
        return quantize_up(self._token_unit(), raw)

    def eth_to_token_input_price(self, eth_sold: Decimal) -> Decimal:
        """Tokens received for selling eth_sold native."""
        raw = self.get_input_price(eth_sold, self.native_reserve(), self.token_reserve())
        return quantize_down(self._token_unit(), raw)

    def token_to_eth_input_price(self, tokens_sold: Decimal) -> Decimal:
        """Native received for selling tokens_sold tokens."""
        raw = self.get_input_price(tokens_sold, self.token_reserve(), self.native_reserve())
        return quantize_down(self._native_unit(), raw)

    # ------------------------------------------------------------------
    # Liquidity and direct swaps
    # ------------------------------------------------------------------

    def add_liquidity(self, provider: str, native_amount: Decimal, token_amount: Decimal) -> None:
        """Deposit both reserves from provider. No liquidity shares are issued."""
        native_amount = to_decimal(native_amount, "native_amount")
        token_amount = to_decimal(token_amount, "token_amount")
        contract_id = self.ledger.new_contract_id(f"liquidity:{self.wallet_id}")
        moves = []
        if native_amount > 0:
            moves.append(Move(native_amount, self.native_symbol, provider, self.wallet_id, contract_id))
        if token_amount > 0:
            moves.append(Move(token_amount, self.token_symbol, provider, self.wallet_id, contract_id))
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, self.wallet_id, self.token_symbol, "ADD_LIQUIDITY", contract_id),
        ))
        logger.info("%s: +%s %s, +%s %s from %s", self.wallet_id, native_amount,
                    self.native_symbol, token_amount, self.token_symbol, provider)

    def _swap(self, trader: str, sold_unit: str, sold: Decimal, bought_unit: str, bought: Decimal) -> None:
        contract_id = self.ledger.new_contract_id(f"swap:{self.wallet_id}")
        moves = [
            Move(sold, sold_unit, trader, self.wallet_id, contract_id),
            Move(bought, bought_unit, self.wallet_id, trader, contract_id),
        ]
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, self.wallet_id, self.token_symbol, "SWAP", contract_id),
        ))

    def eth_to_token_swap_output(self, buyer: str, tokens_bought: Decimal, max_eth: Decimal) -> Decimal:
        """Buy exactly tokens_bought; returns native spent."""
        eth_sold = self.eth_to_token_output_price(tokens_bought)
        if eth_sold > max_eth:
            raise SlippageExceeded(f"{self.wallet_id}: needs {eth_sold} {self.native_symbol}, max {max_eth}")
        self._swap(buyer, self.native_symbol, eth_sold, self.token_symbol, tokens_bought)
        return eth_sold

    def token_to_eth_swap_input(self, seller: str, tokens_sold: Decimal, min_eth: Decimal = Decimal("0")) -> Decimal:
        """Sell exactly tokens_sold; returns native received."""
        eth_bought = self.token_to_eth_input_price(tokens_sold)
        if eth_bought < min_eth:
            raise SlippageExceeded(f"{self.wallet_id}: returns {eth_bought} {self.native_symbol}, min {min_eth}")
        self._swap(seller, self.token_symbol, tokens_sold, self.native_symbol, eth_bought)
        return eth_bought


class UniswapOptionExchange:
    """
    Two-hop option venue: stable -> native in one pool, native -> option in another.

    The premium for N option units is the stable needed to buy the native
    needed to buy N option units, each hop priced by its own pool.
    """

    def __init__(self, ledger: Ledger, stable_pool: ConstantProductPool, option_pool: ConstantProductPool):
        if stable_pool.native_symbol != option_pool.native_symbol:
            raise ValueError("both pools must trade against the same native asset")
        self.ledger = ledger
        self.stable_pool = stable_pool
        self.option_pool = option_pool
        self.stable_symbol = stable_pool.token_symbol
        self.option_symbol = option_pool.token_symbol

    def __repr__(self):
        return f"UniswapOptionExchange({self.stable_symbol}->{self.option_pool.native_symbol}->{self.option_symbol})"

    def quote_option_cost(self, amount: Decimal) -> Decimal:
        amount = to_decimal(amount)
        if amount == 0:
            return Decimal("0")
        eth_needed = self.option_pool.eth_to_token_output_price(amount)
        return self.stable_pool.token_to_eth_output_price(eth_needed)

    def acquire_option(self, buyer: str, amount: Decimal, max_stable_spend: Decimal) -> Decimal:
        """
        Buy exactly amount option units for buyer.

        The native leg moves pool to pool; the buyer only ever holds stable
        and option units.

        Raises:
            SlippageExceeded: If the stable cost exceeds max_stable_spend
            InsufficientBalance: If buyer cannot pay
        """
        amount = to_decimal(amount)
        if amount == 0:
            return Decimal("0")
        eth_needed = self.option_pool.eth_to_token_output_price(amount)
        stable_cost = self.stable_pool.token_to_eth_output_price(eth_needed)
        if stable_cost > max_stable_spend:
            raise SlippageExceeded(
                f"{amount} {self.option_symbol} costs {stable_cost} {self.stable_symbol}, max {max_stable_spend}"
            )
        held = self.ledger.get_balance(buyer, self.stable_symbol)
        if held < stable_cost:
            raise InsufficientBalance(f"{buyer} holds {held} {self.stable_symbol}, needs {stable_cost}")

        native = self.option_pool.native_symbol
        contract_id = self.ledger.new_contract_id("swap:option")
        moves: List[Move] = [
            Move(stable_cost, self.stable_symbol, buyer, self.stable_pool.wallet_id, contract_id),
            Move(eth_needed, native, self.stable_pool.wallet_id, self.option_pool.wallet_id, contract_id),
            Move(amount, self.option_symbol, self.option_pool.wallet_id, buyer, contract_id),
        ]
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, "uniswap", self.option_symbol, "BUY_OPTION", contract_id),
        ))
        logger.info("%s bought %s %s for %s %s", buyer, amount, self.option_symbol, stable_cost, self.stable_symbol)
        return stable_cost

    def sell_option_leg(self, seller: str, amount: Decimal, min_stable_out: Decimal = Decimal("0")) -> Decimal:
        """
        Sell exactly amount option units from seller into stable.

        Raises:
            SlippageExceeded: If the stable received falls below min_stable_out
        """
        amount = to_decimal(amount)
        if amount == 0:
            return Decimal("0")
        eth_out = self.option_pool.token_to_eth_input_price(amount)
        stable_out = self.stable_pool.eth_to_token_input_price(eth_out)
        if stable_out < min_stable_out:
            raise SlippageExceeded(
                f"{amount} {self.option_symbol} returns {stable_out} {self.stable_symbol}, min {min_stable_out}"
            )

        native = self.option_pool.native_symbol
        contract_id = self.ledger.new_contract_id("swap:option")
        moves = [Move(amount, self.option_symbol, seller, self.option_pool.wallet_id, contract_id)]
        if eth_out > 0:
            moves.append(Move(eth_out, native, self.option_pool.wallet_id, self.stable_pool.wallet_id, contract_id))
        if stable_out > 0:
            moves.append(Move(stable_out, self.stable_symbol, self.stable_pool.wallet_id, seller, contract_id))
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, "uniswap", self.option_symbol, "SELL_OPTION", contract_id),
        ))
        logger.info("%s sold %s %s for %s %s", seller, amount, self.option_symbol, stable_out, self.stable_symbol)
        return stable_out


class FixedPriceOptionExchange:
    """
    Dealer that sells option units at a fixed stable price from its inventory.

    Buys them back at bid_price (defaults to the ask). Prices can be moved
    with set_price to simulate a market that drifted after a quote.
    """

    def __init__(
        self,
        ledger: Ledger,
        option_symbol: str,
        stable_symbol: str,
        price: Decimal,
        dealer: str = "dealer",
        bid_price: Optional[Decimal] = None,
    ):
        self.ledger = ledger
        self.option_symbol = option_symbol
        self.stable_symbol = stable_symbol
        self.dealer = ledger.ensure_wallet(dealer)
        self.price = to_decimal(price, "price")
        self.bid_price = to_decimal(bid_price, "bid_price") if bid_price is not None else self.price

    def __repr__(self):
        return f"FixedPriceOptionExchange({self.option_symbol} @ {self.price} {self.stable_symbol})"

    def set_price(self, price: Decimal, bid_price: Optional[Decimal] = None) -> None:
        self.price = to_decimal(price, "price")
        self.bid_price = to_decimal(bid_price, "bid_price") if bid_price is not None else self.price

    def quote_option_cost(self, amount: Decimal) -> Decimal:
        amount = to_decimal(amount)
        return quantize_up(self.ledger.get_unit(self.stable_symbol), amount * self.price)

    def acquire_option(self, buyer: str, amount: Decimal, max_stable_spend: Decimal) -> Decimal:
        amount = to_decimal(amount)
        if amount == 0:
            return Decimal("0")
        cost = self.quote_option_cost(amount)
        if cost > max_stable_spend:
            raise SlippageExceeded(
                f"{amount} {self.option_symbol} costs {cost} {self.stable_symbol}, max {max_stable_spend}"
            )
        inventory = self.ledger.get_balance(self.dealer, self.option_symbol)
        if inventory < amount:
            raise InsufficientLiquidity(f"{self.dealer} holds {inventory} {self.option_symbol}, asked {amount}")
        held = self.ledger.get_balance(buyer, self.stable_symbol)
        if held < cost:
            raise InsufficientBalance(f"{buyer} holds {held} {self.stable_symbol}, needs {cost}")
        contract_id = self.ledger.new_contract_id("dealer")
        moves = [Move(amount, self.option_symbol, self.dealer, buyer, contract_id)]
        if cost > 0:
            moves.append(Move(cost, self.stable_symbol, buyer, self.dealer, contract_id))
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, self.dealer, self.option_symbol, "BUY_OPTION", contract_id),
        ))
        return cost

    def sell_option_leg(self, seller: str, amount: Decimal, min_stable_out: Decimal = Decimal("0")) -> Decimal:
        amount = to_decimal(amount)
        if amount == 0:
            return Decimal("0")
        proceeds = quantize_down(self.ledger.get_unit(self.stable_symbol), amount * self.bid_price)
        if proceeds < min_stable_out:
            raise SlippageExceeded(
                f"{amount} {self.option_symbol} returns {proceeds} {self.stable_symbol}, min {min_stable_out}"
            )
        contract_id = self.ledger.new_contract_id("dealer")
        moves = [Move(amount, self.option_symbol, seller, self.dealer, contract_id)]
        if proceeds > 0:
            moves.append(Move(proceeds, self.stable_symbol, self.dealer, seller, contract_id))
        self.ledger.commit(build_transaction(
            self.ledger, moves,
            origin=TransactionOrigin(OriginType.CONTRACT, self.dealer, self.option_symbol, "SELL_OPTION", contract_id),
        ))
        return proceeds
