"""
savetoken - Insured savings as one wrapped token

Bundles an interest-bearing position (cDAI) and a put-option position
(ocDAI) into a single fungible balance (saveDAI), on a double-entry ledger.

Usage:
    from decimal import Decimal
    from savetoken import SaveTokenConfig, deploy, issue, approve, write_options, seed_liquidity

    dep = deploy(SaveTokenConfig())
    write_options(dep, "writer", Decimal("10000"), receiver="lp")
    seed_liquidity(dep, "lp",
                   stable_pool=(Decimal("50"), Decimal("10000")),
                   option_pool=(Decimal("5"), Decimal("10000")))

    issue(dep.ledger, "DAI", "alice", Decimal("1000"))
    approve(dep.ledger, "DAI", "alice", dep.save_token.address, Decimal("1000"))
    dep.save_token.mint("alice", Decimal("100"))
    dep.save_token.transfer("alice", "bob", Decimal("40"))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    custody_transfer_rule,
    quantize_down,
    quantize_up,
    to_decimal,
    SYSTEM_WALLET,
    UNIT_TYPE_STABLE,
    UNIT_TYPE_INTEREST_BEARING,
    UNIT_TYPE_OPTION_TOKEN,
    UNIT_TYPE_NATIVE,
    UNIT_TYPE_WRAPPED_POSITION,
    UNIT_TYPE_REWARD,
)

# Errors
from .core import (
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferRuleViolation,
    TransactionRejected,
    Paused,
    NotPaused,
    InsufficientBalance,
    InsufficientVaultBalance,
    InsufficientAllowance,
    InsufficientApproval,
    NoVaultForHolder,
    OptionExpired,
    OutsideExerciseWindow,
    NotOwner,
    EmptyName,
    SlippageExceeded,
    QuoteStale,
    ReentrantCall,
    InsufficientLiquidity,
    ExerciseShortfall,
)

# Ledger
from .ledger import Ledger

# Fungible token operations
from .token import (
    allowance,
    compute_approve,
    compute_transfer,
    compute_transfer_from,
    compute_issue,
)
# Bound after the .token submodule import so the name is the factory, not the module
from .core import token

# Venues
from .exchange import (
    OptionExchange,
    ConstantProductPool,
    UniswapOptionExchange,
    FixedPriceOptionExchange,
)

# Lending
from .lending import (
    LendingMarket,
    CompoundMarket,
    LendingAdapter,
    year_fraction,
)

# Options and expiry
from .expiry import ExpiryPhase, ExpiryState, compute_expiry_state
from .options import OptionProtocol, OTokenProtocol

# Vaults
from .vaults import Vault, VaultRegistry

# Wrapped token
from .quotes import PositionQuote, check_quote
from .save_token import SaveToken, SaveTokenEvent

# Administration
from .admin import (
    compute_pause,
    compute_unpause,
    compute_update_token_name,
    compute_transfer_ownership,
)

# Configuration and wiring
from .config import (
    TokenSpec,
    MarketParams,
    NetworkAddresses,
    NETWORKS,
    SaveTokenConfig,
    get_network,
    load_config,
)
from .deployment import (
    Deployment,
    deploy,
    register_units,
    issue,
    approve,
    write_options,
    seed_liquidity,
)
from .logging_config import setup_logging, get_logger

__version__ = "0.1.0"
