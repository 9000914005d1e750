"""
FoodVest Deposit Relayer

Watches the FoodVest USDT wallets on Tron, BNB Smart Chain and Ethereum,
matches incoming transfers to open payment intents, and credits confirmed
deposits to user balances exactly once.

Usage:
    # List recent transfers to the configured Tron wallet
    foodvest-relayer check TRC20

    # Show wallet balances
    foodvest-relayer balances

    # Run the relayer
    foodvest-relayer run --config .env

    # Run one cycle (for testing)
    foodvest-relayer run --once
"""

__version__ = "0.1.0"

from .config import DepositConfig, NetworkConfig, Settings
from .db import IntentStore
from .domain import BlockchainTransfer, IntentStatus, Network, PaymentIntent, TransferStatus
from .errors import DepositError, SettlementError, UpstreamError, ValidationError
from .ledger import PaymentLedger
from .reconciler import ReconciliationEngine
from .relayer import DepositRelayer
from .service import DepositService, build_adapters
from .settlement import InMemoryBalanceLedger, SettlementProcessor

__all__ = [
    "__version__",
    "DepositConfig",
    "NetworkConfig",
    "Settings",
    "IntentStore",
    "BlockchainTransfer",
    "IntentStatus",
    "Network",
    "PaymentIntent",
    "TransferStatus",
    "DepositError",
    "SettlementError",
    "UpstreamError",
    "ValidationError",
    "PaymentLedger",
    "ReconciliationEngine",
    "DepositRelayer",
    "DepositService",
    "build_adapters",
    "InMemoryBalanceLedger",
    "SettlementProcessor",
]
