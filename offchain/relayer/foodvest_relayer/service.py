"""
Deposit service - wires config, adapters, store, and the pipeline together.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from .chains import ChainAdapter
from .config import DepositConfig
from .db import IntentStore
from .domain import Network, PaymentIntent
from .errors import UpstreamError
from .etherscan import BscScanAdapter, EtherscanAdapter
from .inflight import InFlightGuard
from .ledger import PaymentLedger, PaymentStats
from .reconciler import ReconciliationEngine
from .relayer import DepositRelayer
from .settlement import InMemoryBalanceLedger, SettlementProcessor, SettlementSink
from .tron import TronAdapter

logger = structlog.get_logger()

ADAPTER_TYPES: dict[Network, type[ChainAdapter]] = {
    Network.TRC20: TronAdapter,
    Network.BEP20: BscScanAdapter,
    Network.ERC20: EtherscanAdapter,
}


def fetch_network_balances(adapters: dict[Network, ChainAdapter]) -> dict[Network, dict[str, Any]]:
    """Live wallet balance per network; a failing explorer is reported, not raised."""
    balances: dict[Network, dict[str, Any]] = {}
    for network, adapter in adapters.items():
        address = adapter.config.wallet_address
        try:
            balance: Optional[Decimal] = adapter.get_balance(address)
            error = None
        except UpstreamError as e:
            logger.error("balance_fetch_failed", network=network.value, address=address, error=str(e))
            balance, error = None, str(e)
        balances[network] = {"address": address, "balance": balance, "error": error}
    return balances


def build_adapters(config: DepositConfig) -> dict[Network, ChainAdapter]:
    """One adapter per supported network."""
    settings = config.settings
    return {
        network: ADAPTER_TYPES[network](
            network_config,
            timeout=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
        )
        for network, network_config in config.networks.items()
    }


class DepositService:
    """
    Entry point for callers (API, CLI).

    Owns one intent store, one adapter per network, and one in-flight
    guard shared by reconciliation and settlement.
    """

    def __init__(
        self,
        config: DepositConfig,
        store: IntentStore,
        adapters: dict[Network, ChainAdapter],
        sink: SettlementSink,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = config.settings
        self.config = config
        self.store = store
        self.adapters = adapters
        self.sink = sink

        self.guard = InFlightGuard()
        self.ledger = PaymentLedger(store, config, clock=clock)
        self.engine = ReconciliationEngine(
            self.ledger,
            adapters,
            guard=self.guard,
            tolerance=settings.amount_tolerance,
            page_size=settings.transfer_page_size,
        )
        self.settlement = SettlementProcessor(self.ledger, sink, guard=self.guard)
        self.relayer = DepositRelayer(
            self.ledger,
            self.engine,
            self.settlement,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    @classmethod
    def from_config(
        cls,
        config: DepositConfig,
        sink: Optional[SettlementSink] = None,
    ) -> "DepositService":
        """Build the service with real adapters and the configured database."""
        return cls(
            config=config,
            store=IntentStore(config.settings.database_url),
            adapters=build_adapters(config),
            sink=sink or InMemoryBalanceLedger(),
        )

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "DepositService":
        return cls.from_config(DepositConfig.from_env(env_path))

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    def create_payment_intent(self, user_id: str, amount: Any, network: Any) -> PaymentIntent:
        return self.ledger.create_intent(user_id, amount, network)

    def get_payment_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        return self.ledger.get_intent(intent_id)

    def list_payment_intents_for_user(self, user_id: str) -> list[PaymentIntent]:
        return self.ledger.list_intents_for_user(user_id)

    def cancel_payment_intent(self, intent_id: str, user_id: str) -> bool:
        return self.ledger.cancel_intent(intent_id, user_id)

    def get_payment_stats(self) -> PaymentStats:
        return self.ledger.get_payment_stats()

    def submit_transaction_hash(self, network: Any, tx_hash: str) -> Optional[str]:
        """Match a payer-reported transaction hash against open intents."""
        return self.engine.process_transaction_hash(network, tx_hash)

    def process_all_confirmed_payments(self) -> int:
        return self.settlement.process_all_confirmed_payments()

    def get_network_balances(self) -> dict[Network, dict[str, Any]]:
        return fetch_network_balances(self.adapters)

    def close(self) -> None:
        self.relayer.stop()
        for adapter in self.adapters.values():
            adapter.close()
        self.store.close()
