"""
Reconciliation engine - matches observed USDT transfers to open payment intents.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import structlog

from .chains import DEFAULT_TOLERANCE, ChainAdapter
from .domain import (
    BlockchainTransfer,
    IntentStatus,
    Network,
    PaymentIntent,
    TransferStatus,
    TransferValidation,
)
from .errors import UpstreamError, ValidationError
from .inflight import InFlightGuard
from .ledger import PaymentLedger

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    """Summary of one network's reconciliation pass."""

    network: Network
    from_height: int = 0
    to_height: int = 0
    candidates: int = 0
    confirmed: list[str] = field(default_factory=list)
    processing: list[str] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None


class ReconciliationEngine:
    """
    Bridges chain activity to intent state. Never credits balances.

    Per network and cycle:
    1. Re-verify processing intents by their observed hash
    2. Skip the network if no new blocks since the last pass
    3. Match new successful transfers to open intents (oldest first)
    4. Advance the network's last checked height
    """

    def __init__(
        self,
        ledger: PaymentLedger,
        adapters: dict[Network, ChainAdapter],
        guard: Optional[InFlightGuard] = None,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        page_size: int = 50,
    ):
        self.ledger = ledger
        self.adapters = adapters
        self.guard = guard or InFlightGuard()
        self.tolerance = tolerance
        self.page_size = page_size
        self.last_checked: dict[Network, int] = {}
        self._initialized = False

    def initialize(self) -> None:
        """Start every network at its current height; earlier transfers are never scanned."""
        for network, adapter in self.adapters.items():
            try:
                height = adapter.get_current_block_height()
            except UpstreamError as e:
                logger.error("initial_height_unavailable", network=network.value, error=str(e))
                height = 0
            self.last_checked[network] = height
            logger.info("reconciler_network_initialized", network=network.value, height=height)
        self._initialized = True

    def reconcile_all(self, expire_stale: bool = True) -> list[ReconcileResult]:
        """
        Run one pass over every network.

        A failure on one network never stops the others. When expire_stale
        is set, lapsed intents are expired after all networks are processed.
        """
        if not self._initialized:
            self.initialize()

        results = []
        for network in self.adapters:
            try:
                results.append(self.reconcile_network(network))
            except Exception as e:
                logger.error("network_reconcile_error", network=network.value, error=str(e))
                results.append(ReconcileResult(network=network, error=str(e)))

        if expire_stale:
            self.ledger.expire_stale()
        return results

    def reconcile_network(self, network: Network) -> ReconcileResult:
        adapter = self.adapters[network]
        last_checked = self.last_checked.get(network, 0)
        result = ReconcileResult(network=network, from_height=last_checked, to_height=last_checked)

        self._follow_up_processing(adapter, result)

        try:
            current_height = adapter.get_current_block_height()
            if current_height <= last_checked:
                result.skipped = True
                return result

            transfers = adapter.list_incoming_transfers(
                adapter.config.wallet_address,
                limit=self.page_size,
            )
        except UpstreamError as e:
            logger.error(
                "network_poll_failed",
                network=network.value,
                address=adapter.config.wallet_address,
                error=str(e),
            )
            result.error = str(e)
            return result

        candidates = [
            t
            for t in transfers
            if t.block_number is not None
            and t.block_number > last_checked
            and t.status == TransferStatus.SUCCESS
        ]
        result.candidates = len(candidates)

        for transfer in candidates:
            try:
                self._match_transfer(adapter, transfer, result)
            except Exception as e:
                logger.error(
                    "transfer_processing_error",
                    network=network.value,
                    tx_hash=transfer.hash,
                    error=str(e),
                )

        self.last_checked[network] = current_height
        result.to_height = current_height

        logger.debug(
            "network_reconciled",
            network=network.value,
            from_height=last_checked,
            to_height=current_height,
            candidates=result.candidates,
            confirmed=len(result.confirmed),
            processing=len(result.processing),
        )
        return result

    def process_transaction_hash(self, network: Network, tx_hash: str) -> Optional[str]:
        """
        Match a transfer reported by hash (e.g. submitted by the payer).

        Returns the id of the intent it was applied to, or None.

        Raises:
            ValidationError: network has no adapter.
            UpstreamError: the transfer lookup failed.
        """
        try:
            adapter = self.adapters[Network(network)]
        except (KeyError, ValueError):
            raise ValidationError(f"Unsupported network: {network}") from None

        transfer = adapter.get_transfer_by_hash(tx_hash)
        if transfer is None:
            logger.info("submitted_transfer_not_found", network=adapter.network.value, tx_hash=tx_hash)
            return None

        result = ReconcileResult(network=adapter.network)
        return self._match_transfer(adapter, transfer, result)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _match_transfer(
        self,
        adapter: ChainAdapter,
        transfer: BlockchainTransfer,
        result: ReconcileResult,
    ) -> Optional[str]:
        """Apply transfer to the first open intent it satisfies."""
        network = adapter.network

        claimed = self.ledger.store.find_by_transaction_hash(transfer.hash)
        if claimed is not None:
            logger.debug(
                "transfer_already_claimed",
                network=network.value,
                tx_hash=transfer.hash,
                intent_id=claimed.id,
            )
            return None

        try:
            amount = adapter.to_amount(transfer.raw_value)
        except ValueError as e:
            logger.warning("transfer_amount_invalid", network=network.value, tx_hash=transfer.hash, error=str(e))
            return None

        now = self.ledger.clock()
        for intent in self.ledger.list_pending_intents_for_network(network):
            if intent.is_expired_at(now):
                continue
            if intent.observed_transaction_hash and intent.observed_transaction_hash != transfer.hash:
                continue
            if abs(amount - intent.expected_amount) > self.tolerance:
                continue

            with self.guard.claim(intent.id) as acquired:
                if not acquired:
                    logger.info("intent_in_flight", intent_id=intent.id, tx_hash=transfer.hash)
                    continue

                validation = adapter.validate_transfer(
                    transfer.hash,
                    intent.expected_amount,
                    intent.destination_address,
                    required_confirmations=intent.required_confirmations,
                    tolerance=self.tolerance,
                )
                if self._apply_validation(intent, transfer.hash, validation, result):
                    return intent.id

        logger.info(
            "transfer_unmatched",
            network=network.value,
            tx_hash=transfer.hash,
            amount=str(amount),
        )
        return None

    def _follow_up_processing(self, adapter: ChainAdapter, result: ReconcileResult) -> None:
        """Re-verify partially confirmed intents until they are final."""
        now = self.ledger.clock()
        intents = self.ledger.store.list_by_status([IntentStatus.PROCESSING], network=adapter.network)

        for intent in intents:
            if not intent.observed_transaction_hash or intent.is_expired_at(now):
                continue

            try:
                with self.guard.claim(intent.id) as acquired:
                    if not acquired:
                        continue
                    validation = adapter.validate_transfer(
                        intent.observed_transaction_hash,
                        intent.expected_amount,
                        intent.destination_address,
                        required_confirmations=intent.required_confirmations,
                        tolerance=self.tolerance,
                    )
                    if validation.is_valid or validation.awaiting_confirmations:
                        self._apply_validation(intent, intent.observed_transaction_hash, validation, result)
                    else:
                        logger.warning(
                            "processing_transfer_invalid",
                            intent_id=intent.id,
                            tx_hash=intent.observed_transaction_hash,
                            reason=validation.reason,
                        )
            except Exception as e:
                logger.error(
                    "processing_follow_up_error",
                    intent_id=intent.id,
                    tx_hash=intent.observed_transaction_hash,
                    error=str(e),
                )

    def _apply_validation(
        self,
        intent: PaymentIntent,
        tx_hash: str,
        validation: TransferValidation,
        result: ReconcileResult,
    ) -> bool:
        """Record a validation outcome on the intent. Returns True when the intent took the transfer."""
        if validation.is_valid:
            transfer = validation.transfer
            applied = self.ledger.transition_status(
                intent.id,
                IntentStatus.CONFIRMED,
                metadata={
                    "amount_received": str(validation.normalized_amount),
                    "processed_at": self.ledger.clock().isoformat(),
                },
                transaction_hash=tx_hash,
                confirmations=validation.confirmations,
                block_number=transfer.block_number if transfer else None,
            )
            if applied:
                result.confirmed.append(intent.id)
                logger.info(
                    "payment_confirmed",
                    intent_id=intent.id,
                    network=intent.network.value,
                    tx_hash=tx_hash,
                    confirmations=validation.confirmations,
                )
            return applied

        if validation.awaiting_confirmations:
            if (
                intent.status == IntentStatus.PROCESSING
                and intent.observed_confirmations == validation.confirmations
            ):
                # Already recorded at this depth
                return True

            transfer = validation.transfer
            applied = self.ledger.transition_status(
                intent.id,
                IntentStatus.PROCESSING,
                metadata={"amount_received": str(validation.normalized_amount)},
                transaction_hash=tx_hash,
                confirmations=validation.confirmations,
                block_number=transfer.block_number if transfer else None,
            )
            if applied:
                result.processing.append(intent.id)
                logger.info(
                    "payment_awaiting_confirmations",
                    intent_id=intent.id,
                    tx_hash=tx_hash,
                    confirmations=validation.confirmations,
                    required=intent.required_confirmations,
                )
            return applied

        logger.info(
            "transfer_rejected",
            intent_id=intent.id,
            tx_hash=tx_hash,
            reason=validation.reason,
        )
        return False
