"""
Payment ledger: creation rules and the intent state machine.

Every status change goes through transition_status, which enforces the
allowed transitions and the expiry cut-off before asking the store for
an atomic compare-and-set.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import structlog

from .config import DepositConfig
from .db import IntentStore
from .domain import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    IntentStatus,
    Network,
    PaymentIntent,
    as_decimal,
    utcnow,
)
from .errors import ValidationError

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.PENDING: frozenset(
        {
            IntentStatus.PROCESSING,
            IntentStatus.CONFIRMED,
            IntentStatus.EXPIRED,
            IntentStatus.CANCELLED,
        }
    ),
    # processing -> processing refreshes the partial confirmation record
    IntentStatus.PROCESSING: frozenset(
        {
            IntentStatus.PROCESSING,
            IntentStatus.CONFIRMED,
            IntentStatus.EXPIRED,
            IntentStatus.CANCELLED,
        }
    ),
    IntentStatus.CONFIRMED: frozenset({IntentStatus.COMPLETED, IntentStatus.FAILED}),
}


@dataclass
class NetworkStats:
    count: int = 0
    amount: Decimal = Decimal(0)
    success_rate: float = 0.0


@dataclass
class PaymentStats:
    """Aggregate view over all intents, derived on demand."""

    total_payments: int = 0
    total_amount: Decimal = Decimal(0)
    success_rate: float = 0.0
    average_amount: Decimal = Decimal(0)
    by_status: dict[str, int] = field(default_factory=dict)
    by_network: dict[str, NetworkStats] = field(default_factory=dict)


def _rate(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


class PaymentLedger:
    """Creates payment intents and guards their lifecycle."""

    def __init__(
        self,
        store: IntentStore,
        config: DepositConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock or store.clock or utcnow

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    def create_intent(self, user_id: str, amount: Any, network: Any) -> PaymentIntent:
        """
        Create a pending intent for user_id to deposit amount on network.

        Raises:
            ValidationError: amount outside [min_amount, max_amount], or
                network not supported.
        """
        settings = self.config.settings

        if not user_id:
            raise ValidationError("User id is required")

        try:
            value = as_decimal(amount)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Invalid amount: {amount!r}") from None
        if not value.is_finite():
            raise ValidationError(f"Invalid amount: {amount!r}")

        if value < settings.min_amount:
            raise ValidationError(f"Amount must be at least {settings.min_amount} USDT")
        if value > settings.max_amount:
            raise ValidationError(f"Amount cannot exceed {settings.max_amount} USDT")

        if not self.config.is_supported(network):
            raise ValidationError(f"Unsupported network: {network}")
        network_config = self.config.network(Network(network))

        now = self.clock()
        intent = PaymentIntent(
            id=str(uuid.uuid4()),
            user_id=user_id,
            network=network_config.network,
            expected_amount=value,
            destination_address=network_config.wallet_address,
            status=IntentStatus.PENDING,
            required_confirmations=network_config.min_confirmations,
            created_at=now,
            expires_at=now + self.config.intent_ttl,
            metadata={"created_by": "payment-ledger"},
        )
        self.store.insert(intent)

        logger.info(
            "payment_intent_created",
            intent_id=intent.id,
            user_id=user_id,
            network=intent.network.value,
            amount=str(value),
            expires_at=intent.expires_at.isoformat(),
        )
        return intent

    def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        return self.store.get(intent_id)

    def list_intents_for_user(self, user_id: str) -> list[PaymentIntent]:
        """User's intents, newest first."""
        return self.store.list_for_user(user_id)

    def list_pending_intents_for_network(self, network: Network) -> list[PaymentIntent]:
        """Open (pending or processing) intents on one network, oldest first."""
        return self.store.list_by_status(OPEN_STATUSES, network=Network(network))

    def list_intents_by_status(self, status: IntentStatus) -> list[PaymentIntent]:
        return self.store.list_by_status([status])

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition_status(
        self,
        intent_id: str,
        new_status: IntentStatus,
        metadata: Optional[dict[str, Any]] = None,
        transaction_hash: Optional[str] = None,
        confirmations: Optional[int] = None,
        block_number: Optional[int] = None,
    ) -> bool:
        """
        Apply a status transition and merge metadata.

        Returns True only when the transition was applied. Missing intents,
        transitions out of terminal states, disallowed transitions, and
        non-expiry moves of an expired open intent are logged and refused.
        """
        intent = self.store.get(intent_id)
        if intent is None:
            logger.warning("transition_unknown_intent", intent_id=intent_id, status=new_status.value)
            return False

        current = intent.status
        if current in TERMINAL_STATUSES:
            logger.warning(
                "transition_from_terminal_state",
                intent_id=intent_id,
                current=current.value,
                requested=new_status.value,
            )
            return False

        if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            logger.warning(
                "transition_not_allowed",
                intent_id=intent_id,
                current=current.value,
                requested=new_status.value,
            )
            return False

        now = self.clock()
        if intent.is_open and intent.is_expired_at(now) and new_status != IntentStatus.EXPIRED:
            logger.warning(
                "transition_after_expiry",
                intent_id=intent_id,
                current=current.value,
                requested=new_status.value,
            )
            return False

        fields: dict[str, Any] = {}
        if transaction_hash is not None:
            fields["observed_transaction_hash"] = transaction_hash
        if confirmations is not None:
            fields["observed_confirmations"] = confirmations
        if block_number is not None:
            fields["observed_block_number"] = block_number
        if new_status in TERMINAL_STATUSES:
            fields["completed_at"] = now

        applied = self.store.compare_and_set(
            intent_id,
            expected_status=current,
            new_status=new_status,
            fields=fields,
            metadata_updates=metadata,
        )
        if not applied:
            logger.warning(
                "transition_conflict",
                intent_id=intent_id,
                expected=current.value,
                requested=new_status.value,
            )
            return False

        logger.info(
            "payment_status_changed",
            intent_id=intent_id,
            old_status=current.value,
            new_status=new_status.value,
        )
        return True

    def expire_stale(self) -> int:
        """Move every open intent whose TTL has lapsed to expired. Returns the count."""
        now = self.clock()
        expired = 0
        for intent in self.store.list_by_status(OPEN_STATUSES):
            if not intent.is_expired_at(now):
                continue
            if self.transition_status(intent.id, IntentStatus.EXPIRED):
                expired += 1
                logger.info("payment_expired", intent_id=intent.id, user_id=intent.user_id)
        return expired

    def cancel_intent(self, intent_id: str, user_id: str) -> bool:
        """Owner cancellation of an intent nobody has paid into yet."""
        intent = self.store.get(intent_id)
        if intent is None or intent.user_id != user_id:
            return False
        if intent.status != IntentStatus.PENDING:
            return False
        return self.transition_status(
            intent_id,
            IntentStatus.CANCELLED,
            metadata={"cancelled_by": user_id},
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_payment_stats(self) -> PaymentStats:
        intents = self.store.list_all()
        completed = [i for i in intents if i.status == IntentStatus.COMPLETED]
        total_amount = sum((i.expected_amount for i in completed), Decimal(0))

        by_status = {status.value: 0 for status in IntentStatus}
        for intent in intents:
            by_status[intent.status.value] += 1

        by_network = {}
        for network in Network:
            on_network = [i for i in intents if i.network == network]
            done = [i for i in on_network if i.status == IntentStatus.COMPLETED]
            by_network[network.value] = NetworkStats(
                count=len(on_network),
                amount=sum((i.expected_amount for i in done), Decimal(0)),
                success_rate=_rate(len(done), len(on_network)),
            )

        return PaymentStats(
            total_payments=len(intents),
            total_amount=total_amount,
            success_rate=_rate(len(completed), len(intents)),
            average_amount=total_amount / len(completed) if completed else Decimal(0),
            by_status=by_status,
            by_network=by_network,
        )
