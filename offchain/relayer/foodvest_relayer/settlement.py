"""
Settlement: exactly-once balance credit for confirmed deposits.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Protocol

import structlog

from .domain import IntentStatus, utcnow
from .errors import SettlementError
from .inflight import InFlightGuard
from .ledger import PaymentLedger

logger = structlog.get_logger()

# USD value of one share, used for total_value
SHARE_PRICE = Decimal("0.01")


@dataclass
class CreditReceipt:
    """Result of a successful balance credit."""

    transaction_id: str
    balance_before: Decimal
    balance_after: Decimal


class SettlementSink(Protocol):
    """Ledger capability the settlement step credits deposits into."""

    def credit_user_balance(self, user_id: str, amount: Decimal, reference: str) -> CreditReceipt:
        """
        Credit amount USD to user_id.

        Repeating a reference must return the original receipt without
        crediting again.

        Raises:
            SettlementError: user unknown or credit rejected.
        """
        ...


@dataclass
class UserBalance:
    user_id: str
    usd_balance: Decimal = Decimal(0)
    share_balance: Decimal = Decimal(0)
    total_value: Decimal = Decimal(0)
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class LedgerTransaction:
    id: str
    user_id: str
    type: str
    amount: Decimal
    currency: str
    status: str
    timestamp: datetime
    description: str
    reference: Optional[str] = None


def generate_transaction_id() -> str:
    return f"tx_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class InMemoryBalanceLedger:
    """Process-local user balance ledger. Users must be initialized before they can be credited."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._lock = threading.Lock()
        self._balances: dict[str, UserBalance] = {}
        self._transactions: list[LedgerTransaction] = []
        self._receipts: dict[str, CreditReceipt] = {}

    def initialize_user(self, user_id: str) -> UserBalance:
        """Create a zero balance for user_id; an existing balance is left untouched."""
        with self._lock:
            balance = self._balances.get(user_id)
            if balance is None:
                balance = UserBalance(user_id=user_id, last_updated=self.clock())
                self._balances[user_id] = balance
                logger.info("user_initialized", user_id=user_id)
            return balance

    def credit_user_balance(self, user_id: str, amount: Decimal, reference: str) -> CreditReceipt:
        if amount <= 0:
            raise SettlementError(user_id, f"Deposit amount must be positive, got {amount}")

        with self._lock:
            balance = self._balances.get(user_id)
            if balance is None:
                raise SettlementError(user_id, "User not found")

            existing = self._receipts.get(reference)
            if existing is not None:
                logger.warning("duplicate_credit_ignored", user_id=user_id, reference=reference)
                return existing

            before = balance.usd_balance
            balance.usd_balance = before + amount
            balance.total_value = balance.usd_balance + balance.share_balance * SHARE_PRICE
            balance.last_updated = self.clock()

            transaction = LedgerTransaction(
                id=generate_transaction_id(),
                user_id=user_id,
                type="deposit",
                amount=amount,
                currency="USD",
                status="completed",
                timestamp=balance.last_updated,
                description=f"Balance deposit of ${amount}",
                reference=reference,
            )
            self._transactions.append(transaction)
            receipt = CreditReceipt(
                transaction_id=transaction.id,
                balance_before=before,
                balance_after=balance.usd_balance,
            )
            self._receipts[reference] = receipt

        logger.info(
            "balance_credited",
            user_id=user_id,
            amount=str(amount),
            transaction_id=transaction.id,
            reference=reference,
        )
        return receipt

    def get_user_balance(self, user_id: str) -> Optional[UserBalance]:
        with self._lock:
            return self._balances.get(user_id)

    def get_user_transactions(self, user_id: str) -> list[LedgerTransaction]:
        with self._lock:
            return [t for t in self._transactions if t.user_id == user_id]


@dataclass
class SettlementSummary:
    completed: int = 0
    failed: int = 0


class SettlementProcessor:
    """
    Drives confirmed intents to completed or failed.

    Each intent is credited at most once: only intents currently in
    `confirmed` are submitted, under the per-intent in-flight guard, and
    a failed credit is final until an operator re-drive.
    """

    def __init__(
        self,
        ledger: PaymentLedger,
        sink: SettlementSink,
        guard: Optional[InFlightGuard] = None,
    ):
        self.ledger = ledger
        self.sink = sink
        self.guard = guard or InFlightGuard()

    def settle_intent(self, intent_id: str) -> bool:
        """Credit one confirmed intent. Returns True when it reached completed."""
        return self._settle(intent_id) == IntentStatus.COMPLETED

    def _settle(self, intent_id: str) -> Optional[IntentStatus]:
        with self.guard.claim(intent_id) as acquired:
            if not acquired:
                logger.info("settlement_in_flight", intent_id=intent_id)
                return None

            # Status may have moved since the caller listed it
            intent = self.ledger.get_intent(intent_id)
            if intent is None or intent.status != IntentStatus.CONFIRMED:
                logger.debug(
                    "settlement_skipped",
                    intent_id=intent_id,
                    status=intent.status.value if intent else None,
                )
                return None

            try:
                receipt = self.sink.credit_user_balance(
                    intent.user_id,
                    intent.expected_amount,
                    reference=intent.id,
                )
            except Exception as e:
                logger.error(
                    "settlement_failed",
                    intent_id=intent.id,
                    user_id=intent.user_id,
                    error=str(e),
                )
                failed = self.ledger.transition_status(
                    intent.id,
                    IntentStatus.FAILED,
                    metadata={"failure_reason": str(e)},
                )
                return IntentStatus.FAILED if failed else None

            applied = self.ledger.transition_status(
                intent.id,
                IntentStatus.COMPLETED,
                metadata={
                    "settlement_transaction_id": receipt.transaction_id,
                    "balance_before": str(receipt.balance_before),
                    "balance_after": str(receipt.balance_after),
                },
            )
            if not applied:
                logger.error(
                    "settlement_not_recorded",
                    intent_id=intent.id,
                    transaction_id=receipt.transaction_id,
                )
                return None

            logger.info(
                "payment_completed",
                intent_id=intent.id,
                user_id=intent.user_id,
                amount=str(intent.expected_amount),
                transaction_id=receipt.transaction_id,
            )
            return IntentStatus.COMPLETED

    def settle_pass(self) -> SettlementSummary:
        """Settle every confirmed intent, counting outcomes."""
        summary = SettlementSummary()
        for intent in self.ledger.list_intents_by_status(IntentStatus.CONFIRMED):
            try:
                outcome = self._settle(intent.id)
            except Exception as e:
                logger.error("settlement_error", intent_id=intent.id, error=str(e))
                continue
            if outcome == IntentStatus.COMPLETED:
                summary.completed += 1
            elif outcome == IntentStatus.FAILED:
                summary.failed += 1
        return summary

    def settle_confirmed(self) -> int:
        """Settle every confirmed intent. Returns the number completed."""
        return self.settle_pass().completed

    def process_all_confirmed_payments(self) -> int:
        """Operator re-drive over all confirmed intents."""
        logger.info("settlement_redrive_requested")
        return self.settle_confirmed()
