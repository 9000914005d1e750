"""
Tests for exactly-once balance settlement.
"""

import re
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from foodvest_relayer.domain import IntentStatus, Network
from foodvest_relayer.errors import SettlementError
from foodvest_relayer.settlement import (
    CreditReceipt,
    InMemoryBalanceLedger,
    SettlementProcessor,
    generate_transaction_id,
)


def _confirmed_intent(service, user_id="u1", amount="50"):
    intent = service.create_payment_intent(user_id, amount, Network.TRC20)
    assert service.ledger.transition_status(intent.id, IntentStatus.CONFIRMED, transaction_hash=f"tx-{intent.id}")
    return intent


class RecordingSink:
    """Sink that records every credit and can be told to fail."""

    def __init__(self, error: Exception | None = None):
        self.credits: list[tuple[str, Decimal, str]] = []
        self.error = error

    def credit_user_balance(self, user_id: str, amount: Decimal, reference: str) -> CreditReceipt:
        self.credits.append((user_id, amount, reference))
        if self.error is not None:
            raise self.error
        return CreditReceipt(transaction_id=f"tx_{len(self.credits)}", balance_before=Decimal(0), balance_after=amount)


class TestInMemoryBalanceLedger:
    """Tests for the process-local balance ledger."""

    def test_credit(self, clock):
        ledger = InMemoryBalanceLedger(clock=clock)
        ledger.initialize_user("u1")

        receipt = ledger.credit_user_balance("u1", Decimal("50"), reference="intent-1")

        assert receipt.balance_before == 0
        assert receipt.balance_after == Decimal("50")
        balance = ledger.get_user_balance("u1")
        assert balance.usd_balance == Decimal("50")
        assert balance.total_value == Decimal("50")
        assert balance.last_updated == clock.now

        [transaction] = ledger.get_user_transactions("u1")
        assert transaction.id == receipt.transaction_id
        assert transaction.type == "deposit"
        assert transaction.currency == "USD"
        assert transaction.reference == "intent-1"
        assert transaction.description == "Balance deposit of $50"

    def test_credits_accumulate(self, clock):
        ledger = InMemoryBalanceLedger(clock=clock)
        ledger.initialize_user("u1")
        ledger.credit_user_balance("u1", Decimal("50"), reference="a")

        receipt = ledger.credit_user_balance("u1", Decimal("25.5"), reference="b")

        assert receipt.balance_before == Decimal("50")
        assert receipt.balance_after == Decimal("75.5")

    def test_total_value_includes_shares(self, clock):
        ledger = InMemoryBalanceLedger(clock=clock)
        balance = ledger.initialize_user("u1")
        balance.share_balance = Decimal("1000")

        ledger.credit_user_balance("u1", Decimal("5"), reference="a")

        assert ledger.get_user_balance("u1").total_value == Decimal("15")

    def test_unknown_user(self):
        ledger = InMemoryBalanceLedger()

        with pytest.raises(SettlementError, match="User not found") as excinfo:
            ledger.credit_user_balance("ghost", Decimal("50"), reference="a")
        assert excinfo.value.user_id == "ghost"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
    def test_non_positive_amount(self, amount):
        ledger = InMemoryBalanceLedger()
        ledger.initialize_user("u1")

        with pytest.raises(SettlementError):
            ledger.credit_user_balance("u1", amount, reference="a")
        assert ledger.get_user_transactions("u1") == []

    def test_repeated_reference_credited_once(self, clock):
        ledger = InMemoryBalanceLedger(clock=clock)
        ledger.initialize_user("u1")
        first = ledger.credit_user_balance("u1", Decimal("50"), reference="intent-1")

        second = ledger.credit_user_balance("u1", Decimal("50"), reference="intent-1")

        assert second == first
        assert ledger.get_user_balance("u1").usd_balance == Decimal("50")
        assert len(ledger.get_user_transactions("u1")) == 1

    def test_initialize_keeps_existing_balance(self):
        ledger = InMemoryBalanceLedger()
        ledger.initialize_user("u1")
        ledger.credit_user_balance("u1", Decimal("50"), reference="a")

        ledger.initialize_user("u1")

        assert ledger.get_user_balance("u1").usd_balance == Decimal("50")


def test_transaction_id_format() -> None:
    assert re.fullmatch(r"tx_\d+_[0-9a-f]{9}", generate_transaction_id())
    assert generate_transaction_id() != generate_transaction_id()


class TestSettlementProcessor:
    """Tests for SettlementProcessor."""

    def test_confirmed_intent_completed(self, service, sink):
        intent = _confirmed_intent(service)

        assert service.settlement.settle_intent(intent.id)

        stored = service.get_payment_intent(intent.id)
        assert stored.status == IntentStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.metadata["balance_before"] == "0"
        assert stored.metadata["balance_after"] == "50"
        assert stored.metadata["settlement_transaction_id"].startswith("tx_")
        assert sink.get_user_balance("u1").usd_balance == Decimal("50")

    def test_credit_is_expected_amount(self, service, sink):
        """The intent's amount is credited, not what arrived within tolerance."""
        intent = service.create_payment_intent("u1", "50", Network.TRC20)
        service.ledger.transition_status(
            intent.id,
            IntentStatus.CONFIRMED,
            metadata={"amount_received": "50.009000"},
            transaction_hash="tx1",
        )

        service.settlement.settle_intent(intent.id)

        assert sink.get_user_balance("u1").usd_balance == Decimal("50")

    def test_credit_at_most_once(self, service):
        recording = RecordingSink()
        processor = SettlementProcessor(service.ledger, recording, guard=service.guard)
        intent = _confirmed_intent(service)

        assert processor.settle_intent(intent.id)
        assert not processor.settle_intent(intent.id)
        assert processor.settle_confirmed() == 0

        assert recording.credits == [("u1", Decimal("50"), intent.id)]

    def test_sink_failure_marks_failed(self, service):
        processor = SettlementProcessor(service.ledger, RecordingSink(error=SettlementError("u1", "User not found")))
        intent = _confirmed_intent(service)

        assert not processor.settle_intent(intent.id)

        stored = service.get_payment_intent(intent.id)
        assert stored.status == IntentStatus.FAILED
        assert stored.metadata["failure_reason"] == "User not found"

    def test_unexpected_sink_error_marks_failed(self, service):
        processor = SettlementProcessor(service.ledger, RecordingSink(error=RuntimeError("connection reset")))
        intent = _confirmed_intent(service)

        summary = processor.settle_pass()

        assert summary.completed == 0
        assert summary.failed == 1
        assert service.get_payment_intent(intent.id).metadata["failure_reason"] == "connection reset"

    def test_failed_intent_never_retried(self, service):
        recording = RecordingSink(error=RuntimeError("down"))
        processor = SettlementProcessor(service.ledger, recording)
        _confirmed_intent(service)
        processor.settle_pass()

        recording.error = None
        processor.settle_pass()

        assert len(recording.credits) == 1

    def test_unregistered_user_fails(self, service):
        intent = _confirmed_intent(service, user_id="ghost")

        assert service.process_all_confirmed_payments() == 0
        assert service.get_payment_intent(intent.id).status == IntentStatus.FAILED

    def test_only_confirmed_intents_settled(self, service):
        recording = RecordingSink()
        processor = SettlementProcessor(service.ledger, recording)
        pending = service.create_payment_intent("u1", "50", Network.TRC20)

        assert not processor.settle_intent(pending.id)
        assert not processor.settle_intent("missing")
        assert recording.credits == []

    def test_in_flight_intent_skipped(self, service):
        recording = RecordingSink()
        processor = SettlementProcessor(service.ledger, recording, guard=service.guard)
        intent = _confirmed_intent(service)
        service.guard.try_acquire(intent.id)

        assert processor.settle_pass().completed == 0
        assert recording.credits == []
        assert service.get_payment_intent(intent.id).status == IntentStatus.CONFIRMED

        service.guard.release(intent.id)
        assert processor.settle_pass().completed == 1

    def test_pass_counts(self, service, sink):
        _confirmed_intent(service, user_id="u1")
        _confirmed_intent(service, user_id="u2", amount="20")
        _confirmed_intent(service, user_id="ghost")

        summary = service.settlement.settle_pass()

        assert summary.completed == 2
        assert summary.failed == 1
        assert sink.get_user_balance("u2").usd_balance == Decimal("20")

    def test_redrive_settles_stragglers(self, service, sink):
        intent = _confirmed_intent(service)

        assert service.process_all_confirmed_payments() == 1
        assert service.get_payment_intent(intent.id).status == IntentStatus.COMPLETED
        assert service.process_all_confirmed_payments() == 0

    def test_store_failure_after_credit_does_not_double_credit(self, service, sink, monkeypatch):
        """A lost completed write leaves the intent confirmed; the next pass must not credit again."""
        intent = _confirmed_intent(service)
        original = service.store.compare_and_set
        calls = {"failed": False}

        def flaky_compare_and_set(intent_id, expected_status, new_status, **kwargs):
            if new_status == IntentStatus.COMPLETED and not calls["failed"]:
                calls["failed"] = True
                raise OperationalError("UPDATE payment_intents", {}, Exception("database is locked"))
            return original(intent_id, expected_status=expected_status, new_status=new_status, **kwargs)

        monkeypatch.setattr(service.store, "compare_and_set", flaky_compare_and_set)

        first = service.settlement.settle_pass()
        assert first.completed == 0
        assert service.get_payment_intent(intent.id).status == IntentStatus.CONFIRMED

        second = service.settlement.settle_pass()

        assert second.completed == 1
        assert service.get_payment_intent(intent.id).status == IntentStatus.COMPLETED
        assert len(sink.get_user_transactions("u1")) == 1
        assert sink.get_user_balance("u1").usd_balance == Decimal("50")
