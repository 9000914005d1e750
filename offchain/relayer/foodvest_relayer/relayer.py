"""
Main relayer loop - reconciles chain activity, settles, and expires intents.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from .domain import utcnow
from .ledger import PaymentLedger
from .reconciler import ReconcileResult, ReconciliationEngine
from .settlement import SettlementProcessor

logger = structlog.get_logger()


@dataclass
class RelayerState:
    """Current relayer state."""

    is_running: bool = False
    last_poll_time: Optional[datetime] = None
    cycles: int = 0
    cycles_skipped: int = 0
    payments_confirmed: int = 0
    payments_completed: int = 0
    payments_failed: int = 0
    payments_expired: int = 0


@dataclass
class CycleReport:
    """Outcome of one poll cycle."""

    started_at: datetime
    networks: list[ReconcileResult] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    expired: int = 0
    skipped: bool = False

    @property
    def confirmed(self) -> int:
        return sum(len(r.confirmed) for r in self.networks)


class DepositRelayer:
    """
    Periodic driver that:
    1. Reconciles every network's incoming transfers against open intents
    2. Settles confirmed intents into the balance ledger
    3. Expires intents whose TTL has lapsed
    """

    def __init__(
        self,
        ledger: PaymentLedger,
        engine: ReconciliationEngine,
        settlement: SettlementProcessor,
        poll_interval_seconds: float = 30,
    ):
        self.ledger = ledger
        self.engine = engine
        self.settlement = settlement
        self.poll_interval_seconds = poll_interval_seconds
        self.state = RelayerState()

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(
            "relayer_initialized",
            networks=[n.value for n in engine.adapters],
            poll_interval=poll_interval_seconds,
        )

    def run_once(self) -> CycleReport:
        """
        Run one cycle of the relayer.

        A cycle that starts while another is still running is skipped.
        """
        report = CycleReport(started_at=utcnow())

        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("poll_cycle_overlap_skipped")
            report.skipped = True
            self.state.cycles_skipped += 1
            return report

        try:
            report.networks = self.engine.reconcile_all(expire_stale=False)

            try:
                summary = self.settlement.settle_pass()
                report.completed = summary.completed
                report.failed = summary.failed
            except Exception as e:
                logger.error("settlement_pass_error", error=str(e))

            try:
                report.expired = self.ledger.expire_stale()
            except Exception as e:
                logger.error("expiry_pass_error", error=str(e))
        finally:
            self._cycle_lock.release()

        self.state.cycles += 1
        self.state.last_poll_time = report.started_at
        self.state.payments_confirmed += report.confirmed
        self.state.payments_completed += report.completed
        self.state.payments_failed += report.failed
        self.state.payments_expired += report.expired
        return report

    def run(self) -> None:
        """Run the relayer continuously until stop() is called."""
        self.state.is_running = True
        self._stop_event.clear()

        logger.info("relayer_starting", poll_interval=self.poll_interval_seconds)

        while not self._stop_event.is_set():
            try:
                report = self.run_once()
                if not report.skipped:
                    logger.info(
                        "poll_cycle_complete",
                        confirmed=report.confirmed,
                        completed=report.completed,
                        failed=report.failed,
                        expired=report.expired,
                    )
            except Exception as e:
                logger.error("poll_cycle_error", error=str(e))

            self._stop_event.wait(self.poll_interval_seconds)

        self.state.is_running = False
        logger.info("relayer_stopped")

    def start(self) -> threading.Thread:
        """Run the loop in a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self._thread = threading.Thread(target=self.run, name="deposit-relayer", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the relayer and wait for the background thread, if any."""
        logger.info("relayer_stopping")
        self._stop_event.set()
        self.state.is_running = False
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def status(self) -> dict[str, Any]:
        return {
            "running": self.state.is_running,
            "last_poll_time": self.state.last_poll_time.isoformat() if self.state.last_poll_time else None,
            "last_checked_heights": {n.value: h for n, h in self.engine.last_checked.items()},
            "cycles": self.state.cycles,
            "cycles_skipped": self.state.cycles_skipped,
            "payments_confirmed": self.state.payments_confirmed,
            "payments_completed": self.state.payments_completed,
            "payments_failed": self.state.payments_failed,
            "payments_expired": self.state.payments_expired,
        }
