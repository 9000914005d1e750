"""
Domain types shared by the deposit pipeline.

PaymentIntent is the persisted record of an expected deposit.
BlockchainTransfer is the normalized, ephemeral view of one observed
USDT transfer, produced by a chain adapter.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class Network(str, Enum):
    """Supported USDT networks."""

    TRC20 = "TRC20"
    BEP20 = "BEP20"
    ERC20 = "ERC20"

    @classmethod
    def _missing_(cls, value):
        # Tags are matched case-insensitively ("trc20" == TRC20)
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper())
        return None


class IntentStatus(str, Enum):
    """Payment intent lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        IntentStatus.COMPLETED,
        IntentStatus.FAILED,
        IntentStatus.EXPIRED,
        IntentStatus.CANCELLED,
    }
)

# Intents still waiting for an on-chain transfer
OPEN_STATUSES = frozenset({IntentStatus.PENDING, IntentStatus.PROCESSING})


class TransferStatus(str, Enum):
    """Execution status of an on-chain transfer."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


def utcnow() -> datetime:
    """Current time as naive UTC (the store persists naive UTC timestamps)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class PaymentIntent:
    """One user's promise to send a fixed USDT amount to a fixed address."""

    id: str
    user_id: str
    network: Network
    expected_amount: Decimal
    destination_address: str
    status: IntentStatus
    required_confirmations: int
    created_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None
    observed_transaction_hash: Optional[str] = None
    observed_confirmations: Optional[int] = None
    observed_block_number: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class BlockchainTransfer:
    """Normalized USDT transfer observed on a chain."""

    hash: str
    from_address: str
    to_address: str
    raw_value: str  # smallest chain unit, integer as string
    block_number: Optional[int]
    timestamp_millis: Optional[int]
    status: TransferStatus
    confirmations: int = 0


@dataclass
class TransferValidation:
    """Outcome of validating a transfer against an intent's expectations."""

    is_valid: bool
    reason: Optional[str] = None
    transfer: Optional[BlockchainTransfer] = None
    normalized_amount: Optional[Decimal] = None
    confirmations: Optional[int] = None

    @property
    def awaiting_confirmations(self) -> bool:
        """Transfer matched but is not yet deep enough to be final."""
        return (
            not self.is_valid
            and self.transfer is not None
            and self.confirmations is not None
        )


def as_decimal(value: Any) -> Decimal:
    """Convert an amount to Decimal, going through str for floats to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)
