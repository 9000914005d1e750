"""
Pydantic models for API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from foodvest_relayer.domain import PaymentIntent
from foodvest_relayer.ledger import PaymentStats
from foodvest_relayer.settlement import UserBalance


# ============================================================================
# Payment Intents
# ============================================================================

class CreatePaymentRequest(BaseModel):
    """Request to create a USDT payment intent."""

    user_id: str = Field(..., min_length=1, description="Authenticated user id")
    amount: Decimal = Field(..., description="Deposit amount in USDT")
    network: str = Field(..., description="Network tag: TRC20, BEP20 or ERC20")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-123",
                    "amount": "50",
                    "network": "TRC20"
                }
            ]
        }
    }


class PaymentIntentResponse(BaseModel):
    """A payment intent as seen by callers."""

    id: str = Field(..., description="Intent id")
    user_id: str
    network: str
    amount: Decimal = Field(..., description="Expected amount in USDT")
    destination_address: str = Field(..., description="Wallet the user must pay into")
    status: str
    required_confirmations: int
    created_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = Field(None, description="Matched on-chain transfer")
    confirmations: Optional[int] = Field(None, description="Latest observed confirmation depth")
    block_number: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_intent(cls, intent: PaymentIntent) -> "PaymentIntentResponse":
        return cls(
            id=intent.id,
            user_id=intent.user_id,
            network=intent.network.value,
            amount=intent.expected_amount,
            destination_address=intent.destination_address,
            status=intent.status.value,
            required_confirmations=intent.required_confirmations,
            created_at=intent.created_at,
            expires_at=intent.expires_at,
            completed_at=intent.completed_at,
            transaction_hash=intent.observed_transaction_hash,
            confirmations=intent.observed_confirmations,
            block_number=intent.observed_block_number,
            metadata=intent.metadata,
        )


class CancelPaymentRequest(BaseModel):
    """Owner cancellation of a pending intent."""

    user_id: str = Field(..., min_length=1, description="Owner of the intent")


class SubmitTransactionRequest(BaseModel):
    """Payer-reported transaction hash."""

    network: str = Field(..., description="Network tag: TRC20, BEP20 or ERC20")
    tx_hash: str = Field(..., min_length=1, description="Transaction hash / id")


class SubmitTransactionResponse(BaseModel):
    matched: bool = Field(..., description="Whether the transfer was applied to an intent")
    intent_id: Optional[str] = None
    status: Optional[str] = Field(None, description="Intent status after matching")


# ============================================================================
# Statistics
# ============================================================================

class NetworkStatsResponse(BaseModel):
    count: int
    amount: Decimal
    success_rate: float


class PaymentStatsResponse(BaseModel):
    """Aggregate payment statistics."""

    total_payments: int
    total_amount: Decimal = Field(..., description="Sum of completed deposits in USDT")
    success_rate: float = Field(..., description="Percent of intents that completed")
    average_amount: Decimal
    by_status: dict[str, int]
    by_network: dict[str, NetworkStatsResponse]

    @classmethod
    def from_stats(cls, stats: PaymentStats) -> "PaymentStatsResponse":
        return cls(
            total_payments=stats.total_payments,
            total_amount=stats.total_amount,
            success_rate=stats.success_rate,
            average_amount=stats.average_amount,
            by_status=stats.by_status,
            by_network={
                network: NetworkStatsResponse(
                    count=s.count,
                    amount=s.amount,
                    success_rate=s.success_rate,
                )
                for network, s in stats.by_network.items()
            },
        )


# ============================================================================
# Networks
# ============================================================================

class NetworkInfo(BaseModel):
    network: str
    name: str
    wallet_address: str
    contract_address: Optional[str] = None
    min_confirmations: int
    decimals: int


class NetworkBalance(BaseModel):
    network: str
    address: str
    balance: Optional[Decimal] = Field(None, description="USDT balance, null when the explorer failed")
    error: Optional[str] = None


# ============================================================================
# Users
# ============================================================================

class RegisterUserRequest(BaseModel):
    """Register a user with the balance ledger."""

    user_id: str = Field(..., min_length=1)


class UserBalanceResponse(BaseModel):
    user_id: str
    usd_balance: Decimal
    share_balance: Decimal
    total_value: Decimal
    last_updated: datetime

    @classmethod
    def from_balance(cls, balance: UserBalance) -> "UserBalanceResponse":
        return cls(
            user_id=balance.user_id,
            usd_balance=balance.usd_balance,
            share_balance=balance.share_balance,
            total_value=balance.total_value,
            last_updated=balance.last_updated,
        )


class ProcessConfirmedResponse(BaseModel):
    processed: int = Field(..., description="Number of intents settled")


# ============================================================================
# Health Check
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall status (ok/degraded)")
    version: str = Field(..., description="API version")
    relayer: Optional[dict[str, Any]] = Field(None, description="Background relayer status")
    networks: list[str] = Field(default_factory=list, description="Configured networks")
