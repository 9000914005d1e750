"""
FoodVest API - HTTP surface for USDT deposits.

Provides REST endpoints for:
- Creating payment intents (POST /payments)
- Tracking intents (GET /payments/{id}, GET /users/{user_id}/payments)
- Reporting a transaction hash (POST /payments/submit-transaction)
- Payment statistics (GET /payments/stats)
- User balances (GET /users/{user_id}/balance)
- Operator actions (POST /admin/users, POST /admin/payments/process-confirmed)
- Health checks (GET /health)
"""

import uvicorn
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from foodvest_relayer.config import DepositConfig
from foodvest_relayer.errors import UpstreamError, ValidationError
from foodvest_relayer.service import DepositService
from foodvest_relayer.settlement import InMemoryBalanceLedger

from . import __version__
from .auth import verify_api_token
from .config import Settings, get_settings
from .models import (
    CancelPaymentRequest,
    CreatePaymentRequest,
    HealthResponse,
    NetworkBalance,
    NetworkInfo,
    PaymentIntentResponse,
    PaymentStatsResponse,
    ProcessConfirmedResponse,
    RegisterUserRequest,
    SubmitTransactionRequest,
    SubmitTransactionResponse,
    UserBalanceResponse,
)

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# Deposit service (initialized at startup)
_service: DepositService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    global _service

    settings = get_settings()

    try:
        _service = DepositService.from_config(DepositConfig.from_env())
    except Exception as e:
        logger.error("deposit_service_init_failed", error=str(e))
        _service = None

    if _service and settings.run_relayer:
        _service.relayer.start()

    logger.info(
        "api_started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        networks=[n.value for n in _service.config.supported_networks] if _service else [],
        run_relayer=settings.run_relayer,
    )

    yield

    # Cleanup
    if _service:
        _service.close()
        _service = None

    logger.info("api_stopped")


def get_service() -> DepositService:
    """Dependency returning the running deposit service."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Deposit service not initialized")
    return _service


def _balance_ledger(service: DepositService) -> InMemoryBalanceLedger:
    if not isinstance(service.sink, InMemoryBalanceLedger):
        raise HTTPException(status_code=501, detail="Balance ledger is external to this service")
    return service.sink


# Create FastAPI app
app = FastAPI(
    title="FoodVest API",
    description="USDT deposit intents, confirmation tracking and balance settlement",
    version=__version__,
    lifespan=lifespan,
)


# Add CORS middleware
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """
    Check API health.

    Returns service status, relayer state and configured networks.
    """
    if _service is None:
        return HealthResponse(status="degraded", version=__version__)

    return HealthResponse(
        status="ok",
        version=__version__,
        relayer=_service.relayer.status(),
        networks=[n.value for n in _service.config.supported_networks],
    )


# ============================================================================
# Networks
# ============================================================================


@app.get("/networks", response_model=list[NetworkInfo])
def list_networks(service: DepositService = Depends(get_service)) -> list[NetworkInfo]:
    """Supported networks and the wallet to pay into on each."""
    return [
        NetworkInfo(
            network=config.network.value,
            name=config.name,
            wallet_address=config.wallet_address,
            contract_address=config.contract_address,
            min_confirmations=config.min_confirmations,
            decimals=config.decimals,
        )
        for config in service.config.networks.values()
    ]


@app.get("/networks/balances", response_model=list[NetworkBalance])
def network_balances(service: DepositService = Depends(get_service)) -> list[NetworkBalance]:
    """Live wallet balances; an explorer failure is reported per network."""
    return [
        NetworkBalance(
            network=network.value,
            address=info["address"],
            balance=info["balance"],
            error=info["error"],
        )
        for network, info in service.get_network_balances().items()
    ]


# ============================================================================
# Payment Intents
# ============================================================================


@app.post("/payments", response_model=PaymentIntentResponse, status_code=201)
def create_payment(
    request: CreatePaymentRequest,
    service: DepositService = Depends(get_service),
) -> PaymentIntentResponse:
    """
    Create a payment intent.

    The response carries the wallet address and exact amount the user
    must send before expires_at.
    """
    try:
        intent = service.create_payment_intent(request.user_id, request.amount, request.network)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PaymentIntentResponse.from_intent(intent)


@app.get("/payments/stats", response_model=PaymentStatsResponse)
def payment_stats(service: DepositService = Depends(get_service)) -> PaymentStatsResponse:
    """Aggregate statistics over all intents."""
    return PaymentStatsResponse.from_stats(service.get_payment_stats())


@app.post("/payments/submit-transaction", response_model=SubmitTransactionResponse)
def submit_transaction(
    request: SubmitTransactionRequest,
    service: DepositService = Depends(get_service),
) -> SubmitTransactionResponse:
    """
    Report a transaction hash for faster matching.

    The transfer is verified on-chain and applied to the first open
    intent it satisfies, exactly as the poller would.
    """
    try:
        intent_id = service.submit_transaction_hash(request.network, request.tx_hash)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        logger.error("submit_transaction_failed", network=request.network, tx_hash=request.tx_hash, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))

    if intent_id is None:
        return SubmitTransactionResponse(matched=False)

    intent = service.get_payment_intent(intent_id)
    return SubmitTransactionResponse(
        matched=True,
        intent_id=intent_id,
        status=intent.status.value if intent else None,
    )


@app.get("/payments/{intent_id}", response_model=PaymentIntentResponse)
def get_payment(intent_id: str, service: DepositService = Depends(get_service)) -> PaymentIntentResponse:
    intent = service.get_payment_intent(intent_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="Payment intent not found")
    return PaymentIntentResponse.from_intent(intent)


@app.post("/payments/{intent_id}/cancel", response_model=PaymentIntentResponse)
def cancel_payment(
    intent_id: str,
    request: CancelPaymentRequest,
    service: DepositService = Depends(get_service),
) -> PaymentIntentResponse:
    """Cancel a pending intent on behalf of its owner."""
    intent = service.get_payment_intent(intent_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="Payment intent not found")

    if not service.cancel_payment_intent(intent_id, request.user_id):
        raise HTTPException(
            status_code=409,
            detail=f"Payment intent cannot be cancelled (status: {intent.status.value})",
        )

    return PaymentIntentResponse.from_intent(service.get_payment_intent(intent_id))


# ============================================================================
# Users
# ============================================================================


@app.get("/users/{user_id}/payments", response_model=list[PaymentIntentResponse])
def user_payments(user_id: str, service: DepositService = Depends(get_service)) -> list[PaymentIntentResponse]:
    """User's intents, newest first."""
    return [PaymentIntentResponse.from_intent(i) for i in service.list_payment_intents_for_user(user_id)]


@app.get("/users/{user_id}/balance", response_model=UserBalanceResponse)
def user_balance(user_id: str, service: DepositService = Depends(get_service)) -> UserBalanceResponse:
    balance = _balance_ledger(service).get_user_balance(user_id)
    if balance is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserBalanceResponse.from_balance(balance)


# ============================================================================
# Admin
# ============================================================================


@app.post(
    "/admin/users",
    response_model=UserBalanceResponse,
    status_code=201,
    dependencies=[Depends(verify_api_token)],
)
def register_user(
    request: RegisterUserRequest,
    service: DepositService = Depends(get_service),
) -> UserBalanceResponse:
    """Register a user with the balance ledger so deposits can be credited."""
    balance = _balance_ledger(service).initialize_user(request.user_id)
    return UserBalanceResponse.from_balance(balance)


@app.post(
    "/admin/payments/process-confirmed",
    response_model=ProcessConfirmedResponse,
    dependencies=[Depends(verify_api_token)],
)
def process_confirmed(service: DepositService = Depends(get_service)) -> ProcessConfirmedResponse:
    """Re-drive settlement over every confirmed intent."""
    processed = service.process_all_confirmed_payments()
    logger.info("manual_settlement_complete", processed=processed)
    return ProcessConfirmedResponse(processed=processed)


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "foodvest_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
