"""FastAPI server for the S-Pay transfer API."""

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import logging
from typing import List, Optional

from temporalio.client import Client
from api.models import (
    AnchoringView,
    AnchorVerificationView,
    BalanceResponse,
    FeeQuoteBody,
    FeeQuoteResponse,
    FeesView,
    LimitView,
    LimitsUpdateBody,
    MultiSigView,
    RiskView,
    SecurityConfigBody,
    SecurityConfigView,
    SignRequestBody,
    SignResponse,
    TransactionView,
    TransferRequestBody,
    TransferResponse,
)
from database.connection import connect_to_couchbase, close_couchbase_connection, db
from database.schemas import FeeBreakdown, TransferRequest
from services.errors import TransferError
from services.factory import create_orchestrator
from services.transfer_orchestrator import AnchoringOutcome, TransferOrchestrator
from temporal.scheduler import TemporalExpiryScheduler
from utils.config import config
from utils.decimal_utils import to_decimal

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="S-Pay Transfer API",
    description="Wallet transfers with fraud scoring, limits and multi-signature approval",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

temporal_client = None
orchestrator: Optional[TransferOrchestrator] = None

ERROR_STATUS_CODES = {
    "account_not_found": 404,
    "recipient_not_found": 404,
    "multisig_not_found": 404,
    "transaction_not_found": 404,
    "multisig_unauthorized_signer": 403,
    "multisig_expired": 410,
    "multisig_not_pending": 409,
    "multisig_already_signed": 409,
    "fee_schedule_misconfigured": 500,
    "system_error": 503,
}


@app.on_event("startup")
async def startup_event():
    """Initialize connections on startup."""
    global temporal_client, orchestrator
    if config.STORE_BACKEND == "couchbase":
        await connect_to_couchbase()

    scheduler = None
    if config.TEMPORAL_ENABLED:
        temporal_client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
        scheduler = TemporalExpiryScheduler(temporal_client)

    orchestrator = create_orchestrator(expiry_scheduler=scheduler)
    logger.info("API server started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    if orchestrator is not None:
        await orchestrator.drain_background_tasks()
    await close_couchbase_connection()
    logger.info("API server stopped")


def get_orchestrator() -> TransferOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return orchestrator


@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind} {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


def _fees_view(fees: FeeBreakdown) -> FeesView:
    return FeesView(processing=str(fees.processing), platform=str(fees.platform), total=str(fees.total))


def _anchoring_view(anchoring: Optional[AnchoringOutcome]) -> Optional[AnchoringView]:
    if anchoring is None:
        return None
    return AnchoringView(status=anchoring.status, reference_hash=anchoring.reference_hash)


@app.post("/api/transfers", response_model=TransferResponse)
async def create_transfer(
    body: TransferRequestBody,
    service: TransferOrchestrator = Depends(get_orchestrator),
):
    """Submit a transfer through validation, fees, risk and commit."""
    request = TransferRequest(
        **body.model_dump(exclude={"amount"}),
        amount=to_decimal(body.amount),
    )
    result = await service.process_transfer(request)

    return TransferResponse(
        status=result.status,
        risk_assessment=RiskView.from_assessment(result.risk_assessment),
        fees=_fees_view(result.fees),
        transaction=TransactionView.from_transaction(result.transaction) if result.transaction else None,
        multisig_id=result.multisig_id,
        pending_signers=result.pending_signers,
        anchoring=_anchoring_view(result.anchoring),
    )


@app.post("/api/multisig/{multisig_id}/sign", response_model=SignResponse)
async def sign_multisig(
    multisig_id: str,
    body: SignRequestBody,
    service: TransferOrchestrator = Depends(get_orchestrator),
):
    """Add a signature to a pending multi-signature transfer."""
    result = await service.sign(multisig_id, body.signer_account_id, body.signature)
    return SignResponse(
        completed=result.completed,
        status=result.status.value,
        transaction=TransactionView.from_transaction(result.transaction) if result.transaction else None,
        anchoring=_anchoring_view(result.anchoring),
        error=result.error,
    )


@app.get("/api/multisig/{multisig_id}", response_model=MultiSigView)
async def get_multisig(multisig_id: str, service: TransferOrchestrator = Depends(get_orchestrator)):
    return MultiSigView.from_multisig(service.get_multisig(multisig_id))


@app.get("/api/wallets/{account_id}/balance", response_model=BalanceResponse)
async def get_balance(account_id: str, service: TransferOrchestrator = Depends(get_orchestrator)):
    balance = service.get_balance(account_id)
    return BalanceResponse(**{
        key: str(value) for key, value in balance.items()
    })


@app.get("/api/wallets/{account_id}/transactions", response_model=List[TransactionView])
async def list_transactions(
    account_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    service: TransferOrchestrator = Depends(get_orchestrator),
):
    return [TransactionView.from_transaction(tx) for tx in service.list_transactions(account_id, limit)]


@app.put("/api/wallets/{account_id}/limits", response_model=List[LimitView])
async def update_limits(
    account_id: str,
    body: LimitsUpdateBody,
    service: TransferOrchestrator = Depends(get_orchestrator),
):
    rows = service.update_limits(account_id, body.daily_limit, body.monthly_limit)
    return [
        LimitView(
            window=row.window.value,
            limit_amount=str(row.limit_amount),
            current_amount=str(row.current_amount),
            transaction_count=row.transaction_count,
            max_transaction_count=row.max_transaction_count,
            reset_date=row.reset_date,
        )
        for row in rows
    ]


@app.put("/api/wallets/{account_id}/security", response_model=SecurityConfigView)
async def configure_wallet_security(
    account_id: str,
    body: SecurityConfigBody,
    service: TransferOrchestrator = Depends(get_orchestrator),
):
    """Set the co-signers and signature threshold for multi-signature transfers."""
    security_config = service.configure_wallet_security(account_id, body.signers, body.required_signatures)
    return SecurityConfigView.from_config(security_config)


@app.get("/api/transactions/{transaction_id}/anchor/verify", response_model=AnchorVerificationView)
async def verify_anchor(transaction_id: str, service: TransferOrchestrator = Depends(get_orchestrator)):
    """Check a committed transaction against its external anchor record."""
    verification = await service.verify_anchor(transaction_id)
    return AnchorVerificationView(**vars(verification))


@app.post("/api/fees/quote", response_model=FeeQuoteResponse)
async def quote_fees(body: FeeQuoteBody, service: TransferOrchestrator = Depends(get_orchestrator)):
    """Fees a transfer of this amount would be charged."""
    amount = to_decimal(body.amount)
    fees = service.quote_fees(amount, body.transaction_type, body.payment_method_category)
    return FeeQuoteResponse(
        amount=str(amount),
        transaction_type=body.transaction_type,
        payment_method_category=body.payment_method_category.value,
        fees=_fees_view(fees),
        total_amount=str(amount + fees.total),
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc),
        "environment": config.APP_ENV,
        "store": config.STORE_BACKEND,
        "couchbase": "connected" if db.cluster else "disconnected",
        "temporal": "connected" if temporal_client else "disconnected",
    }
