"""Document schemas for the wallet ledger."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from decimal import Decimal
import uuid

from utils.config import config

# Enums
class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    FROZEN = "frozen"
    CLOSED = "closed"

class PaymentMethodCategory(str, Enum):
    WALLET = "wallet"
    CARD = "card"
    BANK = "bank"

class TransactionType(str, Enum):
    TRANSFER = "transfer"
    ESCROW = "escrow"
    REWARD = "reward"
    WITHDRAWAL = "withdrawal"

class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class LimitWindow(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    SINGLE_TRANSACTION = "single_transaction"

# Evaluation order for limit checks
LIMIT_WINDOW_ORDER = [LimitWindow.DAILY, LimitWindow.MONTHLY, LimitWindow.SINGLE_TRANSACTION]

LIMIT_WINDOW_PERIODS = {
    LimitWindow.DAILY: timedelta(days=1),
    LimitWindow.MONTHLY: timedelta(days=30),
    LimitWindow.SINGLE_TRANSACTION: timedelta(days=365),
}

class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class RecommendedAction(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    BLOCK = "block"

class MultiSigStatus(str, Enum):
    PENDING_SIGNATURES = "pending_signatures"
    READY_FOR_EXECUTION = "ready_for_execution"
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution_failed"
    EXPIRED = "expired"

class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

# Helper functions for default values
def generate_transaction_id() -> str:
    return f"TXN_{datetime.now(timezone.utc).strftime('%Y%m%d')}_{uuid.uuid4().hex[:12].upper()}"

def generate_multisig_id() -> str:
    return f"MSIG_{datetime.now(timezone.utc).strftime('%Y%m%d')}_{uuid.uuid4().hex[:12].upper()}"

def generate_audit_id() -> str:
    return f"FRAUD_{uuid.uuid4().hex[:12].upper()}"

def generate_notification_id() -> str:
    return f"NOTIF_{uuid.uuid4().hex[:8].upper()}"

def get_current_time() -> datetime:
    return datetime.now(timezone.utc)

# Wallet account
class Account(BaseModel):
    account_id: str
    display_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    wallet_id: Optional[str] = None
    currency: str = Field(default_factory=lambda: config.BASE_CURRENCY)
    status: AccountStatus = AccountStatus.ACTIVE

    available_balance: Decimal = Decimal("0")
    escrow_balance: Decimal = Decimal("0")
    pending_balance: Decimal = Decimal("0")

    # Precomputed reputation (0-50) used when this account receives funds
    risk_score: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=get_current_time)
    updated_at: datetime = Field(default_factory=get_current_time)

    @property
    def total_balance(self) -> Decimal:
        return self.available_balance + self.escrow_balance + self.pending_balance

class TransactionLimit(BaseModel):
    """Rolling counter for one limit window of one account."""
    account_id: str
    window: LimitWindow
    limit_amount: Decimal
    current_amount: Decimal = Decimal("0")
    transaction_count: int = 0
    max_transaction_count: Optional[int] = None
    reset_date: datetime

    @property
    def key(self) -> str:
        return limit_key(self.account_id, self.window)

def limit_key(account_id: str, window: LimitWindow) -> str:
    return f"limit::{account_id}::{LimitWindow(window).value}"

class PaymentMethod(BaseModel):
    payment_method_id: str
    account_id: str
    category: PaymentMethodCategory
    label: str = ""
    is_active: bool = True

class GeoLocation(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    country: Optional[str] = None

class TransferRequest(BaseModel):
    """Ephemeral transfer request; becomes a Transaction only if it passes every gate."""
    sender_account_id: str
    recipient_identifier: str
    amount: Decimal
    currency: str = Field(default_factory=lambda: config.BASE_CURRENCY)
    description: Optional[str] = None
    payment_method_id: str
    transaction_type: TransactionType = TransactionType.TRANSFER
    location: Optional[GeoLocation] = None
    device_fingerprint: Optional[str] = None
    require_external_anchor: bool = True
    require_multi_sig: bool = False
    requested_at: datetime = Field(default_factory=get_current_time)

class FeeBreakdown(BaseModel):
    processing: Decimal = Decimal("0.00")
    platform: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

class RiskAssessment(BaseModel):
    risk_score: int
    risk_level: RiskLevel
    triggers: List[str] = Field(default_factory=list)
    recommended_action: RecommendedAction
    requires_manual_review: bool
    blocked_reason: Optional[str] = None
    assessed_at: datetime = Field(default_factory=get_current_time)

class FraudAuditLog(BaseModel):
    """Append-only record of one risk assessment."""
    audit_id: str = Field(default_factory=generate_audit_id)
    account_id: str
    timestamp: datetime = Field(default_factory=get_current_time)
    transaction_data: Dict[str, Any]
    assessment: RiskAssessment

    @property
    def key(self) -> str:
        return f"fraud::{self.account_id}::{self.timestamp.isoformat()}::{self.audit_id}"

class Transaction(BaseModel):
    """Committed ledger entry."""
    transaction_id: str = Field(default_factory=generate_transaction_id)
    sender_account_id: str
    recipient_account_id: str
    amount: Decimal
    currency: str = Field(default_factory=lambda: config.BASE_CURRENCY)
    fees: FeeBreakdown = Field(default_factory=FeeBreakdown)
    transaction_type: TransactionType = TransactionType.TRANSFER
    payment_method_id: Optional[str] = None
    description: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    anchor_reference: Optional[str] = None
    created_at: datetime = Field(default_factory=get_current_time)
    completed_at: Optional[datetime] = None

    @property
    def total_debit(self) -> Decimal:
        return self.amount + self.fees.total

class SignatureRecord(BaseModel):
    signature: str
    signed_at: datetime = Field(default_factory=get_current_time)

class MultiSigTransaction(BaseModel):
    multisig_id: str = Field(default_factory=generate_multisig_id)
    request: TransferRequest
    recipient_account_id: str
    fees: FeeBreakdown
    # False when the sender had no limit rows yet at submission
    limits_enforced: bool = True
    required_signatures: int = Field(..., ge=1)
    current_signatures: int = 0
    signers: List[str]
    pending_signers: List[str]
    signatures: Dict[str, SignatureRecord] = Field(default_factory=dict)
    status: MultiSigStatus = MultiSigStatus.PENDING_SIGNATURES
    created_at: datetime = Field(default_factory=get_current_time)
    expires_at: datetime = Field(
        default_factory=lambda: get_current_time() + timedelta(hours=config.MULTISIG_EXPIRY_HOURS)
    )
    execution_result: Optional[Dict[str, Any]] = None
    executed_at: Optional[datetime] = None
    # Compare-and-set counter, bumped on every write
    version: int = 0

    @field_validator("signers")
    @classmethod
    def unique_signers(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one signer is required")
        # Ordered set semantics
        return list(dict.fromkeys(v))

    def is_expired(self, now: datetime) -> bool:
        return self.status == MultiSigStatus.EXPIRED or now >= self.expires_at

class AnchorRecord(BaseModel):
    transaction_id: str
    reference_hash: str
    network: str
    created_at: datetime = Field(default_factory=get_current_time)

class Notification(BaseModel):
    notification_id: str = Field(default_factory=generate_notification_id)
    account_id: str
    notification_type: str  # "transfer_sent", "transfer_received", "signature_requested"
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime = Field(default_factory=get_current_time)

class WalletSecurityConfig(BaseModel):
    account_id: str
    signers: List[str] = Field(default_factory=list)
    required_signatures: Optional[int] = Field(default=None, ge=1)
    updated_at: datetime = Field(default_factory=get_current_time)
