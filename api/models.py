"""Pydantic models for API."""

from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional, List, Union, Any
from datetime import datetime
from decimal import Decimal, InvalidOperation

from database.schemas import (
    GeoLocation,
    MultiSigTransaction,
    PaymentMethodCategory,
    RecommendedAction,
    RiskAssessment,
    Transaction,
    TransactionType,
    WalletSecurityConfig,
)
from utils.config import config

ADDITIONAL_VERIFICATION_MESSAGE = "Additional verification required"


class TransferRequestBody(BaseModel):
    sender_account_id: str
    recipient_identifier: str = Field(..., examples=["+27821234567"])
    amount: Union[float, str] = Field(...)  # Accept float or string for decimal
    currency: str = Field(default_factory=lambda: config.BASE_CURRENCY)
    description: Optional[str] = None
    payment_method_id: str
    transaction_type: TransactionType = TransactionType.TRANSFER
    require_external_anchor: bool = True
    require_multi_sig: bool = False
    location: Optional[GeoLocation] = None
    device_fingerprint: Optional[str] = None

    @field_validator('amount')
    def validate_amount(cls, v):
        """Ensure amount can be converted to Decimal."""
        try:
            Decimal(str(v))
            return v
        except InvalidOperation:
            raise ValueError('Amount must be a valid decimal number')


class SignRequestBody(BaseModel):
    signer_account_id: str
    signature: str = Field(..., min_length=1)


class LimitsUpdateBody(BaseModel):
    daily_limit: Optional[Union[float, str]] = None
    monthly_limit: Optional[Union[float, str]] = None


class SecurityConfigBody(BaseModel):
    signers: List[str] = Field(..., min_length=1)
    required_signatures: Optional[int] = Field(default=None, ge=1)


class FeeQuoteBody(BaseModel):
    amount: Union[float, str]
    transaction_type: str = TransactionType.TRANSFER.value
    payment_method_category: PaymentMethodCategory = PaymentMethodCategory.WALLET

    @field_validator('amount')
    def validate_amount(cls, v):
        try:
            Decimal(str(v))
            return v
        except InvalidOperation:
            raise ValueError('Amount must be a valid decimal number')


class RiskView(BaseModel):
    """Risk outcome as shown to the end user; triggers stay internal."""
    decision: RecommendedAction
    message: Optional[str] = None

    @classmethod
    def from_assessment(cls, assessment: RiskAssessment) -> "RiskView":
        if assessment.recommended_action == RecommendedAction.APPROVE:
            return cls(decision=assessment.recommended_action)
        return cls(decision=assessment.recommended_action, message=ADDITIONAL_VERIFICATION_MESSAGE)


class FeesView(BaseModel):
    processing: str
    platform: str
    total: str


class TransactionView(BaseModel):
    transaction_id: str
    sender_account_id: str
    recipient_account_id: str
    amount: str
    currency: str
    fees: FeesView
    transaction_type: str
    description: Optional[str] = None
    status: str
    anchor_reference: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionView":
        return cls(
            transaction_id=tx.transaction_id,
            sender_account_id=tx.sender_account_id,
            recipient_account_id=tx.recipient_account_id,
            amount=str(tx.amount),
            currency=tx.currency,
            fees=FeesView(
                processing=str(tx.fees.processing),
                platform=str(tx.fees.platform),
                total=str(tx.fees.total),
            ),
            transaction_type=tx.transaction_type.value,
            description=tx.description,
            status=tx.status.value,
            anchor_reference=tx.anchor_reference,
            created_at=tx.created_at,
            completed_at=tx.completed_at,
        )


class AnchoringView(BaseModel):
    status: str
    reference_hash: Optional[str] = None


class TransferResponse(BaseModel):
    status: str  # blocked | pending_signatures | completed
    risk_assessment: RiskView
    fees: FeesView
    transaction: Optional[TransactionView] = None
    multisig_id: Optional[str] = None
    pending_signers: List[str] = Field(default_factory=list)
    anchoring: Optional[AnchoringView] = None


class SignResponse(BaseModel):
    completed: bool
    status: str
    transaction: Optional[TransactionView] = None
    anchoring: Optional[AnchoringView] = None
    error: Optional[Dict[str, Any]] = None


class MultiSigView(BaseModel):
    multisig_id: str
    status: str
    required_signatures: int
    current_signatures: int
    signers: List[str]
    pending_signers: List[str]
    expires_at: datetime
    executed_at: Optional[datetime] = None

    @classmethod
    def from_multisig(cls, multisig: MultiSigTransaction) -> "MultiSigView":
        return cls(
            multisig_id=multisig.multisig_id,
            status=multisig.status.value,
            required_signatures=multisig.required_signatures,
            current_signatures=multisig.current_signatures,
            signers=multisig.signers,
            pending_signers=multisig.pending_signers,
            expires_at=multisig.expires_at,
            executed_at=multisig.executed_at,
        )


class BalanceResponse(BaseModel):
    account_id: str
    currency: str
    available_balance: str
    escrow_balance: str
    pending_balance: str
    total_balance: str


class LimitView(BaseModel):
    window: str
    limit_amount: str
    current_amount: str
    transaction_count: int
    max_transaction_count: Optional[int] = None
    reset_date: datetime


class SecurityConfigView(BaseModel):
    account_id: str
    signers: List[str]
    required_signatures: Optional[int] = None
    updated_at: datetime

    @classmethod
    def from_config(cls, security_config: WalletSecurityConfig) -> "SecurityConfigView":
        return cls(**security_config.model_dump())


class FeeQuoteResponse(BaseModel):
    amount: str
    transaction_type: str
    payment_method_category: str
    fees: FeesView
    total_amount: str  # amount plus fees, what the sender is debited


class AnchorVerificationView(BaseModel):
    transaction_id: str
    anchored: bool
    verified: bool
    reference_hash: Optional[str] = None
    computed_hash: Optional[str] = None
    network: Optional[str] = None
