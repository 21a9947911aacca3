"""Transfer orchestration: validation, fees, risk, multi-signature and commit."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set, Union

from database.repositories import LedgerRepository
from database.schemas import (
    AccountStatus,
    AnchorRecord,
    FeeBreakdown,
    MultiSigStatus,
    MultiSigTransaction,
    PaymentMethodCategory,
    RecommendedAction,
    RiskAssessment,
    SignatureRecord,
    Transaction,
    TransactionLimit,
    TransactionType,
    TransferRequest,
    WalletSecurityConfig,
)
from services.anchoring import ExternalAnchorer, HashAnchorer, canonical_transaction_hash
from services.errors import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidPaymentMethod,
    InvalidSecurityConfig,
    InvalidTransfer,
    MultiSigAlreadySigned,
    MultiSigExpired,
    MultiSigNotFound,
    MultiSigNotPending,
    MultiSigUnauthorizedSigner,
    TransactionNotFound,
    TransferError,
    TransferSystemError,
)
from services.fee_calculator import FeeCalculator
from services.limit_validator import COUNTED_WINDOWS, LimitValidator
from services.notifications import NotificationDispatcher, StoreNotificationDispatcher
from services.recipient_resolver import RecipientResolver, StoreRecipientResolver
from services.risk_engine import RiskEngine
from utils.config import config
from utils.decimal_utils import format_money, to_decimal
from utils.logger import transaction_logger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


CAS_RETRIES = 5

# Result statuses of process_transfer
STATUS_BLOCKED = "blocked"
STATUS_PENDING_SIGNATURES = "pending_signatures"
STATUS_COMPLETED = "completed"


class MultiSigExpiryScheduler(ABC):
    """Arranges for ``expire_multisig`` to run once a multi-sig transaction expires."""

    @abstractmethod
    async def schedule(self, multisig: MultiSigTransaction) -> None: ...


@dataclass
class AnchoringOutcome:
    status: str  # "completed", "failed" or "skipped"
    reference_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TransferResult:
    status: str
    risk_assessment: RiskAssessment
    fees: FeeBreakdown
    transaction: Optional[Transaction] = None
    multisig_id: Optional[str] = None
    pending_signers: List[str] = field(default_factory=list)
    anchoring: Optional[AnchoringOutcome] = None


@dataclass
class SignResult:
    completed: bool
    status: MultiSigStatus
    multisig: MultiSigTransaction
    transaction: Optional[Transaction] = None
    anchoring: Optional[AnchoringOutcome] = None
    error: Optional[Dict[str, Any]] = None


@dataclass
class AnchorVerification:
    transaction_id: str
    anchored: bool
    verified: bool
    reference_hash: Optional[str] = None
    computed_hash: Optional[str] = None
    network: Optional[str] = None


class TransferOrchestrator:
    """
    Sequences a transfer through its gates and mutates the ledger only when
    all of them pass.

    received -> validated -> fee-computed -> risk-assessed ->
    {blocked | awaiting-signatures | committed} -> notified
    """

    def __init__(
        self,
        repository: LedgerRepository,
        fee_calculator: Optional[FeeCalculator] = None,
        limit_validator: Optional[LimitValidator] = None,
        risk_engine: Optional[RiskEngine] = None,
        recipient_resolver: Optional[RecipientResolver] = None,
        anchorer: Optional[ExternalAnchorer] = None,
        notifier: Optional[NotificationDispatcher] = None,
        expiry_scheduler: Optional[MultiSigExpiryScheduler] = None,
        anchor_timeout: Optional[float] = None,
        notification_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.fee_calculator = fee_calculator or FeeCalculator()
        self.limit_validator = limit_validator or LimitValidator(repository)
        self.risk_engine = risk_engine or RiskEngine(repository)
        self.recipient_resolver = recipient_resolver or StoreRecipientResolver(repository)
        self.anchorer = anchorer or HashAnchorer()
        self.notifier = notifier or StoreNotificationDispatcher(repository)
        self.expiry_scheduler = expiry_scheduler
        self.anchor_timeout = config.ANCHOR_TIMEOUT_SECONDS if anchor_timeout is None else anchor_timeout
        self.notification_timeout = (
            config.NOTIFICATION_TIMEOUT_SECONDS if notification_timeout is None else notification_timeout
        )
        self._background_tasks: Set[asyncio.Task] = set()
        # Single time source for every gate of a transfer
        self.clock = clock or _utcnow

    # Transfer entry point

    async def process_transfer(
        self, request: TransferRequest, now: Optional[datetime] = None
    ) -> TransferResult:
        """
        Run a transfer request through every gate.

        Validation failures raise a ``TransferError`` before anything is
        written. A risk block is returned as a result with status
        ``blocked``, not raised.
        """
        now = now or self.clock()

        # received -> validated
        amount = to_decimal(request.amount)
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmount("Transfer amount must be greater than zero")

        payment_method = self.repository.get_payment_method(request.payment_method_id)
        if (payment_method is None or not payment_method.is_active
                or payment_method.account_id != request.sender_account_id):
            raise InvalidPaymentMethod()

        sender = self.repository.get_account(request.sender_account_id)
        if sender is None:
            raise AccountNotFound(f"Sender account {request.sender_account_id} not found")
        if sender.status != AccountStatus.ACTIVE:
            raise InvalidTransfer("Sender account is not active")

        recipient = self.recipient_resolver.resolve(request.recipient_identifier)
        if recipient.account_id == sender.account_id:
            raise InvalidTransfer("Cannot transfer to your own account")
        if recipient.status != AccountStatus.ACTIVE:
            raise InvalidTransfer("Recipient account cannot receive funds")

        limits_enforced = self.limit_validator.validate(sender.account_id, amount, now)

        # validated -> fee-computed
        fees = self.fee_calculator.calculate(amount, request.transaction_type, payment_method.category)
        if sender.available_balance < amount + fees.total:
            transaction_logger.log_insufficient_funds(
                account_id=sender.account_id,
                transaction_id="pre-commit",
                requested_amount=amount + fees.total,
                available_balance=sender.available_balance,
            )
            raise InsufficientBalance()

        # fee-computed -> risk-assessed
        assessment = self.risk_engine.assess(request, recipient.account_id, now=now)

        if assessment.recommended_action == RecommendedAction.BLOCK:
            transaction_logger.log_transaction(
                transaction_id="-",
                event="TRANSFER_BLOCKED",
                details={
                    "sender": sender.account_id,
                    "amount": amount,
                    "risk_score": assessment.risk_score,
                },
                level="WARNING",
            )
            return TransferResult(status=STATUS_BLOCKED, risk_assessment=assessment, fees=fees)

        if assessment.recommended_action == RecommendedAction.REVIEW or request.require_multi_sig:
            multisig = await self._open_multisig(request, recipient.account_id, fees, now, limits_enforced)
            return TransferResult(
                status=STATUS_PENDING_SIGNATURES,
                risk_assessment=assessment,
                fees=fees,
                multisig_id=multisig.multisig_id,
                pending_signers=list(multisig.pending_signers),
            )

        transaction = self._commit(
            request, recipient.account_id, fees, now, limits_enforced=limits_enforced
        )
        anchoring = await self._post_commit(request, transaction)
        return TransferResult(
            status=STATUS_COMPLETED,
            risk_assessment=assessment,
            fees=fees,
            transaction=transaction,
            anchoring=anchoring,
        )

    # Ledger commit

    def _commit(
        self,
        request: TransferRequest,
        recipient_account_id: str,
        fees: FeeBreakdown,
        now: datetime,
        multisig_id: Optional[str] = None,
        limits_enforced: bool = True,
    ) -> Transaction:
        metadata: Dict[str, Any] = {}
        if request.location is not None:
            metadata["location"] = request.location.model_dump(mode="json")
        if request.device_fingerprint:
            metadata["device_fingerprint"] = request.device_fingerprint
        if multisig_id:
            metadata["multisig_id"] = multisig_id

        transaction = Transaction(
            sender_account_id=request.sender_account_id,
            recipient_account_id=recipient_account_id,
            amount=to_decimal(request.amount),
            currency=request.currency,
            fees=fees,
            transaction_type=request.transaction_type,
            payment_method_id=request.payment_method_id,
            description=request.description,
            metadata=metadata,
            created_at=now,
        )
        try:
            committed = self.repository.commit_transfer(
                transaction, COUNTED_WINDOWS, enforce_limits=limits_enforced
            )
        except TransferError:
            raise
        except Exception as e:
            logger.error(f"Ledger commit failed for {transaction.transaction_id}: {e}", exc_info=True)
            raise TransferSystemError() from e

        transaction_logger.log_transaction(
            transaction_id=committed.transaction_id,
            event="TRANSFER_COMMITTED",
            details={
                "sender": committed.sender_account_id,
                "recipient": committed.recipient_account_id,
                "amount": committed.amount,
                "fees": committed.fees.total,
            },
        )
        return committed

    async def _post_commit(self, request: TransferRequest, transaction: Transaction) -> AnchoringOutcome:
        if request.require_external_anchor:
            anchoring = await self._anchor(transaction)
        else:
            anchoring = AnchoringOutcome(status="skipped")
        self._notify_transfer(transaction)
        return anchoring

    async def _anchor(self, transaction: Transaction) -> AnchoringOutcome:
        try:
            result = await asyncio.wait_for(self.anchorer.anchor(transaction), timeout=self.anchor_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Anchoring timed out for {transaction.transaction_id}")
            return AnchoringOutcome(status="failed", error="timeout")
        except Exception as e:
            logger.error(f"Anchoring failed for {transaction.transaction_id}: {e}")
            return AnchoringOutcome(status="failed", error=str(e))

        if not result.success or not result.reference_hash:
            logger.warning(f"Anchoring rejected for {transaction.transaction_id}: {result.error}")
            return AnchoringOutcome(status="failed", error=result.error)

        record = AnchorRecord(
            transaction_id=transaction.transaction_id,
            reference_hash=result.reference_hash,
            network=result.network or config.ANCHOR_NETWORK,
        )
        try:
            self.repository.attach_anchor_reference(record)
        except Exception as e:
            logger.error(f"Could not store anchor for {transaction.transaction_id}: {e}")
            return AnchoringOutcome(status="failed", error="anchor record not stored")

        transaction.anchor_reference = result.reference_hash
        return AnchoringOutcome(status="completed", reference_hash=result.reference_hash)

    # Notifications

    def _notify(self, account_id: str, notification_type: str, title: str, message: str, data: Dict[str, Any]):
        task = asyncio.create_task(
            self._send_bounded(account_id, notification_type, title, message, data)
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _send_bounded(self, account_id, notification_type, title, message, data):
        try:
            await asyncio.wait_for(
                self.notifier.send(account_id, notification_type, title, message, data),
                timeout=self.notification_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Notification {notification_type} to {account_id} timed out")
        except Exception as e:
            logger.error(f"Notification {notification_type} to {account_id} failed: {e}")

    def _notify_transfer(self, transaction: Transaction):
        amount = format_money(transaction.amount, transaction.currency)
        data = {"transaction_id": transaction.transaction_id, "amount": str(transaction.amount)}
        self._notify(
            transaction.sender_account_id,
            "transfer_sent",
            "Transfer sent",
            f"You sent {amount}",
            data,
        )
        self._notify(
            transaction.recipient_account_id,
            "transfer_received",
            "Money received",
            f"You received {amount}",
            data,
        )

    async def drain_background_tasks(self):
        """Wait for outstanding notification tasks to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # Multi-signature

    async def _open_multisig(
        self,
        request: TransferRequest,
        recipient_account_id: str,
        fees: FeeBreakdown,
        now: datetime,
        limits_enforced: bool = True,
    ) -> MultiSigTransaction:
        security = self.repository.get_security_config(request.sender_account_id)
        signers = list(dict.fromkeys(security.signers)) if security and security.signers else []
        if not signers:
            signers = [request.sender_account_id]

        if security and security.required_signatures:
            required = security.required_signatures
        else:
            required = config.DEFAULT_REQUIRED_SIGNATURES
        if required > len(signers):
            logger.warning(
                f"Required signatures {required} exceeds {len(signers)} signers "
                f"for {request.sender_account_id}, using {len(signers)}"
            )
            required = len(signers)

        multisig = MultiSigTransaction(
            request=request,
            recipient_account_id=recipient_account_id,
            fees=fees,
            limits_enforced=limits_enforced,
            required_signatures=required,
            signers=signers,
            pending_signers=list(signers),
            created_at=now,
            expires_at=now + timedelta(hours=config.MULTISIG_EXPIRY_HOURS),
        )
        self.repository.insert_multisig(multisig)
        transaction_logger.log_transaction(
            transaction_id=multisig.multisig_id,
            event="MULTISIG_CREATED",
            details={
                "sender": request.sender_account_id,
                "required_signatures": required,
                "signers": signers,
                "expires_at": multisig.expires_at,
            },
        )

        amount = format_money(request.amount, request.currency)
        for signer in multisig.pending_signers:
            self._notify(
                signer,
                "signature_requested",
                "Signature required",
                f"A transfer of {amount} is waiting for your signature",
                {"multisig_id": multisig.multisig_id, "expires_at": multisig.expires_at.isoformat()},
            )

        if self.expiry_scheduler is not None:
            try:
                await self.expiry_scheduler.schedule(multisig)
            except Exception as e:
                # sign() still rejects expired transactions on its own
                logger.error(f"Could not schedule expiry for {multisig.multisig_id}: {e}")
        return multisig

    def get_multisig(self, multisig_id: str) -> MultiSigTransaction:
        multisig = self.repository.get_multisig(multisig_id)
        if multisig is None:
            raise MultiSigNotFound()
        return multisig

    async def sign(
        self,
        multisig_id: str,
        signer_id: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> SignResult:
        """
        Record a signature and execute the transfer once the threshold is met.

        The signature write is a compare-and-set on the document version, so
        only the caller whose write crosses the threshold executes.
        """
        now = now or self.clock()

        for _ in range(CAS_RETRIES):
            multisig = self.get_multisig(multisig_id)
            if multisig.status == MultiSigStatus.EXPIRED or (
                multisig.status == MultiSigStatus.PENDING_SIGNATURES and multisig.is_expired(now)
            ):
                raise MultiSigExpired()
            if multisig.status != MultiSigStatus.PENDING_SIGNATURES:
                raise MultiSigNotPending()
            if signer_id not in multisig.signers:
                raise MultiSigUnauthorizedSigner()
            if signer_id in multisig.signatures or signer_id not in multisig.pending_signers:
                raise MultiSigAlreadySigned()

            expected_version = multisig.version
            multisig.signatures[signer_id] = SignatureRecord(signature=signature, signed_at=now)
            multisig.pending_signers = [s for s in multisig.pending_signers if s != signer_id]
            multisig.current_signatures = len(multisig.signers) - len(multisig.pending_signers)
            threshold_reached = multisig.current_signatures >= multisig.required_signatures
            if threshold_reached:
                multisig.status = MultiSigStatus.READY_FOR_EXECUTION

            if self.repository.compare_and_set_multisig(multisig, expected_version):
                break
            logger.info(f"Concurrent update on {multisig_id}, retrying signature from {signer_id}")
        else:
            raise TransferSystemError("Could not record signature, please try again")

        transaction_logger.log_transaction(
            transaction_id=multisig_id,
            event="MULTISIG_SIGNED",
            details={
                "signer": signer_id,
                "current_signatures": multisig.current_signatures,
                "required_signatures": multisig.required_signatures,
            },
        )

        if not threshold_reached:
            return SignResult(completed=False, status=multisig.status, multisig=multisig)
        return await self._execute_multisig(multisig, now)

    async def _execute_multisig(self, multisig: MultiSigTransaction, now: datetime) -> SignResult:
        request = multisig.request
        try:
            limits_enforced = multisig.limits_enforced
            if limits_enforced:
                # Windows may have rolled over while the transfer waited for signatures
                limits_enforced = self.limit_validator.validate(request.sender_account_id, request.amount, now)
            transaction = self._commit(
                request,
                multisig.recipient_account_id,
                multisig.fees,
                now,
                multisig.multisig_id,
                limits_enforced=limits_enforced,
            )
        except Exception as e:
            error = e if isinstance(e, TransferError) else TransferSystemError()
            logger.warning(f"Execution of {multisig.multisig_id} failed: {e}")
            multisig.status = MultiSigStatus.EXECUTION_FAILED
            multisig.execution_result = {"success": False, "error": error.to_dict()}
            multisig.executed_at = now
            self._store_execution_state(multisig)
            return SignResult(
                completed=False,
                status=multisig.status,
                multisig=multisig,
                error=error.to_dict(),
            )

        multisig.status = MultiSigStatus.EXECUTED
        multisig.execution_result = {"success": True, "transaction_id": transaction.transaction_id}
        multisig.executed_at = now
        self._store_execution_state(multisig)

        anchoring = await self._post_commit(request, transaction)
        return SignResult(
            completed=True,
            status=multisig.status,
            multisig=multisig,
            transaction=transaction,
            anchoring=anchoring,
        )

    def _store_execution_state(self, multisig: MultiSigTransaction):
        # Only the executing caller writes once the status is ready_for_execution
        expected_version = multisig.version
        for _ in range(CAS_RETRIES):
            if self.repository.compare_and_set_multisig(multisig, expected_version):
                return
            latest = self.repository.get_multisig(multisig.multisig_id)
            if latest is None or latest.status != MultiSigStatus.READY_FOR_EXECUTION:
                logger.error(
                    f"Execution state of {multisig.multisig_id} not recorded, "
                    f"stored status is {latest.status.value if latest else 'missing'}"
                )
                return
            expected_version = latest.version
        logger.error(f"Could not record execution state of {multisig.multisig_id}")

    def expire_multisig(self, multisig_id: str, now: Optional[datetime] = None) -> MultiSigTransaction:
        """Move a still-pending multi-sig transaction to ``expired`` after its deadline."""
        now = now or self.clock()
        for _ in range(CAS_RETRIES):
            multisig = self.get_multisig(multisig_id)
            if multisig.status != MultiSigStatus.PENDING_SIGNATURES or now < multisig.expires_at:
                return multisig
            expected_version = multisig.version
            multisig.status = MultiSigStatus.EXPIRED
            if self.repository.compare_and_set_multisig(multisig, expected_version):
                transaction_logger.log_transaction(
                    transaction_id=multisig_id,
                    event="MULTISIG_EXPIRED",
                    details={"pending_signers": multisig.pending_signers},
                )
                return multisig
        raise TransferSystemError("Could not expire multi-signature transaction, please try again")

    # Wallet reads

    def get_balance(self, account_id: str) -> Dict[str, Any]:
        account = self.repository.get_account(account_id)
        if account is None:
            raise AccountNotFound()
        return {
            "account_id": account.account_id,
            "currency": account.currency,
            "available_balance": account.available_balance,
            "escrow_balance": account.escrow_balance,
            "pending_balance": account.pending_balance,
            "total_balance": account.total_balance,
        }

    def list_transactions(self, account_id: str, limit: int = 20) -> List[Transaction]:
        if self.repository.get_account(account_id) is None:
            raise AccountNotFound()
        return self.repository.list_account_transactions(account_id, limit)

    def update_limits(
        self,
        account_id: str,
        daily_limit: Optional[Decimal] = None,
        monthly_limit: Optional[Decimal] = None,
    ) -> List[TransactionLimit]:
        if self.repository.get_account(account_id) is None:
            raise AccountNotFound()
        return self.limit_validator.update_limits(account_id, daily_limit, monthly_limit, self.clock())

    def quote_fees(
        self,
        amount: Union[Decimal, float, int, str],
        transaction_type: Union[TransactionType, str] = TransactionType.TRANSFER,
        category: Union[PaymentMethodCategory, str] = PaymentMethodCategory.WALLET,
    ) -> FeeBreakdown:
        """Fee breakdown a transfer would be charged, without touching the ledger."""
        amount = to_decimal(amount)
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmount("Transfer amount must be greater than zero")
        try:
            category = PaymentMethodCategory(category)
        except ValueError:
            raise InvalidPaymentMethod(f"Unknown payment method category {category}")
        return self.fee_calculator.calculate(amount, transaction_type, category)

    # Wallet security

    def configure_wallet_security(
        self,
        account_id: str,
        signers: List[str],
        required_signatures: Optional[int] = None,
    ) -> WalletSecurityConfig:
        """
        Set who signs the account's multi-signature transfers and how many must.

        Signers are de-duplicated in order and must all be existing accounts.
        Without ``required_signatures`` new multi-sig transfers ask for two
        signatures, or one when there is a single signer.
        """
        if self.repository.get_account(account_id) is None:
            raise AccountNotFound()

        signers = list(dict.fromkeys(signers))
        if not signers:
            raise InvalidSecurityConfig("At least one signer is required")
        unknown = [signer for signer in signers if self.repository.get_account(signer) is None]
        if unknown:
            raise InvalidSecurityConfig(f"Unknown signer accounts: {', '.join(unknown)}")
        if required_signatures is not None and not 1 <= required_signatures <= len(signers):
            raise InvalidSecurityConfig(
                f"Required signatures must be between 1 and {len(signers)}"
            )

        security_config = WalletSecurityConfig(
            account_id=account_id,
            signers=signers,
            required_signatures=required_signatures,
            updated_at=self.clock(),
        )
        self.repository.save_security_config(security_config)
        transaction_logger.log_transaction(
            transaction_id="-",
            event="WALLET_SECURITY_CONFIGURED",
            details={
                "account_id": account_id,
                "signers": signers,
                "required_signatures": required_signatures,
            },
        )
        return security_config

    # Anchoring

    async def verify_anchor(self, transaction_id: str) -> AnchorVerification:
        """Recompute a committed transaction's content hash and compare it with its anchor."""
        transaction = self.repository.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound()

        computed_hash = canonical_transaction_hash(transaction)
        record = self.repository.get_anchor_record(transaction_id)
        if record is None:
            return AnchorVerification(
                transaction_id=transaction_id,
                anchored=False,
                verified=False,
                computed_hash=computed_hash,
            )

        try:
            matches = await asyncio.wait_for(
                self.anchorer.verify(transaction, record.reference_hash), timeout=self.anchor_timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Anchor verification timed out for {transaction_id}")
            raise TransferSystemError() from e
        except Exception as e:
            logger.error(f"Anchor verification failed for {transaction_id}: {e}")
            raise TransferSystemError() from e

        verified = matches and transaction.anchor_reference == record.reference_hash
        if not verified:
            logger.warning(f"Anchor mismatch for {transaction_id}: stored {record.reference_hash}")
        return AnchorVerification(
            transaction_id=transaction_id,
            anchored=True,
            verified=verified,
            reference_hash=record.reference_hash,
            computed_hash=computed_hash,
            network=record.network,
        )
