"""In-process ledger store used for local development and tests.

A single re-entrant lock plays the role of the database's row locks: every
read-modify-write happens while it is held, and documents are copied on the
way in and out so callers never share mutable state with the store.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from database.repositories import LedgerRepository
from database.schemas import (
    Account,
    AnchorRecord,
    FraudAuditLog,
    LimitWindow,
    MultiSigTransaction,
    Notification,
    PaymentMethod,
    Transaction,
    TransactionLimit,
    TransactionStatus,
    WalletSecurityConfig,
    limit_key,
)
from services.errors import AccountNotFound, InsufficientBalance, LimitExceeded
from utils.decimal_utils import add_money, subtract_money
from utils.logger import transaction_logger

logger = logging.getLogger(__name__)


class InMemoryLedgerRepository(LedgerRepository):
    """Dictionary-backed implementation of ``LedgerRepository``."""

    def __init__(self):
        self._lock = threading.RLock()
        self._accounts: Dict[str, Account] = {}
        self._payment_methods: Dict[str, PaymentMethod] = {}
        self._limits: Dict[str, TransactionLimit] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._multisig: Dict[str, MultiSigTransaction] = {}
        self._fraud_audit: List[FraudAuditLog] = []
        self._anchors: Dict[str, AnchorRecord] = {}
        self._notifications: List[Notification] = []
        self._security_configs: Dict[str, WalletSecurityConfig] = {}

    @staticmethod
    def _copy(model):
        return model.model_copy(deep=True) if model is not None else None

    # Accounts
    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._copy(self._accounts.get(account_id))

    def save_account(self, account: Account) -> Account:
        with self._lock:
            account.updated_at = datetime.now(timezone.utc)
            self._accounts[account.account_id] = self._copy(account)
            return self._copy(account)

    def _find_account(self, field: str, value: str) -> Optional[Account]:
        with self._lock:
            for account in self._accounts.values():
                if getattr(account, field) == value:
                    return self._copy(account)
        return None

    def find_account_by_email(self, email: str) -> Optional[Account]:
        return self._find_account("email", email)

    def find_account_by_phone(self, phone: str) -> Optional[Account]:
        return self._find_account("phone", phone)

    def find_account_by_wallet_id(self, wallet_id: str) -> Optional[Account]:
        return self._find_account("wallet_id", wallet_id)

    # Payment methods
    def get_payment_method(self, payment_method_id: str) -> Optional[PaymentMethod]:
        with self._lock:
            return self._copy(self._payment_methods.get(payment_method_id))

    def save_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod:
        with self._lock:
            self._payment_methods[payment_method.payment_method_id] = self._copy(payment_method)
            return self._copy(payment_method)

    # Limit windows
    def get_limits(self, account_id: str) -> List[TransactionLimit]:
        with self._lock:
            return [
                self._copy(row) for row in self._limits.values()
                if row.account_id == account_id
            ]

    def insert_limits(self, limits: List[TransactionLimit]) -> List[TransactionLimit]:
        with self._lock:
            for row in limits:
                self._limits.setdefault(row.key, self._copy(row))
            return [self._copy(self._limits[row.key]) for row in limits]

    def reset_limit_window(
        self,
        account_id: str,
        window: LimitWindow,
        observed_reset_date: datetime,
        new_reset_date: datetime,
    ) -> TransactionLimit:
        with self._lock:
            row = self._limits[limit_key(account_id, window)]
            if row.reset_date == observed_reset_date:
                row.current_amount = Decimal("0")
                row.transaction_count = 0
                row.reset_date = new_reset_date
                logger.info(f"Reset {window.value} limit window for {account_id}")
            return self._copy(row)

    def update_limit_amount(
        self, account_id: str, window: LimitWindow, limit_amount: Decimal
    ) -> TransactionLimit:
        with self._lock:
            row = self._limits.get(limit_key(account_id, window))
            if row is None:
                raise AccountNotFound(f"No {window.value} limit configured for {account_id}")
            row.limit_amount = limit_amount
            return self._copy(row)

    # Ledger
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._copy(self._transactions.get(transaction_id))

    def list_sent_transactions(
        self, account_id: str, since: Optional[datetime] = None
    ) -> List[Transaction]:
        with self._lock:
            rows = [
                self._copy(tx) for tx in self._transactions.values()
                if tx.sender_account_id == account_id
                and tx.status == TransactionStatus.COMPLETED
                and (since is None or tx.created_at >= since)
            ]
        return sorted(rows, key=lambda tx: tx.created_at)

    def list_account_transactions(self, account_id: str, limit: int = 20) -> List[Transaction]:
        with self._lock:
            rows = [
                self._copy(tx) for tx in self._transactions.values()
                if account_id in (tx.sender_account_id, tx.recipient_account_id)
            ]
        rows.sort(key=lambda tx: tx.created_at, reverse=True)
        return rows[:limit]

    def commit_transfer(
        self,
        transaction: Transaction,
        counted_windows: List[LimitWindow],
        enforce_limits: bool = True,
    ) -> Transaction:
        session_id = f"SESSION_{uuid.uuid4().hex[:8].upper()}"
        with self._lock:
            sender = self._accounts.get(transaction.sender_account_id)
            if sender is None:
                raise AccountNotFound(f"Sender account {transaction.sender_account_id} not found")
            recipient = self._accounts.get(transaction.recipient_account_id)
            if recipient is None:
                raise AccountNotFound(f"Recipient account {transaction.recipient_account_id} not found")

            debit = transaction.total_debit
            if sender.available_balance < debit:
                transaction_logger.log_insufficient_funds(
                    account_id=sender.account_id,
                    transaction_id=transaction.transaction_id,
                    requested_amount=debit,
                    available_balance=sender.available_balance,
                )
                raise InsufficientBalance()

            rows = []
            for window in counted_windows:
                row = self._limits.get(limit_key(sender.account_id, window))
                if row is None:
                    continue
                if enforce_limits:
                    if row.current_amount + transaction.amount > row.limit_amount:
                        raise LimitExceeded(window.value)
                    if (row.max_transaction_count is not None
                            and row.transaction_count >= row.max_transaction_count):
                        raise LimitExceeded(window.value)
                rows.append(row)

            # All guards passed; apply every change under the same lock
            now = datetime.now(timezone.utc)
            old_sender_balance = sender.available_balance
            old_recipient_balance = recipient.available_balance
            sender.available_balance = subtract_money(sender.available_balance, debit)
            sender.updated_at = now
            recipient.available_balance = add_money(recipient.available_balance, transaction.amount)
            recipient.updated_at = now
            for row in rows:
                row.current_amount = add_money(row.current_amount, transaction.amount)
                row.transaction_count += 1

            committed = self._copy(transaction)
            committed.status = TransactionStatus.COMPLETED
            committed.completed_at = now
            self._transactions[committed.transaction_id] = committed

        transaction_logger.log_balance_update(
            account_id=sender.account_id,
            transaction_id=committed.transaction_id,
            old_balance=old_sender_balance,
            new_balance=sender.available_balance,
            amount=debit,
            operation="DEBIT",
        )
        transaction_logger.log_balance_update(
            account_id=recipient.account_id,
            transaction_id=committed.transaction_id,
            old_balance=old_recipient_balance,
            new_balance=recipient.available_balance,
            amount=transaction.amount,
            operation="CREDIT",
        )
        transaction_logger.log_acid_transaction(
            session_id=session_id,
            operation="TRANSFER_COMPLETE",
            status="SUCCESS",
            details={"transaction_id": committed.transaction_id},
        )
        return self._copy(committed)

    def attach_anchor_reference(self, anchor: AnchorRecord) -> bool:
        with self._lock:
            tx = self._transactions.get(anchor.transaction_id)
            if tx is None or tx.anchor_reference is not None:
                return False
            self._anchors[anchor.transaction_id] = self._copy(anchor)
            tx.anchor_reference = anchor.reference_hash
            return True

    def get_anchor_record(self, transaction_id: str) -> Optional[AnchorRecord]:
        with self._lock:
            return self._copy(self._anchors.get(transaction_id))

    # Multi-signature
    def insert_multisig(self, multisig: MultiSigTransaction) -> MultiSigTransaction:
        with self._lock:
            if multisig.multisig_id in self._multisig:
                raise ValueError(f"Multi-signature transaction {multisig.multisig_id} already exists")
            self._multisig[multisig.multisig_id] = self._copy(multisig)
            return self._copy(multisig)

    def get_multisig(self, multisig_id: str) -> Optional[MultiSigTransaction]:
        with self._lock:
            return self._copy(self._multisig.get(multisig_id))

    def compare_and_set_multisig(self, multisig: MultiSigTransaction, expected_version: int) -> bool:
        with self._lock:
            stored = self._multisig.get(multisig.multisig_id)
            if stored is None or stored.version != expected_version:
                return False
            updated = self._copy(multisig)
            updated.version = expected_version + 1
            self._multisig[multisig.multisig_id] = updated
            multisig.version = updated.version
            return True

    # Fraud audit
    def append_fraud_audit(self, entry: FraudAuditLog) -> None:
        with self._lock:
            self._fraud_audit.append(self._copy(entry))

    def list_fraud_audit(self, account_id: str) -> List[FraudAuditLog]:
        with self._lock:
            return [self._copy(e) for e in self._fraud_audit if e.account_id == account_id]

    # Notifications
    def save_notification(self, notification: Notification) -> None:
        with self._lock:
            self._notifications.append(self._copy(notification))

    def list_notifications(self, account_id: str) -> List[Notification]:
        with self._lock:
            return [self._copy(n) for n in self._notifications if n.account_id == account_id]

    # Wallet security
    def get_security_config(self, account_id: str) -> Optional[WalletSecurityConfig]:
        with self._lock:
            return self._copy(self._security_configs.get(account_id))

    def save_security_config(self, security_config: WalletSecurityConfig) -> None:
        with self._lock:
            self._security_configs[security_config.account_id] = self._copy(security_config)
