"""Ledger repository backed by Couchbase, with ACID transfers and CAS updates."""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from couchbase.exceptions import (
    CasMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
    TransactionCommitAmbiguous,
    TransactionExpired,
    TransactionFailed,
)
from couchbase.options import QueryOptions, ReplaceOptions
from pydantic import TypeAdapter

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
from services.errors import AccountNotFound, InsufficientBalance, LimitExceeded, TransferSystemError
from utils.config import config
from utils.decimal_utils import add_money, from_decimal, subtract_money
from utils.logger import transaction_logger

logger = logging.getLogger(__name__)

CAS_RETRIES = 5


def account_key(account_id: str) -> str:
    return f"account::{account_id}"


def transaction_key(transaction_id: str) -> str:
    return f"txn::{transaction_id}"


def multisig_key(multisig_id: str) -> str:
    return f"multisig::{multisig_id}"


def _doc(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


_DATETIME = TypeAdapter(datetime)


def _json_datetime(value: datetime) -> str:
    """Render a timestamp the way stored documents carry it, for string comparison in queries."""
    return _DATETIME.dump_python(value.astimezone(timezone.utc), mode="json")


class CouchbaseLedgerRepository(LedgerRepository):
    """Repository for wallet ledger operations with Couchbase ACID support."""

    def __init__(self, cluster, scope):
        self.cluster = cluster
        self.scope = scope

    def _collection(self, name: str):
        return self.scope.collection(name)

    def _fqn(self, collection_name: str) -> str:
        return f"`{config.COUCHBASE_BUCKET}`.`{config.COUCHBASE_SCOPE}`.`{collection_name}`"

    def _get(self, collection_name: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            return self._collection(collection_name).get(key).content_as[dict]
        except DocumentNotFoundException:
            return None

    def _query(self, statement: str, **params) -> List[Dict[str, Any]]:
        try:
            result = self.cluster.query(statement, QueryOptions(named_parameters=params))
            return [row for row in result]
        except CouchbaseException as e:
            logger.error(f"Query failed: {e}")
            raise TransferSystemError() from e

    # Accounts
    def get_account(self, account_id: str) -> Optional[Account]:
        doc = self._get(config.ACCOUNTS_COLLECTION, account_key(account_id))
        return Account.model_validate(doc) if doc else None

    def save_account(self, account: Account) -> Account:
        account.updated_at = datetime.now(timezone.utc)
        self._collection(config.ACCOUNTS_COLLECTION).upsert(account_key(account.account_id), _doc(account))
        return account

    def _find_account(self, field: str, value: str) -> Optional[Account]:
        rows = self._query(
            f"SELECT a.* FROM {self._fqn(config.ACCOUNTS_COLLECTION)} AS a "
            f"WHERE a.`{field}` = $value LIMIT 1",
            value=value,
        )
        return Account.model_validate(rows[0]) if rows else None

    def find_account_by_email(self, email: str) -> Optional[Account]:
        return self._find_account("email", email)

    def find_account_by_phone(self, phone: str) -> Optional[Account]:
        return self._find_account("phone", phone)

    def find_account_by_wallet_id(self, wallet_id: str) -> Optional[Account]:
        return self._find_account("wallet_id", wallet_id)

    # Payment methods
    def get_payment_method(self, payment_method_id: str) -> Optional[PaymentMethod]:
        doc = self._get(config.PAYMENT_METHODS_COLLECTION, f"pm::{payment_method_id}")
        return PaymentMethod.model_validate(doc) if doc else None

    def save_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod:
        self._collection(config.PAYMENT_METHODS_COLLECTION).upsert(
            f"pm::{payment_method.payment_method_id}", _doc(payment_method)
        )
        return payment_method

    # Limit windows
    def get_limits(self, account_id: str) -> List[TransactionLimit]:
        rows = []
        for window in LimitWindow:
            doc = self._get(config.LIMITS_COLLECTION, limit_key(account_id, window))
            if doc:
                rows.append(TransactionLimit.model_validate(doc))
        return rows

    def insert_limits(self, limits: List[TransactionLimit]) -> List[TransactionLimit]:
        collection = self._collection(config.LIMITS_COLLECTION)
        stored = []
        for row in limits:
            try:
                collection.insert(row.key, _doc(row))
                stored.append(row)
            except DocumentExistsException:
                stored.append(TransactionLimit.model_validate(collection.get(row.key).content_as[dict]))
        return stored

    def reset_limit_window(
        self,
        account_id: str,
        window: LimitWindow,
        observed_reset_date: datetime,
        new_reset_date: datetime,
    ) -> TransactionLimit:
        collection = self._collection(config.LIMITS_COLLECTION)
        key = limit_key(account_id, window)
        for _ in range(CAS_RETRIES):
            result = collection.get(key)
            row = TransactionLimit.model_validate(result.content_as[dict])
            if row.reset_date != observed_reset_date:
                # Another validator already reset this window
                return row
            row.current_amount = Decimal("0")
            row.transaction_count = 0
            row.reset_date = new_reset_date
            try:
                collection.replace(key, _doc(row), ReplaceOptions(cas=result.cas))
                logger.info(f"Reset {window.value} limit window for {account_id}")
                return row
            except CasMismatchException:
                continue
        return TransactionLimit.model_validate(collection.get(key).content_as[dict])

    def update_limit_amount(
        self, account_id: str, window: LimitWindow, limit_amount: Decimal
    ) -> TransactionLimit:
        collection = self._collection(config.LIMITS_COLLECTION)
        key = limit_key(account_id, window)
        for _ in range(CAS_RETRIES):
            try:
                result = collection.get(key)
            except DocumentNotFoundException:
                raise AccountNotFound(f"No {window.value} limit configured for {account_id}")
            row = TransactionLimit.model_validate(result.content_as[dict])
            row.limit_amount = limit_amount
            try:
                collection.replace(key, _doc(row), ReplaceOptions(cas=result.cas))
                return row
            except CasMismatchException:
                continue
        raise TransferSystemError("Could not update limit, please retry")

    # Ledger
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        doc = self._get(config.TRANSACTIONS_COLLECTION, transaction_key(transaction_id))
        return Transaction.model_validate(doc) if doc else None

    def list_sent_transactions(
        self, account_id: str, since: Optional[datetime] = None
    ) -> List[Transaction]:
        statement = (
            f"SELECT t.* FROM {self._fqn(config.TRANSACTIONS_COLLECTION)} AS t "
            f"WHERE t.sender_account_id = $account_id AND t.status = $status"
        )
        params = {"account_id": account_id, "status": TransactionStatus.COMPLETED.value}
        if since is not None:
            statement += " AND t.created_at >= $since"
            params["since"] = _json_datetime(since)
        statement += " ORDER BY t.created_at ASC"
        return [Transaction.model_validate(row) for row in self._query(statement, **params)]

    def list_account_transactions(self, account_id: str, limit: int = 20) -> List[Transaction]:
        rows = self._query(
            f"SELECT t.* FROM {self._fqn(config.TRANSACTIONS_COLLECTION)} AS t "
            f"WHERE t.sender_account_id = $account_id OR t.recipient_account_id = $account_id "
            f"ORDER BY t.created_at DESC LIMIT $limit",
            account_id=account_id,
            limit=limit,
        )
        return [Transaction.model_validate(row) for row in rows]

    def commit_transfer(
        self,
        transaction: Transaction,
        counted_windows: List[LimitWindow],
        enforce_limits: bool = True,
    ) -> Transaction:
        """
        Execute the ledger mutation as one Couchbase distributed transaction.

        Debit, credit, limit counters and the journal entry either all commit
        or none do. Guards are evaluated on the documents read inside the
        transaction, so two concurrent commits cannot both pass a balance
        check against a stale snapshot.
        """
        accounts = self._collection(config.ACCOUNTS_COLLECTION)
        limits = self._collection(config.LIMITS_COLLECTION)
        transactions = self._collection(config.TRANSACTIONS_COLLECTION)

        sender_key = account_key(transaction.sender_account_id)
        recipient_key = account_key(transaction.recipient_account_id)
        if not accounts.exists(sender_key).exists:
            raise AccountNotFound(f"Sender account {transaction.sender_account_id} not found")
        if not accounts.exists(recipient_key).exists:
            raise AccountNotFound(f"Recipient account {transaction.recipient_account_id} not found")
        limit_keys = [
            (window, limit_key(transaction.sender_account_id, window))
            for window in counted_windows
        ]
        limit_keys = [(w, k) for w, k in limit_keys if limits.exists(k).exists]

        session_id = f"SESSION_{uuid.uuid4().hex[:8].upper()}"
        debit = transaction.total_debit
        now = datetime.now(timezone.utc)
        committed = transaction.model_copy(deep=True)
        committed.status = TransactionStatus.COMPLETED
        committed.completed_at = now

        # Guard failures are reported through outcome instead of raising, so
        # the transaction commits with no writes rather than being wrapped
        # in TransactionFailed.
        outcome: Dict[str, Any] = {}

        def txn_logic(ctx):
            outcome.clear()

            sender_doc = ctx.get(accounts, sender_key)
            sender = sender_doc.content_as[dict]
            available = from_decimal(sender.get("available_balance"))
            if available < debit:
                outcome["error"] = InsufficientBalance()
                outcome["available"] = available
                return

            limit_docs = []
            for window, key in limit_keys:
                limit_doc = ctx.get(limits, key)
                row = limit_doc.content_as[dict]
                current = from_decimal(row.get("current_amount"))
                if enforce_limits:
                    if current + transaction.amount > from_decimal(row.get("limit_amount")):
                        outcome["error"] = LimitExceeded(window.value)
                        return
                    max_count = row.get("max_transaction_count")
                    if max_count is not None and row.get("transaction_count", 0) >= max_count:
                        outcome["error"] = LimitExceeded(window.value)
                        return
                limit_docs.append((limit_doc, row, current))

            recipient_doc = ctx.get(accounts, recipient_key)
            recipient = recipient_doc.content_as[dict]

            new_sender_available = subtract_money(available, debit)
            sender["available_balance"] = str(new_sender_available)
            sender["updated_at"] = now.isoformat()
            ctx.replace(sender_doc, sender)

            old_recipient_available = from_decimal(recipient.get("available_balance"))
            new_recipient_available = add_money(old_recipient_available, transaction.amount)
            recipient["available_balance"] = str(new_recipient_available)
            recipient["updated_at"] = now.isoformat()
            ctx.replace(recipient_doc, recipient)

            for limit_doc, row, current in limit_docs:
                row["current_amount"] = str(add_money(current, transaction.amount))
                row["transaction_count"] = row.get("transaction_count", 0) + 1
                ctx.replace(limit_doc, row)

            ctx.insert(transactions, transaction_key(committed.transaction_id), _doc(committed))

            outcome["balances"] = (
                available, new_sender_available, old_recipient_available, new_recipient_available
            )

        transaction_logger.log_acid_transaction(
            session_id=session_id,
            operation="TRANSFER_START",
            status="INITIATED",
            details={
                "from": transaction.sender_account_id,
                "to": transaction.recipient_account_id,
                "amount": transaction.amount,
                "debit": debit,
                "transaction_id": transaction.transaction_id,
            },
        )

        try:
            self.cluster.transactions.run(txn_logic)
        except (TransactionFailed, TransactionExpired, TransactionCommitAmbiguous) as e:
            transaction_logger.log_acid_transaction(
                session_id=session_id,
                operation="TRANSFER_FAILED",
                status="ERROR",
                details={
                    "transaction_id": transaction.transaction_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise TransferSystemError() from e

        error = outcome.get("error")
        if error is not None:
            if isinstance(error, InsufficientBalance):
                transaction_logger.log_insufficient_funds(
                    account_id=transaction.sender_account_id,
                    transaction_id=transaction.transaction_id,
                    requested_amount=debit,
                    available_balance=outcome["available"],
                )
            transaction_logger.log_acid_transaction(
                session_id=session_id,
                operation="TRANSFER_REJECTED",
                status="INSUFFICIENT_FUNDS" if isinstance(error, InsufficientBalance) else "LIMIT_EXCEEDED",
                details={"transaction_id": transaction.transaction_id},
            )
            raise error

        old_sender, new_sender, old_recipient, new_recipient = outcome["balances"]
        transaction_logger.log_balance_update(
            account_id=transaction.sender_account_id,
            transaction_id=committed.transaction_id,
            old_balance=old_sender,
            new_balance=new_sender,
            amount=debit,
            operation="DEBIT",
        )
        transaction_logger.log_balance_update(
            account_id=transaction.recipient_account_id,
            transaction_id=committed.transaction_id,
            old_balance=old_recipient,
            new_balance=new_recipient,
            amount=transaction.amount,
            operation="CREDIT",
        )
        transaction_logger.log_acid_transaction(
            session_id=session_id,
            operation="TRANSFER_COMPLETE",
            status="SUCCESS",
            details={"transaction_id": committed.transaction_id, "committed": True},
        )
        return committed

    def attach_anchor_reference(self, anchor: AnchorRecord) -> bool:
        try:
            self._collection(config.ANCHORS_COLLECTION).insert(
                f"anchor::{anchor.transaction_id}", _doc(anchor)
            )
        except DocumentExistsException:
            return False

        collection = self._collection(config.TRANSACTIONS_COLLECTION)
        key = transaction_key(anchor.transaction_id)
        for _ in range(CAS_RETRIES):
            try:
                result = collection.get(key)
            except DocumentNotFoundException:
                return False
            doc = result.content_as[dict]
            if doc.get("anchor_reference"):
                return False
            doc["anchor_reference"] = anchor.reference_hash
            try:
                collection.replace(key, doc, ReplaceOptions(cas=result.cas))
                return True
            except CasMismatchException:
                continue
        return False

    def get_anchor_record(self, transaction_id: str) -> Optional[AnchorRecord]:
        doc = self._get(config.ANCHORS_COLLECTION, f"anchor::{transaction_id}")
        return AnchorRecord.model_validate(doc) if doc else None

    # Multi-signature
    def insert_multisig(self, multisig: MultiSigTransaction) -> MultiSigTransaction:
        self._collection(config.MULTISIG_COLLECTION).insert(
            multisig_key(multisig.multisig_id), _doc(multisig)
        )
        return multisig

    def get_multisig(self, multisig_id: str) -> Optional[MultiSigTransaction]:
        doc = self._get(config.MULTISIG_COLLECTION, multisig_key(multisig_id))
        return MultiSigTransaction.model_validate(doc) if doc else None

    def compare_and_set_multisig(self, multisig: MultiSigTransaction, expected_version: int) -> bool:
        collection = self._collection(config.MULTISIG_COLLECTION)
        key = multisig_key(multisig.multisig_id)
        try:
            result = collection.get(key)
        except DocumentNotFoundException:
            return False
        if result.content_as[dict].get("version") != expected_version:
            return False

        updated = multisig.model_copy(deep=True)
        updated.version = expected_version + 1
        try:
            collection.replace(key, _doc(updated), ReplaceOptions(cas=result.cas))
        except CasMismatchException:
            return False
        multisig.version = updated.version
        return True

    # Fraud audit
    def append_fraud_audit(self, entry: FraudAuditLog) -> None:
        self._collection(config.FRAUD_AUDIT_COLLECTION).insert(entry.key, _doc(entry))

    def list_fraud_audit(self, account_id: str) -> List[FraudAuditLog]:
        rows = self._query(
            f"SELECT f.* FROM {self._fqn(config.FRAUD_AUDIT_COLLECTION)} AS f "
            f"WHERE f.account_id = $account_id ORDER BY f.timestamp ASC",
            account_id=account_id,
        )
        return [FraudAuditLog.model_validate(row) for row in rows]

    # Notifications
    def save_notification(self, notification: Notification) -> None:
        self._collection(config.NOTIFICATIONS_COLLECTION).upsert(
            f"notification::{notification.notification_id}", _doc(notification)
        )

    def list_notifications(self, account_id: str) -> List[Notification]:
        rows = self._query(
            f"SELECT n.* FROM {self._fqn(config.NOTIFICATIONS_COLLECTION)} AS n "
            f"WHERE n.account_id = $account_id ORDER BY n.created_at DESC",
            account_id=account_id,
        )
        return [Notification.model_validate(row) for row in rows]

    # Wallet security
    def get_security_config(self, account_id: str) -> Optional[WalletSecurityConfig]:
        doc = self._get(config.SECURITY_CONFIGS_COLLECTION, f"security::{account_id}")
        return WalletSecurityConfig.model_validate(doc) if doc else None

    def save_security_config(self, security_config: WalletSecurityConfig) -> None:
        self._collection(config.SECURITY_CONFIGS_COLLECTION).upsert(
            f"security::{security_config.account_id}", _doc(security_config)
        )
