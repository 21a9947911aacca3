"""Data-access interface for the wallet ledger.

Services depend only on ``LedgerRepository``. Implementations must provide
the two atomic primitives the pipeline relies on:

* ``commit_transfer`` applies debit, credit, limit-counter increments and
  the ledger insert as one write, guarded by the sender's balance.
* ``compare_and_set_multisig`` replaces a multi-signature document only if
  its ``version`` is still the one the caller read.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

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
    WalletSecurityConfig,
)


class LedgerRepository(ABC):
    """Generic point reads/writes plus the atomic ledger primitives."""

    # Accounts
    @abstractmethod
    def get_account(self, account_id: str) -> Optional[Account]: ...

    @abstractmethod
    def save_account(self, account: Account) -> Account: ...

    @abstractmethod
    def find_account_by_email(self, email: str) -> Optional[Account]: ...

    @abstractmethod
    def find_account_by_phone(self, phone: str) -> Optional[Account]: ...

    @abstractmethod
    def find_account_by_wallet_id(self, wallet_id: str) -> Optional[Account]: ...

    # Payment methods
    @abstractmethod
    def get_payment_method(self, payment_method_id: str) -> Optional[PaymentMethod]: ...

    @abstractmethod
    def save_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod: ...

    # Limit windows
    @abstractmethod
    def get_limits(self, account_id: str) -> List[TransactionLimit]: ...

    @abstractmethod
    def insert_limits(self, limits: List[TransactionLimit]) -> List[TransactionLimit]:
        """Insert rows that do not exist yet and return the stored rows."""

    @abstractmethod
    def reset_limit_window(
        self,
        account_id: str,
        window: LimitWindow,
        observed_reset_date: datetime,
        new_reset_date: datetime,
    ) -> TransactionLimit:
        """Zero the window if its reset date is still ``observed_reset_date``.

        Returns the stored row after the call, whether or not this caller
        performed the reset.
        """

    @abstractmethod
    def update_limit_amount(
        self, account_id: str, window: LimitWindow, limit_amount: Decimal
    ) -> TransactionLimit: ...

    # Ledger
    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]: ...

    @abstractmethod
    def list_sent_transactions(
        self, account_id: str, since: Optional[datetime] = None
    ) -> List[Transaction]:
        """Completed transactions sent by the account, oldest first."""

    @abstractmethod
    def list_account_transactions(self, account_id: str, limit: int = 20) -> List[Transaction]:
        """Sent or received transactions, newest first."""

    @abstractmethod
    def commit_transfer(
        self,
        transaction: Transaction,
        counted_windows: List[LimitWindow],
        enforce_limits: bool = True,
    ) -> Transaction:
        """Atomically debit, credit, bump limit counters and insert the transaction.

        Raises ``InsufficientBalance`` or ``LimitExceeded`` without writing
        anything when a guard fails, and ``AccountNotFound`` when either
        party is missing. With ``enforce_limits`` off the counters are still
        incremented but not checked.
        """

    @abstractmethod
    def attach_anchor_reference(self, anchor: AnchorRecord) -> bool:
        """Store the anchor record and annotate the transaction once."""

    @abstractmethod
    def get_anchor_record(self, transaction_id: str) -> Optional[AnchorRecord]: ...

    # Multi-signature
    @abstractmethod
    def insert_multisig(self, multisig: MultiSigTransaction) -> MultiSigTransaction: ...

    @abstractmethod
    def get_multisig(self, multisig_id: str) -> Optional[MultiSigTransaction]: ...

    @abstractmethod
    def compare_and_set_multisig(self, multisig: MultiSigTransaction, expected_version: int) -> bool:
        """Replace the document if its stored version equals ``expected_version``.

        On success the stored version becomes ``expected_version + 1``.
        """

    # Fraud audit (append-only)
    @abstractmethod
    def append_fraud_audit(self, entry: FraudAuditLog) -> None: ...

    @abstractmethod
    def list_fraud_audit(self, account_id: str) -> List[FraudAuditLog]: ...

    # Notifications
    @abstractmethod
    def save_notification(self, notification: Notification) -> None: ...

    @abstractmethod
    def list_notifications(self, account_id: str) -> List[Notification]: ...

    # Wallet security
    @abstractmethod
    def get_security_config(self, account_id: str) -> Optional[WalletSecurityConfig]: ...

    @abstractmethod
    def save_security_config(self, security_config: WalletSecurityConfig) -> None: ...
