"""Risk signal sources consumed by the risk engine."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Set

from database.repositories import LedgerRepository
from database.schemas import GeoLocation, Transaction
from utils.config import config


class RiskSignalProvider(ABC):
    """Supplies history and reputation data for risk scoring."""

    @abstractmethod
    def account_history(self, account_id: str) -> List[Transaction]:
        """All completed transactions sent by the account, oldest first."""

    @abstractmethod
    def recent_transactions(self, account_id: str, since: datetime) -> List[Transaction]:
        """Completed transactions sent by the account since ``since``."""

    @abstractmethod
    def known_devices(self, account_id: str) -> Set[str]: ...

    @abstractmethod
    def last_known_location(self, account_id: str) -> Optional[GeoLocation]: ...

    @abstractmethod
    def recipient_risk_score(self, recipient_account_id: Optional[str]) -> int:
        """Reputation score of the recipient, 0 to 50."""


class StoreRiskSignalProvider(RiskSignalProvider):
    """Reads risk signals from the ledger store.

    Devices and locations come from the metadata of the account's previous
    transactions; recipient reputation is the recipient account's stored
    ``risk_score``.
    """

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def account_history(self, account_id: str) -> List[Transaction]:
        return self.repository.list_sent_transactions(account_id)

    def recent_transactions(self, account_id: str, since: datetime) -> List[Transaction]:
        return self.repository.list_sent_transactions(account_id, since=since)

    def known_devices(self, account_id: str) -> Set[str]:
        return {
            tx.metadata["device_fingerprint"]
            for tx in self.account_history(account_id)
            if tx.metadata.get("device_fingerprint")
        }

    def last_known_location(self, account_id: str) -> Optional[GeoLocation]:
        for tx in reversed(self.account_history(account_id)):
            location = tx.metadata.get("location")
            if location:
                return GeoLocation.model_validate(location)
        return None

    def recipient_risk_score(self, recipient_account_id: Optional[str]) -> int:
        if not recipient_account_id:
            return 0
        account = self.repository.get_account(recipient_account_id)
        if account is None:
            return 0
        return max(0, min(account.risk_score, config.RECIPIENT_RISK_CAP))
