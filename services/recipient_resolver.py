"""Resolve recipient handles to wallet accounts."""

import logging
from abc import ABC, abstractmethod

from database.repositories import LedgerRepository
from database.schemas import Account
from services.errors import RecipientNotFound

logger = logging.getLogger(__name__)


class RecipientResolver(ABC):
    @abstractmethod
    def resolve(self, identifier: str) -> Account:
        """Return the recipient account or raise ``RecipientNotFound``."""


class StoreRecipientResolver(RecipientResolver):
    """Looks up email, ``+``-prefixed phone, wallet id or account id."""

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def resolve(self, identifier: str) -> Account:
        identifier = (identifier or "").strip()
        if not identifier:
            raise RecipientNotFound()

        if "@" in identifier:
            account = self.repository.find_account_by_email(identifier.lower())
        elif identifier.startswith("+"):
            account = self.repository.find_account_by_phone(identifier)
        else:
            account = (
                self.repository.find_account_by_wallet_id(identifier)
                or self.repository.get_account(identifier)
            )

        if account is None:
            logger.info(f"Recipient not found for identifier {identifier!r}")
            raise RecipientNotFound()
        return account
