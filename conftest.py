"""Shared pytest fixtures: an in-memory ledger with a few funded wallets."""

import os
import tempfile

# Configuration is read at import time, so select the test backend first
os.environ["STORE_BACKEND"] = "memory"
os.environ["TEMPORAL_ENABLED"] = "false"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="spay-logs-"))

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from database.memory_repository import InMemoryLedgerRepository
from database.schemas import (
    LIMIT_WINDOW_ORDER,
    Account,
    MultiSigTransaction,
    PaymentMethod,
    PaymentMethodCategory,
    TransactionLimit,
    TransferRequest,
)
from services.transfer_orchestrator import MultiSigExpiryScheduler, TransferOrchestrator

# 12:00 in Johannesburg today, outside the unusual-hours window. Today keeps
# multi-sig deadlines derived from it in line with the activities' wall clock.
DAYTIME = datetime.now(timezone.utc).replace(hour=10, minute=0, second=0, microsecond=0)

SENDER = "ACC_SENDER"
RECIPIENT = "ACC_RECIPIENT"
COSIGNER = "ACC_COSIGNER"
SENDER_WALLET_PM = "PM_SENDER_WALLET"
SENDER_CARD_PM = "PM_SENDER_CARD"


class RecordingScheduler(MultiSigExpiryScheduler):
    def __init__(self):
        self.scheduled = []

    async def schedule(self, multisig: MultiSigTransaction) -> None:
        self.scheduled.append(multisig.multisig_id)


def raise_limits(repository, account_id, amount="1000000"):
    """Give an account limit rows high enough for large test transfers."""
    repository.insert_limits([
        TransactionLimit(
            account_id=account_id,
            window=window,
            limit_amount=Decimal(amount),
            reset_date=datetime.now(timezone.utc) + timedelta(days=1),
        )
        for window in LIMIT_WINDOW_ORDER
    ])


def make_request(**overrides) -> TransferRequest:
    data = {
        "sender_account_id": SENDER,
        "recipient_identifier": "recipient@example.com",
        "amount": Decimal("100"),
        "payment_method_id": SENDER_WALLET_PM,
        "requested_at": DAYTIME,
    }
    data.update(overrides)
    return TransferRequest(**data)


@pytest.fixture
def repository():
    return InMemoryLedgerRepository()


@pytest.fixture
def wallets(repository):
    """Sender with 1000 available, a recipient and a co-signer."""
    repository.save_account(Account(
        account_id=SENDER,
        display_name="Sender",
        email="sender@example.com",
        phone="+27820000001",
        wallet_id="SPAY-SENDER",
        available_balance=Decimal("1000.00"),
    ))
    repository.save_account(Account(
        account_id=RECIPIENT,
        display_name="Recipient",
        email="recipient@example.com",
        phone="+27820000002",
        wallet_id="SPAY-RECIPIENT",
        available_balance=Decimal("50.00"),
    ))
    repository.save_account(Account(
        account_id=COSIGNER,
        display_name="Co-signer",
        email="cosigner@example.com",
        available_balance=Decimal("0"),
    ))
    repository.save_payment_method(PaymentMethod(
        payment_method_id=SENDER_WALLET_PM,
        account_id=SENDER,
        category=PaymentMethodCategory.WALLET,
    ))
    repository.save_payment_method(PaymentMethod(
        payment_method_id=SENDER_CARD_PM,
        account_id=SENDER,
        category=PaymentMethodCategory.CARD,
    ))
    return repository


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def orchestrator(wallets, scheduler):
    return TransferOrchestrator(wallets, expiry_scheduler=scheduler, clock=lambda: DAYTIME)
