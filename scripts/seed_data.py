"""Seed the wallet ledger with demo accounts, payment methods and signers."""

import asyncio
import logging
import sys
from decimal import Decimal
from typing import List

from couchbase.exceptions import CouchbaseException

from database.connection import close_couchbase_connection, connect_to_couchbase, db
from database.repositories import LedgerRepository
from database.schemas import Account, PaymentMethod, PaymentMethodCategory, WalletSecurityConfig
from scripts.setup_couchbase import COLLECTIONS
from services.factory import create_repository
from utils.config import config

logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s:%(name)s:%(message)s'
)
logger = logging.getLogger(__name__)

SAMPLE_ACCOUNTS = [
    {
        "account_id": "ACC_THANDI",
        "display_name": "Thandi Nkosi",
        "email": "thandi@example.co.za",
        "phone": "+27821234567",
        "wallet_id": "SPAY-THANDI-01",
        "available_balance": Decimal("25000.00"),
    },
    {
        "account_id": "ACC_PIETER",
        "display_name": "Pieter van Wyk",
        "email": "pieter@example.co.za",
        "phone": "+27837654321",
        "wallet_id": "SPAY-PIETER-01",
        "available_balance": Decimal("4000.00"),
    },
    {
        "account_id": "ACC_LERATO",
        "display_name": "Lerato Mokoena",
        "email": "lerato@example.co.za",
        "phone": "+27711112222",
        "wallet_id": "SPAY-LERATO-01",
        "available_balance": Decimal("1500.00"),
        "escrow_balance": Decimal("250.00"),
    },
    {
        # Recipient with a poor reputation score
        "account_id": "ACC_FLAGGED",
        "display_name": "Flagged Merchant",
        "email": "merchant@example.net",
        "wallet_id": "SPAY-FLAGGED-01",
        "risk_score": 45,
    },
]

SAMPLE_PAYMENT_METHODS = [
    {"payment_method_id": "PM_THANDI_WALLET", "account_id": "ACC_THANDI", "category": PaymentMethodCategory.WALLET, "label": "S-Pay wallet"},
    {"payment_method_id": "PM_THANDI_CARD", "account_id": "ACC_THANDI", "category": PaymentMethodCategory.CARD, "label": "Visa ending 4242"},
    {"payment_method_id": "PM_PIETER_WALLET", "account_id": "ACC_PIETER", "category": PaymentMethodCategory.WALLET, "label": "S-Pay wallet"},
    {"payment_method_id": "PM_LERATO_BANK", "account_id": "ACC_LERATO", "category": PaymentMethodCategory.BANK, "label": "FNB cheque"},
]

SAMPLE_SECURITY_CONFIGS = [
    # Thandi's larger transfers need Pieter's co-signature
    {"account_id": "ACC_THANDI", "signers": ["ACC_THANDI", "ACC_PIETER"], "required_signatures": 2},
]


def seed_wallets(repository: LedgerRepository) -> List[Account]:
    """Write the demo documents through the repository."""
    accounts = [repository.save_account(Account(**data)) for data in SAMPLE_ACCOUNTS]
    logger.info(f"✅ Seeded {len(accounts)} accounts")

    for data in SAMPLE_PAYMENT_METHODS:
        repository.save_payment_method(PaymentMethod(**data))
    logger.info(f"✅ Seeded {len(SAMPLE_PAYMENT_METHODS)} payment methods")

    for data in SAMPLE_SECURITY_CONFIGS:
        repository.save_security_config(WalletSecurityConfig(**data))
    logger.info(f"✅ Seeded {len(SAMPLE_SECURITY_CONFIGS)} wallet security configs")
    return accounts


async def seed_data():
    await connect_to_couchbase()
    try:
        seed_wallets(create_repository("couchbase"))
    finally:
        await close_couchbase_connection()


async def clear_all_data():
    """Delete every ledger document (use with caution!)."""
    logger.warning("⚠️  This will delete ALL wallet ledger data!")
    response = input("Are you sure? Type 'yes' to continue: ")
    if response.lower() != 'yes':
        logger.info("Cancelled.")
        return

    await connect_to_couchbase()
    try:
        for collection_name in COLLECTIONS:
            statement = f"DELETE FROM `{config.COUCHBASE_BUCKET}`.`{config.COUCHBASE_SCOPE}`.`{collection_name}`"
            try:
                db.cluster.query(statement).execute()
                logger.info(f"Cleared {collection_name}")
            except CouchbaseException as e:
                logger.error(f"Error clearing {collection_name}: {e}")
        logger.info("✅ All data cleared")
    finally:
        await close_couchbase_connection()


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "clear":
        asyncio.run(clear_all_data())
    else:
        asyncio.run(seed_data())
