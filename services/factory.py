"""Wiring of the repository and transfer services from configuration."""

import logging
from typing import Optional

from database.repositories import LedgerRepository
from services.transfer_orchestrator import MultiSigExpiryScheduler, TransferOrchestrator
from utils.config import config

logger = logging.getLogger(__name__)


def create_repository(backend: Optional[str] = None) -> LedgerRepository:
    """Build the ledger repository for ``STORE_BACKEND``.

    The Couchbase backend expects ``connect_to_couchbase`` to have run.
    """
    backend = (backend or config.STORE_BACKEND).lower()
    if backend == "memory":
        from database.memory_repository import InMemoryLedgerRepository
        logger.info("Using in-memory ledger store")
        return InMemoryLedgerRepository()
    if backend == "couchbase":
        from database.connection import get_sync_cluster, get_sync_scope
        from database.couchbase_repository import CouchbaseLedgerRepository
        logger.info(f"Using Couchbase ledger store (bucket {config.COUCHBASE_BUCKET})")
        return CouchbaseLedgerRepository(get_sync_cluster(), get_sync_scope())
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def create_orchestrator(
    repository: Optional[LedgerRepository] = None,
    expiry_scheduler: Optional[MultiSigExpiryScheduler] = None,
) -> TransferOrchestrator:
    return TransferOrchestrator(
        repository or create_repository(),
        expiry_scheduler=expiry_scheduler,
    )
