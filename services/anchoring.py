"""External anchoring of committed transactions."""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from database.schemas import Transaction
from utils.config import config
from utils.serialization import sanitize_for_json

logger = logging.getLogger(__name__)


@dataclass
class AnchorResult:
    success: bool
    reference_hash: Optional[str] = None
    network: Optional[str] = None
    error: Optional[str] = None


class ExternalAnchorer(ABC):
    """Records a transaction reference in an external immutable store."""

    @abstractmethod
    async def anchor(self, transaction: Transaction) -> AnchorResult: ...

    async def verify(self, transaction: Transaction, reference_hash: str) -> bool:
        """Check that ``reference_hash`` still matches the transaction's content."""
        return canonical_transaction_hash(transaction) == reference_hash


def canonical_transaction_hash(transaction: Transaction) -> str:
    """SHA-256 over the transaction's canonical JSON form, without the anchor field."""
    payload = sanitize_for_json(transaction.model_dump(exclude={"anchor_reference"}))
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return "0x" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class HashAnchorer(ExternalAnchorer):
    """Produces a deterministic content hash as the anchor reference."""

    def __init__(self, network: Optional[str] = None):
        self.network = network or config.ANCHOR_NETWORK

    async def anchor(self, transaction: Transaction) -> AnchorResult:
        reference_hash = canonical_transaction_hash(transaction)
        logger.info(f"Anchored {transaction.transaction_id} on {self.network}: {reference_hash}")
        return AnchorResult(success=True, reference_hash=reference_hash, network=self.network)
