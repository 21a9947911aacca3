"""Activities for multi-signature expiry."""

from typing import Any, Dict

from temporalio import activity

from database.schemas import MultiSigStatus
from services.errors import MultiSigNotFound
from services.transfer_orchestrator import TransferOrchestrator
from temporal.shared import MultiSigExpiryInput
from utils.serialization import prepare_activity_result


class MultiSigActivities:
    """Activities bound to a transfer orchestrator."""

    def __init__(self, orchestrator: TransferOrchestrator):
        self.orchestrator = orchestrator

    @activity.defn
    async def expire_multisig(self, expiry: MultiSigExpiryInput) -> Dict[str, Any]:
        """Expire the multi-sig transaction if it is still waiting for signatures."""
        try:
            multisig = self.orchestrator.expire_multisig(expiry.multisig_id)
        except MultiSigNotFound:
            activity.logger.warning(f"Multi-signature transaction {expiry.multisig_id} no longer exists")
            return {"multisig_id": expiry.multisig_id, "status": "not_found", "expired": False}

        expired = multisig.status == MultiSigStatus.EXPIRED
        activity.logger.info(
            f"Expiry check for {expiry.multisig_id}: status={multisig.status.value}"
        )
        return prepare_activity_result({
            "multisig_id": multisig.multisig_id,
            "status": multisig.status,
            "expired": expired,
        })
