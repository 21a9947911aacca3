"""Starts expiry timers for multi-signature transactions on Temporal."""

import logging

from temporalio.client import Client

from database.schemas import MultiSigTransaction
from services.transfer_orchestrator import MultiSigExpiryScheduler
from temporal.shared import MULTISIG_TASK_QUEUE, MultiSigExpiryInput, expiry_workflow_id
from temporal.workflows import MultiSigExpiryWorkflow

logger = logging.getLogger(__name__)


class TemporalExpiryScheduler(MultiSigExpiryScheduler):
    def __init__(self, client: Client, task_queue: str = MULTISIG_TASK_QUEUE):
        self.client = client
        self.task_queue = task_queue

    async def schedule(self, multisig: MultiSigTransaction) -> None:
        handle = await self.client.start_workflow(
            MultiSigExpiryWorkflow.run,
            MultiSigExpiryInput(
                multisig_id=multisig.multisig_id,
                expires_at=multisig.expires_at.isoformat(),
            ),
            id=expiry_workflow_id(multisig.multisig_id),
            task_queue=self.task_queue,
        )
        logger.info(f"Started expiry workflow {handle.id} for {multisig.multisig_id}")
