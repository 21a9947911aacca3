"""Durable expiry timer for multi-signature transactions."""

import asyncio
from datetime import datetime, timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

# Use unsafe imports for non-deterministic code
with workflow.unsafe.imports_passed_through():
    from temporal.activities import MultiSigActivities
    from temporal.shared import MultiSigExpiryInput, MultiSigExpiryResult


@workflow.defn
class MultiSigExpiryWorkflow:
    """Sleeps until a multi-sig transaction's deadline, then expires it."""

    def __init__(self):
        self.multisig_id = None
        self.current_state = "waiting"

    @workflow.run
    async def run(self, expiry: MultiSigExpiryInput) -> MultiSigExpiryResult:
        self.multisig_id = expiry.multisig_id

        expires_at = datetime.fromisoformat(expiry.expires_at)
        delay = (expires_at - workflow.now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        self.current_state = "expiring"
        result = await workflow.execute_activity_method(
            MultiSigActivities.expire_multisig,
            expiry,
            start_to_close_timeout=timedelta(seconds=30),
            retry_policy=RetryPolicy(
                maximum_attempts=5,
                initial_interval=timedelta(seconds=1),
                maximum_interval=timedelta(seconds=60),
                backoff_coefficient=2,
            ),
        )
        self.current_state = "completed"
        return MultiSigExpiryResult(
            multisig_id=expiry.multisig_id,
            status=result["status"],
            expired=result["expired"],
        )

    @workflow.query
    def get_state(self) -> dict:
        return {"multisig_id": self.multisig_id, "current_state": self.current_state}
