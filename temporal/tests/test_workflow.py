"""Tests for the multi-signature expiry activity and workflow."""

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from temporalio.testing import ActivityEnvironment, WorkflowEnvironment
from temporalio.worker import Worker

from conftest import make_request
from database.schemas import MultiSigStatus
from temporal.activities import MultiSigActivities
from temporal.shared import MultiSigExpiryInput
from temporal.workflows import MultiSigExpiryWorkflow


async def open_multisig(orchestrator, opened_at):
    result = await orchestrator.process_transfer(make_request(require_multi_sig=True), now=opened_at)
    return orchestrator.get_multisig(result.multisig_id)


@pytest.mark.asyncio
async def test_activity_expires_overdue_multisig(orchestrator, wallets):
    multisig = await open_multisig(orchestrator, datetime.now(timezone.utc) - timedelta(days=2))
    activities = MultiSigActivities(orchestrator)

    result = await ActivityEnvironment().run(
        activities.expire_multisig,
        MultiSigExpiryInput(multisig_id=multisig.multisig_id, expires_at=multisig.expires_at.isoformat()),
    )

    assert result == {"multisig_id": multisig.multisig_id, "status": "expired", "expired": True}
    assert wallets.get_multisig(multisig.multisig_id).status == MultiSigStatus.EXPIRED


@pytest.mark.asyncio
async def test_activity_leaves_open_multisig(orchestrator, wallets):
    multisig = await open_multisig(orchestrator, datetime.now(timezone.utc))
    activities = MultiSigActivities(orchestrator)

    result = await ActivityEnvironment().run(
        activities.expire_multisig,
        MultiSigExpiryInput(multisig_id=multisig.multisig_id, expires_at=multisig.expires_at.isoformat()),
    )

    assert result["status"] == "pending_signatures"
    assert result["expired"] is False


@pytest.mark.asyncio
async def test_activity_reports_missing_multisig(orchestrator):
    activities = MultiSigActivities(orchestrator)

    result = await ActivityEnvironment().run(
        activities.expire_multisig,
        MultiSigExpiryInput(multisig_id="MS_GONE", expires_at=datetime.now(timezone.utc).isoformat()),
    )

    assert result == {"multisig_id": "MS_GONE", "status": "not_found", "expired": False}


@pytest.mark.asyncio
@pytest.mark.skipif(
    not os.getenv("TEMPORAL_TEST_SERVER"),
    reason="set TEMPORAL_TEST_SERVER=1 to run against the time-skipping test server",
)
async def test_expiry_workflow_sleeps_until_deadline(orchestrator, wallets):
    """Test workflow timer with the time-skipping test server."""
    multisig = await open_multisig(orchestrator, datetime.now(timezone.utc) - timedelta(days=2))
    activities = MultiSigActivities(orchestrator)
    task_queue = f"multisig-expiry-test-{uuid.uuid4()}"

    async with await WorkflowEnvironment.start_time_skipping() as env:
        async with Worker(
            env.client,
            task_queue=task_queue,
            workflows=[MultiSigExpiryWorkflow],
            activities=[activities.expire_multisig],
        ):
            handle = await env.client.start_workflow(
                MultiSigExpiryWorkflow.run,
                MultiSigExpiryInput(
                    multisig_id=multisig.multisig_id,
                    expires_at=(datetime.now(timezone.utc) + timedelta(hours=24)).isoformat(),
                ),
                id=f"test-expiry-{multisig.multisig_id}",
                task_queue=task_queue,
            )

            state = await handle.query(MultiSigExpiryWorkflow.get_state)
            assert state["multisig_id"] == multisig.multisig_id

            result = await handle.result()

    assert result.expired is True
    assert result.status == "expired"
    assert wallets.get_multisig(multisig.multisig_id).status == MultiSigStatus.EXPIRED
