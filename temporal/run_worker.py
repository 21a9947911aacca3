"""Temporal worker for multi-signature expiry workflows."""

import asyncio
import logging

from temporalio.client import Client
from temporalio.worker import Worker

from database.connection import close_couchbase_connection, connect_to_couchbase
from services.factory import create_orchestrator
from temporal.activities import MultiSigActivities
from temporal.shared import MULTISIG_TASK_QUEUE
from temporal.workflows import MultiSigExpiryWorkflow
from utils.config import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    """Run the Temporal worker."""
    logger.info("Starting Temporal worker...")
    logger.info(f"Connecting to Temporal at {config.TEMPORAL_HOST}")
    logger.info(f"Namespace: {config.TEMPORAL_NAMESPACE}")
    logger.info(f"Task Queue: {MULTISIG_TASK_QUEUE}")

    if config.STORE_BACKEND == "couchbase":
        await connect_to_couchbase()

    client = await Client.connect(
        config.TEMPORAL_HOST,
        namespace=config.TEMPORAL_NAMESPACE
    )
    logger.info("Connected to Temporal server")

    activities = MultiSigActivities(create_orchestrator())
    worker = Worker(
        client,
        task_queue=MULTISIG_TASK_QUEUE,
        workflows=[MultiSigExpiryWorkflow],
        activities=[activities.expire_multisig],
    )

    logger.info("Worker created. Starting to poll for tasks...")

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker error: {e}")
        raise
    finally:
        await close_couchbase_connection()


if __name__ == "__main__":
    asyncio.run(main())
