"""Setup script for the wallet ledger's Couchbase collections and indexes."""

import asyncio
import logging

from couchbase.exceptions import CollectionAlreadyExistsException, CouchbaseException
from couchbase.management.collections import CollectionSpec

from database.connection import (
    close_couchbase_connection,
    connect_to_couchbase,
    create_indexes,
    db,
)
from utils.config import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

COLLECTIONS = [
    config.ACCOUNTS_COLLECTION,
    config.LIMITS_COLLECTION,
    config.PAYMENT_METHODS_COLLECTION,
    config.TRANSACTIONS_COLLECTION,
    config.MULTISIG_COLLECTION,
    config.FRAUD_AUDIT_COLLECTION,
    config.ANCHORS_COLLECTION,
    config.NOTIFICATIONS_COLLECTION,
    config.SECURITY_CONFIGS_COLLECTION,
]


def create_collections():
    """Create every ledger collection in the configured scope."""
    collection_manager = db.bucket.collections()
    for collection_name in COLLECTIONS:
        try:
            collection_manager.create_collection(
                CollectionSpec(collection_name, scope_name=config.COUCHBASE_SCOPE)
            )
            logger.info(f"✅ Created collection: {collection_name}")
        except CollectionAlreadyExistsException:
            logger.info(f"✅ Collection '{collection_name}' already exists")
        except CouchbaseException as e:
            logger.warning(f"⚠️  Could not create collection '{collection_name}': {e}")
            logger.info(f"   You may need to create it manually in Couchbase UI:")
            logger.info(f"   - Bucket: {config.COUCHBASE_BUCKET}")
            logger.info(f"   - Scope: {config.COUCHBASE_SCOPE}")
            logger.info(f"   - Collection: {collection_name}")


async def setup_couchbase():
    """Setup Couchbase collections and N1QL indexes."""
    logger.info(f"Connection string: {config.COUCHBASE_CONNECTION_STRING}")
    logger.info(f"Bucket: {config.COUCHBASE_BUCKET}")
    logger.info(f"Scope: {config.COUCHBASE_SCOPE}")

    await connect_to_couchbase()
    try:
        create_collections()
        logger.info("Creating N1QL indexes...")
        create_indexes()
        logger.info("✅ Couchbase setup complete!")
    finally:
        await close_couchbase_connection()


if __name__ == "__main__":
    asyncio.run(setup_couchbase())
