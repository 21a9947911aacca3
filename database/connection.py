"""Couchbase connection management."""

from datetime import timedelta
from couchbase.auth import PasswordAuthenticator
from couchbase.cluster import Cluster
from couchbase.options import ClusterOptions, ClusterTimeoutOptions
from utils.config import config
import logging

logger = logging.getLogger(__name__)


class CouchbaseDB:
    """Couchbase database connection manager."""

    cluster: Cluster = None
    bucket = None
    scope = None

    def __init__(self):
        self.collections = {}


# Global database instance
db = CouchbaseDB()

# (collection, index name, fields) for the secondary lookups the ledger needs
INDEXES = [
    (config.ACCOUNTS_COLLECTION, "idx_account_email", ["email"]),
    (config.ACCOUNTS_COLLECTION, "idx_account_phone", ["phone"]),
    (config.ACCOUNTS_COLLECTION, "idx_account_wallet", ["wallet_id"]),
    (config.LIMITS_COLLECTION, "idx_limit_account", ["account_id", "window"]),
    (config.TRANSACTIONS_COLLECTION, "idx_tx_sender_created", ["sender_account_id", "status", "created_at"]),
    (config.TRANSACTIONS_COLLECTION, "idx_tx_recipient_created", ["recipient_account_id", "created_at"]),
    (config.MULTISIG_COLLECTION, "idx_multisig_status_expiry", ["status", "expires_at"]),
    (config.FRAUD_AUDIT_COLLECTION, "idx_fraud_account_ts", ["account_id", "timestamp"]),
    (config.NOTIFICATIONS_COLLECTION, "idx_notification_account", ["account_id", "created_at"]),
]


async def connect_to_couchbase():
    """Create Couchbase connection."""
    try:
        auth = PasswordAuthenticator(
            config.COUCHBASE_USERNAME,
            config.COUCHBASE_PASSWORD
        )

        timeout_options = ClusterTimeoutOptions(
            kv_timeout=timedelta(seconds=10),
            query_timeout=timedelta(seconds=75)
        )

        db.cluster = Cluster(
            config.COUCHBASE_CONNECTION_STRING,
            ClusterOptions(auth, timeout_options=timeout_options)
        )

        # Wait until cluster is ready
        db.cluster.wait_until_ready(timedelta(seconds=10))

        db.bucket = db.cluster.bucket(config.COUCHBASE_BUCKET)
        db.scope = db.bucket.scope(config.COUCHBASE_SCOPE)

        _initialize_collections()

        logger.info("Connected to Couchbase")
    except Exception as e:
        logger.error(f"Could not connect to Couchbase: {e}")
        raise


async def close_couchbase_connection():
    """Close Couchbase connection."""
    if db.cluster:
        db.cluster.close()
        logger.info("Disconnected from Couchbase")


def _initialize_collections():
    """Initialize collection references."""
    db.collections = {
        name: db.scope.collection(name)
        for name in (
            config.ACCOUNTS_COLLECTION,
            config.LIMITS_COLLECTION,
            config.PAYMENT_METHODS_COLLECTION,
            config.TRANSACTIONS_COLLECTION,
            config.MULTISIG_COLLECTION,
            config.FRAUD_AUDIT_COLLECTION,
            config.ANCHORS_COLLECTION,
            config.NOTIFICATIONS_COLLECTION,
            config.SECURITY_CONFIGS_COLLECTION,
        )
    }


def create_indexes():
    """Create the secondary indexes using N1QL."""
    bucket_name = config.COUCHBASE_BUCKET
    scope_name = config.COUCHBASE_SCOPE

    def fqn(collection_name):
        return f"`{bucket_name}`.`{scope_name}`.`{collection_name}`"

    for collection_name, index_name, fields in INDEXES:
        try:
            fields_str = ", ".join([f"`{field}`" for field in fields])
            query = f"CREATE INDEX {index_name} ON {fqn(collection_name)}({fields_str})"
            db.cluster.query(query).execute()
            logger.info(f"Created index {index_name} on {collection_name}")
        except Exception as e:
            # Index might already exist
            if "already exists" not in str(e).lower():
                logger.warning(f"Could not create index {index_name}: {e}")


def get_sync_cluster():
    """Get the Couchbase cluster instance."""
    if db.cluster is None:
        raise RuntimeError("Couchbase is not connected")
    return db.cluster


def get_sync_scope():
    """Get the configured scope."""
    if db.scope is None:
        raise RuntimeError("Couchbase is not connected")
    return db.scope
