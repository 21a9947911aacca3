"""Configuration management for the application."""

import os
from dotenv import load_dotenv
from typing import Dict, List

load_dotenv()

class Config:
    # Storage backend: "couchbase" or "memory"
    STORE_BACKEND = os.getenv("STORE_BACKEND", "couchbase")

    # Couchbase
    COUCHBASE_CONNECTION_STRING = os.getenv("COUCHBASE_CONNECTION_STRING", "couchbase://localhost")
    COUCHBASE_USERNAME = os.getenv("COUCHBASE_USERNAME", "Administrator")
    COUCHBASE_PASSWORD = os.getenv("COUCHBASE_PASSWORD", "password")
    COUCHBASE_BUCKET = os.getenv("COUCHBASE_BUCKET", "spay_wallet")
    COUCHBASE_SCOPE = os.getenv("COUCHBASE_SCOPE", "_default")

    # Temporal
    TEMPORAL_HOST = os.getenv("TEMPORAL_HOST", "temporal:7233")
    TEMPORAL_NAMESPACE = os.getenv("TEMPORAL_NAMESPACE", "default")
    TEMPORAL_TASK_QUEUE = os.getenv("TEMPORAL_TASK_QUEUE", "spay-multisig-queue")
    TEMPORAL_ENABLED = os.getenv("TEMPORAL_ENABLED", "true").lower() == "true"

    # Collections
    ACCOUNTS_COLLECTION = "accounts"
    LIMITS_COLLECTION = "transaction_limits"
    PAYMENT_METHODS_COLLECTION = "payment_methods"
    TRANSACTIONS_COLLECTION = "transactions"
    MULTISIG_COLLECTION = "multisig_transactions"
    FRAUD_AUDIT_COLLECTION = "fraud_analysis_logs"
    ANCHORS_COLLECTION = "anchor_records"
    NOTIFICATIONS_COLLECTION = "notifications"
    SECURITY_CONFIGS_COLLECTION = "wallet_security_configs"

    # Wallet
    BASE_CURRENCY = os.getenv("BASE_CURRENCY", "ZAR")
    PLATFORM_TIMEZONE = os.getenv("PLATFORM_TIMEZONE", "Africa/Johannesburg")

    # Default limits, provisioned lazily for accounts without limit rows
    DEFAULT_DAILY_LIMIT = float(os.getenv("DEFAULT_DAILY_LIMIT", 15000))
    DEFAULT_MONTHLY_LIMIT = float(os.getenv("DEFAULT_MONTHLY_LIMIT", 100000))
    DEFAULT_SINGLE_TRANSACTION_LIMIT = float(os.getenv("DEFAULT_SINGLE_TRANSACTION_LIMIT", 50000))
    DAILY_TRANSACTION_COUNT_LIMIT = int(os.getenv("DAILY_TRANSACTION_COUNT_LIMIT", 50))
    MONTHLY_TRANSACTION_COUNT_LIMIT = int(os.getenv("MONTHLY_TRANSACTION_COUNT_LIMIT", 500))

    # Fees. Schedule rows keyed by transaction type; types without a row are free.
    FEE_SCHEDULE: Dict[str, Dict[str, str]] = {
        "transfer": {"percentage": "0.005", "fixed_fee": "0", "min_fee": "2.50", "max_fee": "250"},
        "escrow": {"percentage": "0.025", "fixed_fee": "0", "min_fee": "5", "max_fee": "500"},
        "withdrawal": {"percentage": "0.01", "fixed_fee": "5", "min_fee": "5", "max_fee": "100"},
    }
    WALLET_PLATFORM_FEE_CAP = os.getenv("WALLET_PLATFORM_FEE_CAP", "50")
    PLATFORM_FEE_RATE = os.getenv("PLATFORM_FEE_RATE", "0.01")

    # Risk scoring
    HIGH_RISK_COUNTRIES: List[str] = ["RU", "IR", "KP", "SY", "AF", "YE"]
    UNUSUAL_LOCATION_KM = float(os.getenv("UNUSUAL_LOCATION_KM", 1000))
    VELOCITY_WINDOW_HOURS = 24
    VELOCITY_AMOUNT_LIMIT = float(os.getenv("VELOCITY_AMOUNT_LIMIT", 25000))
    VELOCITY_COUNT_LIMIT = int(os.getenv("VELOCITY_COUNT_LIMIT", 10))
    RECIPIENT_RISK_CAP = 50

    # Multi-signature
    MULTISIG_EXPIRY_HOURS = int(os.getenv("MULTISIG_EXPIRY_HOURS", 24))
    DEFAULT_REQUIRED_SIGNATURES = int(os.getenv("DEFAULT_REQUIRED_SIGNATURES", 2))

    # Post-commit collaborators
    ANCHOR_TIMEOUT_SECONDS = float(os.getenv("ANCHOR_TIMEOUT_SECONDS", 5))
    NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", 5))
    ANCHOR_NETWORK = os.getenv("ANCHOR_NETWORK", "polygon")

    # Application Settings
    APP_ENV = os.getenv("APP_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "logs")

config = Config()
