"""Shared constants and data models for Temporal workflows."""

from dataclasses import dataclass

from utils.config import config

# Task Queue name
MULTISIG_TASK_QUEUE = config.TEMPORAL_TASK_QUEUE


def expiry_workflow_id(multisig_id: str) -> str:
    return f"multisig-expiry-{multisig_id}"


@dataclass
class MultiSigExpiryInput:
    """Identifies the multi-signature transaction a timer watches."""
    multisig_id: str
    expires_at: str  # ISO-8601, timezone aware


@dataclass
class MultiSigExpiryResult:
    multisig_id: str
    status: str
    expired: bool
