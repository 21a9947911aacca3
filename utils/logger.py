"""Centralized logging for the S-Pay transfer service."""

import logging
import sys
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Dict, Any, List, Union
from decimal import Decimal

from utils.config import config
from utils.serialization import sanitize_for_json


def to_float_safe(value: Union[float, int, str, Decimal, None]) -> float:
    """Convert a stored money value to float for log formatting."""
    if value is None:
        return 0.0
    return float(value)


class TransactionLogger:
    """Centralized logging for transfers, balance mutations and risk decisions."""

    def __init__(self, name: str = "spay-transfer", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Setup logging handlers."""
        console_handler = logging.StreamHandler(sys.stdout)
        console_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        self.logger.addHandler(console_handler)

        # File handlers for different log levels
        try:
            log_dir = Path(config.LOG_DIR)
            log_dir.mkdir(exist_ok=True)

            file_handler = logging.FileHandler(log_dir / 'spay_transfer.log')
            file_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

            error_handler = logging.FileHandler(log_dir / 'spay_errors.log')
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            self.logger.addHandler(error_handler)

            # Append-only JSON audit trail
            audit_handler = logging.FileHandler(log_dir / 'spay_audit.log')
            audit_handler.setFormatter(logging.Formatter('%(message)s'))
            self.audit_logger = logging.getLogger('spay.audit')
            self.audit_logger.setLevel(logging.INFO)
            self.audit_logger.propagate = False
            if not self.audit_logger.handlers:
                self.audit_logger.addHandler(audit_handler)

            self.logger.debug(f"Logging initialized in {log_dir}")

        except OSError as e:
            self.logger.warning(f"Could not create file handlers: {e}")

    def get_logger(self):
        """Get the logger instance."""
        return self.logger

    def _audit(self, entry: Dict[str, Any]):
        if hasattr(self, 'audit_logger'):
            self.audit_logger.info(json.dumps(sanitize_for_json(entry)))

    def log_transaction(
        self,
        transaction_id: str,
        event: str,
        details: Dict[str, Any],
        level: str = "INFO"
    ):
        """Log transaction-specific events."""
        sanitized_details = sanitize_for_json(details)
        log_method = getattr(self.logger, level.lower())
        log_method(f"Transaction {transaction_id}: {event} - {json.dumps(sanitized_details)}")

        self._audit({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "transaction_id": transaction_id,
            "event": event,
            "details": sanitized_details
        })

    def log_balance_update(
        self,
        account_id: str,
        transaction_id: str,
        old_balance: Union[Decimal, float],
        new_balance: Union[Decimal, float],
        amount: Union[Decimal, float],
        operation: str
    ):
        """Log balance updates for audit trail."""
        self.logger.info(
            f"Balance update for {account_id}: {operation} {to_float_safe(amount):.2f} "
            f"({to_float_safe(old_balance):.2f} -> {to_float_safe(new_balance):.2f})"
        )

        self._audit({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "account_id": account_id,
            "transaction_id": transaction_id,
            "operation": operation,
            "amount": amount,
            "old_balance": old_balance,
            "new_balance": new_balance,
        })

    def log_insufficient_funds(
        self,
        account_id: str,
        transaction_id: str,
        requested_amount: Union[Decimal, float],
        available_balance: Union[Decimal, float]
    ):
        """Log insufficient funds events."""
        self.logger.warning(
            f"Insufficient funds for {account_id}: Requested {to_float_safe(requested_amount):.2f}, "
            f"Available {to_float_safe(available_balance):.2f}"
        )

        self._audit({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": "INSUFFICIENT_FUNDS",
            "account_id": account_id,
            "transaction_id": transaction_id,
            "requested_amount": requested_amount,
            "available_balance": available_balance,
        })

    def log_acid_transaction(
        self,
        session_id: str,
        operation: str,
        status: str,
        details: Dict[str, Any]
    ):
        """Log atomic ledger operations."""
        # Use ERROR only for actual failures
        if status in ["FAILED", "ERROR", "ROLLBACK"]:
            level = "ERROR"
        elif status in ["INSUFFICIENT_FUNDS", "LIMIT_EXCEEDED"]:
            level = "WARNING"
        else:
            level = "INFO"
        log_method = getattr(self.logger, level.lower())
        log_method(f"Ledger session {session_id}: {operation} - {status}")

        self._audit({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "operation": operation,
            "status": status,
            "details": details
        })

    def log_risk_assessment(
        self,
        account_id: str,
        risk_score: int,
        risk_level: str,
        recommended_action: str,
        triggers: List[str]
    ):
        """Log a fraud risk decision; triggers stay in the internal trail only."""
        level = "warning" if recommended_action != "approve" else "info"
        getattr(self.logger, level)(
            f"Risk assessment for {account_id}: score={risk_score} level={risk_level} "
            f"action={recommended_action} triggers={len(triggers)}"
        )

        self._audit({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": "RISK_ASSESSMENT",
            "account_id": account_id,
            "risk_score": risk_score,
            "risk_level": risk_level,
            "recommended_action": recommended_action,
            "triggers": triggers,
        })


# Global logger instance
transaction_logger = TransactionLogger(level=config.LOG_LEVEL)
logger = transaction_logger.get_logger()
