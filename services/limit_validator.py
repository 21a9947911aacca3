"""Rolling limit window enforcement."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from database.repositories import LedgerRepository
from database.schemas import (
    LIMIT_WINDOW_ORDER,
    LIMIT_WINDOW_PERIODS,
    LimitWindow,
    TransactionLimit,
)
from services.errors import InvalidAmount, LimitExceeded
from utils.config import config
from utils.decimal_utils import to_decimal

logger = logging.getLogger(__name__)

# Windows whose counters the ledger commit increments
COUNTED_WINDOWS = [LimitWindow.DAILY, LimitWindow.MONTHLY]


def default_limits(account_id: str, now: datetime) -> List[TransactionLimit]:
    """Limit rows provisioned for an account that has none."""
    amounts = {
        LimitWindow.DAILY: config.DEFAULT_DAILY_LIMIT,
        LimitWindow.MONTHLY: config.DEFAULT_MONTHLY_LIMIT,
        LimitWindow.SINGLE_TRANSACTION: config.DEFAULT_SINGLE_TRANSACTION_LIMIT,
    }
    counts = {
        LimitWindow.DAILY: config.DAILY_TRANSACTION_COUNT_LIMIT,
        LimitWindow.MONTHLY: config.MONTHLY_TRANSACTION_COUNT_LIMIT,
        LimitWindow.SINGLE_TRANSACTION: None,
    }
    return [
        TransactionLimit(
            account_id=account_id,
            window=window,
            limit_amount=to_decimal(amounts[window]),
            max_transaction_count=counts[window],
            reset_date=now + LIMIT_WINDOW_PERIODS[window],
        )
        for window in LIMIT_WINDOW_ORDER
    ]


def next_reset_date(reset_date: datetime, period: timedelta, now: datetime) -> datetime:
    """Advance ``reset_date`` by whole periods until it lies in the future."""
    if now < reset_date:
        return reset_date
    elapsed_periods = (now - reset_date) // period + 1
    return reset_date + period * elapsed_periods


class LimitValidator:
    """Checks a proposed amount against an account's limit windows.

    Validation never increments counters. The only write it performs is
    resetting expired windows, and those resets stay even if the transfer
    is rejected later.
    """

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def load_limits(self, account_id: str, now: datetime) -> Dict[LimitWindow, TransactionLimit]:
        limits, _ = self._load_or_provision(account_id, now)
        return limits

    def _load_or_provision(
        self, account_id: str, now: datetime
    ) -> Tuple[Dict[LimitWindow, TransactionLimit], bool]:
        rows = self.repository.get_limits(account_id)
        provisioned = False
        if not rows:
            logger.info(f"Provisioning default limits for {account_id}")
            rows = self.repository.insert_limits(default_limits(account_id, now))
            provisioned = True
        return {row.window: row for row in rows}, provisioned

    def _reset_if_expired(self, row: TransactionLimit, now: datetime) -> TransactionLimit:
        if now < row.reset_date:
            return row
        new_reset_date = next_reset_date(row.reset_date, LIMIT_WINDOW_PERIODS[row.window], now)
        return self.repository.reset_limit_window(
            row.account_id, row.window, row.reset_date, new_reset_date
        )

    def validate(
        self,
        account_id: str,
        amount: Union[Decimal, float, int, str],
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Validate ``amount`` against daily, monthly and single transaction limits.

        An account without limit rows gets the defaults provisioned and its
        transfer is accepted as is; limits apply from the next transfer on.

        Returns:
            True if the amount was checked against existing rows, False if
            the rows were provisioned by this call

        Raises:
            LimitExceeded: for the first window, in fixed order, that the
                amount would exceed
        """
        now = now or datetime.now(timezone.utc)
        amount = to_decimal(amount)
        if amount <= 0:
            raise InvalidAmount()

        limits, provisioned = self._load_or_provision(account_id, now)
        if provisioned:
            return False

        for window in LIMIT_WINDOW_ORDER:
            row = limits.get(window)
            if row is None:
                continue
            row = self._reset_if_expired(row, now)

            if row.current_amount + amount > row.limit_amount:
                logger.info(
                    f"{window.value} limit exceeded for {account_id}: "
                    f"{row.current_amount} + {amount} > {row.limit_amount}"
                )
                raise LimitExceeded(window.value)
            if (row.max_transaction_count is not None
                    and row.transaction_count >= row.max_transaction_count):
                logger.info(f"{window.value} transaction count limit reached for {account_id}")
                raise LimitExceeded(window.value, f"{window.value} transaction count limit reached")
        return True

    def update_limits(
        self,
        account_id: str,
        daily_limit: Union[Decimal, float, str, None] = None,
        monthly_limit: Union[Decimal, float, str, None] = None,
        now: Optional[datetime] = None,
    ) -> List[TransactionLimit]:
        """Change the daily and/or monthly limit amounts for an account."""
        self.load_limits(account_id, now or datetime.now(timezone.utc))
        for window, value in ((LimitWindow.DAILY, daily_limit), (LimitWindow.MONTHLY, monthly_limit)):
            if value is None:
                continue
            value = to_decimal(value)
            if value <= 0:
                raise InvalidAmount(f"{window.value} limit must be positive")
            self.repository.update_limit_amount(account_id, window, value)
            logger.info(f"Updated {window.value} limit for {account_id} to {value}")
        return self.repository.get_limits(account_id)
