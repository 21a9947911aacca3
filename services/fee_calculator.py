"""Fee calculation for transfers."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Union

from database.schemas import FeeBreakdown, PaymentMethodCategory, TransactionType
from services.errors import FeeScheduleError
from utils.config import config
from utils.decimal_utils import round_money, to_decimal


@dataclass(frozen=True)
class FeeScheduleRow:
    """Processing fee parameters for one transaction type."""
    percentage: Decimal
    fixed_fee: Decimal
    min_fee: Decimal
    max_fee: Decimal

    @classmethod
    def from_dict(cls, row: Dict[str, Union[str, float, int, Decimal]]) -> "FeeScheduleRow":
        return cls(
            percentage=to_decimal(row.get("percentage", "0")),
            fixed_fee=to_decimal(row.get("fixed_fee", "0")),
            min_fee=to_decimal(row.get("min_fee", "0")),
            max_fee=to_decimal(row.get("max_fee", "0")),
        )

    def validate(self, transaction_type: str):
        if min(self.percentage, self.fixed_fee, self.min_fee, self.max_fee) < 0:
            raise FeeScheduleError(f"Fee schedule for {transaction_type} has negative values")
        if self.min_fee > self.max_fee:
            raise FeeScheduleError(f"Fee schedule for {transaction_type} has min_fee > max_fee")


class FeeCalculator:
    """Computes processing and platform fees from a static schedule.

    Transaction types without a schedule row are charged no processing fee.
    That is an explicit fail-open policy for new transaction types.
    """

    def __init__(
        self,
        schedule: Optional[Dict[str, Dict[str, Union[str, float, int, Decimal]]]] = None,
        wallet_platform_fee_cap: Union[str, Decimal, None] = None,
        platform_fee_rate: Union[str, Decimal, None] = None,
    ):
        raw_schedule = config.FEE_SCHEDULE if schedule is None else schedule
        self.schedule = {
            getattr(key, "value", key): FeeScheduleRow.from_dict(row)
            for key, row in raw_schedule.items()
        }
        self.wallet_platform_fee_cap = to_decimal(
            config.WALLET_PLATFORM_FEE_CAP if wallet_platform_fee_cap is None else wallet_platform_fee_cap
        )
        self.platform_fee_rate = to_decimal(
            config.PLATFORM_FEE_RATE if platform_fee_rate is None else platform_fee_rate
        )

    def processing_fee(self, amount: Decimal, transaction_type: Union[TransactionType, str]) -> Decimal:
        """Percentage plus fixed fee, clamped to the row's min/max."""
        type_key = getattr(transaction_type, "value", transaction_type)
        row = self.schedule.get(type_key)
        if row is None:
            return Decimal("0")
        row.validate(type_key)

        raw_fee = amount * row.percentage + row.fixed_fee
        return min(max(raw_fee, row.min_fee), row.max_fee)

    def platform_fee(
        self, amount: Decimal, processing: Decimal, category: PaymentMethodCategory
    ) -> Decimal:
        category = PaymentMethodCategory(category)
        if category == PaymentMethodCategory.WALLET:
            # Wallet path never charges more platform fee than processing fee
            return min(self.wallet_platform_fee_cap, processing)
        return amount * self.platform_fee_rate

    def calculate(
        self,
        amount: Union[Decimal, float, int, str],
        transaction_type: Union[TransactionType, str],
        category: PaymentMethodCategory,
    ) -> FeeBreakdown:
        """
        Calculate the fee breakdown for a transfer.

        Args:
            amount: Transfer amount in the base currency
            transaction_type: Selects the schedule row
            category: Payment method category, selects the platform fee rule

        Returns:
            FeeBreakdown rounded half-up to two decimals
        """
        amount = to_decimal(amount)
        if amount < 0:
            raise ValueError("Fee amount must not be negative")

        processing = self.processing_fee(amount, transaction_type)
        platform = self.platform_fee(amount, processing, category)

        processing = max(round_money(processing), Decimal("0.00"))
        platform = max(round_money(platform), Decimal("0.00"))
        return FeeBreakdown(
            processing=processing,
            platform=platform,
            total=processing + platform,
        )
