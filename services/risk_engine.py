"""Risk assessment engine for transfers."""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from database.repositories import LedgerRepository
from database.schemas import (
    FraudAuditLog,
    GeoLocation,
    RecommendedAction,
    RiskAssessment,
    RiskLevel,
    Transaction,
    TransferRequest,
)
from services.risk_signals import RiskSignalProvider, StoreRiskSignalProvider
from utils.config import config
from utils.decimal_utils import add_money, to_decimal
from utils.logger import transaction_logger

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

SYSTEM_ERROR_TRIGGER = "Fraud detection system error"
SYSTEM_ERROR_REASON = "System error - manual review required"


def haversine_km(a: GeoLocation, b: GeoLocation) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1, lng1, lat2, lng2 = map(math.radians, (a.lat, a.lng, b.lat, b.lng))
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def determine_risk_level(risk_score: int) -> Tuple[RiskLevel, RecommendedAction]:
    """Map a score to its tier; upper bounds are inclusive."""
    if risk_score <= 30:
        return RiskLevel.LOW, RecommendedAction.APPROVE
    elif risk_score <= 50:
        return RiskLevel.MEDIUM, RecommendedAction.REVIEW
    elif risk_score <= 80:
        return RiskLevel.HIGH, RecommendedAction.REVIEW
    else:
        return RiskLevel.CRITICAL, RecommendedAction.BLOCK


def _sum_amounts(transactions: Iterable[Transaction]) -> Decimal:
    return add_money(*(tx.amount for tx in transactions))


class RiskEngine:
    """Additive rule-based fraud scoring.

    Each rule adds a weight and a trigger when it fires. Triggers appear in
    rule order. Any internal error produces a blocking assessment, and
    every assessment is appended to the fraud audit log.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        signals: Optional[RiskSignalProvider] = None,
        high_risk_countries: Optional[Iterable[str]] = None,
        velocity_amount_limit: Optional[float] = None,
        velocity_count_limit: Optional[int] = None,
        unusual_location_km: Optional[float] = None,
        timezone_name: Optional[str] = None,
    ):
        self.repository = repository
        self.signals = signals or StoreRiskSignalProvider(repository)
        self.high_risk_countries = {
            c.upper() for c in (high_risk_countries or config.HIGH_RISK_COUNTRIES)
        }
        self.velocity_amount_limit = to_decimal(
            config.VELOCITY_AMOUNT_LIMIT if velocity_amount_limit is None else velocity_amount_limit
        )
        self.velocity_count_limit = (
            config.VELOCITY_COUNT_LIMIT if velocity_count_limit is None else velocity_count_limit
        )
        self.unusual_location_km = (
            config.UNUSUAL_LOCATION_KM if unusual_location_km is None else unusual_location_km
        )
        self.timezone = ZoneInfo(timezone_name or config.PLATFORM_TIMEZONE)

    def _score(
        self,
        request: TransferRequest,
        recipient_account_id: Optional[str],
        history: List[Transaction],
        recent_transactions: List[Transaction],
        now: datetime,
    ) -> Tuple[int, List[str]]:
        amount = to_decimal(request.amount)
        account_id = request.sender_account_id
        score = 0
        triggers: List[str] = []

        # 1. Amount
        if amount > 10000:
            score += 30
            triggers.append("High amount transaction")
        if amount > 50000:
            score += 50
            triggers.append("Very high amount transaction")

        # 2. History depth
        if len(history) < 5:
            score += 15
            triggers.append("Limited transaction history")

        # 3. Deviation from the account's average
        if history:
            average = _sum_amounts(history) / len(history)
            if amount > average * 10:
                score += 25
                triggers.append("Amount significantly higher than average")

        # 4. Velocity over the trailing window
        if _sum_amounts(recent_transactions) + amount > self.velocity_amount_limit:
            score += 40
            triggers.append("High transaction velocity (24h limit exceeded)")
        if len(recent_transactions) > self.velocity_count_limit:
            score += 20
            triggers.append("High transaction frequency")

        # 5. Geography
        if request.location is not None:
            country = (request.location.country or "").upper()
            if country in self.high_risk_countries:
                score += 35
                triggers.append("Transaction from high-risk country")
            last_location = self.signals.last_known_location(account_id)
            if last_location is not None:
                distance = haversine_km(request.location, last_location)
                if distance > self.unusual_location_km:
                    score += 25
                    triggers.append("Unusual transaction location")

        # 6. Device novelty
        if request.device_fingerprint:
            if request.device_fingerprint not in self.signals.known_devices(account_id):
                score += 20
                triggers.append("New device detected")

        # 7. Time of day
        local_time = now.astimezone(self.timezone).time()
        after_hours = local_time.hour == 23 and (
            local_time.minute or local_time.second or local_time.microsecond
        )
        if local_time.hour < 6 or after_hours:
            score += 15
            triggers.append("Transaction during unusual hours")

        # 8. Recipient reputation
        recipient_score = max(0, min(
            int(self.signals.recipient_risk_score(recipient_account_id)),
            config.RECIPIENT_RISK_CAP,
        ))
        score += recipient_score
        if recipient_score > 30:
            triggers.append("High-risk recipient")

        return score, triggers

    def assess(
        self,
        request: TransferRequest,
        recipient_account_id: Optional[str] = None,
        history: Optional[List[Transaction]] = None,
        recent_transactions: Optional[List[Transaction]] = None,
        now: Optional[datetime] = None,
    ) -> RiskAssessment:
        """
        Score a transfer request.

        History and recent transactions are looked up through the signal
        provider when not given. ``now`` drives both the velocity window and
        the time-of-day rule and defaults to the request's submission time.
        The result is always written to the fraud audit log.
        """
        now = now or request.requested_at
        account_id = request.sender_account_id
        try:
            if history is None:
                history = self.signals.account_history(account_id)
            if recent_transactions is None:
                since = now - timedelta(hours=config.VELOCITY_WINDOW_HOURS)
                recent_transactions = self.signals.recent_transactions(account_id, since)

            score, triggers = self._score(request, recipient_account_id, history, recent_transactions, now)
            risk_level, action = determine_risk_level(score)
            assessment = RiskAssessment(
                risk_score=score,
                risk_level=risk_level,
                triggers=triggers,
                recommended_action=action,
                requires_manual_review=risk_level != RiskLevel.LOW,
                blocked_reason=(
                    "Risk score exceeds automatic approval threshold"
                    if action == RecommendedAction.BLOCK else None
                ),
                assessed_at=now,
            )
        except Exception as e:
            logger.error(f"Risk assessment failed for {account_id}: {e}", exc_info=True)
            assessment = RiskAssessment(
                risk_score=100,
                risk_level=RiskLevel.CRITICAL,
                triggers=[SYSTEM_ERROR_TRIGGER],
                recommended_action=RecommendedAction.BLOCK,
                requires_manual_review=True,
                blocked_reason=SYSTEM_ERROR_REASON,
                assessed_at=now,
            )

        self._audit(request, assessment)
        transaction_logger.log_risk_assessment(
            account_id=account_id,
            risk_score=assessment.risk_score,
            risk_level=assessment.risk_level.value,
            recommended_action=assessment.recommended_action.value,
            triggers=assessment.triggers,
        )
        return assessment

    def _audit(self, request: TransferRequest, assessment: RiskAssessment):
        entry = FraudAuditLog(
            account_id=request.sender_account_id,
            timestamp=assessment.assessed_at,
            transaction_data=request.model_dump(mode="json"),
            assessment=assessment,
        )
        try:
            self.repository.append_fraud_audit(entry)
        except Exception as e:
            # The decision stands; only the audit copy is lost
            logger.error(f"Failed to write fraud audit entry {entry.audit_id}: {e}")
