"""Tests for the additive risk scoring rules."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Set

import pytest

from conftest import DAYTIME, RECIPIENT, SENDER, make_request
from database.memory_repository import InMemoryLedgerRepository
from database.schemas import (
    Account,
    GeoLocation,
    RecommendedAction,
    RiskLevel,
    Transaction,
    TransactionStatus,
)
from services.limit_validator import COUNTED_WINDOWS
from services.risk_engine import (
    SYSTEM_ERROR_TRIGGER,
    RiskEngine,
    determine_risk_level,
    haversine_km,
)
from services.risk_signals import RiskSignalProvider, StoreRiskSignalProvider

JOHANNESBURG = GeoLocation(lat=-26.2041, lng=28.0473, country="ZA")
CAPE_TOWN = GeoLocation(lat=-33.9249, lng=18.4241, country="ZA")
PRETORIA = GeoLocation(lat=-25.7479, lng=28.2293, country="ZA")


class StubSignals(RiskSignalProvider):
    def __init__(self, history=None, recent=None, devices=None, location=None, recipient_score=0):
        self.history = history or []
        self.recent = recent or []
        self.devices = devices or set()
        self.location = location
        self.recipient_score = recipient_score

    def account_history(self, account_id: str) -> List[Transaction]:
        return self.history

    def recent_transactions(self, account_id: str, since: datetime) -> List[Transaction]:
        return self.recent

    def known_devices(self, account_id: str) -> Set[str]:
        return self.devices

    def last_known_location(self, account_id: str) -> Optional[GeoLocation]:
        return self.location

    def recipient_risk_score(self, recipient_account_id: Optional[str]) -> int:
        return self.recipient_score


class BrokenSignals(StubSignals):
    def account_history(self, account_id: str) -> List[Transaction]:
        raise RuntimeError("history store unavailable")


class FailingAuditRepository(InMemoryLedgerRepository):
    def append_fraud_audit(self, entry):
        raise RuntimeError("audit store unavailable")


def past_transactions(count, amount, created_at=None):
    created_at = created_at or DAYTIME - timedelta(days=10)
    return [
        Transaction(
            sender_account_id=SENDER,
            recipient_account_id=RECIPIENT,
            amount=Decimal(amount),
            status=TransactionStatus.COMPLETED,
            created_at=created_at,
        )
        for _ in range(count)
    ]


def engine_with(repository, **signal_kwargs):
    return RiskEngine(repository, signals=StubSignals(**signal_kwargs))


def test_small_first_transfer_is_approved(repository):
    assessment = engine_with(repository).assess(make_request(amount=Decimal("5000")), RECIPIENT)

    assert assessment.risk_score == 15
    assert assessment.triggers == ["Limited transaction history"]
    assert assessment.risk_level == RiskLevel.LOW
    assert assessment.recommended_action == RecommendedAction.APPROVE
    assert assessment.requires_manual_review is False
    assert assessment.blocked_reason is None


def test_very_large_transfer_is_blocked(repository):
    assessment = engine_with(repository).assess(make_request(amount=Decimal("60000")), RECIPIENT)

    assert assessment.risk_score >= 80
    assert assessment.triggers[:2] == ["High amount transaction", "Very high amount transaction"]
    assert assessment.risk_level == RiskLevel.CRITICAL
    assert assessment.recommended_action == RecommendedAction.BLOCK
    assert assessment.requires_manual_review is True
    assert assessment.blocked_reason


def test_deviation_from_average_lands_in_review(repository):
    # Velocity threshold raised so only the amount and deviation rules apply
    engine = RiskEngine(
        repository,
        signals=StubSignals(history=past_transactions(5, "1000")),
        velocity_amount_limit=1000000,
    )
    assessment = engine.assess(make_request(amount=Decimal("35000")), RECIPIENT)

    assert assessment.risk_score == 55
    assert assessment.triggers == [
        "High amount transaction",
        "Amount significantly higher than average",
    ]
    assert assessment.risk_level == RiskLevel.HIGH
    assert assessment.recommended_action == RecommendedAction.REVIEW


def test_same_transfer_also_trips_default_velocity_limit(repository):
    engine = engine_with(repository, history=past_transactions(5, "1000"))
    assessment = engine.assess(make_request(amount=Decimal("35000")), RECIPIENT)

    assert assessment.risk_score == 95
    assert "High transaction velocity (24h limit exceeded)" in assessment.triggers
    assert assessment.recommended_action == RecommendedAction.BLOCK


def test_average_rule_needs_prior_transactions(repository):
    assessment = engine_with(repository).assess(make_request(amount=Decimal("9000")), RECIPIENT)
    assert "Amount significantly higher than average" not in assessment.triggers


def test_velocity_amount_and_frequency(repository):
    recent = past_transactions(11, "2000", created_at=DAYTIME - timedelta(hours=2))
    engine = engine_with(repository, history=recent, recent=recent)
    assessment = engine.assess(make_request(amount=Decimal("4000")), RECIPIENT)

    assert assessment.triggers == [
        "High transaction velocity (24h limit exceeded)",
        "High transaction frequency",
    ]
    assert assessment.risk_score == 60


@pytest.mark.parametrize("amount", ["10", "5000", "10000", "10001", "20000", "50001", "90000"])
def test_score_never_decreases_with_amount(repository, amount):
    engine = engine_with(repository, history=past_transactions(6, "800"))
    lower = engine.assess(make_request(amount=Decimal(amount)), RECIPIENT)
    higher = engine.assess(make_request(amount=Decimal(amount) * 2), RECIPIENT)
    assert higher.risk_score >= lower.risk_score


def test_high_risk_country(repository):
    request = make_request(location=GeoLocation(lat=55.75, lng=37.61, country="RU"))
    assessment = engine_with(repository, history=past_transactions(5, "100")).assess(request, RECIPIENT)
    assert assessment.triggers == ["Transaction from high-risk country"]
    assert assessment.risk_score == 35


def test_distant_location(repository):
    engine = engine_with(repository, history=past_transactions(5, "100"), location=JOHANNESBURG)

    far = engine.assess(make_request(location=CAPE_TOWN), RECIPIENT)
    near = engine.assess(make_request(location=PRETORIA), RECIPIENT)

    assert far.triggers == ["Unusual transaction location"]
    assert far.risk_score == 25
    assert near.risk_score == 0


def test_haversine_distance():
    assert haversine_km(JOHANNESBURG, CAPE_TOWN) == pytest.approx(1262, abs=15)
    assert haversine_km(JOHANNESBURG, JOHANNESBURG) == 0


def test_new_device(repository):
    engine = engine_with(repository, history=past_transactions(5, "100"), devices={"device-known"})

    known = engine.assess(make_request(device_fingerprint="device-known"), RECIPIENT)
    new = engine.assess(make_request(device_fingerprint="device-new"), RECIPIENT)

    assert known.risk_score == 0
    assert new.triggers == ["New device detected"]
    assert new.risk_score == 20


@pytest.mark.parametrize("utc_time,fires", [
    (datetime(2026, 3, 10, 2, 0, tzinfo=timezone.utc), True),    # 04:00 local
    (datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc), False),   # 06:00 local
    (datetime(2026, 3, 10, 20, 59, tzinfo=timezone.utc), False), # 22:59 local
    (datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc), False),  # 23:00 local
    (datetime(2026, 3, 10, 21, 30, tzinfo=timezone.utc), True),  # 23:30 local
])
def test_unusual_hours_use_platform_time_zone(repository, utc_time, fires):
    engine = engine_with(repository, history=past_transactions(5, "100"))
    assessment = engine.assess(make_request(requested_at=utc_time), RECIPIENT)
    assert ("Transaction during unusual hours" in assessment.triggers) is fires


def test_unusual_hours_follow_assessment_clock(repository):
    engine = engine_with(repository, history=past_transactions(5, "100"))
    night = datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc)

    assessment = engine.assess(make_request(requested_at=DAYTIME), RECIPIENT, now=night)

    assert assessment.triggers == ["Transaction during unusual hours"]
    assert assessment.assessed_at == night


def test_recipient_reputation(repository):
    engine = engine_with(repository, history=past_transactions(5, "100"), recipient_score=45)
    assessment = engine.assess(make_request(), RECIPIENT)
    assert assessment.risk_score == 45
    assert assessment.triggers == ["High-risk recipient"]
    assert assessment.risk_level == RiskLevel.MEDIUM


def test_recipient_reputation_clamped(repository):
    engine = engine_with(repository, history=past_transactions(5, "100"), recipient_score=400)
    assert engine.assess(make_request(), RECIPIENT).risk_score == 50


def test_moderate_recipient_score_adds_without_trigger(repository):
    engine = engine_with(repository, history=past_transactions(5, "100"), recipient_score=20)
    assessment = engine.assess(make_request(), RECIPIENT)
    assert assessment.risk_score == 20
    assert assessment.triggers == []


def test_internal_error_fails_closed(repository):
    engine = RiskEngine(repository, signals=BrokenSignals())
    assessment = engine.assess(make_request(amount=Decimal("10")), RECIPIENT)

    assert assessment.risk_score == 100
    assert assessment.risk_level == RiskLevel.CRITICAL
    assert assessment.recommended_action == RecommendedAction.BLOCK
    assert assessment.triggers == [SYSTEM_ERROR_TRIGGER]
    assert repository.list_fraud_audit(SENDER)[0].assessment.recommended_action == RecommendedAction.BLOCK


def test_every_assessment_is_audited(repository):
    engine = engine_with(repository)
    engine.assess(make_request(amount=Decimal("10")), RECIPIENT)
    engine.assess(make_request(amount=Decimal("60000")), RECIPIENT)

    entries = repository.list_fraud_audit(SENDER)
    assert [e.assessment.recommended_action for e in entries] == [
        RecommendedAction.APPROVE,
        RecommendedAction.BLOCK,
    ]
    assert entries[1].transaction_data["amount"] == "60000"


def test_audit_failure_does_not_change_decision():
    engine = RiskEngine(FailingAuditRepository(), signals=BrokenSignals())
    assessment = engine.assess(make_request(), RECIPIENT)
    assert assessment.recommended_action == RecommendedAction.BLOCK


@pytest.mark.parametrize("score,level,action", [
    (0, RiskLevel.LOW, RecommendedAction.APPROVE),
    (30, RiskLevel.LOW, RecommendedAction.APPROVE),
    (31, RiskLevel.MEDIUM, RecommendedAction.REVIEW),
    (50, RiskLevel.MEDIUM, RecommendedAction.REVIEW),
    (51, RiskLevel.HIGH, RecommendedAction.REVIEW),
    (80, RiskLevel.HIGH, RecommendedAction.REVIEW),
    (81, RiskLevel.CRITICAL, RecommendedAction.BLOCK),
])
def test_tier_boundaries(score, level, action):
    assert determine_risk_level(score) == (level, action)


def test_store_signals_from_ledger(wallets):
    repository = wallets
    repository.save_account(Account(account_id="ACC_SHADY", risk_score=42))
    for device, location in (("dev-1", JOHANNESBURG), ("dev-2", CAPE_TOWN)):
        repository.commit_transfer(
            Transaction(
                sender_account_id=SENDER,
                recipient_account_id=RECIPIENT,
                amount=Decimal("10"),
                metadata={"device_fingerprint": device, "location": location.model_dump(mode="json")},
            ),
            COUNTED_WINDOWS,
        )

    signals = StoreRiskSignalProvider(repository)
    assert signals.known_devices(SENDER) == {"dev-1", "dev-2"}
    assert signals.last_known_location(SENDER).lat == pytest.approx(CAPE_TOWN.lat)
    assert signals.recipient_risk_score("ACC_SHADY") == 42
    assert signals.recipient_risk_score(RECIPIENT) == 0
    assert len(signals.account_history(SENDER)) == 2
