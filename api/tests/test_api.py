"""Tests for the HTTP surface, driven through FastAPI's TestClient."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_orchestrator
from conftest import COSIGNER, DAYTIME, RECIPIENT, SENDER, SENDER_WALLET_PM, raise_limits
from database.schemas import WalletSecurityConfig


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def transfer_body(**overrides):
    body = {
        "sender_account_id": SENDER,
        "recipient_identifier": "recipient@example.com",
        "amount": "100",
        "payment_method_id": SENDER_WALLET_PM,
    }
    body.update(overrides)
    return body


def test_completed_transfer_hides_risk_details(client, wallets):
    response = client.post("/api/transfers", json=transfer_body())

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["risk_assessment"] == {"decision": "approve", "message": None}
    assert data["transaction"]["recipient_account_id"] == RECIPIENT
    assert Decimal(data["fees"]["total"]) == Decimal("5.00")
    assert data["anchoring"]["status"] == "completed"
    assert "triggers" not in response.text
    assert "risk_score" not in response.text
    assert wallets.get_account(SENDER).available_balance == Decimal("895.00")


def test_review_decision_shows_generic_message(client):
    response = client.post("/api/transfers", json=transfer_body(device_fingerprint="unseen-device"))

    data = response.json()
    assert data["status"] == "pending_signatures"
    assert data["risk_assessment"]["decision"] == "review"
    assert data["risk_assessment"]["message"] == "Additional verification required"
    assert data["multisig_id"]
    assert "New device detected" not in response.text


def test_blocked_transfer_shows_generic_message(client, wallets):
    raise_limits(wallets, SENDER)
    sender = wallets.get_account(SENDER)
    sender.available_balance = Decimal("20000")
    wallets.save_account(sender)

    response = client.post("/api/transfers", json=transfer_body(
        amount="15000",
        device_fingerprint="unseen-device",
        location={"lat": 39.03, "lng": 125.75, "country": "KP"},
    ))

    data = response.json()
    assert data["status"] == "blocked"
    assert data["transaction"] is None
    assert data["risk_assessment"] == {"decision": "block", "message": "Additional verification required"}
    assert "high-risk country" not in response.text
    assert wallets.get_account(SENDER).available_balance == Decimal("20000")


def test_unknown_recipient_maps_to_404(client):
    response = client.post("/api/transfers", json=transfer_body(recipient_identifier="ghost@example.com"))

    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "recipient_not_found"


def test_insufficient_balance_error_shape(client):
    response = client.post("/api/transfers", json=transfer_body(amount="5000"))

    assert response.status_code == 400
    assert response.json() == {
        "error": {"kind": "insufficient_balance", "message": "Insufficient wallet balance"}
    }


def test_limit_error_names_window(client, orchestrator):
    orchestrator.limit_validator.load_limits(SENDER, DAYTIME)
    response = client.post("/api/transfers", json=transfer_body(amount="60000"))

    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "limit_exceeded"
    assert response.json()["error"]["window"] == "daily"


def test_invalid_amount_rejected_by_body_validation(client):
    response = client.post("/api/transfers", json=transfer_body(amount="lots"))
    assert response.status_code == 422


def test_sign_flow(client, wallets):
    wallets.save_security_config(WalletSecurityConfig(
        account_id=SENDER, signers=[SENDER, COSIGNER], required_signatures=2,
    ))
    created = client.post("/api/transfers", json=transfer_body(require_multi_sig=True)).json()
    multisig_id = created["multisig_id"]
    assert created["pending_signers"] == [SENDER, COSIGNER]

    first = client.post(f"/api/multisig/{multisig_id}/sign",
                        json={"signer_account_id": SENDER, "signature": "sig-1"})
    assert first.json()["completed"] is False
    assert first.json()["status"] == "pending_signatures"

    outsider = client.post(f"/api/multisig/{multisig_id}/sign",
                           json={"signer_account_id": RECIPIENT, "signature": "sig-x"})
    assert outsider.status_code == 403

    second = client.post(f"/api/multisig/{multisig_id}/sign",
                         json={"signer_account_id": COSIGNER, "signature": "sig-2"})
    assert second.json()["completed"] is True
    assert second.json()["status"] == "executed"
    assert second.json()["transaction"]["status"] == "completed"

    again = client.post(f"/api/multisig/{multisig_id}/sign",
                        json={"signer_account_id": COSIGNER, "signature": "sig-2"})
    assert again.status_code == 409

    view = client.get(f"/api/multisig/{multisig_id}").json()
    assert view["status"] == "executed"
    assert view["current_signatures"] == 2
    assert view["pending_signers"] == []


def test_unknown_multisig(client):
    response = client.get("/api/multisig/MS_MISSING")
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "multisig_not_found"


def test_balance_and_history(client):
    client.post("/api/transfers", json=transfer_body())

    balance = client.get(f"/api/wallets/{SENDER}/balance").json()
    assert Decimal(balance["available_balance"]) == Decimal("895.00")
    assert balance["currency"] == "ZAR"

    history = client.get(f"/api/wallets/{SENDER}/transactions", params={"limit": 5}).json()
    assert len(history) == 1
    assert Decimal(history[0]["amount"]) == Decimal("100")

    assert client.get("/api/wallets/ACC_NOBODY/balance").status_code == 404


def test_update_limits(client):
    response = client.put(f"/api/wallets/{SENDER}/limits", json={"daily_limit": "2500"})

    assert response.status_code == 200
    rows = {row["window"]: row for row in response.json()}
    assert Decimal(rows["daily"]["limit_amount"]) == Decimal("2500")
    assert Decimal(rows["monthly"]["limit_amount"]) == Decimal("100000")

    rejected = client.put(f"/api/wallets/{SENDER}/limits", json={"monthly_limit": "-1"})
    assert rejected.status_code == 400
    assert rejected.json()["error"]["kind"] == "invalid_amount"


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["store"] == "memory"


def test_configure_wallet_security(client, wallets):
    response = client.put(
        f"/api/wallets/{SENDER}/security",
        json={"signers": [SENDER, COSIGNER], "required_signatures": 2},
    )

    assert response.status_code == 200
    assert response.json()["signers"] == [SENDER, COSIGNER]
    assert wallets.get_security_config(SENDER).required_signatures == 2

    too_many = client.put(
        f"/api/wallets/{SENDER}/security",
        json={"signers": [SENDER], "required_signatures": 2},
    )
    assert too_many.status_code == 400
    assert too_many.json()["error"]["kind"] == "invalid_security_config"

    assert client.put(f"/api/wallets/{SENDER}/security", json={"signers": []}).status_code == 422
    assert client.put("/api/wallets/ACC_NOBODY/security", json={"signers": [SENDER]}).status_code == 404


def test_fee_quote(client):
    response = client.post("/api/fees/quote", json={"amount": "100"})

    assert response.status_code == 200
    data = response.json()
    assert data["transaction_type"] == "transfer"
    assert data["payment_method_category"] == "wallet"
    assert Decimal(data["fees"]["total"]) == Decimal("5.00")
    assert Decimal(data["total_amount"]) == Decimal("105.00")

    card = client.post("/api/fees/quote", json={"amount": 500, "payment_method_category": "card"}).json()
    assert Decimal(card["fees"]["platform"]) == Decimal("5.00")

    rejected = client.post("/api/fees/quote", json={"amount": "0"})
    assert rejected.status_code == 400
    assert rejected.json()["error"]["kind"] == "invalid_amount"


def test_anchor_verification(client):
    transaction_id = client.post("/api/transfers", json=transfer_body()).json()["transaction"]["transaction_id"]

    response = client.get(f"/api/transactions/{transaction_id}/anchor/verify")

    assert response.status_code == 200
    data = response.json()
    assert data["anchored"] is True
    assert data["verified"] is True
    assert data["computed_hash"] == data["reference_hash"]

    missing = client.get("/api/transactions/TXN_MISSING/anchor/verify")
    assert missing.status_code == 404
    assert missing.json()["error"]["kind"] == "transaction_not_found"
