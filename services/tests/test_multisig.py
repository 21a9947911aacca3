"""Tests for multi-signature collection, execution and expiry."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import COSIGNER, RECIPIENT, SENDER, make_request
from database.schemas import (
    Account,
    FeeBreakdown,
    MultiSigStatus,
    MultiSigTransaction,
    WalletSecurityConfig,
)
from services.errors import (
    MultiSigAlreadySigned,
    MultiSigExpired,
    MultiSigNotFound,
    MultiSigNotPending,
    MultiSigUnauthorizedSigner,
)

THIRD_SIGNER = "ACC_THIRD"


async def open_multisig(orchestrator, repository, signers, required, amount="100"):
    repository.save_security_config(WalletSecurityConfig(
        account_id=SENDER, signers=signers, required_signatures=required,
    ))
    result = await orchestrator.process_transfer(
        make_request(amount=Decimal(amount), require_multi_sig=True)
    )
    return result.multisig_id


def assert_signature_counts(multisig):
    assert multisig.current_signatures == len(multisig.signers) - len(multisig.pending_signers)
    assert set(multisig.signatures) == set(multisig.signers) - set(multisig.pending_signers)


@pytest.mark.asyncio
async def test_signatures_collected_then_executed(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 2)

    first = await orchestrator.sign(multisig_id, SENDER, "sig-sender")
    assert first.completed is False
    assert first.status == MultiSigStatus.PENDING_SIGNATURES
    stored = wallets.get_multisig(multisig_id)
    assert stored.pending_signers == [COSIGNER]
    assert stored.current_signatures == 1
    assert_signature_counts(stored)
    assert wallets.get_account(SENDER).available_balance == Decimal("1000.00")

    second = await orchestrator.sign(multisig_id, COSIGNER, "sig-cosigner")
    await orchestrator.drain_background_tasks()

    assert second.completed is True
    assert second.status == MultiSigStatus.EXECUTED
    assert second.transaction.metadata["multisig_id"] == multisig_id
    assert second.anchoring.status == "completed"
    assert wallets.get_account(SENDER).available_balance == Decimal("895.00")
    assert wallets.get_account(RECIPIENT).available_balance == Decimal("150.00")

    stored = wallets.get_multisig(multisig_id)
    assert stored.status == MultiSigStatus.EXECUTED
    assert stored.execution_result["transaction_id"] == second.transaction.transaction_id
    assert stored.executed_at is not None
    assert_signature_counts(stored)


@pytest.mark.asyncio
async def test_signer_cannot_sign_twice(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 2)
    await orchestrator.sign(multisig_id, SENDER, "sig")

    with pytest.raises(MultiSigAlreadySigned):
        await orchestrator.sign(multisig_id, SENDER, "sig-again")

    stored = wallets.get_multisig(multisig_id)
    assert list(stored.signatures) == [SENDER]
    assert stored.signatures[SENDER].signature == "sig"


@pytest.mark.asyncio
async def test_unauthorized_signer(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 2)
    with pytest.raises(MultiSigUnauthorizedSigner):
        await orchestrator.sign(multisig_id, RECIPIENT, "sig")
    assert wallets.get_multisig(multisig_id).current_signatures == 0


@pytest.mark.asyncio
async def test_unknown_multisig(orchestrator):
    with pytest.raises(MultiSigNotFound):
        await orchestrator.sign("MSIG_MISSING", SENDER, "sig")


@pytest.mark.asyncio
async def test_signing_after_execution_is_rejected(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 1)
    await orchestrator.sign(multisig_id, SENDER, "sig")

    with pytest.raises(MultiSigNotPending):
        await orchestrator.sign(multisig_id, COSIGNER, "sig")


@pytest.mark.asyncio
async def test_signing_after_deadline_fails(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 2)
    expires_at = wallets.get_multisig(multisig_id).expires_at

    with pytest.raises(MultiSigExpired):
        await orchestrator.sign(multisig_id, SENDER, "sig", now=expires_at)
    assert wallets.get_multisig(multisig_id).current_signatures == 0


@pytest.mark.asyncio
async def test_expire_multisig(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 2)
    multisig = wallets.get_multisig(multisig_id)
    assert multisig.expires_at - multisig.created_at == timedelta(hours=24)

    early = orchestrator.expire_multisig(multisig_id, now=multisig.expires_at - timedelta(minutes=1))
    assert early.status == MultiSigStatus.PENDING_SIGNATURES

    expired = orchestrator.expire_multisig(multisig_id, now=multisig.expires_at + timedelta(seconds=1))
    assert expired.status == MultiSigStatus.EXPIRED
    assert wallets.get_multisig(multisig_id).status == MultiSigStatus.EXPIRED
    assert wallets.get_account(SENDER).available_balance == Decimal("1000.00")

    # Expired transactions stay expired even inside the original window
    with pytest.raises(MultiSigExpired):
        await orchestrator.sign(multisig_id, SENDER, "sig", now=multisig.created_at)


@pytest.mark.asyncio
async def test_expire_does_not_touch_executed_multisig(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER], 1)
    await orchestrator.sign(multisig_id, SENDER, "sig")
    multisig = wallets.get_multisig(multisig_id)

    result = orchestrator.expire_multisig(multisig_id, now=multisig.expires_at + timedelta(hours=1))
    assert result.status == MultiSigStatus.EXECUTED


@pytest.mark.asyncio
async def test_execution_failure_is_terminal(orchestrator, wallets):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER], 2)
    await orchestrator.sign(multisig_id, SENDER, "sig")

    # Funds spent elsewhere while the transfer waited for signatures
    wallets.save_account(Account(account_id=SENDER, email="sender@example.com",
                                 available_balance=Decimal("10")))

    result = await orchestrator.sign(multisig_id, COSIGNER, "sig")

    assert result.completed is False
    assert result.status == MultiSigStatus.EXECUTION_FAILED
    assert result.error["kind"] == "insufficient_balance"
    stored = wallets.get_multisig(multisig_id)
    assert stored.status == MultiSigStatus.EXECUTION_FAILED
    assert stored.execution_result["success"] is False
    assert wallets.get_account(SENDER).available_balance == Decimal("10")
    assert wallets.list_account_transactions(RECIPIENT) == []


@pytest.mark.asyncio
async def test_concurrent_final_signatures_execute_once(orchestrator, wallets):
    wallets.save_account(Account(account_id=THIRD_SIGNER))
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER, COSIGNER, THIRD_SIGNER], 2)
    await orchestrator.sign(multisig_id, SENDER, "sig")

    results = await asyncio.gather(
        orchestrator.sign(multisig_id, COSIGNER, "sig"),
        orchestrator.sign(multisig_id, THIRD_SIGNER, "sig"),
        return_exceptions=True,
    )

    executed = [r for r in results if not isinstance(r, Exception) and r.completed]
    rejected = [r for r in results if isinstance(r, MultiSigNotPending)]
    assert len(executed) == 1
    assert len(rejected) == 1
    assert len(wallets.list_account_transactions(RECIPIENT)) == 1
    assert wallets.get_account(SENDER).available_balance == Decimal("895.00")


def test_stale_version_write_is_rejected(wallets):
    multisig = MultiSigTransaction(
        request=make_request(),
        recipient_account_id=RECIPIENT,
        fees=FeeBreakdown(),
        required_signatures=2,
        signers=[SENDER, COSIGNER],
        pending_signers=[SENDER, COSIGNER],
    )
    wallets.insert_multisig(multisig)

    first = wallets.get_multisig(multisig.multisig_id)
    second = wallets.get_multisig(multisig.multisig_id)
    first.pending_signers = [COSIGNER]
    second.pending_signers = [SENDER]

    assert wallets.compare_and_set_multisig(first, 0) is True
    assert wallets.compare_and_set_multisig(second, 0) is False
    assert wallets.get_multisig(multisig.multisig_id).pending_signers == [COSIGNER]
    assert wallets.get_multisig(multisig.multisig_id).version == 1


def interfere_once_before_execution_write(wallets, monkeypatch, status=None):
    """Bump the stored version right before the executed state is written."""
    original = wallets.compare_and_set_multisig
    calls = {"interfered": False}

    def compare_and_set(multisig, expected_version):
        if multisig.status == MultiSigStatus.EXECUTED and not calls["interfered"]:
            calls["interfered"] = True
            stored = wallets.get_multisig(multisig.multisig_id)
            if status is not None:
                stored.status = status
            original(stored, stored.version)
        return original(multisig, expected_version)

    monkeypatch.setattr(wallets, "compare_and_set_multisig", compare_and_set)
    return calls


@pytest.mark.asyncio
async def test_execution_state_write_retries_after_version_conflict(orchestrator, wallets, monkeypatch):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER], 1)
    calls = interfere_once_before_execution_write(wallets, monkeypatch)

    result = await orchestrator.sign(multisig_id, SENDER, "sig")

    assert calls["interfered"] is True
    assert result.completed is True
    stored = wallets.get_multisig(multisig_id)
    assert stored.status == MultiSigStatus.EXECUTED
    assert stored.execution_result["transaction_id"] == result.transaction.transaction_id
    assert stored.version == result.multisig.version


@pytest.mark.asyncio
async def test_execution_state_not_written_over_other_status(orchestrator, wallets, monkeypatch, caplog):
    multisig_id = await open_multisig(orchestrator, wallets, [SENDER], 1)
    interfere_once_before_execution_write(wallets, monkeypatch, status=MultiSigStatus.EXPIRED)

    await orchestrator.sign(multisig_id, SENDER, "sig")

    assert wallets.get_multisig(multisig_id).status == MultiSigStatus.EXPIRED
    assert "not recorded, stored status is expired" in caplog.text
