"""Error taxonomy for the transfer pipeline.

Every error carries a stable machine-readable ``kind`` and a message that is
safe to show to the end user. Risk scoring details never go into messages.
"""

from typing import Optional


class TransferError(Exception):
    """Base class for all transfer pipeline errors."""

    kind = "transfer_error"
    default_message = "Transfer could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class LimitExceeded(TransferError):
    kind = "limit_exceeded"

    def __init__(self, window: str, message: Optional[str] = None):
        self.window = window
        super().__init__(message or f"{window} transaction limit exceeded")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "window": self.window}


class InsufficientBalance(TransferError):
    kind = "insufficient_balance"
    default_message = "Insufficient wallet balance"


class RecipientNotFound(TransferError):
    kind = "recipient_not_found"
    default_message = "Recipient could not be found"


class InvalidPaymentMethod(TransferError):
    kind = "invalid_payment_method"
    default_message = "Invalid payment method"


class InvalidAmount(TransferError):
    kind = "invalid_amount"
    default_message = "Invalid transfer amount"


class InvalidTransfer(TransferError):
    kind = "invalid_transfer"
    default_message = "Transfer request is not valid"


class AccountNotFound(TransferError):
    kind = "account_not_found"
    default_message = "Account not found"


class RiskBlocked(TransferError):
    """Raised only by callers that turn a block decision into an exception."""

    kind = "risk_blocked"
    default_message = "Additional verification required"

    def __init__(self, assessment, message: Optional[str] = None):
        self.assessment = assessment
        super().__init__(message)


class FeeScheduleError(TransferError):
    kind = "fee_schedule_misconfigured"
    default_message = "Fee schedule is misconfigured"


class MultiSigError(TransferError):
    """Errors local to the signing operation."""


class MultiSigNotFound(MultiSigError):
    kind = "multisig_not_found"
    default_message = "Multi-signature transaction not found"


class MultiSigExpired(MultiSigError):
    kind = "multisig_expired"
    default_message = "Multi-signature transaction has expired"


class MultiSigNotPending(MultiSigError):
    kind = "multisig_not_pending"
    default_message = "Multi-signature transaction is not pending signatures"


class MultiSigUnauthorizedSigner(MultiSigError):
    kind = "multisig_unauthorized_signer"
    default_message = "Unauthorized signer"


class MultiSigAlreadySigned(MultiSigError):
    kind = "multisig_already_signed"
    default_message = "Already signed by this signer"


class TransferSystemError(TransferError):
    """Downstream or storage failure."""

    kind = "system_error"
    default_message = "Transfer could not be processed, please try again later"


class TransactionNotFound(TransferError):
    kind = "transaction_not_found"
    default_message = "Transaction not found"


class InvalidSecurityConfig(TransferError):
    kind = "invalid_security_config"
    default_message = "Wallet security configuration is not valid"
