class LedgerError(Exception):
    """Base class for domain errors surfaced to callers with a stable code."""

    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(LedgerError):
    """Malformed amount, address, network or payload. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    status_code = 404


class StateConflictError(LedgerError):
    """The aggregate is not in a state that allows the call; start a new flow."""

    code = "INVALID_STATE"
    status_code = 409


class AlreadyProcessedError(StateConflictError):
    code = "ALREADY_PROCESSED"


class AmountMismatchError(StateConflictError):
    code = "AMOUNT_MISMATCH"


class VerificationIncompleteError(StateConflictError):
    code = "VERIFICATION_INCOMPLETE"


class VerificationNotPendingError(StateConflictError):
    code = "VERIFICATION_NOT_PENDING"


class VerificationExpiredError(StateConflictError):
    code = "VERIFICATION_EXPIRED"


class WithdrawalConflictError(StateConflictError):
    """Another request already moved the withdrawal out of ``verified``."""

    code = "WITHDRAWAL_CONFLICT"


class InsufficientBalanceError(LedgerError):
    """Raised when a debit would drop a balance below zero."""

    code = "INSUFFICIENT_BALANCE"
    status_code = 409


class UnauthorizedError(LedgerError):
    code = "UNAUTHORIZED"
    status_code = 401


class TransientError(LedgerError):
    """Infrastructure failure; local state is already rolled back, safe to retry."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class SettlementUnavailableError(TransientError):
    code = "SETTLEMENT_UNAVAILABLE"


class AddressUnavailableError(TransientError):
    code = "ADDRESS_UNAVAILABLE"
