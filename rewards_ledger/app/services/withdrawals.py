from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlmodel import Session

from ..core.clock import Clock, is_past, utcnow
from ..core.config import Settings, get_settings
from ..core.db import transaction
from ..core.errors import (
    AmountMismatchError,
    InsufficientBalanceError,
    NotFoundError,
    SettlementUnavailableError,
    StateConflictError,
    ValidationError,
    VerificationIncompleteError,
    WithdrawalConflictError,
)
from ..core.money import format_amount, parse_amount, quantize
from ..models import (
    VerificationInitResponse,
    WalletVerificationModel,
    WithdrawalExecuteResponse,
    WithdrawalRequestModel,
    WithdrawalResponse,
)
from ..models.enums import (
    Network,
    VerificationFeature,
    VerificationMethod,
    WithdrawalStatus,
)
from .chain_watcher import ManualSettlement, SettlementGateway
from .ledger import LedgerService
from .networks import validate_address
from .notifications import NotificationService
from .repository import LedgerRepository
from .verification import VerificationService


logger = logging.getLogger(__name__)


class WithdrawalService:
    """Withdrawal flow: request, verify the target wallet, execute, settle.

    The amount is fixed when the request is created and every later step
    checks against it. The balance is only debited once ``execute`` moves
    the request from ``verified`` to ``processing``; the settlement call
    happens after that commit, and a failed call is compensated by moving
    the request back to ``verified`` and refunding.
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        *,
        ledger: Optional[LedgerService] = None,
        verification: Optional[VerificationService] = None,
        notifications: Optional[NotificationService] = None,
        settlement: Optional[SettlementGateway] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.settings = settings or get_settings()
        self.clock = clock
        self.ledger = ledger or LedgerService(session, self.repository)
        self.notifications = notifications or NotificationService(session, self.repository)
        self.verification = verification or VerificationService(
            session,
            self.repository,
            notifications=self.notifications,
            settings=self.settings,
            clock=clock,
        )
        self.settlement = settlement or ManualSettlement()
        self.verification.add_approval_hook(self._bind_approved_verification)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _load(self, withdrawal_id: int, user_id: Optional[int] = None) -> WithdrawalRequestModel:
        withdrawal = self.repository.get_withdrawal(withdrawal_id)
        if withdrawal is None or (user_id is not None and withdrawal.user_id != user_id):
            raise NotFoundError(
                f"Withdrawal {withdrawal_id} not found", code="WITHDRAWAL_NOT_FOUND"
            )
        return self._expire_on_read(withdrawal)

    def _is_due(self, withdrawal: WithdrawalRequestModel) -> bool:
        return withdrawal.status == WithdrawalStatus.PENDING and is_past(
            withdrawal.expires_at, self.clock()
        )

    def _expire_on_read(self, withdrawal: WithdrawalRequestModel) -> WithdrawalRequestModel:
        if self._is_due(withdrawal):
            with transaction(self.session):
                if self.repository.transition_withdrawal(
                    withdrawal.id,
                    from_status=WithdrawalStatus.PENDING,
                    to_status=WithdrawalStatus.FAILED,
                    failure_reason="expired",
                ):
                    logger.info(
                        "withdrawal.expired",
                        extra={"withdrawal_id": withdrawal.id, "user_id": withdrawal.user_id},
                    )
            self.session.refresh(withdrawal)
        return withdrawal

    def _bind_approved_verification(self, verification: WalletVerificationModel) -> None:
        """Approval hook: runs inside the transaction approving ``verification``."""
        if verification.feature != VerificationFeature.WITHDRAWAL:
            return
        for withdrawal in self.repository.find_withdrawals_by_verification(verification.id):
            if self.repository.transition_withdrawal(
                withdrawal.id,
                from_status=WithdrawalStatus.PENDING,
                to_status=WithdrawalStatus.VERIFIED,
                verified_at=self.clock(),
            ):
                logger.info(
                    "withdrawal.verified",
                    extra={
                        "withdrawal_id": withdrawal.id,
                        "verification_id": verification.id,
                    },
                )

    def _to_response(self, withdrawal: WithdrawalRequestModel) -> WithdrawalResponse:
        return WithdrawalResponse.model_validate(withdrawal)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def initiate(
        self,
        user_id: int,
        amount: Decimal | str,
        network: Network,
        target_address: str,
    ) -> WithdrawalResponse:
        try:
            value = parse_amount(amount)
        except ValueError as exc:
            raise ValidationError(str(exc), code="INVALID_AMOUNT") from exc
        minimum = quantize(self.settings.min_withdrawal_usdt)
        maximum = quantize(self.settings.max_withdrawal_usdt)
        if value < minimum:
            raise ValidationError(
                f"Amount must be at least {minimum.normalize()} USDT", code="INVALID_AMOUNT"
            )
        if value > maximum:
            raise ValidationError(
                f"Amount exceeds maximum: {maximum.normalize()} USDT", code="INVALID_AMOUNT"
            )
        network = Network(network)
        target_address = validate_address(target_address, network)

        for existing in self.repository.find_pending_withdrawals(user_id):
            existing = self._expire_on_read(existing)
            if existing.status != WithdrawalStatus.PENDING:
                continue
            if (
                existing.amount == value
                and existing.network == network
                and existing.target_address == target_address
            ):
                logger.info(
                    "withdrawal.request_reused",
                    extra={"withdrawal_id": existing.id, "user_id": user_id},
                )
                return self._to_response(existing)
            raise StateConflictError(
                "Another withdrawal request is already pending", code="WITHDRAWAL_PENDING"
            )

        balances = self.ledger.get_balances(user_id)
        if balances.usdt_balance < value:
            raise InsufficientBalanceError("Insufficient USDT balance in wallet")

        now = self.clock()
        with transaction(self.session):
            withdrawal = self.repository.add_withdrawal(
                WithdrawalRequestModel(
                    user_id=user_id,
                    amount=value,
                    network=network,
                    target_address=target_address,
                    status=WithdrawalStatus.PENDING,
                    created_at=now,
                    expires_at=now
                    + timedelta(seconds=self.settings.withdrawal_request_window_seconds),
                )
            )
        logger.info(
            "withdrawal.requested",
            extra={
                "withdrawal_id": withdrawal.id,
                "user_id": user_id,
                "amount": str(value),
                "network": network.value,
            },
        )
        return self._to_response(withdrawal)

    def start_verification(
        self,
        user_id: int,
        withdrawal_id: int,
        method: VerificationMethod = VerificationMethod.SIGNATURE,
    ) -> VerificationInitResponse:
        withdrawal = self._load(withdrawal_id, user_id)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise StateConflictError(
                f"Withdrawal {withdrawal_id} is {withdrawal.status.value}, not pending"
            )
        if withdrawal.verification_id is not None:
            current = self.verification.resume(user_id, withdrawal.verification_id)
            if current is not None:
                return current

        challenge = self.verification.initiate(
            user_id,
            VerificationFeature.WITHDRAWAL,
            withdrawal.target_address,
            withdrawal.network,
            method=method,
            context={"withdrawal_id": withdrawal.id, "amount": format_amount(withdrawal.amount)},
        )
        with transaction(self.session):
            locked = self.repository.lock_withdrawal(withdrawal_id)
            if locked is None or locked.status != WithdrawalStatus.PENDING:
                raise StateConflictError(f"Withdrawal {withdrawal_id} is no longer pending")
            locked.verification_id = challenge.verification_id
            # the request stays open for as long as its verification can complete
            if is_past(locked.expires_at, challenge.expires_at):
                locked.expires_at = challenge.expires_at
            self.session.add(locked)
        logger.info(
            "withdrawal.verification_started",
            extra={
                "withdrawal_id": withdrawal_id,
                "verification_id": challenge.verification_id,
                "method": challenge.method.value,
            },
        )
        return challenge

    def execute(
        self,
        user_id: int,
        withdrawal_id: int,
        amount: Decimal | str,
    ) -> WithdrawalExecuteResponse:
        try:
            value = parse_amount(amount)
        except ValueError as exc:
            raise ValidationError(str(exc), code="INVALID_AMOUNT") from exc

        withdrawal = self._load(withdrawal_id, user_id)
        if value != withdrawal.amount:
            raise AmountMismatchError(
                f"Amount {format_amount(value)} does not match the verified amount "
                f"{format_amount(withdrawal.amount)}"
            )
        if withdrawal.status == WithdrawalStatus.PENDING:
            raise VerificationIncompleteError("Wallet verification is not complete")

        with transaction(self.session):
            locked = self.repository.lock_withdrawal(withdrawal_id)
            if not self.repository.transition_withdrawal(
                withdrawal_id,
                from_status=WithdrawalStatus.VERIFIED,
                to_status=WithdrawalStatus.PROCESSING,
                processing_at=self.clock(),
                balance_debited=True,
            ):
                raise WithdrawalConflictError(
                    f"Withdrawal {withdrawal_id} is {locked.status.value if locked else 'missing'}"
                )
            self.ledger.debit(
                user_id,
                value,
                entry_type="withdrawal",
                ref_type="withdrawal",
                ref_id=withdrawal_id,
                memo=f"{withdrawal.network.value.upper()} withdrawal",
            )

        logger.info(
            "withdrawal.processing",
            extra={"withdrawal_id": withdrawal_id, "user_id": user_id, "amount": str(value)},
        )

        # no row lock is held across the outbound call
        try:
            external_ref = self.settlement.submit_withdrawal(
                withdrawal_id, withdrawal.network, withdrawal.target_address, value
            )
        except Exception as exc:
            self._release_after_settlement_failure(withdrawal_id, user_id, value)
            if isinstance(exc, SettlementUnavailableError):
                raise
            raise SettlementUnavailableError("Settlement service unavailable") from exc

        with transaction(self.session):
            locked = self.repository.lock_withdrawal(withdrawal_id)
            locked.external_ref = external_ref
            self.session.add(locked)
            self.notifications.enqueue(
                user_id,
                "withdrawal_processing",
                {"withdrawal_id": withdrawal_id, "amount": format_amount(value)},
            )
        logger.info(
            "withdrawal.submitted",
            extra={"withdrawal_id": withdrawal_id, "external_ref": external_ref},
        )
        self.notifications.deliver_after_commit()
        return WithdrawalExecuteResponse(
            withdrawal_id=withdrawal_id,
            status=WithdrawalStatus.PROCESSING,
            external_ref=external_ref,
        )

    def _release_after_settlement_failure(
        self, withdrawal_id: int, user_id: int, amount: Decimal
    ) -> None:
        with transaction(self.session):
            if self.repository.transition_withdrawal(
                withdrawal_id,
                from_status=WithdrawalStatus.PROCESSING,
                to_status=WithdrawalStatus.VERIFIED,
                processing_at=None,
                balance_debited=False,
            ):
                self.ledger.credit(
                    user_id,
                    amount,
                    entry_type="withdrawal_refund",
                    ref_type="withdrawal",
                    ref_id=withdrawal_id,
                    memo="Settlement unavailable, amount returned",
                )
        logger.warning(
            "withdrawal.settlement_rolled_back",
            extra={"withdrawal_id": withdrawal_id, "user_id": user_id},
        )

    def complete(
        self, withdrawal_id: int, tx_hash: str, admin_id: Optional[int] = None
    ) -> WithdrawalResponse:
        """Mark a processing withdrawal settled. ``admin_id`` is set for manual settlement."""
        tx_hash = (tx_hash or "").strip()
        if not tx_hash:
            raise ValidationError("tx_hash is required")
        with transaction(self.session):
            withdrawal = self.repository.lock_withdrawal(withdrawal_id)
            if withdrawal is None:
                raise NotFoundError(
                    f"Withdrawal {withdrawal_id} not found", code="WITHDRAWAL_NOT_FOUND"
                )
            if withdrawal.status == WithdrawalStatus.COMPLETED and withdrawal.tx_hash == tx_hash:
                return self._to_response(withdrawal)
            if not self.repository.transition_withdrawal(
                withdrawal_id,
                from_status=WithdrawalStatus.PROCESSING,
                to_status=WithdrawalStatus.COMPLETED,
                tx_hash=tx_hash,
                completed_at=self.clock(),
                resolved_by=admin_id,
            ):
                raise StateConflictError(
                    f"Withdrawal {withdrawal_id} is {withdrawal.status.value}, not processing"
                )
            self.notifications.enqueue(
                withdrawal.user_id,
                "withdrawal_completed",
                {
                    "withdrawal_id": withdrawal_id,
                    "amount": format_amount(withdrawal.amount),
                    "network": withdrawal.network.value,
                    "tx_hash": tx_hash,
                },
            )
        logger.info(
            "withdrawal.completed",
            extra={"withdrawal_id": withdrawal_id, "tx_hash": tx_hash, "admin_id": admin_id},
        )
        self.notifications.deliver_after_commit()
        self.session.refresh(withdrawal)
        return self._to_response(withdrawal)

    def fail(
        self, withdrawal_id: int, reason: str, admin_id: Optional[int] = None
    ) -> WithdrawalResponse:
        with transaction(self.session):
            withdrawal = self.repository.lock_withdrawal(withdrawal_id)
            if withdrawal is None:
                raise NotFoundError(
                    f"Withdrawal {withdrawal_id} not found", code="WITHDRAWAL_NOT_FOUND"
                )
            current = withdrawal.status
            if current in (WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED):
                raise StateConflictError(f"Withdrawal {withdrawal_id} is already {current.value}")
            debited = withdrawal.balance_debited
            if not self.repository.transition_withdrawal(
                withdrawal_id,
                from_status=current,
                to_status=WithdrawalStatus.FAILED,
                failure_reason=reason,
                balance_debited=False,
                resolved_by=admin_id,
            ):
                raise WithdrawalConflictError(f"Withdrawal {withdrawal_id} changed concurrently")
            if debited:
                self.ledger.credit(
                    withdrawal.user_id,
                    withdrawal.amount,
                    entry_type="withdrawal_refund",
                    ref_type="withdrawal",
                    ref_id=withdrawal_id,
                    memo=f"Withdrawal failed: {reason}",
                )
            self.notifications.enqueue(
                withdrawal.user_id,
                "withdrawal_failed",
                {
                    "withdrawal_id": withdrawal_id,
                    "amount": format_amount(withdrawal.amount),
                    "reason": reason,
                    "refunded": debited,
                },
            )
        logger.info(
            "withdrawal.failed",
            extra={
                "withdrawal_id": withdrawal_id,
                "reason": reason,
                "refunded": debited,
                "admin_id": admin_id,
            },
        )
        self.notifications.deliver_after_commit()
        self.session.refresh(withdrawal)
        return self._to_response(withdrawal)

    def get_withdrawal(self, user_id: int, withdrawal_id: int) -> WithdrawalResponse:
        return self._to_response(self._load(withdrawal_id, user_id))

    def list_withdrawals(
        self, status: Optional[WithdrawalStatus] = None, limit: int = 100
    ) -> list[WithdrawalResponse]:
        """Operator queue, newest first."""
        return [
            self._to_response(self._expire_on_read(withdrawal))
            for withdrawal in self.repository.list_withdrawals(status, limit)
        ]
