from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.clock import Clock, as_utc, utcnow
from ..core.config import Settings, get_settings
from ..core.db import transaction
from ..core.errors import (
    AlreadyProcessedError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from ..core.money import format_amount, parse_amount
from ..models import (
    DepositCallbackRequest,
    DepositConfirmationResponse,
    DepositInitRequest,
    DepositModel,
    DepositResponse,
)
from ..models.enums import DepositStatus, Network
from .chain_watcher import AddressProvider, StaticAddressProvider
from .commission import CommissionService
from .ledger import LedgerService
from .notifications import NotificationService
from .products import action_for
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


class DepositService:
    """Turns chain-watcher confirmations into balance credits and product effects."""

    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        *,
        ledger: Optional[LedgerService] = None,
        commission: Optional[CommissionService] = None,
        notifications: Optional[NotificationService] = None,
        address_provider: Optional[AddressProvider] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.settings = settings or get_settings()
        self.ledger = ledger or LedgerService(session, self.repository)
        self.notifications = notifications or NotificationService(session, self.repository)
        self.commission = commission or CommissionService(
            session,
            self.repository,
            ledger=self.ledger,
            notifications=self.notifications,
            settings=self.settings,
        )
        self.address_provider = address_provider or StaticAddressProvider(
            self.settings.deposit_addresses
        )
        self.clock = clock

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _get_for_user(self, user_id: int, deposit_id: int) -> DepositModel:
        deposit = self.repository.get_deposit(deposit_id)
        if deposit is None or deposit.user_id != user_id:
            raise NotFoundError(f"Deposit {deposit_id} not found", code="DEPOSIT_NOT_FOUND")
        return deposit

    def _confirmation(
        self,
        deposit: DepositModel,
        product_action=None,
        already_processed: bool = False,
    ) -> DepositConfirmationResponse:
        return DepositConfirmationResponse(
            deposit=DepositResponse.model_validate(deposit),
            wallet=self.ledger.get_balances(deposit.user_id),
            product_action=product_action,
            already_processed=already_processed,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def init_deposit(self, user_id: int, request: DepositInitRequest) -> DepositResponse:
        action = action_for(request.product_type, self.settings)
        plan = action.plan(request)
        # outbound call happens before any row is written
        address = self.address_provider.get_deposit_address(
            user_id, request.network, action.purpose
        )

        with transaction(self.session):
            deposit = self.repository.add_deposit(
                DepositModel(
                    user_id=user_id,
                    network=request.network,
                    product_type=request.product_type,
                    status=DepositStatus.PENDING,
                    address=address,
                    expected_amount=plan.expected_amount,
                    meta=plan.meta or None,
                    created_at=self.clock(),
                )
            )
        logger.info(
            "deposit.initiated",
            extra={
                "deposit_id": deposit.id,
                "user_id": user_id,
                "network": request.network.value,
                "product_type": request.product_type.value,
                "expected_amount": str(plan.expected_amount),
            },
        )
        return DepositResponse.model_validate(deposit)

    def confirm_deposit(
        self,
        deposit_id: int,
        network: Network,
        tx_hash: str,
        actual_amount: Decimal | str,
    ) -> DepositConfirmationResponse:
        try:
            amount = parse_amount(actual_amount)
        except ValueError as exc:
            raise ValidationError(str(exc), code="INVALID_AMOUNT") from exc
        if amount <= 0:
            raise ValidationError("Amount must be positive", code="INVALID_AMOUNT")
        network = Network(network)
        tx_hash = tx_hash.strip()
        if not tx_hash:
            raise ValidationError("tx_hash is required")

        with transaction(self.session):
            deposit = self.repository.lock_deposit(deposit_id)
            if deposit is None:
                raise NotFoundError(f"Deposit {deposit_id} not found", code="DEPOSIT_NOT_FOUND")
            if deposit.status != DepositStatus.PENDING:
                raise AlreadyProcessedError(f"Deposit {deposit_id} already processed")
            other = self.repository.find_deposit_by_tx(network, tx_hash)
            if other is not None and other.id != deposit.id:
                raise AlreadyProcessedError(f"Transaction {tx_hash} already used by another deposit")
            if deposit.network != network:
                raise ValidationError(
                    f"Network mismatch: expected {deposit.network.value}, got {network.value}",
                    code="NETWORK_MISMATCH",
                )
            if deposit.expected_amount is not None and amount < deposit.expected_amount:
                raise ValidationError(
                    f"Amount {format_amount(amount)} is below expected "
                    f"{format_amount(deposit.expected_amount)}",
                    code="AMOUNT_BELOW_EXPECTED",
                )

            first_deposit = self.repository.count_confirmed_deposits(deposit.user_id) == 0

            deposit.actual_amount = amount
            deposit.tx_hash = tx_hash
            deposit.status = DepositStatus.CONFIRMED
            deposit.confirmed_at = self.clock()
            self.session.add(deposit)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise AlreadyProcessedError(
                    f"Transaction {tx_hash} already used by another deposit"
                ) from exc

            self.ledger.credit(
                deposit.user_id,
                amount,
                entry_type="deposit",
                ref_type="deposit",
                ref_id=deposit.id,
                memo=f"{deposit.network.value.upper()} deposit {tx_hash}",
            )
            action = action_for(deposit.product_type, self.settings)
            product_action = action.apply(deposit, self.ledger, self.repository)
            self.commission.register_revenue(
                deposit.user_id,
                action.revenue_source,
                amount,
                source_id=deposit.id,
            )
            self.notifications.enqueue(
                deposit.user_id,
                "deposit_confirmed",
                {
                    "deposit_id": deposit.id,
                    "amount": format_amount(amount),
                    "network": deposit.network.value,
                    "product_type": deposit.product_type.value,
                },
            )
            if first_deposit:
                self.notifications.enqueue(
                    deposit.user_id,
                    "first_deposit",
                    {"deposit_id": deposit.id, "amount": format_amount(amount)},
                )

        logger.info(
            "deposit.confirmed",
            extra={
                "deposit_id": deposit_id,
                "user_id": deposit.user_id,
                "amount": str(amount),
                "tx_hash": tx_hash,
            },
        )
        self.notifications.deliver_after_commit()
        return self._confirmation(deposit, product_action)

    def handle_callback(self, payload: DepositCallbackRequest) -> DepositConfirmationResponse:
        """Watcher entry point; redelivered confirmations are acknowledged, not re-applied."""
        try:
            return self.confirm_deposit(
                payload.deposit_id, payload.network, payload.tx_hash, payload.amount
            )
        except AlreadyProcessedError:
            logger.info(
                "deposit.callback_duplicate",
                extra={"deposit_id": payload.deposit_id, "tx_hash": payload.tx_hash},
            )
            deposit = self.repository.get_deposit(payload.deposit_id)
            if deposit is None:
                raise
            return self._confirmation(deposit, already_processed=True)

    def admin_confirm_deposit(
        self,
        deposit_id: int,
        tx_hash: str,
        admin_id: int,
        amount: Optional[Decimal] = None,
    ) -> DepositConfirmationResponse:
        """Operator confirmation for a transfer the watcher missed.

        Runs the same confirmation as the watcher callback; the amount
        defaults to what the deposit expected.
        """
        deposit = self.repository.get_deposit(deposit_id)
        if deposit is None:
            raise NotFoundError(f"Deposit {deposit_id} not found", code="DEPOSIT_NOT_FOUND")
        amount = amount if amount is not None else deposit.expected_amount
        if amount is None:
            raise ValidationError(
                "amount is required when the deposit has no expected amount",
                code="INVALID_AMOUNT",
            )
        result = self.confirm_deposit(deposit_id, deposit.network, tx_hash, amount)
        logger.info(
            "deposit.admin_confirmed",
            extra={"deposit_id": deposit_id, "admin_id": admin_id, "tx_hash": tx_hash},
        )
        return result

    def fail_deposit(self, deposit_id: int, reason: str) -> DepositResponse:
        with transaction(self.session):
            deposit = self.repository.lock_deposit(deposit_id)
            if deposit is None:
                raise NotFoundError(f"Deposit {deposit_id} not found", code="DEPOSIT_NOT_FOUND")
            if deposit.status != DepositStatus.PENDING:
                raise StateConflictError(
                    f"Deposit {deposit_id} is {deposit.status.value}, not pending"
                )
            deposit.status = DepositStatus.FAILED
            deposit.failure_reason = reason
            self.session.add(deposit)
            self.notifications.enqueue(
                deposit.user_id,
                "deposit_failed",
                {"deposit_id": deposit.id, "reason": reason},
            )
        logger.info("deposit.failed", extra={"deposit_id": deposit_id, "reason": reason})
        self.notifications.deliver_after_commit()
        return DepositResponse.model_validate(deposit)

    def expire_stale_deposits(self, now: Optional[datetime] = None) -> int:
        cutoff = as_utc(now or self.clock()) - timedelta(hours=self.settings.deposit_ttl_hours)
        with transaction(self.session):
            expired = self.repository.expire_pending_deposits(cutoff)
        if expired:
            logger.info("deposit.expired", extra={"count": expired, "cutoff": cutoff.isoformat()})
        return expired

    def get_deposit(self, user_id: int, deposit_id: int) -> DepositResponse:
        return DepositResponse.model_validate(self._get_for_user(user_id, deposit_id))

    def list_deposits(self, user_id: int, limit: int = 50) -> list[DepositResponse]:
        return [
            DepositResponse.model_validate(deposit)
            for deposit in self.repository.list_deposits(user_id, limit)
        ]
