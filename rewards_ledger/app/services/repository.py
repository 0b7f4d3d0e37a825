from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from ..core.clock import as_utc, utcnow
from ..models import (
    DepositModel,
    LedgerEntryModel,
    LotteryTicketModel,
    NotificationOutboxModel,
    ReferralEdgeModel,
    ReferralRewardModel,
    TradingAccountModel,
    VerificationAuditLogModel,
    VerificationSubmissionModel,
    WalletModel,
    WalletVerificationModel,
    WithdrawalRequestModel,
)
from ..models.enums import (
    Currency,
    DepositStatus,
    OutboxStatus,
    VerificationFeature,
    VerificationStatus,
    WithdrawalStatus,
)


class LedgerRepository:
    """Thin data access layer around the SQLModel session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _locked(self, stmt):
        # populate_existing so a row already in the identity map is re-read under the lock
        return stmt.with_for_update().execution_options(populate_existing=True)

    # Wallet balances -----------------------------------------------------
    def get_wallet(self, user_id: int) -> Optional[WalletModel]:
        return self.session.get(WalletModel, user_id)

    def get_or_create_wallet(self, user_id: int) -> WalletModel:
        wallet = self.get_wallet(user_id)
        if wallet is None:
            wallet = WalletModel(user_id=user_id)
            self.session.add(wallet)
            self.session.flush()
        return wallet

    def apply_balance_delta(
        self,
        user_id: int,
        currency: Currency,
        delta: Decimal,
    ) -> bool:
        """Add ``delta`` to a balance; a negative delta only applies if covered.

        Returns False when a debit would take the balance below zero.
        """
        column = (
            WalletModel.usdt_balance if currency is Currency.USDT else WalletModel.ghd_balance
        )
        stmt = (
            update(WalletModel)
            .where(WalletModel.user_id == user_id)
            .values({column: column + delta, WalletModel.updated_at: utcnow()})
        )
        if delta < 0:
            stmt = stmt.where(column >= -delta)
        result = self.session.exec(stmt)
        return result.rowcount == 1

    def refresh(self, instance) -> None:
        self.session.flush()
        self.session.refresh(instance)

    # Ledger entries -----------------------------------------------------
    def add_entry(
        self,
        *,
        user_id: int,
        currency: Currency,
        amount: Decimal,
        entry_type: str,
        ref_type: Optional[str],
        ref_id: Optional[int],
        memo: Optional[str],
    ) -> LedgerEntryModel:
        entry = LedgerEntryModel(
            user_id=user_id,
            currency=currency,
            amount=amount,
            type=entry_type,
            ref_type=ref_type,
            ref_id=ref_id,
            memo=memo,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_entries(self, user_id: int) -> list[LedgerEntryModel]:
        stmt = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .order_by(LedgerEntryModel.ts.desc(), LedgerEntryModel.id.desc())
        )
        return list(self.session.exec(stmt))

    # Trading sub-ledger -------------------------------------------------
    def get_trading_account(self, user_id: int) -> Optional[TradingAccountModel]:
        return self.session.get(TradingAccountModel, user_id)

    def credit_trading_account(self, user_id: int, amount: Decimal) -> TradingAccountModel:
        account = self.get_trading_account(user_id)
        if account is None:
            account = TradingAccountModel(user_id=user_id)
            self.session.add(account)
            self.session.flush()
        self.session.exec(
            update(TradingAccountModel)
            .where(TradingAccountModel.user_id == user_id)
            .values(
                balance=TradingAccountModel.balance + amount,
                total_deposited=TradingAccountModel.total_deposited + amount,
            )
        )
        self.refresh(account)
        return account

    # Lottery tickets ----------------------------------------------------
    def add_tickets(self, tickets: Iterable[LotteryTicketModel]) -> None:
        self.session.add_all(list(tickets))
        self.session.flush()

    # Deposits -----------------------------------------------------------
    def add_deposit(self, deposit: DepositModel) -> DepositModel:
        self.session.add(deposit)
        self.session.flush()
        self.session.refresh(deposit)
        return deposit

    def get_deposit(self, deposit_id: int) -> Optional[DepositModel]:
        return self.session.get(DepositModel, deposit_id)

    def lock_deposit(self, deposit_id: int) -> Optional[DepositModel]:
        stmt = self._locked(select(DepositModel).where(DepositModel.id == deposit_id))
        return self.session.exec(stmt).first()

    def find_deposit_by_tx(self, network, tx_hash: str) -> Optional[DepositModel]:
        stmt = (
            select(DepositModel)
            .where(DepositModel.network == network)
            .where(DepositModel.tx_hash == tx_hash)
        )
        return self.session.exec(stmt).first()

    def list_deposits(self, user_id: int, limit: int = 50) -> list[DepositModel]:
        stmt = (
            select(DepositModel)
            .where(DepositModel.user_id == user_id)
            .order_by(DepositModel.created_at.desc(), DepositModel.id.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt))

    def count_confirmed_deposits(self, user_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(DepositModel)
            .where(DepositModel.user_id == user_id)
            .where(DepositModel.status == DepositStatus.CONFIRMED)
        )
        return int(self.session.exec(stmt).one())

    def expire_pending_deposits(self, created_before: datetime) -> int:
        result = self.session.exec(
            update(DepositModel)
            .where(DepositModel.status == DepositStatus.PENDING)
            .where(DepositModel.created_at < created_before)
            .values(status=DepositStatus.EXPIRED, failure_reason="expired")
            # SQLite rows come back naive, so skip in-Python evaluation of the date filter
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # Withdrawals --------------------------------------------------------
    def add_withdrawal(self, withdrawal: WithdrawalRequestModel) -> WithdrawalRequestModel:
        self.session.add(withdrawal)
        self.session.flush()
        self.session.refresh(withdrawal)
        return withdrawal

    def get_withdrawal(self, withdrawal_id: int) -> Optional[WithdrawalRequestModel]:
        return self.session.get(WithdrawalRequestModel, withdrawal_id)

    def lock_withdrawal(self, withdrawal_id: int) -> Optional[WithdrawalRequestModel]:
        stmt = self._locked(
            select(WithdrawalRequestModel).where(WithdrawalRequestModel.id == withdrawal_id)
        )
        return self.session.exec(stmt).first()

    def list_withdrawals(
        self, status: Optional[WithdrawalStatus] = None, limit: int = 100
    ) -> list[WithdrawalRequestModel]:
        stmt = select(WithdrawalRequestModel)
        if status is not None:
            stmt = stmt.where(WithdrawalRequestModel.status == status)
        stmt = stmt.order_by(
            WithdrawalRequestModel.created_at.desc(), WithdrawalRequestModel.id.desc()
        ).limit(limit)
        return list(self.session.exec(stmt))

    def find_pending_withdrawals(self, user_id: int) -> list[WithdrawalRequestModel]:
        stmt = (
            select(WithdrawalRequestModel)
            .where(WithdrawalRequestModel.user_id == user_id)
            .where(WithdrawalRequestModel.status == WithdrawalStatus.PENDING)
            .order_by(WithdrawalRequestModel.created_at.desc())
        )
        return list(self.session.exec(stmt))

    def find_withdrawals_by_verification(
        self, verification_id: int
    ) -> list[WithdrawalRequestModel]:
        stmt = select(WithdrawalRequestModel).where(
            WithdrawalRequestModel.verification_id == verification_id
        )
        return list(self.session.exec(stmt))

    def transition_withdrawal(
        self,
        withdrawal_id: int,
        *,
        from_status: WithdrawalStatus,
        to_status: WithdrawalStatus,
        **values,
    ) -> bool:
        """Conditional status flip; True only if exactly one row changed."""
        result = self.session.exec(
            update(WithdrawalRequestModel)
            .where(WithdrawalRequestModel.id == withdrawal_id)
            .where(WithdrawalRequestModel.status == from_status)
            .values(status=to_status, **values)
        )
        return result.rowcount == 1

    # Verifications ------------------------------------------------------
    def add_verification(self, verification: WalletVerificationModel) -> WalletVerificationModel:
        self.session.add(verification)
        self.session.flush()
        self.session.refresh(verification)
        return verification

    def get_verification(self, verification_id: int) -> Optional[WalletVerificationModel]:
        return self.session.get(WalletVerificationModel, verification_id)

    def lock_verification(self, verification_id: int) -> Optional[WalletVerificationModel]:
        stmt = self._locked(
            select(WalletVerificationModel).where(WalletVerificationModel.id == verification_id)
        )
        return self.session.exec(stmt).first()

    def list_verifications(
        self,
        user_id: int,
        feature: Optional[VerificationFeature] = None,
        limit: int = 50,
    ) -> list[WalletVerificationModel]:
        stmt = select(WalletVerificationModel).where(WalletVerificationModel.user_id == user_id)
        if feature is not None:
            stmt = stmt.where(WalletVerificationModel.feature == feature)
        stmt = stmt.order_by(
            WalletVerificationModel.created_at.desc(), WalletVerificationModel.id.desc()
        ).limit(limit)
        return list(self.session.exec(stmt))

    def verification_history(
        self, user_id: int, wallet_address: str, recent_since: datetime
    ) -> dict[str, int]:
        rows = self.session.exec(
            select(WalletVerificationModel.status, WalletVerificationModel.created_at)
            .where(WalletVerificationModel.user_id == user_id)
            .where(func.lower(WalletVerificationModel.wallet_address) == wallet_address.lower())
        ).all()
        recent_since = as_utc(recent_since)
        return {
            "total_attempts": len(rows),
            "failed_attempts": sum(1 for status, _ in rows if status == VerificationStatus.REJECTED),
            "recent_attempts": sum(1 for _, created in rows if as_utc(created) >= recent_since),
        }

    def add_submission(
        self, submission: VerificationSubmissionModel
    ) -> VerificationSubmissionModel:
        self.session.add(submission)
        self.session.flush()
        self.session.refresh(submission)
        return submission

    def get_submission(self, submission_id: int) -> Optional[VerificationSubmissionModel]:
        return self.session.get(VerificationSubmissionModel, submission_id)

    def list_submissions(self, verification_id: int) -> list[VerificationSubmissionModel]:
        stmt = (
            select(VerificationSubmissionModel)
            .where(VerificationSubmissionModel.verification_id == verification_id)
            .order_by(VerificationSubmissionModel.id)
        )
        return list(self.session.exec(stmt))

    def add_audit(self, entry: VerificationAuditLogModel) -> VerificationAuditLogModel:
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_audit(self, verification_id: int) -> list[VerificationAuditLogModel]:
        stmt = (
            select(VerificationAuditLogModel)
            .where(VerificationAuditLogModel.verification_id == verification_id)
            .order_by(VerificationAuditLogModel.id)
        )
        return list(self.session.exec(stmt))

    # Referrals ----------------------------------------------------------
    def get_inviter(self, user_id: int) -> Optional[int]:
        edge = self.session.get(ReferralEdgeModel, user_id)
        return edge.inviter_id if edge is not None else None

    def add_referral_edge(self, user_id: int, inviter_id: int) -> ReferralEdgeModel:
        edge = ReferralEdgeModel(user_id=user_id, inviter_id=inviter_id)
        self.session.add(edge)
        self.session.flush()
        return edge

    def list_invitees(self, inviter_ids: list[int]) -> list[int]:
        if not inviter_ids:
            return []
        stmt = select(ReferralEdgeModel.user_id).where(
            ReferralEdgeModel.inviter_id.in_(inviter_ids)
        )
        return list(self.session.exec(stmt))

    def find_reward(self, dedup_key: str) -> Optional[ReferralRewardModel]:
        stmt = select(ReferralRewardModel).where(ReferralRewardModel.dedup_key == dedup_key)
        return self.session.exec(stmt).first()

    def add_reward(self, reward: ReferralRewardModel) -> ReferralRewardModel:
        self.session.add(reward)
        self.session.flush()
        return reward

    def list_rewards(self, user_id: int, limit: Optional[int] = None) -> list[ReferralRewardModel]:
        stmt = (
            select(ReferralRewardModel)
            .where(ReferralRewardModel.user_id == user_id)
            .order_by(ReferralRewardModel.created_at.desc(), ReferralRewardModel.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt))

    # Notification outbox ------------------------------------------------
    def add_notification(self, item: NotificationOutboxModel) -> NotificationOutboxModel:
        self.session.add(item)
        self.session.flush()
        return item

    def get_notification(self, notification_id: int) -> Optional[NotificationOutboxModel]:
        return self.session.get(NotificationOutboxModel, notification_id)

    def claim_notification(self, notification_id: int, attempts: int) -> bool:
        """Take a pending row for one send attempt; False if another worker got there first."""
        result = self.session.exec(
            update(NotificationOutboxModel)
            .where(NotificationOutboxModel.id == notification_id)
            .where(NotificationOutboxModel.status == OutboxStatus.PENDING)
            .where(NotificationOutboxModel.attempts == attempts)
            .values(attempts=attempts + 1)
        )
        return result.rowcount == 1

    def list_pending_notifications(self, limit: int) -> list[NotificationOutboxModel]:
        stmt = (
            select(NotificationOutboxModel)
            .where(NotificationOutboxModel.status == OutboxStatus.PENDING)
            .order_by(NotificationOutboxModel.id)
            .limit(limit)
        )
        return list(self.session.exec(stmt))
