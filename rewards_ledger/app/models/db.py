from __future__ import annotations
from datetime import datetime, UTC
from decimal import Decimal
from typing import Any, Optional
from sqlalchemy import JSON, CheckConstraint, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.money import ZERO, Money
from .enums import (
    Currency,
    DepositStatus,
    Network,
    OutboxStatus,
    ProductType,
    RiskLevel,
    SubmissionStatus,
    VerificationFeature,
    VerificationMethod,
    VerificationStatus,
    WithdrawalStatus,
)


def _now() -> datetime:
    return datetime.now(UTC)


class Wallet(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("usdt_balance >= 0", name="ck_wallet_usdt_non_negative"),
        CheckConstraint("ghd_balance >= 0", name="ck_wallet_ghd_non_negative"),
    )

    user_id: int = Field(primary_key=True)
    usdt_balance: Decimal = Field(default=ZERO, sa_type=Money, nullable=False)
    ghd_balance: Decimal = Field(default=ZERO, sa_type=Money, nullable=False)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class LedgerEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    ts: datetime = Field(default_factory=_now, index=True)
    user_id: int = Field(index=True)
    currency: Currency = Field(default=Currency.USDT)
    amount: Decimal = Field(sa_type=Money, nullable=False)
    type: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    memo: Optional[str] = None

class TradingAccount(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_trading_balance_non_negative"),
    )

    user_id: int = Field(primary_key=True)
    balance: Decimal = Field(default=ZERO, sa_type=Money, nullable=False)
    total_deposited: Decimal = Field(default=ZERO, sa_type=Money, nullable=False)
    created_at: datetime = Field(default_factory=_now)

class LotteryTicket(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    lottery_id: int = Field(index=True)
    deposit_id: Optional[int] = Field(default=None, foreign_key="deposit.id")
    ticket_number: str
    price: Decimal = Field(sa_type=Money, nullable=False)
    created_at: datetime = Field(default_factory=_now)

class Deposit(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("network", "tx_hash", name="uq_deposit_network_tx"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    network: Network
    product_type: ProductType
    status: DepositStatus = Field(default=DepositStatus.PENDING, index=True)
    address: str
    expected_amount: Optional[Decimal] = Field(default=None, sa_type=Money)
    actual_amount: Optional[Decimal] = Field(default=None, sa_type=Money)
    tx_hash: Optional[str] = None
    meta: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    confirmed_at: Optional[datetime] = None

class WithdrawalRequest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    amount: Decimal = Field(sa_type=Money, nullable=False)
    network: Network
    target_address: str
    status: WithdrawalStatus = Field(default=WithdrawalStatus.PENDING, index=True)
    verification_id: Optional[int] = Field(default=None, foreign_key="walletverification.id")
    balance_debited: bool = False
    external_ref: Optional[str] = None
    tx_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    resolved_by: Optional[int] = None
    created_at: datetime = Field(default_factory=_now)
    expires_at: datetime
    verified_at: Optional[datetime] = None
    processing_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

class WalletVerification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    feature: VerificationFeature
    method: VerificationMethod
    wallet_address: str
    wallet_network: Network
    message_to_sign: str
    nonce: str = Field(unique=True)
    nonce_consumed: bool = False
    status: VerificationStatus = Field(default=VerificationStatus.PENDING, index=True)
    risk_score: int = 0
    risk_level: RiskLevel = Field(default=RiskLevel.LOW)
    context: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    expires_at: datetime
    verified_at: Optional[datetime] = None

class VerificationSubmission(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    verification_id: int = Field(foreign_key="walletverification.id", index=True)
    wallet_address: str
    encrypted_proof: str
    consent_at: datetime
    status: SubmissionStatus = Field(default=SubmissionStatus.PENDING_REVIEW)
    reviewer_id: Optional[int] = None
    review_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    reviewed_at: Optional[datetime] = None

class VerificationAuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    verification_id: int = Field(foreign_key="walletverification.id", index=True)
    actor_type: str
    actor_id: Optional[int] = None
    action: str
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_now)

class ReferralEdge(SQLModel, table=True):
    user_id: int = Field(primary_key=True)
    inviter_id: int = Field(index=True)
    created_at: datetime = Field(default_factory=_now)

class ReferralReward(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    from_user_id: int = Field(index=True)
    level: int
    amount: Decimal = Field(sa_type=Money, nullable=False)
    source_type: str
    source_id: Optional[int] = None
    # level:source_type:source_id:user_id, with "-" for a missing source_id
    dedup_key: str = Field(unique=True)
    created_at: datetime = Field(default_factory=_now)

class NotificationOutbox(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    kind: str
    payload: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    status: OutboxStatus = Field(default=OutboxStatus.PENDING, index=True)
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    sent_at: Optional[datetime] = None
