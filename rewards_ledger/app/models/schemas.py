from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from ..core.money import format_amount, parse_amount
from .enums import (
    Currency,
    DepositStatus,
    Network,
    ProductType,
    RiskLevel,
    SubmissionStatus,
    VerificationFeature,
    VerificationMethod,
    VerificationStatus,
    WithdrawalStatus,
)


def _coerce_amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Amount must be a number")
    if isinstance(value, float):
        # JSON numbers arrive as floats; their shortest repr is what the client sent
        value = repr(value)
    return parse_amount(value)


Amount = Annotated[Decimal, BeforeValidator(_coerce_amount)]
AmountOut = Annotated[Decimal, PlainSerializer(format_amount, return_type=str, when_used="json")]


class ResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Wallet ----------------------------------------------------------------
class WalletResponse(ResponseModel):
    user_id: int
    usdt_balance: AmountOut
    ghd_balance: AmountOut
    trading_balance: AmountOut = Decimal("0")

class LedgerEntryResponse(ResponseModel):
    id: int
    ts: datetime
    user_id: int
    currency: Currency
    amount: AmountOut
    type: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    memo: Optional[str] = Field(default=None, description="Human-readable memo or reference")

class StatementResponse(BaseModel):
    items: list[LedgerEntryResponse]
    next_cursor: Optional[str] = None


# Deposits ----------------------------------------------------------------
class DepositInitRequest(BaseModel):
    network: Network
    product_type: ProductType
    amount_usdt: Optional[Amount] = Field(default=None, gt=0)
    lottery_id: Optional[int] = Field(default=None, ge=1)
    ticket_count: Optional[int] = Field(default=None, ge=1)

class DepositResponse(ResponseModel):
    id: int
    user_id: int
    network: Network
    product_type: ProductType
    status: DepositStatus
    address: str
    expected_amount: Optional[AmountOut] = None
    actual_amount: Optional[AmountOut] = None
    tx_hash: Optional[str] = None
    meta: Optional[dict[str, Any]] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None

class DepositCallbackRequest(BaseModel):
    deposit_id: int = Field(..., ge=1)
    network: Network
    tx_hash: str = Field(..., min_length=1, max_length=255)
    amount: Amount = Field(..., gt=0)

class ProductActionResponse(ResponseModel):
    type: str
    amount: Optional[AmountOut] = None
    ticket_count: Optional[int] = None
    lottery_id: Optional[int] = None

class DepositConfirmationResponse(ResponseModel):
    deposit: DepositResponse
    wallet: WalletResponse
    product_action: Optional[ProductActionResponse] = None
    already_processed: bool = False


# Referrals ----------------------------------------------------------------
class AttachReferrerRequest(BaseModel):
    inviter_id: int = Field(..., ge=1)

class ReferralRewardResponse(ResponseModel):
    from_user_id: int
    level: int
    amount: AmountOut
    source_type: str
    source_id: Optional[int] = None
    created_at: datetime

class ReferralInfoResponse(ResponseModel):
    user_id: int
    inviter_id: Optional[int] = None
    direct_referrals: int
    indirect_referrals: int
    total_rewards: AmountOut
    level1_rewards: AmountOut
    level2_rewards: AmountOut
    recent_rewards: list[ReferralRewardResponse]


# Verifications ----------------------------------------------------------------
class VerificationInitRequest(BaseModel):
    feature: VerificationFeature
    wallet_address: str = Field(..., min_length=1, max_length=128)
    wallet_network: Network
    method: VerificationMethod = VerificationMethod.SIGNATURE
    amount: Optional[Amount] = Field(default=None, gt=0)

class VerificationInitResponse(ResponseModel):
    verification_id: int
    status: VerificationStatus
    method: VerificationMethod
    nonce: str
    message_to_sign: str
    expires_at: datetime
    risk_level: RiskLevel
    recommended_method: VerificationMethod

class SignatureSubmitRequest(BaseModel):
    signature: str = Field(..., min_length=1, max_length=512)
    wallet_address: str = Field(..., min_length=1, max_length=128)

class AssistedProofRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=128)
    proof: str = Field(..., min_length=1, max_length=8192)
    user_consent: bool = False

class VerificationStatusResponse(ResponseModel):
    verification_id: int
    status: VerificationStatus

class VerificationResponse(ResponseModel):
    id: int
    user_id: int
    feature: VerificationFeature
    method: VerificationMethod
    wallet_address: str
    wallet_network: Network
    status: VerificationStatus
    risk_level: RiskLevel
    rejection_reason: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    verified_at: Optional[datetime] = None

class SubmissionResponse(ResponseModel):
    id: int
    verification_id: int
    wallet_address: str
    status: SubmissionStatus
    created_at: datetime

class VerifiedCheckResponse(BaseModel):
    feature: VerificationFeature
    verified: bool

class AuditEntryResponse(ResponseModel):
    id: int
    verification_id: int
    actor_type: str
    actor_id: Optional[int] = None
    action: str
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: datetime

class AdminOverrideRequest(BaseModel):
    decision: Literal["approve", "reject"]
    reason: str = Field(..., min_length=1, max_length=1000)

class SubmissionReviewRequest(BaseModel):
    approved: bool
    notes: Optional[str] = Field(default=None, max_length=1000)

class VerificationFailedWebhook(BaseModel):
    verification_id: int = Field(..., ge=1)
    user_id: int = Field(..., ge=1)
    reason: str = "Verification failed"
    details: dict[str, Any] = Field(default_factory=dict)


# Withdrawals ----------------------------------------------------------------
class WithdrawalInitRequest(BaseModel):
    amount: Amount = Field(..., gt=0)
    network: Network
    target_address: str = Field(..., min_length=10, max_length=128)

class WithdrawalVerificationRequest(BaseModel):
    method: VerificationMethod = VerificationMethod.SIGNATURE

class WithdrawalExecuteRequest(BaseModel):
    amount: Amount = Field(..., gt=0)

class WithdrawalResponse(ResponseModel):
    id: int
    user_id: int
    amount: AmountOut
    network: Network
    target_address: str
    status: WithdrawalStatus
    verification_id: Optional[int] = None
    external_ref: Optional[str] = None
    tx_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    resolved_by: Optional[int] = None
    created_at: datetime
    expires_at: datetime

class WithdrawalExecuteResponse(ResponseModel):
    withdrawal_id: int
    status: WithdrawalStatus
    external_ref: Optional[str] = None

class WithdrawalCompleteRequest(BaseModel):
    tx_hash: str = Field(..., min_length=1, max_length=255)

class WithdrawalFailRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

class SettlementCallbackRequest(BaseModel):
    withdrawal_id: int = Field(..., ge=1)
    status: Literal["completed", "failed"]
    tx_hash: Optional[str] = Field(default=None, max_length=255)
    reason: Optional[str] = Field(default=None, max_length=1000)

class DepositAdminConfirmRequest(BaseModel):
    tx_hash: str = Field(..., min_length=1, max_length=255)
    amount: Optional[Amount] = Field(default=None, gt=0)

class DepositFailRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

class ExpiredDepositsResponse(BaseModel):
    expired: int

class DispatchResponse(BaseModel):
    sent: int
    failed: int
