from .db import Deposit as DepositModel
from .db import LedgerEntry as LedgerEntryModel
from .db import LotteryTicket as LotteryTicketModel
from .db import NotificationOutbox as NotificationOutboxModel
from .db import ReferralEdge as ReferralEdgeModel
from .db import ReferralReward as ReferralRewardModel
from .db import TradingAccount as TradingAccountModel
from .db import VerificationAuditLog as VerificationAuditLogModel
from .db import VerificationSubmission as VerificationSubmissionModel
from .db import Wallet as WalletModel
from .db import WalletVerification as WalletVerificationModel
from .db import WithdrawalRequest as WithdrawalRequestModel
from .schemas import (
    AdminOverrideRequest,
    AssistedProofRequest,
    AttachReferrerRequest,
    AuditEntryResponse,
    DepositAdminConfirmRequest,
    DepositCallbackRequest,
    DepositConfirmationResponse,
    DepositFailRequest,
    DepositInitRequest,
    DepositResponse,
    DispatchResponse,
    ExpiredDepositsResponse,
    LedgerEntryResponse,
    ProductActionResponse,
    ReferralInfoResponse,
    ReferralRewardResponse,
    SettlementCallbackRequest,
    SignatureSubmitRequest,
    StatementResponse,
    SubmissionResponse,
    SubmissionReviewRequest,
    VerificationFailedWebhook,
    VerificationInitRequest,
    VerificationInitResponse,
    VerificationResponse,
    VerificationStatusResponse,
    VerifiedCheckResponse,
    WalletResponse,
    WithdrawalCompleteRequest,
    WithdrawalExecuteRequest,
    WithdrawalExecuteResponse,
    WithdrawalFailRequest,
    WithdrawalInitRequest,
    WithdrawalResponse,
    WithdrawalVerificationRequest,
)

__all__ = [
    "AdminOverrideRequest",
    "AssistedProofRequest",
    "AttachReferrerRequest",
    "AuditEntryResponse",
    "DepositAdminConfirmRequest",
    "DepositCallbackRequest",
    "DepositConfirmationResponse",
    "DepositFailRequest",
    "DepositInitRequest",
    "DepositResponse",
    "DispatchResponse",
    "ExpiredDepositsResponse",
    "LedgerEntryResponse",
    "ProductActionResponse",
    "ReferralInfoResponse",
    "ReferralRewardResponse",
    "SettlementCallbackRequest",
    "SignatureSubmitRequest",
    "StatementResponse",
    "SubmissionResponse",
    "SubmissionReviewRequest",
    "VerificationFailedWebhook",
    "VerificationInitRequest",
    "VerificationInitResponse",
    "VerificationResponse",
    "VerificationStatusResponse",
    "VerifiedCheckResponse",
    "WalletResponse",
    "WithdrawalCompleteRequest",
    "WithdrawalExecuteRequest",
    "WithdrawalExecuteResponse",
    "WithdrawalFailRequest",
    "WithdrawalInitRequest",
    "WithdrawalResponse",
    "WithdrawalVerificationRequest",
    "DepositModel",
    "LedgerEntryModel",
    "LotteryTicketModel",
    "NotificationOutboxModel",
    "ReferralEdgeModel",
    "ReferralRewardModel",
    "TradingAccountModel",
    "VerificationAuditLogModel",
    "VerificationSubmissionModel",
    "WalletModel",
    "WalletVerificationModel",
    "WithdrawalRequestModel",
]
