from enum import Enum


class Network(str, Enum):
    ERC20 = "erc20"
    BEP20 = "bep20"
    TRC20 = "trc20"

    @property
    def is_evm(self) -> bool:
        return self in (Network.ERC20, Network.BEP20)


class Currency(str, Enum):
    USDT = "usdt"
    GHD = "ghd"


class ProductType(str, Enum):
    WALLET_TOPUP = "wallet_topup"
    AI_TRADER = "ai_trader"
    LOTTERY_TICKETS = "lottery_tickets"


class RevenueSource(str, Enum):
    WALLET_DEPOSIT = "wallet_deposit"
    AI_TRADER_DEPOSIT = "ai_trader_deposit"
    LOTTERY_PURCHASE = "lottery_purchase"


class DepositStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VerificationFeature(str, Enum):
    LOTTERY = "lottery"
    AIRDROP = "airdrop"
    AI_TRADER = "ai_trader"
    WITHDRAWAL = "withdrawal"


class VerificationMethod(str, Enum):
    SIGNATURE = "signature"
    ASSISTED = "assisted"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (
            VerificationStatus.APPROVED,
            VerificationStatus.REJECTED,
            VerificationStatus.EXPIRED,
        )


class SubmissionStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
