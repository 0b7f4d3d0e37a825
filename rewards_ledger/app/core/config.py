from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_COMMISSIONS: dict[str, dict[int, Decimal]] = {
    "wallet_deposit": {1: Decimal("0.05"), 2: Decimal("0.02")},
    "ai_trader_deposit": {1: Decimal("0.07"), 2: Decimal("0.03")},
    "lottery_purchase": {1: Decimal("0.03"), 2: Decimal("0.01")},
}


class Settings(BaseSettings):
    app_name: str = "Rewards Ledger API"
    database_url: str = "sqlite:///rewards_ledger.db"
    log_level: str = "INFO"

    # Shared secrets
    secret_key: str = "change-me"
    payments_callback_token: str = ""
    verification_webhook_secret: str = ""
    admin_api_token: str = ""
    proof_encryption_key: Optional[str] = None

    # External collaborators
    chain_watcher_url: Optional[str] = None
    chain_watcher_token: str = ""
    chain_watcher_timeout_seconds: float = 10.0
    notification_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0
    deposit_addresses: dict[str, str] = {
        "erc20": "0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
        "bep20": "0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
        "trc20": "TNVnn7g2DgZTz4hiS2LdFWB8PJWvxqwmpn",
    }

    # Deposits
    min_deposit_usdt: Decimal = Decimal("1")
    max_deposit_usdt: Decimal = Decimal("100000")
    min_ai_trader_deposit_usdt: Decimal = Decimal("10")
    lottery_ticket_price_usdt: Decimal = Decimal("1")
    deposit_ttl_hours: int = 24

    # Withdrawals
    min_withdrawal_usdt: Decimal = Decimal("10")
    max_withdrawal_usdt: Decimal = Decimal("100000")
    withdrawal_request_window_seconds: int = 3600

    # Verification
    signature_verification_ttl_hours: int = 24
    assisted_verification_ttl_hours: int = 72

    # Referrals
    referral_max_level: int = 2
    referral_min_reward_usdt: Decimal = Decimal("0.01")
    referral_commissions: dict[str, dict[int, Decimal]] = DEFAULT_COMMISSIONS

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LEDGER_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
