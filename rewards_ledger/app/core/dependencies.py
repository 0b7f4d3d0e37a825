from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request
from sqlmodel import Session

from ..services import (
    ChainWatcherClient,
    CommissionService,
    DepositService,
    HttpNotifier,
    LedgerRepository,
    LedgerService,
    LogNotifier,
    ManualSettlement,
    NotificationService,
    StaticAddressProvider,
    VerificationService,
    WithdrawalService,
)
from ..services.chain_watcher import AddressProvider, SettlementGateway
from ..services.notifications import Notifier
from .config import Settings, get_settings
from .db import get_session
from .errors import UnauthorizedError
from .security import AdminPrincipal, tokens_match, verify_hmac_signature


# Collaborators -------------------------------------------------------------
@lru_cache(maxsize=1)
def _chain_watcher() -> Optional[ChainWatcherClient]:
    settings = get_settings()
    if not settings.chain_watcher_url:
        return None
    return ChainWatcherClient(
        settings.chain_watcher_url,
        token=settings.chain_watcher_token,
        timeout=settings.chain_watcher_timeout_seconds,
    )


def get_address_provider(settings: Settings = Depends(get_settings)) -> AddressProvider:
    return _chain_watcher() or StaticAddressProvider(settings.deposit_addresses)


def get_settlement_gateway() -> SettlementGateway:
    return _chain_watcher() or ManualSettlement()


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    settings = get_settings()
    if settings.notification_url:
        return HttpNotifier(settings.notification_url, timeout=settings.notification_timeout_seconds)
    return LogNotifier()


# Services ------------------------------------------------------------------
def get_repository(session: Session = Depends(get_session)) -> LedgerRepository:
    return LedgerRepository(session)


def get_ledger_service(
    session: Session = Depends(get_session),
    repository: LedgerRepository = Depends(get_repository),
) -> LedgerService:
    return LedgerService(session, repository)


def get_notification_service(
    session: Session = Depends(get_session),
    repository: LedgerRepository = Depends(get_repository),
    notifier: Notifier = Depends(get_notifier),
) -> NotificationService:
    return NotificationService(session, repository, notifier)


def get_commission_service(
    session: Session = Depends(get_session),
    repository: LedgerRepository = Depends(get_repository),
    ledger: LedgerService = Depends(get_ledger_service),
    notifications: NotificationService = Depends(get_notification_service),
    settings: Settings = Depends(get_settings),
) -> CommissionService:
    return CommissionService(
        session, repository, ledger=ledger, notifications=notifications, settings=settings
    )


def get_deposit_service(
    session: Session = Depends(get_session),
    repository: LedgerRepository = Depends(get_repository),
    ledger: LedgerService = Depends(get_ledger_service),
    commission: CommissionService = Depends(get_commission_service),
    notifications: NotificationService = Depends(get_notification_service),
    address_provider: AddressProvider = Depends(get_address_provider),
    settings: Settings = Depends(get_settings),
) -> DepositService:
    return DepositService(
        session,
        repository,
        ledger=ledger,
        commission=commission,
        notifications=notifications,
        address_provider=address_provider,
        settings=settings,
    )


def build_verification_service(
    session: Session = Depends(get_session),
    repository: LedgerRepository = Depends(get_repository),
    notifications: NotificationService = Depends(get_notification_service),
    settings: Settings = Depends(get_settings),
) -> VerificationService:
    return VerificationService(
        session, repository, notifications=notifications, settings=settings
    )


def get_withdrawal_service(
    session: Session = Depends(get_session),
    repository: LedgerRepository = Depends(get_repository),
    ledger: LedgerService = Depends(get_ledger_service),
    verification: VerificationService = Depends(build_verification_service),
    notifications: NotificationService = Depends(get_notification_service),
    settlement: SettlementGateway = Depends(get_settlement_gateway),
    settings: Settings = Depends(get_settings),
) -> WithdrawalService:
    return WithdrawalService(
        session,
        repository,
        ledger=ledger,
        verification=verification,
        notifications=notifications,
        settlement=settlement,
        settings=settings,
    )


def get_verification_service(
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
) -> VerificationService:
    # carries the withdrawal approval hook, so any approval path binds withdrawals
    return withdrawals.verification


# Principals ----------------------------------------------------------------
def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> int:
    try:
        user_id = int(x_user_id or "")
    except ValueError as exc:
        raise UnauthorizedError("Missing or invalid X-User-Id header") from exc
    if user_id < 1:
        raise UnauthorizedError("Missing or invalid X-User-Id header")
    return user_id


def get_admin_principal(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    x_admin_id: Optional[str] = Header(default=None, alias="X-Admin-Id"),
    settings: Settings = Depends(get_settings),
) -> AdminPrincipal:
    if not tokens_match(x_admin_token, settings.admin_api_token):
        raise UnauthorizedError("Invalid admin token")
    try:
        admin_id = int(x_admin_id or "")
    except ValueError as exc:
        raise UnauthorizedError("Missing or invalid X-Admin-Id header") from exc
    return AdminPrincipal(admin_id=admin_id)


def require_callback_token(
    x_payments_callback_token: Optional[str] = Header(
        default=None, alias="X-Payments-Callback-Token"
    ),
    settings: Settings = Depends(get_settings),
) -> None:
    if not tokens_match(x_payments_callback_token, settings.payments_callback_token):
        raise UnauthorizedError("Invalid callback token")


async def require_webhook_signature(
    request: Request,
    x_verification_signature: Optional[str] = Header(
        default=None, alias="X-Verification-Signature"
    ),
    settings: Settings = Depends(get_settings),
) -> None:
    body = await request.body()
    if not verify_hmac_signature(
        settings.verification_webhook_secret, body, x_verification_signature
    ):
        raise UnauthorizedError("Invalid webhook signature")
