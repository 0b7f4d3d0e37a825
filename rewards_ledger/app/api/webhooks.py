"""Inbound calls from the chain-watcher and the compliance processor.

Callbacks authenticate with a shared token header; the compliance webhook
signs its raw body with HMAC-SHA256.
"""
from fastapi import APIRouter, Depends

from ..core.dependencies import (
    get_deposit_service,
    get_verification_service,
    get_withdrawal_service,
    require_callback_token,
    require_webhook_signature,
)
from ..core.errors import ValidationError
from ..models import (
    DepositCallbackRequest,
    DepositConfirmationResponse,
    SettlementCallbackRequest,
    VerificationFailedWebhook,
    VerificationStatusResponse,
    WithdrawalResponse,
)
from ..services import DepositService, VerificationService, WithdrawalService


payments_router = APIRouter(
    prefix="/payments",
    tags=["payments"],
    dependencies=[Depends(require_callback_token)],
)

@payments_router.post("/deposit/callback", response_model=DepositConfirmationResponse)
def deposit_callback(
    payload: DepositCallbackRequest,
    service: DepositService = Depends(get_deposit_service),
) -> DepositConfirmationResponse:
    return service.handle_callback(payload)

@payments_router.post("/withdrawal/callback", response_model=WithdrawalResponse)
def withdrawal_callback(
    payload: SettlementCallbackRequest,
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    if payload.status == "completed":
        if not payload.tx_hash:
            raise ValidationError("tx_hash is required for completed settlements")
        return service.complete(payload.withdrawal_id, payload.tx_hash)
    return service.fail(payload.withdrawal_id, payload.reason or "Settlement failed")


webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

@webhook_router.post(
    "/verification/failed",
    response_model=VerificationStatusResponse,
    dependencies=[Depends(require_webhook_signature)],
)
def verification_failed(
    payload: VerificationFailedWebhook,
    service: VerificationService = Depends(get_verification_service),
) -> VerificationStatusResponse:
    return service.reject_from_webhook(
        payload.verification_id, payload.user_id, payload.reason, payload.details
    )

__all__ = ["payments_router", "webhook_router"]
