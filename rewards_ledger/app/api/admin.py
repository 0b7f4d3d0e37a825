from typing import Optional

from fastapi import APIRouter, Depends

from ..core.dependencies import (
    get_admin_principal,
    get_deposit_service,
    get_notification_service,
    get_verification_service,
    get_withdrawal_service,
)
from ..core.security import AdminPrincipal
from ..models import (
    AdminOverrideRequest,
    AuditEntryResponse,
    DepositAdminConfirmRequest,
    DepositConfirmationResponse,
    DepositFailRequest,
    DepositResponse,
    DispatchResponse,
    ExpiredDepositsResponse,
    SubmissionReviewRequest,
    VerificationResponse,
    WithdrawalCompleteRequest,
    WithdrawalFailRequest,
    WithdrawalResponse,
)
from ..models.enums import WithdrawalStatus
from ..services import (
    DepositService,
    NotificationService,
    VerificationService,
    WithdrawalService,
)


router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/verifications/{verification_id}/override", response_model=VerificationResponse)
def override_verification(
    verification_id: int,
    payload: AdminOverrideRequest,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: VerificationService = Depends(get_verification_service),
) -> VerificationResponse:
    return service.admin_override(verification_id, admin, payload.decision, payload.reason)

@router.get("/verifications/{verification_id}/audit", response_model=list[AuditEntryResponse])
def verification_audit(
    verification_id: int,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: VerificationService = Depends(get_verification_service),
) -> list[AuditEntryResponse]:
    return service.list_audit(verification_id)

@router.post(
    "/verification-submissions/{submission_id}/review", response_model=VerificationResponse
)
def review_submission(
    submission_id: int,
    payload: SubmissionReviewRequest,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: VerificationService = Depends(get_verification_service),
) -> VerificationResponse:
    return service.review_submission(submission_id, admin, payload.approved, payload.notes)

@router.get("/withdrawals", response_model=list[WithdrawalResponse])
def list_withdrawals(
    status: Optional[WithdrawalStatus] = None,
    limit: int = 100,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> list[WithdrawalResponse]:
    return service.list_withdrawals(status, limit=max(1, min(limit, 500)))

@router.post("/withdrawals/{withdrawal_id}/complete", response_model=WithdrawalResponse)
def complete_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalCompleteRequest,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    return service.complete(withdrawal_id, payload.tx_hash, admin_id=admin.admin_id)

@router.post("/withdrawals/{withdrawal_id}/fail", response_model=WithdrawalResponse)
def fail_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalFailRequest,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    return service.fail(withdrawal_id, payload.reason, admin_id=admin.admin_id)

@router.post("/deposits/{deposit_id}/confirm", response_model=DepositConfirmationResponse)
def confirm_deposit(
    deposit_id: int,
    payload: DepositAdminConfirmRequest,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: DepositService = Depends(get_deposit_service),
) -> DepositConfirmationResponse:
    return service.admin_confirm_deposit(
        deposit_id, payload.tx_hash, admin.admin_id, amount=payload.amount
    )

@router.post("/deposits/{deposit_id}/fail", response_model=DepositResponse)
def fail_deposit(
    deposit_id: int,
    payload: DepositFailRequest,
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: DepositService = Depends(get_deposit_service),
) -> DepositResponse:
    return service.fail_deposit(deposit_id, payload.reason)

@router.post("/deposits/expire", response_model=ExpiredDepositsResponse)
def expire_deposits(
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: DepositService = Depends(get_deposit_service),
) -> ExpiredDepositsResponse:
    return ExpiredDepositsResponse(expired=service.expire_stale_deposits())

@router.post("/notifications/dispatch", response_model=DispatchResponse)
def dispatch_notifications(
    admin: AdminPrincipal = Depends(get_admin_principal),
    service: NotificationService = Depends(get_notification_service),
) -> DispatchResponse:
    return service.dispatch_pending()

__all__ = ["router"]
