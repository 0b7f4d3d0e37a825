from typing import Optional

from fastapi import APIRouter, Depends, status

from ..core.dependencies import (
    get_commission_service,
    get_current_user_id,
    get_deposit_service,
    get_ledger_service,
    get_verification_service,
    get_withdrawal_service,
)
from ..models import (
    AssistedProofRequest,
    AttachReferrerRequest,
    DepositInitRequest,
    DepositResponse,
    ReferralInfoResponse,
    SignatureSubmitRequest,
    StatementResponse,
    SubmissionResponse,
    VerificationInitRequest,
    VerificationInitResponse,
    VerificationResponse,
    VerificationStatusResponse,
    VerifiedCheckResponse,
    WalletResponse,
    WithdrawalExecuteRequest,
    WithdrawalExecuteResponse,
    WithdrawalInitRequest,
    WithdrawalResponse,
    WithdrawalVerificationRequest,
)
from ..models.enums import VerificationFeature
from ..services import (
    CommissionService,
    DepositService,
    LedgerService,
    VerificationService,
    WithdrawalService,
)


wallet_router = APIRouter(prefix="/wallet", tags=["wallet"])

@wallet_router.get("", response_model=WalletResponse)
def get_wallet(
    user_id: int = Depends(get_current_user_id),
    service: LedgerService = Depends(get_ledger_service),
) -> WalletResponse:
    return service.get_balances(user_id)

@wallet_router.get("/statement", response_model=StatementResponse)
def get_statement(
    limit: int = 50,
    cursor: str | None = None,
    user_id: int = Depends(get_current_user_id),
    service: LedgerService = Depends(get_ledger_service),
) -> StatementResponse:
    return service.get_statement(user_id, limit=limit, cursor=cursor)


deposit_router = APIRouter(prefix="/deposits", tags=["deposits"])

@deposit_router.post("", response_model=DepositResponse, status_code=status.HTTP_201_CREATED)
def init_deposit(
    payload: DepositInitRequest,
    user_id: int = Depends(get_current_user_id),
    service: DepositService = Depends(get_deposit_service),
) -> DepositResponse:
    return service.init_deposit(user_id, payload)

@deposit_router.get("", response_model=list[DepositResponse])
def list_deposits(
    limit: int = 50,
    user_id: int = Depends(get_current_user_id),
    service: DepositService = Depends(get_deposit_service),
) -> list[DepositResponse]:
    return service.list_deposits(user_id, limit=limit)

@deposit_router.get("/{deposit_id}", response_model=DepositResponse)
def get_deposit(
    deposit_id: int,
    user_id: int = Depends(get_current_user_id),
    service: DepositService = Depends(get_deposit_service),
) -> DepositResponse:
    return service.get_deposit(user_id, deposit_id)


referral_router = APIRouter(prefix="/referrals", tags=["referrals"])

@referral_router.post("/attach", response_model=ReferralInfoResponse)
def attach_referrer(
    payload: AttachReferrerRequest,
    user_id: int = Depends(get_current_user_id),
    service: CommissionService = Depends(get_commission_service),
) -> ReferralInfoResponse:
    return service.attach_referrer(user_id, payload.inviter_id)

@referral_router.get("", response_model=ReferralInfoResponse)
def get_referral_info(
    user_id: int = Depends(get_current_user_id),
    service: CommissionService = Depends(get_commission_service),
) -> ReferralInfoResponse:
    return service.get_referral_info(user_id)


verification_router = APIRouter(prefix="/verifications", tags=["verifications"])

@verification_router.post(
    "", response_model=VerificationInitResponse, status_code=status.HTTP_201_CREATED
)
def initiate_verification(
    payload: VerificationInitRequest,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> VerificationInitResponse:
    context = {"amount": str(payload.amount)} if payload.amount is not None else None
    return service.initiate(
        user_id,
        payload.feature,
        payload.wallet_address,
        payload.wallet_network,
        method=payload.method,
        context=context,
    )

@verification_router.get("", response_model=list[VerificationResponse])
def list_verifications(
    feature: Optional[VerificationFeature] = None,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> list[VerificationResponse]:
    return service.list_verifications(user_id, feature)

@verification_router.get("/is-verified", response_model=VerifiedCheckResponse)
def is_verified(
    feature: VerificationFeature,
    wallet_address: Optional[str] = None,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> VerifiedCheckResponse:
    return VerifiedCheckResponse(
        feature=feature, verified=service.is_verified(user_id, feature, wallet_address)
    )

@verification_router.get("/{verification_id}", response_model=VerificationResponse)
def get_verification(
    verification_id: int,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> VerificationResponse:
    return service.get_verification(user_id, verification_id)

@verification_router.post(
    "/{verification_id}/signature", response_model=VerificationStatusResponse
)
def submit_signature(
    verification_id: int,
    payload: SignatureSubmitRequest,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> VerificationStatusResponse:
    return service.submit_signature(
        verification_id, user_id, payload.signature, payload.wallet_address
    )

@verification_router.post(
    "/{verification_id}/assisted",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_assisted_proof(
    verification_id: int,
    payload: AssistedProofRequest,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> SubmissionResponse:
    return service.submit_assisted_proof(
        verification_id, user_id, payload.wallet_address, payload.proof, payload.user_consent
    )


withdrawal_router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

@withdrawal_router.post("", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
def initiate_withdrawal(
    payload: WithdrawalInitRequest,
    user_id: int = Depends(get_current_user_id),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    return service.initiate(user_id, payload.amount, payload.network, payload.target_address)

@withdrawal_router.get("/{withdrawal_id}", response_model=WithdrawalResponse)
def get_withdrawal(
    withdrawal_id: int,
    user_id: int = Depends(get_current_user_id),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalResponse:
    return service.get_withdrawal(user_id, withdrawal_id)

@withdrawal_router.post(
    "/{withdrawal_id}/verification",
    response_model=VerificationInitResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_withdrawal_verification(
    withdrawal_id: int,
    payload: WithdrawalVerificationRequest,
    user_id: int = Depends(get_current_user_id),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> VerificationInitResponse:
    return service.start_verification(user_id, withdrawal_id, payload.method)

@withdrawal_router.post("/{withdrawal_id}/execute", response_model=WithdrawalExecuteResponse)
def execute_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalExecuteRequest,
    user_id: int = Depends(get_current_user_id),
    service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalExecuteResponse:
    return service.execute(user_id, withdrawal_id, payload.amount)

__all__ = [
    "deposit_router",
    "referral_router",
    "verification_router",
    "wallet_router",
    "withdrawal_router",
]
