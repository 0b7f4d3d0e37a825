"""Wallet ownership verification.

A verification moves ``pending -> verifying -> approved | rejected`` and
expires once its deadline passes (checked whenever it is read). Signature
verifications are decided in a single step from the recovered signer;
assisted verifications collect encrypted proofs that an external reviewer
approves or rejects. Operators may override any open verification.

Other services subscribe to approvals with :meth:`add_approval_hook`; hooks
run inside the approving transaction.
"""
from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlmodel import Session

from ..core.clock import Clock, is_past, utcnow
from ..core.config import Settings, get_settings
from ..core.db import transaction
from ..core.errors import (
    NotFoundError,
    StateConflictError,
    ValidationError,
    VerificationExpiredError,
    VerificationNotPendingError,
)
from ..core.money import format_amount
from ..core.security import AdminPrincipal, ProofCipher
from ..models import (
    AuditEntryResponse,
    SubmissionResponse,
    VerificationAuditLogModel,
    VerificationInitResponse,
    VerificationResponse,
    VerificationStatusResponse,
    VerificationSubmissionModel,
    WalletVerificationModel,
)
from ..models.enums import (
    Network,
    SubmissionStatus,
    VerificationFeature,
    VerificationMethod,
    VerificationStatus,
)
from .networks import same_address, validate_address
from .notifications import NotificationService
from .repository import LedgerRepository
from .risk import HistoryRiskScorer, RiskAssessment, RiskInput, RiskScorer
from .signatures import build_verification_message, signature_matches


logger = logging.getLogger(__name__)

ApprovalHook = Callable[[WalletVerificationModel], None]

OPEN_STATUSES = (VerificationStatus.PENDING, VerificationStatus.VERIFYING)


class VerificationService:
    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        *,
        notifications: Optional[NotificationService] = None,
        risk_scorer: Optional[RiskScorer] = None,
        cipher: Optional[ProofCipher] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.settings = settings or get_settings()
        self.notifications = notifications or NotificationService(session, self.repository)
        self.risk_scorer = risk_scorer or HistoryRiskScorer()
        self.cipher = cipher or ProofCipher.from_settings(self.settings)
        self.clock = clock
        self._approval_hooks: list[ApprovalHook] = []

    def add_approval_hook(self, hook: ApprovalHook) -> None:
        self._approval_hooks.append(hook)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _load(
        self,
        verification_id: int,
        user_id: Optional[int] = None,
        *,
        lock: bool = False,
    ) -> WalletVerificationModel:
        if lock:
            verification = self.repository.lock_verification(verification_id)
        else:
            verification = self.repository.get_verification(verification_id)
        if verification is None or (user_id is not None and verification.user_id != user_id):
            raise NotFoundError(
                f"Verification {verification_id} not found", code="VERIFICATION_NOT_FOUND"
            )
        return verification

    def _is_due(self, verification: WalletVerificationModel) -> bool:
        return verification.status in OPEN_STATUSES and is_past(
            verification.expires_at, self.clock()
        )

    def _expire(self, verification: WalletVerificationModel) -> None:
        verification.status = VerificationStatus.EXPIRED
        self.session.add(verification)
        logger.info(
            "verification.expired",
            extra={"verification_id": verification.id, "user_id": verification.user_id},
        )

    def _expire_on_read(self, verification: WalletVerificationModel) -> WalletVerificationModel:
        if self._is_due(verification):
            with transaction(self.session):
                verification = self._load(verification.id, lock=True)
                if self._is_due(verification):
                    self._expire(verification)
            self.session.refresh(verification)
        return verification

    def _audit(
        self,
        verification: WalletVerificationModel,
        action: str,
        *,
        actor_type: str,
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.repository.add_audit(
            VerificationAuditLogModel(
                verification_id=verification.id,
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                reason=reason,
                details=details,
            )
        )

    def _approve(
        self,
        verification: WalletVerificationModel,
        *,
        actor_type: str,
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
        action: str = "verification_approved",
    ) -> None:
        verification.status = VerificationStatus.APPROVED
        verification.verified_at = self.clock()
        verification.rejection_reason = None
        self.session.add(verification)
        self.session.flush()
        self._audit(verification, action, actor_type=actor_type, actor_id=actor_id, reason=reason)
        for hook in self._approval_hooks:
            hook(verification)
        self.notifications.enqueue(
            verification.user_id,
            "verification_approved",
            {
                "verification_id": verification.id,
                "feature": verification.feature.value,
                "wallet_address": verification.wallet_address,
            },
        )
        logger.info(
            "verification.approved",
            extra={
                "verification_id": verification.id,
                "user_id": verification.user_id,
                "actor_type": actor_type,
            },
        )

    def _reject(
        self,
        verification: WalletVerificationModel,
        reason: str,
        *,
        actor_type: str,
        actor_id: Optional[int] = None,
        action: str = "verification_rejected",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        verification.status = VerificationStatus.REJECTED
        verification.rejection_reason = reason
        self.session.add(verification)
        self._audit(
            verification,
            action,
            actor_type=actor_type,
            actor_id=actor_id,
            reason=reason,
            details=details,
        )
        self.notifications.enqueue(
            verification.user_id,
            "verification_rejected",
            {
                "verification_id": verification.id,
                "feature": verification.feature.value,
                "reason": reason,
            },
        )
        logger.info(
            "verification.rejected",
            extra={
                "verification_id": verification.id,
                "user_id": verification.user_id,
                "actor_type": actor_type,
                "reason": reason,
            },
        )

    def _record_review(
        self,
        verification: WalletVerificationModel,
        submission: VerificationSubmissionModel,
        reviewer: AdminPrincipal,
        approved: bool,
        notes: Optional[str],
    ) -> None:
        submission.status = SubmissionStatus.APPROVED if approved else SubmissionStatus.REJECTED
        submission.reviewer_id = reviewer.admin_id
        submission.review_notes = notes
        submission.reviewed_at = self.clock()
        self.session.add(submission)
        self.session.flush()

        statuses = [s.status for s in self.repository.list_submissions(verification.id)]
        if SubmissionStatus.REJECTED in statuses:
            self._reject(
                verification,
                notes or "Assisted verification rejected",
                actor_type="reviewer",
                actor_id=reviewer.admin_id,
                details={"submission_id": submission.id},
            )
        elif all(status == SubmissionStatus.APPROVED for status in statuses):
            self._approve(
                verification,
                actor_type="reviewer",
                actor_id=reviewer.admin_id,
                reason=notes,
            )

    def _ttl(self, method: VerificationMethod) -> timedelta:
        if method is VerificationMethod.ASSISTED:
            return timedelta(hours=self.settings.assisted_verification_ttl_hours)
        return timedelta(hours=self.settings.signature_verification_ttl_hours)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def initiate(
        self,
        user_id: int,
        feature: VerificationFeature,
        wallet_address: str,
        wallet_network: Network,
        method: VerificationMethod = VerificationMethod.SIGNATURE,
        context: Optional[dict[str, Any]] = None,
    ) -> VerificationInitResponse:
        feature = VerificationFeature(feature)
        wallet_network = Network(wallet_network)
        method = VerificationMethod(method)
        wallet_address = validate_address(wallet_address, wallet_network)
        context = dict(context or {})
        now = self.clock()

        amount: Optional[Decimal] = None
        if context.get("amount") is not None:
            amount = Decimal(str(context["amount"]))
            context["amount"] = format_amount(amount)

        history = self.repository.verification_history(
            user_id, wallet_address, now - timedelta(hours=1)
        )
        wallet = self.repository.get_wallet(user_id)
        assessment = self.risk_scorer.assess(
            RiskInput(
                user_id=user_id,
                feature=feature,
                wallet_address=wallet_address,
                amount=amount,
                total_attempts=history["total_attempts"],
                failed_attempts=history["failed_attempts"],
                recent_attempts=history["recent_attempts"],
                account_created_at=wallet.created_at if wallet is not None else None,
                now=now,
            )
        )

        nonce = secrets.token_hex(16)
        message = build_verification_message(
            user_id=user_id,
            feature=feature.value,
            wallet_address=wallet_address,
            network=wallet_network,
            nonce=nonce,
            amount=context.get("amount"),
        )
        context["risk_factors"] = assessment.factors

        with transaction(self.session):
            verification = self.repository.add_verification(
                WalletVerificationModel(
                    user_id=user_id,
                    feature=feature,
                    method=method,
                    wallet_address=wallet_address,
                    wallet_network=wallet_network,
                    message_to_sign=message,
                    nonce=nonce,
                    risk_score=assessment.score,
                    risk_level=assessment.level,
                    context=context,
                    created_at=now,
                    expires_at=now + self._ttl(method),
                )
            )
            self._audit(
                verification,
                "verification_created",
                actor_type="user",
                actor_id=user_id,
                details={"method": method.value, "risk_score": assessment.score},
            )

        logger.info(
            "verification.created",
            extra={
                "verification_id": verification.id,
                "user_id": user_id,
                "feature": feature.value,
                "method": method.value,
                "risk_level": assessment.level.value,
            },
        )
        return VerificationInitResponse(
            verification_id=verification.id,
            status=verification.status,
            method=method,
            nonce=nonce,
            message_to_sign=message,
            expires_at=verification.expires_at,
            risk_level=assessment.level,
            recommended_method=assessment.recommended_method,
        )

    def resume(self, user_id: int, verification_id: int) -> Optional[VerificationInitResponse]:
        """The challenge of a still-open verification, or None once it has closed."""
        verification = self._expire_on_read(self._load(verification_id, user_id))
        if verification.status not in OPEN_STATUSES:
            return None
        assessment = RiskAssessment(score=verification.risk_score, level=verification.risk_level)
        return VerificationInitResponse(
            verification_id=verification.id,
            status=verification.status,
            method=verification.method,
            nonce=verification.nonce,
            message_to_sign=verification.message_to_sign,
            expires_at=verification.expires_at,
            risk_level=verification.risk_level,
            recommended_method=assessment.recommended_method,
        )

    def initiate_assisted(
        self,
        user_id: int,
        feature: VerificationFeature,
        wallet_address: str,
        wallet_network: Network,
        context: Optional[dict[str, Any]] = None,
    ) -> VerificationInitResponse:
        return self.initiate(
            user_id,
            feature,
            wallet_address,
            wallet_network,
            method=VerificationMethod.ASSISTED,
            context=context,
        )

    def submit_signature(
        self,
        verification_id: int,
        user_id: int,
        signature: str,
        claimed_address: str,
    ) -> VerificationStatusResponse:
        """Decide a signature verification.

        A mismatching signature is a normal outcome: the verification is
        rejected and the status returned. The nonce is spent either way.
        """
        expired = False
        with transaction(self.session):
            verification = self._load(verification_id, user_id, lock=True)
            if verification.method != VerificationMethod.SIGNATURE:
                raise StateConflictError("Verification does not use the signature method")
            if verification.status != VerificationStatus.PENDING or verification.nonce_consumed:
                raise VerificationNotPendingError(
                    f"Verification {verification_id} is {verification.status.value}"
                )
            if self._is_due(verification):
                self._expire(verification)
                expired = True
            else:
                verification.nonce_consumed = True
                if signature_matches(
                    verification.message_to_sign,
                    signature,
                    verification.wallet_network,
                    claimed_address.strip(),
                    verification.wallet_address,
                ):
                    self._approve(verification, actor_type="user", actor_id=user_id)
                else:
                    self._reject(
                        verification,
                        "Invalid signature",
                        actor_type="user",
                        actor_id=user_id,
                        action="signature_mismatch",
                    )
        if expired:
            raise VerificationExpiredError(f"Verification {verification_id} has expired")

        self.notifications.deliver_after_commit()
        self.session.refresh(verification)
        return VerificationStatusResponse(
            verification_id=verification.id, status=verification.status
        )

    def submit_assisted_proof(
        self,
        verification_id: int,
        user_id: int,
        wallet_address: str,
        proof: str,
        user_consent: bool,
    ) -> SubmissionResponse:
        if not user_consent:
            raise ValidationError(
                "User consent is required to store verification data", code="CONSENT_REQUIRED"
            )
        if not proof or not proof.strip():
            raise ValidationError("Proof must not be empty")

        expired = False
        with transaction(self.session):
            verification = self._load(verification_id, user_id, lock=True)
            if verification.method != VerificationMethod.ASSISTED:
                raise StateConflictError("Verification does not use the assisted method")
            if verification.status not in OPEN_STATUSES:
                raise VerificationNotPendingError(
                    f"Verification {verification_id} is {verification.status.value}"
                )
            if self._is_due(verification):
                self._expire(verification)
                expired = True
            else:
                if not same_address(
                    wallet_address.strip(),
                    verification.wallet_address,
                    verification.wallet_network,
                ):
                    raise ValidationError(
                        "Wallet address does not match verification request",
                        code="INVALID_ADDRESS",
                    )
                now = self.clock()
                submission = self.repository.add_submission(
                    VerificationSubmissionModel(
                        verification_id=verification.id,
                        wallet_address=verification.wallet_address,
                        encrypted_proof=self.cipher.encrypt(proof),
                        consent_at=now,
                        created_at=now,
                    )
                )
                verification.status = VerificationStatus.VERIFYING
                self.session.add(verification)
                self._audit(
                    verification,
                    "assisted_proof_submitted",
                    actor_type="user",
                    actor_id=user_id,
                    details={"submission_id": submission.id},
                )
        if expired:
            raise VerificationExpiredError(f"Verification {verification_id} has expired")

        logger.info(
            "verification.assisted_submitted",
            extra={"verification_id": verification_id, "submission_id": submission.id},
        )
        return SubmissionResponse.model_validate(submission)

    def review_submission(
        self,
        submission_id: int,
        reviewer: AdminPrincipal,
        approved: bool,
        notes: Optional[str] = None,
    ) -> VerificationResponse:
        expired = False
        with transaction(self.session):
            submission = self.repository.get_submission(submission_id)
            if submission is None:
                raise NotFoundError(
                    f"Submission {submission_id} not found", code="SUBMISSION_NOT_FOUND"
                )
            verification = self._load(submission.verification_id, lock=True)
            if verification.status not in OPEN_STATUSES:
                raise VerificationNotPendingError(
                    f"Verification {verification.id} is {verification.status.value}"
                )
            if submission.status != SubmissionStatus.PENDING_REVIEW:
                raise StateConflictError(f"Submission {submission_id} was already reviewed")
            if self._is_due(verification):
                self._expire(verification)
                expired = True
            else:
                self._record_review(verification, submission, reviewer, approved, notes)
        if expired:
            raise VerificationExpiredError(f"Verification {verification.id} has expired")

        self.notifications.deliver_after_commit()
        self.session.refresh(verification)
        return VerificationResponse.model_validate(verification)

    def admin_override(
        self,
        verification_id: int,
        admin: AdminPrincipal,
        decision: str,
        reason: str,
    ) -> VerificationResponse:
        if decision not in ("approve", "reject"):
            raise ValidationError("Decision must be 'approve' or 'reject'")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for manual overrides")

        with transaction(self.session):
            verification = self._load(verification_id, lock=True)
            if verification.status.is_terminal:
                raise VerificationNotPendingError(
                    f"Verification {verification_id} is already {verification.status.value}"
                )
            if decision == "approve":
                self._approve(
                    verification,
                    actor_type="admin",
                    actor_id=admin.admin_id,
                    reason=reason,
                    action="admin_override_approve",
                )
            else:
                self._reject(
                    verification,
                    reason,
                    actor_type="admin",
                    actor_id=admin.admin_id,
                    action="admin_override_reject",
                )
        logger.info(
            "verification.admin_override",
            extra={
                "verification_id": verification_id,
                "admin_id": admin.admin_id,
                "decision": decision,
            },
        )
        self.notifications.deliver_after_commit()
        self.session.refresh(verification)
        return VerificationResponse.model_validate(verification)

    def reject_from_webhook(
        self,
        verification_id: int,
        user_id: int,
        reason: str,
        details: Optional[dict[str, Any]] = None,
    ) -> VerificationStatusResponse:
        with transaction(self.session):
            verification = self._load(verification_id, user_id, lock=True)
            if verification.status.is_terminal:
                logger.info(
                    "verification.webhook_ignored",
                    extra={
                        "verification_id": verification_id,
                        "status": verification.status.value,
                    },
                )
            else:
                self._reject(
                    verification,
                    reason,
                    actor_type="compliance",
                    action="compliance_rejected",
                    details=details or None,
                )
        self.notifications.deliver_after_commit()
        self.session.refresh(verification)
        return VerificationStatusResponse(
            verification_id=verification.id, status=verification.status
        )

    def get_verification(self, user_id: int, verification_id: int) -> VerificationResponse:
        verification = self._expire_on_read(self._load(verification_id, user_id))
        return VerificationResponse.model_validate(verification)

    def list_verifications(
        self,
        user_id: int,
        feature: Optional[VerificationFeature] = None,
    ) -> list[VerificationResponse]:
        return [
            VerificationResponse.model_validate(self._expire_on_read(verification))
            for verification in self.repository.list_verifications(user_id, feature)
        ]

    def is_verified(
        self,
        user_id: int,
        feature: VerificationFeature,
        wallet_address: Optional[str] = None,
    ) -> bool:
        for verification in self.repository.list_verifications(user_id, feature):
            if verification.status != VerificationStatus.APPROVED:
                continue
            if wallet_address is None or same_address(
                wallet_address, verification.wallet_address, verification.wallet_network
            ):
                return True
        return False

    def list_audit(self, verification_id: int) -> list[AuditEntryResponse]:
        self._load(verification_id)
        return [
            AuditEntryResponse.model_validate(entry)
            for entry in self.repository.list_audit(verification_id)
        ]
