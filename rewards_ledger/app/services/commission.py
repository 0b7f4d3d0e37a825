from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.db import transaction
from ..core.errors import ValidationError
from ..core.money import ZERO, format_amount, quantize
from ..models import (
    ReferralInfoResponse,
    ReferralRewardModel,
    ReferralRewardResponse,
)
from ..models.enums import RevenueSource
from .ledger import LedgerService
from .notifications import NotificationService
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


def dedup_key(level: int, source_type: str, source_id: Optional[int], user_id: int) -> str:
    # every reward without a source id shares the "-" bucket per level/type/beneficiary
    source = "-" if source_id is None else str(source_id)
    return f"{level}:{source_type}:{source}:{user_id}"


class CommissionService:
    """Two-level referral commissions paid out of confirmed revenue."""

    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        ledger: Optional[LedgerService] = None,
        notifications: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.ledger = ledger or LedgerService(session, self.repository)
        self.notifications = notifications or NotificationService(session, self.repository)
        self.settings = settings or get_settings()

    def _rate(self, source_type: str, level: int) -> Optional[Decimal]:
        rates = self.settings.referral_commissions.get(source_type)
        if not rates:
            return None
        rate = rates.get(level)
        return Decimal(str(rate)) if rate is not None else None

    def _ancestors(self, user_id: int) -> list[tuple[int, int]]:
        """(level, beneficiary) pairs above ``user_id``, stopping at a cycle."""
        chain: list[tuple[int, int]] = []
        seen = {user_id}
        current = user_id
        for level in range(1, self.settings.referral_max_level + 1):
            inviter = self.repository.get_inviter(current)
            if inviter is None or inviter in seen:
                break
            chain.append((level, inviter))
            seen.add(inviter)
            current = inviter
        return chain

    def register_revenue(
        self,
        source_user_id: int,
        source_type: RevenueSource | str,
        net_amount: Decimal,
        source_id: Optional[int] = None,
    ) -> list[ReferralRewardModel]:
        """Credit uplines for a revenue event.

        Runs inside the caller's transaction. Each reward is written in its
        own savepoint, so a duplicate racing insert is dropped without
        undoing the revenue event itself.
        """
        source_type = RevenueSource(source_type).value
        amount = quantize(net_amount)
        if amount <= ZERO or source_type not in self.settings.referral_commissions:
            return []

        minimum = quantize(self.settings.referral_min_reward_usdt)
        granted: list[ReferralRewardModel] = []
        for level, beneficiary in self._ancestors(source_user_id):
            rate = self._rate(source_type, level)
            if rate is None:
                continue
            reward_amount = (amount * rate).quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)
            if reward_amount < minimum:
                continue

            key = dedup_key(level, source_type, source_id, beneficiary)
            if self.repository.find_reward(key) is not None:
                logger.info(
                    "referral.reward_duplicate",
                    extra={"dedup_key": key, "source_id": source_id},
                )
                continue

            try:
                with self.session.begin_nested():
                    reward = self.repository.add_reward(
                        ReferralRewardModel(
                            user_id=beneficiary,
                            from_user_id=source_user_id,
                            level=level,
                            amount=reward_amount,
                            source_type=source_type,
                            source_id=source_id,
                            dedup_key=key,
                        )
                    )
                    self.ledger.credit(
                        beneficiary,
                        reward_amount,
                        entry_type="referral_reward",
                        ref_type=source_type,
                        ref_id=source_id,
                        memo=f"Level {level} referral reward from user {source_user_id}",
                    )
                    self.notifications.enqueue(
                        beneficiary,
                        "referral_reward",
                        {
                            "amount": format_amount(reward_amount),
                            "level": level,
                            "from_user_id": source_user_id,
                            "source_type": source_type,
                        },
                    )
            except IntegrityError:
                logger.warning(
                    "referral.reward_conflict",
                    extra={"dedup_key": key, "source_id": source_id},
                )
                continue

            granted.append(reward)
            logger.info(
                "referral.reward_granted",
                extra={
                    "user_id": beneficiary,
                    "from_user_id": source_user_id,
                    "level": level,
                    "amount": str(reward_amount),
                    "source_type": source_type,
                    "source_id": source_id,
                },
            )
        return granted

    def attach_referrer(self, user_id: int, inviter_id: int) -> ReferralInfoResponse:
        with transaction(self.session):
            existing = self.repository.get_inviter(user_id)
            if existing is None:
                if inviter_id == user_id:
                    raise ValidationError("Users cannot refer themselves", code="REFERRAL_CYCLE")
                seen = set()
                current: Optional[int] = inviter_id
                while current is not None and current not in seen:
                    if current == user_id:
                        raise ValidationError(
                            "Referral would create a cycle", code="REFERRAL_CYCLE"
                        )
                    seen.add(current)
                    current = self.repository.get_inviter(current)
                self.repository.add_referral_edge(user_id, inviter_id)
                logger.info(
                    "referral.attached",
                    extra={"user_id": user_id, "inviter_id": inviter_id},
                )
        return self.get_referral_info(user_id)

    def get_referral_info(self, user_id: int, recent: int = 20) -> ReferralInfoResponse:
        direct = self.repository.list_invitees([user_id])
        indirect = self.repository.list_invitees(direct)
        rewards = self.repository.list_rewards(user_id)

        level1 = sum((r.amount for r in rewards if r.level == 1), ZERO)
        level2 = sum((r.amount for r in rewards if r.level == 2), ZERO)
        return ReferralInfoResponse(
            user_id=user_id,
            inviter_id=self.repository.get_inviter(user_id),
            direct_referrals=len(direct),
            indirect_referrals=len(indirect),
            total_rewards=sum((r.amount for r in rewards), ZERO),
            level1_rewards=level1,
            level2_rewards=level2,
            recent_rewards=[ReferralRewardResponse.model_validate(r) for r in rewards[:recent]],
        )
