from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Protocol

from ..core.clock import as_utc
from ..models.enums import RiskLevel, VerificationFeature, VerificationMethod


@dataclass(frozen=True)
class RiskInput:
    user_id: int
    feature: VerificationFeature
    wallet_address: str
    amount: Optional[Decimal]
    total_attempts: int
    failed_attempts: int
    recent_attempts: int
    account_created_at: Optional[datetime]
    now: datetime


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    level: RiskLevel
    factors: list[str] = field(default_factory=list)

    @property
    def recommended_method(self) -> VerificationMethod:
        if self.level is RiskLevel.HIGH:
            return VerificationMethod.ASSISTED
        return VerificationMethod.SIGNATURE


class RiskScorer(Protocol):
    def assess(self, data: RiskInput) -> RiskAssessment: ...


class HistoryRiskScorer:
    """Additive score over attempt history, amount and account age."""

    new_account_age = timedelta(days=7)

    def assess(self, data: RiskInput) -> RiskAssessment:
        score = 0
        factors: list[str] = []

        if data.total_attempts == 0:
            score += 10
            factors.append("first_time_verification")
        elif data.failed_attempts > 3:
            score += 30
            factors.append("multiple_failed_attempts")

        if data.recent_attempts > 5:
            score += 20
            factors.append("rapid_verification_attempts")

        if data.amount is not None and data.amount > 0:
            if data.amount > 10000:
                score += 35
                factors.append("high_value_transaction")
            elif data.amount > 5000:
                score += 20
                factors.append("medium_value_transaction")

        created = as_utc(data.account_created_at)
        if created is None or as_utc(data.now) - created < self.new_account_age:
            score += 15
            factors.append("new_account")

        if score >= 60:
            level = RiskLevel.HIGH
        elif score >= 40:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW
        return RiskAssessment(score=score, level=level, factors=factors)
