"""What a confirmed deposit buys.

Each :class:`ProductType` maps to exactly one action. The action validates
the deposit request up front and, once the chain-watcher confirms the
transfer, applies its effect inside the confirmation transaction.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from ..core.config import Settings
from ..core.errors import ValidationError
from ..core.money import quantize
from ..models import DepositInitRequest, DepositModel, LotteryTicketModel, ProductActionResponse
from ..models.enums import ProductType, RevenueSource
from .ledger import LedgerService
from .repository import LedgerRepository


@dataclass
class DepositPlan:
    expected_amount: Optional[Decimal]
    meta: dict[str, Any]


class ProductAction:
    product_type: ProductType
    purpose: str
    revenue_source: RevenueSource

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _check_range(self, amount: Optional[Decimal], minimum: Decimal) -> Decimal:
        if amount is None:
            raise ValidationError("amount_usdt is required", code="INVALID_AMOUNT")
        amount = quantize(amount)
        maximum = quantize(self.settings.max_deposit_usdt)
        if amount < quantize(minimum) or amount > maximum:
            raise ValidationError(
                f"Amount must be between {quantize(minimum).normalize()} "
                f"and {maximum.normalize()} USDT",
                code="INVALID_AMOUNT",
            )
        return amount

    def plan(self, request: DepositInitRequest) -> DepositPlan:
        raise NotImplementedError

    def apply(
        self,
        deposit: DepositModel,
        ledger: LedgerService,
        repository: LedgerRepository,
    ) -> Optional[ProductActionResponse]:
        raise NotImplementedError


class WalletTopUp(ProductAction):
    product_type = ProductType.WALLET_TOPUP
    purpose = "wallet_topup"
    revenue_source = RevenueSource.WALLET_DEPOSIT

    def plan(self, request: DepositInitRequest) -> DepositPlan:
        amount = self._check_range(request.amount_usdt, self.settings.min_deposit_usdt)
        return DepositPlan(expected_amount=amount, meta={})

    def apply(self, deposit, ledger, repository):
        # the settlement credit is the whole effect
        return None


class TradingAccountFunding(ProductAction):
    product_type = ProductType.AI_TRADER
    purpose = "ai_trader"
    revenue_source = RevenueSource.AI_TRADER_DEPOSIT

    def plan(self, request: DepositInitRequest) -> DepositPlan:
        amount = self._check_range(request.amount_usdt, self.settings.min_ai_trader_deposit_usdt)
        return DepositPlan(expected_amount=amount, meta={})

    def apply(self, deposit, ledger, repository):
        ledger.fund_trading_account(
            deposit.user_id,
            deposit.actual_amount,
            ref_type="deposit",
            ref_id=deposit.id,
        )
        return ProductActionResponse(type="ai_trader_funded", amount=deposit.actual_amount)


class TicketIssuance(ProductAction):
    product_type = ProductType.LOTTERY_TICKETS
    purpose = "lottery"
    revenue_source = RevenueSource.LOTTERY_PURCHASE

    def plan(self, request: DepositInitRequest) -> DepositPlan:
        if request.lottery_id is None:
            raise ValidationError("lottery_id is required for lottery deposits")
        if request.ticket_count is None or request.ticket_count < 1:
            raise ValidationError("ticket_count must be at least 1")
        price = quantize(self.settings.lottery_ticket_price_usdt)
        expected = quantize(price * request.ticket_count)
        if expected > quantize(self.settings.max_deposit_usdt):
            raise ValidationError("Too many tickets in one deposit", code="INVALID_AMOUNT")
        return DepositPlan(
            expected_amount=expected,
            meta={
                "lottery_id": request.lottery_id,
                "ticket_count": request.ticket_count,
                "ticket_price_usdt": str(price),
            },
        )

    def apply(self, deposit, ledger, repository):
        meta = deposit.meta or {}
        lottery_id = int(meta["lottery_id"])
        count = int(meta["ticket_count"])
        price = quantize(meta["ticket_price_usdt"])
        total = quantize(price * count)

        ledger.debit(
            deposit.user_id,
            total,
            entry_type="lottery_purchase",
            ref_type="deposit",
            ref_id=deposit.id,
            memo=f"{count} ticket(s) for lottery {lottery_id}",
        )
        repository.add_tickets(
            LotteryTicketModel(
                user_id=deposit.user_id,
                lottery_id=lottery_id,
                deposit_id=deposit.id,
                ticket_number=f"L{lottery_id}-D{deposit.id}-{index:04d}",
                price=price,
            )
            for index in range(1, count + 1)
        )
        return ProductActionResponse(
            type="lottery_tickets_issued",
            amount=total,
            ticket_count=count,
            lottery_id=lottery_id,
        )


PRODUCT_ACTIONS: dict[ProductType, type[ProductAction]] = {
    action.product_type: action for action in (WalletTopUp, TradingAccountFunding, TicketIssuance)
}


def action_for(product_type: ProductType, settings: Settings) -> ProductAction:
    return PRODUCT_ACTIONS[ProductType(product_type)](settings)
