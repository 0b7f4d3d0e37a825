from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlmodel import Session

from ..core.errors import InsufficientBalanceError, ValidationError
from ..core.money import quantize
from ..models import (
    LedgerEntryModel,
    LedgerEntryResponse,
    StatementResponse,
    TradingAccountModel,
    WalletModel,
    WalletResponse,
)
from ..models.enums import Currency
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


class LedgerService:
    """Balance mutations for the settlement and reward currencies.

    ``credit`` and ``debit`` never commit: they join whatever transaction the
    calling service has open, so a balance change and the record that caused
    it are written together or not at all.
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _positive(self, amount: Decimal) -> Decimal:
        value = quantize(amount)
        if value <= 0:
            raise ValidationError("Amount must be positive", code="INVALID_AMOUNT")
        return value

    def _wallet_to_response(
        self,
        wallet: WalletModel,
        trading: Optional[TradingAccountModel] = None,
    ) -> WalletResponse:
        return WalletResponse(
            user_id=wallet.user_id,
            usdt_balance=wallet.usdt_balance,
            ghd_balance=wallet.ghd_balance,
            trading_balance=trading.balance if trading is not None else Decimal("0"),
        )

    # ------------------------------------------------------------------
    # Mutations (caller owns the transaction)
    # ------------------------------------------------------------------
    def credit(
        self,
        user_id: int,
        amount: Decimal,
        *,
        currency: Currency = Currency.USDT,
        entry_type: str,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        memo: Optional[str] = None,
    ) -> LedgerEntryModel:
        value = self._positive(amount)
        self.repository.get_or_create_wallet(user_id)
        self.repository.apply_balance_delta(user_id, currency, value)
        entry = self.repository.add_entry(
            user_id=user_id,
            currency=currency,
            amount=value,
            entry_type=entry_type,
            ref_type=ref_type,
            ref_id=ref_id,
            memo=memo,
        )
        logger.info(
            "wallet.credit",
            extra={
                "user_id": user_id,
                "currency": currency.value,
                "amount": str(value),
                "entry_type": entry_type,
                "ref_id": ref_id,
            },
        )
        return entry

    def debit(
        self,
        user_id: int,
        amount: Decimal,
        *,
        currency: Currency = Currency.USDT,
        entry_type: str,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        memo: Optional[str] = None,
    ) -> LedgerEntryModel:
        value = self._positive(amount)
        self.repository.get_or_create_wallet(user_id)
        if not self.repository.apply_balance_delta(user_id, currency, -value):
            raise InsufficientBalanceError(
                f"Insufficient {currency.value.upper()} balance"
            )
        entry = self.repository.add_entry(
            user_id=user_id,
            currency=currency,
            amount=-value,
            entry_type=entry_type,
            ref_type=ref_type,
            ref_id=ref_id,
            memo=memo,
        )
        logger.info(
            "wallet.debit",
            extra={
                "user_id": user_id,
                "currency": currency.value,
                "amount": str(value),
                "entry_type": entry_type,
                "ref_id": ref_id,
            },
        )
        return entry

    def fund_trading_account(
        self,
        user_id: int,
        amount: Decimal,
        *,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
    ) -> TradingAccountModel:
        """Move settlement balance into the trading sub-ledger."""
        value = self._positive(amount)
        self.debit(
            user_id,
            value,
            entry_type="trading_transfer",
            ref_type=ref_type,
            ref_id=ref_id,
            memo="Transfer to AI trader account",
        )
        account = self.repository.credit_trading_account(user_id, value)
        logger.info(
            "trading.funded",
            extra={"user_id": user_id, "amount": str(value), "ref_id": ref_id},
        )
        return account

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_balances(self, user_id: int) -> WalletResponse:
        wallet = self.repository.get_wallet(user_id)
        if wallet is None:
            wallet = WalletModel(user_id=user_id)
        else:
            self.session.refresh(wallet)
        trading = self.repository.get_trading_account(user_id)
        return self._wallet_to_response(wallet, trading)

    def get_statement(
        self,
        user_id: int,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> StatementResponse:
        entries = self.repository.list_entries(user_id)

        start_index = 0
        if cursor:
            try:
                cursor_id = int(cursor)
            except ValueError as exc:
                raise ValidationError("Invalid cursor") from exc
            for idx, entry in enumerate(entries):
                if entry.id == cursor_id:
                    start_index = idx + 1
                    break

        slice_entries = entries[start_index : start_index + limit]
        next_cursor = None
        if start_index + limit < len(entries):
            next_cursor = str(slice_entries[-1].id)

        items = [LedgerEntryResponse.model_validate(entry) for entry in slice_entries]
        return StatementResponse(items=items, next_cursor=next_cursor)
