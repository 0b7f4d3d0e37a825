import random
from decimal import Decimal

import pytest
from sqlmodel import Session

from ..core.db import transaction
from ..core.errors import InsufficientBalanceError, ValidationError
from ..core.money import ZERO, format_amount, parse_amount, quantize
from ..models.enums import Currency
from ..services import LedgerRepository, LedgerService
from .conftest import post_entry


def test_parse_amount_limits_precision() -> None:
    assert parse_amount("1.5") == Decimal("1.50000000")
    assert format_amount(Decimal("0.1")) == "0.10000000"
    with pytest.raises(ValueError):
        parse_amount("0.000000001")
    with pytest.raises(ValueError):
        parse_amount("NaN")
    with pytest.raises(ValueError):
        parse_amount("ten")


def test_quantize_truncates() -> None:
    assert quantize("0.123456789") == Decimal("0.12345678")


def test_credit_and_debit_record_entries(session: Session) -> None:
    post_entry(session, 1, Decimal("10"), entry_type="deposit")
    wallet = post_entry(
        session, 1, Decimal("-3.5"), entry_type="lottery_purchase", memo="3 tickets"
    )
    assert wallet.usdt_balance == Decimal("6.5")

    entries = LedgerRepository(session).list_entries(1)
    assert [(entry.type, entry.amount) for entry in entries] == [
        ("lottery_purchase", Decimal("-3.5")),
        ("deposit", Decimal("10")),
    ]


def test_debit_never_overdraws(session: Session) -> None:
    ledger = LedgerService(session)
    post_entry(session, 2, Decimal("1"), entry_type="deposit")
    with pytest.raises(InsufficientBalanceError):
        post_entry(session, 2, Decimal("-1.00000001"), entry_type="withdrawal")
    assert ledger.get_balances(2).usdt_balance == Decimal("1")
    assert len(LedgerRepository(session).list_entries(2)) == 1


def test_non_positive_amounts_are_rejected(session: Session) -> None:
    ledger = LedgerService(session)
    with pytest.raises(ValidationError):
        with transaction(session):
            ledger.credit(3, Decimal("0"), entry_type="deposit")
    with pytest.raises(ValidationError):
        with transaction(session):
            ledger.debit(3, Decimal("-1"), entry_type="withdrawal")


def test_currencies_are_separate(session: Session) -> None:
    ledger = LedgerService(session)
    post_entry(session, 4, Decimal("5"), entry_type="airdrop", currency=Currency.GHD)
    balances = ledger.get_balances(4)
    assert balances.ghd_balance == Decimal("5")
    assert balances.usdt_balance == ZERO
    with pytest.raises(InsufficientBalanceError):
        post_entry(session, 4, Decimal("-1"), entry_type="withdrawal")


def test_random_operations_conserve_balance(session: Session) -> None:
    rng = random.Random(1234)
    ledger = LedgerService(session)
    expected = ZERO

    for _ in range(200):
        amount = Decimal(rng.randint(1, 5_000_000_000)).scaleb(-8)
        if rng.random() < 0.5:
            post_entry(session, 5, amount, entry_type="deposit")
            expected += amount
        else:
            try:
                post_entry(session, 5, -amount, entry_type="withdrawal")
            except InsufficientBalanceError:
                assert amount > expected
            else:
                expected -= amount
        assert ledger.get_balances(5).usdt_balance == expected
        assert expected >= ZERO

    entries = LedgerRepository(session).list_entries(5)
    assert sum((entry.amount for entry in entries), ZERO) == expected
