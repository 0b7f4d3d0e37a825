from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from ..core import db as db_module
from ..core.config import Settings, get_settings
from ..core.db import create_engine_for_url, get_session, set_engine, transaction
from ..core.dependencies import get_address_provider, get_settlement_gateway
from ..core.errors import SettlementUnavailableError
from ..core.security import hmac_sha256_hex
from ..main import app
from ..models.enums import Currency
from ..services import LedgerService
from ..services.chain_watcher import StaticAddressProvider
from ..services.signatures import encode_tron_message, tron_address_from_evm

CALLBACK_TOKEN = "callback-token"
WEBHOOK_SECRET = "webhook-secret"
ADMIN_TOKEN = "admin-token"


class FakeSettlement:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail = False

    def submit_withdrawal(self, withdrawal_id, network, target_address, amount):
        self.calls.append((withdrawal_id, network, target_address, amount))
        if self.fail:
            raise SettlementUnavailableError("chain watcher down")
        return f"EXT-{withdrawal_id}"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        secret_key="test-secret",
        payments_callback_token=CALLBACK_TOKEN,
        verification_webhook_secret=WEBHOOK_SECRET,
        admin_api_token=ADMIN_TOKEN,
    )


@pytest.fixture
def engine(tmp_path):
    test_db = tmp_path / "test.db"
    engine = create_engine_for_url(f"sqlite:///{test_db}")
    original_engine = db_module.engine
    set_engine(engine)
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield engine
    set_engine(original_engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def settlement() -> FakeSettlement:
    return FakeSettlement()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(engine, settings, settlement) -> TestClient:
    def _get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_settlement_gateway] = lambda: settlement
    app.dependency_overrides[get_address_provider] = lambda: StaticAddressProvider(
        settings.deposit_addresses
    )

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# Helpers -------------------------------------------------------------------
def user_headers(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def admin_headers(admin_id: int = 900) -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN, "X-Admin-Id": str(admin_id)}


def callback_headers() -> dict[str, str]:
    return {"X-Payments-Callback-Token": CALLBACK_TOKEN}


def webhook_headers(body: bytes) -> dict[str, str]:
    return {
        "X-Verification-Signature": hmac_sha256_hex(WEBHOOK_SECRET, body),
        "Content-Type": "application/json",
    }


def sign_evm(account, message: str) -> str:
    return "0x" + bytes(Account.sign_message(encode_defunct(text=message), account.key).signature).hex()


def sign_tron(account, message: str) -> str:
    return bytes(Account.sign_message(encode_tron_message(message), account.key).signature).hex()


def tron_address(account) -> str:
    return tron_address_from_evm(account.address)


def fund_via_deposit(
    client: TestClient,
    user_id: int,
    amount: str,
    *,
    product_type: str = "wallet_topup",
    network: str = "erc20",
    tx_hash: str | None = None,
) -> dict:
    created = client.post(
        "/deposits",
        json={"network": network, "product_type": product_type, "amount_usdt": amount},
        headers=user_headers(user_id),
    )
    assert created.status_code == 201, created.text
    deposit_id = created.json()["id"]
    confirmed = client.post(
        "/payments/deposit/callback",
        json={
            "deposit_id": deposit_id,
            "network": network,
            "tx_hash": tx_hash or f"0xtx{user_id}-{deposit_id}",
            "amount": amount,
        },
        headers=callback_headers(),
    )
    assert confirmed.status_code == 200, confirmed.text
    return confirmed.json()


def usdt(value) -> Decimal:
    return Decimal(str(value))


def post_entry(
    session: Session,
    user_id: int,
    amount: Decimal,
    *,
    entry_type: str,
    currency: Currency = Currency.USDT,
    memo: str | None = None,
):
    """Credit a positive amount or debit a negative one, committed on its own."""
    ledger = LedgerService(session)
    with transaction(session):
        if amount >= 0:
            ledger.credit(user_id, amount, currency=currency, entry_type=entry_type, memo=memo)
        else:
            ledger.debit(user_id, -amount, currency=currency, entry_type=entry_type, memo=memo)
    return ledger.get_balances(user_id)
