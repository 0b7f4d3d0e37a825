from datetime import timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from ..core.clock import utcnow
from ..models import DepositModel, LotteryTicketModel, NotificationOutboxModel
from ..models.enums import DepositStatus, Network, ProductType
from ..services import DepositService
from .conftest import admin_headers, callback_headers, fund_via_deposit, user_headers


def _init(client: TestClient, user_id: int, **payload) -> dict:
    body = {"network": "erc20", "product_type": "wallet_topup"}
    body.update(payload)
    response = client.post("/deposits", json=body, headers=user_headers(user_id))
    assert response.status_code == 201, response.text
    return response.json()


def _callback(client: TestClient, deposit_id: int, amount: str, tx_hash: str, network="erc20"):
    return client.post(
        "/payments/deposit/callback",
        json={"deposit_id": deposit_id, "network": network, "tx_hash": tx_hash, "amount": amount},
        headers=callback_headers(),
    )


def test_init_deposit_returns_static_address(client: TestClient, settings) -> None:
    deposit = _init(client, 1, amount_usdt="25")
    assert deposit["status"] == "pending"
    assert deposit["address"] == settings.deposit_addresses["erc20"]
    assert deposit["expected_amount"] == "25.00000000"


def test_init_deposit_enforces_limits(client: TestClient) -> None:
    too_small = client.post(
        "/deposits",
        json={"network": "erc20", "product_type": "wallet_topup", "amount_usdt": "0.5"},
        headers=user_headers(1),
    )
    assert too_small.status_code == 400
    assert too_small.json()["code"] == "INVALID_AMOUNT"

    ai_trader = client.post(
        "/deposits",
        json={"network": "bep20", "product_type": "ai_trader", "amount_usdt": "5"},
        headers=user_headers(1),
    )
    assert ai_trader.status_code == 400

    tickets = client.post(
        "/deposits",
        json={"network": "trc20", "product_type": "lottery_tickets", "ticket_count": 2},
        headers=user_headers(1),
    )
    assert tickets.status_code == 400


def test_confirm_credits_wallet_once(client: TestClient) -> None:
    deposit = _init(client, 2, amount_usdt="100")

    first = _callback(client, deposit["id"], "100", "0xabc")
    assert first.status_code == 200
    body = first.json()
    assert body["already_processed"] is False
    assert body["deposit"]["status"] == "confirmed"
    assert body["wallet"]["usdt_balance"] == "100.00000000"

    # at-least-once delivery: the same callback again changes nothing
    second = _callback(client, deposit["id"], "100", "0xabc")
    assert second.status_code == 200
    assert second.json()["already_processed"] is True
    assert second.json()["wallet"]["usdt_balance"] == "100.00000000"

    statement = client.get("/wallet/statement", headers=user_headers(2)).json()
    assert len(statement["items"]) == 1


def test_overpayment_credits_actual_amount(client: TestClient) -> None:
    deposit = _init(client, 3, amount_usdt="50")
    response = _callback(client, deposit["id"], "50.12345678", "0xover")
    assert response.status_code == 200
    assert response.json()["wallet"]["usdt_balance"] == "50.12345678"
    assert response.json()["deposit"]["actual_amount"] == "50.12345678"


def test_amount_below_expected_keeps_deposit_pending(client: TestClient) -> None:
    deposit = _init(client, 4, amount_usdt="50")
    response = _callback(client, deposit["id"], "49.99999999", "0xshort")
    assert response.status_code == 400
    assert response.json()["code"] == "AMOUNT_BELOW_EXPECTED"

    current = client.get(f"/deposits/{deposit['id']}", headers=user_headers(4)).json()
    assert current["status"] == "pending"
    assert client.get("/wallet", headers=user_headers(4)).json()["usdt_balance"] == "0.00000000"


def test_network_mismatch_is_rejected(client: TestClient) -> None:
    deposit = _init(client, 5, amount_usdt="20")
    response = _callback(client, deposit["id"], "20", "0xnet", network="bep20")
    assert response.status_code == 400
    assert response.json()["code"] == "NETWORK_MISMATCH"


def test_tx_hash_cannot_confirm_two_deposits(client: TestClient) -> None:
    first = _init(client, 6, amount_usdt="10")
    second = _init(client, 6, amount_usdt="10")

    assert _callback(client, first["id"], "10", "0xsame").status_code == 200
    replay = _callback(client, second["id"], "10", "0xsame")
    assert replay.status_code == 200
    assert replay.json()["already_processed"] is True
    assert replay.json()["deposit"]["status"] == "pending"
    assert replay.json()["wallet"]["usdt_balance"] == "10.00000000"


def test_unknown_deposit_returns_404(client: TestClient) -> None:
    response = _callback(client, 9999, "10", "0xnothing")
    assert response.status_code == 404
    assert response.json()["code"] == "DEPOSIT_NOT_FOUND"


def test_callback_requires_token(client: TestClient) -> None:
    deposit = _init(client, 7, amount_usdt="10")
    response = client.post(
        "/payments/deposit/callback",
        json={"deposit_id": deposit["id"], "network": "erc20", "tx_hash": "0x1", "amount": "10"},
        headers={"X-Payments-Callback-Token": "wrong"},
    )
    assert response.status_code == 401
    assert client.get(f"/deposits/{deposit['id']}", headers=user_headers(7)).json()["status"] == "pending"


def test_ai_trader_deposit_funds_trading_account(client: TestClient) -> None:
    result = fund_via_deposit(client, 8, "150", product_type="ai_trader", network="bep20")
    assert result["product_action"]["type"] == "ai_trader_funded"
    assert result["wallet"]["usdt_balance"] == "0.00000000"
    assert result["wallet"]["trading_balance"] == "150.00000000"


def test_lottery_deposit_issues_tickets(client: TestClient, engine) -> None:
    deposit = _init(
        client, 9, network="trc20", product_type="lottery_tickets", lottery_id=3, ticket_count=4
    )
    assert deposit["expected_amount"] == "4.00000000"

    response = _callback(client, deposit["id"], "5", "trc-tx-1", network="trc20")
    assert response.status_code == 200
    action = response.json()["product_action"]
    assert action == {
        "type": "lottery_tickets_issued",
        "amount": "4.00000000",
        "ticket_count": 4,
        "lottery_id": 3,
    }
    # the overpaid remainder stays in the wallet
    assert response.json()["wallet"]["usdt_balance"] == "1.00000000"

    with Session(engine) as session:
        tickets = session.exec(
            select(LotteryTicketModel).where(LotteryTicketModel.deposit_id == deposit["id"])
        ).all()
    assert len(tickets) == 4
    assert len({ticket.ticket_number for ticket in tickets}) == 4


def test_first_deposit_sends_milestone_once(client: TestClient, engine) -> None:
    fund_via_deposit(client, 10, "10")
    fund_via_deposit(client, 10, "10")

    with Session(engine) as session:
        kinds = [
            item.kind
            for item in session.exec(
                select(NotificationOutboxModel).where(NotificationOutboxModel.user_id == 10)
            )
        ]
    assert kinds.count("deposit_confirmed") == 2
    assert kinds.count("first_deposit") == 1


def test_admin_can_fail_pending_deposit(client: TestClient) -> None:
    deposit = _init(client, 11, amount_usdt="10")

    unauthorized = client.post(
        f"/admin/deposits/{deposit['id']}/fail",
        json={"reason": "never arrived"},
        headers={"X-Admin-Token": "nope", "X-Admin-Id": "1"},
    )
    assert unauthorized.status_code == 401

    failed = client.post(
        f"/admin/deposits/{deposit['id']}/fail",
        json={"reason": "never arrived"},
        headers=admin_headers(),
    )
    assert failed.status_code == 200
    assert failed.json()["status"] == "failed"

    late = _callback(client, deposit["id"], "10", "0xlate")
    assert late.json()["already_processed"] is True
    assert client.get("/wallet", headers=user_headers(11)).json()["usdt_balance"] == "0.00000000"


def test_deposits_are_private_to_their_owner(client: TestClient) -> None:
    deposit = _init(client, 12, amount_usdt="10")
    response = client.get(f"/deposits/{deposit['id']}", headers=user_headers(13))
    assert response.status_code == 404
    assert client.get("/deposits", headers=user_headers(13)).json() == []
    assert len(client.get("/deposits", headers=user_headers(12)).json()) == 1


def test_expire_stale_deposits(session: Session, settings) -> None:
    service = DepositService(session, settings=settings)
    old = DepositModel(
        user_id=1,
        network=Network.ERC20,
        product_type=ProductType.WALLET_TOPUP,
        address="0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
        expected_amount=Decimal("10"),
        created_at=utcnow() - timedelta(hours=settings.deposit_ttl_hours + 1),
    )
    fresh = DepositModel(
        user_id=1,
        network=Network.ERC20,
        product_type=ProductType.WALLET_TOPUP,
        address="0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
        expected_amount=Decimal("10"),
    )
    session.add(old)
    session.add(fresh)
    session.commit()

    assert service.expire_stale_deposits() == 1
    session.expire_all()
    assert session.get(DepositModel, old.id).status == DepositStatus.EXPIRED
    assert session.get(DepositModel, fresh.id).status == DepositStatus.PENDING


def test_admin_confirms_deposit_manually(client: TestClient) -> None:
    deposit = _init(client, 14, amount_usdt="25")

    unauthorized = client.post(
        f"/admin/deposits/{deposit['id']}/confirm",
        json={"tx_hash": "0xmanual"},
        headers=user_headers(14),
    )
    assert unauthorized.status_code == 401

    confirmed = client.post(
        f"/admin/deposits/{deposit['id']}/confirm",
        json={"tx_hash": "0xmanual"},
        headers=admin_headers(),
    )
    assert confirmed.status_code == 200
    body = confirmed.json()
    assert body["deposit"]["status"] == "confirmed"
    assert body["deposit"]["tx_hash"] == "0xmanual"
    # defaults to the expected amount
    assert body["wallet"]["usdt_balance"] == "25.00000000"

    again = client.post(
        f"/admin/deposits/{deposit['id']}/confirm",
        json={"tx_hash": "0xmanual"},
        headers=admin_headers(),
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_PROCESSED"
    # the watcher's late callback is acknowledged without a second credit
    late = _callback(client, deposit["id"], "25", "0xmanual")
    assert late.json()["already_processed"] is True
    assert client.get("/wallet", headers=user_headers(14)).json()["usdt_balance"] == "25.00000000"


def test_admin_confirm_with_explicit_amount(client: TestClient) -> None:
    deposit = _init(client, 15, amount_usdt="10")
    confirmed = client.post(
        f"/admin/deposits/{deposit['id']}/confirm",
        json={"tx_hash": "0xmanual-2", "amount": "12.5"},
        headers=admin_headers(),
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["deposit"]["actual_amount"] == "12.50000000"

    below = _init(client, 15, amount_usdt="10")
    short = client.post(
        f"/admin/deposits/{below['id']}/confirm",
        json={"tx_hash": "0xmanual-3", "amount": "9"},
        headers=admin_headers(),
    )
    assert short.status_code == 400
    assert short.json()["code"] == "AMOUNT_BELOW_EXPECTED"

    missing = client.post(
        "/admin/deposits/9999/confirm", json={"tx_hash": "0xnone"}, headers=admin_headers()
    )
    assert missing.status_code == 404


def test_admin_expires_stale_deposits(client: TestClient, engine, settings) -> None:
    with Session(engine) as session:
        session.add(
            DepositModel(
                user_id=16,
                network=Network.ERC20,
                product_type=ProductType.WALLET_TOPUP,
                address="0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
                expected_amount=Decimal("10"),
                created_at=utcnow() - timedelta(hours=settings.deposit_ttl_hours + 1),
            )
        )
        session.commit()
    fresh = _init(client, 16, amount_usdt="10")

    response = client.post("/admin/deposits/expire", headers=admin_headers())
    assert response.status_code == 200
    assert response.json() == {"expired": 1}
    listed = client.get("/deposits", headers=user_headers(16)).json()
    assert sorted(item["status"] for item in listed) == ["expired", "pending"]
    current = client.get(f"/deposits/{fresh['id']}", headers=user_headers(16)).json()
    assert current["status"] == "pending"
