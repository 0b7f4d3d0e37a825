from fastapi.testclient import TestClient

from .conftest import fund_via_deposit, user_headers


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_wallet_starts_empty(client: TestClient) -> None:
    response = client.get("/wallet", headers=user_headers(1))
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == 1
    assert body["usdt_balance"] == "0.00000000"
    assert body["ghd_balance"] == "0.00000000"
    assert body["trading_balance"] == "0.00000000"


def test_missing_user_header_is_unauthorized(client: TestClient) -> None:
    response = client.get("/wallet")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"

    response = client.get("/wallet", headers={"X-User-Id": "abc"})
    assert response.status_code == 401


def test_statement_pagination(client: TestClient) -> None:
    for index, amount in enumerate(("100", "200", "300"), start=1):
        fund_via_deposit(client, 7, amount, tx_hash=f"0xstatement{index}")

    first_page = client.get("/wallet/statement", params={"limit": 2}, headers=user_headers(7))
    assert first_page.status_code == 200
    items = first_page.json()["items"]
    assert len(items) == 2
    # newest first
    assert [entry["amount"] for entry in items] == ["300.00000000", "200.00000000"]
    assert all(entry["type"] == "deposit" for entry in items)

    cursor = first_page.json()["next_cursor"]
    second_page = client.get(
        "/wallet/statement", params={"cursor": cursor}, headers=user_headers(7)
    )
    remain = second_page.json()["items"]
    assert len(remain) == 1
    assert remain[0]["amount"] == "100.00000000"
    assert second_page.json()["next_cursor"] is None


def test_statement_invalid_cursor_returns_400(client: TestClient) -> None:
    fund_via_deposit(client, 8, "10")

    response = client.get(
        "/wallet/statement", params={"cursor": "not-a-cursor"}, headers=user_headers(8)
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid cursor", "code": "VALIDATION_ERROR"}


def test_amount_with_too_many_decimals_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/deposits",
        json={"network": "erc20", "product_type": "wallet_topup", "amount_usdt": "1.123456789"},
        headers=user_headers(1),
    )
    assert response.status_code == 422


def test_unknown_network_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/deposits",
        json={"network": "btc", "product_type": "wallet_topup", "amount_usdt": "10"},
        headers=user_headers(1),
    )
    assert response.status_code == 422
