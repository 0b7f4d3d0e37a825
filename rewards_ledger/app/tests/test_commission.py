from decimal import Decimal

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from ..core.db import transaction
from ..models import ReferralRewardModel
from ..services import CommissionService, LedgerService, LedgerRepository
from ..services.commission import dedup_key
from .conftest import fund_via_deposit, user_headers


def _attach(client: TestClient, user_id: int, inviter_id: int):
    return client.post(
        "/referrals/attach", json={"inviter_id": inviter_id}, headers=user_headers(user_id)
    )


def _commission(session: Session, settings) -> CommissionService:
    repository = LedgerRepository(session)
    return CommissionService(
        session,
        repository,
        ledger=LedgerService(session, repository),
        settings=settings,
    )


def _register(session: Session, service: CommissionService, user_id: int, amount: str, source_id):
    with transaction(session):
        # revenue always arrives inside a transaction that already moved money
        service.ledger.credit(user_id, Decimal(amount), entry_type="deposit")
        return service.register_revenue(user_id, "wallet_deposit", Decimal(amount), source_id)


def test_dedup_key_uses_placeholder_for_missing_source() -> None:
    assert dedup_key(1, "wallet_deposit", 42, 7) == "1:wallet_deposit:42:7"
    assert dedup_key(2, "lottery_purchase", None, 7) == "2:lottery_purchase:-:7"


def test_deposit_pays_two_levels(client: TestClient) -> None:
    assert _attach(client, 2, 1).status_code == 200
    assert _attach(client, 3, 2).status_code == 200

    fund_via_deposit(client, 3, "1000")

    level1 = client.get("/wallet", headers=user_headers(2)).json()
    level2 = client.get("/wallet", headers=user_headers(1)).json()
    assert level1["usdt_balance"] == "50.00000000"
    assert level2["usdt_balance"] == "20.00000000"
    # the depositor keeps the full amount
    assert client.get("/wallet", headers=user_headers(3)).json()["usdt_balance"] == "1000.00000000"

    info = client.get("/referrals", headers=user_headers(1)).json()
    assert info["direct_referrals"] == 1
    assert info["indirect_referrals"] == 1
    assert info["level2_rewards"] == "20.00000000"
    assert info["total_rewards"] == "20.00000000"
    assert info["recent_rewards"][0]["from_user_id"] == 3
    assert info["recent_rewards"][0]["level"] == 2


def test_ai_trader_revenue_uses_its_own_rates(client: TestClient) -> None:
    _attach(client, 21, 20)
    fund_via_deposit(client, 21, "100", product_type="ai_trader", network="bep20")
    assert client.get("/wallet", headers=user_headers(20)).json()["usdt_balance"] == "7.00000000"


def test_no_inviter_means_no_rewards(session: Session, settings) -> None:
    service = _commission(session, settings)
    assert _register(session, service, 5, "1000", 1) == []
    assert session.exec(select(ReferralRewardModel)).all() == []


def test_rewards_truncate_and_skip_dust(session: Session, settings) -> None:
    service = _commission(session, settings)
    with transaction(session):
        service.repository.add_referral_edge(31, 30)
        service.repository.add_referral_edge(32, 31)

    # 0.33333333 * 5% = 0.0166666665 -> 0.01666666, level two 0.0066... is dust
    granted = _register(session, service, 32, "0.33333333", 99)
    assert [(reward.user_id, reward.amount) for reward in granted] == [
        (31, Decimal("0.01666666"))
    ]


def test_same_source_pays_once(session: Session, settings) -> None:
    service = _commission(session, settings)
    with transaction(session):
        service.repository.add_referral_edge(41, 40)

    assert len(_register(session, service, 41, "100", 7)) == 1
    assert _register(session, service, 41, "100", 7) == []
    assert len(_register(session, service, 41, "100", 8)) == 1

    assert LedgerService(session).get_balances(40).usdt_balance == Decimal("10.00000000")


def test_missing_source_id_shares_one_bucket(session: Session, settings) -> None:
    service = _commission(session, settings)
    with transaction(session):
        service.repository.add_referral_edge(51, 50)

    assert len(_register(session, service, 51, "100", None)) == 1
    assert _register(session, service, 51, "200", None) == []

    rewards = session.exec(select(ReferralRewardModel)).all()
    assert [reward.dedup_key for reward in rewards] == ["1:wallet_deposit:-:50"]


def test_attach_rejects_self_and_cycles(client: TestClient) -> None:
    own = _attach(client, 60, 60)
    assert own.status_code == 400
    assert own.json()["code"] == "REFERRAL_CYCLE"

    assert _attach(client, 61, 60).status_code == 200
    assert _attach(client, 62, 61).status_code == 200
    cycle = _attach(client, 60, 62)
    assert cycle.status_code == 400
    assert cycle.json()["code"] == "REFERRAL_CYCLE"


def test_attach_is_idempotent(client: TestClient) -> None:
    first = _attach(client, 71, 70)
    assert first.json()["inviter_id"] == 70

    # an existing inviter is never replaced
    second = _attach(client, 71, 72)
    assert second.status_code == 200
    assert second.json()["inviter_id"] == 70

    assert client.get("/referrals", headers=user_headers(70)).json()["direct_referrals"] == 1
    assert client.get("/referrals", headers=user_headers(72)).json()["direct_referrals"] == 0


def test_referral_info_for_unknown_user(client: TestClient) -> None:
    info = client.get("/referrals", headers=user_headers(80)).json()
    assert info == {
        "user_id": 80,
        "inviter_id": None,
        "direct_referrals": 0,
        "indirect_referrals": 0,
        "total_rewards": "0.00000000",
        "level1_rewards": "0.00000000",
        "level2_rewards": "0.00000000",
        "recent_rewards": [],
    }
