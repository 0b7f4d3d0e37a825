"""Client side of the external chain-watcher service.

The watcher derives deposit addresses, detects incoming transfers (reported
back through the deposit callback) and broadcasts withdrawals. When no
watcher is configured, deposits go to a static per-network address and
withdrawals are queued for manual settlement by an operator.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Protocol

import httpx

from ..core.errors import AddressUnavailableError, SettlementUnavailableError
from ..core.money import format_amount
from ..models.enums import Network

logger = logging.getLogger(__name__)


class AddressProvider(Protocol):
    def get_deposit_address(self, user_id: int, network: Network, purpose: str) -> str: ...


class SettlementGateway(Protocol):
    def submit_withdrawal(
        self,
        withdrawal_id: int,
        network: Network,
        target_address: str,
        amount: Decimal,
    ) -> str: ...


class ChainWatcherClient:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = client or httpx.Client(timeout=timeout, headers=headers)

    def _post(self, path: str, payload: dict) -> dict:
        response = self.client.post(f"{self.base_url}{path}", json=payload)
        response.raise_for_status()
        return response.json()

    def get_deposit_address(self, user_id: int, network: Network, purpose: str) -> str:
        try:
            data = self._post(
                "/deposit-address",
                {"userId": user_id, "network": network.value, "purpose": purpose},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "chain_watcher.address_failed",
                extra={"user_id": user_id, "network": network.value, "error": str(exc)},
            )
            raise AddressUnavailableError("Deposit address service unavailable") from exc
        address = data.get("address")
        if not address:
            raise AddressUnavailableError("Deposit address service returned no address")
        return address

    def submit_withdrawal(
        self,
        withdrawal_id: int,
        network: Network,
        target_address: str,
        amount: Decimal,
    ) -> str:
        try:
            data = self._post(
                "/withdrawals/settle",
                {
                    "withdrawalId": withdrawal_id,
                    "network": network.value,
                    "targetAddress": target_address,
                    "amount": format_amount(amount),
                },
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "chain_watcher.settlement_failed",
                extra={"withdrawal_id": withdrawal_id, "error": str(exc)},
            )
            raise SettlementUnavailableError("Settlement service unavailable") from exc
        external_ref = data.get("externalRef")
        if not external_ref:
            raise SettlementUnavailableError("Settlement service returned no reference")
        return str(external_ref)


class StaticAddressProvider:
    """One configured address per network, shared by every user."""

    def __init__(self, addresses: dict[str, str]) -> None:
        self.addresses = {key.lower(): value for key, value in addresses.items()}

    def get_deposit_address(self, user_id: int, network: Network, purpose: str) -> str:
        address = self.addresses.get(network.value)
        if not address:
            raise AddressUnavailableError(
                f"No deposit address configured for network {network.value}"
            )
        logger.info(
            "deposit.address_retrieved",
            extra={"user_id": user_id, "network": network.value, "purpose": purpose},
        )
        return address


class ManualSettlement:
    """Leaves the transfer to an operator, who completes it from the admin API."""

    def submit_withdrawal(
        self,
        withdrawal_id: int,
        network: Network,
        target_address: str,
        amount: Decimal,
    ) -> str:
        logger.info(
            "withdrawal.queued_manual",
            extra={"withdrawal_id": withdrawal_id, "network": network.value},
        )
        return f"MANUAL-WD-{withdrawal_id}"
