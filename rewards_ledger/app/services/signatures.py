"""Signer recovery for wallet ownership proofs.

EVM networks use EIP-191 ``personal_sign``. TRC20 wallets sign with the TRON
variant of the same scheme (``\\x19TRON Signed Message:\\n<len>``); the
recovered key is rendered as a base58check ``T...`` address.
"""
from __future__ import annotations

import logging
from typing import Optional

import base58
from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct

from ..models.enums import Network
from .networks import same_address

logger = logging.getLogger(__name__)

TRON_ADDRESS_PREFIX = b"\x41"


def build_verification_message(
    *,
    user_id: int,
    feature: str,
    wallet_address: str,
    network: Network,
    nonce: str,
    amount: Optional[str] = None,
) -> str:
    return "\n".join(
        [
            "Ghidar Wallet Verification",
            "",
            f"User ID: {user_id}",
            f"Feature: {feature.upper()}",
            f"Wallet: {wallet_address}",
            f"Network: {network.value.upper()}",
            f"Amount: {amount if amount is not None else 'N/A'} USDT",
            f"Nonce: {nonce}",
            "",
            "This signature verifies you are the owner of this wallet "
            "and authorizes this verification.",
        ]
    )


def encode_tron_message(message: str) -> SignableMessage:
    body = message.encode("utf-8")
    return SignableMessage(
        version=b"T",
        header=b"RON Signed Message:\n" + str(len(body)).encode("ascii"),
        body=body,
    )


def tron_address_from_evm(address: str) -> str:
    raw = bytes.fromhex(address[2:])
    return base58.b58encode_check(TRON_ADDRESS_PREFIX + raw).decode("ascii")


def _signature_bytes(signature: str) -> bytes:
    value = signature.strip()
    if value.startswith(("0x", "0X")):
        value = value[2:]
    raw = bytes.fromhex(value)
    if len(raw) != 65:
        raise ValueError("Signature must be 65 bytes")
    return raw


def recover_signer(message: str, signature: str, network: Network) -> Optional[str]:
    """Return the address that produced ``signature`` or None if it is malformed."""
    try:
        raw = _signature_bytes(signature)
        if network.is_evm:
            return Account.recover_message(encode_defunct(text=message), signature=raw)
        recovered = Account.recover_message(encode_tron_message(message), signature=raw)
        return tron_address_from_evm(recovered)
    except Exception as exc:  # eth_keys raises its own BadSignature besides ValueError
        logger.info(
            "signature.unrecoverable",
            extra={"network": network.value, "error": str(exc)},
        )
        return None


def signature_matches(
    message: str,
    signature: str,
    network: Network,
    *addresses: str,
) -> bool:
    signer = recover_signer(message, signature, network)
    if signer is None:
        return False
    return all(same_address(signer, address, network) for address in addresses)
