from eth_account import Account

from ..models.enums import Network
from ..services.networks import is_valid_address, same_address
from ..services.signatures import (
    build_verification_message,
    recover_signer,
    signature_matches,
)
from .conftest import sign_evm, sign_tron, tron_address


def test_message_layout() -> None:
    message = build_verification_message(
        user_id=42,
        feature="withdrawal",
        wallet_address="0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
        network=Network.BEP20,
        nonce="abc123",
        amount="12.50000000",
    )
    assert message.splitlines() == [
        "Ghidar Wallet Verification",
        "",
        "User ID: 42",
        "Feature: WITHDRAWAL",
        "Wallet: 0x29841Ffa59A2831997A80840c76Ce94725E4ee5C",
        "Network: BEP20",
        "Amount: 12.50000000 USDT",
        "Nonce: abc123",
        "",
        "This signature verifies you are the owner of this wallet and authorizes this verification.",
    ]


def test_recover_evm_signer_with_or_without_prefix() -> None:
    account = Account.create()
    signature = sign_evm(account, "hello")
    assert recover_signer("hello", signature, Network.ERC20) == account.address
    assert recover_signer("hello", signature[2:], Network.BEP20) == account.address
    assert recover_signer("hello!", signature, Network.ERC20) != account.address


def test_recover_tron_signer() -> None:
    account = Account.create()
    address = tron_address(account)
    assert is_valid_address(address, Network.TRC20)
    assert recover_signer("hello", sign_tron(account, "hello"), Network.TRC20) == address


def test_malformed_signatures_return_none() -> None:
    assert recover_signer("hello", "", Network.ERC20) is None
    assert recover_signer("hello", "0xzz", Network.ERC20) is None
    assert recover_signer("hello", "ab" * 64, Network.ERC20) is None
    assert recover_signer("hello", "00" * 65, Network.TRC20) is None


def test_signature_must_match_every_address() -> None:
    account = Account.create()
    signature = sign_evm(account, "hello")
    assert signature_matches("hello", signature, Network.ERC20, account.address, account.address.lower())
    assert not signature_matches(
        "hello", signature, Network.ERC20, account.address, Account.create().address
    )


def test_address_comparison_rules() -> None:
    assert same_address("0xABCDEF0000000000000000000000000000000000", "0xabcdef0000000000000000000000000000000000", Network.ERC20)
    assert not same_address("TNVnn7g2DgZTz4hiS2LdFWB8PJWvxqwmpn", "tnvnn7g2dgztz4his2ldfwb8pjwvxqwmpn", Network.TRC20)
    assert not is_valid_address("0x123", Network.ERC20)
    assert not is_valid_address("TNVnn7g2DgZTz4hiS2LdFWB8PJWvxqwmp0", Network.TRC20)
