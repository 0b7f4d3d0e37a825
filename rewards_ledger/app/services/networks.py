import re

from ..core.errors import ValidationError
from ..models.enums import Network

EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
TRON_ADDRESS = re.compile(r"^T[A-Za-z1-9]{33}$")


def is_valid_address(address: str, network: Network) -> bool:
    pattern = EVM_ADDRESS if network.is_evm else TRON_ADDRESS
    return bool(pattern.match(address or ""))


def validate_address(address: str, network: Network) -> str:
    address = (address or "").strip()
    if not is_valid_address(address, network):
        raise ValidationError(
            f"Invalid {network.value.upper()} address format", code="INVALID_ADDRESS"
        )
    return address


def same_address(left: str, right: str, network: Network) -> bool:
    """EVM addresses compare case-insensitively (checksum casing), Tron exactly."""
    if network.is_evm:
        return left.lower() == right.lower()
    return left == right
