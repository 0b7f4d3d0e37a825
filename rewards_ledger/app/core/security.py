from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .config import Settings


@dataclass(frozen=True)
class AdminPrincipal:
    """An authenticated operator; threaded explicitly into admin actions."""

    admin_id: int


def tokens_match(supplied: Optional[str], expected: str) -> bool:
    # an unset secret never authenticates anything
    if not expected or not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_hmac_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = hmac_sha256_hex(secret, body)
    return hmac.compare_digest(signature.strip().lower(), expected)


def derive_fernet_key(secret: str) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=b"rewards-ledger-proof-encryption",
    )
    return base64.urlsafe_b64encode(hkdf.derive(secret.encode("utf-8")))


class ProofCipher:
    """Fernet encryption for assisted-verification proofs at rest."""

    def __init__(self, key: bytes | str) -> None:
        self.fernet = Fernet(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProofCipher":
        if settings.proof_encryption_key:
            return cls(settings.proof_encryption_key)
        return cls(derive_fernet_key(settings.secret_key))

    def encrypt(self, plaintext: str) -> str:
        return self.fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        return self.fernet.decrypt(token.encode("ascii")).decode("utf-8")
