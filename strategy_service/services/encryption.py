"""Fernet symmetric encryption for trading-wallet secret keys at rest."""

import base58
from cryptography.fernet import Fernet

from strategy_service.config import settings

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise RuntimeError(
                "SS_ENCRYPTION_KEY not set. Generate one with: "
                "python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def encrypt(plaintext: str) -> str:
    """Encrypt a string and return base64-encoded ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """Decrypt a base64-encoded ciphertext and return plaintext."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()


def encrypt_secret_key(secret: bytes) -> str:
    if not secret:
        return ""
    return encrypt(base58.b58encode(secret).decode())


def decrypt_secret_key(ciphertext: str) -> bytes:
    if not ciphertext:
        return b""
    return base58.b58decode(decrypt(ciphertext))
