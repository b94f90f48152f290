"""Symmetric sealing of MFA secrets and recovery codes at rest."""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from ..domain.errors import CorruptSecret


class SecretVault:
    """Seal and open small text values with an injected Fernet key.

    Fernet uses a random IV per call, so sealing the same plaintext twice
    yields different ciphertexts; compare opened values, never blobs.
    """

    def __init__(self, key: str | bytes) -> None:
        """Build the cipher from a URL-safe base64 encoded 32-byte key."""
        if not key:
            raise ValueError(
                "MFA_ENCRYPTION_KEY not set. Generate one with SecretVault.generate_key()"
            )
        self._fernet = Fernet(key.encode("utf-8") if isinstance(key, str) else key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def seal(self, plaintext: str) -> bytes:
        return self._fernet.encrypt(plaintext.encode("utf-8"))

    def open(self, ciphertext: bytes) -> str:
        """Return the plaintext or raise ``CorruptSecret`` on tamper or wrong key."""
        try:
            return self._fernet.decrypt(bytes(ciphertext)).decode("utf-8")
        except (InvalidToken, TypeError, UnicodeDecodeError) as exc:
            raise CorruptSecret() from exc
