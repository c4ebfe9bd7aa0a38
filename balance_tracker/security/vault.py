"""
Credential vault.

API keys are stored encrypted (Fernet) and looked up by a SHA-256
fingerprint. Plaintext keys only live in memory long enough to call
the upstream service.
"""

import base64
import hashlib
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

ENCRYPTION_KEY_ENV = "TRACKER_ENCRYPTION_KEY"

_KDF_SALT = b"balance-tracker.credential-vault"
_KDF_ITERATIONS = 100_000


class CredentialError(Exception):
    """Raised when a stored credential cannot be decrypted."""


def _derive_key(secret: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class CredentialVault:
    """Encrypts, decrypts and fingerprints API keys."""

    def __init__(self, secret: str):
        """Initialize the vault from a passphrase.

        Args:
            secret: Passphrase the Fernet key is derived from

        Raises:
            ValueError: If the secret is empty
        """
        if not secret or not secret.strip():
            raise ValueError("encryption secret is required and cannot be empty")
        self._fernet = Fernet(_derive_key(secret))

    @classmethod
    def from_env(cls, env_var: str = ENCRYPTION_KEY_ENV) -> "CredentialVault":
        """Build a vault from the encryption secret in the environment.

        Raises:
            ValueError: If the variable is unset or empty
        """
        secret: Optional[str] = os.environ.get(env_var)
        if not secret:
            raise ValueError(f"{env_var} is not set")
        return cls(secret)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored credential.

        Raises:
            CredentialError: If the token is malformed or was encrypted
                under a different secret
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise CredentialError("stored credential could not be decrypted") from e

    @staticmethod
    def fingerprint(plaintext: str) -> str:
        """Stable lookup hash of a credential (hex SHA-256), never reversed."""
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def mask_api_key(api_key: str) -> str:
    """Mask an API key for display.

    Keeps the first 7 characters ("sk-xxxx") and the last 4; keys too
    short to mask safely are returned unchanged.
    """
    if len(api_key) <= 11:
        return api_key
    return api_key[:7] + "*" * 8 + api_key[-4:]
