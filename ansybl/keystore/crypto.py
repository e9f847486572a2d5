# ansybl/keystore/crypto.py
"""
Encryption at rest for key material.

AES-256-GCM with a fresh 16-byte IV per encryption. The 256-bit key is
derived from a secret with scrypt (memory-hard). The salt belongs to the
installation, not to individual records, so the derived key is stable
across restarts; changing the secret means re-encrypting every blob.
"""

import json
import os
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .models import EncryptedBlob

IV_LENGTH = 16
TAG_LENGTH = 16
SALT_LENGTH = 16
KEY_LENGTH = 32

# scrypt cost parameters (n must be a power of two)
DEFAULT_KDF_N = 2 ** 14
KDF_R = 8
KDF_P = 1


class KeyStoreError(Exception):
    """Raised for key storage failures other than "not found"."""
    pass


class IntegrityError(KeyStoreError):
    """Ciphertext failed authentication or could not be decoded. Possible tampering."""
    pass


def derive_key(secret: str | bytes, salt: bytes, n: int = DEFAULT_KDF_N) -> bytes:
    """Derive a 256-bit encryption key from a secret with scrypt."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=n, r=KDF_R, p=KDF_P)
    return kdf.derive(secret)


def new_salt() -> bytes:
    return os.urandom(SALT_LENGTH)


class KeyCipher:
    """
    Seals and opens JSON payloads with an already-derived key.

    Usage:
        cipher = KeyCipher.from_secret("passphrase", salt)
        blob = cipher.encrypt({"keyId": "alice", ...})
        data = cipher.decrypt(blob)
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes")
        self._aes = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str | bytes, salt: bytes, n: int = DEFAULT_KDF_N) -> "KeyCipher":
        return cls(derive_key(secret, salt, n=n))

    def encrypt(self, payload: Dict[str, Any]) -> EncryptedBlob:
        plaintext = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        iv = os.urandom(IV_LENGTH)
        sealed = self._aes.encrypt(iv, plaintext, None)
        # AESGCM appends the tag to the ciphertext
        return EncryptedBlob(
            ciphertext=sealed[:-TAG_LENGTH],
            iv=iv,
            auth_tag=sealed[-TAG_LENGTH:],
        )

    def decrypt(self, blob: EncryptedBlob) -> Dict[str, Any]:
        """
        Open a blob.

        Raises:
            IntegrityError: on tag mismatch, wrong key, or undecodable plaintext
        """
        if len(blob.iv) != IV_LENGTH or len(blob.auth_tag) != TAG_LENGTH:
            raise IntegrityError("Malformed encrypted blob (bad IV or tag length)")
        try:
            plaintext = self._aes.decrypt(blob.iv, blob.ciphertext + blob.auth_tag, None)
        except InvalidTag:
            raise IntegrityError("Authentication failed: wrong secret or tampered data")

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IntegrityError(f"Decrypted payload is not valid JSON: {e}")
