# ansybl/keystore/__init__.py
"""
Encrypted key storage.

- KeyStore: interface shared by all backends
- MemoryKeyStore: in-process, for tests
- FileKeyStore: one encrypted file per key, atomic writes
"""

from typing import Any, Dict

from .base import SECRET_ENV_VAR, KeyStore, check_key_id
from .crypto import IntegrityError, KeyCipher, KeyStoreError
from .file import FileKeyStore
from .memory import MemoryKeyStore
from .models import (
    DeleteResult,
    EncryptedBlob,
    KeyPair,
    KeyPairInfo,
    KeyStatus,
    RestoreReport,
)


def open_key_store(config: Dict[str, Any], secret: str = None) -> KeyStore:
    """Build the key store named by ``config["keystore"]["provider"]``."""
    settings = config["keystore"]
    provider = settings.get("provider", "file")
    kdf_n = settings.get("kdf_n", 16384)

    if provider == "file":
        return FileKeyStore(settings["path"], secret=secret, kdf_n=kdf_n)
    if provider == "memory":
        return MemoryKeyStore(secret=secret, kdf_n=kdf_n)
    raise KeyStoreError(f"Unknown key store provider: {provider}")


__all__ = [
    "KeyStore",
    "MemoryKeyStore",
    "FileKeyStore",
    "open_key_store",
    "check_key_id",
    "KeyCipher",
    "KeyStoreError",
    "IntegrityError",
    "KeyPair",
    "KeyPairInfo",
    "KeyStatus",
    "EncryptedBlob",
    "DeleteResult",
    "RestoreReport",
    "SECRET_ENV_VAR",
]
