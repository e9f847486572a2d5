# ansybl/keystore/memory.py
"""In-process key store, for tests and short-lived tools."""

import os
import secrets
from typing import Dict, List, Optional

from .base import SECRET_ENV_VAR, KeyStore
from .crypto import DEFAULT_KDF_N, new_salt


class MemoryKeyStore(KeyStore):
    """
    Keeps encrypted records in dictionaries.

    Records are still encrypted so behaviour matches FileKeyStore. Without
    a secret (argument or ANSYBL_KEY_SECRET) an ephemeral random one is used.
    """

    def __init__(self, secret: str = None, kdf_n: int = DEFAULT_KDF_N):
        secret = secret or os.environ.get(SECRET_ENV_VAR) or secrets.token_hex(32)
        super().__init__(secret, new_salt(), kdf_n=kdf_n)
        self._records: Dict[str, bytes] = {}
        self._archived: Dict[str, bytes] = {}

    def _read(self, key_id: str) -> Optional[bytes]:
        return self._records.get(key_id)

    def _write(self, key_id: str, raw: bytes) -> None:
        self._records[key_id] = raw

    def _remove(self, key_id: str) -> bool:
        return self._records.pop(key_id, None) is not None

    def _ids(self) -> List[str]:
        return list(self._records)

    def _archive(self, name: str, raw: bytes) -> str:
        self._archived[name] = raw
        return name

    def _archive_names(self) -> List[str]:
        return list(self._archived)
