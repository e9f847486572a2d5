# ansybl/keystore/file.py
"""
Directory-backed key store.

Layout:
    key_dir/
        installation.json    # Per-installation KDF salt (no key material)
        <key_id>.key         # Encrypted record, mode 0600
        archive/
            <key_id>_<stamp>.key
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from .base import SECRET_ENV_VAR, KeyStore
from .crypto import DEFAULT_KDF_N, KeyStoreError, new_salt
from .models import utc_now

logger = logging.getLogger(__name__)

KEY_SUFFIX = ".key"
INSTALLATION_FILE = "installation.json"


def atomic_write(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Write via temp file + fsync + rename so readers never see a partial file."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class FileKeyStore(KeyStore):
    """
    Key store persisting one encrypted file per key.

    Args:
        key_dir: Store directory (created with mode 0700)
        secret: Installation secret; falls back to ANSYBL_KEY_SECRET
        kdf_n: scrypt cost parameter

    Raises:
        KeyStoreError: if no secret is available or the installation file
            is unreadable
    """

    def __init__(self, key_dir: Path | str, secret: str = None, kdf_n: int = DEFAULT_KDF_N):
        secret = secret or os.environ.get(SECRET_ENV_VAR)
        if not secret:
            raise KeyStoreError(
                f"No key store secret configured. Set {SECRET_ENV_VAR} or pass a secret."
            )

        self.key_dir = Path(key_dir).expanduser()
        self.key_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.key_dir, 0o700)
        self.archive_dir = self.key_dir / "archive"

        super().__init__(secret, self._installation_salt(), kdf_n=kdf_n)

    def _installation_salt(self) -> bytes:
        path = self.key_dir / INSTALLATION_FILE
        if path.exists():
            try:
                with open(path) as f:
                    return bytes.fromhex(json.load(f)["salt"])
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                raise KeyStoreError(f"Unreadable installation file {path}: {e}")

        salt = new_salt()
        data = {"kdf": "scrypt", "salt": salt.hex(), "createdAt": utc_now()}
        atomic_write(path, json.dumps(data, indent=2).encode("utf-8"))
        logger.info(f"Initialized key store at {self.key_dir}")
        return salt

    def _key_path(self, key_id: str) -> Path:
        return self.key_dir / f"{key_id}{KEY_SUFFIX}"

    def _read(self, key_id: str) -> Optional[bytes]:
        path = self._key_path(key_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _write(self, key_id: str, raw: bytes) -> None:
        atomic_write(self._key_path(key_id), raw)

    def _remove(self, key_id: str) -> bool:
        try:
            self._key_path(key_id).unlink()
            return True
        except FileNotFoundError:
            return False

    def _ids(self) -> List[str]:
        return [p.stem for p in self.key_dir.glob(f"*{KEY_SUFFIX}") if p.is_file()]

    def _archive(self, name: str, raw: bytes) -> str:
        self.archive_dir.mkdir(mode=0o700, exist_ok=True)
        path = self.archive_dir / name
        atomic_write(path, raw)
        return str(path)

    def _archive_names(self) -> List[str]:
        if not self.archive_dir.exists():
            return []
        return [p.name for p in self.archive_dir.glob(f"*{KEY_SUFFIX}")]
