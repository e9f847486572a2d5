# ansybl/keystore/base.py
"""
Key store interface.

Subclasses provide raw byte storage for encrypted records (live entries
and an archive namespace). Everything else is shared: encryption,
record parsing, archival on delete, backup and restore.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..envelope import make_envelope, open_envelope
from ..keys import InvalidKeyFormatError
from .crypto import (
    DEFAULT_KDF_N,
    IntegrityError,
    KeyCipher,
    KeyStoreError,
    new_salt,
)
from .models import DeleteResult, EncryptedBlob, KeyPair, RestoreReport, utc_now

logger = logging.getLogger(__name__)

SECRET_ENV_VAR = "ANSYBL_KEY_SECRET"

# Key ids double as file names
_KEY_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def check_key_id(key_id: str) -> str:
    if not isinstance(key_id, str) or not _KEY_ID_RE.match(key_id):
        raise KeyStoreError(f"Invalid key id: {key_id!r}")
    return key_id


def _archive_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


class KeyStore(ABC):
    """
    Encrypted storage of key pairs, addressed by key id.

    Args:
        secret: Installation secret the encryption key is derived from
        salt: Installation salt for key derivation
        kdf_n: scrypt cost parameter
    """

    def __init__(self, secret: str, salt: bytes, kdf_n: int = DEFAULT_KDF_N):
        self.kdf_n = kdf_n
        self._secret = secret
        self._salt = salt
        self._cipher = KeyCipher.from_secret(secret, salt, n=kdf_n)

    # Raw storage hooks

    @abstractmethod
    def _read(self, key_id: str) -> Optional[bytes]:
        """Raw encrypted record, or None if absent."""

    @abstractmethod
    def _write(self, key_id: str, raw: bytes) -> None:
        """Replace the record for key_id atomically."""

    @abstractmethod
    def _remove(self, key_id: str) -> bool:
        """Remove the live record. True if something was removed."""

    @abstractmethod
    def _ids(self) -> List[str]:
        """Ids of all live records."""

    @abstractmethod
    def _archive(self, name: str, raw: bytes) -> str:
        """Copy a raw record into the archive under name. Returns a reference."""

    @abstractmethod
    def _archive_names(self) -> List[str]:
        """Names of all archived records."""

    # Encoding

    def _seal(self, record: Dict[str, Any]) -> bytes:
        blob = self._cipher.encrypt(record)
        return json.dumps(blob.to_dict(), indent=2).encode("utf-8")

    def _open(self, key_id: str, raw: bytes) -> Dict[str, Any]:
        try:
            blob = EncryptedBlob.from_dict(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise IntegrityError(f"Corrupt key record {key_id}: {e}")
        return self._cipher.decrypt(blob)

    # Public API

    def store(self, key_id: str, key_pair: KeyPair, metadata: Dict[str, Any] = None) -> None:
        """
        Encrypt and persist a key pair under key_id.

        ``metadata`` is merged over the pair's own metadata; ``storedAt`` and
        ``algorithm`` are stamped on every write. A fresh IV is used each time.
        """
        check_key_id(key_id)
        record = key_pair.to_dict(include_private=True)
        record["keyId"] = key_id
        merged = dict(record["metadata"])
        if metadata:
            merged.update(metadata)
        merged["storedAt"] = utc_now()
        merged["algorithm"] = key_pair.public_key.algorithm
        record["metadata"] = merged

        self._write(key_id, self._seal(record))
        logger.debug(f"Stored key: {key_id}")

    def load(self, key_id: str) -> Optional[KeyPair]:
        """
        Load and decrypt a key pair.

        Returns:
            The key pair, or None if no record exists

        Raises:
            IntegrityError: if the record fails authentication or is corrupt
            InvalidKeyFormatError: if the decrypted key material is mis-tagged
        """
        check_key_id(key_id)
        raw = self._read(key_id)
        if raw is None:
            return None

        record = self._open(key_id, raw)
        try:
            return KeyPair.from_dict(record)
        except InvalidKeyFormatError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise IntegrityError(f"Malformed key record {key_id}: {e}")

    def exists(self, key_id: str) -> bool:
        """Presence check without decrypting."""
        check_key_id(key_id)
        return self._read(key_id) is not None

    def list(self) -> List[str]:
        """Sorted ids of all readable keys. Unreadable entries are skipped."""
        readable = []
        for key_id in sorted(self._ids()):
            try:
                if self.load(key_id) is not None:
                    readable.append(key_id)
            except (IntegrityError, InvalidKeyFormatError) as e:
                logger.warning(f"Skipping unreadable key {key_id}: {e}")
        return readable

    def load_all(self) -> List[KeyPair]:
        """All readable key pairs, sorted by id."""
        pairs = []
        for key_id in self.list():
            pair = self.load(key_id)
            if pair is not None:
                pairs.append(pair)
        return pairs

    def delete(self, key_id: str) -> DeleteResult:
        """
        Archive then remove a key.

        A failed archive copy is logged and reported, the live record is
        removed regardless.
        """
        check_key_id(key_id)
        raw = self._read(key_id)
        if raw is None:
            return DeleteResult(key_id=key_id, deleted=False)

        result = DeleteResult(key_id=key_id, deleted=False)
        try:
            result.archive_ref = self._archive(f"{key_id}_{_archive_stamp()}.key", raw)
            result.archived = True
        except (OSError, KeyStoreError) as e:
            logger.warning(f"Failed to archive key {key_id}: {e}")
            result.archive_error = str(e)

        result.deleted = self._remove(key_id)
        logger.info(f"Deleted key: {key_id} (archived={result.archived})")
        return result

    def list_archive(self, key_id: str = None) -> List[str]:
        """Archived record names, optionally for one key id only."""
        names = sorted(self._archive_names())
        if key_id is None:
            return names
        return [n for n in names if n.rsplit(".", 1)[0].rsplit("_", 1)[0] == key_id]

    def backup(self, passphrase: str = None) -> EncryptedBlob:
        """
        Export every readable key into one encrypted, self-contained blob.

        The blob's key is derived from ``passphrase`` (default: the store
        secret) with its own random salt, so it restores on any
        installation that knows the passphrase.
        """
        pairs = self.load_all()
        envelope = make_envelope("keys", [p.to_dict(include_private=True) for p in pairs])

        salt = new_salt()
        cipher = KeyCipher.from_secret(passphrase or self._secret, salt)
        blob = cipher.encrypt(envelope)
        blob.salt = salt
        logger.info(f"Backed up {len(pairs)} keys")
        return blob

    def restore(self, blob: EncryptedBlob, passphrase: str = None) -> RestoreReport:
        """
        Restore keys from a backup blob, overwriting existing ids.

        Raises:
            IntegrityError: if the backup itself cannot be decrypted
            EnvelopeError: if the decrypted backup is not a key envelope
        """
        if blob.salt is None:
            raise IntegrityError("Backup blob carries no salt")

        cipher = KeyCipher.from_secret(passphrase or self._secret, blob.salt)
        entries = open_envelope(cipher.decrypt(blob), "keys")

        report = RestoreReport(total=len(entries))
        for entry in entries:
            try:
                pair = KeyPair.from_dict(entry)
                self.store(pair.key_id, pair)
                report.restored += 1
            except (KeyError, TypeError, ValueError, KeyStoreError) as e:
                key_id = entry.get("keyId") if isinstance(entry, dict) else None
                logger.warning(f"Failed to restore key {key_id}: {e}")
                report.skipped += 1

        logger.info(f"Restored {report.restored} of {report.total} keys")
        return report

    def rekey(self, new_secret: str) -> int:
        """
        Re-encrypt every readable record under a new secret.

        Unreadable records are left as they are. Returns the number of
        records re-encrypted.
        """
        pairs = self.load_all()
        self._secret = new_secret
        self._cipher = KeyCipher.from_secret(new_secret, self._salt, n=self.kdf_n)
        for pair in pairs:
            # Keep the original storedAt
            self._write(pair.key_id, self._seal(pair.to_dict(include_private=True)))
        logger.info(f"Re-encrypted {len(pairs)} keys under new secret")
        return len(pairs)
