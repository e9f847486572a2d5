# ansybl/keystore/models.py
"""
Storage-level records for key material.

``KeyPairInfo`` is the public view of a key: it has no private-key
attribute at all, so it can be handed to any caller. ``KeyPair`` adds the
private key and is only produced for privileged reads.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..keys import TaggedBytes


def utc_now() -> str:
    """ISO-8601 UTC timestamp, second precision."""
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class KeyStatus(Enum):
    """Lifecycle state of a key pair."""
    ACTIVE = "active"
    DEPRECATED = "deprecated"


@dataclass
class KeyPairInfo:
    """
    Public view of a stored key pair.

    Attributes:
        key_id: Identifier, unique within its family (e.g. "alice", "alice_v2")
        public_key: Tagged public key
        version: 1 for a fresh key, +1 per rotation
        status: ACTIVE or DEPRECATED
        created_at: ISO timestamp of creation
        metadata: Free-form; carries rotation lineage (previousPublicKey,
            rotationCount, rotatedFrom, reason)
        previous_key_id: Key this one was rotated from
        deprecated_at: When the key was superseded
    """
    key_id: str
    public_key: TaggedBytes
    version: int = 1
    status: KeyStatus = KeyStatus.ACTIVE
    created_at: str = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    previous_key_id: Optional[str] = None
    deprecated_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == KeyStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "keyId": self.key_id,
            "publicKey": str(self.public_key),
            "version": self.version,
            "status": self.status.value,
            "createdAt": self.created_at,
            "metadata": dict(self.metadata),
        }
        if self.previous_key_id:
            data["previousKeyId"] = self.previous_key_id
        if self.deprecated_at:
            data["deprecatedAt"] = self.deprecated_at
        return data


@dataclass
class KeyPair(KeyPairInfo):
    """A key pair including its private key. Never log or serialize casually."""
    private_key: Optional[TaggedBytes] = None

    def __post_init__(self):
        if self.private_key is None:
            raise ValueError(f"KeyPair {self.key_id} requires a private key")

    def public_info(self) -> KeyPairInfo:
        """Copy without the private key."""
        return KeyPairInfo(
            key_id=self.key_id,
            public_key=self.public_key,
            version=self.version,
            status=self.status,
            created_at=self.created_at,
            metadata=dict(self.metadata),
            previous_key_id=self.previous_key_id,
            deprecated_at=self.deprecated_at,
        )

    def to_dict(self, include_private: bool = True) -> Dict[str, Any]:
        data = super().to_dict()
        if include_private:
            data["privateKey"] = str(self.private_key)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyPair":
        """
        Parse a stored record.

        Raises:
            InvalidKeyFormatError: if either key is mis-tagged or not base64
            KeyError: if a required field is missing
        """
        return cls(
            key_id=data["keyId"],
            public_key=TaggedBytes.parse(data["publicKey"]),
            private_key=TaggedBytes.parse(data["privateKey"]),
            version=int(data.get("version", 1)),
            status=KeyStatus(data.get("status", KeyStatus.ACTIVE.value)),
            created_at=data.get("createdAt") or utc_now(),
            metadata=dict(data.get("metadata") or {}),
            previous_key_id=data.get("previousKeyId"),
            deprecated_at=data.get("deprecatedAt"),
        )


@dataclass
class EncryptedBlob:
    """
    Authenticated ciphertext. The only form key material takes at rest.

    ``salt`` is set only on self-contained envelopes (backups), whose key
    is derived independently of the installation.
    """
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes
    salt: Optional[bytes] = None

    def to_dict(self) -> Dict[str, str]:
        data = {
            "encrypted": self.ciphertext.hex(),
            "iv": self.iv.hex(),
            "authTag": self.auth_tag.hex(),
        }
        if self.salt is not None:
            data["salt"] = self.salt.hex()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "EncryptedBlob":
        salt = data.get("salt")
        return cls(
            ciphertext=bytes.fromhex(data["encrypted"]),
            iv=bytes.fromhex(data["iv"]),
            auth_tag=bytes.fromhex(data["authTag"]),
            salt=bytes.fromhex(salt) if salt else None,
        )


@dataclass
class DeleteResult:
    """Outcome of a key deletion. Archive failures do not block deletion."""
    key_id: str
    deleted: bool
    archived: bool = False
    archive_ref: Optional[str] = None
    archive_error: Optional[str] = None


@dataclass
class RestoreReport:
    """Per-key outcome counts of a bulk restore."""
    restored: int = 0
    skipped: int = 0
    total: int = 0
