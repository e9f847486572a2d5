# ansybl/manager.py
"""
Key lifecycle on top of a KeyStore.

Keys are grouped in families: a root id ("alice") plus rotated versions
("alice_v2", "alice_v3", ...). Only one member of a family is active at a
time. Reads return KeyPairInfo (no private key) unless a private accessor
is used explicitly.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .cache import KeyCache
from .keys import ED25519, InvalidKeyFormatError, TaggedBytes, derive_public_key, generate_key_pair
from .keystore import IntegrityError, KeyPair, KeyPairInfo, KeyStatus, KeyStore
from .keystore.models import utc_now

logger = logging.getLogger(__name__)

_VERSION_SUFFIX_RE = re.compile(r"^(.+)_v(\d+)$")


class KeyManagementError(Exception):
    """Base class for key lifecycle misuse."""
    pass


class DuplicateKeyError(KeyManagementError):
    """A key id (or another member of its family) already exists."""
    pass


class KeyNotFoundError(KeyManagementError):
    """No key (or no active key in the family) for the given id."""
    pass


@dataclass
class KeyValidation:
    """Outcome of a structural key check."""
    valid: bool
    key_id: str
    reason: Optional[str] = None
    status: Optional[str] = None
    version: Optional[int] = None
    algorithm: Optional[str] = None


def family_root(key_id: str) -> str:
    """Root id of a key family: "alice_v3" -> "alice"."""
    match = _VERSION_SUFFIX_RE.match(key_id)
    return match.group(1) if match else key_id


def is_family_member(key_id: str, root: str) -> bool:
    if key_id == root:
        return True
    return re.match(rf"^{re.escape(root)}_v(\d+)$", key_id) is not None


class KeyManager:
    """
    Creates, rotates, validates and deletes signing keys.

    Args:
        store: Backing key store (the only source of truth)
        cache: Optional cache of decrypted key pairs; pass None to disable
    """

    def __init__(self, store: KeyStore, cache: Optional[KeyCache] = None):
        self.store = store
        self.cache = cache

    # Internal access

    def _load(self, key_id: str) -> Optional[KeyPair]:
        if self.cache is not None:
            cached = self.cache.get(key_id)
            if cached is not None:
                return cached

        pair = self.store.load(key_id)
        if pair is not None and self.cache is not None:
            self.cache.put(key_id, pair)
        return pair

    def _save(self, pair: KeyPair) -> None:
        self.store.store(pair.key_id, pair)
        if self.cache is not None:
            # Re-read lazily so the cache matches what was stamped on disk
            self.cache.remove(pair.key_id)

    def _family(self, root: str) -> List[KeyPair]:
        members = []
        for key_id in self.store.list():
            if is_family_member(key_id, root):
                pair = self._load(key_id)
                if pair is not None:
                    members.append(pair)
        return members

    def _active_pair(self, key_id: str) -> Optional[KeyPair]:
        active = [p for p in self._family(family_root(key_id)) if p.is_active]
        if not active:
            return None
        return max(active, key=lambda p: p.version)

    # Lifecycle

    def create_key_pair(self, key_id: str, metadata: Dict[str, Any] = None) -> KeyPairInfo:
        """
        Generate and store a fresh Ed25519 key pair (version 1, active).

        Raises:
            DuplicateKeyError: if key_id or any member of its family exists
        """
        root = family_root(key_id)
        existing = [k for k in self.store.list() if is_family_member(k, root)]
        if key_id in existing or self.store.exists(key_id):
            raise DuplicateKeyError(f"Key pair with ID '{key_id}' already exists")
        if existing:
            raise DuplicateKeyError(
                f"Key family '{root}' already exists ({', '.join(sorted(existing))})"
            )

        private_key, public_key = generate_key_pair()
        pair = KeyPair(
            key_id=key_id,
            public_key=public_key,
            private_key=private_key,
            metadata={"purpose": "signing", "algorithm": ED25519, "rotationCount": 0, **(metadata or {})},
        )
        self._save(pair)
        logger.info(f"Created key pair: {key_id}")
        return pair.public_info()

    def rotate_key(self, key_id: str, metadata: Dict[str, Any] = None) -> KeyPairInfo:
        """
        Replace the active key of a family with a new version.

        The new key ``<root>_v<version+1>`` is written before the
        predecessor is marked deprecated, so a failure in between leaves
        the old key usable.

        Raises:
            KeyNotFoundError: if the family has no active key
            DuplicateKeyError: if the next version id is already taken
        """
        root = family_root(key_id)
        current = self._active_pair(root)
        if current is None:
            raise KeyNotFoundError(f"Key pair '{key_id}' not found")

        version = current.version + 1
        new_id = f"{root}_v{version}"
        if self.store.exists(new_id):
            raise DuplicateKeyError(f"Key pair with ID '{new_id}' already exists")

        now = utc_now()
        private_key, public_key = generate_key_pair()
        new_metadata = {"purpose": "signing", "algorithm": ED25519, **(metadata or {})}
        new_metadata.update({
            "previousPublicKey": str(current.public_key),
            "rotationCount": int(current.metadata.get("rotationCount", 0)) + 1,
            "rotatedFrom": current.key_id,
            "rotatedAt": now,
        })

        new_pair = KeyPair(
            key_id=new_id,
            public_key=public_key,
            private_key=private_key,
            version=version,
            metadata=new_metadata,
            previous_key_id=current.key_id,
        )
        self._save(new_pair)

        deprecated = replace(current, status=KeyStatus.DEPRECATED, deprecated_at=now)
        try:
            self._save(deprecated)
        finally:
            if self.cache is not None:
                self.cache.remove(current.key_id)

        logger.info(f"Rotated key {current.key_id} -> {new_id}")
        return new_pair.public_info()

    def delete_key_pair(self, key_id: str) -> bool:
        """Archive and delete a key. False if it did not exist."""
        result = self.store.delete(key_id)
        if self.cache is not None:
            self.cache.remove(key_id)
        if result.archive_error:
            logger.warning(f"Key {key_id} deleted without archive: {result.archive_error}")
        return result.deleted

    # Reads

    def get_key_pair(self, key_id: str, include_private: bool = False) -> Optional[KeyPairInfo]:
        """
        Look up a key.

        Returns a KeyPairInfo, which has no private key attribute at all,
        unless include_private is set, in which case the full KeyPair is
        returned. None if absent.
        """
        pair = self._load(key_id)
        if pair is None:
            return None
        return pair if include_private else pair.public_info()

    def get_private_key(self, key_id: str) -> Optional[TaggedBytes]:
        pair = self._load(key_id)
        return pair.private_key if pair else None

    def get_public_key(self, key_id: str) -> Optional[TaggedBytes]:
        pair = self._load(key_id)
        return pair.public_key if pair else None

    def require_private_key(self, key_id: str) -> TaggedBytes:
        """Like get_private_key, but raises KeyNotFoundError when absent."""
        private_key = self.get_private_key(key_id)
        if private_key is None:
            raise KeyNotFoundError(f"Key pair '{key_id}' not found")
        return private_key

    def list_key_pairs(self) -> List[KeyPairInfo]:
        pairs = []
        for key_id in self.store.list():
            pair = self._load(key_id)
            if pair is not None:
                pairs.append(pair.public_info())
        return pairs

    def get_active_key(self, key_id: str) -> Optional[KeyPairInfo]:
        """Highest-version active key in the family rooted at key_id."""
        pair = self._active_pair(key_id)
        return pair.public_info() if pair else None

    def get_key_history(self, key_id: str) -> List[KeyPairInfo]:
        """Every member of the family, newest version first."""
        members = self._family(family_root(key_id))
        members.sort(key=lambda p: p.version, reverse=True)
        return [p.public_info() for p in members]

    def find_by_public_key(self, public_key: TaggedBytes | str) -> Optional[KeyPairInfo]:
        if isinstance(public_key, str):
            public_key = TaggedBytes.parse(public_key)
        for key_id in self.store.list():
            pair = self._load(key_id)
            if pair is not None and pair.public_key == public_key:
                return pair.public_info()
        return None

    def validate_key(self, key_id: str) -> KeyValidation:
        """
        Structural integrity check of a stored key.

        Checks presence, algorithm tags, exact byte lengths, and that the
        public key is the one derived from the private key. No signature
        is involved.
        """
        try:
            pair = self.store.load(key_id)
        except (IntegrityError, InvalidKeyFormatError) as e:
            return KeyValidation(valid=False, key_id=key_id, reason=str(e))

        if pair is None:
            return KeyValidation(valid=False, key_id=key_id, reason="Key not found")

        invalid = KeyValidation(
            valid=False, key_id=key_id, status=pair.status.value, version=pair.version,
        )
        try:
            pair.private_key.check_length("private")
        except InvalidKeyFormatError as e:
            invalid.reason = f"Invalid private key: {e}"
            return invalid
        try:
            pair.public_key.check_length("public")
        except InvalidKeyFormatError as e:
            invalid.reason = f"Invalid public key: {e}"
            return invalid

        if pair.private_key.algorithm != pair.public_key.algorithm:
            invalid.reason = "Private and public key algorithms differ"
            return invalid
        if derive_public_key(pair.private_key) != pair.public_key:
            invalid.reason = "Public key does not match private key"
            return invalid

        return KeyValidation(
            valid=True,
            key_id=key_id,
            status=pair.status.value,
            version=pair.version,
            algorithm=pair.public_key.algorithm,
        )
