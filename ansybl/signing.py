# ansybl/signing.py
"""
Signing and verification of feeds and items.

Producer side: validate -> canonicalize (signature excluded) -> sign with
the family's active key -> attach. Consumer side: canonicalize (signature
excluded) -> verify against the claimed public key.

Signatures are plain tagged strings, ``ed25519:<base64>``, placed in the
document's top-level ``signature`` field.

Two optional extensions ride along as underscore fields, so they are
covered by the signature and accepted by the validator:

- ``_timestamp``: signing time, checked against a clock skew on verify
- ``_chainIndex`` / ``_previousHash``: links in a signature chain, where
  each item commits to the SHA-256 of its predecessor's signing payload
"""

import copy
import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .canonical import CanonicalizationError, signing_payload
from .keys import InvalidKeyFormatError, TaggedBytes, sign_bytes, verify_bytes
from .manager import KeyManager, KeyNotFoundError
from .validation import DocumentValidator, ValidationResult, is_feed, parse_datetime

logger = logging.getLogger(__name__)

VALID = "VALID"
MISSING_SIGNATURE = "MISSING_SIGNATURE"
MISSING_PUBLIC_KEY = "MISSING_PUBLIC_KEY"
INVALID_KEY_FORMAT = "INVALID_KEY_FORMAT"
SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
INVALID_DOCUMENT = "INVALID_DOCUMENT"
MISSING_TIMESTAMP = "MISSING_TIMESTAMP"
INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
TIMESTAMP_SKEW = "TIMESTAMP_SKEW"

TIMESTAMP_FIELD = "_timestamp"
CHAIN_INDEX_FIELD = "_chainIndex"
PREVIOUS_HASH_FIELD = "_previousHash"

DEFAULT_MAX_SKEW_SECONDS = 300


class SigningError(Exception):
    """Raised when a document cannot be signed."""
    pass


class InvalidDocumentError(SigningError):
    """The document failed validation; ``result`` holds the full report."""

    def __init__(self, result: ValidationResult):
        self.result = result
        summary = "; ".join(f"{e.field}: {e.code}" for e in result.errors[:5])
        super().__init__(f"Document failed validation ({len(result.errors)} errors): {summary}")


@dataclass
class VerificationResult:
    """
    Outcome of a signature check.

    ``code`` separates a malformed key or signature (INVALID_KEY_FORMAT)
    from a well-formed signature that does not match (SIGNATURE_MISMATCH).
    """
    valid: bool
    code: str
    reason: Optional[str] = None
    key_algorithm: Optional[str] = None
    field: Optional[str] = None
    validation: Optional[ValidationResult] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"valid": self.valid, "code": self.code}
        if self.reason:
            data["reason"] = self.reason
        if self.key_algorithm:
            data["key_algorithm"] = self.key_algorithm
        if self.field:
            data["field"] = self.field
        if self.timestamp:
            data["timestamp"] = self.timestamp
        if self.validation is not None:
            data["validation"] = self.validation.to_dict()
        return data


@dataclass
class ChainLinkResult:
    """Signature and linkage outcome for one chain position."""
    index: int
    signature: VerificationResult
    chain_valid: bool = True
    reason: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.signature.valid and self.chain_valid


@dataclass
class ChainVerification:
    """Outcome of verifying a whole signature chain."""
    links: List[ChainLinkResult] = field(default_factory=list)

    @property
    def signatures_valid(self) -> bool:
        return all(link.signature.valid for link in self.links)

    @property
    def chain_valid(self) -> bool:
        return all(link.chain_valid for link in self.links)

    @property
    def valid(self) -> bool:
        return self.signatures_valid and self.chain_valid

    def breaks(self) -> List[int]:
        """Indexes whose link to the previous item is broken."""
        return [link.index for link in self.links if not link.chain_valid]


def _author_key(document: Dict[str, Any]) -> Optional[str]:
    author = document.get("author")
    if isinstance(author, dict):
        return author.get("public_key")
    return None


def chain_hash(item: Dict[str, Any]) -> str:
    """Hex SHA-256 of an item's signing payload (signature excluded)."""
    return hashlib.sha256(signing_payload(item)).hexdigest()


class SigningPipeline:
    """
    Signs documents with managed keys and verifies signed documents.

    Usage:
        pipeline = SigningPipeline(manager)
        signed = pipeline.sign(feed, "alice", sign_items=True)
        assert pipeline.verify(signed).valid

    Args:
        manager: Key source for signing; not needed to verify
        validator: Validator used before signing and by ``verify(validate=True)``
        clock: Returns the current UNIX time (injectable for tests)
    """

    def __init__(self, manager: Optional[KeyManager] = None, validator: Optional[DocumentValidator] = None,
                 clock: Callable[[], float] = time.time):
        self.manager = manager
        self.validator = validator or DocumentValidator()
        self._clock = clock

    def _validate(self, document: Dict[str, Any]) -> ValidationResult:
        if is_feed(document):
            return self.validator.validate(document)
        return self.validator.validate_item(document)

    def _now_iso(self) -> str:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _signing_key(self, key_id: str):
        if self.manager is None:
            raise SigningError("Signing requires a KeyManager")
        active = self.manager.get_active_key(key_id)
        if active is None:
            raise KeyNotFoundError(f"No active key for '{key_id}'")
        return active, self.manager.require_private_key(active.key_id)

    def sign(self, document: Dict[str, Any], key_id: str, sign_items: bool = False,
             timestamp: bool = False) -> Dict[str, Any]:
        """
        Sign a feed or item with the active key of ``key_id``'s family.

        The input is not modified; a signed deep copy is returned.

        Args:
            document: Feed or item
            key_id: Any id in the key family
            sign_items: For feeds, also sign each item that has no author of
                its own (before the feed signature is computed)
            timestamp: Stamp the signing time into ``_timestamp`` so it is
                covered by the signature

        Raises:
            InvalidDocumentError: if validation fails
            KeyNotFoundError: if the family has no active key
            SigningError: if the document's author key is not the active key
        """
        if self.manager is None:
            raise SigningError("Signing requires a KeyManager")

        signed = copy.deepcopy(document)
        signed.pop("signature", None)

        result = self._validate(signed)
        if not result.valid:
            raise InvalidDocumentError(result)

        active, private_key = self._signing_key(key_id)

        claimed = _author_key(signed)
        if (is_feed(signed) or claimed is not None) and claimed != str(active.public_key):
            raise SigningError(
                f"Author public key does not match active key {active.key_id}"
            )

        if sign_items and is_feed(signed):
            for item in signed["items"]:
                if "author" in item:
                    continue
                item.pop("signature", None)
                item["signature"] = str(sign_bytes(private_key, signing_payload(item)))

        if timestamp:
            signed[TIMESTAMP_FIELD] = self._now_iso()

        signed["signature"] = str(sign_bytes(private_key, signing_payload(signed)))
        logger.info(f"Signed {'feed' if is_feed(signed) else 'item'} with key {active.key_id}")
        return signed

    def verify(self, document: Dict[str, Any], public_key: TaggedBytes | str = None,
               validate: bool = False, require_timestamp: bool = False,
               max_skew_seconds: Optional[float] = None) -> VerificationResult:
        """
        Verify a document's top-level signature.

        The key is ``public_key`` if given, else ``author.public_key``.
        With ``validate=True`` the document is validated first and an
        invalid one yields INVALID_DOCUMENT.

        A signed ``_timestamp`` is only checked against the clock when
        ``max_skew_seconds`` is given; ``require_timestamp`` rejects
        documents without one.
        """
        validation = None
        if validate:
            validation = self._validate(document)
            if not validation.valid:
                return VerificationResult(
                    valid=False, code=INVALID_DOCUMENT,
                    reason=f"Document failed validation with {len(validation.errors)} errors",
                    validation=validation,
                )

        result = self._verify_signature(document, public_key if public_key is not None else _author_key(document))
        result.validation = validation
        if result.valid:
            self._check_timestamp(result, document, require_timestamp, max_skew_seconds)
        return result

    def _check_timestamp(self, result: VerificationResult, document: Dict[str, Any],
                         required: bool, max_skew_seconds: Optional[float]):
        stamp = document.get(TIMESTAMP_FIELD)
        if stamp is None:
            if required:
                result.valid, result.code = False, MISSING_TIMESTAMP
                result.reason = "Timestamp is required but not present"
            return

        result.timestamp = stamp
        signed_at = parse_datetime(stamp) if isinstance(stamp, str) else None
        if signed_at is None:
            result.valid, result.code = False, INVALID_TIMESTAMP
            result.reason = f"Timestamp is not an ISO 8601 date-time: {stamp!r}"
            return

        if max_skew_seconds is not None:
            skew = abs(self._clock() - signed_at.timestamp())
            if skew > max_skew_seconds:
                result.valid, result.code = False, TIMESTAMP_SKEW
                result.reason = f"Timestamp skew too large: {skew:.0f}s > {max_skew_seconds}s"

    def verify_items(self, feed: Dict[str, Any], public_key: TaggedBytes | str = None) -> List[VerificationResult]:
        """
        Verify every item signature in a feed.

        Each item is checked against its own author's key, falling back to
        ``public_key`` and then the feed author's key.
        """
        feed_key = public_key if public_key is not None else _author_key(feed)
        results = []
        for index, item in enumerate(feed.get("items") or []):
            if not isinstance(item, dict):
                results.append(VerificationResult(
                    valid=False, code=INVALID_DOCUMENT, reason="Item is not an object",
                    field=f"items.{index}",
                ))
                continue
            key = _author_key(item) or feed_key
            result = self._verify_signature(item, key)
            result.field = f"items.{index}"
            results.append(result)
        return results

    def sign_chain(self, items: List[Dict[str, Any]], key_id: str) -> List[Dict[str, Any]]:
        """
        Sign items as an ordered chain.

        Each copy gets ``_chainIndex`` and, after the first, the
        ``_previousHash`` of its predecessor before it is signed, so
        reordering, removing or editing an earlier item breaks the chain.
        The inputs are not modified.

        Raises:
            KeyNotFoundError: if the family has no active key
            SigningError: if an item is not an object
        """
        active, private_key = self._signing_key(key_id)

        signed_items = []
        previous_hash = None
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise SigningError(f"Chain item {index} is not an object")
            linked = copy.deepcopy(item)
            linked.pop("signature", None)
            linked.pop(PREVIOUS_HASH_FIELD, None)
            if previous_hash is not None:
                linked[PREVIOUS_HASH_FIELD] = previous_hash
            linked[CHAIN_INDEX_FIELD] = index

            linked["signature"] = str(sign_bytes(private_key, signing_payload(linked)))
            previous_hash = chain_hash(linked)
            signed_items.append(linked)

        logger.info(f"Signed chain of {len(signed_items)} items with key {active.key_id}")
        return signed_items

    def verify_chain(self, items: List[Dict[str, Any]], public_key: TaggedBytes | str) -> ChainVerification:
        """Verify every signature in a chain and every link between items."""
        verification = ChainVerification()
        expected_hash = None
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                signature = VerificationResult(
                    valid=False, code=INVALID_DOCUMENT, reason="Item is not an object",
                    field=str(index),
                )
                verification.links.append(ChainLinkResult(index, signature, chain_valid=False,
                                                          reason="Item is not an object"))
                expected_hash = None
                continue

            signature = self._verify_signature(item, public_key)
            signature.field = str(index)
            link = ChainLinkResult(index, signature)

            if item.get(CHAIN_INDEX_FIELD) != index:
                link.chain_valid = False
                link.reason = f"Chain index mismatch: expected {index}, got {item.get(CHAIN_INDEX_FIELD)!r}"
            elif item.get(PREVIOUS_HASH_FIELD) != expected_hash:
                link.chain_valid = False
                link.reason = (
                    f"Chain break: expected {expected_hash}, got {item.get(PREVIOUS_HASH_FIELD)}"
                )

            try:
                expected_hash = chain_hash(item)
            except CanonicalizationError:
                expected_hash = None
            verification.links.append(link)

        if not verification.valid:
            logger.debug(f"Chain verification failed at {verification.breaks()}")
        return verification

    def _verify_signature(self, document: Dict[str, Any], public_key: TaggedBytes | str) -> VerificationResult:
        signature_text = document.get("signature")
        if not signature_text:
            return VerificationResult(valid=False, code=MISSING_SIGNATURE, reason="Document has no signature")
        if not public_key:
            return VerificationResult(valid=False, code=MISSING_PUBLIC_KEY, reason="No public key to verify against")

        try:
            key = public_key if isinstance(public_key, TaggedBytes) else TaggedBytes.parse(public_key)
            signature = TaggedBytes.parse(signature_text)
            payload = signing_payload(document)
            valid = verify_bytes(key, signature, payload)
        except InvalidKeyFormatError as e:
            return VerificationResult(valid=False, code=INVALID_KEY_FORMAT, reason=str(e))
        except CanonicalizationError as e:
            return VerificationResult(valid=False, code=INVALID_DOCUMENT, reason=str(e))

        if not valid:
            logger.debug("Signature mismatch")
            return VerificationResult(
                valid=False, code=SIGNATURE_MISMATCH,
                reason="Signature does not match document content",
                key_algorithm=key.algorithm,
            )
        return VerificationResult(valid=True, code=VALID, key_algorithm=key.algorithm)
