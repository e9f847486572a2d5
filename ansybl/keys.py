# ansybl/keys.py
"""
Tagged key material and Ed25519 primitives.

Keys and signatures travel as ``<algorithm>:<base64>`` strings. They are
parsed once at the boundary into ``TaggedBytes`` so the rest of the code
never slices prefixes or re-checks lengths by hand.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

ED25519 = "ed25519"

# Fixed sizes per algorithm and kind of material
KEY_SIZES = {
    ED25519: {"public": 32, "private": 32, "signature": 64},
}

SUPPORTED_ALGORITHMS = tuple(KEY_SIZES)

TAGGED_RE = re.compile(r"^([a-z0-9][a-z0-9-]*):([A-Za-z0-9+/]+={0,2})$")


class InvalidKeyFormatError(ValueError):
    """Raised for mis-tagged, badly encoded or wrongly sized key material."""
    pass


@dataclass(frozen=True)
class TaggedBytes:
    """
    Algorithm-tagged raw bytes (public key, private key or signature).

    Attributes:
        algorithm: Algorithm tag, e.g. "ed25519"
        data: Raw bytes
    """
    algorithm: str
    data: bytes

    @classmethod
    def parse(cls, text: str, kind: str = None) -> "TaggedBytes":
        """
        Parse ``<algorithm>:<base64>``.

        Args:
            text: Tagged string
            kind: "public", "private" or "signature" to also enforce the
                algorithm's fixed size

        Raises:
            InvalidKeyFormatError: on any format, tag or length problem
        """
        if not isinstance(text, str) or not text:
            raise InvalidKeyFormatError("Key must be a non-empty string")

        match = TAGGED_RE.match(text)
        if not match:
            raise InvalidKeyFormatError(
                f'Key must be in format "{ED25519}:<base64>"'
            )

        algorithm, encoded = match.groups()
        if algorithm not in KEY_SIZES:
            raise InvalidKeyFormatError(f"Unsupported algorithm: {algorithm}")

        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidKeyFormatError("Invalid base64 encoding")

        tagged = cls(algorithm=algorithm, data=data)
        if kind is not None:
            tagged.check_length(kind)
        return tagged

    def expected_length(self, kind: str) -> int:
        return KEY_SIZES[self.algorithm][kind]

    def check_length(self, kind: str) -> "TaggedBytes":
        """Raise InvalidKeyFormatError unless the data has the fixed size for ``kind``."""
        expected = self.expected_length(kind)
        if len(self.data) != expected:
            label = "signature" if kind == "signature" else f"{kind} key"
            raise InvalidKeyFormatError(
                f"Invalid {label} length. Expected {expected} bytes, got {len(self.data)}"
            )
        return self

    def __str__(self) -> str:
        return f"{self.algorithm}:{base64.b64encode(self.data).decode('ascii')}"

    def __repr__(self) -> str:
        # Never echo raw bytes: this type also carries private keys
        return f"TaggedBytes(algorithm={self.algorithm!r}, length={len(self.data)})"


def generate_key_pair() -> Tuple[TaggedBytes, TaggedBytes]:
    """
    Generate an Ed25519 key pair.

    Returns:
        (private_key, public_key), both 32 raw bytes
    """
    private_key = Ed25519PrivateKey.generate()
    return (
        TaggedBytes(ED25519, private_key.private_bytes_raw()),
        TaggedBytes(ED25519, private_key.public_key().public_bytes_raw()),
    )


def derive_public_key(private_key: TaggedBytes) -> TaggedBytes:
    """Public key belonging to a private key."""
    private_key.check_length("private")
    sk = Ed25519PrivateKey.from_private_bytes(private_key.data)
    return TaggedBytes(private_key.algorithm, sk.public_key().public_bytes_raw())


def sign_bytes(private_key: TaggedBytes, data: bytes) -> TaggedBytes:
    """Sign raw bytes, returning a tagged signature."""
    private_key.check_length("private")
    sk = Ed25519PrivateKey.from_private_bytes(private_key.data)
    return TaggedBytes(private_key.algorithm, sk.sign(data))


def verify_bytes(public_key: TaggedBytes, signature: TaggedBytes, data: bytes) -> bool:
    """
    Check a signature over raw bytes.

    Format problems (algorithm mismatch, wrong sizes) raise
    InvalidKeyFormatError so callers can tell a malformed key from a
    wrong signature. A well-formed but wrong signature returns False.
    """
    public_key.check_length("public")
    signature.check_length("signature")
    if public_key.algorithm != signature.algorithm:
        raise InvalidKeyFormatError(
            f"Signature algorithm {signature.algorithm} does not match key algorithm {public_key.algorithm}"
        )

    try:
        pk = Ed25519PublicKey.from_public_bytes(public_key.data)
    except ValueError as e:
        raise InvalidKeyFormatError(f"Invalid public key: {e}")

    try:
        pk.verify(signature.data, data)
        return True
    except InvalidSignature:
        return False
