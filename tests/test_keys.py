# tests/test_keys.py
"""Tests for tagged key material and Ed25519 helpers."""

import base64

import pytest

from ansybl.keys import (
    InvalidKeyFormatError,
    TaggedBytes,
    derive_public_key,
    generate_key_pair,
    sign_bytes,
    verify_bytes,
)


def _tagged(data: bytes, algorithm: str = "ed25519") -> str:
    return f"{algorithm}:{base64.b64encode(data).decode('ascii')}"


class TestTaggedBytes:
    """Test TaggedBytes parsing and rendering."""

    def test_parse_and_render(self):
        text = _tagged(b"\x01" * 32)
        tagged = TaggedBytes.parse(text, kind="public")
        assert tagged.algorithm == "ed25519"
        assert tagged.data == b"\x01" * 32
        assert str(tagged) == text

    def test_missing_prefix(self):
        with pytest.raises(InvalidKeyFormatError, match="format"):
            TaggedBytes.parse(base64.b64encode(b"x" * 32).decode())

    def test_unsupported_algorithm(self):
        with pytest.raises(InvalidKeyFormatError, match="Unsupported algorithm"):
            TaggedBytes.parse(_tagged(b"x" * 32, algorithm="rsa"))

    def test_bad_base64_padding(self):
        with pytest.raises(InvalidKeyFormatError, match="base64"):
            TaggedBytes.parse("ed25519:abc")

    def test_empty_and_non_string(self):
        with pytest.raises(InvalidKeyFormatError):
            TaggedBytes.parse("")
        with pytest.raises(InvalidKeyFormatError):
            TaggedBytes.parse(None)

    def test_wrong_length(self):
        with pytest.raises(InvalidKeyFormatError, match="Expected 32 bytes, got 31"):
            TaggedBytes.parse(_tagged(b"x" * 31), kind="public")

    def test_signature_length(self):
        TaggedBytes.parse(_tagged(b"s" * 64), kind="signature")
        with pytest.raises(InvalidKeyFormatError, match="signature length"):
            TaggedBytes.parse(_tagged(b"s" * 32), kind="signature")

    def test_repr_hides_bytes(self):
        tagged = TaggedBytes("ed25519", b"secret-bytes-here")
        assert "secret" not in repr(tagged)


class TestEd25519:
    """Test key generation, signing and verification."""

    def test_generate_sizes(self):
        private_key, public_key = generate_key_pair()
        assert len(private_key.data) == 32
        assert len(public_key.data) == 32
        assert derive_public_key(private_key) == public_key

    def test_sign_and_verify(self):
        private_key, public_key = generate_key_pair()
        signature = sign_bytes(private_key, b"payload")
        assert len(signature.data) == 64
        assert verify_bytes(public_key, signature, b"payload")

    def test_wrong_payload(self):
        private_key, public_key = generate_key_pair()
        signature = sign_bytes(private_key, b"payload")
        assert not verify_bytes(public_key, signature, b"payloaD")

    def test_wrong_key(self):
        private_key, _ = generate_key_pair()
        _, other_public = generate_key_pair()
        signature = sign_bytes(private_key, b"payload")
        assert not verify_bytes(other_public, signature, b"payload")

    def test_short_key_is_format_error(self):
        private_key, _ = generate_key_pair()
        signature = sign_bytes(private_key, b"payload")
        with pytest.raises(InvalidKeyFormatError):
            verify_bytes(TaggedBytes("ed25519", b"x" * 31), signature, b"payload")
