# tests/test_keystore.py
"""Tests for encrypted key storage."""

import json
import os
import stat

import pytest

from ansybl.keys import InvalidKeyFormatError, generate_key_pair
from ansybl.keystore import (
    EncryptedBlob,
    FileKeyStore,
    IntegrityError,
    KeyPair,
    KeyStatus,
    KeyStoreError,
    MemoryKeyStore,
    open_key_store,
)
from ansybl.keystore.crypto import KeyCipher, new_salt

from conftest import TEST_KDF_N, TEST_SECRET


def make_pair(key_id: str = "alice", **kwargs) -> KeyPair:
    private_key, public_key = generate_key_pair()
    return KeyPair(key_id=key_id, public_key=public_key, private_key=private_key, **kwargs)


@pytest.fixture(params=["memory", "file"])
def store(request, memory_store, file_store):
    """Run each test against both backends."""
    return memory_store if request.param == "memory" else file_store


class TestKeyCipher:
    """Test the AES-GCM wrapper."""

    def test_round_trip(self):
        cipher = KeyCipher.from_secret("s", new_salt(), n=TEST_KDF_N)
        blob = cipher.encrypt({"a": 1})
        assert len(blob.iv) == 16
        assert len(blob.auth_tag) == 16
        assert cipher.decrypt(blob) == {"a": 1}

    def test_fresh_iv_per_call(self):
        cipher = KeyCipher.from_secret("s", new_salt(), n=TEST_KDF_N)
        first = cipher.encrypt({"a": 1})
        second = cipher.encrypt({"a": 1})
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_wrong_key(self):
        salt = new_salt()
        blob = KeyCipher.from_secret("s", salt, n=TEST_KDF_N).encrypt({"a": 1})
        with pytest.raises(IntegrityError):
            KeyCipher.from_secret("other", salt, n=TEST_KDF_N).decrypt(blob)

    def test_tampered_ciphertext(self):
        cipher = KeyCipher.from_secret("s", new_salt(), n=TEST_KDF_N)
        blob = cipher.encrypt({"a": 1})
        blob.ciphertext = bytes([blob.ciphertext[0] ^ 1]) + blob.ciphertext[1:]
        with pytest.raises(IntegrityError):
            cipher.decrypt(blob)

    def test_blob_dict_round_trip(self):
        blob = EncryptedBlob(ciphertext=b"c", iv=b"i" * 16, auth_tag=b"t" * 16, salt=b"s" * 16)
        data = blob.to_dict()
        assert set(data) == {"encrypted", "iv", "authTag", "salt"}
        assert EncryptedBlob.from_dict(data) == blob


class TestKeyStore:
    """Behaviour shared by every backend."""

    def test_store_and_load(self, store):
        pair = make_pair()
        store.store("alice", pair)

        loaded = store.load("alice")
        assert loaded.key_id == "alice"
        assert loaded.public_key == pair.public_key
        assert loaded.private_key == pair.private_key
        assert loaded.version == pair.version
        assert loaded.status == KeyStatus.ACTIVE
        assert loaded.created_at == pair.created_at

    def test_store_stamps_metadata(self, store):
        store.store("alice", make_pair(metadata={"purpose": "signing"}), metadata={"note": "x"})
        metadata = store.load("alice").metadata
        assert metadata["purpose"] == "signing"
        assert metadata["note"] == "x"
        assert metadata["algorithm"] == "ed25519"
        assert "storedAt" in metadata

    def test_store_does_not_mutate_pair(self, store):
        pair = make_pair()
        store.store("alice", pair, metadata={"note": "x"})
        assert pair.metadata == {}

    def test_load_missing_returns_none(self, store):
        assert store.load("nobody") is None

    def test_exists(self, store):
        assert not store.exists("alice")
        store.store("alice", make_pair())
        assert store.exists("alice")

    def test_invalid_key_id(self, store):
        with pytest.raises(KeyStoreError):
            store.store("../escape", make_pair())

    def test_list_sorted(self, store):
        for key_id in ("carol", "alice", "bob"):
            store.store(key_id, make_pair(key_id))
        assert store.list() == ["alice", "bob", "carol"]

    def test_delete_archives(self, store):
        store.store("alice", make_pair())
        result = store.delete("alice")

        assert result.deleted
        assert result.archived
        assert result.archive_error is None
        assert store.load("alice") is None
        archived = store.list_archive("alice")
        assert len(archived) == 1
        assert archived[0].startswith("alice_")

    def test_delete_missing(self, store):
        result = store.delete("nobody")
        assert not result.deleted
        assert not result.archived

    def test_list_archive_filters_family_members(self, store):
        store.store("alice", make_pair())
        store.store("alice_v2", make_pair("alice_v2"))
        store.delete("alice")
        store.delete("alice_v2")
        assert len(store.list_archive()) == 2
        assert len(store.list_archive("alice")) == 1
        assert len(store.list_archive("alice_v2")) == 1

    def test_backup_and_restore(self, store):
        pairs = {key_id: make_pair(key_id) for key_id in ("alice", "bob")}
        for key_id, pair in pairs.items():
            store.store(key_id, pair)

        blob = store.backup(passphrase="backup-pass")
        assert blob.salt is not None

        target = MemoryKeyStore(secret="different", kdf_n=TEST_KDF_N)
        report = target.restore(blob, passphrase="backup-pass")

        assert report.restored == 2
        assert report.skipped == 0
        assert report.total == 2
        for key_id, pair in pairs.items():
            assert target.load(key_id).private_key == pair.private_key

    def test_restore_wrong_passphrase(self, store):
        store.store("alice", make_pair())
        blob = store.backup(passphrase="right")
        with pytest.raises(IntegrityError):
            store.restore(blob, passphrase="wrong")

    def test_restore_counts_skipped(self, store):
        good = make_pair("alice").to_dict()
        bad = dict(make_pair("bob").to_dict(), privateKey="rsa:AAAA")
        salt = new_salt()
        blob = KeyCipher.from_secret("pass", salt).encrypt(
            {"version": "1.0", "exported": "2025-01-01T00:00:00Z", "keys": [good, bad, {"nope": 1}]}
        )
        blob.salt = salt

        report = store.restore(blob, passphrase="pass")
        assert report.restored == 1
        assert report.skipped == 2
        assert report.total == 3
        assert store.list() == ["alice"]

    def test_malformed_record_fields(self, store):
        store.store("alice", make_pair())
        for key_id, overrides in (("bob", {"status": "bogus"}), ("carol", {"version": "two"})):
            record = dict(make_pair(key_id).to_dict(), **overrides)
            store._write(key_id, store._seal(record))
            with pytest.raises(IntegrityError):
                store.load(key_id)

        assert store.list() == ["alice"]

    def test_rekey(self, store):
        pair = make_pair()
        store.store("alice", pair)
        assert store.rekey("new-secret") == 1
        assert store.load("alice").private_key == pair.private_key


class TestMemoryKeyStore:
    """Test in-memory specifics."""

    def test_ephemeral_secret(self, monkeypatch):
        monkeypatch.delenv("ANSYBL_KEY_SECRET", raising=False)
        store = MemoryKeyStore(kdf_n=TEST_KDF_N)
        store.store("alice", make_pair())
        assert store.load("alice") is not None


class TestFileKeyStore:
    """Test file-backed specifics."""

    def test_requires_secret(self, temp_dir, monkeypatch):
        monkeypatch.delenv("ANSYBL_KEY_SECRET", raising=False)
        with pytest.raises(KeyStoreError, match="ANSYBL_KEY_SECRET"):
            FileKeyStore(temp_dir / "keys", kdf_n=TEST_KDF_N)

    def test_secret_from_env(self, temp_dir, monkeypatch):
        monkeypatch.setenv("ANSYBL_KEY_SECRET", TEST_SECRET)
        store = FileKeyStore(temp_dir / "keys", kdf_n=TEST_KDF_N)
        store.store("alice", make_pair())
        assert store.load("alice") is not None

    def test_permissions(self, file_store):
        file_store.store("alice", make_pair())
        key_file = file_store.key_dir / "alice.key"
        assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(file_store.key_dir).st_mode) == 0o700

    def test_file_format(self, file_store):
        file_store.store("alice", make_pair())
        data = json.loads((file_store.key_dir / "alice.key").read_text())
        assert set(data) == {"encrypted", "iv", "authTag"}
        assert len(bytes.fromhex(data["iv"])) == 16
        assert "privateKey" not in (file_store.key_dir / "alice.key").read_text()

    def test_no_temp_files_left(self, file_store):
        file_store.store("alice", make_pair())
        leftovers = [p for p in file_store.key_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_salt_persists_across_instances(self, temp_dir):
        first = FileKeyStore(temp_dir / "keys", secret=TEST_SECRET, kdf_n=TEST_KDF_N)
        pair = make_pair()
        first.store("alice", pair)

        second = FileKeyStore(temp_dir / "keys", secret=TEST_SECRET, kdf_n=TEST_KDF_N)
        assert second.load("alice").private_key == pair.private_key
        assert (temp_dir / "keys" / "installation.json").exists()

    def test_wrong_secret_raises(self, temp_dir):
        FileKeyStore(temp_dir / "keys", secret=TEST_SECRET, kdf_n=TEST_KDF_N).store("alice", make_pair())
        other = FileKeyStore(temp_dir / "keys", secret="wrong", kdf_n=TEST_KDF_N)
        with pytest.raises(IntegrityError):
            other.load("alice")

    def test_tampered_file_raises(self, file_store):
        file_store.store("alice", make_pair())
        key_file = file_store.key_dir / "alice.key"
        data = json.loads(key_file.read_text())
        data["authTag"] = "00" * 16
        key_file.write_text(json.dumps(data))
        with pytest.raises(IntegrityError):
            file_store.load("alice")

    def test_corrupt_json_raises(self, file_store):
        (file_store.key_dir / "alice.key").write_text("{not json")
        with pytest.raises(IntegrityError):
            file_store.load("alice")

    def test_list_skips_undecryptable(self, file_store):
        file_store.store("alice", make_pair())
        file_store.store("bob", make_pair("bob"))
        (file_store.key_dir / "bob.key").write_text("{not json")
        assert file_store.list() == ["alice"]

    def test_archive_failure_still_deletes(self, file_store, monkeypatch):
        file_store.store("alice", make_pair())

        def fail(name, raw):
            raise OSError("disk full")

        monkeypatch.setattr(file_store, "_archive", fail)
        result = file_store.delete("alice")
        assert result.deleted
        assert not result.archived
        assert "disk full" in result.archive_error
        assert not file_store.exists("alice")

    def test_open_key_store(self, temp_dir):
        config = {"keystore": {"provider": "file", "path": str(temp_dir / "k"), "kdf_n": TEST_KDF_N}}
        store = open_key_store(config, secret=TEST_SECRET)
        assert isinstance(store, FileKeyStore)

        config["keystore"]["provider"] = "memory"
        assert isinstance(open_key_store(config, secret=TEST_SECRET), MemoryKeyStore)

        config["keystore"]["provider"] = "s3"
        with pytest.raises(KeyStoreError):
            open_key_store(config, secret=TEST_SECRET)

    def test_mistagged_record_raises_format_error(self, file_store):
        record = make_pair().to_dict()
        record["privateKey"] = "rsa:AAAA"
        file_store._write("alice", file_store._seal(record))
        with pytest.raises(InvalidKeyFormatError):
            file_store.load("alice")
