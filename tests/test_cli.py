# tests/test_cli.py
"""Tests for the ansybl command line."""

import json

import pytest

from ansybl.cli import main

from conftest import TEST_KDF_N, TEST_SECRET, make_feed


@pytest.fixture
def cli(temp_dir, monkeypatch, capsys):
    """Run main() against a throwaway key store; returns (exit code, stdout, stderr)."""
    for var in ("ANSYBL_KEY_DIR", "ANSYBL_KEYSTORE_PROVIDER", "ANSYBL_LOG_LEVEL", "ANSYBL_CACHE_TTL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("ANSYBL_KEY_SECRET", TEST_SECRET)

    config_path = temp_dir / "config.yaml"
    config_path.write_text(
        f"keystore:\n  path: {temp_dir / 'keys'}\n  kdf_n: {TEST_KDF_N}\n"
        "logging:\n  level: WARNING\n"
    )

    def run(*argv):
        code = main(["--config", str(config_path), *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return run


def public_key_from(output: str) -> str:
    for line in output.splitlines():
        if line.startswith("Public key: "):
            return line[len("Public key: "):]
    raise AssertionError(f"no public key in {output!r}")


def write_json(path, data):
    path.write_text(json.dumps(data))
    return str(path)


class TestKeyCommands:
    """Test key management commands."""

    def test_keygen_and_list(self, cli):
        code, out, _ = cli("keygen", "alice")
        assert code == 0
        assert "Created key: alice" in out

        code, out, _ = cli("keys")
        assert code == 0
        assert "alice" in out

    def test_keygen_duplicate(self, cli):
        cli("keygen", "alice")
        code, _, err = cli("keygen", "alice")
        assert code == 1
        assert "already exists" in err

    def test_keys_json_has_no_private_key(self, cli):
        cli("keygen", "alice")
        code, out, _ = cli("keys", "--json")
        listed = json.loads(out)
        assert listed[0]["keyId"] == "alice"
        assert "privateKey" not in out

    def test_rotate_and_history(self, cli):
        cli("keygen", "alice")
        code, out, _ = cli("rotate", "alice", "--reason", "scheduled")
        assert code == 0
        assert "alice -> alice_v2" in out

        code, out, _ = cli("key-info", "alice", "--history")
        history = json.loads(out)
        assert [k["keyId"] for k in history] == ["alice_v2", "alice"]
        assert history[0]["metadata"]["reason"] == "scheduled"

    def test_key_info_missing(self, cli):
        code, _, err = cli("key-info", "nobody")
        assert code == 1
        assert "not found" in err

    def test_check_key(self, cli):
        cli("keygen", "alice")
        code, out, _ = cli("check-key", "alice")
        assert code == 0
        assert out.startswith("OK: alice")

        code, out, _ = cli("check-key", "nobody")
        assert code == 1

    def test_delete_requires_confirmation(self, cli, temp_dir):
        cli("keygen", "alice")
        code, _, _ = cli("delete-key", "alice")
        assert code == 1
        assert (temp_dir / "keys" / "alice.key").exists()

        code, out, _ = cli("delete-key", "alice", "--yes")
        assert code == 0
        assert not (temp_dir / "keys" / "alice.key").exists()
        assert list((temp_dir / "keys" / "archive").glob("alice_*.key"))

    def test_missing_secret(self, cli, monkeypatch):
        monkeypatch.delenv("ANSYBL_KEY_SECRET")
        code, _, err = cli("keys")
        assert code == 1
        assert "ANSYBL_KEY_SECRET" in err


class TestDocumentCommands:
    """Test validate, canonicalize, sign and verify."""

    def test_validate(self, cli, temp_dir):
        path = write_json(temp_dir / "feed.json", make_feed())
        code, out, _ = cli("validate", path)
        assert code == 0
        assert out.startswith("VALID")

    def test_validate_invalid_json_output(self, cli, temp_dir):
        feed = make_feed()
        del feed["version"]
        path = write_json(temp_dir / "feed.json", feed)
        code, out, _ = cli("validate", path, "--json")
        assert code == 1
        result = json.loads(out)
        assert result["errors"][0]["code"] == "MISSING_REQUIRED_FIELD"

    def test_validate_item(self, cli, temp_dir):
        path = write_json(temp_dir / "item.json", make_feed()["items"][0])
        code, _, _ = cli("validate", path, "--item")
        assert code == 0

    def test_canonicalize(self, cli, temp_dir):
        path = temp_dir / "doc.json"
        path.write_text('{"b": 1, "a": [true, null]}')
        code, out, _ = cli("canonicalize", str(path))
        assert code == 0
        assert out.strip() == '{"a":[true,null],"b":1}'

    def test_sign_and_verify(self, cli, temp_dir):
        _, out, _ = cli("keygen", "alice")
        feed = make_feed(public_key_from(out))
        path = write_json(temp_dir / "feed.json", feed)
        signed_path = str(temp_dir / "signed.json")

        code, _, _ = cli("sign", path, "-k", "alice", "--items", "-o", signed_path)
        assert code == 0

        code, out, _ = cli("verify", signed_path, "--items", "--validate")
        assert code == 0
        assert out.startswith("VALID")
        assert "items.1: VALID" in out

        signed = json.loads((temp_dir / "signed.json").read_text())
        signed["title"] = "Tampered"
        tampered = write_json(temp_dir / "tampered.json", signed)
        code, out, _ = cli("verify", tampered)
        assert code == 1
        assert out.startswith("SIGNATURE_MISMATCH")

    def test_sign_and_verify_timestamp(self, cli, temp_dir):
        _, out, _ = cli("keygen", "alice")
        path = write_json(temp_dir / "feed.json", make_feed(public_key_from(out)))
        stamped = str(temp_dir / "stamped.json")
        plain = str(temp_dir / "plain.json")

        assert cli("sign", path, "-k", "alice", "--timestamp", "-o", stamped)[0] == 0
        assert "_timestamp" in json.loads((temp_dir / "stamped.json").read_text())
        code, out, _ = cli("verify", stamped, "--require-timestamp", "--max-skew")
        assert code == 0
        assert out.startswith("VALID")

        assert cli("sign", path, "-k", "alice", "-o", plain)[0] == 0
        code, out, _ = cli("verify", plain, "--require-timestamp")
        assert code == 1
        assert out.startswith("MISSING_TIMESTAMP")

    def test_sign_invalid_document(self, cli, temp_dir):
        _, out, _ = cli("keygen", "alice")
        feed = make_feed(public_key_from(out))
        feed["home_page_url"] = "http://example.com"
        path = write_json(temp_dir / "feed.json", feed)
        code, _, err = cli("sign", path, "-k", "alice")
        assert code == 1
        assert "not a valid document" in err

    def test_sign_with_foreign_author_key(self, cli, temp_dir):
        cli("keygen", "alice")
        path = write_json(temp_dir / "feed.json", make_feed())
        code, _, err = cli("sign", path, "-k", "alice")
        assert code == 1
        assert "active key" in err


class TestBackupCommands:
    """Test backup and restore."""

    def test_backup_and_restore(self, cli, temp_dir, monkeypatch):
        monkeypatch.setenv("BACKUP_PASS", "hunter2")
        cli("keygen", "alice")
        cli("keygen", "bob")
        backup = str(temp_dir / "backup.json")

        code, _, _ = cli("backup", "-o", backup, "--passphrase-env", "BACKUP_PASS")
        assert code == 0
        assert "privateKey" not in (temp_dir / "backup.json").read_text()

        cli("delete-key", "alice", "--yes")
        code, out, _ = cli("restore", backup, "--passphrase-env", "BACKUP_PASS")
        assert code == 0
        assert "Restored 2 of 2 keys" in out

        _, out, _ = cli("keys")
        assert "alice" in out

    def test_restore_wrong_passphrase(self, cli, temp_dir, monkeypatch):
        cli("keygen", "alice")
        backup = str(temp_dir / "backup.json")
        monkeypatch.setenv("BACKUP_PASS", "right")
        cli("backup", "-o", backup, "--passphrase-env", "BACKUP_PASS")

        monkeypatch.setenv("BACKUP_PASS", "wrong")
        code, _, err = cli("restore", backup, "--passphrase-env", "BACKUP_PASS")
        assert code == 1
        assert err.startswith("Error:")

    def test_restore_not_a_backup(self, cli, temp_dir):
        path = write_json(temp_dir / "junk.json", {"hello": "world"})
        code, _, err = cli("restore", path)
        assert code == 1
        assert "not a key backup" in err

    def test_unset_passphrase_env(self, cli, temp_dir, monkeypatch):
        monkeypatch.delenv("NO_SUCH_PASS", raising=False)
        code, _, err = cli("backup", "-o", str(temp_dir / "b.json"), "--passphrase-env", "NO_SUCH_PASS")
        assert code == 1
        assert "NO_SUCH_PASS" in err


class TestMain:
    """Test top-level argument handling."""

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_bad_config(self, temp_dir):
        assert main(["--config", str(temp_dir / "missing.yaml"), "keys"]) == 1
