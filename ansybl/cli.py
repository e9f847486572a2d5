#!/usr/bin/env python3
"""
Ansybl CLI

Key management, validation, signing and verification of Ansybl documents:
  ansybl keygen <key-id>          - Create a signing key
  ansybl rotate <key-id>          - Rotate a key family to a new version
  ansybl keys                     - List stored keys
  ansybl validate <file>          - Validate a feed or item
  ansybl sign <file> --key <id>   - Sign a document
  ansybl verify <file>            - Verify a signed document
  ansybl backup -o <file>         - Export all keys, encrypted

The key store secret is read from ANSYBL_KEY_SECRET.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .cache import KeyCache
from .canonical import check_consistency, serialize
from .config import ConfigError, load_config
from .keystore import EncryptedBlob, KeyStoreError, open_key_store
from .manager import KeyManagementError, KeyManager
from .signing import DEFAULT_MAX_SKEW_SECONDS, InvalidDocumentError, SigningError, SigningPipeline
from .validation import DocumentValidator, is_feed


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _read_json(path: str) -> Any:
    return json.loads(_read_text(path))


def _write_json(data: Any, output: Optional[str]):
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        print(f"Saved to: {output}")
    else:
        print(text)


def _passphrase(args) -> Optional[str]:
    if not getattr(args, "passphrase_env", None):
        return None
    value = os.environ.get(args.passphrase_env)
    if not value:
        raise ConfigError(f"Environment variable {args.passphrase_env} is not set")
    return value


def _manager(config: Dict[str, Any]) -> KeyManager:
    store = open_key_store(config)
    return KeyManager(store, cache=KeyCache(ttl_seconds=config["cache"]["ttl_seconds"]))


def _print_issues(label: str, issues) -> None:
    for issue in issues:
        print(f"  [{label}] {issue.field}: {issue.code} - {issue.message}")
        for suggestion in issue.suggestions:
            print(f"      -> {suggestion}")


def cmd_keygen(args, config):
    """Create a key pair."""
    manager = _manager(config)
    metadata = {"purpose": args.purpose} if args.purpose else None
    info = manager.create_key_pair(args.key_id, metadata=metadata)
    print(f"Created key: {info.key_id} (version {info.version})")
    print(f"Public key: {info.public_key}")
    return 0


def cmd_rotate(args, config):
    """Rotate a key family."""
    manager = _manager(config)
    metadata = {"reason": args.reason} if args.reason else None
    info = manager.rotate_key(args.key_id, metadata=metadata)
    print(f"Rotated: {info.previous_key_id} -> {info.key_id} (version {info.version})")
    print(f"Public key: {info.public_key}")
    return 0


def cmd_keys(args, config):
    """List stored keys."""
    manager = _manager(config)
    pairs = manager.list_key_pairs()
    if args.json:
        _write_json([p.to_dict() for p in pairs], None)
        return 0

    if not pairs:
        print("No keys stored")
        return 0
    for pair in pairs:
        print(f"{pair.key_id:<24} v{pair.version:<3} {pair.status.value:<10} {pair.public_key}")
    return 0


def cmd_key_info(args, config):
    """Show a key's public details, or its whole rotation history."""
    manager = _manager(config)
    if args.history:
        history = manager.get_key_history(args.key_id)
        if not history:
            print(f"Error: key not found: {args.key_id}", file=sys.stderr)
            return 1
        _write_json([p.to_dict() for p in history], None)
        return 0

    info = manager.get_key_pair(args.key_id)
    if info is None:
        print(f"Error: key not found: {args.key_id}", file=sys.stderr)
        return 1
    _write_json(info.to_dict(), None)
    return 0


def cmd_check_key(args, config):
    """Structural integrity check of a stored key."""
    manager = _manager(config)
    check = manager.validate_key(args.key_id)
    if check.valid:
        print(f"OK: {check.key_id} (version {check.version}, {check.status}, {check.algorithm})")
        return 0
    print(f"INVALID: {check.key_id}: {check.reason}")
    return 1


def cmd_delete_key(args, config):
    """Archive and delete a key."""
    if not args.yes:
        print("Refusing to delete without --yes", file=sys.stderr)
        return 1
    manager = _manager(config)
    if manager.delete_key_pair(args.key_id):
        print(f"Deleted key: {args.key_id}")
        return 0
    print(f"Error: key not found: {args.key_id}", file=sys.stderr)
    return 1


def cmd_validate(args, config):
    """Validate a feed or item document."""
    text = _read_text(args.file)
    validator = DocumentValidator()
    result = validator.validate_item(text) if args.item else validator.validate(text)

    if args.json:
        _write_json(result.to_dict(), None)
    else:
        status = "VALID" if result.valid else "INVALID"
        print(f"{status}: {args.file} ({len(result.errors)} errors, {len(result.warnings)} warnings)")
        _print_issues("ERROR", result.errors)
        if not args.quiet:
            _print_issues("WARN", result.warnings)
    return 0 if result.valid else 1


def cmd_canonicalize(args, config):
    """Print the canonical form of a JSON document."""
    text = _read_text(args.file)
    if args.check:
        report = check_consistency(text)
        _write_json(report, None)
        return 0 if report["consistent"] else 1

    canonical = serialize(json.loads(text))
    if args.output:
        Path(args.output).write_text(canonical, encoding="utf-8")
        print(f"Saved to: {args.output}")
    else:
        print(canonical)
    return 0


def cmd_sign(args, config):
    """Sign a document with the active key of a family."""
    manager = _manager(config)
    pipeline = SigningPipeline(manager)
    document = _read_json(args.file)
    if not isinstance(document, dict):
        print(f"Error: {args.file} is not a JSON object", file=sys.stderr)
        return 1
    try:
        signed = pipeline.sign(document, args.key, sign_items=args.items, timestamp=args.timestamp)
    except InvalidDocumentError as e:
        print(f"Error: {args.file} is not a valid document", file=sys.stderr)
        _print_issues("ERROR", e.result.errors)
        return 1

    _write_json(signed, args.output)
    return 0


def cmd_verify(args, config):
    """Verify a signed document."""
    pipeline = SigningPipeline()
    document = _read_json(args.file)
    if not isinstance(document, dict):
        print(f"Error: {args.file} is not a JSON object", file=sys.stderr)
        return 1

    result = pipeline.verify(
        document, public_key=args.public_key, validate=args.validate,
        require_timestamp=args.require_timestamp, max_skew_seconds=args.max_skew,
    )
    print(f"{result.code}: {args.file}" + (f" ({result.reason})" if result.reason else ""))
    if result.validation is not None and not result.validation.valid:
        _print_issues("ERROR", result.validation.errors)

    ok = result.valid
    if args.items and is_feed(document):
        for item_result in pipeline.verify_items(document, public_key=args.public_key):
            reason = f" ({item_result.reason})" if item_result.reason else ""
            print(f"  {item_result.field}: {item_result.code}{reason}")
            ok = ok and item_result.valid
    return 0 if ok else 1


def cmd_backup(args, config):
    """Export every key into one encrypted file."""
    store = open_key_store(config)
    blob = store.backup(passphrase=_passphrase(args))
    _write_json(blob.to_dict(), args.output)
    return 0


def cmd_restore(args, config):
    """Restore keys from a backup file."""
    store = open_key_store(config)
    try:
        blob = EncryptedBlob.from_dict(_read_json(args.file))
    except (KeyError, TypeError, AttributeError) as e:
        print(f"Error: {args.file} is not a key backup ({e})", file=sys.stderr)
        return 1
    report = store.restore(blob, passphrase=_passphrase(args))
    print(f"Restored {report.restored} of {report.total} keys ({report.skipped} skipped)")
    return 0 if report.skipped == 0 else 1


COMMANDS = {
    "keygen": cmd_keygen,
    "rotate": cmd_rotate,
    "keys": cmd_keys,
    "key-info": cmd_key_info,
    "check-key": cmd_check_key,
    "delete-key": cmd_delete_key,
    "validate": cmd_validate,
    "canonicalize": cmd_canonicalize,
    "sign": cmd_sign,
    "verify": cmd_verify,
    "backup": cmd_backup,
    "restore": cmd_restore,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ansybl",
        description="Ansybl - Verifiable content syndication documents",
    )
    parser.add_argument("--config", help="Config YAML file (default: ~/.ansybl/config.yaml)")
    parser.add_argument("--log-level", help="Override logging level")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # key commands
    keygen_parser = subparsers.add_parser("keygen", help="Create a signing key")
    keygen_parser.add_argument("key_id", help="Key id (family root)")
    keygen_parser.add_argument("--purpose", help="Purpose recorded in key metadata")

    rotate_parser = subparsers.add_parser("rotate", help="Rotate a key family")
    rotate_parser.add_argument("key_id", help="Key id (any member of the family)")
    rotate_parser.add_argument("--reason", help="Rotation reason recorded in metadata")

    keys_parser = subparsers.add_parser("keys", help="List stored keys")
    keys_parser.add_argument("--json", action="store_true", help="Output JSON")

    info_parser = subparsers.add_parser("key-info", help="Show public key details")
    info_parser.add_argument("key_id", help="Key id")
    info_parser.add_argument("--history", action="store_true", help="Show the whole rotation history")

    check_parser = subparsers.add_parser("check-key", help="Check a stored key's integrity")
    check_parser.add_argument("key_id", help="Key id")

    delete_parser = subparsers.add_parser("delete-key", help="Archive and delete a key")
    delete_parser.add_argument("key_id", help="Key id")
    delete_parser.add_argument("--yes", action="store_true", help="Confirm deletion")

    # document commands
    validate_parser = subparsers.add_parser("validate", help="Validate a document")
    validate_parser.add_argument("file", help="Document JSON file")
    validate_parser.add_argument("--item", action="store_true", help="Validate as a standalone item")
    validate_parser.add_argument("--json", action="store_true", help="Output JSON")
    validate_parser.add_argument("-q", "--quiet", action="store_true", help="Hide warnings")

    canon_parser = subparsers.add_parser("canonicalize", help="Print canonical JSON")
    canon_parser.add_argument("file", help="JSON file")
    canon_parser.add_argument("--check", action="store_true", help="Report canonicalization consistency")
    canon_parser.add_argument("-o", "--output", help="Output file")

    sign_parser = subparsers.add_parser("sign", help="Sign a document")
    sign_parser.add_argument("file", help="Document JSON file")
    sign_parser.add_argument("-k", "--key", required=True, help="Key id (family root)")
    sign_parser.add_argument("--items", action="store_true", help="Also sign each item")
    sign_parser.add_argument("--timestamp", action="store_true", help="Stamp the signing time into _timestamp")
    sign_parser.add_argument("-o", "--output", help="Output file (default: stdout)")

    verify_parser = subparsers.add_parser("verify", help="Verify a signed document")
    verify_parser.add_argument("file", help="Signed document JSON file")
    verify_parser.add_argument("--public-key", help="Verify against this key instead of author.public_key")
    verify_parser.add_argument("--validate", action="store_true", help="Validate before verifying")
    verify_parser.add_argument("--items", action="store_true", help="Also verify item signatures")
    verify_parser.add_argument("--require-timestamp", action="store_true", help="Reject documents without _timestamp")
    verify_parser.add_argument(
        "--max-skew", type=float, nargs="?", const=DEFAULT_MAX_SKEW_SECONDS, metavar="SECONDS",
        help=f"Reject a _timestamp further than SECONDS from now (default {DEFAULT_MAX_SKEW_SECONDS})",
    )

    # backup commands
    backup_parser = subparsers.add_parser("backup", help="Export all keys, encrypted")
    backup_parser.add_argument("-o", "--output", required=True, help="Backup file")
    backup_parser.add_argument("--passphrase-env", help="Env var holding the backup passphrase")

    restore_parser = subparsers.add_parser("restore", help="Restore keys from a backup")
    restore_parser.add_argument("file", help="Backup file")
    restore_parser.add_argument("--passphrase-env", help="Env var holding the backup passphrase")

    return parser


def main(argv: List[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    level = (args.log_level or config["logging"]["level"]).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        return COMMANDS[args.command](args, config)
    except (KeyManagementError, KeyStoreError, SigningError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
