# ansybl/validation/validator.py
"""
Structural validation of Ansybl feeds and items.

The validator never raises for bad input and never mutates it: every
problem becomes a ValidationIssue with a stable code, a dot path
("items.0.url"), a message and at least one suggestion.
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from ..keys import KEY_SIZES, TAGGED_RE, InvalidKeyFormatError, TaggedBytes
from .rules import FEED, ITEM, OBJECT_RULES, FieldRule, ObjectRules

VERSION_RE = re.compile(r"^https://ansybl\.org/version/(\d+)\.(\d+)$")
LANGUAGE_RE = re.compile(r"^[a-z]{2,3}(-[A-Z]{2})?$")
MIME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9!#$&\-\^_.+]*/[a-zA-Z0-9][a-zA-Z0-9!#$&\-\^_.+]*$")
DATE_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|[+-](\d{2}):(\d{2}))$"
)
UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")

SUPPORTED_MAJOR_VERSION = 1

_TYPE_LABELS = {
    "object": "an object",
    "array": "an array",
    "integer": "an integer",
    "number": "a number",
}


@dataclass
class ValidationIssue:
    """One error or warning."""
    code: str
    field: str
    message: str
    suggestions: List[str]
    severity: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "field": self.field,
            "message": self.message,
            "suggestions": list(self.suggestions),
            "severity": self.severity,
        }


@dataclass
class ValidationResult:
    """Complete outcome of validating one document."""
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def warning_codes(self) -> List[str]:
        return [w.code for w in self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "metadata": dict(self.metadata),
        }


def is_feed(document: Dict[str, Any]) -> bool:
    """Whether a document is shaped like a feed rather than a single item."""
    return "items" in document or "feed_url" in document


def _join(prefix: str, name: Any) -> str:
    return f"{prefix}.{name}" if prefix else str(name)


def _present(obj: Dict[str, Any], name: str) -> bool:
    return obj.get(name) is not None


def _has_extensions(value: Any, seen: set = None) -> bool:
    if not isinstance(value, (dict, list)):
        return False
    seen = set() if seen is None else seen
    if id(value) in seen:
        return False
    seen.add(id(value))
    if isinstance(value, dict):
        return any(
            (isinstance(k, str) and k.startswith("_")) or _has_extensions(v, seen)
            for k, v in value.items()
        )
    return any(_has_extensions(v, seen) for v in value)


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse a strict ISO 8601 date-time with timezone, or None."""
    match = DATE_RE.match(value)
    if not match:
        return None
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    try:
        datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None

    offset = match.group(8)
    if offset != "Z" and (int(match.group(9)) > 23 or int(match.group(10)) > 59):
        return None

    # Older fromisoformat only takes exactly 3 or 6 fractional digits
    digits = (match.group(7) or ".")[1:]
    fraction = f".{digits[:6].ljust(6, '0')}" if digits else ""
    normalized = f"{value[:19]}{fraction}{'+00:00' if offset == 'Z' else offset}"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


class _Walk:
    """Collects issues for one validation run."""

    def __init__(self):
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def error(self, code: str, path: str, message: str, *suggestions: str):
        self.errors.append(ValidationIssue(code, path, message, list(suggestions)))

    def warn(self, code: str, path: str, message: str, *suggestions: str):
        self.warnings.append(ValidationIssue(code, path, message, list(suggestions), severity="warning"))

    # Step 2: type, pattern, format, minimum

    def check_value(self, rule: FieldRule, value: Any, path: str) -> bool:
        """Check type and format of a value. Returns False if its type is wrong."""
        kind = rule.kind

        if kind == "object":
            if not isinstance(value, dict):
                return self._wrong_type(rule, value, path)
            return True
        if kind == "array":
            if not isinstance(value, list):
                return self._wrong_type(rule, value, path)
            return True
        if kind in ("integer", "number"):
            numeric = (int,) if kind == "integer" else (int, float)
            if isinstance(value, bool) or not isinstance(value, numeric):
                return self._wrong_type(rule, value, path)
            if rule.minimum is not None and value < rule.minimum:
                self.error(
                    "TOO_SMALL", path,
                    f"Field '{path}' must be at least {rule.minimum}",
                    f"Use a value of {rule.minimum} or more",
                )
            return True

        if not isinstance(value, str):
            return self._wrong_type(rule, value, path)

        checker = getattr(self, f"_check_{kind}", None)
        if checker is not None:
            checker(rule, value, path)
        return True

    def _wrong_type(self, rule: FieldRule, value: Any, path: str) -> bool:
        expected = _TYPE_LABELS.get(rule.kind, "a string")
        self.error(
            "INVALID_TYPE", path,
            f"Field '{path}' must be {expected}, got {type(value).__name__}",
            f"Change '{path}' to {expected}",
        )
        return False

    def _check_url(self, rule: FieldRule, value: str, path: str):
        try:
            parts = urlsplit(value)
        except ValueError:
            parts = None
        if parts is None or not parts.scheme or not parts.netloc or " " in value:
            self.error(
                "INVALID_FORMAT", path,
                f"Field '{path}' must be a valid absolute URL",
                "Ensure URL starts with https://", "Check for typos in the URL",
            )
        elif parts.scheme.lower() != "https":
            self.error(
                "INVALID_PATTERN", path,
                f"Field '{path}' must be an HTTPS URL (got {parts.scheme}://)",
                "Use HTTPS URLs only", "Example: https://example.com/path",
            )

    def _check_version(self, rule: FieldRule, value: str, path: str):
        if not VERSION_RE.match(value):
            self.error(
                "INVALID_PATTERN", path,
                f"Field '{path}' must match https://ansybl.org/version/<major>.<minor>",
                "Use https://ansybl.org/version/1.0",
            )

    def _check_tagged(self, rule: FieldRule, value: str, path: str, label: str) -> Optional[TaggedBytes]:
        match = TAGGED_RE.match(value)
        if not match or match.group(1) not in KEY_SIZES:
            self.error(
                "INVALID_PATTERN", path,
                f"Field '{path}' must be a valid ed25519 {label} (format: ed25519:base64data)",
                "Use ed25519 format: ed25519:base64data", "Ensure proper base64 encoding",
            )
            return None
        try:
            return TaggedBytes.parse(value)
        except InvalidKeyFormatError as e:
            self.error(
                "INVALID_FORMAT", path,
                f"Field '{path}' is not valid base64: {e}",
                "Ensure proper base64 encoding",
            )
            return None

    def _check_public_key(self, rule: FieldRule, value: str, path: str):
        tagged = self._check_tagged(rule, value, path, "public key")
        if tagged is not None and rule.key_size is not None and len(tagged.data) != rule.key_size:
            self.error(
                "INVALID_FORMAT", path,
                f"Field '{path}' must decode to {rule.key_size} bytes, got {len(tagged.data)}",
                "Use the public key printed by `ansybl keygen`",
                "Check that the key was not truncated",
            )

    def _check_signature(self, rule: FieldRule, value: str, path: str):
        self._check_tagged(rule, value, path, "signature")

    def _check_date(self, rule: FieldRule, value: str, path: str):
        if parse_datetime(value) is None:
            self.error(
                "INVALID_FORMAT", path,
                f"Field '{path}' must be a valid ISO 8601 date-time with timezone",
                "Use ISO 8601 format: 2025-11-04T10:00:00Z", "Include timezone information",
            )

    def _check_language(self, rule: FieldRule, value: str, path: str):
        if not LANGUAGE_RE.match(value):
            self.error(
                "INVALID_PATTERN", path,
                f"Field '{path}' must be a valid language code (e.g., 'en', 'en-US')",
                "Use a lowercase language code with optional uppercase region: en, en-US",
            )

    def _check_uuid(self, rule: FieldRule, value: str, path: str):
        valid = bool(UUID_RE.match(value))
        if valid:
            try:
                uuid.UUID(value)
            except ValueError:
                valid = False
        if not valid:
            self.error(
                "INVALID_FORMAT", path,
                f"Field '{path}' must be a valid UUID",
                "Use the form 550e8400-e29b-41d4-a716-446655440000",
            )

    def _check_mime(self, rule: FieldRule, value: str, path: str):
        if not MIME_RE.match(value):
            self.error(
                "INVALID_PATTERN", path,
                f"Field '{path}' must be a MIME type of the form type/subtype",
                "Example: image/jpeg",
            )

    # Step 4: lengths

    def check_length(self, rule: FieldRule, value: Any, path: str):
        if not isinstance(value, str):
            return
        if rule.min_length is not None and len(value) < rule.min_length:
            self.error(
                "TOO_SHORT", path,
                f"Field '{path}' is too short (minimum {rule.min_length} characters)",
                f"Provide at least {rule.min_length} characters",
            )
        if rule.max_length is not None and len(value) > rule.max_length:
            self.error(
                "TOO_LONG", path,
                f"Field '{path}' is too long (maximum {rule.max_length} characters)",
                f"Shorten '{path}' to {rule.max_length} characters or fewer",
            )

    # The generic loop

    def check_object(self, rules: ObjectRules, obj: Dict[str, Any], prefix: str):
        by_name = rules.by_name
        where = prefix or rules.name

        # 1. required
        for rule in rules.fields:
            if rule.required and not _present(obj, rule.name):
                path = _join(prefix, rule.name)
                self.error(
                    "MISSING_REQUIRED_FIELD", path,
                    f"Missing required field: {path}",
                    *_required_suggestions(rule),
                )

        # 2. type / pattern / format
        well_typed = set()
        for rule in rules.fields:
            if _present(obj, rule.name) and self.check_value(rule, obj[rule.name], _join(prefix, rule.name)):
                well_typed.add(rule.name)

        # 3. content union
        if rules.content_union and not any(obj.get(name) for name in rules.content_union):
            self.error(
                "MISSING_CONTENT", where,
                f"Content item must have at least one of: {', '.join(rules.content_union)}",
                f"Add {', '.join(rules.content_union[:-1])} or {rules.content_union[-1]}",
                "At least one content field is required",
            )

        # 4. lengths
        for rule in rules.fields:
            if rule.name in well_typed:
                self.check_length(rule, obj[rule.name], _join(prefix, rule.name))

        # 5. nested objects and arrays
        for rule in rules.fields:
            if rule.name not in well_typed:
                continue
            path = _join(prefix, rule.name)
            if rule.kind == "object" and rule.children:
                self.check_object(OBJECT_RULES[rule.children], obj[rule.name], path)
            elif rule.kind == "array" and rule.element is not None:
                self.check_array(rule.element, obj[rule.name], path)

        # 6. unknown fields
        for name in obj:
            if name in by_name or (isinstance(name, str) and name.startswith("_")):
                continue
            self.error(
                "UNKNOWN_FIELD", _join(prefix, name),
                f"Unknown field '{name}'. Extension fields must start with underscore (_)",
                "Remove unknown fields or prefix with underscore for extensions",
                "Check field name spelling",
            )

        # 7. recommendations
        for rec in rules.recommended:
            if rec.when is not None and not rec.when(obj):
                continue
            if not any(_present(obj, name) for name in rec.fields):
                self.warn(rec.code, _join(prefix, rec.fields[0]), rec.message, rec.suggestion)

    def check_array(self, element: FieldRule, values: List[Any], prefix: str):
        for index, value in enumerate(values):
            path = _join(prefix, index)
            if not self.check_value(element, value, path):
                continue
            self.check_length(element, value, path)
            if element.kind == "object" and element.children:
                self.check_object(OBJECT_RULES[element.children], value, path)


def _required_suggestions(rule: FieldRule) -> Tuple[str, ...]:
    if rule.kind == "public_key":
        return ("Add the author's ed25519 public key", "Generate a key pair with `ansybl keygen`")
    if rule.name == "version":
        return ("Add the required field: version", "Use https://ansybl.org/version/1.0")
    if rule.kind == "url":
        return (f"Add the required field: {rule.name}", "Use an absolute HTTPS URL")
    if rule.kind == "date":
        return (f"Add the required field: {rule.name}", "Use ISO 8601 format: 2025-11-04T10:00:00Z")
    return (f"Add the required field: {rule.name}",)


class DocumentValidator:
    """
    Validates feeds and standalone items.

    Usage:
        result = DocumentValidator().validate(feed)
        if not result.valid:
            for error in result.errors:
                print(error.field, error.message)
    """

    def validate(self, document: Any) -> ValidationResult:
        """Validate a feed given as a dict, JSON text or bytes."""
        parsed, failure = self._parse(document)
        if failure is not None:
            return failure

        walk = _Walk()
        walk.check_object(FEED, parsed, "")
        self._check_version_support(walk, parsed)
        self._check_feed_urls(walk, parsed)

        items = parsed.get("items")
        if isinstance(items, list):
            self._check_item_ids(walk, items)
            for index, item in enumerate(items):
                if isinstance(item, dict):
                    self._check_item_rules(walk, item, _join("items", index))

        return self._result(walk, parsed, item_count=len(items) if isinstance(items, list) else 0)

    def validate_item(self, item: Any) -> ValidationResult:
        """Validate a standalone content item; paths are relative to the item."""
        parsed, failure = self._parse(item)
        if failure is not None:
            return failure

        walk = _Walk()
        walk.check_object(ITEM, parsed, "")
        self._check_item_rules(walk, parsed, "")
        return self._result(walk, parsed, item_count=1)

    def _parse(self, document: Any) -> Tuple[Optional[Dict[str, Any]], Optional[ValidationResult]]:
        if isinstance(document, (bytes, bytearray)):
            try:
                document = document.decode("utf-8")
            except UnicodeDecodeError as e:
                return None, self._invalid_json(f"Document is not valid UTF-8: {e}")
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                return None, self._invalid_json(f"Document is not valid JSON: {e}")

        if not isinstance(document, dict):
            issue = ValidationIssue(
                "INVALID_TYPE", "document",
                f"Document must be a JSON object, got {type(document).__name__}",
                ["Wrap the document in a JSON object"],
            )
            return None, ValidationResult(valid=False, errors=[issue])
        return document, None

    def _invalid_json(self, message: str) -> ValidationResult:
        issue = ValidationIssue(
            "INVALID_JSON", "document", message,
            ["Check for syntax errors, missing quotes, or trailing commas",
             "Validate the file with a JSON linter"],
        )
        return ValidationResult(valid=False, errors=[issue])

    def _check_version_support(self, walk: _Walk, feed: Dict[str, Any]):
        version = feed.get("version")
        match = VERSION_RE.match(version) if isinstance(version, str) else None
        if match and int(match.group(1)) != SUPPORTED_MAJOR_VERSION:
            walk.warn(
                "UNSUPPORTED_VERSION", "version",
                f"Unsupported major version: {match.group(1)} (expected {SUPPORTED_MAJOR_VERSION})",
                "Use https://ansybl.org/version/1.0",
            )

    def _check_feed_urls(self, walk: _Walk, feed: Dict[str, Any]):
        if _present(feed, "feed_url") and feed.get("feed_url") == feed.get("home_page_url"):
            walk.warn(
                "IDENTICAL_URLS", "feed_url",
                "feed_url and home_page_url are identical",
                "Point feed_url at the feed document itself",
            )

    def _check_item_ids(self, walk: _Walk, items: List[Any]):
        seen = set()
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            item_id = item.get("id")
            if not isinstance(item_id, str):
                continue
            if item_id in seen:
                walk.error(
                    "DUPLICATE_ITEM_ID", _join(_join("items", index), "id"),
                    f"Duplicate item ID found: {item_id}",
                    "Ensure all item IDs are unique within the feed",
                )
            seen.add(item_id)

    def _check_item_rules(self, walk: _Walk, item: Dict[str, Any], prefix: str):
        item_id = item.get("id")
        if item_id is not None and item.get("in_reply_to") == item_id:
            walk.error(
                "SELF_REPLY", _join(prefix, "in_reply_to"),
                "Item cannot reply to itself",
                "Remove in_reply_to or change it to a different item",
            )

        published, modified = item.get("date_published"), item.get("date_modified")
        if isinstance(published, str) and isinstance(modified, str):
            published_at, modified_at = parse_datetime(published), parse_datetime(modified)
            if published_at and modified_at and modified_at < published_at:
                walk.warn(
                    "INVALID_DATE_ORDER", _join(prefix, "date_modified"),
                    "Modified date is before published date",
                    "Ensure date_modified is after or equal to date_published",
                )

    def _result(self, walk: _Walk, document: Dict[str, Any], item_count: int) -> ValidationResult:
        return ValidationResult(
            valid=not walk.errors,
            errors=walk.errors,
            warnings=walk.warnings,
            metadata={
                "item_count": item_count,
                "has_extensions": _has_extensions(document),
            },
        )
