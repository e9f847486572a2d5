# ansybl/validation/rules.py
"""
Declarative schema for Ansybl documents.

Each object level is an ObjectRules table of FieldRules. The validator
walks these tables with one generic loop, so adding or changing a field
is an edit here, not new code.

Field kinds:
    string, url, version, public_key, signature, date, language, uuid,
    mime, integer, number, object, array
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

CONTENT_FIELDS = ("content_text", "content_html", "content_markdown")


@dataclass(frozen=True)
class FieldRule:
    """
    Constraints on one field.

    Attributes:
        name: Field name
        kind: Value kind (see module docstring)
        required: Missing/null is MISSING_REQUIRED_FIELD
        min_length: Minimum string length (TOO_SHORT)
        max_length: Maximum string length (TOO_LONG)
        minimum: Minimum numeric value (TOO_SMALL)
        key_size: Exact decoded byte length for public keys
        children: ObjectRules name for objects
        element: Rule applied to each element of an array
    """
    name: str
    kind: str
    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[float] = None
    key_size: Optional[int] = None
    children: Optional[str] = None
    element: Optional["FieldRule"] = None


@dataclass(frozen=True)
class Recommendation:
    """
    A warning raised when none of ``fields`` is present.

    ``when`` restricts the check to objects it returns True for.
    """
    fields: Tuple[str, ...]
    code: str
    message: str
    suggestion: str
    when: Optional[Callable[[dict], bool]] = None


@dataclass(frozen=True)
class ObjectRules:
    """Rules for one object level."""
    name: str
    fields: Tuple[FieldRule, ...]
    content_union: Tuple[str, ...] = ()
    recommended: Tuple[Recommendation, ...] = ()

    @property
    def by_name(self) -> Dict[str, FieldRule]:
        return {rule.name: rule for rule in self.fields}


def _is_image(attachment: dict) -> bool:
    mime_type = attachment.get("mime_type")
    return isinstance(mime_type, str) and mime_type.startswith("image/")


SIGNATURE_RECOMMENDATION = Recommendation(
    fields=("signature",),
    code="MISSING_SIGNATURE",
    message="Signature missing: content cannot be cryptographically verified",
    suggestion="Sign the document with `ansybl sign`",
)

AUTHOR = ObjectRules(
    name="author",
    fields=(
        FieldRule("name", "string", required=True, min_length=1, max_length=100),
        FieldRule("url", "url"),
        FieldRule("avatar", "url"),
        FieldRule("public_key", "public_key", required=True, key_size=32),
    ),
)

# Item-level author: attribution only, key optional
ITEM_AUTHOR = ObjectRules(
    name="item_author",
    fields=(
        FieldRule("name", "string", required=True, min_length=1, max_length=100),
        FieldRule("url", "url"),
        FieldRule("avatar", "url"),
        FieldRule("public_key", "public_key", key_size=32),
    ),
)

ATTACHMENT = ObjectRules(
    name="attachment",
    fields=(
        FieldRule("url", "url", required=True),
        FieldRule("mime_type", "mime", required=True),
        FieldRule("title", "string", max_length=200),
        FieldRule("size_in_bytes", "integer", minimum=0),
        FieldRule("width", "integer", minimum=1),
        FieldRule("height", "integer", minimum=1),
        FieldRule("duration_in_seconds", "number", minimum=0),
        FieldRule("alt_text", "string", max_length=1000),
        FieldRule("blurhash", "string", min_length=6, max_length=100),
    ),
    recommended=(
        Recommendation(
            fields=("alt_text",),
            code="MISSING_ALT_TEXT",
            message="Alt text recommended for accessibility",
            suggestion="Describe the image in alt_text",
            when=_is_image,
        ),
    ),
)

INTERACTIONS = ObjectRules(
    name="interactions",
    fields=(
        FieldRule("replies_count", "integer", required=True, minimum=0),
        FieldRule("likes_count", "integer", required=True, minimum=0),
        FieldRule("shares_count", "integer", required=True, minimum=0),
        FieldRule("replies_url", "url"),
    ),
)

ITEM = ObjectRules(
    name="item",
    fields=(
        FieldRule("id", "url", required=True),
        FieldRule("uuid", "uuid"),
        FieldRule("url", "url", required=True),
        FieldRule("title", "string", min_length=1, max_length=200),
        FieldRule("content_text", "string"),
        FieldRule("content_html", "string"),
        FieldRule("content_markdown", "string"),
        FieldRule("summary", "string", max_length=500),
        FieldRule("date_published", "date", required=True),
        FieldRule("date_modified", "date"),
        FieldRule("tags", "array", element=FieldRule("tag", "string", min_length=1, max_length=50)),
        FieldRule("attachments", "array", element=FieldRule("attachment", "object", children="attachment")),
        FieldRule("interactions", "object", children="interactions"),
        FieldRule("in_reply_to", "url"),
        FieldRule("author", "object", children="item_author"),
        FieldRule("signature", "signature"),
    ),
    content_union=CONTENT_FIELDS,
    recommended=(
        Recommendation(
            fields=("title", "summary"),
            code="MISSING_TITLE_SUMMARY",
            message="Title or summary recommended for better readability",
            suggestion="Add a title or summary",
        ),
        SIGNATURE_RECOMMENDATION,
    ),
)

FEED = ObjectRules(
    name="feed",
    fields=(
        FieldRule("version", "version", required=True),
        FieldRule("title", "string", required=True, min_length=1, max_length=200),
        FieldRule("home_page_url", "url", required=True),
        FieldRule("feed_url", "url", required=True),
        FieldRule("description", "string", max_length=500),
        FieldRule("icon", "url"),
        FieldRule("language", "language"),
        FieldRule("author", "object", required=True, children="author"),
        FieldRule("items", "array", required=True, element=FieldRule("item", "object", children="item")),
        FieldRule("signature", "signature"),
    ),
    recommended=(
        Recommendation(
            fields=("description",),
            code="MISSING_DESCRIPTION",
            message="Feed description is recommended for better discoverability",
            suggestion="Add a short description of the feed",
        ),
        Recommendation(
            fields=("icon",),
            code="MISSING_ICON",
            message="Feed icon is recommended for better user experience",
            suggestion="Add an HTTPS icon URL",
        ),
        Recommendation(
            fields=("language",),
            code="MISSING_LANGUAGE",
            message="Language specification helps with content discovery",
            suggestion="Add a language code such as 'en' or 'en-US'",
        ),
        SIGNATURE_RECOMMENDATION,
    ),
)

OBJECT_RULES: Dict[str, ObjectRules] = {
    rules.name: rules
    for rules in (FEED, AUTHOR, ITEM_AUTHOR, ITEM, ATTACHMENT, INTERACTIONS)
}
