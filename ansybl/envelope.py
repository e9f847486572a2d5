# ansybl/envelope.py
"""
Versioned export wrapper.

Key backups and document exports share one shape:

    {"version": "1.0", "exported": "<ISO-8601 UTC>", "<entries>": [...]}
"""

import time
from typing import Any, Dict, List

ENVELOPE_VERSION = "1.0"


class EnvelopeError(ValueError):
    """Raised when an envelope is missing its version or entries."""
    pass


def make_envelope(entries_name: str, entries: List[Any]) -> Dict[str, Any]:
    return {
        "version": ENVELOPE_VERSION,
        "exported": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        entries_name: list(entries),
    }


def open_envelope(data: Dict[str, Any], entries_name: str) -> List[Any]:
    """
    Unwrap an envelope and return its entries.

    Raises:
        EnvelopeError: if data is not an envelope of this version or the
            entries are not a list
    """
    if not isinstance(data, dict):
        raise EnvelopeError("Envelope must be a JSON object")

    version = data.get("version")
    if version != ENVELOPE_VERSION:
        raise EnvelopeError(f"Unsupported envelope version: {version!r}")

    entries = data.get(entries_name)
    if not isinstance(entries, list):
        raise EnvelopeError(f"Envelope has no '{entries_name}' list")
    return entries


def export_documents(documents: List[Dict[str, Any]]) -> Dict[str, Any]:
    return make_envelope("documents", documents)


def import_documents(envelope: Dict[str, Any]) -> List[Dict[str, Any]]:
    documents = open_envelope(envelope, "documents")
    for index, document in enumerate(documents):
        if not isinstance(document, dict):
            raise EnvelopeError(f"Document {index} is not a JSON object")
    return documents
