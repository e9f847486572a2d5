# tests/conftest.py
"""Shared fixtures: cheap key stores and sample documents."""

import copy
import tempfile
from pathlib import Path

import pytest

from ansybl.keystore import FileKeyStore, MemoryKeyStore
from ansybl.manager import KeyManager

# Far below production cost; key derivation is not under test here
TEST_KDF_N = 2 ** 4
TEST_SECRET = "test-secret"

SAMPLE_FEED = {
    "version": "https://ansybl.org/version/1.0",
    "title": "Test Feed",
    "home_page_url": "https://example.com",
    "feed_url": "https://example.com/feed.ansybl",
    "description": "A feed used in tests",
    "icon": "https://example.com/icon.png",
    "language": "en-US",
    "author": {
        "name": "Test Author",
        "url": "https://example.com/author",
        "public_key": "ed25519:" + "A" * 43 + "=",
    },
    "items": [
        {
            "id": "https://example.com/post/1",
            "url": "https://example.com/post/1",
            "title": "First post",
            "content_text": "Hello world!",
            "date_published": "2025-11-04T10:00:00Z",
        },
        {
            "id": "https://example.com/post/2",
            "url": "https://example.com/post/2",
            "title": "Second post",
            "content_html": "<p>Hello again</p>",
            "date_published": "2025-11-05T10:00:00+01:00",
            "tags": ["test", "hello"],
        },
    ],
}


def make_feed(public_key: str = None) -> dict:
    """A fresh, valid, unsigned feed (optionally with a given author key)."""
    feed = copy.deepcopy(SAMPLE_FEED)
    if public_key is not None:
        feed["author"]["public_key"] = str(public_key)
    return feed


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_store():
    return MemoryKeyStore(secret=TEST_SECRET, kdf_n=TEST_KDF_N)


@pytest.fixture
def file_store(temp_dir):
    return FileKeyStore(temp_dir / "keys", secret=TEST_SECRET, kdf_n=TEST_KDF_N)


@pytest.fixture
def manager(memory_store):
    return KeyManager(memory_store)


@pytest.fixture
def feed():
    return make_feed()
