# ansybl - Integrity core for verifiable content syndication
#
# Feeds and items are signed over a canonical JSON form so any reader can
# verify them without a central authority.
#
# Core concepts:
# - Canonical form: sorted-key, whitespace-free JSON that signatures cover
# - KeyStore: encrypted-at-rest storage of Ed25519 key pairs
# - KeyManager: key lifecycle (create, rotate, deprecate, validate, delete)
# - DocumentValidator: declarative schema checks with actionable errors
# - SigningPipeline: validate -> canonicalize -> sign / verify

from .canonical import CanonicalizationError, canonical_bytes, serialize, signing_payload
from .keys import InvalidKeyFormatError, TaggedBytes
from .keystore import (
    FileKeyStore,
    IntegrityError,
    KeyPair,
    KeyPairInfo,
    KeyStatus,
    KeyStore,
    KeyStoreError,
    MemoryKeyStore,
    open_key_store,
)
from .cache import KeyCache
from .manager import DuplicateKeyError, KeyManagementError, KeyManager, KeyNotFoundError
from .validation import DocumentValidator, ValidationIssue, ValidationResult
from .signing import (
    ChainVerification,
    InvalidDocumentError,
    SigningError,
    SigningPipeline,
    VerificationResult,
)
from .envelope import EnvelopeError, export_documents, import_documents
from .config import ConfigError, load_config

__all__ = [
    # Canonical form
    "serialize",
    "canonical_bytes",
    "signing_payload",
    "CanonicalizationError",
    # Keys
    "TaggedBytes",
    "InvalidKeyFormatError",
    "KeyStore",
    "MemoryKeyStore",
    "FileKeyStore",
    "open_key_store",
    "KeyStoreError",
    "IntegrityError",
    "KeyPair",
    "KeyPairInfo",
    "KeyStatus",
    "KeyCache",
    "KeyManager",
    "KeyManagementError",
    "DuplicateKeyError",
    "KeyNotFoundError",
    # Documents
    "DocumentValidator",
    "ValidationIssue",
    "ValidationResult",
    "SigningPipeline",
    "ChainVerification",
    "SigningError",
    "InvalidDocumentError",
    "VerificationResult",
    "export_documents",
    "import_documents",
    "EnvelopeError",
    # Config
    "load_config",
    "ConfigError",
]

__version__ = "0.1.0"
