# ansybl/validation/__init__.py
"""
Document validation.

- rules: declarative field tables per object level
- validator: the generic rule loop plus cross-item checks
"""

from .rules import FieldRule, ObjectRules, Recommendation
from .validator import (
    DocumentValidator,
    ValidationIssue,
    ValidationResult,
    is_feed,
    parse_datetime,
)

__all__ = [
    "DocumentValidator",
    "ValidationIssue",
    "ValidationResult",
    "FieldRule",
    "ObjectRules",
    "Recommendation",
    "is_feed",
    "parse_datetime",
]
