"""Input validation for Nervos.

This module provides validation functions for values crossing a trust
boundary: sync request headers, configuration values and user input.
All validators raise ValidationError with descriptive messages.
"""

from __future__ import annotations

import re
from typing import Optional

__all__ = [
    "ValidationError",
    "AuthenticationError",
    "validate_user_hash",
    "parse_passkey",
    "parse_checkpoint",
    "validate_item_id",
    "validate_api_url",
    "validate_positive_number",
    "INT64_MIN",
    "INT64_MAX",
]

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
MAX_USER_HASH_LENGTH = 128
MAX_PASSKEY_BYTES = 32

_USER_HASH_RE = re.compile(r"[a-zA-Z0-9]+")
_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_DECIMAL_RE = re.compile(r"-?[0-9]+")


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


class AuthenticationError(Exception):
    """A presented password or passkey does not match the stored verifier."""


def validate_user_hash(value: Optional[str]) -> str:
    """Validate an account identifier (alphanumeric only)."""
    if not isinstance(value, str) or not value:
        raise ValidationError("userhash", "is required")
    if len(value) > MAX_USER_HASH_LENGTH:
        raise ValidationError(
            "userhash", f"cannot exceed {MAX_USER_HASH_LENGTH} characters (got {len(value)})"
        )
    if not _USER_HASH_RE.fullmatch(value):
        raise ValidationError("userhash", "must be alphanumeric")
    return value


def parse_passkey(value: Optional[str]) -> bytes:
    """Decode a hex-encoded authentication secret."""
    if not value:
        raise ValidationError("passkey", "is required")
    if not _HEX_RE.fullmatch(value) or len(value) % 2:
        raise ValidationError("passkey", "must be a hex string")
    key = bytes.fromhex(value)
    if len(key) > MAX_PASSKEY_BYTES:
        raise ValidationError("passkey", f"cannot exceed {MAX_PASSKEY_BYTES} bytes (got {len(key)})")
    return key


def parse_checkpoint(value: Optional[str]) -> int:
    """Parse a decimal signed 64-bit checkpoint."""
    if value is None or not value.strip():
        raise ValidationError("checkpoint", "is required")
    if not _DECIMAL_RE.fullmatch(value.strip()):
        raise ValidationError("checkpoint", f"must be a decimal integer, got '{value}'")
    checkpoint = int(value.strip(), 10)
    if not INT64_MIN <= checkpoint <= INT64_MAX:
        raise ValidationError("checkpoint", "out of 64-bit range")
    return checkpoint


def validate_item_id(value: object) -> int:
    """Validate an item ID given as an int or a decimal string."""
    if isinstance(value, bool):
        raise ValidationError("item_id", "must be an integer")
    if isinstance(value, str):
        try:
            value = int(value, 10)
        except ValueError:
            raise ValidationError("item_id", f"must be a decimal integer, got '{value}'") from None
    if not isinstance(value, int):
        raise ValidationError("item_id", f"must be an integer, got {type(value).__name__}")
    if not 0 < value <= INT64_MAX:
        raise ValidationError("item_id", "must be a positive 64-bit integer")
    return value


def validate_api_url(url: object) -> str:
    """Validate the sync server URL."""
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("api_url", "cannot be empty")
    url = url.strip()
    if not (url.startswith("http://") or url.startswith("https://")):
        raise ValidationError("api_url", "must start with http:// or https://")
    return url


def validate_positive_number(value: object, field_name: str) -> float:
    """Validate a strictly positive interval or timeout."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(field_name, f"must be a number, got {type(value).__name__}")
    if value <= 0:
        raise ValidationError(field_name, f"must be positive, got {value}")
    return value
