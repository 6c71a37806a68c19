"""Serialization of item batches and server metadata.

One explicit, versioned JSON format is used for item batches on the wire
and for chunk objects in the object store:

    {"format": "nervos.items", "version": 1,
     "items": [{"id": 1, "rev": 1, "data": "..."}]}

Metadata objects use "nervos.meta" with the bcrypt hash stored as ASCII.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List

from .models import Item, Metadata
from .validation import INT64_MAX, INT64_MIN

__all__ = [
    "CodecError",
    "ITEMS_CONTENT_TYPE",
    "FORMAT_VERSION",
    "encode_items",
    "decode_items",
    "encode_metadata",
    "decode_metadata",
]

ITEMS_FORMAT = "nervos.items"
META_FORMAT = "nervos.meta"
FORMAT_VERSION = 1
ITEMS_CONTENT_TYPE = "application/vnd.nervos.items+json"


class CodecError(ValueError):
    """Encoded data is malformed or in an unsupported version."""


def _load(data: bytes, expected_format: str) -> Dict[str, Any]:
    try:
        doc = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CodecError(f"invalid {expected_format} document: {e}") from None
    if not isinstance(doc, dict):
        raise CodecError(f"{expected_format} document must be an object")
    if doc.get("format") != expected_format:
        raise CodecError(f"expected format '{expected_format}', got '{doc.get('format')}'")
    if doc.get("version") != FORMAT_VERSION:
        raise CodecError(f"unsupported {expected_format} version: {doc.get('version')}")
    return doc


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _item_from_dict(index: int, raw: Any) -> Item:
    if not isinstance(raw, dict):
        raise CodecError(f"item {index} must be an object")
    item_id, rev, data = raw.get("id"), raw.get("rev"), raw.get("data", "")
    if not _is_int(item_id) or not _is_int(rev):
        raise CodecError(f"item {index}: id and rev must be integers")
    if not (INT64_MIN <= item_id <= INT64_MAX and INT64_MIN <= rev <= INT64_MAX):
        raise CodecError(f"item {index}: id and rev must fit in 64 bits")
    if not isinstance(data, str):
        raise CodecError(f"item {index}: data must be a string")
    return Item(id=item_id, rev=rev, data=data)


def encode_items(items: Iterable[Item]) -> bytes:
    """Encode an ordered batch of items."""
    doc = {
        "format": ITEMS_FORMAT,
        "version": FORMAT_VERSION,
        "items": [{"id": i.id, "rev": i.rev, "data": i.data} for i in items],
    }
    return json.dumps(doc, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_items(data: bytes) -> List[Item]:
    """Decode an ordered batch of items; empty input is an empty batch."""
    if not data:
        return []
    doc = _load(data, ITEMS_FORMAT)
    raw_items = doc.get("items")
    if not isinstance(raw_items, list):
        raise CodecError("items must be a list")
    return [_item_from_dict(i, raw) for i, raw in enumerate(raw_items)]


def encode_metadata(metadata: Metadata) -> bytes:
    """Encode a user's metadata record."""
    doc = {
        "format": META_FORMAT,
        "version": FORMAT_VERSION,
        "user_hash": metadata.user_hash,
        "pass_hash": metadata.pass_hash.decode("ascii"),
        "chunks": list(metadata.chunks),
    }
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


def decode_metadata(data: bytes) -> Metadata:
    """Decode a metadata record; empty input is an unknown user."""
    if not data:
        return Metadata()
    doc = _load(data, META_FORMAT)
    chunks = doc.get("chunks")
    if not isinstance(chunks, list) or not chunks or not all(_is_int(c) for c in chunks):
        raise CodecError("chunks must be a non-empty list of integers")
    user_hash = doc.get("user_hash")
    pass_hash = doc.get("pass_hash")
    if not isinstance(user_hash, str) or not isinstance(pass_hash, str):
        raise CodecError("user_hash and pass_hash must be strings")
    return Metadata(
        user_hash=user_hash,
        pass_hash=pass_hash.encode("ascii"),
        chunks=chunks,
    )
