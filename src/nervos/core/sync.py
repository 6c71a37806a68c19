"""Sync server implementation for Nervos.

The server keeps one append-only sequence of items per user, split into
bounded chunks in an object store, plus a metadata record holding the
user's passkey hash and the chunk boundaries. Requests are stateless: all
durable state is read from and written to the object store.

Sync Protocol (POST /):
1. Headers carry the account (userhash), the hex authentication secret
   (passkey) and the client's checkpoint; the body is the client's changes
2. The changes are appended to the user's last chunk
3. The response carries the items of one chunk newer than the checkpoint,
   and the new checkpoint in the "checkpoint" header

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Sequence, Tuple

import bcrypt
from flask import Blueprint, Flask, Response, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge

from .codec import (
    ITEMS_CONTENT_TYPE,
    CodecError,
    decode_items,
    decode_metadata,
    encode_items,
    encode_metadata,
)
from .models import Item, Metadata
from .object_store import ObjectStore
from .validation import (
    AuthenticationError,
    ValidationError,
    parse_checkpoint,
    parse_passkey,
    validate_user_hash,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CHUNK_SIZE",
    "PROTOCOL_VERSION",
    "MAX_BODY_BYTES",
    "ChunkedLog",
    "select_chunk",
    "meta_key",
    "chunk_key",
    "create_sync_blueprint",
    "create_sync_server",
]

CHUNK_SIZE = 500
PROTOCOL_VERSION = "1"
MAX_BODY_BYTES = 16 * 1024 * 1024


def meta_key(user_hash: str) -> str:
    return f"{user_hash}/_meta"


def chunk_key(user_hash: str, index: int) -> str:
    return f"{user_hash}/{index}"


def select_chunk(chunks: Sequence[int], checkpoint: int, selection: str = "covering") -> int:
    """Pick the single chunk consulted for a checkpoint.

    "covering" takes the last chunk whose boundary is at or below the
    checkpoint, i.e. the chunk holding the first item the client has not
    seen. A client far behind is walked forward one chunk per request.

    "legacy" takes the last boundary still greater than the checkpoint.
    A client behind several boundaries only ever receives the newest of
    those chunks and never the ones before it.

    Args:
        chunks: Chunk boundaries, starting with 0
        checkpoint: Client checkpoint
        selection: "covering" or "legacy"

    Returns:
        Chunk index
    """
    index = 0
    if selection == "legacy":
        for i, boundary in enumerate(chunks):
            if checkpoint < boundary:
                index = i
    elif selection == "covering":
        for i, boundary in enumerate(chunks):
            if boundary <= checkpoint:
                index = i
    else:
        raise ValueError(f"Unknown chunk selection: {selection}")
    return index


class ChunkedLog:
    """Per-user chunked append-only log on top of an object store.

    The read-modify-write of metadata and the last chunk is serialized per
    user with an in-process lock. Several server processes sharing a
    bucket are not coordinated and can drop each other's appends.
    """

    def __init__(
        self,
        store: ObjectStore,
        chunk_size: int = CHUNK_SIZE,
        bcrypt_rounds: int = 11,
        chunk_selection: str = "covering",
    ) -> None:
        """Initialize the log.

        Args:
            store: Object store holding metadata and chunks
            chunk_size: Items per chunk before rollover
            bcrypt_rounds: Cost factor for new passkey hashes
            chunk_selection: Rule passed to select_chunk
        """
        self.store = store
        self.chunk_size = chunk_size
        self.bcrypt_rounds = bcrypt_rounds
        self.chunk_selection = chunk_selection
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _user_lock(self, user_hash: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(user_hash, threading.Lock())
        with lock:
            yield

    def load_metadata(self, user_hash: str) -> Metadata:
        return decode_metadata(self.store.get(meta_key(user_hash)))

    def save_metadata(self, metadata: Metadata) -> None:
        self.store.put(meta_key(metadata.user_hash), encode_metadata(metadata))

    def load_chunk(self, user_hash: str, index: int) -> List[Item]:
        return decode_items(self.store.get(chunk_key(user_hash, index)))

    def _authenticate(self, user_hash: str, pass_key: bytes) -> Metadata:
        """Load the user's metadata, registering the user on first contact.

        The bcrypt input is the hex form of the key: ASCII, no NUL bytes,
        at most 64 bytes.
        """
        secret = pass_key.hex().encode("ascii")
        metadata = self.load_metadata(user_hash)
        if not metadata.exists:
            metadata = Metadata(
                user_hash=user_hash,
                pass_hash=bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self.bcrypt_rounds)),
                chunks=[0],
            )
            self.save_metadata(metadata)
            logger.info(f"Registered new user {user_hash}")
            return metadata

        if not bcrypt.checkpw(secret, metadata.pass_hash):
            raise AuthenticationError("wrong password")
        return metadata

    def _append(self, metadata: Metadata, changes: List[Item]) -> None:
        """Append a batch to the last chunk, rolling over once it is full."""
        index = metadata.last_chunk_index
        chunk_items = self.load_chunk(metadata.user_hash, index)
        chunk_items.extend(changes)
        self.store.put(chunk_key(metadata.user_hash, index), encode_items(chunk_items))
        if len(chunk_items) >= self.chunk_size:
            metadata.chunks.append(chunk_items[-1].rev)
            self.save_metadata(metadata)
            logger.info(
                f"Chunk {index} of {metadata.user_hash} full ({len(chunk_items)} items), "
                f"new boundary {chunk_items[-1].rev}"
            )

    def sync(
        self,
        user_hash: str,
        pass_key: bytes,
        checkpoint: int,
        changes: Sequence[Item],
    ) -> Tuple[List[Item], int]:
        """Store a client's changes and return what it has not seen yet.

        Args:
            user_hash: Account identifier
            pass_key: Authentication secret
            checkpoint: Highest revision the client has received
            changes: Items changed on the client since its checkpoint

        Returns:
            Tuple of (items newer than the checkpoint from one chunk, new checkpoint)

        Raises:
            ValidationError: If the user hash is malformed
            AuthenticationError: If the passkey does not match the stored hash
        """
        validate_user_hash(user_hash)
        changes = sorted(changes, key=lambda i: i.rev)

        with self._user_lock(user_hash):
            metadata = self._authenticate(user_hash, pass_key)
            if changes:
                self._append(metadata, changes)
            index = select_chunk(metadata.chunks, checkpoint, self.chunk_selection)
            chunk_items = self.load_chunk(user_hash, index)

        items = [i for i in chunk_items if i.rev > checkpoint]
        new_checkpoint = items[-1].rev if items else checkpoint
        logger.info(
            f"Request {user_hash}: {len(changes)} changes, {len(items)} items "
            f"from chunk {index}, checkpoint {new_checkpoint}"
        )
        return items, new_checkpoint


def create_sync_blueprint(log: ChunkedLog) -> Blueprint:
    """Create Flask blueprint for sync endpoints.

    Args:
        log: Chunked log serving the requests

    Returns:
        Flask Blueprint with sync routes
    """
    sync_bp = Blueprint("sync", __name__)

    @sync_bp.route("/", methods=["POST"])
    def sync() -> Any:
        """Exchange changes with a device.

        Request headers:
            userhash: account identifier (alphanumeric)
            passkey: hex-encoded authentication secret
            checkpoint: decimal revision

        Request body:
            encoded item batch (codec.encode_items)

        Response:
            200 with encoded item batch and "checkpoint" header, or:
            - 400 Bad Request for malformed headers or body
            - 413 Request Entity Too Large above the body limit
            - 403 Forbidden for a wrong passkey
            - 500 Internal Server Error on storage failure
        """
        user_hash = request.headers.get("userhash", "")
        try:
            changes = decode_items(request.get_data())
            pass_key = parse_passkey(request.headers.get("passkey"))
            checkpoint = parse_checkpoint(request.headers.get("checkpoint"))
            items, new_checkpoint = log.sync(user_hash, pass_key, checkpoint, changes)
        except ValidationError as e:
            logger.warning(f"Sync rejected for '{user_hash}': {e}")
            return jsonify({"error": f"Invalid {e.field}: {e.message}"}), 400
        except CodecError as e:
            logger.warning(f"Sync rejected for '{user_hash}': {e}")
            return jsonify({"error": f"Invalid body: {e}"}), 400
        except AuthenticationError as e:
            logger.warning(f"Sync rejected for '{user_hash}': {e}")
            return jsonify({"error": str(e)}), 403
        except RequestEntityTooLarge:
            logger.warning(f"Sync rejected for '{user_hash}': body too large")
            return jsonify({"error": "Request body too large"}), 413
        except Exception as e:
            logger.exception(f"Internal server error syncing '{user_hash}': {e}")
            return jsonify({"error": "Internal server error"}), 500

        response = Response(encode_items(items), status=200, mimetype=ITEMS_CONTENT_TYPE)
        response.headers["checkpoint"] = str(new_checkpoint)
        return response

    @sync_bp.route("/status", methods=["GET"])
    def status() -> Tuple[Any, int]:
        """Get sync server status.

        Response:
            {
                "status": "ok",
                "protocol_version": "1",
                "chunk_size": 500
            }
        """
        return jsonify({
            "status": "ok",
            "protocol_version": PROTOCOL_VERSION,
            "chunk_size": log.chunk_size,
        }), 200

    return sync_bp


def create_sync_server(log: ChunkedLog, max_body_bytes: int = MAX_BODY_BYTES) -> Flask:
    """Create a standalone Flask sync server.

    Args:
        log: Chunked log serving the requests
        max_body_bytes: Largest accepted request body

    Returns:
        Flask application instance
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = max_body_bytes
    app.register_blueprint(create_sync_blueprint(log))
    return app
