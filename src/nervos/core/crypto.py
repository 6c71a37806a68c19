"""Key derivation and payload encryption for Nervos.

This module handles:
- Deriving the authentication secret and the data secret from a
  username/password pair (PBKDF2-HMAC-SHA256, independent salts)
- The deterministic single-block AES primitive
- Text payload encryption built on that primitive
- The local password verifier

Encryption is deterministic (no IV, no chaining): the same text under the
same key always yields the same ciphertext. The password verifier relies on
this. Equal 16-byte blocks of a payload encrypt to equal ciphertext blocks,
and there is no integrity check.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

__all__ = [
    "BLOCK_SIZE",
    "KEY_LENGTH",
    "PBKDF2_ITERATIONS",
    "CipherError",
    "Credentials",
    "hash_username",
    "derive_key",
    "derive_credentials",
    "encrypt_block",
    "decrypt_block",
    "encrypt_text",
    "decrypt_text",
    "make_password_check",
    "verify_password_check",
]

BLOCK_SIZE = algorithms.AES.block_size // 8
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000

AUTH_SALT_PREFIX = "auth:"
DATA_SALT_PREFIX = "data:"


class CipherError(ValueError):
    """Ciphertext or key has an unusable shape."""


@dataclass(frozen=True)
class Credentials:
    """Secrets derived from a username and password.

    Attributes:
        user_hash: Hex SHA-256 of the username, the account identifier
        auth_secret: Presented to the server, never used as a key
        data_secret: AES-256 key for payloads at rest, never sent
    """

    user_hash: str
    auth_secret: bytes
    data_secret: bytes

    @property
    def passkey(self) -> str:
        """Hex-encoded authentication secret, as sent in the passkey header."""
        return self.auth_secret.hex()

    def __repr__(self) -> str:
        return f"Credentials(user_hash='{self.user_hash}')"


def hash_username(username: str) -> str:
    """Hex SHA-256 of a username."""
    return hashlib.sha256(username.encode("utf-8")).hexdigest()


def derive_key(password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """PBKDF2-HMAC-SHA256 with a 32-byte output."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def derive_credentials(
    username: str, password: str, iterations: int = PBKDF2_ITERATIONS
) -> Credentials:
    """Derive the account identifier and both secrets.

    The two secrets use different salts so the value presented to the
    server reveals nothing about the key protecting data at rest.

    Args:
        username: Account name
        password: Account password (not retained)
        iterations: PBKDF2 iteration count

    Returns:
        Credentials for the account
    """
    user_hash = hash_username(username)
    return Credentials(
        user_hash=user_hash,
        auth_secret=derive_key(password, AUTH_SALT_PREFIX + user_hash, iterations),
        data_secret=derive_key(password, DATA_SALT_PREFIX + user_hash, iterations),
    )


def _ecb(key: bytes) -> Cipher:
    if len(key) not in (16, 24, 32):
        raise CipherError(f"AES key must be 16, 24 or 32 bytes, got {len(key)}")
    return Cipher(algorithms.AES(key), modes.ECB())


def encrypt_block(key: bytes, block: bytes) -> bytes:
    """Encrypt exactly one block."""
    if len(block) != BLOCK_SIZE:
        raise CipherError(f"block must be {BLOCK_SIZE} bytes, got {len(block)}")
    encryptor = _ecb(key).encryptor()
    return encryptor.update(block) + encryptor.finalize()


def decrypt_block(key: bytes, block: bytes) -> bytes:
    """Decrypt exactly one block."""
    if len(block) != BLOCK_SIZE:
        raise CipherError(f"block must be {BLOCK_SIZE} bytes, got {len(block)}")
    decryptor = _ecb(key).decryptor()
    return decryptor.update(block) + decryptor.finalize()


def encrypt_text(key: bytes, text: str) -> bytes:
    """Encrypt a text payload.

    The UTF-8 bytes are zero-padded to a whole number of blocks (at least
    one) and every block goes through the block primitive independently.
    """
    data = text.encode("utf-8")
    padded_length = max(BLOCK_SIZE, -(-len(data) // BLOCK_SIZE) * BLOCK_SIZE)
    data = data.ljust(padded_length, b"\x00")
    encryptor = _ecb(key).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def decrypt_text(key: bytes, data: bytes) -> str:
    """Decrypt a text payload.

    A wrong key or corrupted ciphertext yields garbled text rather than an
    error; only a ciphertext that is not a whole number of blocks raises.
    """
    if not data:
        return ""
    if len(data) % BLOCK_SIZE != 0:
        raise CipherError(
            f"ciphertext length must be a multiple of {BLOCK_SIZE}, got {len(data)}"
        )
    decryptor = _ecb(key).decryptor()
    plain = decryptor.update(bytes(data)) + decryptor.finalize()
    return plain.rstrip(b"\x00").decode("utf-8", errors="replace")


def make_password_check(data_secret: bytes, user_hash: str) -> bytes:
    """Build the verifier stored on the device after the first unlock."""
    return encrypt_text(data_secret, user_hash)


def verify_password_check(data_secret: bytes, user_hash: str, stored: bytes) -> bool:
    """Compare a freshly derived verifier with the stored one."""
    return hmac.compare_digest(make_password_check(data_secret, user_hash), bytes(stored))
