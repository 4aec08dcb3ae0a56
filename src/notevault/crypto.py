"""
Crypto engine -- everything that touches key material.

The server never sees plaintext and never sees the security code.
It only ever receives two things from this module:

    - the encrypted blob:  base64(salt[16] || nonce[12] || ciphertext+tag)
    - the ownership fingerprint:  sha256(sync_id + security_code)

Key derivation is PBKDF2-HMAC-SHA256 (100k iterations) feeding
AES-256-GCM. The parameters match the browser client so blobs written
by either side decrypt on the other.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import WrongSecret

PBKDF2_ITERATIONS = 100_000
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
TAG_SIZE = 16

_DECRYPT_FAILED = "Invalid password/corrupted data"


class DecryptionError(WrongSecret):
    """Raised when a blob cannot be decrypted with the given code.

    Wrong codes and damaged blobs are reported identically.
    """


def derive_key(
    security_code: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Derive an AES-256 key from a security code.

    Args:
        security_code: The user's low-entropy secret.
        salt: Random per-blob salt (SALT_SIZE bytes).
        iterations: PBKDF2 work factor.

    Returns:
        KEY_SIZE bytes of key material.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(security_code.encode("utf-8"))


def encrypt(plaintext: str, security_code: str) -> str:
    """Encrypt note text into a self-contained base64 blob.

    A fresh salt and nonce are drawn for every call, so encrypting the
    same text twice never yields the same blob.

    Args:
        plaintext: Note content.
        security_code: The user's security code.

    Returns:
        ASCII base64 of salt || nonce || ciphertext+tag.
    """
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(security_code, salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt(blob: str, security_code: str) -> str:
    """Decrypt a blob produced by :func:`encrypt`.

    Args:
        blob: base64 salt || nonce || ciphertext+tag.
        security_code: The user's security code.

    Returns:
        The decrypted note text.

    Raises:
        DecryptionError: Wrong code, malformed or tampered blob.
    """
    try:
        raw = base64.b64decode(blob.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise DecryptionError(_DECRYPT_FAILED) from exc

    if len(raw) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise DecryptionError(_DECRYPT_FAILED)

    salt = raw[:SALT_SIZE]
    nonce = raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    ciphertext = raw[SALT_SIZE + NONCE_SIZE:]

    key = derive_key(security_code, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError) as exc:
        raise DecryptionError(_DECRYPT_FAILED) from exc


def fingerprint(text: str) -> str:
    """SHA-256 hex digest of UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def ownership_fingerprint(sync_id: str, security_code: str) -> str:
    """Fingerprint proving knowledge of the code for a sync identifier.

    Deterministic for a given pair and carries no server-side salt, so a
    leaked fingerprint can be attacked offline with a single SHA-256 per
    guess.
    """
    return fingerprint(sync_id + security_code)


def fingerprints_match(presented: str, stored: str) -> bool:
    """Constant-time fingerprint comparison."""
    return hmac.compare_digest(
        presented.encode("utf-8"), stored.encode("utf-8")
    )
