"""
crypto.py - Template Artifact Envelope

Template files on disk are wrapped so corruption and tampering are detected
on load, and optionally encrypted at rest:

    FPT\\x01 | sha256(payload) [32] | payload               integrity only
    FPT\\x02 | nonce [12]          | AES-256-GCM(payload)  encrypted (tag appended)

Files without the FPT magic are legacy raw templates and are returned as-is.
The at-rest key is derived from a passphrase with PBKDF2-HMAC-SHA256 and a
per-store salt kept in the store index.
"""

import os
import hashlib
import hmac
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from kiosk.errors import TemplateIntegrityError

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────
MAGIC_PLAIN     = b"FPT\x01"
MAGIC_ENCRYPTED = b"FPT\x02"
KEY_LEN      = 32          # 256 bits for AES-256
NONCE_LEN    = 12          # 96 bits (NIST recommended for GCM)
SALT_LEN     = 16          # 128-bit salt for PBKDF2
DIGEST_LEN   = 32
PBKDF2_ITER  = 100_000     # iterations (OWASP minimum)


def new_salt() -> bytes:
    return os.urandom(SALT_LEN)


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a 256-bit AES key from *passphrase* and *salt*."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=salt,
        iterations=PBKDF2_ITER,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# ─────────────────────────────────────────────
# SEAL / OPEN
# ─────────────────────────────────────────────
def seal(payload: bytes, key: bytes = None) -> bytes:
    """Wrap template bytes for storage; encrypt when *key* is given."""
    if key is None:
        return MAGIC_PLAIN + hashlib.sha256(payload).digest() + payload
    nonce = os.urandom(NONCE_LEN)
    # The artifact magic is bound as associated data
    return MAGIC_ENCRYPTED + nonce + AESGCM(key).encrypt(nonce, payload, MAGIC_ENCRYPTED)


def unseal(blob: bytes, key: bytes = None) -> bytes:
    """
    Inverse of seal().  Raises TemplateIntegrityError when the checksum or
    GCM tag does not verify, or when an encrypted artifact is read without
    a key.
    """
    if blob.startswith(MAGIC_PLAIN):
        body = blob[len(MAGIC_PLAIN):]
        if len(body) < DIGEST_LEN:
            raise TemplateIntegrityError("Template artifact is truncated.")
        digest, payload = body[:DIGEST_LEN], body[DIGEST_LEN:]
        if not hmac.compare_digest(digest, hashlib.sha256(payload).digest()):
            raise TemplateIntegrityError("Template artifact checksum mismatch.")
        return payload

    if blob.startswith(MAGIC_ENCRYPTED):
        if key is None:
            raise TemplateIntegrityError("Template artifact is encrypted but no passphrase is configured.")
        body = blob[len(MAGIC_ENCRYPTED):]
        nonce, ciphertext = body[:NONCE_LEN], body[NONCE_LEN:]
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, MAGIC_ENCRYPTED)
        except (InvalidTag, ValueError) as e:
            raise TemplateIntegrityError("Template artifact failed authentication.") from e

    logger.debug("Reading legacy raw template artifact")
    return blob
