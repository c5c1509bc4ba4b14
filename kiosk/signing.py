"""
signing.py - Request Signing

Every call to the directory service proves possession of a pre-shared secret:

    message   = timestamp "\\n" METHOD "\\n" path "\\n" hex(sha256(body))
    signature = base64(HMAC-SHA256(secret, message))

The timestamp is the current UTC unix second.  The query string is never part
of the signed path.  The server rejects timestamps outside its skew window;
the client does not check anything.
"""

import time
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

API_TOKEN_HEADER  = "X-Api-Token"
TIMESTAMP_HEADER  = "X-HMAC-Timestamp"
SIGNATURE_HEADER  = "X-HMAC-Signature"


# ─────────────────────────────────────────────
# PRIMITIVES
# ─────────────────────────────────────────────
def sha256_hex(data: bytes) -> str:
    """Lower-case hex SHA-256 of *data*."""
    return hashlib.sha256(data).hexdigest()


def canonical_path(path: str) -> str:
    """Strip any query string or fragment from *path*."""
    return urlsplit(path).path or "/"


def build_message(timestamp: str, method: str, path: str, body_hash: str) -> str:
    return f"{timestamp}\n{method.upper()}\n{canonical_path(path)}\n{body_hash}"


def compute_signature(secret: bytes, timestamp: str, method: str,
                      path: str, body_hash: str) -> str:
    message = build_message(timestamp, method, path, body_hash)
    mac = hmac.new(secret, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(mac).decode("ascii")


# ─────────────────────────────────────────────
# SIGNED REQUEST
# ─────────────────────────────────────────────
@dataclass(frozen=True)
class SignedRequest:
    timestamp: str
    body_hash: str
    signature: str

    def headers(self, api_token: str) -> dict:
        return {
            API_TOKEN_HEADER: api_token,
            TIMESTAMP_HEADER: self.timestamp,
            SIGNATURE_HEADER: self.signature,
        }


class RequestSigner:
    """
    Computes the authentication envelope for one outgoing request.

    *clock* returns unix seconds (float or int); it is only injectable so
    tests can pin the timestamp.  The signer holds no per-request state and
    is safe to share between threads.
    """

    def __init__(self, secret: bytes, clock=time.time):
        if not secret:
            raise ValueError("HMAC secret must not be empty")
        self._secret = secret
        self._clock = clock

    def sign(self, method: str, path: str, body: bytes = b"") -> SignedRequest:
        timestamp = str(int(self._clock()))
        body_hash = sha256_hex(body or b"")
        signature = compute_signature(self._secret, timestamp, method, path, body_hash)
        logger.debug(f"Signed {method.upper()} {canonical_path(path)} ts={timestamp} "
                     f"body={body_hash[:16]}…")
        return SignedRequest(timestamp=timestamp, body_hash=body_hash, signature=signature)
