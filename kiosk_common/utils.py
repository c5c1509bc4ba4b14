"""
utils.py - Common Utility Functions
"""

import time
import base64
import binascii
import json
from datetime import datetime


def current_timestamp() -> int:
    return int(time.time())


def client_local_time() -> str:
    """Local wall-clock time in ISO-8601 with offset, for audit fields."""
    return datetime.now().astimezone().isoformat()


def compact_json(obj) -> bytes:
    """Serialise *obj* to the exact bytes that are hashed and sent."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def b64encode_text(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode_text(text: str) -> bytes:
    """Strict base64 decode; raises ValueError on malformed input."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def mask_sensitive(data: dict, keys=("templateBase64", "hmac_secret", "api_token")) -> dict:
    """
    Return a copy of *data* with sensitive fields replaced by a placeholder.
    Useful for safe logging.
    """
    masked = {}
    for k, v in data.items():
        if k in keys:
            masked[k] = f"<{k}: {len(str(v))} chars>"
        elif isinstance(v, dict):
            masked[k] = mask_sensitive(v, keys)
        else:
            masked[k] = v
    return masked
