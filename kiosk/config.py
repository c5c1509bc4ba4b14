"""
config.py - Kiosk Configuration

Defaults live here as module constants; every deployment value is read from
the environment by KioskConfig.from_env() and handed to the components as
constructor arguments.  Nothing secret is compiled in.
"""

import os
import base64
import binascii
from dataclasses import dataclass

# ─────────────────────────────────────────────
# DIRECTORY SERVICE
# ─────────────────────────────────────────────
DEFAULT_BASE_URL     = "http://127.0.0.1:5000"
DEFAULT_HTTP_TIMEOUT = 60.0       # seconds, per request
GATEWAY_ID_HEADER     = "CF-Access-Client-Id"
GATEWAY_SECRET_HEADER = "CF-Access-Client-Secret"

# ─────────────────────────────────────────────
# DEVICE / MATCHING
# ─────────────────────────────────────────────
DEFAULT_CAPTURE_TIMEOUT_MS = 5000
DEFAULT_MATCH_THRESHOLD    = 100
ENROLLMENT_SAMPLES         = 4

# ─────────────────────────────────────────────
# LOCAL STORAGE
# ─────────────────────────────────────────────
DEFAULT_TEMPLATE_DIR = os.path.join(os.path.expanduser("~"), ".biotime-kiosk", "templates")

_TRUE = {"1", "true", "yes", "on"}


def _flag(env, name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE


def decode_secret(secret_b64: str) -> bytes:
    """Decode the base64 HMAC secret; raise ValueError on bad input."""
    try:
        return base64.b64decode(secret_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"HMAC secret is not valid base64: {e}") from e


@dataclass(frozen=True)
class KioskConfig:
    base_url: str
    api_token: str
    hmac_secret: bytes
    gateway_client_id: str
    gateway_client_secret: str
    site_id: str = "default-site"
    device_id: str = "kiosk-01"
    template_dir: str = DEFAULT_TEMPLATE_DIR
    template_passphrase: str = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    capture_timeout_ms: int = DEFAULT_CAPTURE_TIMEOUT_MS
    match_threshold: int = DEFAULT_MATCH_THRESHOLD
    verify_tls: bool = True
    strict_disambiguation: bool = False

    @staticmethod
    def from_env(environ=None) -> "KioskConfig":
        env = os.environ if environ is None else environ
        missing = [
            k for k in ("KIOSK_API_TOKEN", "KIOSK_HMAC_SECRET",
                        "KIOSK_GATEWAY_CLIENT_ID", "KIOSK_GATEWAY_CLIENT_SECRET")
            if not env.get(k)
        ]
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return KioskConfig(
            base_url=env.get("KIOSK_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            api_token=env["KIOSK_API_TOKEN"],
            hmac_secret=decode_secret(env["KIOSK_HMAC_SECRET"]),
            gateway_client_id=env["KIOSK_GATEWAY_CLIENT_ID"],
            gateway_client_secret=env["KIOSK_GATEWAY_CLIENT_SECRET"],
            site_id=env.get("KIOSK_SITE_ID", "default-site"),
            device_id=env.get("KIOSK_DEVICE_ID", "kiosk-01"),
            template_dir=env.get("KIOSK_TEMPLATE_DIR", DEFAULT_TEMPLATE_DIR),
            template_passphrase=env.get("KIOSK_TEMPLATE_PASSPHRASE") or None,
            http_timeout=float(env.get("KIOSK_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)),
            capture_timeout_ms=int(env.get("KIOSK_CAPTURE_TIMEOUT_MS", DEFAULT_CAPTURE_TIMEOUT_MS)),
            match_threshold=int(env.get("KIOSK_MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD)),
            verify_tls=_flag(env, "KIOSK_VERIFY_TLS", True),
            strict_disambiguation=_flag(env, "KIOSK_STRICT_DISAMBIGUATION", False),
        )
