"""
config.py - Reference Directory Service Configuration
"""

import os
import base64
import secrets

# ─────────────────────────────────────────────
# CREDENTIALS
# Generated per process when not supplied; a kiosk can only talk to the
# service if it is given the same values.
# ─────────────────────────────────────────────
API_TOKEN        = os.environ.get("DIRECTORY_API_TOKEN", secrets.token_urlsafe(32))
HMAC_SECRET_B64  = os.environ.get("DIRECTORY_HMAC_SECRET",
                                  base64.b64encode(secrets.token_bytes(64)).decode())
GATEWAY_CLIENT_ID     = os.environ.get("DIRECTORY_GATEWAY_CLIENT_ID", "kiosk.access")
GATEWAY_CLIENT_SECRET = os.environ.get("DIRECTORY_GATEWAY_CLIENT_SECRET", secrets.token_hex(32))

# ─────────────────────────────────────────────
# SERVER
# ─────────────────────────────────────────────
SERVER_HOST = "127.0.0.1"
SERVER_PORT = int(os.environ.get("DIRECTORY_PORT", 5000))
DEBUG       = False
DB_PATH     = os.environ.get("DIRECTORY_DB_PATH",
                             os.path.join(os.path.dirname(__file__), "directory.db"))

# ─────────────────────────────────────────────
# SECURITY PARAMS
# ─────────────────────────────────────────────
SIGNATURE_SKEW_SEC = 300       # accepted |server clock - X-HMAC-Timestamp|
