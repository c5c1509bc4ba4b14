"""
api.py - Reference Directory Service (Flask)

A small implementation of the directory/event API the kiosk talks to, for
local development and end-to-end tests.  It enforces the same gatekeeping a
production deployment does: gateway credentials on every route, and the API
token plus HMAC signature on every /api route.

    python -m kiosk_server.api
"""

import hmac
import base64
import binascii
import logging
from functools import wraps

from flask import Flask, current_app, jsonify, request

from kiosk.signing import (
    API_TOKEN_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER, compute_signature, sha256_hex,
)
from kiosk.config import GATEWAY_ID_HEADER, GATEWAY_SECRET_HEADER, decode_secret
from kiosk_common.models import EnrolResponse, ScanResponse
from kiosk_common.utils import current_timestamp
from kiosk_server import config as defaults
from kiosk_server import database as db

logger = logging.getLogger("directory_api")


# ─── HELPERS ──────────────────────────────────────────────────────────────────

def client_ip() -> str:
    return request.remote_addr or ""


def _db() -> str:
    return current_app.config["DB_PATH"]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _valid_b64(text) -> bool:
    if not isinstance(text, str) or not text:
        return False
    try:
        base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def _enrol_response(employee_id: int, status: str) -> dict:
    return EnrolResponse(
        enrollment_id=employee_id,
        enrollment_id_formatted=db.formatted_enrollment_id(employee_id),
        employee_ref=db.employee_ref(employee_id),
        status=status,
    ).to_dict()


def _int_field(data: dict, key: str):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _check_gateway():
    cfg = current_app.config
    client_id = request.headers.get(GATEWAY_ID_HEADER, "")
    secret = request.headers.get(GATEWAY_SECRET_HEADER, "")
    if not (hmac.compare_digest(client_id, cfg["GATEWAY_CLIENT_ID"])
            and hmac.compare_digest(secret, cfg["GATEWAY_CLIENT_SECRET"])):
        logger.warning(f"[GATEWAY] Rejected {request.method} {request.path} from {client_ip()}")
        return jsonify({"error": "Forbidden"}), 403
    return None


def verify_signature() -> str:
    """Return an error string, or "" if the request is authentic."""
    cfg = current_app.config
    token = request.headers.get(API_TOKEN_HEADER, "")
    if not hmac.compare_digest(token, cfg["API_TOKEN"]):
        return "Invalid API token"

    timestamp = request.headers.get(TIMESTAMP_HEADER, "")
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not timestamp or not signature:
        return "Missing signature headers"
    try:
        skew = abs(current_timestamp() - int(timestamp))
    except ValueError:
        return "Malformed timestamp"
    if skew > cfg["SIGNATURE_SKEW_SEC"]:
        return "Timestamp outside allowed window"

    expected = compute_signature(
        cfg["HMAC_SECRET"], timestamp, request.method, request.path,
        sha256_hex(request.get_data()),
    )
    if not hmac.compare_digest(expected, signature):
        return "Bad signature"
    return ""


def require_signature(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        error = verify_signature()
        if error:
            logger.warning(f"[AUTH] {error}: {request.method} {request.path} from {client_ip()}")
            return jsonify({"error": error}), 401
        return f(*args, **kwargs)
    return decorated


# ─── APP FACTORY ──────────────────────────────────────────────────────────────

def create_app(config: dict = None) -> Flask:
    app = Flask(__name__)
    app.config.update(
        API_TOKEN=defaults.API_TOKEN,
        HMAC_SECRET=decode_secret(defaults.HMAC_SECRET_B64),
        GATEWAY_CLIENT_ID=defaults.GATEWAY_CLIENT_ID,
        GATEWAY_CLIENT_SECRET=defaults.GATEWAY_CLIENT_SECRET,
        SIGNATURE_SKEW_SEC=defaults.SIGNATURE_SKEW_SEC,
        DB_PATH=defaults.DB_PATH,
    )
    if config:
        app.config.update(config)
    db.init_db(app.config["DB_PATH"])

    app.before_request(_check_gateway)

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "timestamp": current_timestamp()}), 200

    @app.route("/api/employees/search", methods=["GET"])
    @require_signature
    def search():
        query = request.args.get("q", "").strip()
        if not query:
            return jsonify([]), 200
        return jsonify(db.search_employees(_db(), query)), 200

    @app.route("/api/enrol", methods=["POST"])
    @require_signature
    def enrol():
        data = _json_body()
        if data is None:
            return jsonify({"error": "JSON body required"}), 400
        name = data.get("employeeName")
        template_b64 = data.get("templateBase64")
        if not isinstance(name, str) or not name.strip() or not _valid_b64(template_b64):
            return jsonify({"error": "employeeName and templateBase64 required"}), 400
        employee_id = db.create_employee(
            _db(), name.strip(), data.get("siteId"), data.get("deviceId"),
            template_b64, current_timestamp(),
        )
        logger.info(f"[ENROL] '{name.strip()}' → {employee_id} from {client_ip()}")
        return jsonify(_enrol_response(employee_id, "enrolled")), 201

    @app.route("/api/reenrol", methods=["POST"])
    @require_signature
    def reenrol():
        data = _json_body()
        if data is None:
            return jsonify({"error": "JSON body required"}), 400
        employee_id = _int_field(data, "enrollmentId")
        template_b64 = data.get("templateBase64")
        if employee_id is None or not _valid_b64(template_b64):
            return jsonify({"error": "enrollmentId and templateBase64 required"}), 400
        if db.get_employee(_db(), employee_id) is None:
            return jsonify({"error": "Enrollment not found"}), 404
        db.replace_template(_db(), employee_id, template_b64, current_timestamp())
        logger.info(f"[REENROL] {employee_id} from {client_ip()}")
        return jsonify(_enrol_response(employee_id, "reenrolled")), 200

    @app.route("/api/employees/<int:employee_id>", methods=["DELETE"])
    @require_signature
    def delete_employee(employee_id: int):
        if not db.delete_employee(_db(), employee_id):
            return jsonify({"error": "Enrollment not found"}), 404
        logger.info(f"[DELETE] {employee_id} from {client_ip()}")
        return jsonify({"deleted": employee_id}), 200

    @app.route("/api/scan", methods=["POST"])
    @require_signature
    def scan():
        data = _json_body()
        if data is None:
            return jsonify({"error": "JSON body required"}), 400
        employee_id = _int_field(data, "enrollmentId")
        confidence = data.get("confidence")
        if employee_id is None or isinstance(confidence, bool) \
                or not isinstance(confidence, (int, float)):
            return jsonify({"error": "enrollmentId and confidence required"}), 400
        if db.get_employee(_db(), employee_id) is None:
            return jsonify({"error": "Enrollment not found"}), 404
        action = db.record_scan(
            _db(), employee_id, float(confidence), data.get("clientLocalTime"),
            current_timestamp(), client_ip(),
        )
        logger.info(f"[SCAN] {employee_id} {action} confidence={float(confidence):.2f}")
        return jsonify(ScanResponse(action).to_dict()), 200

    @app.route("/api/template/<int:employee_id>", methods=["GET"])
    @require_signature
    def template(employee_id: int):
        template_b64 = db.get_template(_db(), employee_id)
        if template_b64 is None:
            return jsonify({"error": "Template not found"}), 404
        return jsonify({"templateBase64": template_b64}), 200

    # ─── ERROR HANDLERS ───────────────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(500)
    def internal(e):
        logger.exception("Internal server error")
        return jsonify({"error": "Internal server error"}), 500

    return app


# ─── STARTUP ──────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    app = create_app()
    logger.info(f"Gateway client id: {defaults.GATEWAY_CLIENT_ID}")
    logger.info(f"API health check: http://{defaults.SERVER_HOST}:{defaults.SERVER_PORT}/health")
    app.run(host=defaults.SERVER_HOST, port=defaults.SERVER_PORT, debug=defaults.DEBUG)
