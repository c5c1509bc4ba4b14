"""
directory_client.py - Directory / Event Service Client

Typed RPC surface over the signed-request transport.  Each operation returns
an ApiResult instead of raising: transport, HTTP and protocol failures are
normal outcomes the caller branches on.

    GET    /health                       gateway headers only
    GET    /api/employees/search?q=      signed
    POST   /api/enrol                    signed
    POST   /api/reenrol                  signed
    DELETE /api/employees/{id}           signed
    POST   /api/scan                     signed
    GET    /api/template/{id}            signed
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
import urllib3

from kiosk.config import GATEWAY_ID_HEADER, GATEWAY_SECRET_HEADER, DEFAULT_HTTP_TIMEOUT
from kiosk.errors import (
    DirectoryError, HttpError, NetworkTimeout, NetworkUnreachable, ProtocolError,
)
from kiosk.signing import RequestSigner
from kiosk_common.models import DirectoryEntry, EnrolResponse, ScanResponse
from kiosk_common.utils import client_local_time, compact_json, mask_sensitive

logger = logging.getLogger(__name__)

_MALFORMED = (KeyError, TypeError, ValueError, AttributeError)


@dataclass(frozen=True)
class ApiResult:
    """Outcome of one directory call: (ok, value, error)."""
    ok: bool
    value: Any = None
    error: Optional[DirectoryError] = None

    @property
    def error_detail(self) -> Optional[str]:
        return None if self.error is None else str(self.error)


class DirectoryClient:

    def __init__(self, base_url: str, signer: RequestSigner, api_token: str,
                 gateway_client_id: str, gateway_client_secret: str,
                 timeout: float = DEFAULT_HTTP_TIMEOUT, verify_tls: bool = True,
                 session: requests.Session = None):
        self._base_url = base_url.rstrip("/")
        self._signer = signer
        self._api_token = api_token
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._session = session or requests.Session()
        self._session.headers.update({
            GATEWAY_ID_HEADER: gateway_client_id,
            GATEWAY_SECRET_HEADER: gateway_client_secret,
        })
        if not verify_tls:
            # Self-signed gateway in test deployments
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @classmethod
    def from_config(cls, config, session: requests.Session = None) -> "DirectoryClient":
        return cls(
            base_url=config.base_url,
            signer=RequestSigner(config.hmac_secret),
            api_token=config.api_token,
            gateway_client_id=config.gateway_client_id,
            gateway_client_secret=config.gateway_client_secret,
            timeout=config.http_timeout,
            verify_tls=config.verify_tls,
            session=session,
        )

    def close(self):
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ──────────────────────────────────────────
    # TRANSPORT
    # ──────────────────────────────────────────
    def _send(self, method: str, path: str, params: dict = None,
              payload: dict = None, signed: bool = True) -> requests.Response:
        body = compact_json(payload) if payload is not None else b""
        headers = {}
        if payload is not None:
            headers["Content-Type"] = "application/json"
            logger.debug(f"{method} {path} payload={mask_sensitive(payload)}")
        if signed:
            headers.update(self._signer.sign(method, path, body).headers(self._api_token))

        try:
            resp = self._session.request(
                method,
                self._base_url + path,
                params=params,
                data=body or None,
                headers=headers,
                timeout=self._timeout,
                verify=self._verify_tls,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkTimeout() from e
        except requests.exceptions.RequestException as e:
            raise NetworkUnreachable(f"Cannot reach directory service: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise HttpError(resp.status_code, resp.reason or "", resp.text)
        return resp

    @staticmethod
    def _json(resp: requests.Response):
        try:
            return resp.json()
        except ValueError as e:
            raise ProtocolError("Empty/invalid JSON response.") from e

    def _call(self, operation: str, fn) -> ApiResult:
        try:
            return ApiResult(ok=True, value=fn())
        except DirectoryError as e:
            logger.error(f"{operation} failed: {e}")
            return ApiResult(ok=False, error=e)

    # ──────────────────────────────────────────
    # HEALTH
    # ──────────────────────────────────────────
    def check_health(self) -> str:
        """Best-effort status line; never raises."""
        try:
            resp = self._session.get(
                self._base_url + "/health",
                timeout=self._timeout,
                verify=self._verify_tls,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Health check failed: {e}")
            return "API: unreachable"
        if 200 <= resp.status_code < 300:
            return "API: OK"
        return f"API: error {resp.status_code} {resp.reason}"

    # ──────────────────────────────────────────
    # EMPLOYEE SEARCH
    # ──────────────────────────────────────────
    def search_employees(self, query: str) -> ApiResult:
        """Substring search on the server; exact-match selection is the caller's job."""
        def run():
            data = self._json(self._send("GET", "/api/employees/search", params={"q": query}))
            if data is None:
                return []
            if not isinstance(data, list):
                raise ProtocolError("Search response is not a list.")
            try:
                return [DirectoryEntry.from_dict(item) for item in data]
            except _MALFORMED as e:
                raise ProtocolError(f"Malformed search result: {e}") from e
        return self._call("search_employees", run)

    # ──────────────────────────────────────────
    # ENROL / RE-ENROL / DELETE
    # ──────────────────────────────────────────
    def _enrol_response(self, resp: requests.Response) -> EnrolResponse:
        data = self._json(resp)
        try:
            return EnrolResponse.from_dict(data)
        except _MALFORMED as e:
            raise ProtocolError(f"Malformed enrolment response: {e}") from e

    def enrol(self, site_id: str, device_id: str, name: str, template_b64: str) -> ApiResult:
        """First-time enrolment: creates a brand-new remote identity."""
        payload = {
            "siteId": site_id,
            "deviceId": device_id,
            "employeeName": name,
            "templateBase64": template_b64,
            "clientLocalTime": client_local_time(),
        }
        return self._call(
            "enrol",
            lambda: self._enrol_response(self._send("POST", "/api/enrol", payload=payload)),
        )

    def reenrol(self, enrollment_id: int, template_b64: str) -> ApiResult:
        """Replace the template bound to an existing remote identity."""
        payload = {
            "enrollmentId": enrollment_id,
            "templateBase64": template_b64,
            "clientLocalTime": client_local_time(),
        }
        return self._call(
            "reenrol",
            lambda: self._enrol_response(self._send("POST", "/api/reenrol", payload=payload)),
        )

    def delete_enrollment(self, enrollment_id: int) -> ApiResult:
        def run():
            self._send("DELETE", f"/api/employees/{enrollment_id}")
            return None
        return self._call("delete_enrollment", run)

    # ──────────────────────────────────────────
    # SCAN EVENT
    # ──────────────────────────────────────────
    def report_scan(self, enrollment_id: int, confidence: float, name: str) -> ApiResult:
        """The server decides IN/OUT from the last event for this identity."""
        payload = {
            "enrollmentId": enrollment_id,
            "confidence": confidence,
            "employeeName": name,
            "clientLocalTime": client_local_time(),
        }

        def run():
            data = self._json(self._send("POST", "/api/scan", payload=payload))
            try:
                return ScanResponse.from_dict(data)
            except _MALFORMED as e:
                raise ProtocolError(f"Malformed scan response: {e}") from e
        return self._call("report_scan", run)

    # ──────────────────────────────────────────
    # TEMPLATE FETCH
    # ──────────────────────────────────────────
    def fetch_template(self, enrollment_id: int) -> ApiResult:
        def run():
            data = self._json(self._send("GET", f"/api/template/{enrollment_id}"))
            try:
                template_b64 = data["templateBase64"]
            except _MALFORMED as e:
                raise ProtocolError("Template response has no templateBase64.") from e
            if not isinstance(template_b64, str) or not template_b64:
                raise ProtocolError("Template response has no templateBase64.")
            return template_b64
        return self._call("fetch_template", run)
