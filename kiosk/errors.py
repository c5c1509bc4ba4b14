"""
errors.py - Kiosk Error Taxonomy

Every failure the kiosk core can meet is one of these classes.  None of them
is fatal: the directory client wraps transport errors into ApiResult values,
the capture layer raises device errors, and the workflows turn all of them
into a terminal WorkflowResult with a readable reason.
"""


class KioskError(Exception):
    """Base class for all recoverable kiosk failures."""


# ─────────────────────────────────────────────
# DIRECTORY / TRANSPORT
# ─────────────────────────────────────────────
class DirectoryError(KioskError):
    pass


class NetworkTimeout(DirectoryError):
    def __init__(self, message: str = "Request timed out waiting for server."):
        super().__init__(message)


class NetworkUnreachable(DirectoryError):
    pass


class HttpError(DirectoryError):
    """Non-2xx response. The body is kept raw, never parsed."""

    def __init__(self, status: int, reason: str, body: str):
        self.status = status
        self.reason = reason
        self.body = body
        super().__init__(f"HTTP {status} {reason}: {body}")


class ProtocolError(DirectoryError):
    """2xx response whose JSON is missing or not the expected shape."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# ─────────────────────────────────────────────
# DEVICE / CAPTURE
# ─────────────────────────────────────────────
class DeviceError(KioskError):
    pass


class DeviceNotInitialized(DeviceError):
    def __init__(self, message: str = "Reader not initialized."):
        super().__init__(message)


class CaptureFailure(DeviceError):
    def __init__(self, code, message: str = None):
        self.code = code
        super().__init__(message or f"Capture failed: {code}")


class EnrollmentFusionFailure(DeviceError):
    def __init__(self, code):
        self.code = code
        super().__init__(f"Enrollment failed: {code}")


# ─────────────────────────────────────────────
# MATCHING / STORAGE
# ─────────────────────────────────────────────
class NoTemplatesEnrolled(KioskError):
    def __init__(self):
        super().__init__("No templates enrolled.")


class NoMatch(KioskError):
    def __init__(self, score: int = None):
        self.score = score
        super().__init__("Fingerprint not recognised, try again.")


class TemplateIntegrityError(KioskError):
    """A stored template artifact failed its checksum or decryption."""
