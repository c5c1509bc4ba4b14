"""
models.py - Shared Wire Models
Common: request/response shapes used by the kiosk client and the reference
directory service.

from_dict() raises KeyError / TypeError / ValueError on malformed input; the
caller decides what that means (the client maps it to a protocol error, the
server to a 400).
"""

from dataclasses import dataclass, asdict
from typing import Optional

SCAN_ACTIONS = ("IN", "OUT")


def _require_int(d: dict, key: str) -> int:
    value = d[key]
    # bool is an int subclass; a JSON true is not an id
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{key}' must be an integer, got {value!r}")
    return value


def _require_str(d: dict, key: str) -> str:
    value = d[key]
    if not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string, got {value!r}")
    return value


@dataclass(frozen=True)
class DirectoryEntry:
    """One employee search result. Read-only, never persisted."""
    id: int
    name: str
    ref: Optional[str] = None

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(d: dict) -> "DirectoryEntry":
        ref = d.get("ref")
        name = _require_str(d, "name")
        if not name.strip():
            raise ValueError("'name' is empty")
        return DirectoryEntry(
            id=_require_int(d, "id"),
            name=name,
            ref=None if ref is None else str(ref),
        )


@dataclass(frozen=True)
class EnrolResponse:
    enrollment_id: int
    enrollment_id_formatted: Optional[str] = None
    employee_ref: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self):
        return {
            "enrollmentId": self.enrollment_id,
            "enrollmentIdFormatted": self.enrollment_id_formatted,
            "employeeRef": self.employee_ref,
            "status": self.status,
        }

    @staticmethod
    def from_dict(d: dict) -> "EnrolResponse":
        return EnrolResponse(
            enrollment_id=_require_int(d, "enrollmentId"),
            enrollment_id_formatted=d.get("enrollmentIdFormatted"),
            employee_ref=d.get("employeeRef"),
            status=d.get("status"),
        )


@dataclass(frozen=True)
class ScanResponse:
    action: str

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(d: dict) -> "ScanResponse":
        action = _require_str(d, "action").upper()
        if action not in SCAN_ACTIONS:
            raise ValueError(f"Unknown scan action {action!r}")
        return ScanResponse(action=action)
