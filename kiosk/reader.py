"""
reader.py - Fingerprint Reader Capability

The kiosk never extracts features or computes match maths itself.  It talks
to a reader through the FingerprintReader contract below; a hardware SDK
binding implements it on a real kiosk, SimulatedReader implements it for
development and demos.

Every method reports through a ResultCode instead of raising, mirroring how
reader SDKs behave.  import_template() is the exception: malformed bytes are
a programming/storage error and raise ValueError.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# RESULT TYPES
# ─────────────────────────────────────────────
class ResultCode(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    TIMEOUT = "TIMEOUT"
    NO_DATA = "NO_DATA"
    DEVICE_BUSY = "DEVICE_BUSY"
    DEVICE_FAILURE = "DEVICE_FAILURE"
    INVALID_PARAMETER = "INVALID_PARAMETER"

    def __str__(self):
        return self.value


class OpenPriority(str, Enum):
    EXCLUSIVE = "EXCLUSIVE"
    COOPERATIVE = "COOPERATIVE"


@dataclass(frozen=True)
class RawSample:
    data: Any
    quality: Optional[float] = None


@dataclass(frozen=True)
class Template:
    """Template bytes plus the comparable handle the reader built from them."""
    data: bytes
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class CaptureResult:
    code: ResultCode
    sample: Optional[RawSample] = None


@dataclass(frozen=True)
class ReaderResult:
    code: ResultCode
    template: Optional[Template] = None


@dataclass(frozen=True)
class CompareResult:
    code: ResultCode
    score: int = 0


# ─────────────────────────────────────────────
# CONTRACT
# ─────────────────────────────────────────────
class FingerprintReader(ABC):

    @abstractmethod
    def open(self, priority: OpenPriority) -> ResultCode:
        ...

    @abstractmethod
    def capture(self, timeout_ms: int) -> CaptureResult:
        ...

    @abstractmethod
    def extract_template(self, sample: RawSample) -> ReaderResult:
        ...

    @abstractmethod
    def compare(self, probe: Template, enrolled: Template) -> CompareResult:
        ...

    @abstractmethod
    def fuse(self, templates: List[Template]) -> ReaderResult:
        ...

    @abstractmethod
    def import_template(self, data: bytes) -> Template:
        ...

    def close(self):
        pass


# ─────────────────────────────────────────────
# SIMULATION
# ─────────────────────────────────────────────
TEMPLATE_DIM = 128        # feature vector dimensions
SCORE_SCALE  = 100        # L2 distance → integer raw score
_DTYPE = np.dtype("<f4")


def finger_base_vector(finger: str) -> np.ndarray:
    """Deterministic base feature vector for a named finger."""
    seed_int = int(hashlib.sha256(finger.encode()).hexdigest(), 16) % (2**31)
    return np.random.default_rng(seed_int).random(TEMPLATE_DIM)


class SimulatedReader(FingerprintReader):
    """
    Stand-in reader for machines without hardware.

    Each named finger has a fixed base vector; every capture adds Gaussian
    sensor noise, fusion averages the samples, and the raw score is the
    scaled L2 distance.  With the default noise a genuine comparison scores
    around 25 and an impostor around 450, either side of the 100 threshold.
    """

    def __init__(self, finger: Optional[str] = "default", noise_std: float = 0.02,
                 seed: Optional[int] = None):
        self.finger = finger
        self.noise_std = noise_std
        self._rng = np.random.default_rng(seed)
        self._open = False

    def present_finger(self, finger: Optional[str]):
        """Select the finger on the sensor; None means nothing is presented."""
        self.finger = finger

    def open(self, priority: OpenPriority) -> ResultCode:
        self._open = True
        logger.info(f"Simulated reader opened ({priority.value})")
        return ResultCode.SUCCESS

    def capture(self, timeout_ms: int) -> CaptureResult:
        if not self._open:
            return CaptureResult(ResultCode.DEVICE_FAILURE)
        if self.finger is None:
            return CaptureResult(ResultCode.TIMEOUT)
        base = finger_base_vector(self.finger)
        noisy = base + self._rng.normal(0, self.noise_std, TEMPLATE_DIM)
        quality = float(max(0.0, 1.0 - self.noise_std * 10))
        return CaptureResult(ResultCode.SUCCESS, RawSample(data=noisy, quality=quality))

    def extract_template(self, sample: RawSample) -> ReaderResult:
        vector = np.asarray(sample.data, dtype=np.float64)
        if vector.shape != (TEMPLATE_DIM,):
            return ReaderResult(ResultCode.INVALID_PARAMETER)
        return ReaderResult(ResultCode.SUCCESS, self._template(vector))

    def compare(self, probe: Template, enrolled: Template) -> CompareResult:
        a, b = probe.handle, enrolled.handle
        if a is None or b is None or np.shape(a) != np.shape(b):
            return CompareResult(ResultCode.INVALID_PARAMETER)
        distance = float(np.linalg.norm(np.asarray(a) - np.asarray(b)))
        return CompareResult(ResultCode.SUCCESS, int(round(distance * SCORE_SCALE)))

    def fuse(self, templates: List[Template]) -> ReaderResult:
        if not templates:
            return ReaderResult(ResultCode.INVALID_PARAMETER)
        fused = np.mean([t.handle for t in templates], axis=0)
        return ReaderResult(ResultCode.SUCCESS, self._template(fused))

    def import_template(self, data: bytes) -> Template:
        if len(data) != TEMPLATE_DIM * _DTYPE.itemsize:
            raise ValueError(f"Template must be {TEMPLATE_DIM * _DTYPE.itemsize} bytes, got {len(data)}")
        vector = np.frombuffer(data, dtype=_DTYPE).astype(np.float64)
        return Template(data=bytes(data), handle=vector)

    def close(self):
        self._open = False

    @staticmethod
    def _template(vector: np.ndarray) -> Template:
        data = vector.astype(_DTYPE).tobytes()
        # Hydrate from the bytes so in-memory and reloaded templates compare identically
        return Template(data=data, handle=np.frombuffer(data, dtype=_DTYPE).astype(np.float64))
