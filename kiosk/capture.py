"""
capture.py - Capture Orchestration

Drives the fingerprint reader: opens it, captures probes, collects and fuses
enrollment samples, and compares templates.  The reader is an exclusively
owned resource, so every reader call goes through one lock; an enrollment
holds it for the whole sample-and-fuse sequence.
"""

import logging
import threading
from typing import List

from kiosk.config import DEFAULT_CAPTURE_TIMEOUT_MS, ENROLLMENT_SAMPLES
from kiosk.errors import CaptureFailure, DeviceNotInitialized, EnrollmentFusionFailure
from kiosk.progress import NullChannel, ProgressChannel
from kiosk.reader import FingerprintReader, OpenPriority, ResultCode, Template

logger = logging.getLogger(__name__)


class CaptureOrchestrator:

    def __init__(self, reader: FingerprintReader,
                 capture_timeout_ms: int = DEFAULT_CAPTURE_TIMEOUT_MS,
                 progress: ProgressChannel = None):
        self._reader = reader
        self._timeout_ms = capture_timeout_ms
        self._progress = progress or NullChannel()
        self._lock = threading.RLock()
        self._initialized = False
        self.last_error = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ──────────────────────────────────────────
    # DEVICE
    # ──────────────────────────────────────────
    def initialize(self):
        """Open the reader exclusively, falling back to cooperative mode."""
        with self._lock:
            if self._initialized:
                return
            code = self._reader.open(OpenPriority.EXCLUSIVE)
            if code != ResultCode.SUCCESS:
                logger.warning(f"Exclusive open failed ({code}); trying cooperative mode")
                code = self._reader.open(OpenPriority.COOPERATIVE)
            if code != ResultCode.SUCCESS:
                self.last_error = f"Failed to open reader: {code}"
                raise DeviceNotInitialized(self.last_error)
            self._initialized = True
            self.last_error = None
            logger.info("Reader ready")

    def close(self):
        with self._lock:
            self._reader.close()
            self._initialized = False

    def _require_device(self):
        if not self._initialized:
            raise DeviceNotInitialized()

    # ──────────────────────────────────────────
    # CAPTURE
    # ──────────────────────────────────────────
    def capture_probe(self) -> Template:
        """One capture plus feature extraction. Raises CaptureFailure."""
        with self._lock:
            self._require_device()
            self._progress.emit("capture", "Place finger on the reader...")
            try:
                result = self._reader.capture(self._timeout_ms)
            except Exception as e:
                raise CaptureFailure(ResultCode.DEVICE_FAILURE, f"Reader error during capture: {e}") from e
            if result.code != ResultCode.SUCCESS:
                raise CaptureFailure(result.code)
            if result.sample is None or result.sample.data is None or len(result.sample.data) == 0:
                raise CaptureFailure(ResultCode.NO_DATA, "Capture returned no data.")

            quality = result.sample.quality
            self._progress.emit("capture", "Capture OK.", quality=quality)

            try:
                extracted = self._reader.extract_template(result.sample)
            except Exception as e:
                raise CaptureFailure(ResultCode.DEVICE_FAILURE, f"Reader error during extraction: {e}") from e
            if extracted.code != ResultCode.SUCCESS or extracted.template is None:
                raise CaptureFailure(extracted.code, f"Feature extraction failed: {extracted.code}")
            if not extracted.template.data:
                raise CaptureFailure(ResultCode.NO_DATA, "Feature extraction returned an empty template.")
            return extracted.template

    def capture_enrollment_template(self, sample_count: int = ENROLLMENT_SAMPLES,
                                    label: str = "") -> Template:
        """
        Collect exactly *sample_count* good samples and fuse them.

        Failed captures are retried without limit; only the operator walking
        away ends the loop.  A fusion failure is not retried: the caller
        restarts the enrollment from zero samples.
        """
        if sample_count < 1:
            raise ValueError("sample_count must be at least 1")
        prefix = f"[{label}] " if label else ""
        with self._lock:
            self._require_device()
            samples: List[Template] = []
            while len(samples) < sample_count:
                n = len(samples) + 1
                self._progress.emit("enroll", f"{prefix}Scan {n} of {sample_count} - place the SAME finger.",
                                    sample=n, total=sample_count)
                try:
                    samples.append(self.capture_probe())
                except CaptureFailure as e:
                    logger.info(f"{prefix}Sample {n} failed ({e}); retrying")
                    self._progress.emit("retry", f"{e} Repeating this scan.", sample=n, code=str(e.code))

            self._progress.emit("enroll", f"Creating enrollment template from {sample_count} scans...")
            fused = self._reader.fuse(samples)
            if fused.code != ResultCode.SUCCESS or fused.template is None:
                raise EnrollmentFusionFailure(fused.code)
            self._progress.emit("enroll", "Enrollment template created.")
            return fused.template

    # ──────────────────────────────────────────
    # COMPARE
    # ──────────────────────────────────────────
    def compare(self, probe: Template, enrolled: Template) -> int:
        """Raw distance score between two templates."""
        with self._lock:
            self._require_device()
            result = self._reader.compare(probe, enrolled)
            if result.code != ResultCode.SUCCESS:
                raise CaptureFailure(result.code, f"Compare failed: {result.code}")
            if result.score < 0:
                raise CaptureFailure(ResultCode.FAILURE, f"Reader returned negative score {result.score}")
            return result.score

    def import_template(self, data: bytes) -> Template:
        """Hydrate stored bytes into a comparable template (store hydrate hook)."""
        with self._lock:
            return self._reader.import_template(data)
