"""
test_capture.py - Unit Tests
Tests for: reader initialisation, probe capture, enrollment sampling and
fusion, comparison, simulated reader, progress delivery
"""

import sys
import os
import threading
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from kiosk.capture import CaptureOrchestrator
from kiosk.errors import CaptureFailure, DeviceNotInitialized, EnrollmentFusionFailure
from kiosk.progress import ProgressChannel, Worker, follow
from kiosk.reader import (
    CaptureResult, OpenPriority, RawSample, ReaderResult, ResultCode, SimulatedReader, Template,
)
from tests.fakes import ScriptedReader, ok_capture


def ready(reader, progress=None) -> CaptureOrchestrator:
    orchestrator = CaptureOrchestrator(reader, capture_timeout_ms=100, progress=progress)
    orchestrator.initialize()
    return orchestrator


# ─────────────────────────────────────────────
class TestInitialize(unittest.TestCase):

    def test_exclusive(self):
        reader = ScriptedReader()
        orchestrator = ready(reader)
        self.assertTrue(orchestrator.is_initialized)
        self.assertEqual(reader.opened, [OpenPriority.EXCLUSIVE])

    def test_cooperative_fallback(self):
        reader = ScriptedReader(open_codes=[ResultCode.DEVICE_BUSY, ResultCode.SUCCESS])
        orchestrator = ready(reader)
        self.assertTrue(orchestrator.is_initialized)
        self.assertEqual(reader.opened, [OpenPriority.EXCLUSIVE, OpenPriority.COOPERATIVE])

    def test_both_fail(self):
        reader = ScriptedReader(open_codes=[ResultCode.DEVICE_BUSY, ResultCode.DEVICE_FAILURE])
        orchestrator = CaptureOrchestrator(reader)
        with self.assertRaises(DeviceNotInitialized):
            orchestrator.initialize()
        self.assertFalse(orchestrator.is_initialized)
        self.assertIn("DEVICE_FAILURE", orchestrator.last_error)

    def test_idempotent(self):
        reader = ScriptedReader()
        orchestrator = ready(reader)
        orchestrator.initialize()
        self.assertEqual(len(reader.opened), 1)

    def test_operations_require_device(self):
        orchestrator = CaptureOrchestrator(ScriptedReader())
        with self.assertRaises(DeviceNotInitialized):
            orchestrator.capture_probe()
        with self.assertRaises(DeviceNotInitialized):
            orchestrator.capture_enrollment_template()
        with self.assertRaises(DeviceNotInitialized):
            orchestrator.compare(Template(b"a"), Template(b"b"))

    def test_close(self):
        reader = ScriptedReader()
        orchestrator = ready(reader)
        orchestrator.close()
        self.assertTrue(reader.closed)
        self.assertFalse(orchestrator.is_initialized)


# ─────────────────────────────────────────────
class TestCaptureProbe(unittest.TestCase):

    def test_success(self):
        orchestrator = ready(ScriptedReader(captures=[ok_capture(b"abc")]))
        self.assertEqual(orchestrator.capture_probe().data, b"abc")

    def test_timeout(self):
        orchestrator = ready(ScriptedReader(captures=[CaptureResult(ResultCode.TIMEOUT)]))
        with self.assertRaises(CaptureFailure) as ctx:
            orchestrator.capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.TIMEOUT)

    def test_no_data(self):
        empty = CaptureResult(ResultCode.SUCCESS, RawSample(data=None))
        orchestrator = ready(ScriptedReader(captures=[empty]))
        with self.assertRaises(CaptureFailure) as ctx:
            orchestrator.capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.NO_DATA)

    def test_extraction_failure(self):
        orchestrator = ready(ScriptedReader(extract_code=ResultCode.FAILURE))
        with self.assertRaises(CaptureFailure) as ctx:
            orchestrator.capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.FAILURE)

    def test_empty_sample_data(self):
        empty = CaptureResult(ResultCode.SUCCESS, RawSample(data=b""))
        orchestrator = ready(ScriptedReader(captures=[empty]))
        with self.assertRaises(CaptureFailure) as ctx:
            orchestrator.capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.NO_DATA)

    def test_empty_extracted_template(self):
        class HollowReader(ScriptedReader):
            def extract_template(self, sample):
                return ReaderResult(ResultCode.SUCCESS, Template(data=b""))

        with self.assertRaises(CaptureFailure) as ctx:
            ready(HollowReader()).capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.NO_DATA)

    def test_reader_exception_becomes_device_failure(self):
        orchestrator = ready(ScriptedReader(captures=[RuntimeError("usb unplugged")]))
        with self.assertRaises(CaptureFailure) as ctx:
            orchestrator.capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.DEVICE_FAILURE)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_extraction_exception_becomes_device_failure(self):
        class FaultyReader(ScriptedReader):
            def extract_template(self, sample):
                raise OSError("driver crashed")

        with self.assertRaises(CaptureFailure) as ctx:
            ready(FaultyReader()).capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.DEVICE_FAILURE)


# ─────────────────────────────────────────────
class TestEnrollmentCapture(unittest.TestCase):

    def test_four_samples_fused(self):
        reader = ScriptedReader(captures=[ok_capture(b"s%d" % i) for i in range(4)])
        template = ready(reader).capture_enrollment_template()
        self.assertEqual([t.data for t in reader.fused], [b"s0", b"s1", b"s2", b"s3"])
        self.assertEqual(template.data, b"fused:s0|s1|s2|s3")

    def test_failed_captures_retried(self):
        progress = ProgressChannel()
        reader = ScriptedReader(captures=[
            ok_capture(b"a"),
            CaptureResult(ResultCode.TIMEOUT),
            ok_capture(b"b"),
            CaptureResult(ResultCode.FAILURE),
            CaptureResult(ResultCode.TIMEOUT),
            ok_capture(b"c"),
            ok_capture(b"d"),
        ])
        ready(reader, progress).capture_enrollment_template(label="alice")
        self.assertEqual([t.data for t in reader.fused], [b"a", b"b", b"c", b"d"])

        events = list(progress.drain())
        retries = [e for e in events if e.stage == "retry"]
        self.assertEqual([e.detail["sample"] for e in retries], [2, 3, 3])
        self.assertTrue(any("[alice] Scan 4 of 4" in e.message for e in events))

    def test_reader_exception_retried(self):
        progress = ProgressChannel()
        reader = ScriptedReader(captures=[ok_capture(b"a"), RuntimeError("glitch"), ok_capture(b"b")])
        ready(reader, progress).capture_enrollment_template()
        self.assertEqual(len(reader.fused), 4)
        self.assertEqual([t.data for t in reader.fused[:2]], [b"a", b"b"])
        retries = [e for e in progress.drain() if e.stage == "retry"]
        self.assertEqual([e.detail["code"] for e in retries], ["DEVICE_FAILURE"])

    def test_fusion_failure(self):
        reader = ScriptedReader(fuse_code=ResultCode.FAILURE)
        with self.assertRaises(EnrollmentFusionFailure):
            ready(reader).capture_enrollment_template()
        self.assertEqual(len(reader.fused), 4)

    def test_sample_count_validated(self):
        with self.assertRaises(ValueError):
            ready(ScriptedReader()).capture_enrollment_template(sample_count=0)


# ─────────────────────────────────────────────
class TestCompare(unittest.TestCase):

    def test_score(self):
        orchestrator = ready(ScriptedReader(scores=[40]))
        self.assertEqual(orchestrator.compare(Template(b"a"), Template(b"b")), 40)

    def test_compare_error(self):
        orchestrator = ready(ScriptedReader(scores=[ResultCode.INVALID_PARAMETER]))
        with self.assertRaises(CaptureFailure):
            orchestrator.compare(Template(b"a"), Template(b"b"))

    def test_negative_score_rejected(self):
        orchestrator = ready(ScriptedReader(scores=[-1]))
        with self.assertRaises(CaptureFailure):
            orchestrator.compare(Template(b"a"), Template(b"b"))

    def test_serialised_access(self):
        reader = ScriptedReader(scores=[1] * 50)
        orchestrator = ready(reader)
        threads = [
            threading.Thread(target=orchestrator.compare, args=(Template(b"a"), Template(b"b")))
            for _ in range(50)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(reader.compared), 50)


# ─────────────────────────────────────────────
class TestSimulatedReader(unittest.TestCase):

    def test_genuine_and_impostor(self):
        alice = SimulatedReader(finger="alice", seed=1)
        orchestrator = ready(alice)
        enrolled = orchestrator.capture_enrollment_template()
        self.assertLess(orchestrator.compare(orchestrator.capture_probe(), enrolled), 100)

        alice.present_finger("mallory")
        self.assertGreater(orchestrator.compare(orchestrator.capture_probe(), enrolled), 100)

    def test_import_matches_original(self):
        orchestrator = ready(SimulatedReader(finger="bob", seed=2))
        enrolled = orchestrator.capture_enrollment_template()
        restored = orchestrator.import_template(enrolled.data)
        self.assertEqual(restored, enrolled)
        self.assertEqual(orchestrator.compare(enrolled, restored), 0)

    def test_import_wrong_size(self):
        with self.assertRaises(ValueError):
            SimulatedReader().import_template(b"short")

    def test_no_finger_times_out(self):
        reader = SimulatedReader()
        orchestrator = ready(reader)
        reader.present_finger(None)
        with self.assertRaises(CaptureFailure) as ctx:
            orchestrator.capture_probe()
        self.assertEqual(ctx.exception.code, ResultCode.TIMEOUT)

    def test_closed_reader(self):
        reader = SimulatedReader()
        self.assertEqual(reader.capture(100).code, ResultCode.DEVICE_FAILURE)


# ─────────────────────────────────────────────
class TestProgress(unittest.TestCase):

    def test_follow_delivers_on_caller_thread(self):
        channel = ProgressChannel()
        seen = []

        def job():
            for i in range(3):
                channel.emit("step", f"step {i}", n=i)
            return "done"

        with Worker() as worker:
            result = follow(worker.submit(job), channel,
                            lambda e: seen.append((threading.current_thread(), e)))

        self.assertEqual(result, "done")
        self.assertEqual([e.detail["n"] for _, e in seen], [0, 1, 2])
        for thread, _ in seen:
            self.assertIs(thread, threading.current_thread())

    def test_follow_reraises(self):
        def job():
            raise RuntimeError("boom")

        with Worker() as worker:
            with self.assertRaises(RuntimeError):
                follow(worker.submit(job), ProgressChannel(), lambda e: None)


if __name__ == "__main__":
    unittest.main(verbosity=2)
