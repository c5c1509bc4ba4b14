"""
test_matching.py - Unit Tests
Tests for: match decision, confidence normalisation, threshold boundary
"""

import sys
import os
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from kiosk.matching import MATCH_THRESHOLD, confidence_for, decide


class TestMatchDecision(unittest.TestCase):

    def test_default_threshold(self):
        self.assertEqual(MATCH_THRESHOLD, 100)

    def test_identical(self):
        d = decide(0)
        self.assertTrue(d.is_match)
        self.assertEqual(d.confidence, 1.0)
        self.assertEqual(d.percent, 100)

    def test_at_threshold_is_match_with_zero_confidence(self):
        d = decide(100, 100)
        self.assertTrue(d.is_match)
        self.assertEqual(d.confidence, 0.0)

    def test_above_threshold(self):
        d = decide(101, 100)
        self.assertFalse(d.is_match)
        self.assertEqual(d.confidence, 0.0)

    def test_far_above_threshold_clamped(self):
        self.assertEqual(decide(10_000).confidence, 0.0)

    def test_score_40(self):
        d = decide(40)
        self.assertTrue(d.is_match)
        self.assertAlmostEqual(d.confidence, 0.6)
        self.assertEqual(d.percent, 60)
        self.assertEqual(d.score, 40)

    def test_confidence_monotonic(self):
        values = [confidence_for(s) for s in range(0, 150)]
        for a, b in zip(values, values[1:]):
            self.assertGreaterEqual(a, b)
        for v in values:
            self.assertGreaterEqual(v, 0.0)
            self.assertLessEqual(v, 1.0)

    def test_custom_threshold(self):
        self.assertAlmostEqual(decide(25, 50).confidence, 0.5)
        self.assertFalse(decide(60, 50).is_match)

    def test_invalid_inputs(self):
        with self.assertRaises(ValueError):
            confidence_for(-1)
        with self.assertRaises(ValueError):
            decide(10, 0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
