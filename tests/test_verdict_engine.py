"""
Verdict engine tests.

Each of the five signals in isolation, factor ordering, clamping, the
suspicious threshold and the uncalibrated fallback.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from tests.fixtures.synthetic_samples import make_baseline, make_record, make_window
from utils import verdict_engine as ve
from utils.session_models import SpokenAnswer
from utils.verdict_engine import VerdictEngine


class TestUncalibrated(unittest.TestCase):

    def test_neutral_verdict_regardless_of_samples(self):
        engine = VerdictEngine()
        for window in (make_window(), make_window(blinks=9, brow=0.9, head_step=1.0), []):
            verdict = engine.evaluate(None, SpokenAnswer.YES, window, 30.0)
            self.assertEqual(verdict.confidence, 0.5)
            self.assertFalse(verdict.is_suspicious)
            self.assertEqual(verdict.factors, (ve.FACTOR_UNCALIBRATED,))


class TestSignals(unittest.TestCase):

    def setUp(self):
        self.engine = VerdictEngine()
        # Default window: 2 blinks over 2 s = 1.0/s, calm face, 2 s response
        self.record = make_record(baseline=make_baseline(blink_mean=1.0, blink_std=0.5,
                                                         duration_mean=2.0, duration_std=0.5))

    def test_normal_pattern(self):
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, make_window(blinks=2), 2.0)
        self.assertEqual(verdict.confidence, 0.0)
        self.assertFalse(verdict.is_suspicious)
        self.assertEqual(verdict.factors, (ve.FACTOR_NORMAL_PATTERN,))

    def test_blink_signal_three_sigma_above(self):
        """Baseline 10 +/- 1 blinks/s, live 13/s -> +0.30 and a blink factor."""
        record = make_record(baseline=make_baseline(blink_mean=10.0, blink_std=1.0))
        window = make_window(duration=1.0, n=41, blinks=13)
        verdict = self.engine.evaluate(record, SpokenAnswer.YES, window, 2.0)
        self.assertAlmostEqual(verdict.confidence, ve.BLINK_WEIGHT)
        self.assertEqual(verdict.factors, (ve.FACTOR_MORE_BLINKS,))
        self.assertFalse(verdict.is_suspicious)

    def test_fewer_blinks(self):
        record = make_record(baseline=make_baseline(blink_mean=3.0, blink_std=0.2))
        verdict = self.engine.evaluate(record, SpokenAnswer.NO, make_window(blinks=0), 2.0)
        self.assertIn(ve.FACTOR_FEWER_BLINKS, verdict.factors)

    def test_blink_deviation_at_threshold_does_not_trigger(self):
        """|1.0 - 0.0| == 2 * 0.5 is not strictly greater."""
        record = make_record(baseline=make_baseline(blink_mean=0.0, blink_std=0.5))
        verdict = self.engine.evaluate(record, SpokenAnswer.YES, make_window(blinks=2), 2.0)
        self.assertEqual(verdict.factors, (ve.FACTOR_NORMAL_PATTERN,))

    def test_slower_response_also_counts_as_long_pause(self):
        """3.6 s vs 2.0 +/- 0.5: beyond 2 sigma and beyond mean + 3 sigma."""
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, make_window(blinks=2), 3.6)
        self.assertEqual(verdict.factors, (ve.FACTOR_LONGER_RESPONSE, ve.FACTOR_LONG_PAUSE))
        self.assertAlmostEqual(verdict.confidence, ve.RESPONSE_TIME_WEIGHT + ve.LONG_PAUSE_WEIGHT)
        self.assertFalse(verdict.is_suspicious)

    def test_faster_response(self):
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, make_window(blinks=2), 0.5)
        self.assertEqual(verdict.factors, (ve.FACTOR_FASTER_RESPONSE,))
        self.assertAlmostEqual(verdict.confidence, ve.RESPONSE_TIME_WEIGHT)

    def test_head_movement_is_absolute(self):
        # 20 steps of 0.4 rad over 21 samples -> 8.0 / 21 = 0.38 > 0.30
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, make_window(blinks=2, head_step=0.4), 2.0)
        self.assertEqual(verdict.factors, (ve.FACTOR_HEAD_MOVEMENT,))
        self.assertAlmostEqual(verdict.confidence, ve.HEAD_MOVEMENT_WEIGHT)

    def test_facial_tension(self):
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, make_window(blinks=2, brow=0.7), 2.0)
        self.assertEqual(verdict.factors, (ve.FACTOR_FACIAL_TENSION,))
        self.assertAlmostEqual(verdict.confidence, ve.FACIAL_TENSION_WEIGHT)

    def test_all_signals_in_order_and_clamped(self):
        window = make_window(blinks=8, brow=0.9, head_step=0.5)
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, window, 10.0)
        self.assertEqual(verdict.factors, (
            ve.FACTOR_MORE_BLINKS,
            ve.FACTOR_LONGER_RESPONSE,
            ve.FACTOR_HEAD_MOVEMENT,
            ve.FACTOR_FACIAL_TENSION,
            ve.FACTOR_LONG_PAUSE,
        ))
        self.assertAlmostEqual(verdict.confidence, 1.0)
        self.assertLessEqual(verdict.confidence, 1.0)
        self.assertTrue(verdict.is_suspicious)
        self.assertEqual(verdict.percentage, 100)

    def test_suspicious_is_strictly_above_half(self):
        """Blink + head movement = 0.50 exactly: not suspicious."""
        window = make_window(blinks=8, head_step=0.4)
        verdict = self.engine.evaluate(self.record, SpokenAnswer.YES, window, 2.0)
        self.assertAlmostEqual(verdict.confidence, 0.5)
        self.assertFalse(verdict.is_suspicious)

    def test_baseline_selected_by_polarity(self):
        from utils.baseline_builder import CalibrationRecord
        record = CalibrationRecord(
            participant_id="p1",
            calibrated_at=self.record.calibrated_at,
            yes_baseline=make_baseline(blink_mean=1.0, blink_std=0.1),
            no_baseline=make_baseline(blink_mean=5.0, blink_std=0.1),
            sample_count=8,
            average_tracking_confidence=1.0,
        )
        window = make_window(blinks=2)
        self.assertEqual(self.engine.evaluate(record, SpokenAnswer.YES, window, 2.0).factors,
                         (ve.FACTOR_NORMAL_PATTERN,))
        self.assertEqual(self.engine.evaluate(record, SpokenAnswer.NO, window, 2.0).factors,
                         (ve.FACTOR_FEWER_BLINKS,))

    def test_non_answer_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.evaluate(self.record, SpokenAnswer.TIMEOUT, make_window(), 2.0)


if __name__ == "__main__":
    unittest.main()
