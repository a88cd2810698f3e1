"""
Calibration session tests.

The 8-question battery on the orchestrator's phase machine: wrong-answer
retry, automatic advance, finishing into the participant store and the
failure/restart path.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import random
import unittest
from datetime import date

from tests.fixtures.synthetic_samples import (
    FakeClock,
    FakeRecognition,
    FakeTrackingSource,
    ImmediateCountdown,
    SyncExecutor,
    make_participant,
    make_window,
)
from calibration_session import CalibrationSession
from services.participant_store import ParticipantStore
from session_orchestrator import InvalidTransition, SessionPhase
from utils.baseline_builder import BaselineBuilder, CalibrationIncomplete
from utils.session_models import SpokenAnswer


class TestCalibrationSession(unittest.TestCase):

    def setUp(self):
        self.store = ParticipantStore(path="")
        self.participant = self.store.add(make_participant("p1", "Ala", calibrated=False))
        self.tracking = FakeTrackingSource()
        self.recognition = FakeRecognition()
        self.clock = FakeClock()
        self.session = CalibrationSession(
            self.participant,
            self.tracking,
            self.recognition,
            store=self.store,
            today=date(2024, 5, 1),
            rng=random.Random(11),
            show_read_question=False,
            timer_factory=ImmediateCountdown,
            executor=SyncExecutor(),
            clock=self.clock,
        )
        self.session.start_session()
        self.session.begin()

    def _answer_current(self, correct=True, seconds=2.0):
        question = self.session.current_question
        expected = question.expected_answer
        wrong = SpokenAnswer.NO if expected is SpokenAnswer.YES else SpokenAnswer.YES
        # Yes answers blink once per second, no answers twice
        self.tracking.window = make_window(blinks=2 if expected is SpokenAnswer.YES else 4)
        self.session.start_question_recording()
        self.clock.advance(seconds)
        self.recognition.answer(expected if correct else wrong)

    def test_battery_shape(self):
        self.assertEqual(self.session.questions_per_participant, 8)
        self.assertEqual(len(self.session.questions), 8)
        self.assertEqual(self.session.current_phase, SessionPhase.PREPARE)

    def test_correct_answer_advances_automatically(self):
        self._answer_current()
        self.assertEqual(self.session.current_phase, SessionPhase.PREPARE)
        self.assertEqual(self.session.state.question_index, 1)
        self.assertEqual(len(self.session.responses), 1)
        self.assertIsNone(self.session.responses[0].verdict)

    def test_wrong_answer_requires_retry(self):
        self._answer_current(correct=False)
        self.assertEqual(self.session.current_phase, SessionPhase.WRONG_ANSWER)
        self.assertEqual(self.session.state.question_index, 0)
        self.assertEqual(self.session.responses, [])
        self.assertIsNotNone(self.session.snapshot()["expectedAnswer"])

        self.session.retry_current_question()
        self.assertEqual(self.session.current_phase, SessionPhase.PREPARE)
        self._answer_current()
        self.assertEqual(len(self.session.responses), 1)
        self.assertEqual(self.session.state.question_index, 1)

    def test_timeout_during_calibration(self):
        self.session.start_question_recording()
        self.recognition.answer(SpokenAnswer.TIMEOUT)
        self.assertEqual(self.session.current_phase, SessionPhase.ANSWER_TIMEOUT)
        self.session.retry_after_timeout()
        self.assertEqual(self.session.current_phase, SessionPhase.RECORD_ANSWER)

    def test_complete_battery_saves_record(self):
        for _ in range(8):
            self._answer_current()
        self.assertEqual(self.session.current_phase, SessionPhase.SESSION_COMPLETE)
        record = self.session.finish_calibration()
        self.assertEqual(record.sample_count, 8)
        self.assertAlmostEqual(record.yes_baseline.blink_rate_mean, 1.0)
        self.assertAlmostEqual(record.no_baseline.blink_rate_mean, 2.0)
        self.assertEqual(record.yes_baseline.blink_rate_stddev, 0.0)
        self.assertAlmostEqual(record.yes_baseline.response_duration_mean, 2.0)
        stored = self.store.get("p1")
        self.assertTrue(stored.is_calibrated)
        self.assertEqual(stored.calibration, record)
        # Finishing twice returns the same record
        self.assertIs(self.session.finish_calibration(), record)

    def test_finish_before_complete_rejected(self):
        self._answer_current()
        with self.assertRaises(InvalidTransition):
            self.session.finish_calibration()
        self.assertFalse(self.store.get("p1").is_calibrated)

    def test_store_blocks_second_calibration(self):
        from services.participant_store import ParticipantBusy
        other = CalibrationSession(self.participant, FakeTrackingSource(), FakeRecognition(),
                                   store=self.store, executor=SyncExecutor())
        with self.assertRaises(ParticipantBusy):
            other.start_session()
        self.session.cleanup()
        other.start_session()
        other.cleanup()


class _FailingBuilder(BaselineBuilder):

    def build_record(self, participant_id, results, calibrated_at=None):
        raise CalibrationIncomplete("No calibration samples for polarity 'no'", polarity=SpokenAnswer.NO)


class TestCalibrationFailure(unittest.TestCase):

    def setUp(self):
        self.store = ParticipantStore(path="")
        participant = self.store.add(make_participant("p1", calibrated=False))
        self.recognition = FakeRecognition()
        self.session = CalibrationSession(
            participant, FakeTrackingSource(), self.recognition, store=self.store,
            builder=_FailingBuilder(), show_read_question=False, timer_factory=ImmediateCountdown,
            executor=SyncExecutor(), clock=FakeClock(),
        )
        self.session.start_session()
        self.session.begin()
        for _ in range(8):
            self.session.start_question_recording()
            self.recognition.answer(self.session.current_question.expected_answer)

    def test_failure_phase_and_restart(self):
        with self.assertRaises(CalibrationIncomplete):
            self.session.finish_calibration()
        self.assertEqual(self.session.current_phase, SessionPhase.CALIBRATION_FAILED)
        self.assertIn("polarity", self.session.snapshot()["failure"])
        self.assertFalse(self.store.get("p1").is_calibrated)

        self.session.restart()
        self.assertEqual(self.session.current_phase, SessionPhase.PREPARE)
        self.assertEqual(self.session.state.question_index, 0)
        self.assertEqual(self.session.responses, [])
        self.assertIsNone(self.session.snapshot()["failure"])

    def test_restart_only_after_failure(self):
        with self.assertRaises(InvalidTransition):
            self.session.restart()


if __name__ == "__main__":
    unittest.main()
