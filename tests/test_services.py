"""
Service layer tests.

Answer recognition from transcripts, the JSON participant store and the
Azure Speech token service (HTTP mocked).
"""

import json
import os
import sys
import tempfile
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import patch, MagicMock

from tests.fixtures.synthetic_samples import make_participant, make_record
from utils.session_models import SpokenAnswer


class ManualTimer:
    """Timer double for TranscriptAnswerSource: fire() runs the timeout."""

    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


class TestDetectAnswer(unittest.TestCase):

    def test_english_keywords(self):
        from services.answer_recognition import detect_answer
        self.assertIs(detect_answer("Yeah, I think so", "en"), SpokenAnswer.YES)
        self.assertIs(detect_answer("nope", "en"), SpokenAnswer.NO)
        self.assertIsNone(detect_answer("maybe later", "en"))

    def test_first_keyword_wins(self):
        from services.answer_recognition import detect_answer
        self.assertIs(detect_answer("no... well yes", "en"), SpokenAnswer.NO)

    def test_polish_keywords(self):
        from services.answer_recognition import detect_answer
        self.assertIs(detect_answer("Tak!", "pl"), SpokenAnswer.YES)
        self.assertIs(detect_answer("nie wiem", "pl"), SpokenAnswer.NO)

    def test_keyword_must_be_whole_word(self):
        from services.answer_recognition import detect_answer
        self.assertIsNone(detect_answer("nobody knows", "en"))


class TestTranscriptAnswerSource(unittest.TestCase):

    def setUp(self):
        from services.answer_recognition import TranscriptAnswerSource
        self.timers = []

        def factory(interval, fn):
            timer = ManualTimer(interval, fn)
            self.timers.append(timer)
            return timer

        self.source = TranscriptAnswerSource(timeout_sec=10, language="en", timer_factory=factory)
        self.outcomes = []

    def test_resolves_once_with_answer(self):
        self.source.start_listening(self.outcomes.append)
        self.assertTrue(self.source.is_listening)
        self.assertIs(self.source.submit_transcript("yes", is_final=False), SpokenAnswer.YES)
        self.assertIsNone(self.source.submit_transcript("no", is_final=True))
        self.timers[0].fire()
        self.assertEqual(self.outcomes, [SpokenAnswer.YES])
        self.assertTrue(self.timers[0].cancelled)
        self.assertFalse(self.source.is_listening)

    def test_partial_without_keyword_keeps_listening(self):
        self.source.start_listening(self.outcomes.append)
        self.assertIsNone(self.source.submit_transcript("hmm let me", is_final=False))
        self.assertTrue(self.source.is_listening)
        self.assertEqual(self.source.last_transcript, "hmm let me")

    def test_final_without_keyword_is_unrecognized(self):
        self.source.start_listening(self.outcomes.append)
        self.assertIs(self.source.submit_transcript("I don't know", is_final=True), SpokenAnswer.UNRECOGNIZED)
        self.assertEqual(self.outcomes, [SpokenAnswer.UNRECOGNIZED])

    def test_timeout(self):
        self.source.start_listening(self.outcomes.append, timeout=3)
        self.assertEqual(self.timers[0].interval, 3.0)
        self.timers[0].fire()
        self.assertEqual(self.outcomes, [SpokenAnswer.TIMEOUT])
        self.assertIsNone(self.source.submit_transcript("yes", is_final=True))

    def test_stop_listening_never_calls_back(self):
        self.source.start_listening(self.outcomes.append)
        self.source.stop_listening()
        self.timers[0].fire()
        self.assertIsNone(self.source.submit_transcript("yes", is_final=True))
        self.assertEqual(self.outcomes, [])

    def test_new_request_cancels_previous(self):
        first = []
        self.source.start_listening(first.append)
        self.source.start_listening(self.outcomes.append)
        self.timers[0].fire()
        self.source.submit_transcript("no", is_final=True)
        self.assertEqual(first, [])
        self.assertEqual(self.outcomes, [SpokenAnswer.NO])

    def test_no_request_ignores_transcript(self):
        self.assertIsNone(self.source.submit_transcript("yes", is_final=True))


class TestParticipantStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "participants.json")

    def tearDown(self):
        self.tmp.cleanup()

    def _store(self):
        from services.participant_store import ParticipantStore
        return ParticipantStore(path=self.path)

    def test_create_and_reload(self):
        store = self._store()
        p = store.create("Ala Nowak", 30, "female")
        self.assertTrue(os.path.isfile(self.path))
        reloaded = self._store()
        self.assertEqual(reloaded.get(p.id).name, "Ala Nowak")
        self.assertEqual(reloaded.get(p.id).initials, "AN")
        self.assertFalse(reloaded.get(p.id).is_calibrated)

    def test_save_calibration_replaces_record(self):
        store = self._store()
        p = store.add(make_participant("p1", calibrated=False))
        record = make_record("p1")
        updated = store.save_calibration("p1", record)
        self.assertEqual(updated.calibration, record)
        self.assertEqual(updated.last_calibrated_at, record.calibrated_at)
        self.assertEqual(self._store().get_calibration(p.id), record)

    def test_save_calibration_checks_owner(self):
        store = self._store()
        store.add(make_participant("p1", calibrated=False))
        with self.assertRaises(ValueError):
            store.save_calibration("p1", make_record("someone-else"))

    def test_unknown_participant(self):
        from services.participant_store import ParticipantNotFound
        store = self._store()
        with self.assertRaises(ParticipantNotFound):
            store.get("missing")
        with self.assertRaises(KeyError):
            store.remove("missing")

    def test_session_exclusion(self):
        from services.participant_store import ParticipantBusy
        store = self._store()
        store.add(make_participant("p1"))
        store.add(make_participant("p2"))
        store.begin_session(["p1"])
        with self.assertRaises(ParticipantBusy):
            store.begin_session(["p2", "p1"])
        # All-or-nothing: p2 was not claimed by the failed call
        self.assertFalse(store.is_active("p2"))
        with self.assertRaises(ParticipantBusy):
            store.clear_calibration("p1")
        store.end_session(["p1"])
        self.assertFalse(store.clear_calibration("p1").is_calibrated)

    def test_legacy_file_decodes(self):
        legacy = {"participants": [{
            "id": "old", "name": "Jan", "age": 40, "gender": "mężczyzna",
            "calibrationData": {"playerID": "old", "calibratedAt": 1700000000,
                                "yesBaseline": {}, "noBaseline": {}, "averageFaceConfidence": 0.7},
        }, {"name": "no id"}]}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(legacy, f)
        store = self._store()
        self.assertEqual(len(store.list_participants()), 1)
        p = store.get("old")
        self.assertEqual(p.gender.value, "male")
        self.assertAlmostEqual(p.calibration.average_tracking_confidence, 0.7)

    def test_overlapping_saves_keep_newest_profiles(self):
        store = self._store()
        real_replace = os.replace
        writers = []

        def slow_replace(src, dst):
            if not writers:
                # A second profile is added while the first save is mid-write
                writer = threading.Thread(target=store.add, args=(make_participant("b", "Bartek"),))
                writers.append(writer)
                writer.start()
                writer.join(timeout=0.2)
            real_replace(src, dst)

        with patch("services.participant_store.os.replace", side_effect=slow_replace):
            store.add(make_participant("a", "Ala"))
            writers[0].join(timeout=5)
        self.assertFalse(writers[0].is_alive())
        self.assertEqual(sorted(p.id for p in self._store().list_participants()), ["a", "b"])

    def test_in_memory_store(self):
        from services.participant_store import ParticipantStore
        store = ParticipantStore(path="")
        store.create("Ala", 30, "other")
        self.assertEqual(len(store.list_participants()), 1)
        self.assertFalse(os.path.exists(self.path))


class TestLazySpeechService(unittest.TestCase):
    """Test lazy Speech service initialization."""

    def test_get_speech_service_returns_singleton(self):
        """get_speech_service should return same instance on subsequent calls."""
        import services.azure_speech as mod
        mod._speech_service = None
        from services.azure_speech import get_speech_service
        a = get_speech_service()
        b = get_speech_service()
        self.assertIs(a, b)


class TestAzureSpeechToken(unittest.TestCase):

    def test_missing_key_raises(self):
        from services.azure_speech import AzureSpeechService
        with self.assertRaises(ValueError):
            AzureSpeechService(speech_key="", speech_region="westeurope").get_speech_token()

    @patch("services.azure_speech.requests.post")
    def test_token_returned(self, mock_post):
        from services.azure_speech import AzureSpeechService
        mock_post.return_value = MagicMock(status_code=200, text="tok123\n")
        service = AzureSpeechService(speech_key="key", speech_region="westeurope")
        data = service.get_speech_token()
        self.assertEqual(data["token"], "tok123")
        self.assertEqual(data["region"], "westeurope")
        self.assertIn("locale", data)
        self.assertEqual(mock_post.call_args.kwargs["headers"], {"Ocp-Apim-Subscription-Key": "key"})

    @patch("services.azure_speech.requests.post")
    def test_401_is_value_error(self, mock_post):
        from services.azure_speech import AzureSpeechService
        mock_post.return_value = MagicMock(status_code=401, text="")
        with self.assertRaises(ValueError):
            AzureSpeechService(speech_key="bad", speech_region="westeurope").get_speech_token()


if __name__ == "__main__":
    unittest.main()
