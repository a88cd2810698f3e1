"""
Calibration Session.

Runs the 8-question known-truth battery through the orchestrator's phase
machine. Each joined answer is compared with the question's expected answer:

- mismatch: wrongAnswer (nothing stored, index kept); retry_current_question()
  returns to prepare;
- match: the response is stored and the session advances on its own
  (prepare, or sessionComplete after the 8th answer).

finish_calibration() builds the CalibrationRecord and writes it to the
participant store. If the baseline cannot be built the session enters
calibrationFailed, from which restart() starts a fresh battery.
"""

import logging
import random
from datetime import date
from typing import List, Optional

from session_orchestrator import InvalidTransition, SessionOrchestrator, SessionPhase
from utils.baseline_builder import CALIBRATION_QUESTION_COUNT, BaselineBuilder, CalibrationIncomplete, CalibrationRecord
from utils.feature_signals import FeatureSample
from utils.participant import Participant
from utils.question_source import generate_calibration_questions
from utils.session_models import QuestionResult, SpokenAnswer

logger = logging.getLogger(__name__)


class CalibrationSession(SessionOrchestrator):
    """
    Usage:
        session = CalibrationSession(participant, tracking, recognition, store=store)
        session.start_session()
        session.begin()
        ...                                 # 8 x (start_question_recording -> answer)
        record = session.finish_calibration()
    """

    def __init__(
        self,
        participant: Participant,
        tracking,
        recognition,
        store=None,
        builder: Optional[BaselineBuilder] = None,
        today: Optional[date] = None,
        rng: Optional[random.Random] = None,
        **kwargs,
    ):
        self._today = today
        self._rng = rng
        questions = generate_calibration_questions(participant, today=today, rng=rng)
        kwargs.setdefault("show_read_question", True)
        super().__init__(
            [participant],
            questions,
            tracking,
            recognition,
            questions_per_participant=CALIBRATION_QUESTION_COUNT,
            store=store,
            **kwargs,
        )
        self.builder = builder or BaselineBuilder()
        self.record: Optional[CalibrationRecord] = None
        self.failure: Optional[str] = None
        self.expected_answer: Optional[SpokenAnswer] = None

    @property
    def participant(self) -> Participant:
        return self.participants[0]

    @property
    def responses(self) -> List[QuestionResult]:
        return self.results_for(self.participant.id)

    def _handle_answer(self, global_index: int, answer: SpokenAnswer, duration: float,
                       samples: List[FeatureSample]) -> None:
        question = self.questions[global_index]
        if question.expected_answer is not None and answer is not question.expected_answer:
            self.expected_answer = question.expected_answer
            logger.info("Calibration answer %s to %r, expected %s", answer.value, question.id,
                        question.expected_answer.value)
            self._set_phase(SessionPhase.WRONG_ANSWER, answer=answer.value,
                            expected=question.expected_answer.value)
            return
        self.expected_answer = None
        result = QuestionResult(
            question=question,
            spoken_answer=answer,
            samples=tuple(samples),
            response_duration=duration,
            global_index=global_index,
        )
        self._record_result(self.participant, result)
        self._advance()

    def retry_current_question(self) -> None:
        """wrongAnswer -> prepare for the same question."""
        self._enter()
        try:
            self._require("retry_current_question", SessionPhase.WRONG_ANSWER)
            self.expected_answer = None
            self._set_phase(SessionPhase.PREPARE)
        finally:
            self._exit()

    def finish_calibration(self) -> CalibrationRecord:
        """
        Build the CalibrationRecord from the stored responses and save it.

        Raises:
            InvalidTransition: battery not complete
            CalibrationIncomplete: baseline could not be built (phase becomes calibrationFailed)
        """
        self._enter()
        try:
            self._require("finish_calibration", SessionPhase.SESSION_COMPLETE)
            if self.record is not None:
                return self.record
            try:
                record = self.builder.build_record(self.participant.id, self.responses)
            except CalibrationIncomplete as e:
                self.failure = str(e)
                logger.warning("Calibration failed for %s: %s", self.participant.name, e)
                self._set_phase(SessionPhase.CALIBRATION_FAILED, reason=self.failure)
                raise
            if self.store is not None:
                self.store.save_calibration(self.participant.id, record)
            self.record = record
            logger.info("Calibration complete for %s", self.participant.name)
            self._emit("calibrationComplete", participantId=self.participant.id)
            return record
        finally:
            self._exit()

    def restart(self) -> None:
        """calibrationFailed -> prepare with a fresh battery and no stored responses."""
        self._enter()
        try:
            if self.state.phase is not SessionPhase.CALIBRATION_FAILED or self.state.closed:
                raise InvalidTransition("restart", self.state.phase)
            self.questions = generate_calibration_questions(self.participant, today=self._today, rng=self._rng)
            self.state.results = {self.participant.id: []}
            self.state.question_index = 0
            self.state.last_result = None
            self._recorded_indices.clear()
            self.failure = None
            self._set_phase(SessionPhase.PREPARE)
        finally:
            self._exit()

    def snapshot(self) -> dict:
        out = super().snapshot()
        out["expectedAnswer"] = self.expected_answer.value if self.expected_answer else None
        out["responsesRecorded"] = len(self.responses)
        out["failure"] = self.failure
        out["calibrated"] = self.record is not None
        return out
