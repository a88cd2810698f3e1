"""
Session Orchestrator.

Phase state machine for one game session with one or more participants
(solo or "hot seat", passing the device between turns):

    intro -> (participantIntro) -> prepare -> countdown -> (readQuestion)
          -> recordAnswer -> verdict -> (participantComplete) -> advance
          -> prepare | sessionComplete

recordAnswer opens a feature-sample window on the tracking source and, at the
same time, a listening request on the answer-recognition source. Scoring runs
only once BOTH the recognized answer and the closed sample window are
available for the current attempt (an AnswerJoin), whichever arrives first.
A recognition timeout (or unrecognized speech) cancels the attempt, closes
and discards the window and surfaces a retryable answerTimeout phase; the
question index is not advanced. Events that arrive for a stale attempt (after
its verdict, after a timeout, or after teardown) are ignored.

Threading: sensor callbacks and the countdown arrive on their own threads.
Every transition runs under one re-entrant lock; the orchestrator is the only
writer of SessionState. Listeners are notified after the lock is released.
"""

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import config
from utils.feature_signals import FeatureSample
from utils.participant import Participant
from utils.score_aggregator import ScoreAggregator
from utils.session_models import QuestionRecord, QuestionResult, SpokenAnswer
from utils.tracking_interface import TrackingSource, can_start_countdown
from utils.verdict_engine import VerdictEngine

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    INTRO = "intro"
    PARTICIPANT_INTRO = "participantIntro"
    PREPARE = "prepare"
    COUNTDOWN = "countdown"
    READ_QUESTION = "readQuestion"
    RECORD_ANSWER = "recordAnswer"
    ANSWER_TIMEOUT = "answerTimeout"
    VERDICT = "verdict"
    PARTICIPANT_COMPLETE = "participantComplete"
    SESSION_COMPLETE = "sessionComplete"
    # Calibration only
    WRONG_ANSWER = "wrongAnswer"
    CALIBRATION_FAILED = "calibrationFailed"
    # Torn down before completion
    CANCELLED = "cancelled"


class InvalidTransition(RuntimeError):
    """A command was issued in a phase that does not allow it."""

    def __init__(self, command: str, phase: SessionPhase):
        super().__init__(f"{command} is not allowed in phase {phase.value}")
        self.command = command
        self.phase = phase


@dataclass
class SessionEvent:
    kind: str
    phase: SessionPhase
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionState:
    """Mutable session state. Owned and mutated only by the orchestrator."""
    phase: SessionPhase = SessionPhase.INTRO
    participant_index: int = 0
    question_index: int = 0
    results: Dict[str, List[QuestionResult]] = field(default_factory=dict)
    countdown_remaining: int = 0
    last_outcome: Optional[SpokenAnswer] = None
    last_result: Optional[QuestionResult] = None
    closed: bool = False


# ============================================================================
# Join point and timers
# ============================================================================

class AnswerJoin:
    """
    Joins the two asynchronous completions of one capture attempt: the
    recognized answer (with its response duration) and the closed sample
    window. on_complete fires exactly once, when both are present and the
    join has not been cancelled. Second deliveries of either side are ignored.
    """

    def __init__(self, on_complete: Callable[[SpokenAnswer, float, List[FeatureSample]], None]):
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._answer: Optional[SpokenAnswer] = None
        self._duration: float = 0.0
        self._samples: Optional[List[FeatureSample]] = None
        self._fired = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def completed(self) -> bool:
        with self._lock:
            return self._fired

    def set_answer(self, answer: SpokenAnswer, duration: float) -> bool:
        with self._lock:
            if self._cancelled or self._fired or self._answer is not None:
                return False
            self._answer = answer
            self._duration = float(duration)
        self._maybe_fire()
        return True

    def set_samples(self, samples: Sequence[FeatureSample]) -> bool:
        with self._lock:
            if self._cancelled or self._fired or self._samples is not None:
                return False
            self._samples = list(samples)
        self._maybe_fire()
        return True

    def cancel(self) -> bool:
        with self._lock:
            if self._fired or self._cancelled:
                return False
            self._cancelled = True
            return True

    def _maybe_fire(self) -> None:
        with self._lock:
            if self._fired or self._cancelled or self._answer is None or self._samples is None:
                return
            self._fired = True
            answer, duration, samples = self._answer, self._duration, self._samples
        self._on_complete(answer, duration, samples)


class CountdownTimer:
    """
    Cancellable countdown on a daemon thread: on_tick(n) for n = steps..1,
    one step_sec apart, then on_finished(). After cancel() nothing fires.
    """

    def __init__(self, steps: int, step_sec: float, on_tick: Callable[[int], None], on_finished: Callable[[], None]):
        self.steps = int(steps)
        self.step_sec = float(step_sec)
        self._on_tick = on_tick
        self._on_finished = on_finished
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _run(self) -> None:
        for remaining in range(self.steps, 0, -1):
            if self._cancel.is_set():
                return
            self._on_tick(remaining)
            if self._cancel.wait(self.step_sec):
                return
        if not self._cancel.is_set():
            self._on_finished()


class _Attempt:
    """One recordAnswer capture for one question."""

    _ids = itertools.count(1)

    def __init__(self, global_index: int, started_at: float):
        self.id = next(self._ids)
        self.global_index = global_index
        self.started_at = started_at
        self.join: Optional[AnswerJoin] = None
        self.request = None

    @property
    def cancelled(self) -> bool:
        return self.join is not None and self.join.cancelled


# ============================================================================
# Orchestrator
# ============================================================================

class SessionOrchestrator:
    """
    Drives a session through its phases.

    Usage:
        session = SessionOrchestrator(participants, questions, tracking, recognition, questions_per_participant=3)
        session.add_listener(lambda event: print(event.kind, event.phase))
        session.start_session()
        session.begin()
        session.start_participant_turn()        # multi-participant sessions only
        if session.can_start_countdown():
            session.start_question_recording()  # countdown -> (readQuestion) -> recordAnswer
        ...                                     # sensors deliver -> verdict
        session.advance_to_next_question()
        session.cleanup()
    """

    def __init__(
        self,
        participants: Sequence[Participant],
        questions: Sequence[QuestionRecord],
        tracking: TrackingSource,
        recognition,
        questions_per_participant: Optional[int] = None,
        verdict_engine: Optional[VerdictEngine] = None,
        store=None,
        show_read_question: Optional[bool] = None,
        countdown_steps: Optional[int] = None,
        countdown_step_sec: Optional[float] = None,
        recognition_timeout: Optional[float] = None,
        timer_factory: Optional[Callable] = None,
        executor=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            participants: Session participants in turn order (profiles are read-only snapshots)
            questions: Questions in global order; participant i answers
                questions[i * quota:(i + 1) * quota]
            tracking: Tracking source collaborator
            recognition: Answer-recognition collaborator (start_listening / stop_listening)
            questions_per_participant: Quota (default: len(questions) // len(participants))
            verdict_engine: Scoring engine (default VerdictEngine())
            store: Optional participant store; participants are marked active for the session
            show_read_question: Show the question before capture (default: config for solo, off for multi)
            timer_factory: Builds the countdown timer (steps, step_sec, on_tick, on_finished)
            executor: Runs window closing off the callback thread (default: private single thread)
            clock: Monotonic clock used for response durations
        """
        if not participants:
            raise ValueError("A session needs at least one participant")
        ids = [p.id for p in participants]
        if len(set(ids)) != len(ids):
            raise ValueError("Participants must be distinct")
        quota = questions_per_participant
        if quota is None:
            quota = len(questions) // len(participants)
        quota = int(quota)
        if quota < 1:
            raise ValueError("questions_per_participant must be at least 1")
        if len(questions) < quota * len(participants):
            raise ValueError(
                f"Need {quota * len(participants)} questions for {len(participants)} participant(s) "
                f"x {quota}, got {len(questions)}"
            )

        self.participants: List[Participant] = list(participants)
        self.questions: List[QuestionRecord] = list(questions)
        self.questions_per_participant = quota
        self.tracking = tracking
        self.recognition = recognition
        self.verdict_engine = verdict_engine or VerdictEngine()
        self.store = store
        self.is_multi_participant = len(self.participants) > 1
        if show_read_question is None:
            show_read_question = config.SHOW_READ_QUESTION and not self.is_multi_participant
        self.show_read_question = bool(show_read_question)
        self.countdown_steps = config.COUNTDOWN_STEPS if countdown_steps is None else int(countdown_steps)
        self.countdown_step_sec = config.COUNTDOWN_STEP_SEC if countdown_step_sec is None else float(countdown_step_sec)
        self.recognition_timeout = recognition_timeout
        self._timer_factory = timer_factory or CountdownTimer
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="window-close")
        self._clock = clock

        self.state = SessionState(results={p.id: [] for p in self.participants})
        self._lock = threading.RLock()
        self._depth = 0
        self._pending_events: List[SessionEvent] = []
        self._listeners: List[Callable[[SessionEvent], None]] = []
        self._countdown = None
        self._attempt: Optional[_Attempt] = None
        self._recorded_indices = set()
        self._started = False
        self._store_claimed = False

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------
    def add_listener(self, listener: Callable[[SessionEvent], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[SessionEvent], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, kind: str, **data) -> None:
        self._pending_events.append(SessionEvent(kind=kind, phase=self.state.phase, data=data))

    def _enter(self):
        self._lock.acquire()
        self._depth += 1

    def _exit(self) -> None:
        self._depth -= 1
        flush = self._depth == 0
        if flush:
            events, self._pending_events = self._pending_events, []
            listeners = list(self._listeners)
        self._lock.release()
        if flush:
            for event in events:
                for listener in listeners:
                    try:
                        listener(event)
                    except Exception:
                        logger.exception("Session listener failed on %s", event.kind)

    def _set_phase(self, phase: SessionPhase, **data) -> None:
        previous = self.state.phase
        self.state.phase = phase
        logger.info("Phase %s -> %s (participant %d, question %d)",
                    previous.value, phase.value, self.state.participant_index, self.state.question_index)
        self._emit("phase", previous=previous.value, **data)

    def _require(self, command: str, *phases: SessionPhase) -> None:
        if self.state.closed:
            raise InvalidTransition(command, SessionPhase.CANCELLED)
        if self.state.phase not in phases:
            raise InvalidTransition(command, self.state.phase)

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------
    @property
    def current_phase(self) -> SessionPhase:
        with self._lock:
            return self.state.phase

    @property
    def current_participant(self) -> Participant:
        with self._lock:
            return self.participants[self.state.participant_index]

    @property
    def local_question_index(self) -> int:
        with self._lock:
            return self.state.question_index % self.questions_per_participant

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        with self._lock:
            if self.state.question_index >= len(self.participants) * self.questions_per_participant:
                return None
            return self.questions[self.state.question_index]

    @property
    def progress(self) -> float:
        """Local progress fraction of the current participant (0 at their first question)."""
        with self._lock:
            if self.state.phase is SessionPhase.SESSION_COMPLETE:
                return 1.0
            return self.local_question_index / self.questions_per_participant

    @property
    def is_last_participant(self) -> bool:
        with self._lock:
            return self.state.participant_index >= len(self.participants) - 1

    def results_for(self, participant_id: str) -> List[QuestionResult]:
        with self._lock:
            return list(self.state.results.get(participant_id, ()))

    def all_results(self) -> Dict[str, List[QuestionResult]]:
        with self._lock:
            return {pid: list(rs) for pid, rs in self.state.results.items()}

    def can_start_countdown(self) -> bool:
        """Guard for prepare -> countdown (enforced by the presentation layer)."""
        return can_start_countdown(self.tracking)

    def summary(self) -> Dict[str, Any]:
        return ScoreAggregator().summary(self.participants, self.all_results())

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the session for the presentation layer."""
        with self._lock:
            question = self.current_question
            last = self.state.last_result
            return {
                "phase": self.state.phase.value,
                "participant": self.current_participant.summary(),
                "participantIndex": self.state.participant_index,
                "participantCount": len(self.participants),
                "questionIndex": self.state.question_index,
                "localQuestionNumber": self.local_question_index + 1,
                "questionsPerParticipant": self.questions_per_participant,
                "progress": self.progress,
                "question": question.to_dict() if question else None,
                "countdownRemaining": self.state.countdown_remaining,
                "lastOutcome": self.state.last_outcome.value if self.state.last_outcome else None,
                "lastResult": last.to_dict() if last else None,
                "faceDetected": self.tracking.is_face_detected,
                "trackingQuality": self.tracking.quality.value,
                "canStartCountdown": self.can_start_countdown(),
                "closed": self.state.closed,
            }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def start_session(self) -> None:
        """Claim participants in the store and start tracking. Phase stays intro."""
        self._enter()
        try:
            self._require("start_session", SessionPhase.INTRO)
            if self._started:
                return
            if self.store is not None:
                self.store.begin_session([p.id for p in self.participants])
                self._store_claimed = True
            self.tracking.start_tracking()
            self._started = True
            logger.info("Session started with %d participant(s), %d question(s) each",
                        len(self.participants), self.questions_per_participant)
            self._emit("sessionStarted")
        finally:
            self._exit()

    def begin(self) -> None:
        """Leave the intro: participantIntro (multi) or prepare (solo)."""
        self._enter()
        try:
            self._require("begin", SessionPhase.INTRO)
            if not self._started:
                self.start_session()
            if self.is_multi_participant:
                self._start_turn_intro()
            else:
                self._set_phase(SessionPhase.PREPARE)
        finally:
            self._exit()

    def start_participant_turn(self) -> None:
        """participantIntro -> prepare for the current participant."""
        self._enter()
        try:
            self._require("start_participant_turn", SessionPhase.PARTICIPANT_INTRO)
            self._set_phase(SessionPhase.PREPARE)
        finally:
            self._exit()

    def move_to_next_participant(self) -> None:
        """participantComplete -> next participant's participantIntro."""
        self._enter()
        try:
            self._require("move_to_next_participant", SessionPhase.PARTICIPANT_COMPLETE)
            self.state.participant_index += 1
            self._start_turn_intro()
        finally:
            self._exit()

    def _start_turn_intro(self) -> None:
        self.state.question_index = self.state.participant_index * self.questions_per_participant
        logger.info("Starting turn for %s", self.current_participant.name)
        self._set_phase(SessionPhase.PARTICIPANT_INTRO, participantId=self.current_participant.id)

    def start_question_recording(self) -> None:
        """prepare -> countdown. The tracking-quality guard is the caller's responsibility."""
        self._enter()
        try:
            self._require("start_question_recording", SessionPhase.PREPARE)
            self._start_countdown()
        finally:
            self._exit()

    def start_answer_recording(self) -> None:
        """readQuestion -> recordAnswer (participant has read the question)."""
        self._enter()
        try:
            self._require("start_answer_recording", SessionPhase.READ_QUESTION)
            self._open_capture()
        finally:
            self._exit()

    def retry_after_timeout(self) -> None:
        """answerTimeout -> countdown for the same question."""
        self._enter()
        try:
            self._require("retry_after_timeout", SessionPhase.ANSWER_TIMEOUT)
            self.state.last_outcome = None
            self._start_countdown()
        finally:
            self._exit()

    def advance_to_next_question(self) -> None:
        """
        verdict -> advance. Increments the global question index, then:
        quota done and more participants -> participantComplete;
        quota done and last participant -> sessionComplete;
        otherwise -> prepare.
        """
        self._enter()
        try:
            self._require("advance_to_next_question", SessionPhase.VERDICT)
            self._advance()
        finally:
            self._exit()

    def _advance(self) -> None:
        self.state.question_index += 1
        quota_done = self.state.question_index % self.questions_per_participant == 0
        if quota_done and not self.is_last_participant:
            self._set_phase(SessionPhase.PARTICIPANT_COMPLETE, participantId=self.current_participant.id)
        elif quota_done:
            self._set_phase(SessionPhase.SESSION_COMPLETE)
        else:
            self._set_phase(SessionPhase.PREPARE)

    def cleanup(self) -> None:
        """
        Tear the session down: cancel the countdown and any in-flight capture,
        stop both collaborators and discard unscored samples. Idempotent.
        """
        self._enter()
        try:
            if self.state.closed:
                return
            self._cancel_countdown()
            self._cancel_attempt()
            self.recognition.stop_listening()
            self.tracking.stop_recording()
            self.tracking.stop_tracking()
            self.state.closed = True
            if self.state.phase is not SessionPhase.SESSION_COMPLETE:
                self._set_phase(SessionPhase.CANCELLED)
            if self._store_claimed:
                self.store.end_session([p.id for p in self.participants])
                self._store_claimed = False
            self._emit("closed")
        finally:
            self._exit()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------
    def _start_countdown(self) -> None:
        self._cancel_countdown()
        self.state.countdown_remaining = self.countdown_steps
        self._set_phase(SessionPhase.COUNTDOWN)
        timer_ref = []
        timer = self._timer_factory(
            self.countdown_steps,
            self.countdown_step_sec,
            lambda remaining: self._on_countdown_tick(timer_ref[0], remaining),
            lambda: self._on_countdown_finished(timer_ref[0]),
        )
        timer_ref.append(timer)
        self._countdown = timer
        timer.start()

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _on_countdown_tick(self, timer, remaining: int) -> None:
        self._enter()
        try:
            if timer is not self._countdown or self.state.phase is not SessionPhase.COUNTDOWN:
                return
            self.state.countdown_remaining = remaining
            self._emit("countdown", remaining=remaining)
        finally:
            self._exit()

    def _on_countdown_finished(self, timer) -> None:
        self._enter()
        try:
            if timer is not self._countdown or self.state.phase is not SessionPhase.COUNTDOWN:
                return
            self._countdown = None
            self.state.countdown_remaining = 0
            if self.show_read_question:
                self._set_phase(SessionPhase.READ_QUESTION)
            else:
                self._open_capture()
        finally:
            self._exit()

    # ------------------------------------------------------------------
    # Capture and join
    # ------------------------------------------------------------------
    def _open_capture(self) -> None:
        attempt = _Attempt(self.state.question_index, self._clock())
        attempt.join = AnswerJoin(
            lambda answer, duration, samples: self._on_joined(attempt, answer, duration, samples)
        )
        self._attempt = attempt
        self.state.last_outcome = None
        self._set_phase(SessionPhase.RECORD_ANSWER)
        self.tracking.start_recording()
        kwargs = {}
        if self.recognition_timeout is not None:
            kwargs["timeout"] = self.recognition_timeout
        attempt.request = self.recognition.start_listening(
            lambda outcome: self._on_recognition(attempt, outcome), **kwargs
        )

    def _is_current(self, attempt: _Attempt) -> bool:
        return (
            not self.state.closed
            and attempt is self._attempt
            and not attempt.cancelled
            and self.state.phase is SessionPhase.RECORD_ANSWER
        )

    def _on_recognition(self, attempt: _Attempt, outcome: SpokenAnswer) -> None:
        self._enter()
        try:
            if not self._is_current(attempt):
                logger.debug("Ignoring late recognition %s for attempt %d", outcome.value, attempt.id)
                return
            self.state.last_outcome = outcome
            if not outcome.is_answer:
                self._fail_attempt(attempt, outcome)
                return
            duration = self._clock() - attempt.started_at
            attempt.join.set_answer(outcome, duration)
            if attempt.join.completed:
                # Window was delivered by the producer; drop anything recorded since.
                self.tracking.stop_recording()
            else:
                self._executor.submit(self._close_window, attempt)
        finally:
            self._exit()

    def _close_window(self, attempt: _Attempt) -> None:
        with self._lock:
            if not self._is_current(attempt):
                return
        samples = self.tracking.stop_recording()
        self.submit_samples(samples, attempt_id=attempt.id)

    def submit_samples(self, samples: Sequence[FeatureSample], attempt_id: Optional[int] = None) -> bool:
        """
        Deliver the closed sample window for the current attempt. Producers that
        close their own window may call this before the answer is recognized.
        Returns False when the delivery is stale or a window was already delivered.
        """
        self._enter()
        try:
            attempt = self._attempt
            if attempt is None or not self._is_current(attempt):
                logger.debug("Ignoring stray sample window (%d samples)", len(samples))
                return False
            if attempt_id is not None and attempt_id != attempt.id:
                return False
            return attempt.join.set_samples(samples)
        finally:
            self._exit()

    def _fail_attempt(self, attempt: _Attempt, outcome: SpokenAnswer) -> None:
        """Timeout/unrecognized: stop both collaborators, discard samples, wait for retry."""
        attempt.join.cancel()
        self.recognition.stop_listening()
        discarded = self.tracking.stop_recording()
        logger.info("Answer %s at question %d; discarded %d samples",
                    outcome.value, self.state.question_index, len(discarded))
        self._set_phase(SessionPhase.ANSWER_TIMEOUT, outcome=outcome.value)

    def _cancel_attempt(self) -> None:
        attempt, self._attempt = self._attempt, None
        if attempt is not None and attempt.join is not None:
            attempt.join.cancel()

    def _on_joined(self, attempt: _Attempt, answer: SpokenAnswer, duration: float,
                   samples: List[FeatureSample]) -> None:
        self._enter()
        try:
            if not self._is_current(attempt):
                return
            self._attempt = None
            self._handle_answer(attempt.global_index, answer, duration, samples)
        finally:
            self._exit()

    def _handle_answer(self, global_index: int, answer: SpokenAnswer, duration: float,
                       samples: List[FeatureSample]) -> None:
        """Score the joined answer, store its result and show the verdict."""
        participant = self.current_participant
        question = self.questions[global_index]
        verdict = self.verdict_engine.evaluate(participant.calibration, answer, samples, duration)
        result = QuestionResult(
            question=question,
            spoken_answer=answer,
            samples=tuple(samples),
            response_duration=duration,
            verdict=verdict,
            global_index=global_index,
        )
        self._record_result(participant, result)
        logger.info("%s answered %s at question %d: %s (%.2f)", participant.name, answer.value, global_index,
                    "SUSPICIOUS" if verdict.is_suspicious else "TRUTHFUL", verdict.confidence)
        self._set_phase(SessionPhase.VERDICT, verdict=verdict.to_dict())

    def _record_result(self, participant: Participant, result: QuestionResult) -> bool:
        """Store one result per question index, never beyond the participant's quota."""
        results = self.state.results[participant.id]
        if result.global_index in self._recorded_indices or len(results) >= self.questions_per_participant:
            logger.warning("Dropping duplicate result for question %d", result.global_index)
            return False
        self._recorded_indices.add(result.global_index)
        results.append(result)
        self.state.last_result = result
        self._emit("result", participantId=participant.id, result=result.to_dict())
        return True
