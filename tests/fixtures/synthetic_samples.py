"""
Synthetic feature-sample windows and collaborator doubles for engine tests.

make_window() builds an answer window with a known blink count, duration,
brow activation and head motion, so blink rates and verdict signals are
exact. The doubles (FakeTrackingSource, FakeRecognition, ImmediateCountdown,
ManualCountdown, SyncExecutor, DeferredExecutor, FakeClock) let the session
orchestrator run deterministically on the test thread.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from utils.baseline_builder import CalibrationRecord, FacialBaseline
from utils.feature_signals import FeatureSample
from utils.participant import Gender, Participant
from utils.session_models import QuestionCategory, QuestionRecord
from utils.tracking_interface import TrackingQuality, TrackingSource


def make_window(
    duration: float = 2.0,
    n: int = 21,
    blinks: int = 0,
    brow: float = 0.1,
    head_step: float = 0.0,
    activations: Optional[Dict[str, float]] = None,
    confidence: float = 1.0,
) -> List[FeatureSample]:
    """
    n samples evenly spaced over [0, duration] (last timestamp == duration).

    Each blink is a single closed sample between open ones, so the rising-edge
    count equals `blinks` (requires n > 2 * blinks + 1). head_step moves the
    yaw angle by that many radians per sample.
    """
    closed = {(k + 1) * n // (blinks + 1) for k in range(blinks)}
    samples = []
    for i in range(n):
        blink = 0.9 if i in closed else 0.05
        samples.append(FeatureSample(
            timestamp=duration * i / (n - 1),
            eye_blink_left=blink,
            eye_blink_right=blink,
            brow_inner_up=brow,
            head_angles=(0.0, head_step * i, 0.0),
            activations=dict(activations or {}),
            tracking_confidence=confidence,
        ))
    return samples


def make_baseline(
    blink_mean: float = 1.0,
    blink_std: float = 0.5,
    duration_mean: float = 2.0,
    duration_std: float = 0.5,
) -> FacialBaseline:
    return FacialBaseline(
        blink_rate_mean=blink_mean,
        blink_rate_stddev=blink_std,
        gaze_stability_mean=1.0,
        gaze_stability_stddev=0.0,
        response_duration_mean=duration_mean,
        response_duration_stddev=duration_std,
    )


def make_record(participant_id: str = "p1", baseline: Optional[FacialBaseline] = None) -> CalibrationRecord:
    baseline = baseline or make_baseline()
    return CalibrationRecord(
        participant_id=participant_id,
        calibrated_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        yes_baseline=baseline,
        no_baseline=baseline,
        sample_count=8,
        average_tracking_confidence=1.0,
    )


def make_participant(pid: str = "p1", name: str = "Ala", age: int = 30, gender=Gender.FEMALE,
                     calibrated: bool = True) -> Participant:
    p = Participant(id=pid, name=name, age=age, gender=gender,
                    created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    return p.with_calibration(make_record(pid)) if calibrated else p


def make_questions(count: int) -> List[QuestionRecord]:
    return [QuestionRecord(f"q{i}", f"Question {i}?", QuestionCategory.PARTY) for i in range(count)]


# ============================================================================
# Collaborator doubles
# ============================================================================

class FakeTrackingSource(TrackingSource):
    """Returns `window` (then clears it) from stop_recording; counts calls."""

    def __init__(self, face_detected: bool = True, quality: TrackingQuality = TrackingQuality.GOOD):
        self.face_detected = face_detected
        self.tracking_quality = quality
        self.window: List[FeatureSample] = make_window()
        self.tracking = False
        self.recording = False
        self.calls: List[str] = []

    def start_tracking(self) -> None:
        self.tracking = True
        self.calls.append("start_tracking")

    def stop_tracking(self) -> None:
        self.tracking = False
        self.calls.append("stop_tracking")

    def start_recording(self) -> None:
        self.recording = True
        self.calls.append("start_recording")

    def stop_recording(self) -> List[FeatureSample]:
        self.calls.append("stop_recording")
        if not self.recording:
            return []
        self.recording = False
        return list(self.window)

    @property
    def is_face_detected(self) -> bool:
        return self.face_detected

    @property
    def quality(self) -> TrackingQuality:
        return self.tracking_quality


class FakeRecognition:
    """Holds the last listening callback; the test resolves it with answer()."""

    def __init__(self):
        self.on_result = None
        self.listen_count = 0
        self.stop_count = 0
        self.timeouts: List[Optional[float]] = []

    def start_listening(self, on_result, timeout=None):
        self.on_result = on_result
        self.listen_count += 1
        self.timeouts.append(timeout)
        return self.listen_count

    def stop_listening(self):
        self.stop_count += 1
        self.on_result = None

    @property
    def is_listening(self) -> bool:
        return self.on_result is not None

    def answer(self, outcome) -> bool:
        callback, self.on_result = self.on_result, None
        if callback is None:
            return False
        callback(outcome)
        return True


class ImmediateCountdown:
    """Timer factory double: runs every tick and the finish callback inside start()."""

    def __init__(self, steps, step_sec, on_tick, on_finished):
        self.steps = steps
        self.ticks: List[int] = []
        self._on_tick = on_tick
        self._on_finished = on_finished
        self.cancelled = False

    def start(self):
        for remaining in range(self.steps, 0, -1):
            self.ticks.append(remaining)
            self._on_tick(remaining)
        self._on_finished()

    def cancel(self):
        self.cancelled = True


class ManualCountdown:
    """Timer factory double that fires only when the test calls finish()."""

    def __init__(self):
        self.timers: List["ManualCountdown._Timer"] = []

    class _Timer:
        def __init__(self, steps, on_tick, on_finished):
            self.steps = steps
            self.on_tick = on_tick
            self.on_finished = on_finished
            self.started = False
            self.cancelled = False

        def start(self):
            self.started = True

        def cancel(self):
            self.cancelled = True

        def finish(self):
            for remaining in range(self.steps, 0, -1):
                self.on_tick(remaining)
            self.on_finished()

    def __call__(self, steps, step_sec, on_tick, on_finished):
        timer = self._Timer(steps, on_tick, on_finished)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> "ManualCountdown._Timer":
        return self.timers[-1]


class SyncExecutor:
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


class DeferredExecutor:
    """Queues submitted work until run_all()."""

    def __init__(self):
        self.tasks = []

    def submit(self, fn, *args, **kwargs):
        self.tasks.append((fn, args, kwargs))

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for fn, args, kwargs in tasks:
            fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


class FakeClock:
    """Monotonic clock advanced by the test."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now
