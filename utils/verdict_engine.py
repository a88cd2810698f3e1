"""
Verdict Engine Module

Scores one live answer against the participant's calibration baseline for the
answer's polarity. Five independent signals each add a fixed weight when their
deviation crosses a threshold:

    Signal           Metric                                  Trigger                         Weight
    Blink rate       blinks / window duration                |rate - mean| > 2 * stddev       0.30
    Response time    answer duration                         |dur - mean| > 2 * stddev        0.25
    Head movement    mean consecutive angular distance       > 0.30 (absolute)                0.20
    Facial tension   mean browInnerUp activation             > 0.50 (absolute)                0.15
    Extended pause   answer duration                         dur > mean + 3 * stddev          0.10

The weights, thresholds and evaluation order are the product's explainability
contract and are intentionally not configurable. The score is the sum of
triggered weights clamped to [0, 1]; suspicious iff score > 0.5.
"""

from typing import List, Optional, Sequence

from utils import feature_signals
from utils.baseline_builder import CalibrationRecord
from utils.feature_signals import FeatureSample
from utils.session_models import QuestionVerdict, SpokenAnswer

BLINK_WEIGHT = 0.30
RESPONSE_TIME_WEIGHT = 0.25
HEAD_MOVEMENT_WEIGHT = 0.20
FACIAL_TENSION_WEIGHT = 0.15
LONG_PAUSE_WEIGHT = 0.10

BLINK_STDDEV_THRESHOLD = 2.0
RESPONSE_TIME_STDDEV_THRESHOLD = 2.0
LONG_PAUSE_STDDEV_THRESHOLD = 3.0
HEAD_MOVEMENT_THRESHOLD = 0.30
FACIAL_TENSION_THRESHOLD = 0.50

SUSPICIOUS_THRESHOLD = 0.5
NEUTRAL_CONFIDENCE = 0.5

FACTOR_MORE_BLINKS = "more blinks than usual"
FACTOR_FEWER_BLINKS = "fewer blinks than usual"
FACTOR_LONGER_RESPONSE = "longer response than usual"
FACTOR_FASTER_RESPONSE = "faster response than usual"
FACTOR_HEAD_MOVEMENT = "increased head movement"
FACTOR_FACIAL_TENSION = "facial tension"
FACTOR_LONG_PAUSE = "extended pause before answering"
FACTOR_NORMAL_PATTERN = "normal pattern"
FACTOR_UNCALIBRATED = "uncalibrated"


class VerdictEngine:
    """
    Computes a QuestionVerdict for one answered question.

    Usage:
        engine = VerdictEngine()
        verdict = engine.evaluate(record, SpokenAnswer.YES, samples, duration)
    """

    def evaluate(
        self,
        calibration: Optional[CalibrationRecord],
        answer: SpokenAnswer,
        samples: Sequence[FeatureSample],
        response_duration: float,
    ) -> QuestionVerdict:
        """
        Args:
            calibration: Participant's calibration record; None -> neutral verdict
            answer: Resolved polarity (YES or NO)
            samples: Feature samples recorded during the answer window
            response_duration: Seconds from capture start to the recognized answer

        Returns:
            QuestionVerdict with confidence in [0, 1] and ordered factor tags
        """
        if calibration is None:
            return QuestionVerdict(
                confidence=NEUTRAL_CONFIDENCE,
                is_suspicious=False,
                factors=(FACTOR_UNCALIBRATED,),
            )
        if not answer.is_answer:
            raise ValueError(f"Cannot score a non-answer ({answer.value})")

        baseline = calibration.baseline_for(answer)
        score = 0.0
        factors: List[str] = []

        # 1. Blink rate
        rate = feature_signals.blink_rate(samples)
        if abs(rate - baseline.blink_rate_mean) > BLINK_STDDEV_THRESHOLD * baseline.blink_rate_stddev:
            score += BLINK_WEIGHT
            factors.append(FACTOR_MORE_BLINKS if rate > baseline.blink_rate_mean else FACTOR_FEWER_BLINKS)

        # 2. Response time
        duration = float(response_duration)
        if abs(duration - baseline.response_duration_mean) > RESPONSE_TIME_STDDEV_THRESHOLD * baseline.response_duration_stddev:
            score += RESPONSE_TIME_WEIGHT
            factors.append(
                FACTOR_LONGER_RESPONSE if duration > baseline.response_duration_mean else FACTOR_FASTER_RESPONSE
            )

        # 3. Head movement
        if feature_signals.head_movement(samples) > HEAD_MOVEMENT_THRESHOLD:
            score += HEAD_MOVEMENT_WEIGHT
            factors.append(FACTOR_HEAD_MOVEMENT)

        # 4. Facial tension
        if feature_signals.mean_brow_raise(samples) > FACIAL_TENSION_THRESHOLD:
            score += FACIAL_TENSION_WEIGHT
            factors.append(FACTOR_FACIAL_TENSION)

        # 5. Extended pause
        if duration > baseline.response_duration_mean + LONG_PAUSE_STDDEV_THRESHOLD * baseline.response_duration_stddev:
            score += LONG_PAUSE_WEIGHT
            factors.append(FACTOR_LONG_PAUSE)

        score = max(0.0, min(1.0, score))
        if not factors:
            factors.append(FACTOR_NORMAL_PATTERN)

        return QuestionVerdict(
            confidence=score,
            is_suspicious=score > SUSPICIOUS_THRESHOLD,
            factors=tuple(factors),
        )
