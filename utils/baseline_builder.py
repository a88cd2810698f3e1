"""
Baseline Builder Module

Turns a completed calibration session (a fixed battery of known-truth answers)
into a per-participant CalibrationRecord holding one FacialBaseline per answer
polarity ("yes" and "no" are kept separately).

Per polarity, each calibration answer contributes one value per statistic:
- blink rate (rising-edge blink count / window duration)
- gaze stability (see utils.feature_signals.gaze_stability)
- named-activation window means (browInnerUp + any extra tracked activation)
- response duration

Mean and (population) standard deviation are taken across those values.
A polarity without any sample cannot yield a variance, so the builder raises
CalibrationIncomplete instead of emitting a degenerate baseline.

The persisted shape (to_dict/from_dict) uses camelCase keys and stays
decodable across versions: missing keys fall back to defaults and legacy key
spellings (playerID, averageFaceConfidence, blendshapeBaselines, stdDev) are
accepted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np

from utils import feature_signals
from utils.session_models import QuestionResult, SpokenAnswer, results_by_polarity

logger = logging.getLogger(__name__)

# Calibration battery shape: 4 expected-yes + 4 expected-no answers
CALIBRATION_QUESTION_COUNT = 8


class CalibrationIncomplete(ValueError):
    """Calibration data cannot produce a baseline (e.g. no sample for a polarity)."""

    def __init__(self, message: str, polarity: Optional[SpokenAnswer] = None):
        super().__init__(message)
        self.polarity = polarity


@dataclass(frozen=True)
class ActivationStats:
    mean: float
    stddev: float
    max: float

    def to_dict(self) -> dict:
        return {"mean": self.mean, "stddev": self.stddev, "max": self.max}

    @classmethod
    def from_dict(cls, data: dict) -> "ActivationStats":
        return cls(
            mean=float(data.get("mean", 0.0)),
            stddev=float(data.get("stddev", data.get("stdDev", 0.0))),
            max=float(data.get("max", 0.0)),
        )


@dataclass(frozen=True)
class FacialBaseline:
    """Statistical summary of one polarity's calibration answers. Standard deviations are >= 0."""
    blink_rate_mean: float
    blink_rate_stddev: float
    gaze_stability_mean: float
    gaze_stability_stddev: float
    named_activation_stats: Dict[str, ActivationStats] = field(default_factory=dict)
    response_duration_mean: float = 0.0
    response_duration_stddev: float = 0.0

    def to_dict(self) -> dict:
        return {
            "blinkRateMean": self.blink_rate_mean,
            "blinkRateStdDev": self.blink_rate_stddev,
            "gazeStabilityMean": self.gaze_stability_mean,
            "gazeStabilityStdDev": self.gaze_stability_stddev,
            "namedActivationStats": {k: v.to_dict() for k, v in self.named_activation_stats.items()},
            "responseDurationMean": self.response_duration_mean,
            "responseDurationStdDev": self.response_duration_stddev,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FacialBaseline":
        stats = data.get("namedActivationStats")
        if stats is None:
            stats = data.get("blendshapeBaselines") or {}
        return cls(
            blink_rate_mean=float(data.get("blinkRateMean", 0.0)),
            blink_rate_stddev=abs(float(data.get("blinkRateStdDev", 0.0))),
            gaze_stability_mean=float(data.get("gazeStabilityMean", 0.0)),
            gaze_stability_stddev=abs(float(data.get("gazeStabilityStdDev", 0.0))),
            named_activation_stats={str(k): ActivationStats.from_dict(v) for k, v in stats.items()},
            response_duration_mean=float(data.get("responseDurationMean", 0.0)),
            response_duration_stddev=abs(float(data.get("responseDurationStdDev", 0.0))),
        )


@dataclass(frozen=True)
class CalibrationRecord:
    """Immutable result of a calibration session. Replaced wholesale on recalibration."""
    participant_id: str
    calibrated_at: datetime
    yes_baseline: FacialBaseline
    no_baseline: FacialBaseline
    sample_count: int
    average_tracking_confidence: float

    def baseline_for(self, answer: SpokenAnswer) -> FacialBaseline:
        if answer is SpokenAnswer.YES:
            return self.yes_baseline
        if answer is SpokenAnswer.NO:
            return self.no_baseline
        raise ValueError(f"No baseline for answer {answer.value!r}")

    def to_dict(self) -> dict:
        return {
            "participantId": self.participant_id,
            "calibratedAt": self.calibrated_at.isoformat(),
            "yesBaseline": self.yes_baseline.to_dict(),
            "noBaseline": self.no_baseline.to_dict(),
            "sampleCount": self.sample_count,
            "averageTrackingConfidence": self.average_tracking_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationRecord":
        participant_id = data.get("participantId", data.get("playerID"))
        if participant_id is None:
            raise ValueError("CalibrationRecord requires participantId")
        raw_ts = data.get("calibratedAt")
        if isinstance(raw_ts, (int, float)):
            calibrated_at = datetime.fromtimestamp(float(raw_ts), tz=timezone.utc)
        elif raw_ts:
            calibrated_at = datetime.fromisoformat(str(raw_ts))
        else:
            calibrated_at = datetime.fromtimestamp(0, tz=timezone.utc)
        return cls(
            participant_id=str(participant_id),
            calibrated_at=calibrated_at,
            yes_baseline=FacialBaseline.from_dict(data.get("yesBaseline") or {}),
            no_baseline=FacialBaseline.from_dict(data.get("noBaseline") or {}),
            sample_count=int(data.get("sampleCount", 0)),
            average_tracking_confidence=float(
                data.get("averageTrackingConfidence", data.get("averageFaceConfidence", 0.0))
            ),
        )


def _mean_std(values: Sequence[float]) -> tuple:
    arr = np.asarray(values, dtype=np.float64)
    return float(arr.mean()), float(arr.std())


class BaselineBuilder:
    """
    Builds FacialBaselines and CalibrationRecords from calibration results.

    Usage:
        builder = BaselineBuilder()
        record = builder.build_record(participant_id, calibration_results)
    """

    def __init__(self, require_full_battery: bool = False):
        """
        Args:
            require_full_battery: If True, build_record also rejects batteries that are
                not exactly 4 expected-yes + 4 expected-no answers.
        """
        self.require_full_battery = require_full_battery

    def build_baseline(self, results: Sequence[QuestionResult], polarity: SpokenAnswer) -> FacialBaseline:
        """Aggregate one polarity's calibration answers into a FacialBaseline."""
        if not results:
            raise CalibrationIncomplete(
                f"No calibration samples for polarity {polarity.value!r}", polarity=polarity
            )

        windows = [list(r.samples) for r in results]
        blink_mean, blink_std = _mean_std([feature_signals.blink_rate(w) for w in windows])
        gaze_mean, gaze_std = _mean_std([feature_signals.gaze_stability(w) for w in windows])
        dur_mean, dur_std = _mean_std([float(r.response_duration) for r in results])

        all_samples = [s for w in windows for s in w]
        activation_stats: Dict[str, ActivationStats] = {}
        for name in feature_signals.activation_names(all_samples):
            window_means = [m for m in (feature_signals.mean_activation(w, name) for w in windows) if m is not None]
            if not window_means:
                continue
            mean, std = _mean_std(window_means)
            peak = max(s.activation(name) for s in all_samples)
            activation_stats[name] = ActivationStats(mean=mean, stddev=std, max=float(peak))

        return FacialBaseline(
            blink_rate_mean=blink_mean,
            blink_rate_stddev=blink_std,
            gaze_stability_mean=gaze_mean,
            gaze_stability_stddev=gaze_std,
            named_activation_stats=activation_stats,
            response_duration_mean=dur_mean,
            response_duration_stddev=dur_std,
        )

    def build_record(
        self,
        participant_id: str,
        results: Sequence[QuestionResult],
        calibrated_at: Optional[datetime] = None,
    ) -> CalibrationRecord:
        """
        Build the participant's CalibrationRecord.

        Raises:
            CalibrationIncomplete: a polarity has no answer (or, with
                require_full_battery, the battery is not 4 + 4).
        """
        yes_results, no_results = results_by_polarity(list(results))
        if self.require_full_battery:
            half = CALIBRATION_QUESTION_COUNT // 2
            if len(yes_results) != half or len(no_results) != half:
                raise CalibrationIncomplete(
                    f"Expected {half} yes and {half} no answers, got {len(yes_results)} and {len(no_results)}"
                )

        yes_baseline = self.build_baseline(yes_results, SpokenAnswer.YES)
        no_baseline = self.build_baseline(no_results, SpokenAnswer.NO)
        windows: List[list] = [list(r.samples) for r in results]

        record = CalibrationRecord(
            participant_id=str(participant_id),
            calibrated_at=calibrated_at or datetime.now(timezone.utc),
            yes_baseline=yes_baseline,
            no_baseline=no_baseline,
            sample_count=len(results),
            average_tracking_confidence=feature_signals.average_tracking_confidence(windows),
        )
        logger.info(
            "Calibration record built for %s: %d answers, blink yes=%.3f/s no=%.3f/s",
            participant_id, record.sample_count, yes_baseline.blink_rate_mean, no_baseline.blink_rate_mean,
        )
        return record
