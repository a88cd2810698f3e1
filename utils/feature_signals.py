"""
Feature Signals Module

Per-window signal computations over a sequence of FeatureSample observations
recorded while a participant answers one question. These are the raw measures
shared by the baseline builder (calibration) and the verdict engine (gameplay):

- Blink count / blink rate (rising-edge detection on averaged eye closure)
- Head movement (mean angular distance between consecutive head orientations)
- Facial tension (mean brow-inner-raise activation)
- Gaze stability (1 - spread of the eye-look gaze offset)

All functions are pure and guard empty windows locally (no exceptions).
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np


# Averaged eye closure above this value counts as "eyes closed"
BLINK_THRESHOLD = 0.5

# Eye-look blendshapes used for the gaze offset (ARKit / MediaPipe naming)
GAZE_ACTIVATIONS = (
    "eyeLookInLeft", "eyeLookOutLeft", "eyeLookUpLeft", "eyeLookDownLeft",
    "eyeLookInRight", "eyeLookOutRight", "eyeLookUpRight", "eyeLookDownRight",
)

BROW_INNER_UP = "browInnerUp"


@dataclass(frozen=True)
class FeatureSample:
    """
    One timestamped observation inside an answer window.

    timestamp is seconds since the window opened (monotonic within a window).
    Eye blink and brow values are blendshape activations in 0-1.
    head_angles is (pitch, yaw, roll) in radians.
    """
    timestamp: float
    eye_blink_left: float = 0.0
    eye_blink_right: float = 0.0
    brow_inner_up: float = 0.0
    head_angles: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    activations: Dict[str, float] = field(default_factory=dict)
    tracking_confidence: float = 1.0

    @property
    def average_blink(self) -> float:
        return (self.eye_blink_left + self.eye_blink_right) / 2.0

    def activation(self, name: str) -> float:
        """Named activation; browInnerUp maps to the dedicated field."""
        if name == BROW_INNER_UP:
            return self.brow_inner_up
        return float(self.activations.get(name, 0.0))

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "eyeBlinkLeft": self.eye_blink_left,
            "eyeBlinkRight": self.eye_blink_right,
            "browInnerUp": self.brow_inner_up,
            "headAngles": list(self.head_angles),
            "activations": dict(self.activations),
            "trackingConfidence": self.tracking_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FeatureSample":
        """Decode a sample pushed by a client (camelCase keys, missing keys default)."""
        angles = data.get("headAngles") or (0.0, 0.0, 0.0)
        if len(angles) != 3:
            raise ValueError("headAngles must have 3 components")
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),
            eye_blink_left=float(data.get("eyeBlinkLeft", 0.0)),
            eye_blink_right=float(data.get("eyeBlinkRight", 0.0)),
            brow_inner_up=float(data.get("browInnerUp", 0.0)),
            head_angles=(float(angles[0]), float(angles[1]), float(angles[2])),
            activations={str(k): float(v) for k, v in (data.get("activations") or {}).items()},
            tracking_confidence=float(data.get("trackingConfidence", 1.0)),
        )


def count_blinks(samples: Sequence[FeatureSample]) -> int:
    """
    Count blinks as rising edges of (left + right) / 2 > 0.5.

    A blink is counted when the previous sample was open and the current one
    is closed; a window that starts closed counts that first closure too.
    """
    blinks = 0
    was_blinking = False
    for sample in samples:
        is_blinking = sample.average_blink > BLINK_THRESHOLD
        if is_blinking and not was_blinking:
            blinks += 1
        was_blinking = is_blinking
    return blinks


def window_duration(samples: Sequence[FeatureSample]) -> float:
    """Duration of a window (last sample timestamp); 1.0 for empty or zero-length windows."""
    if not samples:
        return 1.0
    last = float(samples[-1].timestamp)
    if not math.isfinite(last) or last <= 0.0:
        return 1.0
    return last


def blink_rate(samples: Sequence[FeatureSample]) -> float:
    """Blinks per second over the window."""
    return count_blinks(samples) / window_duration(samples)


def head_movement(samples: Sequence[FeatureSample]) -> float:
    """
    Mean consecutive-sample angular distance.

    The summed Euclidean distance between consecutive (pitch, yaw, roll)
    vectors is divided by the number of samples. Fewer than two samples -> 0.
    """
    if len(samples) < 2:
        return 0.0
    angles = np.asarray([s.head_angles for s in samples], dtype=np.float64)
    deltas = np.linalg.norm(np.diff(angles, axis=0), axis=1)
    return float(np.sum(deltas) / len(samples))


def mean_brow_raise(samples: Sequence[FeatureSample]) -> float:
    """Mean brow-inner-raise activation; 0 for an empty window."""
    if not samples:
        return 0.0
    return float(np.mean([s.brow_inner_up for s in samples]))


def _gaze_offset(sample: FeatureSample) -> Tuple[float, float]:
    act = sample.activations
    # Looking right: left eye looks out, right eye looks in
    horizontal = (
        act.get("eyeLookOutLeft", 0.0) - act.get("eyeLookInLeft", 0.0)
        + act.get("eyeLookInRight", 0.0) - act.get("eyeLookOutRight", 0.0)
    ) / 2.0
    vertical = (
        act.get("eyeLookUpLeft", 0.0) - act.get("eyeLookDownLeft", 0.0)
        + act.get("eyeLookUpRight", 0.0) - act.get("eyeLookDownRight", 0.0)
    ) / 2.0
    return float(horizontal), float(vertical)


def gaze_stability(samples: Sequence[FeatureSample]) -> float:
    """
    Gaze stability in 0-1 (1 = perfectly steady gaze).

    1 - min(1, spread), where spread is the RMS distance of each sample's gaze
    offset from the window's mean offset. Windows without eye-look activations
    are fully stable.
    """
    if len(samples) < 2:
        return 1.0
    offsets = np.asarray([_gaze_offset(s) for s in samples], dtype=np.float64)
    centered = offsets - offsets.mean(axis=0)
    spread = float(np.sqrt(np.mean(np.sum(centered ** 2, axis=1))))
    return 1.0 - min(1.0, spread)


def activation_names(samples: Sequence[FeatureSample]) -> List[str]:
    """browInnerUp plus every extra activation name seen in the samples, sorted."""
    names = {BROW_INNER_UP}
    for s in samples:
        names.update(s.activations.keys())
    return sorted(names)


def mean_activation(samples: Sequence[FeatureSample], name: str) -> Optional[float]:
    """Mean of a named activation over the window, or None for an empty window."""
    if not samples:
        return None
    return float(np.mean([s.activation(name) for s in samples]))


def average_tracking_confidence(windows: Sequence[Sequence[FeatureSample]]) -> float:
    """Mean tracking confidence over every sample of every window; 0 when there are none."""
    values = [s.tracking_confidence for w in windows for s in w]
    if not values:
        return 0.0
    return float(np.mean(values))
