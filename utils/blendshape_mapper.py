"""
Blendshape Mapper

Maps face-landmarker output (MediaPipe Face Landmarker or ARKit-style
blendshape dictionaries plus a 4x4 facial transformation matrix) onto the
engine's FeatureSample, and assesses tracking quality from the head pose.

MediaPipe and ARKit share blendshape names (eyeBlinkLeft, browInnerUp, ...),
so one mapping serves both.
"""

import math
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np

from utils.feature_signals import FeatureSample
from utils.tracking_interface import TrackingQuality

EYE_BLINK_LEFT = "eyeBlinkLeft"
EYE_BLINK_RIGHT = "eyeBlinkRight"
BROW_INNER_UP = "browInnerUp"

# Extra activations carried on each sample (used for named-activation baselines and gaze)
TRACKED_ACTIVATIONS = (
    "jawOpen",
    "eyeSquintLeft", "eyeSquintRight",
    "mouthPressLeft", "mouthPressRight",
    "browDownLeft", "browDownRight",
    "eyeLookInLeft", "eyeLookOutLeft", "eyeLookUpLeft", "eyeLookDownLeft",
    "eyeLookInRight", "eyeLookOutRight", "eyeLookUpRight", "eyeLookDownRight",
)

# Centering limit (meters) and per-axis rotation limit (radians) for quality
CENTER_LIMIT = 0.2
ROTATION_LIMIT = 0.5


def as_matrix(transform) -> np.ndarray:
    """Row-major matrix from nested rows or a flat list of 16 (or 9) values."""
    m = np.asarray(transform, dtype=np.float64)
    if m.ndim == 1 and m.size in (9, 16):
        side = 3 if m.size == 9 else 4
        m = m.reshape(side, side)
    return m


def euler_angles(transform) -> Tuple[float, float, float]:
    """
    (pitch, yaw, roll) in radians from a row-major 4x4 (or 3x3) transform.
    """
    m = as_matrix(transform)
    pitch = math.atan2(m[1, 2], m[2, 2])
    yaw = math.atan2(-m[0, 2], math.sqrt(m[1, 2] ** 2 + m[2, 2] ** 2))
    roll = math.atan2(m[0, 1], m[0, 0])
    return (pitch, yaw, roll)


def assess_quality(transform, translation_scale: float = 1.0) -> TrackingQuality:
    """
    Face quality from a 4x4 transform: centered (|x|, |y| < 0.2 m) and facing
    the camera (|pitch|, |yaw|, |roll| < 0.5 rad). Both -> GOOD, one -> FAIR,
    neither -> POOR.

    Args:
        transform: Row-major 4x4 matrix; translation in column 3
        translation_scale: Multiplier to convert the translation to meters
            (MediaPipe reports centimeters -> 0.01)
    """
    m = as_matrix(transform)
    if m.shape != (4, 4):
        return TrackingQuality.UNKNOWN
    x, y = m[0, 3] * translation_scale, m[1, 3] * translation_scale
    centered = abs(x) < CENTER_LIMIT and abs(y) < CENTER_LIMIT
    facing = all(abs(a) < ROTATION_LIMIT for a in euler_angles(m))
    if centered and facing:
        return TrackingQuality.GOOD
    elif centered or facing:
        return TrackingQuality.FAIR
    return TrackingQuality.POOR


def blendshapes_to_dict(categories: Sequence) -> dict:
    """Convert a MediaPipe category list (category_name, score) into a name -> score dict."""
    return {c.category_name: float(c.score) for c in categories if getattr(c, "category_name", None)}


def sample_from_blendshapes(
    blendshapes: Mapping[str, float],
    timestamp: float,
    transform=None,
    tracking_confidence: float = 1.0,
) -> FeatureSample:
    """Build a FeatureSample from a blendshape dictionary and an optional head transform."""
    angles = euler_angles(transform) if transform is not None else (0.0, 0.0, 0.0)
    activations = {
        name: float(blendshapes[name]) for name in TRACKED_ACTIVATIONS if name in blendshapes
    }
    return FeatureSample(
        timestamp=float(timestamp),
        eye_blink_left=float(blendshapes.get(EYE_BLINK_LEFT, 0.0)),
        eye_blink_right=float(blendshapes.get(EYE_BLINK_RIGHT, 0.0)),
        brow_inner_up=float(blendshapes.get(BROW_INNER_UP, 0.0)),
        head_angles=angles,
        activations=activations,
        tracking_confidence=max(0.0, min(1.0, float(tracking_confidence))),
    )


def first_face(values: Optional[Sequence]):
    """First element of a per-face result list, or None."""
    if not values:
        return None
    return values[0]
