"""
Tracking Source Interface

This module defines the abstract interface for facial-feature tracking
collaborators, allowing sessions to work with different tracking backends
(browser-side landmarker pushing samples, local MediaPipe camera, test
doubles) interchangeably.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List

from utils.feature_signals import FeatureSample


class TrackingQuality(Enum):
    UNKNOWN = "unknown"
    POOR = "poor"    # Face not centered or at a bad angle
    FAIR = "fair"    # Face visible but not ideal
    GOOD = "good"    # Face well positioned

    @classmethod
    def parse(cls, value) -> "TrackingQuality":
        if isinstance(value, TrackingQuality):
            return value
        try:
            return cls(str(value or "unknown").lower())
        except ValueError:
            return cls.UNKNOWN


class TrackingSource(ABC):
    """
    Abstract interface for tracking sources.

    A recording window is opened with start_recording() and closed with
    stop_recording(), which returns the window's ordered samples (timestamps
    relative to the window start). Face presence and quality are readable at
    any time.
    """

    @abstractmethod
    def start_tracking(self) -> None:
        pass

    @abstractmethod
    def stop_tracking(self) -> None:
        pass

    @abstractmethod
    def start_recording(self) -> None:
        """Open a new feature-sample window (discarding any unclosed one)."""
        pass

    @abstractmethod
    def stop_recording(self) -> List[FeatureSample]:
        """Close the current window and return its samples (empty if none was open)."""
        pass

    @property
    @abstractmethod
    def is_face_detected(self) -> bool:
        pass

    @property
    @abstractmethod
    def quality(self) -> TrackingQuality:
        pass

    def get_name(self) -> str:
        return type(self).__name__

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation stops tracking.
        """
        self.stop_tracking()


def can_start_countdown(source: TrackingSource) -> bool:
    """Guard for prepare -> countdown: face detected and quality is not poor."""
    return bool(source.is_face_detected) and source.quality is not TrackingQuality.POOR
