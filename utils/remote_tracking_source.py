"""
Remote Tracking Source

Tracking source fed by the presentation layer: the browser runs the face
landmarker on the participant's camera and pushes tracking state and feature
samples (already-extracted, or raw blendshapes) to the server. Samples pushed
while no window is open are dropped.
"""

import logging
import threading
import time
from typing import Iterable, List, Mapping, Optional

from utils.blendshape_mapper import assess_quality, sample_from_blendshapes
from utils.feature_signals import FeatureSample
from utils.tracking_interface import TrackingQuality, TrackingSource

logger = logging.getLogger(__name__)


class RemoteTrackingSource(TrackingSource):

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._tracking = False
        self._recording = False
        self._samples: List[FeatureSample] = []
        self._window_start: Optional[float] = None
        self._face_detected = False
        self._quality = TrackingQuality.UNKNOWN

    def start_tracking(self) -> None:
        with self._lock:
            self._tracking = True

    def stop_tracking(self) -> None:
        with self._lock:
            self._tracking = False
            self._recording = False
            self._samples = []
            self._face_detected = False
            self._quality = TrackingQuality.UNKNOWN

    def start_recording(self) -> None:
        with self._lock:
            self._recording = True
            self._samples = []
            self._window_start = self._clock()

    def stop_recording(self) -> List[FeatureSample]:
        with self._lock:
            samples = self._samples
            self._recording = False
            self._samples = []
            self._window_start = None
        logger.debug("Remote window closed with %d samples", len(samples))
        return samples

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._recording

    @property
    def is_face_detected(self) -> bool:
        with self._lock:
            return self._face_detected

    @property
    def quality(self) -> TrackingQuality:
        with self._lock:
            return self._quality

    def update_state(self, face_detected: bool, quality) -> None:
        with self._lock:
            self._face_detected = bool(face_detected)
            self._quality = TrackingQuality.parse(quality) if face_detected else TrackingQuality.UNKNOWN

    def push_samples(self, samples: Iterable[FeatureSample]) -> int:
        """
        Append samples to the open window, keeping timestamps monotonic
        (out-of-order samples are dropped). Returns the number accepted.
        """
        accepted = 0
        with self._lock:
            if not self._recording:
                return 0
            last = self._samples[-1].timestamp if self._samples else float("-inf")
            for s in samples:
                if s.timestamp < last:
                    continue
                self._samples.append(s)
                last = s.timestamp
                accepted += 1
        return accepted

    def push_frame(
        self,
        blendshapes: Mapping[str, float],
        transform=None,
        timestamp: Optional[float] = None,
        translation_scale: float = 1.0,
    ) -> bool:
        """
        Ingest one raw landmarker frame: updates face state and, while a window
        is open, records a sample. timestamp defaults to time since the window opened.
        """
        quality = assess_quality(transform, translation_scale) if transform is not None else TrackingQuality.UNKNOWN
        self.update_state(True, quality)
        with self._lock:
            if not self._recording:
                return False
            ts = timestamp if timestamp is not None else self._clock() - (self._window_start or self._clock())
        sample = sample_from_blendshapes(blendshapes, ts, transform)
        return self.push_samples([sample]) == 1

    def get_name(self) -> str:
        return "remote"
