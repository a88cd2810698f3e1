"""
MediaPipe Tracking Source

Local-camera implementation of TrackingSource. A capture thread reads frames
from OpenCV, runs the MediaPipe Face Landmarker (blendshapes + facial
transformation matrix) and keeps the current face state; while a recording
window is open, each processed frame becomes a FeatureSample.

OpenCV and MediaPipe are imported when tracking starts so the rest of the
engine loads without camera dependencies (install the "camera" extra).
"""

import logging
import threading
import time
from typing import List, Optional

import config
from utils.blendshape_mapper import (
    assess_quality,
    blendshapes_to_dict,
    first_face,
    sample_from_blendshapes,
)
from utils.feature_signals import FeatureSample
from utils.tracking_interface import TrackingQuality, TrackingSource

logger = logging.getLogger(__name__)

# MediaPipe's facial transformation matrix translation is in centimeters
MEDIAPIPE_TRANSLATION_SCALE = 0.01


class MediaPipeTrackingSource(TrackingSource):
    """
    Usage:
        tracker = MediaPipeTrackingSource()
        tracker.start_tracking()
        tracker.start_recording()
        ...
        samples = tracker.stop_recording()
        tracker.close()
    """

    def __init__(
        self,
        camera_index: Optional[int] = None,
        model_path: Optional[str] = None,
        min_face_confidence: Optional[float] = None,
        target_fps: float = 30.0,
    ):
        self.camera_index = config.CAMERA_INDEX if camera_index is None else int(camera_index)
        self.model_path = model_path or config.FACE_LANDMARKER_MODEL_PATH
        conf = config.MIN_FACE_CONFIDENCE if min_face_confidence is None else min_face_confidence
        self._min_conf = max(0.01, min(0.99, float(conf)))
        self._frame_budget = 1.0 / max(1.0, float(target_fps))

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._capture = None
        self._landmarker = None

        self._face_detected = False
        self._quality = TrackingQuality.UNKNOWN
        self._recording = False
        self._samples: List[FeatureSample] = []
        self._window_start: Optional[float] = None

    def start_tracking(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        import cv2
        import mediapipe as mp
        from mediapipe.tasks import python as mp_tasks
        from mediapipe.tasks.python import vision

        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=self.model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=self._min_conf,
            min_tracking_confidence=self._min_conf,
            output_face_blendshapes=True,
            output_facial_transformation_matrixes=True,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        self._capture = cv2.VideoCapture(self.camera_index)
        if not self._capture.isOpened():
            self._landmarker.close()
            self._landmarker = None
            raise RuntimeError(f"Cannot open camera {self.camera_index}")

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._capture_loop, args=(cv2, mp), daemon=True)
        self._thread.start()
        logger.info("MediaPipe tracking started on camera %d", self.camera_index)

    def stop_tracking(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        with self._lock:
            self._recording = False
            self._samples = []
            self._face_detected = False
            self._quality = TrackingQuality.UNKNOWN

    def start_recording(self) -> None:
        with self._lock:
            self._recording = True
            self._samples = []
            self._window_start = time.monotonic()

    def stop_recording(self) -> List[FeatureSample]:
        with self._lock:
            samples = self._samples
            self._recording = False
            self._samples = []
            self._window_start = None
        logger.debug("Stopped recording: %d samples", len(samples))
        return samples

    @property
    def is_face_detected(self) -> bool:
        with self._lock:
            return self._face_detected

    @property
    def quality(self) -> TrackingQuality:
        with self._lock:
            return self._quality

    def get_name(self) -> str:
        return "mediapipe"

    def _capture_loop(self, cv2, mp) -> None:
        started = time.monotonic()
        while not self._stop_event.is_set():
            frame_start = time.monotonic()
            ok, frame = self._capture.read()
            if not ok or frame is None:
                time.sleep(self._frame_budget)
                continue
            try:
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
                timestamp_ms = int((frame_start - started) * 1000)
                result = self._landmarker.detect_for_video(image, timestamp_ms)
                self._handle_result(result, frame_start)
            except Exception as e:
                logger.warning("Face landmarker failed on frame: %s", e)
            elapsed = time.monotonic() - frame_start
            if elapsed < self._frame_budget:
                time.sleep(self._frame_budget - elapsed)

    def _handle_result(self, result, frame_time: float) -> None:
        categories = first_face(result.face_blendshapes)
        transform = first_face(getattr(result, "facial_transformation_matrixes", None))
        if categories is None:
            with self._lock:
                self._face_detected = False
                self._quality = TrackingQuality.UNKNOWN
            return

        quality = (
            assess_quality(transform, MEDIAPIPE_TRANSLATION_SCALE)
            if transform is not None else TrackingQuality.UNKNOWN
        )
        with self._lock:
            self._face_detected = True
            self._quality = quality
            if not self._recording or self._window_start is None:
                return
            timestamp = max(0.0, frame_time - self._window_start)
            self._samples.append(
                sample_from_blendshapes(blendshapes_to_dict(categories), timestamp, transform)
            )
