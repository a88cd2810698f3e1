"""
=============================================================================
CONFIGURATION FOR HOT SEAT (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
modules read from it. Nothing secret is stored in the code; values come from
the environment (e.g. your .env file or system variables).

MAIN GROUPS OF SETTINGS:
------------------------
  1. Answer recognition — how long we wait for a spoken "yes"/"no", and which
                          language's keywords we listen for.
  2. Session flow       — countdown length, read-question step, question quotas.
  3. Content & storage  — where question packs and participant profiles live.
  4. Tracking           — where face samples come from (browser or local camera).
  5. Azure Speech       — token for browser speech-to-text.
  6. Server & logging   — host, port, debug mode, log level.

The verdict weights and thresholds are NOT here on purpose: they are fixed
constants in utils/verdict_engine.py.
=============================================================================
"""

import os
import sys
from typing import Optional


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _strip_quotes(s: str) -> str:
    if not s:
        return s
    s = s.strip()
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'")):
        return s[1:-1].strip()
    return s


PROJECT_ROOT: str = os.path.dirname(os.path.abspath(__file__))

# ============================================================================
# ANSWER RECOGNITION
# ============================================================================
# Seconds to wait for a recognized "yes"/"no" before the question times out.
# A timeout never consumes the question; the participant retries it.
RECOGNITION_TIMEOUT_SEC: float = float(os.getenv("RECOGNITION_TIMEOUT_SEC", "10"))
# Keyword set used to detect answers in transcripts: "en" or "pl".
RECOGNITION_LANGUAGE: str = os.getenv("RECOGNITION_LANGUAGE", "en").strip().lower()

# ============================================================================
# SESSION FLOW
# ============================================================================
# Countdown before each question: COUNTDOWN_STEPS ticks of COUNTDOWN_STEP_SEC (3, 2, 1).
COUNTDOWN_STEPS: int = max(1, int(os.getenv("COUNTDOWN_STEPS", "3")))
COUNTDOWN_STEP_SEC: float = max(0.0, float(os.getenv("COUNTDOWN_STEP_SEC", "1.0")))
# Solo sessions show the question for reading before capture starts.
SHOW_READ_QUESTION: bool = _bool_env("SHOW_READ_QUESTION", "true")
DEFAULT_QUESTIONS_PER_PARTICIPANT: int = max(1, int(os.getenv("DEFAULT_QUESTIONS_PER_PARTICIPANT", "5")))
DEFAULT_QUESTION_COUNT: int = max(1, int(os.getenv("DEFAULT_QUESTION_COUNT", "10")))

# ============================================================================
# CONTENT & STORAGE
# ============================================================================
QUESTION_PACKS_PATH: str = os.getenv("QUESTION_PACKS_PATH", os.path.join(PROJECT_ROOT, "data", "packs.json"))
PARTICIPANTS_PATH: str = os.getenv("PARTICIPANTS_PATH", os.path.join(PROJECT_ROOT, "data", "participants.json"))
# Language for question-pack text ("en" or "pl").
CONTENT_LANGUAGE: str = os.getenv("CONTENT_LANGUAGE", "en").strip().lower()

# ============================================================================
# TRACKING
# ============================================================================
#   "remote"    : the browser runs the face landmarker and pushes samples (default).
#   "mediapipe" : local camera + MediaPipe Face Landmarker (needs the "camera" extra).
TRACKING_SOURCE: str = os.getenv("TRACKING_SOURCE", "remote").strip().lower()
CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
FACE_LANDMARKER_MODEL_PATH: str = os.getenv(
    "FACE_LANDMARKER_MODEL_PATH", os.path.join(PROJECT_ROOT, "models", "face_landmarker.task")
)
# Minimum confidence for face detection/tracking (0.01-0.99).
MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.5"))
VALID_TRACKING_SOURCES = ("remote", "mediapipe")

# ============================================================================
# AZURE SPEECH SERVICE (browser speech-to-text token)
# ============================================================================
SPEECH_KEY: str = _strip_quotes(os.getenv("SPEECH_KEY") or "")
SPEECH_REGION: str = (os.getenv("SPEECH_REGION") or "westeurope").strip().lower()
SPEECH_ENDPOINT: Optional[str] = os.getenv("SPEECH_ENDPOINT", None)

# ============================================================================
# SERVER & LOGGING
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = _bool_env("FLASK_DEBUG", "false")
FLASK_HOST: str = os.getenv("FLASK_HOST", "127.0.0.1")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


# ============================================================================
# Helper Functions
# ============================================================================

def warn_missing_config() -> None:
    """
    Print warnings when optional configuration is missing or invalid.
    Call from app startup. Does not raise.
    """
    problems = []
    if not SPEECH_KEY:
        problems.append("SPEECH_KEY is not set (browser speech token disabled)")
    if TRACKING_SOURCE not in VALID_TRACKING_SOURCES:
        problems.append(f"TRACKING_SOURCE={TRACKING_SOURCE!r} is not one of {', '.join(VALID_TRACKING_SOURCES)}")
    if TRACKING_SOURCE == "mediapipe" and not os.path.isfile(FACE_LANDMARKER_MODEL_PATH):
        problems.append(f"FACE_LANDMARKER_MODEL_PATH does not exist: {FACE_LANDMARKER_MODEL_PATH}")
    if RECOGNITION_LANGUAGE not in ("en", "pl"):
        problems.append(f"RECOGNITION_LANGUAGE={RECOGNITION_LANGUAGE!r} is not supported (en, pl)")
    if problems:
        print("Config warning: " + "; ".join(problems), file=sys.stderr)


def is_speech_enabled() -> bool:
    return bool(SPEECH_KEY and SPEECH_KEY.strip())


def get_session_config() -> dict:
    """Session-flow settings exposed to the presentation layer."""
    return {
        "recognitionTimeoutSec": RECOGNITION_TIMEOUT_SEC,
        "recognitionLanguage": RECOGNITION_LANGUAGE,
        "countdownSteps": COUNTDOWN_STEPS,
        "countdownStepSec": COUNTDOWN_STEP_SEC,
        "showReadQuestion": SHOW_READ_QUESTION,
        "defaultQuestionsPerParticipant": DEFAULT_QUESTIONS_PER_PARTICIPANT,
        "defaultQuestionCount": DEFAULT_QUESTION_COUNT,
    }


def get_tracking_config() -> dict:
    return {
        "source": TRACKING_SOURCE,
        "cameraIndex": CAMERA_INDEX,
        "minFaceConfidence": MIN_FACE_CONFIDENCE,
    }
