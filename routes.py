"""
Flask routes for Hot Seat.

Handles participants, calibration, game sessions (start, read-only state,
imperative commands), transcript and face-sample ingestion from the browser,
results, question packs, the speech token and config.

The browser drives the flow: it renders the current phase from
GET /session/state, issues commands (POST /session/<command>) and streams
speech transcripts and tracking data back while a question is being recorded.
"""

import logging
import threading
from typing import Optional

from flask import Blueprint, jsonify, request

import config
from calibration_session import CalibrationSession
from services.answer_recognition import TranscriptAnswerSource
from services.azure_speech import get_speech_service
from services.participant_store import ParticipantBusy, ParticipantNotFound, ParticipantStore
from session_orchestrator import InvalidTransition, SessionOrchestrator
from utils.baseline_builder import CalibrationIncomplete
from utils.blendshape_mapper import as_matrix
from utils.feature_signals import FeatureSample
from utils.question_source import QuestionPackLibrary, SelectionMode
from utils.remote_tracking_source import RemoteTrackingSource

logger = logging.getLogger(__name__)

# Create a blueprint for better organization
api = Blueprint("api", __name__)


class Runtime:
    """
    Collaborators shared by the routes. Created lazily on first use; tests
    call reset() with in-memory doubles.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self, store=None, library=None, tracking=None, recognition=None, session_options=None):
        self.store = store
        self.library = library
        self.tracking = tracking
        self.recognition = recognition
        # Extra keyword arguments for new sessions (timer_factory, executor, clock, ...)
        self.session_options = dict(session_options or {})
        self.session: Optional[SessionOrchestrator] = None

    def get_store(self) -> ParticipantStore:
        with self._lock:
            if self.store is None:
                self.store = ParticipantStore()
            return self.store

    def get_library(self) -> QuestionPackLibrary:
        with self._lock:
            if self.library is None:
                self.library = QuestionPackLibrary()
            return self.library

    def get_tracking(self):
        with self._lock:
            if self.tracking is None:
                if config.TRACKING_SOURCE == "mediapipe":
                    # Lazy import: opencv/mediapipe are an optional extra
                    from utils.mediapipe_tracker import MediaPipeTrackingSource
                    self.tracking = MediaPipeTrackingSource()
                else:
                    self.tracking = RemoteTrackingSource()
            return self.tracking

    def get_recognition(self) -> TranscriptAnswerSource:
        with self._lock:
            if self.recognition is None:
                self.recognition = TranscriptAnswerSource()
            return self.recognition

    def replace_session(self, session: Optional[SessionOrchestrator]) -> None:
        previous, self.session = self.session, session
        if previous is not None:
            previous.cleanup()

    def require_session(self, kind=SessionOrchestrator) -> SessionOrchestrator:
        session = self.session
        if session is None or not isinstance(session, kind):
            raise LookupError("No active session")
        return session


runtime = Runtime()


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ============================================================================
# Error handling
# ============================================================================

@api.errorhandler(InvalidTransition)
@api.errorhandler(ParticipantBusy)
def _conflict(e):
    return jsonify({"error": str(e)}), 409


@api.errorhandler(CalibrationIncomplete)
def _calibration_incomplete(e):
    return jsonify({"error": "Calibration failed", "details": str(e)}), 422


@api.errorhandler(ParticipantNotFound)
def _participant_not_found(e):
    return jsonify({"error": "Participant not found", "participantId": e.args[0] if e.args else None}), 404


@api.errorhandler(LookupError)
def _not_found(e):
    return jsonify({"error": str(e.args[0]) if e.args else "Not found"}), 404


@api.errorhandler(ValueError)
def _bad_request(e):
    return jsonify({"error": str(e)}), 400


# ============================================================================
# Participant Routes
# ============================================================================

@api.route("/participants", methods=["GET"])
def list_participants():
    store = runtime.get_store()
    return jsonify({"participants": [p.summary() for p in store.list_participants()]})


@api.route("/participants", methods=["POST"])
def create_participant():
    """
    Create a participant profile.

    Request Body:
        {"name": "Ala", "age": 30, "gender": "male" | "female" | "other"}
    """
    data = _json_body()
    try:
        participant = runtime.get_store().create(data.get("name"), data.get("age", 0), data.get("gender", "other"))
    except (TypeError, ValueError) as e:
        return jsonify({"error": "Invalid participant", "details": str(e)}), 400
    return jsonify(participant.summary()), 201


@api.route("/participants/<participant_id>", methods=["GET"])
def get_participant(participant_id):
    return jsonify(runtime.get_store().get(participant_id).to_dict())


@api.route("/participants/<participant_id>", methods=["DELETE"])
def delete_participant(participant_id):
    runtime.get_store().remove(participant_id)
    return "", 204


# ============================================================================
# Question Pack Routes
# ============================================================================

@api.route("/packs", methods=["GET"])
def list_packs():
    library = runtime.get_library()
    return jsonify({
        "packs": [p.summary(library.language) for p in library.packs],
        "usingFallback": library.using_fallback,
    })


# ============================================================================
# Calibration Routes
# ============================================================================

@api.route("/calibration/start", methods=["POST"])
def start_calibration():
    """
    Start the 8-question calibration battery for one participant.

    Request Body:
        {"participantId": "..."}
    """
    data = _json_body()
    store = runtime.get_store()
    participant = store.get(str(data.get("participantId", "")))
    session = CalibrationSession(
        participant,
        runtime.get_tracking(),
        runtime.get_recognition(),
        store=store,
        **runtime.session_options,
    )
    runtime.replace_session(None)
    session.start_session()
    runtime.replace_session(session)
    session.begin()
    return jsonify(session.snapshot())


@api.route("/calibration/finish", methods=["POST"])
def finish_calibration():
    session = runtime.require_session(CalibrationSession)
    record = session.finish_calibration()
    return jsonify({"success": True, "calibration": record.to_dict()})


# ============================================================================
# Session Routes
# ============================================================================

@api.route("/session/start", methods=["POST"])
def start_session():
    """
    Start a game session.

    Request Body:
        {
            "participantIds": ["..."],
            "packId": "party",                       (optional, default: first pack)
            "questionsPerParticipant": 5,            (optional)
            "mode": "random" | "manual",             (optional)
            "questionIds": ["..."]                   (manual mode, optional)
        }

    When the pack cannot supply quota x participants questions, the quota is
    reduced to what the pack can cover equally.
    """
    data = _json_body()
    store = runtime.get_store()
    ids = data.get("participantIds") or []
    if not ids:
        return jsonify({"error": "participantIds is required"}), 400
    participants = [store.get(str(pid)) for pid in ids]
    default_quota = config.DEFAULT_QUESTIONS_PER_PARTICIPANT if len(participants) > 1 else config.DEFAULT_QUESTION_COUNT
    quota = int(data.get("questionsPerParticipant") or default_quota)
    try:
        mode = SelectionMode(str(data.get("mode", "random")).lower())
    except ValueError:
        return jsonify({"error": "mode must be 'random' or 'manual'"}), 400

    questions = runtime.get_library().select_questions(
        data.get("packId"), quota * len(participants), mode, data.get("questionIds"),
    )
    available = len(questions) // len(participants)
    if available < 1:
        return jsonify({"error": "Not enough questions for every participant"}), 400
    if available < quota:
        logger.warning("Reducing questions per participant from %d to %d", quota, available)
        quota = available

    session = SessionOrchestrator(
        participants,
        questions[:quota * len(participants)],
        runtime.get_tracking(),
        runtime.get_recognition(),
        questions_per_participant=quota,
        store=store,
        **runtime.session_options,
    )
    runtime.replace_session(None)
    session.start_session()
    runtime.replace_session(session)
    return jsonify(session.snapshot())


@api.route("/session/state", methods=["GET"])
def session_state():
    return jsonify(runtime.require_session().snapshot())


_COMMANDS = {
    "begin": "begin",
    "start-turn": "start_participant_turn",
    "start-countdown": "start_question_recording",
    "start-answer": "start_answer_recording",
    "advance": "advance_to_next_question",
    "next-participant": "move_to_next_participant",
    "retry-timeout": "retry_after_timeout",
    "retry-question": "retry_current_question",
    "restart": "restart",
    "cleanup": "cleanup",
}


@api.route("/session/<command>", methods=["POST"])
def session_command(command):
    """
    Issue one imperative command to the active session (calibration or game).
    start-countdown is refused while the face is not tracked well enough.
    """
    method_name = _COMMANDS.get(command)
    if method_name is None:
        return jsonify({"error": f"Unknown command: {command}"}), 404
    session = runtime.require_session()
    method = getattr(session, method_name, None)
    if method is None:
        return jsonify({"error": f"{command} is not available for this session"}), 409
    if command == "start-countdown" and not session.can_start_countdown():
        return jsonify({"error": "Face not detected or tracking quality too poor"}), 409
    method()
    return jsonify(session.snapshot())


@api.route("/session/transcript", methods=["POST"])
def session_transcript():
    """
    Receive speech-to-text output for the question being recorded.
    Body: JSON {"text": "...", "isFinal": false} or plain text (treated as final).
    """
    if request.is_json:
        data = _json_body()
        text = data.get("text", "") or ""
        is_final = bool(data.get("isFinal", False))
    else:
        text = (request.get_data(as_text=True) or "").strip()
        is_final = True
    outcome = runtime.get_recognition().submit_transcript(text, is_final=is_final)
    return jsonify({"outcome": outcome.value if outcome else None})


def _remote_tracking() -> RemoteTrackingSource:
    tracking = runtime.get_tracking()
    if not isinstance(tracking, RemoteTrackingSource):
        raise InvalidTransition("push tracking data", runtime.require_session().current_phase)
    return tracking


@api.route("/session/tracking-state", methods=["POST"])
def tracking_state():
    """Body: {"faceDetected": true, "quality": "good" | "fair" | "poor" | "unknown"}"""
    data = _json_body()
    _remote_tracking().update_state(bool(data.get("faceDetected")), data.get("quality"))
    return "", 204


@api.route("/session/samples", methods=["POST"])
def push_samples():
    """
    Push feature samples for the open recording window.

    Request Body (either form):
        {"samples": [FeatureSample.to_dict(), ...]}
        {"frames": [{"blendshapes": {...}, "transform": [16 floats], "timestamp": 0.12}, ...]}

    A batch is decoded in full before anything is recorded; one malformed
    entry rejects the whole request with 400.
    """
    data = _json_body()
    tracking = _remote_tracking()
    try:
        samples = [FeatureSample.from_dict(s) for s in data.get("samples", [])]
        frames = [_decode_frame(f) for f in data.get("frames", [])]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        return jsonify({"error": "Invalid samples", "details": str(e)}), 400
    accepted = tracking.push_samples(samples) if samples else 0
    for blendshapes, transform, timestamp in frames:
        if tracking.push_frame(blendshapes, transform, timestamp):
            accepted += 1
    return jsonify({"accepted": accepted})


def _decode_frame(frame: dict) -> tuple:
    blendshapes = {str(k): float(v) for k, v in (frame.get("blendshapes") or {}).items()}
    transform = frame.get("transform")
    if transform is not None:
        transform = as_matrix(transform)
        if transform.shape not in ((4, 4), (3, 3)):
            raise ValueError("transform must be a 4x4 or 3x3 matrix")
    timestamp = frame.get("timestamp")
    return blendshapes, transform, None if timestamp is None else float(timestamp)


@api.route("/session/results", methods=["GET"])
def session_results():
    """Scores, per-participant verdicts, winner and the recorded results."""
    session = runtime.require_session()
    summary = session.summary()
    summary["results"] = {
        pid: [r.to_dict() for r in results] for pid, results in session.all_results().items()
    }
    summary["phase"] = session.current_phase.value
    return jsonify(summary)


# ============================================================================
# Speech Service Routes
# ============================================================================

@api.route("/speech/token", methods=["GET"])
def get_speech_token():
    """
    Get Azure Speech Service access token for browser speech-to-text.

    Returns:
        JSON: {"token": "...", "region": "westeurope", "locale": "en-US"}
    """
    try:
        return jsonify(get_speech_service().get_speech_token())
    except ValueError as e:
        return jsonify({"error": "Speech service not available", "details": str(e)}), 503
    except Exception as e:
        error_details = str(e)
        status_code = 504 if "timed out" in error_details.lower() else 502
        return jsonify({"error": "Failed to get speech token", "details": error_details}), status_code


# ============================================================================
# Configuration Routes
# ============================================================================

@api.route("/config/all", methods=["GET"])
def get_all_config():
    return jsonify({
        "session": config.get_session_config(),
        "tracking": config.get_tracking_config(),
        "speech": {"enabled": config.is_speech_enabled(), "region": config.SPEECH_REGION},
        "contentLanguage": config.CONTENT_LANGUAGE,
    })


def register_routes(app) -> None:
    """Attach the API blueprint to the Flask app."""
    app.register_blueprint(api)
