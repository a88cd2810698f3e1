"""
Utilities package for Hot Seat.

This package contains the pure pieces of the engine (feature signals, baseline
building, verdict scoring, score aggregation, question sources) and the
tracking-source adapters. The MediaPipe camera adapter is not imported here;
it needs the optional "camera" extra (opencv, mediapipe).
"""

from .feature_signals import FeatureSample
from .session_models import QuestionCategory, QuestionRecord, QuestionResult, QuestionVerdict, SpokenAnswer
from .baseline_builder import BaselineBuilder, CalibrationIncomplete, CalibrationRecord, FacialBaseline
from .verdict_engine import VerdictEngine
from .participant import Gender, Participant
from .score_aggregator import ParticipantScore, RankTier, ScoreAggregator, SessionVerdict
from .question_source import QuestionPackLibrary, SelectionMode, generate_calibration_questions
from .tracking_interface import TrackingQuality, TrackingSource
from .remote_tracking_source import RemoteTrackingSource

__all__ = [
    'FeatureSample',
    'QuestionCategory',
    'QuestionRecord',
    'QuestionResult',
    'QuestionVerdict',
    'SpokenAnswer',
    'BaselineBuilder',
    'CalibrationIncomplete',
    'CalibrationRecord',
    'FacialBaseline',
    'VerdictEngine',
    'Gender',
    'Participant',
    'ParticipantScore',
    'RankTier',
    'ScoreAggregator',
    'SessionVerdict',
    'QuestionPackLibrary',
    'SelectionMode',
    'generate_calibration_questions',
    'TrackingQuality',
    'TrackingSource',
    'RemoteTrackingSource',
]
