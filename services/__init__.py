"""
Services package for Hot Seat.

Collaborators with I/O:
- Answer recognition: resolves spoken yes/no from browser transcripts
- Participant store: JSON-file profiles and calibration records
- Azure Speech: tokens for browser speech-to-text
"""

from .answer_recognition import TranscriptAnswerSource, detect_answer
from .participant_store import ParticipantBusy, ParticipantNotFound, ParticipantStore
from .azure_speech import AzureSpeechService, get_speech_service

__all__ = [
    'TranscriptAnswerSource',
    'detect_answer',
    'ParticipantBusy',
    'ParticipantNotFound',
    'ParticipantStore',
    'AzureSpeechService',
    'get_speech_service',
]
