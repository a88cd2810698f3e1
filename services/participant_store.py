"""
Participant store.

JSON-file store of participant profiles and their calibration records. The
engine reads profiles and replaces a participant's CalibrationRecord
wholesale at the end of calibration. A participant with an active session
cannot be recalibrated (or join another session) until that session ends.

File format: {"participants": [Participant.to_dict(), ...]}. Writes go to a
temporary file that then replaces the original.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, List, Optional, Set

import config
from utils.baseline_builder import CalibrationRecord
from utils.participant import Participant

logger = logging.getLogger(__name__)


class ParticipantNotFound(KeyError):
    pass


class ParticipantBusy(RuntimeError):
    """Participant already has an active session or calibration."""


class ParticipantStore:

    def __init__(self, path: Optional[str] = None, autosave: bool = True):
        """
        Args:
            path: JSON file path (default config.PARTICIPANTS_PATH); empty string keeps the store in memory
            autosave: Persist after every mutation
        """
        self.path = config.PARTICIPANTS_PATH if path is None else path
        self.autosave = autosave
        self._lock = threading.Lock()
        # Held from snapshot through os.replace
        self._save_lock = threading.Lock()
        self._participants: Dict[str, Participant] = {}
        self._active: Set[str] = set()
        self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load(self) -> int:
        """Load profiles from disk. Unreadable entries are skipped with a warning."""
        if not self.path or not os.path.isfile(self.path):
            return 0
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read participants from %s: %s", self.path, e)
            return 0
        loaded: Dict[str, Participant] = {}
        for entry in data.get("participants", []):
            try:
                p = Participant.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable participant entry: %s", e)
                continue
            loaded[p.id] = p
        with self._lock:
            self._participants = loaded
        logger.info("Loaded %d participant(s) from %s", len(loaded), self.path)
        return len(loaded)

    def save(self) -> None:
        if not self.path:
            return
        with self._save_lock:
            with self._lock:
                payload = {"participants": [p.to_dict() for p in self._participants.values()]}
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".participants-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise

    def _changed(self) -> None:
        if self.autosave:
            self.save()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def list_participants(self) -> List[Participant]:
        with self._lock:
            return sorted(self._participants.values(), key=lambda p: p.created_at)

    def get(self, participant_id: str) -> Participant:
        with self._lock:
            p = self._participants.get(participant_id)
        if p is None:
            raise ParticipantNotFound(participant_id)
        return p

    def add(self, participant: Participant) -> Participant:
        with self._lock:
            self._participants[participant.id] = participant
        self._changed()
        return participant

    def create(self, name: str, age: int, gender) -> Participant:
        return self.add(Participant.create(name, age, gender))

    def remove(self, participant_id: str) -> None:
        with self._lock:
            if participant_id in self._active:
                raise ParticipantBusy(f"Participant {participant_id} has an active session")
            if self._participants.pop(participant_id, None) is None:
                raise ParticipantNotFound(participant_id)
        self._changed()

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------
    def get_calibration(self, participant_id: str) -> Optional[CalibrationRecord]:
        return self.get(participant_id).calibration

    def save_calibration(self, participant_id: str, record: CalibrationRecord) -> Participant:
        """Replace the participant's calibration record wholesale."""
        if record.participant_id != participant_id:
            raise ValueError("Calibration record belongs to a different participant")
        with self._lock:
            p = self._participants.get(participant_id)
            if p is None:
                raise ParticipantNotFound(participant_id)
            updated = p.with_calibration(record)
            self._participants[participant_id] = updated
        self._changed()
        logger.info("Saved calibration for %s (%s)", updated.name, participant_id)
        return updated

    def clear_calibration(self, participant_id: str) -> Participant:
        with self._lock:
            if participant_id in self._active:
                raise ParticipantBusy(f"Participant {participant_id} has an active session")
            p = self._participants.get(participant_id)
            if p is None:
                raise ParticipantNotFound(participant_id)
            updated = p.with_calibration(None)
            self._participants[participant_id] = updated
        self._changed()
        return updated

    # ------------------------------------------------------------------
    # Session exclusion
    # ------------------------------------------------------------------
    def begin_session(self, participant_ids: Iterable[str]) -> None:
        """Mark participants active; all-or-nothing. Raises ParticipantBusy/ParticipantNotFound."""
        ids = list(participant_ids)
        with self._lock:
            for pid in ids:
                if pid not in self._participants:
                    raise ParticipantNotFound(pid)
                if pid in self._active:
                    raise ParticipantBusy(f"Participant {pid} already has an active session")
            self._active.update(ids)

    def end_session(self, participant_ids: Iterable[str]) -> None:
        with self._lock:
            self._active.difference_update(participant_ids)

    def is_active(self, participant_id: str) -> bool:
        with self._lock:
            return participant_id in self._active
