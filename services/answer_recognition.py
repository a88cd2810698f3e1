"""
Answer recognition service.

Resolves one spoken "yes"/"no" per listening request. Transcripts come from
speech-to-text running in the browser (Azure Speech, token issued by
services.azure_speech) and are posted to the backend; this module turns them
into SpokenAnswer outcomes:

- a transcript containing a yes/no keyword resolves the request with that answer
  (the first keyword spoken wins);
- a final transcript without a keyword resolves it as UNRECOGNIZED;
- no answer before the timeout resolves it as TIMEOUT.

Every request resolves exactly once; cancelled requests never call back.
"""

import itertools
import logging
import re
import threading
from typing import Callable, Dict, FrozenSet, Optional

import config
from utils.session_models import SpokenAnswer

logger = logging.getLogger(__name__)

ANSWER_KEYWORDS: Dict[str, Dict[SpokenAnswer, FrozenSet[str]]] = {
    "en": {
        SpokenAnswer.YES: frozenset({"yes", "yeah", "yep", "yup"}),
        SpokenAnswer.NO: frozenset({"no", "nope", "nah"}),
    },
    "pl": {
        SpokenAnswer.YES: frozenset({"tak"}),
        SpokenAnswer.NO: frozenset({"nie", "nee"}),
    },
}

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def detect_answer(text: str, language: Optional[str] = None) -> Optional[SpokenAnswer]:
    """Return the first yes/no keyword in the transcript, or None."""
    keywords = ANSWER_KEYWORDS.get((language or config.RECOGNITION_LANGUAGE).lower(), ANSWER_KEYWORDS["en"])
    for word in _WORD_RE.findall((text or "").lower()):
        for answer, words in keywords.items():
            if word in words:
                return answer
    return None


class RecognitionRequest:
    """One outstanding listen; resolves at most once."""

    _ids = itertools.count(1)

    def __init__(self, on_result: Callable[[SpokenAnswer], None]):
        self.id = next(self._ids)
        self._on_result = on_result
        self._lock = threading.Lock()
        self._done = False
        self.timer = None

    @property
    def done(self) -> bool:
        with self._lock:
            return self._done

    def resolve(self, outcome: SpokenAnswer) -> bool:
        with self._lock:
            if self._done:
                return False
            self._done = True
        if self.timer is not None:
            self.timer.cancel()
        try:
            self._on_result(outcome)
        except Exception:
            logger.exception("Recognition callback failed for request %d", self.id)
        return True

    def cancel(self) -> bool:
        with self._lock:
            if self._done:
                return False
            self._done = True
        if self.timer is not None:
            self.timer.cancel()
        return True


def _daemon_timer(interval: float, fn: Callable[[], None]):
    timer = threading.Timer(interval, fn)
    timer.daemon = True
    return timer


class TranscriptAnswerSource:
    """
    Answer-recognition collaborator fed with transcripts.

    Usage:
        source = TranscriptAnswerSource()
        source.start_listening(on_result)       # on_result(SpokenAnswer)
        source.submit_transcript("yes", is_final=True)
        source.stop_listening()
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = None,
        language: Optional[str] = None,
        timer_factory: Callable = _daemon_timer,
    ):
        self.timeout_sec = float(config.RECOGNITION_TIMEOUT_SEC if timeout_sec is None else timeout_sec)
        self.language = (language or config.RECOGNITION_LANGUAGE).lower()
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._request: Optional[RecognitionRequest] = None
        self.last_transcript: str = ""

    @property
    def is_listening(self) -> bool:
        with self._lock:
            return self._request is not None and not self._request.done

    def start_listening(
        self,
        on_result: Callable[[SpokenAnswer], None],
        timeout: Optional[float] = None,
    ) -> RecognitionRequest:
        """Open a request (cancelling any outstanding one) and arm its timeout."""
        request = RecognitionRequest(on_result)
        duration = self.timeout_sec if timeout is None else float(timeout)
        with self._lock:
            previous, self._request = self._request, request
            self.last_transcript = ""
        if previous is not None:
            previous.cancel()
        if duration > 0:
            request.timer = self._timer_factory(duration, lambda: self._on_timeout(request))
            request.timer.start()
        logger.debug("Listening for answer (request %d, timeout %.1fs)", request.id, duration)
        return request

    def stop_listening(self) -> None:
        """Cancel the outstanding request without delivering a result."""
        with self._lock:
            request, self._request = self._request, None
        if request is not None and request.cancel():
            logger.debug("Cancelled recognition request %d", request.id)

    def submit_transcript(self, text: str, is_final: bool = False) -> Optional[SpokenAnswer]:
        """
        Feed a (partial or final) transcript. Returns the outcome delivered, or
        None when nothing was resolved (no request, or partial without keyword).
        """
        with self._lock:
            request = self._request
            self.last_transcript = text or ""
        if request is None or request.done:
            return None
        answer = detect_answer(text, self.language)
        if answer is None and not is_final:
            return None
        outcome = answer or SpokenAnswer.UNRECOGNIZED
        if self._finish(request, outcome):
            logger.info("Recognized answer %s from %r", outcome.value, text)
            return outcome
        return None

    def _on_timeout(self, request: RecognitionRequest) -> None:
        if self._finish(request, SpokenAnswer.TIMEOUT):
            logger.info("Answer recognition timed out (request %d)", request.id)

    def _finish(self, request: RecognitionRequest, outcome: SpokenAnswer) -> bool:
        with self._lock:
            if self._request is request:
                self._request = None
        return request.resolve(outcome)

    def close(self) -> None:
        self.stop_listening()
