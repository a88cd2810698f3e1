"""
Session data model shared by the question source, verdict engine, orchestrator
and score aggregator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from utils.feature_signals import FeatureSample


class SpokenAnswer(Enum):
    """Outcome of one answer-recognition request."""
    YES = "yes"
    NO = "no"
    UNRECOGNIZED = "unrecognized"
    TIMEOUT = "timeout"

    @property
    def is_answer(self) -> bool:
        """True for a resolved yes/no answer (a polarity)."""
        return self in (SpokenAnswer.YES, SpokenAnswer.NO)


class QuestionCategory(Enum):
    # Calibration
    IDENTITY = "identity"
    ENVIRONMENT = "environment"
    TEMPORAL = "temporal"
    # Gameplay (pack categories)
    GENERAL = "general"
    SPICY = "spicy"
    RELATIONSHIPS = "relationships"
    SECRETS = "secrets"
    PARTY = "party"


@dataclass(frozen=True)
class QuestionRecord:
    """
    A question shown to a participant.

    expected_answer is set only for calibration questions and is used only to
    build the baseline, never to judge truthfulness.
    """
    id: str
    text: str
    category: QuestionCategory
    expected_answer: Optional[SpokenAnswer] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "category": self.category.value,
            "expectedAnswer": self.expected_answer.value if self.expected_answer else None,
        }


@dataclass(frozen=True)
class QuestionVerdict:
    """Suspicion confidence (0-1), suspicious flag and the factor tags that fired."""
    confidence: float
    is_suspicious: bool
    factors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def percentage(self) -> int:
        return int(self.confidence * 100)

    def to_dict(self) -> dict:
        return {
            "confidence": round(self.confidence, 4),
            "isSuspicious": self.is_suspicious,
            "percentage": self.percentage,
            "factors": list(self.factors),
        }


@dataclass(frozen=True)
class QuestionResult:
    """
    One answered question. Created once when scoring completes, never mutated.
    verdict is None for calibration responses (they are not judged).
    """
    question: QuestionRecord
    spoken_answer: SpokenAnswer
    samples: Tuple[FeatureSample, ...]
    response_duration: float
    verdict: Optional[QuestionVerdict] = None
    global_index: int = 0

    def to_dict(self, include_samples: bool = False) -> dict:
        out = {
            "question": self.question.to_dict(),
            "spokenAnswer": self.spoken_answer.value,
            "responseDuration": round(self.response_duration, 3),
            "sampleCount": len(self.samples),
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "globalIndex": self.global_index,
        }
        if include_samples:
            out["samples"] = [s.to_dict() for s in self.samples]
        return out


def results_by_polarity(results: List[QuestionResult]) -> Tuple[List[QuestionResult], List[QuestionResult]]:
    """Split calibration results by expected answer (falls back to the spoken answer)."""
    yes, no = [], []
    for r in results:
        polarity = r.question.expected_answer or r.spoken_answer
        if polarity is SpokenAnswer.YES:
            yes.append(r)
        elif polarity is SpokenAnswer.NO:
            no.append(r)
    return yes, no
