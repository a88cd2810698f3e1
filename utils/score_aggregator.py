"""
Score Aggregator Module

Reduces a session's accumulated QuestionResults into per-participant scores,
rank tiers, a session verdict and the overall winner.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from utils.participant import Participant
from utils.session_models import QuestionResult


class RankTier(Enum):
    """Rank tier by truthful percentage."""
    HIGHEST = "highest"  # >= 80
    HIGH = "high"        # >= 60
    MIDDLE = "middle"    # >= 40
    LOW = "low"          # >= 20
    LOWEST = "lowest"    # < 20

    @classmethod
    def from_percentage(cls, percentage: float) -> "RankTier":
        if percentage >= 80:
            return cls.HIGHEST
        elif percentage >= 60:
            return cls.HIGH
        elif percentage >= 40:
            return cls.MIDDLE
        elif percentage >= 20:
            return cls.LOW
        else:
            return cls.LOWEST

    @property
    def title(self) -> str:
        return {
            RankTier.HIGHEST: "Truth Master",
            RankTier.HIGH: "Honest",
            RankTier.MIDDLE: "So-so",
            RankTier.LOW: "Shaky",
            RankTier.LOWEST: "Suspect",
        }[self]


class SessionVerdict(Enum):
    """Overall verdict for one participant's answers."""
    MOSTLY_TRUTHFUL = "mostly_truthful"
    MIXED = "mixed"
    MOSTLY_LYING = "mostly_lying"
    INCONCLUSIVE = "inconclusive"

    @classmethod
    def from_results(cls, results: Sequence[QuestionResult]) -> "SessionVerdict":
        judged = [r for r in results if r.verdict is not None]
        if not judged:
            return cls.INCONCLUSIVE
        ratio = sum(1 for r in judged if r.verdict.is_suspicious) / len(judged)
        if ratio >= 0.5:
            return cls.MOSTLY_LYING
        elif ratio >= 0.3:
            return cls.MIXED
        return cls.MOSTLY_TRUTHFUL


@dataclass(frozen=True)
class ParticipantScore:
    participant_id: str
    name: str
    truthful_count: int
    suspicious_count: int
    total_questions: int
    truthful_percentage: int

    @property
    def rank(self) -> RankTier:
        return RankTier.from_percentage(self.truthful_percentage)

    def to_dict(self) -> dict:
        return {
            "participantId": self.participant_id,
            "name": self.name,
            "truthfulCount": self.truthful_count,
            "suspiciousCount": self.suspicious_count,
            "totalQuestions": self.total_questions,
            "truthfulPercentage": self.truthful_percentage,
            "rank": self.rank.value,
            "rankTitle": self.rank.title,
        }


class ScoreAggregator:
    """
    Usage:
        aggregator = ScoreAggregator()
        scores = aggregator.all_scores(participants, state.results)
        winner = aggregator.overall_winner(participants, state.results)
    """

    def participant_score(self, participant: Participant, results: Sequence[QuestionResult]) -> ParticipantScore:
        """Truthful = verdict not suspicious; percentage = truthful / total (0 when no results)."""
        judged = [r for r in results if r.verdict is not None]
        suspicious = sum(1 for r in judged if r.verdict.is_suspicious)
        total = len(judged)
        truthful = total - suspicious
        percentage = (truthful * 100) // total if total > 0 else 0
        return ParticipantScore(
            participant_id=participant.id,
            name=participant.name,
            truthful_count=truthful,
            suspicious_count=suspicious,
            total_questions=total,
            truthful_percentage=percentage,
        )

    def all_scores(
        self,
        participants: Sequence[Participant],
        results: Mapping[str, Sequence[QuestionResult]],
    ) -> List[ParticipantScore]:
        """Scores sorted by truthful percentage, highest first (stable for ties)."""
        scores = [self.participant_score(p, results.get(p.id, ())) for p in participants]
        return sorted(scores, key=lambda s: s.truthful_percentage, reverse=True)

    def overall_winner(
        self,
        participants: Sequence[Participant],
        results: Mapping[str, Sequence[QuestionResult]],
    ) -> Optional[Participant]:
        """
        Participant with the most truthful answers.
        Ties resolve to the first participant reaching the maximum in list order.
        """
        best: Optional[Participant] = None
        best_count = -1
        for p in participants:
            count = self.participant_score(p, results.get(p.id, ())).truthful_count
            if count > best_count:
                best, best_count = p, count
        return best

    def summary(
        self,
        participants: Sequence[Participant],
        results: Mapping[str, Sequence[QuestionResult]],
    ) -> Dict[str, object]:
        winner = self.overall_winner(participants, results)
        return {
            "scores": [s.to_dict() for s in self.all_scores(participants, results)],
            "verdicts": {
                p.id: SessionVerdict.from_results(results.get(p.id, ())).value for p in participants
            },
            "winner": winner.summary() if winner else None,
        }
