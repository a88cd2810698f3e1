"""
Score aggregator tests.

Truthful percentages, rank tiers, session verdicts and the overall winner.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from tests.fixtures.synthetic_samples import make_participant, make_questions
from utils.score_aggregator import RankTier, ScoreAggregator, SessionVerdict
from utils.session_models import QuestionResult, QuestionVerdict, SpokenAnswer


def _results(suspicious_flags):
    questions = make_questions(len(suspicious_flags))
    return [
        QuestionResult(
            question=q,
            spoken_answer=SpokenAnswer.YES,
            samples=(),
            response_duration=1.0,
            verdict=QuestionVerdict(confidence=0.8 if s else 0.1, is_suspicious=s, factors=()),
            global_index=i,
        )
        for i, (q, s) in enumerate(zip(questions, suspicious_flags))
    ]


class TestParticipantScore(unittest.TestCase):

    def test_four_of_five_truthful_is_highest_tier(self):
        score = ScoreAggregator().participant_score(make_participant(), _results([False] * 4 + [True]))
        self.assertEqual(score.truthful_count, 4)
        self.assertEqual(score.suspicious_count, 1)
        self.assertEqual(score.truthful_percentage, 80)
        self.assertEqual(score.rank, RankTier.HIGHEST)

    def test_no_results(self):
        score = ScoreAggregator().participant_score(make_participant(), [])
        self.assertEqual(score.total_questions, 0)
        self.assertEqual(score.truthful_percentage, 0)
        self.assertEqual(score.rank, RankTier.LOWEST)

    def test_percentage_truncates(self):
        score = ScoreAggregator().participant_score(make_participant(), _results([False, False, True]))
        self.assertEqual(score.truthful_percentage, 66)

    def test_to_dict(self):
        d = ScoreAggregator().participant_score(make_participant(), _results([False])).to_dict()
        self.assertEqual(d["truthfulPercentage"], 100)
        self.assertEqual(d["rank"], "highest")
        self.assertEqual(d["rankTitle"], "Truth Master")


class TestRankTier(unittest.TestCase):

    def test_boundaries(self):
        cases = [(100, RankTier.HIGHEST), (80, RankTier.HIGHEST), (79, RankTier.HIGH), (60, RankTier.HIGH),
                 (59, RankTier.MIDDLE), (40, RankTier.MIDDLE), (39, RankTier.LOW), (20, RankTier.LOW),
                 (19, RankTier.LOWEST), (0, RankTier.LOWEST)]
        for percentage, tier in cases:
            self.assertEqual(RankTier.from_percentage(percentage), tier, percentage)


class TestSessionVerdict(unittest.TestCase):

    def test_ratios(self):
        self.assertEqual(SessionVerdict.from_results([]), SessionVerdict.INCONCLUSIVE)
        self.assertEqual(SessionVerdict.from_results(_results([True, False])), SessionVerdict.MOSTLY_LYING)
        self.assertEqual(SessionVerdict.from_results(_results([True, False, False])), SessionVerdict.MIXED)
        self.assertEqual(SessionVerdict.from_results(_results([True] + [False] * 3)), SessionVerdict.MOSTLY_TRUTHFUL)


class TestWinner(unittest.TestCase):

    def setUp(self):
        self.a = make_participant("a", "Ala")
        self.b = make_participant("b", "Bartek")
        self.c = make_participant("c", "Celina")

    def test_most_truthful_wins(self):
        results = {"a": _results([True, True]), "b": _results([False, False]), "c": _results([False, True])}
        winner = ScoreAggregator().overall_winner([self.a, self.b, self.c], results)
        self.assertEqual(winner.id, "b")

    def test_tie_goes_to_first_in_order(self):
        results = {"a": _results([True, False]), "b": _results([False, False]), "c": _results([False, False])}
        agg = ScoreAggregator()
        self.assertEqual(agg.overall_winner([self.a, self.b, self.c], results).id, "b")
        self.assertEqual(agg.overall_winner([self.a, self.c, self.b], results).id, "c")

    def test_no_participants(self):
        self.assertIsNone(ScoreAggregator().overall_winner([], {}))

    def test_summary_sorted_by_percentage(self):
        results = {"a": _results([True, False]), "b": _results([False, False])}
        summary = ScoreAggregator().summary([self.a, self.b], results)
        self.assertEqual([s["participantId"] for s in summary["scores"]], ["b", "a"])
        self.assertEqual(summary["verdicts"], {"a": "mostly_lying", "b": "mostly_truthful"})
        self.assertEqual(summary["winner"]["id"], "b")


if __name__ == "__main__":
    unittest.main()
