"""
Question Source Module

Supplies ordered question sequences to sessions:

- Calibration: a pure function of the participant profile and the current
  date producing 8 known-truth questions (4 expected "yes", 4 expected "no")
  across identity / environment / temporal categories, then shuffled.
- Gameplay: questions selected from a named content pack, either randomly
  without replacement or by an explicit id list.

Packs are loaded from a JSON file ({"packs": [...]}) with localized text
({"pl": ..., "en": ...}). When the file is missing or malformed the library
falls back to a minimal built-in pack so a session can still proceed.
"""

import json
import logging
import os
import random
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Sequence

import config
from utils.participant import Gender, Participant
from utils.session_models import QuestionCategory, QuestionRecord, SpokenAnswer

logger = logging.getLogger(__name__)

_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_GENDER_NOUNS = {Gender.MALE: "a man", Gender.FEMALE: "a woman", Gender.OTHER: "a non-binary person"}


class QuestionPackError(ValueError):
    """Pack content could not be decoded."""


class SelectionMode(Enum):
    RANDOM = "random"
    MANUAL = "manual"


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# ============================================================================
# CALIBRATION QUESTIONS
# ============================================================================

def wrong_month_name(current_month: int) -> str:
    """A month six months away from the current one (1-12)."""
    index = (current_month + 6) % 12
    if index == 0:
        index = 12
    return _MONTHS[index - 1]


def generate_calibration_questions(
    participant: Participant,
    today: Optional[date] = None,
    rng: Optional[random.Random] = None,
) -> List[QuestionRecord]:
    """
    Build the 8-question calibration battery for a participant.

    Args:
        participant: Profile providing name, age and gender
        today: Date used for the temporal questions (default: today)
        rng: Random source for the final shuffle (default: module random)
    """
    today = today or date.today()
    yes, no = SpokenAnswer.YES, SpokenAnswer.NO
    questions = [
        QuestionRecord("calibration.is_your_name", f"Is your name {participant.name}?",
                       QuestionCategory.IDENTITY, yes),
        QuestionRecord("calibration.are_you_gender", f"Are you {_GENDER_NOUNS[participant.gender]}?",
                       QuestionCategory.IDENTITY, yes),
        QuestionRecord("calibration.can_see_screen", "Can you see this screen?",
                       QuestionCategory.ENVIRONMENT, yes),
        QuestionRecord("calibration.is_today", f"Is today {_WEEKDAYS[today.weekday()]}?",
                       QuestionCategory.TEMPORAL, yes),
        QuestionRecord("calibration.are_you_age", f"Are you {participant.age + 5} years old?",
                       QuestionCategory.IDENTITY, no),
        QuestionRecord("calibration.are_you_opposite_gender",
                       f"Are you {_GENDER_NOUNS[participant.gender.opposite]}?",
                       QuestionCategory.IDENTITY, no),
        QuestionRecord("calibration.are_you_sleeping", "Are you sleeping right now?",
                       QuestionCategory.ENVIRONMENT, no),
        QuestionRecord("calibration.is_month", f"Is it {wrong_month_name(today.month)} now?",
                       QuestionCategory.TEMPORAL, no),
    ]
    # Shuffle so the battery is not always yes-yes-yes-yes-no-no-no-no
    (rng or random).shuffle(questions)
    return questions


# ============================================================================
# QUESTION PACKS
# ============================================================================

def _localized(value, language: str) -> str:
    if isinstance(value, dict):
        text = value.get(language) or value.get("en") or next(iter(value.values()), "")
        return str(text)
    return str(value or "")


@dataclass(frozen=True)
class PackQuestion:
    id: str
    text: Dict[str, str]
    difficulty: Difficulty = Difficulty.EASY

    def localized_text(self, language: str) -> str:
        return _localized(self.text, language)


@dataclass(frozen=True)
class QuestionPack:
    id: str
    name: Dict[str, str]
    description: Dict[str, str]
    category: QuestionCategory
    questions: tuple
    emoji: str = ""
    image_name: Optional[str] = None
    is_premium: bool = False
    version: str = "1.0"

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def summary(self, language: str) -> dict:
        return {
            "id": self.id,
            "name": _localized(self.name, language),
            "description": _localized(self.description, language),
            "category": self.category.value,
            "emoji": self.emoji,
            "questionCount": self.question_count,
            "isPremium": self.is_premium,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionPack":
        try:
            questions = tuple(
                PackQuestion(
                    id=str(q["id"]),
                    text=q["text"] if isinstance(q["text"], dict) else {"en": str(q["text"])},
                    difficulty=Difficulty(q.get("difficulty", "easy")),
                )
                for q in data["questions"]
            )
            name = data["name"]
            description = data.get("description") or {}
            return cls(
                id=str(data["id"]),
                name=name if isinstance(name, dict) else {"en": str(name)},
                description=description if isinstance(description, dict) else {"en": str(description)},
                category=QuestionCategory(data.get("category", "general")),
                questions=questions,
                emoji=str(data.get("emoji", "")),
                image_name=data.get("imageName"),
                is_premium=bool(data.get("isPremium", False)),
                version=str(data.get("version", "1.0")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise QuestionPackError(f"Invalid question pack {data.get('id', '?') if isinstance(data, dict) else '?'}: {e}") from e


def _fallback_pack() -> QuestionPack:
    q = [
        ("fallback_1", "Czy kiedykolwiek skłamałeś/aś?", "Have you ever lied?", Difficulty.EASY),
        ("fallback_2", "Czy masz jakiś sekret?", "Do you have a secret?", Difficulty.EASY),
        ("fallback_3", "Czy żałujesz czegoś z przeszłości?", "Do you regret something from your past?", Difficulty.MEDIUM),
        ("fallback_4", "Czy kiedykolwiek udawałeś/aś chorobę?", "Have you ever faked being sick?", Difficulty.EASY),
        ("fallback_5", "Czy sprawdzałeś/aś czyjś telefon bez pozwolenia?",
         "Have you ever checked someone's phone without permission?", Difficulty.MEDIUM),
    ]
    return QuestionPack(
        id="fallback",
        name={"pl": "Pakiet podstawowy", "en": "Basic Pack"},
        description={"pl": "Podstawowe pytania", "en": "Basic questions"},
        category=QuestionCategory.GENERAL,
        questions=tuple(PackQuestion(qid, {"pl": pl, "en": en}, diff) for qid, pl, en, diff in q),
        emoji="🎯",
    )


class QuestionPackLibrary:
    """
    Loads and serves question packs.

    Usage:
        library = QuestionPackLibrary()
        questions = library.select_questions("party", count=10)
    """

    def __init__(self, path: Optional[str] = None, language: Optional[str] = None):
        self.path = path if path is not None else config.QUESTION_PACKS_PATH
        self.language = (language or config.CONTENT_LANGUAGE or "en").lower()
        self.packs: List[QuestionPack] = []
        self.using_fallback = False
        self.load()

    def load(self) -> List[QuestionPack]:
        """(Re)load packs from the JSON file; falls back to the built-in pack on any failure."""
        if not self.path or not os.path.isfile(self.path):
            logger.warning("Question packs file %r not found, using fallback pack", self.path)
            return self._use_fallback()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            packs = [QuestionPack.from_dict(p) for p in data["packs"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to load question packs from %s: %s; using fallback pack", self.path, e)
            return self._use_fallback()
        if not packs:
            logger.warning("Question packs file %s has no packs, using fallback pack", self.path)
            return self._use_fallback()
        self.packs = packs
        self.using_fallback = False
        logger.info("Loaded %d question pack(s) from %s", len(packs), self.path)
        return self.packs

    def _use_fallback(self) -> List[QuestionPack]:
        self.packs = [_fallback_pack()]
        self.using_fallback = True
        return self.packs

    def get_pack(self, pack_id: str) -> Optional[QuestionPack]:
        return next((p for p in self.packs if p.id == pack_id), None)

    def free_packs(self) -> List[QuestionPack]:
        return [p for p in self.packs if not p.is_premium]

    def premium_packs(self) -> List[QuestionPack]:
        return [p for p in self.packs if p.is_premium]

    def packs_for_category(self, category: QuestionCategory) -> List[QuestionPack]:
        return [p for p in self.packs if p.category == category]

    def to_record(self, pack: QuestionPack, question: PackQuestion) -> QuestionRecord:
        return QuestionRecord(
            id=question.id,
            text=question.localized_text(self.language),
            category=pack.category,
        )

    def select_questions(
        self,
        pack_id: Optional[str],
        count: int,
        mode: SelectionMode = SelectionMode.RANDOM,
        question_ids: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> List[QuestionRecord]:
        """
        Select gameplay questions from a pack.

        RANDOM: `count` questions without replacement (fewer if the pack is smaller).
        MANUAL: the questions whose ids are listed, in pack order; with no ids,
        the first `count` questions.
        Unknown pack ids resolve to the first available pack.
        """
        pack = self.get_pack(pack_id) if pack_id else None
        if pack is None:
            if pack_id:
                logger.warning("Unknown question pack %r, using %r", pack_id, self.packs[0].id)
            pack = self.packs[0]
        count = max(0, int(count))
        if mode is SelectionMode.MANUAL:
            if question_ids:
                wanted = set(question_ids)
                chosen = [q for q in pack.questions if q.id in wanted]
            else:
                chosen = list(pack.questions[:count])
        else:
            pool = list(pack.questions)
            chosen = (rng or random).sample(pool, min(count, len(pool)))
        return [self.to_record(pack, q) for q in chosen]
