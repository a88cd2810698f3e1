"""
Participant profile. Owned by the participant store; the engine only reads
the profile and reads/replaces the calibration record.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from utils.baseline_builder import CalibrationRecord


class Gender(Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"

    @property
    def opposite(self) -> "Gender":
        """Used by calibration to build a known-false identity question."""
        if self is Gender.MALE:
            return Gender.FEMALE
        return Gender.MALE

    @classmethod
    def parse(cls, value) -> "Gender":
        if isinstance(value, Gender):
            return value
        text = str(value or "").strip().lower()
        legacy = {"mężczyzna": "male", "kobieta": "female", "inna": "other"}
        return cls(legacy.get(text, text))


@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    age: int
    gender: Gender
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    calibration: Optional[CalibrationRecord] = None
    last_calibrated_at: Optional[datetime] = None

    @classmethod
    def create(cls, name: str, age: int, gender) -> "Participant":
        name = (name or "").strip()
        if not name:
            raise ValueError("Participant name is required")
        age = int(age)
        if age < 0:
            raise ValueError("Participant age must be non-negative")
        return cls(id=str(uuid.uuid4()), name=name, age=age, gender=Gender.parse(gender))

    @property
    def is_calibrated(self) -> bool:
        return self.calibration is not None

    @property
    def initials(self) -> str:
        parts = self.name.split()
        if not parts:
            return ""
        first = parts[0][:1]
        last = parts[-1][:1] if len(parts) > 1 else ""
        return (first + last).upper()

    def with_calibration(self, record: Optional[CalibrationRecord]) -> "Participant":
        """Copy with the calibration record replaced wholesale (None clears it)."""
        return replace(
            self,
            calibration=record,
            last_calibrated_at=record.calibrated_at if record else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "gender": self.gender.value,
            "createdAt": self.created_at.isoformat(),
            "calibration": self.calibration.to_dict() if self.calibration else None,
            "lastCalibratedAt": self.last_calibrated_at.isoformat() if self.last_calibrated_at else None,
        }

    def summary(self) -> dict:
        """Profile without the baseline payload (for listings)."""
        return {
            "id": self.id,
            "name": self.name,
            "initials": self.initials,
            "age": self.age,
            "gender": self.gender.value,
            "isCalibrated": self.is_calibrated,
            "lastCalibratedAt": self.last_calibrated_at.isoformat() if self.last_calibrated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Participant":
        calibration = data.get("calibration") or data.get("calibrationData")
        created = data.get("createdAt")
        last = data.get("lastCalibratedAt")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            age=int(data.get("age", 0)),
            gender=Gender.parse(data.get("gender", "other")),
            created_at=datetime.fromisoformat(created) if created else datetime.now(timezone.utc),
            calibration=CalibrationRecord.from_dict(calibration) if calibration else None,
            last_calibrated_at=datetime.fromisoformat(last) if last else None,
        )
