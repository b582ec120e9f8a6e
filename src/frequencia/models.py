"""Pydantic models for attendance data.

All records use Pydantic v2 for validation and wire serialization. Field names
are snake_case in Python; the spreadsheet backend speaks camelCase, so wire
names are declared as aliases and models dump with by_alias=True.
"""

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# "YYYY-MM-DD"
DateKey = str


class AttendanceStatus(str, Enum):
    """Mark for one lesson slot. UNDEFINED means not marked yet."""

    UNDEFINED = "UNDEFINED"
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    EXCUSED = "EXCUSED"

    @classmethod
    def parse(cls, value: Any) -> "AttendanceStatus":
        """Decode a wire value; blanks and unknown values read as UNDEFINED."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.UNDEFINED


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TRANSFERRED = "TRANSFERRED"
    DROPPED = "DROPPED"
    INACTIVE = "INACTIVE"


# One entry per lesson slot of a day
DailyRecord = tuple[AttendanceStatus, ...]


def _date_prefix(value: Any) -> Any:
    # Sheets serializes date cells as full timestamps ("2024-02-05T03:00:00.000Z")
    if isinstance(value, str) and len(value) > 10:
        return value[:10]
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ClassGroup(_WireModel):
    """A class (turma) that students belong to."""

    id: str
    name: str


class Student(_WireModel):
    """A student enrolled in one class."""

    id: str
    name: str
    class_id: str = Field(alias="classId")
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> Any:
        return value or EnrollmentStatus.ACTIVE


class BimesterConfig(_WireModel):
    """Named date range used for periodic reporting. Bounds are inclusive."""

    id: int
    name: str
    start: date
    end: date

    @field_validator("start", "end", mode="before")
    @classmethod
    def _strip_time(cls, value: Any) -> Any:
        return _date_prefix(value)


class Holiday(_WireModel):
    day: date = Field(alias="date")
    name: str = ""

    @field_validator("day", mode="before")
    @classmethod
    def _strip_time(cls, value: Any) -> Any:
        return _date_prefix(value)


class PendingChange(_WireModel):
    """A locally applied attendance edit that has not been persisted yet."""

    model_config = ConfigDict(frozen=True)

    student_id: str = Field(alias="studentId")
    date: DateKey
    lesson_index: int = Field(alias="lessonIndex")
    status: AttendanceStatus
    subject: str = ""
    topic: str = ""

    @property
    def key(self) -> tuple[str, DateKey, int]:
        return (self.student_id, self.date, self.lesson_index)


class AttendanceStats(BaseModel):
    """Lesson counts over a period. UNDEFINED slots are not counted."""

    present: int = 0
    absent: int = 0
    excused: int = 0
    total: int = 0
    percentage: float = 0.0


class BimesterStats(AttendanceStats):
    bimester_id: int
    name: str
    start: date
    end: date


class StudentSummary(BaseModel):
    student: Student
    bimesters: list[BimesterStats]
    annual: AttendanceStats
    at_risk: bool


class BackendSnapshot(BaseModel):
    """Everything the backend returns on load, decoded at the boundary."""

    classes: list[ClassGroup] = Field(default_factory=list)
    students: list[Student] = Field(default_factory=list)
    bimesters: list[BimesterConfig] = Field(default_factory=list)
    attendance: dict[str, dict[DateKey, DailyRecord]] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)


def default_bimesters(year: int) -> list[BimesterConfig]:
    """Bimesters used until the school saves its own calendar."""
    ranges = [
        ((2, 1), (4, 15)),
        ((4, 16), (6, 30)),
        ((8, 1), (9, 30)),
        ((10, 1), (12, 20)),
    ]
    return [
        BimesterConfig(
            id=i,
            name=f"{i}º Bimestre",
            start=date(year, start[0], start[1]),
            end=date(year, end[0], end[1]),
        )
        for i, (start, end) in enumerate(ranges, start=1)
    ]
