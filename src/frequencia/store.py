"""In-memory attendance store: student -> date -> per-lesson statuses.

Daily records are tuples and every write replaces the record for that
(student, date), so a record handed out earlier never changes under the
caller. A missing student or date means every slot is UNDEFINED.
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from frequencia.models import AttendanceStatus, DailyRecord, DateKey


def blank_record(length: int) -> DailyRecord:
    return (AttendanceStatus.UNDEFINED,) * max(length, 0)


def pad_record(record: DailyRecord, length: int) -> DailyRecord:
    """Grow a record with UNDEFINED slots up to ``length``. Never shrinks."""
    if len(record) >= length:
        return record
    return record + blank_record(length - len(record))


class AttendanceStore:
    """Attendance marks for every student, keyed by student id then date key."""

    def __init__(self, data: Mapping[str, Mapping[DateKey, Iterable]] | None = None) -> None:
        self._data: dict[str, dict[DateKey, DailyRecord]] = {}
        for student_id, days in (data or {}).items():
            self._data[str(student_id)] = {
                str(date_key): tuple(AttendanceStatus.parse(s) for s in statuses)
                for date_key, statuses in days.items()
            }

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, student_id: object) -> bool:
        return student_id in self._data

    def get_daily(self, student_id: str, date_key: DateKey) -> DailyRecord | None:
        """Stored record for a day, or None when nothing was ever marked."""
        return self._data.get(student_id, {}).get(date_key)

    def get_status(self, student_id: str, date_key: DateKey, lesson_index: int) -> AttendanceStatus:
        record = self.get_daily(student_id, date_key)
        if record is None or lesson_index >= len(record) or lesson_index < 0:
            return AttendanceStatus.UNDEFINED
        return record[lesson_index]

    def student_record(self, student_id: str) -> Mapping[DateKey, DailyRecord]:
        """Read-only view of one student's days."""
        return MappingProxyType(dict(self._data.get(student_id, {})))

    def set_daily(self, student_id: str, date_key: DateKey, record: Iterable[AttendanceStatus]) -> DailyRecord:
        """Replace the record for one (student, date)."""
        stored = tuple(record)
        # Copy the outer per-student map too so earlier student_record() views stay intact
        days = dict(self._data.get(student_id, {}))
        days[date_key] = stored
        self._data[student_id] = days
        return stored

    def set_status(
        self,
        student_id: str,
        date_key: DateKey,
        lesson_index: int,
        status: AttendanceStatus,
        min_length: int = 0,
    ) -> DailyRecord:
        """Write one cell, growing the day's record as needed."""
        current = self.get_daily(student_id, date_key) or ()
        record = list(pad_record(current, max(lesson_index + 1, min_length)))
        record[lesson_index] = status
        return self.set_daily(student_id, date_key, record)

    def remove_students(self, student_ids: Iterable[str]) -> int:
        """Drop all attendance for the given students. Returns how many had entries."""
        removed = 0
        for student_id in student_ids:
            if self._data.pop(student_id, None) is not None:
                removed += 1
        return removed

    def snapshot(self) -> dict[str, dict[DateKey, DailyRecord]]:
        """Shallow copy of the whole store; records are immutable tuples."""
        return {student_id: dict(days) for student_id, days in self._data.items()}

    def restore(self, snapshot: Mapping[str, Mapping[DateKey, DailyRecord]]) -> None:
        """Replace the store contents with a snapshot taken earlier."""
        self._data = {student_id: dict(days) for student_id, days in snapshot.items()}

    def clear(self) -> None:
        self._data = {}
