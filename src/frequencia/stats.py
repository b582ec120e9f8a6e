"""Attendance statistics per bimester and for the whole year.

Only marked lessons count: an UNDEFINED slot is neither a presence nor an
absence. Excused absences count towards attendance. Bimester ranges are used
as given, so a date inside two overlapping bimesters is counted in both.
"""

import calendar
from collections.abc import Iterable, Mapping
from datetime import date

from frequencia.logging import get_logger
from frequencia.models import (
    AttendanceStats,
    AttendanceStatus,
    BimesterConfig,
    BimesterStats,
    DailyRecord,
    DateKey,
    Holiday,
    Student,
    StudentSummary,
)
from frequencia.store import AttendanceStore

log = get_logger(__name__)

# Minimum annual attendance (percent) before a student is flagged
AT_RISK_THRESHOLD = 75.0


def percentage(present: int, excused: int, total: int) -> float:
    """Attendance percentage; a period without marked lessons is 0, not 100."""
    if total <= 0:
        return 0.0
    return (present + excused) / total * 100


def parse_date_key(date_key: DateKey) -> date | None:
    try:
        return date.fromisoformat(str(date_key)[:10])
    except ValueError:
        return None


def _count(records: Iterable[DailyRecord]) -> tuple[int, int, int]:
    present = absent = excused = 0
    for record in records:
        for status in record:
            if status == AttendanceStatus.PRESENT:
                present += 1
            elif status == AttendanceStatus.ABSENT:
                absent += 1
            elif status == AttendanceStatus.EXCUSED:
                excused += 1
    return present, absent, excused


def compute_bimester_stats(
    record: Mapping[DateKey, DailyRecord],
    bimesters: Iterable[BimesterConfig],
) -> list[BimesterStats]:
    """Counts for each bimester, in the order the bimesters are given.

    Args:
        record: One student's attendance, date key -> daily record.
        bimesters: Bimester ranges; bounds are inclusive.
    """
    dated: list[tuple[date, DailyRecord]] = []
    for date_key, statuses in record.items():
        day = parse_date_key(date_key)
        if day is None:
            log.debug("stats_date_skipped", date=date_key)
            continue
        dated.append((day, statuses))

    results = []
    for bimester in bimesters:
        present, absent, excused = _count(
            statuses for day, statuses in dated if bimester.start <= day <= bimester.end
        )
        total = present + absent + excused
        results.append(
            BimesterStats(
                bimester_id=bimester.id,
                name=bimester.name,
                start=bimester.start,
                end=bimester.end,
                present=present,
                absent=absent,
                excused=excused,
                total=total,
                percentage=percentage(present, excused, total),
            )
        )
    return results


def annual_stats(buckets: Iterable[AttendanceStats]) -> AttendanceStats:
    """Sum bimester buckets and recompute the percentage over the summed totals."""
    present = absent = excused = total = 0
    for bucket in buckets:
        present += bucket.present
        absent += bucket.absent
        excused += bucket.excused
        total += bucket.total
    return AttendanceStats(
        present=present,
        absent=absent,
        excused=excused,
        total=total,
        percentage=percentage(present, excused, total),
    )


def is_at_risk(stats: AttendanceStats) -> bool:
    return stats.percentage < AT_RISK_THRESHOLD


def summarize_student(
    student: Student,
    record: Mapping[DateKey, DailyRecord],
    bimesters: Iterable[BimesterConfig],
) -> StudentSummary:
    buckets = compute_bimester_stats(record, bimesters)
    annual = annual_stats(buckets)
    return StudentSummary(
        student=student,
        bimesters=buckets,
        annual=annual,
        at_risk=is_at_risk(annual),
    )


def summarize_class(
    students: Iterable[Student],
    store: AttendanceStore,
    bimesters: Iterable[BimesterConfig],
) -> list[StudentSummary]:
    """Summaries for a list of students, in the given order."""
    bimesters = list(bimesters)
    return [
        summarize_student(student, store.student_record(student.id), bimesters)
        for student in students
    ]


def month_dates(year: int, month: int) -> list[DateKey]:
    """Date keys of every day in a month (month is 1-12)."""
    _, days = calendar.monthrange(year, month)
    return [date(year, month, day).isoformat() for day in range(1, days + 1)]


def holiday_dates(holidays: Iterable[Holiday]) -> set[DateKey]:
    return {holiday.day.isoformat() for holiday in holidays}
