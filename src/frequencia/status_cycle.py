"""Manual toggle order for a lesson cell.

UNDEFINED -> PRESENT -> ABSENT -> EXCUSED -> UNDEFINED
"""

from typing import Any

from frequencia.models import AttendanceStatus

_NEXT: dict[AttendanceStatus, AttendanceStatus] = {
    AttendanceStatus.UNDEFINED: AttendanceStatus.PRESENT,
    AttendanceStatus.PRESENT: AttendanceStatus.ABSENT,
    AttendanceStatus.ABSENT: AttendanceStatus.EXCUSED,
    AttendanceStatus.EXCUSED: AttendanceStatus.UNDEFINED,
}


def next_status(current: Any) -> AttendanceStatus:
    """Status a cell moves to when clicked. Unknown values behave as UNDEFINED."""
    try:
        return _NEXT.get(current, AttendanceStatus.PRESENT)
    except TypeError:
        # unhashable garbage from the wire
        return AttendanceStatus.PRESENT


def resolve_status(current: Any, forced: AttendanceStatus | None = None) -> AttendanceStatus:
    """Target status for a cell: the forced one for bulk marking, else the next in the ring."""
    if forced is not None:
        return forced
    return next_status(current)
