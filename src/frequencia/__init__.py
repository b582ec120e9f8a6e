"""Attendance tracking core for the Frequência school app.

Per-lesson attendance marks, a pending-change queue saved in batches to a
spreadsheet-backed web app, and bimester/annual attendance statistics.
"""

from frequencia.controller import AttendanceController
from frequencia.gateway import PersistenceGateway, SheetsGateway
from frequencia.models import (
    AttendanceStatus,
    BimesterConfig,
    ClassGroup,
    EnrollmentStatus,
    PendingChange,
    Student,
)
from frequencia.pending import PendingChangeQueue
from frequencia.store import AttendanceStore

__all__ = [
    "AttendanceController",
    "AttendanceStatus",
    "AttendanceStore",
    "BimesterConfig",
    "ClassGroup",
    "EnrollmentStatus",
    "PendingChange",
    "PendingChangeQueue",
    "PersistenceGateway",
    "SheetsGateway",
    "Student",
]
