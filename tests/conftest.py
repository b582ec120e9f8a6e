# tests/conftest.py

import asyncio
from datetime import date

import pytest

from frequencia.controller import AttendanceController
from frequencia.errors import PermanentError, TransientError
from frequencia.models import (
    AttendanceStatus,
    BackendSnapshot,
    BimesterConfig,
    ClassGroup,
    EnrollmentStatus,
    Student,
)


class FakeGateway:
    """In-memory PersistenceGateway that records every call."""

    def __init__(self, snapshot: BackendSnapshot | None = None):
        self.snapshot = snapshot or BackendSnapshot()
        self.calls: list[tuple] = []
        self.saved_cells: list[tuple] = []
        self.fail_cells: set[tuple] = set()
        self.fail_actions: set[str] = set()
        self.load_count = 0
        # set by a test to hold attendance writes until released
        self.gate: asyncio.Event | None = None

    def _maybe_fail(self, action: str) -> None:
        if action in self.fail_actions:
            raise TransientError(f"{action}: connection failed")

    async def load_all(self):
        self.load_count += 1
        self.calls.append(("load_all",))
        self._maybe_fail("load_all")
        return self.snapshot.model_copy(deep=True)

    async def save_attendance_cell(self, student_id, date, lesson_index, status, subject="", topic=""):
        self.calls.append(("save_attendance_cell", student_id, date, lesson_index, status))
        if self.gate is not None:
            await self.gate.wait()
        if (student_id, date, lesson_index) in self.fail_cells:
            raise PermanentError("saveAttendance: rejected 400")
        self.saved_cells.append((student_id, date, lesson_index, status, subject, topic))

    async def save_config(self, key, value):
        self.calls.append(("save_config", key, value))
        self._maybe_fail("save_config")

    async def save_class(self, cls):
        self.calls.append(("save_class", cls.id))
        self._maybe_fail("save_class")

    async def save_student(self, student):
        self.calls.append(("save_student", student.id))
        self._maybe_fail("save_student")

    async def save_bimesters(self, bimesters):
        self.calls.append(("save_bimesters", len(bimesters)))
        self._maybe_fail("save_bimesters")

    async def delete_class(self, class_id):
        self.calls.append(("delete_class", class_id))
        self._maybe_fail("delete_class")

    async def delete_student(self, student_id):
        self.calls.append(("delete_student", student_id))
        self._maybe_fail("delete_student")

    async def sync_all(self, students=None, classes=None, bimesters=None):
        self.calls.append(("sync_all", len(students or []), len(classes or []), len(bimesters or [])))
        self._maybe_fail("sync_all")

    def actions(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def sample_bimesters():
    return [
        BimesterConfig(id=1, name="1º Bimestre", start=date(2024, 2, 1), end=date(2024, 2, 29)),
        BimesterConfig(id=2, name="2º Bimestre", start=date(2024, 3, 1), end=date(2024, 3, 31)),
    ]


@pytest.fixture
def sample_snapshot(sample_bimesters):
    return BackendSnapshot(
        classes=[
            ClassGroup(id="c2", name="Turma 10"),
            ClassGroup(id="c1", name="Turma 2"),
        ],
        students=[
            Student(id="s1", name="Bruna Alves", class_id="c1"),
            Student(id="s2", name="ana Costa", class_id="c1"),
            Student(id="s3", name="Caio Dias", class_id="c1", status=EnrollmentStatus.TRANSFERRED),
            Student(id="s4", name="Davi Reis", class_id="c2"),
        ],
        bimesters=sample_bimesters,
        attendance={
            "s1": {"2024-03-05": (AttendanceStatus.PRESENT, AttendanceStatus.ABSENT)},
            "s4": {"2024-03-05": (AttendanceStatus.EXCUSED,)},
        },
        config={
            "dailyLessonCounts": {"2024-03-05": 2, "2024-03-06": [0, 2], "2024-03-07": "bad"},
            "lessonSubjects": {"2024-03-05": {"0": "Matemática", "1": "História"}},
            "lessonTopics": {"2024-03-05": {"0": "Frações"}},
            "registeredSubjects": ["Matemática", "História"],
            "holidays": [{"date": "2024-04-21", "name": "Tiradentes"}],
        },
    )


@pytest.fixture
def fake_gateway(sample_snapshot):
    return FakeGateway(sample_snapshot)


@pytest.fixture
def loaded_controller(fake_gateway):
    controller = AttendanceController(fake_gateway, year=2024)
    asyncio.run(controller.load())
    return controller
