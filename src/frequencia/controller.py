"""AttendanceController - the single owner of application state.

The presentation layer reads snapshots from the controller and changes state
only through its handler methods. Attendance marks are applied locally and
queued until save_changes(); lesson configuration edits are written to the
backend right away in the background; student and class edits are applied
locally and then written.
"""

import asyncio
import re
import time
from collections.abc import Iterable, Mapping
from datetime import date
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import ValidationError

from frequencia.config import AppConfig
from frequencia.errors import (
    ConfigurationMissingError,
    FrequenciaError,
    GatewayError,
    LoadFailureError,
    StateDivergedError,
)
from frequencia.gateway import PersistenceGateway, SheetsGateway
from frequencia.lesson_config import (
    active_lessons,
    normalize_lesson_config,
    normalize_lesson_text_map,
)
from frequencia.logging import get_logger
from frequencia.models import (
    AttendanceStatus,
    BimesterConfig,
    ClassGroup,
    DateKey,
    EnrollmentStatus,
    Holiday,
    PendingChange,
    Student,
    StudentSummary,
    default_bimesters,
)
from frequencia.pending import PendingChangeQueue
from frequencia.stats import summarize_class, summarize_student
from frequencia.status_cycle import resolve_status
from frequencia.store import AttendanceStore, blank_record

log = get_logger(__name__)

# Config keys in the backend's config sheet
LESSON_COUNTS_KEY = "dailyLessonCounts"
LESSON_SUBJECTS_KEY = "lessonSubjects"
LESSON_TOPICS_KEY = "lessonTopics"
REGISTERED_SUBJECTS_KEY = "registeredSubjects"
HOLIDAYS_KEY = "holidays"


def natural_sort_key(name: str) -> list:
    """Sort key that orders "Turma 2" before "Turma 10", ignoring case."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", name.casefold())]


def sort_classes(classes: Iterable[ClassGroup]) -> list[ClassGroup]:
    return sorted(classes, key=lambda c: natural_sort_key(c.name))


def _millis() -> int:
    return int(time.time() * 1000)


def _check_lesson_index(lesson_index: int) -> None:
    if lesson_index < 0:
        raise ValueError(f"lesson_index must be >= 0, got {lesson_index}")


class AttendanceController:
    """Application state and the handlers that change it.

    Args:
        gateway: Backend used for loading and saving.
        year: School year used for the default bimesters.
    """

    def __init__(self, gateway: PersistenceGateway, *, year: int | None = None) -> None:
        self._gateway = gateway
        self.year = year or date.today().year
        self._config_tasks: set[asyncio.Task] = set()
        self._is_saving = False
        self._queue = PendingChangeQueue()
        self.selected_class_id: str | None = None
        self._reset_state()

    @classmethod
    def from_config(cls, config: AppConfig | None = None, **kwargs: Any) -> "AttendanceController":
        """Controller backed by the configured spreadsheet web app.

        Raises:
            ConfigurationMissingError: If no backend URL is configured.
        """
        return cls(SheetsGateway.from_config(config), **kwargs)

    def _reset_state(self) -> None:
        self._classes: list[ClassGroup] = []
        self._students: list[Student] = []
        self._bimesters: list[BimesterConfig] = default_bimesters(self.year)
        self._store = AttendanceStore()
        self._lesson_config: dict[DateKey, list[int]] = {}
        self._lesson_subjects: dict[DateKey, dict[int, str]] = {}
        self._lesson_topics: dict[DateKey, dict[int, str]] = {}
        self._registered_subjects: list[str] = []
        self._holidays: list[Holiday] = []

    # === snapshots ===

    @property
    def classes(self) -> tuple[ClassGroup, ...]:
        return tuple(self._classes)

    @property
    def students(self) -> tuple[Student, ...]:
        return tuple(self._students)

    @property
    def bimesters(self) -> tuple[BimesterConfig, ...]:
        return tuple(self._bimesters)

    @property
    def attendance(self) -> AttendanceStore:
        # read through get_daily/get_status/student_record only
        return self._store

    @property
    def lesson_config(self) -> Mapping[DateKey, list[int]]:
        return MappingProxyType({k: list(v) for k, v in self._lesson_config.items()})

    @property
    def lesson_subjects(self) -> Mapping[DateKey, dict[int, str]]:
        return MappingProxyType({k: dict(v) for k, v in self._lesson_subjects.items()})

    @property
    def lesson_topics(self) -> Mapping[DateKey, dict[int, str]]:
        return MappingProxyType({k: dict(v) for k, v in self._lesson_topics.items()})

    @property
    def registered_subjects(self) -> tuple[str, ...]:
        return tuple(self._registered_subjects)

    @property
    def holidays(self) -> tuple[Holiday, ...]:
        return tuple(self._holidays)

    @property
    def pending_changes(self) -> tuple[PendingChange, ...]:
        return self._queue.entries()

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    def get_student(self, student_id: str) -> Student | None:
        return next((s for s in self._students if s.id == student_id), None)

    def get_class(self, class_id: str) -> ClassGroup | None:
        return next((c for c in self._classes if c.id == class_id), None)

    def class_students(
        self,
        class_id: str | None = None,
        status_filter: EnrollmentStatus | None = None,
    ) -> list[Student]:
        """Students of a class (default: the selected one), sorted by name."""
        class_id = class_id if class_id is not None else self.selected_class_id
        if class_id is None:
            return []
        students = [s for s in self._students if s.class_id == class_id]
        if status_filter is not None:
            students = [s for s in students if s.status == status_filter]
        return sorted(students, key=lambda s: s.name.casefold())

    def active_lessons(self, date_key: DateKey) -> list[int]:
        return active_lessons(self._lesson_config, date_key)

    # === stats ===

    def stats_for(self, student_id: str) -> StudentSummary | None:
        """Bimester and annual statistics for one student, computed now."""
        student = self.get_student(student_id)
        if student is None:
            return None
        return summarize_student(student, self._store.student_record(student_id), self._bimesters)

    def class_summary(
        self,
        class_id: str | None = None,
        status_filter: EnrollmentStatus | None = None,
    ) -> list[StudentSummary]:
        return summarize_class(self.class_students(class_id, status_filter), self._store, self._bimesters)

    # === loading ===

    async def load(self) -> None:
        """Replace all state with the backend's dataset.

        Unsaved attendance marks survive the reload: they are applied again on
        top of the loaded records, except for students that no longer exist.
        The selected class is kept while it still exists.

        Raises:
            LoadFailureError: If the backend call or decoding failed. State is
                left empty but unsaved marks stay queued.
        """
        log.info("load_started")
        try:
            snapshot = await self._gateway.load_all()
        except ConfigurationMissingError:
            raise
        except (FrequenciaError, ValidationError) as e:
            log.error("load_failed", error=str(e), type=type(e).__name__)
            self._reset_state()
            self.selected_class_id = None
            raise LoadFailureError(f"Could not load data: {e}") from e

        self._reset_state()
        self._classes = sort_classes(snapshot.classes)
        self._students = list(snapshot.students)
        # Keep the defaults unless the school saved its own calendar
        if snapshot.bimesters:
            self._bimesters = list(snapshot.bimesters)
        self._store = AttendanceStore(snapshot.attendance)

        config = snapshot.config
        self._lesson_config = normalize_lesson_config(config.get(LESSON_COUNTS_KEY))
        self._lesson_subjects = normalize_lesson_text_map(config.get(LESSON_SUBJECTS_KEY))
        self._lesson_topics = normalize_lesson_text_map(config.get(LESSON_TOPICS_KEY))
        self._registered_subjects = [str(s) for s in config.get(REGISTERED_SUBJECTS_KEY) or []]
        self._holidays = self._decode_holidays(config.get(HOLIDAYS_KEY))

        self._reapply_pending()

        if self.get_class(self.selected_class_id or "") is None:
            self.selected_class_id = self._classes[0].id if self._classes else None

        log.info(
            "load_succeeded",
            classes=len(self._classes),
            students=len(self._students),
            configured_dates=len(self._lesson_config),
        )

    def _reapply_pending(self) -> None:
        known = {s.id for s in self._students}
        self._queue.discard_students(
            {change.student_id for change in self._queue.entries()} - known
        )
        for change in self._queue.entries():
            existing = self._store.get_daily(change.student_id, change.date)
            if existing is None:
                min_length = max([*self.active_lessons(change.date), change.lesson_index]) + 1
            else:
                min_length = len(existing)
            self._store.set_status(
                change.student_id,
                change.date,
                change.lesson_index,
                change.status,
                min_length=min_length,
            )
        if self._queue:
            log.info("pending_changes_reapplied", count=len(self._queue))

    @staticmethod
    def _decode_holidays(raw: Any) -> list[Holiday]:
        holidays = []
        for item in raw or []:
            try:
                holidays.append(Holiday.model_validate(item))
            except ValidationError:
                log.debug("holiday_skipped", value=repr(item))
        return holidays

    # === attendance marks ===

    def toggle_status(
        self,
        student_id: str,
        date_key: DateKey,
        lesson_index: int,
        forced_status: AttendanceStatus | None = None,
    ) -> PendingChange | None:
        """Advance one cell through the status ring, or set it to forced_status.

        Returns:
            The queued change, or None when the cell already had that status.

        Raises:
            ValueError: If lesson_index is negative.
        """
        _check_lesson_index(lesson_index)
        configured_length = max([*self.active_lessons(date_key), lesson_index]) + 1
        current = self._store.get_daily(student_id, date_key)
        if current is None:
            current = blank_record(configured_length)

        current_status = current[lesson_index] if lesson_index < len(current) else AttendanceStatus.UNDEFINED
        new_status = resolve_status(current_status, forced_status)
        if new_status == current_status:
            return None

        self._store.set_status(
            student_id,
            date_key,
            lesson_index,
            new_status,
            min_length=len(current),
        )

        change = PendingChange(
            student_id=student_id,
            date=date_key,
            lesson_index=lesson_index,
            status=new_status,
            subject=self._lesson_subjects.get(date_key, {}).get(lesson_index, ""),
            topic=self._lesson_topics.get(date_key, {}).get(lesson_index, ""),
        )
        self._queue.enqueue(change)
        log.debug(
            "attendance_marked",
            student_id=student_id,
            date=date_key,
            lesson_index=lesson_index,
            status=new_status.value,
        )
        return change

    def bulk_update_status(
        self,
        date_key: DateKey,
        lesson_index: int,
        status: AttendanceStatus,
        students: Iterable[Student],
    ) -> list[PendingChange]:
        """Mark every unmarked active student in ``students`` with ``status``.

        Cells that already hold PRESENT, ABSENT or EXCUSED are left alone.
        """
        _check_lesson_index(lesson_index)
        changes = []
        for student in students:
            if student.status != EnrollmentStatus.ACTIVE:
                continue
            if self._store.get_status(student.id, date_key, lesson_index) != AttendanceStatus.UNDEFINED:
                continue
            change = self.toggle_status(student.id, date_key, lesson_index, status)
            if change is not None:
                changes.append(change)

        log.info(
            "bulk_status_applied",
            date=date_key,
            lesson_index=lesson_index,
            status=status.value,
            changed=len(changes),
        )
        return changes

    async def save_changes(self) -> int:
        """Write all pending marks to the backend.

        Returns:
            Number of cells written.

        Raises:
            FlushFailureError: If any write failed; pending marks are kept.
        """
        if self._queue.is_empty():
            return 0
        if self._is_saving:
            log.info("save_skipped", reason="already_saving")
            return 0

        self._is_saving = True
        try:
            with structlog.contextvars.bound_contextvars(operation="save_changes"):
                return await self._queue.flush(self._gateway)
        finally:
            self._is_saving = False

    # === lesson configuration (saved in the background) ===

    def update_lesson_config(
        self,
        date_key: DateKey,
        active_indices: list[int],
        subjects: Mapping[int, str] | None = None,
        topics: Mapping[int, str] | None = None,
    ) -> asyncio.Task:
        """Set the active lessons and their subjects/topics for one date.

        Must be called from a running event loop. The returned task never
        raises; failures are only logged.
        """
        self._lesson_config[date_key] = list(active_indices)
        self._lesson_subjects[date_key] = {int(k): str(v) for k, v in (subjects or {}).items()}
        self._lesson_topics[date_key] = {int(k): str(v) for k, v in (topics or {}).items()}

        return self._save_config_later(
            (LESSON_COUNTS_KEY, {k: list(v) for k, v in self._lesson_config.items()}),
            (LESSON_SUBJECTS_KEY, {k: dict(v) for k, v in self._lesson_subjects.items()}),
            (LESSON_TOPICS_KEY, {k: dict(v) for k, v in self._lesson_topics.items()}),
        )

    def save_registered_subjects(self, subjects: Iterable[str]) -> asyncio.Task:
        self._registered_subjects = [s for s in subjects]
        return self._save_config_later((REGISTERED_SUBJECTS_KEY, list(self._registered_subjects)))

    def save_holidays(self, holidays: Iterable[Holiday]) -> asyncio.Task:
        self._holidays = sorted(holidays, key=lambda h: h.day)
        return self._save_config_later((HOLIDAYS_KEY, list(self._holidays)))

    def _save_config_later(self, *entries: tuple[str, Any]) -> asyncio.Task:
        task = asyncio.create_task(self._save_config_entries(entries))
        self._config_tasks.add(task)
        task.add_done_callback(self._config_tasks.discard)
        return task

    async def _save_config_entries(self, entries: tuple[tuple[str, Any], ...]) -> None:
        for key, value in entries:
            try:
                await self._gateway.save_config(key, value)
            except Exception as e:
                log.warning("config_save_failed", key=key, error=str(e), type=type(e).__name__)
                return

    async def wait_for_config_saves(self) -> None:
        """Wait for background config saves started so far."""
        if self._config_tasks:
            await asyncio.gather(*list(self._config_tasks))

    # === students ===

    async def add_student(self, student: Student) -> Student:
        self._students.append(student)
        await self._gateway.save_student(student)
        log.info("student_added", student_id=student.id, class_id=student.class_id)
        return student

    async def update_student(self, student: Student) -> Student:
        self._students = [student if s.id == student.id else s for s in self._students]
        await self._gateway.save_student(student)
        return student

    async def update_student_status(self, student_id: str, status: EnrollmentStatus) -> Student | None:
        student = self.get_student(student_id)
        if student is None:
            return None
        return await self.update_student(student.model_copy(update={"status": status}))

    async def batch_add_students(
        self,
        names: Iterable[str],
        class_id: str,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
    ) -> list[Student]:
        """Add many students at once, then push the full student list."""
        stamp = _millis()
        new_students = [
            Student(id=f"s-{stamp}-{idx}", name=name.strip(), class_id=class_id, status=status)
            for idx, name in enumerate(n for n in names if n.strip())
        ]
        if not new_students:
            return []

        self._students.extend(new_students)
        await self._gateway.sync_all(
            students=list(self._students),
            classes=list(self._classes),
            bimesters=list(self._bimesters),
        )
        log.info("students_batch_added", class_id=class_id, count=len(new_students))
        return new_students

    async def delete_student(self, student_id: str) -> None:
        """Remove a student and their attendance.

        Raises:
            GatewayError: If the backend refused; local state is restored first.
        """
        previous_students = list(self._students)
        previous_attendance = self._store.snapshot()
        previous_pending = self._queue.entries()

        self._students = [s for s in self._students if s.id != student_id]
        self._store.remove_students([student_id])
        self._queue.discard_students([student_id])

        try:
            await self._gateway.delete_student(student_id)
        except GatewayError as e:
            log.error("student_delete_failed", student_id=student_id, error=str(e))
            self._students = previous_students
            self._store.restore(previous_attendance)
            self._queue.clear()
            for change in previous_pending:
                self._queue.enqueue(change)
            raise
        log.info("student_deleted", student_id=student_id)

    # === classes ===

    async def create_class(self, name: str) -> ClassGroup | None:
        name = name.strip()
        if not name:
            return None
        new_class = ClassGroup(id=f"c-{_millis()}", name=name)
        self._classes = sort_classes([*self._classes, new_class])
        self.selected_class_id = new_class.id
        await self._gateway.save_class(new_class)
        log.info("class_created", class_id=new_class.id)
        return new_class

    async def rename_class(self, class_id: str, name: str) -> ClassGroup | None:
        name = name.strip()
        existing = self.get_class(class_id)
        if not name or existing is None:
            return None
        updated = existing.model_copy(update={"name": name})
        self._classes = sort_classes(updated if c.id == class_id else c for c in self._classes)
        await self._gateway.save_class(updated)
        return updated

    async def delete_class(self, class_id: str) -> None:
        """Remove a class, its students and their attendance.

        Raises:
            StateDivergedError: If the backend call failed. Local state is
                reloaded from the backend before raising.
        """
        removed_ids = [s.id for s in self._students if s.class_id == class_id]

        if self.selected_class_id == class_id:
            self.selected_class_id = None

        self._classes = [c for c in self._classes if c.id != class_id]
        self._students = [s for s in self._students if s.class_id != class_id]
        self._store.remove_students(removed_ids)
        self._queue.discard_students(removed_ids)

        with structlog.contextvars.bound_contextvars(operation="delete_class", class_id=class_id):
            try:
                await self._gateway.delete_class(class_id)
            except GatewayError as e:
                log.error("class_delete_failed", error=str(e))
                # the reload's load_* events carry the operation too
                try:
                    await self.load()
                except LoadFailureError as reload_error:
                    raise StateDivergedError(
                        "Class deletion failed and the reload failed too; reload manually"
                    ) from reload_error
                raise StateDivergedError(
                    "Class deletion failed on the server; data was reloaded"
                ) from e
            log.info("class_deleted", students_removed=len(removed_ids))

    # === bimesters ===

    def update_bimester(
        self,
        bimester_id: int,
        *,
        start: date | None = None,
        end: date | None = None,
    ) -> BimesterConfig | None:
        """Edit a bimester locally; save_bimesters() persists the set."""
        update = {k: v for k, v in (("start", start), ("end", end)) if v is not None}
        updated = None
        bimesters = []
        for bimester in self._bimesters:
            if bimester.id == bimester_id:
                bimester = updated = bimester.model_copy(update=update)
            bimesters.append(bimester)
        self._bimesters = bimesters
        return updated

    async def save_bimesters(self) -> None:
        await self._gateway.save_bimesters(list(self._bimesters))
        log.info("bimesters_saved", count=len(self._bimesters))
