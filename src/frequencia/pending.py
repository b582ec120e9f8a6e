"""Pending attendance edits waiting for an explicit save.

Edits are applied to the store immediately and recorded here, one entry per
(student, date, lesson). Saving writes every entry to the backend at once and
only forgets them when every write succeeded. Nothing is rolled back on
failure: the marks stay on screen and the user saves again.
"""

import asyncio
from typing import TYPE_CHECKING

from frequencia.errors import FlushFailureError
from frequencia.logging import get_logger
from frequencia.models import DateKey, PendingChange

if TYPE_CHECKING:
    from frequencia.gateway import PersistenceGateway

log = get_logger(__name__)

ChangeKey = tuple[str, DateKey, int]


class PendingChangeQueue:
    """Unsaved edits keyed by (student_id, date, lesson_index).

    A new edit to a key replaces the previous one and moves it to the end,
    so entries() lists cells in the order they were last touched.
    """

    def __init__(self) -> None:
        self._changes: dict[ChangeKey, PendingChange] = {}

    def __len__(self) -> int:
        return len(self._changes)

    def __contains__(self, key: object) -> bool:
        return key in self._changes

    def is_empty(self) -> bool:
        return not self._changes

    def enqueue(self, change: PendingChange) -> None:
        """Record an edit, replacing any pending edit for the same cell."""
        self._changes.pop(change.key, None)
        self._changes[change.key] = change

    def get(self, key: ChangeKey) -> PendingChange | None:
        return self._changes.get(key)

    def entries(self) -> tuple[PendingChange, ...]:
        return tuple(self._changes.values())

    def discard_students(self, student_ids) -> None:
        """Forget edits for students that no longer exist."""
        student_ids = set(student_ids)
        self._changes = {
            key: change for key, change in self._changes.items() if key[0] not in student_ids
        }

    def clear(self) -> None:
        self._changes.clear()

    async def flush(self, gateway: "PersistenceGateway") -> int:
        """Write every pending edit to the backend concurrently.

        Edits made while the writes are in flight are left queued for the next
        flush; an entry is only removed if it is still the exact change that
        was written.

        Args:
            gateway: Backend to write to.

        Returns:
            Number of cells written (0 when nothing was pending).

        Raises:
            FlushFailureError: If any write failed. The queue is left untouched.
        """
        batch = self.entries()
        if not batch:
            return 0

        log.info("pending_flush_started", count=len(batch))
        results = await asyncio.gather(
            *(
                gateway.save_attendance_cell(
                    change.student_id,
                    change.date,
                    change.lesson_index,
                    change.status,
                    change.subject,
                    change.topic,
                )
                for change in batch
            ),
            return_exceptions=True,
        )

        failures = [
            (change, result)
            for change, result in zip(batch, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            for change, error in failures:
                log.warning(
                    "pending_write_failed",
                    student_id=change.student_id,
                    date=change.date,
                    lesson_index=change.lesson_index,
                    error=str(error),
                    type=type(error).__name__,
                )
            log.error("pending_flush_failed", failed=len(failures), total=len(batch))
            raise FlushFailureError(
                f"{len(failures)} of {len(batch)} attendance changes could not be saved",
                failed_keys=[change.key for change, _ in failures],
                causes=[error for _, error in failures],
            )

        for change in batch:
            if self._changes.get(change.key) == change:
                del self._changes[change.key]

        log.info("pending_flush_succeeded", count=len(batch), remaining=len(self._changes))
        return len(batch)
