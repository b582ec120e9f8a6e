"""Persistence gateway for the spreadsheet-backed web app.

The backend is a Google Apps Script deployment over a spreadsheet:
``GET {api_url}`` returns the whole dataset, and every mutation is a
``POST {api_url}`` with a JSON body ``{"action": ..., ...}``. The script
answers ``{"status": "error", "message": ...}`` when it rejects a request.

Every call is made at most once. Nothing here retries; a failed save is
retried when the user saves again.
"""

import asyncio
import json
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

import requests

from frequencia.config import AppConfig, get_config
from frequencia.errors import PermanentError, RateLimitError, TransientError
from frequencia.logging import get_logger
from frequencia.models import (
    AttendanceStatus,
    BackendSnapshot,
    BimesterConfig,
    ClassGroup,
    DailyRecord,
    DateKey,
    Student,
)
from frequencia.store import pad_record

log = get_logger(__name__)


class PersistenceGateway(Protocol):
    """What the controller needs from a backend. All calls are coroutines."""

    async def load_all(self) -> BackendSnapshot: ...

    async def save_attendance_cell(
        self,
        student_id: str,
        date: DateKey,
        lesson_index: int,
        status: AttendanceStatus,
        subject: str = "",
        topic: str = "",
    ) -> None: ...

    async def save_config(self, key: str, value: Any) -> None: ...

    async def save_class(self, cls: ClassGroup) -> None: ...

    async def save_student(self, student: Student) -> None: ...

    async def save_bimesters(self, bimesters: list[BimesterConfig]) -> None: ...

    async def delete_class(self, class_id: str) -> None: ...

    async def delete_student(self, student_id: str) -> None: ...

    async def sync_all(
        self,
        students: list[Student] | None = None,
        classes: list[ClassGroup] | None = None,
        bimesters: list[BimesterConfig] | None = None,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Wire decoding
# ---------------------------------------------------------------------------
def attendance_from_rows(rows: Any) -> dict[str, dict[DateKey, DailyRecord]]:
    """Build the nested attendance map from the sheet's flat rows.

    Rows look like ``{"studentId", "date", "lessonIndex", "status"}``. Day
    records grow to the highest lesson index seen for that day. A payload that
    is already nested (student -> date -> statuses) is accepted as is.
    """
    attendance: dict[str, dict[DateKey, DailyRecord]] = {}
    skipped = 0

    if isinstance(rows, Mapping):
        for student_id, days in rows.items():
            if not isinstance(days, Mapping):
                skipped += 1
                continue
            for date_key, statuses in days.items():
                if isinstance(statuses, (str, bytes)) or not isinstance(statuses, Iterable):
                    skipped += 1
                    continue
                attendance.setdefault(str(student_id), {})[str(date_key)[:10]] = tuple(
                    AttendanceStatus.parse(s) for s in statuses
                )
        if skipped:
            log.warning("attendance_rows_skipped", count=skipped)
        return attendance

    for row in rows or []:
        try:
            student_id = str(row["studentId"])
            date_key = str(row["date"])[:10]
            lesson_index = int(row.get("lessonIndex") or 0)
        except (KeyError, TypeError, ValueError, AttributeError):
            skipped += 1
            continue
        if lesson_index < 0:
            skipped += 1
            continue

        days = attendance.setdefault(student_id, {})
        record = list(pad_record(days.get(date_key, ()), lesson_index + 1))
        record[lesson_index] = AttendanceStatus.parse(row.get("status"))
        days[date_key] = tuple(record)

    if skipped:
        log.warning("attendance_rows_skipped", count=skipped)
    return attendance


def config_from_rows(rows: Any) -> dict[str, Any]:
    """Decode config rows ``{"key", "value"}``; values may be JSON-encoded strings."""
    if isinstance(rows, Mapping):
        items = rows.items()
    else:
        items = (
            (row.get("key"), row.get("value"))
            for row in rows or []
            if isinstance(row, Mapping)
        )

    config: dict[str, Any] = {}
    for key, value in items:
        if not key:
            continue
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                log.debug("config_value_not_json", key=key)
        config[str(key)] = value
    return config


def snapshot_from_payload(payload: Mapping[str, Any]) -> BackendSnapshot:
    """Decode the GET payload into a BackendSnapshot."""
    return BackendSnapshot(
        classes=[ClassGroup.model_validate(c) for c in payload.get("classes") or []],
        students=[Student.model_validate(s) for s in payload.get("students") or []],
        bimesters=[BimesterConfig.model_validate(b) for b in payload.get("bimesters") or []],
        attendance=attendance_from_rows(payload.get("attendance")),
        config=config_from_rows(payload.get("config")),
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------
class SheetsGateway:
    """PersistenceGateway over the Apps Script web app.

    requests is blocking, so each call runs in a worker thread and many calls
    can be in flight at once (a flush starts one per pending cell).
    """

    def __init__(self, api_url: str, timeout: float = 30.0) -> None:
        self.api_url = api_url
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: AppConfig | None = None) -> "SheetsGateway":
        """Build a gateway from settings.

        Raises:
            ConfigurationMissingError: If no backend URL is configured.
        """
        config = config or get_config()
        return cls(config.require_api_url(), timeout=config.request_timeout)

    # --- transport ---

    def _decode(self, resp: requests.Response, action: str) -> Any:
        if resp.status_code == 429:
            raise RateLimitError(f"{action}: rate limited ({resp.status_code})")
        if resp.status_code >= 500:
            raise TransientError(f"{action}: server error {resp.status_code}")
        if resp.status_code >= 400:
            raise PermanentError(f"{action}: rejected {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
        except ValueError as e:
            raise PermanentError(f"{action}: response is not JSON") from e

        if isinstance(body, Mapping) and body.get("status") == "error":
            raise PermanentError(f"{action}: {body.get('message') or 'backend error'}")
        return body

    def _request(self, method: str, action: str, body: dict | None = None) -> Any:
        try:
            if method == "GET":
                resp = requests.get(self.api_url, timeout=self.timeout)
            else:
                resp = requests.post(self.api_url, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransientError(f"{action}: timed out: {e}") from e
        except requests.ConnectionError as e:
            raise TransientError(f"{action}: connection failed: {e}") from e
        except requests.RequestException as e:
            raise PermanentError(f"{action}: request failed: {e}") from e
        return self._decode(resp, action)

    async def _post(self, action: str, **payload: Any) -> Any:
        log.debug("gateway_request", action=action)
        return await asyncio.to_thread(self._request, "POST", action, {"action": action, **payload})

    # --- PersistenceGateway ---

    async def load_all(self) -> BackendSnapshot:
        log.info("gateway_load_started", url=self.api_url)
        payload = await asyncio.to_thread(self._request, "GET", "getData")
        if not isinstance(payload, Mapping):
            raise PermanentError("getData: expected a JSON object")
        try:
            snapshot = snapshot_from_payload(payload)
        except (TypeError, ValueError, AttributeError) as e:
            # pydantic ValidationError is a ValueError
            raise PermanentError(f"getData: undecodable payload: {e}") from e
        log.info(
            "gateway_load_succeeded",
            classes=len(snapshot.classes),
            students=len(snapshot.students),
            attendance_students=len(snapshot.attendance),
        )
        return snapshot

    async def save_attendance_cell(
        self,
        student_id: str,
        date: DateKey,
        lesson_index: int,
        status: AttendanceStatus,
        subject: str = "",
        topic: str = "",
    ) -> None:
        await self._post(
            "saveAttendance",
            studentId=student_id,
            date=date,
            lessonIndex=lesson_index,
            status=AttendanceStatus(status).value,
            subject=subject,
            topic=topic,
        )

    async def save_config(self, key: str, value: Any) -> None:
        await self._post("saveConfig", key=key, value=json.dumps(_to_jsonable(value)))

    async def save_class(self, cls: ClassGroup) -> None:
        await self._post("saveClass", data=cls.to_wire())

    async def save_student(self, student: Student) -> None:
        await self._post("saveStudent", data=student.to_wire())

    async def save_bimesters(self, bimesters: list[BimesterConfig]) -> None:
        await self._post("saveBimesters", data=[b.to_wire() for b in bimesters])

    async def delete_class(self, class_id: str) -> None:
        await self._post("deleteClass", id=class_id)

    async def delete_student(self, student_id: str) -> None:
        await self._post("deleteStudent", id=student_id)

    async def sync_all(
        self,
        students: list[Student] | None = None,
        classes: list[ClassGroup] | None = None,
        bimesters: list[BimesterConfig] | None = None,
    ) -> None:
        data: dict[str, Any] = {}
        if students is not None:
            data["students"] = [s.to_wire() for s in students]
        if classes is not None:
            data["classes"] = [c.to_wire() for c in classes]
        if bimesters is not None:
            data["bimesters"] = [b.to_wire() for b in bimesters]
        await self._post("syncAll", data=data)


def _to_jsonable(value: Any) -> Any:
    """Config values may hold pydantic models (holidays); dump them for json.dumps."""
    if hasattr(value, "to_wire"):
        return value.to_wire()
    if isinstance(value, Mapping):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
        return [_to_jsonable(v) for v in value]
    return value
