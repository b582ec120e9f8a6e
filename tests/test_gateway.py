# tests/test_gateway.py

import asyncio
import json

import pytest
import requests

from frequencia.config import AppConfig
from frequencia.errors import (
    ConfigurationMissingError,
    PermanentError,
    RateLimitError,
    TransientError,
)
from frequencia.gateway import (
    SheetsGateway,
    attendance_from_rows,
    config_from_rows,
    snapshot_from_payload,
)
from frequencia.models import AttendanceStatus, ClassGroup, Holiday, Student

P = AttendanceStatus.PRESENT
A = AttendanceStatus.ABSENT
U = AttendanceStatus.UNDEFINED

API_URL = "https://script.example.com/macros/s/abc/exec"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            raise ValueError("No JSON")
        return self._body


@pytest.fixture
def posted(monkeypatch):
    """Capture POST bodies and answer with a success payload."""
    bodies = []

    def fake_post(url, json=None, timeout=None, **kwargs):
        bodies.append(json)
        return FakeResponse(body={"status": "success"})

    monkeypatch.setattr(requests, "post", fake_post)
    return bodies


# === wire decoding ===


def test_attendance_rows_build_padded_records():
    rows = [
        {"studentId": 1, "date": "2024-03-05T03:00:00.000Z", "lessonIndex": 2, "status": "ABSENT"},
        {"studentId": "1", "date": "2024-03-05", "lessonIndex": 0, "status": "PRESENT"},
        {"studentId": "2", "date": "2024-03-06", "status": "EXCUSED"},
        {"date": "2024-03-06"},
        {"studentId": "3", "date": "2024-03-06", "lessonIndex": -1, "status": "PRESENT"},
    ]

    attendance = attendance_from_rows(rows)

    assert attendance["1"]["2024-03-05"] == (P, U, A)
    assert attendance["2"]["2024-03-06"] == (AttendanceStatus.EXCUSED,)
    assert "3" not in attendance


def test_nested_attendance_payload_is_accepted():
    attendance = attendance_from_rows({"s1": {"2024-03-05": ["PRESENT", "ABSENT"]}})
    assert attendance == {"s1": {"2024-03-05": (P, A)}}


def test_nested_attendance_skips_malformed_days():
    attendance = attendance_from_rows(
        {
            "s1": {"2024-03-05": None, "2024-03-06": ["ABSENT"], "2024-03-07": "PRESENT"},
            "s2": None,
        }
    )
    assert attendance == {"s1": {"2024-03-06": (A,)}}


def test_config_rows_decode_json_values():
    rows = [
        {"key": "dailyLessonCounts", "value": '{"2024-03-01": 3}'},
        {"key": "registeredSubjects", "value": ["Matemática"]},
        {"key": "note", "value": "plain text"},
        {"value": "orphan"},
    ]

    config = config_from_rows(rows)

    assert config == {
        "dailyLessonCounts": {"2024-03-01": 3},
        "registeredSubjects": ["Matemática"],
        "note": "plain text",
    }


def test_snapshot_from_payload():
    snapshot = snapshot_from_payload(
        {
            "classes": [{"id": 7, "name": "Turma 7"}],
            "students": [{"id": "s1", "name": "Ana", "classId": 7}],
            "bimesters": [{"id": 1, "name": "1º", "start": "2024-02-01T03:00:00.000Z", "end": "2024-04-15"}],
            "attendance": [{"studentId": "s1", "date": "2024-03-05", "lessonIndex": 0, "status": "PRESENT"}],
            "config": [],
        }
    )

    assert snapshot.classes[0].id == "7"
    assert snapshot.students[0].class_id == "7"
    assert snapshot.bimesters[0].start.isoformat() == "2024-02-01"
    assert snapshot.attendance["s1"]["2024-03-05"] == (P,)


# === HTTP client ===


def test_from_config_requires_url():
    with pytest.raises(ConfigurationMissingError):
        SheetsGateway.from_config(AppConfig(api_url="  "))

    gateway = SheetsGateway.from_config(AppConfig(api_url=API_URL, request_timeout=5))
    assert gateway.api_url == API_URL
    assert gateway.timeout == 5


def test_load_all(monkeypatch):
    def fake_get(url, timeout=None, **kwargs):
        assert url == API_URL
        return FakeResponse(
            body={
                "classes": [{"id": "c1", "name": "Turma 1"}],
                "students": [],
                "attendance": [],
                "config": [{"key": "dailyLessonCounts", "value": '{"2024-03-01": [0, 2]}'}],
            }
        )

    monkeypatch.setattr(requests, "get", fake_get)

    snapshot = asyncio.run(SheetsGateway(API_URL).load_all())

    assert snapshot.classes == [ClassGroup(id="c1", name="Turma 1")]
    assert snapshot.config["dailyLessonCounts"] == {"2024-03-01": [0, 2]}


def test_load_all_undecodable_payload_is_permanent(monkeypatch):
    monkeypatch.setattr(
        requests,
        "get",
        lambda url, timeout=None, **kwargs: FakeResponse(body={"students": ["not an object"]}),
    )

    with pytest.raises(PermanentError):
        asyncio.run(SheetsGateway(API_URL).load_all())


def test_save_attendance_cell_payload(posted):
    asyncio.run(
        SheetsGateway(API_URL).save_attendance_cell("s1", "2024-03-05", 1, P, "Matemática", "Frações")
    )

    assert posted == [
        {
            "action": "saveAttendance",
            "studentId": "s1",
            "date": "2024-03-05",
            "lessonIndex": 1,
            "status": "PRESENT",
            "subject": "Matemática",
            "topic": "Frações",
        }
    ]


def test_save_config_encodes_value(posted):
    gateway = SheetsGateway(API_URL)
    asyncio.run(gateway.save_config("lessonSubjects", {"2024-03-05": {0: "Artes"}}))
    asyncio.run(gateway.save_config("holidays", [Holiday(date="2024-04-21", name="Tiradentes")]))

    assert json.loads(posted[0]["value"]) == {"2024-03-05": {"0": "Artes"}}
    assert json.loads(posted[1]["value"]) == [{"date": "2024-04-21", "name": "Tiradentes"}]


def test_entity_payloads_use_wire_names(posted):
    gateway = SheetsGateway(API_URL)
    student = Student(id="s1", name="Ana", class_id="c1")

    asyncio.run(gateway.save_student(student))
    asyncio.run(gateway.delete_class("c1"))
    asyncio.run(gateway.sync_all(students=[student]))

    assert posted[0] == {
        "action": "saveStudent",
        "data": {"id": "s1", "name": "Ana", "classId": "c1", "status": "ACTIVE"},
    }
    assert posted[1] == {"action": "deleteClass", "id": "c1"}
    assert posted[2]["data"] == {"students": [student.to_wire()]}


@pytest.mark.parametrize(
    "response, error",
    [
        (FakeResponse(status_code=503, body={}), TransientError),
        (FakeResponse(status_code=429, body={}), RateLimitError),
        (FakeResponse(status_code=403, body=None, text="Forbidden"), PermanentError),
        (FakeResponse(status_code=200, body=None, text="<html>"), PermanentError),
        (FakeResponse(body={"status": "error", "message": "sheet locked"}), PermanentError),
    ],
)
def test_failed_responses_raise(monkeypatch, response, error):
    monkeypatch.setattr(requests, "post", lambda *a, **kw: response)

    with pytest.raises(error):
        asyncio.run(SheetsGateway(API_URL).delete_student("s1"))


def test_timeout_is_transient(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests, "post", fake_post)

    with pytest.raises(TransientError):
        asyncio.run(SheetsGateway(API_URL).save_config("holidays", []))
