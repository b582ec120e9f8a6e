"""Daily lesson configuration: which lesson slots are active on each date.

Two persisted shapes exist for a date entry. Older spreadsheets store a plain
lesson count (3 means slots 0, 1 and 2); newer ones store the explicit list of
active slot indices, which need not be contiguous ([0, 2, 3]). Entries are
decoded once at the boundary into LessonCount | LessonIndices and everything
past this module only sees the canonical list form.
"""

from collections.abc import Mapping
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict

from frequencia.logging import get_logger
from frequencia.models import DateKey

log = get_logger(__name__)

# Slots shown for a date that has no configuration
DEFAULT_ACTIVE_LESSONS: tuple[int, ...] = (0,)


class LessonCount(BaseModel):
    """Legacy entry: the first ``count`` slots are active."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["count"] = "count"
    count: int

    def indices(self) -> list[int]:
        return list(range(self.count))


class LessonIndices(BaseModel):
    """Current entry: explicit active slot indices, kept exactly as stored."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["indices"] = "indices"
    slots: tuple[Any, ...]

    def indices(self) -> list[int]:
        return list(self.slots)


LessonEntry = Union[LessonCount, LessonIndices]


def decode_lesson_entry(raw: Any) -> LessonEntry | None:
    """Decode one persisted date entry.

    Returns:
        LessonCount for an integer, LessonIndices for a list, None otherwise.
    """
    # bool is an int subclass but never a lesson count
    if isinstance(raw, int) and not isinstance(raw, bool):
        return LessonCount(count=raw)
    if isinstance(raw, list):
        return LessonIndices(slots=tuple(raw))
    return None


def normalize_lesson_config(raw_map: Any) -> dict[DateKey, list[int]]:
    """Convert a persisted ``dailyLessonCounts`` map into canonical index lists.

    Malformed entries are skipped without raising so spreadsheets written by
    older and newer versions load side by side.

    Args:
        raw_map: Mapping of date key to a count or a list of indices.

    Returns:
        Mapping of date key to the list of active lesson indices.
    """
    if not isinstance(raw_map, Mapping):
        if raw_map is not None:
            log.debug("lesson_config_ignored", reason="not_a_mapping", type=type(raw_map).__name__)
        return {}

    normalized: dict[DateKey, list[int]] = {}
    for date_key, raw in raw_map.items():
        entry = decode_lesson_entry(raw)
        if entry is None:
            log.debug("lesson_config_entry_skipped", date=date_key, value=repr(raw))
            continue
        normalized[str(date_key)] = entry.indices()
    return normalized


def active_lessons(config: Mapping[DateKey, list[int]], date_key: DateKey) -> list[int]:
    """Active lesson indices for a date, falling back to a single lesson."""
    configured = config.get(date_key)
    if not configured:
        return list(DEFAULT_ACTIVE_LESSONS)
    return list(configured)


def normalize_lesson_text_map(raw_map: Any) -> dict[DateKey, dict[int, str]]:
    """Normalize a ``lessonSubjects``/``lessonTopics`` map.

    JSON object keys are always strings, so lesson indices come back as "0",
    "1", ... and are converted to int here. Keys that are not integers are
    dropped.
    """
    if not isinstance(raw_map, Mapping):
        return {}

    normalized: dict[DateKey, dict[int, str]] = {}
    for date_key, lessons in raw_map.items():
        if not isinstance(lessons, Mapping):
            continue
        per_lesson: dict[int, str] = {}
        for index, text in lessons.items():
            try:
                per_lesson[int(index)] = "" if text is None else str(text)
            except (TypeError, ValueError):
                log.debug("lesson_text_entry_skipped", date=date_key, index=repr(index))
        normalized[str(date_key)] = per_lesson
    return normalized
