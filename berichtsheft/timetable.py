"""
Timetable, homework and exam fetching (WebUntis -> Period / PeriodInfo / Exam).

The remote lesson payload is not stable: depending on the endpoint and
server version, subject/teacher/room arrive as
- short-key arrays:     "su": [{"name": "M", "longname": "Mathe"}]
- wrapped arrays:       "subjects": [{"element": {"name": "M"}}]
- plain values:         "subject": "Mathe" or {"shortName": "M"}
or not at all. Everything is flattened into Period. A field that is
absent becomes UNKNOWN; a field that is present but empty stays "".

Records that cannot be mapped even then (no date, broken times,
end before start) are skipped and reported as NormalizationDefect.
Exams follow the same rules. summarize_week() derives the week overview
(counts, distinct teachers and subjects).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

import requests

from berichtsheft import jsonrpc
from berichtsheft.config import UntisConfig
from berichtsheft.errors import FetchFailed, NormalizationDefect, NotConnected, PartialFetchFailure, RemoteError, TransportError
from berichtsheft.model import UNKNOWN, Exam, Homework, Period, PeriodInfo, SessionHandle, WeekSummary
from berichtsheft.session import endpoint_url
from berichtsheft.timecodec import date_to_packed, minutes_between, packed_datetime_to_iso, weekday_name


logger = logging.getLogger(__name__)

SUBJECT_KEYS = ("su", "subjects", "subject")
TEACHER_KEYS = ("te", "teachers", "teacher")
ROOM_KEYS = ("ro", "rooms", "room")
TEXT_KEYS = ("lstext", "substText", "info", "periodText", "teachingContent")
NAME_KEYS = ("longname", "longName", "name", "displayname", "displayName", "shortName")
EXAM_NAME_KEYS = ("name", "examType")
EXAM_TEXT_KEYS = ("text", "info")

_FIELDS = ["id", "name", "longname"]


@dataclass
class WeekFetch:
    periods: list[Period] = field(default_factory=list)
    defects: list[NormalizationDefect] = field(default_factory=list)


@dataclass
class WeekBundle:
    """
    Everything fetched for one week. Homework and exams are optional
    extras: if one of them fails, the failure is kept in `errors` and
    the rest of the week is still returned.
    """

    periods: list[Period] = field(default_factory=list)
    homework: list[Homework] = field(default_factory=list)
    exams: list[Exam] = field(default_factory=list)
    summary: Optional[WeekSummary] = None
    defects: list[NormalizationDefect] = field(default_factory=list)
    errors: list[PartialFetchFailure] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def _element_name(value: Any) -> Optional[str]:
    """
    Name of one element entry; None if it carries no name at all.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        if isinstance(value.get("element"), dict):
            return _element_name(value["element"])
        for k in NAME_KEYS:
            v = value.get(k)
            if isinstance(v, str) and v.strip():
                return v.strip()
        return None
    return None


def _field_text(raw: dict[str, Any], keys: tuple[str, ...]) -> str:
    """
    First key in `keys` that is present wins. Arrays are joined with ", ".
    """
    for k in keys:
        if k not in raw or raw[k] is None:
            continue
        value = raw[k]
        if isinstance(value, list):
            names = [n for n in (_element_name(v) for v in value) if n]
            if names:
                return ", ".join(names)
            continue
        name = _element_name(value)
        if name is not None:
            return name
    return UNKNOWN


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{what} is not a number: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError(f"{what} missing or not a number: {value!r}")


def _date_and_times(raw: dict[str, Any]) -> tuple[int, int, int]:
    packed_date = _as_int(raw.get("date"), "date")
    start = _as_int(raw.get("startTime"), "startTime")
    end = _as_int(raw.get("endTime"), "endTime")

    # validates month/day of the date and both times
    packed_datetime_to_iso(packed_date, start)
    for t in (start, end):
        if not (0 <= t // 100 <= 23 and 0 <= t % 100 <= 59):
            raise ValueError(f"invalid time of day: {t!r}")
    if end <= start:
        raise ValueError(f"endTime {end} not after startTime {start}")
    return packed_date, start, end


def normalize_lesson(raw: Any) -> Period:
    """
    Map one raw lesson record to a Period. Raises ValueError if the record
    has no usable date/time.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"lesson record is not an object: {type(raw).__name__}")

    packed_date, start, end = _date_and_times(raw)

    code = raw.get("code")
    status = str(code).strip() if code else "regular"

    return Period(
        packed_date=packed_date,
        start_time=start,
        end_time=end,
        subject=_field_text(raw, SUBJECT_KEYS),
        teacher=_field_text(raw, TEACHER_KEYS),
        room=_field_text(raw, ROOM_KEYS),
        status_code=status,
        free_text=_field_text(raw, TEXT_KEYS),
    )


def normalize_lessons(raw_lessons: Any) -> WeekFetch:
    """
    Normalize a raw lesson list, sorted by date and start time.
    """
    out = WeekFetch()
    if not isinstance(raw_lessons, list):
        if raw_lessons is not None:
            out.defects.append(NormalizationDefect("timetable result is not a list", raw_lessons))
        return out

    for raw in raw_lessons:
        try:
            out.periods.append(normalize_lesson(raw))
        except ValueError as e:
            out.defects.append(NormalizationDefect(str(e), raw))

    if out.defects:
        logger.warning("Skipped %d unmappable lesson records", len(out.defects))

    out.periods.sort(key=lambda p: (p.packed_date, p.start_time))
    return out


def to_period_info(period: Period) -> PeriodInfo:
    """
    Pure conversion of a Period for the report layer.
    """
    return PeriodInfo(
        display_name=f"{period.subject} - {period.teacher}",
        content=period.free_text,
        iso_timestamp=packed_datetime_to_iso(period.packed_date, period.start_time),
        minutes_duration=minutes_between(period.start_time, period.end_time),
        weekday_name=weekday_name(period.packed_date),
    )


def group_by_day(periods: list[Period]) -> dict[int, list[Period]]:
    """
    {packed_date: [Period, ...]} in first-seen order.
    """
    days: dict[int, list[Period]] = {}
    for p in periods:
        days.setdefault(p.packed_date, []).append(p)
    return days


def normalize_homework(raw: Any) -> Homework:
    if not isinstance(raw, dict):
        raise ValueError(f"homework record is not an object: {type(raw).__name__}")

    packed_date = _as_int(raw.get("date"), "date")
    due = raw.get("dueDate")
    due_date = _as_int(due, "dueDate") if due not in (None, "") else 0
    text = raw.get("text")
    remark = raw.get("remark")

    return Homework(
        id=_as_int(raw.get("id", 0), "id"),
        lesson_id=_as_int(raw.get("lessonId", 0), "lessonId"),
        packed_date=packed_date,
        due_date=due_date,
        subject=_field_text(raw, SUBJECT_KEYS),
        teacher=_field_text(raw, TEACHER_KEYS),
        text=str(text) if text is not None else UNKNOWN,
        remark=str(remark) if remark is not None else UNKNOWN,
        completed=bool(raw.get("completed", False)),
    )


def normalize_exam(raw: Any) -> Exam:
    """
    Same rules as lessons: date and times are required, names fall back
    to UNKNOWN.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"exam record is not an object: {type(raw).__name__}")

    packed_date, start, end = _date_and_times(raw)
    return Exam(
        id=_as_int(raw.get("id", 0), "id"),
        packed_date=packed_date,
        start_time=start,
        end_time=end,
        subject=_field_text(raw, SUBJECT_KEYS),
        teacher=_field_text(raw, TEACHER_KEYS),
        name=_field_text(raw, EXAM_NAME_KEYS),
        info=_field_text(raw, EXAM_TEXT_KEYS),
    )


def _normalize_all(raw_items: Any, normalize: Callable[[Any], Any], what: str) -> tuple[list[Any], list[NormalizationDefect]]:
    items: list[Any] = []
    defects: list[NormalizationDefect] = []
    if not isinstance(raw_items, list):
        if raw_items is not None:
            defects.append(NormalizationDefect(f"{what} result is not a list", raw_items))
        return items, defects

    for raw in raw_items:
        try:
            items.append(normalize(raw))
        except ValueError as e:
            defects.append(NormalizationDefect(str(e), raw))
    if defects:
        logger.warning("Skipped %d unmappable %s records", len(defects), what)
    return items, defects


def distinct_names(values: list[str]) -> list[str]:
    """
    Distinct names in first-seen order. Joined values ("A, B") count as
    separate names; UNKNOWN and empty names are left out.
    """
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        for name in value.split(", "):
            name = name.strip()
            if not name or name == UNKNOWN or name in seen:
                continue
            seen.add(name)
            out.append(name)
    return out


def _de_date(d: date) -> str:
    return f"{d.day}.{d.month}.{d.year}"


def summarize_week(
    week_start: date,
    periods: list[Period],
    homework: list[Homework],
    exams: list[Exam],
    now: Optional[datetime] = None,
) -> WeekSummary:
    return WeekSummary(
        total_lessons=len(periods),
        total_homework=len(homework),
        total_exams=len(exams),
        week_range=f"{_de_date(week_start)} - {_de_date(week_start + timedelta(days=6))}",
        teachers=distinct_names([p.teacher for p in periods]),
        subjects=distinct_names([p.subject for p in periods]),
        last_updated=now,
    )


# ---------------------------------------------------------------------------
# Remote access
# ---------------------------------------------------------------------------


class ScheduleFetcher:
    def __init__(
        self,
        config: UntisConfig,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.http = http if http is not None else requests.Session()
        self.sleep = sleep

    def _call(self, session: SessionHandle, method: str, params: Any) -> Any:
        return jsonrpc.call(
            self.http,
            endpoint_url(session.server),
            method,
            params,
            request_id=method,
            timeout=self.config.timeout,
            params_query={"school": session.tenant_id},
            cookies={"JSESSIONID": session.opaque_token},
        )

    def _call_with_retry(self, session: SessionHandle, method: str, params: Any) -> Any:
        """
        Transport errors are retried exactly once after a short backoff.
        An expired session (NotConnected) is passed through unchanged.
        """
        try:
            return self._call(session, method, params)
        except TransportError as first:
            logger.warning("%s failed (%s); retrying once in %.1fs", method, first, self.config.retry_backoff)
            self.sleep(self.config.retry_backoff)
        except NotConnected:
            raise
        except RemoteError as e:
            raise FetchFailed(f"{method} rejected: {e}") from e

        try:
            return self._call(session, method, params)
        except TransportError as e:
            raise FetchFailed(f"{method} failed after retry: {e}") from e
        except NotConnected:
            raise
        except RemoteError as e:
            raise FetchFailed(f"{method} rejected: {e}") from e

    def fetch_week_detailed(self, session: SessionHandle, week_start: date) -> WeekFetch:
        week_end = week_start + timedelta(days=6)
        options: dict[str, Any] = {
            "startDate": date_to_packed(week_start),
            "endDate": date_to_packed(week_end),
            "showInfo": True,
            "showSubstText": True,
            "showLsText": True,
            "klasseFields": _FIELDS,
            "roomFields": _FIELDS,
            "subjectFields": _FIELDS,
            "teacherFields": _FIELDS,
        }
        if session.person_id is not None and session.person_type is not None:
            options["element"] = {"id": session.person_id, "type": session.person_type}

        logger.info("Fetching timetable %s .. %s", week_start.isoformat(), week_end.isoformat())
        raw = self._call_with_retry(session, "getTimetable", {"options": options})

        # an empty week (holidays) is a valid answer and not retried
        result = normalize_lessons(raw if raw is not None else [])
        logger.info("Normalized %d lessons", len(result.periods))
        return result

    def fetch_week(self, session: SessionHandle, week_start: date) -> list[Period]:
        return self.fetch_week_detailed(session, week_start).periods

    def fetch_homework(self, session: SessionHandle, week_start: date) -> tuple[list[Homework], list[NormalizationDefect]]:
        week_end = week_start + timedelta(days=6)
        raw = self._call_with_retry(
            session,
            "getHomework",
            {"startDate": date_to_packed(week_start), "endDate": date_to_packed(week_end)},
        )
        return _normalize_all(raw, normalize_homework, "homework")

    def fetch_exams(
        self, session: SessionHandle, week_start: date, exam_type_id: int = 0
    ) -> tuple[list[Exam], list[NormalizationDefect]]:
        week_end = week_start + timedelta(days=6)
        raw = self._call_with_retry(
            session,
            "getExams",
            {
                "examTypeId": exam_type_id,
                "startDate": date_to_packed(week_start),
                "endDate": date_to_packed(week_end),
            },
        )
        exams, defects = _normalize_all(raw, normalize_exam, "exam")
        exams.sort(key=lambda e: (e.packed_date, e.start_time))
        return exams, defects

    def fetch_week_bundle(self, session: SessionHandle, week_start: date, now: Optional[datetime] = None) -> WeekBundle:
        """
        Timetable, homework and exams for one week plus the summary.
        A timetable failure raises; homework and exam failures are recorded
        in `errors`. NotConnected always propagates.
        """
        week = self.fetch_week_detailed(session, week_start)
        bundle = WeekBundle(periods=week.periods, defects=list(week.defects))

        try:
            bundle.homework, defects = self.fetch_homework(session, week_start)
            bundle.defects.extend(defects)
        except FetchFailed as e:
            logger.warning("Homework unavailable: %s", e)
            bundle.errors.append(PartialFetchFailure("homework", str(e)))

        try:
            bundle.exams, defects = self.fetch_exams(session, week_start)
            bundle.defects.extend(defects)
        except FetchFailed as e:
            logger.warning("Exams unavailable: %s", e)
            bundle.errors.append(PartialFetchFailure("exams", str(e)))

        bundle.summary = summarize_week(week_start, bundle.periods, bundle.homework, bundle.exams, now)
        return bundle
