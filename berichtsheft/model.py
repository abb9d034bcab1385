"""
Central data model definitions used across the project.

This module defines the canonical records shared by the timetable side
(WebUntis) and the assignment side (Moodle) so that:
- all modules share the same field names
- remote payloads are normalized exactly once, at the edge
- the report layer only ever sees these flat records

Dates and times of lessons use the packed integer encoding of WebUntis
(YYYYMMDD / HHMM). Moodle timestamps are epoch seconds where 0 means
"not set".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


# Sentinel substituted for any lesson field the remote did not provide.
UNKNOWN = "unknown"


@dataclass
class Credentials:
    """
    Login data supplied by the caller. Never persisted by this package.
    """

    username: str
    secret: str
    tenant_hint: Optional[str] = None
    server_hint: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, secret='***', tenant_hint={self.tenant_hint!r})"


@dataclass
class TenantCandidate:
    """
    One plausible school login name on one server.
    """

    display_name: str
    tenant_id: str
    server: str
    address: Optional[str] = None


class FailureKind(str, Enum):
    CREDENTIALS_INVALID = "CREDENTIALS_INVALID"
    TENANT_MISMATCH = "TENANT_MISMATCH"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


@dataclass
class AttemptRecord:
    """
    Diagnostic entry for one authentication attempt against one candidate.
    """

    tenant_id: str
    server: str
    succeeded: bool
    failure: Optional[FailureKind] = None
    message: str = ""


@dataclass
class SessionHandle:
    """
    Opaque remote session plus the server/tenant it was issued for.

    Owned by whoever acquired it. There is no refresh; it ends with
    an explicit release or when the remote side times it out.
    """

    opaque_token: str
    server: str
    tenant_id: str
    issued_at: datetime
    person_id: Optional[int] = None
    person_type: Optional[int] = None
    attempts: list[AttemptRecord] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"SessionHandle(server={self.server!r}, tenant_id={self.tenant_id!r}, issued_at={self.issued_at!r})"


@dataclass
class Period:
    """
    One lesson, flattened from the remote timetable payload.
    """

    packed_date: int
    start_time: int
    end_time: int
    subject: str = UNKNOWN
    teacher: str = UNKNOWN
    room: str = UNKNOWN
    status_code: str = "regular"
    free_text: str = UNKNOWN


@dataclass
class PeriodInfo:
    display_name: str
    content: str
    iso_timestamp: str
    minutes_duration: int
    weekday_name: str


@dataclass
class Homework:
    id: int
    lesson_id: int
    packed_date: int
    due_date: int
    subject: str
    teacher: str
    text: str
    remark: str
    completed: bool


@dataclass
class Exam:
    id: int
    packed_date: int
    start_time: int
    end_time: int
    subject: str = UNKNOWN
    teacher: str = UNKNOWN
    name: str = UNKNOWN
    info: str = UNKNOWN


@dataclass
class WeekSummary:
    """
    Counts and distinct names for one week, as shown on the dashboard.
    `week_range` reads like "16.2.2026 - 22.2.2026".
    """

    total_lessons: int
    total_homework: int
    total_exams: int
    week_range: str
    teachers: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None


@dataclass
class Course:
    """
    One Moodle course enrollment.
    """

    id: int
    short_name: str
    full_name: str


@dataclass
class Assignment:
    """
    One Moodle assignment attached to its parent course.

    due_date / cutoff_date are epoch seconds; 0 means "not set".
    """

    id: int
    name: str
    due_date: int
    cutoff_date: int
    course: Course


@dataclass
class ScrapedAssignment:
    """
    Assignment-like entry extracted from rendered Moodle HTML.

    This comes from undocumented page structure and is kept apart from
    Assignment on purpose; confidence is always "low".
    """

    name: str
    course_name: str
    due_text: str
    url: Optional[str] = None
    confidence: str = "low"


class AssignmentStatus(str, Enum):
    UPCOMING = "UPCOMING"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"
    CLOSED = "CLOSED"
    UNDATED = "UNDATED"
