"""
Moodle assignment aggregation via the official web service API.

fetch_all() runs four dependent steps:
1. token exchange          (login/token.php)
2. who am I                (core_webservice_get_site_info)
3. enrolled courses        (core_enrol_get_users_courses)
4. assignments, one batch  (mod_assign_get_assignments)

A failing step is recorded as a PartialFetchFailure and whatever was
gathered up to that point is returned. Per-course problems reported by
Moodle inside the batch answer ("warnings") become one failure entry per
course while the other courses' assignments are kept.

The only hard failure is an explicit rejection of the username or
password (CredentialsInvalid).

Timestamps are epoch seconds, 0 meaning "not set". A missing or null
duedate/cutoffdate normalizes to 0, never to "now".
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests

from berichtsheft.config import MoodleConfig
from berichtsheft.errors import CredentialsInvalid, NotConnected, PartialFetchFailure, RemoteError, TransportError
from berichtsheft.jsonrpc import USER_AGENT, looks_like_html
from berichtsheft.model import Assignment, AssignmentStatus, Course, Credentials


logger = logging.getLogger(__name__)

DUE_SOON_SECONDS = 48 * 3600

_CREDENTIAL_ERRORCODES = {"invalidlogin", "usernotfound", "forcepasswordchangenotice"}
_TOKEN_ERRORCODES = {"invalidtoken", "accessexception"}


@dataclass
class FetchReport:
    courses: list[Course] = field(default_factory=list)
    assignments: list[Assignment] = field(default_factory=list)
    errors: list[PartialFetchFailure] = field(default_factory=list)
    user_id: Optional[int] = None

    @property
    def complete(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Status derivation
# ---------------------------------------------------------------------------


def status_for(due_date: int, cutoff_date: int, now: int, due_soon_seconds: int = DUE_SOON_SECONDS) -> AssignmentStatus:
    """
    Status from (due, cutoff, now). Passing the due date is always OVERDUE,
    even while the cutoff still allows submissions.
    """
    if due_date > 0:
        if now < due_date:
            return AssignmentStatus.DUE_SOON if due_date - now <= due_soon_seconds else AssignmentStatus.UPCOMING
        return AssignmentStatus.OVERDUE
    if cutoff_date > 0:
        return AssignmentStatus.UPCOMING if now < cutoff_date else AssignmentStatus.CLOSED
    return AssignmentStatus.UNDATED


def assignment_status(assignment: Assignment, now: int, due_soon_seconds: int = DUE_SOON_SECONDS) -> AssignmentStatus:
    return status_for(assignment.due_date, assignment.cutoff_date, now, due_soon_seconds)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _timestamp(value: Any) -> int:
    """
    Epoch seconds or the sentinel 0 for anything missing/unusable.
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value if value > 0 else 0
    if isinstance(value, float):
        return int(value) if 0 < value < float("inf") else 0
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


def normalize_course(raw: Any) -> Optional[Course]:
    if not isinstance(raw, dict):
        return None
    try:
        course_id = int(raw.get("id"))
    except (TypeError, ValueError, OverflowError):
        return None
    return Course(
        id=course_id,
        short_name=str(raw.get("shortname") or "").strip(),
        full_name=str(raw.get("fullname") or "").strip(),
    )


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def normalize_assignment(raw: Any, course: Course) -> Assignment:
    """
    Map one raw assignment record. Raises ValueError if it has no usable id.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"not an object: {type(raw).__name__}")
    raw_id = raw.get("id")
    if isinstance(raw_id, bool) or raw_id is None:
        raise ValueError(f"missing id: {raw_id!r}")
    try:
        assignment_id = int(raw_id)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"id is not a number: {raw_id!r}")

    name = raw.get("name")
    return Assignment(
        id=assignment_id,
        name=name.strip() if isinstance(name, str) else str(name or ""),
        due_date=_timestamp(raw.get("duedate")),
        cutoff_date=_timestamp(raw.get("cutoffdate")),
        course=course,
    )


def flatten_assignments(payload: Any, known_courses: dict[int, Course]) -> tuple[list[Assignment], list[PartialFetchFailure]]:
    """
    Flatten {"courses": [{..., "assignments": [...]}], "warnings": [...]}
    into Assignment records with their parent Course attached.
    """
    assignments: list[Assignment] = []
    errors: list[PartialFetchFailure] = []

    if not isinstance(payload, dict):
        errors.append(PartialFetchFailure("assignments", "unexpected assignment payload"))
        return assignments, errors

    for warning in _as_list(payload.get("warnings")):
        if not isinstance(warning, dict):
            continue
        item_id = warning.get("itemid")
        try:
            item_id = int(item_id) if item_id is not None else None
        except (TypeError, ValueError, OverflowError):
            item_id = None
        message = str(warning.get("message") or warning.get("warningcode") or "warning")
        errors.append(PartialFetchFailure("assignments", message, item_id))

    for raw_course in _as_list(payload.get("courses")):
        course = normalize_course(raw_course)
        if course is None:
            continue
        # prefer the enrollment record, it has the user-facing names
        course = known_courses.get(course.id, course)

        raw_assignments = raw_course.get("assignments") or []
        if not isinstance(raw_assignments, list):
            errors.append(PartialFetchFailure("assignments", "assignment list is not a list", course.id))
            continue

        for raw in raw_assignments:
            try:
                assignments.append(normalize_assignment(raw, course))
            except ValueError as e:
                errors.append(PartialFetchFailure("assignments", f"unusable assignment record: {e}", course.id))

    return assignments, errors


def clean_password(password: str) -> str:
    """
    Strip the ';a' artifact that copy-pasting from a login URL leaves behind.
    """
    return password[:-2] if password.endswith(";a") else password


# ---------------------------------------------------------------------------
# Remote access
# ---------------------------------------------------------------------------


class MoodleClient:
    def __init__(self, config: MoodleConfig, http: Optional[requests.Session] = None) -> None:
        self.config = config
        self.http = http if http is not None else requests.Session()

    def _post(self, path: str, data: dict[str, Any], what: str) -> Any:
        url = f"{self.config.base_url}{path}"
        try:
            resp = self.http.post(url, data=data, headers={"User-Agent": USER_AGENT}, timeout=self.config.timeout)
        except requests.Timeout as e:
            raise TransportError(f"{what}: timeout after {self.config.timeout}s") from e
        except requests.RequestException as e:
            raise TransportError(f"{what}: {e}") from e

        raw = resp.text or ""
        if not resp.ok:
            raise TransportError(f"{what}: HTTP {resp.status_code}: {raw[:300]}", resp.status_code)
        try:
            return resp.json()
        except ValueError:
            if looks_like_html(raw):
                raise TransportError(f"{what}: returned HTML (likely SSO redirect or service disabled)", resp.status_code)
            raise TransportError(f"{what}: non-JSON response: {raw[:200]}", resp.status_code)

    def get_token(self, credentials: Credentials) -> str:
        data = self._post(
            "/login/token.php",
            {
                "username": credentials.username,
                "password": clean_password(credentials.secret),
                "service": self.config.service,
            },
            "token",
        )
        if not isinstance(data, dict):
            raise TransportError("token: unexpected response")

        if data.get("error") or data.get("errorcode"):
            code = data.get("errorcode")
            message = f"{data.get('error') or 'token error'} ({code or 'no_code'})"
            if code in _CREDENTIAL_ERRORCODES:
                raise CredentialsInvalid(message, code)
            raise RemoteError(message, code)

        token = data.get("token")
        if not token:
            raise TransportError("token: no token in response")
        return str(token)

    def call_ws(self, token: str, wsfunction: str, params: Optional[dict[str, Any]] = None) -> Any:
        body: dict[str, Any] = {
            "moodlewsrestformat": "json",
            "wstoken": token,
            "wsfunction": wsfunction,
        }
        body.update(params or {})

        data = self._post("/webservice/rest/server.php", body, wsfunction)

        if isinstance(data, dict) and data.get("exception"):
            code = data.get("errorcode")
            message = f"{wsfunction}: {data.get('exception')}: {data.get('message')} [{code or 'no_code'}]"
            if code in _TOKEN_ERRORCODES:
                raise NotConnected(message, code)
            raise RemoteError(message, code)
        return data

    def get_user_id(self, token: str) -> int:
        info = self.call_ws(token, "core_webservice_get_site_info")
        try:
            return int(info["userid"])
        except (TypeError, KeyError, ValueError) as e:
            raise TransportError("core_webservice_get_site_info: no userid in response") from e

    def get_courses(self, token: str, user_id: int) -> list[Any]:
        data = self.call_ws(token, "core_enrol_get_users_courses", {"userid": user_id})
        if not isinstance(data, list):
            raise TransportError("core_enrol_get_users_courses: expected a list")
        return data

    def get_assignments(self, token: str, course_ids: list[int]) -> Any:
        params = {f"courseids[{i}]": cid for i, cid in enumerate(course_ids)}
        return self.call_ws(token, "mod_assign_get_assignments", params)


class AssignmentAggregator:
    def __init__(
        self,
        config: MoodleConfig,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.client = MoodleClient(config, http)
        self.clock = clock

    def fetch_all(self, credentials: Credentials) -> FetchReport:
        report = FetchReport()

        try:
            token = self.client.get_token(credentials)
        except CredentialsInvalid:
            logger.warning("Moodle rejected the credentials for %r", credentials.username)
            raise
        except (TransportError, RemoteError) as e:
            logger.warning("Moodle token exchange failed: %s", e)
            report.errors.append(PartialFetchFailure("token", str(e)))
            return report

        try:
            report.user_id = self.client.get_user_id(token)
        except (TransportError, RemoteError) as e:
            logger.warning("Moodle site info failed: %s", e)
            report.errors.append(PartialFetchFailure("user", str(e)))
            return report

        try:
            raw_courses = self.client.get_courses(token, report.user_id)
        except (TransportError, RemoteError) as e:
            logger.warning("Moodle course list failed: %s", e)
            report.errors.append(PartialFetchFailure("courses", str(e)))
            return report

        for raw in raw_courses:
            course = normalize_course(raw)
            if course is None:
                report.errors.append(PartialFetchFailure("courses", f"unusable course record: {raw!r}"))
                continue
            report.courses.append(course)

        if not report.courses:
            return report

        try:
            payload = self.client.get_assignments(token, [c.id for c in report.courses])
        except (TransportError, RemoteError) as e:
            logger.warning("Moodle assignment fetch failed: %s", e)
            report.errors.append(PartialFetchFailure("assignments", str(e)))
            return report

        assignments, errors = flatten_assignments(payload, {c.id: c for c in report.courses})
        report.assignments.extend(assignments)
        report.errors.extend(errors)
        for err in errors:
            logger.warning("Assignments for course %s unavailable: %s", err.item_id, err.message)

        logger.info("Fetched %d courses, %d assignments", len(report.courses), len(report.assignments))
        return report

    def now(self) -> int:
        return int(self.clock())

    def status(self, assignment: Assignment, now: Optional[int] = None) -> AssignmentStatus:
        return assignment_status(
            assignment,
            self.now() if now is None else now,
            self.config.due_soon_hours * 3600,
        )
