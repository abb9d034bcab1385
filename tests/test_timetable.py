"""
Unit tests for timetable fetching and normalization.

Normalization contract:
- absent subject/teacher/room/text -> "unknown", explicit "" stays ""
- unmappable records are skipped and counted, never abort the batch
- exactly one retry after a transport error, none for an empty week
"""

import unittest
from datetime import date, datetime, timezone

import requests

from berichtsheft.config import UntisConfig
from berichtsheft.errors import FetchFailed, NotConnected
from berichtsheft.model import UNKNOWN, Period, SessionHandle
from berichtsheft.timetable import (
    ScheduleFetcher,
    distinct_names,
    group_by_day,
    normalize_exam,
    normalize_homework,
    normalize_lesson,
    normalize_lessons,
    summarize_week,
    to_period_info,
)
from helpers import FakeSession, rpc_error, rpc_result


HANDLE = SessionHandle("TOKEN", "ajax.webuntis.com", "school-1", datetime(2026, 2, 16, tzinfo=timezone.utc), 42, 5)
MONDAY = date(2026, 2, 16)


class TestNormalizeLesson(unittest.TestCase):
    def test_short_key_arrays(self) -> None:
        p = normalize_lesson(
            {
                "date": 20260216,
                "startTime": 800,
                "endTime": 930,
                "su": [{"id": 1, "name": "M", "longname": "Mathematik"}],
                "te": [{"id": 2, "name": "MUE"}],
                "ro": [{"id": 3, "name": "A101"}, {"id": 4, "name": "A102"}],
                "code": "cancelled",
                "lstext": "Kapitel 3",
            }
        )
        self.assertEqual(p.subject, "Mathematik")
        self.assertEqual(p.teacher, "MUE")
        self.assertEqual(p.room, "A101, A102")
        self.assertEqual(p.status_code, "cancelled")
        self.assertEqual(p.free_text, "Kapitel 3")

    def test_wrapped_elements_and_plain_values(self) -> None:
        p = normalize_lesson(
            {
                "date": "20260216",
                "startTime": 800,
                "endTime": 845,
                "subjects": [{"element": {"name": "Deutsch"}}],
                "teacher": {"shortName": "SCH"},
                "room": "B2",
            }
        )
        self.assertEqual(p.packed_date, 20260216)
        self.assertEqual(p.subject, "Deutsch")
        self.assertEqual(p.teacher, "SCH")
        self.assertEqual(p.room, "B2")

    def test_absent_fields_use_sentinel(self) -> None:
        p = normalize_lesson({"date": 20260216, "startTime": 800, "endTime": 845, "te": []})
        self.assertEqual(p.subject, UNKNOWN)
        self.assertEqual(p.teacher, UNKNOWN)
        self.assertEqual(p.room, UNKNOWN)
        self.assertEqual(p.free_text, UNKNOWN)
        self.assertEqual(p.status_code, "regular")

    def test_explicit_empty_is_kept(self) -> None:
        p = normalize_lesson({"date": 20260216, "startTime": 800, "endTime": 845, "info": ""})
        self.assertEqual(p.free_text, "")

    def test_unmappable_records_raise(self) -> None:
        for raw in (
            {"startTime": 800, "endTime": 845},
            {"date": 20261316, "startTime": 800, "endTime": 845},
            {"date": 20260216, "startTime": 900, "endTime": 845},
            {"date": 20260216, "startTime": 800, "endTime": 800},
            {"date": 20260216, "startTime": 870, "endTime": 900},
            "not a dict",
        ):
            with self.assertRaises(ValueError):
                normalize_lesson(raw)

    def test_batch_skips_and_counts_defects(self) -> None:
        raw = [
            {"date": 20260217, "startTime": 800, "endTime": 845},
            {"date": None, "startTime": 800, "endTime": 845},
            {"date": 20260216, "startTime": 1000, "endTime": 1045},
            {"date": 20260216, "startTime": 800, "endTime": 845},
        ]
        result = normalize_lessons(raw)
        self.assertEqual(len(result.defects), 1)
        self.assertEqual(
            [(p.packed_date, p.start_time) for p in result.periods],
            [(20260216, 800), (20260216, 1000), (20260217, 800)],
        )


class TestPeriodInfo(unittest.TestCase):
    def test_to_period_info(self) -> None:
        p = Period(20260219, 1015, 1200, subject="Mathe", teacher="Müller", free_text="Integrale")
        info = to_period_info(p)
        self.assertEqual(info.display_name, "Mathe - Müller")
        self.assertEqual(info.content, "Integrale")
        self.assertEqual(info.iso_timestamp, "2026-02-19T10:15:00")
        self.assertEqual(info.minutes_duration, 105)
        self.assertEqual(info.weekday_name, "Donnerstag")

    def test_lenient_date_converts(self) -> None:
        result = normalize_lessons([{"date": 20260230, "startTime": 800, "endTime": 845}])
        self.assertEqual(result.defects, [])

        info = to_period_info(result.periods[0])
        self.assertEqual(info.iso_timestamp, "2026-02-30T08:00:00")
        self.assertEqual(info.weekday_name, "Montag")

    def test_group_by_day(self) -> None:
        periods = [Period(20260216, 800, 845), Period(20260217, 800, 845), Period(20260216, 900, 945)]
        days = group_by_day(periods)
        self.assertEqual(list(days), [20260216, 20260217])
        self.assertEqual([p.start_time for p in days[20260216]], [800, 900])


class TestScheduleFetcher(unittest.TestCase):
    def _fetcher(self, handler):
        http = FakeSession(handler)
        sleeps = []
        fetcher = ScheduleFetcher(UntisConfig(retry_backoff=0.5), http=http, sleep=sleeps.append)
        return fetcher, http, sleeps

    def test_request_covers_seven_days(self) -> None:
        fetcher, http, _ = self._fetcher(lambda m, u, kw: rpc_result([]))
        fetcher.fetch_week(HANDLE, MONDAY)

        kw = http.calls[0][2]
        options = kw["json"]["params"]["options"]
        self.assertEqual(options["startDate"], 20260216)
        self.assertEqual(options["endDate"], 20260222)
        self.assertEqual(options["element"], {"id": 42, "type": 5})
        self.assertEqual(kw["cookies"], {"JSESSIONID": "TOKEN"})
        self.assertEqual(http.calls[0][1], "https://ajax.webuntis.com/WebUntis/jsonrpc.do")

    def test_empty_week_is_not_retried(self) -> None:
        fetcher, http, sleeps = self._fetcher(lambda m, u, kw: rpc_result([]))
        self.assertEqual(fetcher.fetch_week(HANDLE, MONDAY), [])
        self.assertEqual(len(http.calls), 1)
        self.assertEqual(sleeps, [])

    def test_retry_once_after_transport_error(self) -> None:
        answers = [requests.ConnectionError("reset"), rpc_result([{"date": 20260216, "startTime": 800, "endTime": 845}])]

        def handler(method, url, kw):
            a = answers.pop(0)
            if isinstance(a, Exception):
                raise a
            return a

        fetcher, http, sleeps = self._fetcher(handler)
        periods = fetcher.fetch_week(HANDLE, MONDAY)

        self.assertEqual(len(periods), 1)
        self.assertEqual(len(http.calls), 2)
        self.assertEqual(sleeps, [0.5])

    def test_second_transport_error_fails(self) -> None:
        def handler(method, url, kw):
            raise requests.Timeout("slow")

        fetcher, http, _ = self._fetcher(handler)
        with self.assertRaises(FetchFailed):
            fetcher.fetch_week(HANDLE, MONDAY)
        self.assertEqual(len(http.calls), 2)

    def test_remote_rejection_is_not_retried(self) -> None:
        fetcher, http, _ = self._fetcher(lambda m, u, kw: rpc_error(-7004, "no right for timetable"))
        with self.assertRaises(FetchFailed):
            fetcher.fetch_week(HANDLE, MONDAY)
        self.assertEqual(len(http.calls), 1)

    def test_expired_session_passes_through(self) -> None:
        fetcher, _, _ = self._fetcher(lambda m, u, kw: rpc_error(-8520, "not authenticated"))
        with self.assertRaises(NotConnected):
            fetcher.fetch_week(HANDLE, MONDAY)

    def test_defects_are_reported(self) -> None:
        raw = [{"date": 20260216, "startTime": 800, "endTime": 845}, {"foo": "bar"}]
        fetcher, _, _ = self._fetcher(lambda m, u, kw: rpc_result(raw))
        result = fetcher.fetch_week_detailed(HANDLE, MONDAY)
        self.assertEqual(len(result.periods), 1)
        self.assertEqual(len(result.defects), 1)

    def test_homework(self) -> None:
        raw = [
            {"id": 7, "lessonId": 3, "date": 20260216, "dueDate": 20260219, "subject": "Mathe", "text": "S. 42"},
            {"id": 8},
        ]
        fetcher, http, _ = self._fetcher(lambda m, u, kw: rpc_result(raw))
        homework, defects = fetcher.fetch_homework(HANDLE, MONDAY)

        self.assertEqual(http.calls[0][2]["json"]["method"], "getHomework")
        self.assertEqual(len(homework), 1)
        self.assertEqual(len(defects), 1)
        self.assertEqual(homework[0].due_date, 20260219)
        self.assertEqual(homework[0].teacher, UNKNOWN)
        self.assertFalse(homework[0].completed)

    def test_homework_without_due_date(self) -> None:
        hw = normalize_homework({"id": 1, "date": 20260216})
        self.assertEqual(hw.due_date, 0)


class TestExamsAndSummary(unittest.TestCase):
    def test_normalize_exam(self) -> None:
        e = normalize_exam(
            {"id": 4, "date": 20260219, "startTime": 800, "endTime": 930, "subject": "Mathe", "teachers": ["MUE", "SCH"], "name": "Klausur 2"}
        )
        self.assertEqual((e.packed_date, e.start_time, e.end_time), (20260219, 800, 930))
        self.assertEqual(e.subject, "Mathe")
        self.assertEqual(e.teacher, "MUE, SCH")
        self.assertEqual(e.name, "Klausur 2")
        self.assertEqual(e.info, UNKNOWN)

    def test_exam_without_times_raises(self) -> None:
        with self.assertRaises(ValueError):
            normalize_exam({"id": 4, "date": 20260219})

    def test_distinct_names(self) -> None:
        self.assertEqual(distinct_names(["MUE", "MUE, SCH", UNKNOWN, "", "SCH"]), ["MUE", "SCH"])

    def test_summarize_week(self) -> None:
        periods = [
            Period(20260216, 800, 845, subject="Mathe", teacher="MUE"),
            Period(20260216, 900, 945, subject="Deutsch", teacher=UNKNOWN),
            Period(20260217, 800, 845, subject="Mathe", teacher="MUE, SCH"),
        ]
        s = summarize_week(MONDAY, periods, [], [], now=datetime(2026, 2, 16, 7, 0))

        self.assertEqual((s.total_lessons, s.total_homework, s.total_exams), (3, 0, 0))
        self.assertEqual(s.week_range, "16.2.2026 - 22.2.2026")
        self.assertEqual(s.teachers, ["MUE", "SCH"])
        self.assertEqual(s.subjects, ["Mathe", "Deutsch"])
        self.assertEqual(s.last_updated, datetime(2026, 2, 16, 7, 0))


class TestWeekBundle(unittest.TestCase):
    def _fetcher(self, answers):
        def handler(method, url, kw):
            answer = answers[kw["json"]["method"]]
            if isinstance(answer, Exception):
                raise answer
            return answer

        http = FakeSession(handler)
        return ScheduleFetcher(UntisConfig(retry_backoff=0), http=http, sleep=lambda s: None), http

    def test_fetch_exams(self) -> None:
        raw = [
            {"id": 2, "date": 20260220, "startTime": 1000, "endTime": 1130, "subject": "Deutsch"},
            {"id": 1, "date": 20260218, "startTime": 800, "endTime": 930, "subject": "Mathe"},
            {"id": 3, "date": 20260219},
        ]
        fetcher, http = self._fetcher({"getExams": rpc_result(raw)})
        exams, defects = fetcher.fetch_exams(HANDLE, MONDAY)

        params = http.calls[0][2]["json"]["params"]
        self.assertEqual((params["startDate"], params["endDate"]), (20260216, 20260222))
        self.assertEqual([e.id for e in exams], [1, 2])
        self.assertEqual(len(defects), 1)

    def test_bundle_collects_everything(self) -> None:
        fetcher, _ = self._fetcher(
            {
                "getTimetable": rpc_result([{"date": 20260216, "startTime": 800, "endTime": 845, "su": [{"name": "Mathe"}], "te": [{"name": "MUE"}]}]),
                "getHomework": rpc_result([{"id": 7, "date": 20260216, "dueDate": 20260219}]),
                "getExams": rpc_result([{"id": 1, "date": 20260218, "startTime": 800, "endTime": 930}]),
            }
        )
        bundle = fetcher.fetch_week_bundle(HANDLE, MONDAY)

        self.assertEqual((len(bundle.periods), len(bundle.homework), len(bundle.exams)), (1, 1, 1))
        self.assertEqual(bundle.errors, [])
        self.assertEqual(bundle.summary.total_exams, 1)
        self.assertEqual(bundle.summary.subjects, ["Mathe"])

    def test_exam_failure_keeps_the_week(self) -> None:
        fetcher, _ = self._fetcher(
            {
                "getTimetable": rpc_result([{"date": 20260216, "startTime": 800, "endTime": 845}]),
                "getHomework": rpc_result([]),
                "getExams": rpc_error(-7004, "no right for exams"),
            }
        )
        bundle = fetcher.fetch_week_bundle(HANDLE, MONDAY)

        self.assertEqual(len(bundle.periods), 1)
        self.assertEqual([e.step for e in bundle.errors], ["exams"])
        self.assertEqual(bundle.summary.total_exams, 0)

    def test_expired_session_is_not_swallowed(self) -> None:
        fetcher, _ = self._fetcher(
            {
                "getTimetable": rpc_result([]),
                "getHomework": rpc_error(-8520, "not authenticated"),
                "getExams": rpc_result([]),
            }
        )
        with self.assertRaises(NotConnected):
            fetcher.fetch_week_bundle(HANDLE, MONDAY)


if __name__ == "__main__":
    unittest.main()
