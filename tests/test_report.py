"""
Unit tests for report assembly.

The text generator is a black box: its failures must only drop the
AI section, never the report.
"""

import unittest
from datetime import timezone

from berichtsheft.model import Assignment, AssignmentStatus, Course, PeriodInfo
from berichtsheft.report import (
    assemble_report,
    compact_course_name,
    describe_periods,
    fill_prompt,
    format_timestamp,
    render_assignment_overview,
)


NOW = 1_771_236_000
PERIODS = [PeriodInfo("Mathe - Müller", "Integrale", "2026-02-16T08:00:00", 90, "Montag")]


class TestHelpers(unittest.TestCase):
    def test_compact_course_name(self) -> None:
        self.assertEqual(compact_course_name(Course(1, "FA 23 1 Anwendungsentwicklung (AE)", "")), "Anwendungsentwicklung")
        self.assertEqual(compact_course_name(Course(1, "", "Deutsch  und   Kommunikation")), "Deutsch und Kommunikation")
        self.assertEqual(compact_course_name(Course(1, "", "")), "Kurs")
        long_name = compact_course_name(Course(1, "x" * 60, ""))
        self.assertEqual(len(long_name), 46)
        self.assertTrue(long_name.endswith("…"))

    def test_format_timestamp_sentinel(self) -> None:
        self.assertIsNone(format_timestamp(0))
        self.assertIsNone(format_timestamp(-5))
        self.assertEqual(format_timestamp(86400, timezone.utc), "02.01.1970 00:00")

    def test_fill_prompt(self) -> None:
        self.assertEqual(fill_prompt("Schreibe: {DESCRIPTION}!", "abc"), "Schreibe: abc!")
        self.assertEqual(fill_prompt("Schreibe:", "abc"), "Schreibe:\n\nabc")

    def test_describe_periods(self) -> None:
        self.assertEqual(describe_periods(PERIODS), "Montag 2026-02-16T08:00:00 (90 min) Mathe - Müller: Integrale")


class TestOverview(unittest.TestCase):
    def test_grouping_and_order(self) -> None:
        math = Course(1, "Mathe", "")
        eng = Course(2, "Englisch", "")
        items = [
            (Assignment(1, "Undated", 0, 0, math), AssignmentStatus.UNDATED),
            (Assignment(2, "Later", NOW + 7200, 0, math), AssignmentStatus.DUE_SOON),
            (Assignment(3, "Sooner", NOW + 3600, 0, math), AssignmentStatus.DUE_SOON),
            (Assignment(4, "Essay", 0, NOW - 1, eng), AssignmentStatus.CLOSED),
        ]
        text = render_assignment_overview(items, timezone.utc)
        lines = text.splitlines()

        self.assertLess(lines.index("**Englisch**"), lines.index("**Mathe**"))
        math_block = lines[lines.index("**Mathe**") + 1 : lines.index("**Mathe**") + 4]
        self.assertTrue(math_block[0].startswith("• Sooner"))
        self.assertTrue(math_block[1].startswith("• Later"))
        self.assertTrue(math_block[2].startswith("• Undated -> "))
        self.assertIn("schließt", text)
        self.assertNotIn("1970", text)

    def test_empty(self) -> None:
        self.assertIn("Keine sichtbaren Aufgaben", render_assignment_overview([]))


class TestAssembleReport(unittest.TestCase):
    def test_generator_success(self) -> None:
        seen = {}

        def generate(prompt, data):
            seen["prompt"] = prompt
            return {"success": True, "content": "Heute habe ich Integrale gelernt."}

        report = assemble_report(PERIODS, [], NOW, generate=generate, prompt="Fasse zusammen: {DESCRIPTION}")

        self.assertIn("Integrale", seen["prompt"])
        self.assertNotIn("{DESCRIPTION}", seen["prompt"])
        self.assertEqual(report.ai_summary, "Heute habe ich Integrale gelernt.")
        self.assertIn("# Berichtsheft", report.text)

    def test_generator_failure_omits_ai_section(self) -> None:
        report = assemble_report(PERIODS, [], NOW, generate=lambda p, d: {"success": False, "error": "quota"})
        self.assertIsNone(report.ai_summary)
        self.assertEqual(report.ai_error, "quota")
        self.assertNotIn("# Berichtsheft", report.text)
        self.assertIn("Mathe - Müller", report.text)

    def test_generator_exception_omits_ai_section(self) -> None:
        def generate(prompt, data):
            raise RuntimeError("connection refused")

        report = assemble_report(PERIODS, [], NOW, generate=generate)
        self.assertIsNone(report.ai_summary)
        self.assertIn("connection refused", report.ai_error)
        self.assertIn("# Stundenplan", report.text)

    def test_statuses_attached(self) -> None:
        a = Assignment(1, "A", NOW - 10, NOW + 1000, Course(1, "M", "M"))
        report = assemble_report([], [a], NOW)
        self.assertEqual(report.assignments, [(a, AssignmentStatus.OVERDUE)])
        self.assertIn("Überfällig", report.text)


if __name__ == "__main__":
    unittest.main()
