"""
Report assembly (normalized data -> Berichtsheft text).

Consumes PeriodInfo and Assignment records plus an optional text
generator and produces the final report. The generator is an opaque
callable

    generate(prompt, data) -> {"success": bool, "content": str, "error": str}

The normalized week description is put into the prompt's {DESCRIPTION}
placeholder. If the generator fails or raises, the AI section is left
out; the rest of the report is still produced.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Callable, Optional

from berichtsheft.model import Assignment, AssignmentStatus, Course, PeriodInfo
from berichtsheft.moodle import DUE_SOON_SECONDS, assignment_status


logger = logging.getLogger(__name__)

PLACEHOLDER = "{DESCRIPTION}"

GenerateFn = Callable[[str, str], dict]

STATUS_LABELS = {
    AssignmentStatus.UPCOMING: "✅ Noch Zeit",
    AssignmentStatus.DUE_SOON: "⏳ Bald fällig!",
    AssignmentStatus.OVERDUE: "⚠️ Überfällig!",
    AssignmentStatus.CLOSED: "🔒 Geschlossen",
    AssignmentStatus.UNDATED: "Kein Datum",
}


@dataclass
class Report:
    periods: list[PeriodInfo] = field(default_factory=list)
    assignments: list[tuple[Assignment, AssignmentStatus]] = field(default_factory=list)
    ai_summary: Optional[str] = None
    ai_error: Optional[str] = None
    text: str = ""


def format_timestamp(ts: int, tz: Optional[tzinfo] = None) -> Optional[str]:
    """
    'DD.MM.YYYY HH:MM', or None for the "not set" sentinel 0.
    """
    if not ts or ts <= 0:
        return None
    return datetime.fromtimestamp(ts, tz).strftime("%d.%m.%Y %H:%M")


def compact_course_name(course: Course) -> str:
    """
    Short display name: class prefixes like 'FA 23 1 ' and parenthesized
    suffixes removed, whitespace collapsed, cut at 48 characters.
    """
    raw = course.short_name.strip() or course.full_name.strip() or "Kurs"

    name = re.sub(r"^(FA|FI)\s*[_ ]*\d{2}\s*[_ ]*\d{0,2}\s*[_ ]*", "", raw, flags=re.IGNORECASE)
    name = re.sub(r"^(FA|FI)\s*[_ ]*", "", name, flags=re.IGNORECASE)
    name = re.sub(r"\s*\([^)]*\)\s*", " ", name)
    name = re.sub(r"\s+", " ", name).strip()

    if len(name) > 48:
        name = name[:45] + "…"
    return name or raw


def with_status(assignments: list[Assignment], now: int, due_soon_seconds: int = DUE_SOON_SECONDS) -> list[tuple[Assignment, AssignmentStatus]]:
    return [(a, assignment_status(a, now, due_soon_seconds)) for a in assignments]


def render_assignment_overview(items: list[tuple[Assignment, AssignmentStatus]], tz: Optional[tzinfo] = None) -> str:
    """
    Assignments grouped per course (sorted by compact name), each course
    sorted by due date with undated assignments last.
    """
    by_course: dict[int, list[tuple[Assignment, AssignmentStatus]]] = {}
    courses: dict[int, Course] = {}
    for a, st in items:
        by_course.setdefault(a.course.id, []).append((a, st))
        courses[a.course.id] = a.course

    lines = ["# 📚 Alle Upload-Hausaufgaben im Überblick", ""]

    if not by_course:
        lines.append("_Keine sichtbaren Aufgaben gefunden._")
        return "\n".join(lines) + "\n"

    for cid in sorted(by_course, key=lambda c: compact_course_name(courses[c]).casefold()):
        lines.append(f"**{compact_course_name(courses[cid])}**")

        entries = sorted(by_course[cid], key=lambda e: e[0].due_date if e[0].due_date > 0 else float("inf"))
        for a, st in entries:
            due = format_timestamp(a.due_date, tz)
            cut = format_timestamp(a.cutoff_date, tz)
            when = ""
            if due:
                when = f" (fällig am `{due}`)"
            elif cut:
                when = f" (schließt `{cut}`)"
            lines.append(f"• {a.name}{when} -> {STATUS_LABELS[st]}")
        lines.append("")

    return "\n".join(lines)


def describe_periods(periods: list[PeriodInfo]) -> str:
    """
    One line per lesson; this is the text handed to the generator.
    """
    lines = []
    for p in periods:
        lines.append(f"{p.weekday_name} {p.iso_timestamp} ({p.minutes_duration} min) {p.display_name}: {p.content}")
    return "\n".join(lines)


def fill_prompt(prompt: str, description: str) -> str:
    if PLACEHOLDER in prompt:
        return prompt.replace(PLACEHOLDER, description)
    return f"{prompt}\n\n{description}" if prompt else description


def _run_generator(generate: GenerateFn, prompt: str, description: str) -> tuple[Optional[str], Optional[str]]:
    try:
        result: Any = generate(fill_prompt(prompt, description), description)
    except Exception as e:  # the generator is third-party code
        logger.warning("Text generation raised: %s", e)
        return None, str(e)

    if not isinstance(result, dict) or not result.get("success"):
        error = result.get("error") if isinstance(result, dict) else "invalid generator result"
        logger.warning("Text generation failed: %s", error)
        return None, str(error or "unknown error")

    content = str(result.get("content") or "").strip()
    if not content:
        return None, "empty content"
    return content, None


def assemble_report(
    periods: list[PeriodInfo],
    assignments: list[Assignment],
    now: int,
    generate: Optional[GenerateFn] = None,
    prompt: str = "",
    tz: Optional[tzinfo] = None,
    due_soon_seconds: int = DUE_SOON_SECONDS,
) -> Report:
    report = Report(periods=list(periods), assignments=with_status(assignments, now, due_soon_seconds))
    description = describe_periods(report.periods)

    if generate is not None and report.periods:
        report.ai_summary, report.ai_error = _run_generator(generate, prompt, description)

    parts = ["# Stundenplan", "", description or "_Keine Stunden in dieser Woche._", ""]
    if report.ai_summary:
        parts += ["# Berichtsheft", "", report.ai_summary, ""]
    parts.append(render_assignment_overview(report.assignments, tz))

    report.text = "\n".join(parts)
    return report
