"""
CLI (Command Line Interface).

Quick terminal commands, mainly for checking a configuration:

    berichtsheft tenants <search text> [--locality CITY]
    berichtsheft timetable [--week YYYY-MM-DD]
    berichtsheft assignments [--plain] [--scrape]
    berichtsheft report [--week YYYY-MM-DD]

Settings and credentials come from config.json (see berichtsheft.config),
credentials can also be given through environment variables.

Note:
- output is plain text
- diagnostics go to the log (-v for debug output)
"""

from __future__ import annotations

import argparse
import logging
import time
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from berichtsheft.config import AppConfig, load_config
from berichtsheft.errors import AuthExhausted, BerichtsheftError, CredentialsInvalid
from berichtsheft.model import AttemptRecord
from berichtsheft.moodle import AssignmentAggregator, FetchReport
from berichtsheft.moodle_scrape import MoodleScraper
from berichtsheft.report import STATUS_LABELS, assemble_report, format_timestamp, render_assignment_overview, with_status
from berichtsheft.session import SessionAcquirer, connected
from berichtsheft.tenants import TenantResolver
from berichtsheft.timecodec import packed_datetime_to_iso, week_start
from berichtsheft.timetable import ScheduleFetcher, WeekBundle, to_period_info


def _parse_week(value: Optional[str]) -> date:
    """
    Monday of the given day's week; the current week if no day is given.
    """
    if not value:
        return week_start(date.today())
    try:
        return week_start(datetime.strptime(value.strip(), "%Y-%m-%d").date())
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value!r}")


def _print_attempts(attempts: list[AttemptRecord]) -> None:
    for a in attempts:
        outcome = "ok" if a.succeeded else (a.failure.value if a.failure else "failed")
        print(f"  {a.server}/{a.tenant_id}: {outcome} {a.message}".rstrip())


def _week_bundle(cfg: AppConfig, monday: date) -> WeekBundle:
    resolver = TenantResolver(cfg.untis)
    candidates = resolver.resolve(cfg.untis.search_term, cfg.untis.locality)

    acquirer = SessionAcquirer(cfg.untis, http=resolver.http)
    fetcher = ScheduleFetcher(cfg.untis, http=resolver.http)

    with connected(acquirer, cfg.untis.credentials(), candidates) as handle:
        bundle = fetcher.fetch_week_bundle(handle, monday, datetime.now())

    if bundle.defects:
        print(f"Warning: skipped {len(bundle.defects)} unreadable records.")
    for err in bundle.errors:
        print(f"Warning: {err.step}: {err.message}")
    return bundle


def _fetch_assignments(cfg: AppConfig) -> FetchReport:
    report = AssignmentAggregator(cfg.moodle).fetch_all(cfg.moodle.credentials())
    for err in report.errors:
        item = f" (course {err.item_id})" if err.item_id is not None else ""
        print(f"Warning: {err.step}{item}: {err.message}")
    return report


def _cmd_tenants(args: argparse.Namespace, cfg: AppConfig) -> int:
    """
    Show the ranked tenant candidates for a search text.
    """
    text = (args.text or "").strip()
    if not text:
        print("Please provide a search text.")
        return 1

    locality = args.locality if args.locality is not None else cfg.untis.locality
    candidates = TenantResolver(cfg.untis).resolve(text, locality)
    if not candidates:
        print("No results.")
        return 0

    for c in candidates:
        print(f"{c.tenant_id} | {c.server} | {c.display_name} | {c.address or '-'}")
    return 0


def _print_summary(bundle: WeekBundle) -> None:
    s = bundle.summary
    if s is None:
        return
    print()
    print(f"Week {s.week_range}: {s.total_lessons} lessons, {s.total_homework} homework, {s.total_exams} exams")
    print(f"Teachers: {', '.join(s.teachers) or '-'}")
    print(f"Subjects: {', '.join(s.subjects) or '-'}")
    for e in bundle.exams:
        print(f"Exam {packed_datetime_to_iso(e.packed_date, e.start_time)}  {e.subject}: {e.name}")


def _cmd_timetable(args: argparse.Namespace, cfg: AppConfig) -> int:
    monday = _parse_week(args.week)
    bundle = _week_bundle(cfg, monday)

    if not bundle.periods:
        print("No lessons this week.")
    for p in (to_period_info(p) for p in bundle.periods):
        print(f"{p.weekday_name:<10} {p.iso_timestamp} {p.minutes_duration:>3} min  {p.display_name}")

    _print_summary(bundle)
    return 0


def _cmd_assignments(args: argparse.Namespace, cfg: AppConfig) -> int:
    if args.scrape:
        scraper = MoodleScraper(cfg.moodle.base_url, timeout=cfg.moodle.timeout)
        items = scraper.fetch_upcoming(cfg.moodle.credentials())
        print("Scraped from rendered pages (low confidence):")
        for s in items:
            print(f"{s.course_name or '-'} | {s.name} | {s.due_text or '-'}")
        return 0

    report = _fetch_assignments(cfg)
    now = int(time.time())

    if not report.assignments:
        print("No assignments found.")
        return 0

    if args.plain:
        for a, st in with_status(report.assignments, now, cfg.moodle.due_soon_hours * 3600):
            due = format_timestamp(a.due_date) or "-"
            print(f"{a.course.short_name} | {a.name} | {due} | {STATUS_LABELS[st]}")
    else:
        print(render_assignment_overview(with_status(report.assignments, now, cfg.moodle.due_soon_hours * 3600)))
    return 0


def _cmd_report(args: argparse.Namespace, cfg: AppConfig) -> int:
    monday = _parse_week(args.week)
    periods = [to_period_info(p) for p in _week_bundle(cfg, monday).periods]
    assignments = _fetch_assignments(cfg).assignments if cfg.moodle.base_url else []

    report = assemble_report(
        periods,
        assignments,
        int(time.time()),
        due_soon_seconds=cfg.moodle.due_soon_hours * 3600,
    )
    print(report.text)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="berichtsheft", description="WebUntis / Moodle Berichtsheft helper")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Path to config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_tenants = sub.add_parser("tenants", help="Search the WebUntis school directory")
    p_tenants.add_argument("text", type=str, help="Search text (e.g. Heinrich-Hertz)")
    p_tenants.add_argument("--locality", "-l", type=str, default=None, help="Prefer schools in this city")

    p_tt = sub.add_parser("timetable", help="Show the timetable of one week")
    p_tt.add_argument("--week", "-w", type=str, default=None, help="Any day of the week (YYYY-MM-DD)")

    p_as = sub.add_parser("assignments", help="Show Moodle assignments with status")
    p_as.add_argument("--plain", action="store_true", help="One line per assignment")
    p_as.add_argument("--scrape", action="store_true", help="Read the calendar page instead of the web service")

    p_rep = sub.add_parser("report", help="Assemble the weekly report")
    p_rep.add_argument("--week", "-w", type=str, default=None, help="Any day of the week (YYYY-MM-DD)")

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handlers = {
        "tenants": _cmd_tenants,
        "timetable": _cmd_timetable,
        "assignments": _cmd_assignments,
        "report": _cmd_report,
    }
    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(2)

    try:
        cfg = load_config(args.config)
        raise SystemExit(handler(args, cfg))
    except argparse.ArgumentTypeError as e:
        print(str(e))
        raise SystemExit(2)
    except CredentialsInvalid as e:
        print(f"Login rejected: {e}")
        _print_attempts(e.attempts)
        raise SystemExit(1)
    except AuthExhausted as e:
        print(f"Login failed: {e}")
        _print_attempts(e.attempts)
        raise SystemExit(1)
    except BerichtsheftError as e:
        print(f"Error: {e}")
        raise SystemExit(1)
