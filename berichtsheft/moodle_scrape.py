"""
Low-confidence Moodle source: HTML scraping (HTML -> ScrapedAssignment).

Some school Moodles disable the mobile web service, so login/token.php
answers with an HTML page instead of a token. As a last resort the
"upcoming events" calendar page can be read like a browser would:

- log in through the normal login form (with its logintoken)
- fetch /calendar/view.php?view=upcoming
- extract one ScrapedAssignment per rendered event

This depends on undocumented page structure. Results are always marked
confidence="low" and are never mixed into the Assignment list of the
official API.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from berichtsheft.errors import CredentialsInvalid, TransportError
from berichtsheft.model import Credentials, ScrapedAssignment
from berichtsheft.moodle import clean_password


logger = logging.getLogger(__name__)

LOGIN_PATH = "/login/index.php"
UPCOMING_PATH = "/calendar/view.php?view=upcoming"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _login_form(soup: BeautifulSoup):
    return soup.select_one("form#login") or soup.select_one("form[action*='login/index.php']")


def extract_logintoken(html: str) -> Optional[str]:
    """
    Return the hidden logintoken of the login form, if there is one.
    """
    soup = BeautifulSoup(html, "html.parser")
    form = _login_form(soup)
    if not form:
        return None
    inp = form.select_one("input[name='logintoken']")
    if not inp:
        return None
    value = inp.get("value")
    return value.strip() if value else None


def parse_upcoming_html(html: str, base_url: str = "") -> List[ScrapedAssignment]:
    """
    Parse the rendered "upcoming events" page.

    Each event is a div.event with the title in h3.name. The date line
    is the row carrying the clock icon; the course is the link to
    course/view.php; the activity link points into /mod/.
    """
    soup = BeautifulSoup(html, "html.parser")
    out: List[ScrapedAssignment] = []

    for ev in soup.select("div.event"):
        name_el = ev.select_one(".name") or ev.find(["h3", "h4"])
        if not name_el:
            continue
        name = name_el.get_text(" ", strip=True)
        if not name:
            continue

        course_name = ""
        course_link = ev.select_one("a[href*='course/view.php']")
        if course_link:
            course_name = course_link.get_text(" ", strip=True)

        due_text = ""
        for row in ev.select(".description .row"):
            if row.select_one(".fa-clock-o, .fa-clock, [title='When'], [title='Wann']"):
                due_text = row.get_text(" ", strip=True)
                break
        if not due_text:
            first_row = ev.select_one(".description .row")
            if first_row:
                due_text = first_row.get_text(" ", strip=True)

        url: Optional[str] = None
        link = ev.select_one("a.card-link") or ev.select_one("a[href*='/mod/']")
        if link and link.get("href"):
            url = urljoin(base_url + "/", link["href"]) if base_url else link["href"]

        out.append(ScrapedAssignment(name=name, course_name=course_name, due_text=due_text, url=url))

    return out


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class MoodleScraper:
    def __init__(self, base_url: str, http: Optional[requests.Session] = None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout

    def _get(self, path: str) -> requests.Response:
        try:
            resp = self.http.get(self.base_url + path, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"GET {path}: {e}") from e
        return resp

    def login(self, credentials: Credentials) -> None:
        page = self._get(LOGIN_PATH)
        token = extract_logintoken(page.text)

        form = {"username": credentials.username, "password": clean_password(credentials.secret)}
        if token:
            form["logintoken"] = token

        try:
            resp = self.http.post(self.base_url + LOGIN_PATH, data=form, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"POST {LOGIN_PATH}: {e}") from e

        # still looking at the login form -> the login did not go through
        soup = BeautifulSoup(resp.text, "html.parser")
        if _login_form(soup) is not None or soup.select_one("#loginerrormessage, .loginerrors"):
            raise CredentialsInvalid("Moodle login form rejected the credentials")
        logger.info("Logged into %s via login form", self.base_url)

    def fetch_upcoming(self, credentials: Credentials) -> List[ScrapedAssignment]:
        self.login(credentials)
        page = self._get(UPCOMING_PATH)
        items = parse_upcoming_html(page.text, self.base_url)
        logger.info("Scraped %d upcoming events (low confidence)", len(items))
        return items
