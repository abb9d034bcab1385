"""
Tenant (school login name) resolution.

WebUntis routes a login by school login name and server, and neither is
obvious from the school's display name. The public school directory is
searched once; matches located in the configured locality are ranked
first. If the directory is unreachable or finds nothing, the configured
fallback candidates are returned instead.

resolve() never raises for "nothing found": an empty list is a valid
answer and the session layer decides what to do with it.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import requests

from berichtsheft import jsonrpc
from berichtsheft.config import UntisConfig
from berichtsheft.errors import RemoteError, TransportError
from berichtsheft.model import TenantCandidate


logger = logging.getLogger(__name__)


def _candidate_from_school(school: Any) -> Optional[TenantCandidate]:
    """
    Map one directory entry to a TenantCandidate, or None if it lacks
    the login name or the server.
    """
    if not isinstance(school, dict):
        return None

    tenant_id = str(school.get("loginName") or "").strip()
    server = str(school.get("server") or "").strip()
    if not tenant_id or not server:
        return None

    address = school.get("address")
    return TenantCandidate(
        display_name=str(school.get("displayName") or tenant_id).strip(),
        tenant_id=tenant_id,
        server=server,
        address=str(address).strip() if address else None,
    )


def rank_candidates(candidates: Iterable[TenantCandidate], locality: Optional[str]) -> list[TenantCandidate]:
    """
    Candidates whose address contains `locality` (case-insensitive) first;
    directory order is kept within both groups.
    """
    items = list(candidates)
    needle = (locality or "").strip().casefold()
    if not needle:
        return items

    def key(c: TenantCandidate) -> int:
        return 0 if needle in (c.address or "").casefold() else 1

    # sorted() is stable, so ties keep directory order
    return sorted(items, key=key)


class TenantResolver:
    def __init__(
        self,
        config: UntisConfig,
        http: Optional[requests.Session] = None,
        fallback: Optional[list[TenantCandidate]] = None,
    ) -> None:
        self.config = config
        self.http = http if http is not None else requests.Session()
        self.fallback = list(fallback) if fallback is not None else list(config.fallback_tenants)

    def search_directory(self, search_term: str) -> list[TenantCandidate]:
        """
        One directory query. Raises TransportError / RemoteError.
        """
        params = [
            {
                "search": search_term,
                "schoolname": "",
                "country": self.config.country,
                "student": True,
            }
        ]
        result = jsonrpc.call(
            self.http,
            self.config.directory_url,
            "searchSchool",
            params,
            request_id="schoolquery",
            timeout=self.config.timeout,
        )

        schools = result.get("schools", []) if isinstance(result, dict) else []
        if not isinstance(schools, list):
            return []

        out: list[TenantCandidate] = []
        for school in schools:
            cand = _candidate_from_school(school)
            if cand is None:
                logger.debug("Skipping directory entry without loginName/server")
                continue
            out.append(cand)
        return out

    def resolve(self, search_term: str, locality_filter: Optional[str] = None) -> list[TenantCandidate]:
        """
        Ranked tenant candidates for `search_term`; falls back to the
        configured list when the directory fails or returns nothing.
        """
        term = (search_term or "").strip()
        found: list[TenantCandidate] = []

        if term:
            try:
                found = self.search_directory(term)
                logger.info("Directory returned %d schools for %r", len(found), term)
            except TransportError as e:
                logger.warning("School directory unreachable: %s", e)
            except RemoteError as e:
                logger.warning("School directory rejected query %r: %s", term, e)

        if not found:
            if self.fallback:
                logger.info("Using %d configured fallback tenants", len(self.fallback))
            return list(self.fallback)

        return rank_candidates(found, locality_filter)
