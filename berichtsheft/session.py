"""
Session acquisition against WebUntis.

Given credentials and an ordered list of tenant candidates, try one
authenticate call per candidate until one succeeds.

Rules:
- candidates are tried strictly one after another, never in parallel
  (parallel logins for one account trip the remote lockout counters)
- an explicit tenant/server hint in the credentials is tried first
- the first success ends the loop, remaining candidates are not touched
- a credentials rejection ends the loop as well: another tenant name
  cannot fix a wrong password
- tenant rejections and transport errors move on to the next candidate

Every attempt is recorded as an AttemptRecord; the records travel with
the resulting SessionHandle or with the raised AuthExhausted /
CredentialsInvalid.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

import requests

from berichtsheft import jsonrpc
from berichtsheft.config import UntisConfig
from berichtsheft.errors import (
    AuthExhausted,
    BerichtsheftError,
    Cancelled,
    CredentialsInvalid,
    RemoteError,
    TenantMismatch,
    TenantResolutionEmpty,
    TransportError,
)
from berichtsheft.model import AttemptRecord, Credentials, FailureKind, SessionHandle, TenantCandidate


logger = logging.getLogger(__name__)


def endpoint_url(server: str) -> str:
    return f"https://{server}/WebUntis/jsonrpc.do"


class SessionAcquirer:
    def __init__(
        self,
        config: UntisConfig,
        http: Optional[requests.Session] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.http = http if http is not None else requests.Session()
        self.clock = clock if clock is not None else (lambda: datetime.now(timezone.utc))

    def candidate_order(self, credentials: Credentials, candidates: list[TenantCandidate]) -> list[TenantCandidate]:
        """
        Hints first, then `candidates`; duplicates are dropped, keeping the
        earliest position.

        A tenant_hint becomes one extra candidate (on server_hint or the
        default server). A server_hint alone moves every candidate's tenant
        onto that server first, before the candidates as resolved.
        """
        ordered: list[TenantCandidate] = []

        tenant_hint = (credentials.tenant_hint or "").strip()
        server_hint = (credentials.server_hint or "").strip()
        if tenant_hint:
            server = server_hint or self.config.default_server
            ordered.append(TenantCandidate(display_name=tenant_hint, tenant_id=tenant_hint, server=server))
        elif server_hint:
            ordered.extend(replace(c, server=server_hint) for c in candidates)

        ordered.extend(candidates)

        seen: set[tuple[str, str]] = set()
        out: list[TenantCandidate] = []
        for c in ordered:
            k = (c.tenant_id.casefold(), c.server.casefold())
            if k in seen:
                continue
            seen.add(k)
            out.append(c)
        return out

    def attempt(self, credentials: Credentials, candidate: TenantCandidate) -> SessionHandle:
        """
        One authenticate request. Raises CredentialsInvalid, TenantMismatch,
        RemoteError or TransportError.
        """
        result = jsonrpc.call(
            self.http,
            endpoint_url(candidate.server),
            "authenticate",
            {
                "user": credentials.username,
                "password": credentials.secret,
                "client": self.config.client_name,
            },
            request_id="auth",
            timeout=self.config.timeout,
            params_query={"school": candidate.tenant_id},
        )

        session_id = result.get("sessionId") if isinstance(result, dict) else None
        if not session_id:
            raise TransportError("authenticate: response without sessionId")

        return SessionHandle(
            opaque_token=str(session_id),
            server=candidate.server,
            tenant_id=candidate.tenant_id,
            issued_at=self.clock(),
            person_id=result.get("personId"),
            person_type=result.get("personType"),
        )

    def acquire(
        self,
        credentials: Credentials,
        candidates: list[TenantCandidate],
        cancel: Optional[threading.Event] = None,
    ) -> SessionHandle:
        order = self.candidate_order(credentials, candidates)
        if not order:
            raise TenantResolutionEmpty("No tenant candidates to try; supply a tenant hint")

        attempts: list[AttemptRecord] = []

        for cand in order:
            if cancel is not None and cancel.is_set():
                logger.info("Acquisition cancelled after %d attempts", len(attempts))
                raise Cancelled(f"Cancelled after {len(attempts)} attempts")

            logger.info("Trying tenant %r on %s", cand.tenant_id, cand.server)
            try:
                handle = self.attempt(credentials, cand)
            except CredentialsInvalid as e:
                attempts.append(
                    AttemptRecord(cand.tenant_id, cand.server, False, FailureKind.CREDENTIALS_INVALID, str(e))
                )
                logger.warning("Credentials rejected by %s (tenant %r); not trying further tenants", cand.server, cand.tenant_id)
                raise CredentialsInvalid(str(e), e.code, attempts) from e
            except TenantMismatch as e:
                attempts.append(AttemptRecord(cand.tenant_id, cand.server, False, FailureKind.TENANT_MISMATCH, str(e)))
                logger.info("Tenant %r rejected by %s: %s", cand.tenant_id, cand.server, e)
                continue
            except RemoteError as e:
                # any other explicit refusal is tied to this tenant/server pair
                attempts.append(AttemptRecord(cand.tenant_id, cand.server, False, FailureKind.TENANT_MISMATCH, str(e)))
                logger.info("Remote error for tenant %r on %s: %s", cand.tenant_id, cand.server, e)
                continue
            except TransportError as e:
                attempts.append(AttemptRecord(cand.tenant_id, cand.server, False, FailureKind.TRANSPORT_ERROR, str(e)))
                logger.warning("Transport error for tenant %r on %s: %s", cand.tenant_id, cand.server, e)
                continue

            attempts.append(AttemptRecord(cand.tenant_id, cand.server, True))
            handle.attempts = attempts
            logger.info("Authenticated with tenant %r on %s", cand.tenant_id, cand.server)
            return handle

        tried = ", ".join(f"{a.server}/{a.tenant_id}" for a in attempts)
        raise AuthExhausted(f"Authentication failed for all {len(attempts)} candidates: {tried}", attempts)

    def release(self, handle: SessionHandle) -> None:
        """
        Log out. Best effort: failures are logged, the handle is unusable
        afterwards either way.
        """
        try:
            jsonrpc.call(
                self.http,
                endpoint_url(handle.server),
                "logout",
                {},
                request_id="logout",
                timeout=self.config.timeout,
                params_query={"school": handle.tenant_id},
                cookies={"JSESSIONID": handle.opaque_token},
            )
            logger.info("Logged out from %s", handle.server)
        except BerichtsheftError as e:
            logger.warning("Logout from %s failed: %s", handle.server, e)


@contextmanager
def connected(
    acquirer: SessionAcquirer,
    credentials: Credentials,
    candidates: list[TenantCandidate],
    cancel: Optional[threading.Event] = None,
) -> Iterator[SessionHandle]:
    """
    Acquire a session for the duration of a `with` block, then release it.
    """
    handle = acquirer.acquire(credentials, candidates, cancel=cancel)
    try:
        yield handle
    finally:
        acquirer.release(handle)
