"""
JSON-RPC 2.0 over HTTP (requests).

Used for the WebUntis school directory and for every call against a
school's /WebUntis/jsonrpc.do endpoint. This is the single place where
HTTP outcomes are mapped onto the error taxonomy:

- connection problems, timeouts, non-2xx without an error payload and
  unparseable bodies -> TransportError
- an explicit JSON-RPC "error" object -> CredentialsInvalid,
  TenantMismatch, NotConnected or RemoteError
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from berichtsheft.errors import CredentialsInvalid, NotConnected, RemoteError, TenantMismatch, TransportError


logger = logging.getLogger(__name__)

USER_AGENT = "berichtsheft/0.1 (+python-requests)"

# WebUntis error codes
CODE_INVALID_SCHOOLNAME = -8500
CODE_BAD_CREDENTIALS = -8504
CODE_NOT_AUTHENTICATED = -8520

_HTML_RE = re.compile(r"</?(html|head|body|title)", re.IGNORECASE)


def looks_like_html(text: str) -> bool:
    """
    True if a body that should have been JSON is a rendered page
    (usually an SSO redirect or a disabled service).
    """
    return bool(_HTML_RE.search(text or ""))


def classify_error(error: Any) -> RemoteError:
    """
    Map a JSON-RPC error object onto the matching exception instance.
    """
    if not isinstance(error, dict):
        return RemoteError(f"Remote error: {error!r}")

    code = error.get("code")
    message = str(error.get("message") or "Unknown remote error")
    lowered = message.lower()

    if code == CODE_BAD_CREDENTIALS or "invalid credentials" in lowered or "bad credentials" in lowered:
        return CredentialsInvalid(message, code)
    if code == CODE_INVALID_SCHOOLNAME or "invalid schoolname" in lowered:
        return TenantMismatch(message, code)
    if code == CODE_NOT_AUTHENTICATED or "not authenticated" in lowered:
        return NotConnected(message, code)
    return RemoteError(message, code)


def call(
    http: requests.Session,
    url: str,
    method: str,
    params: Any = None,
    *,
    request_id: str = "berichtsheft",
    timeout: float = 10.0,
    params_query: Optional[dict[str, str]] = None,
    cookies: Optional[dict[str, str]] = None,
) -> Any:
    """
    Perform one JSON-RPC request and return its "result".
    """
    payload = {
        "id": request_id,
        "method": method,
        "params": params if params is not None else {},
        "jsonrpc": "2.0",
    }
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}

    try:
        resp = http.post(
            url,
            json=payload,
            params=params_query,
            headers=headers,
            cookies=cookies,
            timeout=timeout,
        )
    except requests.Timeout as e:
        raise TransportError(f"{method}: timeout after {timeout}s") from e
    except requests.RequestException as e:
        raise TransportError(f"{method}: {e}") from e

    try:
        data = resp.json()
    except ValueError:
        raw = resp.text or ""
        if looks_like_html(raw):
            raise TransportError(f"{method}: returned HTML instead of JSON", resp.status_code)
        raise TransportError(f"{method}: non-JSON response ({resp.status_code}): {raw[:200]}", resp.status_code)

    if isinstance(data, dict) and data.get("error"):
        raise classify_error(data["error"])

    if not resp.ok:
        raise TransportError(f"{method}: HTTP {resp.status_code}", resp.status_code)

    if not isinstance(data, dict) or "result" not in data:
        raise TransportError(f"{method}: response has neither result nor error", resp.status_code)

    return data["result"]
