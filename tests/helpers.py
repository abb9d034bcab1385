"""
Fake HTTP objects standing in for requests.Session / requests.Response.

The fake session hands every request to a `handler(method, url, kwargs)`
callable, which returns a FakeResponse or raises (e.g. requests.Timeout).
All requests are recorded in `calls` so tests can count attempts.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import requests


_NO_JSON = object()


class FakeResponse:
    def __init__(self, json_data: Any = _NO_JSON, status_code: int = 200, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._json = json_data
        if text is not None:
            self.text = text
        elif json_data is not _NO_JSON:
            self.text = json.dumps(json_data)
        else:
            self.text = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._json is _NO_JSON:
            raise ValueError("No JSON object could be decoded")
        return self._json

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, handler: Callable[[str, str, dict], FakeResponse]) -> None:
        self.handler = handler
        self.calls: list[tuple[str, str, dict]] = []

    def _request(self, method: str, url: str, kwargs: dict) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._request("POST", url, kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._request("GET", url, kwargs)


def rpc_result(result: Any) -> FakeResponse:
    return FakeResponse({"jsonrpc": "2.0", "id": "x", "result": result})


def rpc_error(code: int, message: str) -> FakeResponse:
    return FakeResponse({"jsonrpc": "2.0", "id": "x", "error": {"code": code, "message": message}})
