"""
Error taxonomy.

Two rules drive the split between the classes below:
- "remote said no" (CredentialsInvalid, TenantMismatch, RemoteError)
  and "we could not reach remote" (TransportError) are never conflated,
  because they lead to different retry decisions
- acquisition failures are hard errors, fetch failures are reported
  next to partial results (PartialFetchFailure, NormalizationDefect)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class BerichtsheftError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(BerichtsheftError):
    pass


class TenantResolutionEmpty(BerichtsheftError):
    """
    No tenant candidate could be found and no fallback is configured.
    The caller can recover by passing an explicit tenant hint.
    """


class TransportError(BerichtsheftError):
    """
    Network failure, timeout, non-2xx status or an unparseable body.
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RemoteError(BerichtsheftError):
    """
    The remote answered with an explicit error payload.
    """

    def __init__(self, message: str, code: Any = None) -> None:
        super().__init__(message)
        self.code = code


class CredentialsInvalid(RemoteError):
    """
    Username or password rejected. Trying other tenants cannot fix this.
    """

    def __init__(self, message: str, code: Any = None, attempts: Optional[list] = None) -> None:
        super().__init__(message, code)
        self.attempts = attempts if attempts is not None else []


class TenantMismatch(RemoteError):
    pass


class NotConnected(RemoteError):
    pass


class AuthExhausted(BerichtsheftError):
    """
    Every candidate failed. `attempts` holds one AttemptRecord per candidate,
    in the order they were tried.
    """

    def __init__(self, message: str, attempts: list) -> None:
        super().__init__(message)
        self.attempts = attempts


class Cancelled(BerichtsheftError):
    pass


class FetchFailed(BerichtsheftError):
    pass


@dataclass
class PartialFetchFailure:
    """
    Non-fatal warning: one step of a multi-step fetch failed.
    """

    step: str
    message: str
    item_id: Optional[int] = None


@dataclass
class NormalizationDefect:
    """
    A raw record that could not be mapped even with placeholders.
    """

    reason: str
    raw: Any = None
