"""
Configuration.

All settings live in one AppConfig value that is passed into each
component explicitly. load_config() reads the JSON file format of the
old web app (config.json) and lets environment variables override the
credentials, so passwords do not have to sit in the file.

Example config.json:

    {
      "untis": {
        "search_term": "Heinrich-Hertz",
        "locality": "Düsseldorf",
        "username": "max.mustermann",
        "fallback_tenants": [
          {"tenant_id": "heinrich-hertz-schule", "server": "ajax.webuntis.com"}
        ]
      },
      "moodle": {"base_url": "https://moodle.example.org", "username": "max"}
    }

Fallback tenants may also use the camelCase keys of the web app
(tenantId, displayName) or be plain tenant-id strings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from berichtsheft.errors import ConfigError
from berichtsheft.model import Credentials, TenantCandidate


DEFAULT_DIRECTORY_URL = "https://mobile.webuntis.com/ms/schoolquery2"
DEFAULT_SERVER = "ajax.webuntis.com"


@dataclass
class UntisConfig:
    directory_url: str = DEFAULT_DIRECTORY_URL
    country: str = "DE"
    default_server: str = DEFAULT_SERVER
    client_name: str = "berichtsheft"
    search_term: str = ""
    locality: Optional[str] = None
    fallback_tenants: list[TenantCandidate] = field(default_factory=list)
    username: str = ""
    password: str = ""
    tenant_hint: Optional[str] = None
    server_hint: Optional[str] = None
    timeout: float = 10.0
    retry_backoff: float = 1.0

    def credentials(self) -> Credentials:
        return Credentials(
            username=self.username,
            secret=self.password,
            tenant_hint=self.tenant_hint,
            server_hint=self.server_hint,
        )


@dataclass
class MoodleConfig:
    base_url: str = ""
    service: str = "moodle_mobile_app"
    username: str = ""
    password: str = ""
    timeout: float = 10.0
    due_soon_hours: int = 48

    def credentials(self) -> Credentials:
        return Credentials(username=self.username, secret=self.password)


@dataclass
class AppConfig:
    untis: UntisConfig = field(default_factory=UntisConfig)
    moodle: MoodleConfig = field(default_factory=MoodleConfig)


def _default_config_path() -> Path:
    """
    Return ./config.json, relative to the current working directory.
    """
    return Path.cwd() / "config.json"


def _entry_value(entry: dict[str, Any], *keys: str) -> Any:
    """
    First of `keys` present in `entry` (snake_case or the camelCase of the web app).
    """
    for k in keys:
        if entry.get(k) is not None:
            return entry[k]
    return None


def _fallback_tenants(raw: Any, default_server: str) -> list[TenantCandidate]:
    if not isinstance(raw, list):
        raise ConfigError("untis.fallback_tenants must be a list")

    out: list[TenantCandidate] = []
    for entry in raw:
        # plain strings are accepted as tenant ids on the default server
        if isinstance(entry, str):
            tenant_id = entry.strip()
            if tenant_id:
                out.append(TenantCandidate(display_name=tenant_id, tenant_id=tenant_id, server=default_server))
            continue
        if not isinstance(entry, dict):
            raise ConfigError(f"Invalid fallback tenant entry: {entry!r}")

        tenant_id = _entry_value(entry, "tenant_id", "tenantId")
        server = _entry_value(entry, "server")
        display_name = _entry_value(entry, "display_name", "displayName")
        address = _entry_value(entry, "address")
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ConfigError(f"Invalid fallback tenant entry: {entry!r}")
        for value in (server, display_name, address):
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"Invalid fallback tenant entry: {entry!r}")

        tenant_id = tenant_id.strip()
        out.append(
            TenantCandidate(
                display_name=display_name or tenant_id,
                tenant_id=tenant_id,
                server=server or default_server,
                address=address,
            )
        )
    return out


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"Config section '{name}' must be an object")
    return section


def _copy_strings(section: dict[str, Any], target: Any, keys: tuple[str, ...], prefix: str) -> None:
    """
    Copy string settings onto `target`. null is allowed for settings
    that default to None.
    """
    for key in keys:
        if key not in section:
            continue
        value = section[key]
        if value is None and getattr(target, key) is None:
            continue
        if not isinstance(value, str):
            raise ConfigError(f"{prefix}.{key} must be a string, got {type(value).__name__}")
        setattr(target, key, value)


def config_from_dict(data: dict[str, Any], env: Optional[dict[str, str]] = None) -> AppConfig:
    """
    Build an AppConfig from parsed JSON plus environment overrides.
    """
    env = os.environ if env is None else env

    u = _section(data, "untis")
    m = _section(data, "moodle")

    untis = UntisConfig()
    _copy_strings(
        u,
        untis,
        (
            "directory_url",
            "country",
            "default_server",
            "client_name",
            "search_term",
            "locality",
            "username",
            "password",
            "tenant_hint",
            "server_hint",
        ),
        "untis",
    )
    try:
        if "timeout" in u:
            untis.timeout = float(u["timeout"])
        if "retry_backoff" in u:
            untis.retry_backoff = float(u["retry_backoff"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid untis timing value: {e}") from e
    untis.fallback_tenants = _fallback_tenants(u.get("fallback_tenants", []), untis.default_server)

    moodle = MoodleConfig()
    _copy_strings(m, moodle, ("base_url", "service", "username", "password"), "moodle")
    try:
        if "timeout" in m:
            moodle.timeout = float(m["timeout"])
        if "due_soon_hours" in m:
            moodle.due_soon_hours = int(m["due_soon_hours"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid moodle timing value: {e}") from e
    moodle.base_url = str(moodle.base_url).rstrip("/")

    untis.username = env.get("BERICHTSHEFT_UNTIS_USERNAME", untis.username)
    untis.password = env.get("BERICHTSHEFT_UNTIS_PASSWORD", untis.password)
    moodle.username = env.get("BERICHTSHEFT_MOODLE_USERNAME", moodle.username)
    moodle.password = env.get("BERICHTSHEFT_MOODLE_PASSWORD", moodle.password)

    return AppConfig(untis=untis, moodle=moodle)


def load_config(path: str | Path | None = None, env: Optional[dict[str, str]] = None) -> AppConfig:
    """
    Load config.json. A missing file yields the defaults (plus env overrides);
    an unreadable or malformed file raises ConfigError.
    """
    config_path = Path(path) if path is not None else _default_config_path()

    if not config_path.exists():
        return config_from_dict({}, env)

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    return config_from_dict(data, env)
