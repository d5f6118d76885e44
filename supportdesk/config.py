"""Utilities for loading and working with SupportDesk configuration."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

DEFAULT_CONFIG_NAME = "config.json"

DEFAULT_SECRET_KEY = "dev-secret-key-change-me"
DEFAULT_TOKEN_MAX_AGE = 60 * 60 * 24 * 7
DEFAULT_LANGUAGE = "en"

DEFAULT_PRIORITIES: List[str] = ["low", "medium", "high"]
DEFAULT_STATUSES: List[str] = ["needs_support", "in_progress", "in_review", "hold", "done"]
DEFAULT_TICKET_TYPES: List[str] = [
    "service",
    "incident",
    "feature",
    "bug",
    "maintenance",
    "access",
    "feedback",
]
COMPLETED_STATUS = "done"


DEFAULT_CONFIG: Dict[str, Any] = {
    "secret_key": DEFAULT_SECRET_KEY,
    "database": {"uri": "sqlite:///supportdesk.db"},
    "base_url": "http://localhost:3000",
    "auth": {
        "token_max_age": DEFAULT_TOKEN_MAX_AGE,
        "allow_external_registration": True,
    },
    "roles": {"enabled": False},
    "tickets": {
        "priorities": list(DEFAULT_PRIORITIES),
        "statuses": list(DEFAULT_STATUSES),
        "types": list(DEFAULT_TICKET_TYPES),
        "default_priority": "low",
        "default_status": "needs_support",
        "default_type": "service",
    },
    "notifications": {"enabled": True, "timeout": 10},
    "analytics": {"enabled": False},
    "logging": {"level": "INFO"},
}


@dataclass
class AuthConfig:
    """Token lifetime and self-service registration switches."""

    token_max_age: int = DEFAULT_TOKEN_MAX_AGE
    allow_external_registration: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_max_age": int(self.token_max_age),
            "allow_external_registration": bool(self.allow_external_registration),
        }


@dataclass
class RolesConfig:
    """Whether role-based permission checks are enforced."""

    enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": bool(self.enabled)}


@dataclass
class TicketConfig:
    """Allowed ticket vocabularies and the defaults applied on creation."""

    priorities: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITIES))
    statuses: List[str] = field(default_factory=lambda: list(DEFAULT_STATUSES))
    types: List[str] = field(default_factory=lambda: list(DEFAULT_TICKET_TYPES))
    default_priority: str = "low"
    default_status: str = "needs_support"
    default_type: str = "service"

    def normalize_priority(self, value: Any) -> Optional[str]:
        return _match_choice(value, self.priorities)

    def normalize_status(self, value: Any) -> Optional[str]:
        return _match_choice(value, self.statuses)

    def normalize_type(self, value: Any) -> Optional[str]:
        return _match_choice(value, self.types)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priorities": list(self.priorities),
            "statuses": list(self.statuses),
            "types": list(self.types),
            "default_priority": self.default_priority,
            "default_status": self.default_status,
            "default_type": self.default_type,
        }


@dataclass
class NotificationConfig:
    """Outbound email switches."""

    enabled: bool = True
    timeout: int = 10

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": bool(self.enabled), "timeout": int(self.timeout)}


@dataclass
class AnalyticsConfig:
    enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": bool(self.enabled)}


@dataclass
class LoggingConfig:
    level: str = "INFO"

    def numeric_level(self) -> int:
        value = logging.getLevelName(str(self.level).upper())
        return value if isinstance(value, int) else logging.INFO

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level}


@dataclass
class AppConfig:
    """Runtime configuration for the SupportDesk application."""

    secret_key: str
    database_uri: str
    base_url: str
    auth: AuthConfig
    roles: RolesConfig
    tickets: TicketConfig
    notifications: NotificationConfig
    analytics: AnalyticsConfig
    logging: LoggingConfig
    source_path: Optional[Path] = None

    @property
    def roles_enabled(self) -> bool:
        return self.roles.enabled

    def to_json_dict(self) -> Dict[str, Any]:
        """Return a JSON-compatible dictionary representing the configuration."""

        return {
            "secret_key": self.secret_key,
            "database": {"uri": self.database_uri},
            "base_url": self.base_url,
            "auth": self.auth.to_dict(),
            "roles": self.roles.to_dict(),
            "tickets": self.tickets.to_dict(),
            "notifications": self.notifications.to_dict(),
            "analytics": self.analytics.to_dict(),
            "logging": self.logging.to_dict(),
        }


def _match_choice(value: Any, choices: Iterable[str]) -> Optional[str]:
    text = str(value or "").strip().lower()
    if not text:
        return None
    for choice in choices:
        if choice.lower() == text:
            return choice
    return None


def _coerce_non_negative_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if number < 0:
        return None
    return number


def _coerce_string_list(raw_values: Any) -> List[str]:
    if raw_values is None:
        return []

    if isinstance(raw_values, Mapping):
        iterable = raw_values.values()
    elif isinstance(raw_values, Iterable) and not isinstance(raw_values, (str, bytes)):
        iterable = raw_values
    else:
        iterable = [raw_values]

    values: List[str] = []
    for value in iterable:
        text = str(value or "").strip().lower()
        if not text or text in values:
            continue
        values.append(text)
    return values


def coerce_bool(value: Any, *, default: bool = False) -> bool:
    """Return a best-effort boolean interpretation of ``value``."""

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        return default

    if value is None:
        return default

    if isinstance(value, (int, float)):
        return bool(value)

    return default


def _merge_dict(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), MutableMapping):
            base[key] = _merge_dict(base[key], value)
        else:
            base[key] = value
    return base


def _resolve_database_uri(raw_uri: str, base_path: Path) -> str:
    if raw_uri.startswith("sqlite:///") and not raw_uri.startswith("sqlite:////"):
        relative_path = raw_uri.replace("sqlite:///", "", 1)
        db_path = Path(relative_path)
        if not db_path.is_absolute():
            db_path = (base_path / db_path).resolve()
        return f"sqlite:///{db_path}"
    return raw_uri


def _section(merged: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = merged.get(name)
    return value if isinstance(value, Mapping) else {}


def _build_ticket_config(raw: Mapping[str, Any]) -> TicketConfig:
    priorities = _coerce_string_list(raw.get("priorities")) or list(DEFAULT_PRIORITIES)
    statuses = _coerce_string_list(raw.get("statuses")) or list(DEFAULT_STATUSES)
    types = _coerce_string_list(raw.get("types")) or list(DEFAULT_TICKET_TYPES)
    if COMPLETED_STATUS not in statuses:
        statuses.append(COMPLETED_STATUS)

    default_priority = _match_choice(raw.get("default_priority"), priorities) or priorities[0]
    default_status = _match_choice(raw.get("default_status"), statuses) or statuses[0]
    default_type = _match_choice(raw.get("default_type"), types) or types[0]

    return TicketConfig(
        priorities=priorities,
        statuses=statuses,
        types=types,
        default_priority=default_priority,
        default_status=default_status,
        default_type=default_type,
    )


def load_config(config_path: Optional[os.PathLike[str] | str] = None) -> AppConfig:
    """Load application configuration from JSON, applying defaults as needed."""

    provided_path = Path(config_path) if config_path else None
    env_path = Path(os.environ["SUPPORTDESK_CONFIG"]) if "SUPPORTDESK_CONFIG" in os.environ else None

    default_paths: List[Optional[Path]] = []
    if provided_path is None and env_path is None:
        default_paths.append(Path.cwd() / DEFAULT_CONFIG_NAME)
        default_paths.append(Path(__file__).resolve().parent.parent / DEFAULT_CONFIG_NAME)

    search_paths = [provided_path, env_path, *default_paths]

    config_file: Optional[Path] = None
    for candidate in search_paths:
        if candidate and candidate.exists():
            config_file = candidate
            break

    source_path: Optional[Path]
    if config_file:
        with config_file.open("r", encoding="utf-8") as fh:
            loaded_data = json.load(fh)
        base_path = config_file.parent
        source_path = config_file
    else:
        loaded_data = {}
        fallback_path = provided_path or env_path
        if fallback_path is None:
            fallback_path = default_paths[0] if default_paths else Path.cwd() / DEFAULT_CONFIG_NAME
        source_path = fallback_path
        base_path = source_path.parent

    if source_path is not None:
        source_path = source_path.resolve()

    merged: Dict[str, Any] = json.loads(json.dumps(DEFAULT_CONFIG))  # deep copy
    _merge_dict(merged, loaded_data)

    auth_config = _section(merged, "auth")
    roles_config = _section(merged, "roles")
    notifications_config = _section(merged, "notifications")
    analytics_config = _section(merged, "analytics")
    logging_config = _section(merged, "logging")

    token_max_age = _coerce_non_negative_int(auth_config.get("token_max_age"))
    if not token_max_age:
        token_max_age = DEFAULT_TOKEN_MAX_AGE

    timeout = _coerce_non_negative_int(notifications_config.get("timeout"))
    if not timeout:
        timeout = int(DEFAULT_CONFIG["notifications"]["timeout"])

    raw_uri = os.environ.get("SUPPORTDESK_DATABASE_URI") or str(
        _section(merged, "database").get("uri", "sqlite:///supportdesk.db")
    )
    database_uri = _resolve_database_uri(raw_uri, base_path)
    secret_key = os.environ.get("SUPPORTDESK_SECRET_KEY") or str(merged.get("secret_key", DEFAULT_SECRET_KEY))

    base_url = str(merged.get("base_url") or DEFAULT_CONFIG["base_url"]).strip().rstrip("/")

    level = str(logging_config.get("level") or "INFO").strip().upper() or "INFO"

    return AppConfig(
        secret_key=secret_key,
        database_uri=database_uri,
        base_url=base_url,
        auth=AuthConfig(
            token_max_age=token_max_age,
            allow_external_registration=coerce_bool(
                auth_config.get("allow_external_registration"), default=True
            ),
        ),
        roles=RolesConfig(enabled=coerce_bool(roles_config.get("enabled"), default=False)),
        tickets=_build_ticket_config(_section(merged, "tickets")),
        notifications=NotificationConfig(
            enabled=coerce_bool(notifications_config.get("enabled"), default=True),
            timeout=timeout,
        ),
        analytics=AnalyticsConfig(enabled=coerce_bool(analytics_config.get("enabled"), default=False)),
        logging=LoggingConfig(level=level),
        source_path=source_path,
    )


def save_config(config: AppConfig, path: Optional[os.PathLike[str] | str] = None) -> Path:
    """Persist ``config`` to disk and return the resolved path used."""

    target_path = Path(path) if path is not None else config.source_path
    if target_path is None:
        raise ValueError("Configuration path is unknown; provide a destination when saving.")

    target_path = target_path.resolve()
    target_path.parent.mkdir(parents=True, exist_ok=True)

    payload = config.to_json_dict()
    with target_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.write("\n")

    config.source_path = target_path
    return target_path
