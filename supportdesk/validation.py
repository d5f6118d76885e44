"""Request payload helpers shared by the API blueprints."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping

from flask import request

from .errors import ValidationError


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def json_body() -> Dict[str, Any]:
    """Return the JSON object sent with the request (empty when absent)."""

    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def optional_text(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(data: Mapping[str, Any], key: str, message: str) -> str:
    text = optional_text(data, key)
    if text is None:
        raise ValidationError(message, field=key)
    return text


def is_valid_email(value: str | None) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value or "") is not None


def require_email(data: Mapping[str, Any], key: str, message: str) -> str:
    email = require_text(data, key, message)
    if not is_valid_email(email):
        raise ValidationError("Please provide a valid email address.", field=key)
    return email


def optional_email(data: Mapping[str, Any], key: str) -> str | None:
    email = optional_text(data, key)
    if email is not None and not is_valid_email(email):
        raise ValidationError("Please provide a valid email address.", field=key)
    return email


def parse_id(value: Any, field: str = "id") -> int:
    """Coerce an identifier coming from JSON or the URL into an ``int``."""

    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}.", field=field)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}.", field=field) from exc


def optional_id(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_id(value, key)


def id_list(data: Mapping[str, Any], key: str) -> List[int] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list.", field=key)
    ids: List[int] = []
    for item in value:
        if isinstance(item, Mapping):
            item = item.get("id", item.get("value"))
        identifier = parse_id(item, key)
        if identifier not in ids:
            ids.append(identifier)
    return ids


def string_list(data: Mapping[str, Any], key: str) -> List[str] | None:
    """Return the non-empty strings in ``data[key]`` (``None`` if missing)."""

    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list.", field=key)
    return [str(item).strip() for item in value if item is not None and str(item).strip()]

