"""Product analytics events emitted after API mutations."""
from __future__ import annotations

import logging
from typing import Any

from flask import current_app, has_app_context


logger = logging.getLogger("supportdesk.analytics")


def analytics_enabled() -> bool:
    if not has_app_context():
        return False
    config = current_app.config.get("APP_CONFIG")
    return bool(config and config.analytics.enabled)


def track(event: str, distinct_id: Any, **properties: Any) -> bool:
    """Record ``event`` for ``distinct_id``; returns ``True`` when emitted."""

    if not analytics_enabled():
        return False

    logger.info(
        "event=%s distinct_id=%s",
        event,
        distinct_id,
        extra={"event": event, "distinct_id": str(distinct_id), "properties": properties},
    )
    return True
