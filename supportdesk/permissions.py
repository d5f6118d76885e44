"""Token authentication and the permission allowlist used by API routes."""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from functools import wraps
from typing import Callable, Iterable, Sequence, TypeVar

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import AppConfig
from .errors import Forbidden, Unauthorized
from .extensions import db
from .models import User, UserSession


TOKEN_SALT = "supportdesk-session"

CLIENT_PERMISSIONS = ["client::create", "client::read", "client::update", "client::delete"]
STORE_PERMISSIONS = ["store::create", "store::read", "store::update", "store::delete"]
TAG_PERMISSIONS = ["tag::create", "tag::read", "tag::delete"]
ISSUE_PERMISSIONS = [
    "issue::create",
    "issue::read",
    "issue::update",
    "issue::delete",
    "issue::assign",
    "issue::comment",
]
USER_PERMISSIONS = ["user::create", "user::read", "user::update", "user::delete"]
ROLE_PERMISSIONS = ["role::create", "role::read", "role::update", "role::delete"]
EMAIL_PERMISSIONS = ["email::read", "email::update"]
SETTINGS_PERMISSIONS = ["settings::manage"]

ALL_PERMISSIONS: list[str] = [
    *CLIENT_PERMISSIONS,
    *STORE_PERMISSIONS,
    *TAG_PERMISSIONS,
    *ISSUE_PERMISSIONS,
    *USER_PERMISSIONS,
    *ROLE_PERMISSIONS,
    *EMAIL_PERMISSIONS,
    *SETTINGS_PERMISSIONS,
]

# Granted to portal users whenever role checks are switched off.
EXTERNAL_USER_PERMISSIONS = frozenset({"issue::create", "issue::read", "issue::comment"})

F = TypeVar("F", bound=Callable[..., object])


def _app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def unknown_permissions(values: Iterable[str]) -> list[str]:
    known = set(ALL_PERMISSIONS)
    return [value for value in values if value not in known]


def issue_token(user: User) -> str:
    """Create a session row for ``user`` and return its signed bearer token."""

    config = _app_config()
    token_id = secrets.token_urlsafe(24)
    session = UserSession(
        token_id=token_id,
        user=user,
        user_agent=(request.headers.get("User-Agent") or "")[:255] or None,
        ip_address=request.remote_addr,
        expires_at=datetime.utcnow() + timedelta(seconds=config.auth.token_max_age),
    )
    db.session.add(session)
    return _serializer().dumps({"uid": user.id, "sid": token_id})


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def resolve_session(token: str) -> UserSession | None:
    """Return the live session for ``token`` or ``None`` when it is unusable."""

    config = _app_config()
    try:
        payload = _serializer().loads(token, max_age=config.auth.token_max_age)
    except SignatureExpired:
        current_app.logger.debug("Rejected expired session token")
        return None
    except BadSignature:
        current_app.logger.debug("Rejected session token with a bad signature")
        return None

    if not isinstance(payload, dict):
        return None

    session = UserSession.query.filter_by(token_id=str(payload.get("sid", ""))).first()
    if session is None or session.user_id != payload.get("uid"):
        return None
    if session.expires_at <= datetime.utcnow():
        return None
    return session


def current_user() -> User | None:
    """Return the authenticated user for this request, if any."""

    if "current_user" in g:
        return g.current_user

    token = _bearer_token()
    session = resolve_session(token) if token else None
    g.current_session = session
    g.current_user = session.user if session else None
    return g.current_user


def has_permission(user: User, required: Sequence[str], *, require_all: bool = True) -> bool:
    """Return ``True`` when ``user`` may perform actions needing ``required``."""

    if not required:
        return True

    if not _app_config().roles_enabled:
        if not user.external_user:
            return True
        granted: set[str] = set(EXTERNAL_USER_PERMISSIONS)
    elif user.is_admin:
        return True
    else:
        granted = user.permissions

    if require_all:
        return all(permission in granted for permission in required)
    return any(permission in granted for permission in required)


def require_auth(view: F) -> F:
    """Reject requests without a valid bearer token."""

    @wraps(view)
    def decorated(*args, **kwargs):
        if current_user() is None:
            raise Unauthorized()
        return view(*args, **kwargs)

    return decorated  # type: ignore[return-value]


def require_permission(required: Sequence[str], *, require_all: bool = True) -> Callable[[F], F]:
    """Route guard enforcing the permission allowlist."""

    def decorator(view: F) -> F:
        @wraps(view)
        def decorated(*args, **kwargs):
            user = current_user()
            if user is None:
                raise Unauthorized()
            if not has_permission(user, required, require_all=require_all):
                current_app.logger.info(
                    "Permission denied for user %s on %s (needs %s)",
                    user.id,
                    request.endpoint,
                    ", ".join(required),
                )
                raise Forbidden()
            return view(*args, **kwargs)

        return decorated  # type: ignore[return-value]

    return decorator
