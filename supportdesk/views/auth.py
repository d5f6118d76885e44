"""Authentication and user account endpoints."""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from ..analytics import track
from ..config import DEFAULT_LANGUAGE, AppConfig, coerce_bool
from ..errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from ..extensions import db
from ..models import Comment, Ticket, User
from ..permissions import current_user, issue_token, require_auth, require_permission
from ..validation import json_body, optional_text, require_email, require_text


auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")

MIN_PASSWORD_LENGTH = 4


def _app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _ensure_email_available(email: str, *, exclude_id: int | None = None) -> None:
    query = User.query.filter(db.func.lower(User.email) == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise Conflict("A user with this email already exists.")


def _validated_password(value: object) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters long.", field="password"
        )
    return value


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    email = _normalize_email(require_text(data, "email", "Please provide your email address."))
    password = data.get("password") or ""

    user = User.query.filter(db.func.lower(User.email) == email).first()
    if user is None or not user.check_password(str(password)):
        current_app.logger.info("Failed login attempt for %s", email)
        raise Unauthorized("Invalid email or password.")

    token = issue_token(user)
    db.session.commit()
    return jsonify({"success": True, "token": token, "user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    session = g.current_session
    db.session.delete(session)
    db.session.commit()
    return jsonify({"success": True})


@auth_bp.route("/check", methods=["GET"])
def check():
    config = _app_config()
    return jsonify(
        {
            "success": True,
            "auth": "password",
            "externalRegistration": config.auth.allow_external_registration,
        }
    )


@auth_bp.route("/profile", methods=["GET"])
@require_auth
def profile():
    return jsonify({"success": True, "user": current_user().to_dict()})


@auth_bp.route("/user/register", methods=["POST"])
@require_permission(["user::create"])
def register_user():
    data = json_body()
    name = require_text(data, "name", "Please enter the user's full name.")
    email = _normalize_email(require_email(data, "email", "Please enter the email address of user."))
    password = _validated_password(data.get("password"))
    _ensure_email_available(email)

    user = User(
        name=name,
        email=email,
        language=optional_text(data, "language") or DEFAULT_LANGUAGE,
        is_admin=coerce_bool(data.get("isAdmin")),
        external_user=False,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    track("user_registered", user.id)
    return jsonify({"success": True, "user": user.to_dict()})


@auth_bp.route("/user/register/external", methods=["POST"])
def register_external_user():
    config = _app_config()
    if not config.auth.allow_external_registration:
        raise Forbidden("Registration is disabled.")

    data = json_body()
    name = require_text(data, "name", "Please provide your name.")
    email = _normalize_email(require_email(data, "email", "Please provide your email address."))
    password = _validated_password(data.get("password"))
    if password != data.get("passwordConfirm"):
        raise ValidationError("Passwords do not match.", field="passwordConfirm")
    _ensure_email_available(email)

    user = User(
        name=name,
        email=email,
        language=optional_text(data, "language") or DEFAULT_LANGUAGE,
        is_admin=False,
        external_user=True,
        first_login=False,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    track("user_registered_external", user.id)
    return jsonify({"success": True})


@auth_bp.route("/<int:user_id>", methods=["PUT"])
@require_permission(["user::update"])
def update_user(user_id: int):
    user = _get_user(user_id)
    data = json_body()

    if "name" in data:
        user.name = require_text(data, "name", "Please enter the user's full name.")
    if "email" in data:
        email = _normalize_email(require_email(data, "email", "Please enter the email address of user."))
        _ensure_email_available(email, exclude_id=user.id)
        user.email = email
    if "language" in data:
        user.language = optional_text(data, "language") or DEFAULT_LANGUAGE
    if "isAdmin" in data:
        user.is_admin = coerce_bool(data.get("isAdmin"))
    if data.get("password"):
        user.set_password(_validated_password(data.get("password")))

    db.session.commit()
    return jsonify({"success": True, "user": user.to_dict()})


@auth_bp.route("/reset-password", methods=["POST"])
@require_auth
def reset_password():
    data = json_body()
    user = current_user()
    user.set_password(_validated_password(data.get("password")))
    db.session.commit()
    return jsonify({"success": True})


@auth_bp.route("/user/<int:user_id>/first-login", methods=["POST"])
@require_auth
def complete_first_login(user_id: int):
    user = current_user()
    if user.id != user_id and not user.is_admin:
        raise Forbidden()
    target = _get_user(user_id)
    target.first_login = False
    db.session.commit()
    return jsonify({"success": True})


@auth_bp.route("/user/<int:user_id>", methods=["DELETE"])
@require_permission(["user::delete"])
def delete_user(user_id: int):
    if current_user().id == user_id:
        raise ValidationError("You cannot delete your own account.")
    user = _get_user(user_id)

    Ticket.query.filter_by(created_by_id=user.id).update({"created_by_id": None})
    Comment.query.filter_by(user_id=user.id).update({"user_id": None})
    db.session.delete(user)
    db.session.commit()
    return jsonify({"success": True})
