"""Role management and the role-enforcement switch."""
from __future__ import annotations

from dataclasses import replace

from flask import Blueprint, current_app, jsonify
from werkzeug.exceptions import InternalServerError

from ..config import AppConfig, coerce_bool, save_config
from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Role, User
from ..permissions import ALL_PERMISSIONS, require_permission, unknown_permissions
from ..validation import id_list, json_body, optional_text, require_text, string_list


roles_bp = Blueprint("roles", __name__, url_prefix="/api/v1")


def _app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _get_role(role_id: int) -> Role:
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFound("Role not found.")
    return role


def _validated_permissions(values: list[str]) -> list[str]:
    unknown = unknown_permissions(values)
    if unknown:
        raise ValidationError("Unknown permissions requested.", permissions=unknown)
    return list(dict.fromkeys(values))


def _resolve_users(user_ids: list[int]) -> list[User]:
    if not user_ids:
        return []
    users = User.query.filter(User.id.in_(user_ids)).all()
    found = {user.id for user in users}
    missing = [user_id for user_id in user_ids if user_id not in found]
    if missing:
        raise ValidationError("Unknown users requested.", users=missing)
    return users


@roles_bp.route("/roles/all", methods=["GET"])
@require_permission(["role::read"])
def list_roles():
    roles = Role.query.order_by(Role.name.asc()).all()
    return jsonify(
        {
            "success": True,
            "roles": [role.to_dict(include_users=True) for role in roles],
            "permissions": ALL_PERMISSIONS,
            "rolesActive": _app_config().roles_enabled,
        }
    )


@roles_bp.route("/role/create", methods=["POST"])
@require_permission(["role::create"])
def create_role():
    data = json_body()
    name = require_text(data, "name", "Please provide a role name.")
    if Role.query.filter_by(name=name).first() is not None:
        raise Conflict("A role with this name already exists.")

    role = Role(
        name=name,
        description=optional_text(data, "description"),
        permissions=_validated_permissions(string_list(data, "permissions") or []),
        active=coerce_bool(data.get("active"), default=True),
    )
    role.users = _resolve_users(id_list(data, "users") or [])
    db.session.add(role)
    db.session.commit()
    return jsonify({"success": True, "role": role.to_dict(include_users=True)})


@roles_bp.route("/role/<int:role_id>/update", methods=["PUT"])
@require_permission(["role::update"])
def update_role(role_id: int):
    role = _get_role(role_id)
    data = json_body()

    if "name" in data:
        name = require_text(data, "name", "Please provide a role name.")
        clash = Role.query.filter(Role.name == name, Role.id != role.id).first()
        if clash is not None:
            raise Conflict("A role with this name already exists.")
        role.name = name
    if "description" in data:
        role.description = optional_text(data, "description")
    permissions = string_list(data, "permissions")
    if permissions is not None:
        role.permissions = _validated_permissions(permissions)
    if "active" in data:
        role.active = coerce_bool(data.get("active"), default=role.active)
    user_ids = id_list(data, "users")
    if user_ids is not None:
        role.users = _resolve_users(user_ids)

    db.session.commit()
    return jsonify({"success": True, "role": role.to_dict(include_users=True)})


@roles_bp.route("/role/<int:role_id>/delete", methods=["DELETE"])
@require_permission(["role::delete"])
def delete_role(role_id: int):
    role = _get_role(role_id)
    db.session.delete(role)
    db.session.commit()
    return jsonify({"success": True})


@roles_bp.route("/config/toggle-roles", methods=["PATCH"])
@require_permission(["settings::manage"])
def toggle_roles():
    data = json_body()
    if "isActive" not in data:
        raise ValidationError("isActive is required.", field="isActive")

    config = _app_config()
    enabled = coerce_bool(data.get("isActive"), default=config.roles_enabled)
    updated_config = replace(config, roles=replace(config.roles, enabled=enabled))
    try:
        save_config(updated_config)
    except (OSError, ValueError) as exc:
        current_app.logger.error("Unable to persist role configuration: %s", exc)
        raise InternalServerError("Unable to save configuration changes.") from exc

    current_app.config["APP_CONFIG"] = updated_config
    current_app.logger.info("Role enforcement %s", "enabled" if enabled else "disabled")
    return jsonify({"success": True, "rolesActive": enabled})
