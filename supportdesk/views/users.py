"""Internal user directory used for engineer assignment."""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..config import coerce_bool
from ..errors import NotFound
from ..extensions import db
from ..models import User
from ..permissions import require_permission


users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@users_bp.route("/all", methods=["GET"])
@require_permission(["user::read"])
def list_users():
    query = User.query
    if not coerce_bool(request.args.get("external"), default=False):
        query = query.filter(User.external_user.is_(False))
    users = query.order_by(User.name.asc(), User.id.asc()).all()
    return jsonify({"success": True, "users": [user.to_dict() for user in users]})


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_permission(["user::read"])
def get_user(user_id: int):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return jsonify({"success": True, "user": user.to_dict()})
