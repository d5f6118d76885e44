"""Ticket API: submission, triage, assignment and comments."""
from __future__ import annotations

from typing import Any, Dict, Mapping

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query

from ..analytics import track
from ..config import COMPLETED_STATUS, AppConfig, TicketConfig, coerce_bool
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Client, Store, Ticket, User
from ..notifications import (
    send_assigned_email,
    send_ticket_comment,
    send_ticket_created,
    send_ticket_status,
)
from ..permissions import current_user, require_permission
from ..richtext import serialize_detail
from ..validation import (
    json_body,
    optional_email,
    optional_id,
    optional_text,
    parse_id,
    require_email,
    require_text,
)


tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/v1")


def _app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _choice(value: Any, normalize, default: str, field: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    normalized = normalize(value)
    if normalized is None:
        raise ValidationError(f"Unknown {field} '{value}'.", field=field)
    return normalized


def _next_number() -> int:
    highest = db.session.query(db.func.max(Ticket.number)).scalar()
    return (highest or 0) + 1


def _save_new_ticket(ticket: Ticket) -> None:
    """Insert ``ticket``, drawing a fresh number once if a concurrent insert took it."""

    db.session.add(ticket)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        ticket.number = _next_number()
        current_app.logger.info("Ticket number taken; retrying as #%s", ticket.number)
        db.session.add(ticket)
        db.session.commit()


def _resolve_location(client_id: int | None, store_id: int | None) -> tuple[Client | None, Store | None]:
    """Return the client and store for a ticket, checking the store belongs to the client."""

    client = db.session.get(Client, client_id) if client_id is not None else None
    if client_id is not None and client is None:
        raise ValidationError("Unknown client.", field="company")

    store = db.session.get(Store, store_id) if store_id is not None else None
    if store_id is not None and store is None:
        raise ValidationError("Unknown store.", field="store")

    if store is not None:
        if client is None:
            client = store.client
        elif store.client_id != client.id:
            raise ValidationError("The store does not belong to the selected client.", field="store")
    return client, store


def _resolve_engineer(user_id: int | None) -> User | None:
    if user_id is None:
        return None
    engineer = db.session.get(User, user_id)
    if engineer is None:
        raise ValidationError("Unknown user.", field="engineer")
    return engineer


def _apply_status(ticket: Ticket, status: str) -> None:
    ticket.status = status
    ticket.is_complete = status == COMPLETED_STATUS


def _apply_completion(ticket: Ticket, is_complete: bool, tickets: TicketConfig) -> None:
    ticket.is_complete = is_complete
    if is_complete:
        ticket.status = COMPLETED_STATUS
    elif ticket.status == COMPLETED_STATUS:
        ticket.status = tickets.default_status


def _build_ticket(data: Mapping[str, Any], *, public: bool) -> Ticket:
    tickets = _app_config().tickets

    title = require_text(data, "title", "Please provide a title for the issue.")
    if public:
        name = require_text(data, "name", "Please provide your name.")
        email = require_email(data, "email", "Please provide your email address.")
        client_id = parse_id(data.get("company"), "company")
        store_id = parse_id(data.get("store"), "store")
        require_text(data, "type", "Please select an issue type.")
        require_text(data, "priority", "Please select a priority.")
    else:
        name = optional_text(data, "name")
        email = optional_email(data, "email")
        client_id = optional_id(data, "company")
        store_id = optional_id(data, "store")

    client, store = _resolve_location(client_id, store_id)

    ticket = Ticket(
        number=_next_number(),
        title=title,
        detail=serialize_detail(data.get("detail")),
        name=name,
        email=email,
        client=client,
        store=store,
        type=_choice(data.get("type"), tickets.normalize_type, tickets.default_type, "type"),
        priority=_choice(
            data.get("priority"), tickets.normalize_priority, tickets.default_priority, "priority"
        ),
    )
    _apply_status(ticket, tickets.default_status)
    return ticket


def _visible_tickets(user: User) -> Query:
    """Tickets ``user`` may see; portal users only see the ones they raised."""

    query = Ticket.query
    if user.external_user:
        query = query.filter(
            or_(Ticket.created_by_id == user.id, db.func.lower(Ticket.email) == user.email.lower())
        )
    return query


def _get_ticket(ticket_id: int) -> Ticket:
    user = current_user()
    ticket = _visible_tickets(user).filter(Ticket.id == ticket_id).first()
    if ticket is None:
        raise NotFound("Ticket not found.")
    return ticket


def _ticket_list(query: Query) -> Dict[str, Any]:
    tickets = query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()
    return {"success": True, "tickets": [ticket.to_dict() for ticket in tickets]}


def _notify_created(ticket: Ticket) -> None:
    send_ticket_created(ticket)
    if ticket.assigned_to is not None:
        send_assigned_email(ticket.assigned_to, ticket)


@tickets_bp.route("/ticket/public/create", methods=["POST"])
def create_public_ticket():
    data = json_body()
    ticket = _build_ticket(data, public=True)
    _save_new_ticket(ticket)

    current_app.logger.info("Public ticket #%s created", ticket.number)
    _notify_created(ticket)
    track("ticket_created", ticket.id, public=True)
    return jsonify({"success": True, "id": ticket.id, "number": ticket.number})


@tickets_bp.route("/ticket/create", methods=["POST"])
@require_permission(["issue::create"])
def create_ticket():
    data = json_body()
    user = current_user()
    ticket = _build_ticket(data, public=False)
    ticket.created_by = user
    if user.external_user:
        ticket.name = ticket.name or user.name
        ticket.email = ticket.email or user.email
    else:
        ticket.assigned_to = _resolve_engineer(optional_id(data, "engineer"))

    _save_new_ticket(ticket)

    current_app.logger.info("Ticket #%s created by user %s", ticket.number, user.id)
    _notify_created(ticket)
    track("ticket_created", user.id, ticket=ticket.id)
    return jsonify({"success": True, "id": ticket.id, "number": ticket.number, "ticket": ticket.to_dict()})


@tickets_bp.route("/ticket/<int:ticket_id>", methods=["GET"])
@require_permission(["issue::read"])
def get_ticket(ticket_id: int):
    ticket = _get_ticket(ticket_id)
    public_only = current_user().external_user
    return jsonify(
        {"success": True, "ticket": ticket.to_dict(include_comments=True, public_only=public_only)}
    )


@tickets_bp.route("/tickets/all", methods=["GET"])
@require_permission(["issue::read"])
def list_tickets():
    tickets = _app_config().tickets
    query = _visible_tickets(current_user())

    status_filter = request.args.get("status")
    if status_filter:
        query = query.filter(Ticket.status == (tickets.normalize_status(status_filter) or status_filter))

    priority_filter = request.args.get("priority")
    if priority_filter:
        query = query.filter(
            Ticket.priority == (tickets.normalize_priority(priority_filter) or priority_filter)
        )

    type_filter = request.args.get("type")
    if type_filter:
        query = query.filter(Ticket.type == (tickets.normalize_type(type_filter) or type_filter))

    client_filter = optional_id(request.args, "client")
    if client_filter is not None:
        query = query.filter(Ticket.client_id == client_filter)

    store_filter = optional_id(request.args, "store")
    if store_filter is not None:
        query = query.filter(Ticket.store_id == store_filter)

    assignee_filter = optional_id(request.args, "assignee")
    if assignee_filter is not None:
        query = query.filter(Ticket.assigned_to_id == assignee_filter)

    completed = request.args.get("completed")
    if completed is not None and completed.strip():
        query = query.filter(Ticket.is_complete.is_(coerce_bool(completed)))

    search_term = (request.args.get("q") or "").strip()
    if search_term:
        query = query.filter(Ticket.title.ilike(f"%{search_term}%"))

    return jsonify(_ticket_list(query))


@tickets_bp.route("/tickets/open", methods=["GET"])
@require_permission(["issue::read"])
def list_open_tickets():
    query = _visible_tickets(current_user()).filter(Ticket.is_complete.is_(False))
    return jsonify(_ticket_list(query))


@tickets_bp.route("/tickets/completed", methods=["GET"])
@require_permission(["issue::read"])
def list_completed_tickets():
    query = _visible_tickets(current_user()).filter(Ticket.is_complete.is_(True))
    return jsonify(_ticket_list(query))


@tickets_bp.route("/tickets/user/open", methods=["GET"])
@require_permission(["issue::read"])
def list_my_open_tickets():
    user = current_user()
    query = _visible_tickets(user).filter(
        Ticket.is_complete.is_(False), Ticket.assigned_to_id == user.id
    )
    return jsonify(_ticket_list(query))


@tickets_bp.route("/ticket/update", methods=["PUT"])
@require_permission(["issue::update"])
def update_ticket():
    tickets = _app_config().tickets
    data = json_body()
    ticket = _get_ticket(parse_id(data.get("id")))

    if "title" in data:
        ticket.title = require_text(data, "title", "Please provide a title for the issue.")
    if "detail" in data:
        ticket.detail = serialize_detail(data.get("detail"))
    if "priority" in data:
        ticket.priority = _choice(data.get("priority"), tickets.normalize_priority, ticket.priority, "priority")
    if "type" in data:
        ticket.type = _choice(data.get("type"), tickets.normalize_type, ticket.type, "type")
    if "status" in data:
        _apply_status(ticket, _choice(data.get("status"), tickets.normalize_status, ticket.status, "status"))

    db.session.commit()
    return jsonify({"success": True, "ticket": ticket.to_dict()})


@tickets_bp.route("/ticket/transfer", methods=["POST"])
@require_permission(["issue::assign"])
def transfer_ticket():
    data = json_body()
    ticket = _get_ticket(parse_id(data.get("id")))
    if "user" not in data:
        raise ValidationError("Please choose a user to assign.", field="user")

    user_id = optional_id(data, "user")
    engineer = db.session.get(User, user_id) if user_id is not None else None
    if user_id is not None and engineer is None:
        raise ValidationError("Unknown user.", field="user")

    ticket.assigned_to = engineer
    db.session.commit()

    if engineer is not None:
        current_app.logger.info("Ticket #%s assigned to user %s", ticket.number, engineer.id)
        send_assigned_email(engineer, ticket)
    else:
        current_app.logger.info("Ticket #%s unassigned", ticket.number)
    track("ticket_transferred", current_user().id, ticket=ticket.id, assignee=user_id)
    return jsonify({"success": True})


@tickets_bp.route("/ticket/status/update", methods=["PUT"])
@require_permission(["issue::update"])
def update_ticket_status():
    tickets = _app_config().tickets
    data = json_body()
    ticket = _get_ticket(parse_id(data.get("id")))

    status = data.get("status")
    if isinstance(status, bool):
        _apply_completion(ticket, status, tickets)
    else:
        normalized = tickets.normalize_status(status)
        if normalized is None:
            raise ValidationError(f"Unknown status '{status}'.", field="status")
        _apply_status(ticket, normalized)

    db.session.commit()

    send_ticket_status(ticket)
    track("ticket_status_changed", current_user().id, ticket=ticket.id, status=ticket.status)
    return jsonify({"success": True, "ticket": ticket.to_dict()})


@tickets_bp.route("/ticket/comment", methods=["POST"])
@require_permission(["issue::comment"])
def comment_on_ticket():
    data = json_body()
    user = current_user()
    ticket = _get_ticket(parse_id(data.get("id")))
    text = require_text(data, "text", "Please write a comment.")

    # Portal users can only see public comments, so theirs are always public.
    public = True if user.external_user else coerce_bool(data.get("public"))
    comment = ticket.add_comment(text, user=user, public=public)
    db.session.commit()

    if public and (ticket.email or "").lower() != user.email.lower():
        send_ticket_comment(ticket, comment)
    track("ticket_comment", user.id, ticket=ticket.id, public=public)
    return jsonify({"success": True, "comment": comment.to_dict()})


@tickets_bp.route("/ticket/delete", methods=["DELETE"])
@require_permission(["issue::delete"])
def delete_ticket():
    data = json_body()
    ticket = _get_ticket(parse_id(data.get("id")))
    number = ticket.number
    db.session.delete(ticket)
    db.session.commit()

    current_app.logger.info("Ticket #%s deleted", number)
    track("ticket_deleted", current_user().id, ticket=number)
    return jsonify({"success": True})
