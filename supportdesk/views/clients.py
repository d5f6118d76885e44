"""Client, store and tag management endpoints."""
from __future__ import annotations

from typing import Iterable, List

from flask import Blueprint, jsonify

from ..analytics import track
from ..config import coerce_bool
from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Client, Store, Tag
from ..permissions import require_permission
from ..validation import (
    id_list,
    json_body,
    optional_email,
    optional_text,
    parse_id,
    require_email,
    require_text,
    string_list,
)


clients_bp = Blueprint("clients", __name__, url_prefix="/api/v1")

STORE_TEXT_FIELDS = ("name", "phone", "address", "manager")


def _get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFound("Client not found.")
    return client


def _get_store(client_id: int, store_id: int) -> Store:
    store = Store.query.filter_by(id=store_id, client_id=client_id).first()
    if store is None:
        raise NotFound("Store not found.")
    return store


def _client_number(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _resolve_client_tags(client: Client, tag_ids: Iterable[int]) -> List[Tag]:
    """Return the tags for ``tag_ids`` making sure all belong to ``client``."""

    ids = list(tag_ids)
    if not ids:
        return []
    tags = Tag.query.filter(Tag.id.in_(ids), Tag.client_id == client.id).all()
    found = {tag.id for tag in tags}
    missing = [tag_id for tag_id in ids if tag_id not in found]
    if missing:
        raise ValidationError(
            "Tags must belong to the same client as the store.", tags=missing
        )
    return sorted(tags, key=lambda tag: ids.index(tag.id))


@clients_bp.route("/client/create", methods=["POST"])
@require_permission(["client::create"])
def create_client():
    data = json_body()
    client = Client(
        name=require_text(data, "name", "Please provide the name of the client."),
        email=optional_email(data, "email"),
        contact_name=optional_text(data, "contactName"),
        number=_client_number(data.get("number")),
    )
    db.session.add(client)
    db.session.commit()

    track("client_created", client.id)
    return jsonify({"success": True, "client": client.to_dict()})


@clients_bp.route("/client/update", methods=["POST"])
@require_permission(["client::update"])
def update_client():
    data = json_body()
    client = _get_client(parse_id(data.get("id")))

    if "name" in data:
        client.name = require_text(data, "name", "Please provide the name of the client.")
    if "email" in data:
        client.email = optional_email(data, "email")
    if "contactName" in data:
        client.contact_name = optional_text(data, "contactName")
    if "number" in data:
        client.number = _client_number(data.get("number"))
    if "active" in data:
        client.active = coerce_bool(data.get("active"), default=client.active)

    db.session.commit()
    return jsonify({"success": True, "client": client.to_dict()})


@clients_bp.route("/clients/all", methods=["GET"])
@require_permission(["client::read"])
def list_clients():
    clients = Client.query.order_by(Client.name.asc(), Client.id.asc()).all()
    return jsonify({"success": True, "clients": [client.to_dict() for client in clients]})


@clients_bp.route("/clients/<int:client_id>/delete-client", methods=["DELETE"])
@require_permission(["client::delete"])
def delete_client(client_id: int):
    client = _get_client(client_id)
    db.session.delete(client)
    db.session.commit()

    track("client_deleted", client_id)
    return jsonify({"success": True})


@clients_bp.route("/clients/<int:client_id>/stores", methods=["GET"])
@require_permission(["store::read"])
def list_stores(client_id: int):
    _get_client(client_id)
    stores = (
        Store.query.filter_by(client_id=client_id)
        .order_by(Store.name.asc(), Store.id.asc())
        .all()
    )
    return jsonify({"success": True, "stores": [store.to_dict() for store in stores]})


@clients_bp.route("/clients/<int:client_id>/stores", methods=["POST"])
@require_permission(["store::create"])
def create_store(client_id: int):
    client = _get_client(client_id)
    data = json_body()

    store = Store(
        client=client,
        name=require_text(data, "name", "Please provide the name of the store."),
        address=require_text(data, "address", "Please enter the address of the store."),
        manager=require_text(data, "manager", "Please enter the name of the store's manager."),
        email=require_email(data, "email", "Please enter the email address of the store's manager."),
        phone=require_text(data, "phone", "Please enter the phone number of the store's manager."),
        notes=string_list(data, "notes") or [],
    )
    store.connect_tags(_resolve_client_tags(client, id_list(data, "tags") or []))
    db.session.add(store)
    db.session.commit()

    track("store_created", store.id)
    return jsonify({"success": True, "store": store.to_dict()})


@clients_bp.route("/clients/<int:client_id>/stores/<int:store_id>", methods=["PATCH"])
@require_permission(["store::update"])
def update_store(client_id: int, store_id: int):
    store = _get_store(client_id, store_id)
    data = json_body()

    for field in STORE_TEXT_FIELDS:
        if field in data:
            setattr(store, field, require_text(data, field, f"Please provide the store's {field}."))
    if "email" in data:
        store.email = require_email(data, "email", "Please enter the email address of the store's manager.")
    notes = string_list(data, "notes")
    if notes is not None:
        store.notes = notes

    tag_ids = id_list(data, "tags")
    if tag_ids:
        store.connect_tags(_resolve_client_tags(store.client, tag_ids))

    db.session.commit()

    track("store_updated", store.id)
    return jsonify({"success": True, "store": store.to_dict()})


@clients_bp.route("/clients/<int:client_id>/stores/<int:store_id>", methods=["DELETE"])
@require_permission(["store::delete"])
def delete_store(client_id: int, store_id: int):
    store = _get_store(client_id, store_id)
    db.session.delete(store)
    db.session.commit()

    track("store_deleted", store_id)
    return jsonify({"success": True})


@clients_bp.route("/tags/<int:client_id>", methods=["GET"])
@require_permission(["tag::read"])
def list_tags(client_id: int):
    _get_client(client_id)
    tags = Tag.query.filter_by(client_id=client_id).order_by(Tag.value.asc()).all()
    return jsonify({"success": True, "tags": [tag.to_dict() for tag in tags]})


@clients_bp.route("/tags/<int:client_id>", methods=["POST"])
@require_permission(["tag::create"])
def create_tag(client_id: int):
    client = _get_client(client_id)
    data = json_body()
    value = require_text(data, "value", "Please provide a valid tag.")

    if Tag.query.filter_by(client_id=client.id, value=value).first() is not None:
        raise Conflict("This tag already exists for the client.")

    tag = Tag(client=client, value=value)
    db.session.add(tag)
    db.session.commit()

    track("tag_created", tag.id)
    return jsonify({"success": True, "tag": tag.to_dict()})


@clients_bp.route("/tags/<int:client_id>/<int:tag_id>", methods=["DELETE"])
@require_permission(["tag::delete"])
def delete_tag(client_id: int, tag_id: int):
    tag = Tag.query.filter_by(id=tag_id, client_id=client_id).first()
    if tag is None:
        raise NotFound("Tag not found.")
    db.session.delete(tag)
    db.session.commit()
    return jsonify({"success": True})
