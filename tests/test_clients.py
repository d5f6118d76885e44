"""Tests for client, store and tag management."""
from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from supportdesk.app import create_app
from supportdesk.config import DEFAULT_CONFIG
from supportdesk.extensions import db
from supportdesk.models import Store, Tag, Ticket, User


def _write_config(target: Path, data: dict) -> Path:
    target.write_text(json.dumps(data, indent=2))
    return target


def _default_config() -> dict:
    return json.loads(json.dumps(DEFAULT_CONFIG))


STORE_PAYLOAD = {
    "name": "Main Street",
    "address": "1 Main Street",
    "manager": "Jo Manager",
    "email": "main@example.com",
    "phone": "555-0100",
}


@pytest.fixture()
def api(tmp_path):
    config_data = _default_config()
    config_data["database"]["uri"] = f"sqlite:///{tmp_path / 'app.db'}"
    config_path = _write_config(tmp_path / "config.json", config_data)
    app = create_app(config_path)

    with app.app_context():
        user = User(name="Admin", email="admin@example.com", is_admin=True)
        user.set_password("secret")
        db.session.add(user)
        db.session.commit()

    client = app.test_client()
    response = client.post(
        "/api/v1/auth/login", json={"email": "admin@example.com", "password": "secret"}
    )
    headers = {"Authorization": f"Bearer {response.get_json()['token']}"}
    return app, client, headers


def _create_client(client, headers, name: str) -> int:
    response = client.post("/api/v1/client/create", json={"name": name}, headers=headers)
    assert response.status_code == 200, response.get_json()
    return response.get_json()["client"]["id"]


def _create_tag(client, headers, client_id: int, value: str) -> int:
    response = client.post(f"/api/v1/tags/{client_id}", json={"value": value}, headers=headers)
    assert response.status_code == 200, response.get_json()
    return response.get_json()["tag"]["id"]


def test_create_update_and_list_clients(api):
    app, client, headers = api

    response = client.post(
        "/api/v1/client/create",
        json={"name": "Acme", "email": "ops@acme.test", "contactName": "Wile", "number": 42},
        headers=headers,
    )
    assert response.status_code == 200
    created = response.get_json()["client"]
    assert created["contactName"] == "Wile"
    assert created["number"] == "42"

    invalid = client.post(
        "/api/v1/client/create", json={"name": "Bad", "email": "nope"}, headers=headers
    )
    assert invalid.status_code == 400

    missing_name = client.post("/api/v1/client/create", json={}, headers=headers)
    assert missing_name.status_code == 400
    assert missing_name.get_json()["field"] == "name"

    updated = client.post(
        "/api/v1/client/update", json={"id": created["id"], "name": "Acme Corp"}, headers=headers
    )
    assert updated.get_json()["client"]["name"] == "Acme Corp"

    names = [item["name"] for item in client.get("/api/v1/clients/all", headers=headers).get_json()["clients"]]
    assert names == ["Acme Corp"]


def test_store_creation_requires_contact_details(api):
    app, client, headers = api
    client_id = _create_client(client, headers, "Acme")

    payload = dict(STORE_PAYLOAD)
    del payload["manager"]
    response = client.post(f"/api/v1/clients/{client_id}/stores", json=payload, headers=headers)

    assert response.status_code == 400
    assert response.get_json()["field"] == "manager"

    missing_client = client.post("/api/v1/clients/999/stores", json=STORE_PAYLOAD, headers=headers)
    assert missing_client.status_code == 404


def test_store_tags_must_belong_to_the_same_client(api):
    app, client, headers = api
    acme_id = _create_client(client, headers, "Acme")
    globex_id = _create_client(client, headers, "Globex")
    acme_tag = _create_tag(client, headers, acme_id, "flagship")
    globex_tag = _create_tag(client, headers, globex_id, "outlet")

    response = client.post(
        f"/api/v1/clients/{acme_id}/stores",
        json={**STORE_PAYLOAD, "tags": [acme_tag, globex_tag]},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.get_json()["tags"] == [globex_tag]
    with app.app_context():
        assert Store.query.count() == 0


def test_store_update_connects_tags_without_replacing(api):
    app, client, headers = api
    client_id = _create_client(client, headers, "Acme")
    first = _create_tag(client, headers, client_id, "flagship")
    second = _create_tag(client, headers, client_id, "24h")

    created = client.post(
        f"/api/v1/clients/{client_id}/stores",
        json={**STORE_PAYLOAD, "tags": [{"id": first}], "notes": ["Alarm code at desk", ""]},
        headers=headers,
    ).get_json()["store"]
    assert [tag["value"] for tag in created["tags"]] == ["flagship"]
    assert created["notes"] == ["Alarm code at desk"]

    response = client.patch(
        f"/api/v1/clients/{client_id}/stores/{created['id']}",
        json={"tags": [second, first], "phone": "555-0199"},
        headers=headers,
    )

    assert response.status_code == 200
    store = response.get_json()["store"]
    assert sorted(tag["id"] for tag in store["tags"]) == sorted([first, second])
    assert store["phone"] == "555-0199"
    assert store["name"] == STORE_PAYLOAD["name"]


def test_store_must_be_addressed_through_its_client(api):
    app, client, headers = api
    acme_id = _create_client(client, headers, "Acme")
    globex_id = _create_client(client, headers, "Globex")
    store_id = client.post(
        f"/api/v1/clients/{acme_id}/stores", json=STORE_PAYLOAD, headers=headers
    ).get_json()["store"]["id"]

    wrong_patch = client.patch(
        f"/api/v1/clients/{globex_id}/stores/{store_id}", json={"name": "Hijacked"}, headers=headers
    )
    wrong_delete = client.delete(f"/api/v1/clients/{globex_id}/stores/{store_id}", headers=headers)

    assert wrong_patch.status_code == 404
    assert wrong_delete.status_code == 404

    stores = client.get(f"/api/v1/clients/{acme_id}/stores", headers=headers).get_json()["stores"]
    assert [store["name"] for store in stores] == [STORE_PAYLOAD["name"]]

    assert client.delete(f"/api/v1/clients/{acme_id}/stores/{store_id}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/clients/{acme_id}/stores", headers=headers).get_json()["stores"] == []


def test_tags_are_unique_per_client(api):
    app, client, headers = api
    acme_id = _create_client(client, headers, "Acme")
    globex_id = _create_client(client, headers, "Globex")

    _create_tag(client, headers, acme_id, "flagship")
    duplicate = client.post(f"/api/v1/tags/{acme_id}", json={"value": "flagship"}, headers=headers)
    assert duplicate.status_code == 409

    _create_tag(client, headers, globex_id, "flagship")
    tags = client.get(f"/api/v1/tags/{acme_id}", headers=headers).get_json()["tags"]
    assert [tag["value"] for tag in tags] == ["flagship"]

    empty = client.post(f"/api/v1/tags/{acme_id}", json={"value": "  "}, headers=headers)
    assert empty.status_code == 400


def test_delete_tag_scoped_to_client(api):
    app, client, headers = api
    acme_id = _create_client(client, headers, "Acme")
    globex_id = _create_client(client, headers, "Globex")
    tag_id = _create_tag(client, headers, acme_id, "flagship")

    assert client.delete(f"/api/v1/tags/{globex_id}/{tag_id}", headers=headers).status_code == 404
    assert client.delete(f"/api/v1/tags/{acme_id}/{tag_id}", headers=headers).status_code == 200
    with app.app_context():
        assert db.session.get(Tag, tag_id) is None


def test_delete_client_cascades_stores_and_tags_but_keeps_tickets(api):
    app, client, headers = api
    client_id = _create_client(client, headers, "Acme")
    tag_id = _create_tag(client, headers, client_id, "flagship")
    store_id = client.post(
        f"/api/v1/clients/{client_id}/stores",
        json={**STORE_PAYLOAD, "tags": [tag_id]},
        headers=headers,
    ).get_json()["store"]["id"]
    with app.app_context():
        ticket = Ticket(number=1, title="Till offline", client_id=client_id)
        db.session.add(ticket)
        db.session.commit()
        ticket_id = ticket.id

    response = client.delete(f"/api/v1/clients/{client_id}/delete-client", headers=headers)

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Store, store_id) is None
        assert db.session.get(Tag, tag_id) is None
        assert db.session.get(Ticket, ticket_id).client_id is None
