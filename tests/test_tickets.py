"""Tests for ticket submission, triage and visibility rules."""
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
from supportdesk.models import Client, Comment, Store, Ticket, User
from supportdesk.views import tickets as tickets_view


def _write_config(target: Path, data: dict) -> Path:
    target.write_text(json.dumps(data, indent=2))
    return target


def _default_config() -> dict:
    return json.loads(json.dumps(DEFAULT_CONFIG))


def _create_user(app, email: str, **fields) -> int:
    with app.app_context():
        user = User(name=email.split("@")[0].title(), email=email, **fields)
        user.set_password("secret")
        db.session.add(user)
        db.session.commit()
        return user.id


def _auth_headers(client, email: str) -> dict:
    response = client.post("/api/v1/auth/login", json={"email": email, "password": "secret"})
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture()
def desk(tmp_path):
    config_data = _default_config()
    config_data["database"]["uri"] = f"sqlite:///{tmp_path / 'app.db'}"
    config_path = _write_config(tmp_path / "config.json", config_data)
    app = create_app(config_path)

    with app.app_context():
        acme = Client(name="Acme")
        globex = Client(name="Globex")
        acme_store = Store(client=acme, name="Main Street")
        globex_store = Store(client=globex, name="Harbour")
        db.session.add_all([acme, globex, acme_store, globex_store])
        db.session.commit()
        ids = {
            "acme": acme.id,
            "globex": globex.id,
            "acme_store": acme_store.id,
            "globex_store": globex_store.id,
        }

    _create_user(app, "agent@example.com")
    return app, app.test_client(), ids


def _public_ticket(ids, **overrides) -> dict:
    payload = {
        "name": "Casey Customer",
        "email": "casey@example.com",
        "title": "Card reader broken",
        "detail": "Lane 2 rejects every card.",
        "company": ids["acme"],
        "store": ids["acme_store"],
        "type": "Incident",
        "priority": "High",
    }
    payload.update(overrides)
    return payload


def test_public_submission_assigns_sequential_numbers(desk):
    app, client, ids = desk

    first = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids))
    second = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, title="Second"))

    assert first.status_code == 200
    assert first.get_json()["number"] == 1
    assert second.get_json()["number"] == 2

    with app.app_context():
        ticket = db.session.get(Ticket, first.get_json()["id"])
        assert ticket.type == "incident"
        assert ticket.priority == "high"
        assert ticket.status == "needs_support"
        assert ticket.is_complete is False
        assert ticket.client_id == ids["acme"]


def test_public_submission_validates_fields(desk):
    app, client, ids = desk

    bad_priority = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, priority="urgent"))
    assert bad_priority.status_code == 400
    assert bad_priority.get_json()["field"] == "priority"

    bad_email = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, email="casey"))
    assert bad_email.status_code == 400

    missing_title = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, title=""))
    assert missing_title.get_json()["field"] == "title"

    missing_type = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, type=""))
    assert missing_type.status_code == 400
    assert missing_type.get_json()["field"] == "type"

    missing_priority = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, priority=None))
    assert missing_priority.status_code == 400
    assert missing_priority.get_json()["field"] == "priority"

    wrong_store = client.post(
        "/api/v1/ticket/public/create", json=_public_ticket(ids, store=ids["globex_store"])
    )
    assert wrong_store.status_code == 400
    assert wrong_store.get_json()["field"] == "store"

    with app.app_context():
        assert Ticket.query.count() == 0


def test_public_submission_accepts_service_type(desk):
    app, client, ids = desk

    response = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, type="Service"))

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Ticket, response.get_json()["id"]).type == "service"


def test_taken_ticket_number_is_redrawn_once(desk, monkeypatch):
    app, client, ids = desk
    client.post("/api/v1/ticket/public/create", json=_public_ticket(ids))

    original = tickets_view._next_number
    calls = []

    def stale_number():
        calls.append(1)
        return 1 if len(calls) == 1 else original()

    monkeypatch.setattr(tickets_view, "_next_number", stale_number)
    response = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, title="Second"))

    assert response.status_code == 200
    assert response.get_json()["number"] == 2
    assert len(calls) == 2
    with app.app_context():
        assert sorted(ticket.number for ticket in Ticket.query.all()) == [1, 2]


def test_block_detail_is_stored_as_json(desk):
    app, client, ids = desk
    blocks = [{"type": "paragraph", "content": [{"type": "text", "text": "Broken", "styles": {}}]}]

    response = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, detail=blocks))

    with app.app_context():
        ticket = db.session.get(Ticket, response.get_json()["id"])
        assert json.loads(ticket.detail) == blocks


def test_authenticated_create_with_engineer(desk):
    app, client, ids = desk
    headers = _auth_headers(client, "agent@example.com")
    engineer_id = _create_user(app, "engineer@example.com")

    response = client.post(
        "/api/v1/ticket/create",
        json={"title": "Printer jam", "store": ids["acme_store"], "engineer": engineer_id},
        headers=headers,
    )

    assert response.status_code == 200
    ticket = response.get_json()["ticket"]
    assert ticket["assignedTo"]["id"] == engineer_id
    assert ticket["number"] == response.get_json()["number"] == 1
    assert ticket["createdBy"]["name"] == "Agent"
    assert ticket["client"]["id"] == ids["acme"]
    assert ticket["type"] == "service"
    assert ticket["priority"] == "low"


def test_list_filters(desk):
    app, client, ids = desk
    headers = _auth_headers(client, "agent@example.com")
    client.post("/api/v1/ticket/public/create", json=_public_ticket(ids, title="Card reader broken"))
    client.post(
        "/api/v1/ticket/public/create",
        json=_public_ticket(
            ids,
            title="Door sensor beeping",
            priority="low",
            company=ids["globex"],
            store=ids["globex_store"],
        ),
    )

    def titles(query: str) -> list:
        response = client.get(f"/api/v1/tickets/all{query}", headers=headers)
        assert response.status_code == 200
        return sorted(ticket["title"] for ticket in response.get_json()["tickets"])

    assert titles("") == ["Card reader broken", "Door sensor beeping"]
    assert titles("?priority=HIGH") == ["Card reader broken"]
    assert titles(f"?client={ids['globex']}") == ["Door sensor beeping"]
    assert titles(f"?store={ids['acme_store']}") == ["Card reader broken"]
    assert titles("?q=sensor") == ["Door sensor beeping"]
    assert titles("?completed=true") == []
    assert titles("?status=needs_support&type=incident") == ["Card reader broken", "Door sensor beeping"]


def test_status_updates_keep_completion_in_sync(desk):
    app, client, ids = desk
    headers = _auth_headers(client, "agent@example.com")
    ticket_id = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids)).get_json()["id"]

    closed = client.put("/api/v1/ticket/status/update", json={"id": ticket_id, "status": True}, headers=headers)
    assert closed.status_code == 200
    assert closed.get_json()["ticket"]["status"] == "done"
    assert closed.get_json()["ticket"]["isComplete"] is True

    completed = client.get("/api/v1/tickets/completed", headers=headers).get_json()["tickets"]
    assert [ticket["id"] for ticket in completed] == [ticket_id]

    reopened = client.put("/api/v1/ticket/status/update", json={"id": ticket_id, "status": False}, headers=headers)
    assert reopened.get_json()["ticket"]["status"] == "needs_support"
    assert reopened.get_json()["ticket"]["isComplete"] is False

    review = client.put(
        "/api/v1/ticket/status/update", json={"id": ticket_id, "status": "In_Review"}, headers=headers
    )
    assert review.get_json()["ticket"]["status"] == "in_review"

    invalid = client.put(
        "/api/v1/ticket/status/update", json={"id": ticket_id, "status": "exploded"}, headers=headers
    )
    assert invalid.status_code == 400

    done = client.put(
        "/api/v1/ticket/update", json={"id": ticket_id, "status": "done", "title": "Fixed reader"}, headers=headers
    )
    assert done.get_json()["ticket"]["isComplete"] is True
    assert done.get_json()["ticket"]["title"] == "Fixed reader"


def test_transfer_assigns_and_unassigns(desk):
    app, client, ids = desk
    headers = _auth_headers(client, "agent@example.com")
    agent_id = client.get("/api/v1/auth/profile", headers=headers).get_json()["user"]["id"]
    ticket_id = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids)).get_json()["id"]

    assigned = client.post("/api/v1/ticket/transfer", json={"id": ticket_id, "user": agent_id}, headers=headers)
    assert assigned.status_code == 200

    mine = client.get("/api/v1/tickets/user/open", headers=headers).get_json()["tickets"]
    assert [ticket["id"] for ticket in mine] == [ticket_id]
    assert client.get(f"/api/v1/tickets/all?assignee={agent_id}", headers=headers).get_json()["tickets"]

    unknown = client.post("/api/v1/ticket/transfer", json={"id": ticket_id, "user": 999}, headers=headers)
    assert unknown.status_code == 400

    client.post("/api/v1/ticket/transfer", json={"id": ticket_id, "user": None}, headers=headers)
    with app.app_context():
        assert db.session.get(Ticket, ticket_id).assigned_to_id is None


def test_external_users_only_see_their_own_tickets_and_public_comments(desk):
    app, client, ids = desk
    _create_user(app, "casey@example.com", external_user=True)
    agent_headers = _auth_headers(client, "agent@example.com")
    casey_headers = _auth_headers(client, "casey@example.com")

    own_id = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids)).get_json()["id"]
    other_id = client.post(
        "/api/v1/ticket/public/create", json=_public_ticket(ids, email="someone@example.com")
    ).get_json()["id"]

    client.post("/api/v1/ticket/comment", json={"id": own_id, "text": "internal note"}, headers=agent_headers)
    client.post(
        "/api/v1/ticket/comment",
        json={"id": own_id, "text": "We are on it", "public": True},
        headers=agent_headers,
    )

    listing = client.get("/api/v1/tickets/all", headers=casey_headers).get_json()["tickets"]
    assert [ticket["id"] for ticket in listing] == [own_id]

    assert client.get(f"/api/v1/ticket/{other_id}", headers=casey_headers).status_code == 404

    detail = client.get(f"/api/v1/ticket/{own_id}", headers=casey_headers).get_json()["ticket"]
    assert [comment["text"] for comment in detail["comments"]] == ["We are on it"]

    agent_view = client.get(f"/api/v1/ticket/{own_id}", headers=agent_headers).get_json()["ticket"]
    assert len(agent_view["comments"]) == 2

    reply = client.post(
        "/api/v1/ticket/comment", json={"id": own_id, "text": "Thanks!", "public": False}, headers=casey_headers
    )
    assert reply.get_json()["comment"]["public"] is True

    forbidden = client.put(
        "/api/v1/ticket/update", json={"id": own_id, "title": "Changed"}, headers=casey_headers
    )
    assert forbidden.status_code == 403


def test_external_user_creates_ticket_with_their_contact_details(desk):
    app, client, ids = desk
    _create_user(app, "casey@example.com", external_user=True)
    headers = _auth_headers(client, "casey@example.com")

    response = client.post(
        "/api/v1/ticket/create",
        json={"title": "Need access", "company": ids["acme"], "engineer": 1},
        headers=headers,
    )

    ticket = response.get_json()["ticket"]
    assert ticket["email"] == "casey@example.com"
    assert ticket["name"] == "Casey"
    assert ticket["assignedTo"] is None
    assert client.get("/api/v1/tickets/open", headers=headers).get_json()["tickets"][0]["id"] == ticket["id"]


def test_delete_ticket_removes_comments(desk):
    app, client, ids = desk
    headers = _auth_headers(client, "agent@example.com")
    ticket_id = client.post("/api/v1/ticket/public/create", json=_public_ticket(ids)).get_json()["id"]
    client.post("/api/v1/ticket/comment", json={"id": ticket_id, "text": "note"}, headers=headers)

    response = client.delete("/api/v1/ticket/delete", json={"id": ticket_id}, headers=headers)

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Ticket, ticket_id) is None
        assert Comment.query.count() == 0
    assert client.delete("/api/v1/ticket/delete", json={"id": ticket_id}, headers=headers).status_code == 404
