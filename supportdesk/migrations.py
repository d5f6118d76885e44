"""Lightweight schema migration utilities for SupportDesk."""
from __future__ import annotations

from sqlalchemy import inspect, select, text
from sqlalchemy.orm import Session

from .extensions import db
from .notifications import DEFAULT_TEMPLATES


def run_migrations() -> None:
    """Apply idempotent schema migrations and seed required rows."""

    engine = db.engine
    inspector = inspect(engine)
    table_names = set(inspector.get_table_names())
    if "users" in table_names:
        _ensure_user_flags(engine, inspector)
    if "stores" in table_names:
        _ensure_store_notes(engine, inspector)
    if "email_templates" in table_names:
        _seed_email_templates(engine)


def _ensure_user_flags(engine, inspector) -> None:
    columns = {column["name"] for column in inspector.get_columns("users")}
    needs_first_login = "first_login" not in columns
    needs_external = "external_user" not in columns

    if not (needs_first_login or needs_external):
        return

    with engine.begin() as connection:
        if needs_first_login:
            connection.execute(
                text("ALTER TABLE users ADD COLUMN first_login BOOLEAN NOT NULL DEFAULT FALSE")
            )
        if needs_external:
            connection.execute(
                text("ALTER TABLE users ADD COLUMN external_user BOOLEAN NOT NULL DEFAULT FALSE")
            )


def _ensure_store_notes(engine, inspector) -> None:
    columns = {column["name"] for column in inspector.get_columns("stores")}
    if "notes" in columns:
        return

    with engine.begin() as connection:
        connection.execute(text("ALTER TABLE stores ADD COLUMN notes JSON"))


def _seed_email_templates(engine) -> None:
    from .models import EmailTemplate

    with Session(engine) as session:
        existing = set(session.scalars(select(EmailTemplate.type)))
        missing = [name for name in DEFAULT_TEMPLATES if name not in existing]
        for name in missing:
            defaults = DEFAULT_TEMPLATES[name]
            session.add(EmailTemplate(type=name, subject=defaults["subject"], html=defaults["html"]))
        if missing:
            session.commit()
