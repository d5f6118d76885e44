"""Command-line helpers for SupportDesk administration."""
from __future__ import annotations

import argparse
import smtplib
import sys
from dataclasses import replace
from typing import Sequence

from flask import current_app

from .app import create_app
from .config import AppConfig, save_config
from .extensions import db
from .models import User
from .notifications import active_provider, deliver


def _create_admin(email: str, password: str, name: str) -> int:
    email = email.strip().lower()
    if len(password) < 4:
        print("Error: passwords must be at least 4 characters long.", file=sys.stderr)
        return 1

    user = User.query.filter(db.func.lower(User.email) == email).first()
    if user is None:
        user = User(name=name, email=email)
        db.session.add(user)
        message = f"Admin user {email} created."
    else:
        message = f"Existing user {email} promoted to admin."
    user.is_admin = True
    user.external_user = False
    user.set_password(password)
    db.session.commit()

    print(message)
    return 0


def _set_roles_enabled(value: bool) -> int:
    config: AppConfig = current_app.config["APP_CONFIG"]
    updated_config = replace(config, roles=replace(config.roles, enabled=value))
    try:
        path = save_config(updated_config)
    except (OSError, ValueError) as exc:
        print(f"Error: unable to persist configuration changes: {exc}", file=sys.stderr)
        return 1

    current_app.config["APP_CONFIG"] = updated_config
    print(f"Role enforcement {'enabled' if value else 'disabled'} in {path}.")
    return 0


def _send_test_email(to: str) -> int:
    provider = active_provider()
    if provider is None:
        print("Error: no active email provider is configured.", file=sys.stderr)
        return 1

    try:
        message_id = deliver(
            provider,
            to,
            "SupportDesk test email",
            "This is a test email sent from SupportDesk.",
        )
    except (smtplib.SMTPException, OSError) as exc:
        print(f"Error: unable to send email: {exc}", file=sys.stderr)
        return 1

    print(f"Message sent: {message_id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="supportdesk", description="SupportDesk utilities")
    parser.add_argument(
        "--config",
        dest="config_path",
        help="Path to configuration file (defaults to standard lookup)",
    )
    subparsers = parser.add_subparsers(dest="command")

    admin_parser = subparsers.add_parser("create-admin", help="Create or promote an admin user")
    admin_parser.add_argument("--email", required=True)
    admin_parser.add_argument("--password", required=True)
    admin_parser.add_argument("--name", default="Admin")

    roles_parser = subparsers.add_parser("roles", help="Toggle role-based permission checks")
    roles_parser.add_argument("action", choices=("enable", "disable"))

    email_parser = subparsers.add_parser("send-test-email", help="Send a test email via SMTP")
    email_parser.add_argument("--to", required=True, help="Recipient address")

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command is None:
        parser.print_help()
        return 1

    app = create_app(args.config_path)
    with app.app_context():
        if args.command == "create-admin":
            return _create_admin(args.email, args.password, args.name)
        if args.command == "roles":
            return _set_roles_enabled(args.action == "enable")
        return _send_test_email(args.to)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
