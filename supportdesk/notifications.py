"""Ticket email notifications rendered from stored templates.

Every sender is fire-and-forget: a missing SMTP provider, a broken template
or a transport failure is logged and reported through the boolean return
value, never raised to the request that triggered the notification.
"""
from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Any, Callable, Dict, Mapping, Tuple

from flask import current_app
from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .config import AppConfig
from .models import Comment, EmailProvider, EmailTemplate, Ticket, User
from .richtext import detail_to_html, detail_to_text


logger = logging.getLogger(__name__)

TICKET_CREATED = "ticket_created"
TICKET_ASSIGNED = "ticket_assigned"
TICKET_STATUS_CHANGED = "ticket_status_changed"
TICKET_COMMENT = "ticket_comment"

_HTML_SHELL = (
    '<!DOCTYPE html><html><body style="font-family: sans-serif; color: #1f2937;">'
    "{body}"
    "</body></html>"
)

DEFAULT_TEMPLATES: Dict[str, Dict[str, str]] = {
    TICKET_CREATED: {
        "subject": "Issue #{{ number }} has been created",
        "html": _HTML_SHELL.format(
            body=(
                "<h2>Your ticket has been received</h2>"
                "<p>Issue #{{ number }}: <strong>{{ title }}</strong></p>"
                "<div>{{ detail }}</div>"
                '<p><a href="{{ url }}">View ticket</a></p>'
            )
        ),
    },
    TICKET_ASSIGNED: {
        "subject": "A new ticket has been assigned to you",
        "html": _HTML_SHELL.format(
            body=(
                "<h2>Ticket assigned</h2>"
                "<p>Issue #{{ number }}: <strong>{{ title }}</strong></p>"
                "<div>{{ detail }}</div>"
                '<p><a href="{{ url }}">Open ticket</a></p>'
            )
        ),
    },
    TICKET_STATUS_CHANGED: {
        "subject": "Issue #{{ number }} status is now {{ status }}",
        "html": _HTML_SHELL.format(
            body=(
                "<h2>{{ title }}</h2>"
                "<p>Your issue is now <strong>{{ status }}</strong>.</p>"
                "<div>{{ detail }}</div>"
            )
        ),
    },
    TICKET_COMMENT: {
        "subject": "New comment on Issue #{{ number }}",
        "html": _HTML_SHELL.format(
            body=(
                "<h2>{{ title }}</h2>"
                "<p>A new comment was added to your issue:</p>"
                "<blockquote>{{ comment }}</blockquote>"
                '<p><a href="{{ url }}">View ticket</a></p>'
            )
        ),
    },
}

_html_environment = SandboxedEnvironment(autoescape=True)
_text_environment = SandboxedEnvironment(autoescape=False)


def _app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def validate_template(source: str) -> None:
    """Raise :class:`jinja2.TemplateError` when ``source`` does not compile."""

    _html_environment.from_string(source)


def render_html(source: str, context: Mapping[str, Any]) -> str:
    return _html_environment.from_string(source).render(**context)


def render_subject(source: str, context: Mapping[str, Any]) -> str:
    rendered = _text_environment.from_string(source).render(**context)
    return " ".join(rendered.split())


def active_provider() -> EmailProvider | None:
    return EmailProvider.query.filter_by(active=True).order_by(EmailProvider.id.asc()).first()


def _load_template(template_type: str) -> tuple[str, str]:
    template = EmailTemplate.query.filter_by(type=template_type).first()
    defaults = DEFAULT_TEMPLATES[template_type]
    if template is None:
        return defaults["subject"], defaults["html"]
    return template.subject or defaults["subject"], template.html or defaults["html"]


def _open_transport(provider: EmailProvider, timeout: int) -> smtplib.SMTP:
    if provider.secure:
        context = ssl.create_default_context()
        return smtplib.SMTP_SSL(provider.host, provider.port, timeout=timeout, context=context)
    return smtplib.SMTP(provider.host, provider.port, timeout=timeout)


def deliver(provider: EmailProvider, to: str, subject: str, text: str, html: str | None = None) -> str:
    """Send one message through ``provider`` and return its Message-ID."""

    message = EmailMessage()
    message["From"] = provider.reply
    message["To"] = to
    message["Subject"] = subject
    message["Date"] = formatdate(localtime=True)
    message["Message-ID"] = make_msgid(domain=provider.reply.split("@")[-1] or None)
    message.set_content(text)
    if html:
        message.add_alternative(html, subtype="html")

    with _open_transport(provider, _app_config().notifications.timeout) as smtp:
        smtp.ehlo()
        if not provider.secure and smtp.has_extn("starttls"):
            smtp.starttls(context=ssl.create_default_context())
            smtp.ehlo()
        if provider.user:
            smtp.login(provider.user, provider.password or "")
        smtp.send_message(message)
    return message["Message-ID"]


MessageParts = Callable[[], Tuple[Mapping[str, Any], str]]


def send_email(to: str | None, template_type: str, build: MessageParts) -> bool:
    """Render ``template_type`` with the context from ``build`` and mail it to ``to``.

    ``build`` returns the template context and the plain-text body; it runs
    inside the same guard as rendering and delivery.
    """

    if not to:
        return False
    if not _app_config().notifications.enabled:
        logger.debug("Notifications disabled; skipping %s for %s", template_type, to)
        return False

    try:
        provider = active_provider()
        if provider is None:
            logger.debug("No email provider configured; skipping %s for %s", template_type, to)
            return False

        context, text = build()
        subject_source, html_source = _load_template(template_type)
        subject = render_subject(subject_source, context)
        html = render_html(html_source, context)

        logger.info("Sending %s email to %s", template_type, to)
        message_id = deliver(provider, to, subject, text, html)
    except TemplateError as exc:
        logger.error("Unable to render %s email template: %s", template_type, exc)
        return False
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Unable to send %s email to %s: %s", template_type, to, exc)
        return False
    except Exception:
        logger.exception("Unexpected error while sending %s email to %s", template_type, to)
        return False

    logger.info("Message sent: %s", message_id)
    return True


def _ticket_url(ticket: Ticket) -> str:
    return f"{_app_config().base_url}/issue/{ticket.id}"


def _ticket_context(ticket: Ticket, **extra: Any) -> Dict[str, Any]:
    context: Dict[str, Any] = {
        "title": ticket.title,
        "number": ticket.number,
        "status": ticket.status,
        "priority": ticket.priority,
        "detail": detail_to_html(ticket.detail),
        "url": _ticket_url(ticket),
        "name": ticket.name,
    }
    context.update(extra)
    return context


def send_ticket_created(ticket: Ticket) -> bool:
    def build() -> Tuple[Dict[str, Any], str]:
        text = f"Hello there, Issue #{ticket.number} has been created.\n\n{detail_to_text(ticket.detail)}"
        return _ticket_context(ticket), text.strip()

    return send_email(ticket.email, TICKET_CREATED, build)


def send_assigned_email(user: User, ticket: Ticket) -> bool:
    def build() -> Tuple[Dict[str, Any], str]:
        return _ticket_context(ticket), "Hello there, a ticket has been assigned to you"

    return send_email(user.email, TICKET_ASSIGNED, build)


def completion_label(ticket: Ticket) -> str:
    return "COMPLETED" if ticket.is_complete else "OUTSTANDING"


def send_ticket_status(ticket: Ticket) -> bool:
    status = completion_label(ticket)

    def build() -> Tuple[Dict[str, Any], str]:
        text = f"Hello there, Issue #{ticket.number}, now has a status of {status}"
        return _ticket_context(ticket, status=status), text

    return send_email(ticket.email, TICKET_STATUS_CHANGED, build)


def send_ticket_comment(ticket: Ticket, comment: Comment) -> bool:
    def build() -> Tuple[Dict[str, Any], str]:
        text = f"Hello there, a new comment was added to Issue #{ticket.number}:\n\n{comment.text}"
        return _ticket_context(ticket, comment=comment.text), text

    return send_email(ticket.email, TICKET_COMMENT, build)
