"""SMTP provider settings and notification template administration."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from jinja2 import TemplateError

from ..config import coerce_bool
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import EmailProvider, EmailTemplate
from ..notifications import active_provider, validate_template
from ..permissions import require_permission
from ..validation import json_body, optional_text, require_email, require_text


email_bp = Blueprint("email", __name__, url_prefix="/api/v1")


def _parse_port(value: object) -> int:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError("Please provide a valid SMTP port.", field="port") from exc
    if not 0 < port < 65536:
        raise ValidationError("Please provide a valid SMTP port.", field="port")
    return port


def _get_template(template_id: int) -> EmailTemplate:
    template = db.session.get(EmailTemplate, template_id)
    if template is None:
        raise NotFound("Email template not found.")
    return template


@email_bp.route("/config/email", methods=["GET"])
@require_permission(["email::read"])
def get_email_config():
    provider = active_provider()
    return jsonify(
        {
            "success": True,
            "active": provider is not None,
            "email": provider.to_dict() if provider else None,
        }
    )


@email_bp.route("/config/email", methods=["PUT"])
@require_permission(["email::update"])
def update_email_config():
    data = json_body()
    provider = EmailProvider.query.order_by(EmailProvider.id.asc()).first()
    if provider is None:
        provider = EmailProvider(
            host=require_text(data, "host", "Please provide the SMTP host."),
            reply=require_email(data, "reply", "Please provide the reply-to address."),
        )
        db.session.add(provider)

    if "host" in data:
        provider.host = require_text(data, "host", "Please provide the SMTP host.")
    if "reply" in data:
        provider.reply = require_email(data, "reply", "Please provide the reply-to address.")
    if "port" in data:
        provider.port = _parse_port(data.get("port"))
    elif provider.port is None:
        provider.port = 587
    if "user" in data:
        provider.user = optional_text(data, "user")
    if data.get("password"):
        provider.password = str(data.get("password"))
    if "secure" in data:
        provider.secure = coerce_bool(data.get("secure"))
    if "active" in data:
        provider.active = coerce_bool(data.get("active"), default=True)

    db.session.commit()
    current_app.logger.info("Email provider updated (%s:%s)", provider.host, provider.port)
    return jsonify({"success": True, "email": provider.to_dict()})


@email_bp.route("/config/email", methods=["DELETE"])
@require_permission(["email::update"])
def delete_email_config():
    EmailProvider.query.delete()
    db.session.commit()
    return jsonify({"success": True})


@email_bp.route("/email-templates", methods=["GET"])
@require_permission(["email::read"])
def list_templates():
    templates = EmailTemplate.query.order_by(EmailTemplate.type.asc()).all()
    return jsonify({"success": True, "templates": [template.to_dict() for template in templates]})


@email_bp.route("/email-templates/<int:template_id>", methods=["GET"])
@require_permission(["email::read"])
def get_template(template_id: int):
    return jsonify({"success": True, "template": _get_template(template_id).to_dict()})


@email_bp.route("/email-templates/<int:template_id>", methods=["PUT"])
@require_permission(["email::update"])
def update_template(template_id: int):
    template = _get_template(template_id)
    data = json_body()

    if "html" in data:
        html = require_text(data, "html", "Please provide the template body.")
        try:
            validate_template(html)
        except TemplateError as exc:
            raise ValidationError(f"Template does not compile: {exc}", field="html") from exc
        template.html = html
    if "subject" in data:
        subject = optional_text(data, "subject")
        if subject is not None:
            try:
                validate_template(subject)
            except TemplateError as exc:
                raise ValidationError(f"Subject does not compile: {exc}", field="subject") from exc
        template.subject = subject

    db.session.commit()
    return jsonify({"success": True, "template": template.to_dict()})
