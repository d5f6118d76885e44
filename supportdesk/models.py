"""Database models for SupportDesk."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List

from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db


class StoreTag(db.Model):
    """Association table between stores and tags."""

    __tablename__ = "store_tags"

    store_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("stores.id"), primary_key=True)
    tag_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("tags.id"), primary_key=True)


class UserRole(db.Model):
    """Association table between users and roles."""

    __tablename__ = "user_roles"

    user_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    role_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("roles.id"), primary_key=True)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Client(TimestampMixin, db.Model):
    """Tenant company owning stores, tags and tickets."""

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(db.String(255))
    contact_name: Mapped[str | None] = mapped_column(db.String(255))
    number: Mapped[str | None] = mapped_column(db.String(64))
    active: Mapped[bool] = mapped_column(db.Boolean, default=True, nullable=False)

    stores: Mapped[List["Store"]] = relationship(
        "Store", back_populates="client", cascade="all, delete-orphan", order_by="Store.name"
    )
    tags: Mapped[List["Tag"]] = relationship(
        "Tag", back_populates="client", cascade="all, delete-orphan", order_by="Tag.value"
    )
    tickets: Mapped[List["Ticket"]] = relationship("Ticket", back_populates="client")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "contactName": self.contact_name,
            "number": self.number,
            "active": self.active,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class Store(TimestampMixin, db.Model):
    """Location or department belonging to a client."""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(db.String(255))
    phone: Mapped[str | None] = mapped_column(db.String(64))
    address: Mapped[str | None] = mapped_column(db.Text)
    manager: Mapped[str | None] = mapped_column(db.String(255))
    notes: Mapped[List[str] | None] = mapped_column(db.JSON, default=list)

    client: Mapped[Client] = relationship("Client", back_populates="stores")
    tags: Mapped[List["Tag"]] = relationship(
        "Tag", secondary="store_tags", back_populates="stores", order_by="Tag.value"
    )
    tickets: Mapped[List["Ticket"]] = relationship("Ticket", back_populates="store")

    def connect_tags(self, tags: Iterable["Tag"]) -> None:
        """Attach ``tags`` without dropping the ones already linked."""

        current = {tag.id for tag in self.tags}
        for tag in tags:
            if tag.id not in current:
                self.tags.append(tag)
                current.add(tag.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "manager": self.manager,
            "notes": list(self.notes or []),
            "tags": [tag.to_dict() for tag in self.tags],
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class Tag(db.Model):
    """Free-form label scoped to a client."""

    __tablename__ = "tags"
    __table_args__ = (db.UniqueConstraint("client_id", "value", name="uq_tags_client_value"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    value: Mapped[str] = mapped_column(db.String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(db.DateTime, default=datetime.utcnow, nullable=False)

    client: Mapped[Client] = relationship("Client", back_populates="tags")
    stores: Mapped[List[Store]] = relationship("Store", secondary="store_tags", back_populates="tags")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "value": self.value}


class Role(TimestampMixin, db.Model):
    """Named bundle of permissions granted to users."""

    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(120), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text)
    permissions: Mapped[List[str] | None] = mapped_column(db.JSON, default=list)
    active: Mapped[bool] = mapped_column(db.Boolean, default=True, nullable=False)

    users: Mapped[List["User"]] = relationship("User", secondary="user_roles", back_populates="roles")

    def to_dict(self, *, include_users: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": list(self.permissions or []),
            "active": self.active,
        }
        if include_users:
            payload["users"] = [{"id": user.id, "name": user.name} for user in self.users]
        return payload


class User(TimestampMixin, db.Model):
    """Internal engineer/admin or external portal user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(db.String(255))
    language: Mapped[str] = mapped_column(db.String(16), default="en", nullable=False)
    is_admin: Mapped[bool] = mapped_column(db.Boolean, default=False, nullable=False)
    external_user: Mapped[bool] = mapped_column(db.Boolean, default=False, nullable=False)
    first_login: Mapped[bool] = mapped_column(db.Boolean, default=True, nullable=False)

    roles: Mapped[List[Role]] = relationship("Role", secondary="user_roles", back_populates="users")
    sessions: Mapped[List["UserSession"]] = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )
    assigned_tickets: Mapped[List["Ticket"]] = relationship(
        "Ticket", back_populates="assigned_to", foreign_keys="Ticket.assigned_to_id"
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def permissions(self) -> set[str]:
        granted: set[str] = set()
        for role in self.roles:
            if role.active:
                granted.update(role.permissions or [])
        return granted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "language": self.language,
            "isAdmin": self.is_admin,
            "externalUser": self.external_user,
            "firstLogin": self.first_login,
            "roles": [{"id": role.id, "name": role.name} for role in self.roles],
            "createdAt": _isoformat(self.created_at),
        }


class UserSession(db.Model):
    """Issued API token; deleting the row revokes the token."""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    token_id: Mapped[str] = mapped_column(db.String(64), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(db.String(255))
    ip_address: Mapped[str | None] = mapped_column(db.String(64))
    created_at: Mapped[datetime] = mapped_column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="sessions")


class Ticket(TimestampMixin, db.Model):
    """Support issue raised by a requester against a client's store."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[int] = mapped_column(db.Integer, unique=True, nullable=False)
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)
    detail: Mapped[str | None] = mapped_column(db.Text)
    name: Mapped[str | None] = mapped_column(db.String(255))
    email: Mapped[str | None] = mapped_column(db.String(255))
    type: Mapped[str] = mapped_column(db.String(32), nullable=False, default="service")
    priority: Mapped[str] = mapped_column(db.String(32), nullable=False, default="low")
    status: Mapped[str] = mapped_column(db.String(32), nullable=False, default="needs_support")
    is_complete: Mapped[bool] = mapped_column(db.Boolean, default=False, nullable=False)
    client_id: Mapped[int | None] = mapped_column(db.Integer, db.ForeignKey("clients.id"))
    store_id: Mapped[int | None] = mapped_column(db.Integer, db.ForeignKey("stores.id"))
    assigned_to_id: Mapped[int | None] = mapped_column(db.Integer, db.ForeignKey("users.id"))
    created_by_id: Mapped[int | None] = mapped_column(db.Integer, db.ForeignKey("users.id"))

    client: Mapped[Client | None] = relationship("Client", back_populates="tickets")
    store: Mapped[Store | None] = relationship("Store", back_populates="tickets")
    assigned_to: Mapped[User | None] = relationship(
        "User", back_populates="assigned_tickets", foreign_keys=[assigned_to_id]
    )
    created_by: Mapped[User | None] = relationship("User", foreign_keys=[created_by_id])
    comments: Mapped[List["Comment"]] = relationship(
        "Comment", back_populates="ticket", cascade="all, delete-orphan", order_by="Comment.created_at"
    )

    def add_comment(self, text: str, *, user: User | None = None, public: bool = False) -> "Comment":
        comment = Comment(ticket=self, text=text, user=user, public=public)
        db.session.add(comment)
        self.updated_at = datetime.utcnow()
        return comment

    def to_dict(self, *, include_comments: bool = False, public_only: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "detail": self.detail,
            "name": self.name,
            "email": self.email,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "isComplete": self.is_complete,
            "client": {"id": self.client.id, "name": self.client.name} if self.client else None,
            "store": {"id": self.store.id, "name": self.store.name} if self.store else None,
            "assignedTo": (
                {"id": self.assigned_to.id, "name": self.assigned_to.name, "email": self.assigned_to.email}
                if self.assigned_to
                else None
            ),
            "createdBy": (
                {"id": self.created_by.id, "name": self.created_by.name} if self.created_by else None
            ),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }
        if include_comments:
            payload["comments"] = [
                comment.to_dict() for comment in self.comments if comment.public or not public_only
            ]
        return payload


class Comment(db.Model):
    """Note added to a ticket's timeline."""

    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(db.Integer, db.ForeignKey("tickets.id"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(db.Integer, db.ForeignKey("users.id"))
    text: Mapped[str] = mapped_column(db.Text, nullable=False)
    public: Mapped[bool] = mapped_column(db.Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(db.DateTime, default=datetime.utcnow, nullable=False)

    ticket: Mapped[Ticket] = relationship("Ticket", back_populates="comments")
    user: Mapped[User | None] = relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "public": self.public,
            "user": {"id": self.user.id, "name": self.user.name} if self.user else None,
            "createdAt": _isoformat(self.created_at),
        }


class EmailTemplate(TimestampMixin, db.Model):
    """Notification body rendered with the ticket context."""

    __tablename__ = "email_templates"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(db.String(64), unique=True, nullable=False)
    subject: Mapped[str | None] = mapped_column(db.String(255))
    html: Mapped[str] = mapped_column(db.Text, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "subject": self.subject,
            "html": self.html,
            "updatedAt": _isoformat(self.updated_at),
        }


class EmailProvider(TimestampMixin, db.Model):
    """SMTP account used for outbound notifications."""

    __tablename__ = "email_providers"

    id: Mapped[int] = mapped_column(primary_key=True)
    host: Mapped[str] = mapped_column(db.String(255), nullable=False)
    port: Mapped[int] = mapped_column(db.Integer, nullable=False, default=587)
    user: Mapped[str | None] = mapped_column(db.String(255))
    password: Mapped[str | None] = mapped_column(db.String(255))
    reply: Mapped[str] = mapped_column(db.String(255), nullable=False)
    secure: Mapped[bool] = mapped_column(db.Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(db.Boolean, default=True, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "reply": self.reply,
            "secure": self.secure,
            "active": self.active,
        }


@event.listens_for(Ticket, "before_update")
def _touch_ticket(mapper, connection, target: Ticket) -> None:  # pragma: no cover - SQLAlchemy hook
    target.updated_at = datetime.utcnow()
