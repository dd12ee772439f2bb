import sqlite3
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime

import bcrypt
from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

from .constants import (
    BOOK_AVAILABLE,
    BOOK_STATUSES,
    ISSUE_ISSUED,
    ISSUE_STATUSES,
    ROLE_ADMIN,
    ROLE_USER,
    ROLES,
    STAFF_ROLES,
)

db = SQLAlchemy()


def _utcnow():
    return datetime.now(UTC)


def _uuid():
    return uuid.uuid4().hex


def as_utc(value):
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _iso(value):
    value = as_utc(value) if isinstance(value, datetime) else value
    return value.isoformat() if value is not None else None


def _in_list(column, values):
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@contextmanager
def transaction():
    """Commit everything written inside the block at once, or nothing.

    Reads made before entering belong to the same transaction, so checks
    performed just ahead of the block and the writes inside it commit together.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ── User ────────────────────────────────────────────────────────────


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    failed_login_count = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (db.CheckConstraint(_in_list("role", ROLES), name="ck_users_role"),)

    issues = db.relationship("Issue", back_populates="borrower", lazy="dynamic")
    owned_books = db.relationship("Book", back_populates="owner", lazy="dynamic")

    def set_password(self, password):
        self.password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")

    def check_password(self, password):
        return bcrypt.checkpw(password.encode("utf-8"), self.password_hash.encode("utf-8"))

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    def summary(self):
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


# ── Book ────────────────────────────────────────────────────────────


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    title = db.Column(db.String(500), nullable=False, index=True)
    author = db.Column(db.String(500), nullable=False, index=True)
    isbn = db.Column(db.String(32), unique=True, nullable=False, index=True)
    rfid_tag = db.Column(db.String(64), unique=True, nullable=False)
    genre = db.Column(db.String(32), nullable=False)
    publication_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text, nullable=True)
    cover_image = db.Column(db.String(1000), nullable=True)
    total_copies = db.Column(db.Integer, nullable=False, default=1)
    available_copies = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default=BOOK_AVAILABLE)
    owner_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint("total_copies >= 1", name="ck_books_total_copies_min"),
        db.CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_copies_range",
        ),
        db.CheckConstraint(_in_list("status", BOOK_STATUSES), name="ck_books_status"),
    )

    owner = db.relationship("User", back_populates="owned_books")
    issues = db.relationship(
        "Issue",
        back_populates="book",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    ownership_audits = db.relationship(
        "OwnershipAudit",
        back_populates="book",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def copies_out(self):
        return self.total_copies - self.available_copies

    @property
    def active_issue_count(self):
        return self.issues.filter(Issue.status == ISSUE_ISSUED).count()

    def to_dict(self, include_owner=True):
        data = {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "rfid_tag": self.rfid_tag,
            "genre": self.genre,
            "publication_date": _iso(self.publication_date),
            "description": self.description,
            "cover_image": self.cover_image,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "status": self.status,
            "owner_id": self.owner_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_owner:
            data["owner"] = self.owner.summary() if self.owner else None
        return data

    def __repr__(self):
        return f"<Book {self.title[:40]} ({self.isbn})>"


# ── Issue ───────────────────────────────────────────────────────────


class Issue(db.Model):
    __tablename__ = "book_issues"

    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    book_id = db.Column(db.String(32), db.ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    issue_date = db.Column(db.DateTime, nullable=False, default=_utcnow)
    due_date = db.Column(db.DateTime, nullable=False)
    return_date = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=ISSUE_ISSUED, index=True)
    otp_code = db.Column(db.String(16), nullable=True)
    otp_expires = db.Column(db.DateTime, nullable=True)
    reminder_sent = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (db.CheckConstraint(_in_list("status", ISSUE_STATUSES), name="ck_book_issues_status"),)

    book = db.relationship("Book", back_populates="issues")
    borrower = db.relationship("User", back_populates="issues")

    @property
    def is_overdue(self):
        return self.status == ISSUE_ISSUED and _utcnow() > as_utc(self.due_date)

    @property
    def code_expired(self):
        return self.otp_expires is not None and _utcnow() > as_utc(self.otp_expires)

    def to_dict(self, include_book=False, include_user=False):
        data = {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "issue_date": _iso(self.issue_date),
            "due_date": _iso(self.due_date),
            "return_date": _iso(self.return_date),
            "status": self.status,
            "otp_expires": _iso(self.otp_expires),
            "is_overdue": self.is_overdue,
        }
        if include_book:
            data["book"] = self.book.to_dict(include_owner=False) if self.book else None
        if include_user:
            data["user"] = self.borrower.summary() if self.borrower else None
        return data

    def __repr__(self):
        return f"<Issue {self.id[:8]} book={self.book_id[:8]} user={self.user_id[:8]} {self.status}>"


# ── Ownership Audit ─────────────────────────────────────────────────


class OwnershipAudit(db.Model):
    """Append-only provenance row; one per ownership assignment."""

    __tablename__ = "book_ownership_audits"

    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    book_id = db.Column(db.String(32), db.ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    from_owner_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    to_owner_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    performed_by_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow, index=True)

    book = db.relationship("Book", back_populates="ownership_audits")
    from_owner = db.relationship("User", foreign_keys=[from_owner_id])
    to_owner = db.relationship("User", foreign_keys=[to_owner_id])
    performed_by = db.relationship("User", foreign_keys=[performed_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "book_id": self.book_id,
            "from_owner": self.from_owner.summary() if self.from_owner else None,
            "to_owner": self.to_owner.summary() if self.to_owner else None,
            "performed_by": self.performed_by.summary() if self.performed_by else None,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<OwnershipAudit book={self.book_id[:8]} {self.from_owner_id} -> {self.to_owner_id}>"


# ── Activity Log ────────────────────────────────────────────────────


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=_utcnow, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    target_type = db.Column(db.String(50), nullable=True)  # book, issue, user
    target_id = db.Column(db.String(32), nullable=True)
    detail = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    def __repr__(self):
        return f"<ActivityLog {self.action} at {self.timestamp}>"
