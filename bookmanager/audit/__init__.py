from flask import has_request_context, request
from flask_login import current_user

from ..models import ActivityLog, OwnershipAudit, db

EVENT_BOOK_CREATED = "Book created"
EVENT_OWNERSHIP_TRANSFERRED = "Ownership transferred"


def _request_user_id():
    if not has_request_context():
        return None
    if current_user and current_user.is_authenticated:
        return current_user.id
    return None


def _has_pending_writes():
    return bool(db.session.new or db.session.dirty or db.session.deleted)


def default_audit_note(event, actor):
    """Note used whenever an ownership change arrives without one."""
    return f"{event} by {actor.role.lower()}"


def log_event(action, target_type=None, target_id=None, detail=None, user_id=None, commit=None):
    """Record an activity-log entry.

    If the current session already has pending writes, the entry is flushed
    into that transaction rather than committed independently.
    """
    should_commit = (not _has_pending_writes()) if commit is None else commit
    entry = ActivityLog(
        user_id=user_id or _request_user_id(),
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=detail,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)

    if should_commit:
        db.session.commit()
    else:
        db.session.flush()

    return entry


def record_ownership_change(book, to_owner_id, performed_by, from_owner_id=None, notes=None, event=None):
    """Append an OwnershipAudit row to the caller's open transaction.

    Never commits: the owner change and its audit row must land together, so
    the caller's transaction decides.
    """
    if not notes:
        notes = default_audit_note(event or EVENT_OWNERSHIP_TRANSFERRED, performed_by)
    entry = OwnershipAudit(
        book=book,
        from_owner_id=from_owner_id,
        to_owner_id=to_owner_id,
        performed_by_id=performed_by.id,
        notes=notes,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
