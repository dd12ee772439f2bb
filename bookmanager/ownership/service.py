from flask import current_app

from .. import policy
from ..audit import EVENT_OWNERSHIP_TRANSFERRED, log_event, record_ownership_change
from ..constants import ROLE_BOOKKEEPER
from ..errors import InvalidNewOwner, NoOpTransfer, NotFound
from ..models import Book, OwnershipAudit, User, db, transaction


def _get_book_or_404(book_id):
    book = db.session.get(Book, book_id) if book_id else None
    if book is None:
        raise NotFound("Book not found.")
    return book


def transfer_ownership(actor, book_id, new_owner_id, note=None):
    """Hand a book to another bookkeeper and record the change.

    The owner update and its audit row are written in one transaction.
    """
    policy.authorize(actor, policy.BOOK_TRANSFER)
    book = _get_book_or_404(book_id)

    new_owner = db.session.get(User, new_owner_id) if new_owner_id else None
    if new_owner is None or new_owner.role != ROLE_BOOKKEEPER:
        raise InvalidNewOwner()

    policy.authorize(actor, policy.BOOK_TRANSFER, book)

    previous_owner_id = book.owner_id
    if new_owner.id == previous_owner_id:
        raise NoOpTransfer()

    with transaction():
        book.owner_id = new_owner.id
        record_ownership_change(
            book,
            to_owner_id=new_owner.id,
            performed_by=actor,
            from_owner_id=previous_owner_id,
            notes=note,
            event=EVENT_OWNERSHIP_TRANSFERRED,
        )
        log_event(
            "ownership_transferred",
            target_type="book",
            target_id=book.id,
            detail=f"'{book.title}' transferred from {previous_owner_id} to {new_owner.id}",
            user_id=actor.id,
            commit=False,
        )

    current_app.logger.info("Book %s transferred %s -> %s by %s", book.id, previous_owner_id, new_owner.id, actor.id)
    return book


def get_ownership_history(actor, book_id):
    """Return ``(book, audits)`` with the audit rows newest first."""
    policy.authorize(actor, policy.BOOK_HISTORY)
    book = _get_book_or_404(book_id)
    audits = (
        book.ownership_audits.order_by(OwnershipAudit.created_at.desc(), OwnershipAudit.id.desc()).all()
    )
    return book, audits
