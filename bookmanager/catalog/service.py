import secrets
import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from .. import policy
from ..audit import EVENT_BOOK_CREATED, log_event, record_ownership_change
from ..constants import (
    BOOK_AVAILABLE,
    BOOK_ISSUED,
    BOOK_SORT_FIELDS,
    CIRCULATING_STATUSES,
    DEFAULT_PAGE,
    ISSUE_ISSUED,
    ROLE_BOOKKEEPER,
)
from ..errors import DuplicateISBN, HasActiveLoans, InvalidNewOwner, NotFound, ValidationError
from ..models import Book, Issue, User, db, transaction

UPDATABLE_FIELDS = (
    "title",
    "author",
    "isbn",
    "genre",
    "publication_date",
    "description",
    "cover_image",
    "total_copies",
)
REQUIRED_FIELDS = ("title", "author", "isbn", "genre", "publication_date", "total_copies")


def generate_rfid_tag():
    return f"RFID_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def _get_book_or_404(book_id):
    book = db.session.get(Book, book_id) if book_id else None
    if book is None:
        raise NotFound("Book not found.")
    return book


def _isbn_taken(isbn, exclude_id=None):
    query = Book.query.filter(Book.isbn == isbn)
    if exclude_id is not None:
        query = query.filter(Book.id != exclude_id)
    return db.session.query(query.exists()).scalar()


def _resolve_initial_owner(actor, owner_id):
    if not owner_id or owner_id == actor.id:
        return actor.id
    if not policy.is_allowed(actor, policy.BOOK_ASSIGN_OWNER):
        raise InvalidNewOwner("Only administrators can assign a book to another owner.")
    owner = db.session.get(User, owner_id)
    if owner is None or owner.role != ROLE_BOOKKEEPER:
        raise InvalidNewOwner()
    return owner.id


def create_book(actor, data, owner_id=None):
    """Add a book to the catalog, owned by its creator.

    ``data`` holds the validated book fields. All copies start available and
    the initial ownership assignment is audited in the same transaction.
    """
    policy.authorize(actor, policy.BOOK_CREATE)

    isbn = data["isbn"]
    if _isbn_taken(isbn):
        raise DuplicateISBN(isbn)
    initial_owner_id = _resolve_initial_owner(actor, owner_id)

    try:
        with transaction():
            book = Book(
                title=data["title"],
                author=data["author"],
                isbn=isbn,
                genre=data["genre"],
                publication_date=data["publication_date"],
                description=data.get("description") or None,
                cover_image=data.get("cover_image") or None,
                total_copies=data["total_copies"],
                available_copies=data["total_copies"],
                status=BOOK_AVAILABLE,
                rfid_tag=generate_rfid_tag(),
                owner_id=initial_owner_id,
            )
            db.session.add(book)
            db.session.flush()
            record_ownership_change(
                book,
                to_owner_id=initial_owner_id,
                performed_by=actor,
                from_owner_id=None,
                notes=data.get("notes"),
                event=EVENT_BOOK_CREATED,
            )
            log_event(
                "book_created",
                target_type="book",
                target_id=book.id,
                detail=f"Created '{book.title}' (ISBN {book.isbn}, {book.total_copies} copies)",
                user_id=actor.id,
                commit=False,
            )
    except IntegrityError:
        # Lost a race against another insert of the same ISBN.
        if _isbn_taken(isbn):
            raise DuplicateISBN(isbn) from None
        raise

    current_app.logger.info("Book %s created by %s", book.id, actor.id)
    return book


def _apply_total_copies(book, new_total):
    """Resize a book's copy count in one conditional UPDATE.

    Copies out are read from the row being updated, so an issue or return
    committed after *book* was loaded is kept. ``status`` and
    ``available_copies`` are assigned before ``total_copies`` so every
    backend computes them from the old row.
    """
    copies_out = Book.total_copies - Book.available_copies
    new_available = new_total - copies_out
    stmt = (
        update(Book)
        .where(Book.id == book.id, copies_out <= new_total)
        .ordered_values(
            (
                Book.status,
                db.case(
                    (
                        Book.status.in_(sorted(CIRCULATING_STATUSES)),
                        db.case((new_available <= 0, BOOK_ISSUED), else_=BOOK_AVAILABLE),
                    ),
                    else_=Book.status,
                ),
            ),
            (Book.available_copies, new_available),
            (Book.total_copies, new_total),
        )
    )
    if db.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount != 1:
        db.session.refresh(book)
        raise ValidationError(
            f"Total copies cannot be lower than the {book.copies_out} copies currently issued.",
            details={"field": "total_copies"},
        )


def update_book(actor, book_id, changes):
    """Apply the supplied fields to a book. Fields absent from *changes* are untouched."""
    book = _get_book_or_404(book_id)
    policy.authorize(actor, policy.BOOK_UPDATE, book)

    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    for field in REQUIRED_FIELDS:
        if field in changes and changes[field] in (None, ""):
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} cannot be empty.", details={"field": field})
    new_isbn = changes.get("isbn")
    if new_isbn and new_isbn != book.isbn and _isbn_taken(new_isbn, exclude_id=book.id):
        raise DuplicateISBN(new_isbn)

    try:
        with transaction():
            for field, value in changes.items():
                if field == "total_copies":
                    _apply_total_copies(book, value)
                elif field in ("description", "cover_image"):
                    setattr(book, field, value or None)
                else:
                    setattr(book, field, value)
            if changes:
                log_event(
                    "book_updated",
                    target_type="book",
                    target_id=book.id,
                    detail=f"Updated {', '.join(sorted(changes))}",
                    user_id=actor.id,
                    commit=False,
                )
    except IntegrityError:
        if new_isbn and _isbn_taken(new_isbn, exclude_id=book.id):
            raise DuplicateISBN(new_isbn) from None
        raise

    return book


def _active_issue_count(book):
    return book.issues.filter(Issue.status == ISSUE_ISSUED).count()


def delete_book(actor, book_id):
    """Remove a book and its history. Refused while any copy is still issued."""
    policy.authorize(actor, policy.BOOK_DELETE)
    book = _get_book_or_404(book_id)

    active = _active_issue_count(book)
    if active:
        raise HasActiveLoans(details={"active_issues": active})

    title = book.title
    with transaction():
        # Locks the row against a concurrent issue until the delete commits.
        # Every open issue holds a copy, so the row itself must show none out.
        stmt = (
            update(Book)
            .where(
                Book.id == book.id,
                Book.available_copies == Book.total_copies,
                ~Book.issues.any(Issue.status == ISSUE_ISSUED),
            )
            .values(updated_at=Book.updated_at)
        )
        if db.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount != 1:
            raise HasActiveLoans(details={"active_issues": _active_issue_count(book)})
        db.session.delete(book)
        log_event(
            "book_deleted",
            target_type="book",
            target_id=book_id,
            detail=f"Deleted '{title}'",
            user_id=actor.id,
            commit=False,
        )
    current_app.logger.info("Book %s deleted by %s", book_id, actor.id)


def get_book(book_id):
    return _get_book_or_404(book_id)


def list_books(search=None, genre=None, sort_by="title", sort_order="asc", page=DEFAULT_PAGE, limit=None):
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    limit = min(max(1, limit or current_app.config.get("DEFAULT_PAGE_SIZE", 10)), max_limit)
    page = max(1, page or DEFAULT_PAGE)

    query = Book.query
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(Book.title.ilike(pattern), Book.author.ilike(pattern), Book.isbn.ilike(pattern)))
    if genre:
        query = query.filter(Book.genre == genre)

    column = getattr(Book, BOOK_SORT_FIELDS.get(sort_by, "title"))
    query = query.order_by(column.desc() if sort_order == "desc" else column.asc(), Book.id)
    return query.paginate(page=page, per_page=limit, error_out=False)
