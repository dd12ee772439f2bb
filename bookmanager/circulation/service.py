import hmac
import secrets
from datetime import UTC, datetime, timedelta

from flask import current_app
from sqlalchemy import update

from .. import policy
from ..audit import log_event
from ..constants import (
    BOOK_AVAILABLE,
    BOOK_ISSUED,
    CIRCULATING_STATUSES,
    DEFAULT_PAGE,
    ISSUE_ISSUED,
    ISSUE_RETURNED,
    ISSUE_STATUSES,
    OTP_EXPIRY_MINUTES,
    OTP_LENGTH,
)
from ..errors import CodeExpired, InvalidCode, NoCopiesAvailable, NotFound, StateError, ValidationError
from ..models import Book, Issue, User, as_utc, db, transaction


def _utcnow():
    return datetime.now(UTC)


def generate_otp(length=OTP_LENGTH):
    """Numeric one-time code of exactly *length* digits."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def _codes_match(supplied, stored):
    if not supplied or not stored:
        return False
    return hmac.compare_digest(str(supplied).encode("utf-8"), stored.encode("utf-8"))


def _claim_copy(book_id):
    """Take one copy off the shelf. Returns False when none was left.

    The decrement is a single conditional UPDATE, so two requests racing for
    the last copy cannot both succeed. ``status`` is assigned first so every
    backend computes it from the pre-update copy count.
    """
    stmt = (
        update(Book)
        .where(
            Book.id == book_id,
            Book.available_copies > 0,
            Book.status.in_(sorted(CIRCULATING_STATUSES)),
        )
        .ordered_values(
            (Book.status, db.case((Book.available_copies - 1 <= 0, BOOK_ISSUED), else_=BOOK_AVAILABLE)),
            (Book.available_copies, Book.available_copies - 1),
            (Book.updated_at, _utcnow()),
        )
    )
    return db.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount == 1


def _release_copy(book_id):
    stmt = (
        update(Book)
        .where(Book.id == book_id, Book.available_copies < Book.total_copies)
        .ordered_values(
            (Book.status, db.case((Book.status.in_(sorted(CIRCULATING_STATUSES)), BOOK_AVAILABLE), else_=Book.status)),
            (Book.available_copies, Book.available_copies + 1),
            (Book.updated_at, _utcnow()),
        )
    )
    return db.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount == 1


def _close_issue(issue_id, returned_at):
    """Move an open issue to RETURNED. Returns False when it was already closed."""
    stmt = (
        update(Issue)
        .where(Issue.id == issue_id, Issue.status == ISSUE_ISSUED)
        .values(status=ISSUE_RETURNED, return_date=returned_at, otp_code=None, updated_at=returned_at)
    )
    return db.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount == 1


def issue_book(actor, book_id, user_id, due_date):
    """Lend one copy of a book to a user.

    Returns ``(issue, code)``; the plaintext code is handed back once and is
    what the borrower must present on return.
    """
    policy.authorize(actor, policy.BOOK_ISSUE)

    book = db.session.get(Book, book_id) if book_id else None
    if book is None:
        raise NotFound("Book not found.")
    borrower = db.session.get(User, user_id) if user_id else None
    if borrower is None:
        raise NotFound("User not found.")

    now = _utcnow()
    due_date = as_utc(due_date)
    if due_date is None or due_date <= now:
        raise ValidationError("Due date must be in the future.", details={"field": "due_date"})
    if book.status not in CIRCULATING_STATUSES:
        raise StateError(f"This book is not in circulation ({book.status.lower()}).")
    if book.available_copies <= 0:
        raise NoCopiesAvailable()

    code = generate_otp(current_app.config.get("OTP_LENGTH", OTP_LENGTH))
    expiry_minutes = current_app.config.get("OTP_EXPIRY_MINUTES", OTP_EXPIRY_MINUTES)

    with transaction():
        if not _claim_copy(book.id):
            raise NoCopiesAvailable()
        issue = Issue(
            book_id=book.id,
            user_id=borrower.id,
            issue_date=now,
            due_date=due_date,
            status=ISSUE_ISSUED,
            otp_code=code,
            otp_expires=now + timedelta(minutes=expiry_minutes),
        )
        db.session.add(issue)
        db.session.flush()
        log_event(
            "book_issued",
            target_type="issue",
            target_id=issue.id,
            detail=f"Issued '{book.title}' to {borrower.email}, due {due_date.strftime('%Y-%m-%d %H:%M UTC')}",
            user_id=actor.id,
            commit=False,
        )

    db.session.refresh(book)
    current_app.logger.info("Issue %s: book %s to user %s by %s", issue.id, book.id, borrower.id, actor.id)
    _deliver_code(issue, borrower, book, code)
    return issue, code


def _deliver_code(issue, borrower, book, code):
    # Best-effort: the issue is already committed.
    try:
        from ..email_service import send_issue_code_email

        if not send_issue_code_email(issue, borrower, book, code):
            current_app.logger.info("Return code for issue %s was not emailed.", issue.id)
    except (RuntimeError, OSError, ValueError):
        current_app.logger.exception("Failed to email return code for issue %s", issue.id)


def return_book(actor, book_id, user_id, code):
    """Close the open issue for (book, user) once the return code checks out."""
    policy.authorize(actor, policy.BOOK_RETURN)

    book = db.session.get(Book, book_id) if book_id else None
    if book is None:
        raise NotFound("Book not found.")

    issue = (
        Issue.query.filter_by(book_id=book.id, user_id=user_id, status=ISSUE_ISSUED)
        .order_by(Issue.issue_date.desc())
        .first()
    )
    if issue is None:
        raise NotFound("No active issue found for this book and user.")

    if not _codes_match(code, issue.otp_code):
        raise InvalidCode()
    if issue.code_expired:
        raise CodeExpired()

    with transaction():
        if not _close_issue(issue.id, _utcnow()):
            raise NotFound("No active issue found for this book and user.")
        if not _release_copy(book.id):
            current_app.logger.warning("Book %s already had all copies on the shelf at return.", book.id)
        log_event(
            "book_returned",
            target_type="issue",
            target_id=issue.id,
            detail=f"Returned '{book.title}'",
            user_id=actor.id,
            commit=False,
        )

    db.session.refresh(issue)
    db.session.refresh(book)
    current_app.logger.info("Issue %s returned, book %s now has %d available", issue.id, book.id, book.available_copies)
    return issue


def list_issues(actor, status=None, user_id=None, page=DEFAULT_PAGE, limit=None):
    if status and status not in ISSUE_STATUSES:
        raise ValidationError("Unknown issue status.", details={"field": "status"})

    # Borrowers only ever see their own loans.
    if not policy.is_allowed(actor, policy.ISSUE_LIST_ALL):
        user_id = actor.id

    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    limit = min(max(1, limit or current_app.config.get("DEFAULT_PAGE_SIZE", 10)), max_limit)
    page = max(1, page or DEFAULT_PAGE)

    query = Issue.query
    if status:
        query = query.filter(Issue.status == status)
    if user_id:
        query = query.filter(Issue.user_id == user_id)
    query = query.order_by(Issue.issue_date.desc(), Issue.id)
    return query.paginate(page=page, per_page=limit, error_out=False)


def send_due_reminders():
    """Email borrowers whose loans fall due soon. Each loan is reminded once."""
    from ..email_service import send_reminder_email

    now = _utcnow()
    threshold = now + timedelta(days=current_app.config.get("REMINDER_DAYS_BEFORE_DUE", 2))

    upcoming = Issue.query.filter(
        Issue.status == ISSUE_ISSUED,
        Issue.due_date <= threshold,
        Issue.due_date > now,
        Issue.reminder_sent == False,  # noqa: E712
    ).all()

    sent_count = 0
    for issue in upcoming:
        try:
            if send_reminder_email(issue, issue.borrower, issue.book):
                issue.reminder_sent = True
                sent_count += 1
            else:
                current_app.logger.warning("Reminder email send returned false for issue %s", issue.id)
        except (RuntimeError, OSError, ValueError):
            current_app.logger.exception("Failed to send reminder for issue %s", issue.id)

    if sent_count:
        db.session.commit()
        current_app.logger.info("Sent %d due-date reminder(s).", sent_count)
    return sent_count
