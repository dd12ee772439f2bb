"""Tests for circulation: issue, return, one-time codes, listings, reminders."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import event

from bookmanager.circulation import service as circulation_service
from bookmanager.circulation.service import (
    generate_otp,
    issue_book,
    list_issues,
    return_book,
    send_due_reminders,
)
from bookmanager.constants import BOOK_AVAILABLE, BOOK_ISSUED, BOOK_MAINTENANCE, ISSUE_ISSUED, ISSUE_RETURNED, OTP_LENGTH
from bookmanager.errors import (
    CodeExpired,
    Forbidden,
    InvalidCode,
    NoCopiesAvailable,
    NotFound,
    StateError,
    ValidationError,
)
from bookmanager.models import ActivityLog, Book, Issue
from tests.conftest import _make_book, _make_user


def _due(days=14):
    return datetime.now(UTC) + timedelta(days=days)


def _wrong_code(code):
    return "".join("1" if ch != "1" else "2" for ch in code)


# ── One-time codes ─────────────────────────────────────────────────


def test_generate_otp_is_fixed_length_numeric():
    for _ in range(50):
        code = generate_otp()
        assert len(code) == OTP_LENGTH
        assert code.isdigit()


def test_generate_otp_keeps_leading_zeros():
    with patch("bookmanager.circulation.service.secrets.choice", return_value="0"):
        assert generate_otp(6) == "000000"


# ── Issue ──────────────────────────────────────────────────────────


def test_issue_two_copies_then_third_fails(bookkeeper, db):
    book = _make_book(bookkeeper, total_copies=2)
    first = _make_user(email="first@test.com")
    second = _make_user(email="second@test.com")
    third = _make_user(email="third@test.com")

    issue, code = issue_book(bookkeeper, book.id, first.id, _due())
    assert book.available_copies == 1
    assert book.status == BOOK_AVAILABLE
    assert issue.status == ISSUE_ISSUED
    assert len(code) == OTP_LENGTH and code.isdigit()

    issue_book(bookkeeper, book.id, second.id, _due())
    assert book.available_copies == 0
    assert book.status == BOOK_ISSUED

    with pytest.raises(NoCopiesAvailable):
        issue_book(bookkeeper, book.id, third.id, _due())
    assert Issue.query.filter_by(book_id=book.id).count() == 2


def test_issue_with_no_copies_changes_nothing(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=1, available_copies=0, status=BOOK_ISSUED)

    with pytest.raises(NoCopiesAvailable):
        issue_book(bookkeeper, book.id, member.id, _due())

    db.session.refresh(book)
    assert book.available_copies == 0
    assert book.status == BOOK_ISSUED
    assert Issue.query.count() == 0
    assert ActivityLog.query.filter_by(action="book_issued").count() == 0


def test_issue_loses_race_for_last_copy(bookkeeper, member, db, monkeypatch):
    book = _make_book(bookkeeper, total_copies=1)
    monkeypatch.setattr("bookmanager.circulation.service._claim_copy", lambda book_id: False)

    with pytest.raises(NoCopiesAvailable):
        issue_book(bookkeeper, book.id, member.id, _due())

    assert Issue.query.count() == 0
    db.session.refresh(book)
    assert book.available_copies == 1


def test_claim_sets_status_before_decrementing(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=1)
    statements = []

    def _capture(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("UPDATE books"):
            statements.append(statement)

    event.listen(db.engine, "before_cursor_execute", _capture)
    try:
        issue_book(bookkeeper, book.id, member.id, _due())
    finally:
        event.remove(db.engine, "before_cursor_execute", _capture)

    claim = next(s for s in statements if "available_copies=" in s)
    set_clause = claim.split(" WHERE ")[0]
    assert set_clause.index("status=") < set_clause.index("available_copies=")
    db.session.refresh(book)
    assert book.available_copies == 0
    assert book.status == BOOK_ISSUED


def test_issue_stores_expiry_and_logs_activity(bookkeeper, member, db, app):
    book = _make_book(bookkeeper)
    before = datetime.now(UTC)
    issue, code = issue_book(bookkeeper, book.id, member.id, _due())

    expires = issue.otp_expires.replace(tzinfo=UTC)
    minutes = app.config["OTP_EXPIRY_MINUTES"]
    assert before + timedelta(minutes=minutes) <= expires <= datetime.now(UTC) + timedelta(minutes=minutes)
    assert issue.otp_code == code
    entry = ActivityLog.query.filter_by(action="book_issued").one()
    assert entry.target_id == issue.id
    assert entry.user_id == bookkeeper.id


def test_issue_requires_staff(member, bookkeeper, db):
    book = _make_book(bookkeeper)
    with pytest.raises(Forbidden):
        issue_book(member, book.id, member.id, _due())
    assert Issue.query.count() == 0


def test_issue_unknown_book_or_user(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    with pytest.raises(NotFound, match="Book not found"):
        issue_book(bookkeeper, "missing", member.id, _due())
    with pytest.raises(NotFound, match="User not found"):
        issue_book(bookkeeper, book.id, "missing", _due())


def test_issue_rejects_past_due_date(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    with pytest.raises(ValidationError):
        issue_book(bookkeeper, book.id, member.id, datetime.now(UTC) - timedelta(hours=1))
    assert book.available_copies == 1


def test_issue_refused_for_book_out_of_circulation(bookkeeper, member, db):
    book = _make_book(bookkeeper, status=BOOK_MAINTENANCE)
    with pytest.raises(StateError):
        issue_book(bookkeeper, book.id, member.id, _due())


def test_issue_emails_code_best_effort(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    with patch("bookmanager.email_service.send_issue_code_email", side_effect=OSError("smtp down")) as mock_send:
        issue, code = issue_book(bookkeeper, book.id, member.id, _due())
    mock_send.assert_called_once()
    assert mock_send.call_args.args[3] == code
    assert Issue.query.filter_by(id=issue.id).count() == 1


# ── Return ─────────────────────────────────────────────────────────


def test_issue_then_return_restores_book(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=3)
    issue, code = issue_book(bookkeeper, book.id, member.id, _due())
    assert book.available_copies == 2

    returned = return_book(bookkeeper, book.id, member.id, code)

    assert returned.id == issue.id
    assert returned.status == ISSUE_RETURNED
    assert returned.return_date is not None
    assert returned.otp_code is None
    db.session.refresh(book)
    assert book.available_copies == 3
    assert book.status == BOOK_AVAILABLE


def test_return_of_last_copy_makes_book_available(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=1)
    _, code = issue_book(bookkeeper, book.id, member.id, _due())
    assert book.status == BOOK_ISSUED

    return_book(bookkeeper, book.id, member.id, code)
    db.session.refresh(book)
    assert book.available_copies == 1
    assert book.status == BOOK_AVAILABLE


def test_return_with_wrong_code_changes_nothing(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=2)
    issue, code = issue_book(bookkeeper, book.id, member.id, _due())

    with pytest.raises(InvalidCode):
        return_book(bookkeeper, book.id, member.id, _wrong_code(code))

    db.session.refresh(issue)
    db.session.refresh(book)
    assert issue.status == ISSUE_ISSUED
    assert issue.return_date is None
    assert book.available_copies == 1


def test_return_with_missing_code_is_invalid(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    issue_book(bookkeeper, book.id, member.id, _due())
    with pytest.raises(InvalidCode):
        return_book(bookkeeper, book.id, member.id, "")


def test_return_after_expiry_fails_even_with_right_code(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    issue, code = issue_book(bookkeeper, book.id, member.id, _due())
    issue.otp_expires = datetime.now(UTC) - timedelta(seconds=1)
    db.session.commit()

    with pytest.raises(CodeExpired):
        return_book(bookkeeper, book.id, member.id, code)

    db.session.refresh(issue)
    db.session.refresh(book)
    assert issue.status == ISSUE_ISSUED
    assert book.available_copies == 0


def test_wrong_code_reported_before_expiry(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    issue, code = issue_book(bookkeeper, book.id, member.id, _due())
    issue.otp_expires = datetime.now(UTC) - timedelta(minutes=5)
    db.session.commit()

    with pytest.raises(InvalidCode):
        return_book(bookkeeper, book.id, member.id, _wrong_code(code))


def test_return_without_active_issue(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    with pytest.raises(NotFound):
        return_book(bookkeeper, book.id, member.id, "123456")


def test_code_cannot_be_reused(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=2)
    _, code = issue_book(bookkeeper, book.id, member.id, _due())
    return_book(bookkeeper, book.id, member.id, code)

    with pytest.raises(NotFound):
        return_book(bookkeeper, book.id, member.id, code)
    db.session.refresh(book)
    assert book.available_copies == 2


def test_concurrent_return_releases_copy_once(bookkeeper, member, db, monkeypatch):
    other = _make_user(email="second.reader@test.com")
    book = _make_book(bookkeeper, total_copies=2)
    issue, code = issue_book(bookkeeper, book.id, member.id, _due())
    issue_book(bookkeeper, book.id, other.id, _due())
    codes_match = circulation_service._codes_match

    def _match_after_other_return(supplied, stored):
        # Another request closes the same loan after this one has loaded it.
        Issue.query.filter_by(id=issue.id).update(
            {Issue.status: ISSUE_RETURNED, Issue.otp_code: None}, synchronize_session=False
        )
        Book.query.filter_by(id=book.id).update(
            {Book.available_copies: Book.available_copies + 1}, synchronize_session=False
        )
        db.session.commit()
        return codes_match(supplied, stored)

    monkeypatch.setattr(circulation_service, "_codes_match", _match_after_other_return)
    with pytest.raises(NotFound):
        return_book(bookkeeper, book.id, member.id, code)

    db.session.refresh(book)
    assert book.available_copies == 1
    assert ActivityLog.query.filter_by(action="book_returned").count() == 0
    assert Issue.query.filter_by(user_id=other.id, status=ISSUE_ISSUED).count() == 1


def test_return_requires_staff(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    _, code = issue_book(bookkeeper, book.id, member.id, _due())
    with pytest.raises(Forbidden):
        return_book(member, book.id, member.id, code)


def test_copies_stay_in_range_over_mixed_operations(bookkeeper, db):
    book = _make_book(bookkeeper, total_copies=2)
    readers = [_make_user(email=f"reader{i}@test.com") for i in range(4)]
    codes = {}

    for reader in readers:
        try:
            _, codes[reader.id] = issue_book(bookkeeper, book.id, reader.id, _due())
        except NoCopiesAvailable:
            pass
        db.session.refresh(book)
        assert 0 <= book.available_copies <= book.total_copies

    for reader_id, code in codes.items():
        return_book(bookkeeper, book.id, reader_id, code)
        db.session.refresh(book)
        assert 0 <= book.available_copies <= book.total_copies

    assert book.available_copies == 2
    assert len(codes) == 2


# ── Listing ────────────────────────────────────────────────────────


def test_list_issues_user_sees_only_own(bookkeeper, member, db):
    other = _make_user(email="other@test.com")
    book = _make_book(bookkeeper, total_copies=3)
    issue_book(bookkeeper, book.id, member.id, _due())
    issue_book(bookkeeper, book.id, other.id, _due())

    own = list_issues(member, user_id=other.id)
    assert [issue.user_id for issue in own.items] == [member.id]

    everything = list_issues(bookkeeper)
    assert everything.total == 2


def test_list_issues_filters_by_status(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=2)
    _, code = issue_book(bookkeeper, book.id, member.id, _due())
    return_book(bookkeeper, book.id, member.id, code)
    issue_book(bookkeeper, book.id, member.id, _due())

    assert list_issues(bookkeeper, status=ISSUE_RETURNED).total == 1
    assert list_issues(bookkeeper, status=ISSUE_ISSUED).total == 1
    with pytest.raises(ValidationError):
        list_issues(bookkeeper, status="BORROWED")


# ── Reminders ──────────────────────────────────────────────────────


def test_send_due_reminders_only_once(bookkeeper, member, db):
    book = _make_book(bookkeeper, total_copies=2)
    soon, _ = issue_book(bookkeeper, book.id, member.id, _due(days=1))
    later, _ = issue_book(bookkeeper, book.id, member.id, _due(days=30))

    with patch("bookmanager.email_service.send_reminder_email", return_value=True) as mock_send:
        assert send_due_reminders() == 1
        assert send_due_reminders() == 0

    mock_send.assert_called_once()
    assert db.session.get(Issue, soon.id).reminder_sent is True
    assert db.session.get(Issue, later.id).reminder_sent is False


def test_send_due_reminders_retries_when_mail_not_sent(bookkeeper, member, db):
    book = _make_book(bookkeeper)
    issue, _ = issue_book(bookkeeper, book.id, member.id, _due(days=1))

    with patch("bookmanager.email_service.send_reminder_email", return_value=False):
        assert send_due_reminders() == 0
    assert db.session.get(Issue, issue.id).reminder_sent is False


# ── Routes ─────────────────────────────────────────────────────────


def test_issue_route_returns_code(bookkeeper_client, bookkeeper, member, db):
    book = _make_book(bookkeeper)
    rv = bookkeeper_client.post(
        "/api/issues",
        json={"book_id": book.id, "user_id": member.id, "due_date": _due().isoformat()},
    )
    assert rv.status_code == 201
    data = rv.get_json()
    assert len(data["otp_code"]) == OTP_LENGTH
    assert data["issue"]["status"] == ISSUE_ISSUED
    assert "otp_code" not in data["issue"]
    assert db.session.get(Book, book.id).available_copies == 0


def test_issue_route_hides_code_when_disabled(app, bookkeeper_client, bookkeeper, member, db):
    app.config["ISSUE_CODE_IN_RESPONSE"] = False
    try:
        book = _make_book(bookkeeper)
        rv = bookkeeper_client.post(
            "/api/issues",
            json={"book_id": book.id, "user_id": member.id, "due_date": _due().isoformat()},
        )
    finally:
        app.config["ISSUE_CODE_IN_RESPONSE"] = True
    assert rv.status_code == 201
    assert "otp_code" not in rv.get_json()


def test_issue_route_no_copies_is_conflict(bookkeeper_client, bookkeeper, member, db):
    book = _make_book(bookkeeper, available_copies=0, status=BOOK_ISSUED)
    rv = bookkeeper_client.post(
        "/api/issues",
        json={"book_id": book.id, "user_id": member.id, "due_date": _due().isoformat()},
    )
    assert rv.status_code == 409
    assert rv.get_json()["error"] == "NoCopiesAvailable"


def test_issue_route_validates_body(bookkeeper_client, db):
    rv = bookkeeper_client.post("/api/issues", json={"book_id": "x", "due_date": "next tuesday"})
    assert rv.status_code == 400
    data = rv.get_json()
    assert data["error"] == "ValidationError"
    assert "user_id" in data["details"]
    assert "due_date" in data["details"]


def test_return_route_round_trip(bookkeeper_client, bookkeeper, member, db):
    book = _make_book(bookkeeper)
    rv = bookkeeper_client.post(
        "/api/issues",
        json={"book_id": book.id, "user_id": member.id, "due_date": _due().isoformat()},
    )
    code = rv.get_json()["otp_code"]

    rv = bookkeeper_client.put("/api/issues", json={"book_id": book.id, "user_id": member.id, "otp_code": "000"})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "InvalidCode"

    rv = bookkeeper_client.put("/api/issues", json={"book_id": book.id, "user_id": member.id, "otp_code": code})
    assert rv.status_code == 200
    assert rv.get_json()["issue"]["status"] == ISSUE_RETURNED
    assert db.session.get(Book, book.id).available_copies == 1


def test_member_cannot_issue_via_route(member_client, member, bookkeeper, db):
    book = _make_book(bookkeeper)
    rv = member_client.post(
        "/api/issues",
        json={"book_id": book.id, "user_id": member.id, "due_date": _due().isoformat()},
    )
    assert rv.status_code == 403


def test_list_route_member_sees_own(member_client, member, bookkeeper, db):
    other = _make_user(email="other@test.com")
    book = _make_book(bookkeeper, total_copies=2)
    issue_book(bookkeeper, book.id, member.id, _due())
    issue_book(bookkeeper, book.id, other.id, _due())

    rv = member_client.get("/api/issues")
    assert rv.status_code == 200
    data = rv.get_json()
    assert data["pagination"]["total"] == 1
    assert data["issues"][0]["user_id"] == member.id


def test_issues_require_login(client, db):
    rv = client.get("/api/issues")
    assert rv.status_code == 401
    assert rv.get_json()["error"] == "Unauthorized"
