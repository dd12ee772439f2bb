from datetime import date
from unittest.mock import patch

import pytest

from bookmanager.constants import BOOK_AVAILABLE, ROLE_ADMIN, ROLE_BOOKKEEPER, ROLE_USER
from bookmanager.models import Book, User
from bookmanager.models import db as _db


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing (session-scoped)."""
    with (
        patch("bookmanager.upgrade"),
        patch("bookmanager._seed_admin_if_needed"),
    ):
        from bookmanager import create_app

        _app = create_app("testing")

    yield _app


@pytest.fixture(autouse=True)
def db(app):
    """Create all tables before each test, drop them after."""
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _make_user(
    email="reader@test.com",
    password="TestPass1",
    role=ROLE_USER,
    name="Test Reader",
):
    """Create and persist a User. Callable multiple times per test."""
    user = User(email=email, name=name, role=role)
    user.set_password(password)
    _db.session.add(user)
    _db.session.commit()
    return user


_isbn_counter = iter(range(1, 1_000_000))


def _make_book(
    owner,
    title="Test Book",
    author="Test Author",
    isbn=None,
    genre="FICTION",
    total_copies=1,
    available_copies=None,
    status=BOOK_AVAILABLE,
):
    """Create and persist a Book directly, bypassing the catalog service."""
    book = Book(
        title=title,
        author=author,
        isbn=isbn or f"978-{next(_isbn_counter):010d}",
        rfid_tag=f"RFID_TEST_{next(_isbn_counter)}",
        genre=genre,
        publication_date=date(2001, 1, 1),
        total_copies=total_copies,
        available_copies=total_copies if available_copies is None else available_copies,
        status=status,
        owner_id=owner.id,
    )
    _db.session.add(book)
    _db.session.commit()
    return book


def _login(client, email="reader@test.com", password="TestPass1"):
    """Log in via the real /api/auth/login route and return the response."""
    return client.post("/api/auth/login", json={"email": email, "password": password})


@pytest.fixture()
def member(db):
    """A default borrower (USER role)."""
    return _make_user()


@pytest.fixture()
def admin_user(db):
    return _make_user(email="admin@test.com", password="AdminPass1", role=ROLE_ADMIN, name="Test Admin")


@pytest.fixture()
def bookkeeper(db):
    return _make_user(email="keeper@test.com", password="KeeperPass1", role=ROLE_BOOKKEEPER, name="Test Keeper")


@pytest.fixture()
def other_bookkeeper(db):
    return _make_user(email="keeper2@test.com", password="KeeperPass2", role=ROLE_BOOKKEEPER, name="Other Keeper")


@pytest.fixture()
def member_client(client, member):
    """A test client logged in as a USER."""
    _login(client, member.email, "TestPass1")
    return client


@pytest.fixture()
def admin_client(client, admin_user):
    """A test client logged in as an admin."""
    _login(client, admin_user.email, "AdminPass1")
    return client


@pytest.fixture()
def bookkeeper_client(client, bookkeeper):
    """A test client logged in as a bookkeeper."""
    _login(client, bookkeeper.email, "KeeperPass1")
    return client
