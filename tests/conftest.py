import itertools
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from library_app import create_app, db
from library_app.config import Config, LifecyclePolicy
from library_app.models import Book, BookStatus, User, UserRole
from library_app.services import LoanService, ReservationService

NOW = datetime(2026, 1, 15, 12, 0)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SCHEDULER_ENABLED = False


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Push an app context for tests that call services directly."""
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def policy():
    return LifecyclePolicy()


@pytest.fixture
def loans(ctx, policy, clock):
    return LoanService(policy, clock=clock)


@pytest.fixture
def reservations(ctx, policy, clock):
    return ReservationService(policy, clock=clock)


def _add_user(n, role):
    user = User(name=f"Person {n}", email=f"person{n}@example.com", role=role)
    db.session.add(user)
    db.session.commit()
    return user


def _add_book(n, status=BookStatus.AVAILABLE, **fields):
    fields.setdefault("title", f"Book {n}")
    book = Book(status=status, **fields)
    db.session.add(book)
    db.session.commit()
    return book


@pytest.fixture
def make_user(ctx):
    counter = itertools.count(1)

    def _make(role=UserRole.USER):
        return _add_user(next(counter), role)

    return _make


@pytest.fixture
def make_book(ctx):
    counter = itertools.count(1)

    def _make(status=BookStatus.AVAILABLE, **fields):
        return _add_book(next(counter), status, **fields)

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def reader(make_user):
    return make_user()


@pytest.fixture
def other_reader(make_user):
    return make_user()


@pytest.fixture
def seeded(app):
    """Ids of an admin, two readers and three available books, for HTTP tests."""
    with app.app_context():
        admin = _add_user(1, UserRole.ADMIN)
        alice = _add_user(2, UserRole.USER)
        bob = _add_user(3, UserRole.USER)
        books = [
            _add_book(1, category="Fiction", isbn="9780000000001"),
            _add_book(2, category="History"),
            _add_book(3, category="Fiction"),
        ]
        ids = SimpleNamespace(
            admin=admin.id,
            alice=alice.id,
            bob=bob.id,
            books=[book.id for book in books],
        )
        db.session.remove()
    return ids

