from datetime import date, datetime, timedelta

import pytest

from config import Settings
from database import init_db, make_engine, make_session_factory
from security import PasswordHasher
from services import Library


class FixedClock:
    """Clock pinned to a given day; every now() call is one second later."""

    def __init__(self, today: date):
        self.current = datetime(today.year, today.month, today.day, 9, 0, 0)

    def today(self) -> date:
        return self.current.date()

    def now(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current

    def advance(self, days: int) -> None:
        self.current += timedelta(days=days)


@pytest.fixture
def engine():
    e = make_engine("sqlite://")
    init_db(e)
    yield e
    e.dispose()


@pytest.fixture
def clock():
    return FixedClock(date(2025, 1, 10))


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", librarian_username="admin", librarian_password="secret")


@pytest.fixture
def library(engine, settings, clock):
    return Library(make_session_factory(engine), settings, clock, PasswordHasher(rounds=4))


@pytest.fixture
def member(library):
    return library.members.register("Alice Reader", "alice", "alice-pw", membership_type="STUDENT")


@pytest.fixture
def other_member(library):
    return library.members.register("Bob Borrower", "bob", "bob-pw")


@pytest.fixture
def book(library):
    """A single-copy book."""
    return library.catalog.add_book(
        "Dune", "Chilton Books", date(1965, 8, 1), 1, ["Frank Herbert"], ["Science Fiction"]
    )


@pytest.fixture
def book_factory(library):
    def make(title="Clean Code", copies=2):
        return library.catalog.add_book(title, None, None, copies, ["Robert C. Martin"], ["Software"])

    return make
