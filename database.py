from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exceptions import StorageFailure
from models import Base
from repositories import (
    BookRepository,
    FineRepository,
    MemberRepository,
    ReservationRepository,
    TransactionRepository,
)


def make_engine(database_url: str):
    kwargs = {}
    sqlite = database_url.startswith("sqlite")
    if sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        # An in-memory database lives only as long as its single connection.
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    if sqlite:
        event.listen(engine, "connect", enable_sqlite_foreign_keys)
    return engine


def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless this is set on every connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(engine) -> None:
    Base.metadata.create_all(engine, checkfirst=True)


def make_session_factory(engine):
    # Objects stay readable after the session that loaded them is closed.
    return sessionmaker(bind=engine, expire_on_commit=False)


class UnitOfWork:
    """One session, one database transaction.

    Used as a context manager. Any exception leaving the block rolls the
    transaction back, and the session is always closed. SQLAlchemy errors
    surface as StorageFailure; library errors pass through unchanged.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.session = None

    def __enter__(self) -> "UnitOfWork":
        self.session = self.session_factory()
        self.books = BookRepository(self.session)
        self.members = MemberRepository(self.session)
        self.transactions = TransactionRepository(self.session)
        self.reservations = ReservationRepository(self.session)
        self.fines = FineRepository(self.session)
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.session.close()
            self.session = None
        if exc is not None and isinstance(exc, SQLAlchemyError):
            raise StorageFailure(f"Database error: {exc}") from exc
        return False

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure(f"Database error: {exc}") from exc

    def rollback(self) -> None:
        self.session.rollback()
