import enum
from datetime import date

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from exceptions import StorageFailure

Base = declarative_base()


class MembershipType(enum.Enum):
    PUBLIC = "PUBLIC"
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    SENIOR = "SENIOR"
    YOUTH = "YOUTH"

    @classmethod
    def parse(cls, value: str) -> "MembershipType":
        """Case-insensitive lookup used for user input, raises ValueError."""
        if value is None:
            raise ValueError("membership type is required")
        try:
            return cls[value.strip().upper()]
        except KeyError:
            allowed = ", ".join(m.name for m in cls)
            raise ValueError(f"Invalid membership type {value!r}, expected one of: {allowed}")


class TransactionStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


class ReservationStatus(enum.Enum):
    WAITING = "WAITING"
    AVAILABLE = "AVAILABLE"
    FULFILLED = "FULFILLED"
    EXPIRED = "EXPIRED"


class FineStatus(enum.Enum):
    OUTSTANDING = "OUTSTANDING"
    PAID = "PAID"


class EnumName(TypeDecorator):
    """Stores an enum member by name in a string column.

    Values read back that are not members of the enum raise StorageFailure
    instead of being coerced to a default.
    """

    impl = String
    cache_ok = True

    def __init__(self, enum_class, length=20):
        super().__init__(length)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, self.enum_class):
            return value.name
        if isinstance(value, str) and value in self.enum_class.__members__:
            return value
        raise ValueError(f"{value!r} is not a valid {self.enum_class.__name__}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return self.enum_class[value]
        except KeyError:
            raise StorageFailure(f"Stored {self.enum_class.__name__} value {value!r} is not recognised")


book_authors = Table(
    "book_authors",
    Base.metadata,
    Column("book_id", Integer, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", Integer, ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True),
)

book_subjects = Table(
    "book_subjects",
    Base.metadata,
    Column("book_id", Integer, ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("subject_id", Integer, ForeignKey("subjects.id", ondelete="CASCADE"), primary_key=True),
)


class Author(Base):
    __tablename__ = "authors"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)


class Subject(Base):
    __tablename__ = "subjects"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("copies_available >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("copies_held >= 0", name="ck_books_held_non_negative"),
        CheckConstraint("copies_available + copies_held <= total_copies", name="ck_books_within_total"),
        {"sqlite_autoincrement": True},
    )
    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    publisher = Column(String)
    publication_date = Column(Date)
    total_copies = Column(Integer, nullable=False, default=0)
    copies_available = Column(Integer, nullable=False, default=0)
    # Copies set aside for members whose reservation is AVAILABLE.
    copies_held = Column(Integer, nullable=False, default=0)
    times_borrowed = Column(Integer, nullable=False, default=0)

    authors = relationship("Author", secondary=book_authors, lazy="selectin", order_by=Author.name)
    subjects = relationship("Subject", secondary=book_subjects, lazy="selectin", order_by=Subject.name)

    @property
    def copies_out(self) -> int:
        """Copies on loan plus copies held for reservations."""
        return self.total_copies - self.copies_available


class Member(Base):
    __tablename__ = "members"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    username = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    email = Column(String)
    phone_number = Column(String)
    address = Column(String)
    membership_type = Column(EnumName(MembershipType), nullable=False, default=MembershipType.PUBLIC)
    membership_status = Column(String, nullable=False, default="ACTIVE")
    registration_date = Column(Date, nullable=False, default=date.today)
    expiry_date = Column(Date)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    borrow_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date)
    status = Column(EnumName(TransactionStatus), nullable=False, default=TransactionStatus.ACTIVE)

    def is_overdue(self, today: date) -> bool:
        return self.status == TransactionStatus.ACTIVE and self.due_date < today


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    reservation_date = Column(DateTime, nullable=False)
    status = Column(EnumName(ReservationStatus), nullable=False, default=ReservationStatus.WAITING)
    # True while one of the book's copies_held is set aside for this reservation.
    holds_copy = Column(Boolean, nullable=False, default=False)


class Fine(Base):
    __tablename__ = "fines"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, unique=True)
    fine_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(EnumName(FineStatus), nullable=False, default=FineStatus.OUTSTANDING)
    date_issued = Column(Date, nullable=False)
    date_paid = Column(Date)
