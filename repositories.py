from datetime import date

from models import (
    Author,
    Book,
    Fine,
    Member,
    Reservation,
    ReservationStatus,
    Subject,
    Transaction,
    TransactionStatus,
)

ACTIVE_RESERVATION_STATUSES = (ReservationStatus.WAITING, ReservationStatus.AVAILABLE)


class BookRepository:
    def __init__(self, session):
        self.session = session

    def get(self, book_id: int):
        return self.session.query(Book).filter(Book.id == book_id).first()

    def list_all(self):
        return self.session.query(Book).order_by(Book.title, Book.id).all()

    def add(self, book: Book):
        self.session.add(book)
        self.session.flush()
        return book

    def update(self, book: Book):
        self.session.add(book)
        self.session.flush()

    def delete(self, book: Book):
        self.session.delete(book)
        self.session.flush()

    def find_or_create_author(self, name: str):
        author = self.session.query(Author).filter(Author.name == name).first()
        if author is None:
            author = Author(name=name)
            self.session.add(author)
            self.session.flush()
        return author

    def find_or_create_subject(self, name: str):
        subject = self.session.query(Subject).filter(Subject.name == name).first()
        if subject is None:
            subject = Subject(name=name)
            self.session.add(subject)
            self.session.flush()
        return subject


class MemberRepository:
    def __init__(self, session):
        self.session = session

    def get(self, member_id: int):
        return self.session.query(Member).filter(Member.id == member_id).first()

    def get_by_username(self, username: str):
        return self.session.query(Member).filter(Member.username == username).first()

    def list_all(self):
        return self.session.query(Member).order_by(Member.name, Member.id).all()

    def add(self, member: Member):
        self.session.add(member)
        self.session.flush()
        return member

    def delete(self, member: Member):
        self.session.delete(member)
        self.session.flush()


class TransactionRepository:
    def __init__(self, session):
        self.session = session

    def get(self, transaction_id: int):
        return self.session.query(Transaction).filter(Transaction.id == transaction_id).first()

    def add(self, transaction: Transaction):
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def update(self, transaction: Transaction):
        self.session.add(transaction)
        self.session.flush()

    def find_active(self, member_id: int, book_id: int):
        return (
            self.session.query(Transaction)
            .filter(
                Transaction.member_id == member_id,
                Transaction.book_id == book_id,
                Transaction.status == TransactionStatus.ACTIVE,
            )
            .first()
        )

    def has_active_for_member(self, member_id: int):
        query = self.session.query(Transaction.id).filter(
            Transaction.member_id == member_id,
            Transaction.status == TransactionStatus.ACTIVE,
        )
        return query.first() is not None

    def exists_for_member(self, member_id: int):
        return self.session.query(Transaction.id).filter(Transaction.member_id == member_id).first() is not None

    def exists_for_book(self, book_id: int):
        return self.session.query(Transaction.id).filter(Transaction.book_id == book_id).first() is not None

    def list_all(self):
        return (
            self.session.query(Transaction)
            .order_by(Transaction.borrow_date.desc(), Transaction.id.desc())
            .all()
        )

    def list_for_member(self, member_id: int):
        return (
            self.session.query(Transaction)
            .filter(Transaction.member_id == member_id)
            .order_by(Transaction.borrow_date.desc(), Transaction.id.desc())
            .all()
        )

    def list_overdue_unfined(self, today: date):
        # Anti-join: overdue active loans with no fine row yet.
        return (
            self.session.query(Transaction)
            .outerjoin(Fine, Fine.transaction_id == Transaction.id)
            .filter(
                Transaction.status == TransactionStatus.ACTIVE,
                Transaction.due_date < today,
                Fine.id.is_(None),
            )
            .order_by(Transaction.id)
            .all()
        )


class ReservationRepository:
    def __init__(self, session):
        self.session = session

    def get(self, reservation_id: int):
        return self.session.query(Reservation).filter(Reservation.id == reservation_id).first()

    def add(self, reservation: Reservation):
        self.session.add(reservation)
        self.session.flush()
        return reservation

    def update(self, reservation: Reservation):
        self.session.add(reservation)
        self.session.flush()

    def find_for_member(self, member_id: int, book_id: int, status: ReservationStatus):
        return (
            self.session.query(Reservation)
            .filter(
                Reservation.member_id == member_id,
                Reservation.book_id == book_id,
                Reservation.status == status,
            )
            .order_by(Reservation.reservation_date, Reservation.id)
            .first()
        )

    def find_active_for_member(self, member_id: int, book_id: int):
        return (
            self.session.query(Reservation)
            .filter(
                Reservation.member_id == member_id,
                Reservation.book_id == book_id,
                Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
            )
            .first()
        )

    def has_open_for_book(self, book_id: int):
        query = self.session.query(Reservation.id).filter(
            Reservation.book_id == book_id,
            Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
        )
        return query.first() is not None

    def exists_for_member(self, member_id: int):
        return self.session.query(Reservation.id).filter(Reservation.member_id == member_id).first() is not None

    def exists_for_book(self, book_id: int):
        return self.session.query(Reservation.id).filter(Reservation.book_id == book_id).first() is not None

    def next_waiting(self, book_id: int):
        return (
            self.session.query(Reservation)
            .filter(Reservation.book_id == book_id, Reservation.status == ReservationStatus.WAITING)
            .order_by(Reservation.reservation_date, Reservation.id)
            .first()
        )

    def list_active(self):
        return (
            self.session.query(Reservation)
            .filter(Reservation.status.in_(ACTIVE_RESERVATION_STATUSES))
            .order_by(Reservation.book_id, Reservation.reservation_date, Reservation.id)
            .all()
        )

    def list_active_for_member(self, member_id: int):
        return (
            self.session.query(Reservation)
            .filter(
                Reservation.member_id == member_id,
                Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
            )
            .order_by(Reservation.book_id, Reservation.reservation_date, Reservation.id)
            .all()
        )


class FineRepository:
    def __init__(self, session):
        self.session = session

    def add(self, fine: Fine):
        self.session.add(fine)
        self.session.flush()
        return fine

    def list_for_member(self, member_id: int):
        return (
            self.session.query(Fine)
            .filter(Fine.member_id == member_id)
            .order_by(Fine.date_issued.desc(), Fine.id.desc())
            .all()
        )
