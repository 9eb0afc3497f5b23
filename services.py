from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from config import Settings
from database import UnitOfWork, init_db, make_engine, make_session_factory
from exceptions import Conflict, Forbidden, InvalidArgument, InvalidState, NotFound, Unavailable
from models import (
    Book,
    Fine,
    FineStatus,
    Member,
    MembershipType,
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionStatus,
)
from security import LibrarianCredentials, PasswordHasher

CENTS = Decimal("0.01")


class SystemClock:
    def today(self) -> date:
        return date.today()

    def now(self) -> datetime:
        return datetime.now()


class _Service:
    def __init__(self, session_factory, clock=None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory)


def _require_book(uow: UnitOfWork, book_id: int) -> Book:
    book = uow.books.get(book_id)
    if book is None:
        raise NotFound(f"Book with ID {book_id} not found.")
    return book


def _clean_names(names: Optional[Iterable[str]]) -> List[str]:
    cleaned = []
    for name in names or []:
        if name is not None and name.strip() and name.strip() not in cleaned:
            cleaned.append(name.strip())
    return cleaned


class CatalogService(_Service):
    def list_books(self) -> List[Book]:
        with self._uow() as uow:
            return uow.books.list_all()

    def get_book(self, book_id: int) -> Book:
        with self._uow() as uow:
            return _require_book(uow, book_id)

    def add_book(
        self,
        title: str,
        publisher: Optional[str],
        publication_date: Optional[date],
        total_copies: int,
        authors: Optional[Iterable[str]] = None,
        subjects: Optional[Iterable[str]] = None,
    ) -> Book:
        """Add a book with its authors and subjects in one transaction.

        Authors and subjects are looked up by name and created when missing;
        blank names are skipped.
        """
        if not title or not title.strip():
            raise InvalidArgument("Book title is required.")
        if total_copies < 0:
            raise InvalidArgument("Total copies cannot be negative.")

        with self._uow() as uow:
            book = Book(
                title=title.strip(),
                publisher=publisher,
                publication_date=publication_date,
                total_copies=total_copies,
                copies_available=total_copies,
                copies_held=0,
                times_borrowed=0,
            )
            for name in _clean_names(authors):
                book.authors.append(uow.books.find_or_create_author(name))
            for name in _clean_names(subjects):
                book.subjects.append(uow.books.find_or_create_subject(name))
            uow.books.add(book)
            uow.commit()
            return book

    def remove_book(self, book_id: int) -> None:
        with self._uow() as uow:
            book = _require_book(uow, book_id)
            if book.copies_available < book.total_copies:
                raise InvalidState("Cannot remove book. Some copies are currently on loan or held.")
            if uow.reservations.has_open_for_book(book_id):
                raise InvalidState("Cannot remove book. Members are still waiting for it.")
            # Loans and reservations are kept as history and reference the book.
            if uow.transactions.exists_for_book(book_id) or uow.reservations.exists_for_book(book_id):
                raise InvalidState("Cannot remove book. It has loan or reservation history.")
            uow.books.delete(book)
            uow.commit()

    def update_stock(self, book_id: int, new_total_copies: int) -> Book:
        """Change the total number of copies.

        The shelf count moves by the same amount as the total. The new total
        cannot drop below the copies currently on loan or held.
        """
        if new_total_copies < 0:
            raise InvalidArgument("Total copies cannot be negative.")
        with self._uow() as uow:
            book = _require_book(uow, book_id)
            if new_total_copies < book.copies_out:
                raise InvalidState(
                    f"New total copies ({new_total_copies}) cannot be less than the number of "
                    f"copies currently out ({book.copies_out})."
                )
            book.copies_available += new_total_copies - book.total_copies
            book.total_copies = new_total_copies
            uow.books.update(book)
            uow.commit()
            return book


class MembershipService(_Service):
    def __init__(self, session_factory, hasher: Optional[PasswordHasher] = None, clock=None):
        super().__init__(session_factory, clock)
        self.hasher = hasher or PasswordHasher()

    def register(
        self,
        name: str,
        username: str,
        password: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        membership_type: Union[MembershipType, str] = MembershipType.PUBLIC,
        expiry_date: Optional[date] = None,
    ) -> Member:
        if not name or not username or not password:
            raise InvalidArgument("Name, username and password are required.")
        if not isinstance(membership_type, MembershipType):
            try:
                membership_type = MembershipType.parse(membership_type)
            except ValueError as exc:
                raise InvalidArgument(str(exc))

        with self._uow() as uow:
            if uow.members.get_by_username(username) is not None:
                raise Conflict(f"Username '{username}' is already taken. Please choose another.")
            member = Member(
                name=name,
                username=username,
                password_hash=self.hasher.hash(password),
                email=email,
                phone_number=phone_number,
                address=address,
                membership_type=membership_type,
                membership_status="ACTIVE",
                registration_date=self.clock.today(),
                expiry_date=expiry_date,
            )
            uow.members.add(member)
            uow.commit()
            return member

    def list_members(self) -> List[Member]:
        with self._uow() as uow:
            return uow.members.list_all()

    def get_member(self, member_id: int) -> Member:
        with self._uow() as uow:
            member = uow.members.get(member_id)
            if member is None:
                raise NotFound(f"Member with ID {member_id} not found.")
            return member

    def remove_member(self, member_id: int) -> None:
        with self._uow() as uow:
            member = uow.members.get(member_id)
            if member is None:
                raise NotFound(f"Member with ID {member_id} not found.")
            if uow.transactions.has_active_for_member(member_id):
                raise InvalidState("Member has unreturned books and cannot be removed.")
            if uow.reservations.list_active_for_member(member_id):
                raise InvalidState("Member has open reservations and cannot be removed.")
            if uow.transactions.exists_for_member(member_id) or uow.reservations.exists_for_member(member_id):
                raise InvalidState("Member has loan or reservation history and cannot be removed.")
            uow.members.delete(member)
            uow.commit()


class AuthenticationService(_Service):
    def __init__(self, session_factory, librarian: LibrarianCredentials, hasher: Optional[PasswordHasher] = None):
        super().__init__(session_factory)
        self.librarian = librarian
        self.hasher = hasher or PasswordHasher()

    def librarian_login(self, username: str, password: str) -> bool:
        return self.librarian.check(username, password)

    def member_login(self, username: str, password: str) -> Optional[Member]:
        with self._uow() as uow:
            member = uow.members.get_by_username(username)
        if member is not None and self.hasher.verify(password, member.password_hash):
            return member
        return None


class CirculationService(_Service):
    """Borrowing, returning and overdue fines."""

    def __init__(self, session_factory, clock=None, loan_period_days: int = 14, fine_per_day: Decimal = Decimal("5.00")):
        super().__init__(session_factory, clock)
        self.loan_period_days = loan_period_days
        self.fine_per_day = Decimal(fine_per_day)

    def borrow(self, member: Member, book_id: int) -> Transaction:
        """Lend one copy of a book to a member.

        With no copy on the shelf the member needs an AVAILABLE reservation
        for the book. That reservation is marked FULFILLED as part of the
        same transaction, and the copy held for it (if any) is the one lent.
        """
        with self._uow() as uow:
            book = _require_book(uow, book_id)

            reservation = uow.reservations.find_for_member(member.id, book_id, ReservationStatus.AVAILABLE)
            if book.copies_available < 1 and reservation is None:
                raise Unavailable(
                    f"No copies of '{book.title}' are available, and you do not have an "
                    f"'AVAILABLE' reservation for it."
                )

            if uow.transactions.find_active(member.id, book_id) is not None:
                raise Conflict("You already have an active loan for this book.")

            if reservation is not None and reservation.holds_copy and book.copies_held > 0:
                book.copies_held -= 1
            elif book.copies_available > 0:
                book.copies_available -= 1
            # else: the reservation was made AVAILABLE while the shelf was empty.
            book.times_borrowed += 1
            uow.books.update(book)

            today = self.clock.today()
            loan = Transaction(
                member_id=member.id,
                book_id=book_id,
                borrow_date=today,
                due_date=today + timedelta(days=self.loan_period_days),
                status=TransactionStatus.ACTIVE,
            )
            uow.transactions.add(loan)

            reservation = uow.reservations.find_for_member(member.id, book_id, ReservationStatus.AVAILABLE)
            if reservation is not None:
                reservation.status = ReservationStatus.FULFILLED
                reservation.holds_copy = False
                uow.reservations.update(reservation)

            uow.commit()
            return loan

    def return_book(self, member: Member, book_id: int, transaction_id: int) -> Transaction:
        with self._uow() as uow:
            loan = uow.transactions.get(transaction_id)
            if loan is None:
                raise NotFound(f"No transaction found with ID {transaction_id}.")
            if loan.member_id != member.id:
                raise Forbidden("This transaction does not belong to you.")
            if loan.book_id != book_id:
                raise InvalidArgument(
                    f"Transaction ID {transaction_id} does not correspond to book ID {book_id}."
                )
            if loan.status != TransactionStatus.ACTIVE:
                raise InvalidState("This loan is not active. It has already been returned.")

            book = _require_book(uow, book_id)
            # Never put more copies on the shelf than the book owns.
            book.copies_available = min(book.copies_available + 1, book.total_copies - book.copies_held)
            uow.books.update(book)

            loan.return_date = self.clock.today()
            loan.status = TransactionStatus.RETURNED
            uow.transactions.update(loan)

            uow.commit()
            return loan

    def all_transactions(self) -> List[Transaction]:
        with self._uow() as uow:
            return uow.transactions.list_all()

    def member_transactions(self, member: Member) -> List[Transaction]:
        with self._uow() as uow:
            return uow.transactions.list_for_member(member.id)

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self._uow() as uow:
            loan = uow.transactions.get(transaction_id)
            if loan is None:
                raise NotFound(f"No transaction found with ID {transaction_id}.")
            return loan

    def member_fines(self, member: Member) -> List[Fine]:
        with self._uow() as uow:
            return uow.fines.list_for_member(member.id)

    def generate_fines_for_overdue(self) -> int:
        """Issue one OUTSTANDING fine per overdue loan that has none yet.

        Loans keep their ACTIVE status. Running the batch again on the same
        day issues nothing new.
        """
        today = self.clock.today()
        created = 0
        with self._uow() as uow:
            for loan in uow.transactions.list_overdue_unfined(today):
                days_overdue = (today - loan.due_date).days
                if days_overdue <= 0:
                    continue
                amount = (self.fine_per_day * days_overdue).quantize(CENTS)
                uow.fines.add(
                    Fine(
                        member_id=loan.member_id,
                        transaction_id=loan.id,
                        fine_amount=amount,
                        status=FineStatus.OUTSTANDING,
                        date_issued=today,
                    )
                )
                created += 1
            uow.commit()
        return created


class ReservationService(_Service):
    def place_reservation(self, member: Member, book_id: int) -> Reservation:
        with self._uow() as uow:
            book = _require_book(uow, book_id)
            if book.copies_available > 0:
                raise InvalidState(f"Book '{book.title}' is currently in stock. Reservation not needed.")
            if uow.reservations.find_active_for_member(member.id, book_id) is not None:
                raise Conflict("You already have an active reservation for this book.")
            if uow.transactions.find_active(member.id, book_id) is not None:
                raise Conflict("You already have this book on loan.")

            reservation = Reservation(
                book_id=book_id,
                member_id=member.id,
                reservation_date=self.clock.now(),
                status=ReservationStatus.WAITING,
                holds_copy=False,
            )
            uow.reservations.add(reservation)
            uow.commit()
            return reservation

    def member_active_reservations(self, member: Member) -> List[Reservation]:
        with self._uow() as uow:
            return uow.reservations.list_active_for_member(member.id)

    def all_active_reservations(self) -> List[Reservation]:
        with self._uow() as uow:
            return uow.reservations.list_active()

    def next_waiting(self, book_id: int) -> Optional[Reservation]:
        with self._uow() as uow:
            return uow.reservations.next_waiting(book_id)

    def notify_next(self, book_id: int) -> Reservation:
        """Mark the oldest WAITING reservation for a book as AVAILABLE.

        If a copy is on the shelf it is moved to the held count so only the
        notified member can borrow it. No copy is held for a member who
        already has the book on loan.
        """
        with self._uow() as uow:
            book = _require_book(uow, book_id)
            reservation = uow.reservations.next_waiting(book_id)
            if reservation is None:
                raise NotFound(f"No members are waiting for book ID {book_id}.")

            on_loan = uow.transactions.find_active(reservation.member_id, book_id) is not None
            if book.copies_available > 0 and not on_loan:
                book.copies_available -= 1
                book.copies_held += 1
                reservation.holds_copy = True
                uow.books.update(book)
            reservation.status = ReservationStatus.AVAILABLE
            uow.reservations.update(reservation)
            uow.commit()
            return reservation

    def force_fulfill(self, reservation_id: int) -> Reservation:
        with self._uow() as uow:
            reservation = uow.reservations.get(reservation_id)
            if reservation is None:
                raise NotFound(f"Reservation with ID {reservation_id} not found.")

            if reservation.holds_copy:
                # No loan is recorded for a manual fulfilment, so the held copy goes back on the shelf.
                book = uow.books.get(reservation.book_id)
                if book is not None and book.copies_held > 0:
                    book.copies_held -= 1
                    book.copies_available = min(book.copies_available + 1, book.total_copies - book.copies_held)
                    uow.books.update(book)
                reservation.holds_copy = False
            reservation.status = ReservationStatus.FULFILLED
            uow.reservations.update(reservation)
            uow.commit()
            return reservation


class Library:
    """Wires the services to one database."""

    def __init__(self, session_factory, settings: Optional[Settings] = None, clock=None, hasher: Optional[PasswordHasher] = None):
        self.settings = settings or Settings()
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.hasher = hasher or PasswordHasher()

        self.catalog = CatalogService(session_factory, self.clock)
        self.members = MembershipService(session_factory, self.hasher, self.clock)
        self.auth = AuthenticationService(
            session_factory,
            LibrarianCredentials.from_settings(self.settings, self.hasher),
            self.hasher,
        )
        self.circulation = CirculationService(
            session_factory,
            self.clock,
            loan_period_days=self.settings.loan_period_days,
            fine_per_day=self.settings.fine_per_day,
        )
        self.reservations = ReservationService(session_factory, self.clock)

    @classmethod
    def from_settings(cls, settings: Settings, clock=None) -> "Library":
        engine = make_engine(settings.database_url)
        init_db(engine)
        return cls(make_session_factory(engine), settings, clock)
