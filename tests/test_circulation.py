import random
from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

import repositories
from exceptions import (
    Conflict,
    Forbidden,
    InvalidArgument,
    InvalidState,
    LibraryError,
    NotFound,
    StorageFailure,
    Unavailable,
)
from models import ReservationStatus, TransactionStatus


def test_borrow_then_return_round_trip(library, member, book):
    loan = library.circulation.borrow(member, book.id)

    assert loan.status == TransactionStatus.ACTIVE
    assert loan.borrow_date == date(2025, 1, 10)
    assert loan.due_date == loan.borrow_date + timedelta(days=14)
    stored = library.catalog.get_book(book.id)
    assert stored.copies_available == 0
    assert stored.times_borrowed == 1

    returned = library.circulation.return_book(member, book.id, loan.id)

    assert returned.status == TransactionStatus.RETURNED
    assert returned.return_date == date(2025, 1, 10)
    assert library.catalog.get_book(book.id).copies_available == 1
    assert library.circulation.get_transaction(loan.id).status == TransactionStatus.RETURNED


def test_borrow_unknown_book(library, member):
    with pytest.raises(NotFound):
        library.circulation.borrow(member, 999)


def test_borrow_without_copies_or_reservation_changes_nothing(library, member, other_member, book):
    library.circulation.borrow(other_member, book.id)
    before = library.catalog.get_book(book.id)

    with pytest.raises(Unavailable):
        library.circulation.borrow(member, book.id)

    after = library.catalog.get_book(book.id)
    assert (after.copies_available, after.times_borrowed) == (before.copies_available, before.times_borrowed)
    assert library.circulation.member_transactions(member) == []
    assert library.reservations.all_active_reservations() == []


def test_unavailable_is_an_invalid_state():
    assert issubclass(Unavailable, InvalidState)


def test_second_active_loan_for_same_book_conflicts(library, member, book_factory):
    book = book_factory(copies=2)
    library.circulation.borrow(member, book.id)

    with pytest.raises(Conflict):
        library.circulation.borrow(member, book.id)

    assert library.catalog.get_book(book.id).copies_available == 1
    assert len(library.circulation.member_transactions(member)) == 1


def test_borrow_again_after_return(library, member, book):
    first = library.circulation.borrow(member, book.id)
    library.circulation.return_book(member, book.id, first.id)

    second = library.circulation.borrow(member, book.id)

    assert second.id != first.id
    assert library.catalog.get_book(book.id).times_borrowed == 2


def test_return_unknown_transaction(library, member, book):
    with pytest.raises(NotFound):
        library.circulation.return_book(member, book.id, 12345)


def test_return_someone_elses_loan(library, member, other_member, book):
    loan = library.circulation.borrow(other_member, book.id)

    with pytest.raises(Forbidden):
        library.circulation.return_book(member, book.id, loan.id)

    assert library.catalog.get_book(book.id).copies_available == 0


def test_return_with_mismatched_book(library, member, book, book_factory):
    other_book = book_factory()
    loan = library.circulation.borrow(member, book.id)

    with pytest.raises(InvalidArgument):
        library.circulation.return_book(member, other_book.id, loan.id)


def test_returning_twice_leaves_stock_alone(library, member, book):
    loan = library.circulation.borrow(member, book.id)
    library.circulation.return_book(member, book.id, loan.id)

    with pytest.raises(InvalidState):
        library.circulation.return_book(member, book.id, loan.id)

    assert library.catalog.get_book(book.id).copies_available == 1


def test_return_never_exceeds_total_copies(library, member, other_member, book):
    """A loan granted on an empty shelf must not push the count past the total."""
    first = library.circulation.borrow(other_member, book.id)
    library.reservations.place_reservation(member, book.id)
    library.reservations.notify_next(book.id)
    second = library.circulation.borrow(member, book.id)

    library.circulation.return_book(other_member, book.id, first.id)
    library.circulation.return_book(member, book.id, second.id)

    assert library.catalog.get_book(book.id).copies_available == 1


def test_reserved_member_borrows_from_empty_shelf(library, member, other_member, book):
    library.circulation.borrow(other_member, book.id)
    reservation = library.reservations.place_reservation(member, book.id)
    assert reservation.status == ReservationStatus.WAITING

    notified = library.reservations.notify_next(book.id)
    assert notified.id == reservation.id
    assert notified.status == ReservationStatus.AVAILABLE

    loan = library.circulation.borrow(member, book.id)

    assert loan.status == TransactionStatus.ACTIVE
    stored = library.catalog.get_book(book.id)
    assert stored.copies_available == 0
    assert stored.copies_held == 0
    assert library.reservations.member_active_reservations(member) == []


def test_held_copy_goes_only_to_notified_member(library, member, other_member, book):
    third = library.members.register("Carol", "carol", "carol-pw")
    loan = library.circulation.borrow(other_member, book.id)
    library.reservations.place_reservation(member, book.id)
    library.circulation.return_book(other_member, book.id, loan.id)

    library.reservations.notify_next(book.id)
    held = library.catalog.get_book(book.id)
    assert (held.copies_available, held.copies_held) == (0, 1)

    with pytest.raises(Unavailable):
        library.circulation.borrow(third, book.id)

    library.circulation.borrow(member, book.id)
    after = library.catalog.get_book(book.id)
    assert (after.copies_available, after.copies_held) == (0, 0)


def test_failed_write_rolls_back_the_whole_borrow(library, member, book, monkeypatch):
    def broken_add(self, transaction):
        raise OperationalError("INSERT INTO transactions", {}, Exception("disk I/O error"))

    monkeypatch.setattr(repositories.TransactionRepository, "add", broken_add)

    with pytest.raises(StorageFailure):
        library.circulation.borrow(member, book.id)

    stored = library.catalog.get_book(book.id)
    assert stored.copies_available == 1
    assert stored.times_borrowed == 0


def test_overdue_is_derived_not_stored(library, member, book, clock):
    loan = library.circulation.borrow(member, book.id)
    clock.advance(20)

    stored = library.circulation.get_transaction(loan.id)
    assert stored.status == TransactionStatus.ACTIVE
    assert stored.is_overdue(clock.today())


def test_transaction_listings(library, member, other_member, book_factory, clock):
    first_book = book_factory("Refactoring")
    second_book = book_factory("Design Patterns")
    first = library.circulation.borrow(member, first_book.id)
    clock.advance(1)
    second = library.circulation.borrow(member, second_book.id)
    third = library.circulation.borrow(other_member, first_book.id)

    assert [t.id for t in library.circulation.member_transactions(member)] == [second.id, first.id]
    assert [t.id for t in library.circulation.all_transactions()] == [third.id, second.id, first.id]


@pytest.mark.parametrize("seed", range(5))
def test_stock_stays_within_bounds(library, book_factory, seed):
    rng = random.Random(seed)
    members = [library.members.register(f"Member {i}", f"member{i}", "pw") for i in range(3)]
    books = [book_factory("Small Run", copies=1), book_factory("Big Run", copies=2)]

    for _ in range(60):
        m = rng.choice(members)
        b = rng.choice(books)
        op = rng.choice(["borrow", "borrow", "return", "reserve", "notify", "fulfill"])
        try:
            if op == "borrow":
                library.circulation.borrow(m, b.id)
            elif op == "return":
                active = [
                    t for t in library.circulation.member_transactions(m)
                    if t.status == TransactionStatus.ACTIVE and t.book_id == b.id
                ]
                if active:
                    library.circulation.return_book(m, b.id, active[0].id)
            elif op == "reserve":
                library.reservations.place_reservation(m, b.id)
            elif op == "notify":
                library.reservations.notify_next(b.id)
            else:
                pending = library.reservations.member_active_reservations(m)
                if pending:
                    library.reservations.force_fulfill(pending[0].id)
        except LibraryError:
            pass

        for stored in library.catalog.list_books():
            assert stored.copies_available >= 0
            assert stored.copies_held >= 0
            assert stored.copies_available + stored.copies_held <= stored.total_copies
