"""Interactive text console for librarians and members.

Run with ``library-console`` (or ``python console.py``). The database and the
librarian account are taken from the environment, see ``config.Settings``.
"""

from datetime import date
from typing import Callable, List, Optional

from config import Settings, configure_logging
from exceptions import LibraryError, StorageFailure
from models import Member, MembershipType
from services import Library

logger = configure_logging()


class Console:
    def __init__(
        self,
        library: Library,
        input_func: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ) -> None:
        self.library = library
        self.input = input_func
        self.output = output

    # prompts

    def ask(self, prompt: str) -> str:
        return self.input(prompt).strip()

    def ask_int(self, prompt: str) -> int:
        while True:
            value = self.ask(prompt)
            try:
                return int(value)
            except ValueError:
                self.output("Invalid input. Please enter a number.")

    def ask_date(self, prompt: str) -> Optional[date]:
        while True:
            value = self.ask(prompt)
            if not value:
                return None
            try:
                return date.fromisoformat(value)
            except ValueError:
                self.output("Invalid date. Please use YYYY-MM-DD.")

    def run_action(self, action: Callable[[], None]) -> None:
        try:
            action()
        except StorageFailure as exc:
            logger.error("Database error: %s", exc)
            self.output(f"Database error: {exc}")
        except LibraryError as exc:
            self.output(f"Error: {exc}")

    def menu(self, title: str, options: List[str]) -> str:
        self.output(f"\n--- {title} ---")
        for number, option in enumerate(options, start=1):
            self.output(f"{number}. {option}")
        return self.ask("Enter your choice: ")

    # main loop

    def run(self) -> None:
        while True:
            choice = self.menu("Library Management System", ["Login as Librarian", "Login as Member", "Exit"])
            if choice == "1":
                self.librarian_login()
            elif choice == "2":
                self.member_login()
            elif choice == "3":
                self.output("Goodbye.")
                return
            else:
                self.output("Invalid choice. Please try again.")

    def librarian_login(self) -> None:
        username = self.ask("Username: ")
        password = self.ask("Password: ")
        if self.library.auth.librarian_login(username, password):
            self.output("Librarian login successful.")
            self.librarian_menu()
        else:
            self.output("Invalid librarian credentials.")

    def member_login(self) -> None:
        username = self.ask("Username: ")
        password = self.ask("Password: ")
        try:
            member = self.library.auth.member_login(username, password)
        except StorageFailure as exc:
            self.output(f"Database error: {exc}")
            return
        if member is None:
            self.output("Invalid username or password.")
            return
        self.output(f"Welcome, {member.name}!")
        self.member_menu(member)

    # librarian

    def librarian_menu(self) -> None:
        actions = {
            "1": self.manage_members,
            "2": self.manage_books,
            "3": self.manage_transactions,
            "4": self.manage_reservations,
            "5": lambda: self.run_action(self.generate_fines),
        }
        while True:
            choice = self.menu(
                "Librarian Menu",
                [
                    "Manage Members",
                    "Manage Books",
                    "Transactions",
                    "Manage Reservations",
                    "Generate Fines for Overdue Books",
                    "Logout",
                ],
            )
            if choice == "6":
                self.output("Logging out librarian...")
                return
            action = actions.get(choice)
            if action is None:
                self.output("Invalid choice. Please try again.")
            else:
                action()

    def submenu(self, title: str, entries) -> None:
        options = [label for label, _ in entries] + ["Back"]
        while True:
            choice = self.menu(title, options)
            if choice == str(len(options)):
                return
            if choice.isdigit() and 1 <= int(choice) < len(options):
                self.run_action(entries[int(choice) - 1][1])
            else:
                self.output("Invalid choice. Please try again.")

    def manage_members(self) -> None:
        self.submenu(
            "Manage Members",
            [
                ("View List of Library Members", self.view_members),
                ("Add a New Library Member", self.add_member),
                ("Remove an Existing Member", self.remove_member),
            ],
        )

    def manage_books(self) -> None:
        self.submenu(
            "Manage Books",
            [
                ("View All Books in Library", self.view_books),
                ("Add a New Book", self.add_book),
                ("Remove a Book", self.remove_book),
                ("Update Book Stock", self.update_stock),
            ],
        )

    def manage_transactions(self) -> None:
        self.submenu(
            "Transactions",
            [
                ("View all transactions", self.view_all_transactions),
                ("Search Transaction by ID", self.search_transaction),
            ],
        )

    def manage_reservations(self) -> None:
        self.submenu(
            "Manage Reservations",
            [
                ("View All Active Reservations", self.view_active_reservations),
                ("Notify Next Member for Available Book (Mark as AVAILABLE)", self.notify_next),
                ("Manually Fulfill Reservation (Mark as FULFILLED)", self.force_fulfill),
            ],
        )

    def view_members(self) -> None:
        members = self.library.members.list_members()
        if not members:
            self.output("No members found.")
        for m in members:
            self.output(
                f"ID: {m.id} | Name: {m.name} | Username: {m.username} | "
                f"Type: {m.membership_type.name} | Status: {m.membership_status}"
            )

    def add_member(self) -> None:
        name = self.ask("Name: ")
        username = self.ask("Username: ")
        password = self.ask("Password: ")
        email = self.ask("Email: ") or None
        phone_number = self.ask("Phone number: ") or None
        address = self.ask("Address: ") or None
        allowed = "/".join(t.name for t in MembershipType)
        membership_type = self.ask(f"Membership type ({allowed}): ") or MembershipType.PUBLIC.name
        expiry_date = self.ask_date("Expiry date (YYYY-MM-DD, blank for none): ")
        member = self.library.members.register(
            name, username, password, email, phone_number, address, membership_type, expiry_date
        )
        self.output(f"Member '{member.name}' added with ID {member.id}.")

    def remove_member(self) -> None:
        member_id = self.ask_int("Enter Member ID to remove: ")
        self.library.members.remove_member(member_id)
        self.output(f"Member ID {member_id} removed.")

    def view_books(self) -> None:
        books = self.library.catalog.list_books()
        if not books:
            self.output("No books in the library.")
        for b in books:
            authors = ", ".join(a.name for a in b.authors) or "-"
            self.output(
                f"ID: {b.id} | Title: {b.title} | Authors: {authors} | "
                f"Available: {b.copies_available}/{b.total_copies} | Borrowed: {b.times_borrowed} times"
            )

    def add_book(self) -> None:
        title = self.ask("Title: ")
        publisher = self.ask("Publisher: ") or None
        publication_date = self.ask_date("Publication date (YYYY-MM-DD, blank if unknown): ")
        total_copies = self.ask_int("Total copies: ")
        authors = self.ask("Authors (comma separated): ").split(",")
        subjects = self.ask("Subjects (comma separated): ").split(",")
        book = self.library.catalog.add_book(title, publisher, publication_date, total_copies, authors, subjects)
        self.output(f"Book '{book.title}' added with ID {book.id}.")

    def remove_book(self) -> None:
        book_id = self.ask_int("Enter Book ID to remove: ")
        self.library.catalog.remove_book(book_id)
        self.output(f"Book ID {book_id} removed.")

    def update_stock(self) -> None:
        book_id = self.ask_int("Enter Book ID: ")
        total_copies = self.ask_int("New total copies: ")
        book = self.library.catalog.update_stock(book_id, total_copies)
        self.output(f"Stock updated. Available: {book.copies_available}/{book.total_copies}")

    def print_transactions(self, transactions) -> None:
        if not transactions:
            self.output("No transactions found.")
        today = self.library.clock.today()
        for t in transactions:
            status = "OVERDUE" if t.is_overdue(today) else t.status.name
            self.output(
                f"Transaction ID: {t.id} | Member ID: {t.member_id} | Book ID: {t.book_id} | "
                f"Borrowed: {t.borrow_date} | Due: {t.due_date} | "
                f"Returned: {t.return_date or '-'} | Status: {status}"
            )

    def view_all_transactions(self) -> None:
        self.print_transactions(self.library.circulation.all_transactions())

    def search_transaction(self) -> None:
        transaction_id = self.ask_int("Enter Transaction ID to search: ")
        self.print_transactions([self.library.circulation.get_transaction(transaction_id)])

    def print_reservations(self, reservations) -> None:
        if not reservations:
            self.output("No active reservations.")
        for r in reservations:
            self.output(
                f"Reservation ID: {r.id} | Book ID: {r.book_id} | Member ID: {r.member_id} | "
                f"Reserved: {r.reservation_date:%Y-%m-%d %H:%M} | Status: {r.status.name}"
            )

    def view_active_reservations(self) -> None:
        self.print_reservations(self.library.reservations.all_active_reservations())

    def notify_next(self) -> None:
        book_id = self.ask_int("Enter Book ID: ")
        reservation = self.library.reservations.next_waiting(book_id)
        if reservation is None:
            self.output("No members are waiting for this book.")
            return
        self.output(f"Next in queue: Member ID {reservation.member_id} (Reservation ID {reservation.id}).")
        if self.ask("Mark this reservation as AVAILABLE? (y/n): ").lower() != "y":
            self.output("No changes made.")
            return
        reservation = self.library.reservations.notify_next(book_id)
        self.output(f"Reservation ID {reservation.id} is now AVAILABLE for Member ID {reservation.member_id}.")

    def force_fulfill(self) -> None:
        self.output("This option is for manual overrides or specific cases.")
        reservation_id = self.ask_int("Enter Reservation ID to mark as FULFILLED: ")
        self.library.reservations.force_fulfill(reservation_id)
        self.output(f"Reservation ID {reservation_id} marked as FULFILLED.")

    def generate_fines(self) -> None:
        created = self.library.circulation.generate_fines_for_overdue()
        self.output(f"{created} new fine(s) generated for overdue books.")

    # member

    def member_menu(self, member: Member) -> None:
        actions = {
            "1": lambda: self.borrow_book(member),
            "2": lambda: self.return_book(member),
            "3": lambda: self.print_transactions(self.library.circulation.member_transactions(member)),
            "4": lambda: self.place_reservation(member),
            "5": lambda: self.print_reservations(self.library.reservations.member_active_reservations(member)),
            "6": self.view_books,
        }
        while True:
            choice = self.menu(
                "Member Menu",
                [
                    "Borrow Book",
                    "Return Book",
                    "View My Transactions",
                    "Place a Reservation for a Book",
                    "View My Active Reservations",
                    "View All Books",
                    "Logout",
                ],
            )
            if choice == "7":
                self.output("Logging out member...")
                return
            action = actions.get(choice)
            if action is None:
                self.output("Invalid choice. Please try again.")
            else:
                self.run_action(action)

    def borrow_book(self, member: Member) -> None:
        book_id = self.ask_int("Enter Book ID to borrow: ")
        loan = self.library.circulation.borrow(member, book_id)
        self.output(f"Book borrowed successfully. Transaction ID: {loan.id}. Due on: {loan.due_date}")

    def return_book(self, member: Member) -> None:
        book_id = self.ask_int("Enter Book ID to return: ")
        transaction_id = self.ask_int("Enter Transaction ID: ")
        self.library.circulation.return_book(member, book_id, transaction_id)
        self.output("Book returned successfully.")

    def place_reservation(self, member: Member) -> None:
        book_id = self.ask_int("Enter Book ID to reserve: ")
        reservation = self.library.reservations.place_reservation(member, book_id)
        self.output(f"Reservation placed successfully. Reservation ID: {reservation.id}")


def main() -> None:
    library = Library.from_settings(Settings.from_env())
    Console(library).run()


if __name__ == "__main__":
    main()
