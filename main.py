from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional
from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from config import Settings, configure_logging
from exceptions import (
    Conflict,
    Forbidden,
    InvalidArgument,
    InvalidState,
    LibraryError,
    NotFound,
    StorageFailure,
)
from models import Book, Fine, Member, Reservation, Transaction
from services import Library

logger = configure_logging()

security = HTTPBasic()

ERROR_STATUS = [
    (NotFound, 404),
    (Conflict, 409),
    (InvalidState, 409),
    (Forbidden, 403),
    (InvalidArgument, 400),
    (StorageFailure, 503),
]


def get_library(request: Request) -> Library:
    return request.app.state.library


def require_librarian(
    credentials: HTTPBasicCredentials = Depends(security),
    library: Library = Depends(get_library),
) -> str:
    if not library.auth.librarian_login(credentials.username, credentials.password):
        raise HTTPException(
            status_code=401, detail="Invalid librarian credentials", headers={"WWW-Authenticate": "Basic"}
        )
    return credentials.username


def current_member(
    credentials: HTTPBasicCredentials = Depends(security),
    library: Library = Depends(get_library),
) -> Member:
    member = library.auth.member_login(credentials.username, credentials.password)
    if member is None:
        raise HTTPException(
            status_code=401, detail="Invalid username or password", headers={"WWW-Authenticate": "Basic"}
        )
    return member


def book_data(book: Book) -> dict:
    return {
        "id": book.id,
        "title": book.title,
        "publisher": book.publisher,
        "publication_date": book.publication_date,
        "total_copies": book.total_copies,
        "copies_available": book.copies_available,
        "copies_held": book.copies_held,
        "times_borrowed": book.times_borrowed,
        "authors": [author.name for author in book.authors],
        "subjects": [subject.name for subject in book.subjects],
    }


def member_data(member: Member) -> dict:
    return {
        "id": member.id,
        "name": member.name,
        "username": member.username,
        "email": member.email,
        "phone_number": member.phone_number,
        "address": member.address,
        "membership_type": member.membership_type.name,
        "membership_status": member.membership_status,
        "registration_date": member.registration_date,
        "expiry_date": member.expiry_date,
    }


def transaction_data(loan: Transaction, today: date) -> dict:
    return {
        "id": loan.id,
        "member_id": loan.member_id,
        "book_id": loan.book_id,
        "borrow_date": loan.borrow_date,
        "due_date": loan.due_date,
        "return_date": loan.return_date,
        "status": loan.status.name,
        "overdue": loan.is_overdue(today),
    }


def reservation_data(reservation: Reservation) -> dict:
    return {
        "id": reservation.id,
        "book_id": reservation.book_id,
        "member_id": reservation.member_id,
        "reservation_date": reservation.reservation_date,
        "status": reservation.status.name,
    }


def fine_data(fine: Fine) -> dict:
    return {
        "id": fine.id,
        "member_id": fine.member_id,
        "transaction_id": fine.transaction_id,
        "fine_amount": str(fine.fine_amount),
        "status": fine.status.name,
        "date_issued": fine.date_issued,
        "date_paid": fine.date_paid,
    }


def respond(message: str, status_code: int = 200, **data) -> JSONResponse:
    content = {"status_code": status_code, "message": message}
    content.update(data)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Built once before the first request is served.
    if app.state.library is None:
        app.state.library = Library.from_settings(Settings.from_env())
    yield


def create_app(library: Optional[Library] = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.library = library

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Members

    @app.get("/members", dependencies=[Depends(require_librarian)])
    def get_members(library: Library = Depends(get_library)):
        members = [member_data(m) for m in library.members.list_members()]
        return JSONResponse(status_code=200, content={"members": jsonable_encoder(members)})

    @app.post("/members", dependencies=[Depends(require_librarian)])
    def create_member(
        name: str,
        username: str,
        password: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        membership_type: str = "PUBLIC",
        expiry_date: Optional[date] = None,
        library: Library = Depends(get_library),
    ):
        member = library.members.register(
            name, username, password, email, phone_number, address, membership_type, expiry_date
        )
        return respond("Member created", status_code=201, member_id=member.id)

    @app.delete("/members/{member_id}", dependencies=[Depends(require_librarian)])
    def delete_member(member_id: int, library: Library = Depends(get_library)):
        library.members.remove_member(member_id)
        return respond("Member removed")

    # Books

    @app.get("/books", dependencies=[Depends(require_librarian)])
    def get_books(library: Library = Depends(get_library)):
        books = [book_data(b) for b in library.catalog.list_books()]
        return JSONResponse(status_code=200, content={"books": jsonable_encoder(books)})

    @app.post("/books", dependencies=[Depends(require_librarian)])
    def create_book(
        title: str,
        total_copies: int,
        publisher: Optional[str] = None,
        publication_date: Optional[date] = None,
        authors: List[str] = Query([]),
        subjects: List[str] = Query([]),
        library: Library = Depends(get_library),
    ):
        book = library.catalog.add_book(title, publisher, publication_date, total_copies, authors, subjects)
        return respond("Book created", status_code=201, book_id=book.id)

    @app.delete("/books/{book_id}", dependencies=[Depends(require_librarian)])
    def delete_book(book_id: int, library: Library = Depends(get_library)):
        library.catalog.remove_book(book_id)
        return respond("Book deleted")

    @app.put("/books/{book_id}/stock", dependencies=[Depends(require_librarian)])
    def update_stock(book_id: int, total_copies: int, library: Library = Depends(get_library)):
        book = library.catalog.update_stock(book_id, total_copies)
        return respond("Book stock updated", book=book_data(book))

    # Transactions

    @app.get("/transactions", dependencies=[Depends(require_librarian)])
    def get_transactions(library: Library = Depends(get_library)):
        today = library.clock.today()
        data = [transaction_data(t, today) for t in library.circulation.all_transactions()]
        return JSONResponse(status_code=200, content={"transactions": jsonable_encoder(data)})

    @app.get("/transactions/{transaction_id}", dependencies=[Depends(require_librarian)])
    def get_transaction(transaction_id: int, library: Library = Depends(get_library)):
        loan = library.circulation.get_transaction(transaction_id)
        data = transaction_data(loan, library.clock.today())
        return JSONResponse(status_code=200, content={"transaction": jsonable_encoder(data)})

    # Reservations

    @app.get("/reservations", dependencies=[Depends(require_librarian)])
    def get_reservations(library: Library = Depends(get_library)):
        data = [reservation_data(r) for r in library.reservations.all_active_reservations()]
        return JSONResponse(status_code=200, content={"reservations": jsonable_encoder(data)})

    @app.get("/reservations/next/{book_id}", dependencies=[Depends(require_librarian)])
    def get_next_reservation(book_id: int, library: Library = Depends(get_library)):
        reservation = library.reservations.next_waiting(book_id)
        if reservation is None:
            raise HTTPException(status_code=404, detail="No members are waiting for this book")
        return JSONResponse(status_code=200, content={"reservation": jsonable_encoder(reservation_data(reservation))})

    @app.post("/reservations/notify/{book_id}", dependencies=[Depends(require_librarian)])
    def notify_next(book_id: int, library: Library = Depends(get_library)):
        reservation = library.reservations.notify_next(book_id)
        return respond("Reservation marked as AVAILABLE", reservation=reservation_data(reservation))

    @app.post("/reservations/{reservation_id}/fulfill", dependencies=[Depends(require_librarian)])
    def fulfill_reservation(reservation_id: int, library: Library = Depends(get_library)):
        reservation = library.reservations.force_fulfill(reservation_id)
        return respond("Reservation marked as FULFILLED", reservation=reservation_data(reservation))

    # Fines

    @app.post("/fines/generate", dependencies=[Depends(require_librarian)])
    def generate_fines(library: Library = Depends(get_library)):
        created = library.circulation.generate_fines_for_overdue()
        logger.info("Generated %d fine(s) for overdue loans", created)
        return respond("Fines generated", fines_created=created)

    # Member self-service

    @app.get("/catalog", dependencies=[Depends(current_member)])
    def get_catalog(library: Library = Depends(get_library)):
        books = [book_data(b) for b in library.catalog.list_books()]
        return JSONResponse(status_code=200, content={"books": jsonable_encoder(books)})

    @app.post("/borrowings")
    def borrow_book(book_id: int, member: Member = Depends(current_member), library: Library = Depends(get_library)):
        loan = library.circulation.borrow(member, book_id)
        return respond("Book borrowed", transaction_id=loan.id, due_date=loan.due_date)

    @app.post("/returns")
    def return_book(
        book_id: int,
        transaction_id: int,
        member: Member = Depends(current_member),
        library: Library = Depends(get_library),
    ):
        library.circulation.return_book(member, book_id, transaction_id)
        return respond("Book returned")

    @app.get("/me/transactions")
    def get_my_transactions(member: Member = Depends(current_member), library: Library = Depends(get_library)):
        today = library.clock.today()
        data = [transaction_data(t, today) for t in library.circulation.member_transactions(member)]
        return JSONResponse(status_code=200, content={"transactions": jsonable_encoder(data)})

    @app.post("/reservations")
    def place_reservation(book_id: int, member: Member = Depends(current_member), library: Library = Depends(get_library)):
        reservation = library.reservations.place_reservation(member, book_id)
        return respond("Reservation placed", status_code=201, reservation_id=reservation.id)

    @app.get("/me/reservations")
    def get_my_reservations(member: Member = Depends(current_member), library: Library = Depends(get_library)):
        data = [reservation_data(r) for r in library.reservations.member_active_reservations(member)]
        return JSONResponse(status_code=200, content={"reservations": jsonable_encoder(data)})

    @app.get("/me/fines")
    def get_my_fines(member: Member = Depends(current_member), library: Library = Depends(get_library)):
        data = [fine_data(f) for f in library.circulation.member_fines(member)]
        return JSONResponse(status_code=200, content={"fines": jsonable_encoder(data)})

    # Error Handling

    @app.exception_handler(LibraryError)
    def library_error_handler(request, exc):
        status_code = get_status_code(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return get_default_error_response(status_code, str(exc))

    @app.exception_handler(Exception)
    def exception_handler(request, exc):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        json_resp = get_default_error_response()
        return json_resp

    return app


def get_status_code(exc: LibraryError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    return 500


def get_default_error_response(status_code=500, message="Internal Server Error"):
    return JSONResponse(
        status_code=status_code,
        content={"status_code": status_code, "message": message},
    )


app = create_app()
