import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from book import Book
from borrow_record import BorrowRecord
from config import settings
from errors import CirculationError, InternalError, ValidationError
from library import Library
from queries import BorrowPage
from validators import parse_book_request, parse_borrow_request, parse_datetime

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


# --- Models ---
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookSummaryModel(CamelModel):
    id: str
    title: str
    author: str
    isbn: str


class UserSummaryModel(CamelModel):
    id: str
    name: str
    email: str
    membership_id: str


class BorrowRecordModel(CamelModel):
    id: str
    user_id: str
    book_id: str
    borrow_date: datetime
    due_date: datetime
    return_date: datetime | None = None
    status: str
    fine_amount: float
    is_overdue: bool = False
    book: BookSummaryModel | None = None
    user: UserSummaryModel | None = None


class BorrowResponse(CamelModel):
    message: str
    borrow_record: BorrowRecordModel


class BorrowListResponse(CamelModel):
    borrow_records: List[BorrowRecordModel]
    total_pages: int
    current_page: int
    total: int


class UserModel(CamelModel):
    id: str
    name: str
    email: str
    membership_id: str
    role: str
    is_active: bool


class UserCreateModel(CamelModel):
    name: str
    email: str
    role: str = "member"


class UserActiveModel(CamelModel):
    is_active: bool


class UserBorrowsResponse(CamelModel):
    user: UserModel
    current_borrows: List[BorrowRecordModel]
    borrow_history: List[BorrowRecordModel]


class BookModel(CamelModel):
    id: str
    isbn: str
    title: str
    author: str
    genre: str | None = None
    location: str | None = None
    total_copies: int
    available_copies: int
    status: str
    is_low_stock: bool = False
    created_at: str | None = None


class MaintenanceModel(CamelModel):
    maintenance: bool = Field(description="True to flag the book for maintenance")


class StatsModel(CamelModel):
    active_loans: int
    overdue_loans: int
    returned_loans: int
    users_with_active_borrows: int
    total_fines: float


class ReconcileResponse(CamelModel):
    resolved: int
    pending: int


# --- Helpers ---
def get_library(request: Request) -> Library:
    return request.app.state.library


def _record_model(library: Library, record: BorrowRecord) -> BorrowRecordModel:
    return BorrowRecordModel(**record.to_dict(now=library.now()))


def _with_summaries(library: Library, record: BorrowRecord) -> BorrowRecord:
    """Reload a committed record with its book and user summaries, or keep it as is."""
    try:
        return library.queries.get_borrow_record(record.id)
    except CirculationError as e:
        logger.warning(f"Could not load summaries for borrow record {record.id}: {e.message}")
        return record


def _page_model(library: Library, page: BorrowPage) -> BorrowListResponse:
    return BorrowListResponse(
        borrow_records=[_record_model(library, r) for r in page.borrow_records],
        total_pages=page.total_pages,
        current_page=page.current_page,
        total=page.total,
    )


def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict(), is_low_stock=book.is_low_stock)


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency guarding endpoints that change circulation state."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Circulation endpoints ---
router = APIRouter()


@router.get("/health")
def health(library: Library = Depends(get_library)):
    return {
        "status": "healthy",
        "timestamp": library.now().isoformat(),
        "version": settings.app_version,
    }


@router.post("/borrow", status_code=201, response_model=BorrowResponse, dependencies=[Depends(get_api_key)])
def borrow_book(payload: Any = Body(None), library: Library = Depends(get_library)):
    """Check a book out to a member."""
    request = parse_borrow_request(payload).unwrap()
    record = library.circulation.checkout(request.user_id, request.book_id, request.due_date)
    record = _with_summaries(library, record)
    return BorrowResponse(message="Book borrowed successfully", borrow_record=_record_model(library, record))


@router.patch("/borrow/{borrow_id}/return", response_model=BorrowResponse, dependencies=[Depends(get_api_key)])
def return_book(borrow_id: str, library: Library = Depends(get_library)):
    """Return a borrowed book, charging a fine if it is late."""
    record = library.circulation.return_book(borrow_id)
    record = _with_summaries(library, record)
    return BorrowResponse(message="Book returned successfully", borrow_record=_record_model(library, record))


@router.get("/borrow", response_model=BorrowListResponse)
def list_borrow_records(
    page: int = Query(1, description="Page number"),
    limit: int = Query(settings.default_page_size, description="Records per page"),
    status: Optional[str] = Query(None, description="borrowed | returned | overdue"),
    user_id: Optional[str] = Query(None, alias="userId"),
    borrowed_from: Optional[str] = Query(None, alias="borrowedFrom"),
    borrowed_to: Optional[str] = Query(None, alias="borrowedTo"),
    library: Library = Depends(get_library),
):
    """Paginated borrow records, newest first."""
    date_from = _parse_query_date(borrowed_from, "borrowedFrom")
    date_to = _parse_query_date(borrowed_to, "borrowedTo")
    result = library.queries.list_borrow_records(
        page=page, limit=limit, status=status, user_id=user_id,
        borrowed_from=date_from, borrowed_to=date_to,
    )
    return _page_model(library, result)


@router.get("/borrow/overdue", response_model=BorrowListResponse)
def list_overdue(
    page: int = Query(1),
    limit: int = Query(settings.default_page_size),
    library: Library = Depends(get_library),
):
    return _page_model(library, library.queries.list_overdue(page=page, limit=limit))


@router.get("/borrow/stats", response_model=StatsModel)
def circulation_stats(library: Library = Depends(get_library)):
    return StatsModel(**library.queries.circulation_stats())


@router.post("/borrow/reconcile", response_model=ReconcileResponse, dependencies=[Depends(get_api_key)])
def reconcile(library: Library = Depends(get_library)):
    """Replay compensations that failed earlier."""
    return ReconcileResponse(**library.circulation.reconcile())


@router.get("/borrow/{borrow_id}", response_model=BorrowRecordModel)
def get_borrow_record(borrow_id: str, library: Library = Depends(get_library)):
    return _record_model(library, library.queries.get_borrow_record(borrow_id))


# --- Member and catalog collaborators ---
@router.post("/users", status_code=201, response_model=UserModel, dependencies=[Depends(get_api_key)])
def create_user(payload: UserCreateModel, library: Library = Depends(get_library)):
    user = library.users.add_user(payload.name, payload.email, payload.role)
    return UserModel(**user.to_dict())


@router.patch("/users/{user_id}/active", response_model=UserModel, dependencies=[Depends(get_api_key)])
def set_user_active(user_id: str, payload: UserActiveModel, library: Library = Depends(get_library)):
    user = library.users.set_active(user_id, payload.is_active)
    return UserModel(**user.to_dict())


@router.get("/users/{user_id}/borrows", response_model=UserBorrowsResponse)
def user_borrows(user_id: str, library: Library = Depends(get_library)):
    """A member's current loans and borrow history."""
    history = library.queries.user_history(user_id)
    return UserBorrowsResponse(
        user=UserModel(**history["user"].to_dict()),
        current_borrows=[_record_model(library, r) for r in history["current_borrows"]],
        borrow_history=[_record_model(library, r) for r in history["borrow_history"]],
    )


@router.post("/books", status_code=201, response_model=BookModel, dependencies=[Depends(get_api_key)])
def create_book(payload: Any = Body(None), library: Library = Depends(get_library)):
    request = parse_book_request(payload).unwrap()
    book = library.add_book(
        request.title, request.author, request.isbn, copies=request.total_copies,
        genre=request.genre, location=request.location,
    )
    return _book_model(book)


@router.get("/books", response_model=List[BookModel])
def list_books(library: Library = Depends(get_library)):
    return [_book_model(book) for book in library.inventory.list_books()]


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    return _book_model(library.inventory.get_book(book_id))


@router.patch("/books/{book_id}/maintenance", response_model=BookModel, dependencies=[Depends(get_api_key)])
def set_maintenance(book_id: str, payload: MaintenanceModel, library: Library = Depends(get_library)):
    return _book_model(library.inventory.set_maintenance(book_id, payload.maintenance))


def _parse_query_date(raw: Optional[str], name: str) -> Optional[datetime]:
    if raw is None:
        return None
    value = parse_datetime(raw)
    if value is None:
        raise ValidationError(f'"{name}" must be a valid date')
    return value


# --- Error handling ---
async def circulation_error_handler(request: Request, exc: CirculationError) -> JSONResponse:
    if isinstance(exc, InternalError):
        # Internal detail stays in the logs
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=500, content={"error": InternalError.default_message, "code": exc.code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Validation failed.") if errors else "Validation failed."
    return JSONResponse(status_code=400, content={"error": message, "code": ValidationError.code})


# --- Application ---
def create_app(library: Optional[Library] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "library", None) is None:
            app.state.library = Library()
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.library = library

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CirculationError, circulation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    return app


app = create_app()
