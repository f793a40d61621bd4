"""
FastAPI main application for the Book Library API.
"""

import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import authorize_write, get_optional_user, router as auth_router
from api.config import config as api_config
from api.database import APIDatabaseService, get_db_service
from api.errors import CatalogError, CatalogValidationError, duplicate_key_field
from api.models import (
    AuthenticationStatus, AuthorDeleteResponse, AuthorEnvelope, AuthorListResponse,
    BookEnvelope, BookListResponse, BookQueryParams, DeleteResponse,
    ErrorResponse, HealthResponse, UserResponse,
)
from api.sessions import SessionMiddleware, SessionStore
from catalog.database import MongoDBManager
from catalog.models import AuthorData, BookData, Genre
from utilities.config import config
from utilities.logger import setup_logging

# Setup logging
logger = structlog.get_logger(__name__)

START_TIME = time.monotonic()

ENDPOINTS = {
    "books": {
        "getAll": "GET /books",
        "getMine": "GET /books/my-books",
        "getById": "GET /books/{id}",
        "create": "POST /books",
        "update": "PUT /books/{id}",
        "delete": "DELETE /books/{id}",
    },
    "authors": {
        "getAll": "GET /authors",
        "getById": "GET /authors/{id}",
        "create": "POST /authors",
        "update": "PUT /authors/{id}",
        "delete": "DELETE /authors/{id}",
    },
    "authentication": {
        "demoLogin": "POST /auth/demo/login",
        "demoLogout": "POST /auth/demo/logout",
        "demoCurrent": "GET /auth/demo/current",
        "google": "GET /auth/google",
        "current": "GET /auth/current",
        "logout": "GET /auth/logout",
    },
    "api": {
        "documentation": "GET /api-docs",
        "health": "GET /health",
    },
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger.info(
        "Starting Book Library API",
        environment=config.environment,
        require_auth=api_config.require_auth,
    )

    db_manager = MongoDBManager(config.mongodb_url, config.mongodb_database)
    app.state.db_manager = db_manager
    try:
        await db_manager.connect()
        app.state.db_service = APIDatabaseService(db_manager.database)
        app.state.session_store = SessionStore(
            db_manager.database.sessions, api_config.session_ttl_seconds
        )
    except Exception as e:
        # Keep serving so /health can report the outage
        logger.error("Failed to connect to database", error=str(e))

    yield

    logger.info("Shutting down Book Library API")
    await db_manager.disconnect()


# Create FastAPI application
app = FastAPI(
    title=api_config.api_title,
    description="""
    API for managing books and authors in a library catalog.

    ## Features

    * **Books**: Create, read, update and delete books with validation
    * **Authors**: Author records with maintained book counts
    * **Pagination & search**: `page`, `limit`, `genre`, `author` and `search` query parameters
    * **Authentication**: Demo header/session login or Google OAuth

    ## Authentication

    Send an `x-demo-user: <any-id>` header, or log in with `POST /auth/demo/login`
    to receive a session cookie. When `REQUIRE_AUTH` is enabled, create, update and
    delete endpoints reject anonymous callers with 401.
    """,
    version=api_config.api_version,
    docs_url="/api-docs",
    redoc_url=None,
    openapi_tags=[
        {"name": "Books", "description": "Book operations"},
        {"name": "Authors", "description": "Author operations"},
        {"name": "Authentication", "description": "Demo and Google OAuth login"},
        {"name": "API", "description": "API information and health"},
    ],
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
    lifespan=lifespan
)

# Middleware added last runs first: CORS, then request logging, then sessions
app.add_middleware(
    SessionMiddleware,
    secret=api_config.session_secret,
    cookie_name=api_config.session_cookie_name,
    max_age=api_config.session_ttl_seconds,
    https_only=config.is_production(),
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request outside production."""
    started = time.perf_counter()
    response = await call_next(request)
    if not config.is_production():
        logger.info(
            "Request handled",
            method=request.method,
            path=request.url.path,
            origin=request.headers.get("origin"),
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_origin_regex=api_config.cors_origin_regex,
    allow_credentials=True,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
    max_age=86400,
)

app.include_router(auth_router)


def _error_response(
    status_code: int,
    error: str,
    message: Optional[str] = None,
    field: Optional[str] = None,
    errors: Optional[List[Dict[str, str]]] = None,
    exc: Optional[BaseException] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    stack = None
    if exc is not None and not config.is_production():
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    body = ErrorResponse(
        error=error,
        message=message,
        field=field,
        errors=errors,
        stack=stack,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


# Exception handlers
@app.exception_handler(CatalogError)
async def catalog_exception_handler(request: Request, exc: CatalogError):
    """Handle errors raised by the service layer and auth dependencies."""
    logger.warning(
        "Request failed",
        error=exc.error,
        message=exc.message,
        status_code=exc.status_code,
        path=request.url.path,
    )
    errors = exc.errors if isinstance(exc, CatalogValidationError) else None
    return _error_response(exc.status_code, exc.error, exc.message, exc.field, errors)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400 with field-level messages."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path"))
        message = error["msg"].removeprefix("Value error, ")
        errors.append({"field": field or "body", "message": message})

    logger.warning("Request validation failed", path=request.url.path, errors=errors)
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "Validation Error",
        "; ".join(error["message"] for error in errors),
        errors=errors,
    )


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_exception_handler(request: Request, exc: DuplicateKeyError):
    field = duplicate_key_field(exc.details)
    logger.warning("Duplicate key", field=field, path=request.url.path)
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "Duplicate Entry",
        f"An entry with this {field} already exists",
        field=field,
    )


@app.exception_handler(InvalidId)
async def invalid_id_exception_handler(request: Request, exc: InvalidId):
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "Invalid ID Format",
        "The provided ID is not valid",
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions; unknown routes get the endpoint map."""
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "success": False,
                "error": "Endpoint not found",
                "message": f"{request.method} {request.url.path} does not exist",
                "availableEndpoints": ENDPOINTS,
            },
        )
    return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=exc)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        str(exc),
        exc=exc,
    )


@app.get("/", tags=["API"])
async def api_info(request: Request):
    """API information."""
    base_url = str(request.base_url).rstrip("/")
    return {
        "api": api_config.api_title,
        "version": api_config.api_version,
        "description": api_config.api_description,
        "documentation": f"{base_url}/api-docs",
        "authentication": "Required" if api_config.require_auth else "Optional",
        "endpoints": ENDPOINTS,
        "database": "MongoDB",
        "collections": ["books", "authors"],
    }


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["API"])
async def health_check(request: Request, user: Optional[UserResponse] = Depends(get_optional_user)):
    """Liveness/readiness probe reporting the database connection state."""
    db_manager = getattr(app.state, "db_manager", None)
    db_service = getattr(app.state, "db_service", None)
    authentication = AuthenticationStatus(
        required=api_config.require_auth,
        has_user=user is not None,
        has_session=bool(request.scope.get("session")),
    )

    database = {"state": db_manager.connection_state() if db_manager else "disconnected"}
    try:
        db_status = "unavailable"
        if db_service:
            health_info = await db_service.health_check()
            db_status = health_info.get("status", "unknown")
            database.update(health_info)

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.utcnow(),
            uptime=round(time.monotonic() - START_TIME, 3),
            version=api_config.api_version,
            environment=config.environment,
            database_status=db_status,
            database=database,
            authentication=authentication,
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(
            status="unhealthy",
            timestamp=datetime.utcnow(),
            uptime=round(time.monotonic() - START_TIME, 3),
            version=api_config.api_version,
            environment=config.environment,
            database_status="unhealthy",
            database=database,
            authentication=authentication,
        )


# Books endpoints
@app.get("/books", response_model=BookListResponse, tags=["Books"])
async def get_books(
    page: int = Query(1, ge=1, description="Page number (starts from 1)"),
    limit: int = Query(10, ge=1, le=100, description="Items per page (1-100)"),
    genre: Optional[Genre] = Query(None, description="Filter by genre"),
    author: Optional[str] = Query(None, description="Author ID or name"),
    search: Optional[str] = Query(None, description="Match title, genre or ISBN"),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """
    Get books, newest first, with filtering and pagination.

    - **page**: Page number (starts from 1)
    - **limit**: Items per page (1-100)
    - **genre**: Filter by genre
    - **author**: Author ID, or part of the author's first/last name
    - **search**: Case-insensitive substring of title, genre or ISBN
    """
    query_params = BookQueryParams(page=page, limit=limit, genre=genre, author=author, search=search)
    return await db_service.get_books(query_params)


@app.get(
    "/books/my-books",
    response_model=BookListResponse,
    tags=["Books"],
    responses={401: {"model": ErrorResponse}},
)
async def get_my_books(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """Books added by the current user (all books for anonymous callers when auth is optional)."""
    query_params = BookQueryParams(page=page, limit=limit)
    if user is None:
        return await db_service.get_books(query_params)
    return await db_service.get_books_by_user(user.id, query_params)


@app.get(
    "/books/{book_id}",
    response_model=BookEnvelope,
    tags=["Books"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_book(book_id: str, db_service: APIDatabaseService = Depends(get_db_service)):
    """
    Get a single book by ID.

    - **book_id**: MongoDB ObjectId of the book
    """
    book = await db_service.get_book_by_id(book_id)
    return BookEnvelope(data=book)


@app.post(
    "/books",
    response_model=BookEnvelope,
    status_code=status.HTTP_201_CREATED,
    tags=["Books"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def create_book(
    book: BookData,
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """
    Create a book. The ISBN is stored without hyphens or spaces and must be unique;
    the author must exist and has its book count incremented.
    """
    created = await db_service.create_book(book, user_id=user.id if user else None)
    return BookEnvelope(message="Book created successfully", data=created)


@app.put(
    "/books/{book_id}",
    response_model=BookEnvelope,
    tags=["Books"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_book(
    book_id: str,
    book: BookData,
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """Replace a book's fields. Moving a book to another author moves the book count too."""
    updated = await db_service.update_book(book_id, book)
    return BookEnvelope(message="Book updated successfully", data=updated)


@app.delete(
    "/books/{book_id}",
    response_model=DeleteResponse,
    tags=["Books"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_book(
    book_id: str,
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """Delete a book and decrement its author's book count."""
    deleted = await db_service.delete_book(book_id)
    return DeleteResponse(message="Book deleted successfully", data=deleted)


# Authors endpoints
@app.get("/authors", response_model=AuthorListResponse, tags=["Authors"])
async def get_authors(db_service: APIDatabaseService = Depends(get_db_service)):
    """Get all authors sorted by last name."""
    return await db_service.get_authors()


@app.get(
    "/authors/{author_id}",
    response_model=AuthorEnvelope,
    tags=["Authors"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_author(author_id: str, db_service: APIDatabaseService = Depends(get_db_service)):
    author = await db_service.get_author_by_id(author_id)
    return AuthorEnvelope(data=author)


@app.post(
    "/authors",
    response_model=AuthorEnvelope,
    status_code=status.HTTP_201_CREATED,
    tags=["Authors"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def create_author(
    author: AuthorData,
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    created = await db_service.create_author(author)
    return AuthorEnvelope(message="Author created successfully", data=created)


@app.put(
    "/authors/{author_id}",
    response_model=AuthorEnvelope,
    tags=["Authors"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_author(
    author_id: str,
    author: AuthorData,
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    updated = await db_service.update_author(author_id, author)
    return AuthorEnvelope(message="Author updated successfully", data=updated)


@app.delete(
    "/authors/{author_id}",
    response_model=AuthorDeleteResponse,
    tags=["Authors"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_author(
    author_id: str,
    user: Optional[UserResponse] = Depends(authorize_write),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """Delete an author. Authors still referenced by books cannot be deleted."""
    deleted = await db_service.delete_author(author_id)
    return AuthorDeleteResponse(message="Author deleted successfully", data=deleted)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=True,
        log_level="info"
    )
