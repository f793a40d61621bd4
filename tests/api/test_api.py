"""
Tests for the FastAPI application.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from api.config import config as api_config
from api.database import get_db_service
from api.main import app
from api.models import BookListResponse


@pytest.fixture
def mock_db_service(client):
    """Mock database service injected through the dependency override."""
    mock = AsyncMock()
    app.dependency_overrides[get_db_service] = lambda: mock
    yield mock


@pytest.fixture
def require_auth(monkeypatch):
    monkeypatch.setattr(api_config, "require_auth", True)


def test_api_info(client):
    """Test the root endpoint lists the available endpoints."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["api"] == "Book Library API"
    assert data["documentation"].endswith("/api-docs")
    assert data["authentication"] == "Optional"
    assert data["endpoints"]["books"]["getAll"] == "GET /books"


def test_health_check_without_database(client):
    """Test health check reports a degraded service when MongoDB is unavailable."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["databaseStatus"] == "unavailable"
    assert data["database"]["state"] == "disconnected"
    assert "timestamp" in data
    assert "uptime" in data
    assert data["authentication"] == {"required": False, "hasUser": False, "hasSession": False}


def test_health_check_healthy(client, db_service, mock_database):
    mock_database.books.count_documents.return_value = 3
    mock_database.authors.count_documents.return_value = 2
    app.state.db_service = db_service
    try:
        response = client.get("/health", headers={"x-demo-user": "reader-1"})
    finally:
        app.state.db_service = None

    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"]["books_count"] == 3
    assert data["authentication"]["hasUser"] is True


def test_books_without_database(client):
    """Test data endpoints answer 503 until the database is connected."""
    response = client.get("/books")
    assert response.status_code == 503
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Service Unavailable"


def test_books_endpoint(client, mock_db_service):
    """Test listing passes query parameters to the service."""
    mock_db_service.get_books.return_value = BookListResponse(
        count=0, total=0, total_pages=0, current_page=2, data=[]
    )

    response = client.get("/books?page=2&limit=5&genre=Fantasy&author=Tolkien&search=ring")

    assert response.status_code == 200
    assert response.json() == {
        "success": True, "count": 0, "total": 0, "totalPages": 0, "currentPage": 2, "data": []
    }
    query_params = mock_db_service.get_books.await_args.args[0]
    assert query_params.page == 2
    assert query_params.limit == 5
    assert query_params.genre.value == "Fantasy"
    assert query_params.author == "Tolkien"
    assert query_params.search == "ring"


@pytest.mark.parametrize("query", ["page=0", "limit=0", "limit=101", "genre=Cooking", "page=abc"])
def test_books_invalid_query(client, mock_db_service, query):
    response = client.get(f"/books?{query}")
    assert response.status_code == 400
    assert response.json()["error"] == "Validation Error"
    mock_db_service.get_books.assert_not_called()


def test_books_listing_populates_author(service_client, mock_database, book_doc, author_doc):
    mock_database.books.count_documents.return_value = 1
    mock_database.books.find.return_value.to_list.return_value = [book_doc]
    mock_database.authors.find.return_value.to_list.return_value = [author_doc]

    response = service_client.get("/books")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["totalPages"] == 1
    book = data["data"][0]
    assert book["id"] == str(book_doc["_id"])
    assert book["isbn"] == "9780743273565"
    assert book["publicationYear"] == 1925
    assert book["author"]["firstName"] == "F. Scott"


def test_book_by_id_endpoint(service_client, mock_database, book_doc, author_doc):
    mock_database.books.find_one.return_value = book_doc
    mock_database.authors.find.return_value.to_list.return_value = [author_doc]

    response = service_client.get(f"/books/{book_doc['_id']}")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["data"]["title"] == "The Great Gatsby"
    assert data["data"]["author"]["nationality"] == "American"


def test_book_invalid_id(service_client, mock_database):
    response = service_client.get("/books/invalid-id")

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["message"] == "Invalid book ID format"
    mock_database.books.find_one.assert_not_called()


def test_book_not_found(service_client, mock_database):
    mock_database.books.find_one.return_value = None

    response = service_client.get(f"/books/{ObjectId()}")

    assert response.status_code == 404
    assert response.json()["message"] == "Book not found"


def test_create_book(service_client, mock_database, book_payload, author_doc, author_id):
    """Test creation normalizes the ISBN and bumps the author's count."""
    mock_database.authors.find_one.return_value = author_doc
    mock_database.books.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    response = service_client.post("/books", json=book_payload, headers={"x-demo-user": "reader-1"})

    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "Book created successfully"
    assert data["data"]["isbn"] == "9780743273565"
    assert data["data"]["user"] == "reader-1"
    assert data["data"]["author"]["lastName"] == "Fitzgerald"
    mock_database.authors.update_one.assert_awaited_once_with(
        {"_id": author_id}, {"$inc": {"bookCount": 1}}
    )


def test_create_book_validation_error(service_client, mock_database, book_payload):
    del book_payload["title"]
    book_payload["isbn"] = "12345"

    response = service_client.post("/books", json=book_payload)

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Validation Error"
    messages = {error["field"]: error["message"] for error in data["errors"]}
    assert "title" in messages
    assert messages["isbn"] == "Please enter a valid ISBN"
    mock_database.books.insert_one.assert_not_called()


def test_create_book_unknown_author(service_client, mock_database, book_payload):
    mock_database.authors.find_one.return_value = None

    response = service_client.post("/books", json=book_payload)

    assert response.status_code == 400
    data = response.json()
    assert data["message"] == "Author not found"
    assert data["field"] == "author"


def test_create_book_duplicate_isbn(service_client, mock_database, book_payload, author_doc):
    mock_database.authors.find_one.return_value = author_doc
    mock_database.books.insert_one.side_effect = DuplicateKeyError(
        "E11000 duplicate key error", 11000, {"keyPattern": {"isbn": 1}}
    )

    response = service_client.post("/books", json=book_payload)

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Duplicate Entry"
    assert data["message"] == "A book with this isbn already exists"
    assert data["field"] == "isbn"
    mock_database.authors.update_one.assert_not_called()


def test_create_book_requires_auth(service_client, mock_database, book_payload, require_auth):
    response = service_client.post("/books", json=book_payload)

    assert response.status_code == 401
    data = response.json()
    assert data["error"] == "Authentication required"
    assert data["message"] == "Please log in to access this endpoint"
    mock_database.books.insert_one.assert_not_called()


def test_create_book_with_demo_header_when_auth_required(
    service_client, mock_database, book_payload, author_doc, require_auth
):
    mock_database.authors.find_one.return_value = author_doc
    mock_database.books.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    response = service_client.post("/books", json=book_payload, headers={"x-demo-user": "reader-1"})

    assert response.status_code == 201


def test_reads_stay_public_when_auth_required(client, mock_db_service, require_auth):
    mock_db_service.get_books.return_value = BookListResponse(
        count=0, total=0, total_pages=0, current_page=1, data=[]
    )

    assert client.get("/books").status_code == 200


def test_update_book(service_client, mock_database, book_payload, book_doc, author_doc):
    mock_database.books.find_one.return_value = book_doc
    mock_database.authors.find_one.return_value = author_doc
    mock_database.books.find_one_and_update.return_value = dict(book_doc, availableCopies=3)
    book_payload["availableCopies"] = 3

    response = service_client.put(f"/books/{book_doc['_id']}", json=book_payload)

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Book updated successfully"
    assert data["data"]["availableCopies"] == 3


def test_delete_book(service_client, mock_database, book_doc, author_id):
    mock_database.books.find_one_and_delete.return_value = book_doc

    response = service_client.delete(f"/books/{book_doc['_id']}")

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Book deleted successfully"
    assert data["data"] == {"id": str(book_doc["_id"]), "title": "The Great Gatsby"}
    mock_database.authors.update_one.assert_awaited_once_with(
        {"_id": author_id, "bookCount": {"$gte": 1}}, {"$inc": {"bookCount": -1}}
    )


def test_my_books_uses_caller_identity(client, mock_db_service):
    mock_db_service.get_books_by_user.return_value = BookListResponse(
        count=0, total=0, total_pages=0, current_page=1, data=[]
    )

    response = client.get("/books/my-books?limit=5", headers={"x-demo-user": "reader-7"})

    assert response.status_code == 200
    user_id, query_params = mock_db_service.get_books_by_user.await_args.args
    assert user_id == "reader-7"
    assert query_params.limit == 5


def test_my_books_anonymous_lists_all(client, mock_db_service):
    mock_db_service.get_books.return_value = BookListResponse(
        count=0, total=0, total_pages=0, current_page=1, data=[]
    )

    assert client.get("/books/my-books").status_code == 200
    mock_db_service.get_books_by_user.assert_not_called()


def test_my_books_requires_auth(client, mock_db_service, require_auth):
    response = client.get("/books/my-books")
    assert response.status_code == 401


def test_authors_endpoints(service_client, mock_database, author_doc):
    mock_database.authors.find.return_value.to_list.return_value = [author_doc]
    mock_database.authors.find_one.return_value = author_doc

    listing = service_client.get("/authors")
    single = service_client.get(f"/authors/{author_doc['_id']}")

    assert listing.status_code == 200
    assert listing.json()["count"] == 1
    assert listing.json()["data"][0]["bookCount"] == 1
    assert single.status_code == 200
    assert single.json()["data"]["lastName"] == "Fitzgerald"


def test_create_author(service_client, mock_database):
    mock_database.authors.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    response = service_client.post("/authors", json={
        "firstName": "Harper",
        "lastName": "Lee",
        "nationality": "American",
        "birthDate": "1926-04-28",
        "deathDate": "1920-01-01",
    })

    assert response.status_code == 400
    assert response.json()["errors"][0]["message"] == "Death date cannot be before birth date"

    response = service_client.post("/authors", json={
        "firstName": "Harper",
        "lastName": "Lee",
        "nationality": "American",
        "birthDate": "1926-04-28",
    })

    assert response.status_code == 201
    assert response.json()["data"]["bookCount"] == 0


def test_delete_author_with_books(service_client, mock_database, author_doc):
    mock_database.authors.find_one.return_value = author_doc
    mock_database.books.count_documents.return_value = 1

    response = service_client.delete(f"/authors/{author_doc['_id']}")

    assert response.status_code == 400
    assert response.json()["error"] == "Validation Error"


def test_author_invalid_id(service_client):
    response = service_client.get("/authors/xyz")

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid author ID format"


def test_unknown_endpoint(client):
    """Test unknown routes return the endpoint map."""
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Endpoint not found"
    assert data["message"] == "GET /does-not-exist does not exist"
    assert "books" in data["availableEndpoints"]


def test_api_docs(client):
    response = client.get("/api-docs")
    assert response.status_code == 200
    assert "swagger" in response.text.lower()


def test_openapi_security_schemes(client):
    schema = client.get("/openapi.json").json()
    schemes = schema["components"]["securitySchemes"]
    assert schemes["demoHeader"] == {
        "type": "apiKey",
        "name": "x-demo-user",
        "in": "header",
        "description": "Demo authentication: any user id",
    }
    assert schemes["cookieAuth"]["in"] == "cookie"


def test_unhandled_error(session_store):
    """Test unexpected errors become 500 responses with a stack outside production."""
    broken = AsyncMock()
    broken.get_books.side_effect = RuntimeError("boom")
    app.state.session_store = session_store
    app.dependency_overrides[get_db_service] = lambda: broken
    try:
        response = TestClient(app, raise_server_exceptions=False).get("/books")
    finally:
        app.dependency_overrides.clear()
        app.state.session_store = None

    assert response.status_code == 500
    data = response.json()
    assert data["error"] == "Internal server error"
    assert data["message"] == "boom"
    assert "RuntimeError" in data["stack"]


def test_cors_preflight(client):
    response = client.options(
        "/books",
        headers={
            "Origin": "https://library-frontend.onrender.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "x-demo-user",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "https://library-frontend.onrender.com"
    assert response.headers["access-control-allow-credentials"] == "true"
